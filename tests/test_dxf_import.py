"""Tests for the ezdxf entity adapter."""
import logging
import math

import ezdxf
import pytest

from toolpath_prep.contracts import Arc, Circle, Ellipse, Line, Polyline, Spline
from toolpath_prep.dxf_import import entities_to_shapes, shapes_from_dxf
from toolpath_prep.shapes import end_point, point_at, start_point


@pytest.fixture
def doc():
    return ezdxf.new()


class TestEntityMapping:
    """Each supported entity type maps onto one shape variant."""

    def test_line(self, doc):
        doc.modelspace().add_line((0, 0), (10, 5), dxfattribs={"layer": "CUT"})
        (shape,) = shapes_from_dxf(doc)
        assert isinstance(shape, Line)
        assert shape.start == (0, 0)
        assert shape.end == (10, 5)
        assert shape.layer == "CUT"
        assert shape.id

    def test_arc_angles_become_radians(self, doc):
        doc.modelspace().add_arc((1, 2), 5, 0, 90)
        (shape,) = shapes_from_dxf(doc)
        assert isinstance(shape, Arc)
        assert not shape.clockwise
        assert shape.end_angle == pytest.approx(math.pi / 2)
        assert end_point(shape) == pytest.approx((1, 7))

    def test_circle(self, doc):
        doc.modelspace().add_circle((3, 4), 2)
        (shape,) = shapes_from_dxf(doc)
        assert shape == Circle((3, 4), 2.0, id=shape.id, layer="0")

    def test_lwpolyline_with_bulge(self, doc):
        doc.modelspace().add_lwpolyline(
            [(0, 0, 0), (10, 0, 1), (10, 10, 0)], format="xyb", close=True)
        (shape,) = shapes_from_dxf(doc)
        assert isinstance(shape, Polyline)
        assert shape.closed
        assert [type(s) for s in shape.shapes] == [Line, Arc, Line]
        assert point_at(shape.shapes[1], 0.5) == pytest.approx((15, 5))

    def test_2d_polyline(self, doc):
        doc.modelspace().add_polyline2d([(0, 0), (5, 0), (5, 5)], close=True)
        (shape,) = shapes_from_dxf(doc)
        assert isinstance(shape, Polyline)
        assert shape.closed
        assert len(shape.shapes) == 3

    def test_spline(self, doc):
        doc.modelspace().add_open_spline([(0, 0), (2, 4), (6, 4), (8, 0)], degree=3)
        (shape,) = shapes_from_dxf(doc)
        assert isinstance(shape, Spline)
        assert shape.degree == 3
        assert len(shape.control_points) == 4
        assert start_point(shape) == pytest.approx((0, 0), abs=1e-9)
        assert end_point(shape) == pytest.approx((8, 0), abs=1e-9)

    def test_full_ellipse_has_no_params(self, doc):
        doc.modelspace().add_ellipse((0, 0), major_axis=(3, 0), ratio=0.5)
        (shape,) = shapes_from_dxf(doc)
        assert isinstance(shape, Ellipse)
        assert shape.start_param is None and shape.end_param is None
        assert shape.major_axis_endpoint == (3, 0)

    def test_partial_ellipse_keeps_params(self, doc):
        doc.modelspace().add_ellipse(
            (0, 0), major_axis=(3, 0), ratio=0.5, start_param=0, end_param=math.pi)
        (shape,) = shapes_from_dxf(doc)
        assert shape.end_param == pytest.approx(math.pi)


class TestSpecialCases:

    def test_mirrored_arc_is_flipped_into_world_xy(self, doc):
        doc.modelspace().add_arc((5, 0), 1, 0, 90, dxfattribs={"extrusion": (0, 0, -1)})
        (shape,) = shapes_from_dxf(doc)
        assert shape.clockwise
        assert shape.center == pytest.approx((-5, 0))
        assert start_point(shape) == pytest.approx((-6, 0), abs=1e-12)
        assert end_point(shape) == pytest.approx((-5, 1), abs=1e-12)

    def test_block_references_are_expanded(self, doc):
        block = doc.blocks.new("HOLE")
        block.add_circle((0, 0), 2)
        msp = doc.modelspace()
        msp.add_blockref("HOLE", (10, 10))
        msp.add_blockref("HOLE", (30, 10))
        shapes = shapes_from_dxf(doc)
        assert sorted(s.center for s in shapes) == [(10, 10), (30, 10)]

    def test_unsupported_entities_are_skipped_and_logged(self, doc, caplog):
        msp = doc.modelspace()
        msp.add_text("label")
        msp.add_line((0, 0), (1, 0))
        with caplog.at_level(logging.WARNING, logger="toolpath_prep.dxf_import"):
            shapes = shapes_from_dxf(doc)
        assert len(shapes) == 1
        assert "Skipped 1 unsupported TEXT entity" in caplog.text

    def test_layer_filter(self, doc):
        msp = doc.modelspace()
        msp.add_line((0, 0), (1, 0), dxfattribs={"layer": "Cut"})
        msp.add_line((0, 0), (0, 1), dxfattribs={"layer": "Engrave"})
        shapes = entities_to_shapes(msp, layers=["cut"])
        assert [s.layer for s in shapes] == ["Cut"]

    def test_reads_file_from_disk(self, doc, tmp_path):
        doc.modelspace().add_circle((0, 0), 1)
        path = tmp_path / "drawing.dxf"
        doc.saveas(path)
        assert len(shapes_from_dxf(path)) == 1
        assert len(shapes_from_dxf(str(path))) == 1
