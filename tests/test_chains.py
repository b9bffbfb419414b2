"""Tests for chain detection, closure and traversal normalization."""
import math
import random

import pytest

from conftest import square_lines, square_polyline
from toolpath_prep.chains import (
    chain_end_point,
    chain_start_point,
    detect_chains,
    is_shape_closed,
    normalize_chain,
    reverse_chain,
)
from toolpath_prep.contracts import (
    Arc,
    Chain,
    ChainDetectionConfig,
    Circle,
    Ellipse,
    Line,
    Spline,
    Winding,
)
from toolpath_prep.shapes import distance, end_point, polyline_from_vertices, start_point


def _walkable(chain: Chain, tolerance: float = 1e-6) -> bool:
    shapes = chain.shapes
    return all(
        distance(end_point(shapes[i]), start_point(shapes[i + 1])) <= tolerance
        for i in range(len(shapes) - 1)
    )


class TestDetectChains:
    """Connectivity grouping."""

    def test_every_shape_in_exactly_one_chain(self):
        shapes = (
            square_lines(0, 0, 10)
            + [Line((20, 0), (30, 0)), Line((30, 0), (30, 5))]
            + [Circle((50, 50), 5), Line((100, 100), (101, 100))]
        )
        chains = detect_chains(shapes)
        members = [id(s) for chain in chains for s in chain.shapes]
        assert sorted(members) == sorted(id(s) for s in shapes)
        assert len(members) == len(set(members))
        assert len(chains) == 4

    def test_chain_ids_follow_first_member(self):
        shapes = [Line((0, 0), (1, 0)), Circle((10, 10), 1), Line((1, 0), (2, 0))]
        chains = detect_chains(shapes)
        assert [c.id for c in chains] == ["chain-1", "chain-2"]
        assert len(chains[0].shapes) == 2

    def test_endpoints_within_tolerance_connect(self):
        shapes = [Line((0, 0), (10, 0)), Line((10.05, 0), (20, 0))]
        assert len(detect_chains(shapes, ChainDetectionConfig(tolerance=0.1))) == 1
        assert len(detect_chains(shapes, ChainDetectionConfig(tolerance=0.01))) == 2

    def test_concentric_circles_stay_apart(self):
        chains = detect_chains([Circle((0, 0), 10), Circle((0, 0), 5)])
        assert len(chains) == 2
        assert all(c.closed for c in chains)

    def test_line_touching_circle_quadrant_joins(self):
        chains = detect_chains([Circle((0, 0), 5), Line((5, 0), (9, 0))])
        assert len(chains) == 1

    def test_isolated_closed_polyline(self):
        chains = detect_chains([square_polyline(0, 0, 10)])
        assert len(chains) == 1
        assert chains[0].closed is True

    def test_collapsed_polyline_does_not_abort_detection(self):
        point_like = polyline_from_vertices([(1, 1), (1, 1), (1, 1)], closed=True)
        chains = detect_chains([point_like, Line((0, 0), (5, 0))])
        assert len(chains) == 2
        collapsed = next(c for c in chains if c.shapes == (point_like,))
        assert collapsed.closed is True
        assert collapsed.winding is Winding.NONE
        assert chain_start_point(collapsed) == (1, 1)

    def test_empty_input(self):
        assert detect_chains([]) == []

    def test_invalid_tolerance(self):
        with pytest.raises(ValueError):
            detect_chains([Line((0, 0), (1, 0))], ChainDetectionConfig(tolerance=0))

    def test_normalized_output_is_walkable(self):
        lines = square_lines(0, 0, 10)
        shuffled = [lines[2], lines[0], Line(lines[3].end, lines[3].start), lines[1]]
        chains = detect_chains(shuffled, ChainDetectionConfig(normalize=True))
        assert len(chains) == 1
        assert _walkable(chains[0])
        assert chains[0].closed


class TestClosure:
    """Shape-level closure rules."""

    def test_circle_always_closed(self):
        assert is_shape_closed(Circle((0, 0), 1), 0.1)

    def test_arc_and_line_never_closed(self):
        assert not is_shape_closed(Arc((0, 0), 1, 0, 2 * math.pi - 1e-3), 0.1)
        assert not is_shape_closed(Line((0, 0), (0, 0)), 0.1)

    def test_full_ellipse_closed_partial_open(self):
        assert is_shape_closed(Ellipse((0, 0), (2, 0), 0.5), 0.1)
        assert not is_shape_closed(Ellipse((0, 0), (2, 0), 0.5, 0.0, math.pi), 0.1)

    def test_polyline_flag_wins(self):
        open_square = square_polyline(0, 0, 10)
        flagged_open = type(open_square)(open_square.shapes, closed=False)
        assert not is_shape_closed(flagged_open, 0.1)

    def test_spline_closure_by_endpoints(self):
        loop = Spline(((0, 0), (5, 5), (10, 0), (5, -5), (0, 0)), degree=3)
        open_curve = Spline(((0, 0), (5, 5), (10, 0)), degree=2)
        assert is_shape_closed(loop, 0.1)
        assert not is_shape_closed(open_curve, 0.1)


class TestTraversal:

    def test_normalize_shuffled_square(self):
        lines = square_lines(0, 0, 10)
        rng = random.Random(7)
        shapes = [s if rng.random() < 0.5 else Line(s.end, s.start) for s in lines]
        rng.shuffle(shapes)
        chain = normalize_chain(Chain("c", tuple(shapes)), 0.1)
        assert _walkable(chain)
        assert chain.closed is True
        assert chain.winding in (Winding.CLOCKWISE, Winding.COUNTERCLOCKWISE)

    def test_reverse_chain_is_new_traversal(self, ccw_square_chain):
        analyzed = normalize_chain(ccw_square_chain, 0.1)
        back = reverse_chain(analyzed)
        assert back is not analyzed
        assert back.winding is Winding.CLOCKWISE
        assert chain_start_point(back) == pytest.approx(chain_end_point(analyzed))
        assert analyzed.winding is Winding.COUNTERCLOCKWISE

    def test_endpoint_queries_reject_empty_chain(self):
        empty = Chain("empty", ())
        with pytest.raises(ValueError):
            chain_start_point(empty)
        with pytest.raises(ValueError):
            chain_end_point(empty)
