"""
DXF adapter: turn ezdxf entities into shape records.

Handles LINE, ARC, CIRCLE, LWPOLYLINE, 2D POLYLINE, SPLINE and ELLIPSE.
INSERT references are expanded through ``virtual_entities()``.  Anything
else is skipped with a warning, since the input comes from outside.
Entities whose extrusion points down (-Z) are mirrored into world X/Y.
"""
import logging
import math
from collections import Counter
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

import ezdxf
from ezdxf.document import Drawing

from toolpath_prep.contracts import Arc, Circle, Ellipse, Line, Shape, Spline
from toolpath_prep.shapes import polyline_from_vertices

logger = logging.getLogger(__name__)

MAX_INSERT_DEPTH = 8
_FULL_TURN = 2.0 * math.pi


def _flipped(entity) -> bool:
    extrusion = entity.dxf.get("extrusion", (0.0, 0.0, 1.0))
    return extrusion[2] < 0


def _xy(point, flip: bool = False):
    x, y = float(point[0]), float(point[1])
    return (-x if flip else x, y)


def _line(entity) -> Line:
    return Line(_xy(entity.dxf.start), _xy(entity.dxf.end),
                id=entity.dxf.handle, layer=entity.dxf.layer)


def _arc(entity) -> Arc:
    flip = _flipped(entity)
    start = math.radians(entity.dxf.start_angle)
    end = math.radians(entity.dxf.end_angle)
    if flip:
        start, end = math.pi - start, math.pi - end
    return Arc(
        center=_xy(entity.dxf.center, flip),
        radius=float(entity.dxf.radius),
        start_angle=start,
        end_angle=end,
        clockwise=flip,
        id=entity.dxf.handle,
        layer=entity.dxf.layer,
    )


def _circle(entity) -> Circle:
    return Circle(_xy(entity.dxf.center, _flipped(entity)), float(entity.dxf.radius),
                  id=entity.dxf.handle, layer=entity.dxf.layer)


def _lwpolyline(entity) -> Shape:
    flip = _flipped(entity)
    vertices = [
        (-x if flip else x, y, -b if flip else b)
        for x, y, b in entity.get_points("xyb")
    ]
    return polyline_from_vertices(vertices, closed=entity.closed,
                                  id=entity.dxf.handle, layer=entity.dxf.layer)


def _polyline(entity) -> Optional[Shape]:
    if not entity.is_2d_polyline:
        return None
    flip = _flipped(entity)
    vertices = []
    for vertex in entity.vertices:
        x, y = _xy(vertex.dxf.location, flip)
        bulge = float(vertex.dxf.get("bulge", 0.0))
        vertices.append((x, y, -bulge if flip else bulge))
    return polyline_from_vertices(vertices, closed=entity.is_closed,
                                  id=entity.dxf.handle, layer=entity.dxf.layer)


def _spline(entity) -> Spline:
    return Spline(
        control_points=tuple(_xy(p) for p in entity.control_points),
        degree=int(entity.dxf.degree),
        knots=tuple(float(k) for k in entity.knots),
        weights=tuple(float(w) for w in entity.weights),
        fit_points=tuple(_xy(p) for p in entity.fit_points),
        closed=bool(entity.closed),
        id=entity.dxf.handle,
        layer=entity.dxf.layer,
    )


def _ellipse(entity) -> Ellipse:
    start = float(entity.dxf.start_param)
    end = float(entity.dxf.end_param)
    span = (end - start) % _FULL_TURN
    full = span < 1e-9 or abs(span - _FULL_TURN) < 1e-9
    return Ellipse(
        center=_xy(entity.dxf.center),
        major_axis_endpoint=_xy(entity.dxf.major_axis),
        minor_to_major_ratio=float(entity.dxf.ratio),
        start_param=None if full else start,
        end_param=None if full else end,
        id=entity.dxf.handle,
        layer=entity.dxf.layer,
    )


_CONVERTERS = {
    "LINE": _line,
    "ARC": _arc,
    "CIRCLE": _circle,
    "LWPOLYLINE": _lwpolyline,
    "POLYLINE": _polyline,
    "SPLINE": _spline,
    "ELLIPSE": _ellipse,
}


def entities_to_shapes(
    entities: Iterable,
    layers: Optional[Sequence[str]] = None,
    _depth: int = 0,
    _skipped: Optional[Counter] = None,
) -> List[Shape]:
    """Convert ezdxf entities, optionally keeping only *layers*."""
    skipped = _skipped if _skipped is not None else Counter()
    wanted = {name.lower() for name in layers} if layers else None
    shapes: List[Shape] = []
    for entity in entities:
        kind = entity.dxftype()
        if kind == "INSERT":
            if _depth >= MAX_INSERT_DEPTH:
                logger.warning("Skipping INSERT %s nested deeper than %d", entity.dxf.handle, _depth)
                continue
            shapes.extend(entities_to_shapes(entity.virtual_entities(), layers, _depth + 1, skipped))
            continue
        if wanted is not None and entity.dxf.layer.lower() not in wanted:
            continue
        converter = _CONVERTERS.get(kind)
        shape = converter(entity) if converter is not None else None
        if shape is None:
            skipped[kind] += 1
            continue
        shapes.append(shape)

    if _depth == 0:
        for kind, count in sorted(skipped.items()):
            logger.warning("Skipped %d unsupported %s entit%s", count, kind, "y" if count == 1 else "ies")
    return shapes


def shapes_from_dxf(
    source: Union[str, Path, Drawing],
    layers: Optional[Sequence[str]] = None,
) -> List[Shape]:
    """Shapes from a DXF file path or an already loaded ezdxf document."""
    if isinstance(source, Drawing):
        doc = source
    else:
        doc = ezdxf.readfile(str(source))
    shapes = entities_to_shapes(doc.modelspace(), layers)
    logger.info("Imported %d shape(s) from DXF", len(shapes))
    return shapes
