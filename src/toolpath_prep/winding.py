"""Winding classification of closed chains via the shoelace formula."""

from __future__ import annotations

import math
from typing import List, Sequence, Union

import numpy as np

from toolpath_prep.contracts import (
    Arc,
    Chain,
    Circle,
    Ellipse,
    Line,
    Point2D,
    Polyline,
    Shape,
    Spline,
    Winding,
)
from toolpath_prep.nurbs import curve_for, spline_polygon
from toolpath_prep.shapes import (
    EPS,
    arc_sweep,
    distance,
    ellipse_param_range,
    ellipse_point,
    end_point,
    is_full_ellipse,
    point_at,
    start_point,
)

_ARC_STEP = math.pi / 8.0


def _shape_winding_points(shape: Shape) -> List[Point2D]:
    if isinstance(shape, Line):
        return [tuple(shape.start), tuple(shape.end)]
    if isinstance(shape, Circle):
        cx, cy = shape.center
        r = shape.radius
        return [(cx + r, cy), (cx, cy + r), (cx - r, cy), (cx, cy - r)]
    if isinstance(shape, Arc):
        n = max(4, int(math.ceil(arc_sweep(shape) / _ARC_STEP)))
        return [point_at(shape, i / n) for i in range(n + 1)]
    if isinstance(shape, Polyline):
        points: List[Point2D] = []
        for sub in shape.shapes:
            points.extend(_shape_winding_points(sub))
        return points
    if isinstance(shape, Spline):
        n = max(10, 3 * len(shape.control_points))
        try:
            curve = curve_for(shape)
        except ValueError:
            return [tuple(p) for p in spline_polygon(shape)]
        return [curve.point(i / (n - 1)) for i in range(n)]
    if isinstance(shape, Ellipse):
        if is_full_ellipse(shape):
            start, _ = ellipse_param_range(shape)
            return [ellipse_point(shape, start + i * 2.0 * math.pi / 16) for i in range(16)]
        start, end = ellipse_param_range(shape)
        n = max(8, int(math.ceil((end - start) / _ARC_STEP)))
        return [ellipse_point(shape, start + (end - start) * i / n) for i in range(n + 1)]
    raise TypeError(f"Unrecognized shape type: {type(shape).__name__}")


def winding_points(shapes: Sequence[Shape]) -> List[Point2D]:
    """Polygon approximation of a chain, consecutive duplicates removed."""
    points: List[Point2D] = []
    for shape in shapes:
        for p in _shape_winding_points(shape):
            if points and distance(points[-1], p) < EPS:
                continue
            points.append(p)
    if len(points) > 1 and distance(points[0], points[-1]) < EPS:
        points.pop()
    return points


def signed_area(points: Sequence[Point2D]) -> float:
    """Shoelace area; positive for counterclockwise polygons."""
    if len(points) < 3:
        return 0.0
    pts = np.asarray(points, dtype=float)
    x, y = pts[:, 0], pts[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


def detect_winding(chain: Union[Chain, Sequence[Shape]], tolerance: float = 0.1) -> Winding:
    shapes = chain.shapes if isinstance(chain, Chain) else tuple(chain)
    if not shapes:
        return Winding.NONE
    if distance(start_point(shapes[0]), end_point(shapes[-1])) > tolerance:
        return Winding.NONE
    points = winding_points(shapes)
    if len(points) < 3:
        return Winding.NONE
    area = signed_area(points)
    if area > EPS:
        return Winding.COUNTERCLOCKWISE
    if area < -EPS:
        return Winding.CLOCKWISE
    return Winding.NONE


def opposite(winding: Winding) -> Winding:
    if winding is Winding.CLOCKWISE:
        return Winding.COUNTERCLOCKWISE
    if winding is Winding.COUNTERCLOCKWISE:
        return Winding.CLOCKWISE
    return Winding.NONE
