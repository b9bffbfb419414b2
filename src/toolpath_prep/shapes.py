"""
Per-shape geometry: endpoints, key points, parametric evaluation, lengths,
tessellation, reversal and interval sampling.

Every public function dispatches over the six shape variants with an
explicit isinstance chain and raises ``TypeError`` for anything else.
Parameters ``t`` are normalized to ``[0, 1]`` along the direction of travel.
"""

from __future__ import annotations

import logging
import math
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from toolpath_prep.contracts import (
    SHAPE_TYPES,
    Arc,
    BoundingBox,
    Circle,
    Ellipse,
    Line,
    Point2D,
    Polyline,
    SamplePoint,
    Shape,
    Spline,
    Vec2,
)
from toolpath_prep.nurbs import curve_for, spline_polygon

logger = logging.getLogger(__name__)

TWO_PI = 2.0 * math.pi
EPS = 1e-9
_DIFF_STEP = 0.001


def _unknown(shape) -> TypeError:
    return TypeError(f"Unrecognized shape type: {type(shape).__name__}")


def is_shape(obj) -> bool:
    return isinstance(obj, SHAPE_TYPES)


# ─── Vector helpers ──────────────────────────────────────────────────────────

def distance(a: Point2D, b: Point2D) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])


def _unit(dx: float, dy: float) -> Vec2:
    n = math.hypot(dx, dy)
    if n < EPS:
        return (0.0, 0.0)
    return (dx / n, dy / n)


def _lerp(a: Point2D, b: Point2D, t: float) -> Point2D:
    return (a[0] + (b[0] - a[0]) * t, a[1] + (b[1] - a[1]) * t)


# ─── Arc / ellipse parameterization ──────────────────────────────────────────

def arc_sweep(arc: Arc) -> float:
    """Unsigned angular span in the arc's travel direction.

    Equal start and end angles describe a full turn.
    """
    if arc.clockwise:
        span = arc.start_angle - arc.end_angle
    else:
        span = arc.end_angle - arc.start_angle
    span = math.fmod(span, TWO_PI)
    if span <= EPS:
        span += TWO_PI
    return span


def arc_angle_at(arc: Arc, t: float) -> float:
    sign = -1.0 if arc.clockwise else 1.0
    return arc.start_angle + sign * t * arc_sweep(arc)


def _arc_point(arc: Arc, angle: float) -> Point2D:
    return (
        arc.center[0] + arc.radius * math.cos(angle),
        arc.center[1] + arc.radius * math.sin(angle),
    )


def ellipse_frame(ellipse: Ellipse) -> Tuple[float, float, float]:
    """(semi-major, semi-minor, rotation) of *ellipse*."""
    mx, my = ellipse.major_axis_endpoint
    a = math.hypot(mx, my)
    return a, a * ellipse.minor_to_major_ratio, math.atan2(my, mx)


def ellipse_param_range(ellipse: Ellipse) -> Tuple[float, float]:
    """Parameter range with ``end`` wrapped past ``start``."""
    if ellipse.start_param is None or ellipse.end_param is None:
        return 0.0, TWO_PI
    start, end = ellipse.start_param, ellipse.end_param
    if end < start:
        end += TWO_PI
    if end - start <= EPS:
        end = start + TWO_PI
    return start, end


def is_full_ellipse(ellipse: Ellipse) -> bool:
    start, end = ellipse_param_range(ellipse)
    return abs((end - start) - TWO_PI) < 1e-6


def ellipse_point(ellipse: Ellipse, param: float) -> Point2D:
    a, b, rot = ellipse_frame(ellipse)
    ex, ey = a * math.cos(param), b * math.sin(param)
    c, s = math.cos(rot), math.sin(rot)
    return (
        ellipse.center[0] + ex * c - ey * s,
        ellipse.center[1] + ex * s + ey * c,
    )


def _ellipse_derivative(ellipse: Ellipse, param: float) -> Vec2:
    a, b, rot = ellipse_frame(ellipse)
    dx, dy = -a * math.sin(param), b * math.cos(param)
    c, s = math.cos(rot), math.sin(rot)
    return (dx * c - dy * s, dx * s + dy * c)


def _ellipse_param_at(ellipse: Ellipse, t: float) -> float:
    start, end = ellipse_param_range(ellipse)
    return start + t * (end - start)


# ─── Spline helpers ──────────────────────────────────────────────────────────

def _spline_point(spline: Spline, t: float) -> Point2D:
    try:
        return curve_for(spline).point(t)
    except ValueError:
        return _polygon_point(list(spline_polygon(spline)), t)


def _polygon_point(points: List[Point2D], t: float) -> Point2D:
    """Point at fraction *t* of a piecewise-linear path's length."""
    if not points:
        raise ValueError("Spline has neither control points nor fit points")
    if len(points) == 1:
        return tuple(points[0])
    seg = [distance(points[i], points[i + 1]) for i in range(len(points) - 1)]
    total = sum(seg)
    if total < EPS:
        return tuple(points[0])
    target = min(max(t, 0.0), 1.0) * total
    for i, length in enumerate(seg):
        if target <= length or i == len(seg) - 1:
            local = target / length if length > EPS else 0.0
            return _lerp(points[i], points[i + 1], min(local, 1.0))
        target -= length
    return tuple(points[-1])


# ─── Polyline helpers ────────────────────────────────────────────────────────

def _polyline_locate(polyline: Polyline, t: float) -> Tuple[Shape, float]:
    """Sub-shape and local parameter at length fraction *t*."""
    if not polyline.shapes:
        raise ValueError("Polyline has no segments")
    lengths = [shape_length(s) for s in polyline.shapes]
    total = sum(lengths)
    if total < EPS:
        return polyline.shapes[0], 0.0
    target = min(max(t, 0.0), 1.0) * total
    for shape, length in zip(polyline.shapes, lengths):
        if target <= length:
            return shape, (target / length if length > EPS else 0.0)
        target -= length
    return polyline.shapes[-1], 1.0


# ─── Endpoints and key points ────────────────────────────────────────────────

def start_point(shape: Shape) -> Point2D:
    return point_at(shape, 0.0)


def end_point(shape: Shape) -> Point2D:
    return point_at(shape, 1.0)


def key_points(shape: Shape) -> List[Point2D]:
    """Small point set used for connectivity.

    Circles and full ellipses contribute their four quadrant points
    (right, top, left, bottom); everything else its start and end.
    Centers are never key points.
    """
    if isinstance(shape, Circle):
        cx, cy = shape.center
        r = shape.radius
        return [(cx + r, cy), (cx, cy + r), (cx - r, cy), (cx, cy - r)]
    if isinstance(shape, Ellipse) and is_full_ellipse(shape):
        return [ellipse_point(shape, k * math.pi / 2.0) for k in range(4)]
    if isinstance(shape, (Line, Arc, Polyline, Spline, Ellipse)):
        return [start_point(shape), end_point(shape)]
    raise _unknown(shape)


# ─── Parametric evaluation ───────────────────────────────────────────────────

def point_at(shape: Shape, t: float) -> Point2D:
    if isinstance(shape, Line):
        return _lerp(shape.start, shape.end, t)
    if isinstance(shape, Arc):
        return _arc_point(shape, arc_angle_at(shape, t))
    if isinstance(shape, Circle):
        angle = t * TWO_PI
        return (
            shape.center[0] + shape.radius * math.cos(angle),
            shape.center[1] + shape.radius * math.sin(angle),
        )
    if isinstance(shape, Polyline):
        sub, local = _polyline_locate(shape, t)
        return point_at(sub, local)
    if isinstance(shape, Spline):
        return _spline_point(shape, t)
    if isinstance(shape, Ellipse):
        return ellipse_point(shape, _ellipse_param_at(shape, t))
    raise _unknown(shape)


def tangent_at(shape: Shape, t: float) -> Vec2:
    """Unit tangent in the direction of travel; ``(0, 0)`` when degenerate."""
    if isinstance(shape, Line):
        return _unit(shape.end[0] - shape.start[0], shape.end[1] - shape.start[1])
    if isinstance(shape, Arc):
        if shape.radius < EPS:
            return (0.0, 0.0)
        angle = arc_angle_at(shape, t)
        if shape.clockwise:
            return (math.sin(angle), -math.cos(angle))
        return (-math.sin(angle), math.cos(angle))
    if isinstance(shape, Circle):
        if shape.radius < EPS:
            return (0.0, 0.0)
        angle = t * TWO_PI
        return (-math.sin(angle), math.cos(angle))
    if isinstance(shape, Polyline):
        sub, local = _polyline_locate(shape, t)
        return tangent_at(sub, local)
    if isinstance(shape, Spline):
        t0 = max(0.0, t - _DIFF_STEP)
        t1 = min(1.0, t + _DIFF_STEP)
        p0, p1 = _spline_point(shape, t0), _spline_point(shape, t1)
        return _unit(p1[0] - p0[0], p1[1] - p0[1])
    if isinstance(shape, Ellipse):
        dx, dy = _ellipse_derivative(shape, _ellipse_param_at(shape, t))
        return _unit(dx, dy)
    raise _unknown(shape)


def shape_length(shape: Shape) -> float:
    if isinstance(shape, Line):
        return distance(shape.start, shape.end)
    if isinstance(shape, Arc):
        return abs(shape.radius) * arc_sweep(shape)
    if isinstance(shape, Circle):
        return TWO_PI * abs(shape.radius)
    if isinstance(shape, Polyline):
        return sum(shape_length(s) for s in shape.shapes)
    if isinstance(shape, (Spline, Ellipse)):
        pts = np.asarray(tessellate(shape, 0.01), dtype=float)
        if len(pts) < 2:
            return 0.0
        return float(np.sum(np.hypot(*np.diff(pts, axis=0).T)))
    raise _unknown(shape)


# ─── Tessellation ────────────────────────────────────────────────────────────

def _segments_for_sweep(radius: float, sweep: float, tolerance: float, minimum: int) -> int:
    if radius <= tolerance:
        return minimum
    step = 2.0 * math.acos(max(-1.0, 1.0 - tolerance / radius))
    if step <= EPS:
        return max(minimum, 512)
    return max(minimum, min(4096, int(math.ceil(sweep / step))))


def tessellate(shape: Shape, tolerance: float = 0.05) -> List[Point2D]:
    """Piecewise-linear approximation from start to end.

    *tolerance* bounds the chord deviation for circular geometry; closed
    shapes repeat their first point at the end.
    """
    if isinstance(shape, Line):
        return [tuple(shape.start), tuple(shape.end)]
    if isinstance(shape, Arc):
        sweep = arc_sweep(shape)
        n = _segments_for_sweep(shape.radius, sweep, tolerance, 4)
        return [point_at(shape, i / n) for i in range(n + 1)]
    if isinstance(shape, Circle):
        n = _segments_for_sweep(shape.radius, TWO_PI, tolerance, 16)
        return [point_at(shape, i / n) for i in range(n + 1)]
    if isinstance(shape, Polyline):
        points: List[Point2D] = []
        for sub in shape.shapes:
            sub_points = tessellate(sub, tolerance)
            if points and sub_points and distance(points[-1], sub_points[0]) < EPS:
                sub_points = sub_points[1:]
            points.extend(sub_points)
        return points
    if isinstance(shape, Spline):
        try:
            curve = curve_for(shape)
        except ValueError:
            return [tuple(p) for p in spline_polygon(shape)]
        n = max(64, 8 * len(shape.control_points))
        return [(float(x), float(y)) for x, y in curve.evaluate(np.linspace(0.0, 1.0, n + 1))]
    if isinstance(shape, Ellipse):
        a, _, _ = ellipse_frame(shape)
        start, end = ellipse_param_range(shape)
        n = _segments_for_sweep(a, end - start, tolerance, 16)
        return [ellipse_point(shape, start + (end - start) * i / n) for i in range(n + 1)]
    raise _unknown(shape)


# ─── Reversal ────────────────────────────────────────────────────────────────

def reverse_shape(shape: Shape) -> Shape:
    """New shape covering the same geometry in the opposite direction."""
    if isinstance(shape, Line):
        return Line(shape.end, shape.start, id=shape.id, layer=shape.layer)
    if isinstance(shape, Arc):
        return Arc(
            shape.center, shape.radius, shape.end_angle, shape.start_angle,
            clockwise=not shape.clockwise, id=shape.id, layer=shape.layer,
        )
    if isinstance(shape, Circle):
        return Arc(
            shape.center, shape.radius, 0.0, 0.0,
            clockwise=True, id=shape.id, layer=shape.layer,
        )
    if isinstance(shape, Polyline):
        return Polyline(
            tuple(reverse_shape(s) for s in reversed(shape.shapes)),
            closed=shape.closed, id=shape.id, layer=shape.layer,
        )
    if isinstance(shape, Spline):
        knots: Tuple[float, ...] = ()
        if shape.knots:
            lo, hi = shape.knots[0], shape.knots[-1]
            knots = tuple(lo + hi - k for k in reversed(shape.knots))
        return Spline(
            control_points=tuple(reversed(shape.control_points)),
            degree=shape.degree,
            knots=knots,
            weights=tuple(reversed(shape.weights)),
            fit_points=tuple(reversed(shape.fit_points)),
            closed=shape.closed,
            id=shape.id,
            layer=shape.layer,
        )
    if isinstance(shape, Ellipse):
        points = list(reversed(tessellate(shape, 0.01)))
        lines = tuple(
            Line(points[i], points[i + 1], layer=shape.layer)
            for i in range(len(points) - 1)
        )
        return Polyline(lines, closed=is_full_ellipse(shape), id=shape.id, layer=shape.layer)
    raise _unknown(shape)


# ─── Bounding boxes ──────────────────────────────────────────────────────────

def _angle_in_sweep(arc: Arc, angle: float) -> bool:
    sweep = arc_sweep(arc)
    if arc.clockwise:
        delta = (arc.start_angle - angle) % TWO_PI
    else:
        delta = (angle - arc.start_angle) % TWO_PI
    return delta <= sweep + EPS


def _bbox_of(points: Sequence[Point2D]) -> BoundingBox:
    if not points:
        raise ValueError("Cannot bound an empty point set")
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    return BoundingBox(min(xs), min(ys), max(xs), max(ys))


def shape_bounding_box(shape: Shape) -> BoundingBox:
    if isinstance(shape, Line):
        return _bbox_of([shape.start, shape.end])
    if isinstance(shape, Circle):
        cx, cy = shape.center
        r = abs(shape.radius)
        return BoundingBox(cx - r, cy - r, cx + r, cy + r)
    if isinstance(shape, Arc):
        points = [start_point(shape), end_point(shape)]
        for k in range(4):
            angle = k * math.pi / 2.0
            if _angle_in_sweep(shape, angle):
                points.append(_arc_point(shape, angle))
        return _bbox_of(points)
    if isinstance(shape, Polyline):
        return bounding_box_union(shape_bounding_box(s) for s in shape.shapes)
    if isinstance(shape, (Spline, Ellipse)):
        return _bbox_of(tessellate(shape, 0.01))
    raise _unknown(shape)


def bounding_box_union(boxes) -> BoundingBox:
    boxes = list(boxes)
    if not boxes:
        raise ValueError("Cannot bound an empty shape set")
    return BoundingBox(
        min(b.min_x for b in boxes),
        min(b.min_y for b in boxes),
        max(b.max_x for b in boxes),
        max(b.max_y for b in boxes),
    )


# ─── Polylines from bulge vertices ───────────────────────────────────────────

def bulge_to_arc(p1: Point2D, p2: Point2D, bulge: float) -> Arc:
    """Arc from *p1* to *p2* for a DXF bulge (positive = counterclockwise)."""
    chord = distance(p1, p2)
    theta = 4.0 * math.atan(abs(bulge))
    radius = chord / (2.0 * math.sin(theta / 2.0))
    mx, my = (p1[0] + p2[0]) / 2.0, (p1[1] + p2[1]) / 2.0
    nx, ny = -(p2[1] - p1[1]) / chord, (p2[0] - p1[0]) / chord
    h = math.sqrt(max(radius * radius - (chord / 2.0) ** 2, 0.0))
    side = math.copysign(1.0, bulge)
    if theta > math.pi:
        side = -side
    cx, cy = mx + nx * h * side, my + ny * h * side
    return Arc(
        center=(cx, cy),
        radius=radius,
        start_angle=math.atan2(p1[1] - cy, p1[0] - cx),
        end_angle=math.atan2(p2[1] - cy, p2[0] - cx),
        clockwise=bulge < 0,
    )


def polyline_from_vertices(
    vertices: Sequence[Sequence[float]],
    closed: bool = False,
    id: Optional[str] = None,
    layer: Optional[str] = None,
) -> Polyline:
    """Build a Polyline from ``(x, y)`` or ``(x, y, bulge)`` vertices.

    The bulge of vertex *i* shapes the segment to vertex *i + 1*.
    Zero-length segments are dropped; if that leaves nothing, a single
    zero-length Line keeps the polyline at its first vertex.
    """
    pts = [(float(v[0]), float(v[1])) for v in vertices]
    bulges = [float(v[2]) if len(v) > 2 else 0.0 for v in vertices]
    count = len(pts) if closed else len(pts) - 1
    shapes: List[Shape] = []
    for i in range(max(count, 0)):
        p1, p2 = pts[i], pts[(i + 1) % len(pts)]
        if distance(p1, p2) < EPS:
            continue
        if abs(bulges[i]) < EPS:
            shapes.append(Line(p1, p2, layer=layer))
        else:
            arc = bulge_to_arc(p1, p2, bulges[i])
            shapes.append(Arc(
                arc.center, arc.radius, arc.start_angle, arc.end_angle,
                clockwise=arc.clockwise, layer=layer,
            ))
    if not shapes and pts:
        shapes.append(Line(pts[0], pts[0], layer=layer))
    return Polyline(tuple(shapes), closed=closed, id=id, layer=layer)


# ─── Interval sampling ───────────────────────────────────────────────────────

def is_degenerate(shape: Shape) -> bool:
    return shape_length(shape) < EPS


class IntervalSamples:
    """Lazy, restartable samples every *spacing* units along *shapes*.

    Distance carries over between consecutive shapes, so the spacing is
    uniform along the whole sequence.  Each ``iter()`` starts afresh.
    """

    def __init__(self, shapes: Sequence[Shape], spacing: float):
        if not spacing > 0:
            raise ValueError(f"spacing must be > 0, got {spacing!r}")
        for shape in shapes:
            if not is_shape(shape):
                raise _unknown(shape)
        self._shapes = tuple(shapes)
        self.spacing = float(spacing)

    def __iter__(self) -> Iterator[SamplePoint]:
        carry = 0.0
        for shape in self._shapes:
            length = shape_length(shape)
            if length < EPS:
                yield SamplePoint(start_point(shape), (0.0, 0.0))
                continue
            d = carry
            while d <= length + EPS:
                t = min(d / length, 1.0)
                yield SamplePoint(point_at(shape, t), tangent_at(shape, t))
                d += self.spacing
            carry = d - length

    def __repr__(self) -> str:
        return f"IntervalSamples(shapes={len(self._shapes)}, spacing={self.spacing})"


def sample_at_intervals(shapes: Sequence[Shape], spacing: float) -> IntervalSamples:
    return IntervalSamples(shapes, spacing)
