"""
Chain offsetting for kerf compensation.

Each primitive is offset analytically (lines translate along their normal,
arcs and circles change radius); splines and ellipses are offset sample by
sample into line segments.  Joints between consecutive offsets are then
repaired in order:

1. endpoints already within ``joint_tolerance`` are left alone;
2. otherwise both supports are intersected and the two shapes are trimmed
   or extended (by at most ``max_extension``) to the intersection nearest
   the source vertex;
3. gaps within ``snap_threshold`` are closed with a short bridge;
4. gaps whose ends sit on a circle of the offset radius around the source
   vertex get a round join;
5. anything still shorter than ``max_extension`` is bridged with a line.

A shape that collapses while trimming is dropped and the joints are redone.
A closed side that ends up enclosing no area, or an inner side that escapes
the source outline, is discarded with a warning.
A joint that cannot be repaired marks that side as failed; the engine
never raises for geometric reasons.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from shapely.geometry import Point, Polygon

from toolpath_prep.chains import is_chain_closed, normalize_chain
from toolpath_prep.containment import repaired_polygon
from toolpath_prep.contracts import (
    Arc,
    Chain,
    ChainOffsetResult,
    Circle,
    Ellipse,
    Line,
    OffsetChain,
    OffsetConfig,
    OffsetSide,
    Point2D,
    Polyline,
    Shape,
    Spline,
    Winding,
)
from toolpath_prep.shapes import (
    EPS,
    arc_sweep,
    distance,
    end_point,
    point_at,
    shape_length,
    start_point,
    tangent_at,
)
from toolpath_prep.winding import detect_winding, opposite

logger = logging.getLogger(__name__)


# ─── Primitive offsets ───────────────────────────────────────────────────────

def _left_normal(tangent: Tuple[float, float]) -> Tuple[float, float]:
    return (-tangent[1], tangent[0])


def _sampled_offset(shape: Shape, signed: float) -> List[Tuple[Shape, Point2D]]:
    n = max(32, min(2048, int(math.ceil(shape_length(shape) / 0.5))))
    offset_points: List[Point2D] = []
    source_points: List[Point2D] = []
    for i in range(n + 1):
        t = i / n
        tangent = tangent_at(shape, t)
        if tangent == (0.0, 0.0):
            continue
        p = point_at(shape, t)
        nx, ny = _left_normal(tangent)
        q = (p[0] + nx * signed, p[1] + ny * signed)
        if offset_points and distance(offset_points[-1], q) < EPS:
            continue
        offset_points.append(q)
        source_points.append(p)
    return [
        (Line(offset_points[i], offset_points[i + 1], layer=getattr(shape, "layer", None)),
         source_points[i + 1])
        for i in range(len(offset_points) - 1)
    ]


def _offset_with_vertices(shape: Shape, signed: float) -> List[Tuple[Shape, Point2D]]:
    """Offset pieces, each paired with the source point under its end."""
    if isinstance(shape, Line):
        tangent = tangent_at(shape, 0.0)
        if tangent == (0.0, 0.0):
            return []
        nx, ny = _left_normal(tangent)
        dx, dy = nx * signed, ny * signed
        moved = Line(
            (shape.start[0] + dx, shape.start[1] + dy),
            (shape.end[0] + dx, shape.end[1] + dy),
            layer=shape.layer,
        )
        return [(moved, tuple(shape.end))]
    if isinstance(shape, Arc):
        radius = shape.radius + signed if shape.clockwise else shape.radius - signed
        if radius <= EPS:
            return []
        moved = Arc(
            shape.center, radius, shape.start_angle, shape.end_angle,
            clockwise=shape.clockwise, layer=shape.layer,
        )
        return [(moved, end_point(shape))]
    if isinstance(shape, Circle):
        radius = shape.radius - signed
        if radius <= EPS:
            return []
        return [(Circle(shape.center, radius, layer=shape.layer), end_point(shape))]
    if isinstance(shape, Polyline):
        pieces: List[Tuple[Shape, Point2D]] = []
        for sub in shape.shapes:
            pieces.extend(_offset_with_vertices(sub, signed))
        return pieces
    if isinstance(shape, (Spline, Ellipse)):
        return _sampled_offset(shape, signed)
    raise TypeError(f"Unrecognized shape type: {type(shape).__name__}")


def offset_shape(shape: Shape, signed: float) -> List[Shape]:
    """Offset *shape* by *signed* distance; positive is left of travel.

    Returns an empty list when the offset collapses.
    """
    return [piece for piece, _ in _offset_with_vertices(shape, signed)]


# ─── Supports, trimming and intersections ────────────────────────────────────

def _support(shape: Shape):
    """('line', point, direction) or ('circle', center, radius)."""
    if isinstance(shape, Line):
        return ("line", shape.start, (shape.end[0] - shape.start[0], shape.end[1] - shape.start[1]))
    if isinstance(shape, (Arc, Circle)):
        return ("circle", shape.center, shape.radius)
    raise TypeError(f"No offset support for {type(shape).__name__}")


def _line_line(p, r, q, s) -> List[Point2D]:
    denom = r[0] * s[1] - r[1] * s[0]
    if abs(denom) < EPS:
        return []
    t = ((q[0] - p[0]) * s[1] - (q[1] - p[1]) * s[0]) / denom
    return [(p[0] + t * r[0], p[1] + t * r[1])]


def _line_circle(p, r, c, radius) -> List[Point2D]:
    fx, fy = p[0] - c[0], p[1] - c[1]
    a = r[0] * r[0] + r[1] * r[1]
    if a < EPS:
        return []
    b = 2.0 * (fx * r[0] + fy * r[1])
    k = fx * fx + fy * fy - radius * radius
    disc = b * b - 4.0 * a * k
    if disc < -EPS:
        return []
    root = math.sqrt(max(disc, 0.0))
    ts = {(-b - root) / (2.0 * a), (-b + root) / (2.0 * a)}
    return [(p[0] + t * r[0], p[1] + t * r[1]) for t in ts]


def _circle_circle(c1, r1, c2, r2) -> List[Point2D]:
    d = distance(c1, c2)
    if d < EPS or d > r1 + r2 + EPS or d < abs(r1 - r2) - EPS:
        return []
    a = (r1 * r1 - r2 * r2 + d * d) / (2.0 * d)
    h = math.sqrt(max(r1 * r1 - a * a, 0.0))
    mx = c1[0] + a * (c2[0] - c1[0]) / d
    my = c1[1] + a * (c2[1] - c1[1]) / d
    ox, oy = -(c2[1] - c1[1]) * h / d, (c2[0] - c1[0]) * h / d
    if h < EPS:
        return [(mx, my)]
    return [(mx + ox, my + oy), (mx - ox, my - oy)]


def support_intersections(a: Shape, b: Shape) -> List[Point2D]:
    sa, sb = _support(a), _support(b)
    if sa[0] == "line" and sb[0] == "line":
        return _line_line(sa[1], sa[2], sb[1], sb[2])
    if sa[0] == "line":
        return _line_circle(sa[1], sa[2], sb[1], sb[2])
    if sb[0] == "line":
        return _line_circle(sb[1], sb[2], sa[1], sa[2])
    return _circle_circle(sa[1], sa[2], sb[1], sb[2])


def _as_arc(shape: Shape) -> Shape:
    if isinstance(shape, Circle):
        return Arc(shape.center, shape.radius, 0.0, 0.0, layer=shape.layer)
    return shape


def _with_end(shape: Shape, point: Point2D) -> Shape:
    shape = _as_arc(shape)
    if isinstance(shape, Line):
        return Line(shape.start, point, layer=shape.layer)
    if isinstance(shape, Arc):
        angle = math.atan2(point[1] - shape.center[1], point[0] - shape.center[0])
        return Arc(shape.center, shape.radius, shape.start_angle, angle,
                   clockwise=shape.clockwise, layer=shape.layer)
    raise TypeError(f"Cannot trim {type(shape).__name__}")


def _with_start(shape: Shape, point: Point2D) -> Shape:
    shape = _as_arc(shape)
    if isinstance(shape, Line):
        return Line(point, shape.end, layer=shape.layer)
    if isinstance(shape, Arc):
        angle = math.atan2(point[1] - shape.center[1], point[0] - shape.center[0])
        return Arc(shape.center, shape.radius, angle, shape.end_angle,
                   clockwise=shape.clockwise, layer=shape.layer)
    raise TypeError(f"Cannot trim {type(shape).__name__}")


def _collapsed(old: Shape, new: Shape, max_extension: float) -> bool:
    if isinstance(new, Line):
        ox, oy = old.end[0] - old.start[0], old.end[1] - old.start[1]
        nx, ny = new.end[0] - new.start[0], new.end[1] - new.start[1]
        return ox * nx + oy * ny <= EPS
    if isinstance(new, Arc):
        if distance(start_point(new), end_point(new)) < EPS and shape_length(old) < 2 * math.pi * old.radius - EPS:
            return True
        allowance = 2.0 * max_extension / max(new.radius, EPS) + 1e-6
        return arc_sweep(new) > arc_sweep(_as_arc(old)) + allowance
    return False


def _extension_ok(shape: Shape, point: Point2D, at_end: bool, max_extension: float) -> bool:
    p = end_point(shape) if at_end else start_point(shape)
    tx, ty = tangent_at(shape, 1.0 if at_end else 0.0)
    outward = (point[0] - p[0]) * tx + (point[1] - p[1]) * ty
    if not at_end:
        outward = -outward
    if outward > EPS:
        return distance(point, p) <= max_extension + EPS
    return True


# ─── Joint repair ────────────────────────────────────────────────────────────

@dataclass
class _Piece:
    shape: Shape
    raw: Shape
    vertex: Point2D  # source point under the piece end


@dataclass
class _Joint:
    a: Shape
    b: Shape
    bridge: Optional[Shape] = None
    error: Optional[str] = None
    collapsed: Optional[str] = None  # "a" or "b"


def _round_join(pa: Point2D, pb: Point2D, vertex: Point2D, radius: float, tolerance: float) -> Optional[Arc]:
    if abs(distance(pa, vertex) - radius) > tolerance or abs(distance(pb, vertex) - radius) > tolerance:
        return None
    ua = (pa[0] - vertex[0], pa[1] - vertex[1])
    ub = (pb[0] - vertex[0], pb[1] - vertex[1])
    cross = ua[0] * ub[1] - ua[1] * ub[0]
    return Arc(
        center=vertex,
        radius=radius,
        start_angle=math.atan2(ua[1], ua[0]),
        end_angle=math.atan2(ub[1], ub[0]),
        clockwise=cross < 0,
    )


def _join(a: Shape, b: Shape, vertex: Point2D, radius: float, config: OffsetConfig) -> _Joint:
    pa, pb = end_point(a), start_point(b)
    gap = distance(pa, pb)
    if gap <= config.joint_tolerance:
        return _Joint(a, b)

    candidates = [
        x for x in support_intersections(a, b)
        if _extension_ok(a, x, True, config.max_extension)
        and _extension_ok(b, x, False, config.max_extension)
    ]
    if candidates:
        x = min(candidates, key=lambda c: distance(c, vertex))
        new_a, new_b = _with_end(a, x), _with_start(b, x)
        if _collapsed(a, new_a, config.max_extension):
            return _Joint(a, b, collapsed="a")
        if _collapsed(b, new_b, config.max_extension):
            return _Joint(a, b, collapsed="b")
        return _Joint(new_a, new_b)

    if gap <= config.snap_threshold:
        return _Joint(a, b, bridge=Line(pa, pb))
    rounded = _round_join(pa, pb, vertex, radius, max(config.joint_tolerance, 1e-6 * radius))
    if rounded is not None:
        return _Joint(a, b, bridge=rounded)
    if gap <= config.max_extension:
        return _Joint(a, b, bridge=Line(pa, pb))
    return _Joint(a, b, error=f"gap {gap:.4f} exceeds max extension {config.max_extension}")


def _join_all(
    pieces: Sequence[_Piece], closed: bool, radius: float, config: OffsetConfig,
) -> Union[int, Tuple[List[Shape], List[str]]]:
    """Repair every joint; returns a collapsed piece index or (shapes, errors)."""
    current = [p.shape for p in pieces]
    bridges = {}
    errors: List[str] = []
    n = len(current)
    count = n if closed else n - 1
    for i in range(count):
        j = (i + 1) % n
        joint = _join(current[i], current[j], pieces[i].vertex, radius, config)
        if joint.collapsed == "a":
            return i
        if joint.collapsed == "b":
            return j
        current[i], current[j] = joint.a, joint.b
        if joint.bridge is not None:
            bridges[i] = joint.bridge
        if joint.error:
            errors.append(f"joint {i}: {joint.error}")

    shapes: List[Shape] = []
    for i, shape in enumerate(current):
        shapes.append(shape)
        if i in bridges:
            shapes.append(bridges[i])
    return shapes, errors


@dataclass
class _SideOutcome:
    shapes: List[Shape]
    errors: List[str]
    warnings: List[str]
    first_raw: Optional[Shape]
    first_vertex: Optional[Point2D]


def _offset_side(
    segments: Sequence[Shape], signed: float, closed: bool, config: OffsetConfig,
) -> _SideOutcome:
    warnings: List[str] = []
    pieces: List[_Piece] = []
    for index, segment in enumerate(segments):
        offsets = _offset_with_vertices(segment, signed)
        if not offsets:
            warnings.append(f"segment {index} collapses at offset {signed:+g}")
            continue
        pieces.extend(_Piece(shape, shape, vertex) for shape, vertex in offsets)

    first_raw = pieces[0].raw if pieces else None
    first_vertex = pieces[0].vertex if pieces else None
    while pieces:
        outcome = _join_all(pieces, closed, abs(signed), config)
        if isinstance(outcome, int):
            warnings.append(f"removed collapsed offset segment at joint {outcome}")
            del pieces[outcome]
            continue
        shapes, errors = outcome
        return _SideOutcome(shapes, errors, warnings, first_raw, first_vertex)
    return _SideOutcome([], [], warnings, first_raw, first_vertex)


# ─── Side classification ─────────────────────────────────────────────────────

def _left_of_travel(raw: Shape, vertex: Point2D) -> bool:
    tx, ty = tangent_at(raw, 1.0)
    q = end_point(raw)
    return tx * (q[1] - vertex[1]) - ty * (q[0] - vertex[0]) > 0


def _closed_side(outcome: _SideOutcome, winding: Winding, chain: Chain, config: OffsetConfig) -> OffsetSide:
    left = _left_of_travel(outcome.first_raw, outcome.first_vertex)
    if winding is Winding.COUNTERCLOCKWISE:
        return OffsetSide.INNER if left else OffsetSide.OUTER
    if winding is Winding.CLOCKWISE:
        return OffsetSide.OUTER if left else OffsetSide.INNER
    polygon = repaired_polygon(chain, config.tessellation_tolerance)
    probe = point_at(outcome.first_raw, 0.5)
    if polygon is not None and polygon.contains(Point(probe)):
        return OffsetSide.INNER
    return OffsetSide.OUTER


def _closed_offset_problem(
    shapes: Sequence[Shape],
    side: OffsetSide,
    source: Optional[Polygon],
    winding: Winding,
    config: OffsetConfig,
) -> Optional[str]:
    """Why a closed offset is unusable, or ``None`` when it is fine."""
    if winding is not Winding.NONE and detect_winding(shapes, config.chain_tolerance) is opposite(winding):
        return "runs against the source winding"
    polygon = repaired_polygon(Chain("offset", tuple(shapes)), config.tessellation_tolerance)
    if polygon is None:
        return "encloses no area"
    if side is OffsetSide.INNER and source is not None:
        slack = config.tessellation_tolerance + config.joint_tolerance
        if not source.buffer(slack).contains(polygon):
            return "leaves the source outline"
    return None


def _flatten(shapes: Sequence[Shape]) -> List[Shape]:
    flat: List[Shape] = []
    for shape in shapes:
        if isinstance(shape, Polyline):
            flat.extend(_flatten(shape.shapes))
        else:
            flat.append(shape)
    if len(flat) > 1:
        flat = [_as_arc(s) for s in flat]
    return flat


def _topology_closed(chain: Chain, tolerance: float) -> bool:
    if len(chain.shapes) == 1 and isinstance(chain.shapes[0], Polyline):
        return bool(chain.shapes[0].closed)
    if chain.closed is not None:
        return chain.closed
    return is_chain_closed(chain.shapes, tolerance)


# ─── Entry point ─────────────────────────────────────────────────────────────

def offset_chain(
    chain: Chain,
    offset_distance: float,
    config: Optional[OffsetConfig] = None,
) -> ChainOffsetResult:
    """Offset *chain* by ``|offset_distance|`` on both sides.

    Closed chains get ``inner``/``outer``; open chains ``left``/``right``.
    Use ``ChainOffsetResult.preferred(kerf)`` to pick the side a signed
    kerf selects.
    """
    config = config or OffsetConfig()
    config.validate()
    if not chain.shapes:
        raise ValueError(f"Chain {chain.id!r} has no shapes")

    magnitude = abs(float(offset_distance))
    closed = _topology_closed(chain, config.chain_tolerance)
    if magnitude < EPS:
        return ChainOffsetResult(
            chain_id=chain.id, success=True, closed=closed,
            warnings=("zero offset distance; no offset produced",),
        )

    walk = normalize_chain(chain, config.chain_tolerance)
    winding = walk.winding if closed else Winding.NONE
    segments = _flatten(walk.shapes)
    source = repaired_polygon(walk, config.tessellation_tolerance) if closed else None

    warnings: List[str] = []
    errors: List[str] = []
    sides = {}
    for signed in (magnitude, -magnitude):
        outcome = _offset_side(segments, signed, closed, config)
        warnings.extend(outcome.warnings)
        if not outcome.shapes or outcome.first_raw is None:
            warnings.append(f"offset at {signed:+g} degenerates to nothing")
            continue
        if closed:
            side = _closed_side(outcome, winding, walk, config)
        else:
            left = _left_of_travel(outcome.first_raw, outcome.first_vertex)
            side = OffsetSide.LEFT if left else OffsetSide.RIGHT
        if side in sides:
            flipped = {
                OffsetSide.INNER: OffsetSide.OUTER, OffsetSide.OUTER: OffsetSide.INNER,
                OffsetSide.LEFT: OffsetSide.RIGHT, OffsetSide.RIGHT: OffsetSide.LEFT,
            }[side]
            warnings.append(f"both offsets classified {side.value}; relabelled {flipped.value}")
            side = flipped
        if closed:
            problem = _closed_offset_problem(outcome.shapes, side, source, winding, config)
            if problem is not None:
                warnings.append(f"{side.value} offset at {signed:+g} {problem}; dropped")
                logger.debug("Chain %s: %s offset %s", chain.id, side.value, problem)
                continue
        if outcome.errors:
            errors.extend(f"{side.value} offset {message}" for message in outcome.errors)
            logger.debug("Chain %s: %s offset has %d unrepaired joint(s)",
                         chain.id, side.value, len(outcome.errors))
        sides[side] = OffsetChain(
            id=f"{chain.id}-offset-{side.value}",
            original_chain_id=chain.id,
            side=side,
            closed=closed,
            shapes=tuple(outcome.shapes),
            continuous=not outcome.errors,
        )

    return ChainOffsetResult(
        chain_id=chain.id,
        success=not errors,
        closed=closed,
        inner=sides.get(OffsetSide.INNER),
        outer=sides.get(OffsetSide.OUTER),
        left=sides.get(OffsetSide.LEFT),
        right=sides.get(OffsetSide.RIGHT),
        warnings=tuple(warnings),
        errors=tuple(errors),
    )


def offset_chains(
    chains: Sequence[Chain], offset_distance: float, config: Optional[OffsetConfig] = None,
) -> List[ChainOffsetResult]:
    return [offset_chain(chain, offset_distance, config) for chain in chains]
