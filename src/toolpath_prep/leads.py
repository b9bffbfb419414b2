"""
Lead-in / lead-out synthesis with collision avoidance.

A lead leaves (or reaches) the chain's connection point along a base
direction taken from the local geometry there: the bisector of the normals
of the incoming and outgoing tangents, on whichever side local probes find
free.  When a part region is available every candidate is sampled and its
solid-material hits are counted.  Candidates are tried across rotation
offsets first, then across shorter lengths; the first clean one wins, and
otherwise the least-violating one is returned with a warning.
"""

from __future__ import annotations

import logging
import math
from typing import List, Mapping, Optional, Sequence, Tuple

import shapely

from toolpath_prep.chains import is_chain_closed, reverse_chain
from toolpath_prep.containment import PartRegion, chain_bounding_box, repaired_polygon
from toolpath_prep.contracts import (
    Chain,
    CutDirection,
    Lead,
    LeadConfig,
    LeadResult,
    LeadSearchConfig,
    LeadType,
    OffsetChain,
    Part,
    Point2D,
    Vec2,
    Winding,
)
from toolpath_prep.shapes import EPS, distance, end_point, start_point, tangent_at
from toolpath_prep.winding import detect_winding

logger = logging.getLogger(__name__)

_MIN_LEAD_LENGTH = 0.5


# ─── Vector helpers ──────────────────────────────────────────────────────────

def _unit(v: Vec2) -> Vec2:
    n = math.hypot(v[0], v[1])
    if n < EPS:
        return (0.0, 0.0)
    return (v[0] / n, v[1] / n)


def _rotate(v: Vec2, degrees: float) -> Vec2:
    a = math.radians(degrees)
    c, s = math.cos(a), math.sin(a)
    return (v[0] * c - v[1] * s, v[0] * s + v[1] * c)


def _left(v: Vec2) -> Vec2:
    return (-v[1], v[0])


def rotation_offsets(step_deg: float, max_deg: float) -> List[float]:
    """0, +step, -step, +2*step, ... up to +/- max_deg."""
    offsets = [0.0]
    k = 1
    while k * step_deg <= max_deg + 1e-9:
        offsets.extend([k * step_deg, -k * step_deg])
        k += 1
    return offsets


# ─── Lead geometry ───────────────────────────────────────────────────────────

def line_lead_points(
    point: Point2D, direction: Vec2, length: float, spacing: float, lead_in: bool,
) -> List[Point2D]:
    n = max(1, int(math.ceil(length / spacing)))
    far = (point[0] + direction[0] * length, point[1] + direction[1] * length)
    if lead_in:
        a, b = far, point
    else:
        a, b = point, far
    points = [(a[0] + (b[0] - a[0]) * i / n, a[1] + (b[1] - a[1]) * i / n) for i in range(n)]
    points.append(tuple(b))
    return points


def arc_lead_points(
    point: Point2D,
    direction: Vec2,
    tangent: Vec2,
    length: float,
    spacing: float,
    lead_in: bool,
) -> List[Point2D]:
    """Quarter arc of arc length *length* touching *point*.

    The center sits at ``point + direction * radius``; the rotation sense
    follows *tangent* so the arc blends into the cut.
    """
    sweep = math.pi / 2.0
    radius = length / sweep
    cx, cy = point[0] + direction[0] * radius, point[1] + direction[1] * radius
    at_point = math.atan2(point[1] - cy, point[0] - cx)
    # counterclockwise tangent at the connection point
    ccw = (direction[1], -direction[0])
    sense = 1.0 if ccw[0] * tangent[0] + ccw[1] * tangent[1] >= 0 else -1.0
    n = max(2, int(math.ceil(length / spacing)))
    if lead_in:
        angles = [at_point - sense * sweep * (1.0 - i / n) for i in range(n + 1)]
    else:
        angles = [at_point + sense * sweep * i / n for i in range(n + 1)]
    points = [(cx + radius * math.cos(a), cy + radius * math.sin(a)) for a in angles]
    # exact connection point
    if lead_in:
        points[-1] = tuple(point)
    else:
        points[0] = tuple(point)
    return points


def build_lead_points(
    lead_type: LeadType,
    point: Point2D,
    direction: Vec2,
    tangent: Vec2,
    length: float,
    spacing: float,
    lead_in: bool,
) -> List[Point2D]:
    if lead_type is LeadType.LINE:
        return line_lead_points(point, direction, length, spacing, lead_in)
    if lead_type is LeadType.ARC:
        return arc_lead_points(point, direction, tangent, length, spacing, lead_in)
    return []


def lead_violations(
    points: Sequence[Point2D], region: Optional[PartRegion], connection: Point2D, tolerance: float,
) -> int:
    """Number of lead sample points inside solid material."""
    if region is None:
        return 0
    probes = [p for p in points if distance(p, connection) > tolerance]
    return region.count_solid(probes)


# ─── Validation ──────────────────────────────────────────────────────────────

def validate_lead_config(config: LeadConfig, chain: Chain, label: str) -> Tuple[List[str], Optional[str]]:
    """Advisory checks; returns (warnings, severity)."""
    warnings: List[str] = []
    severity: Optional[str] = None
    if config.type is LeadType.NONE:
        if config.length > 0:
            warnings.append(f'{label} type is "none" but length is greater than 0')
            severity = "info"
        return warnings, severity
    if not chain.shapes:
        return warnings, severity

    box = chain_bounding_box(chain)
    size = max(box.width, box.height)
    if config.length > size * 2:
        warnings.append(f"{label} length is very large compared to chain size")
        severity = "warning"
    if 0 < config.length < _MIN_LEAD_LENGTH:
        warnings.append(f"{label} length ({config.length:g}) is very short")
        severity = severity or "info"
    return warnings, severity


# ─── Direction selection ─────────────────────────────────────────────────────

def _connection_tangents(chain: Chain, at_start: bool) -> Tuple[Vec2, Vec2]:
    """(incoming, outgoing) unit tangents at the connection point."""
    first, last = chain.shapes[0], chain.shapes[-1]
    outgoing = tangent_at(first, 0.0)
    incoming = tangent_at(last, 1.0)
    if chain.closed:
        return incoming, outgoing
    if at_start:
        return outgoing, outgoing
    return incoming, incoming


def _free_side_score(point, normal, probe_length, region, polygon) -> int:
    """Solid (or enclosed) hits among three probes along *normal*."""
    score = 0
    for fraction in (0.25, 0.5, 1.0):
        px = point[0] + normal[0] * probe_length * fraction
        py = point[1] + normal[1] * probe_length * fraction
        if region is not None:
            score += int(region.is_solid((px, py)))
        elif polygon is not None:
            score += int(shapely.contains_xy(polygon, px, py))
    return score


def base_direction(
    chain: Chain,
    at_start: bool,
    length: float,
    region: Optional[PartRegion],
    search: LeadSearchConfig,
) -> Tuple[Vec2, Vec2]:
    """(direction into free space, travel tangent) at the connection point."""
    point = start_point(chain.shapes[0]) if at_start else end_point(chain.shapes[-1])
    incoming, outgoing = _connection_tangents(chain, at_start)
    tangent = outgoing if at_start else incoming
    if tangent == (0.0, 0.0):
        tangent = incoming if at_start else outgoing
    if tangent == (0.0, 0.0):
        return (1.0, 0.0), (0.0, 1.0)

    left = _unit((_left(incoming)[0] + _left(outgoing)[0], _left(incoming)[1] + _left(outgoing)[1]))
    if left == (0.0, 0.0):
        left = _left(tangent)
    right = (-left[0], -left[1])

    polygon = None
    if region is None and chain.closed:
        polygon = repaired_polygon(chain)
    probe_length = max(search.tolerance * 2.0, min(length, 1.0))
    left_score = _free_side_score(point, left, probe_length, region, polygon)
    right_score = _free_side_score(point, right, probe_length, region, polygon)
    if right_score < left_score:
        return right, tangent
    return left, tangent


# ─── Entry point ─────────────────────────────────────────────────────────────

def orient_chain(chain: Chain, cut_direction: CutDirection) -> Chain:
    """*chain* traversed in *cut_direction* (unchanged when either is NONE)."""
    if cut_direction is CutDirection.NONE or chain.winding is Winding.NONE:
        return chain
    wanted = (
        Winding.CLOCKWISE if cut_direction is CutDirection.CLOCKWISE else Winding.COUNTERCLOCKWISE
    )
    if chain.winding is wanted:
        return chain
    return reverse_chain(chain)


def _calculate_lead(
    chain: Chain,
    config: LeadConfig,
    lead_in: bool,
    region: Optional[PartRegion],
    search: LeadSearchConfig,
    kind: str,
) -> Lead:
    label = "Lead-in" if lead_in else "Lead-out"
    point = start_point(chain.shapes[0]) if lead_in else end_point(chain.shapes[-1])
    base, tangent = base_direction(chain, lead_in, config.length, region, search)
    if config.flip_side:
        base = (-base[0], -base[1])

    if config.angle is not None:
        directions = [(math.cos(math.radians(config.angle)), math.sin(math.radians(config.angle)))]
    else:
        directions = [
            _rotate(base, offset)
            for offset in rotation_offsets(search.rotation_step_deg, search.max_rotation_deg)
        ]
    factors = search.length_factors if config.fit else (1.0,)

    best: Optional[Tuple[int, List[Point2D]]] = None
    for factor in factors:
        length = config.length * factor
        for direction in directions:
            points = build_lead_points(
                config.type, point, direction, tangent, length, search.sample_spacing, lead_in,
            )
            hits = lead_violations(points, region, point, search.tolerance)
            if hits == 0:
                return Lead(config.type, tuple(points))
            if best is None or hits < best[0]:
                best = (hits, points)
            if region is None:
                break

    hits, points = best
    message = (
        f"{label} for {kind} intersects solid material and cannot be avoided "
        f"({hits} of {len(points)} sample points inside)"
    )
    logger.warning("Chain %s: %s", chain.id, message)
    return Lead(config.type, tuple(points), warnings=(message,))


def calculate_leads(
    chain: Chain,
    lead_in: LeadConfig,
    lead_out: LeadConfig,
    cut_direction: CutDirection = CutDirection.NONE,
    part: Optional[Part] = None,
    chains: Optional[Mapping[str, Chain]] = None,
    offset_chain: Optional[OffsetChain] = None,
    search: Optional[LeadSearchConfig] = None,
    region: Optional[PartRegion] = None,
) -> LeadResult:
    """Lead-in and lead-out for one chain.

    Pass *offset_chain* when kerf compensation is active: its shapes stand in
    for the chain's own.  Collision checking needs either a prebuilt
    *region* or *part* plus the chain arena *chains*.
    """
    search = search or LeadSearchConfig()
    search.validate()
    lead_in.validate()
    lead_out.validate()

    shapes = offset_chain.shapes if offset_chain is not None else chain.shapes
    if not shapes:
        raise ValueError(f"Chain {chain.id!r} has no shapes")
    if offset_chain is not None:
        closed = offset_chain.closed
    elif chain.closed is not None:
        closed = chain.closed
    else:
        closed = is_chain_closed(shapes, search.tolerance)
    working = Chain(
        id=chain.id,
        shapes=tuple(shapes),
        closed=closed,
        winding=detect_winding(shapes, search.tolerance),
    )

    warnings: List[str] = []
    severity: Optional[str] = None
    for config, label in ((lead_in, "Lead-in"), (lead_out, "Lead-out")):
        found, level = validate_lead_config(config, working, label)
        warnings.extend(found)
        if level == "warning" or (level == "info" and severity is None):
            severity = level
    if working.closed and cut_direction is CutDirection.NONE:
        warnings.append('Closed chain detected but cut direction is "none"')
        severity = severity or "info"

    working = orient_chain(working, cut_direction)

    if region is None and part is not None and part.closed and chains is not None:
        region = PartRegion(part, chains)
    if region is not None and region.is_empty:
        region = None
    kind = "shell"
    if part is not None and part.shell.chain_id != chain.id:
        kind = "hole"

    results = []
    for config, is_in in ((lead_in, True), (lead_out, False)):
        if config.type is LeadType.NONE or config.length <= 0:
            results.append(Lead(LeadType.NONE))
            continue
        lead = _calculate_lead(working, config, is_in, region, search, kind)
        if lead.warnings:
            warnings.extend(lead.warnings)
            severity = "warning"
        results.append(lead)

    return LeadResult(
        lead_in=results[0],
        lead_out=results[1],
        warnings=tuple(warnings),
        severity=severity,
    )
