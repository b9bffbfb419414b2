"""
Part detection: nest closed chains into shell / hole trees.

Each closed chain gets a bounding box and one interior point.  A chain's
parent is the smallest-area chain whose box contains its box and whose
polygon contains its interior point.  Roots become part shells, everything
below a shell is a hole, and holes inside holes stay children of the inner
hole.  Open chains become zero-hole parts of their own.

Problems with individual chains (duplicates, self-intersections, zero area,
overlapping siblings) are collected as warnings and never stop detection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from shapely.geometry import Point, Polygon

from toolpath_prep.chains import is_chain_closed
from toolpath_prep.containment import (
    chain_bounding_box,
    chain_polygon,
    interior_point,
    repaired_polygon,
)
from toolpath_prep.contracts import (
    BoundingBox,
    Chain,
    DetectionWarning,
    Hole,
    Part,
    PartDetectionConfig,
    PartDetectionResult,
    PartShell,
    Point2D,
)
from toolpath_prep.shapes import EPS

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    order: int
    chain: Chain
    polygon: Polygon
    bbox: BoundingBox
    inside: Point2D


def _same_box(a: BoundingBox, b: BoundingBox, tolerance: float) -> bool:
    return all(abs(x - y) <= tolerance for x, y in zip(a.as_tuple(), b.as_tuple()))


def _is_duplicate(entry: _Entry, polygon: Polygon, bbox: BoundingBox, tolerance: float) -> bool:
    """Same box and the outlines differ by no more than a tolerance-wide band."""
    if not _same_box(entry.bbox, bbox, tolerance):
        return False
    band = tolerance * max(entry.polygon.length, polygon.length)
    return entry.polygon.symmetric_difference(polygon).area <= band


def _chain_is_closed(chain: Chain, tolerance: float) -> bool:
    if chain.closed is not None:
        return chain.closed
    return is_chain_closed(chain.shapes, tolerance)


def _find_parents(entries: Sequence[_Entry], tolerance: float) -> Dict[str, Optional[str]]:
    parents: Dict[str, Optional[str]] = {}
    for entry in entries:
        best: Optional[_Entry] = None
        probe = Point(entry.inside)
        for other in entries:
            if other is entry or other.polygon.area <= entry.polygon.area:
                continue
            if not other.bbox.contains_box(entry.bbox, tolerance):
                continue
            if not other.polygon.contains(probe):
                continue
            if best is None or other.polygon.area < best.polygon.area:
                best = other
        parents[entry.chain.id] = best.chain.id if best is not None else None
    return parents


def _overlapping_sibling(
    entries: Sequence[_Entry], parents: Dict[str, Optional[str]],
) -> Optional[_Entry]:
    """Later member of the first pair of siblings whose areas overlap."""
    by_parent: Dict[Optional[str], List[_Entry]] = {}
    for entry in entries:
        by_parent.setdefault(parents[entry.chain.id], []).append(entry)
    for siblings in by_parent.values():
        for i, first in enumerate(siblings):
            for second in siblings[i + 1:]:
                if first.polygon.intersection(second.polygon).area > EPS:
                    return second
    return None


def _build_holes(parent_id: str, children: Dict[str, List[_Entry]]) -> Tuple[Hole, ...]:
    return tuple(
        Hole(
            chain_id=child.chain.id,
            bounding_box=child.bbox,
            holes=_build_holes(child.chain.id, children),
        )
        for child in children.get(parent_id, [])
    )


def detect_parts(
    chains: Sequence[Chain],
    config: Optional[PartDetectionConfig] = None,
) -> PartDetectionResult:
    """Group *chains* into parts.

    Returns the parts in input order of their shell chain, the warnings
    collected along the way and an id-indexed arena of every input chain.
    """
    config = config or PartDetectionConfig()
    config.validate()
    tol = config.tolerance

    arena: Dict[str, Chain] = {}
    warnings: List[DetectionWarning] = []
    entries: List[_Entry] = []
    open_chains: Dict[str, int] = {}

    for order, chain in enumerate(chains):
        arena[chain.id] = chain
        if not chain.shapes:
            warnings.append(DetectionWarning(
                "degenerate_chain", chain.id, "Chain has no shapes"
            ))
            continue
        if not _chain_is_closed(chain, tol):
            open_chains[chain.id] = order
            continue

        raw = chain_polygon(chain, config.tessellation_tolerance)
        if not raw.is_empty and not raw.is_valid:
            warnings.append(DetectionWarning(
                "self_intersecting", chain.id,
                "Chain boundary intersects itself; using repaired outline",
            ))
        polygon = repaired_polygon(chain, config.tessellation_tolerance)
        if polygon is None:
            warnings.append(DetectionWarning(
                "degenerate_chain", chain.id, "Closed chain encloses no area"
            ))
            continue

        bbox = chain_bounding_box(chain)
        duplicate = next(
            (e for e in entries if _is_duplicate(e, polygon, bbox, tol)), None
        )
        if duplicate is not None:
            warnings.append(DetectionWarning(
                "duplicate_chain", chain.id,
                f"Bounding box duplicates chain {duplicate.chain.id}; ignored",
            ))
            continue

        entries.append(_Entry(order, chain, polygon, bbox, interior_point(polygon)))

    parents = _find_parents(entries, tol)
    while True:
        clash = _overlapping_sibling(entries, parents)
        if clash is None:
            break
        warnings.append(DetectionWarning(
            "overlapping_chains", clash.chain.id,
            "Chain overlaps a sibling without containing it; ignored",
        ))
        entries = [e for e in entries if e is not clash]
        parents = _find_parents(entries, tol)

    children: Dict[str, List[_Entry]] = {}
    roots: List[_Entry] = []
    for entry in entries:
        parent = parents[entry.chain.id]
        if parent is None:
            roots.append(entry)
        else:
            children.setdefault(parent, []).append(entry)

    ordered = [(root.order, root) for root in roots]
    ordered += [(order, arena[chain_id]) for chain_id, order in open_chains.items()]
    ordered.sort(key=lambda item: item[0])

    parts: List[Part] = []
    for number, (_, item) in enumerate(ordered, start=1):
        part_id = f"part-{number}"
        if isinstance(item, _Entry):
            parts.append(Part(
                id=part_id,
                shell=PartShell(item.chain.id, item.bbox),
                holes=_build_holes(item.chain.id, children),
            ))
        else:
            parts.append(Part(
                id=part_id,
                shell=PartShell(item.id, chain_bounding_box(item)),
                closed=False,
            ))

    for warning in warnings:
        logger.debug("Part detection [%s] %s: %s", warning.kind, warning.chain_id, warning.message)
    logger.info(
        "Detected %d part(s) from %d chain(s) (%d warning(s))",
        len(parts), len(chains), len(warnings),
    )
    return PartDetectionResult(parts=tuple(parts), warnings=tuple(warnings), chains=arena)
