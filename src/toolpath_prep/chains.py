"""
Chain detection: group shapes whose key points touch into connected chains.

Connectivity is a disjoint-set union over shape indices.  Candidate
key-point pairs within tolerance come from a KD-tree, which yields the same
pairs as comparing every key point against every other.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
from scipy.spatial import KDTree

from toolpath_prep.contracts import (
    Arc,
    Chain,
    ChainDetectionConfig,
    Circle,
    Ellipse,
    Line,
    Point2D,
    Polyline,
    Shape,
    Spline,
)
from toolpath_prep.nurbs import curve_for
from toolpath_prep.shapes import (
    distance,
    end_point,
    is_full_ellipse,
    key_points,
    reverse_shape,
    start_point,
)
from toolpath_prep.winding import detect_winding, opposite

logger = logging.getLogger(__name__)


class _DisjointSet:
    def __init__(self, size: int):
        self.parent = list(range(size))
        self.rank = [0] * size

    def find(self, i: int) -> int:
        root = i
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[i] != root:
            self.parent[i], i = root, self.parent[i]
        return root

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        if self.rank[ra] < self.rank[rb]:
            ra, rb = rb, ra
        self.parent[rb] = ra
        if self.rank[ra] == self.rank[rb]:
            self.rank[ra] += 1


# ─── Closure ─────────────────────────────────────────────────────────────────

def _spline_ends(spline: Spline) -> Optional[tuple]:
    try:
        curve = curve_for(spline)
        return curve.point(0.0), curve.point(1.0)
    except ValueError:
        pass
    if spline.fit_points:
        return spline.fit_points[0], spline.fit_points[-1]
    if spline.control_points:
        return spline.control_points[0], spline.control_points[-1]
    return None


def is_shape_closed(shape: Shape, tolerance: float) -> bool:
    if isinstance(shape, Circle):
        return True
    if isinstance(shape, Ellipse):
        return is_full_ellipse(shape)
    if isinstance(shape, (Arc, Line)):
        return False
    if isinstance(shape, Polyline):
        # explicit flag wins over endpoint distance
        return bool(shape.closed)
    if isinstance(shape, Spline):
        ends = _spline_ends(shape)
        if ends is None:
            return False
        return distance(ends[0], ends[1]) <= tolerance
    raise TypeError(f"Unrecognized shape type: {type(shape).__name__}")


def is_chain_closed(shapes: Sequence[Shape], tolerance: float) -> bool:
    if len(shapes) == 1:
        return is_shape_closed(shapes[0], tolerance)
    return distance(start_point(shapes[0]), end_point(shapes[-1])) <= tolerance


def chain_start_point(chain: Chain) -> Point2D:
    if not chain.shapes:
        raise ValueError(f"Chain {chain.id!r} has no shapes")
    return start_point(chain.shapes[0])


def chain_end_point(chain: Chain) -> Point2D:
    if not chain.shapes:
        raise ValueError(f"Chain {chain.id!r} has no shapes")
    return end_point(chain.shapes[-1])


def analyze_chain(chain: Chain, tolerance: float) -> Chain:
    """Copy of *chain* with ``closed`` and ``winding`` filled in."""
    if not chain.shapes:
        raise ValueError(f"Chain {chain.id!r} has no shapes")
    return Chain(
        id=chain.id,
        shapes=tuple(chain.shapes),
        closed=is_chain_closed(chain.shapes, tolerance),
        winding=detect_winding(chain.shapes, tolerance),
    )


# ─── Traversal ───────────────────────────────────────────────────────────────

def _take_matching(remaining: List[Shape], point: Point2D, tolerance: float, at_end: bool):
    """Pop the first shape touching *point*, oriented to continue the walk."""
    for i, shape in enumerate(remaining):
        s, e = start_point(shape), end_point(shape)
        if at_end:
            if distance(s, point) <= tolerance:
                return remaining.pop(i)
            if distance(e, point) <= tolerance:
                return reverse_shape(remaining.pop(i))
        else:
            if distance(e, point) <= tolerance:
                return remaining.pop(i)
            if distance(s, point) <= tolerance:
                return reverse_shape(remaining.pop(i))
    return None


def normalize_chain(chain: Chain, tolerance: float) -> Chain:
    """Reorder and re-orient shapes into a direction-consistent walk.

    Walks forward from the first shape, then backward from its start.
    Shapes that cannot be reached are appended in their original order.
    """
    if not chain.shapes:
        raise ValueError(f"Chain {chain.id!r} has no shapes")
    remaining = list(chain.shapes[1:])
    ordered = [chain.shapes[0]]

    while remaining:
        nxt = _take_matching(remaining, end_point(ordered[-1]), tolerance, at_end=True)
        if nxt is None:
            break
        ordered.append(nxt)
    while remaining:
        prev = _take_matching(remaining, start_point(ordered[0]), tolerance, at_end=False)
        if prev is None:
            break
        ordered.insert(0, prev)
    if remaining:
        logger.debug(
            "Chain %s: %d shape(s) not reachable by walking; appended as-is",
            chain.id, len(remaining),
        )
        ordered.extend(remaining)

    return analyze_chain(Chain(chain.id, tuple(ordered)), tolerance)


def reverse_chain(chain: Chain) -> Chain:
    """New chain traversing the same geometry backwards."""
    return Chain(
        id=chain.id,
        shapes=tuple(reverse_shape(s) for s in reversed(chain.shapes)),
        closed=chain.closed,
        winding=opposite(chain.winding),
    )


# ─── Detection ───────────────────────────────────────────────────────────────

def detect_chains(
    shapes: Sequence[Shape],
    config: Optional[ChainDetectionConfig] = None,
) -> List[Chain]:
    """Partition *shapes* into connected chains.

    Every shape lands in exactly one chain; isolated shapes become singleton
    chains.  Chains are ordered by their first member and keep insertion
    order internally unless ``config.normalize`` is set.
    """
    config = config or ChainDetectionConfig()
    config.validate()
    if not shapes:
        return []

    owners: List[int] = []
    points: List[Point2D] = []
    for index, shape in enumerate(shapes):
        for point in key_points(shape):
            owners.append(index)
            points.append(point)

    dsu = _DisjointSet(len(shapes))
    if len(points) > 1:
        tree = KDTree(np.asarray(points, dtype=float))
        for a, b in tree.query_pairs(r=config.tolerance):
            dsu.union(owners[a], owners[b])

    groups: Dict[int, List[Shape]] = {}
    for index, shape in enumerate(shapes):
        groups.setdefault(dsu.find(index), []).append(shape)

    chains: List[Chain] = []
    for number, members in enumerate(groups.values(), start=1):
        chain = Chain(id=f"chain-{number}", shapes=tuple(members))
        if config.normalize:
            chain = normalize_chain(chain, config.tolerance)
        else:
            chain = analyze_chain(chain, config.tolerance)
        chains.append(chain)

    logger.debug("Detected %d chain(s) from %d shape(s)", len(chains), len(shapes))
    return chains


__all__ = [
    "analyze_chain",
    "chain_end_point",
    "chain_start_point",
    "detect_chains",
    "is_chain_closed",
    "is_shape_closed",
    "normalize_chain",
    "reverse_chain",
]
