"""Point-in-chain and part-region tests built on Shapely polygons."""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import shapely
from shapely.geometry import MultiPolygon, Point, Polygon
from shapely.ops import unary_union

from toolpath_prep.contracts import BoundingBox, Chain, Hole, Part, Point2D, Shape
from toolpath_prep.shapes import EPS, bounding_box_union, distance, shape_bounding_box, tessellate

logger = logging.getLogger(__name__)


def chain_outline(shapes: Sequence[Shape], tolerance: float = 0.05) -> List[Point2D]:
    """Tessellated boundary of a chain without the repeated closing point."""
    points: List[Point2D] = []
    for shape in shapes:
        for p in tessellate(shape, tolerance):
            if points and distance(points[-1], p) < EPS:
                continue
            points.append(p)
    if len(points) > 1 and distance(points[0], points[-1]) < EPS:
        points.pop()
    return points


def chain_polygon(chain: Chain, tolerance: float = 0.05) -> Polygon:
    """Raw polygon for *chain*; may be invalid or empty."""
    points = chain_outline(chain.shapes, tolerance)
    if len(points) < 3:
        return Polygon()
    return Polygon(points)


def chain_bounding_box(chain: Chain) -> BoundingBox:
    return bounding_box_union(shape_bounding_box(s) for s in chain.shapes)


def _largest_polygon(geom) -> Optional[Polygon]:
    """Return the largest connected Polygon from *geom*, or ``None``."""
    if geom is None or geom.is_empty:
        return None
    if isinstance(geom, Polygon):
        return geom
    if isinstance(geom, MultiPolygon):
        return max(geom.geoms, key=lambda g: g.area)
    polys = [g for g in getattr(geom, "geoms", []) if isinstance(g, Polygon) and not g.is_empty]
    if not polys:
        return None
    return max(polys, key=lambda g: g.area)


def repaired_polygon(chain: Chain, tolerance: float = 0.05) -> Optional[Polygon]:
    """Valid polygon for *chain* (``buffer(0)`` repair), or ``None`` if degenerate."""
    poly = chain_polygon(chain, tolerance)
    if poly.is_empty:
        return None
    if not poly.is_valid:
        logger.debug("Chain %s: invalid outline, repairing with buffer(0)", chain.id)
        poly = _largest_polygon(poly.buffer(0))
    if poly is None or poly.area <= EPS:
        return None
    return poly


def interior_point(polygon: Polygon) -> Point2D:
    p = polygon.representative_point()
    return (p.x, p.y)


def point_in_chain(point: Point2D, chain: Chain, tolerance: float = 0.05) -> bool:
    """True when *point* lies strictly inside the closed chain."""
    poly = repaired_polygon(chain, tolerance)
    if poly is None:
        return False
    return poly.contains(Point(point))


class PartRegion:
    """Solid material of a part: shell minus holes, islands solid again.

    Built once per part; ``is_solid`` and ``count_solid`` are cheap
    afterwards.
    """

    def __init__(self, part: Part, chains: Mapping[str, Chain], tolerance: float = 0.05):
        self.part_id = part.id
        shell = repaired_polygon(chains[part.shell.chain_id], tolerance)
        if shell is None:
            self.geometry = Polygon()
        else:
            cut = self._holes_geometry(part.holes, chains, tolerance)
            self.geometry = shell.difference(cut) if cut is not None else shell
        shapely.prepare(self.geometry)

    def _holes_geometry(self, holes: Sequence[Hole], chains, tolerance):
        pieces = []
        for hole in holes:
            poly = repaired_polygon(chains[hole.chain_id], tolerance)
            if poly is None:
                continue
            islands = self._holes_geometry(hole.holes, chains, tolerance)
            pieces.append(poly.difference(islands) if islands is not None else poly)
        if not pieces:
            return None
        return unary_union(pieces)

    @property
    def is_empty(self) -> bool:
        return self.geometry.is_empty

    def is_solid(self, point: Point2D) -> bool:
        return bool(shapely.contains_xy(self.geometry, point[0], point[1]))

    def count_solid(self, points: Sequence[Point2D]) -> int:
        if not points or self.geometry.is_empty:
            return 0
        pts = np.asarray(points, dtype=float)
        return int(np.count_nonzero(shapely.contains_xy(self.geometry, pts[:, 0], pts[:, 1])))


def build_part_regions(
    parts: Sequence[Part], chains: Mapping[str, Chain], tolerance: float = 0.05,
) -> Dict[str, PartRegion]:
    return {part.id: PartRegion(part, chains, tolerance) for part in parts if part.closed}
