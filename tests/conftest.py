"""
Shared test fixtures for toolpath-preparation tests.
"""
import sys
from pathlib import Path

import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from toolpath_prep.contracts import Chain, Circle, Line, Polyline
from toolpath_prep.shapes import polyline_from_vertices


def square_lines(x0, y0, size, ccw=True):
    """Four Lines around an axis-aligned square, in traversal order."""
    corners = [(x0, y0), (x0 + size, y0), (x0 + size, y0 + size), (x0, y0 + size)]
    if not ccw:
        corners = list(reversed(corners))
    return [Line(corners[i], corners[(i + 1) % 4]) for i in range(4)]


def square_polyline(x0, y0, size, ccw=True) -> Polyline:
    corners = [(x0, y0), (x0 + size, y0), (x0 + size, y0 + size), (x0, y0 + size)]
    if not ccw:
        corners = list(reversed(corners))
    return polyline_from_vertices(corners, closed=True)


@pytest.fixture
def clockwise_square():
    """10x10 square traversed clockwise starting at (0, 10)."""
    return [
        Line((0, 10), (10, 10)),
        Line((10, 10), (10, 0)),
        Line((10, 0), (0, 0)),
        Line((0, 0), (0, 10)),
    ]


@pytest.fixture
def ccw_square_chain():
    return Chain("square", tuple(square_lines(0, 0, 10)))


@pytest.fixture
def big_circle():
    return Circle((100, 100), 50)


@pytest.fixture
def plate_with_two_holes():
    """100x100 shell with two disjoint circular holes."""
    return [
        square_polyline(0, 0, 100),
        Circle((25, 50), 10),
        Circle((75, 50), 10),
    ]


@pytest.fixture
def notched_shell():
    """40x40 plate with a 2-wide, 10-deep slot cut down from the top edge."""
    return polyline_from_vertices(
        [(0, 0), (40, 0), (40, 40), (21, 40), (21, 30), (19, 30), (19, 40), (0, 40)],
        closed=True,
    )
