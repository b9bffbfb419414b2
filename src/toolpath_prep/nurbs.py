"""Rational B-spline evaluation for ``Spline`` shapes.

Curves are evaluated in homogeneous coordinates with
``scipy.interpolate.BSpline``.  The parameter exposed to callers is always
normalized to ``[0, 1]`` over the curve's valid knot span.
"""

from __future__ import annotations

import functools
import logging
from typing import Sequence

import numpy as np
from scipy.interpolate import BSpline

from toolpath_prep.contracts import Point2D, Spline

logger = logging.getLogger(__name__)


def make_clamped_uniform_knots(n_ctrl: int, degree: int) -> np.ndarray:
    """Clamped uniform knot vector; knot count = n_ctrl + degree + 1."""
    p = degree
    m = n_ctrl + p + 1
    knots = np.zeros(m, dtype=float)
    knots[p : m - p] = np.linspace(0.0, 1.0, m - 2 * p)
    knots[m - p :] = 1.0
    return knots


def _usable_knots(knots: Sequence[float], n_ctrl: int, degree: int) -> bool:
    if len(knots) != n_ctrl + degree + 1:
        return False
    arr = np.asarray(knots, dtype=float)
    if np.any(np.diff(arr) < 0):
        return False
    return arr[n_ctrl] - arr[degree] > 1e-12


class NurbsCurve:
    """Callable rational B-spline over a normalized ``[0, 1]`` parameter."""

    def __init__(self, spline: Spline):
        ctrl = np.asarray(spline.control_points, dtype=float).reshape(-1, 2)
        n = len(ctrl)
        if n < 2:
            raise ValueError("Spline needs at least two control points")
        degree = max(1, min(int(spline.degree), n - 1))

        weights = np.asarray(spline.weights, dtype=float)
        if len(weights) != n or np.any(weights <= 0):
            weights = np.ones(n, dtype=float)

        if _usable_knots(spline.knots, n, degree):
            knots = np.asarray(spline.knots, dtype=float)
        else:
            if spline.knots:
                logger.debug(
                    "Spline knots unusable (%d knots for %d ctrl, degree %d); "
                    "using clamped uniform",
                    len(spline.knots), n, degree,
                )
            knots = make_clamped_uniform_knots(n, degree)

        homogeneous = np.column_stack([ctrl * weights[:, None], weights])
        self.degree = degree
        self._curve = BSpline(knots, homogeneous, degree, extrapolate=True)
        self._u0 = float(knots[degree])
        self._u1 = float(knots[n])

    def evaluate(self, u) -> np.ndarray:
        """Points for parameter(s) ``u`` in ``[0, 1]``; shape ``(..., 2)``."""
        u = np.clip(np.asarray(u, dtype=float), 0.0, 1.0)
        s = self._u0 + u * (self._u1 - self._u0)
        values = np.atleast_2d(self._curve(s))
        points = values[..., :2] / values[..., 2:3]
        if np.ndim(u) == 0:
            return points[0]
        return points

    def point(self, u: float) -> Point2D:
        x, y = self.evaluate(u)
        return (float(x), float(y))


@functools.lru_cache(maxsize=256)
def _cached_curve(spline: Spline) -> NurbsCurve:
    return NurbsCurve(spline)


def curve_for(spline: Spline) -> NurbsCurve:
    """Evaluator for *spline*; raises ``ValueError`` when it cannot be evaluated."""
    try:
        hash(spline)
    except TypeError:
        # list-valued fields
        return NurbsCurve(spline)
    return _cached_curve(spline)


def spline_polygon(spline: Spline) -> Sequence[Point2D]:
    """Fallback point sequence: fit points, then control points."""
    if spline.fit_points:
        return spline.fit_points
    return spline.control_points
