from __future__ import annotations

import math
from typing import Tuple

import numpy as np

_DENOM_EPS = 1e-12
_HUGE = 1e150


def _safe_norm(dx: float, dy: float) -> float:
    return math.sqrt(dx * dx + dy * dy)


def _unit_or_zero(dx: float, dy: float) -> Tuple[float, float]:
    n = _safe_norm(dx, dy)
    if n <= _DENOM_EPS:
        return 0.0, 0.0
    return dx / n, dy / n


def _cross_2d(ax: float, ay: float, bx: float, by: float) -> float:
    return ax * by - ay * bx


def _dot_2d(ax: float, ay: float, bx: float, by: float) -> float:
    return ax * bx + ay * by


def max_abs(values: np.ndarray) -> float:
    if values.size == 0:
        return 0.0
    return float(np.max(np.abs(values)))


def is_finite(values: np.ndarray) -> bool:
    return bool(np.all(np.isfinite(values))) and max_abs(values) < _HUGE
