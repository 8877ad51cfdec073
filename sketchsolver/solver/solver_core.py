"""Damped Gauss-Newton (Levenberg-Marquardt) iteration for a single island."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..logging_utils import apply_debug_logging
from ..sketch import FeatureKind, Handle, Sketch
from .math_utils import is_finite, max_abs
from .model import Point2, ResidualSpec, SolveOptions, VarKey
from .partition import Island

logger = logging.getLogger(__name__)


class IslandSystem:
    """Residual vector and Jacobian of an island over its free variables.

    Bound variables referenced by the island's blocks enter as constants.
    """

    def __init__(
        self,
        specs: Sequence[ResidualSpec],
        free: Sequence[VarKey],
        values: Mapping[VarKey, float],
    ) -> None:
        self.specs = list(specs)
        self.free = list(free)
        self.columns: Dict[VarKey, int] = {var: idx for idx, var in enumerate(self.free)}
        self._locals: List[Tuple[np.ndarray, np.ndarray, np.ndarray]] = []
        self.row_owners: List[Optional[Handle]] = []
        self.row_specs: List[int] = []
        for spec_idx, spec in enumerate(self.specs):
            free_slots = [i for i, var in enumerate(spec.variables) if var in self.columns]
            cols = [self.columns[spec.variables[i]] for i in free_slots]
            consts = np.array([0.0 if var in self.columns else float(values[var]) for var in spec.variables])
            self._locals.append((np.array(free_slots, dtype=int), np.array(cols, dtype=int), consts))
            self.row_owners.extend([spec.owner] * spec.size)
            self.row_specs.extend([spec_idx] * spec.size)
        self.rows = len(self.row_owners)

    def _local(self, idx: int, x: np.ndarray) -> np.ndarray:
        slots, cols, consts = self._locals[idx]
        local = consts.copy()
        local[slots] = x[cols]
        return local

    def residuals(self, x: np.ndarray) -> np.ndarray:
        if not self.specs:
            return np.zeros(0)
        return np.concatenate([spec.func(self._local(i, x)) for i, spec in enumerate(self.specs)])

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        J = np.zeros((self.rows, len(self.free)))
        row = 0
        for i, spec in enumerate(self.specs):
            slots, cols, _ = self._locals[i]
            block = spec.jac(self._local(i, x))
            J[row:row + spec.size, cols] += block[:, slots]
            row += spec.size
        return J


@dataclass
class SoftTarget:
    """Weighted pull of the mean of some free variable pairs towards a target."""

    x_columns: List[int]
    y_columns: List[int]
    target: Point2
    weight: float

    def residuals(self, x: np.ndarray) -> np.ndarray:
        return self.weight * np.array([
            float(np.mean(x[self.x_columns])) - self.target[0],
            float(np.mean(x[self.y_columns])) - self.target[1],
        ])

    def jacobian(self, n: int) -> np.ndarray:
        J = np.zeros((2, n))
        J[0, self.x_columns] = self.weight / len(self.x_columns)
        J[1, self.y_columns] = self.weight / len(self.y_columns)
        return J

    def recenter(self, x: np.ndarray) -> np.ndarray:
        """Translate the pulled variables so their mean sits on the target."""

        moved = x.copy()
        moved[self.x_columns] += self.target[0] - float(np.mean(x[self.x_columns]))
        moved[self.y_columns] += self.target[1] - float(np.mean(x[self.y_columns]))
        return moved


@dataclass
class IslandOutcome:
    x: np.ndarray
    iterations: int
    converged: bool
    max_residual: float
    residuals: np.ndarray
    jacobian: np.ndarray
    values: Dict[VarKey, float] = field(default_factory=dict)


def drag_anchors(sketch: Sketch, feature: Handle) -> List[Handle]:
    """Points whose mean follows the cursor when ``feature`` is dragged."""

    item = sketch.feature(feature)
    if item.kind is FeatureKind.POINT:
        return [feature]
    if item.kind is FeatureKind.LINE:
        return list(item.using[:2])
    if item.kind is FeatureKind.ARC:
        return [item.using[1]]
    return [item.using[0]]


def soft_target(
    system: IslandSystem,
    anchors: Sequence[Handle],
    target: Point2,
    weight: float,
) -> Optional[SoftTarget]:
    x_cols = [system.columns[(h, "x")] for h in anchors if (h, "x") in system.columns]
    y_cols = [system.columns[(h, "y")] for h in anchors if (h, "y") in system.columns]
    if not x_cols or not y_cols:
        return None
    return SoftTarget(x_cols, y_cols, (float(target[0]), float(target[1])), weight)


def _iterate(
    system: IslandSystem,
    x0: np.ndarray,
    options: SolveOptions,
    max_iterations: int,
    soft: Optional[SoftTarget] = None,
) -> Tuple[np.ndarray, int]:
    """Run damped steps from ``x0``; return the best iterate and the step count."""

    n = x0.size

    def full_residuals(x: np.ndarray) -> np.ndarray:
        F = system.residuals(x)
        return F if soft is None else np.concatenate([F, soft.residuals(x)])

    def full_jacobian(x: np.ndarray) -> np.ndarray:
        J = system.jacobian(x)
        return J if soft is None else np.vstack([J, soft.jacobian(n)])

    x = x0.copy()
    F = full_residuals(x)
    cost = float(F @ F)
    lam = options.initial_damping
    iterations = 0

    while iterations < max_iterations:
        if soft is None and max_abs(F) < options.tolerance:
            break
        J = full_jacobian(x)
        A = np.vstack([J, math.sqrt(lam) * np.eye(n)])
        b = np.concatenate([-F, np.zeros(n)])
        delta = np.linalg.lstsq(A, b, rcond=None)[0]
        iterations += 1

        step = float(np.linalg.norm(delta))
        if not math.isfinite(step) or step <= options.step_tolerance * (1.0 + float(np.linalg.norm(x))):
            logger.debug("iteration %d: step %.3g below tolerance", iterations, step)
            break

        x_new = x + delta
        F_new = full_residuals(x_new)
        cost_new = float(F_new @ F_new) if is_finite(F_new) else math.inf
        if cost_new < cost:
            x, F, cost = x_new, F_new, cost_new
            lam = max(lam * options.damping_down, options.min_damping)
            logger.debug("iteration %d: accepted, cost=%.3e lambda=%.1e", iterations, cost, lam)
        else:
            lam *= options.damping_up
            logger.debug("iteration %d: rejected, cost=%.3e lambda=%.1e", iterations, cost_new, lam)
            if lam > options.max_damping:
                break
    return x, iterations


def solve_system(
    system: IslandSystem,
    x0: np.ndarray,
    options: SolveOptions,
    *,
    soft: Optional[SoftTarget] = None,
) -> IslandOutcome:
    """Drive ``system`` to its residual floor from ``x0``.

    With a soft target the dragged variables are first moved onto the target
    and solved jointly with the hard rows for half the iteration budget; a
    hard-only pass then restores the hard constraints exactly.
    """

    x = np.asarray(x0, dtype=float).copy()
    iterations = 0
    if system.free and system.rows:
        if soft is not None:
            budget = max(1, options.max_iterations // 2)
            x, used = _iterate(system, soft.recenter(x), options, budget, soft)
            iterations += used
        x, used = _iterate(system, x, options, options.max_iterations, None)
        iterations += used
    elif soft is not None:
        x = soft.recenter(x)

    F = system.residuals(x)
    worst = max_abs(F)
    outcome = IslandOutcome(
        x=x,
        iterations=iterations,
        converged=bool(is_finite(F) and worst < options.tolerance),
        max_residual=worst,
        residuals=F,
        jacobian=system.jacobian(x),
        values=dict(zip(system.free, (float(v) for v in x))),
    )
    logger.debug(
        "solve_system: %d vars, %d rows, %d iterations, max residual %.3e",
        len(system.free),
        system.rows,
        iterations,
        worst,
    )
    return outcome


def solve_island(
    island: Island,
    values: Mapping[VarKey, float],
    options: SolveOptions,
    *,
    anchors: Sequence[Handle] = (),
    target: Optional[Point2] = None,
    iterate: bool = True,
) -> Tuple[IslandSystem, IslandOutcome]:
    """Solve one island starting from ``values``.

    ``iterate=False`` only evaluates the island at ``values`` (used to keep
    islands untouched by a drag exactly where they are).
    """

    system = IslandSystem(island.specs, island.variables, values)
    x0 = np.array([float(values[var]) for var in island.variables])
    soft = None
    if target is not None and anchors:
        soft = soft_target(system, anchors, target, options.drag_weight)
    if not iterate:
        return system, solve_system(system, x0, replace(options, max_iterations=0))
    return system, solve_system(system, x0, options, soft=soft)


apply_debug_logging(globals(), logger=logger, skip=["drag_anchors", "soft_target"])
