"""Core data structures for the solver pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from ..sketch import Handle
from ..validate import StructuralError

VarKey = Tuple[Handle, str]
Point2 = Tuple[float, float]


class NumericNonConvergence(RuntimeError):
    """Raised on request when an island did not reach the residual tolerance."""

    def __init__(self, message: str, *, islands: Optional[List["IslandReport"]] = None) -> None:
        super().__init__(message)
        self.islands = list(islands or [])


@dataclass
class ResidualSpec:
    """One residual block with its closed-form Jacobian.

    ``func`` maps the values of ``variables`` (in order) to ``size`` residuals;
    ``jac`` returns the ``size x len(variables)`` matrix of partials.
    """

    key: str
    kind: str
    size: int
    variables: Tuple[VarKey, ...]
    func: Callable[[np.ndarray], np.ndarray]
    jac: Callable[[np.ndarray], np.ndarray]
    constraint: Optional[Handle] = None
    feature: Optional[Handle] = None

    @property
    def owner(self) -> Optional[Handle]:
        return self.constraint if self.constraint is not None else self.feature


class IslandStatus(enum.Enum):
    CONVERGED = "converged"
    SINGULAR = "singular"
    UNCONVERGED = "unconverged"
    SKIPPED = "skipped"


class Classification(enum.Enum):
    FULLY_CONSTRAINED = "fully_constrained"
    UNDER_CONSTRAINED = "under_constrained"
    OVER_CONSTRAINED = "over_constrained"


@dataclass
class Drag:
    """Soft request to move ``feature`` towards ``target`` for a single solve."""

    feature: Handle
    target: Point2


@dataclass
class SolveOptions:
    """Solver options; module defaults live in :mod:`sketchsolver.solver.config`."""

    tolerance: float = 1e-9
    max_iterations: int = 50
    initial_damping: float = 1e-6
    min_damping: float = 1e-12
    max_damping: float = 1e8
    damping_up: float = 10.0
    damping_down: float = 0.1
    step_tolerance: float = 1e-12
    rank_tolerance: float = 1e-8
    drag_weight: float = 1e-2
    workers: int = 1
    freeze_undragged: bool = True


@dataclass
class IslandReport:
    index: int
    status: IslandStatus
    classification: Optional[Classification]
    variables: List[VarKey] = field(default_factory=list)
    constraints: List[Handle] = field(default_factory=list)
    free_variables: int = 0
    equations: int = 0
    rank: int = 0
    dof: int = 0
    iterations: int = 0
    max_residual: float = 0.0
    redundant: List[Handle] = field(default_factory=list)
    conflicting: List[Handle] = field(default_factory=list)
    errors: List[StructuralError] = field(default_factory=list)
    warm_started: bool = False

    @property
    def converged(self) -> bool:
        return self.status in (IslandStatus.CONVERGED, IslandStatus.SINGULAR)


@dataclass
class SolveResult:
    updated_variables: Dict[VarKey, float]
    islands: List[IslandReport]
    structural_errors: List[StructuralError] = field(default_factory=list)

    @property
    def per_island_status(self) -> List[IslandStatus]:
        return [island.status for island in self.islands]

    @property
    def dof_per_island(self) -> List[int]:
        return [island.dof for island in self.islands]

    @property
    def redundant_constraints(self) -> List[Handle]:
        return [h for island in self.islands for h in island.redundant]

    @property
    def conflicting_constraints(self) -> List[Handle]:
        return [h for island in self.islands for h in island.conflicting]

    @property
    def success(self) -> bool:
        return not self.structural_errors and all(island.converged for island in self.islands)

    def island_of(self, key: VarKey) -> Optional[IslandReport]:
        for island in self.islands:
            if key in island.variables:
                return island
        return None

    def point(self, handle: Handle) -> Point2:
        try:
            return self.updated_variables[(handle, "x")], self.updated_variables[(handle, "y")]
        except KeyError as exc:
            raise KeyError(f"no solved position for point {handle}") from exc

    def raise_for_status(self) -> None:
        """Raise the first structural error, then :class:`NumericNonConvergence`."""

        if self.structural_errors:
            raise self.structural_errors[0]
        failed = [island for island in self.islands if island.status is IslandStatus.UNCONVERGED]
        if failed:
            worst = max(island.max_residual for island in failed)
            raise NumericNonConvergence(
                f"{len(failed)} island(s) did not converge (max residual {worst:.3g})",
                islands=failed,
            )


__all__ = [
    "Classification",
    "Drag",
    "IslandReport",
    "IslandStatus",
    "NumericNonConvergence",
    "Point2",
    "ResidualSpec",
    "SolveOptions",
    "SolveResult",
    "VarKey",
]
