"""Rank, degrees of freedom, redundancy and conflict reporting for an island."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import numpy as np
from scipy.linalg import svdvals

from ..sketch import Handle
from .model import Classification, IslandStatus, SolveOptions
from .pool import VariablePool
from .solver_core import IslandOutcome, IslandSystem

logger = logging.getLogger(__name__)


@dataclass
class Diagnosis:
    status: IslandStatus
    classification: Classification
    rank: int
    dof: int
    dependent_rows: List[int] = field(default_factory=list)
    redundant: List[Handle] = field(default_factory=list)
    conflicting: List[Handle] = field(default_factory=list)


def _threshold(J: np.ndarray, rank_tolerance: float) -> float:
    if J.size == 0:
        return rank_tolerance
    return rank_tolerance * max(1.0, float(svdvals(J)[0]))


def numeric_rank(J: np.ndarray, rank_tolerance: float) -> int:
    """Number of singular values of ``J`` above ``rank_tolerance * max(1, sigma_max)``."""

    if J.size == 0:
        return 0
    sigma = svdvals(J)
    return int(np.sum(sigma > rank_tolerance * max(1.0, float(sigma[0]))))


def dependent_rows(J: np.ndarray, tolerance: float) -> List[int]:
    """Rows of ``J`` lying in the span of the rows before them.

    Classical Gram-Schmidt with one reorthogonalisation pass, walking rows in
    order so that later rows are the ones reported.
    """

    basis: List[np.ndarray] = []
    dependent: List[int] = []
    for idx, row in enumerate(J):
        rest = np.array(row, dtype=float)
        for _ in range(2):
            for q in basis:
                rest = rest - float(rest @ q) * q
        norm = float(np.linalg.norm(rest))
        if norm <= tolerance:
            dependent.append(idx)
        else:
            basis.append(rest / norm)
    return dependent


def _unique(handles: Iterable[Optional[Handle]]) -> List[Handle]:
    seen: List[Handle] = []
    for handle in handles:
        if handle is not None and handle not in seen:
            seen.append(handle)
    return seen


def diagnose(
    system: IslandSystem,
    outcome: IslandOutcome,
    pool: VariablePool,
    options: SolveOptions,
) -> Diagnosis:
    J = outcome.jacobian
    free = len(system.free)
    rank = numeric_rank(J, options.rank_tolerance)
    dof = free - rank

    dependent: List[int] = []
    if rank < system.rows:
        dependent = dependent_rows(J, _threshold(J, options.rank_tolerance))

    def owner(row: int) -> Optional[Handle]:
        return system.specs[system.row_specs[row]].constraint

    if outcome.converged:
        status = IslandStatus.SINGULAR if rank < free else IslandStatus.CONVERGED
        classification = (
            Classification.FULLY_CONSTRAINED if dof == 0 else Classification.UNDER_CONSTRAINED
        )
        redundant = _unique(owner(row) for row in dependent)
        conflicting: List[Handle] = []
    else:
        status = IslandStatus.UNCONVERGED
        classification = Classification.OVER_CONSTRAINED
        redundant = []
        violated = [row for row in range(system.rows) if abs(outcome.residuals[row]) > options.tolerance]
        rows = sorted(set(violated) | set(dependent))
        implicated = [owner(row) for row in rows]
        if not system.free:
            for row in rows:
                spec = system.specs[system.row_specs[row]]
                implicated.extend(pool.binding(var) for var in spec.variables)
        conflicting = _unique(implicated)

    logger.debug(
        "diagnose: F=%d R=%d C=%d dof=%d dependent=%s status=%s",
        free,
        rank,
        system.rows,
        dof,
        dependent,
        status.value,
    )
    return Diagnosis(
        status=status,
        classification=classification,
        rank=rank,
        dof=dof,
        dependent_rows=dependent,
        redundant=redundant,
        conflicting=conflicting,
    )


__all__ = ["Diagnosis", "dependent_rows", "diagnose", "numeric_rank"]
