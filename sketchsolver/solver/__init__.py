"""Solver façade: variable pool, equation compiler, partitioner and diagnostics."""

from __future__ import annotations

import logging

from .config import check_options, get_solve_defaults, option_problems, set_solve_defaults
from .diagnostics import Diagnosis, dependent_rows, diagnose, numeric_rank
from .equations import ResidualBuilderError, build_constraint, compile_sketch
from .model import (
    Classification,
    Drag,
    IslandReport,
    IslandStatus,
    NumericNonConvergence,
    ResidualSpec,
    SolveOptions,
    SolveResult,
    VarKey,
)
from .partition import Island, island_index, partition
from .pipeline import Solver, feature_variables, solve
from .pool import VariablePool
from .solver_core import IslandOutcome, IslandSystem, drag_anchors, solve_island, solve_system

logger = logging.getLogger(__name__)


__all__ = [
    "Classification",
    "Diagnosis",
    "Drag",
    "Island",
    "IslandOutcome",
    "IslandReport",
    "IslandStatus",
    "IslandSystem",
    "NumericNonConvergence",
    "ResidualBuilderError",
    "ResidualSpec",
    "SolveOptions",
    "SolveResult",
    "Solver",
    "VarKey",
    "VariablePool",
    "build_constraint",
    "check_options",
    "compile_sketch",
    "dependent_rows",
    "diagnose",
    "drag_anchors",
    "feature_variables",
    "get_solve_defaults",
    "island_index",
    "numeric_rank",
    "option_problems",
    "partition",
    "set_solve_defaults",
    "solve",
    "solve_island",
    "solve_system",
]
