"""Module-wide solver defaults and option checks."""

from __future__ import annotations

import copy
import dataclasses
from typing import Any, List

from .model import SolveOptions

_SOLVE_DEFAULTS = SolveOptions()


def option_problems(options: SolveOptions) -> List[str]:
    """Describe every setting of ``options`` the solver cannot run with."""

    problems: List[str] = []
    if not options.tolerance > 0:
        problems.append(f"tolerance must be positive, got {options.tolerance!r}")
    if options.max_iterations < 0:
        problems.append(f"max_iterations must not be negative, got {options.max_iterations!r}")
    if not 0 < options.min_damping <= options.initial_damping <= options.max_damping:
        problems.append(
            "damping must satisfy 0 < min_damping <= initial_damping <= max_damping, got "
            f"{options.min_damping!r}, {options.initial_damping!r}, {options.max_damping!r}"
        )
    if not options.damping_up > 1:
        problems.append(f"damping_up must exceed 1, got {options.damping_up!r}")
    if not 0 < options.damping_down < 1:
        problems.append(f"damping_down must lie in (0, 1), got {options.damping_down!r}")
    if options.step_tolerance < 0:
        problems.append(f"step_tolerance must not be negative, got {options.step_tolerance!r}")
    if not options.rank_tolerance > 0:
        problems.append(f"rank_tolerance must be positive, got {options.rank_tolerance!r}")
    if not options.drag_weight > 0:
        problems.append(f"drag_weight must be positive, got {options.drag_weight!r}")
    if options.workers < 1:
        problems.append(f"workers must be at least 1, got {options.workers!r}")
    return problems


def check_options(options: SolveOptions) -> SolveOptions:
    problems = option_problems(options)
    if problems:
        raise ValueError("Invalid solve options: " + "; ".join(problems))
    return options


def get_solve_defaults(**overrides: Any) -> SolveOptions:
    """Copy of the module defaults, with ``overrides`` applied and checked."""

    options = copy.deepcopy(_SOLVE_DEFAULTS)
    if overrides:
        options = check_options(dataclasses.replace(options, **overrides))
    return options


def set_solve_defaults(options: SolveOptions) -> None:
    global _SOLVE_DEFAULTS
    _SOLVE_DEFAULTS = copy.deepcopy(check_options(options))
