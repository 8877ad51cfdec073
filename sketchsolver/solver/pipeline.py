"""Snapshot-to-result pipeline and the warm-started interactive solver."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..sketch import Handle, Sketch
from ..validate import StructuralError, broken_features, validate_sketch
from .config import check_options, get_solve_defaults
from .diagnostics import diagnose
from .equations import compile_sketch
from .model import Drag, IslandReport, IslandStatus, Point2, SolveOptions, SolveResult, VarKey
from .partition import Island, island_index, partition
from .pool import VariablePool
from .solver_core import IslandOutcome, IslandSystem, drag_anchors, solve_island

logger = logging.getLogger(__name__)


def feature_variables(sketch: Sketch, pool: VariablePool, handles: Iterable[Handle]) -> List[VarKey]:
    """Pool variables of ``handles`` and of every live feature they are built on."""

    found: List[VarKey] = []
    pending = list(handles)
    visited: Set[Handle] = set()
    while pending:
        handle = pending.pop(0)
        if handle in visited:
            continue
        visited.add(handle)
        feature = sketch.get_feature(handle)
        if feature is None:
            continue
        for component in ("x", "y", "r"):
            if (handle, component) in pool:
                found.append((handle, component))
        pending.extend(feature.using)
    return found


def _constraints_of(island: Island) -> List[Handle]:
    handles: List[Handle] = []
    for spec in island.specs:
        if spec.constraint is not None and spec.constraint not in handles:
            handles.append(spec.constraint)
    return handles


def _island_values(island: Island, pool: VariablePool) -> Dict[VarKey, float]:
    keys: List[VarKey] = list(island.variables) + list(island.pinned)
    for spec in island.specs:
        keys.extend(spec.variables)
    return {key: pool.value(key) for key in keys}


def _drag_targets(
    pool: VariablePool,
    owner: Dict[VarKey, int],
    anchors: Sequence[Handle],
    target: Point2,
) -> Dict[int, Point2]:
    """Cursor target of every island that holds a free drag anchor.

    The mean of all anchors, bound ones included, is moved onto ``target``;
    each island aims the mean of its own free anchors by that same offset so
    anchors split across islands translate together.
    """

    if not anchors:
        return {}
    points = [pool.point(handle) for handle in anchors]
    dx = target[0] - sum(p[0] for p in points) / len(points)
    dy = target[1] - sum(p[1] for p in points) / len(points)
    members: Dict[int, List[Point2]] = {}
    for handle, point in zip(anchors, points):
        if pool.is_free((handle, "x")):
            members.setdefault(owner[(handle, "x")], []).append(point)
    return {
        index: (sum(p[0] for p in pts) / len(pts) + dx, sum(p[1] for p in pts) / len(pts) + dy)
        for index, pts in members.items()
    }


class Solver:
    """Interactive solver keeping a warm-start cache between calls.

    The cache holds plain floats keyed by ``(handle, component)``; it is
    written after every solve and pruned of variables that no longer exist.
    """

    def __init__(self, options: Optional[SolveOptions] = None) -> None:
        self.options = options if options is not None else get_solve_defaults()
        self._cache: Dict[VarKey, float] = {}

    @property
    def cache(self) -> Dict[VarKey, float]:
        return dict(self._cache)

    def invalidate(self, handles: Optional[Iterable[Handle]] = None) -> None:
        """Forget cached values of ``handles``, or of everything when ``None``."""

        if handles is None:
            self._cache.clear()
            return
        dropped = set(handles)
        self._cache = {key: value for key, value in self._cache.items() if key[0] not in dropped}

    def solve(
        self,
        sketch: Sketch,
        drag: Optional[Drag] = None,
        options: Optional[SolveOptions] = None,
    ) -> SolveResult:
        options = check_options(options if options is not None else self.options)

        errors = validate_sketch(sketch)
        broken = broken_features(sketch, errors)
        skip_constraints = {err.constraint for err in errors if err.constraint is not None}

        pool = VariablePool.from_sketch(sketch)
        self._cache = {key: value for key, value in self._cache.items() if key in pool}
        warm = set(self._cache)
        pool.seed(self._cache)

        specs = compile_sketch(sketch, pool, skip_features=broken, skip_constraints=skip_constraints)
        error_vars = [feature_variables(sketch, pool, err.references) for err in errors]
        islands = partition(pool, specs, links=error_vars)
        owner = island_index(islands)

        errors_by_island: Dict[int, List[StructuralError]] = {}
        orphans: List[StructuralError] = []
        for err, variables in zip(errors, error_vars):
            # bound variables only have an island when a pinned block uses them
            placed = sorted((not pool.is_free(var), owner[var]) for var in variables if var in owner)
            home = placed[0][1] if placed else None
            if home is None:
                orphans.append(err)
            else:
                errors_by_island.setdefault(home, []).append(err)

        anchors: List[Handle] = []
        targets: Dict[int, Point2] = {}
        if drag is not None:
            sketch.feature(drag.feature)
            if drag.feature not in broken:
                anchors = drag_anchors(sketch, drag.feature)
                targets = _drag_targets(pool, owner, anchors, drag.target)

        def run(island: Island) -> Tuple[IslandSystem, IslandOutcome]:
            active = island.index in targets
            iterate = drag is None or active or not options.freeze_undragged
            return solve_island(
                island,
                _island_values(island, pool),
                options,
                anchors=anchors if active else (),
                target=targets.get(island.index),
                iterate=iterate,
            )

        todo = [island for island in islands if island.index not in errors_by_island]
        if options.workers > 1 and len(todo) > 1:
            with ThreadPoolExecutor(max_workers=options.workers) as executor:
                futures = [executor.submit(run, island) for island in todo]
                outcomes = [future.result() for future in futures]
        else:
            outcomes = [run(island) for island in todo]
        solved = {island.index: outcome for island, outcome in zip(todo, outcomes)}

        reports: List[IslandReport] = []
        updated: Dict[VarKey, float] = {}
        for island in islands:
            if island.index in errors_by_island:
                reports.append(self._skipped(island, errors_by_island[island.index]))
                continue
            system, outcome = solved[island.index]
            diagnosis = diagnose(system, outcome, pool, options)
            pool.scatter(island.variables, outcome.x)
            for key in island.variables + island.pinned:
                updated[key] = pool.value(key)
                if key in island.variables:
                    self._cache[key] = pool.value(key)
            report = IslandReport(
                index=island.index,
                status=diagnosis.status,
                classification=diagnosis.classification,
                variables=list(island.variables) + list(island.pinned),
                constraints=_constraints_of(island),
                free_variables=len(island.variables),
                equations=system.rows,
                rank=diagnosis.rank,
                dof=diagnosis.dof,
                iterations=outcome.iterations,
                max_residual=outcome.max_residual,
                redundant=diagnosis.redundant,
                conflicting=diagnosis.conflicting,
                warm_started=any(key in warm for key in island.variables),
            )
            logger.info(
                "Island %d: %s (F=%d, C=%d, rank=%d, dof=%d, iterations=%d, max residual %.3e)",
                report.index,
                report.status.value,
                report.free_variables,
                report.equations,
                report.rank,
                report.dof,
                report.iterations,
                report.max_residual,
            )
            reports.append(report)

        for err in orphans:
            reports.append(self._skipped(Island(index=len(reports)), [err]))

        # bound points outside any island still report their pinned position
        for key in pool.keys():
            if key not in owner and not pool.is_free(key):
                updated[key] = pool.value(key)

        return SolveResult(updated_variables=updated, islands=reports, structural_errors=list(errors))

    @staticmethod
    def _skipped(island: Island, errors: Sequence[StructuralError]) -> IslandReport:
        constraints = _constraints_of(island)
        for err in errors:
            if err.constraint is not None and err.constraint not in constraints:
                constraints.append(err.constraint)
        logger.info("Island %d: skipped (%s)", island.index, "; ".join(str(err) for err in errors))
        return IslandReport(
            index=island.index,
            status=IslandStatus.SKIPPED,
            classification=None,
            variables=list(island.variables) + list(island.pinned),
            constraints=constraints,
            free_variables=len(island.variables),
            equations=island.rows,
            rank=0,
            dof=len(island.variables),
            errors=list(errors),
        )


def solve(
    sketch: Sketch,
    drag: Optional[Drag] = None,
    options: Optional[SolveOptions] = None,
) -> SolveResult:
    """Solve ``sketch`` once with an empty warm-start cache."""

    return Solver(options).solve(sketch, drag)


__all__ = ["Solver", "feature_variables", "solve"]
