"""Compile sketch constraints into residual blocks with closed-form Jacobians."""

from __future__ import annotations

import logging
import math
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from ..sketch import Axis, Constraint, ConstraintKind, FeatureKind, Handle, Sketch
from .math_utils import _cross_2d, _dot_2d, _safe_norm, _unit_or_zero
from .model import ResidualSpec, VarKey
from .pool import VariablePool

logger = logging.getLogger(__name__)

RawFunc = Callable[[np.ndarray], np.ndarray]
Builder = Callable[[Sketch, Handle, Constraint, VariablePool], List[ResidualSpec]]


class ResidualBuilderError(ValueError):
    """Raised when a constraint cannot be turned into residuals."""


def _pt(handle: Handle) -> Tuple[VarKey, VarKey]:
    return (handle, "x"), (handle, "y")


def _ends(sketch: Sketch, line: Handle) -> Tuple[Handle, Handle]:
    feature = sketch.feature(line)
    return feature.using[0], feature.using[1]


def _make_spec(
    key: str,
    kind: str,
    variables: Sequence[VarKey],
    func: RawFunc,
    jac: RawFunc,
    *,
    constraint: Optional[Handle] = None,
    feature: Optional[Handle] = None,
) -> ResidualSpec:
    """Wrap raw residual callables, merging repeated variables.

    A variable that appears twice (a point that is also a line endpoint, say)
    gets one column holding the sum of its partials.
    """

    raw = list(variables)
    unique: List[VarKey] = []
    slot: Dict[VarKey, int] = {}
    for var in raw:
        if var not in slot:
            slot[var] = len(unique)
            unique.append(var)
    size = int(np.asarray(func(np.zeros(len(raw)))).size)

    gather = np.array([slot[var] for var in raw], dtype=int)
    repeated = len(unique) != len(raw)

    def wrapped_func(v: np.ndarray) -> np.ndarray:
        return np.atleast_1d(np.asarray(func(v[gather]), dtype=float))

    def wrapped_jac(v: np.ndarray) -> np.ndarray:
        full = np.atleast_2d(np.asarray(jac(v[gather]), dtype=float))
        if not repeated:
            return full
        merged = np.zeros((full.shape[0], len(unique)))
        for col, target in enumerate(gather):
            merged[:, target] += full[:, col]
        return merged

    return ResidualSpec(
        key=key,
        kind=kind,
        size=size,
        variables=tuple(unique),
        func=wrapped_func,
        jac=wrapped_jac,
        constraint=constraint,
        feature=feature,
    )


def _spec_for(
    handle: Handle,
    constraint: Constraint,
    variables: Sequence[VarKey],
    func: RawFunc,
    jac: RawFunc,
) -> ResidualSpec:
    kind = constraint.kind.value
    return _make_spec(f"{kind}{handle}", kind, variables, func, jac, constraint=handle)


# -- radius terms ------------------------------------------------------------


def _radius_term(sketch: Sketch, handle: Handle) -> Tuple[List[VarKey], Callable[[np.ndarray], Tuple[float, np.ndarray]]]:
    """Radius of a circle (its ``r`` variable) or arc (``|start - center|``)."""

    feature = sketch.feature(handle)
    if feature.kind is FeatureKind.CIRCLE:
        def circle_radius(v: np.ndarray) -> Tuple[float, np.ndarray]:
            return float(v[0]), np.array([1.0])

        return [(handle, "r")], circle_radius
    if feature.kind is FeatureKind.ARC:
        start, center = feature.using[0], feature.using[1]

        def arc_radius(v: np.ndarray) -> Tuple[float, np.ndarray]:
            dx, dy = v[0] - v[2], v[1] - v[3]
            ux, uy = _unit_or_zero(dx, dy)
            return _safe_norm(dx, dy), np.array([ux, uy, -ux, -uy])

        return [*_pt(start), *_pt(center)], arc_radius
    raise ResidualBuilderError(f"feature {handle} ({feature.kind.value}) has no radius")


# -- builders ----------------------------------------------------------------


def _build_fixed(sketch: Sketch, handle: Handle, constraint: Constraint, pool: VariablePool) -> List[ResidualSpec]:
    point = constraint.features[0]
    if pool.bind(point, constraint.at, handle):
        return []
    cx, cy = constraint.at

    def func(v: np.ndarray) -> np.ndarray:
        return np.array([v[0] - cx, v[1] - cy])

    def jac(v: np.ndarray) -> np.ndarray:
        return np.eye(2)

    return [_spec_for(handle, constraint, _pt(point), func, jac)]


def _build_length(sketch: Sketch, handle: Handle, constraint: Constraint, pool: VariablePool) -> List[ResidualSpec]:
    refs = constraint.features
    a, b = _ends(sketch, refs[0]) if len(refs) == 1 else (refs[0], refs[1])
    target = float(constraint.amt or 0.0)
    variables = [*_pt(a), *_pt(b)]
    card = constraint.cardinality

    if card is not None or target == 0.0:
        ex, ey = 0.0, 0.0
        if card is not None and card.axis is Axis.LEFT_RIGHT:
            ex = (-1.0 if card.negated else 1.0) * target
        elif card is not None:
            ey = (1.0 if card.negated else -1.0) * target

        def func(v: np.ndarray) -> np.ndarray:
            return np.array([v[2] - v[0] - ex, v[3] - v[1] - ey])

        def jac(v: np.ndarray) -> np.ndarray:
            return np.array([[-1.0, 0.0, 1.0, 0.0], [0.0, -1.0, 0.0, 1.0]])

        return [_spec_for(handle, constraint, variables, func, jac)]

    def func(v: np.ndarray) -> np.ndarray:
        dx, dy = v[2] - v[0], v[3] - v[1]
        return np.array([(dx * dx + dy * dy - target * target) / (2.0 * target)])

    def jac(v: np.ndarray) -> np.ndarray:
        dx, dy = v[2] - v[0], v[3] - v[1]
        return np.array([[-dx, -dy, dx, dy]]) / target

    return [_spec_for(handle, constraint, variables, func, jac)]


def _build_radius(sketch: Sketch, handle: Handle, constraint: Constraint, pool: VariablePool) -> List[ResidualSpec]:
    variables, term = _radius_term(sketch, constraint.features[0])
    target = float(constraint.amt or 0.0)

    def func(v: np.ndarray) -> np.ndarray:
        return np.array([term(v)[0] - target])

    def jac(v: np.ndarray) -> np.ndarray:
        return term(v)[1][None, :]

    return [_spec_for(handle, constraint, variables, func, jac)]


def _build_radius_equal(sketch: Sketch, handle: Handle, constraint: Constraint, pool: VariablePool) -> List[ResidualSpec]:
    vars_a, term_a = _radius_term(sketch, constraint.features[0])
    vars_b, term_b = _radius_term(sketch, constraint.features[1])
    m = constraint.multiplier
    n = len(vars_a)

    def func(v: np.ndarray) -> np.ndarray:
        return np.array([term_a(v[:n])[0] - m * term_b(v[n:])[0]])

    def jac(v: np.ndarray) -> np.ndarray:
        return np.concatenate([term_a(v[:n])[1], -m * term_b(v[n:])[1]])[None, :]

    return [_spec_for(handle, constraint, vars_a + vars_b, func, jac)]


def _two_lines(sketch: Sketch, constraint: Constraint) -> List[VarKey]:
    a, b = _ends(sketch, constraint.features[0])
    c, d = _ends(sketch, constraint.features[1])
    return [*_pt(a), *_pt(b), *_pt(c), *_pt(d)]


def _dirs(v: np.ndarray) -> Tuple[float, float, float, float]:
    return v[2] - v[0], v[3] - v[1], v[6] - v[4], v[7] - v[5]


def _build_parallel(sketch: Sketch, handle: Handle, constraint: Constraint, pool: VariablePool) -> List[ResidualSpec]:
    def func(v: np.ndarray) -> np.ndarray:
        return np.array([_cross_2d(*_dirs(v))])

    def jac(v: np.ndarray) -> np.ndarray:
        d1x, d1y, d2x, d2y = _dirs(v)
        return np.array([[-d2y, d2x, d2y, -d2x, d1y, -d1x, -d1y, d1x]])

    return [_spec_for(handle, constraint, _two_lines(sketch, constraint), func, jac)]


def _build_perpendicular(sketch: Sketch, handle: Handle, constraint: Constraint, pool: VariablePool) -> List[ResidualSpec]:
    def func(v: np.ndarray) -> np.ndarray:
        return np.array([_dot_2d(*_dirs(v))])

    def jac(v: np.ndarray) -> np.ndarray:
        d1x, d1y, d2x, d2y = _dirs(v)
        return np.array([[-d2x, -d2y, d2x, d2y, -d1x, -d1y, d1x, d1y]])

    return [_spec_for(handle, constraint, _two_lines(sketch, constraint), func, jac)]


def _build_angle(sketch: Sketch, handle: Handle, constraint: Constraint, pool: VariablePool) -> List[ResidualSpec]:
    theta = math.radians(float(constraint.amt or 0.0))
    cos_t, sin_t = math.cos(theta), math.sin(theta)

    if len(constraint.features) == 1:
        a, b = _ends(sketch, constraint.features[0])

        def func_axis(v: np.ndarray) -> np.ndarray:
            dx, dy = v[2] - v[0], v[3] - v[1]
            return np.array([dy * cos_t - dx * sin_t])

        def jac_axis(v: np.ndarray) -> np.ndarray:
            return np.array([[sin_t, -cos_t, -sin_t, cos_t]])

        return [_spec_for(handle, constraint, [*_pt(a), *_pt(b)], func_axis, jac_axis)]

    def func(v: np.ndarray) -> np.ndarray:
        d = _dirs(v)
        return np.array([_cross_2d(*d) * cos_t - _dot_2d(*d) * sin_t])

    def jac(v: np.ndarray) -> np.ndarray:
        d1x, d1y, d2x, d2y = _dirs(v)
        cross = np.array([-d2y, d2x, d2y, -d2x, d1y, -d1x, -d1y, d1x])
        dot = np.array([-d2x, -d2y, d2x, d2y, -d1x, -d1y, d1x, d1y])
        return (cross * cos_t - dot * sin_t)[None, :]

    return [_spec_for(handle, constraint, _two_lines(sketch, constraint), func, jac)]


def _build_coincident(sketch: Sketch, handle: Handle, constraint: Constraint, pool: VariablePool) -> List[ResidualSpec]:
    point, other = constraint.features
    target = sketch.feature(other)

    if target.kind is FeatureKind.POINT:
        def func(v: np.ndarray) -> np.ndarray:
            return np.array([v[0] - v[2], v[1] - v[3]])

        def jac(v: np.ndarray) -> np.ndarray:
            return np.array([[1.0, 0.0, -1.0, 0.0], [0.0, 1.0, 0.0, -1.0]])

        return [_spec_for(handle, constraint, [*_pt(point), *_pt(other)], func, jac)]

    if target.kind is FeatureKind.LINE:
        a, b = _ends(sketch, other)

        def func(v: np.ndarray) -> np.ndarray:
            ux, uy = v[0] - v[2], v[1] - v[3]
            wx, wy = v[4] - v[2], v[5] - v[3]
            return np.array([_cross_2d(ux, uy, wx, wy)])

        def jac(v: np.ndarray) -> np.ndarray:
            ux, uy = v[0] - v[2], v[1] - v[3]
            wx, wy = v[4] - v[2], v[5] - v[3]
            dp = (wy, -wx)
            dw = (-uy, ux)
            return np.array([[dp[0], dp[1], -dp[0] - dw[0], -dp[1] - dw[1], dw[0], dw[1]]])

        return [_spec_for(handle, constraint, [*_pt(point), *_pt(a), *_pt(b)], func, jac)]

    if target.kind is FeatureKind.CIRCLE:
        center = target.using[0]

        def func(v: np.ndarray) -> np.ndarray:
            return np.array([_safe_norm(v[0] - v[2], v[1] - v[3]) - v[4]])

        def jac(v: np.ndarray) -> np.ndarray:
            ux, uy = _unit_or_zero(v[0] - v[2], v[1] - v[3])
            return np.array([[ux, uy, -ux, -uy, -1.0]])

        variables = [*_pt(point), *_pt(center), (other, "r")]
        return [_spec_for(handle, constraint, variables, func, jac)]

    if target.kind is FeatureKind.ARC:
        start, center = target.using[0], target.using[1]

        def func(v: np.ndarray) -> np.ndarray:
            return np.array([_safe_norm(v[0] - v[2], v[1] - v[3]) - _safe_norm(v[4] - v[2], v[5] - v[3])])

        def jac(v: np.ndarray) -> np.ndarray:
            px, py = _unit_or_zero(v[0] - v[2], v[1] - v[3])
            sx, sy = _unit_or_zero(v[4] - v[2], v[5] - v[3])
            return np.array([[px, py, sx - px, sy - py, -sx, -sy]])

        variables = [*_pt(point), *_pt(center), *_pt(start)]
        return [_spec_for(handle, constraint, variables, func, jac)]

    raise ResidualBuilderError(f"constraint {handle} cannot make a point coincident with a {target.kind.value}")


def _build_symmetric(sketch: Sketch, handle: Handle, constraint: Constraint, pool: VariablePool) -> List[ResidualSpec]:
    p1, p2, about = constraint.features
    mirror = sketch.feature(about)

    if mirror.kind is FeatureKind.POINT:
        def func(v: np.ndarray) -> np.ndarray:
            return np.array([v[0] + v[2] - 2.0 * v[4], v[1] + v[3] - 2.0 * v[5]])

        def jac(v: np.ndarray) -> np.ndarray:
            return np.array([[1.0, 0.0, 1.0, 0.0, -2.0, 0.0], [0.0, 1.0, 0.0, 1.0, 0.0, -2.0]])

        return [_spec_for(handle, constraint, [*_pt(p1), *_pt(p2), *_pt(about)], func, jac)]

    a, b = _ends(sketch, about)

    def parts(v: np.ndarray) -> Tuple[float, float, float, float, float, float]:
        mx, my = 0.5 * (v[0] + v[2]), 0.5 * (v[1] + v[3])
        wx, wy = v[6] - v[4], v[7] - v[5]
        return mx - v[4], my - v[5], wx, wy, v[2] - v[0], v[3] - v[1]

    def func(v: np.ndarray) -> np.ndarray:
        ux, uy, wx, wy, ex, ey = parts(v)
        return np.array([_cross_2d(ux, uy, wx, wy), _dot_2d(ex, ey, wx, wy)])

    def jac(v: np.ndarray) -> np.ndarray:
        ux, uy, wx, wy, ex, ey = parts(v)
        du = (wy, -wx)
        dw = (-uy, ux)
        row_mid = [
            0.5 * du[0], 0.5 * du[1],
            0.5 * du[0], 0.5 * du[1],
            -du[0] - dw[0], -du[1] - dw[1],
            dw[0], dw[1],
        ]
        row_perp = [-wx, -wy, wx, wy, -ex, -ey, ex, ey]
        return np.array([row_mid, row_perp])

    variables = [*_pt(p1), *_pt(p2), *_pt(a), *_pt(b)]
    return [_spec_for(handle, constraint, variables, func, jac)]


def _build_along_axis(sketch: Sketch, handle: Handle, constraint: Constraint, pool: VariablePool) -> List[ResidualSpec]:
    a, b = _ends(sketch, constraint.features[0])
    axis = constraint.cardinality.axis if constraint.cardinality is not None else Axis.LEFT_RIGHT
    # horizontal lines pin dy, vertical lines pin dx
    comp = "y" if axis is Axis.LEFT_RIGHT else "x"

    def func(v: np.ndarray) -> np.ndarray:
        return np.array([v[1] - v[0]])

    def jac(v: np.ndarray) -> np.ndarray:
        return np.array([[-1.0, 1.0]])

    return [_spec_for(handle, constraint, [(a, comp), (b, comp)], func, jac)]


def _build_lerp(sketch: Sketch, handle: Handle, constraint: Constraint, pool: VariablePool) -> List[ResidualSpec]:
    point, line = constraint.features
    a, b = _ends(sketch, line)
    t = float(constraint.amt or 0.0)

    def func(v: np.ndarray) -> np.ndarray:
        return np.array([
            v[0] - (1.0 - t) * v[2] - t * v[4],
            v[1] - (1.0 - t) * v[3] - t * v[5],
        ])

    def jac(v: np.ndarray) -> np.ndarray:
        return np.array([
            [1.0, 0.0, t - 1.0, 0.0, -t, 0.0],
            [0.0, 1.0, 0.0, t - 1.0, 0.0, -t],
        ])

    return [_spec_for(handle, constraint, [*_pt(point), *_pt(a), *_pt(b)], func, jac)]


def _build_equal_length(sketch: Sketch, handle: Handle, constraint: Constraint, pool: VariablePool) -> List[ResidualSpec]:
    m = constraint.multiplier

    def func(v: np.ndarray) -> np.ndarray:
        d1x, d1y, d2x, d2y = _dirs(v)
        return np.array([_safe_norm(d1x, d1y) - m * _safe_norm(d2x, d2y)])

    def jac(v: np.ndarray) -> np.ndarray:
        d1x, d1y, d2x, d2y = _dirs(v)
        u1 = _unit_or_zero(d1x, d1y)
        u2 = _unit_or_zero(d2x, d2y)
        return np.array([[
            -u1[0], -u1[1], u1[0], u1[1],
            m * u2[0], m * u2[1], -m * u2[0], -m * u2[1],
        ]])

    return [_spec_for(handle, constraint, _two_lines(sketch, constraint), func, jac)]


_BUILDERS: Dict[ConstraintKind, Builder] = {
    ConstraintKind.FIXED: _build_fixed,
    ConstraintKind.LENGTH: _build_length,
    ConstraintKind.RADIUS: _build_radius,
    ConstraintKind.RADIUS_EQUAL: _build_radius_equal,
    ConstraintKind.PARALLEL: _build_parallel,
    ConstraintKind.PERPENDICULAR: _build_perpendicular,
    ConstraintKind.ANGLE: _build_angle,
    ConstraintKind.COINCIDENT: _build_coincident,
    ConstraintKind.SYMMETRIC: _build_symmetric,
    ConstraintKind.ALONG_AXIS: _build_along_axis,
    ConstraintKind.LERP: _build_lerp,
    ConstraintKind.EQUAL_LENGTH: _build_equal_length,
}

assert set(_BUILDERS) == set(ConstraintKind), "residual builder table is incomplete"


def _arc_residual(sketch: Sketch, handle: Handle) -> ResidualSpec:
    start, center, end = sketch.feature(handle).using

    def func(v: np.ndarray) -> np.ndarray:
        return np.array([_safe_norm(v[4] - v[2], v[5] - v[3]) - _safe_norm(v[0] - v[2], v[1] - v[3])])

    def jac(v: np.ndarray) -> np.ndarray:
        sx, sy = _unit_or_zero(v[0] - v[2], v[1] - v[3])
        ex, ey = _unit_or_zero(v[4] - v[2], v[5] - v[3])
        return np.array([[-sx, -sy, sx - ex, sy - ey, ex, ey]])

    return _make_spec(
        f"arc{handle}",
        "arc",
        [*_pt(start), *_pt(center), *_pt(end)],
        func,
        jac,
        feature=handle,
    )


def build_constraint(sketch: Sketch, handle: Handle, constraint: Constraint, pool: VariablePool) -> List[ResidualSpec]:
    return _BUILDERS[constraint.kind](sketch, handle, constraint, pool)


def compile_sketch(
    sketch: Sketch,
    pool: VariablePool,
    *,
    skip_features: Optional[Set[Handle]] = None,
    skip_constraints: Optional[Set[Handle]] = None,
) -> List[ResidualSpec]:
    """Return the residual blocks of ``sketch`` in creation order.

    Fixed constraints are bound into ``pool`` as they are met, so the first
    Fixed on a point wins and any later one becomes an ordinary residual.
    Arc intrinsic equations come first, then constraints.
    """

    skip_features = skip_features or set()
    skip_constraints = skip_constraints or set()
    specs: List[ResidualSpec] = []
    for handle, feature in sketch.features():
        if feature.kind is FeatureKind.ARC and handle not in skip_features:
            specs.append(_arc_residual(sketch, handle))
    for handle, constraint in sketch.constraints():
        if handle in skip_constraints:
            continue
        specs.extend(build_constraint(sketch, handle, constraint, pool))
    logger.info(
        "Compiled %d residual blocks (%d rows) over %d free variables",
        len(specs),
        sum(spec.size for spec in specs),
        len(pool.free_keys()),
    )
    return specs


__all__ = ["ResidualBuilderError", "build_constraint", "compile_sketch"]
