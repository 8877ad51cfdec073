"""Structural validation of a sketch snapshot before any numeric work."""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from .sketch import Constraint, ConstraintKind, Feature, FeatureKind, Handle, Sketch

logger = logging.getLogger(__name__)


class StructuralError(ValueError):
    """A sketch item that cannot be compiled into equations.

    ``references`` lists every feature handle the broken item touches so the
    solver can skip exactly the island that contains it.
    """

    def __init__(
        self,
        message: str,
        *,
        feature: Optional[Handle] = None,
        constraint: Optional[Handle] = None,
        references: Sequence[Handle] = (),
    ) -> None:
        super().__init__(message)
        self.message = message
        self.feature = feature
        self.constraint = constraint
        self.references: Tuple[Handle, ...] = tuple(references)

    def __str__(self) -> str:
        return self.message


P = FeatureKind.POINT
L = FeatureKind.LINE
C = FeatureKind.CIRCLE
A = FeatureKind.ARC

_USING_KINDS: Dict[FeatureKind, Tuple[FeatureKind, ...]] = {
    FeatureKind.POINT: (),
    FeatureKind.LINE: (P, P),
    FeatureKind.CIRCLE: (P,),
    FeatureKind.ARC: (P, P, P),
    FeatureKind.GEAR: (P,),
}

_ROUND: FrozenSet[FeatureKind] = frozenset({C, A})

# Accepted reference signatures per constraint kind; each slot is a set of kinds.
_SIGNATURES: Dict[ConstraintKind, Tuple[Tuple[FrozenSet[FeatureKind], ...], ...]] = {
    ConstraintKind.FIXED: ((frozenset({P}),),),
    ConstraintKind.LENGTH: ((frozenset({L}),), (frozenset({P}), frozenset({P}))),
    ConstraintKind.RADIUS: ((_ROUND,),),
    ConstraintKind.RADIUS_EQUAL: ((_ROUND, _ROUND),),
    ConstraintKind.PARALLEL: ((frozenset({L}), frozenset({L})),),
    ConstraintKind.PERPENDICULAR: ((frozenset({L}), frozenset({L})),),
    ConstraintKind.ANGLE: ((frozenset({L}),), (frozenset({L}), frozenset({L}))),
    ConstraintKind.COINCIDENT: ((frozenset({P}), frozenset({P, L, C, A})),),
    ConstraintKind.SYMMETRIC: (
        (frozenset({P}), frozenset({P}), frozenset({L})),
        (frozenset({P}), frozenset({P}), frozenset({P})),
    ),
    ConstraintKind.ALONG_AXIS: ((frozenset({L}),),),
    ConstraintKind.LERP: ((frozenset({P}), frozenset({L})),),
    ConstraintKind.EQUAL_LENGTH: ((frozenset({L}), frozenset({L})),),
}

assert set(_SIGNATURES) == set(ConstraintKind), "constraint signature table is incomplete"
assert set(_USING_KINDS) == set(FeatureKind), "feature arity table is incomplete"


def _describe_ref(sketch: Sketch, handle: Handle) -> str:
    if sketch.is_stale(handle):
        return f"stale reference {handle}"
    return f"dangling reference {handle}"


def _check_feature(sketch: Sketch, key: Handle, feature: Feature) -> List[StructuralError]:
    errors: List[StructuralError] = []
    expected = _USING_KINDS[feature.kind]
    refs = tuple(feature.using)
    if len(refs) != len(expected):
        errors.append(
            StructuralError(
                f"feature {key} ({feature.kind.value}) expects {len(expected)} references, got {len(refs)}",
                feature=key,
                references=(key,) + refs,
            )
        )
        return errors
    for ref, kind in zip(refs, expected):
        target = sketch.get_feature(ref)
        if target is None:
            errors.append(
                StructuralError(
                    f"feature {key} ({feature.kind.value}) has {_describe_ref(sketch, ref)}",
                    feature=key,
                    references=(key,) + refs,
                )
            )
        elif target.kind is not kind:
            errors.append(
                StructuralError(
                    f"feature {key} ({feature.kind.value}) references {ref} which is a "
                    f"{target.kind.value}, expected {kind.value}",
                    feature=key,
                    references=(key,) + refs,
                )
            )
    if len(set(refs)) != len(refs):
        errors.append(
            StructuralError(
                f"feature {key} ({feature.kind.value}) references the same point twice",
                feature=key,
                references=(key,) + refs,
            )
        )
    return errors


def _find_cycles(sketch: Sketch) -> List[StructuralError]:
    errors: List[StructuralError] = []
    state: Dict[Handle, int] = {}
    reported: Set[Handle] = set()

    def visit(key: Handle, stack: List[Handle]) -> None:
        state[key] = 1
        stack.append(key)
        feature = sketch.get_feature(key)
        for ref in feature.using if feature is not None else ():
            if not sketch.is_live(ref):
                continue
            if state.get(ref) == 1:
                cycle = stack[stack.index(ref):]
                if not reported.intersection(cycle):
                    reported.update(cycle)
                    path = " -> ".join(str(h) for h in cycle + [ref])
                    errors.append(
                        StructuralError(
                            f"cyclic feature dependency {path}",
                            feature=ref,
                            references=tuple(cycle),
                        )
                    )
            elif ref not in state:
                visit(ref, stack)
        stack.pop()
        state[key] = 2

    for key, _ in sketch.features():
        if key not in state:
            visit(key, [])
    return errors


def _check_values(constraint: Constraint) -> Optional[str]:
    kind = constraint.kind
    if kind is ConstraintKind.ALONG_AXIS and constraint.cardinality is None:
        return "needs a cardinality axis"
    if kind in (ConstraintKind.LENGTH, ConstraintKind.RADIUS, ConstraintKind.ANGLE, ConstraintKind.LERP):
        if constraint.amt is None:
            return "needs an amount"
    if kind in (ConstraintKind.LENGTH, ConstraintKind.RADIUS) and constraint.amt is not None and constraint.amt < 0:
        return f"has negative amount {constraint.amt:g}"
    if kind in (ConstraintKind.RADIUS_EQUAL, ConstraintKind.EQUAL_LENGTH) and constraint.multiplier <= 0:
        return f"has non-positive multiplier {constraint.multiplier:g}"
    return None


def _check_constraint(
    sketch: Sketch,
    key: Handle,
    constraint: Constraint,
    broken: Set[Handle],
) -> Optional[StructuralError]:
    refs = tuple(constraint.features)
    label = f"constraint {key} ({constraint.kind.value})"

    def error(message: str) -> StructuralError:
        return StructuralError(f"{label} {message}", constraint=key, references=refs)

    for ref in refs:
        if not sketch.is_live(ref):
            return error(f"has {_describe_ref(sketch, ref)}")
    if len(set(refs)) != len(refs):
        return error("references the same feature twice")
    for ref in refs:
        if ref in broken:
            return error(f"references invalid feature {ref}")

    kinds = [sketch.feature(ref).kind for ref in refs]
    signatures = _SIGNATURES[constraint.kind]
    if not any(
        len(sig) == len(kinds) and all(kind in slot for kind, slot in zip(kinds, sig))
        for sig in signatures
    ):
        got = ", ".join(k.value for k in kinds) or "nothing"
        return error(f"cannot reference ({got})")

    problem = _check_values(constraint)
    if problem:
        return error(problem)
    return None


def broken_features(sketch: Sketch, errors: Sequence[StructuralError]) -> Set[Handle]:
    """Live features that cannot be compiled because of ``errors``.

    A feature built on a broken feature is broken too.
    """

    broken: Set[Handle] = set()
    for err in errors:
        if err.feature is not None:
            broken.add(err.feature)
    changed = True
    while changed:
        changed = False
        for key, feature in sketch.features():
            if key not in broken and any(ref in broken or not sketch.is_live(ref) for ref in feature.using):
                broken.add(key)
                changed = True
    return broken


def validate_sketch(sketch: Sketch, *, raise_on_error: bool = False) -> List[StructuralError]:
    """Collect every structural problem in ``sketch``.

    Returns the errors in feature-then-constraint creation order. With
    ``raise_on_error`` the first error is raised instead.
    """

    errors: List[StructuralError] = []
    for key, feature in sketch.features():
        errors.extend(_check_feature(sketch, key, feature))
    errors.extend(_find_cycles(sketch))

    broken = broken_features(sketch, errors)
    for key, constraint in sketch.constraints():
        err = _check_constraint(sketch, key, constraint, broken)
        if err is not None:
            errors.append(err)

    if errors:
        logger.info("Structural validation found %d problem(s)", len(errors))
        for err in errors:
            logger.debug("  %s", err)
        if raise_on_error:
            raise errors[0]
    return errors


__all__ = ["StructuralError", "broken_features", "validate_sketch"]
