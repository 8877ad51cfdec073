"""Read-only decoder for persisted sketches and a JSON view of solve results."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .sketch import (
    Axis,
    Cardinality,
    Constraint,
    ConstraintKind,
    Feature,
    FeatureKind,
    GearInfo,
    Group,
    GroupType,
    Handle,
    RefOffset,
    Sketch,
)
from .solver.model import SolveResult

logger = logging.getLogger(__name__)


class SketchFormatError(ValueError):
    """Raised when a persisted sketch record cannot be decoded."""


def _norm(name: str) -> str:
    return name.replace("_", "").replace("-", "").lower()


_FEATURE_KINDS: Dict[str, FeatureKind] = {
    "point": FeatureKind.POINT,
    "line": FeatureKind.LINE,
    "linesegment": FeatureKind.LINE,
    "circle": FeatureKind.CIRCLE,
    "arc": FeatureKind.ARC,
    "gear": FeatureKind.GEAR,
    "spurgear": FeatureKind.GEAR,
}

_CONSTRAINT_KINDS: Dict[str, ConstraintKind] = {
    "fixed": ConstraintKind.FIXED,
    "length": ConstraintKind.LENGTH,
    "linelength": ConstraintKind.LENGTH,
    "pointdistance": ConstraintKind.LENGTH,
    "radius": ConstraintKind.RADIUS,
    "circleradius": ConstraintKind.RADIUS,
    "radiusequal": ConstraintKind.RADIUS_EQUAL,
    "circleradiusequal": ConstraintKind.RADIUS_EQUAL,
    "parallel": ConstraintKind.PARALLEL,
    "linesparallel": ConstraintKind.PARALLEL,
    "perpendicular": ConstraintKind.PERPENDICULAR,
    "linesperpendicular": ConstraintKind.PERPENDICULAR,
    "angle": ConstraintKind.ANGLE,
    "lineangle": ConstraintKind.ANGLE,
    "coincident": ConstraintKind.COINCIDENT,
    "pointcoincident": ConstraintKind.COINCIDENT,
    "pointsoncircle": ConstraintKind.COINCIDENT,
    "symmetric": ConstraintKind.SYMMETRIC,
    "pointssymmetric": ConstraintKind.SYMMETRIC,
    "alongaxis": ConstraintKind.ALONG_AXIS,
    "linealongcardinal": ConstraintKind.ALONG_AXIS,
    "lerp": ConstraintKind.LERP,
    "pointlerpline": ConstraintKind.LERP,
    "equallength": ConstraintKind.EQUAL_LENGTH,
    "linelengthsequal": ConstraintKind.EQUAL_LENGTH,
}

_AXES: Dict[str, Axis] = {
    "leftright": Axis.LEFT_RIGHT,
    "horizontal": Axis.LEFT_RIGHT,
    "topbottom": Axis.TOP_BOTTOM,
    "vertical": Axis.TOP_BOTTOM,
}

_GROUP_TYPES: Dict[str, GroupType] = {
    "boundary": GroupType.BOUNDARY,
    "hole": GroupType.HOLE,
    "interior": GroupType.HOLE,
}

_MULTIPLIER_KINDS = (ConstraintKind.RADIUS_EQUAL, ConstraintKind.EQUAL_LENGTH)

assert set(_FEATURE_KINDS.values()) == set(FeatureKind), "feature kind aliases are incomplete"
assert set(_CONSTRAINT_KINDS.values()) == set(ConstraintKind), "constraint kind aliases are incomplete"


def _lookup(table: Mapping[str, Any], name: Any, what: str, where: str) -> Any:
    if not isinstance(name, str):
        raise SketchFormatError(f"{where}: {what} must be a string, got {name!r}")
    try:
        return table[_norm(name)]
    except KeyError as exc:
        raise SketchFormatError(f"{where}: unknown {what} {name!r}") from exc


def _float(value: Any, where: str, default: Optional[float] = 0.0) -> Optional[float]:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SketchFormatError(f"{where}: expected a number, got {value!r}")
    return float(value)


def _int(value: Any, where: str, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise SketchFormatError(f"{where}: expected an integer, got {value!r}")
    return value


def _indices(value: Any, where: str) -> Tuple[Handle, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise SketchFormatError(f"{where}: expected a list of indices, got {value!r}")
    handles = []
    for idx in value:
        if isinstance(idx, bool) or not isinstance(idx, int):
            raise SketchFormatError(f"{where}: feature index must be an integer, got {idx!r}")
        # out of range indices stay as dead handles so validation can report them
        handles.append(Handle(idx, 0))
    return tuple(handles)


def _record(value: Any, where: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise SketchFormatError(f"{where}: expected an object, got {type(value).__name__}")
    return value


def _construction(record: Mapping[str, Any]) -> bool:
    meta = record.get("meta") or {}
    return bool(meta.get("construction", False)) if isinstance(meta, Mapping) else False


def _decode_feature(record: Mapping[str, Any], where: str) -> Feature:
    kind = _lookup(_FEATURE_KINDS, record.get("kind"), "feature kind", where)
    gear = None
    if kind is FeatureKind.GEAR:
        info = _record(record.get("gear_info") or {}, where)
        gear = GearInfo(
            module=_float(info.get("module"), where, 1.0),
            teeth=_int(info.get("teeth"), where, 20),
            pressure_angle=_float(info.get("pressure_angle"), where, 20.0),
            offset=_float(info.get("offset"), where, 0.0),
        )
    return Feature(
        kind=kind,
        using=_indices(record.get("using_idx"), where),
        x=_float(record.get("x"), where),
        y=_float(record.get("y"), where),
        r=_float(record.get("r"), where),
        construction=_construction(record),
        gear=gear,
    )


def _decode_cardinality(value: Any, where: str) -> Optional[Cardinality]:
    if value is None:
        return None
    if isinstance(value, str):
        return Cardinality(_lookup(_AXES, value, "axis", where))
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise SketchFormatError(f"{where}: cardinality must be [axis, negated], got {value!r}")
    return Cardinality(_lookup(_AXES, value[0], "axis", where), bool(value[1]))


def _decode_constraint(record: Mapping[str, Any], where: str) -> Constraint:
    kind = _lookup(_CONSTRAINT_KINDS, record.get("kind"), "constraint kind", where)
    at = record.get("at") or (0.0, 0.0)
    if not isinstance(at, (list, tuple)) or len(at) != 2:
        raise SketchFormatError(f"{where}: 'at' must be a pair, got {at!r}")
    amt = _float(record.get("amt"), where, None)
    if kind in _MULTIPLIER_KINDS and not amt:
        amt = None
    offset = _record(record.get("ref_offset") or {}, where)
    return Constraint(
        kind=kind,
        features=_indices(record.get("feature_idx"), where),
        amt=amt,
        at=(_float(at[0], where), _float(at[1], where)),
        cardinality=_decode_cardinality(record.get("cardinality"), where),
        ref_offset=RefOffset(
            x=_float(offset.get("x"), where, 0.0),
            y=_float(offset.get("y"), where, 35.0),
            variant=_int(offset.get("variant"), where, 0),
        ),
    )


def _decode_group(record: Mapping[str, Any], where: str) -> Group:
    typ = _lookup(_GROUP_TYPES, record.get("typ", "Boundary"), "group type", where)
    return Group(
        typ=typ,
        name=str(record.get("name", "")),
        features=list(_indices(record.get("features_idx"), where)),
        amt=_float(record.get("amt"), where, None),
        bottom=_float(record.get("bottom"), where, None),
    )


def _records(data: Mapping[str, Any], key: str) -> Sequence[Any]:
    value = data.get(key) or []
    if not isinstance(value, (list, tuple)):
        raise SketchFormatError(f"'{key}' must be a list")
    return value


def sketch_from_dict(data: Mapping[str, Any]) -> Sketch:
    """Decode the persisted structure into a fresh :class:`Sketch`.

    Feature ``i`` of the input becomes handle ``#i`` so index references map
    directly onto handles.
    """

    data = _record(data, "sketch")
    sketch = Sketch()
    for idx, raw in enumerate(_records(data, "features")):
        where = f"features[{idx}]"
        sketch.add_feature(_decode_feature(_record(raw, where), where))
    for idx, raw in enumerate(_records(data, "constraints")):
        where = f"constraints[{idx}]"
        sketch.add_constraint(_decode_constraint(_record(raw, where), where))
    for idx, raw in enumerate(_records(data, "groups")):
        where = f"groups[{idx}]"
        sketch.groups.append(_decode_group(_record(raw, where), where))
    sketch.viewport = dict(data.get("viewport") or {})
    sketch.properties = dict(data.get("properties") or {})
    logger.info(
        "Decoded sketch with %d features, %d constraints and %d groups",
        len(sketch),
        sum(1 for _ in sketch.constraints()),
        len(sketch.groups),
    )
    return sketch


def load_sketch(path: Union[str, Path]) -> Sketch:
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SketchFormatError(f"{path}: invalid JSON ({exc})") from exc
    return sketch_from_dict(data)


def _handle(handle: Optional[Handle]) -> Optional[int]:
    return None if handle is None else handle.index


def result_to_dict(result: SolveResult) -> Dict[str, Any]:
    """JSON-friendly view of a :class:`SolveResult`, keyed by feature index."""

    islands: List[Dict[str, Any]] = []
    for island in result.islands:
        islands.append(
            {
                "index": island.index,
                "status": island.status.value,
                "classification": island.classification.value if island.classification else None,
                "free_variables": island.free_variables,
                "equations": island.equations,
                "rank": island.rank,
                "dof": island.dof,
                "iterations": island.iterations,
                "max_residual": island.max_residual,
                "constraints": [_handle(h) for h in island.constraints],
                "redundant": [_handle(h) for h in island.redundant],
                "conflicting": [_handle(h) for h in island.conflicting],
                "errors": [str(err) for err in island.errors],
            }
        )
    variables: Dict[str, Dict[str, float]] = {}
    for (handle, component), value in sorted(result.updated_variables.items()):
        variables.setdefault(str(handle.index), {})[component] = value
    return {
        "success": result.success,
        "islands": islands,
        "variables": variables,
        "structural_errors": [str(err) for err in result.structural_errors],
    }


__all__ = ["SketchFormatError", "load_sketch", "result_to_dict", "sketch_from_dict"]
