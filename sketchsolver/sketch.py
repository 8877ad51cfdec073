"""Sketch arena: features, constraints and groups addressed by generational handles."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Iterator, List, Mapping, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SketchError(KeyError):
    """Raised when a handle does not resolve to a live sketch item."""

    def __str__(self) -> str:  # KeyError quotes its argument otherwise
        return str(self.args[0]) if self.args else ""


@dataclass(frozen=True, order=True)
class Handle:
    """Arena index plus the generation it was issued under."""

    index: int
    generation: int = 0

    def __str__(self) -> str:
        return f"#{self.index}" if self.generation == 0 else f"#{self.index}@{self.generation}"


class FeatureKind(enum.Enum):
    POINT = "point"
    LINE = "line"
    CIRCLE = "circle"
    ARC = "arc"
    GEAR = "gear"


class ConstraintKind(enum.Enum):
    FIXED = "fixed"
    LENGTH = "length"
    RADIUS = "radius"
    RADIUS_EQUAL = "radius_equal"
    PARALLEL = "parallel"
    PERPENDICULAR = "perpendicular"
    ANGLE = "angle"
    COINCIDENT = "coincident"
    SYMMETRIC = "symmetric"
    ALONG_AXIS = "along_axis"
    LERP = "lerp"
    EQUAL_LENGTH = "equal_length"


class Axis(enum.Enum):
    LEFT_RIGHT = "LeftRight"
    TOP_BOTTOM = "TopBottom"


class GroupType(enum.Enum):
    BOUNDARY = "Boundary"
    HOLE = "Hole"


@dataclass(frozen=True)
class Cardinality:
    """Which axis a dimension is measured along, and in which direction.

    ``LEFT_RIGHT`` measures towards +x, ``TOP_BOTTOM`` towards -y (the editor's
    "+V", upward on screen); ``negated`` flips the direction.
    """

    axis: Axis
    negated: bool = False


@dataclass(frozen=True)
class GearInfo:
    module: float = 1.0
    teeth: int = 20
    pressure_angle: float = 20.0
    offset: float = 0.0


@dataclass(frozen=True)
class RefOffset:
    """Label placement for dimension overlays; never read by the solver."""

    x: float = 0.0
    y: float = 35.0
    variant: int = 0


@dataclass
class Feature:
    kind: FeatureKind
    using: Tuple[Handle, ...] = ()
    x: float = 0.0
    y: float = 0.0
    r: float = 0.0
    construction: bool = False
    gear: Optional[GearInfo] = None

    @classmethod
    def point(cls, x: float, y: float, *, construction: bool = False) -> "Feature":
        return cls(FeatureKind.POINT, x=float(x), y=float(y), construction=construction)

    @classmethod
    def line(cls, p1: Handle, p2: Handle, *, construction: bool = False) -> "Feature":
        return cls(FeatureKind.LINE, using=(p1, p2), construction=construction)

    @classmethod
    def circle(cls, center: Handle, r: float, *, construction: bool = False) -> "Feature":
        return cls(FeatureKind.CIRCLE, using=(center,), r=float(r), construction=construction)

    @classmethod
    def arc(cls, start: Handle, center: Handle, end: Handle, *, construction: bool = False) -> "Feature":
        return cls(FeatureKind.ARC, using=(start, center, end), construction=construction)

    @classmethod
    def spur_gear(cls, center: Handle, info: Optional[GearInfo] = None) -> "Feature":
        return cls(FeatureKind.GEAR, using=(center,), gear=info or GearInfo())


@dataclass
class Constraint:
    kind: ConstraintKind
    features: Tuple[Handle, ...]
    amt: Optional[float] = None
    at: Tuple[float, float] = (0.0, 0.0)
    cardinality: Optional[Cardinality] = None
    ref_offset: RefOffset = field(default_factory=RefOffset)

    @classmethod
    def fixed(cls, point: Handle, x: float, y: float) -> "Constraint":
        return cls(ConstraintKind.FIXED, (point,), at=(float(x), float(y)))

    @classmethod
    def length(
        cls,
        *features: Handle,
        amt: float,
        cardinality: Optional[Cardinality] = None,
    ) -> "Constraint":
        return cls(ConstraintKind.LENGTH, tuple(features), amt=float(amt), cardinality=cardinality)

    @classmethod
    def radius(cls, feature: Handle, amt: float) -> "Constraint":
        return cls(ConstraintKind.RADIUS, (feature,), amt=float(amt))

    @classmethod
    def radius_equal(cls, a: Handle, b: Handle, multiplier: Optional[float] = None) -> "Constraint":
        return cls(ConstraintKind.RADIUS_EQUAL, (a, b), amt=multiplier)

    @classmethod
    def parallel(cls, a: Handle, b: Handle) -> "Constraint":
        return cls(ConstraintKind.PARALLEL, (a, b))

    @classmethod
    def perpendicular(cls, a: Handle, b: Handle) -> "Constraint":
        return cls(ConstraintKind.PERPENDICULAR, (a, b))

    @classmethod
    def angle(cls, *lines: Handle, degrees: float) -> "Constraint":
        return cls(ConstraintKind.ANGLE, tuple(lines), amt=float(degrees))

    @classmethod
    def coincident(cls, point: Handle, other: Handle) -> "Constraint":
        return cls(ConstraintKind.COINCIDENT, (point, other))

    @classmethod
    def symmetric(cls, p1: Handle, p2: Handle, about: Handle) -> "Constraint":
        return cls(ConstraintKind.SYMMETRIC, (p1, p2, about))

    @classmethod
    def along_axis(cls, line: Handle, axis: Axis) -> "Constraint":
        return cls(ConstraintKind.ALONG_AXIS, (line,), cardinality=Cardinality(axis))

    @classmethod
    def lerp(cls, point: Handle, line: Handle, t: float) -> "Constraint":
        return cls(ConstraintKind.LERP, (point, line), amt=float(t))

    @classmethod
    def equal_length(cls, a: Handle, b: Handle, multiplier: Optional[float] = None) -> "Constraint":
        return cls(ConstraintKind.EQUAL_LENGTH, (a, b), amt=multiplier)

    @property
    def multiplier(self) -> float:
        return 1.0 if self.amt is None else float(self.amt)


@dataclass
class Group:
    typ: GroupType
    name: str
    features: List[Handle] = field(default_factory=list)
    amt: Optional[float] = None
    bottom: Optional[float] = None


class _Arena(Generic[T]):
    """Append-only slot storage; deleted slots keep their index and bump generation."""

    def __init__(self) -> None:
        self._items: List[Optional[T]] = []
        self._generations: List[int] = []

    def insert(self, item: T) -> Handle:
        self._items.append(item)
        self._generations.append(0)
        return Handle(len(self._items) - 1, 0)

    def get(self, handle: Handle) -> Optional[T]:
        if not 0 <= handle.index < len(self._items):
            return None
        if self._generations[handle.index] != handle.generation:
            return None
        return self._items[handle.index]

    def is_stale(self, handle: Handle) -> bool:
        """Return ``True`` for a handle to a slot that was deleted after it was issued."""

        if not 0 <= handle.index < len(self._items):
            return False
        return self._generations[handle.index] != handle.generation

    def remove(self, handle: Handle) -> Optional[T]:
        item = self.get(handle)
        if item is None:
            return None
        self._items[handle.index] = None
        self._generations[handle.index] += 1
        return item

    def items(self) -> Iterator[Tuple[Handle, T]]:
        for index, item in enumerate(self._items):
            if item is not None:
                yield Handle(index, self._generations[index]), item

    def __len__(self) -> int:
        return sum(1 for item in self._items if item is not None)


class Sketch:
    """Feature/constraint graph owned by the editing layer.

    The solver only reads a sketch; results are committed back with
    :meth:`apply`.
    """

    def __init__(self) -> None:
        self._features: _Arena[Feature] = _Arena()
        self._constraints: _Arena[Constraint] = _Arena()
        self.groups: List[Group] = []
        self.viewport: Dict[str, Any] = {}
        self.properties: Dict[str, Any] = {}

    # -- features -----------------------------------------------------------

    def add_feature(self, feature: Feature) -> Handle:
        return self._features.insert(feature)

    def add_point(self, x: float, y: float, *, construction: bool = False) -> Handle:
        return self.add_feature(Feature.point(x, y, construction=construction))

    def add_line(self, p1: Handle, p2: Handle, *, construction: bool = False) -> Handle:
        return self.add_feature(Feature.line(p1, p2, construction=construction))

    def add_circle(self, center: Handle, r: float, *, construction: bool = False) -> Handle:
        return self.add_feature(Feature.circle(center, r, construction=construction))

    def add_arc(self, start: Handle, center: Handle, end: Handle, *, construction: bool = False) -> Handle:
        return self.add_feature(Feature.arc(start, center, end, construction=construction))

    def feature(self, handle: Handle) -> Feature:
        feature = self._features.get(handle)
        if feature is None:
            raise SketchError(f"feature {handle} is not live")
        return feature

    def get_feature(self, handle: Handle) -> Optional[Feature]:
        return self._features.get(handle)

    def is_live(self, handle: Handle) -> bool:
        return self._features.get(handle) is not None

    def is_stale(self, handle: Handle) -> bool:
        return self._features.is_stale(handle)

    def features(self) -> Iterator[Tuple[Handle, Feature]]:
        return self._features.items()

    def dependents(self, handle: Handle) -> List[Handle]:
        """Live features whose ``using`` list references ``handle``."""

        return [k for k, f in self._features.items() if handle in f.using]

    def delete_feature(self, handle: Handle) -> bool:
        """Tombstone ``handle`` plus every constraint and feature depending on it."""

        if self._features.get(handle) is None:
            return False
        dependents = self.dependents(handle)
        self._features.remove(handle)
        for ck, constraint in list(self._constraints.items()):
            if handle in constraint.features:
                self._constraints.remove(ck)
        for group in self.groups:
            group.features = [fk for fk in group.features if fk != handle]
        for dep in dependents:
            self.delete_feature(dep)
        logger.debug("Deleted feature %s (%d dependent features)", handle, len(dependents))
        return True

    # -- constraints --------------------------------------------------------

    def add_constraint(self, constraint: Constraint) -> Handle:
        return self._constraints.insert(constraint)

    def constraint(self, handle: Handle) -> Constraint:
        constraint = self._constraints.get(handle)
        if constraint is None:
            raise SketchError(f"constraint {handle} is not live")
        return constraint

    def constraints(self) -> Iterator[Tuple[Handle, Constraint]]:
        return self._constraints.items()

    def constraints_by_feature(self, handle: Handle) -> List[Handle]:
        return [ck for ck, c in self._constraints.items() if handle in c.features]

    def delete_constraint(self, handle: Handle) -> bool:
        return self._constraints.remove(handle) is not None

    # -- values -------------------------------------------------------------

    def point_position(self, handle: Handle) -> Tuple[float, float]:
        feature = self.feature(handle)
        if feature.kind is not FeatureKind.POINT:
            raise SketchError(f"feature {handle} is a {feature.kind.value}, not a point")
        return feature.x, feature.y

    def apply(self, values: Mapping[Tuple[Handle, str], float]) -> int:
        """Commit solved ``(handle, component) -> value`` pairs; return the count applied."""

        applied = 0
        for (handle, component), value in values.items():
            feature = self._features.get(handle)
            if feature is None:
                continue
            setattr(feature, component, float(value))
            applied += 1
        return applied

    def __len__(self) -> int:
        return len(self._features)


__all__ = [
    "Axis",
    "Cardinality",
    "Constraint",
    "ConstraintKind",
    "Feature",
    "FeatureKind",
    "GearInfo",
    "Group",
    "GroupType",
    "Handle",
    "RefOffset",
    "Sketch",
    "SketchError",
]
