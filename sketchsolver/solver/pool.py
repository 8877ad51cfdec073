"""Scalar unknowns of a sketch and their current values."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ..sketch import FeatureKind, Handle, Sketch
from .model import VarKey

logger = logging.getLogger(__name__)

_COMPONENTS: Dict[FeatureKind, Tuple[str, ...]] = {
    FeatureKind.POINT: ("x", "y"),
    FeatureKind.LINE: (),
    FeatureKind.CIRCLE: ("r",),
    FeatureKind.ARC: (),
    FeatureKind.GEAR: (),
}

assert set(_COMPONENTS) == set(FeatureKind), "variable component table is incomplete"


class VariablePool:
    """Ordered registry of ``(handle, component)`` unknowns.

    A variable is free until :meth:`bind` pins it to a literal value; bound
    variables keep a value but never receive a Jacobian column.
    """

    def __init__(self) -> None:
        self._keys: List[VarKey] = []
        self._index: Dict[VarKey, int] = {}
        self._values: List[float] = []
        self._bound: Dict[VarKey, Handle] = {}

    @classmethod
    def from_sketch(cls, sketch: Sketch) -> "VariablePool":
        pool = cls()
        for handle, feature in sketch.features():
            for component in _COMPONENTS[feature.kind]:
                pool.register((handle, component), float(getattr(feature, component)))
        logger.debug("Registered %d variables from %d features", len(pool), len(sketch))
        return pool

    def register(self, key: VarKey, value: float) -> int:
        if key in self._index:
            raise KeyError(f"variable {key[0]}.{key[1]} registered twice")
        self._index[key] = len(self._keys)
        self._keys.append(key)
        self._values.append(float(value))
        return self._index[key]

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def keys(self) -> List[VarKey]:
        return list(self._keys)

    def index(self, key: VarKey) -> int:
        try:
            return self._index[key]
        except KeyError as exc:
            raise KeyError(f"unknown variable {key[0]}.{key[1]}") from exc

    def value(self, key: VarKey) -> float:
        return self._values[self.index(key)]

    def set_value(self, key: VarKey, value: float) -> None:
        if key in self._bound:
            raise ValueError(f"variable {key[0]}.{key[1]} is bound by constraint {self._bound[key]}")
        self._values[self.index(key)] = float(value)

    def seed(self, values: Mapping[VarKey, float]) -> int:
        """Overwrite free variables present in ``values``; return how many were seeded."""

        seeded = 0
        for key, value in values.items():
            if key in self._index and key not in self._bound:
                self._values[self._index[key]] = float(value)
                seeded += 1
        return seeded

    def bind(self, point: Handle, at: Tuple[float, float], constraint: Handle) -> bool:
        """Pin a point to ``at``; the first binding wins and later calls return ``False``."""

        keys = [(point, "x"), (point, "y")]
        if any(key in self._bound for key in keys):
            return False
        for key, value in zip(keys, at):
            self._values[self.index(key)] = float(value)
            self._bound[key] = constraint
        logger.debug("Bound point %s to (%g, %g) via constraint %s", point, at[0], at[1], constraint)
        return True

    def is_free(self, key: VarKey) -> bool:
        return key in self._index and key not in self._bound

    def binding(self, key: VarKey) -> Optional[Handle]:
        return self._bound.get(key)

    def free_keys(self) -> List[VarKey]:
        return [key for key in self._keys if key not in self._bound]

    def scatter(self, keys: Iterable[VarKey], values: Iterable[float]) -> None:
        for key, value in zip(keys, values):
            self.set_value(key, value)

    def point(self, handle: Handle) -> Tuple[float, float]:
        return self.value((handle, "x")), self.value((handle, "y"))
