"""Split the equation system into independently solvable islands."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from .model import ResidualSpec, VarKey
from .pool import VariablePool

logger = logging.getLogger(__name__)


class _UnionFind:
    """Simple disjoint-set structure for deterministic grouping."""

    def __init__(self) -> None:
        self._parent: Dict[VarKey, VarKey] = {}
        self._rank: Dict[VarKey, int] = {}

    def __contains__(self, item: object) -> bool:
        return item in self._parent

    def add(self, item: VarKey) -> None:
        if item not in self._parent:
            self._parent[item] = item
            self._rank[item] = 0

    def find(self, item: VarKey) -> VarKey:
        parent = self._parent.get(item)
        if parent is None:
            self.add(item)
            return item
        if parent != item:
            self._parent[item] = self.find(parent)
        return self._parent[item]

    def union(self, a: VarKey, b: VarKey) -> None:
        root_a = self.find(a)
        root_b = self.find(b)
        if root_a == root_b:
            return
        rank_a = self._rank[root_a]
        rank_b = self._rank[root_b]
        if rank_a < rank_b:
            self._parent[root_a] = root_b
        elif rank_a > rank_b:
            self._parent[root_b] = root_a
        else:
            self._parent[root_b] = root_a
            self._rank[root_a] = rank_a + 1

    def union_all(self, items: Sequence[VarKey]) -> None:
        for other in items[1:]:
            self.union(items[0], other)


@dataclass
class Island:
    """Free variables of one connected component plus the blocks inside it.

    A pinned island has no free variables; ``pinned`` then lists the bound
    variables its blocks reference.
    """

    index: int
    variables: List[VarKey] = field(default_factory=list)
    pinned: List[VarKey] = field(default_factory=list)
    specs: List[ResidualSpec] = field(default_factory=list)

    @property
    def rows(self) -> int:
        return sum(spec.size for spec in self.specs)

    @property
    def is_pinned(self) -> bool:
        return not self.variables


def partition(
    pool: VariablePool,
    specs: Sequence[ResidualSpec],
    *,
    links: Optional[Iterable[Sequence[VarKey]]] = None,
) -> List[Island]:
    """Group ``specs`` and the free variables of ``pool`` into islands.

    ``links`` are extra variable groups that must share an island, used to
    keep everything a structural error touches together.
    Islands are ordered by the registration order of their first variable.
    """

    uf = _UnionFind()
    for key in pool.free_keys():
        uf.add(key)
        if key[1] == "x" and pool.is_free((key[0], "y")):
            uf.union(key, (key[0], "y"))

    for spec in specs:
        free = [var for var in spec.variables if pool.is_free(var)]
        if free:
            uf.union_all(free)
        else:
            uf.union_all(list(spec.variables))

    for group in links or ():
        members = [var for var in group if var in pool]
        free = [var for var in members if pool.is_free(var)]
        if free:
            uf.union_all(free)
        elif members:
            uf.union_all(members)

    components: Dict[VarKey, List[VarKey]] = {}
    for key in pool.keys():
        if key in uf:
            components.setdefault(uf.find(key), []).append(key)

    ordered = sorted(components.values(), key=lambda members: pool.index(members[0]))
    islands: List[Island] = []
    by_root: Dict[VarKey, Island] = {}
    for idx, members in enumerate(ordered):
        free = [var for var in members if pool.is_free(var)]
        island = Island(index=idx, variables=free, pinned=[] if free else list(members))
        islands.append(island)
        by_root[uf.find(members[0])] = island

    for spec in specs:
        free = [var for var in spec.variables if pool.is_free(var)]
        anchor = free[0] if free else spec.variables[0]
        by_root[uf.find(anchor)].specs.append(spec)

    logger.info(
        "Partitioned %d free variables into %d islands (%d pinned)",
        len(pool.free_keys()),
        len(islands),
        sum(1 for island in islands if island.is_pinned),
    )
    return islands


def island_index(islands: Sequence[Island]) -> Dict[VarKey, int]:
    """Map every variable to the index of the island holding it."""

    mapping: Dict[VarKey, int] = {}
    for island in islands:
        for var in island.variables + island.pinned:
            mapping[var] = island.index
    return mapping


__all__ = ["Island", "island_index", "partition"]
