"""Grouping and clustering for similar photos."""

import logging
import uuid
from collections import defaultdict
from typing import Dict, Hashable, Iterable, List, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


def new_group_id(prefix: str = "group") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class UnionFind:
    """Disjoint-set forest with path compression and union by rank."""

    def __init__(self, items: Iterable[Hashable] = ()):
        self._parent: Dict[Hashable, Hashable] = {}
        self._rank: Dict[Hashable, int] = {}
        for item in items:
            self.add(item)

    def add(self, item: Hashable) -> None:
        if item not in self._parent:
            self._parent[item] = item
            self._rank[item] = 0

    def find(self, item: Hashable) -> Hashable:
        self.add(item)
        root = item
        while self._parent[root] != root:
            root = self._parent[root]
        # Path compression
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, a: Hashable, b: Hashable) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        if self._rank[ra] < self._rank[rb]:
            ra, rb = rb, ra
        self._parent[rb] = ra
        if self._rank[ra] == self._rank[rb]:
            self._rank[ra] += 1

    def components(self) -> List[List[Hashable]]:
        """All components, members in insertion order."""
        groups: Dict[Hashable, List[Hashable]] = defaultdict(list)
        for item in self._parent:
            groups[self.find(item)].append(item)
        return list(groups.values())


def connected_groups(
    items: Sequence[Hashable],
    edges: Iterable[Tuple[Hashable, Hashable]],
    min_group_size: int = 2,
) -> List[List[Hashable]]:
    """
    Transitively group items joined by edges (A~B and B~C puts A, B, C together).

    Args:
        items: Items in a stable order; groups preserve this order
        edges: Pairs of items considered similar
        min_group_size: Minimum size for a group to be returned

    Returns:
        List of groups, largest first
    """
    uf = UnionFind(items)
    for a, b in edges:
        uf.union(a, b)

    result = [group for group in uf.components() if len(group) >= min_group_size]
    result.sort(key=len, reverse=True)
    return result


def find_similarity_groups(
    similarity_matrix: np.ndarray,
    ids: Sequence[Hashable],
    similarity_threshold: float = 0.90,
    min_group_size: int = 2,
) -> List[List[Hashable]]:
    """
    Find groups of similar items from a pairwise similarity matrix.

    Args:
        similarity_matrix: Symmetric matrix, shape (n, n)
        ids: Identifier for each row
        similarity_threshold: Minimum similarity to group together
        min_group_size: Minimum size for a group to be returned

    Returns:
        List of groups, where each group is a list of ids
    """
    n = len(ids)
    if n < 2:
        return []

    rows, cols = np.nonzero(np.triu(similarity_matrix >= similarity_threshold, k=1))
    edges = [(ids[i], ids[j]) for i, j in zip(rows.tolist(), cols.tolist())]
    groups = connected_groups(ids, edges, min_group_size=min_group_size)

    logger.info(f"Found {len(groups)} groups (threshold: {similarity_threshold})")
    for i, group in enumerate(groups[:5]):  # Log first 5
        logger.debug(f"  Group {i+1}: {len(group)} items")

    return groups
