"""
Heuristic neighbor selection.
"""

from typing import Sequence

import numpy as np

from hnswsearch.hnsw.store import GraphStore


class NeighborSelector:
    """Diversity-aware pruning of candidate neighbor lists.

    Candidates are taken closest first. A candidate is kept only if it is
    at least as close to the base node as to every candidate already kept,
    so that a node does not spend its links on a tight cluster of
    near-duplicates. Equal distances keep their input order.
    """

    def __init__(self, store: GraphStore):
        self._store = store

    def select(self, candidates: Sequence[tuple[float, int]], cap: int) -> list[tuple[float, int]]:
        """Pick at most cap of the (distance, slot) candidates.

        Distances are to the base node. Fewer than cap candidates are all
        kept as they are.
        """
        ordered = sorted(candidates, key=lambda pair: pair[0])
        if len(ordered) < cap:
            return ordered

        store = self._store
        selected: list[tuple[float, int]] = []
        for dist, slot in ordered:
            if len(selected) >= cap:
                break
            if selected:
                kept = np.array([s for _, s in selected], dtype=np.int64)
                to_kept = store.distances(kept, store.vector(slot))
                if (to_kept < dist).any():
                    continue
            selected.append((dist, slot))
        return selected
