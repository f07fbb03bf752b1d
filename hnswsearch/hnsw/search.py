"""
Graph traversal: greedy descent through the upper layers and beam search
within a layer.
"""

import heapq
import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

import numpy as np

from hnswsearch.errors import EmptyIndex
from hnswsearch.hnsw.base import FilterPredicate, Neighbor
from hnswsearch.hnsw.store import GraphStore

logger = logging.getLogger(__name__)


class SearchEngine:
    """Read-only searches over a GraphStore."""

    def __init__(self, store: GraphStore):
        self._store = store

    def greedy_descent(self, query: np.ndarray, entry: int, top_layer: int, stop_layer: int) -> int:
        """Greedy search from top_layer down to, but not including, stop_layer.

        At each layer keep moving to the closest neighbor until none is
        closer than the current node. Returns the node reached.
        """
        store = self._store
        current = entry
        current_dist = store.distance(current, query)

        for layer in range(top_layer, stop_layer, -1):
            while True:
                nbrs = store.neighbors(current, layer)
                if len(nbrs) == 0:
                    break
                dists = store.distances(nbrs, query)
                best_i = int(np.argmin(dists))
                if dists[best_i] < current_dist:
                    current = int(nbrs[best_i])
                    current_dist = float(dists[best_i])
                else:
                    break
        return current

    def search_layer(
        self,
        query: np.ndarray,
        entry: int,
        ef: int,
        layer: int,
        admit: Optional[Callable[[int], bool]] = None,
    ) -> list[tuple[float, int]]:
        """Beam search of width ef on one layer.

        Every reachable node can be a traversal hop; only nodes accepted by
        admit (all nodes when admit is None) enter the result set. admit is
        called at most once per node. Returns (distance, slot) pairs sorted
        by ascending distance.
        """
        store = self._store
        visited = np.zeros(store.count, dtype=bool)

        entry_dist = store.distance(entry, query)
        visited[entry] = True

        candidates = [(entry_dist, entry)]
        results: list[tuple[float, int]] = []  # max-heap via negated distance
        if admit is None or admit(entry):
            results.append((-entry_dist, entry))
        worst_dist = entry_dist if results else math.inf

        while candidates:
            current_dist, current = heapq.heappop(candidates)
            if current_dist > worst_dist and len(results) >= ef:
                break

            nbrs = store.neighbors(current, layer)
            if len(nbrs) == 0:
                continue

            new_nbrs = nbrs[~visited[nbrs]]
            if len(new_nbrs) == 0:
                continue
            visited[new_nbrs] = True

            dists = store.distances(new_nbrs, query)
            for i in range(len(new_nbrs)):
                dist = float(dists[i])
                if len(results) < ef or dist < worst_dist:
                    nbr = int(new_nbrs[i])
                    heapq.heappush(candidates, (dist, nbr))
                    if admit is None or admit(nbr):
                        heapq.heappush(results, (-dist, nbr))
                        if len(results) > ef:
                            heapq.heappop(results)
                    if results:
                        worst_dist = -results[0][0]

        return sorted((-neg_dist, slot) for neg_dist, slot in results)

    def knn(
        self,
        query: np.ndarray,
        k: int,
        ef: int,
        predicate: Optional[FilterPredicate] = None,
    ) -> list[tuple[float, int]]:
        """k closest admissible nodes for one prepared query vector."""
        store = self._store
        entry = self.greedy_descent(query, store.entry_point, store.max_level, 0)

        if predicate is None and store.deleted_count == 0:
            admit = None
        else:
            def admit(slot: int) -> bool:
                if store.is_deleted(slot):
                    return False
                return predicate is None or bool(predicate(store.label(slot)))

        results = self.search_layer(query, entry, max(ef, k), 0, admit)
        return results[:k]

    def knn_batch(
        self,
        data: np.ndarray,
        k: int,
        num_threads: int = 1,
        predicate: Optional[FilterPredicate] = None,
    ) -> list[list[Neighbor]]:
        """Answer every row of data. Rows may be searched on several threads."""
        store = self._store
        if store.live_count == 0:
            raise EmptyIndex("Cannot query an index with no live elements")

        queries = store.prepare(data)
        rows = len(queries)
        ef = max(store.ef, k)

        if predicate is not None and num_threads > 1:
            predicate = _serialized(predicate)

        def run(row: int) -> list[Neighbor]:
            hits = self.knn(queries[row], k, ef, predicate)
            return [Neighbor(store.label(slot), dist) for dist, slot in hits]

        if num_threads <= 1 or rows <= 1:
            return [run(row) for row in range(rows)]

        workers = min(num_threads, rows)
        logger.debug(f"Searching {rows} queries on {workers} threads")
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(run, range(rows)))


def _serialized(predicate: FilterPredicate) -> FilterPredicate:
    """Wrap a predicate so that concurrent calls run one at a time."""
    lock = threading.Lock()

    def call(identifier: int) -> bool:
        with lock:
            return predicate(identifier)

    return call
