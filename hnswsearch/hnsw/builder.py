"""
HNSW insertion.

A batch is planned and validated as a whole before the first node is
written, so a rejected batch leaves the graph untouched. Rows are then
inserted one by one against the evolving graph: later rows see earlier ones.
"""

import logging
from typing import Optional

import numpy as np

from hnswsearch.errors import (
    CapacityExceeded,
    DimensionMismatch,
    DuplicateIdentifier,
    ReplaceDeletedDisabled,
)
from hnswsearch.hnsw.search import SearchEngine
from hnswsearch.hnsw.selector import NeighborSelector
from hnswsearch.hnsw.store import GraphStore

logger = logging.getLogger(__name__)


class GraphBuilder:
    """Inserts vectors into a GraphStore."""

    def __init__(
        self,
        store: GraphStore,
        engine: Optional[SearchEngine] = None,
        selector: Optional[NeighborSelector] = None,
    ):
        self._store = store
        self._engine = engine if engine is not None else SearchEngine(store)
        self._selector = selector if selector is not None else NeighborSelector(store)

    def add_items(
        self,
        data: np.ndarray,
        ids: Optional[np.ndarray] = None,
        replace_deleted: bool = False,
    ) -> list[int]:
        """Insert the rows of data. Returns the identifiers used, in row order.

        ids defaults to sequential identifiers starting at the current count.
        An identifier that was deleted is revived in its own slot with the
        new vector. With replace_deleted, an identifier that is already present is
        overwritten in place and other rows reuse deleted slots before
        taking fresh ones.
        """
        store = self._store
        rows, features = data.shape
        if features != store.dim:
            raise DimensionMismatch(store.dim, features)
        if replace_deleted and not store.allow_replace_deleted:
            raise ReplaceDeletedDisabled(
                "Replacement of deleted elements is disabled in constructor"
            )

        if ids is None:
            labels = list(range(store.count, store.count + rows))
        else:
            labels = [int(label) for label in ids]

        slots = self._plan(labels, replace_deleted)

        for row in range(rows):
            self._insert(data[row], labels[row], slots[row])

        logger.debug(
            f"Inserted {rows} vectors, count={store.count}, deleted={store.deleted_count}"
        )
        return labels

    def _plan(self, labels: list[int], replace_deleted: bool) -> list[Optional[int]]:
        """Decide the target slot of each row (None = fresh slot) without mutating."""
        store = self._store
        if len(set(labels)) != len(labels):
            raise DuplicateIdentifier("The batch contains duplicate identifiers")

        slots: list[Optional[int]] = []
        reserved = set()
        for label in labels:
            slot = store.slot_of(label)
            if slot is not None:
                # A deleted identifier is revived in its own slot
                if not replace_deleted and not store.is_deleted(slot):
                    raise DuplicateIdentifier(
                        f"Identifier {label} is already used by a live element"
                    )
                reserved.add(slot)
            slots.append(slot)

        if replace_deleted:
            free = iter([s for s in store.tombstones() if s not in reserved])
            for i, slot in enumerate(slots):
                if slot is None:
                    slots[i] = next(free, None)

        fresh = sum(1 for slot in slots if slot is None)
        if fresh > store.free_slots:
            raise CapacityExceeded(
                f"The number of elements exceeds the specified limit "
                f"({store.count} + {fresh} > {store.max_elements})"
            )
        return slots

    def _insert(self, vector: np.ndarray, label: int, slot: Optional[int]) -> None:
        store = self._store
        vector = store.prepare(vector)
        if slot is None:
            slot = store.allocate(label, vector)
        else:
            store.reuse(slot, label, vector)
        self._link(slot)

    def _link(self, slot: int) -> None:
        """Compute the edges of slot from its current vector and wire them both ways."""
        store = self._store
        level = store.level(slot)
        entry = store.entry_point

        if entry is None:
            store.set_entry_point(slot)
            return

        query = store.vector(slot)

        def not_self(other: int) -> bool:
            return other != slot

        # Greedy descent through layers above the node's level
        current = self._engine.greedy_descent(query, entry, store.max_level, level)

        for layer in range(min(level, store.max_level), -1, -1):
            candidates = self._engine.search_layer(
                query, current, store.ef_construction, layer, admit=not_self
            )
            selected = self._selector.select(candidates, store.layer_cap(layer))
            store.set_neighbors(slot, layer, [nbr for _, nbr in selected])

            for _, nbr in selected:
                self._connect(nbr, slot, layer)

            if candidates:
                current = candidates[0][1]

        if level > store.max_level:
            store.set_entry_point(slot)

    def _connect(self, node: int, new: int, layer: int) -> None:
        """Add the edge node -> new, re-pruning node's list if it is full."""
        store = self._store
        existing = store.neighbors(node, layer)
        if (existing == new).any():
            return

        cap = store.layer_cap(layer)
        if len(existing) < cap:
            store.add_neighbor(node, layer, new)
            return

        pool = np.append(existing, new)
        dists = store.distances(pool, store.vector(node))
        kept = self._selector.select(list(zip(dists.tolist(), pool.tolist())), cap)
        store.set_neighbors(node, layer, [nbr for _, nbr in kept])
