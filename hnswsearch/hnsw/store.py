"""
In-memory HNSW graph storage.

Layer 0 uses pre-allocated numpy arrays for fast neighbor lookups.
Upper layers use dicts (sparse, few nodes). Nodes are addressed by slot,
a dense index into the arrays; callers' identifiers (labels) are mapped to
slots. Deleted nodes keep their slot and edges until a later insertion
reuses them.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from hnswsearch.errors import GraphIntegrityError, IdentifierNotFound, InvalidResize
from hnswsearch.hnsw.base import Space, distances, normalize
from hnswsearch.hnsw.config import IndexConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexStats:
    space: str
    dim: int
    max_elements: int
    current_count: int
    deleted_count: int
    m: int
    ef_construction: int
    ef: int
    max_level: int
    entry_point: Optional[int]  # identifier of the entry node


class GraphStore:
    """Owns every node of one HNSW graph: vectors, labels, levels, edges, tombstones."""

    def __init__(self, config: IndexConfig):
        self.config = config
        self.space: Space = config.space
        self.dim = config.dim
        self.m = config.m
        self.max_m0 = config.m * 2  # max connections at layer 0
        self.ef_construction = config.effective_ef_construction
        self.ef = config.ef
        self.allow_replace_deleted = config.allow_replace_deleted

        self._ml = 1.0 / math.log(self.m) if self.m > 1 else 1.0
        self._rng = np.random.default_rng(config.random_seed)

        self.entry_point: Optional[int] = None
        self.max_level: int = 0
        self.count: int = 0  # live + deleted slots in use
        self.max_elements: int = 0

        # Node arrays, one row per slot
        self._vectors = np.zeros((0, self.dim), dtype=np.float32)
        self._labels = np.zeros(0, dtype=np.uint64)
        self._levels = np.zeros(0, dtype=np.int32)
        self._deleted = np.zeros(0, dtype=bool)

        # Layer 0: (capacity, max_m0) int32, -1 padded
        self._adj0 = np.full((0, self.max_m0), -1, dtype=np.int32)
        self._adj0_count = np.zeros(0, dtype=np.int32)

        # Upper layers: layer -> slot -> neighbor slots
        self._upper: dict[int, dict[int, list[int]]] = {}

        self._label_to_slot: dict[int, int] = {}
        # Ordered set of deleted slots, oldest first
        self._tombstones: dict[int, None] = {}

        self._reallocate(config.max_elements)

    # --- Capacity ---

    def _reallocate(self, capacity: int) -> None:
        """Resize node arrays to capacity rows, keeping the first `count` rows."""
        n = self.count

        vectors = np.zeros((capacity, self.dim), dtype=np.float32)
        vectors[:n] = self._vectors[:n]
        labels = np.zeros(capacity, dtype=np.uint64)
        labels[:n] = self._labels[:n]
        levels = np.zeros(capacity, dtype=np.int32)
        levels[:n] = self._levels[:n]
        deleted = np.zeros(capacity, dtype=bool)
        deleted[:n] = self._deleted[:n]
        adj0 = np.full((capacity, self.max_m0), -1, dtype=np.int32)
        adj0[:n] = self._adj0[:n]
        adj0_count = np.zeros(capacity, dtype=np.int32)
        adj0_count[:n] = self._adj0_count[:n]

        self._vectors = vectors
        self._labels = labels
        self._levels = levels
        self._deleted = deleted
        self._adj0 = adj0
        self._adj0_count = adj0_count
        self.max_elements = capacity

    def resize(self, new_size: int) -> None:
        if new_size < self.count:
            raise InvalidResize(
                f"Cannot resize, max element is less than the current number of elements "
                f"({new_size} < {self.count})"
            )
        old = self.max_elements
        self._reallocate(new_size)
        logger.info(f"Resized index from {old} to {new_size} elements")

    @property
    def free_slots(self) -> int:
        return self.max_elements - self.count

    @property
    def deleted_count(self) -> int:
        return len(self._tombstones)

    @property
    def live_count(self) -> int:
        return self.count - len(self._tombstones)

    # --- Nodes ---

    def prepare(self, vector: np.ndarray) -> np.ndarray:
        """Bring a vector into the form it is stored and compared in."""
        vector = np.asarray(vector, dtype=np.float32)
        if self.space is Space.COSINE:
            return normalize(vector)
        return vector

    def sample_level(self) -> int:
        """Draw a node level from the store's seeded RNG stream."""
        return int(-math.log(1.0 - self._rng.random()) * self._ml)

    def allocate(self, label: int, vector: np.ndarray) -> int:
        """Place a new node in the next free slot. Returns the slot."""
        slot = self.count
        level = self.sample_level()
        self.count += 1

        self._vectors[slot] = vector
        self._labels[slot] = label
        self._levels[slot] = level
        self._deleted[slot] = False
        self._adj0[slot] = -1
        self._adj0_count[slot] = 0
        for layer in range(1, level + 1):
            self._upper.setdefault(layer, {})[slot] = []
        self._label_to_slot[label] = slot
        return slot

    def reuse(self, slot: int, label: int, vector: np.ndarray) -> None:
        """Write a new vector and label into an existing slot, reviving it if deleted.

        The slot keeps its level so that in-edges pointing at it stay valid.
        """
        old_label = int(self._labels[slot])
        if old_label != label:
            del self._label_to_slot[old_label]
            self._label_to_slot[label] = slot
            self._labels[slot] = label
        self._vectors[slot] = vector
        if self._deleted[slot]:
            self._deleted[slot] = False
            del self._tombstones[slot]

    def mark_deleted(self, label: int) -> None:
        slot = self._label_to_slot.get(label)
        if slot is None or self._deleted[slot]:
            raise IdentifierNotFound(f"Label {label} not found or already deleted")
        self._deleted[slot] = True
        self._tombstones[slot] = None
        if slot == self.entry_point:
            self._elect_entry_point()

    def _elect_entry_point(self) -> None:
        """Pick the live node with the highest level (lowest slot on ties)."""
        live = np.flatnonzero(~self._deleted[: self.count])
        if len(live) == 0:
            self.entry_point = None
            self.max_level = 0
            return
        best = int(live[np.argmax(self._levels[live])])
        self.entry_point = best
        self.max_level = int(self._levels[best])
        logger.debug(f"Entry point moved to slot {best} at level {self.max_level}")

    def set_entry_point(self, slot: int) -> None:
        self.entry_point = slot
        self.max_level = int(self._levels[slot])

    def slot_of(self, label: int) -> Optional[int]:
        return self._label_to_slot.get(label)

    def tombstones(self) -> list[int]:
        """Deleted slots, oldest deletion first."""
        return list(self._tombstones)

    def is_deleted(self, slot: int) -> bool:
        return bool(self._deleted[slot])

    def level(self, slot: int) -> int:
        return int(self._levels[slot])

    def label(self, slot: int) -> int:
        return int(self._labels[slot])

    def vector(self, slot: int) -> np.ndarray:
        return self._vectors[slot]

    def levels(self) -> np.ndarray:
        return self._levels[: self.count].copy()

    def ids(self) -> list[int]:
        n = self.count
        return self._labels[:n][~self._deleted[:n]].tolist()

    def get_vectors(self, labels: Sequence[int]) -> np.ndarray:
        slots = []
        for label in labels:
            slot = self._label_to_slot.get(int(label))
            if slot is None or self._deleted[slot]:
                raise IdentifierNotFound(f"Label {label} not found")
            slots.append(slot)
        return self._vectors[np.array(slots, dtype=np.int64)].copy()

    # --- Edges ---

    def layer_cap(self, layer: int) -> int:
        return self.max_m0 if layer == 0 else self.m

    def neighbors(self, slot: int, layer: int) -> np.ndarray:
        if layer == 0:
            return self._adj0[slot, : self._adj0_count[slot]]
        return np.asarray(self._upper.get(layer, {}).get(slot, ()), dtype=np.int32)

    def set_neighbors(self, slot: int, layer: int, neighbors: Sequence[int]) -> None:
        count = len(neighbors)
        if layer == 0:
            self._adj0[slot, :count] = neighbors
            self._adj0[slot, count:] = -1
            self._adj0_count[slot] = count
        else:
            self._upper.setdefault(layer, {})[slot] = [int(n) for n in neighbors]

    def add_neighbor(self, slot: int, layer: int, neighbor: int) -> None:
        if layer == 0:
            c = self._adj0_count[slot]
            self._adj0[slot, c] = neighbor
            self._adj0_count[slot] = c + 1
        else:
            self._upper.setdefault(layer, {}).setdefault(slot, []).append(neighbor)

    # --- Distances ---

    def distances(self, slots: np.ndarray, query: np.ndarray) -> np.ndarray:
        return distances(self.space, self._vectors[slots], query)

    def distance(self, slot: int, query: np.ndarray) -> float:
        return float(self.distances(np.array([slot]), query)[0])

    # --- Introspection ---

    def stats(self) -> IndexStats:
        return IndexStats(
            space=self.space.value,
            dim=self.dim,
            max_elements=self.max_elements,
            current_count=self.count,
            deleted_count=self.deleted_count,
            m=self.m,
            ef_construction=self.ef_construction,
            ef=self.ef,
            max_level=self.max_level,
            entry_point=None if self.entry_point is None else self.label(self.entry_point),
        )

    def check_integrity(self) -> None:
        """Verify the structural invariants of the graph.

        Raises GraphIntegrityError listing the first problems found.
        """
        problems = []
        n = self.count
        levels = self._levels[:n]
        deleted = self._deleted[:n]

        if n > self.max_elements:
            problems.append(f"count {n} exceeds max_elements {self.max_elements}")

        if self.entry_point is None:
            if self.live_count > 0:
                problems.append("no entry point but live nodes exist")
        else:
            ep = self.entry_point
            if not 0 <= ep < n:
                problems.append(f"entry point slot {ep} out of range")
            elif deleted[ep]:
                problems.append(f"entry point slot {ep} is deleted")
            elif levels[ep] != self.max_level:
                problems.append(
                    f"entry point level {levels[ep]} differs from max level {self.max_level}"
                )
        if self.live_count > 0 and int(levels[~deleted].max()) > self.max_level:
            problems.append("a live node sits above the entry point level")

        for slot in range(n):
            for layer in range(int(levels[slot]) + 1):
                nbrs = self.neighbors(slot, layer).tolist()
                if len(nbrs) > self.layer_cap(layer):
                    problems.append(f"slot {slot} has {len(nbrs)} neighbors at layer {layer}")
                if len(set(nbrs)) != len(nbrs):
                    problems.append(f"slot {slot} has duplicate neighbors at layer {layer}")
                for nbr in nbrs:
                    if nbr == slot:
                        problems.append(f"slot {slot} links to itself at layer {layer}")
                    elif not 0 <= nbr < n:
                        problems.append(f"slot {slot} links to unknown slot {nbr}")
                    elif levels[nbr] < layer:
                        problems.append(
                            f"slot {slot} links to slot {nbr} at layer {layer} "
                            f"above its level {levels[nbr]}"
                        )

        for layer, graph in self._upper.items():
            for slot in graph:
                if slot >= n or levels[slot] < layer:
                    problems.append(f"slot {slot} has an edge list at layer {layer} above its level")

        if len(self._label_to_slot) != n:
            problems.append(f"{len(self._label_to_slot)} labels mapped for {n} slots")
        for label, slot in self._label_to_slot.items():
            if int(self._labels[slot]) != label:
                problems.append(f"label {label} maps to slot {slot} holding {self._labels[slot]}")

        if set(self._tombstones) != set(np.flatnonzero(deleted).tolist()):
            problems.append("tombstone set disagrees with deleted flags")

        if problems:
            raise GraphIntegrityError("; ".join(problems[:10]))
