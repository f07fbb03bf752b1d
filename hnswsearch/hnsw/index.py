"""
HNSWIndex - approximate nearest neighbor search over float32 vectors.

Inputs are validated and copied on the caller's thread; the graph itself is
only ever touched by the index's actor, one operation at a time.
"""

import os
from typing import Any, Optional

import numpy as np

from hnswsearch.buffer import canonicalize_ids, canonicalize_vectors
from hnswsearch.errors import InvalidParameter
from hnswsearch.hnsw.actor import IndexActor
from hnswsearch.hnsw.base import FilterPredicate, Neighbor, Space
from hnswsearch.hnsw.config import IndexConfig
from hnswsearch.hnsw.store import IndexStats


def _check_int(name: str, value: Any, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise InvalidParameter(f"`{name}` must be an integer, got {value!r}")
    value = int(value)
    if value < minimum:
        raise InvalidParameter(f"`{name}` must be at least {minimum}, got {value}")
    return value


def _resolve_threads(num_threads: Any) -> int:
    if isinstance(num_threads, bool) or not isinstance(num_threads, (int, np.integer)):
        raise InvalidParameter(f"`num_threads` must be an integer, got {num_threads!r}")
    if num_threads <= 0:
        return os.cpu_count() or 1
    return int(num_threads)


class HNSWIndex:
    """
    An in-memory HNSW index.

    API:
    - __init__(space, dim, max_elements, m=16, ef_construction=200, random_seed=100, allow_replace_deleted=False, ef=10)
    - add_items(data, ids=None, num_threads=-1, replace_deleted=False)
    - knn_query(data, k=1, num_threads=-1, filter=None) -> list[list[Neighbor]]
    - mark_deleted(id)
    - resize_index(new_size)
    - get_max_elements(), get_current_count(), get_deleted_count(), get_ids_list()
    - get_items(ids), set_ef(ef), get_ef(), get_stats(), check_integrity()

    Vector data may be packed float32 bytes, a list of such buffers, or a
    1-D/2-D numeric array. Identifiers are unsigned 64-bit integers.
    """

    def __init__(
        self,
        space: str,
        dim: int,
        max_elements: int,
        m: int = 16,
        ef_construction: int = 200,
        random_seed: int = 100,
        allow_replace_deleted: bool = False,
        ef: int = 10,
    ):
        self.config = IndexConfig(
            space=space,
            dim=dim,
            max_elements=max_elements,
            m=m,
            ef_construction=ef_construction,
            random_seed=random_seed,
            allow_replace_deleted=allow_replace_deleted,
            ef=ef,
        )
        self.space: Space = self.config.space
        self.dim = self.config.dim
        self._actor = IndexActor(self.config)

    def add_items(
        self,
        data,
        ids=None,
        num_threads: int = -1,
        replace_deleted: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Insert vectors.

        ids defaults to sequential identifiers starting at the current count.
        The batch is all-or-nothing: on any error the index is unchanged.
        Insertion itself is sequential; num_threads is accepted for
        interface compatibility.
        """
        buffer = canonicalize_vectors(data, self.dim)
        labels = canonicalize_ids(ids, buffer.rows)
        threads = _resolve_threads(num_threads)
        if not isinstance(replace_deleted, bool):
            raise InvalidParameter(f"`replace_deleted` must be a boolean, got {replace_deleted!r}")
        self._actor.call(
            "add_items", buffer.data, labels, threads, replace_deleted, timeout=timeout
        )

    def knn_query(
        self,
        data,
        k: int = 1,
        num_threads: int = -1,
        filter: Optional[FilterPredicate] = None,
        timeout: Optional[float] = None,
    ) -> list[list[Neighbor]]:
        """
        Find the k nearest live vectors for each query row.

        Returns one list of Neighbor(id, distance) per row, closest first.
        A row gets fewer than k hits when fewer admissible vectors exist.
        filter(id) -> bool restricts which identifiers may be returned; it
        is never called concurrently.
        """
        k = _check_int("k", k, 1)
        threads = _resolve_threads(num_threads)
        if filter is not None and not callable(filter):
            raise InvalidParameter("`filter` must be a callable taking one identifier")
        buffer = canonicalize_vectors(data, self.dim)
        return self._actor.call("knn_query", buffer.data, k, threads, filter, timeout=timeout)

    def mark_deleted(self, label: int) -> None:
        """Exclude a vector from results. It stays in the graph as a traversal hop."""
        label = _check_int("label", label, 0)
        self._actor.call("mark_deleted", label)

    def resize_index(self, new_size: int, timeout: Optional[float] = None) -> None:
        new_size = _check_int("new_size", new_size, 0)
        self._actor.call("resize_index", new_size, timeout=timeout)

    def get_max_elements(self) -> int:
        return self._actor.call("get_max_elements")

    def get_current_count(self) -> int:
        """Number of stored elements, deleted ones included."""
        return self._actor.call("get_current_count")

    def get_deleted_count(self) -> int:
        return self._actor.call("get_deleted_count")

    def get_ids_list(self) -> list[int]:
        """Identifiers of all live elements."""
        return self._actor.call("get_ids_list")

    def get_items(self, ids) -> np.ndarray:
        """Stored vectors of the given identifiers (normalized in cosine space)."""
        if ids is None:
            raise InvalidParameter("`ids` is required")
        labels = canonicalize_ids(ids)
        return self._actor.call("get_items", labels.tolist())

    def set_ef(self, ef: int) -> None:
        """Set the query-time beam width."""
        ef = _check_int("ef", ef, 1)
        self._actor.call("set_ef", ef)

    def get_ef(self) -> int:
        return self._actor.call("get_ef")

    def get_stats(self) -> IndexStats:
        return self._actor.call("get_stats")

    def check_integrity(self) -> None:
        """Raise GraphIntegrityError if a structural invariant of the graph is broken."""
        self._actor.call("check_integrity")

    def close(self) -> None:
        """Stop the index actor. Pending requests are finished first."""
        self._actor.close()

    def __enter__(self) -> "HNSWIndex":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"HNSWIndex(space={self.space.value!r}, dim={self.dim})"
