"""
Metric spaces, distance kernels and shared types for the HNSW index.
"""

from enum import Enum
from typing import NamedTuple, Protocol

import numpy as np


class Space(str, Enum):
    L2 = "l2"
    IP = "ip"
    COSINE = "cosine"


class Neighbor(NamedTuple):
    """One query hit: the caller's identifier and its distance to the query."""

    id: int
    distance: float


class FilterPredicate(Protocol):
    """Caller-supplied admission test over identifiers.

    The index calls it at most once per candidate per query and never from
    two threads at the same time, so implementations need not be
    thread-safe. It may have side effects. It only decides which candidates
    are admitted into the result set; graph traversal is not pruned by it.
    """

    def __call__(self, identifier: int) -> bool:
        ...


def normalize(vectors: np.ndarray) -> np.ndarray:
    """L2-normalize rows. Zero rows are left as zeros."""
    norms = np.linalg.norm(vectors, axis=-1, keepdims=True)
    norms = np.where(norms == 0, 1.0, norms)
    return (vectors / norms).astype(np.float32, copy=False)


def distances(space: Space, matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Distances from query to each row of matrix.

    l2 is the squared Euclidean distance. ip is 1 - <a, b>. cosine is ip on
    vectors that were normalized when they entered the index.
    """
    if space is Space.L2:
        diff = matrix - query
        return np.einsum("ij,ij->i", diff, diff)
    return 1.0 - matrix @ query
