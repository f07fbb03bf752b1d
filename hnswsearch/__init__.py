"""
hnswsearch - In-memory approximate nearest neighbor search with HNSW graphs.

hnswsearch indexes float32 vectors under unsigned 64-bit identifiers and
answers k-nearest-neighbor queries in cosine, inner product or L2 space.
All access to an index is serialized through a single actor thread.
"""

from hnswsearch.__version__ import __version__
from hnswsearch.buffer import VectorBuffer, canonicalize_ids, canonicalize_vectors
from hnswsearch.hnsw import HNSWIndex, IndexConfig, IndexStats, Neighbor, Space

__all__ = [
    "HNSWIndex",
    "IndexConfig",
    "IndexStats",
    "Neighbor",
    "Space",
    "VectorBuffer",
    "canonicalize_ids",
    "canonicalize_vectors",
    "__version__",
]
