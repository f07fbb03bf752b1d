"""
HNSW (Hierarchical Navigable Small World) index.

A multi-layer proximity graph for approximate nearest neighbor search,
guarded by an actor that runs one operation at a time.
"""

from hnswsearch.hnsw.base import Neighbor, Space
from hnswsearch.hnsw.config import IndexConfig
from hnswsearch.hnsw.index import HNSWIndex
from hnswsearch.hnsw.store import IndexStats

__all__ = ["HNSWIndex", "IndexConfig", "IndexStats", "Neighbor", "Space"]
