"""
HNSW index for navgraph.

Example:
    >>> from navgraph.index import HNSWIndex, create_index
    >>> 
    >>> index = HNSWIndex(dimensions=128, connectivity=16, ef_search=64)
    >>> index = create_index("cosine", 384)
"""

from .base import (
    DEFAULT_CONNECTIVITY,
    DEFAULT_EF_CONSTRUCTION,
    DEFAULT_EF_SEARCH,
    MAX_LEVEL,
    ConcurrencyMode,
    IndexConfig,
    IndexStats,
    Matches,
    SearchResult,
)
from .graph import GraphSnapshot, Neighbor, ProximityGraph
from .locks import MutationLock, NodeLocks, ReadWriteLock
from .hnsw import HNSWIndex, Index, create_index

__all__ = [
    # Configuration and results
    "DEFAULT_CONNECTIVITY",
    "DEFAULT_EF_CONSTRUCTION",
    "DEFAULT_EF_SEARCH",
    "MAX_LEVEL",
    "ConcurrencyMode",
    "IndexConfig",
    "IndexStats",
    "Matches",
    "SearchResult",
    # Graph
    "GraphSnapshot",
    "Neighbor",
    "ProximityGraph",
    # Locks
    "MutationLock",
    "NodeLocks",
    "ReadWriteLock",
    # Index
    "HNSWIndex",
    "Index",
    "create_index",
]
