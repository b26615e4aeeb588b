"""
navgraph - Approximate nearest-neighbor search over HNSW graphs.

Example:
    >>> from navgraph import HNSWIndex
    >>> import numpy as np
    >>> 
    >>> # Create an index
    >>> index = HNSWIndex(dimensions=4, metric="l2sq", connectivity=8)
    >>> 
    >>> # Add vectors
    >>> index.add(42, [0.3, 0.5, 1.2, 1.4])
    >>> index.add(43, [0.4, 0.2, 1.2, 1.1])
    >>> 
    >>> # Search
    >>> labels, distances = index.search([0.3, 0.5, 1.2, 1.4], k=10)
    >>> 
    >>> # Persist
    >>> index.save("vectors.navg")
    >>> restored = HNSWIndex.restore("vectors.navg")
"""

from .core import (
    NavGraphError,
    InvalidConfigurationError,
    ValidationError,
    DimensionMismatchError,
    InvalidVectorError,
    InvalidLabelError,
    DuplicateLabelError,
    NotFoundError,
    ReadOnlyIndexError,
    CapacityError,
    OperationCancelledError,
    StorageError,
    CorruptDataError,
    IncompatibleFormatError,
)

from .distance import (
    MetricKind,
    DistanceEngine,
    distance,
    get_metric,
    list_metrics,
)

from .index import (
    HNSWIndex,
    Index,
    create_index,
    ConcurrencyMode,
    IndexConfig,
    IndexStats,
    Matches,
    SearchResult,
)

from .storage import VectorStore

__version__ = "0.1.0"
__author__ = "navgraph Team"

__all__ = [
    # Index
    "HNSWIndex",
    "Index",
    "create_index",
    "ConcurrencyMode",
    "IndexConfig",
    "IndexStats",
    "Matches",
    "SearchResult",
    "VectorStore",
    # Distance
    "MetricKind",
    "DistanceEngine",
    "distance",
    "get_metric",
    "list_metrics",
    # Exceptions
    "NavGraphError",
    "InvalidConfigurationError",
    "ValidationError",
    "DimensionMismatchError",
    "InvalidVectorError",
    "InvalidLabelError",
    "DuplicateLabelError",
    "NotFoundError",
    "ReadOnlyIndexError",
    "CapacityError",
    "OperationCancelledError",
    "StorageError",
    "CorruptDataError",
    "IncompatibleFormatError",
]
