"""
Distance metrics for vector similarity search.

Supported Metrics:
    - l2sq: Squared Euclidean distance
    - cos: Cosine distance
    - ip: Inner-product distance (1 - dot)
    - hamming: Count of differing components
    - haversine: Great-circle angle for (lat, lon) radians

Example:
    >>> from navgraph.distance import distance, DistanceEngine
    >>> import numpy as np
    >>> 
    >>> a = np.array([1.0, 2.0, 3.0])
    >>> b = np.array([4.0, 5.0, 6.0])
    >>> distance("l2sq", a, b)
    27.0
"""

from .metrics import (
    l2sq,
    cosine_similarity,
    cosine_distance,
    inner_product_distance,
    hamming,
    haversine,
    query_distances,
)

from .registry import (
    MetricKind,
    MetricInfo,
    DistanceEngine,
    distance,
    get_metric,
    get_metric_by_code,
    list_metrics,
)

__all__ = [
    # Single vector functions
    "l2sq",
    "cosine_similarity",
    "cosine_distance",
    "inner_product_distance",
    "hamming",
    "haversine",
    # Batch functions
    "query_distances",
    # Registry
    "MetricKind",
    "MetricInfo",
    "DistanceEngine",
    "distance",
    "get_metric",
    "get_metric_by_code",
    "list_metrics",
]
