"""
Distance metric registry.

Maps metric names and aliases to their implementations and provides
DistanceEngine, the metric-bound calculator used by the index.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Optional, List, Union
from dataclasses import dataclass
import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import DimensionMismatchError, InvalidConfigurationError
from .metrics import (
    l2sq,
    cosine_distance,
    inner_product_distance,
    hamming,
    haversine,
    query_distances,
)


# Type aliases
Vector = NDArray[np.floating]
DistanceFunction = Callable[[Vector, Vector], float]


class MetricKind(str, Enum):
    """Enumeration of built-in distance metrics."""
    
    L2SQ = "l2sq"
    COSINE = "cos"
    IP = "ip"
    HAMMING = "hamming"
    HAVERSINE = "haversine"
    
    def __str__(self) -> str:
        return self.value


@dataclass
class MetricInfo:
    """Information about a distance metric."""
    
    kind: MetricKind
    function: DistanceFunction
    code: int  # stable id used in persisted files
    description: str
    fixed_dimensions: Optional[int] = None
    
    @property
    def name(self) -> str:
        return self.kind.value
    
    def __repr__(self) -> str:
        return f"MetricInfo(name='{self.name}', code={self.code})"


# =============================================================================
# METRIC REGISTRY
# =============================================================================

class MetricRegistry:
    """
    Registry for distance metrics.
    
    Allows looking up metrics by name, alias, or persisted code.
    """
    
    def __init__(self):
        self._metrics: Dict[str, MetricInfo] = {}
        self._aliases: Dict[str, str] = {}
        self._codes: Dict[int, str] = {}
        self._register_builtins()
    
    def _register_builtins(self) -> None:
        """Register built-in distance metrics."""
        
        self.register(
            MetricInfo(
                kind=MetricKind.L2SQ,
                function=l2sq,
                code=0,
                description="Squared Euclidean distance",
            ),
            aliases=["euclidean_sq", "l2_squared", "sqeuclidean"],
        )
        
        self.register(
            MetricInfo(
                kind=MetricKind.COSINE,
                function=cosine_distance,
                code=1,
                description="Cosine distance (1 - cosine similarity)",
            ),
            aliases=["cosine", "angular"],
        )
        
        self.register(
            MetricInfo(
                kind=MetricKind.IP,
                function=inner_product_distance,
                code=2,
                description="Inner-product distance (1 - dot product)",
            ),
            aliases=["inner", "dot", "inner_product"],
        )
        
        self.register(
            MetricInfo(
                kind=MetricKind.HAMMING,
                function=hamming,
                code=3,
                description="Hamming distance (count of differing components)",
            ),
            aliases=[],
        )
        
        self.register(
            MetricInfo(
                kind=MetricKind.HAVERSINE,
                function=haversine,
                code=4,
                description="Great-circle angle between (lat, lon) radians",
                fixed_dimensions=2,
            ),
            aliases=[],
        )
    
    def register(
        self,
        info: MetricInfo,
        aliases: Optional[List[str]] = None,
    ) -> None:
        """Register a distance metric under its name and aliases."""
        self._metrics[info.name] = info
        self._codes[info.code] = info.name
        
        if aliases:
            for alias in aliases:
                self._aliases[alias] = info.name
    
    def get(self, name: Union[str, MetricKind]) -> MetricInfo:
        """
        Get metric info by name.
        
        Raises:
            InvalidConfigurationError: If metric not found
        """
        if isinstance(name, MetricKind):
            name = name.value
        
        if not isinstance(name, str):
            raise InvalidConfigurationError(
                f"Metric must be a string, got {type(name).__name__}"
            )
        
        key = name.lower()
        canonical = self._aliases.get(key, key)
        
        if canonical not in self._metrics:
            available = sorted(self._metrics) + sorted(self._aliases)
            raise InvalidConfigurationError(
                f"Unknown metric: '{name}'. Available: {available}"
            )
        
        return self._metrics[canonical]
    
    def by_code(self, code: int) -> MetricInfo:
        """
        Get metric info by persisted code.
        
        Raises:
            InvalidConfigurationError: If no metric has that code
        """
        if code not in self._codes:
            raise InvalidConfigurationError(f"Unknown metric code: {code}")
        return self._metrics[self._codes[code]]
    
    def list_metrics(self) -> List[str]:
        """List all registered metric names."""
        return list(self._metrics.keys())
    
    def __contains__(self, name: str) -> bool:
        key = name.lower()
        return self._aliases.get(key, key) in self._metrics


# =============================================================================
# GLOBAL REGISTRY AND CONVENIENCE FUNCTIONS
# =============================================================================

_registry = MetricRegistry()


def get_metric(name: Union[str, MetricKind]) -> MetricInfo:
    """
    Get metric info by name or alias.
    
    Example:
        >>> get_metric("euclidean_sq").kind
        <MetricKind.L2SQ: 'l2sq'>
    """
    return _registry.get(name)


def get_metric_by_code(code: int) -> MetricInfo:
    """Get metric info from its persisted code."""
    return _registry.by_code(code)


def list_metrics() -> List[str]:
    """List all available metric names."""
    return _registry.list_metrics()


def distance(metric: Union[str, MetricKind], a: Vector, b: Vector) -> float:
    """
    Compute the distance between two vectors under a metric.
    
    Raises:
        DimensionMismatchError: If the vectors have different lengths
    """
    return DistanceEngine(metric).distance(a, b)


# =============================================================================
# DISTANCE ENGINE
# =============================================================================

class DistanceEngine:
    """
    Distance calculations bound to a specific metric.
    
    Provides single and one-to-many operations and counts the number of
    distances evaluated.
    
    Example:
        >>> engine = DistanceEngine("cos")
        >>> engine.distance(vec_a, vec_b)
        >>> engine.distances(query, matrix)
    """
    
    def __init__(self, metric: Union[str, MetricKind] = MetricKind.L2SQ):
        self.info = get_metric(metric)
        self.metric = self.info.name
        self._fn = self.info.function
        self.computations = 0
    
    @property
    def kind(self) -> MetricKind:
        return self.info.kind
    
    def distance(self, a: Vector, b: Vector) -> float:
        """Compute distance between two vectors."""
        a = np.asarray(a, dtype=np.float32)
        b = np.asarray(b, dtype=np.float32)
        
        if a.shape != b.shape:
            raise DimensionMismatchError(
                f"Vector shapes differ: {a.shape} vs {b.shape}"
            )
        
        self.computations += 1
        return self._fn(a, b)
    
    def distances(self, query: Vector, collection: NDArray) -> NDArray:
        """Compute distances from query to every row of collection."""
        if collection.ndim != 2 or collection.shape[1] != query.shape[0]:
            raise DimensionMismatchError(
                f"Query of length {query.shape[0]} vs collection "
                f"of shape {collection.shape}"
            )
        
        self.computations += len(collection)
        return query_distances(query, collection, self.metric)
    
    def __repr__(self) -> str:
        return f"DistanceEngine(metric='{self.metric}')"
