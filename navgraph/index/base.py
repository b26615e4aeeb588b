"""
Configuration, statistics and result types shared by the index modules.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union

import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import InvalidConfigurationError
from ..distance import MetricKind, get_metric
from ..storage.scalars import ScalarKind, get_scalar
from ..utils.validation import validate_dimension, validate_positive


# Defaults follow the usual HNSW settings
DEFAULT_CONNECTIVITY = 16
DEFAULT_EF_CONSTRUCTION = 128
DEFAULT_EF_SEARCH = 64

# Upper bound on the sampled top layer
MAX_LEVEL = 32


class ConcurrencyMode(str, Enum):
    """How mutations may overlap."""
    
    # One add/remove at a time; searches run alongside
    SINGLE_WRITER = "single_writer"
    
    # Parallel adds with per-node locks; removals are exclusive
    CONCURRENT = "concurrent"
    
    def __str__(self) -> str:
        return self.value


@dataclass
class IndexConfig:
    """
    Configuration for an HNSW index.
    
    Attributes:
        dimensions: Vector length D
        metric: Metric name or alias (see navgraph.distance)
        connectivity: Max neighbors per node on layers above 0 (M)
        connectivity_base: Max neighbors on layer 0 (default 2*M)
        ef_construction: Beam width while inserting
        ef_search: Beam width while searching
        concurrency: ConcurrencyMode or its string value
        seed: Seed of the layer sampler, for reproducible graphs
        replace_existing: Re-adding a live label replaces it; when False
            it raises DuplicateLabelError
        quantization: Storage type of vectors: f32, f16 or f64
    """
    
    dimensions: int
    metric: Union[str, MetricKind] = MetricKind.L2SQ
    connectivity: int = DEFAULT_CONNECTIVITY
    connectivity_base: Optional[int] = None
    ef_construction: int = DEFAULT_EF_CONSTRUCTION
    ef_search: int = DEFAULT_EF_SEARCH
    concurrency: Union[str, ConcurrencyMode] = ConcurrencyMode.SINGLE_WRITER
    seed: Optional[int] = None
    replace_existing: bool = True
    quantization: Union[str, ScalarKind] = ScalarKind.F32
    
    def __post_init__(self):
        self.validate()
    
    def validate(self) -> None:
        """
        Validate and normalize the configuration in place.
        
        Raises:
            InvalidConfigurationError: On any invalid value
        """
        info = get_metric(self.metric)
        self.metric = info.kind
        
        self.dimensions = validate_dimension(self.dimensions)
        if info.fixed_dimensions and self.dimensions != info.fixed_dimensions:
            raise InvalidConfigurationError(
                f"Metric '{info.name}' requires {info.fixed_dimensions} "
                f"dimensions, got {self.dimensions}"
            )
        
        self.connectivity = validate_positive("connectivity", self.connectivity)
        if self.connectivity_base is None:
            self.connectivity_base = 2 * self.connectivity
        self.connectivity_base = validate_positive(
            "connectivity_base", self.connectivity_base, self.connectivity
        )
        
        self.ef_construction = validate_positive(
            "ef_construction", self.ef_construction
        )
        self.ef_search = validate_positive("ef_search", self.ef_search)
        self.quantization = get_scalar(self.quantization)
        
        try:
            self.concurrency = ConcurrencyMode(self.concurrency)
        except ValueError:
            available = [m.value for m in ConcurrencyMode]
            raise InvalidConfigurationError(
                f"Unknown concurrency mode: '{self.concurrency}'. "
                f"Available: {available}"
            ) from None
    
    @property
    def level_multiplier(self) -> float:
        """mL = 1/ln(M); M=1 uses ln 2 so sampling stays finite."""
        return 1.0 / math.log(max(2, self.connectivity))
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimensions": self.dimensions,
            "metric": str(self.metric),
            "connectivity": self.connectivity,
            "connectivity_base": self.connectivity_base,
            "ef_construction": self.ef_construction,
            "ef_search": self.ef_search,
            "concurrency": str(self.concurrency),
            "seed": self.seed,
            "replace_existing": self.replace_existing,
            "quantization": str(self.quantization),
        }


@dataclass
class IndexStats:
    """Statistics about an index."""
    
    dimensions: int
    metric: str
    vector_count: int
    capacity: int
    memory_bytes: int
    
    # Type-specific stats
    extra: Dict[str, Any] = field(default_factory=dict)
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "dimensions": self.dimensions,
            "metric": self.metric,
            "vector_count": self.vector_count,
            "capacity": self.capacity,
            "memory_bytes": self.memory_bytes,
            "memory_mb": round(self.memory_bytes / (1024 * 1024), 2),
            **self.extra,
        }


@dataclass
class SearchResult:
    """
    A single search hit.
    
    Attributes:
        label: Vector label
        distance: Distance from query
    """
    
    label: int
    distance: float
    
    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "distance": self.distance}
    
    def __repr__(self) -> str:
        return f"SearchResult(label={self.label}, distance={self.distance:.4f})"


@dataclass
class Matches:
    """
    Result of a search: labels and distances sorted by ascending distance.
    
    Unpacks like a pair:
        >>> labels, distances = index.search(query, k=10)
    """
    
    labels: NDArray[np.uint64]
    distances: NDArray[np.float32]
    
    @classmethod
    def empty(cls) -> "Matches":
        return cls(
            labels=np.zeros(0, dtype=np.uint64),
            distances=np.zeros(0, dtype=np.float32),
        )
    
    @property
    def count(self) -> int:
        return len(self.labels)
    
    def __len__(self) -> int:
        return len(self.labels)
    
    def __iter__(self) -> Iterator[NDArray]:
        yield self.labels
        yield self.distances
    
    def to_list(self) -> List[SearchResult]:
        return [
            SearchResult(int(label), float(dist))
            for label, dist in zip(self.labels, self.distances)
        ]
    
    def __repr__(self) -> str:
        return f"Matches(count={self.count}, labels={self.labels.tolist()})"
