"""
Core distance implementations.

All functions are vectorized with NumPy. Every metric is expressed as a
distance: smaller values mean more similar vectors, and only relative
order matters to the index.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray


# Type aliases
Vector = NDArray[np.floating]
VectorBatch = NDArray[np.floating]


# Norms below this are treated as zero
EPS = 1e-12


# =============================================================================
# SINGLE VECTOR DISTANCE FUNCTIONS
# =============================================================================

def l2sq(a: Vector, b: Vector) -> float:
    """
    Compute squared Euclidean distance between two vectors.
    
    Maintains the same ordering as Euclidean distance without the sqrt.
    
    Formula: sum((a_i - b_i)^2)
    
    Example:
        >>> l2sq(np.array([0.0, 0.0]), np.array([3.0, 4.0]))
        25.0
    """
    diff = a - b
    return float(np.dot(diff, diff))


def cosine_similarity(a: Vector, b: Vector) -> float:
    """
    Compute cosine similarity between two vectors.
    
    Formula: (a · b) / (||a|| * ||b||)
    
    Returns:
        Similarity in [-1, 1]; 0.0 if either vector has zero norm
    """
    denominator = float(np.linalg.norm(a)) * float(np.linalg.norm(b))
    if denominator < EPS:
        return 0.0
    
    similarity = float(np.dot(a, b)) / denominator
    return min(1.0, max(-1.0, similarity))


def cosine_distance(a: Vector, b: Vector) -> float:
    """
    Compute cosine distance between two vectors.
    
    Formula: 1 - cosine_similarity(a, b)
    
    Returns:
        Distance in [0, 2]
        
    Example:
        >>> cosine_distance(np.array([1.0, 0.0]), np.array([0.0, 1.0]))
        1.0
    """
    return 1.0 - cosine_similarity(a, b)


def inner_product_distance(a: Vector, b: Vector) -> float:
    """
    Compute inner-product distance.
    
    Formula: 1 - sum(a_i * b_i)
    
    For unit vectors this equals cosine distance.
    """
    return 1.0 - float(np.dot(a, b))


def hamming(a: Vector, b: Vector) -> float:
    """
    Compute Hamming distance between two vectors.
    
    Counts the number of positions where components differ.
    Typically used for binary vectors.
    
    Example:
        >>> hamming(np.array([1, 0, 1, 1, 0]), np.array([1, 1, 1, 0, 0]))
        2.0
    """
    return float(np.count_nonzero(a != b))


def haversine(a: Vector, b: Vector) -> float:
    """
    Compute the great-circle central angle between two points.
    
    Vectors are (latitude, longitude) pairs in radians. The result is
    in radians; multiply by a sphere radius to get a length.
    """
    lat1, lon1 = float(a[0]), float(a[1])
    lat2, lon2 = float(b[0]), float(b[1])
    
    h = (
        np.sin((lat2 - lat1) / 2.0) ** 2
        + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2.0) ** 2
    )
    return float(2.0 * np.arcsin(np.sqrt(min(1.0, max(0.0, h)))))


# =============================================================================
# QUERY-TO-COLLECTION DISTANCES
# =============================================================================

def batch_l2sq(query: Vector, collection: VectorBatch) -> NDArray:
    """Squared Euclidean distances from query to each row of collection."""
    diff = collection - query
    return np.einsum("ij,ij->i", diff, diff)


def batch_cosine(query: Vector, collection: VectorBatch) -> NDArray:
    """Cosine distances from query to each row of collection."""
    q_norm = np.linalg.norm(query)
    c_norms = np.linalg.norm(collection, axis=1)
    
    denominators = q_norm * c_norms
    dots = collection @ query
    
    similarities = np.where(
        denominators < EPS,
        0.0,
        dots / np.where(denominators < EPS, 1.0, denominators),
    )
    similarities = np.clip(similarities, -1.0, 1.0)
    return (1.0 - similarities).astype(collection.dtype, copy=False)


def batch_inner_product(query: Vector, collection: VectorBatch) -> NDArray:
    """Inner-product distances from query to each row of collection."""
    return 1.0 - (collection @ query)


def batch_hamming(query: Vector, collection: VectorBatch) -> NDArray:
    """Hamming distances from query to each row of collection."""
    return np.count_nonzero(collection != query, axis=1).astype(np.float32)


def batch_haversine(query: Vector, collection: VectorBatch) -> NDArray:
    """Central angles from a (lat, lon) query to each row of collection."""
    lat1, lon1 = query[0], query[1]
    lat2, lon2 = collection[:, 0], collection[:, 1]
    
    h = (
        np.sin((lat2 - lat1) / 2.0) ** 2
        + np.cos(lat1) * np.cos(lat2) * np.sin((lon2 - lon1) / 2.0) ** 2
    )
    return 2.0 * np.arcsin(np.sqrt(np.clip(h, 0.0, 1.0)))


_BATCH_FUNCTIONS = {
    "l2sq": batch_l2sq,
    "cos": batch_cosine,
    "ip": batch_inner_product,
    "hamming": batch_hamming,
    "haversine": batch_haversine,
}


def query_distances(
    query: Vector,
    collection: VectorBatch,
    metric: str = "l2sq",
) -> NDArray:
    """
    Compute distances from a query vector to all vectors in a collection.
    
    Args:
        query: Query vector of shape (d,)
        collection: Collection of vectors of shape (n, d)
        metric: Canonical metric name
        
    Returns:
        Distances array of shape (n,)
        
    Example:
        >>> query = np.array([0.0, 0.0])
        >>> collection = np.array([[1.0, 0.0], [0.0, 2.0]])
        >>> query_distances(query, collection, "l2sq")
        array([1., 4.])
    """
    if len(collection) == 0:
        return np.zeros(0, dtype=np.float32)
    
    try:
        fn = _BATCH_FUNCTIONS[metric]
    except KeyError:
        raise ValueError(f"Unknown metric: {metric}") from None
    
    return fn(query, collection)
