"""
Input validation utilities.
"""

from typing import Any

import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import (
    DimensionMismatchError,
    InvalidConfigurationError,
    InvalidLabelError,
    InvalidVectorError,
    ValidationError,
)


# Labels are unsigned 64-bit integers
MAX_LABEL = 2 ** 64 - 1

# Maximum limits
MAX_DIMENSIONS = 65536
MAX_K = 1_000_000


def validate_label(label: Any) -> int:
    """
    Validate a vector label.
    
    Args:
        label: The label to validate
        
    Returns:
        The label as a Python int
        
    Raises:
        InvalidLabelError: If label is not an unsigned 64-bit integer
    """
    if isinstance(label, (bool, np.bool_)) or not isinstance(
        label, (int, np.integer)
    ):
        raise InvalidLabelError(
            f"Label must be an integer, got {type(label).__name__}"
        )
    
    label = int(label)
    if label < 0 or label > MAX_LABEL:
        raise InvalidLabelError(
            f"Label {label} out of range [0, {MAX_LABEL}]"
        )
    
    return label


def validate_dimension(
    dimension: Any,
    min_dim: int = 1,
    max_dim: int = MAX_DIMENSIONS,
) -> int:
    """
    Validate vector dimensions.
    
    Args:
        dimension: The dimensions to validate
        min_dim: Minimum allowed dimensions
        max_dim: Maximum allowed dimensions
        
    Returns:
        The validated dimensions
        
    Raises:
        InvalidConfigurationError: If dimensions are invalid
    """
    return validate_positive("dimensions", dimension, min_dim, max_dim)


def validate_positive(
    name: str,
    value: Any,
    min_value: int = 1,
    max_value: int = 2 ** 31 - 1,
) -> int:
    """Validate an integral configuration parameter."""
    if isinstance(value, (bool, np.bool_)) or not isinstance(
        value, (int, np.integer)
    ):
        raise InvalidConfigurationError(
            f"{name} must be an integer, got {type(value).__name__}"
        )
    
    value = int(value)
    if value < min_value:
        raise InvalidConfigurationError(
            f"{name} too small: {value} (min {min_value})"
        )
    
    if value > max_value:
        raise InvalidConfigurationError(
            f"{name} too large: {value} (max {max_value})"
        )
    
    return value


def validate_k(k: Any, max_k: int = MAX_K) -> int:
    """
    Validate k (number of results).
    
    Zero is allowed and yields an empty result.
    
    Raises:
        ValidationError: If k is invalid
    """
    if isinstance(k, (bool, np.bool_)) or not isinstance(k, (int, np.integer)):
        raise ValidationError(f"k must be an integer, got {type(k).__name__}")
    
    k = int(k)
    if k < 0:
        raise ValidationError(f"k must be non-negative, got {k}")
    
    if k > max_k:
        raise ValidationError(f"k too large: {k} (max {max_k})")
    
    return k


def as_vector(vector: Any, dimension: int, dtype: Any = np.float32) -> NDArray:
    """
    Convert input to a contiguous vector of dtype and validate it.
    
    Args:
        vector: Array-like input
        dimension: Expected length
        dtype: Target dtype; values it can't represent count as infinite
        
    Returns:
        A new array (never a view of the caller's data)
        
    Raises:
        InvalidVectorError: If the input isn't 1D numeric or has NaN/inf
        DimensionMismatchError: If the length doesn't match
    """
    try:
        with np.errstate(over="ignore"):
            array = np.array(vector, dtype=dtype, copy=True)
    except (TypeError, ValueError) as e:
        raise InvalidVectorError(f"Vector is not numeric: {e}") from e
    
    if array.ndim != 1:
        raise InvalidVectorError(f"Vector must be 1D, got {array.ndim}D")
    
    if len(array) != dimension:
        raise DimensionMismatchError(
            f"Vector dimension {len(array)} != index dimension {dimension}"
        )
    
    if not np.all(np.isfinite(array)):
        raise InvalidVectorError("Vector contains NaN or infinite components")
    
    return array


def as_matrix(vectors: Any, dimension: int, dtype: Any = np.float32) -> NDArray:
    """Batch counterpart of as_vector() for arrays of shape (n, dimension)."""
    try:
        with np.errstate(over="ignore"):
            array = np.array(vectors, dtype=dtype, copy=True)
    except (TypeError, ValueError) as e:
        raise InvalidVectorError(f"Vectors are not numeric: {e}") from e
    
    if array.ndim != 2:
        raise InvalidVectorError(f"Vectors must be 2D, got {array.ndim}D")
    
    if array.shape[1] != dimension:
        raise DimensionMismatchError(
            f"Vector dimension {array.shape[1]} != index dimension {dimension}"
        )
    
    if not np.all(np.isfinite(array)):
        raise InvalidVectorError("Vectors contain NaN or infinite components")
    
    return array
