"""
Core components for navgraph.
"""

from .exceptions import (
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

__all__ = [
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
