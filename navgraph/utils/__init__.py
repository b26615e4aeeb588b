"""
Utility functions for navgraph.
"""

from .validation import (
    validate_label,
    validate_dimension,
    validate_positive,
    validate_k,
    as_vector,
    as_matrix,
)
from .logging import setup_logger, get_logger, set_level, log_duration

__all__ = [
    "validate_label",
    "validate_dimension",
    "validate_positive",
    "validate_k",
    "as_vector",
    "as_matrix",
    "setup_logger",
    "get_logger",
    "set_level",
    "log_duration",
]
