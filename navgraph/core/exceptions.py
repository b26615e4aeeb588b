"""
Custom exceptions for navgraph.
"""


class NavGraphError(Exception):
    """Base exception for navgraph."""
    pass


class InvalidConfigurationError(NavGraphError):
    """Index configuration is invalid (raised at construction time)."""
    pass


class ValidationError(NavGraphError, ValueError):
    """Input validation error."""
    pass


class DimensionMismatchError(ValidationError):
    """Vector length doesn't match the index dimensions."""
    pass


class InvalidVectorError(ValidationError):
    """Vector contains non-finite components or has the wrong shape."""
    pass


class InvalidLabelError(ValidationError):
    """Label is not an unsigned 64-bit integer."""
    pass


class DuplicateLabelError(ValidationError):
    """Label is already live and replacement is disabled."""
    pass


class NotFoundError(NavGraphError):
    """Label or node is absent or has been removed."""
    pass


class ReadOnlyIndexError(NavGraphError):
    """Mutation attempted on an index opened with view()."""
    pass


class CapacityError(NavGraphError, MemoryError):
    """Backing storage could not grow to the requested capacity."""
    pass


class OperationCancelledError(NavGraphError):
    """A save or load was interrupted at a checkpoint."""
    pass


class StorageError(NavGraphError):
    """Error related to persistence."""
    pass


class CorruptDataError(StorageError):
    """Persisted file is truncated or damaged."""
    pass


class IncompatibleFormatError(StorageError):
    """Persisted file doesn't match this index or this format version."""
    pass
