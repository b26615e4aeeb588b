"""
Storage for navgraph: the in-memory vector arena and the index file format.
"""

from .store import VectorStore
from .scalars import ScalarKind, get_scalar, scalar_by_code
from .format import FileHeader, FileFooter, NodeRecord, MAGIC_NUMBER, VERSION
from .serialization import (
    IndexSnapshot,
    DEFAULT_CHECKPOINT_INTERVAL,
    read_header,
    read_index,
    write_index,
)

__all__ = [
    "VectorStore",
    "ScalarKind",
    "get_scalar",
    "scalar_by_code",
    "FileHeader",
    "FileFooter",
    "NodeRecord",
    "MAGIC_NUMBER",
    "VERSION",
    "IndexSnapshot",
    "DEFAULT_CHECKPOINT_INTERVAL",
    "read_header",
    "read_index",
    "write_index",
]
