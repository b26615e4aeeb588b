"""
Reading and writing index files.

The writer streams node records into a temporary sibling of the target
and renames it into place once the footer is written, so a reader never
sees a half-written file. Both directions feed a BLAKE2b hasher as they
go and poll an optional cancellation event between records.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

import msgpack
import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import (
    CorruptDataError,
    IncompatibleFormatError,
    OperationCancelledError,
)
from .format import (
    FileFooter,
    FileHeader,
    NodeRecord,
    new_checksum,
    vector_size,
)
from .scalars import scalar_by_code


DEFAULT_CHECKPOINT_INTERVAL = 1024

PathLike = Union[str, "os.PathLike[str]"]


@dataclass
class IndexSnapshot:
    """
    Everything an index file holds, with node ids dense in 0..n-1.

    Attributes:
        dimensions: Vector length
        metric_code: Persisted metric code
        connectivity: M the graph was built with
        ef_construction: Build beam width
        ef_search: Search beam width
        labels: (n,) uint64 labels
        vectors: (n, dimensions) vectors in the stored scalar type
        levels: Top layer of each node
        links: Per node, per layer neighbor id lists
        entry_point: Entry node id, -1 when empty
        max_level: Entry node's top layer, -1 when empty
        connectivity_base: Layer-0 capacity M0, None for 2 * connectivity
        scalar_code: Persisted code of the stored scalar type
    """

    dimensions: int
    metric_code: int
    connectivity: int
    ef_construction: int
    ef_search: int
    labels: NDArray[np.uint64]
    vectors: NDArray
    levels: List[int] = field(default_factory=list)
    links: List[List[List[int]]] = field(default_factory=list)
    entry_point: int = -1
    max_level: int = -1
    connectivity_base: Optional[int] = None
    scalar_code: int = 0

    @property
    def node_count(self) -> int:
        return len(self.labels)

    def header(self) -> FileHeader:
        return FileHeader(
            dimensions=self.dimensions,
            metric_code=self.metric_code,
            connectivity=self.connectivity,
            ef_construction=self.ef_construction,
            ef_search=self.ef_search,
            entry_point=self.entry_point,
            node_count=self.node_count,
            max_level=self.max_level,
            connectivity_base=self.connectivity_base,
            scalar_code=self.scalar_code,
        )


def _checkpoint(cancel: Optional[threading.Event], operation: str) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError(f"{operation} cancelled")


# =============================================================================
# WRITING
# =============================================================================

def write_index(
    path: PathLike,
    snapshot: IndexSnapshot,
    cancel: Optional[threading.Event] = None,
    checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
) -> int:
    """
    Write a snapshot to path atomically.

    Args:
        path: Target file
        snapshot: Index contents
        cancel: Event polled every checkpoint_interval records
        checkpoint_interval: Records between cancellation checks

    Returns:
        Number of bytes written

    Raises:
        OperationCancelledError: If cancel was set; path is untouched
        OSError: On I/O failure; path is untouched
    """
    path = Path(path)
    tmp_path = path.with_name(path.name + ".tmp")
    interval = max(1, checkpoint_interval)
    hasher = new_checksum()

    def emit(f: BinaryIO, data: bytes) -> None:
        f.write(data)
        hasher.update(data)

    try:
        with open(tmp_path, "wb") as f:
            _checkpoint(cancel, "Save")
            emit(f, snapshot.header().to_bytes())

            dtype = scalar_by_code(snapshot.scalar_code).dtype.newbyteorder("<")
            vectors = np.ascontiguousarray(snapshot.vectors, dtype=dtype)

            for i in range(snapshot.node_count):
                if i % interval == 0:
                    _checkpoint(cancel, "Save")

                links = msgpack.packb(snapshot.links[i], use_bin_type=True)
                record = NodeRecord(
                    label=int(snapshot.labels[i]),
                    level=snapshot.levels[i],
                    links_length=len(links),
                )
                emit(f, record.to_bytes())
                emit(f, vectors[i].tobytes())
                emit(f, links)

            _checkpoint(cancel, "Save")
            f.write(FileFooter(checksum=hasher.digest()).to_bytes())
            f.flush()
            os.fsync(f.fileno())
            written = f.tell()

        os.replace(tmp_path, path)
    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise

    return written


# =============================================================================
# READING
# =============================================================================

class _ChecksumReader:
    """Reads exact byte counts while feeding the checksum."""

    def __init__(self, f: BinaryIO):
        self.f = f
        self.hasher = new_checksum()

    def read(self, size: int, what: str) -> bytes:
        data = self.f.read(size)
        if len(data) != size:
            raise CorruptDataError(
                f"Truncated file: expected {size} bytes of {what}, got {len(data)}"
            )
        self.hasher.update(data)
        return data


def _decode_links(
    block: bytes, level: int, node: int, count: int, header: FileHeader
) -> List[List[int]]:
    try:
        links = msgpack.unpackb(block, raw=False)
    except (ValueError, TypeError, msgpack.exceptions.UnpackException) as e:
        raise CorruptDataError(f"Bad link block for node {node}: {e}") from e

    if not isinstance(links, list) or len(links) != level + 1:
        raise CorruptDataError(
            f"Node {node} should have {level + 1} link layers"
        )

    for layer, layer_links in enumerate(links):
        if not isinstance(layer_links, list):
            raise CorruptDataError(f"Bad link layer for node {node}")

        capacity = header.connectivity_base if layer == 0 else header.connectivity
        if len(layer_links) > capacity:
            raise CorruptDataError(
                f"Node {node} has {len(layer_links)} links on layer {layer}, "
                f"capacity is {capacity}"
            )

        for neighbor in layer_links:
            if (
                not isinstance(neighbor, int)
                or isinstance(neighbor, bool)
                or not 0 <= neighbor < count
                or neighbor == node
            ):
                raise CorruptDataError(
                    f"Node {node} links to invalid node {neighbor!r}"
                )

        if len(set(layer_links)) != len(layer_links):
            raise CorruptDataError(
                f"Node {node} has duplicate links on layer {layer}"
            )

    return links


def read_header(path: PathLike) -> FileHeader:
    """Read and validate only the header of an index file."""
    with open(path, "rb") as f:
        return FileHeader.from_bytes(f.read(FileHeader.SIZE))


def read_index(
    path: PathLike,
    dimensions: Optional[int] = None,
    metric_code: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
    checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
    scalar_code: Optional[int] = None,
) -> IndexSnapshot:
    """
    Read and fully validate an index file.

    Args:
        path: File to read
        dimensions: Expected dimensions, or None to accept any
        metric_code: Expected metric code, or None to accept any
        cancel: Event polled every checkpoint_interval records
        checkpoint_interval: Records between cancellation checks
        scalar_code: Expected scalar code, or None to accept any

    Returns:
        The decoded snapshot

    Raises:
        IncompatibleFormatError: Foreign file, newer version, or a
            dimensions/metric/scalar mismatch
        CorruptDataError: Truncation, bad checksum, invalid ids or vectors
        OperationCancelledError: If cancel was set
    """
    interval = max(1, checkpoint_interval)
    file_size = os.path.getsize(path)

    with open(path, "rb") as f:
        _checkpoint(cancel, "Load")
        reader = _ChecksumReader(f)

        header_bytes = f.read(FileHeader.SIZE)
        header = FileHeader.from_bytes(header_bytes)
        reader.hasher.update(header_bytes)

        if dimensions is not None and header.dimensions != dimensions:
            raise IncompatibleFormatError(
                f"File has dimensions {header.dimensions}, index has {dimensions}"
            )
        if metric_code is not None and header.metric_code != metric_code:
            raise IncompatibleFormatError(
                f"File has metric code {header.metric_code}, "
                f"index has {metric_code}"
            )
        if scalar_code is not None and header.scalar_code != scalar_code:
            raise IncompatibleFormatError(
                f"File stores {scalar_by_code(header.scalar_code)} vectors, "
                f"index stores {scalar_by_code(scalar_code)}"
            )

        count = header.node_count
        scalar = scalar_by_code(header.scalar_code)
        row_dtype = scalar.dtype.newbyteorder("<")
        row_bytes = vector_size(header.dimensions, scalar.itemsize)

        # Reject absurd counts before allocating for them
        minimum = FileHeader.SIZE + count * (NodeRecord.SIZE + row_bytes) + FileFooter.SIZE
        if minimum > file_size:
            raise CorruptDataError(
                f"File of {file_size} bytes can't hold {count} nodes"
            )

        labels = np.zeros(count, dtype=np.uint64)
        vectors = np.zeros((count, header.dimensions), dtype=scalar.dtype)
        levels: List[int] = []
        links: List[List[List[int]]] = []

        for node in range(count):
            if node % interval == 0:
                _checkpoint(cancel, "Load")

            record = NodeRecord.from_bytes(reader.read(NodeRecord.SIZE, "node record"))
            if not 0 <= record.level <= header.max_level:
                raise CorruptDataError(
                    f"Node {node} has invalid level {record.level}"
                )

            vector = np.frombuffer(reader.read(row_bytes, "vector"), dtype=row_dtype)
            if not np.all(np.isfinite(vector)):
                raise CorruptDataError(f"Node {node} has a non-finite vector")

            block = reader.read(record.links_length, "link block")

            labels[node] = record.label
            vectors[node] = vector
            levels.append(record.level)
            links.append(_decode_links(block, record.level, node, count, header))

        _checkpoint(cancel, "Load")

        tail = f.read()
        if len(tail) < FileFooter.SIZE:
            raise CorruptDataError("Truncated file: missing footer")
        if len(tail) > FileFooter.SIZE:
            raise CorruptDataError(
                f"{len(tail) - FileFooter.SIZE} trailing bytes after index data"
            )

        footer = FileFooter.from_bytes(tail)
        if footer.checksum != reader.hasher.digest():
            raise CorruptDataError("Checksum mismatch")

    _validate_topology(header, labels, levels, links)

    return IndexSnapshot(
        dimensions=header.dimensions,
        metric_code=header.metric_code,
        connectivity=header.connectivity,
        ef_construction=header.ef_construction,
        ef_search=header.ef_search,
        labels=labels,
        vectors=vectors,
        levels=levels,
        links=links,
        entry_point=header.entry_point,
        max_level=header.max_level,
        connectivity_base=header.connectivity_base,
        scalar_code=header.scalar_code,
    )


def _validate_topology(
    header: FileHeader,
    labels: NDArray[np.uint64],
    levels: List[int],
    links: List[List[List[int]]],
) -> None:
    """Cross-record checks that need every node decoded."""
    if len(np.unique(labels)) != len(labels):
        raise CorruptDataError("Duplicate labels")

    if header.node_count and levels[header.entry_point] != header.max_level:
        raise CorruptDataError("Entry point level doesn't match max level")

    for node, node_links in enumerate(links):
        for layer, layer_links in enumerate(node_links):
            for neighbor in layer_links:
                if levels[neighbor] < layer:
                    raise CorruptDataError(
                        f"Node {node} links to node {neighbor} on layer {layer} "
                        f"above its top layer"
                    )
