"""
File format definitions for navgraph index files.

An index file is a header, one record per node and a footer:

    [FileHeader 64B][NodeRecord + vector + links]*count[FileFooter 16B]

All integers are little-endian.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import Optional

from ..core.exceptions import (
    CorruptDataError,
    IncompatibleFormatError,
    InvalidConfigurationError,
)
from .scalars import scalar_by_code


# Magic number: "NAVGRAPH"
MAGIC_NUMBER = b"NAVGRAPH"

# Trailing magic, so truncation at a record boundary is detected
END_MAGIC = b"NAVGEND\x00"

# File format version
VERSION = 1

# Checksum digest length in bytes
CHECKSUM_SIZE = 8


def new_checksum() -> "hashlib._Hash":
    """Incremental BLAKE2b hasher covering everything before the footer."""
    return hashlib.blake2b(digest_size=CHECKSUM_SIZE)


@dataclass
class FileHeader:
    """
    File header structure (64 bytes).

    Layout:
        0-7:   Magic number (8 bytes)
        8-11:  Version (4 bytes, uint32)
        12-15: Dimensions (4 bytes, uint32)
        16:    Metric code (1 byte)
        17:    Scalar code of stored vectors (1 byte)
        18-19: Padding (2 bytes)
        20-23: Connectivity M (4 bytes, uint32)
        24-27: ef_construction (4 bytes, uint32)
        28-31: ef_search (4 bytes, uint32)
        32-39: Entry point node id, -1 if empty (8 bytes, int64)
        40-47: Node count (8 bytes, uint64)
        48-51: Max level, -1 if empty (4 bytes, int32)
        52-55: Layer-0 connectivity M0 (4 bytes, uint32)
        56-63: Reserved (8 bytes)
    """

    dimensions: int
    metric_code: int
    connectivity: int
    ef_construction: int
    ef_search: int
    entry_point: int = -1
    node_count: int = 0
    max_level: int = -1
    connectivity_base: Optional[int] = None
    scalar_code: int = 0
    magic: bytes = MAGIC_NUMBER
    version: int = VERSION

    FORMAT = "<8sIIBB2xIIIqQiI8x"
    SIZE = 64

    def __post_init__(self):
        if self.connectivity_base is None:
            self.connectivity_base = 2 * self.connectivity

    def validate(self) -> None:
        """
        Check magic, version and internal consistency.

        Raises:
            IncompatibleFormatError: Not a navgraph file, a newer version
                or an unknown scalar type
            CorruptDataError: Impossible parameters, inconsistent counts
                or entry point
        """
        if self.magic != MAGIC_NUMBER:
            raise IncompatibleFormatError(f"Invalid magic number: {self.magic!r}")
        if self.version > VERSION:
            raise IncompatibleFormatError(f"Unsupported version: {self.version}")
        try:
            scalar_by_code(self.scalar_code)
        except InvalidConfigurationError as e:
            raise IncompatibleFormatError(str(e)) from e

        if self.dimensions <= 0:
            raise CorruptDataError(f"Invalid dimensions: {self.dimensions}")
        if self.connectivity < 1:
            raise CorruptDataError(f"Invalid connectivity: {self.connectivity}")
        if self.connectivity_base < self.connectivity:
            raise CorruptDataError(
                f"Layer-0 connectivity {self.connectivity_base} < "
                f"connectivity {self.connectivity}"
            )
        if self.ef_construction < 1:
            raise CorruptDataError(
                f"Invalid ef_construction: {self.ef_construction}"
            )
        if self.ef_search < 1:
            raise CorruptDataError(f"Invalid ef_search: {self.ef_search}")

        if self.node_count == 0:
            if self.entry_point != -1:
                raise CorruptDataError("Entry point set in an empty index")
        elif not 0 <= self.entry_point < self.node_count:
            raise CorruptDataError(
                f"Entry point {self.entry_point} out of range "
                f"[0, {self.node_count})"
            )

    def to_bytes(self) -> bytes:
        """Serialize header to bytes."""
        return struct.pack(
            self.FORMAT,
            self.magic,
            self.version,
            self.dimensions,
            self.metric_code,
            self.scalar_code,
            self.connectivity,
            self.ef_construction,
            self.ef_search,
            self.entry_point,
            self.node_count,
            self.max_level,
            self.connectivity_base,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "FileHeader":
        """Deserialize and validate a header."""
        if len(data) < cls.SIZE:
            # Too short to even hold a magic: treat as foreign
            if len(data) < len(MAGIC_NUMBER) or data[:8] != MAGIC_NUMBER:
                raise IncompatibleFormatError("Not a navgraph index file")
            raise CorruptDataError(f"Header too short: {len(data)} < {cls.SIZE}")

        unpacked = struct.unpack(cls.FORMAT, data[:cls.SIZE])

        header = cls(
            magic=unpacked[0],
            version=unpacked[1],
            dimensions=unpacked[2],
            metric_code=unpacked[3],
            scalar_code=unpacked[4],
            connectivity=unpacked[5],
            ef_construction=unpacked[6],
            ef_search=unpacked[7],
            entry_point=unpacked[8],
            node_count=unpacked[9],
            max_level=unpacked[10],
            connectivity_base=unpacked[11],
        )

        header.validate()
        return header

    @property
    def itemsize(self) -> int:
        """Bytes per stored vector component."""
        return scalar_by_code(self.scalar_code).itemsize

    def __repr__(self) -> str:
        return (
            f"FileHeader(version={self.version}, dimensions={self.dimensions}, "
            f"count={self.node_count}, metric_code={self.metric_code}, "
            f"scalar_code={self.scalar_code})"
        )


@dataclass
class NodeRecord:
    """
    Fixed part of a node record (16 bytes).

    Layout:
        0-7:   Label (8 bytes, uint64)
        8-11:  Top layer (4 bytes, int32)
        12-15: Length of the msgpack link block (4 bytes, uint32)

    Followed by dimensions * itemsize bytes of vector, then the
    link block: a msgpack array of per-layer neighbor id arrays.
    """

    label: int
    level: int
    links_length: int

    FORMAT = "<QiI"
    SIZE = 16

    def to_bytes(self) -> bytes:
        return struct.pack(self.FORMAT, self.label, self.level, self.links_length)

    @classmethod
    def from_bytes(cls, data: bytes) -> "NodeRecord":
        label, level, links_length = struct.unpack(cls.FORMAT, data)
        return cls(label=label, level=level, links_length=links_length)


@dataclass
class FileFooter:
    """
    File footer structure (16 bytes).

    Layout:
        0-7:   BLAKE2b-64 checksum of header and records (8 bytes)
        8-15:  End magic (8 bytes)
    """

    checksum: bytes
    end_magic: bytes = END_MAGIC

    FORMAT = "<8s8s"
    SIZE = 16

    def to_bytes(self) -> bytes:
        """Serialize footer to bytes."""
        return struct.pack(self.FORMAT, self.checksum, self.end_magic)

    @classmethod
    def from_bytes(cls, data: bytes) -> "FileFooter":
        """Deserialize footer from bytes."""
        if len(data) < cls.SIZE:
            raise CorruptDataError(f"Footer too short: {len(data)} < {cls.SIZE}")

        checksum, end_magic = struct.unpack(cls.FORMAT, data[:cls.SIZE])
        if end_magic != END_MAGIC:
            raise CorruptDataError("Missing end marker")
        return cls(checksum=checksum, end_magic=end_magic)


def vector_size(dimensions: int, itemsize: int = 4) -> int:
    """Size of one stored vector in bytes (float32 unless itemsize says otherwise)."""
    return dimensions * itemsize
