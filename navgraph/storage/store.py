"""
Contiguous in-memory vector storage keyed by label.

Vectors live in a single matrix addressed by dense node ids, stored as
f32 by default or as f16/f64 when a quantization is given. Removal
tombstones a row; rows are only reclaimed by compact().
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import (
    CapacityError,
    DuplicateLabelError,
    NotFoundError,
)
from ..utils.validation import as_vector
from .scalars import ScalarKind, get_scalar


class VectorStore:
    """
    Label-keyed vector arena.
    
    Node ids are handed out monotonically; a removed node keeps its row
    (tombstoned) until compact() renumbers the live ones.
    
    Thread Safety:
        Mutations take an internal lock. Readers use row()/rows()
        without locking: a row is fully written before its node id is
        published, and growth swaps in a new matrix that already holds
        every existing row.
    
    Replacement is two-phase: stage() writes a row that is not yet
    live, commit() publishes it and tombstones the node it replaces.
    Until commit the old vector stays readable under its label.
    
    Example:
        >>> store = VectorStore(dimension=4)
        >>> node = store.put(42, [0.3, 0.5, 1.2, 1.4])
        >>> store.get(node)
        array([0.3, 0.5, 1.2, 1.4], dtype=float32)
    """
    
    def __init__(
        self,
        dimension: int,
        initial_capacity: int = 0,
        growth_factor: float = 2.0,
        quantization: Any = ScalarKind.F32,
    ):
        self._dimension = dimension
        self._scalar = get_scalar(quantization)
        self._growth_factor = growth_factor
        self._lock = threading.RLock()
        
        self._vectors = self._allocate(max(0, initial_capacity))
        self._labels = np.zeros(len(self._vectors), dtype=np.uint64)
        self._live = np.zeros(len(self._vectors), dtype=bool)
        
        # Next node id to hand out
        self._next = 0
        self._label_to_node: Dict[int, int] = {}
    
    # =========================================================================
    # PROPERTIES
    # =========================================================================
    
    @property
    def dimension(self) -> int:
        return self._dimension
    
    @property
    def quantization(self) -> ScalarKind:
        return self._scalar
    
    @property
    def compute_dtype(self) -> np.dtype:
        """Dtype rows are handed to distance computations in."""
        return self._scalar.compute_dtype
    
    @property
    def size(self) -> int:
        """Number of live vectors."""
        return len(self._label_to_node)
    
    @property
    def capacity(self) -> int:
        """Number of rows allocated."""
        return len(self._vectors)
    
    @property
    def allocated(self) -> int:
        """Number of node ids handed out (live and tombstoned)."""
        return self._next
    
    @property
    def tombstones(self) -> int:
        return self._next - len(self._label_to_node)
    
    def count(self) -> int:
        """Number of live vectors."""
        return len(self._label_to_node)
    
    # =========================================================================
    # GROWTH
    # =========================================================================
    
    def _allocate(self, rows: int) -> NDArray:
        try:
            return np.zeros((rows, self._dimension), dtype=self._scalar.dtype)
        except MemoryError as e:
            raise CapacityError(
                f"Cannot allocate {rows} vectors of dimension {self._dimension}"
            ) from e
    
    def reserve(self, capacity: int) -> None:
        """
        Grow backing storage to hold at least `capacity` vectors.
        
        Raises:
            CapacityError: If the allocation fails
        """
        with self._lock:
            if capacity <= len(self._vectors):
                return
            
            vectors = self._allocate(capacity)
            labels = np.zeros(capacity, dtype=np.uint64)
            live = np.zeros(capacity, dtype=bool)
            
            used = self._next
            vectors[:used] = self._vectors[:used]
            labels[:used] = self._labels[:used]
            live[:used] = self._live[:used]
            
            # Publish labels/flags before the matrix readers index into
            self._labels = labels
            self._live = live
            self._vectors = vectors
    
    def _expand(self) -> None:
        new_capacity = max(16, int(len(self._vectors) * self._growth_factor))
        self.reserve(new_capacity)
    
    # =========================================================================
    # CRUD OPERATIONS
    # =========================================================================
    
    def _coerce(self, vector: Any) -> NDArray:
        return as_vector(vector, self._dimension, dtype=self._scalar.dtype)
    
    def _write_row(self, label: int, vector: NDArray) -> int:
        if self._next >= len(self._vectors):
            self._expand()
        
        node = self._next
        self._vectors[node] = vector
        self._labels[node] = label
        self._next += 1
        return node
    
    def put(self, label: int, vector: NDArray, replace: bool = True) -> int:
        """
        Store a vector under a label.
        
        Args:
            label: Validated label
            vector: Vector of the store's dimension
            replace: Tombstone a live node with the same label instead of
                raising
            
        Returns:
            The new node id
            
        Raises:
            DimensionMismatchError: Wrong vector length
            InvalidVectorError: Non-finite components, or components the
                storage type can't represent
            DuplicateLabelError: Label is live and replace is False
            CapacityError: Storage could not grow
        """
        vector = self._coerce(vector)
        
        with self._lock:
            if label in self._label_to_node and not replace:
                raise DuplicateLabelError(f"Label {label} already exists")
            
            node = self._write_row(label, vector)
            self.commit(node)
            return node
    
    def stage(self, label: int, vector: NDArray) -> int:
        """
        Write a vector for label without publishing it.
        
        The staged node isn't live: lookups by label still find the
        previous node, if any, until commit(node). discard(node) drops
        a staged node that will never be committed.
        
        Returns:
            The staged node id
        """
        vector = self._coerce(vector)
        
        with self._lock:
            return self._write_row(label, vector)
    
    def commit(self, node: int, replace: bool = True) -> Optional[int]:
        """
        Publish a staged node under its label.
        
        Args:
            node: Node returned by stage()
            replace: Tombstone a live node with the same label instead
                of raising
        
        Returns:
            The node it replaced (now tombstoned), or None
        
        Raises:
            DuplicateLabelError: Label is live and replace is False;
                the node stays staged
        """
        with self._lock:
            label = int(self._labels[node])
            previous = self._label_to_node.get(label)
            if previous is not None and previous != node and not replace:
                raise DuplicateLabelError(f"Label {label} already exists")
            
            self._live[node] = True
            if previous is not None and previous != node:
                self._live[previous] = False
            self._label_to_node[label] = node
            
            return previous if previous != node else None
    
    def get(self, node: int) -> NDArray:
        """
        Return a copy of a live node's vector, in the storage type.
        
        Raises:
            NotFoundError: If the node is absent or tombstoned
        """
        if not self.is_live(node):
            raise NotFoundError(f"Node {node} not found")
        return self._vectors[node].copy()
    
    def get_by_label(self, label: int) -> Optional[NDArray]:
        """Return a copy of the vector stored under label, or None."""
        node = self._label_to_node.get(label)
        if node is None:
            return None
        return self._vectors[node].copy()
    
    def remove(self, label: int) -> Optional[int]:
        """
        Tombstone the node holding label.
        
        Returns:
            The tombstoned node id, or None if the label isn't live
        """
        with self._lock:
            node = self._label_to_node.pop(label, None)
            if node is not None:
                self._live[node] = False
            return node
    
    def discard(self, node: int) -> None:
        """Tombstone a live or staged node by id (rolls back a failed insert)."""
        with self._lock:
            if not self._live[node]:
                # Staged rows stay behind as tombstones
                return
            label = int(self._labels[node])
            self._live[node] = False
            if self._label_to_node.get(label) == node:
                del self._label_to_node[label]
    
    def clear(self) -> int:
        """Drop every vector; returns the number of live vectors dropped."""
        with self._lock:
            count = len(self._label_to_node)
            self._vectors = self._allocate(0)
            self._labels = np.zeros(0, dtype=np.uint64)
            self._live = np.zeros(0, dtype=bool)
            self._next = 0
            self._label_to_node = {}
            return count
    
    # =========================================================================
    # LOOKUPS
    # =========================================================================
    
    def contains(self, label: int) -> bool:
        return label in self._label_to_node
    
    def __contains__(self, label: int) -> bool:
        return label in self._label_to_node
    
    def __len__(self) -> int:
        return len(self._label_to_node)
    
    def node_of(self, label: int) -> Optional[int]:
        """Live node id for label, or None."""
        return self._label_to_node.get(label)
    
    def label_of(self, node: int) -> int:
        return int(self._labels[node])
    
    def labels_of(self, nodes: Sequence[int]) -> NDArray[np.uint64]:
        return self._labels[np.asarray(nodes, dtype=np.int64)]
    
    def is_live(self, node: int) -> bool:
        return 0 <= node < self._next and bool(self._live[node])
    
    def row(self, node: int) -> NDArray:
        """
        Internal vector of a node in the compute dtype. Don't hand it out:
        for f32 and f64 storage it is a view of the arena.
        """
        row = self._vectors[node]
        if row.dtype != self._scalar.compute_dtype:
            return row.astype(self._scalar.compute_dtype)
        return row
    
    def rows(self, nodes: Sequence[int]) -> NDArray:
        """Vectors of several nodes as a (len(nodes), dimension) matrix."""
        return self._vectors[np.asarray(nodes, dtype=np.int64)].astype(
            self._scalar.compute_dtype, copy=False
        )
    
    def live_nodes(self) -> List[int]:
        """Live node ids in ascending order."""
        return sorted(self._label_to_node.values())
    
    def iter_live(self) -> Iterator[Tuple[int, int]]:
        """Iterate over (label, node) pairs of live vectors."""
        yield from list(self._label_to_node.items())
    
    # =========================================================================
    # COMPACTION AND SNAPSHOTS
    # =========================================================================
    
    def compact(self) -> Dict[int, int]:
        """
        Drop tombstoned rows and renumber live nodes densely.
        
        Live nodes keep their relative order. The caller must make sure
        nothing reads node ids while this runs.
        
        Returns:
            Mapping of old node id -> new node id for live nodes
        """
        with self._lock:
            old_ids = np.flatnonzero(self._live[:self._next])
            remap = {int(old): new for new, old in enumerate(old_ids)}
            
            count = len(old_ids)
            vectors = self._allocate(count)
            labels = np.zeros(count, dtype=np.uint64)
            live = np.zeros(count, dtype=bool)
            
            vectors[:count] = self._vectors[old_ids]
            labels[:count] = self._labels[old_ids]
            live[:count] = True
            
            self._vectors = vectors
            self._labels = labels
            self._live = live
            self._next = count
            self._label_to_node = {
                int(label): node for node, label in enumerate(labels[:count])
            }
            
            return remap
    
    def snapshot(self, nodes: Sequence[int]) -> Tuple[NDArray[np.uint64], NDArray]:
        """Copy labels and vectors of the given nodes, in that order."""
        index = np.asarray(nodes, dtype=np.int64)
        return self._labels[index].copy(), self._vectors[index].copy()
    
    @classmethod
    def from_arrays(
        cls,
        labels: NDArray[np.uint64],
        vectors: NDArray,
        quantization: Any = None,
    ) -> "VectorStore":
        """
        Build a store whose node i holds labels[i] / vectors[i].
        
        The storage type defaults to the dtype of vectors.
        
        Raises:
            ValueError: If labels repeat or shapes disagree
        """
        if vectors.ndim != 2 or len(labels) != len(vectors):
            raise ValueError(
                f"Expected {len(labels)} vectors, got shape {vectors.shape}"
            )
        
        if quantization is None:
            quantization = vectors.dtype
        store = cls(
            dimension=vectors.shape[1],
            initial_capacity=len(vectors),
            quantization=quantization,
        )
        count = len(vectors)
        
        store._vectors[:count] = vectors
        store._labels[:count] = labels
        store._live[:count] = True
        store._next = count
        store._label_to_node = {
            int(label): node for node, label in enumerate(labels)
        }
        
        if len(store._label_to_node) != count:
            raise ValueError("Duplicate labels")
        
        return store
    
    def memory_bytes(self) -> int:
        return self._vectors.nbytes + self._labels.nbytes + self._live.nbytes
    
    def __repr__(self) -> str:
        return (
            f"VectorStore(dimension={self._dimension}, size={self.size}, "
            f"capacity={self.capacity}, quantization={self._scalar})"
        )
