"""
HNSW (Hierarchical Navigable Small World) Index.

The public entry point of navgraph. HNSWIndex ties together the vector
store, the distance engine and the proximity graph, validates every
input, resolves duplicate labels and handles persistence.

Key Features:
    - O(log n) search complexity
    - High recall (typically 95-99%)
    - Incremental insertions and removals
    - Searches run alongside writers without blocking

Example:
    >>> from navgraph import HNSWIndex
    >>> index = HNSWIndex(dimensions=4, metric="l2sq", connectivity=8)
    >>> index.add(42, [0.3, 0.5, 1.2, 1.4])
    >>> index.add(43, [0.4, 0.2, 1.2, 1.1])
    >>> labels, distances = index.search([0.3, 0.5, 1.2, 1.4], k=10)
    >>> labels.tolist()
    [42, 43]
"""

from __future__ import annotations

import threading
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from ..core.exceptions import (
    DuplicateLabelError,
    IncompatibleFormatError,
    InvalidConfigurationError,
    ReadOnlyIndexError,
    ValidationError,
)
from ..distance import DistanceEngine, MetricKind, get_metric, get_metric_by_code
from ..storage import (
    DEFAULT_CHECKPOINT_INTERVAL,
    IndexSnapshot,
    ScalarKind,
    VectorStore,
    read_header,
    read_index,
    scalar_by_code,
    write_index,
)
from ..utils.logging import get_logger, log_duration, set_level
from ..utils.validation import (
    as_matrix,
    as_vector,
    validate_k,
    validate_label,
    validate_positive,
)
from .base import (
    DEFAULT_CONNECTIVITY,
    DEFAULT_EF_CONSTRUCTION,
    DEFAULT_EF_SEARCH,
    ConcurrencyMode,
    IndexConfig,
    IndexStats,
    Matches,
)
from .graph import ProximityGraph
from .locks import MutationLock, ReadWriteLock


logger = get_logger(__name__)


class HNSWIndex:
    """
    Approximate nearest-neighbor index over labeled vectors.

    Example:
        >>> index = HNSWIndex(dimensions=128, metric="cos")
        >>>
        >>> # Add vectors
        >>> for i in range(10000):
        ...     index.add(i, vectors[i])
        >>>
        >>> # Search
        >>> labels, distances = index.search(query, k=10)
        >>>
        >>> # Tune search quality vs speed
        >>> index.set_ef_search(100)  # Higher = better recall, slower

    Parameters:
        connectivity: Max connections per node (default: 16)
            - Layer 0 allows twice as many
            - Higher = better recall, more memory, slower construction

        ef_construction: Construction beam width (default: 128)
            - Higher = better graph quality, slower construction

        ef_search: Search beam width (default: 64)
            - Higher = better recall, slower search
            - Can be overridden per query

    Thread Safety:
        Searches never block each other. In "single_writer" mode add and
        remove are serialized; in "concurrent" mode adds run in parallel
        and removals are exclusive. compact, load and clear wait for
        in-flight searches and block new ones.
    """

    def __init__(
        self,
        dimensions: int,
        metric: Union[str, MetricKind] = MetricKind.L2SQ,
        connectivity: int = DEFAULT_CONNECTIVITY,
        ef_construction: int = DEFAULT_EF_CONSTRUCTION,
        ef_search: int = DEFAULT_EF_SEARCH,
        concurrency: Union[str, ConcurrencyMode] = ConcurrencyMode.SINGLE_WRITER,
        seed: Optional[int] = None,
        replace_existing: bool = True,
        capacity: int = 0,
        connectivity_base: Optional[int] = None,
        quantization: Union[str, ScalarKind] = ScalarKind.F32,
    ):
        """
        Initialize an empty index.

        Args:
            dimensions: Vector length
            metric: Metric name or alias ("l2sq", "cos", "ip", ...)
            connectivity: Max neighbors per node above layer 0 (M)
            ef_construction: Beam width during construction
            ef_search: Default beam width during search
            concurrency: "single_writer" or "concurrent"
            seed: Random seed for reproducible graphs
            replace_existing: Re-adding a live label replaces its vector
                instead of raising DuplicateLabelError
            capacity: Number of vectors to pre-allocate
            connectivity_base: Max neighbors on layer 0 (default 2*M)
            quantization: Storage type of vectors, "f32", "f16" or "f64";
                f16 vectors are searched in single precision

        Raises:
            InvalidConfigurationError: On any invalid parameter
        """
        self.config = IndexConfig(
            dimensions=dimensions,
            metric=metric,
            connectivity=connectivity,
            connectivity_base=connectivity_base,
            ef_construction=ef_construction,
            ef_search=ef_search,
            concurrency=concurrency,
            seed=seed,
            replace_existing=replace_existing,
            quantization=quantization,
        )
        capacity = validate_positive("capacity", capacity, min_value=0)

        self._engine = DistanceEngine(self.config.metric)
        self._store = VectorStore(
            self.config.dimensions,
            initial_capacity=capacity,
            quantization=self.config.quantization,
        )
        self._graph = self._new_graph()
        self._graph.reserve(capacity)

        concurrent = self.config.concurrency == ConcurrencyMode.CONCURRENT
        self._structure = ReadWriteLock()
        self._mutation = MutationLock(concurrent)

        self._read_only = False
        self._checkpoint_interval = DEFAULT_CHECKPOINT_INTERVAL

    def _new_graph(self) -> ProximityGraph:
        return ProximityGraph(
            self._store,
            self._engine,
            connectivity=self.config.connectivity,
            connectivity_base=self.config.connectivity_base,
            ef_construction=self.config.ef_construction,
            level_multiplier=self.config.level_multiplier,
            concurrent=self.config.concurrency == ConcurrencyMode.CONCURRENT,
            seed=self.config.seed,
        )

    # =========================================================================
    # FACTORIES
    # =========================================================================

    @classmethod
    def l2sq(cls, dimensions: int, **kwargs) -> "HNSWIndex":
        """Index with squared Euclidean distance."""
        return cls(dimensions, metric=MetricKind.L2SQ, **kwargs)

    @classmethod
    def ip(cls, dimensions: int, **kwargs) -> "HNSWIndex":
        """Index with inner-product distance (1 - a.b)."""
        return cls(dimensions, metric=MetricKind.IP, **kwargs)

    @classmethod
    def cos(cls, dimensions: int, **kwargs) -> "HNSWIndex":
        """Index with cosine distance."""
        return cls(dimensions, metric=MetricKind.COSINE, **kwargs)

    @classmethod
    def hamming(cls, dimensions: int, **kwargs) -> "HNSWIndex":
        """Index with Hamming distance."""
        return cls(dimensions, metric=MetricKind.HAMMING, **kwargs)

    @classmethod
    def haversine(cls, **kwargs) -> "HNSWIndex":
        """Index of (lat, lon) radian pairs with great-circle distance."""
        return cls(2, metric=MetricKind.HAVERSINE, **kwargs)

    @classmethod
    def from_settings(cls, settings: Any, dimensions: Optional[int] = None) -> "HNSWIndex":
        """
        Build an index from a config.settings.Settings instance.

        Args:
            settings: Settings with `index` and `storage` sections
            dimensions: Overrides settings.index.dimensions
        """
        opts = settings.index
        index = cls(
            dimensions=dimensions if dimensions is not None else opts.dimensions,
            metric=opts.metric,
            connectivity=opts.connectivity,
            ef_construction=opts.ef_construction,
            ef_search=opts.ef_search,
            concurrency=opts.concurrency,
            seed=opts.seed,
            replace_existing=opts.replace_existing,
            capacity=opts.capacity,
            quantization=opts.quantization,
        )
        index._checkpoint_interval = validate_positive(
            "checkpoint_interval", settings.storage.checkpoint_interval
        )
        set_level(settings.log_level)
        return index

    @classmethod
    def restore(cls, path: str, **kwargs) -> "HNSWIndex":
        """
        Create an index from a saved file, taking its configuration
        from the file header.

        Args:
            path: Index file written by save()
            **kwargs: Extra constructor arguments (concurrency, seed, ...)
        """
        header = read_header(path)
        try:
            metric = get_metric_by_code(header.metric_code)
        except InvalidConfigurationError as e:
            raise IncompatibleFormatError(str(e)) from e

        params = dict(
            dimensions=header.dimensions,
            metric=metric.kind,
            connectivity=header.connectivity,
            connectivity_base=header.connectivity_base,
            ef_construction=header.ef_construction,
            ef_search=header.ef_search,
            quantization=scalar_by_code(header.scalar_code),
        )
        params.update(kwargs)

        index = cls(**params)
        index.load(path)
        return index

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def dimensions(self) -> int:
        return self.config.dimensions

    @property
    def metric(self) -> str:
        """Canonical metric name."""
        return self._engine.metric

    @property
    def connectivity(self) -> int:
        return self.config.connectivity

    @property
    def ef_construction(self) -> int:
        return self.config.ef_construction

    @property
    def quantization(self) -> str:
        """Storage type of vectors: "f32", "f16" or "f64"."""
        return str(self.config.quantization)

    @property
    def ef_search(self) -> int:
        return self.config.ef_search

    @property
    def size(self) -> int:
        """Number of live vectors."""
        return len(self._store)

    @property
    def capacity(self) -> int:
        """Vectors that fit before storage grows again."""
        return self._store.capacity

    @property
    def read_only(self) -> bool:
        return self._read_only

    @property
    def entry_point(self) -> Optional[int]:
        """Label of the current entry point, or None when empty."""
        node = self._graph.entry_point
        if node is None:
            return None
        return self._store.label_of(node)

    @property
    def max_level(self) -> int:
        """Current top layer of the graph (-1 when empty)."""
        return self._graph.max_level

    def set_ef_search(self, ef: int) -> None:
        """
        Set the default search beam width.

        Higher values give better recall but slower search.

        Args:
            ef: New ef_search value
        """
        self.config.ef_search = validate_positive("ef_search", ef)

    def reserve(self, capacity: int) -> None:
        """Pre-allocate room for capacity vectors."""
        capacity = validate_positive("capacity", capacity, min_value=0)
        self._store.reserve(capacity)
        self._graph.reserve(capacity)

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, label: Any) -> bool:
        return self.contains(label)

    def _check_writable(self) -> None:
        if self._read_only:
            raise ReadOnlyIndexError("Index was opened with view() and is read-only")

    # =========================================================================
    # ADD OPERATIONS
    # =========================================================================

    def add(self, label: int, vector: Union[NDArray, Sequence[float]]) -> None:
        """
        Add a vector under a label.

        Re-adding a live label replaces its vector unless the index was
        created with replace_existing=False. The old vector stays in
        place until the new one is linked, so a failed replacement
        leaves the index as it was.

        Args:
            label: Unsigned 64-bit integer label
            vector: Vector of length `dimensions`

        Raises:
            InvalidLabelError: Label isn't an unsigned 64-bit integer
            DimensionMismatchError: Wrong vector length
            InvalidVectorError: Non-numeric or non-finite vector, or one
                the storage type can't represent
            DuplicateLabelError: Live label and replacement disabled
            ReadOnlyIndexError: Index was opened with view()
        """
        self._check_writable()
        label = validate_label(label)
        vector = as_vector(vector, self.config.dimensions, self.config.quantization.dtype)

        with self._structure.read():
            self._add(label, vector)

        logger.debug(f"Added label {label}")

    def _add(self, label: int, vector: NDArray) -> None:
        concurrent = self._mutation.concurrent
        exclusive = label in self._store

        while True:
            with self._mutation.acquire(exclusive):
                node = self._place(label, vector, exclusive)
                if node is None:
                    # Replacing needs the exclusive lock; retry with it
                    exclusive = True
                    continue

                try:
                    self._graph.insert(node)
                    # Without the exclusive lock another writer may have
                    # published the label meanwhile
                    previous = self._store.commit(
                        node, replace=exclusive or not concurrent
                    )
                except BaseException as e:
                    if not concurrent:
                        self._rollback(node)
                        raise
                    error = e
                else:
                    if previous is not None:
                        self._graph.remove(previous)
                    return

            # Other writers may already link to the partial node
            with self._mutation.exclusive():
                self._rollback(node)

            if isinstance(error, DuplicateLabelError) and self.config.replace_existing:
                exclusive = True
                continue
            raise error

    def _place(self, label: int, vector: NDArray, exclusive: bool) -> Optional[int]:
        """
        Stage the vector in the store, resolving a live duplicate.

        Returns:
            The staged node id, or None if the caller must retry holding
            the exclusive lock
        """
        if label in self._store:
            if not self.config.replace_existing:
                raise DuplicateLabelError(f"Label {label} already exists")
            if self._mutation.concurrent and not exclusive:
                return None

        return self._store.stage(label, vector)

    def _rollback(self, node: int) -> None:
        self._graph.remove(node)
        self._store.discard(node)

    def add_batch(
        self,
        labels: Sequence[int],
        vectors: Union[NDArray, Sequence[Sequence[float]]],
    ) -> int:
        """
        Add multiple vectors.

        Labels, vectors and shapes are validated before the first
        insertion. With replace_existing=False so are duplicates, both
        labels repeated within the batch and labels already live. A
        concurrent writer adding one of the labels meanwhile still makes
        the batch stop with DuplicateLabelError at that label.

        With replacement enabled a label repeated in the batch keeps its
        last vector.

        Args:
            labels: Labels, one per vector
            vectors: Array of shape (n, dimensions)

        Returns:
            Number of vectors added
        """
        self._check_writable()
        labels = [validate_label(label) for label in labels]
        if not labels:
            return 0

        vectors = as_matrix(
            vectors, self.config.dimensions, self.config.quantization.dtype
        )
        if len(vectors) != len(labels):
            raise ValidationError(
                f"Number of labels ({len(labels)}) != vectors ({len(vectors)})"
            )

        if not self.config.replace_existing:
            self._check_new_labels(labels)

        with self._structure.read():
            for label, vector in zip(labels, vectors):
                self._add(label, vector)

        logger.debug(f"Added batch of {len(labels)} vectors")
        return len(labels)

    def _check_new_labels(self, labels: List[int]) -> None:
        seen = set()
        for label in labels:
            if label in seen:
                raise DuplicateLabelError(f"Label {label} appears twice in the batch")
            if label in self._store:
                raise DuplicateLabelError(f"Label {label} already exists")
            seen.add(label)

    # =========================================================================
    # SEARCH OPERATIONS
    # =========================================================================

    def search(
        self,
        vector: Union[NDArray, Sequence[float]],
        k: int = 10,
        ef: Optional[int] = None,
    ) -> Matches:
        """
        Search for the k nearest neighbors.

        Args:
            vector: Query vector
            k: Number of results; 0 gives an empty result
            ef: Override ef_search for this query (raised to k if smaller)

        Returns:
            Matches sorted by distance, ties by label; fewer than k when
            the index holds fewer vectors
        """
        k = validate_k(k)
        query = as_vector(vector, self.config.dimensions, self._store.compute_dtype)
        ef = self.config.ef_search if ef is None else validate_positive("ef", ef)

        if k == 0:
            return Matches.empty()

        with self._structure.read():
            found = self._graph.search(query, k, ef)
            labels = self._store.labels_of([n.node for n in found])

        distances = np.array([n.distance for n in found], dtype=np.float32)
        order = np.lexsort((labels, distances))[:k]

        return Matches(labels=labels[order], distances=distances[order])

    def search_batch(
        self,
        vectors: Union[NDArray, Sequence[Sequence[float]]],
        k: int = 10,
        ef: Optional[int] = None,
    ) -> List[Matches]:
        """
        Search with multiple queries.

        Args:
            vectors: Array of query vectors (n, dimensions)
            k: Number of results per query
            ef: Override ef_search

        Returns:
            One Matches per query
        """
        queries = as_matrix(vectors, self.config.dimensions, self._store.compute_dtype)
        return [self.search(q, k=k, ef=ef) for q in queries]

    # =========================================================================
    # REMOVE OPERATIONS
    # =========================================================================

    def remove(self, label: int) -> bool:
        """
        Remove a vector.

        Args:
            label: Label to remove

        Returns:
            True if removed, False if the label wasn't present
        """
        self._check_writable()
        label = validate_label(label)

        with self._structure.read(), self._mutation.exclusive():
            removed = self._remove_label(label)

        if removed:
            logger.debug(f"Removed label {label}")
        return removed

    def _remove_label(self, label: int) -> bool:
        node = self._store.remove(label)
        if node is None:
            return False
        self._graph.remove(node)
        return True

    def remove_batch(self, labels: Sequence[int]) -> int:
        """
        Remove multiple vectors.

        Returns:
            Number removed
        """
        count = 0
        for label in labels:
            if self.remove(label):
                count += 1
        return count

    # =========================================================================
    # GET OPERATIONS
    # =========================================================================

    def get(self, label: int) -> Optional[NDArray]:
        """Copy of the vector stored under label (in the storage type), or None."""
        return self._store.get_by_label(validate_label(label))

    def contains(self, label: Any) -> bool:
        """Check if a label is live."""
        if isinstance(label, (bool, np.bool_)) or not isinstance(
            label, (int, np.integer)
        ):
            return False
        return int(label) in self._store

    def iter_labels(self) -> Iterator[int]:
        """Iterate over live labels."""
        for label, _ in self._store.iter_live():
            yield label

    def iter_vectors(self) -> Iterator[Tuple[int, NDArray]]:
        """Iterate over (label, vector copy) pairs."""
        for label, node in self._store.iter_live():
            yield label, self._store.row(node).copy()

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def compact(self) -> int:
        """
        Reclaim the storage of removed and replaced vectors.

        Node ids are renumbered; labels and search results don't change.

        Returns:
            Number of rows reclaimed
        """
        self._check_writable()

        with self._structure.write(), log_duration(logger, "compact"):
            reclaimed = self._store.tombstones
            remap = self._store.compact()
            self._graph.compact(remap)

        logger.info(f"Compacted index: reclaimed {reclaimed} rows")
        return reclaimed

    def clear(self) -> int:
        """
        Remove all vectors.

        Returns:
            Number of vectors removed
        """
        self._check_writable()

        with self._structure.write():
            count = self._store.clear()
            self._graph.clear()

        logger.info(f"Cleared index: removed {count} vectors")
        return count

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def _snapshot(self) -> IndexSnapshot:
        topology = self._graph.export()
        labels, vectors = self._store.snapshot(topology.nodes)

        return IndexSnapshot(
            dimensions=self.config.dimensions,
            metric_code=self._engine.info.code,
            connectivity=self.config.connectivity,
            ef_construction=self.config.ef_construction,
            ef_search=self.config.ef_search,
            labels=labels,
            vectors=vectors,
            levels=topology.levels,
            links=topology.links,
            entry_point=topology.entry_point,
            max_level=topology.max_level,
            connectivity_base=self.config.connectivity_base,
            scalar_code=self.config.quantization.code,
        )

    def save(self, path: str, cancel: Optional[threading.Event] = None) -> None:
        """
        Save the index to a file.

        The file is written next to path and renamed into place, so an
        existing file is only replaced by a complete one.

        Args:
            path: Target file
            cancel: Event that aborts the save when set

        Raises:
            OperationCancelledError: If cancel was set
        """
        with self._structure.read(), self._mutation.exclusive():
            snapshot = self._snapshot()

        with log_duration(logger, f"save {path}"):
            written = write_index(path, snapshot, cancel, self._checkpoint_interval)
        logger.info(
            f"Saved {snapshot.node_count} vectors to {path} ({written} bytes)"
        )

    def load(self, path: str, cancel: Optional[threading.Event] = None) -> None:
        """
        Replace the contents of this index with a saved file.

        The file must match this index's dimensions, metric and
        quantization. Its connectivity and ef parameters are adopted.

        Args:
            path: File written by save()
            cancel: Event that aborts the load when set; the index is
                left unchanged

        Raises:
            IncompatibleFormatError: Foreign file or mismatched configuration
            CorruptDataError: Damaged file
            OperationCancelledError: If cancel was set
        """
        with log_duration(logger, f"load {path}"):
            snapshot = read_index(
                path,
                dimensions=self.config.dimensions,
                metric_code=self._engine.info.code,
                cancel=cancel,
                checkpoint_interval=self._checkpoint_interval,
                scalar_code=self.config.quantization.code,
            )

        with self._structure.write():
            self._install(snapshot)
            self._read_only = False

        logger.info(f"Loaded {snapshot.node_count} vectors from {path}")

    def view(self, path: str, cancel: Optional[threading.Event] = None) -> None:
        """
        Load a saved file for searching only.

        add, remove, compact and clear raise ReadOnlyIndexError until
        the next load().
        """
        self.load(path, cancel)
        self._read_only = True

    def _install(self, snapshot: IndexSnapshot) -> None:
        config = self.config
        built = (snapshot.connectivity, snapshot.connectivity_base, snapshot.ef_construction)
        current = (config.connectivity, config.connectivity_base, config.ef_construction)
        if built != current:
            logger.warning(
                f"Index file was built with connectivity={snapshot.connectivity}, "
                f"connectivity_base={snapshot.connectivity_base}, "
                f"ef_construction={snapshot.ef_construction}; adopting them "
                f"instead of {config.connectivity}, {config.connectivity_base}, "
                f"{config.ef_construction}"
            )
            config.connectivity = snapshot.connectivity
            config.connectivity_base = snapshot.connectivity_base
            config.ef_construction = snapshot.ef_construction
        config.ef_search = snapshot.ef_search

        self._store = VectorStore.from_arrays(
            snapshot.labels, snapshot.vectors, quantization=config.quantization
        )
        self._graph = self._new_graph()
        self._graph.restore(
            snapshot.levels,
            snapshot.links,
            snapshot.entry_point,
            snapshot.max_level,
        )

    # =========================================================================
    # STATISTICS
    # =========================================================================

    def stats(self) -> IndexStats:
        """Get index statistics."""
        total_connections = self._graph.total_connections()

        return IndexStats(
            dimensions=self.config.dimensions,
            metric=self.metric,
            vector_count=self.size,
            capacity=self.capacity,
            memory_bytes=self._store.memory_bytes() + self._graph.memory_bytes(),
            extra={
                "connectivity": self.config.connectivity,
                "connectivity_base": self.config.connectivity_base,
                "ef_construction": self.config.ef_construction,
                "ef_search": self.config.ef_search,
                "concurrency": str(self.config.concurrency),
                "quantization": str(self.config.quantization),
                "max_level": self.max_level,
                "entry_point": self.entry_point,
                "level_distribution": self._graph.level_distribution(),
                "total_connections": total_connections,
                "avg_connections": total_connections / max(1, self.size),
                "tombstones": self._store.tombstones,
                "distance_computations": self._engine.computations,
                "read_only": self._read_only,
            },
        )

    def get_graph_info(self) -> Dict[str, Any]:
        """
        Get detailed graph information.

        Returns:
            Dictionary with graph structure info
        """
        return {
            "max_level": self.max_level,
            "entry_point": self.entry_point,
            "total_nodes": self.size,
            "config": self.config.to_dict(),
            "levels": self._graph.layer_info(),
        }

    def __repr__(self) -> str:
        return (
            f"HNSWIndex(dimensions={self.dimensions}, metric='{self.metric}', "
            f"connectivity={self.connectivity}, size={self.size})"
        )


# Short alias
Index = HNSWIndex


def create_index(
    metric: Union[str, MetricKind],
    dimensions: int,
    **kwargs,
) -> HNSWIndex:
    """
    Factory function to create an index.

    Args:
        metric: Metric name or alias
        dimensions: Vector length
        **kwargs: Further HNSWIndex arguments

    Returns:
        An empty HNSWIndex

    Example:
        >>> index = create_index("cosine", 384, connectivity=32)
    """
    info = get_metric(metric)
    return HNSWIndex(dimensions, metric=info.kind, **kwargs)
