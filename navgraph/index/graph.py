"""
Multi-layer navigable small-world graph.

The graph owns the topology only: node ids index into a VectorStore,
and every distance goes through a DistanceEngine.

Reference:
    Malkov, Y. A., & Yashunin, D. A. (2018).
    "Efficient and robust approximate nearest neighbor search using
    Hierarchical Navigable Small World graphs."
    https://arxiv.org/abs/1603.09320
"""

from __future__ import annotations

import heapq
import math
import random
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import (
    Dict,
    List,
    Optional,
    Any,
    Sequence,
    Set,
    Tuple,
    NamedTuple,
)

import numpy as np
from numpy.typing import NDArray

from ..distance import DistanceEngine
from ..storage.store import VectorStore
from ..utils.logging import get_logger
from .base import MAX_LEVEL
from .locks import NodeLocks


logger = get_logger(__name__)


# A neighbor list: node ids sorted by distance to the owner
Links = Tuple[int, ...]


class Neighbor(NamedTuple):
    """A node with its distance to some reference vector."""
    distance: float
    node: int


@dataclass
class GraphSnapshot:
    """
    Dense copy of the topology, as written to disk.

    Node i of the snapshot is the i-th live node in ascending id order.
    """

    nodes: List[int]  # original node ids
    levels: List[int]
    links: List[List[List[int]]]
    entry_point: int
    max_level: int


class ProximityGraph:
    """
    HNSW proximity graph over store node ids.

    Layout:
        _levels[node] is the node's top layer (-1 once removed) and
        _links[node][layer] its neighbor tuple on that layer. Node ids
        are dense arena indices, so there are no object cycles.

    Thread Safety:
        Neighbor lists are immutable tuples replaced wholesale, so a
        search reading without locks always sees some complete list.
        The entry point is a single (node, level) tuple for the same
        reason. With concurrent=True every list update holds the
        owner's node lock; several locks are taken in ascending node id
        order. remove(), compact() and restore() expect the caller to
        exclude all other writers.

    Example:
        >>> store = VectorStore(dimension=4)
        >>> graph = ProximityGraph(store, DistanceEngine("l2sq"), connectivity=8)
        >>> graph.insert(store.put(42, [0.3, 0.5, 1.2, 1.4]))
        >>> graph.search(np.array([0.3, 0.5, 1.2, 1.4], dtype=np.float32), k=1)
    """

    def __init__(
        self,
        store: VectorStore,
        engine: DistanceEngine,
        connectivity: int = 16,
        connectivity_base: Optional[int] = None,
        ef_construction: int = 128,
        level_multiplier: Optional[float] = None,
        concurrent: bool = False,
        seed: Optional[int] = None,
        max_level: int = MAX_LEVEL,
    ):
        """
        Args:
            store: Vector storage the node ids refer to
            engine: Distance engine for the index metric
            connectivity: Max neighbors per node above layer 0 (M)
            connectivity_base: Max neighbors on layer 0 (default 2*M)
            ef_construction: Beam width while inserting
            level_multiplier: mL of the layer sampler (default 1/ln(M))
            concurrent: Enable per-node locking for parallel inserts
            seed: Random seed for reproducible layer assignment
            max_level: Cap on sampled layers
        """
        self._store = store
        self._engine = engine

        self.M = connectivity
        self.M0 = connectivity_base or 2 * connectivity
        self.ef_construction = ef_construction
        self._ml = level_multiplier or 1.0 / math.log(max(2, connectivity))
        self._level_cap = max_level

        self._rng = random.Random(seed)
        self._rng_lock = threading.Lock()

        self._levels: List[int] = []
        self._links: List[Optional[List[Links]]] = []
        self._grow_lock = threading.Lock()

        # (entry node, max level); (-1, -1) while empty
        self._entry: Tuple[int, int] = (-1, -1)
        self._entry_lock = threading.Lock()

        self._locks = NodeLocks(enabled=concurrent)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def entry_point(self) -> Optional[int]:
        """Current entry node id, or None when empty."""
        node = self._entry[0]
        return node if node >= 0 else None

    @property
    def max_level(self) -> int:
        """Top layer of the entry point (-1 when empty)."""
        return self._entry[1]

    @property
    def concurrent(self) -> bool:
        return self._locks.enabled

    def capacity(self, layer: int) -> int:
        """Neighbor list capacity on a layer."""
        return self.M0 if layer == 0 else self.M

    def level_of(self, node: int) -> int:
        """Top layer of a node (-1 if absent)."""
        if 0 <= node < len(self._levels):
            return self._levels[node]
        return -1

    def neighbors(self, node: int, layer: int = 0) -> List[int]:
        """Copy of a node's neighbor list on a layer."""
        if not 0 <= node < len(self._links):
            return []
        return list(self._neighbors(node, layer))

    def nodes(self) -> List[int]:
        """Node ids present in the graph, ascending."""
        return [node for node, level in enumerate(self._levels) if level >= 0]

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _ensure(self, node: int) -> None:
        """Grow the per-node arrays to cover node."""
        if node < len(self._levels):
            return
        with self._grow_lock:
            target = max(node + 1, self._store.capacity)
            missing = target - len(self._levels)
            if missing > 0:
                self._links.extend([None] * missing)
                self._levels.extend([-1] * missing)
        self._locks.grow(target)

    def reserve(self, capacity: int) -> None:
        """Pre-size the per-node arrays for node ids below capacity."""
        if capacity > 0:
            self._ensure(capacity - 1)

    def _neighbors(self, node: int, layer: int) -> Links:
        links = self._links[node]
        if links is None or layer >= len(links):
            return ()
        return links[layer]

    def _distances(self, query: NDArray, nodes: Sequence[int]) -> NDArray:
        return self._engine.distances(query, self._store.rows(nodes))

    def _random_level(self) -> int:
        """
        Sample a top layer: floor(-ln(U) * mL).

        P(level >= l) = exp(-l / mL) = M^-l for mL = 1/ln(M).
        """
        with self._rng_lock:
            u = self._rng.random()
        level = int(-math.log(1.0 - u) * self._ml)
        return min(level, self._level_cap)

    # =========================================================================
    # CORE ALGORITHMS
    # =========================================================================

    def _greedy_closest(
        self,
        query: NDArray,
        node: int,
        dist: float,
        layer: int,
    ) -> Tuple[int, float]:
        """
        Single-best greedy walk on one layer.

        Moves to the closest neighbor while that improves the distance,
        so it stops after a bounded number of strictly improving steps.
        """
        while True:
            links = self._neighbors(node, layer)
            if not links:
                return node, dist

            dists = self._distances(query, links)
            best = int(np.argmin(dists))
            if dists[best] >= dist:
                return node, dist

            node, dist = links[best], float(dists[best])

    def _search_layer(
        self,
        query: NDArray,
        entry_points: Sequence[Neighbor],
        ef: int,
        layer: int,
    ) -> List[Neighbor]:
        """
        Beam search of one layer (Algorithm 2 of the paper).

        Args:
            query: Query vector
            entry_points: Starting nodes with their distances to query
            ef: Number of closest candidates to keep
            layer: Layer to search

        Returns:
            Up to ef neighbors sorted by distance
        """
        visited: Set[int] = {ep.node for ep in entry_points}

        # Min-heap of nodes to expand
        candidates: List[Tuple[float, int]] = []

        # Max-heap (negated) of the best ef found so far
        results: List[Tuple[float, int]] = []

        for ep in entry_points:
            heapq.heappush(candidates, (ep.distance, ep.node))
            heapq.heappush(results, (-ep.distance, ep.node))
            if len(results) > ef:
                heapq.heappop(results)

        while candidates:
            dist_c, current = heapq.heappop(candidates)

            # Closest candidate is further than the worst kept result
            if dist_c > -results[0][0]:
                break

            fresh = [n for n in self._neighbors(current, layer) if n not in visited]
            if not fresh:
                continue
            visited.update(fresh)

            for neighbor, dist_n in zip(fresh, self._distances(query, fresh)):
                dist_n = float(dist_n)
                if len(results) < ef or dist_n < -results[0][0]:
                    heapq.heappush(candidates, (dist_n, neighbor))
                    heapq.heappush(results, (-dist_n, neighbor))

                    if len(results) > ef:
                        heapq.heappop(results)

        return sorted(Neighbor(-d, node) for d, node in results)

    def select_neighbors(
        self,
        candidates: Sequence[Neighbor],
        capacity: int,
    ) -> List[Neighbor]:
        """
        Diversity heuristic (Algorithm 4 of the paper).

        Walks candidates closest first and keeps one only if it is closer
        to the reference vector than to every neighbor kept so far. If
        fewer than capacity survive, the closest rejected candidates fill
        the remaining slots.

        Args:
            candidates: Neighbors sorted by distance to the reference
            capacity: Maximum number to keep

        Returns:
            Selected neighbors sorted by distance
        """
        if len(candidates) <= capacity:
            return list(candidates)

        selected: List[Neighbor] = []
        rejected: List[Neighbor] = []

        for candidate in candidates:
            if len(selected) >= capacity:
                break

            if selected:
                to_selected = self._distances(
                    self._store.row(candidate.node),
                    [s.node for s in selected],
                )
                if np.any(to_selected <= candidate.distance):
                    rejected.append(candidate)
                    continue

            selected.append(candidate)

        for candidate in rejected:
            if len(selected) >= capacity:
                break
            selected.append(candidate)

        selected.sort()
        return selected

    def _add_link(self, owner: int, node: int, dist: float, layer: int) -> Links:
        """
        Add node to owner's list on a layer, pruning if it overflows.

        Caller holds owner's lock.

        Returns:
            Nodes that ended up outside the list: pruned former neighbors,
            or node itself if the heuristic rejected it
        """
        current = self._neighbors(owner, layer)
        if node in current:
            return ()

        pool = [Neighbor(dist, node)]
        if current:
            dists = self._distances(self._store.row(owner), current)
            pool.extend(Neighbor(float(d), n) for n, d in zip(current, dists))
        pool.sort()

        capacity = self.capacity(layer)
        if len(pool) > capacity:
            pool = self.select_neighbors(pool, capacity)

        links = tuple(n.node for n in pool)
        self._links[owner][layer] = links
        return tuple(n for n in (node,) + current if n not in links)

    def _connect(self, node: int, selected: List[Neighbor], layer: int) -> None:
        """
        Link node to its selected neighbors in both directions.

        Pruning a neighbor's list can cut the only path to the node it
        drops (or to the new node itself). If every dropped node is still
        reachable so is everything else, so only those are checked.
        """
        with self._locks.hold(node):
            self._links[node][layer] = tuple(n.node for n in selected)

        pruned: Set[int] = set()
        for neighbor in selected:
            with self._locks.hold(node, neighbor.node):
                pruned.update(
                    self._add_link(neighbor.node, node, neighbor.distance, layer)
                )

        if pruned:
            self._ensure_reachable(layer, sorted(pruned))

    # =========================================================================
    # INSERT
    # =========================================================================

    def insert(self, node: int) -> int:
        """
        Insert a stored vector into the graph (Algorithm 1 of the paper).

        Args:
            node: Node id already written to the store

        Returns:
            The node's sampled top layer
        """
        vector = self._store.row(node)
        level = self._random_level()

        self._ensure(node)
        with self._locks.hold(node):
            self._links[node] = [() for _ in range(level + 1)]
            self._levels[node] = level

        with self._entry_lock:
            entry, max_level = self._entry
            if entry < 0:
                self._entry = (node, level)
                return level

        current = entry
        current_dist = float(self._distances(vector, [entry])[0])

        # Greedy descent through the layers above the new node
        for layer in range(max_level, level, -1):
            current, current_dist = self._greedy_closest(
                vector, current, current_dist, layer
            )

        entry_points = [Neighbor(current_dist, current)]

        for layer in range(min(level, max_level), -1, -1):
            candidates = self._search_layer(
                vector, entry_points, self.ef_construction, layer
            )
            candidates = [c for c in candidates if c.node != node]
            if not candidates:
                continue

            selected = self.select_neighbors(candidates, self.capacity(layer))
            self._connect(node, selected, layer)

            entry_points = candidates

        if level > max_level:
            with self._entry_lock:
                promoted = level > self._entry[1]
                if promoted:
                    self._entry = (node, level)

            if promoted:
                # Lower layers must now be reachable from the new entry
                for layer in range(max_level, -1, -1):
                    self._ensure_reachable(layer)

        return level

    # =========================================================================
    # SEARCH
    # =========================================================================

    def search(self, query: NDArray, k: int, ef: Optional[int] = None) -> List[Neighbor]:
        """
        Find approximate nearest live nodes (Algorithm 5 of the paper).

        Args:
            query: Query vector
            k: Number of neighbors wanted
            ef: Beam width on layer 0 (raised to k if smaller)

        Returns:
            Up to max(ef, k) live neighbors sorted by distance
        """
        entry, max_level = self._entry
        if entry < 0 or k <= 0:
            return []

        entry_dist = float(self._distances(query, [entry])[0])
        current, current_dist = entry, entry_dist

        for layer in range(max_level, 0, -1):
            current, current_dist = self._greedy_closest(
                query, current, current_dist, layer
            )

        # The entry point seeds layer 0 too: with ef >= size the search
        # then covers every node reachable from it
        seeds = [Neighbor(current_dist, current)]
        if current != entry:
            seeds.append(Neighbor(entry_dist, entry))

        found = self._search_layer(query, seeds, max(ef or k, k), 0)
        return [n for n in found if self._store.is_live(n.node)]

    # =========================================================================
    # REMOVE
    # =========================================================================

    def remove(self, node: int) -> bool:
        """
        Remove a node and repair the lists that pointed at it.

        On every layer the node is dropped from its in-linkers' lists.
        In-linkers left with fewer than M/2 neighbors are reconnected
        to up to M of the removed node's former neighbors; the others
        refill the freed slot with the closest one. If the node was the
        entry point, the node with the highest top layer (smallest label
        on ties) takes over. Finally every node the entry point no
        longer reaches is attached to its closest reached node, so each
        layer stays fully reachable.

        Returns:
            False if the node wasn't in the graph
        """
        top = self.level_of(node)
        if top < 0:
            return False

        former = list(self._links[node])
        members = [
            (other, level) for other, level in enumerate(self._levels)
            if level >= 0 and other != node
        ]

        for layer in range(top, -1, -1):
            on_layer = [other for other, level in members if level >= layer]
            self._unlink(node, former[layer], on_layer, layer)

        with self._locks.hold(node):
            self._levels[node] = -1
            self._links[node] = None

        repair_top = top
        if self._entry[0] == node:
            self._reassign_entry()
            # Reachability is measured from the new entry on every layer
            repair_top = self.max_level

        for layer in range(min(repair_top, self.max_level), -1, -1):
            self._ensure_reachable(layer)

        return True

    def _unlink(
        self,
        node: int,
        former: Links,
        on_layer: List[int],
        layer: int,
    ) -> None:
        for owner in on_layer:
            if node not in self._neighbors(owner, layer):
                continue

            with self._locks.hold(owner):
                remaining = tuple(
                    n for n in self._neighbors(owner, layer) if n != node
                )
                replacements = [
                    q for q in former if q != owner and q not in remaining
                ]
                if replacements:
                    # Fewer than M/2 left: take up to M replacements
                    limit = self.M if 2 * len(remaining) < self.M else 1
                    remaining = self._reconnect(
                        owner, remaining, replacements, limit, layer
                    )
                self._links[owner][layer] = remaining

    def _reconnect(
        self,
        owner: int,
        remaining: Links,
        replacements: List[int],
        limit: int,
        layer: int,
    ) -> Links:
        """Merge the closest `limit` replacements into owner's list."""
        base = self._store.row(owner)

        dists = self._distances(base, replacements)
        order = np.argsort(dists, kind="stable")[:limit]
        pool = [Neighbor(float(dists[i]), replacements[i]) for i in order]

        if remaining:
            kept = self._distances(base, remaining)
            pool.extend(Neighbor(float(d), n) for n, d in zip(remaining, kept))
        pool.sort()

        capacity = self.capacity(layer)
        if len(pool) > capacity:
            pool = self.select_neighbors(pool, capacity)

        return tuple(n.node for n in pool)

    def _reassign_entry(self) -> None:
        best, best_level, best_label = -1, -1, 0

        for node, level in enumerate(self._levels):
            if level < 0:
                continue
            label = self._store.label_of(node)
            if level > best_level or (level == best_level and label < best_label):
                best, best_level, best_label = node, level, label

        with self._entry_lock:
            self._entry = (best, best_level)

    # =========================================================================
    # REACHABILITY
    # =========================================================================

    def _grow_tree(
        self,
        root: int,
        parent: int,
        parents: Dict[int, int],
        layer: int,
    ) -> None:
        """Breadth-first from root, recording each newly reached node's parent."""
        parents[root] = parent
        queue = deque([root])
        while queue:
            current = queue.popleft()
            for neighbor in self._neighbors(current, layer):
                if neighbor not in parents:
                    parents[neighbor] = current
                    queue.append(neighbor)

    def _reaches(self, entry: int, targets: Sequence[int], layer: int) -> bool:
        """Whether every target is reachable from entry; stops once all are seen."""
        missing = set(targets)
        missing.discard(entry)
        seen = {entry}
        queue = deque([entry])
        while queue and missing:
            for neighbor in self._neighbors(queue.popleft(), layer):
                if neighbor not in seen:
                    seen.add(neighbor)
                    missing.discard(neighbor)
                    queue.append(neighbor)
        return not missing

    def _ensure_reachable(self, layer: int, suspects: Optional[Sequence[int]] = None) -> int:
        """
        Attach every node of a layer the entry point can't reach.

        Args:
            layer: Layer to repair
            suspects: Nodes that may have become unreachable; if the entry
                point reaches all of them nothing else is checked

        Returns:
            Number of nodes attached
        """
        entry = self._entry[0]
        if entry < 0 or self.level_of(entry) < layer:
            return 0
        if suspects is not None and self._reaches(entry, suspects, layer):
            return 0

        parents: Dict[int, int] = {}
        self._grow_tree(entry, -1, parents, layer)

        attached = 0
        for orphan, level in enumerate(self._levels):
            if level < layer or orphan in parents:
                continue
            host = self._attach(orphan, parents, layer)
            self._grow_tree(orphan, host, parents, layer)
            attached += 1

        if attached:
            logger.debug(f"Attached {attached} unreachable nodes on layer {layer}")
        return attached

    def _attach(self, orphan: int, parents: Dict[int, int], layer: int) -> int:
        """
        Link a reached node to orphan, closest reached node first.

        A full host gives up its farthest link that isn't an edge of the
        traversal tree in `parents`, so every reached node stays reached.
        One always exists: n reached nodes have at least n links but the
        tree only n - 1 edges.

        Returns:
            The host node
        """
        reached = list(parents)
        vector = self._store.row(orphan)
        dists = self._distances(vector, reached)
        capacity = self.capacity(layer)

        for i in np.argsort(dists, kind="stable"):
            host = reached[i]
            with self._locks.hold(host, orphan):
                links = self._neighbors(host, layer)
                if len(links) >= capacity:
                    spare = [n for n in links if parents.get(n) != host]
                    if not spare:
                        continue
                    links = tuple(n for n in links if n != spare[-1])

                pool = links + (orphan,)
                order = np.argsort(
                    self._distances(self._store.row(host), pool), kind="stable"
                )
                self._links[host][layer] = tuple(pool[j] for j in order)

                if not self._neighbors(orphan, layer):
                    self._links[orphan][layer] = (host,)
            return host

        raise RuntimeError(f"No reached node can link to node {orphan}")

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def clear(self) -> None:
        self._levels = []
        self._links = []
        self._locks.reset()
        with self._entry_lock:
            self._entry = (-1, -1)

    def compact(self, remap: Dict[int, int]) -> None:
        """
        Renumber nodes after VectorStore.compact().

        Args:
            remap: old node id -> new node id for every live node
        """
        size = max(remap.values(), default=-1) + 1
        levels = [-1] * size
        links: List[Optional[List[Links]]] = [None] * size

        for old, new in remap.items():
            level = self.level_of(old)
            if level < 0:
                continue
            levels[new] = level
            links[new] = [
                tuple(remap[n] for n in layer_links if n in remap)
                for layer_links in self._links[old]
            ]

        entry, max_level = self._entry

        self._levels = levels
        self._links = links
        self._locks.reset(size)
        with self._entry_lock:
            self._entry = (remap[entry], max_level) if entry in remap else (-1, -1)

    def reachable(self, layer: int = 0) -> Set[int]:
        """
        Nodes reachable from the entry point on a layer.

        Breadth-first traversal over the layer's neighbor lists.
        """
        entry = self._entry[0]
        if entry < 0 or self.level_of(entry) < layer:
            return set()

        parents: Dict[int, int] = {}
        self._grow_tree(entry, -1, parents, layer)
        return set(parents)

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    def export(self) -> GraphSnapshot:
        """Copy the topology with live nodes renumbered densely."""
        nodes = self.nodes()
        remap = {node: i for i, node in enumerate(nodes)}

        levels = [self._levels[node] for node in nodes]
        links = [
            [[remap[n] for n in layer_links] for layer_links in self._links[node]]
            for node in nodes
        ]

        entry, max_level = self._entry
        return GraphSnapshot(
            nodes=nodes,
            levels=levels,
            links=links,
            entry_point=remap.get(entry, -1),
            max_level=max_level if entry >= 0 else -1,
        )

    def restore(
        self,
        levels: List[int],
        links: List[List[List[int]]],
        entry_point: int,
        max_level: int,
    ) -> None:
        """Install a topology whose node i is store node i."""
        self._levels = list(levels)
        self._links = [
            [tuple(layer_links) for layer_links in node_links]
            for node_links in links
        ]
        self._locks.reset(len(levels))
        with self._entry_lock:
            self._entry = (entry_point, max_level) if entry_point >= 0 else (-1, -1)

    # =========================================================================
    # STATISTICS
    # =========================================================================

    def level_distribution(self) -> Dict[int, int]:
        counts: Dict[int, int] = defaultdict(int)
        for level in self._levels:
            if level >= 0:
                counts[level] += 1
        return dict(counts)

    def total_connections(self) -> int:
        return sum(
            len(layer_links)
            for node_links in self._links
            if node_links is not None
            for layer_links in node_links
        )

    def layer_info(self) -> List[Dict[str, Any]]:
        """Per-layer node counts and degree statistics."""
        info = []

        for layer in range(self.max_level + 1):
            degrees = [
                len(self._neighbors(node, layer))
                for node, level in enumerate(self._levels)
                if level >= layer
            ]
            if not degrees:
                continue

            info.append({
                "level": layer,
                "node_count": len(degrees),
                "avg_connections": float(np.mean(degrees)),
                "min_connections": min(degrees),
                "max_connections": max(degrees),
            })

        return info

    def memory_bytes(self) -> int:
        # ~8 bytes per stored id plus tuple overhead per list
        lists = sum(len(n) for n in self._links if n is not None)
        return self.total_connections() * 8 + lists * 56
