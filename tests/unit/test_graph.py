"""
Unit tests for ProximityGraph.
"""

import pytest
import numpy as np

from navgraph.distance import DistanceEngine
from navgraph.index.base import MAX_LEVEL
from navgraph.index.graph import Neighbor, ProximityGraph
from navgraph.storage import VectorStore


def build_graph(vectors, connectivity=4, ef_construction=32, metric="l2sq", seed=3, **kwargs):
    store = VectorStore(dimension=vectors.shape[1])
    graph = ProximityGraph(
        store,
        DistanceEngine(metric),
        connectivity=connectivity,
        ef_construction=ef_construction,
        seed=seed,
        **kwargs,
    )
    for label, vector in enumerate(vectors):
        graph.insert(store.put(label, vector))
    return store, graph


def assert_well_formed(store, graph):
    """Every structural invariant of a graph that only holds live nodes."""
    for node in graph.nodes():
        assert store.is_live(node)
        level = graph.level_of(node)
        base = store.row(node)

        for layer in range(level + 1):
            links = graph.neighbors(node, layer)

            assert node not in links
            assert len(links) == len(set(links))
            assert len(links) <= graph.capacity(layer)

            for neighbor in links:
                assert graph.level_of(neighbor) >= layer

            if links:
                dists = graph._distances(base, links)
                assert np.all(np.diff(dists) >= 0)


class TestInsert:
    """Insertion behavior."""

    @pytest.fixture
    def vectors(self, rng):
        return rng.standard_normal((150, 8)).astype(np.float32)

    def test_first_node_becomes_entry(self):
        store = VectorStore(dimension=2)
        graph = ProximityGraph(store, DistanceEngine("l2sq"), connectivity=4)

        assert graph.entry_point is None
        assert graph.max_level == -1

        node = store.put(1, [0.0, 0.0])
        level = graph.insert(node)

        assert graph.entry_point == node
        assert graph.max_level == level
        assert graph.neighbors(node, 0) == []

    def test_invariants_hold(self, vectors):
        store, graph = build_graph(vectors)
        assert_well_formed(store, graph)

    def test_entry_point_has_max_level(self, vectors):
        store, graph = build_graph(vectors)

        levels = [graph.level_of(node) for node in graph.nodes()]
        assert graph.max_level == max(levels)
        assert graph.level_of(graph.entry_point) == graph.max_level

    def test_layer_zero_connected(self, vectors):
        store, graph = build_graph(vectors, connectivity=8)
        assert graph.reachable(0) == set(graph.nodes())

    def test_two_nodes_link_both_ways(self):
        store, graph = build_graph(np.array([[0.0, 0.0], [1.0, 1.0]], dtype=np.float32))

        assert graph.neighbors(0, 0) == [1]
        assert graph.neighbors(1, 0) == [0]

    def test_seed_reproducible(self, vectors):
        _, first = build_graph(vectors, seed=11)
        _, second = build_graph(vectors, seed=11)

        for node in first.nodes():
            assert first.level_of(node) == second.level_of(node)
            assert first.neighbors(node, 0) == second.neighbors(node, 0)

    def test_duplicate_vectors(self):
        vectors = np.zeros((20, 3), dtype=np.float32)
        store, graph = build_graph(vectors)

        assert_well_formed(store, graph)
        assert len(graph.nodes()) == 20


class TestLevelSampling:
    """Top-layer sampling."""

    def test_geometric_distribution(self):
        store = VectorStore(dimension=2)
        graph = ProximityGraph(store, DistanceEngine("l2sq"), connectivity=16, seed=0)

        levels = np.array([graph._random_level() for _ in range(20000)])

        # P(level >= 1) = 1/M
        assert abs(np.mean(levels >= 1) - 1 / 16) < 0.01
        assert levels.min() == 0

    def test_connectivity_one_is_finite(self):
        store = VectorStore(dimension=2)
        graph = ProximityGraph(store, DistanceEngine("l2sq"), connectivity=1, seed=0)

        levels = [graph._random_level() for _ in range(2000)]
        assert max(levels) <= MAX_LEVEL

    def test_level_cap(self):
        store = VectorStore(dimension=2)
        graph = ProximityGraph(
            store, DistanceEngine("l2sq"), connectivity=2, seed=0, max_level=1
        )
        assert max(graph._random_level() for _ in range(2000)) <= 1


class TestSelectNeighbors:
    """The diversity heuristic."""

    @pytest.fixture
    def line(self):
        # node 0 is the reference at 0.0; the rest are candidates
        store = VectorStore(dimension=1)
        for label, x in enumerate([0.0, 1.0, 2.0, -2.0, 3.0]):
            store.put(label, [x])
        graph = ProximityGraph(store, DistanceEngine("l2sq"), connectivity=2)
        candidates = [Neighbor(1.0, 1), Neighbor(4.0, 2), Neighbor(4.0, 3), Neighbor(9.0, 4)]
        return graph, candidates

    def test_prefers_diverse_neighbors(self, line):
        graph, candidates = line

        selected = graph.select_neighbors(candidates, 2)

        # 2.0 is closer to 1.0 than to the reference; -2.0 isn't
        assert [n.node for n in selected] == [1, 3]

    def test_fills_from_rejected(self, line):
        graph, candidates = line

        selected = graph.select_neighbors(candidates, 3)

        assert [n.node for n in selected] == [1, 2, 3]

    def test_small_candidate_list_kept(self, line):
        graph, candidates = line
        assert graph.select_neighbors(candidates[:2], 2) == candidates[:2]


class TestSearch:
    """Graph search."""

    @pytest.fixture
    def built(self, rng):
        vectors = rng.standard_normal((200, 8)).astype(np.float32)
        store, graph = build_graph(vectors, connectivity=8, ef_construction=64)
        return vectors, store, graph

    def test_empty_graph(self):
        store = VectorStore(dimension=2)
        graph = ProximityGraph(store, DistanceEngine("l2sq"))
        assert graph.search(np.zeros(2, dtype=np.float32), k=5) == []

    def test_finds_itself(self, built):
        vectors, store, graph = built

        for node in range(0, 200, 10):
            found = graph.search(vectors[node], k=1, ef=32)
            assert found[0].node == node
            assert found[0].distance == pytest.approx(0.0, abs=1e-6)

    def test_results_sorted(self, built):
        vectors, store, graph = built

        found = graph.search(vectors[0] + 0.1, k=10, ef=40)
        distances = [n.distance for n in found]

        assert len(found) == 40
        assert distances == sorted(distances)

    def test_skips_tombstoned_nodes(self, built):
        vectors, store, graph = built

        store.remove(5)
        found = graph.search(vectors[5], k=5, ef=20)

        assert 5 not in [n.node for n in found]


class TestRemove:
    """Removal and repair."""

    @pytest.fixture
    def built(self, rng):
        vectors = rng.standard_normal((120, 6)).astype(np.float32)
        return build_graph(vectors, connectivity=6, ef_construction=32)

    def remove(self, store, graph, node):
        store.remove(store.label_of(node))
        return graph.remove(node)

    def test_remove_absent(self, built):
        store, graph = built
        assert graph.remove(10_000) is False

    def test_no_dangling_links(self, built):
        store, graph = built

        for node in range(0, 120, 3):
            assert self.remove(store, graph, node)

        removed = set(range(0, 120, 3))
        for node in graph.nodes():
            for layer in range(graph.level_of(node) + 1):
                assert not removed & set(graph.neighbors(node, layer))

        assert_well_formed(store, graph)

    def test_layer_zero_stays_connected(self, built):
        store, graph = built

        for node in range(0, 120, 10):
            self.remove(store, graph, node)

        assert graph.reachable(0) == set(graph.nodes())

    def test_remove_entry_point(self, built):
        store, graph = built
        entry = graph.entry_point

        self.remove(store, graph, entry)

        remaining = graph.nodes()
        top = max(graph.level_of(node) for node in remaining)
        candidates = [node for node in remaining if graph.level_of(node) == top]
        expected = min(candidates, key=store.label_of)

        assert graph.entry_point == expected
        assert graph.max_level == top
        assert graph.reachable(0) == set(remaining)

    def test_remove_everything(self, built):
        store, graph = built

        for node in range(120):
            self.remove(store, graph, node)

        assert graph.entry_point is None
        assert graph.max_level == -1
        assert graph.nodes() == []


class TestMaintenance:
    """compact(), export() and restore()."""

    def test_compact(self, rng):
        vectors = rng.standard_normal((60, 4)).astype(np.float32)
        store, graph = build_graph(vectors)

        for node in range(0, 60, 2):
            store.remove(node)
            graph.remove(node)

        query = vectors[7]
        before = [store.label_of(n.node) for n in graph.search(query, k=5, ef=20)]

        graph.compact(store.compact())

        after = [store.label_of(n.node) for n in graph.search(query, k=5, ef=20)]
        assert before == after
        assert graph.nodes() == list(range(30))
        assert_well_formed(store, graph)

    def test_export_restore(self, rng):
        vectors = rng.standard_normal((80, 4)).astype(np.float32)
        store, graph = build_graph(vectors)

        snapshot = graph.export()
        assert snapshot.nodes == list(range(80))

        copy = ProximityGraph(store, DistanceEngine("l2sq"), connectivity=4)
        copy.restore(snapshot.levels, snapshot.links, snapshot.entry_point, snapshot.max_level)

        assert copy.entry_point == graph.entry_point
        for query in vectors[:10]:
            assert copy.search(query, k=5, ef=16) == graph.search(query, k=5, ef=16)

    def test_layer_info(self, rng):
        vectors = rng.standard_normal((100, 4)).astype(np.float32)
        store, graph = build_graph(vectors)

        info = graph.layer_info()

        assert info[0]["level"] == 0
        assert info[0]["node_count"] == 100
        assert info[0]["max_connections"] <= graph.capacity(0)
        assert sum(graph.level_distribution().values()) == 100

    def test_clear(self, rng):
        vectors = rng.standard_normal((10, 4)).astype(np.float32)
        store, graph = build_graph(vectors)

        graph.clear()

        assert graph.entry_point is None
        assert graph.nodes() == []


def assert_fully_reachable(graph):
    """Every node on every layer is reachable from the entry point."""
    for layer in range(graph.max_level + 1):
        on_layer = {node for node in graph.nodes() if graph.level_of(node) >= layer}
        assert graph.reachable(layer) == on_layer


def clustered(rng, count, dimension=4, clusters=8):
    """Tight, far-apart clusters: the layout that strands nodes under pruning."""
    centers = rng.standard_normal((clusters, dimension)) * 20
    members = rng.integers(0, clusters, count)
    noise = rng.standard_normal((count, dimension)) * 0.05
    return (centers[members] + noise).astype(np.float32)


class TestReachability:
    """Every live node stays reachable at small connectivity."""

    @pytest.mark.parametrize("seed", range(6))
    def test_heavy_removal(self, seed):
        rng = np.random.default_rng(seed)
        vectors = rng.standard_normal((300, 6)).astype(np.float32)
        store, graph = build_graph(vectors, connectivity=4, ef_construction=16, seed=seed)

        doomed = rng.permutation(300)[:240]
        for node in doomed:
            store.remove(store.label_of(int(node)))
            graph.remove(int(node))

        nodes = graph.nodes()
        assert len(nodes) == 60
        assert graph.reachable(0) == set(nodes)
        assert_fully_reachable(graph)
        assert_well_formed(store, graph)

        # ef >= size makes layer 0 exhaustive over what the entry reaches
        for node in nodes:
            found = graph.search(vectors[node], k=1, ef=len(nodes))
            assert found[0].node == node

    @pytest.mark.parametrize("seed", range(6))
    def test_heavy_removal_clustered(self, seed):
        rng = np.random.default_rng(100 + seed)
        vectors = clustered(rng, 300)
        store, graph = build_graph(vectors, connectivity=4, ef_construction=16, seed=seed)

        for node in rng.permutation(300)[:225]:
            store.remove(store.label_of(int(node)))
            graph.remove(int(node))

        assert graph.reachable(0) == set(graph.nodes())
        assert_fully_reachable(graph)

    @pytest.mark.parametrize("seed", range(8))
    @pytest.mark.parametrize("connectivity", [1, 2, 4])
    def test_inserts_only(self, seed, connectivity):
        rng = np.random.default_rng(seed)
        vectors = clustered(rng, 400)
        store, graph = build_graph(
            vectors, connectivity=connectivity, ef_construction=16, seed=seed
        )

        assert graph.reachable(0) == set(graph.nodes())
        assert_fully_reachable(graph)
        assert_well_formed(store, graph)

    def test_add_link_reports_pruned(self):
        store = VectorStore(dimension=1)
        for label, x in enumerate([0.0, 1.0, 2.0, 3.0]):
            store.put(label, [x])
        graph = ProximityGraph(store, DistanceEngine("l2sq"), connectivity=1, connectivity_base=2)
        graph.restore([0, 0, 0, 0], [[[1, 2]], [[0]], [[0]], [[0]]], 0, 0)

        dropped = graph._add_link(0, 3, 9.0, 0)

        assert graph.neighbors(0, 0) == [1, 2]
        assert dropped == (3,)

    def test_unreachable_node_is_attached(self):
        store = VectorStore(dimension=1)
        for label, x in enumerate([0.0, 1.0, 2.0, 10.0]):
            store.put(label, [x])
        graph = ProximityGraph(store, DistanceEngine("l2sq"), connectivity=2)
        # node 3 has no in-link
        graph.restore([0, 0, 0, 0], [[[1]], [[0, 2]], [[1]], [[2]]], 0, 0)

        assert graph._ensure_reachable(0) == 1
        assert 3 in graph.neighbors(2, 0)
        assert graph.reachable(0) == {0, 1, 2, 3}

    def test_full_host_keeps_tree_edges(self):
        store = VectorStore(dimension=1)
        for label, x in enumerate([0.0, 1.0, 2.0, 2.5]):
            store.put(label, [x])
        graph = ProximityGraph(store, DistanceEngine("l2sq"), connectivity=1, connectivity_base=2)
        # 2 is full with links 1 (non-tree, 1 is reached from 0) and 0
        graph.restore([0, 0, 0, 0], [[[1]], [[0, 2]], [[1, 0]], [[2]]], 0, 0)

        graph._ensure_reachable(0)

        assert graph.reachable(0) == {0, 1, 2, 3}
        assert len(graph.neighbors(2, 0)) <= 2
        assert_well_formed(store, graph)


class TestSparseRepair:
    """In-linkers left below M/2 links take up to M replacements."""

    def test_threshold_is_half_of_m(self):
        store = VectorStore(dimension=1)
        for label, x in enumerate([0.0, 1.0, 2.0, 3.0, 4.0, -1.0]):
            store.put(label, [x])
        graph = ProximityGraph(store, DistanceEngine("l2sq"), connectivity=3)
        links = [[[5, 1]], [[2, 3, 4]], [[0]], [[0]], [[0]], [[0]]]
        graph.restore([0] * 6, links, 0, 0)

        store.remove(1)
        graph.remove(1)

        # One link left and 2 * 1 < 3: every former neighbor comes in
        assert graph.neighbors(0, 0) == [5, 2, 3, 4]

    def test_dense_owner_takes_one(self):
        store = VectorStore(dimension=1)
        for label, x in enumerate([0.0, 1.0, 2.0, 3.0, 4.0, -1.0, -2.0]):
            store.put(label, [x])
        graph = ProximityGraph(store, DistanceEngine("l2sq"), connectivity=3)
        links = [[[5, 1, 6]], [[2, 3, 4]], [[0]], [[0]], [[0]], [[0]], [[0]]]
        graph.restore([0] * 7, links, 0, 0)

        store.remove(1)
        graph.remove(1)

        # Two links left and 2 * 2 >= 3: only the closest replacement;
        # the others come back through the reachability repair
        assert graph.neighbors(0, 0)[:3] == [5, 2, 6]
        assert graph.reachable(0) == {0, 2, 3, 4, 5, 6}
