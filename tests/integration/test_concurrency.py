"""
Integration tests for concurrent access.

Searches run alongside writers in both modes; in concurrent mode
several threads insert at once.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
import numpy as np

from navgraph import HNSWIndex

from . import integration


pytestmark = integration


def assert_graph_consistent(index):
    graph = index._graph
    store = index._store

    nodes = graph.nodes()
    assert len(nodes) == index.size

    for node in nodes:
        assert store.is_live(node)
        for layer in range(graph.level_of(node) + 1):
            links = graph.neighbors(node, layer)
            assert node not in links
            assert len(links) <= graph.capacity(layer)
            assert all(graph.level_of(n) >= layer for n in links)


@pytest.fixture
def vectors():
    rng = np.random.default_rng(77)
    return rng.standard_normal((800, 12)).astype(np.float32)


class TestConcurrentInserts:
    """Parallel add() in concurrent mode."""

    def test_parallel_adds(self, vectors):
        index = HNSWIndex(dimensions=12, connectivity=8, concurrency="concurrent", seed=4)
        chunks = np.array_split(np.arange(len(vectors)), 4)

        def insert(chunk):
            for label in chunk:
                index.add(int(label), vectors[label])

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(insert, chunks))

        assert index.size == len(vectors)
        assert_graph_consistent(index)

        found = 0
        for label in range(0, len(vectors), 8):
            labels, _ = index.search(vectors[label], k=1)
            found += int(labels[0] == label)
        assert found >= 0.95 * len(range(0, len(vectors), 8))

    def test_parallel_adds_with_removes(self, vectors):
        index = HNSWIndex(dimensions=12, connectivity=8, concurrency="concurrent", seed=4)
        index.add_batch(list(range(200)), vectors[:200])

        def insert():
            for label in range(200, 600):
                index.add(label, vectors[label])

        def remove():
            for label in range(0, 200, 2):
                index.remove(label)

        threads = [threading.Thread(target=insert), threading.Thread(target=remove)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert index.size == 500
        assert all(label not in index for label in range(0, 200, 2))
        assert_graph_consistent(index)

    def test_same_label_from_many_threads(self, vectors):
        index = HNSWIndex(dimensions=12, concurrency="concurrent")
        index.add_batch(list(range(50)), vectors[:50])

        def writer(offset):
            for i in range(20):
                index.add(1000, vectors[50 + offset * 20 + i])

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(writer, range(4)))

        assert index.size == 51
        assert 1000 in index
        assert_graph_consistent(index)


class TestSearchDuringWrites:
    """Readers never fail while writers run."""

    @pytest.mark.parametrize("mode", ["single_writer", "concurrent"])
    def test_search_while_adding(self, vectors, mode):
        index = HNSWIndex(dimensions=12, connectivity=8, concurrency=mode, seed=1)
        index.add_batch(list(range(100)), vectors[:100])

        stop = threading.Event()
        errors = []

        def reader():
            rng = np.random.default_rng()
            while not stop.is_set():
                try:
                    labels, distances = index.search(rng.standard_normal(12), k=5)
                    assert len(labels) <= 5
                    assert np.all(np.diff(distances) >= 0)
                except Exception as e:  # collected and re-raised below
                    errors.append(e)
                    return

        readers = [threading.Thread(target=reader) for _ in range(3)]
        for t in readers:
            t.start()

        try:
            for label in range(100, 500):
                index.add(label, vectors[label])
                if label % 5 == 0:
                    index.remove(label - 50)
        finally:
            stop.set()
            for t in readers:
                t.join(timeout=30)

        assert errors == []
        assert_graph_consistent(index)

    def test_compact_while_searching(self, vectors):
        index = HNSWIndex(dimensions=12, connectivity=8, seed=2)
        index.add_batch(list(range(400)), vectors[:400])
        index.remove_batch(list(range(0, 400, 3)))

        errors = []

        def reader():
            try:
                for query in vectors[400:500]:
                    labels, _ = index.search(query, k=3)
                    assert not any(label % 3 == 0 for label in labels.tolist())
            except Exception as e:  # collected and re-raised below
                errors.append(e)

        readers = [threading.Thread(target=reader) for _ in range(2)]
        for t in readers:
            t.start()
        index.compact()
        for t in readers:
            t.join(timeout=30)

        assert errors == []
        assert index.stats().extra["tombstones"] == 0

    def test_save_while_adding(self, vectors, tmp_path):
        index = HNSWIndex(dimensions=12, connectivity=8, concurrency="concurrent", seed=3)
        index.add_batch(list(range(200)), vectors[:200])
        path = tmp_path / "live.navg"

        def insert():
            for label in range(200, 400):
                index.add(label, vectors[label])

        t = threading.Thread(target=insert)
        t.start()
        index.save(str(path))
        t.join(timeout=60)

        restored = HNSWIndex.restore(str(path))
        assert 200 <= restored.size <= 400
        assert_graph_consistent(restored)
