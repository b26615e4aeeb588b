"""
Pytest fixtures for navgraph tests.
"""

import pytest
import numpy as np

from navgraph import HNSWIndex


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: larger recall runs")
    config.addinivalue_line("markers", "integration: multi-component tests")


@pytest.fixture
def dimension() -> int:
    """Default dimension for test vectors."""
    return 32


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator, so failures reproduce."""
    return np.random.default_rng(12345)


@pytest.fixture
def random_vector(dimension: int, rng: np.random.Generator) -> np.ndarray:
    """Generate a random vector."""
    return rng.standard_normal(dimension).astype(np.float32)


@pytest.fixture
def random_vectors(dimension: int, rng: np.random.Generator) -> np.ndarray:
    """Generate random vectors (200 vectors)."""
    return rng.standard_normal((200, dimension)).astype(np.float32)


@pytest.fixture
def normalized_vectors(random_vectors: np.ndarray) -> np.ndarray:
    """Generate normalized random vectors."""
    norms = np.linalg.norm(random_vectors, axis=1, keepdims=True)
    return (random_vectors / norms).astype(np.float32)


@pytest.fixture
def populated_index(dimension: int, random_vectors: np.ndarray) -> HNSWIndex:
    """L2 index holding random_vectors under labels 0..n-1."""
    index = HNSWIndex(dimensions=dimension, connectivity=8, seed=7)
    index.add_batch(list(range(len(random_vectors))), random_vectors)
    return index


@pytest.fixture
def exact_knn():
    """Exact squared-L2 top-k positions, for recall checks."""
    def search(vectors: np.ndarray, query: np.ndarray, k: int) -> np.ndarray:
        dists = np.sum((vectors - query) ** 2, axis=1)
        return np.argsort(dists, kind="stable")[:k]
    return search
