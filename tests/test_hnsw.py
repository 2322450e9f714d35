"""
Test cases for the HNSW similarity index.
"""

import threading

import pytest
import numpy as np

from ragcore.core.errors import DimensionMismatch, DuplicateRecord, IndexEmpty
from ragcore.vector.distance import Metric
from ragcore.vector.hnsw import HnswIndex


def gaussian_clusters(n_clusters=10, per_cluster=40, dim=16, seed=0):
    """Synthetic Gaussian-cluster dataset."""
    rng = np.random.default_rng(seed)
    centers = rng.normal(scale=10.0, size=(n_clusters, dim))
    points = np.concatenate([
        center + rng.normal(size=(per_cluster, dim)) for center in centers
    ])
    return points.astype(np.float32)


def build(points, **kwargs):
    kwargs.setdefault("seed", 42)
    index = HnswIndex(points.shape[1], **kwargs)
    for record_id, vector in enumerate(points):
        index.insert(record_id, vector)
    return index


def brute_force(points, query, k, metric):
    if metric is Metric.EUCLIDEAN:
        keys = np.linalg.norm(points - query, axis=1)
    elif metric is Metric.COSINE:
        normed = points / np.linalg.norm(points, axis=1, keepdims=True)
        keys = 1.0 - normed @ (query / np.linalg.norm(query))
    else:
        keys = -(points @ query)
    return [int(i) for i in np.argsort(keys, kind="stable")[:k]]


def test_index_initialization():
    index = HnswIndex(8, metric="euclidean", m=8)

    assert len(index) == 0
    assert index.dimension == 8
    assert index.metric is Metric.EUCLIDEAN
    assert index.params.m0 == 16
    assert index.entry_point is None
    assert index.max_level == -1


def test_search_empty_index_raises():
    index = HnswIndex(3)

    with pytest.raises(IndexEmpty):
        index.search([1.0, 0.0, 0.0], k=1)


def test_dimension_mismatch_on_insert_and_search():
    index = HnswIndex(3)

    with pytest.raises(DimensionMismatch):
        index.insert(0, [1.0, 0.0])

    index.insert(0, [1.0, 0.0, 0.0])
    with pytest.raises(DimensionMismatch):
        index.search([1.0, 0.0, 0.0, 0.0], k=1)


@pytest.mark.parametrize("metric", ["euclidean", "cosine", "dot"])
def test_single_insert_finds_itself(metric):
    """Inserting one vector then searching for it with k=1 returns its id."""
    rng = np.random.default_rng(3)
    for trial in range(5):
        index = HnswIndex(6, metric=metric, seed=trial)
        vector = rng.normal(size=6)
        index.insert(trial, vector)

        hits = index.search(vector, k=1)
        assert [hit.id for hit in hits] == [trial]


def test_result_count_and_uniqueness():
    points = gaussian_clusters(n_clusters=3, per_cluster=10, dim=8)
    index = build(points, metric="euclidean", m=4)

    for k in (1, 5, 30, 100):
        hits = index.search(points[0], k=k)
        ids = [hit.id for hit in hits]
        assert len(ids) <= min(k, len(points))
        assert len(ids) == len(set(ids))

    # Results come back closest first
    hits = index.search(points[5], k=10)
    dists = [hit.distance for hit in hits]
    assert dists == sorted(dists)


def test_invalid_k():
    index = HnswIndex(2)
    index.insert(0, [1.0, 1.0])

    with pytest.raises(ValueError):
        index.search([1.0, 1.0], k=0)


@pytest.mark.parametrize("metric", [Metric.EUCLIDEAN, Metric.COSINE])
def test_recall_on_gaussian_clusters(metric):
    """Generous parameters give recall >= 0.95 against brute force."""
    points = gaussian_clusters()
    index = build(points, metric=metric, m=12, ef_construction=200, ef_search=200)

    rng = np.random.default_rng(99)
    queries = points[rng.choice(len(points), size=30, replace=False)] + rng.normal(scale=0.1, size=(30, 16))
    k = 10
    found = 0
    for query in queries:
        truth = set(brute_force(points, query.astype(np.float32), k, metric))
        hits = {hit.id for hit in index.search(query, k=k)}
        found += len(truth & hits)

    recall = found / (k * len(queries))
    assert recall >= 0.95


def test_dot_product_prefers_largest_similarity():
    index = HnswIndex(2, metric="dot", seed=1)
    index.insert(0, [1.0, 0.0])
    index.insert(1, [5.0, 0.0])
    index.insert(2, [-3.0, 0.0])

    hits = index.search([1.0, 0.0], k=3)
    assert [hit.id for hit in hits] == [1, 0, 2]
    assert hits[0].distance == pytest.approx(-5.0)


def test_ties_broken_by_ascending_id():
    index = HnswIndex(2, metric="euclidean", seed=5)
    for record_id in range(6):
        index.insert(record_id, [1.0, 1.0])

    hits = index.search([1.0, 1.0], k=4)
    assert [hit.id for hit in hits] == [0, 1, 2, 3]


def test_duplicate_insert_rejected():
    index = HnswIndex(2)
    index.insert(0, [1.0, 0.0])

    with pytest.raises(DuplicateRecord):
        index.insert(0, [0.0, 1.0])
    assert len(index) == 1


def test_sparse_ids_are_supported():
    index = HnswIndex(2, metric="euclidean", seed=2)
    index.insert(0, [0.0, 0.0])
    index.insert(5, [5.0, 5.0])
    index.insert(2, [2.0, 2.0])

    assert index.ids() == [0, 2, 5]
    assert 3 not in index
    assert index.search([4.9, 4.9], k=1)[0].id == 5


def test_seeded_construction_is_reproducible():
    points = gaussian_clusters(n_clusters=4, per_cluster=25, dim=8)
    first = build(points, seed=123, m=6)
    second = build(points, seed=123, m=6)

    assert first.entry_point == second.entry_point
    assert first.max_level == second.max_level
    for record_id in first.ids():
        assert first.node_level(record_id) == second.node_level(record_id)
        for layer in range(first.node_level(record_id) + 1):
            assert first.neighbors(record_id, layer) == second.neighbors(record_id, layer)


def test_graph_invariants():
    """Layer membership, degree caps and entry point placement."""
    points = gaussian_clusters(n_clusters=5, per_cluster=40, dim=8)
    index = build(points, m=4, ml=1.0, ef_construction=50)

    assert index.node_level(index.entry_point) == index.max_level
    for record_id in index.ids():
        level = index.node_level(record_id)
        assert level <= index.max_level
        for layer in range(level + 1):
            neighbors = index.neighbors(record_id, layer)
            assert len(neighbors) <= index.params.max_degree(layer)
            assert record_id not in neighbors
            # A neighbor at layer L also lives on layer L
            for neighbor in neighbors:
                assert index.node_level(neighbor) >= layer


def test_level_distribution_decays():
    """Higher layers are exponentially rarer."""
    index = HnswIndex(2, m=16, seed=11)
    levels = [index._random_level() for _ in range(5000)]

    counts = np.bincount(levels)
    assert counts[0] > counts[1] > 0
    assert counts[0] / len(levels) == pytest.approx(1 - 1 / 16, abs=0.03)


def test_concurrent_searches_during_inserts():
    points = gaussian_clusters(n_clusters=4, per_cluster=30, dim=8)
    index = HnswIndex(8, seed=9)
    index.insert(0, points[0])
    errors = []

    def writer():
        for record_id in range(1, len(points)):
            index.insert(record_id, points[record_id])

    def reader():
        try:
            for query in points[:40]:
                hits = index.search(query, k=5)
                assert 1 <= len(hits) <= 5
        except Exception as e:  # surfaced through the list below
            errors.append(e)

    threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(index) == len(points)
