"""
Test cases for the SQLite-backed record store.
"""

import threading

import pytest
import numpy as np

from ragcore.core.errors import DimensionMismatch, NotFound
from ragcore.core.record_store import RecordStore


@pytest.fixture
def store():
    store = RecordStore()
    yield store
    store.close()


def test_append_assigns_sequential_ids(store):
    assert store.count() == 0
    assert store.dimension is None

    ids = [store.append([float(i), 0.0, 1.0], f"chunk {i}") for i in range(4)]

    assert ids == [0, 1, 2, 3]
    assert store.count() == 4
    assert len(store) == 4
    assert store.dimension == 3


def test_get_returns_vector_and_text(store):
    record_id = store.append(np.array([0.5, -1.5]), "hello")

    vector, text = store.get(record_id)
    assert text == "hello"
    assert vector.dtype == np.float32
    assert vector.tolist() == [0.5, -1.5]
    assert store.get_text(record_id) == "hello"


def test_get_unknown_id_raises_not_found(store):
    store.append([1.0], "only")

    with pytest.raises(NotFound):
        store.get(1)
    with pytest.raises(KeyError):
        store.get(-1)


def test_dimension_fixed_by_first_append(store):
    store.append([1.0, 2.0], "first")

    with pytest.raises(DimensionMismatch):
        store.append([1.0, 2.0, 3.0], "wrong")
    # Failed append does not consume an id
    assert store.append([3.0, 4.0], "second") == 1


def test_iter_records_in_order(store):
    for i in range(7):
        store.append([float(i)], f"t{i}")

    records = list(store.iter_records(batch_size=3))
    assert [r.id for r in records] == list(range(7))
    assert [r.text for r in records] == [f"t{i}" for i in range(7)]
    assert [r.id for r in store.iter_records(start=5)] == [5, 6]


def test_store_persists_across_reopen(tmp_path):
    db_path = str(tmp_path / "data" / "records.db")
    store = RecordStore(db_path)
    store.append([1.0, 0.0], "persisted")
    store.append([0.0, 1.0], "also persisted")
    store.close()

    reopened = RecordStore(db_path)
    assert reopened.count() == 2
    assert reopened.dimension == 2
    assert reopened.get(1)[1] == "also persisted"
    assert reopened.append([1.0, 1.0], "next") == 2
    reopened.close()


def test_concurrent_appends_get_unique_ids(store):
    ids = []
    ids_lock = threading.Lock()

    def worker(worker_id):
        for i in range(25):
            record_id = store.append([float(worker_id), float(i)], f"{worker_id}-{i}")
            with ids_lock:
                ids.append(record_id)

    threads = [threading.Thread(target=worker, args=(w,)) for w in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(ids) == list(range(100))
    assert store.count() == 100


def test_health_check(store):
    assert store.health_check() is True
