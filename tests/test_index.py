from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from pixelvss.errors import DimensionMismatch, EmptyIndex, InvalidArgument
import pixelvss.index as index_module
from pixelvss.index import FlatIndex, create_index
from pixelvss.store import SqliteBackend, VectorStore
from pixelvss.vectors import IndexConfig, squared_l2_many


def _reference_ids(vectors: np.ndarray, query: np.ndarray, k: int) -> list:
    """Full sort of every distance, ties by id."""
    dists = squared_l2_many(vectors, query)
    order = np.lexsort((np.arange(len(vectors)), dists))
    return order[:k].tolist()


# =============================================================================
# Classification scenarios
# =============================================================================


def test_query_on_stored_point_finds_it_at_distance_zero(tiny_index: FlatIndex):
    (top,) = tiny_index.search([0.0, 0.0], k=1)
    assert top.neighbor_label == 0
    assert top.neighbor_id == 0
    assert top.distance == 0.0
    assert top.rank == 1


def test_query_near_far_point_picks_its_label(tiny_index: FlatIndex):
    (top,) = tiny_index.search([9.0, 9.0], k=1)
    assert top.neighbor_label == 1
    assert top.neighbor_id == 1
    assert top.distance == pytest.approx(2.0)


def test_results_are_ranked_closest_first(tiny_index: FlatIndex):
    results = tiny_index.search([9.0, 9.0], k=3)
    assert [r.neighbor_id for r in results] == [1, 2, 0]
    assert [r.rank for r in results] == [1, 2, 3]
    assert results[1].distance == pytest.approx(2 * 8.9**2, rel=1e-5)
    assert results[2].distance == pytest.approx(162.0)


def test_k_larger_than_corpus_returns_everything(tiny_index: FlatIndex):
    assert len(tiny_index.search([1.0, 1.0], k=10)) == 3


# =============================================================================
# Errors
# =============================================================================


def test_empty_index_raises(config2: IndexConfig):
    index = create_index(VectorStore(2), config2)
    with pytest.raises(EmptyIndex):
        index.search([0.0, 0.0], k=1)


@pytest.mark.parametrize("k", [0, -3, True, 1.0])
def test_invalid_k_raises(tiny_index: FlatIndex, k):
    with pytest.raises(InvalidArgument):
        tiny_index.search([0.0, 0.0], k=k)


def test_query_of_wrong_length_raises(tiny_index: FlatIndex):
    with pytest.raises(DimensionMismatch):
        tiny_index.search([0.0, 0.0, 0.0], k=1)


def test_insert_of_wrong_length_raises(tiny_index: FlatIndex):
    with pytest.raises(DimensionMismatch):
        tiny_index.insert([1.0], 0)
    assert tiny_index.count() == 3


def test_index_used_before_build_raises():
    index = FlatIndex()
    with pytest.raises(InvalidArgument):
        index.search([0.0, 0.0], k=1)
    with pytest.raises(InvalidArgument):
        index.insert([0.0, 0.0], 0)


def test_build_rejects_store_of_other_dimension(config2: IndexConfig):
    with pytest.raises(DimensionMismatch):
        FlatIndex().build(VectorStore(3), config2)


def test_build_rejects_foreign_dimension_record(tmp_path: Path, config2: IndexConfig):
    backend = SqliteBackend(tmp_path / "mixed.sqlite")
    backend.put(0, np.zeros(2, dtype=np.float32), 0)
    backend.put(1, np.ones(5, dtype=np.float32), 1)
    store = VectorStore(2, backend)
    with pytest.raises(DimensionMismatch):
        FlatIndex().build(store, config2)
    store.close()


@pytest.mark.parametrize("kwargs", [{"block_size": 0}, {"workers": 0}])
def test_flat_index_rejects_bad_settings(kwargs):
    with pytest.raises(InvalidArgument):
        FlatIndex(**kwargs)


def test_create_index_rejects_unknown_kind(config2: IndexConfig):
    with pytest.raises(InvalidArgument):
        create_index(VectorStore(2), config2, kind="hnsw")


# =============================================================================
# Tie rule
# =============================================================================


def test_equal_distances_prefer_lower_id(config2: IndexConfig):
    index = create_index(VectorStore(2), config2)
    for vec in ([1.0, 0.0], [0.0, 1.0], [-1.0, 0.0], [0.0, -1.0]):
        index.insert(vec, 0)

    assert index.search([0.0, 0.0], k=1)[0].neighbor_id == 0
    assert [r.neighbor_id for r in index.search([0.0, 0.0], k=3)] == [0, 1, 2]


def test_tie_rule_holds_across_blocks(config2: IndexConfig):
    index = create_index(VectorStore(2), config2, block_size=2)
    # Block 0: ids 0-1, block 1: ids 2-3, block 2: id 4
    for vec, label in (([5.0, 5.0], 9), ([3.0, 0.0], 1), ([0.0, 3.0], 2), ([3.0, 0.0], 3), ([-3.0, 0.0], 4)):
        index.insert(vec, label)

    results = index.search([0.0, 0.0], k=2)
    assert [r.neighbor_id for r in results] == [1, 2]
    assert [r.neighbor_label for r in results] == [1, 2]


def test_duplicate_of_existing_record_does_not_displace_it(config2: IndexConfig):
    index = create_index(VectorStore(2), config2)
    index.insert([2.0, 2.0], 4)
    index.insert([7.0, 7.0], 5)
    index.insert([2.0, 2.0], 6)
    (top,) = index.search([2.0, 2.0], k=1)
    assert (top.neighbor_id, top.neighbor_label) == (0, 4)


# =============================================================================
# Exactness and determinism
# =============================================================================


def test_matches_full_sort_reference(random_corpus, random_index):
    vectors, labels = random_corpus
    rng = np.random.default_rng(11)
    for _ in range(10):
        q = rng.random(16, dtype=np.float32)
        results = random_index.search(q, k=5)
        expected = _reference_ids(vectors, q, 5)
        assert [r.neighbor_id for r in results] == expected
        assert [r.neighbor_label for r in results] == [int(labels[i]) for i in expected]


def test_repeated_search_is_identical(random_index):
    q = np.full(16, 0.5, dtype=np.float32)
    assert random_index.search(q, k=7) == random_index.search(q, k=7)


def test_threaded_scan_matches_inline(random_corpus):
    vectors, labels = random_corpus
    config = IndexConfig(dimension=16)
    store = VectorStore(16)
    for vec, label in zip(vectors, labels):
        store.insert(vec, int(label))

    inline = FlatIndex(block_size=37).build(store, config)
    with FlatIndex(block_size=37, workers=4).build(store, config) as threaded:
        rng = np.random.default_rng(3)
        for _ in range(5):
            q = rng.random(16, dtype=np.float32)
            assert threaded.search(q, k=4) == inline.search(q, k=4)


def test_sqlite_backed_index_matches_memory(tmp_path: Path, random_corpus):
    vectors, labels = random_corpus
    config = IndexConfig(dimension=16)
    memory = create_index(VectorStore(16), config, block_size=100)
    on_disk_store = VectorStore(16, SqliteBackend(tmp_path / "rand.sqlite"))
    on_disk = create_index(on_disk_store, config, block_size=100)
    for vec, label in zip(vectors[:120], labels[:120]):
        memory.insert(vec, int(label))
        on_disk.insert(vec, int(label))

    q = vectors[17]
    assert memory.search(q, k=3) == on_disk.search(q, k=3)
    assert on_disk.search(q, k=1)[0].neighbor_id == 17
    on_disk_store.close()


def test_build_over_existing_records(random_corpus):
    vectors, labels = random_corpus
    store = VectorStore(16)
    for vec, label in zip(vectors, labels):
        store.insert(vec, int(label))
    index = create_index(store, IndexConfig(dimension=16))
    assert index.count() == 500
    (top,) = index.search(vectors[123], k=1)
    assert top.neighbor_id == 123
    assert top.distance == 0.0


def test_threaded_scan_streams_blocks_from_store(tmp_path: Path, monkeypatch, random_corpus):
    vectors, labels = random_corpus
    store = VectorStore(16, SqliteBackend(tmp_path / "stream.sqlite"))
    for vec, label in zip(vectors[:100], labels[:100]):
        store.insert(vec, int(label))
    config = IndexConfig(dimension=16)
    expected = FlatIndex(block_size=10).build(store, config).search(vectors[5], k=3)

    pulled = []
    pulled_at_first_merge = []
    scan_blocks = store.scan_blocks
    push_bounded = index_module._push_bounded

    def counting_scan_blocks(block_size):
        for block in scan_blocks(block_size):
            pulled.append(int(block[0][0]))
            yield block

    def recording_push(heap, hits, k):
        if not pulled_at_first_merge:
            pulled_at_first_merge.append(len(pulled))
        push_bounded(heap, hits, k)

    with FlatIndex(block_size=10, workers=2).build(store, config) as threaded:
        monkeypatch.setattr(store, "scan_blocks", counting_scan_blocks)
        monkeypatch.setattr(index_module, "_push_bounded", recording_push)
        assert threaded.search(vectors[5], k=3) == expected

    assert len(pulled) == 10
    # Two workers keep at most four blocks in flight
    assert pulled_at_first_merge[0] <= 4
    store.close()


def test_create_index_defaults_to_one_scan_thread(config2: IndexConfig):
    index = create_index(VectorStore(2), config2)
    assert index.workers == 1
    with create_index(VectorStore(2), config2, workers=3) as threaded:
        assert threaded.workers == 3
