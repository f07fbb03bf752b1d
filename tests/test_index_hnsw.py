"""
Tests for the public HNSWIndex API.
"""

import numpy as np
import pytest

from hnswsearch import HNSWIndex, IndexStats, Neighbor
from hnswsearch.errors import (
    CapacityExceeded,
    ConfigError,
    DimensionMismatch,
    DuplicateIdentifier,
    EmptyIndex,
    IdentifierNotFound,
    IndexClosed,
    InvalidParameter,
    InvalidResize,
    InvalidShape,
    MalformedBuffer,
    ReplaceDeletedDisabled,
)


@pytest.fixture
def vectors():
    rng = np.random.default_rng(42)
    return rng.standard_normal((50, 16)).astype(np.float32)


@pytest.fixture
def index(vectors):
    idx = HNSWIndex("l2", 16, 50, ef=64)
    idx.add_items(vectors)
    yield idx
    idx.close()


class TestConstruction:
    @pytest.mark.parametrize("space", ["cosine", "ip", "l2"])
    @pytest.mark.parametrize("dim,max_elements", [(0, 0), (1, 0), (8, 100), (0, 5)])
    def test_starts_empty(self, space, dim, max_elements):
        with HNSWIndex(space, dim, max_elements) as index:
            assert index.get_current_count() == 0
            assert index.get_max_elements() == max_elements
            assert index.get_ids_list() == []

    def test_unknown_space(self):
        with pytest.raises(ConfigError):
            HNSWIndex("manhattan", 4, 10)

    def test_numpy_integer_parameters(self, vectors):
        with HNSWIndex("l2", np.int64(16), np.int64(10), m=np.int64(8)) as index:
            assert index.dim == 16
            assert index.get_max_elements() == 10
            index.add_items(vectors[:3])
            index.set_ef(np.int32(32))
            assert index.get_ef() == 32
            assert index.knn_query(vectors[1], k=np.int64(1))[0][0].id == 1

    def test_closed_index(self):
        index = HNSWIndex("l2", 4, 10)
        index.close()
        with pytest.raises(IndexClosed):
            index.get_current_count()
        index.close()


class TestAddItems:
    def test_ids_list(self, vectors):
        with HNSWIndex("cosine", 16, 50) as index:
            ids = np.arange(100, 150, dtype=np.uint64)
            index.add_items(vectors, ids=ids)
            assert set(index.get_ids_list()) == set(range(100, 150))
            assert index.get_current_count() == 50

    def test_sequential_ids(self, vectors):
        with HNSWIndex("cosine", 16, 50) as index:
            index.add_items(vectors[:10])
            index.add_items(vectors[10:20])
            assert sorted(index.get_ids_list()) == list(range(20))

    def test_bytes_input(self, vectors):
        with HNSWIndex("l2", 16, 10) as index:
            index.add_items(vectors[0].tobytes(), ids=[7])
            index.add_items([v.tobytes() for v in vectors[1:4]], ids=[8, 9, 10])
            assert sorted(index.get_ids_list()) == [7, 8, 9, 10]
            hits = index.knn_query(vectors[2].tobytes(), k=1)
            assert hits[0][0].id == 9

    def test_dimension_mismatch(self, index):
        with pytest.raises(DimensionMismatch):
            index.add_items(np.zeros((2, 8), dtype=np.float32))
        assert index.get_current_count() == 50

    def test_malformed_bytes(self, index):
        with pytest.raises(MalformedBuffer):
            index.add_items(b"\x00" * 10)

    def test_scalar_ids(self, index):
        with pytest.raises(InvalidShape):
            index.add_items(np.ones(16, dtype=np.float32), ids=5)
        assert index.get_current_count() == 50

    def test_duplicate_identifier(self, vectors):
        with HNSWIndex("l2", 16, 10) as index:
            index.add_items(vectors[:3], ids=[1, 2, 3])
            with pytest.raises(DuplicateIdentifier):
                index.add_items(vectors[3:5], ids=[4, 2])
            assert sorted(index.get_ids_list()) == [1, 2, 3]

    def test_capacity_and_resize(self, vectors):
        with HNSWIndex("l2", 16, 10) as index:
            index.add_items(vectors[:10])
            with pytest.raises(CapacityExceeded):
                index.add_items(vectors[10:15])
            assert index.get_current_count() == 10

            index.resize_index(15)
            index.add_items(vectors[10:15])
            assert index.get_current_count() == 15

    def test_rejected_batch_is_not_partially_applied(self, vectors):
        with HNSWIndex("l2", 16, 10) as index:
            index.add_items(vectors[:8])
            with pytest.raises(CapacityExceeded):
                index.add_items(vectors[8:13])
            assert index.get_current_count() == 8
            index.check_integrity()


class TestQuery:
    def test_identical_vector_is_nearest(self, index, vectors):
        results = index.knn_query(vectors, k=1)
        assert len(results) == 50
        for row, hits in enumerate(results):
            assert hits[0].id == row
            assert hits[0].distance == pytest.approx(0.0, abs=1e-6)

    def test_cosine_identical_vector_is_nearest(self, vectors):
        with HNSWIndex("cosine", 16, 50, ef=64) as index:
            index.add_items(vectors)
            for row, hits in enumerate(index.knn_query(vectors, k=1)):
                assert hits[0].id == row
                assert hits[0].distance == pytest.approx(0.0, abs=1e-5)

    def test_ip_distance(self, vectors):
        with HNSWIndex("ip", 16, 50, ef=64) as index:
            index.add_items(vectors)
            query = vectors[0]
            hits = index.knn_query(query, k=5)[0]
            for hit in hits:
                expected = 1.0 - float(vectors[hit.id] @ query)
                assert hit.distance == pytest.approx(expected, rel=1e-4, abs=1e-4)

    def test_results_sorted(self, index, vectors):
        hits = index.knn_query(vectors[0], k=10)[0]
        dists = [h.distance for h in hits]
        assert dists == sorted(dists)
        assert all(isinstance(h, Neighbor) for h in hits)

    def test_k_larger_than_live_count(self, vectors):
        with HNSWIndex("l2", 16, 10) as index:
            index.add_items(vectors[:7])
            hits = index.knn_query(vectors[0], k=20)[0]
            assert len(hits) == 7

    def test_filter_rejects_everything(self, index, vectors):
        assert index.knn_query(vectors[:3], k=5, filter=lambda _: False) == [[], [], []]

    def test_filter_admits_subset(self, index, vectors):
        hits = index.knn_query(vectors[1], k=10, filter=lambda i: i % 2 == 0)[0]
        assert len(hits) == 10
        assert all(h.id % 2 == 0 for h in hits)

    def test_filter_called_once_per_candidate(self, index, vectors):
        calls = []

        def record(identifier):
            calls.append(identifier)
            return True

        index.knn_query(vectors[0], k=5, num_threads=1, filter=record)
        assert calls
        assert len(calls) == len(set(calls))

    def test_empty_index(self):
        with HNSWIndex("l2", 4, 10) as index:
            with pytest.raises(EmptyIndex):
                index.knn_query(np.zeros(4, dtype=np.float32))

    def test_invalid_k(self, index, vectors):
        with pytest.raises(InvalidParameter):
            index.knn_query(vectors[0], k=0)

    def test_query_dimension_mismatch(self, index):
        with pytest.raises(DimensionMismatch):
            index.knn_query(np.zeros(3, dtype=np.float32))

    def test_threads_match_serial(self, index, vectors):
        assert index.knn_query(vectors, k=3, num_threads=1) == index.knn_query(vectors, k=3, num_threads=4)


class TestDeletion:
    def test_deleted_never_returned(self, index, vectors):
        for label in range(10):
            index.mark_deleted(label)
        hits = index.knn_query(vectors[0], k=50)[0]
        assert len(hits) == 40
        assert not {h.id for h in hits} & set(range(10))
        assert index.get_current_count() == 50
        assert index.get_deleted_count() == 10
        assert set(index.get_ids_list()) == set(range(10, 50))
        index.check_integrity()

    def test_unknown_id(self, index):
        with pytest.raises(IdentifierNotFound):
            index.mark_deleted(1000)

    def test_everything_deleted(self, vectors):
        with HNSWIndex("l2", 16, 5) as index:
            index.add_items(vectors[:5])
            for label in range(5):
                index.mark_deleted(label)
            with pytest.raises(EmptyIndex):
                index.knn_query(vectors[0])
            index.check_integrity()


class TestReplaceDeleted:
    def test_requires_allow_flag(self, index, vectors):
        index.mark_deleted(0)
        with pytest.raises(ReplaceDeletedDisabled):
            index.add_items(vectors[0], ids=[500], replace_deleted=True)

    def test_reuses_tombstones_when_full(self, vectors):
        with HNSWIndex("l2", 16, 10, allow_replace_deleted=True) as index:
            index.add_items(vectors[:10])
            index.mark_deleted(2)
            index.mark_deleted(5)

            with pytest.raises(CapacityExceeded):
                index.add_items(vectors[10:12], ids=[100, 101])

            index.add_items(vectors[10:12], ids=[100, 101], replace_deleted=True)
            assert index.get_current_count() == 10
            assert index.get_deleted_count() == 0
            assert set(index.get_ids_list()) == (set(range(10)) - {2, 5}) | {100, 101}
            assert index.knn_query(vectors[11], k=1)[0][0].id == 101
            index.check_integrity()

    def test_overwrite_live_identifier(self, vectors):
        with HNSWIndex("l2", 16, 10, allow_replace_deleted=True) as index:
            index.add_items(vectors[:5])
            index.add_items(vectors[20], ids=[3], replace_deleted=True)
            np.testing.assert_array_equal(index.get_items([3])[0], vectors[20])
            assert index.get_current_count() == 5
            index.check_integrity()

    def test_tombstoned_identifier_with_replace(self, vectors):
        with HNSWIndex("l2", 16, 10, allow_replace_deleted=True) as index:
            index.add_items(vectors[:5])
            index.mark_deleted(1)
            index.add_items(vectors[6], ids=[1], replace_deleted=True)
            assert 1 in index.get_ids_list()
            assert index.get_deleted_count() == 0

    def test_deleted_identifier_can_be_added_again(self, vectors):
        with HNSWIndex("l2", 16, 10) as index:
            index.add_items(vectors[:5])
            index.mark_deleted(1)
            index.add_items(vectors[6], ids=[1])

            assert sorted(index.get_ids_list()) == [0, 1, 2, 3, 4]
            assert index.get_current_count() == 5
            assert index.get_deleted_count() == 0
            np.testing.assert_array_equal(index.get_items([1])[0], vectors[6])
            assert index.knn_query(vectors[6], k=1)[0][0].id == 1
            index.check_integrity()

    def test_live_identifier_still_rejected(self, vectors):
        with HNSWIndex("l2", 16, 10) as index:
            index.add_items(vectors[:5])
            with pytest.raises(DuplicateIdentifier):
                index.add_items(vectors[6], ids=[1])


class TestResize:
    def test_shrink_below_count(self, index):
        with pytest.raises(InvalidResize):
            index.resize_index(49)
        assert index.get_max_elements() == 50

    def test_equal_and_larger(self, index, vectors):
        before = index.get_items(list(range(50)))
        index.resize_index(50)
        index.resize_index(80)
        index.resize_index(80)
        assert index.get_max_elements() == 80
        np.testing.assert_array_equal(index.get_items(list(range(50))), before)
        assert index.knn_query(vectors[4], k=1)[0][0].id == 4


class TestIntrospection:
    def test_get_items_cosine_normalized(self, vectors):
        with HNSWIndex("cosine", 16, 10) as index:
            index.add_items(vectors[:3] * 5.0)
            items = index.get_items([0, 1, 2])
            np.testing.assert_allclose(np.linalg.norm(items, axis=1), 1.0, rtol=1e-5)

    def test_get_items_unknown(self, index):
        with pytest.raises(IdentifierNotFound):
            index.get_items([999])

    def test_ef(self, index):
        assert index.get_ef() == 64
        index.set_ef(128)
        assert index.get_ef() == 128
        with pytest.raises(InvalidParameter):
            index.set_ef(0)

    def test_stats(self, index):
        index.mark_deleted(0)
        stats = index.get_stats()
        assert isinstance(stats, IndexStats)
        assert stats.space == "l2"
        assert stats.dim == 16
        assert stats.current_count == 50
        assert stats.deleted_count == 1
        assert stats.max_elements == 50
        assert stats.m == 16
        assert stats.ef_construction == 200
        assert stats.entry_point in index.get_ids_list()


class TestDeterminism:
    def test_same_seed_same_structure(self, vectors):
        with HNSWIndex("cosine", 16, 50, m=4, random_seed=11) as a, \
                HNSWIndex("cosine", 16, 50, m=4, random_seed=11) as b:
            a.add_items(vectors)
            b.add_items(vectors)
            assert a.get_stats() == b.get_stats()
            assert a.knn_query(vectors, k=5) == b.knn_query(vectors, k=5)
