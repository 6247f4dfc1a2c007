"""Tests for IndexBuilder / SimilarityIndex and the two engines."""

from __future__ import annotations

import numpy as np
import pytest

from metavss.config import IndexConfig
from metavss.engines import CosineLSHForest, FlatInnerProduct
from metavss.errors import (
    BuilderFinalizedError,
    DimensionMismatchError,
    IndexClosedError,
    InvariantViolation,
    LengthMismatchError,
)
from metavss.aggregate import attribute_vector, name_point
from metavss.index import Backend, IndexBuilder
from metavss.types import FieldKind, Metadata, Point, PointKey

from conftest import DIM, word_vector


def _random_vectors(n: int, dim: int = DIM, seed: int = 0) -> np.ndarray:
    return np.random.default_rng(seed).standard_normal((n, dim)).astype("float32")


@pytest.fixture(params=[Backend.COSINE_LSH, Backend.EXACT_IP])
def backend(request) -> Backend:
    return request.param


# =============================================================================
# BUILDER
# =============================================================================


def test_length_mismatch_inserts_nothing(config, backend) -> None:
    with IndexBuilder(config, backend) as builder:
        vecs = _random_vectors(3)
        with pytest.raises(LengthMismatchError) as exc_info:
            builder.insert_batch(vecs, "ds", ["a", "b"])
        assert isinstance(exc_info.value, InvariantViolation)
        assert len(builder) == 0


def test_dimension_mismatch_inserts_nothing(config, backend) -> None:
    with IndexBuilder(config, backend) as builder:
        vecs = [np.zeros(DIM, dtype="float32"), np.zeros(DIM + 1, dtype="float32")]
        with pytest.raises(DimensionMismatchError) as exc_info:
            builder.insert_batch(vecs, "ds", ["a", "b"])
        assert exc_info.value.expected == DIM
        assert exc_info.value.got == DIM + 1
        assert len(builder) == 0


def test_insert_after_finalize_raises(config, backend) -> None:
    builder = IndexBuilder(config, backend)
    index = builder.finalize()

    with pytest.raises(BuilderFinalizedError):
        builder.insert(Point(np.zeros(DIM), "ds", "v"))
    with pytest.raises(BuilderFinalizedError):
        builder.finalize()
    index.close()


def test_empty_batch_is_a_no_op(config) -> None:
    with IndexBuilder(config) as builder:
        builder.insert_batch([], "ds", [])
        assert len(builder) == 0


def test_leaving_with_block_releases_unfinalized_builder(config) -> None:
    with IndexBuilder(config) as builder:
        builder.insert(Point(word_vector("ocean"), "ds", "ocean"))
    with pytest.raises(BuilderFinalizedError):
        builder.insert(Point(word_vector("ocean"), "ds", "ocean"))


def test_insert_metadata_counts_points(config, source, ocean, budget) -> None:
    with IndexBuilder(config) as builder:
        assert builder.insert_metadata(ocean, source) == 7
        assert builder.insert_metadata(budget, source) == 8
        assert len(builder) == 15
        index = builder.finalize()
    assert len(index) == 15
    index.close()


def test_attribute_field_builds_an_exact_attribute_index(config, source, ocean, budget) -> None:
    budget = Metadata(dataset_id=budget.dataset_id, attributes=("annual_spending",))
    with IndexBuilder(config, Backend.EXACT_IP) as builder:
        assert builder.insert_metadata(ocean, source, fields=[FieldKind.ATTRIBUTE]) == 1
        assert builder.insert_metadata(budget, source, fields=[FieldKind.ATTRIBUTE]) == 1
        index = builder.finalize()

    with index:
        hits = index.query(attribute_vector(source, "temperature"), k=2)
    assert hits[0].key == PointKey("ds-ocean", "temperature")
    assert hits[0].score == pytest.approx(1.0, abs=1e-5)


def test_builder_rejects_unknown_backend(config) -> None:
    with pytest.raises(ValueError):
        IndexBuilder(config, "hnsw")


# =============================================================================
# QUERY
# =============================================================================


def test_query_on_empty_index_returns_nothing(config, backend) -> None:
    with IndexBuilder(config, backend) as builder:
        index = builder.finalize()
    with index:
        assert index.query(word_vector("ocean"), k=5) == []


def test_fewer_points_than_k(config, backend) -> None:
    with IndexBuilder(config, backend) as builder:
        builder.insert_batch(_random_vectors(2), "ds", ["a", "b"])
        index = builder.finalize()
    with index:
        hits = index.query(_random_vectors(1, seed=9)[0], k=5)
    assert len(hits) == 2
    assert {h.key.value for h in hits} == {"a", "b"}
    assert all(np.isfinite(h.score) for h in hits)


def test_query_rejects_wrong_dimension(config, backend) -> None:
    with IndexBuilder(config, backend) as builder:
        builder.insert_batch(_random_vectors(2), "ds", ["a", "b"])
        index = builder.finalize()
    with index, pytest.raises(DimensionMismatchError):
        index.query(np.zeros(DIM - 1), k=1)


def test_query_rejects_non_positive_k(config) -> None:
    with IndexBuilder(config) as builder:
        index = builder.finalize()
    with index, pytest.raises(ValueError):
        index.query(np.zeros(DIM), k=0)


def test_close_is_idempotent_and_blocks_queries(config, backend) -> None:
    with IndexBuilder(config, backend) as builder:
        builder.insert_batch(_random_vectors(3), "ds", ["a", "b", "c"])
        index = builder.finalize()

    index.close()
    index.close()

    assert index.closed
    with pytest.raises(IndexClosedError):
        index.query(np.zeros(DIM), k=1)


def test_results_are_bounded_and_sorted(config, backend) -> None:
    vecs = _random_vectors(200, seed=3)
    with IndexBuilder(config, backend) as builder:
        builder.insert_batch(vecs, "ds", [str(i) for i in range(200)])
        index = builder.finalize()
    with index:
        for q in _random_vectors(10, seed=4):
            hits = index.query(q, k=10)
            assert 0 < len(hits) <= 10
            scores = [h.score for h in hits]
            assert scores == sorted(scores, reverse=True)


def test_exact_backend_matches_brute_force(config) -> None:
    vecs = _random_vectors(300, seed=11)
    with IndexBuilder(config, Backend.EXACT_IP) as builder:
        builder.insert_batch(vecs, "ds", [str(i) for i in range(300)])
        index = builder.finalize()

    q = _random_vectors(1, seed=12)[0]
    expected = np.argsort(-(vecs @ q))[:10]
    with index:
        hits = index.query(q, k=10)
    assert [int(h.key.value) for h in hits] == expected.tolist()
    assert hits[0].score == pytest.approx(float(vecs[expected[0]] @ q), rel=1e-5)


def test_lsh_self_query_ranks_itself_first(config, source, ocean, budget) -> None:
    with IndexBuilder(config, Backend.COSINE_LSH) as builder:
        builder.insert_metadata(ocean, source)
        builder.insert_metadata(budget, source)
        index = builder.finalize()

    with index:
        hits = index.query(word_vector("climate"), k=3)
        assert hits[0].key == PointKey("ds-ocean", "climate")
        assert hits[0].score == pytest.approx(1.0, abs=1e-5)

        hits = index.query(word_vector("finance"), k=3)
        assert hits[0].key == PointKey("ds-budget", "finance")


def test_name_vector_finds_its_dataset_first(config, source, ocean, budget) -> None:
    with IndexBuilder(config, Backend.COSINE_LSH) as builder:
        builder.insert_metadata(ocean, source)
        builder.insert_metadata(budget, source)
        index = builder.finalize()

    for record in (ocean, budget):
        vec = name_point(record, source).vector
        hits = index.query(vec, k=3)
        assert hits[0].key == PointKey(record.dataset_id, record.name)
    index.close()


def test_huge_k_returns_every_point(config, backend) -> None:
    with IndexBuilder(config, backend) as builder:
        builder.insert_batch(_random_vectors(2), "ds", ["a", "b"])
        index = builder.finalize()
    with index:
        hits = index.query(_random_vectors(1, seed=5)[0], k=10**11)
    assert sorted(h.key.value for h in hits) == ["a", "b"]


def test_repeated_keys_are_kept_as_separate_points(config) -> None:
    vec = word_vector("ocean")
    with IndexBuilder(config, Backend.EXACT_IP) as builder:
        builder.insert_batch([vec, vec], "ds", ["ocean", "ocean"])
        index = builder.finalize()
    with index:
        hits = index.query(vec, k=5)
    assert [h.key for h in hits] == [PointKey("ds", "ocean")] * 2


def test_point_keys_do_not_collide_across_fields() -> None:
    assert PointKey("a", "bc") != PointKey("ab", "c")


# =============================================================================
# LSH FOREST INTERNALS
# =============================================================================


def test_signatures_are_deterministic_for_a_seed() -> None:
    mat = _random_vectors(5)
    a = CosineLSHForest(DIM, table_count=4, hashes_per_table=12, seed=5)
    b = CosineLSHForest(DIM, table_count=4, hashes_per_table=12, seed=5)

    sig = a.signatures(mat)

    assert sig.shape == (5, 4)
    assert sig.dtype == np.uint64
    assert np.array_equal(sig, b.signatures(mat))
    assert int(sig.max()) < 1 << 12


def test_candidates_cover_everything_when_asked_for_more_than_n() -> None:
    forest = CosineLSHForest(DIM, table_count=4, hashes_per_table=16, seed=1)
    forest.add(_random_vectors(20))
    forest.freeze()

    cand = forest.candidates(_random_vectors(1, seed=2)[0], want=100)

    assert cand.tolist() == list(range(20))


def test_full_width_signatures() -> None:
    forest = CosineLSHForest(DIM, table_count=2, hashes_per_table=64, seed=3)
    vecs = _random_vectors(30, seed=8)
    forest.add(vecs)
    scores, ids = forest.search(vecs[4], k=3)
    assert ids[0] == 4
    assert scores[0] == pytest.approx(1.0, abs=1e-5)


def test_add_after_freeze_is_rejected() -> None:
    forest = CosineLSHForest(DIM, table_count=2, hashes_per_table=8)
    forest.freeze()
    with pytest.raises(RuntimeError):
        forest.add(_random_vectors(1))


def test_default_config_builds() -> None:
    with IndexBuilder(IndexConfig(dimension=DIM)) as builder:
        builder.insert_batch(_random_vectors(4), "ds", list("abcd"))
        index = builder.finalize()
    assert index.backend is Backend.COSINE_LSH
    index.close()


@pytest.mark.parametrize(
    "make_engine",
    [
        lambda: FlatInnerProduct(DIM),
        lambda: CosineLSHForest(DIM, table_count=2, hashes_per_table=8),
    ],
    ids=["exact", "lsh"],
)
def test_closed_engine_raises(make_engine) -> None:
    engine = make_engine()
    engine.add(_random_vectors(2))
    engine.close()
    with pytest.raises(IndexClosedError):
        engine.search(_random_vectors(1)[0], k=1)
    with pytest.raises(IndexClosedError):
        engine.add(_random_vectors(1))
