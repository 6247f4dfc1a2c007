"""Tests for recall and latency helpers."""

from __future__ import annotations

import pytest

from metavss.bench import (
    build_comparison_indexes,
    mean_recall,
    percentile_ms,
    recall_at_k,
    summarize_latency,
)
from metavss.index import Backend
from metavss.types import PointKey, SearchHit, TimingsMs


def _hits(*values: str):
    return [SearchHit(PointKey("ds", v), 1.0) for v in values]


def test_recall_at_k() -> None:
    assert recall_at_k(_hits("a", "b", "c"), _hits("a", "b", "c")) == 1.0
    assert recall_at_k(_hits("a", "x"), _hits("a", "b")) == 0.5
    assert recall_at_k([], _hits("a")) == 0.0
    assert recall_at_k([], []) == 1.0


def test_recall_counts_repeated_keys_once_each() -> None:
    assert recall_at_k(_hits("a"), _hits("a", "a")) == 0.5
    assert recall_at_k(_hits("a", "a"), _hits("a", "a")) == 1.0


def test_mean_recall() -> None:
    assert mean_recall([]) == 0.0
    assert mean_recall([1.0, 0.5]) == pytest.approx(0.75)


def test_percentile_ms() -> None:
    assert percentile_ms([], 50) == 0.0
    assert percentile_ms([1.0, 2.0, 3.0], 50) == 2.0


def test_summarize_latency_keys() -> None:
    stats = summarize_latency([TimingsMs(1.0, 2.0, 3.0), TimingsMs(3.0, 4.0, 7.0)])
    assert stats["encode_p50_ms"] == 2.0
    assert stats["total_p99_ms"] <= 7.0
    assert len(stats) == 9


def test_build_comparison_indexes(source, config, ocean, budget) -> None:
    lsh, exact, vectors = build_comparison_indexes([ocean, budget], source, config)

    with lsh, exact:
        assert lsh.backend is Backend.COSINE_LSH
        assert exact.backend is Backend.EXACT_IP
        assert len(lsh) == len(exact) == len(vectors) == 15

        recalls = []
        for vec in vectors:
            approx = lsh.query(vec, k=3)
            truth = exact.query(vec, k=3)
            # Normalized vectors: the best exact score is a cosine of 1
            assert truth[0].score == pytest.approx(1.0, abs=1e-5)
            recalls.append(recall_at_k(approx, truth))

    # 15 points and k * multiplier = 12 candidates: the forest reranks almost everything
    assert mean_recall(recalls) >= 0.8
