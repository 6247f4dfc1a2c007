"""
bench.py - Quality and latency measurements for metadata search.

=============================================================================
OVERVIEW
=============================================================================

The cosine LSH forest is approximate: it can miss true neighbors. How often
depends on table_count, hashes_per_table and candidate_multiplier. The only
honest way to pick those is to measure, so this module provides:

1. RECALL: of the true top-k points (from an exact scan), what fraction did
   the approximate index return?
       recall_at_k(approx_hits, exact_hits)

2. LATENCY: percentiles of query timings.
       summarize_latency(timings)

The exact reference is an EXACT_IP index over the same vectors, L2-normalized
so that inner product equals cosine similarity.
=============================================================================
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple

import numpy as np

from metavss.aggregate import aggregate_points
from metavss.config import IndexConfig
from metavss.embeddings import EmbeddingSource, l2_normalize_rows
from metavss.index import Backend, IndexBuilder, SimilarityIndex
from metavss.types import Metadata, Point, SearchHit, TimingsMs


def percentile_ms(values: List[float], p: float) -> float:
    """
    Compute a percentile from a list of latency values.

    Args:
        values: Latency values in milliseconds
        p: Percentile to compute (0-100)

    Returns:
        The p-th percentile value, 0.0 for an empty list
    """
    if not values:
        return 0.0
    arr = np.asarray(values, dtype="float64")
    return float(np.percentile(arr, p))


def summarize_latency(timings: List[TimingsMs]) -> Dict[str, float]:
    """
    Latency percentiles (p50/p95/p99) for encode, search and total time.

    Percentiles rather than the mean: a few slow queries are invisible in a
    mean but are exactly what users notice.
    """
    encode = [t.encode_ms for t in timings]
    search = [t.search_ms for t in timings]
    total = [t.total_ms for t in timings]

    return {
        "encode_p50_ms": percentile_ms(encode, 50),
        "encode_p95_ms": percentile_ms(encode, 95),
        "encode_p99_ms": percentile_ms(encode, 99),
        "search_p50_ms": percentile_ms(search, 50),
        "search_p95_ms": percentile_ms(search, 95),
        "search_p99_ms": percentile_ms(search, 99),
        "total_p50_ms": percentile_ms(total, 50),
        "total_p95_ms": percentile_ms(total, 95),
        "total_p99_ms": percentile_ms(total, 99),
    }


def recall_at_k(approx: Sequence[SearchHit], exact: Sequence[SearchHit]) -> float:
    """
    Fraction of the exact top-k keys that the approximate result also contains.

    Keys are compared as multisets, so repeated keys (the same word in a
    description twice) count once per occurrence.

    Returns:
        1.0 when `exact` is empty (nothing to miss)
    """
    if not exact:
        return 1.0
    remaining: Dict[object, int] = {}
    for hit in approx:
        remaining[hit.key] = remaining.get(hit.key, 0) + 1
    found = 0
    for hit in exact:
        if remaining.get(hit.key, 0) > 0:
            remaining[hit.key] -= 1
            found += 1
    return found / len(exact)


def mean_recall(recalls: List[float]) -> float:
    return float(np.mean(recalls)) if recalls else 0.0


def build_comparison_indexes(
    records: Iterable[Metadata],
    source: EmbeddingSource,
    config: IndexConfig,
) -> Tuple[SimilarityIndex, SimilarityIndex, List[np.ndarray]]:
    """
    Build the approximate index and its exact reference from the same points.

    Vectors given to the exact index are L2-normalized, so its inner-product
    scores are cosine similarities, the quantity the LSH forest estimates.

    Returns:
        (lsh_index, exact_index, vectors) where vectors are the unit-length
        point vectors in insertion order, handy as benchmark queries: querying
        the exact index with one of them scores its own point 1.0
    """
    vectors: List[np.ndarray] = []
    with IndexBuilder(config, Backend.COSINE_LSH) as lsh, IndexBuilder(
        config, Backend.EXACT_IP
    ) as exact:
        for metadata in records:
            for point in aggregate_points(metadata, source):
                lsh.insert(point)
                unit = l2_normalize_rows(
                    np.asarray(point.vector, dtype="float32").reshape(1, -1)
                )[0]
                exact.insert(Point(unit, point.dataset_id, point.value, point.field))
                vectors.append(unit)
        lsh_index = lsh.finalize()
        try:
            exact_index = exact.finalize()
        except Exception:
            lsh_index.close()
            raise
    return lsh_index, exact_index, vectors
