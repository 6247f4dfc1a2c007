"""
service.py - QueryService: the read API handed to callers.

SimilarityIndex answers in terms of points (dataset + matched value). Callers
want datasets. QueryService does that translation, and nothing else: it
holds a reference to a finalized index and has no state of its own.

    svc = QueryService(index)
    svc.query(vector, k=10)           # one result per matching point
    svc.query_datasets(vector, k=10)  # one result per dataset (best point)
    svc.query_text("sea surface temperature", source, k=10)
"""

from __future__ import annotations

import time
from typing import Dict, List, Tuple

import structlog

from metavss.embeddings import EmbeddingSource
from metavss.errors import EmbeddingNotFound
from metavss.index import SimilarityIndex
from metavss.types import DatasetMatch, TimingsMs, split_words

logger = structlog.get_logger(__name__)


class QueryService:
    """Ranked dataset lookups over a finalized SimilarityIndex."""

    def __init__(self, index: SimilarityIndex) -> None:
        self.index = index

    def query(self, vector, k: int) -> List[DatasetMatch]:
        """
        Top-k matches for a vector, best first.

        A dataset can appear more than once if several of its points match
        (e.g. its name and one of its tags).

        Returns:
            At most k DatasetMatch, scores non-increasing. Empty if the index is
            empty or nothing matched.
        """
        if k <= 0:
            raise ValueError("k must be > 0")
        return [
            DatasetMatch(dataset_id=hit.key.dataset_id, score=hit.score, value=hit.key.value)
            for hit in self.index.query(vector, k)
        ]

    def query_datasets(self, vector, k: int) -> List[DatasetMatch]:
        """
        Top-k distinct datasets for a vector, each with its best point's score.

        The index is searched with a growing window (k, 2k, 4k, ...) until k
        distinct datasets are found or the window covers the whole index.
        """
        if k <= 0:
            raise ValueError("k must be > 0")
        total = len(self.index)
        window = k
        while True:
            best: Dict[str, DatasetMatch] = {}
            for match in self.query(vector, min(window, max(total, 1))):
                # Hits arrive best first, so the first hit per dataset is its best
                if match.dataset_id not in best:
                    best[match.dataset_id] = match
            if len(best) >= k or window >= total:
                return list(best.values())[:k]
            window *= 2

    def query_text(self, text: str, source: EmbeddingSource, k: int) -> List[DatasetMatch]:
        matches, _ = self.query_text_with_timings(text, source, k)
        return matches

    def query_text_with_timings(
        self,
        text: str,
        source: EmbeddingSource,
        k: int,
        distinct: bool = False,
    ) -> Tuple[List[DatasetMatch], TimingsMs]:
        """
        Embed free text (one multi-word vector) and query with it.

        Text whose tokens have no embedding yields no matches rather than an
        error; embedding source failures still propagate.

        Args:
            text: The query text
            source: Embedding source; must be the one the index was built with
            k: Maximum number of results
            distinct: One result per dataset (query_datasets) instead of per point

        Returns:
            Tuple of (matches, TimingsMs)
        """
        t0 = time.perf_counter_ns()
        tokens = split_words(text)
        try:
            vec = source.multi_word_embedding_vector(tokens) if tokens else None
        except EmbeddingNotFound as exc:
            logger.info("query_embedding_missing", token=exc.token)
            vec = None
        t1 = time.perf_counter_ns()

        if vec is None:
            zero = TimingsMs(encode_ms=(t1 - t0) / 1e6, search_ms=0.0, total_ms=(t1 - t0) / 1e6)
            return [], zero

        matches = self.query_datasets(vec, k) if distinct else self.query(vec, k)
        t2 = time.perf_counter_ns()
        timings = TimingsMs(
            encode_ms=(t1 - t0) / 1e6,
            search_ms=(t2 - t1) / 1e6,
            total_ms=(t2 - t0) / 1e6,
        )
        return matches, timings
