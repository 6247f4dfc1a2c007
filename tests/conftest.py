"""Shared fixtures: a deterministic in-memory embedding source and small configs."""

from __future__ import annotations

import zlib
from typing import Iterable, Optional, Sequence

import numpy as np
import pytest

from metavss.config import IndexConfig
from metavss.errors import EmbeddingNotFound, EmbeddingSourceError
from metavss.types import Metadata

DIM = 16


def word_vector(word: str, dim: int = DIM) -> np.ndarray:
    """Stable pseudo-random vector for a word (same word -> same vector)."""
    rng = np.random.default_rng(zlib.crc32(word.encode("utf-8")))
    return rng.standard_normal(dim).astype("float32")


class FakeEmbeddingSource:
    """
    Embedding source over a fixed vocabulary.

    Words outside `vocab` raise EmbeddingNotFound; words in `broken` raise
    EmbeddingSourceError, standing in for an I/O failure.
    """

    def __init__(
        self,
        vocab: Iterable[str],
        dim: int = DIM,
        broken: Optional[Iterable[str]] = None,
    ) -> None:
        self.vocab = set(vocab)
        self.broken = set(broken or ())
        self.dim = dim
        self.calls = []

    @property
    def dimension(self) -> int:
        return self.dim

    def embedding_vector(self, token: str) -> np.ndarray:
        self.calls.append(("word", token))
        if token in self.broken:
            raise EmbeddingSourceError(f"read failed for {token!r}")
        if token not in self.vocab:
            raise EmbeddingNotFound(token)
        return word_vector(token, self.dim)

    def multi_word_embedding_vector(self, tokens: Sequence[str]) -> np.ndarray:
        self.calls.append(("multi", tuple(tokens)))
        if not tokens:
            raise EmbeddingNotFound("")
        vecs = []
        for t in tokens:
            if t in self.broken:
                raise EmbeddingSourceError(f"read failed for {t!r}")
            if t not in self.vocab:
                raise EmbeddingNotFound(t)
            v = word_vector(t, self.dim)
            vecs.append(v / np.linalg.norm(v))
        return np.mean(vecs, axis=0).astype("float32")


OCEAN_VOCAB = [
    "ocean",
    "temperature",
    "daily",
    "surface",
    "readings",
    "climate",
    "city",
    "budget",
    "finance",
    "annual",
    "spending",
    "report",
    "government",
]


@pytest.fixture
def source() -> FakeEmbeddingSource:
    return FakeEmbeddingSource(OCEAN_VOCAB)


@pytest.fixture
def config() -> IndexConfig:
    return IndexConfig(dimension=DIM, table_count=8, hashes_per_table=16, seed=7)


@pytest.fixture
def ocean() -> Metadata:
    return Metadata(
        dataset_id="ds-ocean",
        name="ocean temperature",
        description="daily ocean surface readings",
        categories=("climate",),
        tags=("ocean",),
        attributes=("temperature",),
    )


@pytest.fixture
def budget() -> Metadata:
    return Metadata(
        dataset_id="ds-budget",
        name="city budget",
        description="annual government spending report",
        categories=("finance",),
        tags=("budget", "government"),
    )
