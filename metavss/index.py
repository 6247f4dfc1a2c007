"""
index.py - IndexBuilder (write side) and SimilarityIndex (read side).

=============================================================================
LIFECYCLE
=============================================================================

    Empty ──insert*──> Building ──finalize()──> Finalized ──close()──> Released
                                                 (query*)

    with IndexBuilder(config, Backend.COSINE_LSH) as builder:
        builder.insert_metadata(metadata, source)
        ...
        index = builder.finalize()

    with index:
        hits = index.query(vector, k=10)

- The builder owns its engine exclusively. finalize() hands the engine over to
  the SimilarityIndex and the builder can never be used again.
- Leaving the builder's `with` block without finalizing (an exception, an
  early return) releases the engine.
- SimilarityIndex.close() is idempotent; querying after close raises.

=============================================================================
WHY AN OFFSET MAP?
=============================================================================

Engines only return integer offsets (FAISS returns row numbers, the LSH
forest returns positions). The index keeps `keys[offset] -> PointKey`,
appended in the same call that adds the vector, so the two can never drift
apart.
=============================================================================
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, List, Optional, Sequence, Union

import numpy as np
import structlog

from metavss.aggregate import DEFAULT_FIELDS, field_vectors
from metavss.config import IndexConfig
from metavss.embeddings import EmbeddingSource
from metavss.engines import CosineLSHForest, FlatInnerProduct, VectorEngine
from metavss.errors import (
    BuilderFinalizedError,
    DimensionMismatchError,
    IndexClosedError,
    LengthMismatchError,
)
from metavss.types import FieldKind, Metadata, Point, PointKey, SearchHit

logger = structlog.get_logger(__name__)


class Backend(str, Enum):
    """Engine selected when the builder is constructed."""

    COSINE_LSH = "cosine-lsh"
    EXACT_IP = "exact-ip"


BackendInput = Union[str, Backend]


def make_engine(backend: BackendInput, config: IndexConfig) -> VectorEngine:
    backend = Backend(backend)
    if backend is Backend.EXACT_IP:
        return FlatInnerProduct(config.dimension)
    return CosineLSHForest(
        dimension=config.dimension,
        table_count=config.table_count,
        hashes_per_table=config.hashes_per_table,
        candidate_multiplier=config.candidate_multiplier,
        seed=config.seed,
    )


def _as_vector(vector, dimension: int) -> np.ndarray:
    arr = np.asarray(vector, dtype="float32")
    if arr.ndim != 1 or arr.shape[0] != dimension:
        got = arr.shape[0] if arr.ndim == 1 else int(arr.size)
        raise DimensionMismatchError(dimension, got)
    return arr


# =============================================================================
# READ SIDE
# =============================================================================


class SimilarityIndex:
    """
    Immutable, query-only similarity index.

    Created by IndexBuilder.finalize(); not meant to be constructed directly.
    Queries do not mutate anything, so one index can serve many threads.
    """

    def __init__(
        self,
        engine: VectorEngine,
        keys: Sequence[PointKey],
        config: IndexConfig,
        backend: Backend,
    ) -> None:
        if engine.ntotal != len(keys):
            raise ValueError(
                f"engine holds {engine.ntotal} vectors but {len(keys)} keys were given"
            )
        self._engine: Optional[VectorEngine] = engine
        self._keys: List[PointKey] = list(keys)
        self.config = config
        self.backend = backend

    @property
    def dimension(self) -> int:
        return self.config.dimension

    @property
    def closed(self) -> bool:
        return self._engine is None

    def __len__(self) -> int:
        return len(self._keys)

    def query(self, vector, k: int) -> List[SearchHit]:
        """
        Return up to k hits, best first.

        Sentinel offsets (-1) from the engine are dropped, and scores are cut
        to the same length as the surviving offsets.

        Raises:
            IndexClosedError: the index was closed
            DimensionMismatchError: vector has the wrong dimension
            ValueError: k <= 0
        """
        if self._engine is None:
            raise IndexClosedError("index is closed")
        if k <= 0:
            raise ValueError("k must be > 0")
        q = _as_vector(vector, self.dimension)
        if not self._keys:
            return []

        # Never ask the engine for more slots than there are points
        scores, offsets = self._engine.search(q, min(int(k), len(self._keys)))
        valid = [int(o) for o in offsets if o >= 0]
        scores = scores[: len(valid)]
        return [
            SearchHit(key=self._keys[offset], score=float(score))
            for offset, score in zip(valid, scores)
        ]

    def close(self) -> None:
        """Release engine memory. Safe to call more than once."""
        if self._engine is not None:
            self._engine.close()
            self._engine = None
            logger.debug("index_closed", backend=self.backend.value, points=len(self._keys))

    def __enter__(self) -> "SimilarityIndex":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


# =============================================================================
# WRITE SIDE
# =============================================================================


class IndexBuilder:
    """
    Write-only accumulator for one SimilarityIndex.

    Not thread safe: one writer at a time. Aggregation may run in parallel
    elsewhere, but inserts must be serialized by the caller.
    """

    def __init__(
        self,
        config: Optional[IndexConfig] = None,
        backend: BackendInput = Backend.COSINE_LSH,
    ) -> None:
        self.config = config or IndexConfig()
        self.backend = Backend(backend)
        self._engine: Optional[VectorEngine] = make_engine(self.backend, self.config)
        self._keys: List[PointKey] = []

    def __len__(self) -> int:
        return len(self._keys)

    def _check_open(self) -> VectorEngine:
        if self._engine is None:
            raise BuilderFinalizedError("builder was already finalized or closed")
        return self._engine

    def insert(self, point: Point) -> None:
        """Add one point."""
        engine = self._check_open()
        vec = _as_vector(point.vector, self.config.dimension)
        engine.add(vec.reshape(1, -1))
        self._keys.append(point.key)

    def insert_batch(
        self,
        vectors: Sequence,
        dataset_id: str,
        values: Sequence[str],
        field: Optional[FieldKind] = None,
    ) -> None:
        """
        Add vectors[i] under key (dataset_id, values[i]) for every i.

        All-or-nothing: lengths and dimensions are checked before anything is
        inserted.

        Raises:
            LengthMismatchError: len(vectors) != len(values)
            DimensionMismatchError: any vector has the wrong dimension
        """
        engine = self._check_open()
        if len(vectors) != len(values):
            raise LengthMismatchError(len(vectors), len(values))
        if not len(vectors):
            return
        mat = np.vstack([_as_vector(v, self.config.dimension) for v in vectors])
        engine.add(mat)
        self._keys.extend(PointKey(dataset_id, value) for value in values)
        logger.debug(
            "points_inserted",
            dataset_id=dataset_id,
            field=field.value if field is not None else None,
            count=len(values),
        )

    def insert_metadata(
        self,
        metadata: Metadata,
        source: EmbeddingSource,
        fields: Iterable[FieldKind] = DEFAULT_FIELDS,
    ) -> int:
        """
        Embed one metadata record and insert every resulting point.

        Returns:
            Number of points inserted for this record
        """
        self._check_open()
        inserted = 0
        for fv in field_vectors(metadata, source, fields):
            self.insert_batch(fv.vectors, metadata.dataset_id, fv.values, fv.field)
            inserted += len(fv.values)
        return inserted

    def finalize(self) -> SimilarityIndex:
        """
        Freeze the engine and hand it to a new SimilarityIndex.

        The builder is unusable afterwards.
        """
        engine = self._check_open()
        engine.freeze()
        index = SimilarityIndex(engine, self._keys, self.config, self.backend)
        self._engine = None
        self._keys = []
        logger.info("index_finalized", backend=self.backend.value, points=len(index))
        return index

    def close(self) -> None:
        """Release the engine if finalize() was never called."""
        if self._engine is not None:
            self._engine.close()
            self._engine = None
            self._keys = []

    def __enter__(self) -> "IndexBuilder":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
