"""
engines.py - The two nearest-neighbor engines behind SimilarityIndex.

=============================================================================
OVERVIEW
=============================================================================

An engine stores vectors at consecutive integer offsets (0, 1, 2, ...) and
answers top-k queries with those offsets. It knows nothing about datasets;
SimilarityIndex keeps the offset -> PointKey map.

Both engines follow FAISS's search convention:

    scores, offsets = engine.search(query_vector, k)

    - both arrays have exactly k entries, best first
    - unused slots have offset -1 (the "no match" sentinel) and score -inf

=============================================================================
WHICH ENGINE?
=============================================================================

1. FlatInnerProduct (exact)
   - faiss.IndexFlatIP: compares the query against EVERY stored vector.
   - Scores are raw inner products; nothing is normalized here.
   - Used for attribute-name vectors, whose blobs are already stored
     normalized by the attribute processing step.

2. CosineLSHForest (approximate)
   - Locality-sensitive hashing for cosine similarity: each vector gets one
     random-hyperplane signature per tree. Similar vectors share long
     signature prefixes with high probability.
   - Query: walk all trees from the full signature length toward shorter
     prefixes until enough candidates are found, then rank the candidates by
     exact cosine similarity.
   - Misses are possible (a true neighbor may share no long prefix with the
     query in any tree). That is the price for not scanning everything.
   - table_count and hashes_per_table trade memory and query time for recall.

=============================================================================
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Set, Tuple

import faiss  # type: ignore
import numpy as np

from metavss.embeddings import l2_normalize_rows
from metavss.errors import IndexClosedError

# Score reported in empty result slots
_EMPTY_SCORE = float("-inf")

# Rows hashed per matrix product while freezing the LSH forest
_HASH_CHUNK = 4096


class VectorEngine(Protocol):
    """Contract shared by the exact and approximate engines."""

    @property
    def ntotal(self) -> int: ...

    def add(self, vectors: np.ndarray) -> None: ...

    def freeze(self) -> None: ...

    def search(self, vector: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]: ...

    def close(self) -> None: ...


def _empty_result(k: int) -> Tuple[np.ndarray, np.ndarray]:
    return (
        np.full(k, _EMPTY_SCORE, dtype="float32"),
        np.full(k, -1, dtype="int64"),
    )


# =============================================================================
# EXACT: FAISS FLAT INNER PRODUCT
# =============================================================================


class FlatInnerProduct:
    """Exact inner-product search over a flat FAISS table."""

    def __init__(self, dimension: int) -> None:
        self.dimension = dimension
        self._index: Optional[faiss.Index] = faiss.IndexFlatIP(dimension)

    def _open(self) -> faiss.Index:
        if self._index is None:
            raise IndexClosedError("engine is closed")
        return self._index

    @property
    def ntotal(self) -> int:
        return 0 if self._index is None else int(self._index.ntotal)

    def add(self, vectors: np.ndarray) -> None:
        index = self._open()
        mat = np.ascontiguousarray(vectors, dtype="float32").reshape(-1, self.dimension)
        index.add(mat)  # type: ignore[call-arg]

    def freeze(self) -> None:
        # A flat index is queryable as soon as vectors are added
        pass

    def search(self, vector: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        index = self._open()
        if index.ntotal == 0:
            return _empty_result(k)
        q = np.ascontiguousarray(vector, dtype="float32").reshape(1, self.dimension)
        # Both are 2D because FAISS supports batch queries; we send one query.
        scores, ids = index.search(q, k)  # type: ignore[call-arg]
        return scores[0], ids[0].astype("int64")

    def close(self) -> None:
        if self._index is not None:
            self._index.reset()
            self._index = None


# =============================================================================
# APPROXIMATE: COSINE LSH FOREST
# =============================================================================


class CosineLSHForest:
    """
    LSH forest for cosine similarity.

    Each of the `table_count` trees owns `hashes_per_table` random hyperplanes.
    A vector's signature in a tree is one bit per hyperplane (which side the
    vector falls on), packed most-significant-bit first into a uint64. A
    prefix tree over signatures is represented as the sorted array of keys:
    all keys sharing a p-bit prefix are one contiguous run, found with two
    binary searches.

    Vectors are buffered by add() and hashed in bulk by freeze().
    """

    def __init__(
        self,
        dimension: int,
        table_count: int,
        hashes_per_table: int,
        candidate_multiplier: int = 4,
        seed: Optional[int] = None,
    ) -> None:
        if not 0 < hashes_per_table <= 64:
            raise ValueError("hashes_per_table must be in 1..64")
        self.dimension = dimension
        self.table_count = table_count
        self.hashes_per_table = hashes_per_table
        self.candidate_multiplier = candidate_multiplier

        rng = np.random.default_rng(seed)
        # Shape: (table_count * hashes_per_table, dimension)
        self._planes: Optional[np.ndarray] = rng.standard_normal(
            (table_count * hashes_per_table, dimension)
        ).astype("float32")
        # Bit weights, MSB first: [2^(h-1), ..., 2, 1]
        self._weights = np.left_shift(
            np.uint64(1), np.arange(hashes_per_table - 1, -1, -1, dtype=np.uint64)
        )

        self._pending: List[np.ndarray] = []
        self._matrix: Optional[np.ndarray] = None  # (n, d) unit vectors
        self._sorted_keys: Optional[np.ndarray] = None  # (tables, n) uint64
        self._order: Optional[np.ndarray] = None  # (tables, n) offsets

    def _open(self) -> np.ndarray:
        if self._planes is None:
            raise IndexClosedError("engine is closed")
        return self._planes

    @property
    def ntotal(self) -> int:
        pending = sum(int(p.shape[0]) for p in self._pending)
        frozen = 0 if self._matrix is None else int(self._matrix.shape[0])
        return pending + frozen

    def add(self, vectors: np.ndarray) -> None:
        self._open()
        if self._matrix is not None:
            raise RuntimeError("cannot add to a frozen LSH forest")
        mat = np.asarray(vectors, dtype="float32").reshape(-1, self.dimension)
        self._pending.append(l2_normalize_rows(mat).astype("float32"))

    def signatures(self, mat: np.ndarray) -> np.ndarray:
        """
        Hash unit vectors into per-tree signatures.

        Args:
            mat: (n, dimension) float32 array

        Returns:
            (n, table_count) uint64 array of packed signatures
        """
        planes = self._open()
        out = np.empty((mat.shape[0], self.table_count), dtype=np.uint64)
        for start in range(0, mat.shape[0], _HASH_CHUNK):
            chunk = mat[start : start + _HASH_CHUNK]
            bits = (chunk @ planes.T) >= 0.0
            bits = bits.reshape(chunk.shape[0], self.table_count, self.hashes_per_table)
            out[start : start + chunk.shape[0]] = (
                bits.astype(np.uint64) * self._weights
            ).sum(axis=2, dtype=np.uint64)
        return out

    def freeze(self) -> None:
        self._open()
        if self._matrix is not None:
            return
        if self._pending:
            matrix = np.vstack(self._pending)
        else:
            matrix = np.zeros((0, self.dimension), dtype="float32")
        self._pending = []

        keys = self.signatures(matrix).T  # (tables, n)
        order = np.argsort(keys, axis=1, kind="stable")
        self._sorted_keys = np.take_along_axis(keys, order, axis=1)
        self._order = order.astype("int64")
        self._matrix = matrix

    def _frozen(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(matrix, sorted_keys, order), freezing on first use."""
        self.freeze()
        if self._matrix is None or self._sorted_keys is None or self._order is None:
            raise IndexClosedError("engine is closed")
        return self._matrix, self._sorted_keys, self._order

    def _prefix_range(self, keys: np.ndarray, key: int, prefix_len: int) -> Tuple[int, int]:
        """Positions in one table's sorted `keys` sharing `prefix_len` leading bits with key."""
        n = keys.shape[0]
        if prefix_len == 0:
            return 0, n
        shift = self.hashes_per_table - prefix_len
        low = (key >> shift) << shift
        high = low + (1 << shift)
        lo = int(np.searchsorted(keys, np.uint64(low), side="left"))
        if high >= 1 << 64:
            return lo, n
        hi = int(np.searchsorted(keys, np.uint64(high), side="left"))
        return lo, hi

    def candidates(self, vector: np.ndarray, want: int) -> np.ndarray:
        """
        Collect at least `want` candidate offsets (or every offset).

        All trees descend together: first every tree contributes the vectors
        with an identical signature, then those sharing hashes_per_table - 1
        leading bits, and so on, until enough distinct candidates are found.
        """
        matrix, sorted_keys, order = self._frozen()
        n = matrix.shape[0]
        q = l2_normalize_rows(np.asarray(vector, dtype="float32").reshape(1, -1))
        qkeys = [int(k) for k in self.signatures(q.astype("float32"))[0]]

        found: Set[int] = set()
        for prefix_len in range(self.hashes_per_table, -1, -1):
            for table, key in enumerate(qkeys):
                lo, hi = self._prefix_range(sorted_keys[table], key, prefix_len)
                if hi > lo:
                    found.update(order[table, lo:hi].tolist())
            if len(found) >= min(want, n):
                break
        return np.fromiter(sorted(found), dtype="int64", count=len(found))

    def search(self, vector: np.ndarray, k: int) -> Tuple[np.ndarray, np.ndarray]:
        matrix, _, _ = self._frozen()
        if matrix.shape[0] == 0:
            return _empty_result(k)

        cand = self.candidates(vector, want=k * self.candidate_multiplier)
        q = l2_normalize_rows(np.asarray(vector, dtype="float32").reshape(1, -1))[0]
        cand_scores = matrix[cand] @ q

        # Stable sort keeps equal scores in offset order
        top = np.argsort(-cand_scores, kind="stable")[:k]
        scores, ids = _empty_result(k)
        scores[: top.shape[0]] = cand_scores[top]
        ids[: top.shape[0]] = cand[top]
        return scores, ids

    def close(self) -> None:
        self._pending = []
        self._planes = None
        self._matrix = None
        self._sorted_keys = None
        self._order = None
