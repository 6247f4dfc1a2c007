"""
embeddings.py - Embedding sources: token (or token sequence) -> vector.

=============================================================================
THE CONTRACT
=============================================================================

Everything downstream only needs two calls:

    source.embedding_vector("ocean")                          -> np.ndarray
    source.multi_word_embedding_vector(["ocean", "temperature"]) -> np.ndarray

Both raise:
    - EmbeddingNotFound     the source has no vector for the token(s). Normal;
                            the caller skips that point.
    - EmbeddingSourceError  the source itself is broken (file missing, corrupt
                            line, model failed to load). Fatal for the build.

Keeping those two apart matters: if an unreadable model file looked like
"every word is unknown", a build would finish with an empty index and no
error at all.

=============================================================================
IMPLEMENTATIONS
=============================================================================

1. WordVectorSource: fastText / word2vec text files (*.vec). This is the
   classic setup for metadata search: 300-d word vectors, one line per word.
   A multi-word vector is the mean of the unit-length word vectors, and is
   not found if any word is missing.

2. SentenceTransformerSource: a SentenceTransformer model. It can embed any
   string, so only empty input is "not found". Vectors are unit length.

open_embedding_source() picks one based on the configured path.
=============================================================================
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

import numpy as np
import structlog

from metavss.config import Settings
from metavss.errors import EmbeddingNotFound, EmbeddingSourceError

logger = structlog.get_logger(__name__)

WORD_VECTOR_SUFFIXES = {".vec", ".txt"}


class EmbeddingSource(Protocol):
    """Anything that maps tokens to fixed-dimension vectors."""

    @property
    def dimension(self) -> int: ...

    def embedding_vector(self, token: str) -> np.ndarray: ...

    def multi_word_embedding_vector(self, tokens: Sequence[str]) -> np.ndarray: ...


# =============================================================================
# VECTOR NORMALIZATION
# =============================================================================


def l2_normalize_rows(x: np.ndarray) -> np.ndarray:
    """
    Normalize each row of a matrix to unit length (L2 norm = 1).

    Once rows are unit length, the inner product of two rows IS their cosine
    similarity, which is what both index backends rank by.

    Args:
        x: A 2D numpy array of shape (n_vectors, embedding_dim)

    Returns:
        A new array with each row normalized to unit length. Zero rows stay zero.
    """
    norms = np.linalg.norm(x, axis=1, keepdims=True)
    norms = np.maximum(norms, 1e-12)
    return x / norms


# =============================================================================
# WORD VECTORS (fastText .vec)
# =============================================================================


class WordVectorSource:
    """
    Word vectors read from a fastText/word2vec text file.

    File format:
        2000000 300                 <- optional header: word count, dimension
        the 0.0231 -0.1102 ...      <- word followed by `dimension` floats
        ...

    The file is read lazily on the first lookup (or by calling load()), so
    constructing a source is cheap. Published .vec files are sorted by word
    frequency; max_words keeps only the most frequent words to bound memory.
    """

    def __init__(
        self,
        path: str,
        dimension: Optional[int] = None,
        max_words: Optional[int] = None,
    ) -> None:
        self.path = path
        self._expected_dim = dimension
        self.max_words = max_words
        self._vocab: Optional[Dict[str, int]] = None
        self._matrix: Optional[np.ndarray] = None

    @property
    def dimension(self) -> int:
        self.load()
        assert self._matrix is not None
        return int(self._matrix.shape[1])

    def __len__(self) -> int:
        self.load()
        assert self._vocab is not None
        return len(self._vocab)

    def load(self) -> None:
        """Read the vector file into memory (no-op if already loaded)."""
        if self._matrix is not None:
            return

        t0 = time.perf_counter()
        vocab: Dict[str, int] = {}
        rows: List[np.ndarray] = []
        dim = self._expected_dim

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line_no, raw in enumerate(f, start=1):
                    parts = raw.rstrip("\n").rstrip().split(" ")
                    if line_no == 1 and len(parts) == 2 and _is_header(parts):
                        header_dim = int(parts[1])
                        if dim is not None and header_dim != dim:
                            raise EmbeddingSourceError(
                                f"{self.path}: header dimension {header_dim} != expected {dim}"
                            )
                        dim = header_dim
                        continue
                    if len(parts) < 2:
                        continue  # Blank or stray line
                    word, values = parts[0], parts[1:]
                    if dim is None:
                        dim = len(values)
                    if len(values) != dim:
                        raise EmbeddingSourceError(
                            f"{self.path}:{line_no}: expected {dim} values, got {len(values)}"
                        )
                    try:
                        vec = np.asarray(values, dtype="float32")
                    except ValueError as exc:
                        raise EmbeddingSourceError(
                            f"{self.path}:{line_no}: malformed vector"
                        ) from exc
                    # First occurrence wins, like fastText's own loader
                    if word not in vocab:
                        vocab[word] = len(rows)
                        rows.append(vec)
                    if self.max_words is not None and len(rows) >= self.max_words:
                        break
        except OSError as exc:
            raise EmbeddingSourceError(f"cannot read word vectors: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise EmbeddingSourceError(f"{self.path}: not valid UTF-8: {exc}") from exc

        if dim is None:
            raise EmbeddingSourceError(f"{self.path}: no vectors found")

        self._vocab = vocab
        self._matrix = (
            np.vstack(rows) if rows else np.zeros((0, dim), dtype="float32")
        )
        logger.info(
            "word_vectors_loaded",
            path=self.path,
            words=len(vocab),
            dimension=dim,
            load_s=round(time.perf_counter() - t0, 3),
        )

    def embedding_vector(self, token: str) -> np.ndarray:
        self.load()
        assert self._vocab is not None and self._matrix is not None
        row = self._vocab.get(token)
        if row is None:
            raise EmbeddingNotFound(token)
        return self._matrix[row].copy()

    def multi_word_embedding_vector(self, tokens: Sequence[str]) -> np.ndarray:
        """
        Mean of the unit-length vectors of every token.

        Raises EmbeddingNotFound for an empty sequence or if any token is missing.
        """
        if not tokens:
            raise EmbeddingNotFound("")
        vecs = np.vstack([self.embedding_vector(t) for t in tokens])
        return l2_normalize_rows(vecs).mean(axis=0).astype("float32")

    def close(self) -> None:
        self._vocab = None
        self._matrix = None

    def __enter__(self) -> "WordVectorSource":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _is_header(parts: List[str]) -> bool:
    return all(p.isdigit() for p in parts)


# =============================================================================
# SENTENCE TRANSFORMERS
# =============================================================================


class Embedder:
    """
    Wrapper around SentenceTransformer for encoding text into unit vectors.

    Loading the model is slow (seconds); build one Embedder per process.
    The model used at query time MUST match the model used to build the index.
    """

    def __init__(self, model_name: str) -> None:
        # Imported here so word-vector-only deployments do not pay for torch
        from sentence_transformers import SentenceTransformer

        self.model_name = model_name
        self.model = SentenceTransformer(model_name)

    @property
    def dimension(self) -> int:
        return int(self.model.get_sentence_embedding_dimension())

    def encode_texts(self, texts: List[str], batch_size: int = 64) -> np.ndarray:
        """
        Encode a batch of texts into normalized embeddings.

        Returns:
            numpy array of shape (len(texts), embedding_dim), dtype float32
        """
        emb = self.model.encode(
            texts,
            batch_size=batch_size,
            convert_to_numpy=True,
            show_progress_bar=False,
        )
        arr = np.asarray(emb, dtype="float32")
        return l2_normalize_rows(arr)


class SentenceTransformerSource:
    """EmbeddingSource backed by a SentenceTransformer model."""

    def __init__(self, model_name_or_path: str, embedder: Optional[Embedder] = None) -> None:
        if embedder is None:
            try:
                embedder = Embedder(model_name_or_path)
            except (OSError, ValueError) as exc:
                raise EmbeddingSourceError(
                    f"cannot load SentenceTransformer model {model_name_or_path!r}: {exc}"
                ) from exc
        self.embedder = embedder

    @property
    def dimension(self) -> int:
        return self.embedder.dimension

    def embedding_vector(self, token: str) -> np.ndarray:
        if not token.strip():
            raise EmbeddingNotFound(token)
        return self.embedder.encode_texts([token], batch_size=1)[0]

    def multi_word_embedding_vector(self, tokens: Sequence[str]) -> np.ndarray:
        return self.embedding_vector(" ".join(tokens))


def open_embedding_source(settings: Settings) -> EmbeddingSource:
    """
    Build the embedding source named by settings.EMBEDDING_MODEL_PATH.

    *.vec / *.txt files are read as word vectors; anything else is handed to
    SentenceTransformer (a local model directory or a hub model name).
    """
    path = settings.EMBEDDING_MODEL_PATH
    if Path(path).suffix.lower() in WORD_VECTOR_SUFFIXES:
        if not Path(path).is_file():
            raise EmbeddingSourceError(f"word vector file not found: {path}")
        return WordVectorSource(path, dimension=settings.EMBEDDING_DIM)
    return SentenceTransformerSource(path)
