"""
errors.py - Exception hierarchy for metavss.

=============================================================================
THE THREE KINDS OF FAILURE
=============================================================================

Building a metadata index can go wrong in three very different ways, and the
caller needs to tell them apart:

    1. NOT FOUND: the embedding source has no vector for a token.
       This is normal (rare words, typos, acronyms). The point is skipped and
       aggregation continues. -> EmbeddingNotFound

    2. STRUCTURAL I/O FAILURE: the metadata store or the embedding source is
       broken (missing file, corrupt row, closed connection).
       The current build is aborted and the error goes back to the caller.
       Nothing is retried here. -> SourceError and subclasses

    3. INVARIANT VIOLATION: the caller did something the index cannot honor
       (vector/value lists of different length, wrong dimension, insert after
       finalize, query after close). These are bugs, so they fail loudly.
       -> InvariantViolation and subclasses

Configuration problems (no embedding model path) are reported before any
build work starts. -> ConfigurationError

Everything derives from MetaVSSError so scripts can catch one type at the top.
=============================================================================
"""

from __future__ import annotations


class MetaVSSError(Exception):
    """Base class for every error raised by metavss."""


class ConfigurationError(MetaVSSError):
    """Required configuration is missing or invalid."""


class EmbeddingNotFound(MetaVSSError, LookupError):
    """The embedding source has no vector for a token (non-fatal)."""

    def __init__(self, token: str) -> None:
        super().__init__(f"no embedding vector for {token!r}")
        self.token = token


class SourceError(MetaVSSError):
    """An external collaborator failed for structural reasons."""


class EmbeddingSourceError(SourceError):
    """The embedding source could not be loaded or read."""


class MetadataSourceError(SourceError):
    """The metadata store could not be read or written."""


class InvariantViolation(MetaVSSError):
    """A programming error: the index was used in a way it cannot honor."""


class LengthMismatchError(InvariantViolation, ValueError):
    """Parallel vector and value lists have different lengths."""

    def __init__(self, vector_count: int, value_count: int) -> None:
        super().__init__(
            f"(len(vectors) = {vector_count}) != (len(values) = {value_count})"
        )
        self.vector_count = vector_count
        self.value_count = value_count


class DimensionMismatchError(InvariantViolation, ValueError):
    """A vector does not have the dimension the index was built for."""

    def __init__(self, expected: int, got: int) -> None:
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {got}")
        self.expected = expected
        self.got = got


class BuilderFinalizedError(InvariantViolation, RuntimeError):
    """The builder was used after finalize() or close()."""


class IndexClosedError(InvariantViolation, RuntimeError):
    """The index was queried after close()."""


class VectorCodecError(MetaVSSError, ValueError):
    """A byte blob cannot be decoded into a vector of the expected shape."""
