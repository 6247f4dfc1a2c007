"""
metavss - Vector similarity search over dataset metadata.

=============================================================================
PACKAGE OVERVIEW
=============================================================================

Given a catalog of datasets (name, description, categories, tags, attribute
names), metavss embeds every meaningful piece of metadata and indexes the
vectors so that a query like "sea surface temperature" finds the datasets
whose metadata is closest in meaning, not just in spelling.

=============================================================================
MODULE STRUCTURE
=============================================================================

metavss/
├── __init__.py     ← You are here.
├── types.py        ← Metadata, Point, PointKey, results
├── errors.py       ← Exception hierarchy (not-found vs I/O vs invariant)
├── config.py       ← Settings (env) and IndexConfig (per index)
├── log_config.py   ← structlog setup for entry points
├── codec.py        ← Vector <-> bytes for the attribute_vectors table
├── embeddings.py   ← Embedding sources (fastText .vec, SentenceTransformer)
├── aggregate.py    ← Metadata record → points
├── engines.py      ← FAISS flat inner product, cosine LSH forest
├── index.py        ← IndexBuilder → SimilarityIndex
├── service.py      ← QueryService: ranked dataset matches
├── store.py        ← SQLite metadata store, JSONL reader
├── build.py        ← Build pipelines and attribute processing
└── bench.py        ← Recall and latency measurements

=============================================================================
TYPICAL USAGE
=============================================================================

Building and querying the metadata index:
-----------------------------------------
    from metavss.build import build_metadata_index
    from metavss.config import load_settings
    from metavss.embeddings import open_embedding_source
    from metavss.service import QueryService
    from metavss.store import MetadataStore

    settings = load_settings()
    source = open_embedding_source(settings)

    with MetadataStore(settings.DATABASE_PATH) as store:
        index = build_metadata_index(store.iter_metadata(), source, settings.index_config())

    with index:
        svc = QueryService(index)
        for m in svc.query_text("ocean temperature", source, k=10):
            print(m.dataset_id, m.score)

=============================================================================
"""

from metavss.errors import (
    ConfigurationError,
    EmbeddingNotFound,
    InvariantViolation,
    MetaVSSError,
    SourceError,
)
from metavss.index import Backend, IndexBuilder, SimilarityIndex
from metavss.service import QueryService
from metavss.types import DatasetMatch, Metadata, Point, PointKey

__all__ = [
    "Backend",
    "ConfigurationError",
    "DatasetMatch",
    "EmbeddingNotFound",
    "IndexBuilder",
    "InvariantViolation",
    "MetaVSSError",
    "Metadata",
    "Point",
    "PointKey",
    "QueryService",
    "SimilarityIndex",
    "SourceError",
]
