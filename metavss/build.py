"""
build.py - End-to-end build steps.

=============================================================================
THE TWO INDEXES
=============================================================================

1. Metadata index (approximate, cosine LSH forest)
   Points from names, description words, categories and tags. Built by
   scanning every metadata record and embedding it on the fly.

       build_metadata_index(store.iter_metadata(), source, config)

2. Attribute index (exact, inner product)
   One point per attribute name. Attribute vectors are computed once by
   process_attributes() and stored as encoded blobs, so building the index
   only decodes rows; no embedding model is needed at that point.

       process_attributes("datasets", store, source)   # offline, once
       # or, from the attributes column of the metadata table:
       process_metadata_attributes(store.iter_metadata(), store, source)
       build_attribute_index(store.attribute_vector_rows(), config)

=============================================================================
FAILURE POLICY
=============================================================================

- Missing embeddings skip points (see aggregate.py).
- Metadata or embedding source failures abort the build and propagate.
- The builder's `with` block releases the half-built engine on any error.
=============================================================================
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union

import structlog

from metavss.aggregate import DEFAULT_FIELDS, attribute_vector, field_vectors
from metavss.codec import decode_vector, encode_vector
from metavss.config import IndexConfig
from metavss.embeddings import EmbeddingSource
from metavss.errors import EmbeddingNotFound, MetadataSourceError
from metavss.index import Backend, IndexBuilder, SimilarityIndex
from metavss.store import AttributeVectorRow, MetadataCursor, MetadataStore
from metavss.types import FieldKind, Metadata

logger = structlog.get_logger(__name__)

ATTRIBUTE_FILE = "attribute.json"


def build_metadata_index(
    rows: Union[MetadataCursor, Iterable[Metadata]],
    source: EmbeddingSource,
    config: Optional[IndexConfig] = None,
    backend: Backend = Backend.COSINE_LSH,
) -> SimilarityIndex:
    """
    Scan metadata records and build the metadata similarity index.

    If `rows` is a MetadataCursor it is closed when the scan ends, whether the
    build succeeded or not.

    Returns:
        A finalized SimilarityIndex (caller owns it and must close it)
    """
    t0 = time.perf_counter()
    records = 0
    try:
        with IndexBuilder(config, backend) as builder:
            for metadata in rows:
                builder.insert_metadata(metadata, source, DEFAULT_FIELDS)
                records += 1
            index = builder.finalize()
    finally:
        if isinstance(rows, MetadataCursor):
            rows.close()

    logger.info(
        "metadata_index_built",
        records=records,
        points=len(index),
        backend=index.backend.value,
        build_s=round(time.perf_counter() - t0, 3),
    )
    return index


def build_attribute_index(
    rows: Iterable[AttributeVectorRow],
    config: Optional[IndexConfig] = None,
    precision: str = "float32",
) -> SimilarityIndex:
    """
    Build the exact attribute index from stored attribute vector rows.

    Every blob is decoded with the configured dimension; a blob of the wrong
    size aborts the build with VectorCodecError.
    """
    config = config or IndexConfig()
    with IndexBuilder(config, Backend.EXACT_IP) as builder:
        for row in rows:
            vec = decode_vector(row.emb, precision=precision, dimension=config.dimension)
            builder.insert_batch([vec], row.dataset_id, [row.attribute_name], FieldKind.ATTRIBUTE)
        index = builder.finalize()
    logger.info("attribute_index_built", points=len(index))
    return index


def _attribute_files(datasets_dir: Path) -> Iterator[Path]:
    for entry in sorted(datasets_dir.iterdir()):
        if entry.is_dir():
            yield entry / ATTRIBUTE_FILE


def process_attributes(
    datasets_dir: str,
    store: MetadataStore,
    source: EmbeddingSource,
    precision: str = "float32",
) -> int:
    """
    Embed the attribute of every dataset directory and store the vectors.

    Layout:
        datasets_dir/<dataset_id>/attribute.json
            {"AttributeName": "temperature", "DatasetID": "abcd-1234"}

    - A dataset without attribute.json is logged and skipped.
    - Malformed JSON aborts with MetadataSourceError, and nothing is stored.
    - An attribute name with no embedding is logged and not stored.

    Returns:
        Number of attribute vectors stored

    Vectors are written in one transaction after every file was read, and
    replace any vectors already stored for the same datasets, so a failed run
    can simply be repeated.
    """
    root = Path(datasets_dir)
    try:
        paths = list(_attribute_files(root))
    except OSError as exc:
        raise MetadataSourceError(f"cannot list {datasets_dir}: {exc}") from exc

    rows: List[AttributeVectorRow] = []
    for path in paths:
        dir_id = path.parent.name
        try:
            with open(path, "r", encoding="utf-8") as f:
                obj = json.load(f)
        except FileNotFoundError:
            logger.warning("attribute_file_missing", dataset_id=dir_id, path=str(path))
            continue
        except (OSError, ValueError) as exc:
            raise MetadataSourceError(f"dataset {dir_id}: {exc}") from exc

        try:
            attribute_name = str(obj["AttributeName"])
            dataset_id = str(obj.get("DatasetID") or dir_id)
        except (KeyError, TypeError, AttributeError) as exc:
            raise MetadataSourceError(
                f"dataset {dir_id}: {ATTRIBUTE_FILE} has no AttributeName"
            ) from exc

        try:
            vec = attribute_vector(source, attribute_name)
        except EmbeddingNotFound:
            logger.info(
                "attribute_embedding_missing", dataset_id=dataset_id, attribute=attribute_name
            )
            continue

        rows.append(AttributeVectorRow(dataset_id, attribute_name, encode_vector(vec, precision)))

    stored = store.replace_attribute_vectors(rows)

    logger.info("attributes_processed", datasets=len(paths), stored=stored)
    return stored


def process_metadata_attributes(
    rows: Union[MetadataCursor, Iterable[Metadata]],
    store: MetadataStore,
    source: EmbeddingSource,
    precision: str = "float32",
) -> int:
    """
    Embed the `attributes` of metadata records and store the vectors.

    Same policy as process_attributes(): names with no embedding are skipped,
    everything is written in one transaction and replaces the stored vectors
    of every dataset it stores vectors for. A MetadataCursor is closed when the scan ends.
    """
    out: List[AttributeVectorRow] = []
    records = 0
    try:
        for metadata in rows:
            records += 1
            for fv in field_vectors(metadata, source, [FieldKind.ATTRIBUTE]):
                for vec, name in zip(fv.vectors, fv.values):
                    out.append(
                        AttributeVectorRow(metadata.dataset_id, name, encode_vector(vec, precision))
                    )
    finally:
        if isinstance(rows, MetadataCursor):
            rows.close()

    stored = store.replace_attribute_vectors(out)
    logger.info("metadata_attributes_processed", records=records, stored=stored)
    return stored
