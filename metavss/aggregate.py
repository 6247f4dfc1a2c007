"""
aggregate.py - Turn one Metadata record into embedding points.

=============================================================================
ONE POINT PER MEANINGFUL UNIT
=============================================================================

    field        | lookup                               | point value
    -------------+--------------------------------------+----------------
    name         | ONE multi-word vector for all tokens | the full name
    description  | one vector per word                  | the word
    categories   | one vector per category              | the category
    tags         | one vector per tag                   | the tag
    attributes   | one unit multi-word vector per name  | the attribute

Attribute names are often compound ("sea_surface_temp"), so each one gets a
single multi-word vector, L2-normalized: the exact attribute index ranks by
inner product and needs unit vectors to rank by cosine. Attributes are not in
DEFAULT_FIELDS; they feed the attribute index (see build.py).

Example: name "ocean temperature", description "daily ocean surface
readings", category "climate", tag "ocean" gives 1 + 4 + 1 + 1 = 7 points, all
for the same dataset.

=============================================================================
MISSES VS FAILURES
=============================================================================

EmbeddingNotFound skips exactly one point: the whole name, one description
word, one tag. Every other exception (EmbeddingSourceError, anything
unexpected) propagates and aborts the record.
=============================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import structlog

from metavss.embeddings import EmbeddingSource, l2_normalize_rows
from metavss.errors import EmbeddingNotFound
from metavss.types import FieldKind, Metadata, Point, split_words

logger = structlog.get_logger(__name__)

# Fields of the cosine metadata index. Attributes go to the exact attribute index.
DEFAULT_FIELDS: Tuple[FieldKind, ...] = (
    FieldKind.NAME,
    FieldKind.DESCRIPTION,
    FieldKind.CATEGORY,
    FieldKind.TAG,
)


@dataclass(frozen=True)
class FieldVectors:
    """Parallel lists of vectors and values found for one field of one record."""

    field: FieldKind
    vectors: List[np.ndarray]
    values: List[str]


def attribute_vector(source: EmbeddingSource, attribute_name: str) -> np.ndarray:
    """
    Unit-length vector for an attribute name.

    Underscores separate words ("surface_temperature"). Raises EmbeddingNotFound
    like the source does.
    """
    tokens = split_words(attribute_name.replace("_", " "))
    vec = source.multi_word_embedding_vector(tokens)
    return l2_normalize_rows(np.asarray(vec, dtype="float32").reshape(1, -1))[0]


def _per_item_vectors(
    items: Sequence[str],
    embed: Callable[[str], np.ndarray],
    field: FieldKind,
    dataset_id: str,
) -> FieldVectors:
    vectors: List[np.ndarray] = []
    values: List[str] = []
    for item in items:
        try:
            vec = embed(item)
        except EmbeddingNotFound:
            logger.debug(
                "embedding_missing", dataset_id=dataset_id, field=field.value, token=item
            )
            continue
        vectors.append(vec)
        values.append(item)
    return FieldVectors(field=field, vectors=vectors, values=values)


def name_point(metadata: Metadata, source: EmbeddingSource) -> Optional[Point]:
    """Single point for the whole name, or None if any name token has no vector."""
    tokens = metadata.name_tokens()
    if not tokens:
        return None
    try:
        vec = source.multi_word_embedding_vector(tokens)
    except EmbeddingNotFound as exc:
        logger.debug(
            "embedding_missing",
            dataset_id=metadata.dataset_id,
            field=FieldKind.NAME.value,
            token=exc.token,
        )
        return None
    return Point(vec, metadata.dataset_id, metadata.name, FieldKind.NAME)


def field_vectors(
    metadata: Metadata,
    source: EmbeddingSource,
    fields: Iterable[FieldKind] = DEFAULT_FIELDS,
) -> Iterator[FieldVectors]:
    """
    Yield the vectors found for each requested field, in field order.

    Fields with no vectors at all are still yielded, with empty lists.
    """
    for field in fields:
        field = FieldKind(field)
        if field is FieldKind.NAME:
            point = name_point(metadata, source)
            if point is None:
                yield FieldVectors(field, [], [])
            else:
                yield FieldVectors(field, [point.vector], [point.value])
        elif field is FieldKind.DESCRIPTION:
            yield _per_item_vectors(
                metadata.description_tokens(),
                source.embedding_vector,
                field,
                metadata.dataset_id,
            )
        elif field is FieldKind.CATEGORY:
            yield _per_item_vectors(
                metadata.categories, source.embedding_vector, field, metadata.dataset_id
            )
        elif field is FieldKind.TAG:
            yield _per_item_vectors(
                metadata.tags, source.embedding_vector, field, metadata.dataset_id
            )
        else:
            yield _per_item_vectors(
                metadata.attributes,
                lambda name: attribute_vector(source, name),
                field,
                metadata.dataset_id,
            )


def aggregate_points(
    metadata: Metadata,
    source: EmbeddingSource,
    fields: Iterable[FieldKind] = DEFAULT_FIELDS,
) -> List[Point]:
    """All points for one record, in field order."""
    points: List[Point] = []
    for fv in field_vectors(metadata, source, fields):
        points.extend(_to_points(fv, metadata.dataset_id))
    return points


def _to_points(fv: FieldVectors, dataset_id: str) -> List[Point]:
    return [
        Point(vec, dataset_id, value, fv.field)
        for vec, value in zip(fv.vectors, fv.values)
    ]
