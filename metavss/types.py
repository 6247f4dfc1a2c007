"""
types.py - Data classes passed between the metavss modules.

=============================================================================
WHAT LIVES HERE
=============================================================================

    Metadata      One dataset's descriptive fields, as read from the store
    FieldKind     Which metadata field a point came from
    PointKey      Explicit (dataset_id, value) identity of a point
    Point         One vector to insert, plus the key it maps back to
    SearchHit     One raw hit from SimilarityIndex.query()
    DatasetMatch  One ranked result from QueryService
    TimingsMs     Latency breakdown of one text query

All of them are frozen: once a record is read or a result is produced,
nothing downstream should mutate it.
=============================================================================
"""

from __future__ import annotations

import string
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

_PUNCTUATION = string.punctuation + "“”‘’"


def split_words(text: str) -> List[str]:
    """
    Split free text into word tokens.

    Whitespace separates tokens; leading and trailing punctuation is stripped
    from each token ("readings." -> "readings"), and empty tokens are dropped.
    Case is preserved because word-vector vocabularies are case sensitive.
    """
    words: List[str] = []
    for raw in (text or "").split():
        word = raw.strip(_PUNCTUATION)
        if word:
            words.append(word)
    return words


class FieldKind(str, Enum):
    """Metadata field a point was derived from."""

    NAME = "name"
    DESCRIPTION = "description"
    CATEGORY = "category"
    TAG = "tag"
    ATTRIBUTE = "attribute"


@dataclass(frozen=True)
class Metadata:
    """
    Descriptive metadata of one dataset.

    categories, tags and attributes keep their source order; the store is the
    owner of this data and metavss only reads it.
    """

    dataset_id: str
    name: str = ""
    description: str = ""
    categories: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    attributes: Tuple[str, ...] = ()

    def name_tokens(self) -> List[str]:
        return split_words(self.name)

    def description_tokens(self) -> List[str]:
        return split_words(self.description)


@dataclass(frozen=True)
class PointKey:
    """
    Identity of a point: which dataset, and which value inside it.

    Kept as two fields so that dataset "a" + value "bc" and dataset "ab" +
    value "c" stay distinct.
    """

    dataset_id: str
    value: str


@dataclass(frozen=True, eq=False)
class Point:
    """One embedding vector to insert into an index."""

    vector: np.ndarray
    dataset_id: str
    value: str
    field: Optional[FieldKind] = None

    @property
    def key(self) -> PointKey:
        return PointKey(self.dataset_id, self.value)


@dataclass(frozen=True)
class SearchHit:
    """A point returned by SimilarityIndex.query(), with its similarity score."""

    key: PointKey
    score: float


@dataclass(frozen=True)
class DatasetMatch:
    """
    One ranked query result.

    value is the metadata value that matched (a description word, a tag, ...),
    useful when explaining why a dataset was returned.
    """

    dataset_id: str
    score: float
    value: str = field(default="", compare=False)


@dataclass(frozen=True)
class TimingsMs:
    """Latency breakdown for one text query."""

    encode_ms: float  # Time to embed the query text
    search_ms: float  # Time to search the index
    total_ms: float  # End-to-end, including result translation
