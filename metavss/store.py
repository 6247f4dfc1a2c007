"""
store.py - Metadata sources: a SQLite store and a JSONL reader.

The store is the owner of dataset metadata; metavss only needs two reads
from it:

    1. A forward-only scan of every Metadata record (MetadataCursor).
    2. The stored attribute vectors: (dataset_id, attribute_name, emb) rows.

and one write, used by the attribute processing step:

    3. replace_attribute_vectors(rows)   <- one transaction per run

Tables:

    metadata(dataset_id TEXT PRIMARY KEY, name, description,
             categories, tags, attributes)      <- JSON arrays of strings
    attribute_vectors(dataset_id, attribute_name, emb BLOB)

Every sqlite3 / JSON failure is re-raised as MetadataSourceError so that a
build can tell "the store is broken" from "a word has no embedding".
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional

import structlog

from metavss.errors import MetadataSourceError
from metavss.types import Metadata

logger = structlog.get_logger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS metadata (
        dataset_id TEXT PRIMARY KEY,
        name TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        categories TEXT NOT NULL DEFAULT '[]',
        tags TEXT NOT NULL DEFAULT '[]',
        attributes TEXT NOT NULL DEFAULT '[]'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attribute_vectors (
        dataset_id TEXT NOT NULL,
        attribute_name TEXT NOT NULL,
        emb BLOB NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_attribute_vectors_dataset ON attribute_vectors(dataset_id)",
)


@dataclass(frozen=True)
class AttributeVectorRow:
    """One stored attribute embedding, still in its encoded form."""

    dataset_id: str
    attribute_name: str
    emb: bytes


def _str_tuple(value: Any, field: str, dataset_id: str) -> tuple:
    if value is None:
        return ()
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise MetadataSourceError(
                f"dataset {dataset_id}: {field} is not a JSON array"
            ) from exc
    if not isinstance(value, list):
        raise MetadataSourceError(f"dataset {dataset_id}: {field} must be a list")
    return tuple(str(v) for v in value)


def metadata_from_dict(obj: Dict[str, Any]) -> Metadata:
    """Build a Metadata record from a JSON object or a database row mapping."""
    try:
        dataset_id = str(obj["dataset_id"])
    except KeyError:
        raise MetadataSourceError("metadata record has no dataset_id") from None
    return Metadata(
        dataset_id=dataset_id,
        name=str(obj.get("name") or ""),
        description=str(obj.get("description") or ""),
        categories=_str_tuple(obj.get("categories"), "categories", dataset_id),
        tags=_str_tuple(obj.get("tags"), "tags", dataset_id),
        attributes=_str_tuple(obj.get("attributes"), "attributes", dataset_id),
    )


def read_jsonl_metadata(path: str) -> List[Metadata]:
    """
    Read metadata records from a JSONL file, one object per line:

        {"dataset_id": "abcd-1234", "name": "...", "description": "...",
         "categories": ["climate"], "tags": ["ocean"], "attributes": ["temp_c"]}

    Blank lines are skipped.
    """
    out: List[Metadata] = []
    try:
        with open(path, "r", encoding="utf-8") as f:
            for line_no, raw in enumerate(f, start=1):
                line = raw.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError as exc:
                    raise MetadataSourceError(f"{path}:{line_no}: {exc}") from exc
                out.append(metadata_from_dict(obj))
    except OSError as exc:
        raise MetadataSourceError(f"cannot read {path}: {exc}") from exc
    return out


class MetadataCursor:
    """
    Forward-only cursor over the metadata table.

    Usable as a plain iterator or through the explicit protocol:

        with store.iter_metadata() as cursor:
            while cursor.has_next():
                metadata = cursor.next()
    """

    def __init__(self, cursor: sqlite3.Cursor) -> None:
        self._cursor: Optional[sqlite3.Cursor] = cursor
        self._row: Optional[sqlite3.Row] = None
        self._advance()

    def _advance(self) -> None:
        if self._cursor is None:
            self._row = None
            return
        try:
            self._row = self._cursor.fetchone()
        except sqlite3.Error as exc:
            raise MetadataSourceError(f"metadata scan failed: {exc}") from exc

    def has_next(self) -> bool:
        return self._row is not None

    def next(self) -> Metadata:
        if self._row is None:
            raise StopIteration
        row = self._row
        self._advance()
        return metadata_from_dict(dict(row))

    def close(self) -> None:
        if self._cursor is not None:
            try:
                self._cursor.close()
            except sqlite3.Error as exc:
                raise MetadataSourceError(f"cannot close metadata cursor: {exc}") from exc
            finally:
                self._cursor = None
                self._row = None

    def __iter__(self) -> "MetadataCursor":
        return self

    def __next__(self) -> Metadata:
        return self.next()

    def __enter__(self) -> "MetadataCursor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class MetadataStore:
    """SQLite-backed metadata and attribute-vector store."""

    def __init__(self, path: str) -> None:
        self.path = path
        try:
            self._conn = sqlite3.connect(path)
        except sqlite3.Error as exc:
            raise MetadataSourceError(f"cannot open database {path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row

    def create_schema(self) -> None:
        try:
            with self._conn:
                for stmt in SCHEMA:
                    self._conn.execute(stmt)
        except sqlite3.Error as exc:
            raise MetadataSourceError(f"cannot create schema: {exc}") from exc

    def add_metadata(self, records: Iterable[Metadata]) -> int:
        """Insert or replace metadata records. Returns the number written."""
        rows = [
            (
                m.dataset_id,
                m.name,
                m.description,
                json.dumps(list(m.categories)),
                json.dumps(list(m.tags)),
                json.dumps(list(m.attributes)),
            )
            for m in records
        ]
        try:
            with self._conn:
                self._conn.executemany(
                    """
                    INSERT OR REPLACE INTO metadata
                        (dataset_id, name, description, categories, tags, attributes)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        except sqlite3.Error as exc:
            raise MetadataSourceError(f"cannot write metadata: {exc}") from exc
        return len(rows)

    def count_metadata(self) -> int:
        try:
            return int(self._conn.execute("SELECT COUNT(*) FROM metadata").fetchone()[0])
        except sqlite3.Error as exc:
            raise MetadataSourceError(f"cannot count metadata: {exc}") from exc

    def iter_metadata(self) -> MetadataCursor:
        try:
            cur = self._conn.execute(
                """
                SELECT dataset_id, name, description, categories, tags, attributes
                FROM metadata ORDER BY dataset_id
                """
            )
        except sqlite3.Error as exc:
            raise MetadataSourceError(f"metadata query failed: {exc}") from exc
        return MetadataCursor(cur)

    def replace_attribute_vectors(self, rows: Iterable[AttributeVectorRow]) -> int:
        """
        Store attribute vectors in one transaction.

        Existing rows of every dataset present in `rows` are deleted first, so
        re-processing a dataset replaces its vectors instead of duplicating
        them. Either every row is written or none is.

        Returns:
            Number of rows written
        """
        rows = list(rows)
        dataset_ids = sorted({r.dataset_id for r in rows})
        try:
            with self._conn:
                self._conn.executemany(
                    "DELETE FROM attribute_vectors WHERE dataset_id = ?",
                    [(d,) for d in dataset_ids],
                )
                self._conn.executemany(
                    "INSERT INTO attribute_vectors (dataset_id, attribute_name, emb) VALUES (?, ?, ?)",
                    [(r.dataset_id, r.attribute_name, r.emb) for r in rows],
                )
        except sqlite3.Error as exc:
            raise MetadataSourceError(f"cannot store attribute vectors: {exc}") from exc
        return len(rows)

    def attribute_vector_rows(self) -> Iterator[AttributeVectorRow]:
        """Yield every stored attribute vector, in insertion order."""
        try:
            cur = self._conn.execute(
                "SELECT dataset_id, attribute_name, emb FROM attribute_vectors ORDER BY rowid"
            )
            try:
                for row in cur:
                    yield AttributeVectorRow(
                        dataset_id=str(row["dataset_id"]),
                        attribute_name=str(row["attribute_name"]),
                        emb=bytes(row["emb"]),
                    )
            finally:
                cur.close()
        except sqlite3.Error as exc:
            raise MetadataSourceError(f"attribute vector scan failed: {exc}") from exc

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "MetadataStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
