"""
build_index.py - Build the metadata (and attribute) indexes and report on them.

=============================================================================
WHAT THIS SCRIPT DOES
=============================================================================

    1. Load settings (METAVSS_EMBEDDING_MODEL_PATH is required)
    2. Optionally import metadata records from a JSONL file into the database
    3. Scan every metadata record, embed it, and build the cosine LSH index
    4. Build the exact attribute index from stored attribute vectors
    5. Print a summary, and optionally run one query against the result

Indexes live in memory only: building from the database is the way to get
one. Use this script to check that a database and a model produce a sensible
index before wiring them into a service.

=============================================================================
USAGE
=============================================================================

    export METAVSS_EMBEDDING_MODEL_PATH=models/cc.en.300.vec

    # Build from the configured database
    uv run python scripts/build_index.py

    # Import a JSONL catalog first, then build and try a query
    uv run python scripts/build_index.py \
        --import-jsonl data/metadata.jsonl \
        --database metavss.db \
        --query "ocean temperature"

=============================================================================
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional

from metavss.build import build_attribute_index, build_metadata_index
from metavss.config import load_settings
from metavss.embeddings import open_embedding_source
from metavss.errors import MetaVSSError
from metavss.log_config import configure_logging
from metavss.service import QueryService
from metavss.store import MetadataStore, read_jsonl_metadata


def run(args: argparse.Namespace) -> None:
    overrides = {}
    if args.database:
        overrides["DATABASE_PATH"] = args.database
    settings = load_settings(**overrides)
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    config = settings.index_config()

    print(f"Loading embedding source: {settings.EMBEDDING_MODEL_PATH}")
    source = open_embedding_source(settings)

    with MetadataStore(settings.DATABASE_PATH) as store:
        store.create_schema()

        if args.import_jsonl:
            records = read_jsonl_metadata(args.import_jsonl)
            written = store.add_metadata(records)
            print(f"Imported {written} metadata records from {args.import_jsonl}")

        record_count = store.count_metadata()
        print(f"Building metadata index over {record_count} records...")
        metadata_index = build_metadata_index(store.iter_metadata(), source, config)

        with metadata_index:
            print("Building attribute index...")
            with build_attribute_index(store.attribute_vector_rows(), config) as attribute_index:
                attribute_points = len(attribute_index)

            print("")
            print("=" * 60)
            print("BUILD COMPLETE")
            print("=" * 60)
            print(f"Database:          {settings.DATABASE_PATH}")
            print(f"Embedding source:  {settings.EMBEDDING_MODEL_PATH}")
            print(f"Dimension:         {config.dimension}")
            print(f"LSH tables:        {config.table_count} x {config.hashes_per_table} bits")
            print(f"Records:           {record_count}")
            print(f"Metadata points:   {len(metadata_index)}")
            print(f"Attribute points:  {attribute_points}")
            print("")

            if args.query:
                _print_sample(QueryService(metadata_index), source, args.query, args.k)


def _print_sample(svc: QueryService, source, query: str, k: int) -> None:
    matches, timings = svc.query_text_with_timings(query, source, k, distinct=True)
    print(f'Top {k} datasets for "{query}" ({timings.total_ms:.2f} ms):')
    if not matches:
        print("  (no matches)")
    for i, m in enumerate(matches):
        print(f'  [{i + 1}] score={m.score:.4f}  dataset={m.dataset_id}  matched="{m.value}"')
    print("")


def main(argv: Optional[list] = None) -> int:
    p = argparse.ArgumentParser(
        description="Build metadata similarity indexes and report on them.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument(
        "--database",
        default="",
        help="SQLite database path (overrides METAVSS_DATABASE_PATH)",
    )
    p.add_argument(
        "--import-jsonl",
        default="",
        help="JSONL file of metadata records to import before building",
    )
    p.add_argument(
        "--query",
        default="",
        help="If provided, run this text query against the built index",
    )
    p.add_argument("--k", type=int, default=10, help="Number of results for --query")
    args = p.parse_args(argv)

    try:
        run(args)
    except MetaVSSError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
