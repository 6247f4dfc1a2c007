"""
query.py - Find the datasets whose metadata is closest to a text query.

=============================================================================
WHAT THIS SCRIPT DOES
=============================================================================

Debugging and exploration tool. It builds the requested index from the
database (indexes are not stored on disk), embeds the query text, and prints
the ranked matches together with the metadata value that matched:

    TOP 5 MATCHES
      [1] score=0.9123  dataset=ab12-cd34  matched="ocean temperature"
      [2] score=0.8011  dataset=ab12-cd34  matched="ocean"
      [3] score=0.7420  dataset=ef56-gh78  matched="sea"
      ...

The "matched" value tells you WHY a dataset was returned: its name, one word
of its description, a category, a tag, or (for --index attributes) an
attribute name.

=============================================================================
USAGE
=============================================================================

    uv run python scripts/query.py "ocean temperature"

    # One line per dataset instead of one per matching value
    uv run python scripts/query.py "ocean temperature" --distinct

    # Search attribute names (exact index)
    uv run python scripts/query.py "salinity" --index attributes --k 20

=============================================================================
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional

from metavss.aggregate import attribute_vector
from metavss.build import build_attribute_index, build_metadata_index
from metavss.config import load_settings
from metavss.embeddings import open_embedding_source
from metavss.errors import EmbeddingNotFound, MetaVSSError
from metavss.log_config import configure_logging
from metavss.service import QueryService
from metavss.store import MetadataStore


def run(args: argparse.Namespace) -> None:
    overrides = {}
    if args.database:
        overrides["DATABASE_PATH"] = args.database
    settings = load_settings(**overrides)
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    config = settings.index_config()
    source = open_embedding_source(settings)

    with MetadataStore(settings.DATABASE_PATH) as store:
        if args.index == "attributes":
            index = build_attribute_index(store.attribute_vector_rows(), config)
        else:
            index = build_metadata_index(store.iter_metadata(), source, config)

    with index:
        svc = QueryService(index)
        if args.index == "attributes":
            # Attribute vectors are stored unit length; embed the query the same way
            try:
                vec = attribute_vector(source, args.query)
            except EmbeddingNotFound:
                matches = []
            else:
                matches = svc.query_datasets(vec, args.k) if args.distinct else svc.query(vec, args.k)
            encode_ms = search_ms = None
        else:
            matches, timings = svc.query_text_with_timings(
                args.query, source, args.k, distinct=args.distinct
            )
            encode_ms, search_ms = timings.encode_ms, timings.search_ms

        print("")
        print("=" * 60)
        print(f"TOP {len(matches)} MATCHES")
        print("=" * 60)
        print(f"query:   {args.query}")
        print(f"index:   {args.index} ({len(index)} points, {index.backend.value})")
        if encode_ms is not None:
            print(f"timing:  encode={encode_ms:.2f}ms  search={search_ms:.2f}ms")
        print("")

        if not matches:
            print("  No matches. Either no query word has an embedding,")
            print("  or the index is empty (did you run build_index.py --import-jsonl?).")
        for i, m in enumerate(matches):
            print(f'  [{i + 1}] score={m.score:.4f}  dataset={m.dataset_id}  matched="{m.value}"')
        print("")


def main(argv: Optional[list] = None) -> int:
    p = argparse.ArgumentParser(
        description="Query the metadata or attribute index with free text.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("query", help="Query text (e.g., 'ocean temperature')")
    p.add_argument(
        "--index",
        choices=["metadata", "attributes"],
        default="metadata",
        help="'metadata' (cosine LSH over names/descriptions/categories/tags) "
        "or 'attributes' (exact inner product over attribute names)",
    )
    p.add_argument("--k", type=int, default=10, help="Number of results")
    p.add_argument(
        "--distinct",
        action="store_true",
        help="Return each dataset at most once (its best matching value)",
    )
    p.add_argument(
        "--database",
        default="",
        help="SQLite database path (overrides METAVSS_DATABASE_PATH)",
    )
    args = p.parse_args(argv)

    if args.k <= 0:
        p.error("--k must be > 0")

    try:
        run(args)
    except MetaVSSError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
