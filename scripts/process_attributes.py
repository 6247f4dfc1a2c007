"""
process_attributes.py - Embed dataset attribute names and store the vectors.

=============================================================================
WHAT THIS SCRIPT DOES
=============================================================================

Offline step that feeds the exact attribute index. For every directory under
--datasets-dir it reads attribute.json:

    datasets/
    ├── ab12-cd34/
    │   └── attribute.json     {"AttributeName": "sea_surface_temp", "DatasetID": "ab12-cd34"}
    └── ef56-gh78/
        └── attribute.json

embeds the attribute name, and stores the encoded vector (float32,
little-endian) in the attribute_vectors table. Datasets without an
attribute.json are skipped with a warning; attribute names with no embedding
are skipped and logged.

With --from-metadata the names come from the attributes column of the
metadata table instead (one vector per name, same skip policy).

=============================================================================
USAGE
=============================================================================

    export METAVSS_EMBEDDING_MODEL_PATH=models/cc.en.300.vec
    uv run python scripts/process_attributes.py --datasets-dir datasets
    uv run python scripts/process_attributes.py --from-metadata

=============================================================================
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional

from metavss.build import process_attributes, process_metadata_attributes
from metavss.config import load_settings
from metavss.embeddings import open_embedding_source
from metavss.errors import MetaVSSError
from metavss.log_config import configure_logging
from metavss.store import MetadataStore


def run(args: argparse.Namespace) -> None:
    overrides = {}
    if args.database:
        overrides["DATABASE_PATH"] = args.database
    settings = load_settings(**overrides)
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    source = open_embedding_source(settings)

    with MetadataStore(settings.DATABASE_PATH) as store:
        store.create_schema()
        if args.from_metadata:
            stored = process_metadata_attributes(
                store.iter_metadata(), store, source, precision=args.precision
            )
        else:
            stored = process_attributes(
                args.datasets_dir, store, source, precision=args.precision
            )

    print(f"Stored {stored} attribute vectors in {settings.DATABASE_PATH}")


def main(argv: Optional[list] = None) -> int:
    p = argparse.ArgumentParser(
        description="Embed attribute names and store them for the attribute index.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument(
        "--datasets-dir",
        default="datasets",
        help="Directory with one sub-directory (containing attribute.json) per dataset",
    )
    p.add_argument(
        "--from-metadata",
        action="store_true",
        help="Embed the attributes column of the metadata table instead of attribute.json files",
    )
    p.add_argument(
        "--database",
        default="",
        help="SQLite database path (overrides METAVSS_DATABASE_PATH)",
    )
    p.add_argument(
        "--precision",
        choices=["float32", "float64"],
        default="float32",
        help="Element type of stored vectors (the attribute index reads float32)",
    )
    args = p.parse_args(argv)

    try:
        run(args)
    except MetaVSSError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
