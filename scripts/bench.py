"""
bench.py - Measure recall and latency of the cosine LSH index.

=============================================================================
WHAT THIS SCRIPT DOES
=============================================================================

The LSH forest trades recall for speed. This script tells you how much
recall you are giving up for the current settings:

    1. Load metadata (from the database or a JSONL file)
    2. Build the LSH index and an exact reference index over the SAME points
    3. Query both with a sample of the indexed point vectors (or with the
       texts in --queries)
    4. Report mean recall@k and search latency percentiles for both

=============================================================================
INTERPRETING RESULTS
=============================================================================

    recall@k:
        Fraction of the true top-k that the LSH index returned.
        Low recall? Raise METAVSS_LSH_TABLE_COUNT or
        METAVSS_LSH_CANDIDATE_MULTIPLIER, or lower METAVSS_LSH_HASHES_PER_TABLE.

    search p95/p99:
        If LSH is not faster than the exact scan, the catalog is small enough
        that the exact backend is the better choice.

=============================================================================
USAGE
=============================================================================

    uv run python scripts/bench.py --k 10 --samples 500
    uv run python scripts/bench.py --jsonl data/metadata.jsonl --json-out bench.json

=============================================================================
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from typing import List, Optional

import numpy as np

from metavss.bench import build_comparison_indexes, mean_recall, recall_at_k, summarize_latency
from metavss.config import load_settings
from metavss.embeddings import open_embedding_source
from metavss.errors import EmbeddingNotFound, MetaVSSError
from metavss.log_config import configure_logging
from metavss.store import MetadataStore, read_jsonl_metadata
from metavss.types import TimingsMs, split_words


def _timed_query(index, vec, k):
    t0 = time.perf_counter_ns()
    hits = index.query(vec, k)
    t1 = time.perf_counter_ns()
    ms = (t1 - t0) / 1e6
    return hits, TimingsMs(encode_ms=0.0, search_ms=ms, total_ms=ms)


def run(args: argparse.Namespace) -> None:
    overrides = {}
    if args.database:
        overrides["DATABASE_PATH"] = args.database
    settings = load_settings(**overrides)
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    config = settings.index_config()
    source = open_embedding_source(settings)

    if args.jsonl:
        records = read_jsonl_metadata(args.jsonl)
    else:
        with MetadataStore(settings.DATABASE_PATH) as store:
            with store.iter_metadata() as cursor:
                records = list(cursor)
    print(f"Loaded {len(records)} metadata records")

    lsh_index, exact_index, vectors = build_comparison_indexes(records, source, config)
    with lsh_index, exact_index:
        print(f"Indexed {len(lsh_index)} points")

        # Queries: the given texts, or a random sample of indexed vectors
        if args.queries:
            queries = []
            for text in args.queries:
                try:
                    queries.append(source.multi_word_embedding_vector(split_words(text)))
                except EmbeddingNotFound as exc:
                    print(f"  skipping query {text!r}: {exc}")
        else:
            rng = np.random.default_rng(args.seed)
            n = min(args.samples, len(vectors))
            picks = rng.choice(len(vectors), size=n, replace=False) if n else []
            queries = [vectors[int(i)] for i in picks]

        recalls: List[float] = []
        lsh_timings: List[TimingsMs] = []
        exact_timings: List[TimingsMs] = []
        for vec in queries:
            approx, t_lsh = _timed_query(lsh_index, vec, args.k)
            exact, t_exact = _timed_query(exact_index, vec, args.k)
            recalls.append(recall_at_k(approx, exact))
            lsh_timings.append(t_lsh)
            exact_timings.append(t_exact)

        lsh_latency = summarize_latency(lsh_timings)
        exact_latency = summarize_latency(exact_timings)
        recall = mean_recall(recalls)

        print("")
        print("=" * 60)
        print("BENCHMARK RESULTS")
        print("=" * 60)
        print(f"queries:        {len(queries)}")
        print(f"k:              {args.k}")
        print(f"LSH tables:     {config.table_count} x {config.hashes_per_table} bits")
        print(f"candidate mult: {config.candidate_multiplier}")
        print(f"recall@{args.k}:      {recall:.4f}")
        print("")
        print("Search latency (ms):      p50       p95       p99")
        for name, lat in (("cosine-lsh", lsh_latency), ("exact-ip", exact_latency)):
            print(
                f"  {name:<20}  {lat['search_p50_ms']:>8.3f}  "
                f"{lat['search_p95_ms']:>8.3f}  {lat['search_p99_ms']:>8.3f}"
            )
        print("")

        if args.json_out:
            with open(args.json_out, "w", encoding="utf-8") as f:
                json.dump(
                    {
                        "config": {
                            "dimension": config.dimension,
                            "table_count": config.table_count,
                            "hashes_per_table": config.hashes_per_table,
                            "candidate_multiplier": config.candidate_multiplier,
                            "seed": config.seed,
                        },
                        "k": args.k,
                        "queries": len(queries),
                        "points": len(lsh_index),
                        "recall_at_k": recall,
                        "latency": {"cosine-lsh": lsh_latency, "exact-ip": exact_latency},
                    },
                    f,
                    indent=2,
                )
            print(f"Wrote {args.json_out}")


def main(argv: Optional[list] = None) -> int:
    p = argparse.ArgumentParser(
        description="Benchmark recall and latency of the cosine LSH index.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--jsonl", default="", help="Read metadata from JSONL instead of the database")
    p.add_argument(
        "--database",
        default="",
        help="SQLite database path (overrides METAVSS_DATABASE_PATH)",
    )
    p.add_argument("--k", type=int, default=10, help="Number of neighbors per query")
    p.add_argument(
        "--samples",
        type=int,
        default=200,
        help="Number of indexed vectors to reuse as queries (ignored with --queries)",
    )
    p.add_argument("--queries", nargs="*", default=[], help="Query texts to use instead")
    p.add_argument("--seed", type=int, default=0, help="Seed for query sampling")
    p.add_argument("--json-out", default="", help="If provided, write results to this JSON file")
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
