"""
bench.py - Benchmark nearest-neighbor classification quality and latency.

=============================================================================
WHAT THIS SCRIPT DOES
=============================================================================

    1. Open a store built by build_index.py
    2. Build the index over it (numpy scan, FAISS, or a saved FAISS artifact)
    3. Classify each test row by the label of its nearest neighbor (k = 1)
    4. Report accuracy, per-digit precision/recall, and search latency
    5. Optionally write everything to JSON

=============================================================================
INTERPRETING RESULTS
=============================================================================

    accuracy:
        - Integer percent, truncated. 1-NN on raw MNIST pixels lands
          around 96-97%.

    per-label precision / recall:
        - Low recall on one digit with low precision on another usually
          means the two are confused (4 vs 9, 3 vs 5, 7 vs 1).

    latency:
        - min / max / avg are whole milliseconds (truncated)
        - p50 / p95 / p99 are float milliseconds
        - A flat scan is O(N) per query: latency grows linearly with corpus
          size. Try --workers or --index-kind faiss.

=============================================================================
USAGE
=============================================================================

    uv run python scripts/bench.py --store-path artifacts/mnist.sqlite

    uv run python scripts/bench.py \
        --test mnist_test.csv \
        --store-path artifacts/mnist.sqlite \
        --index-kind faiss \
        --warmup 10 \
        --limit 1000 \
        --json-out results.json

    # Reuse the FAISS artifact written by build_index.py --faiss
    uv run python scripts/bench.py --store-path artifacts/mnist.sqlite --load-faiss

=============================================================================
"""

from __future__ import annotations

import argparse
import itertools
import json
import sys
from pathlib import Path

from pixelvss.bench import evaluate, metrics_for, report_lines, summarize_latency
from pixelvss.config import Settings
from pixelvss.errors import VSSError
from pixelvss.index import INDEX_KINDS, VectorIndex, create_index
from pixelvss.ingest import read_csv_rows
from pixelvss.log import configure_logging, get_logger
from pixelvss.store import SqliteBackend, VectorStore
from pixelvss.vectors import IndexConfig

logger = get_logger("pixelvss.scripts.bench")


def load_index(args: argparse.Namespace, store: VectorStore, config: IndexConfig) -> VectorIndex:
    if args.load_faiss:
        from pixelvss.faiss_index import FaissFlatIndex

        store_path = Path(args.store_path)
        return FaissFlatIndex.load(
            store_path.with_suffix(".faiss"),
            store_path.with_name(store_path.stem + "_meta.json"),
            store,
        )
    return create_index(
        store,
        config,
        kind=args.index_kind,
        block_size=args.block_size,
        workers=args.workers,
    )


def main() -> int:
    settings = Settings.from_env()

    # -------------------------------------------------------------------------
    # Argument parsing
    # -------------------------------------------------------------------------

    p = argparse.ArgumentParser(
        description="Benchmark nearest-neighbor classification quality and latency.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--test", default=settings.test_csv, help="Test CSV (label, p_1..p_D)")
    p.add_argument(
        "--store-path",
        default=settings.store_path or "artifacts/mnist.sqlite",
        help="SQLite store written by build_index.py",
    )
    p.add_argument("--dimension", type=int, default=settings.dimension, help="Pixels per row (D)")
    p.add_argument("--index-kind", choices=INDEX_KINDS, default=settings.index_kind)
    p.add_argument(
        "--load-faiss",
        action="store_true",
        help="Load the FAISS artifact saved by build_index.py --faiss instead of rebuilding",
    )
    p.add_argument(
        "--workers",
        type=int,
        default=settings.workers,
        help="Scan threads (flat) or OpenMP threads (faiss). Unset: 1 scan thread, FAISS default.",
    )
    p.add_argument("--block-size", type=int, default=settings.block_size, help="Rows per scan block")
    p.add_argument("--warmup", type=int, default=10, help="Untimed queries before measuring")
    p.add_argument("--limit", type=int, default=0, help="Only evaluate the first N rows (0 = all)")
    p.add_argument("--has-header", action="store_true", help="CSV starts with a header line")
    p.add_argument("--json-out", default="", help="If provided, write results to this JSON file")
    p.add_argument("--log-level", default=settings.log_level)
    args = p.parse_args()

    configure_logging(args.log_level, structured=settings.structured_logs)

    store_path = Path(args.store_path)
    if not store_path.exists():
        print(f"ERROR: Store not found: {store_path}")
        print("")
        print("Did you forget to build it? Run:")
        print("  uv run python scripts/build_index.py")
        return 1

    config = IndexConfig(dimension=args.dimension)

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    try:
        with VectorStore(config.dimension, SqliteBackend(store_path)) as store, load_index(
            args, store, config
        ) as index:
            rows = read_csv_rows(args.test, config.dimension, args.has_header)
            if args.limit > 0:
                rows = itertools.islice(rows, args.limit)

            report = evaluate(rows, index, warmup=args.warmup)
    except VSSError as exc:
        logger.error("Benchmark failed: %s", exc)
        return 1
    except OSError as exc:
        logger.error("Could not read input: %s", exc)
        return 1

    metrics = metrics_for(report)
    latency = summarize_latency(report)

    # -------------------------------------------------------------------------
    # Print report
    # -------------------------------------------------------------------------

    print("")
    print("=" * 60)
    print("BENCHMARK CONFIGURATION")
    print("=" * 60)
    print(f"Index kind:      {index.kind}")
    print(f"Store:           {store_path}")
    print(f"Corpus size:     {store.count()}")
    print(f"Dimension:       {config.dimension}")
    print(f"Test examples:   {report.total}")
    print(f"Workers:         {args.workers or 'default'}")

    print("")
    print("=" * 60)
    print("OVERALL")
    print("=" * 60)
    for line in report_lines(report):
        print(line)

    print("")
    print("=" * 60)
    print("PER-LABEL METRICS")
    print("=" * 60)
    for label, d in metrics.per_label.items():
        print(
            f"  {label}:  precision={d['precision']:.4f}  recall={d['recall']:.4f}  "
            f"f1={d['f1']:.4f}  tp/fp/fn={int(d['tp'])}/{int(d['fp'])}/{int(d['fn'])}"
        )

    print("")
    print("=" * 60)
    print("SEARCH LATENCY (milliseconds)")
    print("=" * 60)
    print(f"    p50:   {latency['search_p50_ms']:9.3f} ms")
    print(f"    p95:   {latency['search_p95_ms']:9.3f} ms")
    print(f"    p99:   {latency['search_p99_ms']:9.3f} ms")
    print(f"    mean:  {latency['search_mean_ms']:9.3f} ms")

    # -------------------------------------------------------------------------
    # Optional JSON output
    # -------------------------------------------------------------------------

    if args.json_out:
        out = {
            "config": {
                "index_kind": index.kind,
                "store_path": str(store_path),
                "dimension": config.dimension,
                "workers": args.workers,
                "block_size": args.block_size,
            },
            "summary": report.to_dict(),
            "overall": metrics.overall,
            "per_label": {str(k): v for k, v in metrics.per_label.items()},
            "latency": latency,
        }
        with open(args.json_out, "w", encoding="utf-8") as f:
            json.dump(out, f, indent=2)
        print("")
        print(f"Wrote JSON report: {args.json_out}")

    print("")
    return 0


if __name__ == "__main__":
    sys.exit(main())
