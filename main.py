"""
main.py - End-to-end run: load the training set, classify the test set.

=============================================================================
WHAT THIS SCRIPT DOES
=============================================================================

    1. Open a vector store (in-memory by default, SQLite with --store-path)
    2. Build an exact index over it (numpy scan, or FAISS with --index-kind)
    3. Ingest mnist_train.csv (60000 labeled 28x28 images)
    4. Classify every row of mnist_test.csv by its nearest stored neighbor
    5. Print one line per test image and a summary:

        Test image 0: expected = 7, found = 7 in 12ms
        ...
        Number of Correct guess = 9691
        Number of Wrong guess = 309
        Accuracy = 96%
        Vector Search Min Duration = 9ms
        Vector Search Max Duration = 31ms
        Vector Search Average Duration = 12ms

If the SQLite store already holds records, ingestion is skipped and the
existing corpus is queried.

=============================================================================
USAGE
=============================================================================

    uv run python main.py

    uv run python main.py \
        --train mnist_train.csv \
        --test mnist_test.csv \
        --store-path artifacts/mnist.sqlite \
        --index-kind flat \
        --workers 4

=============================================================================
"""

from __future__ import annotations

import argparse
import sys

from pixelvss.bench import evaluate, outcome_line, report_lines
from pixelvss.config import Settings
from pixelvss.errors import VSSError
from pixelvss.index import INDEX_KINDS, create_index
from pixelvss.ingest import ingest, read_csv_rows
from pixelvss.log import configure_logging, get_logger
from pixelvss.store import open_store
from pixelvss.vectors import IndexConfig

logger = get_logger("pixelvss.main")


def parse_args(settings: Settings) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Ingest a labeled pixel CSV and classify a test CSV by nearest neighbor.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--train", default=settings.train_csv, help="Training CSV (label, p_1..p_D)")
    p.add_argument("--test", default=settings.test_csv, help="Test CSV (label, p_1..p_D)")
    p.add_argument("--dimension", type=int, default=settings.dimension, help="Pixels per row (D)")
    p.add_argument(
        "--store-path",
        default=settings.store_path,
        help="SQLite file for the corpus. Omit for an in-memory store.",
    )
    p.add_argument("--index-kind", choices=INDEX_KINDS, default=settings.index_kind)
    p.add_argument(
        "--workers",
        type=int,
        default=settings.workers,
        help="Scan threads (flat) or OpenMP threads (faiss). Unset: 1 scan thread, FAISS default.",
    )
    p.add_argument("--block-size", type=int, default=settings.block_size, help="Rows per scan block")
    p.add_argument("--has-header", action="store_true", help="CSV files start with a header line")
    p.add_argument("--quiet", action="store_true", help="Skip the per-image lines")
    p.add_argument("--log-level", default=settings.log_level)
    p.add_argument("--structured-logs", action="store_true", default=settings.structured_logs)
    return p.parse_args()


def main() -> int:
    settings = Settings.from_env()
    args = parse_args(settings)
    configure_logging(args.log_level, structured=args.structured_logs)

    config = IndexConfig(dimension=args.dimension, capacity_hint=settings.capacity_hint)

    try:
        with open_store(config.dimension, args.store_path, config.capacity_hint) as store, create_index(
            store,
            config,
            kind=args.index_kind,
            block_size=args.block_size,
            workers=args.workers,
        ) as index:
            # -----------------------------------------------------------------
            # Ingest
            # -----------------------------------------------------------------
            if store.count() > 0:
                logger.warning("Store already holds %d records, skipping ingestion.", store.count())
            else:
                stats = ingest(read_csv_rows(args.train, config.dimension, args.has_header), index)
                print(f"All {stats.count} records have been stored.")

            # -----------------------------------------------------------------
            # Query
            # -----------------------------------------------------------------
            on_result = None if args.quiet else (lambda o: print(outcome_line(o)))
            report = evaluate(
                read_csv_rows(args.test, config.dimension, args.has_header),
                index,
                on_result=on_result,
                keep_outcomes=False,
            )
            for line in report_lines(report):
                print(line)
    except VSSError as exc:
        logger.error("Run failed: %s", exc)
        return 1
    except OSError as exc:
        logger.error("Could not read input: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
