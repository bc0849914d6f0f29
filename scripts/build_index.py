"""
build_index.py - Offline script to load a labeled CSV into a SQLite store.

=============================================================================
WHAT THIS SCRIPT DOES
=============================================================================

    1. Open (or create) the SQLite vector store
    2. Read and validate every CSV row (the whole file is rejected if one row
       is malformed; the error names the row)
    3. Normalize pixels to [0, 1] and insert the records
    4. Optionally mirror the corpus into a FAISS IndexFlatL2 and save it

The output artifacts are:

    artifacts/
    ├── mnist.sqlite          # The corpus: one row per image
    ├── mnist.faiss           # (--faiss) IndexFlatL2 over the same vectors
    └── mnist_meta.json       # (--faiss) dimension, metric, vector count

The store is append-only. Running the script twice against the same file
appends the CSV twice; use --fresh to start over.

=============================================================================
USAGE
=============================================================================

    uv run python scripts/build_index.py

    uv run python scripts/build_index.py \
        --train mnist_train.csv \
        --store-path artifacts/mnist.sqlite \
        --faiss

=============================================================================
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from pixelvss.config import Settings
from pixelvss.errors import VSSError
from pixelvss.index import create_index
from pixelvss.ingest import ingest, read_csv_rows
from pixelvss.log import configure_logging, get_logger
from pixelvss.store import SqliteBackend, VectorStore
from pixelvss.vectors import IndexConfig

logger = get_logger("pixelvss.scripts.build_index")


def main() -> int:
    settings = Settings.from_env()

    p = argparse.ArgumentParser(
        description="Load a labeled pixel CSV into a SQLite vector store.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--train", default=settings.train_csv, help="CSV with label, p_1..p_D rows")
    p.add_argument(
        "--store-path",
        default=settings.store_path or "artifacts/mnist.sqlite",
        help="SQLite file to write",
    )
    p.add_argument("--dimension", type=int, default=settings.dimension, help="Pixels per row (D)")
    p.add_argument("--has-header", action="store_true", help="CSV starts with a header line")
    p.add_argument("--fresh", action="store_true", help="Delete an existing store file first")
    p.add_argument(
        "--faiss",
        action="store_true",
        help="Also save a FAISS IndexFlatL2 next to the store",
    )
    p.add_argument("--log-level", default=settings.log_level)
    args = p.parse_args()

    configure_logging(args.log_level, structured=settings.structured_logs)

    store_path = Path(args.store_path)
    if args.fresh and store_path.exists():
        store_path.unlink()
        print(f"Removed existing store: {store_path}")

    config = IndexConfig(dimension=args.dimension)

    try:
        with VectorStore(config.dimension, SqliteBackend(store_path)) as store:
            print(f"Store {store_path} holds {store.count()} records before ingestion")

            index = create_index(store, config, kind="faiss" if args.faiss else "flat")
            stats = ingest(read_csv_rows(args.train, config.dimension, args.has_header), index)
            print(f"Stored {stats.count} records (ids {stats.first_id}..{stats.last_id}) "
                  f"in {stats.elapsed_ms / 1000:.1f}s")

            if args.faiss:
                index_path = store_path.with_suffix(".faiss")
                meta_path = store_path.with_name(store_path.stem + "_meta.json")
                index.save(str(index_path), str(meta_path))  # type: ignore[attr-defined]
                print(f"Saved FAISS index: {index_path}")
                print(f"Saved metadata:    {meta_path}")
    except VSSError as exc:
        logger.error("Build failed: %s", exc)
        return 1
    except OSError as exc:
        logger.error("Could not read input: %s", exc)
        return 1

    print("")
    print("Done! Run the benchmark with:")
    print(f"  uv run python scripts/bench.py --store-path {store_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
