"""
query.py - Inspect the nearest neighbors of one test image.

=============================================================================
WHAT THIS SCRIPT DOES
=============================================================================

Picks row N of a test CSV, searches the store for its k nearest neighbors and
prints them, closest first. The prediction is the label of neighbor #1; the
remaining neighbors show how close the runner-up labels were.

=============================================================================
DEBUGGING WITH THIS SCRIPT
=============================================================================

Misclassified image:
--------------------
    $ uv run python scripts/query.py 247 --k 8
    expected: 4   predicted: 6

    Look at the neighbors:
    - Is the distance to #1 much smaller than to the first correct label?
    - Are several labels mixed among the top 8? The image is ambiguous.

Sanity check:
-------------
    A training image queried against its own store comes back with
    distance 0.000000 at rank 1.

=============================================================================
USAGE
=============================================================================

    uv run python scripts/query.py 0
    uv run python scripts/query.py 247 --k 8 --test mnist_test.csv

=============================================================================
"""

from __future__ import annotations

import argparse
import itertools
import sys
from pathlib import Path

import numpy as np

from pixelvss.config import Settings
from pixelvss.errors import VSSError
from pixelvss.index import INDEX_KINDS, create_index
from pixelvss.ingest import prepare_row, read_csv_rows
from pixelvss.log import configure_logging, get_logger
from pixelvss.store import SqliteBackend, VectorStore
from pixelvss.vectors import IndexConfig

logger = get_logger("pixelvss.scripts.query")


def main() -> int:
    settings = Settings.from_env()

    p = argparse.ArgumentParser(
        description="Show the nearest stored neighbors of one test image.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("row", type=int, help="0-based row of the test CSV")
    p.add_argument("--test", default=settings.test_csv, help="Test CSV (label, p_1..p_D)")
    p.add_argument(
        "--store-path",
        default=settings.store_path or "artifacts/mnist.sqlite",
        help="SQLite store written by build_index.py",
    )
    p.add_argument("--dimension", type=int, default=settings.dimension, help="Pixels per row (D)")
    p.add_argument("--index-kind", choices=INDEX_KINDS, default=settings.index_kind)
    p.add_argument("--k", type=int, default=5, help="Number of neighbors to show")
    p.add_argument("--has-header", action="store_true", help="CSV starts with a header line")
    p.add_argument("--log-level", default="WARNING")
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

    try:
        rows = read_csv_rows(args.test, config.dimension, args.has_header)
        row = next(itertools.islice(rows, args.row, None), None)
        if row is None:
            print(f"ERROR: {args.test} has no row {args.row}")
            return 1
        expected, query = prepare_row(row, config.dimension, args.row)

        with VectorStore(config.dimension, SqliteBackend(store_path)) as store:
            with create_index(store, config, kind=args.index_kind) as index:
                neighbors = index.search(query, args.k)
    except VSSError as exc:
        logger.error("Query failed: %s", exc)
        return 1
    except OSError as exc:
        logger.error("Could not read input: %s", exc)
        return 1

    predicted = neighbors[0].neighbor_label

    print("")
    print("=" * 60)
    print("CLASSIFICATION RESULT")
    print("=" * 60)
    print(f"row:        {args.row}")
    print(f"expected:   {expected}")
    print(f"predicted:  {predicted}   ({'correct' if predicted == expected else 'WRONG'})")
    print(f"ink pixels: {int(np.count_nonzero(query))} of {config.dimension}")

    print("")
    print("=" * 60)
    print(f"TOP {len(neighbors)} NEIGHBORS")
    print("=" * 60)
    for n in neighbors:
        marker = "→" if n.neighbor_label == expected else " "
        print(
            f"  {marker} [{n.rank}] id={n.neighbor_id:<6}  label={n.neighbor_label}  "
            f"distance={n.distance:.6f}  (l2={np.sqrt(n.distance):.4f})"
        )

    # -------------------------------------------------------------------------
    # Label counts among the neighbors
    # -------------------------------------------------------------------------

    print("")
    print("-" * 60)
    print("Labels among the neighbors:")
    print("-" * 60)
    by_label: dict[int, int] = {}
    for n in neighbors:
        by_label[n.neighbor_label] = by_label.get(n.neighbor_label, 0) + 1
    for label, votes in sorted(by_label.items(), key=lambda x: x[1], reverse=True):
        marker = "→" if label == predicted else " "
        print(f"  {marker} {label}  {votes}/{len(neighbors)}")

    print("")
    return 0


if __name__ == "__main__":
    sys.exit(main())
