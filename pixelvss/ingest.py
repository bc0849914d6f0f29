"""
ingest.py - Turn raw labeled pixel rows into stored VectorRecords.

=============================================================================
INPUT FORMAT
=============================================================================

One row per image, no header by default:

    label, p_1, p_2, ..., p_D

label and every p_i are non-negative integers, p_i in 0..255. For MNIST,
D = 784 (28 x 28 pixels) and label is the digit 0-9. Example (D = 4):

    7,0,0,128,255

=============================================================================
ALL OR NOTHING
=============================================================================

ingest() validates and normalizes every row before the first insert. If any
row is malformed, InvalidArgument is raised with that row's 0-based index and
the store is left untouched, never holding a silently incomplete corpus. If
the store itself fails mid-batch, the records of this call are rolled back
before the error propagates.

=============================================================================
"""

from __future__ import annotations

import csv
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence, Tuple, Union

import numpy as np

from pixelvss.errors import InvalidArgument
from pixelvss.index import VectorIndex
from pixelvss.log import get_logger
from pixelvss.vectors import normalize_pixels

logger = get_logger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class RawRow:
    """
    A single labeled row as read from CSV, before normalization.
    """

    label: int  # Ground-truth class (e.g., digit 7)
    pixels: Sequence[int]  # D raw intensities, 0..255


@dataclass(frozen=True)
class IngestStats:
    """What one ingest() call stored."""

    count: int  # Records inserted
    first_id: int  # Id of the first inserted record (-1 if none)
    last_id: int  # Id of the last inserted record (-1 if none)
    elapsed_ms: float  # Wall-clock time for validation + inserts


RowLike = Union[RawRow, Tuple[int, Sequence[int]]]


# =============================================================================
# PARSING
# =============================================================================


def _parse_int(field: str, what: str, row_index: int) -> int:
    try:
        return int(field)
    except ValueError:
        raise InvalidArgument(f"non-numeric {what} {field!r}", row_index=row_index) from None


def parse_row(fields: Sequence[str], dimension: int, row_index: int) -> RawRow:
    """
    Parse CSV fields `label, p_1, ..., p_D` into a RawRow.

    Raises:
        InvalidArgument: wrong field count or non-numeric field
    """
    if len(fields) != dimension + 1:
        raise InvalidArgument(
            f"expected {dimension + 1} fields (label + {dimension} pixels), got {len(fields)}",
            row_index=row_index,
        )
    label = _parse_int(fields[0], "label", row_index)
    pixels = [_parse_int(f, "pixel", row_index) for f in fields[1:]]
    return RawRow(label=label, pixels=pixels)


def read_csv_rows(
    path: Union[str, Path],
    dimension: int,
    has_header: bool = False,
) -> Iterator[RawRow]:
    """
    Stream RawRows from a CSV file.

    Args:
        path: CSV file (label first, then D pixel values)
        dimension: Expected pixel count D
        has_header: Skip the first line

    Yields:
        RawRow per non-empty line; row indexes in errors count data rows only

    Raises:
        InvalidArgument: malformed row, undecodable bytes or a line the csv
            module rejects (e.g. an oversized field)
    """
    with open(path, "rb") as f:
        # Decoded line by line so a bad byte is reported against its own row
        reader = csv.reader(raw.decode("utf-8") for raw in f)
        row_index = 0
        try:
            if has_header:
                next(reader, None)
            for fields in reader:
                if not fields:
                    continue  # Skip empty lines
                yield parse_row(fields, dimension, row_index)
                row_index += 1
        except (UnicodeDecodeError, csv.Error) as exc:
            raise InvalidArgument(
                f"unreadable CSV line {reader.line_num}: {exc}", row_index=row_index
            ) from exc


# =============================================================================
# NORMALIZATION
# =============================================================================


def prepare_row(row: RowLike, dimension: int, row_index: int) -> Tuple[int, np.ndarray]:
    """
    Validate one row and normalize its pixels.

    Returns:
        (label, float32 embedding of length `dimension`)

    Raises:
        InvalidArgument: bad label, wrong pixel count or out-of-range pixel
    """
    if isinstance(row, RawRow):
        label, pixels = row.label, row.pixels
    else:
        label, pixels = row

    if isinstance(label, bool) or not isinstance(label, (int, np.integer)) or label < 0:
        raise InvalidArgument(f"label must be a non-negative int, got {label!r}", row_index=row_index)
    if len(pixels) != dimension:
        raise InvalidArgument(
            f"expected {dimension} pixel values, got {len(pixels)}", row_index=row_index
        )
    try:
        embedding = normalize_pixels(pixels)
    except InvalidArgument as exc:
        raise InvalidArgument(str(exc), row_index=row_index) from exc
    return int(label), embedding


# =============================================================================
# INGESTION
# =============================================================================


def ingest(
    rows: Iterable[RowLike],
    index: VectorIndex,
    progress_every: int = 10000,
) -> IngestStats:
    """
    Normalize rows and insert them through the index.

    Args:
        rows: RawRows or (label, pixels) pairs
        index: A built VectorIndex; records go in through index.insert()
        progress_every: Log a progress line every N inserts (0 = never)

    Returns:
        IngestStats for this call

    Raises:
        InvalidArgument: first malformed row (nothing was inserted)
        BackendFailure: the store failed mid-way (this batch is rolled back,
            then the error propagates; no retry)
    """
    dimension = index.dimension

    t0 = time.perf_counter_ns()

    # --- Validate everything first ---
    prepared: List[Tuple[int, np.ndarray]] = []
    for i, row in enumerate(rows):
        prepared.append(prepare_row(row, dimension, i))
    logger.debug("Validated %d rows", len(prepared), extra={"phase": "ingest"})

    # --- Insert ---
    # Checkpoint first so a failure below rolls back this batch only
    index.store.flush()
    first_id = last_id = -1
    try:
        for n, (label, embedding) in enumerate(prepared, start=1):
            last_id = index.insert(embedding, label)
            if first_id < 0:
                first_id = last_id
            if progress_every and n % progress_every == 0:
                logger.info("Stored %d/%d records", n, len(prepared), extra={"phase": "ingest"})
        index.store.flush()
    except Exception:
        logger.error(
            "Insert failed after %d of %d records, rolling back",
            0 if first_id < 0 else last_id - first_id + 1,
            len(prepared),
            extra={"phase": "ingest"},
        )
        index.rollback()
        raise

    elapsed_ms = (time.perf_counter_ns() - t0) / 1e6
    logger.info(
        "Ingested %d records",
        len(prepared),
        extra={"phase": "ingest", "count": index.count(), "elapsed_ms": round(elapsed_ms, 3)},
    )
    return IngestStats(count=len(prepared), first_id=first_id, last_id=last_id, elapsed_ms=elapsed_ms)
