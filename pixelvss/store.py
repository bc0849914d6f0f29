"""
store.py - The vector store and its pluggable backends.

=============================================================================
OVERVIEW
=============================================================================

The index never talks to a database directly. It talks to a VectorStore,
which offers exactly three things:

    insert(embedding, label) -> id     append one record
    scan()                             lazy pass over the corpus, id order
    count()                            number of records

The VectorStore owns id assignment and dimension checks. Where the bytes live
is the backend's business. A backend only has to implement:

    put(id, embedding, label)
    get_all() -> iterable of (id, embedding, label)

Two backends ship with the package:

    MemoryBackend   a growable float32 matrix (fast scans, nothing persisted)
    SqliteBackend   one row per record, embedding as a little-endian float32
                    blob, survives process restarts

Backends translate their own errors into BackendFailure. The store passes
them to the caller unchanged; there is no retry at this layer.

=============================================================================
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple, Union

import numpy as np

from pixelvss.errors import BackendFailure, DimensionMismatch, InvalidArgument
from pixelvss.log import get_logger
from pixelvss.vectors import VectorLike, VectorRecord, as_vector

logger = get_logger(__name__)

# (ids, labels, matrix) with shapes (B,), (B,), (B, D)
Block = Tuple[np.ndarray, np.ndarray, np.ndarray]

DEFAULT_BLOCK_SIZE = 8192


# =============================================================================
# BACKEND INTERFACE
# =============================================================================


class StoreBackend(ABC):
    """Where records physically live."""

    name = "backend"

    # Columnar backends implement get_blocks() and hand out matrix views
    columnar = False

    @abstractmethod
    def put(self, record_id: int, embedding: np.ndarray, label: int) -> None:
        """Persist one record. Raise BackendFailure on I/O or capacity errors."""

    @abstractmethod
    def get_all(self) -> Iterable[Tuple[int, np.ndarray, int]]:
        """All records as (id, embedding, label), in ascending id order."""

    def count(self) -> int:
        return sum(1 for _ in self.get_all())

    def get_blocks(self, block_size: int) -> Iterator[Block]:
        raise NotImplementedError(f"{self.name} backend is not columnar")

    def flush(self) -> None:
        """Make pending writes visible/durable. No-op by default."""

    def rollback(self) -> None:
        """
        Drop writes made since the last flush(). No-op by default: a backend
        without transactions keeps what it already wrote.
        """

    def close(self) -> None:
        """Release resources. No-op by default."""


def _make_block(ids, labels, rows) -> Block:
    return (
        np.asarray(ids, dtype=np.int64),
        np.asarray(labels, dtype=np.int64),
        np.vstack(rows).astype(np.float32, copy=False),
    )


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================


class MemoryBackend(StoreBackend):
    """
    Records in one preallocated float32 matrix, grown by doubling.

    Scans hand out views of the matrix, so a full pass allocates nothing
    besides the per-block distance buffers.
    flush() marks a checkpoint and rollback() truncates back to it.
    """

    name = "memory"
    columnar = True

    def __init__(self, dimension: int, capacity_hint: int = 0) -> None:
        self.dimension = dimension
        capacity = max(int(capacity_hint), 16)
        try:
            self._matrix = np.empty((capacity, dimension), dtype=np.float32)
        except MemoryError as exc:
            raise BackendFailure(f"cannot allocate {capacity} rows", self.name) from exc
        self._ids = np.empty(capacity, dtype=np.int64)
        self._labels = np.empty(capacity, dtype=np.int64)
        self._n = 0
        self._flushed = 0

    def _grow(self) -> None:
        capacity = self._matrix.shape[0] * 2
        try:
            matrix = np.empty((capacity, self.dimension), dtype=np.float32)
        except MemoryError as exc:
            raise BackendFailure(f"cannot grow to {capacity} rows", self.name) from exc
        matrix[: self._n] = self._matrix[: self._n]
        self._matrix = matrix
        self._ids = np.resize(self._ids, capacity)
        self._labels = np.resize(self._labels, capacity)

    def put(self, record_id: int, embedding: np.ndarray, label: int) -> None:
        if self._n == self._matrix.shape[0]:
            self._grow()
        self._matrix[self._n] = embedding
        self._ids[self._n] = record_id
        self._labels[self._n] = label
        self._n += 1

    def get_all(self) -> Iterator[Tuple[int, np.ndarray, int]]:
        n = self._n
        for i in range(n):
            yield int(self._ids[i]), self._matrix[i], int(self._labels[i])

    def get_blocks(self, block_size: int) -> Iterator[Block]:
        n = self._n
        for start in range(0, n, block_size):
            stop = min(start + block_size, n)
            yield self._ids[start:stop], self._labels[start:stop], self._matrix[start:stop]

    def count(self) -> int:
        return self._n

    def flush(self) -> None:
        self._flushed = self._n

    def rollback(self) -> None:
        self._n = self._flushed


# =============================================================================
# SQLITE BACKEND
# =============================================================================


class SqliteBackend(StoreBackend):
    """
    On-disk backend: one SQLite table, one row per record.

    Schema:
        vectors(id INTEGER PRIMARY KEY, label INTEGER, dim INTEGER, embedding BLOB)

    The embedding blob is D little-endian float32 values. Writes are batched
    in one transaction until flush() (or close()).
    """

    name = "sqlite"

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS vectors (
                    id INTEGER PRIMARY KEY,
                    label INTEGER NOT NULL,
                    dim INTEGER NOT NULL,
                    embedding BLOB NOT NULL
                )
                """
            )
            self._conn.commit()
        except (sqlite3.Error, OSError) as exc:
            raise BackendFailure(f"cannot open {self.path}: {exc}", self.name) from exc

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise BackendFailure(f"{self.path} is closed", self.name)
        return self._conn

    def put(self, record_id: int, embedding: np.ndarray, label: int) -> None:
        blob = np.asarray(embedding, dtype="<f4").tobytes()
        try:
            self._connection().execute(
                "INSERT INTO vectors (id, label, dim, embedding) VALUES (?, ?, ?, ?)",
                (int(record_id), int(label), int(embedding.shape[0]), blob),
            )
        except sqlite3.Error as exc:
            raise BackendFailure(f"put({record_id}) failed: {exc}", self.name) from exc

    def get_all(self) -> Iterator[Tuple[int, np.ndarray, int]]:
        try:
            cursor = self._connection().execute(
                "SELECT id, embedding, label FROM vectors ORDER BY id"
            )
            for record_id, blob, label in cursor:
                yield int(record_id), np.frombuffer(blob, dtype="<f4").astype(np.float32), int(label)
        except sqlite3.Error as exc:
            raise BackendFailure(f"scan failed: {exc}", self.name) from exc

    def count(self) -> int:
        try:
            (n,) = self._connection().execute("SELECT COUNT(*) FROM vectors").fetchone()
        except sqlite3.Error as exc:
            raise BackendFailure(f"count failed: {exc}", self.name) from exc
        return int(n)

    def flush(self) -> None:
        try:
            self._connection().commit()
        except sqlite3.Error as exc:
            raise BackendFailure(f"commit failed: {exc}", self.name) from exc

    def rollback(self) -> None:
        try:
            self._connection().rollback()
        except sqlite3.Error as exc:
            raise BackendFailure(f"rollback failed: {exc}", self.name) from exc

    def close(self) -> None:
        if self._conn is None:
            return
        self.flush()
        self._conn.close()
        self._conn = None


# =============================================================================
# VECTOR STORE
# =============================================================================


class VectorStore:
    """
    Append-only corpus of VectorRecords of one fixed dimension.

    Ids are assigned here, starting after whatever the backend already holds,
    so a reopened SqliteBackend keeps its numbering.
    """

    def __init__(
        self,
        dimension: int,
        backend: Optional[StoreBackend] = None,
        capacity_hint: int = 0,
    ) -> None:
        if dimension <= 0:
            raise InvalidArgument(f"dimension must be positive, got {dimension}")
        self.dimension = int(dimension)
        self.backend = backend if backend is not None else MemoryBackend(dimension, capacity_hint)
        backend_dim = getattr(self.backend, "dimension", None)
        if backend_dim is not None and backend_dim != self.dimension:
            raise DimensionMismatch(self.dimension, backend_dim, what=f"{self.backend.name} backend")
        self._next_id = self.backend.count()
        self._count = self._next_id
        logger.debug(
            "Opened %s store (dim=%d, records=%d)",
            self.backend.name,
            self.dimension,
            self._count,
        )

    def insert(self, embedding: VectorLike, label: int) -> int:
        """
        Append one record and return its id.

        Raises:
            DimensionMismatch: embedding length != dimension
            InvalidArgument: label is not a non-negative int
            BackendFailure: the backend could not store it
        """
        vec = as_vector(embedding, self.dimension, what="record")
        if isinstance(label, bool) or not isinstance(label, (int, np.integer)) or label < 0:
            raise InvalidArgument(f"label must be a non-negative int, got {label!r}")
        record_id = self._next_id
        self.backend.put(record_id, vec, int(label))
        self._next_id += 1
        self._count += 1
        return record_id

    def scan(self) -> Iterator[VectorRecord]:
        """Every record in insertion order. Each call starts a fresh pass."""
        for record_id, embedding, label in self.backend.get_all():
            if embedding.shape[0] != self.dimension:
                raise DimensionMismatch(self.dimension, int(embedding.shape[0]), what=f"record {record_id}")
            yield VectorRecord(id=record_id, label=label, embedding=embedding)

    def scan_blocks(self, block_size: int = DEFAULT_BLOCK_SIZE) -> Iterator[Block]:
        """Every record in insertion order, as (ids, labels, matrix) blocks."""
        if block_size <= 0:
            raise InvalidArgument(f"block_size must be positive, got {block_size}")

        if self.backend.columnar:
            for ids, labels, matrix in self.backend.get_blocks(block_size):
                if matrix.shape[1] != self.dimension:
                    raise DimensionMismatch(self.dimension, int(matrix.shape[1]), what=f"record {int(ids[0])}")
                yield ids, labels, matrix
            return

        ids, labels, rows = [], [], []
        for record in self.scan():
            ids.append(record.id)
            labels.append(record.label)
            rows.append(record.embedding)
            if len(rows) == block_size:
                yield _make_block(ids, labels, rows)
                ids, labels, rows = [], [], []
        if rows:
            yield _make_block(ids, labels, rows)

    def count(self) -> int:
        return self._count

    def flush(self) -> None:
        self.backend.flush()

    def rollback(self) -> None:
        """Drop records inserted since the last flush(); ids are reused."""
        self.backend.rollback()
        self._next_id = self._count = self.backend.count()
        logger.debug("Rolled back %s store to %d records", self.backend.name, self._count)

    def close(self) -> None:
        self.backend.close()

    def __enter__(self) -> "VectorStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __len__(self) -> int:
        return self._count


def open_store(
    dimension: int,
    path: Optional[Union[str, Path]] = None,
    capacity_hint: int = 0,
) -> VectorStore:
    """A SqliteBackend store at `path`, or an in-memory one when path is None."""
    if path:
        return VectorStore(dimension, SqliteBackend(path))
    return VectorStore(dimension, capacity_hint=capacity_hint)
