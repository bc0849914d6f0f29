"""
index.py - Nearest-neighbor index over a VectorStore.

=============================================================================
OVERVIEW
=============================================================================

A VectorIndex answers one question: "which k stored records are closest to
this query vector?". Callers only see the contract:

    index = create_index(store, config)     # or FlatIndex().build(store, config)
    index.insert(embedding, label)          # ingestion path
    index.search(query, k)                  # -> [QueryResult, ...], rank 1 first

Two exact strategies implement it:

    FlatIndex        numpy brute-force scan over the store (this module)
    FaissFlatIndex   faiss.IndexFlatL2 mirror of the store (faiss_index.py)

Both return the same neighbors for the same corpus, except that FAISS may
pick a different record among several tied at the k-th place. An approximate
strategy would plug in behind the same build/search contract.

=============================================================================
THE FLAT SCAN
=============================================================================

For each block of stored records (a (B, D) float32 matrix):

    1. distances = squared L2 from the query to every row
    2. keep the k smallest, plus any rows tied with the k-th distance
    3. merge them into a size-k max-heap keyed by (distance, id)

One pass, O(N) time, O(k) extra space beyond one block's distance buffer.
With workers > 1 the blocks are scored on a thread pool (numpy releases the
GIL in the distance kernel) and merged with the same rule. At most 2 x workers
blocks are in flight, so a store that materializes blocks (SQLite) is still
streamed.

Tie rule: equal distance -> lower id wins. Results are deterministic for a
fixed corpus and query.

=============================================================================
"""

from __future__ import annotations

import heapq
import time
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional, Tuple

import numpy as np

from pixelvss.errors import DimensionMismatch, EmptyIndex, InvalidArgument
from pixelvss.log import get_logger
from pixelvss.store import DEFAULT_BLOCK_SIZE, VectorStore
from pixelvss.vectors import IndexConfig, QueryResult, VectorLike, as_vector, block_distance_fn

logger = get_logger(__name__)

# (distance, id, label)
Hit = Tuple[float, int, int]

INDEX_KINDS = ("flat", "faiss")


# =============================================================================
# INDEX INTERFACE
# =============================================================================


class VectorIndex(ABC):
    """
    Base class for nearest-neighbor strategies.

    Subclasses implement _build() (prepare from the bound store) and
    _search() (return the k best hits sorted by (distance, id)). Validation,
    id assignment and result shaping live here so every strategy behaves the
    same at the boundary.
    """

    kind = "abstract"

    def __init__(self) -> None:
        self.store: Optional[VectorStore] = None
        self.config: Optional[IndexConfig] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def build(self, store: VectorStore, config: IndexConfig) -> "VectorIndex":
        """
        Bind the index to a store and prepare it for search.

        Raises:
            DimensionMismatch: store dimension != config.dimension, or the
                store holds a record of another length
        """
        if store.dimension != config.dimension:
            raise DimensionMismatch(config.dimension, store.dimension, what="store")

        t0 = time.perf_counter_ns()
        self.store = store
        self.config = config
        self._build()
        elapsed_ms = (time.perf_counter_ns() - t0) / 1e6

        logger.info(
            "Built %s index over %d records (dim=%d, metric=%s)",
            self.kind,
            store.count(),
            config.dimension,
            config.metric.value,
            extra={"phase": "build", "elapsed_ms": round(elapsed_ms, 3)},
        )
        return self

    def close(self) -> None:
        """Release worker threads or native resources. The store is not closed."""

    def __enter__(self) -> "VectorIndex":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Insert / search
    # -------------------------------------------------------------------------

    def insert(self, embedding: VectorLike, label: int) -> int:
        """Append one record to the underlying store. Returns its id."""
        store, config = self._require_built()
        vec = as_vector(embedding, config.dimension, what="record")
        record_id = store.insert(vec, label)
        self._on_insert(record_id, vec, int(label))
        return record_id

    def search(self, query: VectorLike, k: int = 1) -> List[QueryResult]:
        """
        The k records closest to `query`, closest first.

        Returns min(k, count()) results.

        Raises:
            InvalidArgument: k is not a positive int, or build() was not called
            DimensionMismatch: query length != dimension
            EmptyIndex: the store has no records
        """
        store, config = self._require_built()
        if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k <= 0:
            raise InvalidArgument(f"k must be a positive int, got {k!r}")
        q = as_vector(query, config.dimension, what="query")

        n = store.count()
        if n == 0:
            raise EmptyIndex("search against an empty index")

        hits = self._search(q, min(int(k), n))
        return [
            QueryResult(neighbor_id=rid, neighbor_label=label, distance=dist, rank=rank)
            for rank, (dist, rid, label) in enumerate(hits, start=1)
        ]

    def rollback(self) -> None:
        """
        Discard every record inserted since the store was last flushed.

        Used by ingestion when an insert fails part-way through a batch.
        """
        store, _ = self._require_built()
        store.rollback()
        self._on_rollback()

    def count(self) -> int:
        store, _ = self._require_built()
        return store.count()

    @property
    def dimension(self) -> int:
        _, config = self._require_built()
        return config.dimension

    # -------------------------------------------------------------------------
    # Strategy hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    def _build(self) -> None:
        """Prepare internal structures from self.store."""

    @abstractmethod
    def _search(self, query: np.ndarray, k: int) -> List[Hit]:
        """k best hits, sorted by (distance, id). 1 <= k <= count()."""

    def _on_insert(self, record_id: int, embedding: np.ndarray, label: int) -> None:
        """Called after a record landed in the store."""

    def _on_rollback(self) -> None:
        """Called after the store dropped its unflushed records."""

    def _require_built(self) -> Tuple[VectorStore, IndexConfig]:
        if self.store is None or self.config is None:
            raise InvalidArgument(f"{self.kind} index used before build()")
        return self.store, self.config


# =============================================================================
# TOP-K HELPERS
# =============================================================================


def _push_bounded(heap: List[Tuple[float, int, int]], hits: List[Hit], k: int) -> None:
    """
    Merge hits into a size-k max-heap of (-distance, -id, label).

    heap[0] is the worst kept hit: largest distance, then largest id.
    """
    for dist, rid, label in hits:
        entry = (-dist, -rid, label)
        if len(heap) < k:
            heapq.heappush(heap, entry)
        elif entry > heap[0]:
            heapq.heapreplace(heap, entry)


def _drain(heap: List[Tuple[float, int, int]]) -> List[Hit]:
    return sorted(((-d, -r, label) for d, r, label in heap), key=lambda h: (h[0], h[1]))


# =============================================================================
# FLAT (EXACT) INDEX
# =============================================================================


class FlatIndex(VectorIndex):
    """
    Exact brute-force index: every search scans the whole store.

    Args:
        block_size: Rows scored per numpy call
        workers: Threads used to score blocks in parallel (1 = inline)
    """

    kind = "flat"

    def __init__(self, block_size: int = DEFAULT_BLOCK_SIZE, workers: int = 1) -> None:
        super().__init__()
        if block_size <= 0:
            raise InvalidArgument(f"block_size must be positive, got {block_size}")
        if workers <= 0:
            raise InvalidArgument(f"workers must be positive, got {workers}")
        self.block_size = int(block_size)
        self.workers = int(workers)
        self._pool: Optional[ThreadPoolExecutor] = None

    def _build(self) -> None:
        # One validating pass: refuses a store holding foreign-dimension rows
        for _ in self.store.scan_blocks(self.block_size):
            pass
        self._distances = block_distance_fn(self.config.metric)
        if self.workers > 1 and self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self.workers, thread_name_prefix="pixelvss-scan"
            )

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    def _block_hits(
        self,
        ids: np.ndarray,
        labels: np.ndarray,
        matrix: np.ndarray,
        query: np.ndarray,
        k: int,
    ) -> List[Hit]:
        """The k best hits of one block, sorted by (distance, id)."""
        dists = self._distances(matrix, query)
        if dists.shape[0] > k:
            kth = np.partition(dists, k - 1)[k - 1]
            # Everything tied with the k-th distance stays in the running
            keep = np.flatnonzero(dists <= kth)
        else:
            keep = np.arange(dists.shape[0])
        order = keep[np.lexsort((ids[keep], dists[keep]))][:k]
        return [(float(dists[i]), int(ids[i]), int(labels[i])) for i in order]

    def _search(self, query: np.ndarray, k: int) -> List[Hit]:
        heap: List[Tuple[float, int, int]] = []
        blocks = self.store.scan_blocks(self.block_size)

        if self._pool is None:
            for ids, labels, matrix in blocks:
                _push_bounded(heap, self._block_hits(ids, labels, matrix, query, k), k)
            return _drain(heap)

        # At most `window` blocks are pulled from the store ahead of the merge
        window = 2 * self.workers
        pending: "deque[Future]" = deque()
        for ids, labels, matrix in blocks:
            pending.append(self._pool.submit(self._block_hits, ids, labels, matrix, query, k))
            if len(pending) >= window:
                _push_bounded(heap, pending.popleft().result(), k)
        while pending:
            _push_bounded(heap, pending.popleft().result(), k)

        return _drain(heap)


# =============================================================================
# FACTORY
# =============================================================================


def create_index(
    store: VectorStore,
    config: IndexConfig,
    kind: str = "flat",
    block_size: int = DEFAULT_BLOCK_SIZE,
    workers: Optional[int] = None,
) -> VectorIndex:
    """
    Build an index of the requested kind over `store`.

    Args:
        store: The corpus (may still be empty; ingestion goes through insert())
        config: Dimension and metric
        kind: "flat" (numpy scan) or "faiss" (faiss.IndexFlatL2)
        block_size: Rows per scan block
        workers: Scan threads ("flat", default 1) or OpenMP threads ("faiss",
            default: leave the process-wide FAISS setting alone)

    Returns:
        A built VectorIndex
    """
    if kind == "flat":
        index: VectorIndex = FlatIndex(
            block_size=block_size, workers=1 if workers is None else workers
        )
    elif kind == "faiss":
        from pixelvss.faiss_index import FaissFlatIndex

        index = FaissFlatIndex(block_size=block_size, workers=workers)
    else:
        raise InvalidArgument(f"unknown index kind {kind!r}, expected one of {INDEX_KINDS}")
    return index.build(store, config)
