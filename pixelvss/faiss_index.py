"""
faiss_index.py - Exact index backed by faiss.IndexFlatL2.

FAISS "Flat" means exact search: the query is compared against ALL vectors.
"L2" in FAISS is the squared Euclidean distance, which is the same metric the
numpy FlatIndex uses, so both strategies return the same neighbors.

The FAISS index is a mirror of the store: positions 0..N-1 in FAISS are the
records in store scan order. We keep the id and label of every position so
results can be mapped back without touching the store.

FAISS breaks distance ties on its own terms; hits are re-sorted by
(distance, id) before they are returned. When several records tie at the k-th
place, which of them FAISS keeps is up to FAISS.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import faiss  # type: ignore
import numpy as np

from pixelvss.errors import DimensionMismatch, InvalidArgument
from pixelvss.index import Hit, VectorIndex
from pixelvss.log import get_logger
from pixelvss.store import DEFAULT_BLOCK_SIZE, VectorStore
from pixelvss.vectors import IndexConfig, Metric

logger = get_logger(__name__)


class FaissFlatIndex(VectorIndex):
    """
    Exact nearest-neighbor index using faiss.IndexFlatL2.

    Args:
        block_size: Rows copied from the store into FAISS per add() call
        workers: If set, OpenMP thread count for FAISS
    """

    kind = "faiss"

    def __init__(self, block_size: int = DEFAULT_BLOCK_SIZE, workers: Optional[int] = None) -> None:
        super().__init__()
        if workers is not None and workers <= 0:
            raise InvalidArgument(f"workers must be positive, got {workers}")
        self.block_size = int(block_size)
        self.workers = workers
        self.index: Optional[faiss.Index] = None
        self._ids: List[int] = []
        self._labels: List[int] = []

    def _build(self) -> None:
        if self.config.metric is not Metric.SQUARED_L2:
            raise InvalidArgument(f"faiss index does not support metric {self.config.metric}")
        if self.workers is not None:
            faiss.omp_set_num_threads(int(self.workers))

        self.index = faiss.IndexFlatL2(self.config.dimension)
        self._ids = []
        self._labels = []
        for ids, labels, matrix in self.store.scan_blocks(self.block_size):
            self.index.add(np.ascontiguousarray(matrix, dtype=np.float32))  # type: ignore[call-arg]
            self._ids.extend(ids.tolist())
            self._labels.extend(labels.tolist())

    def _on_insert(self, record_id: int, embedding: np.ndarray, label: int) -> None:
        self.index.add(np.ascontiguousarray(embedding[None, :], dtype=np.float32))  # type: ignore[call-arg]
        self._ids.append(record_id)
        self._labels.append(label)

    def _on_rollback(self) -> None:
        # Positions past the store count belong to discarded records
        self._build()

    def _search(self, query: np.ndarray, k: int) -> List[Hit]:
        # FAISS expects 2D input: shape (1, D) for a single query
        dists, positions = self.index.search(query[None, :], k)  # type: ignore[call-arg]

        hits: List[Hit] = []
        for dist, pos in zip(dists[0].tolist(), positions[0].tolist()):
            # FAISS returns -1 for "no result"
            if pos < 0:
                continue
            hits.append((max(0.0, float(dist)), self._ids[pos], self._labels[pos]))
        hits.sort(key=lambda h: (h[0], h[1]))
        return hits

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save(self, index_path: Union[str, Path], meta_path: Union[str, Path]) -> None:
        """
        Write the FAISS index plus a JSON metadata sidecar.

        The records themselves stay in the store; load() checks the artifact
        still matches it.
        """
        _, config = self._require_built()
        Path(index_path).parent.mkdir(parents=True, exist_ok=True)
        Path(meta_path).parent.mkdir(parents=True, exist_ok=True)

        faiss.write_index(self.index, str(index_path))

        meta: Dict[str, Any] = {
            "kind": self.kind,
            "faiss_index_type": "IndexFlatL2",
            "built_at_unix": time.time(),
            "dim": config.dimension,
            "metric": config.metric.value,
            "count": int(self.index.ntotal),
        }
        with open(meta_path, "w", encoding="utf-8") as f:
            json.dump(meta, f, indent=2)
        logger.info("Saved faiss index (%d vectors) to %s", meta["count"], index_path)

    @classmethod
    def load(
        cls,
        index_path: Union[str, Path],
        meta_path: Union[str, Path],
        store: VectorStore,
        block_size: int = DEFAULT_BLOCK_SIZE,
    ) -> "FaissFlatIndex":
        """
        Reopen a saved FAISS index against the store it was built from.

        Raises:
            DimensionMismatch: the artifact's dimension differs from the store's
            InvalidArgument: the artifact's vector count differs from the store's
        """
        with open(meta_path, "r", encoding="utf-8") as f:
            meta = json.load(f)
        index = faiss.read_index(str(index_path))

        dim = int(meta["dim"])
        if dim != store.dimension or int(index.d) != store.dimension:
            raise DimensionMismatch(store.dimension, dim, what="faiss artifact")
        if int(index.ntotal) != store.count():
            raise InvalidArgument(
                f"faiss artifact holds {int(index.ntotal)} vectors, store holds {store.count()}"
            )

        obj = cls(block_size=block_size)
        obj.store = store
        obj.config = IndexConfig(dimension=dim, metric=Metric(meta["metric"]))
        obj.index = index
        for record in store.scan():
            obj._ids.append(record.id)
            obj._labels.append(record.label)
        logger.info("Loaded faiss index (%d vectors) from %s", int(index.ntotal), index_path)
        return obj
