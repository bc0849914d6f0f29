"""
pixelvss - Vector Similarity Search over labeled pixel vectors.

=============================================================================
PACKAGE OVERVIEW
=============================================================================

This package classifies images (MNIST digits by default) by the label of the
closest stored image. Each image is a row of 0..255 pixel intensities; it is
normalized to a float32 vector in [0, 1] and compared to the stored corpus by
squared Euclidean distance.

=============================================================================
MODULE STRUCTURE
=============================================================================

pixelvss/
├── __init__.py      ← You are here.
├── errors.py        ← DimensionMismatch, InvalidArgument, EmptyIndex, BackendFailure
├── vectors.py       ← VectorRecord, QueryResult, IndexConfig, metric, normalization
├── store.py         ← VectorStore + MemoryBackend / SqliteBackend
├── index.py         ← VectorIndex interface, FlatIndex (numpy scan), create_index()
├── faiss_index.py   ← FaissFlatIndex (faiss.IndexFlatL2), imported on demand
├── ingest.py        ← CSV rows → normalized records → index.insert()
├── bench.py         ← evaluate(): accuracy + latency of k=1 classification
├── config.py        ← Settings (defaults + PIXELVSS_* environment overrides)
└── log.py           ← get_logger() / configure_logging()

=============================================================================
TYPICAL USAGE
=============================================================================

Building a corpus:
------------------
    from pixelvss.index import create_index
    from pixelvss.ingest import ingest, read_csv_rows
    from pixelvss.store import VectorStore
    from pixelvss.vectors import IndexConfig

    config = IndexConfig(dimension=784, capacity_hint=60000)
    store = VectorStore(config.dimension, capacity_hint=config.capacity_hint)
    index = create_index(store, config)
    ingest(read_csv_rows("mnist_train.csv", 784), index)

Evaluating:
-----------
    from pixelvss.bench import evaluate, report_lines

    report = evaluate(read_csv_rows("mnist_test.csv", 784), index)
    print("\\n".join(report_lines(report)))   # Accuracy = 96%, ...

Single query:
-------------
    from pixelvss.vectors import normalize_pixels

    [best] = index.search(normalize_pixels(raw_pixels), k=1)
    print(best.neighbor_label, best.distance)

=============================================================================
"""

from pixelvss import bench as bench
from pixelvss import errors as errors
from pixelvss import index as index
from pixelvss import ingest as ingest
from pixelvss import store as store
from pixelvss import vectors as vectors

__all__ = ["bench", "errors", "index", "ingest", "store", "vectors"]
