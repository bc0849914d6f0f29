"""Pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, List, Tuple

import numpy as np
import pytest

from pixelvss.index import FlatIndex, create_index
from pixelvss.store import SqliteBackend, VectorStore
from pixelvss.vectors import IndexConfig

# (embedding, label): two label-0 points near the origin, one label-1 point far away
TINY_CORPUS: List[Tuple[List[float], int]] = [
    ([0.0, 0.0], 0),
    ([10.0, 10.0], 1),
    ([0.1, 0.1], 0),
]


@pytest.fixture
def config2() -> IndexConfig:
    return IndexConfig(dimension=2)


@pytest.fixture
def tiny_index(config2: IndexConfig) -> FlatIndex:
    """FlatIndex over TINY_CORPUS, in-memory."""
    store = VectorStore(config2.dimension)
    index = FlatIndex(block_size=2)
    index.build(store, config2)
    for embedding, label in TINY_CORPUS:
        index.insert(embedding, label)
    return index


@pytest.fixture
def sqlite_store(tmp_path: Path) -> Iterator[VectorStore]:
    store = VectorStore(2, SqliteBackend(tmp_path / "vectors.sqlite"))
    yield store
    store.close()


@pytest.fixture
def random_corpus() -> Tuple[np.ndarray, np.ndarray]:
    """500 random 16-dim vectors with labels 0-9."""
    rng = np.random.default_rng(7)
    vectors = rng.random((500, 16), dtype=np.float32)
    labels = rng.integers(0, 10, size=500)
    return vectors, labels


@pytest.fixture
def random_index(random_corpus) -> FlatIndex:
    vectors, labels = random_corpus
    config = IndexConfig(dimension=16)
    index = create_index(VectorStore(16), config, block_size=64)
    for vec, label in zip(vectors, labels):
        index.insert(vec, int(label))
    return index


@pytest.fixture
def write_csv():
    """Write integer rows as a CSV file, return its path."""

    def _write(path: Path, rows: List[List[int]]) -> Path:
        path.write_text("\n".join(",".join(str(v) for v in row) for row in rows) + "\n")
        return path

    return _write
