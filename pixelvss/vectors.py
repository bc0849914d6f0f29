"""
vectors.py - Shared types, the distance metric and pixel normalization.

=============================================================================
OVERVIEW
=============================================================================

Everything the store, the index and the harness pass around lives here:

    VectorRecord   one stored sample: id + label + float32 embedding
    QueryResult    one neighbor returned by a search (rank 1 = closest)
    IndexConfig    dimension, metric and sizing hint, fixed for a run

The only metric is squared Euclidean distance:

    d(a, b) = sum_i (a[i] - b[i])^2

Ordering by squared distance is the same as ordering by true L2 distance, so
the square root is never taken. Callers that need the absolute L2 magnitude
take np.sqrt() themselves. This is also what faiss.IndexFlatL2 returns.

=============================================================================
PIXEL NORMALIZATION
=============================================================================

Raw rows carry 0..255 intensities. Each is mapped to value / 255 as float32:

    0   -> 0.0       (exact)
    255 -> 1.0
    128 -> 0.50196...

=============================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence, Union

import numpy as np

from pixelvss.errors import DimensionMismatch, InvalidArgument

VectorLike = Union[np.ndarray, Sequence[float]]

PIXEL_MAX = 255


# =============================================================================
# DATA CLASSES
# =============================================================================


class Metric(str, Enum):
    """Distance metric chosen at index-build time."""

    SQUARED_L2 = "l2sq"


@dataclass(frozen=True)
class VectorRecord:
    """
    A single stored sample.

    The id is assigned by the store (0, 1, 2, ...) and only used to address
    storage and to break distance ties. It never takes part in distance math.
    """

    id: int
    label: int  # Digit class 0-9 for MNIST
    embedding: np.ndarray  # shape (D,), dtype float32


@dataclass(frozen=True)
class QueryResult:
    """One neighbor of a query, as returned by VectorIndex.search()."""

    neighbor_id: int
    neighbor_label: int
    distance: float  # Squared L2, lower = closer
    rank: int  # 1 = closest


@dataclass(frozen=True)
class IndexConfig:
    """
    Index configuration, created once before ingestion.

    Attributes:
        dimension: Embedding length D (784 for 28x28 MNIST images)
        metric: Distance metric (only SQUARED_L2 exists)
        capacity_hint: Expected corpus size, used to presize the in-memory
            backend. Not a limit.
    """

    dimension: int
    metric: Metric = Metric.SQUARED_L2
    capacity_hint: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.dimension, int) or self.dimension <= 0:
            raise InvalidArgument(f"dimension must be a positive int, got {self.dimension!r}")
        if self.capacity_hint < 0:
            raise InvalidArgument(f"capacity_hint must be >= 0, got {self.capacity_hint}")
        # Accept the plain string value too ("l2sq")
        object.__setattr__(self, "metric", _coerce_metric(self.metric))


def _coerce_metric(metric: Union[Metric, str]) -> Metric:
    try:
        return Metric(metric)
    except ValueError:
        raise InvalidArgument(f"unsupported metric: {metric!r}") from None


# =============================================================================
# VECTOR HELPERS
# =============================================================================


def as_vector(values: VectorLike, dimension: int, what: str = "vector") -> np.ndarray:
    """
    Convert values to a 1-D float32 array of length `dimension`.

    Raises:
        DimensionMismatch: if the length differs from `dimension`
        InvalidArgument: if the input is not one-dimensional
    """
    arr = np.asarray(values, dtype=np.float32)
    if arr.ndim != 1:
        raise InvalidArgument(f"{what} must be one-dimensional, got shape {arr.shape}")
    if arr.shape[0] != dimension:
        raise DimensionMismatch(dimension, int(arr.shape[0]), what=what)
    return arr


def normalize_pixels(raw: VectorLike) -> np.ndarray:
    """
    Map raw 0..255 intensities to float32 values in [0, 1].

    Args:
        raw: Sequence of integer intensities

    Returns:
        1-D float32 array, same length as `raw`

    Raises:
        InvalidArgument: if the values are not integers or any is outside 0..255
    """
    ints = np.asarray(raw)
    if ints.size and ints.dtype.kind not in "iu":
        raise InvalidArgument(f"pixel intensities must be integers, got dtype {ints.dtype}")
    if ints.size and (ints.min() < 0 or ints.max() > PIXEL_MAX):
        bad = ints[(ints < 0) | (ints > PIXEL_MAX)][0]
        raise InvalidArgument(f"pixel intensity {bad} outside 0..{PIXEL_MAX}")
    return ints.astype(np.float32) / np.float32(PIXEL_MAX)


# =============================================================================
# DISTANCE METRIC
# =============================================================================


def squared_l2(a: VectorLike, b: VectorLike) -> float:
    """
    Squared Euclidean distance between two same-length vectors.

    Raises:
        InvalidArgument: if either input is not one-dimensional
        DimensionMismatch: if len(a) != len(b)
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.ndim != 1 or vb.ndim != 1:
        raise InvalidArgument(f"expected two 1-D vectors, got shapes {va.shape} and {vb.shape}")
    if len(va) != len(vb):
        raise DimensionMismatch(len(va), len(vb))
    diff = va - vb
    return float(np.sum(diff * diff))


def squared_l2_many(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """
    Squared L2 distance from `query` to every row of `matrix`.

    Args:
        matrix: shape (N, D), float32
        query: shape (D,), float32

    Returns:
        float64 array of shape (N,)
    """
    if matrix.ndim != 2 or query.ndim != 1:
        raise InvalidArgument(
            f"expected an (N, D) block and a 1-D query, got {matrix.shape} and {query.shape}"
        )
    if matrix.shape[1] != query.shape[0]:
        raise DimensionMismatch(int(matrix.shape[1]), int(query.shape[0]))
    diff = matrix - query
    # float64 accumulator; per-row result depends only on the row contents
    return np.sum(np.square(diff), axis=1, dtype=np.float64)


_METRICS = {
    Metric.SQUARED_L2: (squared_l2, squared_l2_many),
}


def distance_fn(metric: Union[Metric, str]) -> Callable[[VectorLike, VectorLike], float]:
    """Pairwise distance function for a metric."""
    return _METRICS[_coerce_metric(metric)][0]


def block_distance_fn(metric: Union[Metric, str]) -> Callable[[np.ndarray, np.ndarray], np.ndarray]:
    """Row-wise (block vs. query) distance function for a metric."""
    return _METRICS[_coerce_metric(metric)][1]
