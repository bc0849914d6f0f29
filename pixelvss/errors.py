"""
errors.py - Exception taxonomy for the vector index and its collaborators.

Every failure the core can report maps onto one of four conditions:

    DimensionMismatch  a record or query whose length differs from D
    InvalidArgument    bad caller input (k <= 0, malformed CSV row, ...)
    EmptyIndex         search against a corpus with zero records
    BackendFailure     the storage backend could not read or write

None of these are retried or swallowed inside the package. The caller (a
script, a service) decides what to do with them.
"""

from __future__ import annotations

from typing import Optional


class VSSError(Exception):
    """Base exception for all pixelvss errors."""


class DimensionMismatch(VSSError, ValueError):
    """
    A vector's length does not match the configured dimension.

    Raised when:
    - a record with the wrong length is inserted into a store
    - a backend yields a stored record with the wrong length
    - a query vector with the wrong length is searched
    - two vectors of different length are compared
    """

    def __init__(self, expected: int, actual: int, what: str = "vector") -> None:
        super().__init__(f"{what} has dimension {actual}, expected {expected}")
        self.expected = expected
        self.actual = actual


class InvalidArgument(VSSError, ValueError):
    """
    Caller input is unusable.

    Raised when:
    - k is not a positive integer
    - an input row has the wrong field count or a non-numeric field
    - a pixel intensity is outside 0..255
    - an index is searched before it was built
    """

    def __init__(self, message: str, row_index: Optional[int] = None) -> None:
        if row_index is not None:
            message = f"row {row_index}: {message}"
        super().__init__(message)
        self.row_index = row_index


class EmptyIndex(VSSError, LookupError):
    """Search was called against a corpus with zero records."""


class BackendFailure(VSSError):
    """
    The storage backend failed (I/O, connection, capacity).

    The original error is chained as ``__cause__``.
    """

    def __init__(self, message: str, backend: str = "") -> None:
        super().__init__(f"{backend}: {message}" if backend else message)
        self.backend = backend
