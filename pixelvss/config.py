"""
Run configuration.

Defaults target MNIST (784 pixels per image). Every field can be overridden
with a PIXELVSS_* environment variable; the scripts then expose the same
knobs as command-line flags whose defaults come from Settings.from_env().

    PIXELVSS_DIMENSION=784
    PIXELVSS_TRAIN_CSV=mnist_train.csv
    PIXELVSS_TEST_CSV=mnist_test.csv
    PIXELVSS_STORE_PATH=artifacts/mnist.sqlite   (unset = in-memory)
    PIXELVSS_INDEX_KIND=flat                     (flat | faiss)
    PIXELVSS_WORKERS=4                           (unset = 1 scan thread, FAISS default)
    PIXELVSS_BLOCK_SIZE=8192
    PIXELVSS_CAPACITY_HINT=60000
    PIXELVSS_LOG_LEVEL=INFO
    PIXELVSS_STRUCTURED_LOGS=false
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

from pixelvss.errors import InvalidArgument
from pixelvss.index import INDEX_KINDS
from pixelvss.store import DEFAULT_BLOCK_SIZE
from pixelvss.vectors import IndexConfig

ENV_PREFIX = "PIXELVSS_"

MNIST_DIMENSION = 784
MNIST_TRAIN_ROWS = 60000

# Fields that default to None but hold an int when set
_OPTIONAL_INTS = ("workers",)


@dataclass(frozen=True)
class Settings:
    dimension: int = MNIST_DIMENSION
    train_csv: str = "mnist_train.csv"
    test_csv: str = "mnist_test.csv"
    store_path: Optional[str] = None
    index_kind: str = "flat"
    workers: Optional[int] = None  # None: 1 scan thread, FAISS threads untouched
    block_size: int = DEFAULT_BLOCK_SIZE
    capacity_hint: int = MNIST_TRAIN_ROWS
    log_level: str = "INFO"
    structured_logs: bool = False

    def __post_init__(self) -> None:
        if self.index_kind not in INDEX_KINDS:
            raise InvalidArgument(f"index_kind must be one of {INDEX_KINDS}, got {self.index_kind!r}")
        if (self.workers is not None and self.workers <= 0) or self.block_size <= 0:
            raise InvalidArgument("workers and block_size must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Defaults overridden by PIXELVSS_* variables."""
        env = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            values[f.name] = _convert(f.name, raw, f.default)
        return cls(**values)

    def index_config(self) -> IndexConfig:
        return IndexConfig(dimension=self.dimension, capacity_hint=self.capacity_hint)


def _convert(name: str, raw: str, default):
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int) or name in _OPTIONAL_INTS:
        try:
            return int(raw)
        except ValueError:
            raise InvalidArgument(f"{ENV_PREFIX}{name.upper()} must be an integer, got {raw!r}") from None
    return raw
