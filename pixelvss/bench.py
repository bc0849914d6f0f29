"""
bench.py - Evaluation harness: accuracy and search latency of an index.

=============================================================================
OVERVIEW
=============================================================================

evaluate() classifies every held-out query by the label of its single nearest
stored neighbor (k = 1) and measures two things:

1. QUALITY: is the nearest neighbor's label the right one?
   - correct / wrong counts
   - accuracy as an integer percentage, truncated: 100 * correct // total
   - per-label precision / recall / F1 (compute_label_metrics)

2. LATENCY: how long does Index.search take?
   - only the search call is timed, normalization is excluded
   - min / max / average in whole milliseconds, truncated
   - p50 / p95 / p99 as floats (summarize_latency)

A search failure aborts the run. It is never counted as a wrong guess; that
would mix "search broke" into "search was wrong" and corrupt the accuracy.

Latency is accumulated in an immutable LatencyStats value that evaluate()
threads through the loop and returns, so runs share no global state.

=============================================================================
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np

from pixelvss.index import VectorIndex
from pixelvss.ingest import RowLike, prepare_row
from pixelvss.log import get_logger

logger = get_logger(__name__)

NS_PER_MS = 1_000_000


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class LatencyStats:
    """
    Running min / max / total of search latencies, in nanoseconds.

    add() returns a new value; the accumulator itself never changes.
    """

    count: int = 0
    total_ns: int = 0
    min_ns: int = 0
    max_ns: int = 0

    def add(self, elapsed_ns: int) -> "LatencyStats":
        if self.count == 0:
            return LatencyStats(1, elapsed_ns, elapsed_ns, elapsed_ns)
        return LatencyStats(
            count=self.count + 1,
            total_ns=self.total_ns + elapsed_ns,
            min_ns=min(self.min_ns, elapsed_ns),
            max_ns=max(self.max_ns, elapsed_ns),
        )

    @property
    def min_ms(self) -> int:
        return self.min_ns // NS_PER_MS

    @property
    def max_ms(self) -> int:
        return self.max_ns // NS_PER_MS

    @property
    def avg_ms(self) -> int:
        """total / count, whole milliseconds, truncated. 0 when empty."""
        if self.count == 0:
            return 0
        return self.total_ns // (self.count * NS_PER_MS)


@dataclass(frozen=True)
class QueryOutcome:
    """The result of classifying one held-out query."""

    index: int  # Position of the query in the evaluation set
    expected: int  # Ground-truth label
    predicted: int  # Label of the nearest neighbor
    neighbor_id: int
    distance: float
    latency_ns: int  # Search call only

    @property
    def correct(self) -> bool:
        return self.expected == self.predicted

    @property
    def latency_ms(self) -> int:
        return self.latency_ns // NS_PER_MS


@dataclass(frozen=True)
class EvalReport:
    """
    Everything one evaluation run produced.

    Attributes:
        correct / wrong: Counts of matching / non-matching predictions
        latency: Accumulated search latency
        outcomes: Per-query results, in query order (empty if not kept)
    """

    correct: int
    wrong: int
    latency: LatencyStats
    outcomes: Tuple[QueryOutcome, ...] = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return self.correct + self.wrong

    @property
    def accuracy_percent(self) -> int:
        """Integer percentage, truncated toward zero. 0 when no queries ran."""
        if self.total == 0:
            return 0
        return 100 * self.correct // self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correct": self.correct,
            "wrong": self.wrong,
            "accuracy_percent": self.accuracy_percent,
            "latency_ms": {
                "min": self.latency.min_ms,
                "max": self.latency.max_ms,
                "avg": self.latency.avg_ms,
            },
        }


@dataclass(frozen=True)
class LabelMetrics:
    """
    Per-label and overall quality metrics.

    Attributes:
        per_label: label -> {tp, fp, fn, precision, recall, f1}
        overall: {n, accuracy}
    """

    per_label: Dict[int, Dict[str, float]]
    overall: Dict[str, float]


# =============================================================================
# EVALUATION
# =============================================================================


def evaluate(
    queries: Iterable[RowLike],
    index: VectorIndex,
    warmup: int = 0,
    on_result: Optional[Callable[[QueryOutcome], None]] = None,
    keep_outcomes: bool = True,
) -> EvalReport:
    """
    Classify every query by its nearest neighbor and aggregate the results.

    Args:
        queries: RawRows or (label, raw pixels) pairs
        index: A built, non-empty VectorIndex
        warmup: Run the first N queries once, untimed, before measuring
        on_result: Called with each QueryOutcome as it is produced
        keep_outcomes: Store per-query outcomes in the report

    Returns:
        EvalReport

    Raises:
        InvalidArgument: a malformed query row
        EmptyIndex / DimensionMismatch / BackendFailure: from Index.search,
            aborting the run
    """
    dimension = index.dimension

    if warmup > 0:
        queries = list(queries)
        for i, row in enumerate(queries[:warmup]):
            _, q = prepare_row(row, dimension, i)
            index.search(q, 1)

    correct = wrong = 0
    latency = LatencyStats()
    outcomes: List[QueryOutcome] = []

    for i, row in enumerate(queries):
        expected, q = prepare_row(row, dimension, i)

        t0 = time.perf_counter_ns()
        results = index.search(q, 1)
        elapsed_ns = time.perf_counter_ns() - t0

        top = results[0]
        latency = latency.add(elapsed_ns)
        outcome = QueryOutcome(
            index=i,
            expected=expected,
            predicted=top.neighbor_label,
            neighbor_id=top.neighbor_id,
            distance=top.distance,
            latency_ns=elapsed_ns,
        )
        if outcome.correct:
            correct += 1
        else:
            wrong += 1

        logger.debug(
            "Test image %d: expected = %d, found = %d in %dms",
            i,
            expected,
            outcome.predicted,
            outcome.latency_ms,
            extra={"phase": "query", "query": i},
        )
        if keep_outcomes:
            outcomes.append(outcome)
        if on_result is not None:
            on_result(outcome)

    report = EvalReport(correct=correct, wrong=wrong, latency=latency, outcomes=tuple(outcomes))
    logger.info(
        "Evaluated %d queries: %d correct, %d wrong, accuracy %d%%",
        report.total,
        correct,
        wrong,
        report.accuracy_percent,
        extra={"phase": "query", "count": report.total},
    )
    return report


def report_lines(report: EvalReport) -> List[str]:
    """The summary block printed at the end of a run."""
    return [
        f"Number of Correct guess = {report.correct}",
        f"Number of Wrong guess = {report.wrong}",
        f"Accuracy = {report.accuracy_percent}%",
        f"Vector Search Min Duration = {report.latency.min_ms}ms",
        f"Vector Search Max Duration = {report.latency.max_ms}ms",
        f"Vector Search Average Duration = {report.latency.avg_ms}ms",
    ]


def outcome_line(outcome: QueryOutcome) -> str:
    """One per-query report line."""
    return (
        f"Test image {outcome.index}: expected = {outcome.expected}, "
        f"found = {outcome.predicted} in {outcome.latency_ms}ms"
    )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def percentile_ms(values: List[float], p: float) -> float:
    """
    Compute a percentile from a list of values.

    Args:
        values: List of latency values in milliseconds
        p: Percentile to compute (0-100)

    Returns:
        The p-th percentile value (0.0 for an empty list)
    """
    if not values:
        return 0.0
    arr = np.asarray(values, dtype="float64")
    return float(np.percentile(arr, p))


# =============================================================================
# QUALITY METRICS
# =============================================================================


def compute_label_metrics(truth: List[int], pred: List[int]) -> LabelMetrics:
    """
    Per-label precision / recall / F1 plus overall accuracy.

    For each label L seen in truth or pred:

    - TP: predicted L, was L
    - FP: predicted L, was something else
    - FN: was L, predicted something else

    - Precision = TP / (TP + FP)   "when we say 7, how often is it a 7?"
    - Recall    = TP / (TP + FN)   "of all the 7s, how many did we find?"
    - F1        = harmonic mean of the two

    Args:
        truth: Ground-truth labels
        pred: Predicted labels, same length

    Returns:
        A LabelMetrics object
    """
    if len(truth) != len(pred):
        raise ValueError("truth and pred length mismatch")

    labels = sorted(set(truth) | set(pred))
    per: Dict[int, Dict[str, float]] = {}

    for label in labels:
        tp = fp = fn = 0
        for t, p in zip(truth, pred):
            if p == label and t == label:
                tp += 1
            elif p == label:
                fp += 1
            elif t == label:
                fn += 1

        precision = tp / (tp + fp) if (tp + fp) > 0 else 0.0
        recall = tp / (tp + fn) if (tp + fn) > 0 else 0.0
        f1 = (
            (2 * precision * recall) / (precision + recall)
            if (precision + recall) > 0
            else 0.0
        )

        per[label] = {
            "tp": float(tp),
            "fp": float(fp),
            "fn": float(fn),
            "precision": float(precision),
            "recall": float(recall),
            "f1": float(f1),
        }

    n = len(truth)
    correct = sum(1 for t, p in zip(truth, pred) if t == p)
    overall = {
        "n": float(n),
        "accuracy": float(correct / n) if n > 0 else 0.0,
    }
    return LabelMetrics(per_label=per, overall=overall)


def metrics_for(report: EvalReport) -> LabelMetrics:
    """compute_label_metrics() over the outcomes kept in a report."""
    return compute_label_metrics(
        truth=[o.expected for o in report.outcomes],
        pred=[o.predicted for o in report.outcomes],
    )


# =============================================================================
# LATENCY METRICS
# =============================================================================


def summarize_latency(report: EvalReport) -> Dict[str, float]:
    """
    Latency percentiles of the search calls in a report, in float ms.

    Mean latency hides the tail, so p50 / p95 / p99 are reported alongside
    the truncated min / max / average of the summary block.

    Returns:
        Dict with search_p50_ms, search_p95_ms, search_p99_ms, search_mean_ms
    """
    search = [o.latency_ns / NS_PER_MS for o in report.outcomes]
    return {
        "search_p50_ms": percentile_ms(search, 50),
        "search_p95_ms": percentile_ms(search, 95),
        "search_p99_ms": percentile_ms(search, 99),
        "search_mean_ms": float(np.mean(search)) if search else 0.0,
    }
