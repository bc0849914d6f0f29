from __future__ import annotations

import pytest

from pixelvss.bench import (
    EvalReport,
    LatencyStats,
    QueryOutcome,
    compute_label_metrics,
    evaluate,
    metrics_for,
    outcome_line,
    percentile_ms,
    report_lines,
    summarize_latency,
)
from pixelvss.errors import BackendFailure, EmptyIndex, InvalidArgument
from pixelvss.index import create_index
from pixelvss.ingest import RawRow, ingest
from pixelvss.store import SqliteBackend, VectorStore
from pixelvss.vectors import IndexConfig


@pytest.fixture
def digits_index():
    """Ten 2-pixel images, label i at intensity (20 * i, 0)."""
    index = create_index(VectorStore(2), IndexConfig(dimension=2))
    ingest([RawRow(i, [20 * i, 0]) for i in range(10)], index)
    return index


# =============================================================================
# Accumulators
# =============================================================================


def test_latency_stats_add_is_pure():
    empty = LatencyStats()
    one = empty.add(1_500_000)
    two = one.add(2_999_999)

    assert empty.count == 0
    assert (one.count, one.min_ns, one.max_ns) == (1, 1_500_000, 1_500_000)
    assert (two.count, two.total_ns) == (2, 4_499_999)


def test_latency_stats_truncates_to_whole_ms():
    stats = LatencyStats().add(1_500_000).add(2_999_999)
    assert stats.min_ms == 1
    assert stats.max_ms == 2
    assert stats.avg_ms == 2  # 2.2499995 ms

    assert LatencyStats().add(999_999).avg_ms == 0


def test_empty_latency_stats():
    assert (LatencyStats().min_ms, LatencyStats().max_ms, LatencyStats().avg_ms) == (0, 0, 0)


@pytest.mark.parametrize(
    "correct, wrong, expected",
    [(9, 1, 90), (2, 1, 66), (1, 2, 33), (0, 5, 0), (5, 0, 100), (0, 0, 0)],
)
def test_accuracy_is_truncated_integer_percent(correct, wrong, expected):
    report = EvalReport(correct=correct, wrong=wrong, latency=LatencyStats())
    assert report.accuracy_percent == expected
    assert isinstance(report.accuracy_percent, int)


# =============================================================================
# evaluate()
# =============================================================================


def test_nine_of_ten_correct_reports_90(digits_index):
    queries = [RawRow(i, [20 * i, 0]) for i in range(10)]
    queries[3] = RawRow(9, [60, 0])  # nearest stored image is labeled 3

    report = evaluate(queries, digits_index)

    assert (report.correct, report.wrong, report.total) == (9, 1, 10)
    assert report.accuracy_percent == 90
    assert report.latency.count == 10
    assert report.latency.min_ns <= report.latency.max_ns
    assert [o.index for o in report.outcomes] == list(range(10))
    assert not report.outcomes[3].correct
    assert report.outcomes[3].predicted == 3
    assert report.outcomes[3].neighbor_id == 3


def test_evaluate_streams_outcomes(digits_index):
    seen = []
    report = evaluate(
        [(4, [79, 0]), (5, [101, 1])],
        digits_index,
        on_result=seen.append,
        keep_outcomes=False,
        warmup=1,
    )
    assert report.outcomes == ()
    assert [(o.expected, o.predicted) for o in seen] == [(4, 4), (5, 5)]
    assert report.latency.count == 2


def test_evaluate_with_no_queries(digits_index):
    report = evaluate([], digits_index)
    assert report.accuracy_percent == 0
    assert report.latency.avg_ms == 0


def test_search_failure_aborts_the_run():
    empty = create_index(VectorStore(2), IndexConfig(dimension=2))
    with pytest.raises(EmptyIndex):
        evaluate([RawRow(0, [0, 0])], empty)


def test_malformed_query_aborts_the_run(digits_index):
    with pytest.raises(InvalidArgument) as exc_info:
        evaluate([RawRow(1, [20, 0]), RawRow(1, [20, 0, 0])], digits_index)
    assert exc_info.value.row_index == 1


def test_backend_failure_aborts_the_run(tmp_path):
    store = VectorStore(2, SqliteBackend(tmp_path / "digits.sqlite"))
    index = create_index(store, IndexConfig(dimension=2))
    ingest([RawRow(i, [20 * i, 0]) for i in range(3)], index)
    store.close()
    with pytest.raises(BackendFailure):
        evaluate([RawRow(1, [20, 0])], index)


# =============================================================================
# Report formatting
# =============================================================================


def test_report_lines():
    latency = LatencyStats().add(9_000_000).add(31_400_000).add(12_000_000)
    report = EvalReport(correct=9691, wrong=309, latency=latency)
    assert report_lines(report) == [
        "Number of Correct guess = 9691",
        "Number of Wrong guess = 309",
        "Accuracy = 96%",
        "Vector Search Min Duration = 9ms",
        "Vector Search Max Duration = 31ms",
        "Vector Search Average Duration = 17ms",
    ]


def test_outcome_line():
    outcome = QueryOutcome(
        index=0, expected=7, predicted=7, neighbor_id=17, distance=1.5, latency_ns=12_900_000
    )
    assert outcome_line(outcome) == "Test image 0: expected = 7, found = 7 in 12ms"


def test_report_to_dict():
    report = EvalReport(correct=1, wrong=1, latency=LatencyStats().add(2_000_000))
    assert report.to_dict() == {
        "correct": 1,
        "wrong": 1,
        "accuracy_percent": 50,
        "latency_ms": {"min": 2, "max": 2, "avg": 2},
    }


# =============================================================================
# Metrics
# =============================================================================


def test_compute_label_metrics():
    metrics = compute_label_metrics(truth=[1, 1, 2, 2], pred=[1, 2, 2, 2])
    assert metrics.overall == {"n": 4.0, "accuracy": 0.75}
    assert metrics.per_label[1]["precision"] == 1.0
    assert metrics.per_label[1]["recall"] == 0.5
    assert metrics.per_label[2]["precision"] == pytest.approx(2 / 3)
    assert metrics.per_label[2]["recall"] == 1.0
    assert metrics.per_label[2]["f1"] == pytest.approx(0.8)


def test_compute_label_metrics_rejects_length_mismatch():
    with pytest.raises(ValueError):
        compute_label_metrics([1, 2], [1])


def test_metrics_and_latency_from_report(digits_index):
    report = evaluate([RawRow(i, [20 * i, 0]) for i in range(10)], digits_index)
    metrics = metrics_for(report)
    assert metrics.overall["accuracy"] == 1.0
    assert sorted(metrics.per_label) == list(range(10))

    summary = summarize_latency(report)
    assert set(summary) == {"search_p50_ms", "search_p95_ms", "search_p99_ms", "search_mean_ms"}
    assert 0.0 <= summary["search_p50_ms"] <= summary["search_p99_ms"]


def test_percentile_ms():
    assert percentile_ms([], 50) == 0.0
    assert percentile_ms([1.0, 2.0, 3.0], 50) == 2.0
