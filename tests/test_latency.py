"""Tests for keybench/latency.py: nearest-rank percentiles, throughput, summaries."""

from __future__ import annotations

import random

import pytest

from keybench.executor import LatencySample, Outcome, RunResult
from keybench.latency import percentile, percentiles, samples_frame, summarize, throughput
from keybench.workload import OperationKind

INSERT = OperationKind.INSERT
READ = OperationKind.READ


def _result(wall: float = 2.0) -> RunResult:
    inserts = tuple(
        LatencySample(INSERT, d, Outcome.SUCCESS) for d in (0.001, 0.002, 0.003, 0.004)
    )
    reads = (
        LatencySample(READ, 0.010, Outcome.SUCCESS),
        LatencySample(READ, 0.020, Outcome.FAILURE),
    )
    return RunResult(
        per_kind_latencies={INSERT: inserts, READ: reads},
        wall_clock_duration=wall,
        ops_succeeded=5,
        ops_failed=1,
    )


# ---------------------------------------------------------------------------
# percentiles
# ---------------------------------------------------------------------------


def test_percentiles_empty_is_zero() -> None:
    assert percentiles([]) == (0.0, 0.0, 0.0)
    assert percentile([], 50) == 0.0


def test_percentiles_nearest_rank_no_interpolation() -> None:
    samples = [float(v) for v in range(1, 101)]  # 1..100
    # idx = floor(100 * p / 100) -> element at that zero-based index
    assert percentiles(samples) == (51.0, 96.0, 100.0)


def test_percentiles_small_sample() -> None:
    assert percentiles([3.0, 1.0, 2.0]) == (2.0, 3.0, 3.0)
    assert percentiles([7.0]) == (7.0, 7.0, 7.0)


def test_percentiles_do_not_mutate_input() -> None:
    samples = [3.0, 1.0, 2.0]
    percentiles(samples)
    assert samples == [3.0, 1.0, 2.0]


def test_percentiles_constant_latency_across_workers() -> None:
    merged = [0.010] * 100 + [0.010] * 100 + [0.010] * 100 + [0.010] * 100
    assert percentiles(merged) == (0.010, 0.010, 0.010)


def test_percentiles_permutation_invariant_and_ordered() -> None:
    rng = random.Random(1234)
    for size in (1, 2, 5, 19, 100, 1001):
        samples = [rng.expovariate(100.0) for _ in range(size)]
        expected = percentiles(samples)
        for _ in range(5):
            rng.shuffle(samples)
            assert percentiles(samples) == expected
        p50, p95, p99 = expected
        assert p50 <= p95 <= p99


def test_percentile_clamps_at_100() -> None:
    assert percentile([1.0, 2.0, 3.0], 100) == 3.0
    assert percentile([1.0, 2.0, 3.0], 0) == 1.0


# ---------------------------------------------------------------------------
# throughput
# ---------------------------------------------------------------------------


def test_throughput() -> None:
    assert throughput(500, 2.0) == 250.0


def test_throughput_zero_wall_clock_is_zero() -> None:
    assert throughput(0, 0.0) == 0.0
    assert throughput(10, 0.0) == 0.0


# ---------------------------------------------------------------------------
# summarize / samples_frame
# ---------------------------------------------------------------------------


def test_summarize_all_kinds() -> None:
    summary = summarize(_result())
    assert summary.kind is None
    assert summary.count == 6
    assert summary.succeeded == 5
    assert summary.failed == 1
    assert summary.throughput == pytest.approx(3.0)
    # sorted: .001 .002 .003 .004 .010 .020 -> idx 3, 5, 5
    assert (summary.p50, summary.p95, summary.p99) == (0.004, 0.020, 0.020)
    assert summary.mean == pytest.approx(0.040 / 6)


def test_summarize_single_kind() -> None:
    summary = summarize(_result(), READ)
    assert summary.count == 2
    assert summary.failed == 1
    assert summary.throughput == pytest.approx(1.0)


def test_per_kind_throughput_uses_wall_clock() -> None:
    result = _result(wall=2.0)
    insert = summarize(result, INSERT)
    read = summarize(result, READ)
    # 4 inserts over 2s, not 4 over the 0.01s spent inside insert calls
    assert insert.throughput == pytest.approx(2.0)
    assert insert.throughput + read.throughput == pytest.approx(summarize(result).throughput)


def test_summarize_missing_kind_is_empty() -> None:
    summary = summarize(_result(), OperationKind.UPDATE)
    assert summary.count == 0
    assert (summary.p50, summary.p95, summary.p99, summary.mean) == (0.0, 0.0, 0.0, 0.0)


def test_samples_frame() -> None:
    frame = samples_frame(_result())
    assert list(frame.columns) == ["kind", "duration_s", "outcome"]
    assert len(frame) == 6
    assert frame["outcome"].value_counts().to_dict() == {"success": 5, "failure": 1}
    assert list(frame["kind"].unique()) == ["insert", "read"]


def test_samples_frame_empty() -> None:
    empty = RunResult(per_kind_latencies={}, wall_clock_duration=0.0, ops_succeeded=0, ops_failed=0)
    frame = samples_frame(empty)
    assert frame.empty
    assert list(frame.columns) == ["kind", "duration_s", "outcome"]
