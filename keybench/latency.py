"""Latency percentiles and throughput over a :class:`RunResult`."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

import pandas as pd

from .executor import RunResult
from .workload import OperationKind

PERCENTILES = (50, 95, 99)


def percentile(samples: Iterable[float], p: float) -> float:
    """Nearest-rank percentile: element ``floor(n * p / 100)`` of the sorted samples.

    Returns 0.0 for an empty input.
    """
    ordered = sorted(samples)
    n = len(ordered)
    if n == 0:
        return 0.0
    idx = min(math.floor(n * p / 100), n - 1)
    return ordered[max(idx, 0)]


def percentiles(samples: Iterable[float]) -> tuple[float, float, float]:
    """Return ``(p50, p95, p99)``.

    An empty input yields zeros rather than an error, which is indistinguishable
    from zero latency; check the sample count before trusting the numbers.
    """
    ordered = sorted(samples)
    if not ordered:
        return 0.0, 0.0, 0.0
    p50, p95, p99 = (percentile(ordered, p) for p in PERCENTILES)
    return p50, p95, p99


def throughput(ops: int, wall_seconds: float) -> float:
    if wall_seconds <= 0:
        return 0.0
    return ops / wall_seconds


@dataclass(frozen=True)
class LatencySummary:
    kind: OperationKind | None
    count: int
    succeeded: int
    failed: int
    p50: float
    p95: float
    p99: float
    mean: float
    throughput: float


def summarize(result: RunResult, kind: OperationKind | None = None) -> LatencySummary:
    """Percentiles and throughput for one operation kind, or all kinds."""
    samples = result.samples(kind)
    durations = [sample.duration for sample in samples]
    succeeded = sum(1 for sample in samples if sample.succeeded)
    p50, p95, p99 = percentiles(durations)
    return LatencySummary(
        kind=kind,
        count=len(samples),
        succeeded=succeeded,
        failed=len(samples) - succeeded,
        p50=p50,
        p95=p95,
        p99=p99,
        mean=sum(durations) / len(durations) if durations else 0.0,
        throughput=throughput(len(samples), result.wall_clock_duration),
    )


def samples_frame(result: RunResult) -> pd.DataFrame:
    rows = [
        {
            "kind": sample.kind.value,
            "duration_s": sample.duration,
            "outcome": sample.outcome.value,
        }
        for sample in result.samples()
    ]
    if not rows:
        return pd.DataFrame(columns=["kind", "duration_s", "outcome"])
    return pd.DataFrame(rows)
