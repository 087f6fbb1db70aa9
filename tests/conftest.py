from __future__ import annotations

import matplotlib

matplotlib.use("Agg")

import pytest  # noqa: E402

from keybench.benchmarks.collector import ResultCollector  # noqa: E402
from keybench.executor import LatencySample, Outcome, RunResult  # noqa: E402
from keybench.workload import OperationKind  # noqa: E402


def make_result(latency: float, ops: int = 10, failed: int = 0, wall: float = 1.0) -> RunResult:
    """RunResult of ``ops`` inserts at constant ``latency``; the last ``failed`` ones fail."""
    samples = tuple(
        LatencySample(
            OperationKind.INSERT,
            latency,
            Outcome.FAILURE if idx >= ops - failed else Outcome.SUCCESS,
        )
        for idx in range(ops)
    )
    return RunResult(
        per_kind_latencies={OperationKind.INSERT: samples},
        wall_clock_duration=wall,
        ops_succeeded=ops - failed,
        ops_failed=failed,
    )


@pytest.fixture
def filled_collector() -> ResultCollector:
    """Three runs each of a fast baseline and a slower, fragmenting variant."""
    collector = ResultCollector("mixed-insert-heavy", ["bigserial", "uuidv4"], "bigserial")
    for run, wall in enumerate((1.00, 1.02, 0.98), start=1):
        collector.record(
            "bigserial",
            run,
            make_result(0.001, wall=wall),
            {"page_splits": 10.0 + run, "fragmentation_percent": 0.0},
        )
    for run, wall in enumerate((2.00, 2.04, 1.96), start=1):
        collector.record(
            "uuidv4",
            run,
            make_result(0.002, wall=wall),
            {"page_splits": 100.0 + run, "fragmentation_percent": 40.0 + run},
        )
    return collector
