"""
Workload execution and statistical comparison engine for key-encoding benchmarks.

The core splits a weighted insert/read/update workload across concurrent
workers, turns per-operation latencies into percentiles and throughput, and
compares repeated-run results of two variants with descriptive statistics and
a Mann-Whitney U test. The ``benchmarks`` subpackage drives it against an
in-memory index model or a PostgreSQL container.
"""

from .executor import ConcurrentExecutor, LatencySample, Outcome, RunResult, run_workload
from .latency import percentiles, throughput
from .statistics import Comparison, Stats, aggregate, compare
from .workload import (
    ConfigurationError,
    OperationKind,
    WorkerAssignment,
    WorkloadSpec,
    distribute,
    split_ops,
)

__all__ = [
    "Comparison",
    "ConcurrentExecutor",
    "ConfigurationError",
    "LatencySample",
    "OperationKind",
    "Outcome",
    "RunResult",
    "Stats",
    "WorkerAssignment",
    "WorkloadSpec",
    "aggregate",
    "compare",
    "distribute",
    "percentiles",
    "run_workload",
    "split_ops",
    "throughput",
]
