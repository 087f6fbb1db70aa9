from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from ..keys import DEFAULT_BASELINE, VARIANTS
from ..workload import ConfigurationError, OperationKind, WorkloadSpec


@dataclass(frozen=True)
class WorkloadProfile:
    """Operation mix of a scenario, in integer percent."""

    name: str
    weights: Mapping[OperationKind, int]
    description: str | None = None
    # Fixed worker count; None uses the plan's worker budget.
    workers: int | None = None

    def worker_budget(self, requested: int) -> int:
        return self.workers if self.workers is not None else requested

    def workload_spec(self, total_ops: int, workers: int) -> WorkloadSpec:
        return WorkloadSpec(total_ops=total_ops, weights=self.weights, worker_budget=workers)

    def mix_label(self) -> str:
        return ", ".join(
            f"{weight}% {kind.value}" for kind, weight in self.weights.items() if weight > 0
        )


@dataclass(frozen=True)
class BenchmarkCase:
    """Repeated execution of one workload profile against every variant."""

    name: str
    profile: WorkloadProfile
    total_ops: int
    workers: int
    initial_dataset: int
    num_runs: int = 5
    variants: Sequence[str] = VARIANTS
    baseline: str = DEFAULT_BASELINE

    def __post_init__(self) -> None:
        if self.num_runs < 1:
            raise ConfigurationError("num_runs must be >= 1")
        if self.initial_dataset < 0:
            raise ConfigurationError("initial_dataset must be >= 0")
        unknown = [variant for variant in self.variants if variant not in VARIANTS]
        if unknown:
            raise ConfigurationError(f"unknown variant(s): {', '.join(unknown)}")
        if self.baseline not in self.variants:
            raise ConfigurationError(
                f"baseline {self.baseline!r} is not among the benchmarked variants"
            )
        # Validates weights and worker budget up front.
        self.workload_spec()

    def workload_spec(self) -> WorkloadSpec:
        return self.profile.workload_spec(self.total_ops, self.workers)


@dataclass
class BenchmarkPlan:
    """Complete set of benchmark cases the harness will execute."""

    cases: list[BenchmarkCase] = field(default_factory=list)

    def __iter__(self) -> Iterable[BenchmarkCase]:
        return iter(self.cases)

    def __len__(self) -> int:
        return len(self.cases)


INSERT_PERFORMANCE = WorkloadProfile(
    name="insert-performance",
    weights={OperationKind.INSERT: 100},
    description="Single-connection inserts into an empty table: splits, fragmentation, size.",
    workers=1,
)
CONCURRENT_INSERT = WorkloadProfile(
    name="concurrent-insert",
    weights={OperationKind.INSERT: 100},
    description="Inserts from every worker at once: contention on hot or scattered pages.",
)
READ_AFTER_FRAGMENTATION = WorkloadProfile(
    name="read-after-fragmentation",
    weights={OperationKind.READ: 100},
    description=(
        "Point lookups after the initial load has laid out the index in key "
        "generation order: buffer hit ratio over a fragmented index."
    ),
    workers=1,
)
UPDATE_PERFORMANCE = WorkloadProfile(
    name="update-performance",
    weights={OperationKind.UPDATE: 100},
    description="Single-connection point updates over a loaded table.",
    workers=1,
)
INSERT_HEAVY = WorkloadProfile(
    name="mixed-insert-heavy",
    weights={OperationKind.INSERT: 90, OperationKind.READ: 10, OperationKind.UPDATE: 0},
    description="Insert-heavy mix: write amplification under concurrent reads.",
)
READ_HEAVY = WorkloadProfile(
    name="mixed-read-heavy",
    weights={OperationKind.INSERT: 10, OperationKind.READ: 90, OperationKind.UPDATE: 0},
    description="Read-heavy mix: lookup cost over a fragmented index.",
)
BALANCED = WorkloadProfile(
    name="mixed-balanced",
    weights={OperationKind.INSERT: 50, OperationKind.READ: 30, OperationKind.UPDATE: 20},
    description="Balanced OLTP mix of inserts, reads and updates.",
)

PROFILES: dict[str, WorkloadProfile] = {
    profile.name: profile
    for profile in (
        INSERT_PERFORMANCE,
        CONCURRENT_INSERT,
        READ_AFTER_FRAGMENTATION,
        UPDATE_PERFORMANCE,
        INSERT_HEAVY,
        READ_HEAVY,
        BALANCED,
    )
}

# Rows loaded before the timed workload starts.
INITIAL_DATASETS: dict[str, int] = {
    "insert-performance": 0,
    "concurrent-insert": 0,
    "read-after-fragmentation": 100_000,
    "update-performance": 100_000,
    "mixed-insert-heavy": 100_000,
    "mixed-read-heavy": 1_000_000,
    "mixed-balanced": 500_000,
}


def profile_by_name(name: str) -> WorkloadProfile:
    try:
        return PROFILES[name]
    except KeyError as exc:
        raise ConfigurationError(
            f"unknown scenario {name!r}; expected one of {', '.join(PROFILES)}"
        ) from exc


def default_benchmark_plan(
    total_ops: int = 10_000,
    workers: int = 8,
    num_runs: int = 5,
) -> BenchmarkPlan:
    """Return the default suite: every scenario against every variant."""
    return BenchmarkPlan(
        cases=[
            BenchmarkCase(
                name=name,
                profile=profile,
                total_ops=total_ops,
                workers=profile.worker_budget(workers),
                initial_dataset=INITIAL_DATASETS[name],
                num_runs=num_runs,
            )
            for name, profile in PROFILES.items()
        ]
    )


def build_plan(
    scenarios: Sequence[str],
    total_ops: int,
    workers: int,
    num_runs: int,
    variants: Sequence[str] = VARIANTS,
    baseline: str = DEFAULT_BASELINE,
    initial_dataset: int | None = None,
) -> BenchmarkPlan:
    if not scenarios or list(scenarios) == ["all"]:
        scenarios = list(PROFILES)
    plan = default_benchmark_plan(total_ops=total_ops, workers=workers, num_runs=num_runs)
    selected = {case.name: case for case in plan}
    cases = []
    for name in scenarios:
        profile_by_name(name)
        case = dataclasses.replace(
            selected[name],
            variants=tuple(variants),
            baseline=baseline,
        )
        if initial_dataset is not None:
            case = dataclasses.replace(case, initial_dataset=initial_dataset)
        cases.append(case)
    return BenchmarkPlan(cases=cases)
