from __future__ import annotations

import enum
import logging
import numbers
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional

from .workload import (
    KIND_ORDER,
    ConfigurationError,
    OperationKind,
    WorkerAssignment,
    WorkloadSpec,
)

LOGGER = logging.getLogger("keybench.executor")

# Raises on failure. A numeric return value is taken as the elapsed seconds
# reported by the system under test and replaces the executor's own timing.
OperationCallback = Callable[[OperationKind, int], Optional[float]]


class Outcome(enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class LatencySample:
    kind: OperationKind
    duration: float
    outcome: Outcome

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCESS


@dataclass(frozen=True)
class RunResult:
    """Outcome of one execution of the concurrent workload."""

    per_kind_latencies: Mapping[OperationKind, tuple[LatencySample, ...]]
    wall_clock_duration: float
    ops_succeeded: int
    ops_failed: int

    @property
    def ops_completed(self) -> int:
        return self.ops_succeeded + self.ops_failed

    def samples(self, kind: OperationKind | None = None) -> list[LatencySample]:
        if kind is not None:
            return list(self.per_kind_latencies.get(kind, ()))
        return [
            sample
            for k in KIND_ORDER
            for sample in self.per_kind_latencies.get(k, ())
        ]

    def durations(self, kind: OperationKind | None = None) -> list[float]:
        return [sample.duration for sample in self.samples(kind)]

    def kinds(self) -> list[OperationKind]:
        return [kind for kind in KIND_ORDER if kind in self.per_kind_latencies]


@dataclass
class _RunAccumulator:
    """Shared state written by workers; each worker takes the lock once."""

    lock: threading.Lock = field(default_factory=threading.Lock)
    latencies: dict[OperationKind, list[LatencySample]] = field(default_factory=dict)
    succeeded: int = 0
    failed: int = 0

    def merge(self, kind: OperationKind, batch: list[LatencySample], failed: int) -> None:
        with self.lock:
            self.latencies.setdefault(kind, []).extend(batch)
            self.succeeded += len(batch) - failed
            self.failed += failed

    def freeze(self, wall_clock_duration: float) -> RunResult:
        return RunResult(
            per_kind_latencies={
                kind: tuple(samples) for kind, samples in self.latencies.items()
            },
            wall_clock_duration=wall_clock_duration,
            ops_succeeded=self.succeeded,
            ops_failed=self.failed,
        )


class ConcurrentExecutor:
    """Run each (kind, worker) pair of an assignment on its own thread.

    Each worker calls its kind's callback sequentially for its share of the
    logical indices and times every call individually. ``run`` blocks until
    all workers are done; there is no timeout, so a callback that never
    returns blocks the run forever.
    """

    def __init__(self, clock: Callable[[], float] = time.perf_counter) -> None:
        self._clock = clock

    def run(
        self,
        assignment: Mapping[OperationKind, WorkerAssignment],
        operations: Mapping[OperationKind, OperationCallback],
    ) -> RunResult:
        active = [
            assignment[kind]
            for kind in KIND_ORDER
            if kind in assignment and assignment[kind].ops_assigned > 0
        ]
        missing = [a.kind.value for a in active if a.kind not in operations]
        if missing:
            raise ConfigurationError(
                f"no operation callback for: {', '.join(missing)}"
            )

        accumulator = _RunAccumulator()
        threads: list[threading.Thread] = []
        for worker_assignment in active:
            callback = operations[worker_assignment.kind]
            for worker_id, indices in enumerate(worker_assignment.worker_ranges()):
                thread = threading.Thread(
                    target=self._worker,
                    args=(worker_assignment.kind, worker_id, indices, callback, accumulator),
                    name=f"keybench-{worker_assignment.kind.value}-{worker_id}",
                    daemon=True,
                )
                threads.append(thread)

        LOGGER.info(
            "Starting %d worker(s): %s",
            len(threads),
            ", ".join(
                f"{a.kind.value}={a.worker_count}x{a.ops_assigned}ops" for a in active
            ) or "<none>",
        )

        started_at = self._clock()
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        wall_clock_duration = max(self._clock() - started_at, 0.0)

        result = accumulator.freeze(wall_clock_duration)
        LOGGER.info(
            "Workload finished in %.3fs (%d succeeded, %d failed)",
            wall_clock_duration,
            result.ops_succeeded,
            result.ops_failed,
        )
        return result

    def _worker(
        self,
        kind: OperationKind,
        worker_id: int,
        indices: range,
        callback: OperationCallback,
        accumulator: _RunAccumulator,
    ) -> None:
        batch: list[LatencySample] = []
        failed = 0
        try:
            for logical_index in indices:
                start = self._clock()
                try:
                    reported = callback(kind, logical_index)
                except Exception:  # noqa: BLE001
                    elapsed = self._clock() - start
                    failed += 1
                    LOGGER.debug(
                        "%s operation %d failed", kind.value, logical_index, exc_info=True
                    )
                    batch.append(LatencySample(kind, max(elapsed, 0.0), Outcome.FAILURE))
                    continue
                elapsed = self._clock() - start
                if isinstance(reported, numbers.Real) and not isinstance(reported, bool):
                    elapsed = float(reported)
                batch.append(LatencySample(kind, max(elapsed, 0.0), Outcome.SUCCESS))
        finally:
            accumulator.merge(kind, batch, failed)
            LOGGER.debug(
                "Worker %s-%d merged %d sample(s)", kind.value, worker_id, len(batch)
            )


def run_workload(
    spec: WorkloadSpec,
    operations: Mapping[OperationKind, OperationCallback],
    executor: ConcurrentExecutor | None = None,
) -> RunResult:
    """Distribute ``spec`` across its worker budget and execute it."""
    executor = executor or ConcurrentExecutor()
    return executor.run(spec.assignments(), operations)
