from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Mapping

LOGGER = logging.getLogger("keybench.workload")

WEIGHT_TOTAL = 100


class ConfigurationError(ValueError):
    """Raised when a workload or benchmark is configured inconsistently."""


class OperationKind(enum.Enum):
    """Category of unit of work. Declaration order is the tie-break order."""

    INSERT = "insert"
    READ = "read"
    UPDATE = "update"

    @classmethod
    def parse(cls, value: str) -> "OperationKind":
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            raise ConfigurationError(f"unknown operation kind: {value!r}") from exc


KIND_ORDER: tuple[OperationKind, ...] = tuple(OperationKind)


@dataclass(frozen=True)
class WorkloadSpec:
    """Weighted operation mix executed by a fixed budget of workers."""

    total_ops: int
    weights: Mapping[OperationKind, int]
    worker_budget: int = 1

    def __post_init__(self) -> None:
        if self.total_ops < 0:
            raise ConfigurationError("total_ops must be >= 0")
        if self.worker_budget < 1:
            raise ConfigurationError("worker_budget must be >= 1")
        for kind, weight in self.weights.items():
            if not isinstance(kind, OperationKind):
                raise ConfigurationError(f"weight key {kind!r} is not an OperationKind")
            if isinstance(weight, bool) or not isinstance(weight, int):
                raise ConfigurationError(
                    f"weight for {kind.value} must be an integer percentage, got {weight!r}"
                )
            if weight < 0:
                raise ConfigurationError(f"weight for {kind.value} must be >= 0")
        total = sum(self.weights.values())
        if total != WEIGHT_TOTAL:
            raise ConfigurationError(
                f"operation weights must sum to {WEIGHT_TOTAL}, got {total}"
            )
        # Detach from the caller's mapping.
        object.__setattr__(self, "weights", dict(self.weights))

    def ops_by_kind(self) -> dict[OperationKind, int]:
        """Operation count per kind; fractional operations are truncated."""
        return {
            kind: self.total_ops * self.weights.get(kind, 0) // WEIGHT_TOTAL
            for kind in KIND_ORDER
        }

    def assignments(self) -> dict[OperationKind, "WorkerAssignment"]:
        return distribute(self.worker_budget, self.ops_by_kind())


@dataclass(frozen=True)
class WorkerAssignment:
    kind: OperationKind
    ops_assigned: int
    worker_count: int
    _split: tuple[int, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.ops_assigned < 0 or self.worker_count < 0:
            raise ConfigurationError("assignment counts must be >= 0")
        object.__setattr__(self, "_split", tuple(split_ops(self.ops_assigned, self.worker_count)))

    def worker_ops(self) -> list[int]:
        return list(self._split)

    def worker_ranges(self) -> list[range]:
        """Contiguous logical index range handled by each worker."""
        ranges = []
        start = 0
        for ops in self._split:
            ranges.append(range(start, start + ops))
            start += ops
        return ranges


def distribute(
    total_workers: int, ops_by_kind: Mapping[OperationKind, int]
) -> dict[OperationKind, WorkerAssignment]:
    """Split ``total_workers`` across operation kinds in proportion to their ops.

    Every kind with work gets at least one worker. When those minimums push the
    total over budget, workers are taken back one at a time from the kind with
    the largest allocation that still has more than one; ties go to the kind
    declared first in :class:`OperationKind`. If there are more active kinds
    than workers the result therefore holds one worker per active kind.
    """
    if total_workers < 1:
        raise ConfigurationError("total_workers must be >= 1")
    for kind, ops in ops_by_kind.items():
        if ops < 0:
            raise ConfigurationError(f"ops for {kind.value} must be >= 0")

    active = [kind for kind in KIND_ORDER if ops_by_kind.get(kind, 0) > 0]
    if not active:
        return {}

    total_ops = sum(ops_by_kind[kind] for kind in active)
    workers = {
        kind: max(total_workers * ops_by_kind[kind] // total_ops, 1) for kind in active
    }

    surplus = sum(workers.values()) - total_workers
    while surplus > 0:
        candidates = [kind for kind in active if workers[kind] > 1]
        if not candidates:
            break
        # max() keeps the first of equal elements, i.e. declaration order
        largest = max(candidates, key=lambda kind: workers[kind])
        workers[largest] -= 1
        surplus -= 1

    LOGGER.debug(
        "Distributed %d worker(s): %s",
        total_workers,
        ", ".join(f"{kind.value}={workers[kind]}" for kind in active),
    )
    return {
        kind: WorkerAssignment(
            kind=kind, ops_assigned=ops_by_kind[kind], worker_count=workers[kind]
        )
        for kind in active
    }


def split_ops(ops: int, workers: int) -> list[int]:
    """Per-worker op counts; the first ``ops % workers`` workers take one extra."""
    if workers <= 0:
        return []
    base, remainder = divmod(ops, workers)
    return [base + 1 if idx < remainder else base for idx in range(workers)]
