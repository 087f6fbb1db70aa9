from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Sequence

import pandas as pd

from ..executor import RunResult
from ..latency import summarize
from ..statistics import Comparison, Stats, aggregate, compare, significance_label

LOGGER = logging.getLogger("keybench.benchmarks.collector")

MICROSECONDS = 1_000_000

STATS_COLUMNS = [
    "variant",
    "metric",
    "runs",
    "median",
    "mean",
    "stddev",
    "min",
    "max",
    "cv_percent",
]
COMPARISON_COLUMNS = [
    "baseline",
    "variant",
    "metric",
    "median_diff_percent",
    "p_value",
    "ranges_overlap",
    "significant",
    "verdict",
]


def run_metrics(result: RunResult, target_metrics: Mapping[str, float] | None = None) -> dict[str, float]:
    """Flatten one run into named scalar metrics."""
    overall = summarize(result)
    metrics: dict[str, float] = {
        "throughput": overall.throughput,
        "p50_latency_us": overall.p50 * MICROSECONDS,
        "p95_latency_us": overall.p95 * MICROSECONDS,
        "p99_latency_us": overall.p99 * MICROSECONDS,
        "ops_failed": float(result.ops_failed),
    }
    for kind in result.kinds():
        per_kind = summarize(result, kind)
        metrics[f"{kind.value}_throughput"] = per_kind.throughput
        metrics[f"{kind.value}_p99_latency_us"] = per_kind.p99 * MICROSECONDS
    for name, value in (target_metrics or {}).items():
        metrics[name] = float(value)
    return metrics


class ResultCollector:
    """Accumulates repeated runs per variant and derives stats and comparisons."""

    def __init__(self, scenario: str, variants: Sequence[str], baseline: str) -> None:
        self.scenario = scenario
        self._variants = list(variants)
        self._baseline = baseline
        self._rows: list[dict[str, Any]] = []
        self._metric_names: list[str] = []

    @property
    def baseline(self) -> str:
        return self._baseline

    def record(
        self,
        variant: str,
        run: int,
        result: RunResult,
        target_metrics: Mapping[str, float] | None = None,
    ) -> dict[str, float]:
        metrics = run_metrics(result, target_metrics)
        for name in metrics:
            if name not in self._metric_names:
                self._metric_names.append(name)
        self._rows.append({"scenario": self.scenario, "variant": variant, "run": run, **metrics})
        LOGGER.debug("Recorded %s run %d for %s: %s", self.scenario, run, variant, metrics)
        return metrics

    def metric_names(self) -> list[str]:
        return list(self._metric_names)

    def values(self, variant: str, metric: str) -> list[float]:
        return [
            row[metric]
            for row in self._rows
            if row["variant"] == variant and metric in row
        ]

    def stats(self) -> dict[str, dict[str, Stats]]:
        return {
            variant: {
                metric: aggregate(self.values(variant, metric))
                for metric in self._metric_names
            }
            for variant in self._recorded_variants()
        }

    def comparisons(self) -> dict[str, dict[str, Comparison]]:
        stats = self.stats()
        baseline = stats.get(self._baseline)
        if baseline is None:
            LOGGER.warning("No runs recorded for baseline %s", self._baseline)
            return {}
        return {
            variant: {
                metric: compare(baseline[metric], by_metric[metric])
                for metric in self._metric_names
            }
            for variant, by_metric in stats.items()
            if variant != self._baseline
        }

    def runs_frame(self) -> pd.DataFrame:
        if not self._rows:
            return pd.DataFrame(columns=["scenario", "variant", "run"])
        return pd.DataFrame(self._rows)

    def stats_frame(self) -> pd.DataFrame:
        rows = [
            {
                "variant": variant,
                "metric": metric,
                "runs": stats.n,
                "median": stats.median,
                "mean": stats.mean,
                "stddev": stats.stddev,
                "min": stats.min,
                "max": stats.max,
                "cv_percent": stats.cv,
            }
            for variant, by_metric in self.stats().items()
            for metric, stats in by_metric.items()
        ]
        return pd.DataFrame(rows, columns=STATS_COLUMNS)

    def comparisons_frame(self) -> pd.DataFrame:
        rows = [
            {
                "baseline": self._baseline,
                "variant": variant,
                "metric": metric,
                "median_diff_percent": comparison.median_diff_percent,
                "p_value": comparison.p_value,
                "ranges_overlap": comparison.ranges_overlap,
                "significant": comparison.significant,
                "verdict": significance_label(comparison),
            }
            for variant, by_metric in self.comparisons().items()
            for metric, comparison in by_metric.items()
        ]
        return pd.DataFrame(rows, columns=COMPARISON_COLUMNS)

    def export(self, output_dir: Path) -> dict[str, Path]:
        output_dir.mkdir(parents=True, exist_ok=True)
        frames = {
            "runs": self.runs_frame(),
            "stats": self.stats_frame(),
            "comparisons": self.comparisons_frame(),
        }
        paths = {}
        for label, frame in frames.items():
            path = output_dir / f"{self.scenario}__{label}.csv"
            frame.to_csv(path, index=False, float_format="%.4f")
            LOGGER.info("Saved %s %s to %s (%d rows)", self.scenario, label, path, len(frame))
            paths[label] = path
        return paths

    def _recorded_variants(self) -> list[str]:
        seen = {row["variant"] for row in self._rows}
        return [variant for variant in self._variants if variant in seen]
