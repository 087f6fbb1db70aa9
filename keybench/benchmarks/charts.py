from __future__ import annotations

import logging
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .collector import ResultCollector

LOGGER = logging.getLogger("keybench.benchmarks.charts")

sns.set_style("whitegrid")
plt.rcParams["figure.dpi"] = 100
plt.rcParams["savefig.dpi"] = 300
plt.rcParams["font.size"] = 10
plt.rcParams["axes.labelsize"] = 11
plt.rcParams["axes.titlesize"] = 13
plt.rcParams["xtick.labelsize"] = 10
plt.rcParams["ytick.labelsize"] = 10
plt.rcParams["legend.fontsize"] = 9
plt.rcParams["figure.titlesize"] = 14

VARIANT_COLORS = {
    "bigserial": "#2E86AB",  # Blue
    "uuidv4": "#C73E1D",  # Red
    "uuidv7": "#6A994E",  # Green
    "ulid": "#F18F01",  # Orange
    "uuidv1": "#A23B72",  # Purple
}

VARIANT_NAMES = {
    "bigserial": "BIGSERIAL",
    "uuidv4": "UUIDv4",
    "uuidv7": "UUIDv7",
    "ulid": "ULID",
    "uuidv1": "UUIDv1",
}

BOXPLOT_METRICS: dict[str, str] = {
    "throughput": "Throughput (ops/sec)",
    "p99_latency_us": "Latency P99 (us)",
    "fragmentation_percent": "Index Fragmentation (%)",
    "page_splits": "Page Splits",
}

LATENCY_METRICS = ["p50_latency_us", "p95_latency_us", "p99_latency_us"]


def render_case_charts(collector: ResultCollector, output_dir: Path) -> list[Path]:
    """Render every chart for one scenario; returns the paths written."""
    output_dir.mkdir(parents=True, exist_ok=True)
    runs = collector.runs_frame()
    if runs.empty:
        LOGGER.warning("No runs recorded for %s, skipping charts", collector.scenario)
        return []

    paths: list[Path] = []
    for metric, label in BOXPLOT_METRICS.items():
        if metric not in runs.columns:
            continue
        chart_path = output_dir / f"{collector.scenario}__{metric}.png"
        _render_metric_boxplot(runs, metric, label, collector.scenario, chart_path)
        paths.append(chart_path)

    latency_path = output_dir / f"{collector.scenario}__latency_percentiles.png"
    _render_latency_bars(collector.stats_frame(), collector.scenario, latency_path)
    paths.append(latency_path)

    comparisons = collector.comparisons_frame()
    if not comparisons.empty:
        heatmap_path = output_dir / f"{collector.scenario}__median_diff_heatmap.png"
        _render_diff_heatmap(comparisons, collector.scenario, heatmap_path)
        paths.append(heatmap_path)

    for path in paths:
        LOGGER.info("Rendering chart %s", path)
    return paths


def _variant_order(frame: pd.DataFrame) -> list[str]:
    present = list(dict.fromkeys(frame["variant"]))
    return [VARIANT_NAMES.get(v, v.upper()) for v in present]


def _palette(frame: pd.DataFrame) -> list[str]:
    return [VARIANT_COLORS.get(v, "#808080") for v in dict.fromkeys(frame["variant"])]


def _render_metric_boxplot(
    runs: pd.DataFrame,
    metric: str,
    label: str,
    scenario: str,
    chart_path: Path,
) -> None:
    """Distribution of one metric across repeated runs, per variant."""
    df = runs[["variant", metric]].dropna().copy()
    df["variant_display"] = df["variant"].map(lambda v: VARIANT_NAMES.get(v, v.upper()))
    order = _variant_order(df)

    fig, ax = plt.subplots(figsize=(10, 6))
    sns.boxplot(
        data=df,
        x="variant_display",
        y=metric,
        order=order,
        palette=_palette(df),
        hue="variant_display",
        hue_order=order,
        legend=False,
        ax=ax,
        linewidth=1.5,
        width=0.6,
    )
    sns.stripplot(
        data=df,
        x="variant_display",
        y=metric,
        order=order,
        color="#333333",
        size=5,
        alpha=0.7,
        ax=ax,
    )

    ax.set_xlabel("Key Type", fontweight="semibold", labelpad=10)
    ax.set_ylabel(label, fontweight="semibold", labelpad=10)
    ax.set_title(f"{label} - {scenario}", fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, linestyle="--", linewidth=0.5, axis="y")
    ax.set_axisbelow(True)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)


def _render_latency_bars(stats: pd.DataFrame, scenario: str, chart_path: Path) -> None:
    """Grouped bars of the median p50/p95/p99 latency per variant."""
    subset = stats[stats["metric"].isin(LATENCY_METRICS)]
    fig, ax = plt.subplots(figsize=(10, 6))
    if subset.empty:
        LOGGER.warning("No latency data available for latency chart")
    else:
        pivot = subset.pivot(index="variant", columns="metric", values="median")
        pivot = pivot.reindex(list(dict.fromkeys(subset["variant"])))
        x = np.arange(len(pivot.index))
        bar_width = 0.25
        for offset, metric in enumerate(LATENCY_METRICS):
            if metric not in pivot.columns:
                continue
            ax.bar(
                x + (offset - 1) * bar_width,
                pivot[metric].values,
                width=bar_width,
                label=metric.split("_")[0].upper(),
                alpha=0.85,
                edgecolor="white",
                linewidth=1.5,
            )
        ax.set_xticks(x)
        ax.set_xticklabels([VARIANT_NAMES.get(v, v.upper()) for v in pivot.index])
        ax.legend(frameon=True, fancybox=True, title="Percentile")

    ax.set_xlabel("Key Type", fontweight="semibold")
    ax.set_ylabel("Median Latency (us)", fontweight="semibold")
    ax.set_title(f"Latency Percentiles - {scenario}", fontweight="bold", pad=15)
    ax.grid(True, alpha=0.3, axis="y", linestyle="--")

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)


def _render_diff_heatmap(comparisons: pd.DataFrame, scenario: str, chart_path: Path) -> None:
    """Median difference vs the baseline, one row per metric."""
    matrix = comparisons.pivot(index="metric", columns="variant", values="median_diff_percent")
    matrix = matrix.reindex(columns=list(dict.fromkeys(comparisons["variant"])))
    baseline = comparisons["baseline"].iloc[0]

    fig, ax = plt.subplots(figsize=(10, max(4, 0.5 * len(matrix.index) + 2)))
    sns.heatmap(
        matrix,
        annot=True,
        fmt="+.1f",
        center=0,
        cmap="RdBu_r",
        xticklabels=[VARIANT_NAMES.get(v, v.upper()) for v in matrix.columns],
        cbar_kws={"label": f"Median difference vs {VARIANT_NAMES.get(baseline, baseline)} (%)"},
        ax=ax,
    )
    ax.set_xlabel("Key Type", fontweight="semibold")
    ax.set_ylabel("Metric", fontweight="semibold")
    ax.set_title(f"Median Difference vs Baseline - {scenario}", fontweight="bold", pad=15)

    plt.tight_layout()
    fig.savefig(chart_path, bbox_inches="tight", facecolor="white")
    plt.close(fig)
