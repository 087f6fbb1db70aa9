from __future__ import annotations

import pandas as pd

from .collector import ResultCollector

# Metrics shown in the console summary, in order, with their display format.
SUMMARY_METRICS: dict[str, str] = {
    "throughput": "{:,.0f}",
    "p99_latency_us": "{:,.0f}",
    "page_splits": "{:,.0f}",
    "fragmentation_percent": "{:.2f}",
    "avg_leaf_density": "{:.1f}",
    "buffer_hit_ratio": "{:.4f}",
    "index_size_mb": "{:.1f}",
    "wal_mb": "{:.1f}",
    "io_write_mb": "{:.1f}",
}

METRIC_TITLES: dict[str, str] = {
    "throughput": "Throughput (ops/sec)",
    "p99_latency_us": "Latency P99 (us)",
    "page_splits": "Page Splits",
    "fragmentation_percent": "Index Fragmentation (%)",
    "avg_leaf_density": "Average Leaf Density (%)",
    "buffer_hit_ratio": "Buffer Hit Ratio",
    "index_size_mb": "Index Size (MB)",
    "wal_mb": "WAL Generated (MB)",
    "io_write_mb": "Disk Writes (MB)",
}


def render_summary(collector: ResultCollector, runs: int) -> str:
    stats = collector.stats_frame()
    comparisons = collector.comparisons_frame()
    width = 100
    lines = [
        "=" * width,
        f"{collector.scenario} - Statistical Summary ({runs} runs per variant)",
        "=" * width,
    ]
    for metric, fmt in SUMMARY_METRICS.items():
        subset = stats[stats["metric"] == metric]
        if subset.empty:
            continue
        lines.append("")
        lines.append(METRIC_TITLES.get(metric, metric))
        lines.append(_metric_table(subset, fmt))
        compared = comparisons[comparisons["metric"] == metric]
        if not compared.empty:
            lines.append("")
            lines.append(f"Statistical Comparisons (vs {collector.baseline.upper()}):")
            lines.append(_comparison_table(compared))
    return "\n".join(lines)


def _metric_table(subset: pd.DataFrame, fmt: str) -> str:
    table = pd.DataFrame(
        {
            "Variant": subset["variant"].str.upper(),
            "Median": subset["median"].map(fmt.format),
            "Mean": subset["mean"].map(fmt.format),
            "StdDev": subset["stddev"].map(fmt.format),
            "Min": subset["min"].map(fmt.format),
            "Max": subset["max"].map(fmt.format),
            "CV %": subset["cv_percent"].map("{:.1f}".format),
        }
    )
    return table.to_string(index=False)


def _comparison_table(compared: pd.DataFrame) -> str:
    table = pd.DataFrame(
        {
            "Comparison": compared["baseline"].str.upper() + " vs " + compared["variant"].str.upper(),
            "Median Diff": compared["median_diff_percent"].map("{:+.1f}%".format),
            "p-value": compared["p_value"].map("{:.4f}".format),
            "Overlap?": compared["ranges_overlap"].map({True: "Yes", False: "No"}),
            "Significant?": compared["verdict"],
        }
    )
    return table.to_string(index=False)
