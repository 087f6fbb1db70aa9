"""Descriptive statistics over repeated runs and variant-vs-variant comparison."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

SIGNIFICANCE_LEVEL = 0.05


@dataclass(frozen=True)
class Stats:
    """Summary of one metric across repeated runs of the same variant."""

    median: float = 0.0
    mean: float = 0.0
    stddev: float = 0.0
    min: float = 0.0
    max: float = 0.0
    cv: float = 0.0
    raw_values: tuple[float, ...] = field(default=())

    @property
    def n(self) -> int:
        return len(self.raw_values)


@dataclass(frozen=True)
class Comparison:
    median_diff_percent: float
    p_value: float
    ranges_overlap: bool
    significant: bool


def median(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.median(np.asarray(values, dtype=float)))


def mean(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=float)))


def stddev(values: Sequence[float]) -> float:
    """Sample standard deviation (n - 1 denominator); 0.0 below two values."""
    if len(values) < 2:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float), ddof=1))


def coefficient_of_variation(values: Sequence[float]) -> float:
    """``stddev / |mean| * 100``, defined as 0.0 when the mean is zero."""
    m = mean(values)
    if m == 0:
        return 0.0
    return stddev(values) / abs(m) * 100


def aggregate(values: Sequence[float]) -> Stats:
    """Compute :class:`Stats` for one metric; the raw input is kept for comparison."""
    raw = tuple(float(v) for v in values)
    if not raw:
        return Stats()
    arr = np.asarray(raw, dtype=float)
    return Stats(
        median=median(raw),
        mean=mean(raw),
        stddev=stddev(raw),
        min=float(arr.min()),
        max=float(arr.max()),
        cv=coefficient_of_variation(raw),
        raw_values=raw,
    )


def ranges_overlap(a: Stats, b: Stats) -> bool:
    return not (a.min > b.max or b.min > a.max)


def normal_cdf(x: float) -> float:
    """Standard normal CDF."""
    return 0.5 * (1 + math.erf(x / math.sqrt(2)))


def rank_with_ties(values: Sequence[float]) -> list[float]:
    """1-based ranks in input order; tied values share their average rank."""
    order = sorted(range(len(values)), key=lambda idx: values[idx])
    ranks = [0.0] * len(values)
    i = 0
    while i < len(order):
        j = i
        while j < len(order) and values[order[j]] == values[order[i]]:
            j += 1
        avg_rank = (i + 1 + j) / 2
        for k in range(i, j):
            ranks[order[k]] = avg_rank
        i = j
    return ranks


def mann_whitney_u(sample1: Sequence[float], sample2: Sequence[float]) -> tuple[float, float]:
    """
    Mann-Whitney U test (Wilcoxon rank-sum test).

    Returns (U statistic, two-tailed p-value).

    The p-value always comes from the normal approximation, which is only
    accurate for moderate sample sizes; with a handful of runs per variant it
    is an approximation, not an exact small-sample test. An empty sample or a
    zero standard error gives p = 1.0.
    """
    if len(sample1) == 0 or len(sample2) == 0:
        return 0.0, 1.0

    n1 = len(sample1)
    n2 = len(sample2)

    ranks = rank_with_ties(list(sample1) + list(sample2))
    rank1_sum = sum(ranks[:n1])

    u1 = rank1_sum - n1 * (n1 + 1) / 2
    u2 = n1 * n2 - u1
    u = min(u1, u2)

    mean_u = n1 * n2 / 2
    std_u = math.sqrt(n1 * n2 * (n1 + n2 + 1) / 12)
    if std_u == 0:
        return u, 1.0

    z = (u - mean_u) / std_u
    p_value = 2 * normal_cdf(-abs(z))
    return u, min(p_value, 1.0)


def compare(baseline: Stats, candidate: Stats) -> Comparison:
    """Effect size and significance of ``candidate`` relative to ``baseline``."""
    if baseline.median == 0:
        diff = 0.0
    else:
        diff = (candidate.median - baseline.median) / baseline.median * 100

    _, p_value = mann_whitney_u(baseline.raw_values, candidate.raw_values)
    return Comparison(
        median_diff_percent=diff,
        p_value=p_value,
        ranges_overlap=ranges_overlap(baseline, candidate),
        significant=p_value < SIGNIFICANCE_LEVEL,
    )


def significance_label(comparison: Comparison) -> str:
    if not comparison.ranges_overlap:
        return "no overlap"
    if comparison.p_value < 0.001:
        return "*** (p<0.001)"
    if comparison.p_value < 0.01:
        return "** (p<0.01)"
    if comparison.p_value < SIGNIFICANCE_LEVEL:
        return "* (p<0.05)"
    return "n.s."
