"""Tests for keybench/statistics.py: descriptive stats and the Mann-Whitney comparison."""

from __future__ import annotations

import math

import pytest

from keybench.statistics import (
    SIGNIFICANCE_LEVEL,
    Comparison,
    Stats,
    aggregate,
    coefficient_of_variation,
    compare,
    mann_whitney_u,
    median,
    normal_cdf,
    rank_with_ties,
    ranges_overlap,
    significance_label,
    stddev,
)

BASELINE = [100.0, 102.0, 98.0, 101.0, 99.0]
CANDIDATE = [150.0, 148.0, 152.0, 149.0, 151.0]


# ---------------------------------------------------------------------------
# aggregate
# ---------------------------------------------------------------------------


def test_median_odd_and_even() -> None:
    assert median([3.0, 1.0, 2.0]) == 2.0
    assert median([4.0, 1.0, 3.0, 2.0]) == 2.5
    assert median([]) == 0.0


def test_stddev_is_sample_stddev() -> None:
    values = [2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]
    # population stddev would be exactly 2.0
    assert stddev(values) == pytest.approx(math.sqrt(32 / 7))


def test_stddev_below_two_values_is_zero() -> None:
    assert stddev([]) == 0.0
    assert stddev([42.0]) == 0.0


def test_cv_zero_mean_is_zero() -> None:
    assert coefficient_of_variation([-1.0, 1.0]) == 0.0
    assert coefficient_of_variation([0.0, 0.0, 0.0]) == 0.0


def test_cv_uses_absolute_mean() -> None:
    assert coefficient_of_variation([-2.0, -4.0]) == pytest.approx(
        stddev([-2.0, -4.0]) / 3.0 * 100
    )


@pytest.mark.parametrize("x", [0.0, 1.0, -3.5, 12345.678])
def test_aggregate_single_value(x: float) -> None:
    stats = aggregate([x])
    assert stats == Stats(median=x, mean=x, stddev=0.0, min=x, max=x, cv=0.0, raw_values=(x,))


def test_aggregate_baseline_scenario() -> None:
    stats = aggregate(BASELINE)
    assert stats.median == 100.0
    assert stats.mean == pytest.approx(100.0)
    assert stats.stddev == pytest.approx(math.sqrt(2.5))
    assert stats.min == 98.0
    assert stats.max == 102.0
    assert stats.cv == pytest.approx(math.sqrt(2.5) / 100 * 100)
    assert stats.raw_values == tuple(BASELINE)
    assert stats.n == 5


def test_aggregate_keeps_input_order_and_returns_plain_floats() -> None:
    stats = aggregate([3, 1, 2])
    assert stats.raw_values == (3.0, 1.0, 2.0)
    assert type(stats.median) is float
    assert type(stats.stddev) is float


def test_aggregate_empty() -> None:
    assert aggregate([]) == Stats()


# ---------------------------------------------------------------------------
# ranking / Mann-Whitney U
# ---------------------------------------------------------------------------


def test_rank_with_ties_averages_tied_block() -> None:
    assert rank_with_ties([10.0, 20.0, 20.0, 30.0]) == [1.0, 2.5, 2.5, 4.0]
    assert rank_with_ties([5.0, 5.0, 5.0]) == [2.0, 2.0, 2.0]
    assert rank_with_ties([3.0, 1.0, 2.0]) == [3.0, 1.0, 2.0]


def test_normal_cdf() -> None:
    assert normal_cdf(0.0) == pytest.approx(0.5)
    assert normal_cdf(1.96) == pytest.approx(0.975, abs=1e-3)
    assert normal_cdf(-1.96) == pytest.approx(0.025, abs=1e-3)


def test_mann_whitney_complete_separation() -> None:
    u, p = mann_whitney_u(BASELINE, CANDIDATE)
    assert u == 0.0
    z = (0 - 12.5) / math.sqrt(25 * 11 / 12)
    assert p == pytest.approx(2 * normal_cdf(z))
    assert p < SIGNIFICANCE_LEVEL


def test_mann_whitney_is_symmetric() -> None:
    assert mann_whitney_u(BASELINE, CANDIDATE) == mann_whitney_u(CANDIDATE, BASELINE)


def test_mann_whitney_with_ties() -> None:
    a = [1.0, 2.0, 2.0, 3.0]
    b = [2.0, 3.0, 4.0, 4.0]
    # combined ranks: 1->1, 2->3 (x3), 3->5.5 (x2), 4->7.5 (x2)
    # R_a = 1 + 3 + 3 + 5.5 = 12.5, U1 = 12.5 - 10 = 2.5
    u, p = mann_whitney_u(a, b)
    assert u == 2.5
    z = (2.5 - 8) / math.sqrt(16 * 9 / 12)
    assert p == pytest.approx(2 * normal_cdf(-abs(z)))


def test_mann_whitney_empty_input() -> None:
    assert mann_whitney_u([], [1.0, 2.0]) == (0.0, 1.0)
    assert mann_whitney_u([1.0], []) == (0.0, 1.0)


def test_mann_whitney_identical_samples() -> None:
    _, p = mann_whitney_u(BASELINE, BASELINE)
    assert p == pytest.approx(1.0)


# ---------------------------------------------------------------------------
# compare
# ---------------------------------------------------------------------------


def test_compare_concrete_scenario() -> None:
    comparison = compare(aggregate(BASELINE), aggregate(CANDIDATE))
    assert comparison.median_diff_percent == pytest.approx(50.0)
    assert comparison.ranges_overlap is False
    assert comparison.significant is True
    assert comparison.p_value < 0.05


def test_compare_with_itself() -> None:
    stats = aggregate(BASELINE)
    comparison = compare(stats, stats)
    assert comparison.median_diff_percent == 0.0
    assert comparison.p_value == pytest.approx(1.0)
    assert comparison.ranges_overlap is True
    assert comparison.significant is False


def test_compare_zero_baseline_median() -> None:
    comparison = compare(aggregate([0.0, 0.0, 0.0]), aggregate([5.0, 6.0, 7.0]))
    assert comparison.median_diff_percent == 0.0


def test_compare_zero_variance_everywhere() -> None:
    comparison = compare(aggregate([3.0]), aggregate([3.0]))
    assert comparison.p_value == 1.0
    assert comparison.significant is False


def test_compare_empty_stats() -> None:
    comparison = compare(Stats(), aggregate([1.0, 2.0]))
    assert comparison.p_value == 1.0
    assert comparison.significant is False


def test_compare_negative_diff() -> None:
    comparison = compare(aggregate([200.0, 200.0]), aggregate([150.0, 150.0]))
    assert comparison.median_diff_percent == pytest.approx(-25.0)


def test_ranges_overlap_touching_ranges() -> None:
    assert ranges_overlap(aggregate([1.0, 5.0]), aggregate([5.0, 9.0])) is True
    assert ranges_overlap(aggregate([1.0, 4.9]), aggregate([5.0, 9.0])) is False
    assert ranges_overlap(aggregate([1.0, 10.0]), aggregate([4.0, 5.0])) is True


@pytest.mark.parametrize(
    ("comparison", "label"),
    [
        (Comparison(10.0, 0.5, ranges_overlap=False, significant=False), "no overlap"),
        (Comparison(10.0, 0.0005, ranges_overlap=True, significant=True), "*** (p<0.001)"),
        (Comparison(10.0, 0.005, ranges_overlap=True, significant=True), "** (p<0.01)"),
        (Comparison(10.0, 0.03, ranges_overlap=True, significant=True), "* (p<0.05)"),
        (Comparison(10.0, 0.05, ranges_overlap=True, significant=False), "n.s."),
    ],
)
def test_significance_label(comparison: Comparison, label: str) -> None:
    assert significance_label(comparison) == label
