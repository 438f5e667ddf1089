"""Tests for the descriptive statistics helpers."""

import pytest

from propedge.core import stats_math


def test_empty_inputs_return_none():
    assert stats_math.mean([]) is None
    assert stats_math.median([]) is None
    assert stats_math.weighted_median([], [1, 2]) is None


def test_population_std_and_cv():
    values = [20, 22, 19, 25, 21, 23, 24, 18, 20, 22]
    assert stats_math.population_std(values) == pytest.approx(2.107, abs=1e-3)
    assert stats_math.coefficient_of_variation(values) == pytest.approx(2.107 / 21.4, abs=1e-3)


@pytest.mark.parametrize("values", [[5], [0, 0, 0], []])
def test_cv_degenerate_is_zero(values):
    assert stats_math.coefficient_of_variation(values) == 0.0


def test_weighted_median_recency_weights():
    values = [20, 22, 19, 25, 21, 23, 24]
    weights = (10, 5, 3, 2, 2, 1, 1)
    assert stats_math.weighted_median(values, weights) == pytest.approx(20.667, abs=1e-3)


def test_weighted_median_equal_weights_is_median():
    assert stats_math.weighted_median([1, 3, 2, 10], [1, 1, 1, 1]) == pytest.approx(2.5)


def test_weighted_median_short_history_uses_leading_weights():
    assert stats_math.weighted_median([10, 20], [10, 5, 3]) == pytest.approx(10 + 10 * (0.5 - 5 / 15) / 0.5)


def test_hit_rate_is_strict():
    values = [19.5, 20, 21, 19]
    assert stats_math.hit_rate(values, 19.5, "OVER") == 0.5
    assert stats_math.hit_rate(values, 19.5, "UNDER") == 0.25


def test_safe_log2_ratio():
    assert stats_math.safe_log2_ratio(34, 34) == pytest.approx(1.0)
    assert stats_math.safe_log2_ratio(34, 0) is None
