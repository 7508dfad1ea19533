"""Unit tests for the response-time statistics engine."""

import math

import pytest

from src.analysis.statistics import mean, percentile, sample_std_dev, summarize, t_critical


class TestHelpers:
    def test_mean(self) -> None:
        assert mean([1.0, 2.0, 3.0]) == 2.0
        assert mean([]) == 0.0

    def test_sample_std_dev_uses_n_minus_one(self) -> None:
        assert sample_std_dev([2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]) == pytest.approx(2.138, abs=1e-3)

    def test_single_sample_std_dev_is_zero(self) -> None:
        assert sample_std_dev([5.0]) == 0.0

    def test_percentile_interpolates(self) -> None:
        ordered = [10.0, 11.0, 12.0, 50.0]
        assert percentile(ordered, 25) == pytest.approx(10.75)
        assert percentile(ordered, 50) == pytest.approx(11.5)
        assert percentile(ordered, 75) == pytest.approx(21.5)
        assert percentile(ordered, 0) == 10.0
        assert percentile(ordered, 100) == 50.0

    def test_percentile_empty(self) -> None:
        with pytest.raises(ValueError):
            percentile([], 50)

    def test_t_critical_table_and_normal_fallback(self) -> None:
        assert t_critical(1) == 12.706
        assert t_critical(3) == 3.182
        assert t_critical(30) == 2.042
        assert t_critical(31) == 1.96
        with pytest.raises(ValueError):
            t_critical(0)


class TestSummarize:
    def test_worked_example(self) -> None:
        stats = summarize("get-prices", [10.0, 12.0, 11.0, 50.0])

        assert stats.count == 4
        assert stats.mean == pytest.approx(20.75)
        assert stats.std_dev == pytest.approx(19.517, abs=1e-3)
        assert stats.coefficient_of_variation == pytest.approx(94.06, abs=0.01)
        assert stats.quartiles is not None
        assert stats.quartiles.q1 == pytest.approx(10.75)
        assert stats.quartiles.median == pytest.approx(11.5)
        assert stats.quartiles.q3 == pytest.approx(21.5)
        assert stats.quartiles.iqr == pytest.approx(10.75)
        assert stats.outliers == [50.0]
        assert stats.significance.category in {"high", "very-high"}

    def test_worked_example_interval(self) -> None:
        stats = summarize("get-prices", [10.0, 12.0, 11.0, 50.0])

        ci = stats.confidence_interval
        assert ci is not None
        expected_margin = 3.182 * stats.std_dev / math.sqrt(4)
        assert ci.margin == pytest.approx(expected_margin)
        assert ci.lower == pytest.approx(20.75 - expected_margin)
        assert ci.upper == pytest.approx(20.75 + expected_margin)

    def test_no_samples(self) -> None:
        stats = summarize("unused", [])

        assert stats.count == 0
        assert stats.mean == 0.0
        assert stats.std_dev == 0.0
        assert stats.confidence_interval is None
        assert stats.quartiles is None
        assert stats.outliers == []
        assert stats.significance.category == "no-data"
        assert stats.significance.confidence_percent == 0.0

    def test_single_sample(self) -> None:
        stats = summarize("once", [4.2])

        assert stats.mean == 4.2
        assert stats.std_dev == 0.0
        assert stats.confidence_interval is None
        assert stats.significance.category == "insufficient"

    def test_two_samples_have_interval_but_no_quartiles(self) -> None:
        stats = summarize("twice", [1.0, 3.0])

        assert stats.confidence_interval is not None
        assert stats.quartiles is None
        assert stats.significance.category == "insufficient"

    def test_identical_samples(self) -> None:
        stats = summarize("steady", [2.0] * 10)

        assert stats.std_dev == 0.0
        assert stats.coefficient_of_variation == 0.0
        assert stats.outliers == []
        assert stats.significance.category == "very-low"
        assert stats.significance.confidence_percent == 99.0

    @pytest.mark.parametrize(
        ("samples", "category", "confidence"),
        [
            ([1.0, 1.2, 0.8], "low", 70.0),  # CV 20%, n<5 penalty
            ([1.0, 1.05, 0.95, 1.0, 1.02], "very-low", 95.0),
            ([1.0, 2.0] * 5, "moderate", 75.0),  # CV ~35%, n>=10 bonus
            ([1.0, 4.0] * 10, "high", 65.0),  # CV ~61%, n>=20 bonus
        ],
    )
    def test_significance_bands(self, samples: list[float], category: str, confidence: float) -> None:
        significance = summarize("t", samples).significance
        assert significance.category == category
        assert significance.confidence_percent == confidence

    def test_large_sample_uses_normal_critical_value(self) -> None:
        samples = [float(i % 7 + 1) for i in range(40)]
        stats = summarize("many", samples)

        ci = stats.confidence_interval
        assert ci is not None
        assert ci.margin == pytest.approx(1.96 * stats.std_dev / math.sqrt(40))

    def test_invariants(self) -> None:
        stats = summarize("t", [3.0, 1.0, 4.0, 1.0, 5.0, 9.0, 2.0, 6.0])

        assert stats.std_dev >= 0
        assert stats.coefficient_of_variation >= 0
        assert stats.confidence_interval is not None
        assert stats.confidence_interval.lower <= stats.mean <= stats.confidence_interval.upper
        assert stats.quartiles is not None
        assert stats.quartiles.q1 <= stats.quartiles.median <= stats.quartiles.q3
        assert 40 <= stats.significance.confidence_percent <= 99
