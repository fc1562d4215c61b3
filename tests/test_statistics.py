"""Tests for the statistics kernel."""

import math

import pytest

from vital_insights.analysis.statistics import (
    coefficient_of_variation,
    detect_outliers,
    maximum,
    mean,
    median,
    minimum,
    moving_average,
    quartiles,
    standard_deviation,
    summarize,
    value_range,
    variance,
)
from vital_insights.exceptions import InsufficientDataError


class TestCentralTendency:
    """Tests for mean, median, min and max."""

    @pytest.mark.parametrize("values", [
        [3.0, 1.0, 2.0],
        [120.0],
        [98.6, 97.1, 99.4, 100.2],
        [-5.0, 0.0, 5.0, 250.0, 1.0],
    ])
    def test_median_and_mean_lie_between_min_and_max(self, values):
        """Test min <= median <= max and min <= mean <= max for non-empty input."""
        low, high = minimum(values), maximum(values)
        assert low <= median(values) <= high
        assert low <= mean(values) <= high

    def test_mean(self):
        """Test arithmetic mean."""
        assert mean([2, 4, 6]) == 4.0

    def test_median_odd(self):
        """Test median of an odd-length, unsorted input."""
        assert median([9, 1, 5]) == 5.0

    def test_median_even(self):
        """Test median averages the two middle values."""
        assert median([4, 1, 3, 2]) == 2.5

    def test_range(self):
        """Test max - min."""
        assert value_range([70, 85, 62]) == 23.0

    @pytest.mark.parametrize("func", [mean, median, minimum, maximum, value_range, variance])
    def test_empty_input_raises(self, func):
        """Test scalar functions raise on empty input."""
        with pytest.raises(InsufficientDataError):
            func([])


class TestDispersion:
    """Tests for variance, standard deviation and CV."""

    def test_sample_variance(self):
        """Test variance uses the n - 1 denominator."""
        values = [2, 4, 4, 4, 5, 5, 7, 9]
        assert variance(values) == pytest.approx(32 / 7)
        assert standard_deviation(values) == pytest.approx(math.sqrt(32 / 7))

    def test_single_value_has_zero_variance(self):
        """Test variance of one sample is 0."""
        assert variance([42]) == 0.0

    def test_constant_sequence_has_zero_stddev(self):
        """Test standard deviation of a constant sequence is 0."""
        assert standard_deviation([72.0] * 10) == 0.0

    def test_coefficient_of_variation(self):
        """Test CV is stddev / |mean| * 100."""
        assert coefficient_of_variation([10, 20]) == pytest.approx(math.sqrt(50) / 15 * 100)

    def test_coefficient_of_variation_zero_mean(self):
        """Test CV resolves to 0 when the mean is 0."""
        assert coefficient_of_variation([-1, 1]) == 0.0


class TestOutliers:
    """Tests for IQR outlier detection."""

    def test_fewer_than_four_samples_returns_empty(self):
        """Test outlier detection needs at least four samples."""
        assert detect_outliers([1, 2, 1000]) == []

    def test_quartile_positions(self):
        """Test quartiles are taken at floor(0.25n) and floor(0.75n)."""
        assert quartiles([8, 7, 6, 5, 4, 3, 2, 1]) == (3, 7)

    def test_quartiles_need_four_samples(self):
        """Test quartiles raise below four samples."""
        with pytest.raises(InsufficientDataError):
            quartiles([1, 2, 3])

    def test_detects_high_outlier(self):
        """Test a far value is reported."""
        assert detect_outliers([12, 10, 100, 13, 11]) == [100.0]

    def test_no_outliers_in_tight_series(self):
        """Test a tight series has no outliers."""
        assert detect_outliers([70, 71, 72, 73, 74, 75]) == []


class TestMovingAverage:
    """Tests for moving_average."""

    def test_trailing_windows(self):
        """Test one average per full window."""
        assert moving_average([1, 2, 3, 4, 5], 3) == [2.0, 3.0, 4.0]

    def test_fewer_samples_than_window(self):
        """Test short input returns no averages."""
        assert moving_average([1, 2], 3) == []

    def test_invalid_window(self):
        """Test window below 1 is rejected."""
        with pytest.raises(ValueError):
            moving_average([1, 2, 3], 0)


class TestSummarize:
    """Tests for summarize."""

    def test_empty_input_returns_empty_summary(self):
        """Test summarize does not raise on empty input."""
        summary = summarize([])
        assert summary.count == 0
        assert summary.is_empty
        assert summary.outliers == []

    def test_summary_fields(self):
        """Test every statistic is filled in."""
        summary = summarize([110, 120, 130])
        assert summary.count == 3
        assert summary.mean == 120.0
        assert summary.median == 120.0
        assert summary.min == 110.0
        assert summary.max == 130.0
        assert summary.range == 20.0
        assert summary.variance == 100.0
        assert summary.standard_deviation == 10.0

    def test_to_dict_rounds(self):
        """Test to_dict rounds floating statistics to two places."""
        data = summarize([1, 2, 2]).to_dict()
        assert data["mean"] == 1.67
        assert data["count"] == 3
