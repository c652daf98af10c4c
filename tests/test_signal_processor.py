"""
Unit tests for RSSI processing.

Tests distance estimation, category classification and the out-of-range
threshold.
"""

import pytest

from utils.proximity.distance import SignalProcessor
from utils.proximity.models import ProximityCategory


@pytest.fixture
def processor():
    return SignalProcessor(
        measured_power_at_1m=-52,
        environmental_factor=4,
        out_of_range_threshold_dbm=-100,
    )


class TestDistanceEstimation:
    """Tests for log-distance path-loss estimation."""

    def test_reference_power_is_one_meter(self, processor):
        """The measured power maps to one metre."""
        assert processor.estimate_distance(-52) == 1.0

    def test_rounded_to_two_decimals(self, processor):
        """Distances are rounded to two decimals."""
        # 10 ** 0.2
        assert processor.estimate_distance(-60) == 1.58

    def test_one_decade_at_forty_db(self, processor):
        """Forty dB below reference is ten metres with factor 4."""
        assert processor.estimate_distance(-92) == 10.0

    def test_monotonic_in_rssi(self, processor):
        """Weaker signals never give shorter distances."""
        distances = [processor.estimate_distance(rssi) for rssi in range(-40, -101, -5)]
        assert distances == sorted(distances)

    def test_strong_signal_not_clamped(self, processor):
        """Values closer than the reference are reported, not clamped."""
        assert processor.estimate_distance(-20) < 0.2

    def test_rejects_non_positive_factor(self):
        """A non-positive environmental factor is refused."""
        with pytest.raises(ValueError):
            SignalProcessor(environmental_factor=0)


class TestCategorize:
    """Tests for proximity category bounds."""

    @pytest.mark.parametrize('distance,expected', [
        (0.1, ProximityCategory.VERY_CLOSE),
        (0.5, ProximityCategory.VERY_CLOSE),
        (0.51, ProximityCategory.NEAR),
        (2.0, ProximityCategory.NEAR),
        (2.01, ProximityCategory.MEDIUM),
        (10.0, ProximityCategory.MEDIUM),
        (10.01, ProximityCategory.FAR),
    ])
    def test_bounds_are_inclusive(self, distance, expected):
        """Category bounds include their upper edge."""
        assert SignalProcessor.categorize(distance) == expected

    def test_rssi_at_half_meter_boundary(self, processor):
        """-40 dBm rounds to exactly 0.5 m."""
        distance, category, _ = processor.process(-40)
        assert distance == 0.5
        assert category == ProximityCategory.VERY_CLOSE


class TestOutOfRange:
    """Tests for the out-of-range threshold."""

    def test_threshold_is_strict(self, processor):
        """Only rssi below the threshold is out of range."""
        assert processor.is_out_of_range(-100) is False
        assert processor.is_out_of_range(-101) is True

    def test_independent_of_distance(self):
        """The flag comes from raw RSSI, not the distance estimate."""
        processor = SignalProcessor(environmental_factor=2, out_of_range_threshold_dbm=-74)
        distance, category, out_of_range = processor.process(-75)
        assert out_of_range is True
        assert category == ProximityCategory.FAR
        assert distance > 10

    def test_process_returns_all_three(self, processor):
        """Process returns distance, category and range flag."""
        assert processor.process(-72) == (3.16, ProximityCategory.MEDIUM, False)


class TestCalibrationDict:

    def test_to_dict(self, processor):
        """Calibration serializes its settings."""
        assert processor.to_dict() == {
            'measured_power_at_1m': -52,
            'environmental_factor': 4,
            'out_of_range_threshold_dbm': -100,
        }
