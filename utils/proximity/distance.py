"""
Distance estimation for the tracked beacon.

Converts RSSI into a log-distance path-loss estimate, a proximity category
and an out-of-range flag.
"""

from __future__ import annotations

from typing import Optional

from .constants import (
    DEFAULT_MEASURED_POWER_AT_1M,
    DEFAULT_ENVIRONMENTAL_FACTOR,
    DEFAULT_OUT_OF_RANGE_THRESHOLD,
    CATEGORY_VERY_CLOSE_MAX_M,
    CATEGORY_NEAR_MAX_M,
    CATEGORY_MEDIUM_MAX_M,
)
from .models import ProximityCategory


class SignalProcessor:
    """
    Stateless RSSI processing with fixed calibration constants.

    Distance and out-of-range are computed independently from the raw RSSI so
    that the range decision does not inherit the distance approximation.
    """

    def __init__(
        self,
        measured_power_at_1m: int = DEFAULT_MEASURED_POWER_AT_1M,
        environmental_factor: float = DEFAULT_ENVIRONMENTAL_FACTOR,
        out_of_range_threshold_dbm: int = DEFAULT_OUT_OF_RANGE_THRESHOLD,
    ):
        """
        Initialize the processor.

        Args:
            measured_power_at_1m: RSSI measured at the 1 m reference distance.
            environmental_factor: Path-loss exponent proxy, typically 2-4.
            out_of_range_threshold_dbm: RSSI below which the device is out of range.
        """
        if environmental_factor <= 0:
            raise ValueError('environmental_factor must be positive')
        self.measured_power_at_1m = measured_power_at_1m
        self.environmental_factor = environmental_factor
        self.out_of_range_threshold_dbm = out_of_range_threshold_dbm

    def estimate_distance(self, rssi: float) -> float:
        """
        Estimate distance in meters from RSSI.

        Formula: d = 10^((measured_power - rssi) / (10 * n)), rounded to two
        decimals. Not clamped: implausible values are low-confidence but are
        still reported.
        """
        exponent = (self.measured_power_at_1m - rssi) / (10 * self.environmental_factor)
        return round(10 ** exponent, 2)

    @staticmethod
    def categorize(distance_m: float) -> ProximityCategory:
        """Classify a distance; each bound is inclusive on the closer category."""
        if distance_m <= CATEGORY_VERY_CLOSE_MAX_M:
            return ProximityCategory.VERY_CLOSE
        elif distance_m <= CATEGORY_NEAR_MAX_M:
            return ProximityCategory.NEAR
        elif distance_m <= CATEGORY_MEDIUM_MAX_M:
            return ProximityCategory.MEDIUM
        else:
            return ProximityCategory.FAR

    def is_out_of_range(self, rssi: float) -> bool:
        """True when RSSI is strictly below the threshold."""
        return rssi < self.out_of_range_threshold_dbm

    def process(self, rssi: float) -> tuple[float, ProximityCategory, bool]:
        """
        Run the full pipeline for one sample.

        Returns:
            Tuple of (distance_m, category, out_of_range).
        """
        distance = self.estimate_distance(rssi)
        return distance, self.categorize(distance), self.is_out_of_range(rssi)

    def to_dict(self) -> dict:
        return {
            'measured_power_at_1m': self.measured_power_at_1m,
            'environmental_factor': self.environmental_factor,
            'out_of_range_threshold_dbm': self.out_of_range_threshold_dbm,
        }


# Module-level instance for convenience
_default_processor: Optional[SignalProcessor] = None


def get_signal_processor() -> SignalProcessor:
    """Get or create the default processor, calibrated from config."""
    global _default_processor
    if _default_processor is None:
        from config import (
            MEASURED_POWER_AT_1M,
            ENVIRONMENTAL_FACTOR,
            OUT_OF_RANGE_THRESHOLD_DBM,
        )
        _default_processor = SignalProcessor(
            measured_power_at_1m=MEASURED_POWER_AT_1M,
            environmental_factor=ENVIRONMENTAL_FACTOR,
            out_of_range_threshold_dbm=OUT_OF_RANGE_THRESHOLD_DBM,
        )
    return _default_processor
