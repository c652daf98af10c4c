"""
Battery level interpretation for CR2032-powered tags.

Mirrors the tag firmware: voltage is mapped to a percentage by integer
piecewise-linear interpolation between fixed breakpoints.
"""

from __future__ import annotations

from typing import Optional

from .constants import (
    BATTERY_BREAKPOINTS,
    BATTERY_STATE_GOOD_ABOVE,
    BATTERY_STATE_MEDIUM_ABOVE,
    BATTERY_STATE_LOW_ABOVE,
)
from .models import BatteryInfo, BatteryState


def _interpolate(x: int, x0: int, y0: int, x1: int, y1: int) -> int:
    if x <= x0:
        return y0
    if x >= x1:
        return y1
    return y0 + ((x - x0) * (y1 - y0)) // (x1 - x0)


def voltage_to_percentage(voltage_mv: int) -> int:
    """
    Convert a battery voltage to a 0-100 percentage.

    Args:
        voltage_mv: Battery voltage in millivolts.

    Returns:
        Percentage, clamped to 0-100.
    """
    lowest_mv, lowest_pct = BATTERY_BREAKPOINTS[0]
    if voltage_mv < lowest_mv:
        return lowest_pct

    for (x0, y0), (x1, y1) in zip(BATTERY_BREAKPOINTS, BATTERY_BREAKPOINTS[1:]):
        if voltage_mv < x1:
            return max(0, min(100, _interpolate(voltage_mv, x0, y0, x1, y1)))

    return BATTERY_BREAKPOINTS[-1][1]


def percentage_to_state(percentage: Optional[int]) -> BatteryState:
    """Classify a percentage into a battery state."""
    if percentage is None:
        return BatteryState.UNKNOWN
    if percentage > BATTERY_STATE_GOOD_ABOVE:
        return BatteryState.GOOD
    elif percentage > BATTERY_STATE_MEDIUM_ABOVE:
        return BatteryState.MEDIUM
    elif percentage > BATTERY_STATE_LOW_ABOVE:
        return BatteryState.LOW
    else:
        return BatteryState.CRITICAL


def parse_battery_level(data: bytes) -> int:
    """Decode the standard Battery Level characteristic (uint8 percent)."""
    if not data:
        raise ValueError('Empty battery level payload')
    return max(0, min(100, data[0]))


def parse_battery_voltage(data: bytes) -> int:
    """Decode the vendor voltage characteristic (uint16 little-endian, mV)."""
    if len(data) < 2:
        raise ValueError(f'Battery voltage payload too short: {len(data)} bytes')
    return int.from_bytes(data[:2], 'little')


def build_battery_info(
    level: Optional[int] = None,
    voltage_mv: Optional[int] = None,
) -> BatteryInfo:
    """
    Build a BatteryInfo from whatever the device reported.

    The voltage wins when present, since the level characteristic is only a
    coarse copy of the same computation on the device.
    """
    if voltage_mv is not None:
        percentage = voltage_to_percentage(voltage_mv)
    elif level is not None:
        percentage = level
    else:
        return BatteryInfo(percentage=0, state=BatteryState.UNKNOWN)

    return BatteryInfo(
        percentage=percentage,
        state=percentage_to_state(percentage),
        voltage_mv=voltage_mv,
    )
