"""
Proximity-specific constants for the tracker and alert state machine.
"""

from __future__ import annotations

# =============================================================================
# GATT SERVICES AND CHARACTERISTICS
# =============================================================================

# Immediate Alert service (alert level written without response)
IMMEDIATE_ALERT_SERVICE_UUID = '00001802-0000-1000-8000-00805f9b34fb'
ALERT_LEVEL_CHARACTERISTIC_UUID = '00002a06-0000-1000-8000-00805f9b34fb'

# Standard Battery Service
BATTERY_SERVICE_UUID = '0000180f-0000-1000-8000-00805f9b34fb'
BATTERY_LEVEL_CHARACTERISTIC_UUID = '00002a19-0000-1000-8000-00805f9b34fb'

# Vendor battery characteristics (base 00001000-8e22-4541-9d4c-21edae82ed19)
BATTERY_VOLTAGE_CHARACTERISTIC_UUID = '00001001-8e22-4541-9d4c-21edae82ed19'
BATTERY_STATE_CHARACTERISTIC_UUID = '00001002-8e22-4541-9d4c-21edae82ed19'

# =============================================================================
# DISTANCE ESTIMATION
# =============================================================================

DEFAULT_MEASURED_POWER_AT_1M = -52   # dBm at 1 m
DEFAULT_ENVIRONMENTAL_FACTOR = 4.0   # 2 (open space) to 4 (indoors)
DEFAULT_OUT_OF_RANGE_THRESHOLD = -100  # dBm, strict less-than

# Category upper bounds in meters (inclusive)
CATEGORY_VERY_CLOSE_MAX_M = 0.5
CATEGORY_NEAR_MAX_M = 2.0
CATEGORY_MEDIUM_MAX_M = 10.0

# =============================================================================
# PROXIMITY CATEGORY NAMES
# =============================================================================

CATEGORY_VERY_CLOSE = 'very close'
CATEGORY_NEAR = 'near'
CATEGORY_MEDIUM = 'medium'
CATEGORY_FAR = 'far'

# =============================================================================
# ALERT CYCLE
# =============================================================================

DEFAULT_ALERT_MAX_FIRES = 5
DEFAULT_ALERT_PERIOD_MS = 1000

# Local tone (B5, short blip)
TONE_FREQUENCY_HZ = 987.77
TONE_DURATION_MS = 200

# =============================================================================
# BATTERY (CR2032 coin cell)
# =============================================================================

# (millivolts, percent) breakpoints, ascending
BATTERY_BREAKPOINTS = (
    (2000, 0),
    (2200, 10),
    (2500, 30),
    (2800, 70),
    (3000, 100),
)

# Percentage thresholds for state classification (strictly greater than)
BATTERY_STATE_GOOD_ABOVE = 70
BATTERY_STATE_MEDIUM_ABOVE = 30
BATTERY_STATE_LOW_ABOVE = 10

# =============================================================================
# STATUS MESSAGES
# =============================================================================

STATUS_READY = 'Ready. Start radar mode to search for a device.'
STATUS_SEARCHING = 'Searching for your device... please select it.'
STATUS_RADAR = 'Radar mode: monitoring device proximity.'
STATUS_CONNECTING = 'Switching to alert mode... connecting.'
STATUS_ALERT = 'Alert mode: ready to send alerts. RSSI is frozen in this mode.'
STATUS_DISCONNECTED = 'Device disconnected. Ready for a new search.'
STATUS_NOT_IN_ALERT = 'Not in alert mode or alert characteristic unavailable.'
