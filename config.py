"""
Configuration for ProxWatch.

Every value can be overridden with a PROXWATCH_<NAME> environment variable.
"""

from __future__ import annotations

import os

VERSION = '1.0.0'


def _get_env(key: str, default: str) -> str:
    """Get a string environment variable with the PROXWATCH_ prefix."""
    return os.environ.get(f'PROXWATCH_{key}', default)


def _get_env_int(key: str, default: int) -> int:
    """Get an integer environment variable, falling back on bad values."""
    try:
        return int(_get_env(key, str(default)))
    except ValueError:
        return default


def _get_env_float(key: str, default: float) -> float:
    """Get a float environment variable, falling back on bad values."""
    try:
        return float(_get_env(key, str(default)))
    except ValueError:
        return default


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean environment variable ('1', 'true', 'yes', 'on')."""
    value = _get_env(key, '').strip().lower()
    if not value:
        return default
    return value in ('1', 'true', 'yes', 'on')


# =============================================================================
# SERVER
# =============================================================================

HOST = _get_env('HOST', '0.0.0.0')
PORT = _get_env_int('PORT', 5050)
DEBUG = _get_env_bool('DEBUG', False)

LOG_LEVEL = _get_env('LOG_LEVEL', 'INFO').upper()
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# =============================================================================
# RSSI CALIBRATION
# =============================================================================

# Signal strength (dBm) measured at the 1 m reference distance
MEASURED_POWER_AT_1M = _get_env_int('MEASURED_POWER_AT_1M', -52)

# Path-loss exponent proxy: ~2 open space, ~4 indoors with walls
ENVIRONMENTAL_FACTOR = _get_env_float('ENVIRONMENTAL_FACTOR', 4.0)

# Samples strictly below this value count as out of range
OUT_OF_RANGE_THRESHOLD_DBM = _get_env_int('OUT_OF_RANGE_THRESHOLD_DBM', -100)

# =============================================================================
# ALERT CYCLE
# =============================================================================

ALERT_CYCLE_MAX_FIRES = _get_env_int('ALERT_CYCLE_MAX_FIRES', 5)
ALERT_CYCLE_PERIOD_MS = _get_env_int('ALERT_CYCLE_PERIOD_MS', 1000)

# Automatic returns to radar mode after a failed alert-mode connection
MAX_AUTO_RETRIES = _get_env_int('MAX_AUTO_RETRIES', 1)

# Optional command used for the local tone (e.g. "beep -f 988 -l 200")
TONE_COMMAND = _get_env('TONE_COMMAND', '')

# =============================================================================
# TRANSPORT
# =============================================================================

DISCOVERY_TIMEOUT = _get_env_float('DISCOVERY_TIMEOUT', 10.0)
CONNECT_TIMEOUT = _get_env_float('CONNECT_TIMEOUT', 10.0)

# Upper bound for a synchronous caller waiting on the runtime loop
RUNTIME_CALL_TIMEOUT = _get_env_float('RUNTIME_CALL_TIMEOUT', 30.0)

# =============================================================================
# MQTT
# =============================================================================

MQTT_ENABLED = _get_env_bool('MQTT_ENABLED', False)
MQTT_BROKER_HOST = _get_env('MQTT_BROKER_HOST', 'localhost')
MQTT_BROKER_PORT = _get_env_int('MQTT_BROKER_PORT', 1883)
MQTT_USERNAME = _get_env('MQTT_USERNAME', '')
MQTT_PASSWORD = _get_env('MQTT_PASSWORD', '')
MQTT_USE_TLS = _get_env_bool('MQTT_USE_TLS', False)
MQTT_CLIENT_ID = _get_env('MQTT_CLIENT_ID', 'proxwatch')
MQTT_TOPIC_PREFIX = _get_env('MQTT_TOPIC_PREFIX', 'proxwatch')
MQTT_QOS = _get_env_int('MQTT_QOS', 1)
