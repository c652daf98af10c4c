"""
Proximity tracking package for ProxWatch.

Tracks one BLE tag: passive RSSI monitoring with distance estimation and an
out-of-range alert cycle (radar mode), and an active connection for Immediate
Alert commands and battery reads (alert mode).
"""

from .alert_cycle import AlertCycleManager, AlertCycleState
from .battery import (
    build_battery_info,
    parse_battery_level,
    parse_battery_voltage,
    percentage_to_state,
    voltage_to_percentage,
)
from .constants import (
    # Status messages
    STATUS_READY,
    STATUS_SEARCHING,
    STATUS_RADAR,
    STATUS_CONNECTING,
    STATUS_ALERT,
    STATUS_DISCONNECTED,
    STATUS_NOT_IN_ALERT,
    # GATT
    IMMEDIATE_ALERT_SERVICE_UUID,
    ALERT_LEVEL_CHARACTERISTIC_UUID,
    BATTERY_SERVICE_UUID,
    BATTERY_LEVEL_CHARACTERISTIC_UUID,
)
from .controller import ModeController
from .distance import SignalProcessor, get_signal_processor
from .errors import (
    ConnectionFailed,
    DeviceUnavailable,
    Disconnected,
    ProximityError,
    UserCancelled,
    WriteFailed,
)
from .indicator import CallbackIndicator, LocalIndicator, ToneIndicator
from .models import (
    AlertLevel,
    BatteryInfo,
    BatteryState,
    DiscoveredDevice,
    DiscoveryOptions,
    OperatingMode,
    ProximityCategory,
    ProximityStatus,
    RawSample,
    TrackedDevice,
)
from .runtime import ProximityRuntime, build_controller, get_proximity_runtime, reset_proximity_runtime
from .session import DeviceSession, ImmediateAlertTransport
from .transport import (
    AlertTransport,
    CancelToken,
    DeviceNotFound,
    PickerDismissed,
    Subscription,
    Transport,
)

__all__ = [
    # Controller and runtime
    'ModeController',
    'ProximityRuntime',
    'build_controller',
    'get_proximity_runtime',
    'reset_proximity_runtime',

    # Session and transports
    'DeviceSession',
    'ImmediateAlertTransport',
    'Transport',
    'AlertTransport',
    'CancelToken',
    'Subscription',
    'PickerDismissed',
    'DeviceNotFound',

    # Signal processing
    'SignalProcessor',
    'get_signal_processor',

    # Alert cycle
    'AlertCycleManager',
    'AlertCycleState',
    'LocalIndicator',
    'ToneIndicator',
    'CallbackIndicator',

    # Battery
    'build_battery_info',
    'parse_battery_level',
    'parse_battery_voltage',
    'percentage_to_state',
    'voltage_to_percentage',

    # Models
    'AlertLevel',
    'BatteryInfo',
    'BatteryState',
    'DiscoveredDevice',
    'DiscoveryOptions',
    'OperatingMode',
    'ProximityCategory',
    'ProximityStatus',
    'RawSample',
    'TrackedDevice',

    # Errors
    'ProximityError',
    'UserCancelled',
    'DeviceUnavailable',
    'ConnectionFailed',
    'WriteFailed',
    'Disconnected',

    # Constants
    'STATUS_READY',
    'STATUS_SEARCHING',
    'STATUS_RADAR',
    'STATUS_CONNECTING',
    'STATUS_ALERT',
    'STATUS_DISCONNECTED',
    'STATUS_NOT_IN_ALERT',
    'IMMEDIATE_ALERT_SERVICE_UUID',
    'ALERT_LEVEL_CHARACTERISTIC_UUID',
    'BATTERY_SERVICE_UUID',
    'BATTERY_LEVEL_CHARACTERISTIC_UUID',
]
