"""
Data models for proximity tracking.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Callable, Optional, Sequence

from .constants import (
    CATEGORY_VERY_CLOSE,
    CATEGORY_NEAR,
    CATEGORY_MEDIUM,
    CATEGORY_FAR,
)


class OperatingMode(str, Enum):
    """Controller operating modes."""
    IDLE = 'idle'
    RADAR = 'radar'
    ALERT = 'alert'

    def __str__(self) -> str:
        return self.value


class ProximityCategory(str, Enum):
    """Human-facing distance categories."""
    VERY_CLOSE = CATEGORY_VERY_CLOSE  # <= 0.5 m
    NEAR = CATEGORY_NEAR              # <= 2 m
    MEDIUM = CATEGORY_MEDIUM          # <= 10 m
    FAR = CATEGORY_FAR                # > 10 m

    def __str__(self) -> str:
        return self.value


class AlertLevel(IntEnum):
    """Immediate Alert levels, sent as a single byte."""
    OFF = 0
    MILD = 1
    STRONG = 2

    def encode(self) -> bytes:
        """Wire format: one byte, 0x00 / 0x01 / 0x02."""
        return bytes([int(self)])

    @classmethod
    def parse(cls, value: Any) -> 'AlertLevel':
        """
        Parse an alert level from a name ('off', 'mild', 'strong') or number.

        Raises:
            ValueError: If the value does not name a level.
        """
        if isinstance(value, AlertLevel):
            return value
        if isinstance(value, bool):
            raise ValueError(f'Invalid alert level: {value!r}')
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return cls(int(text))
            try:
                return cls[text.upper()]
            except KeyError:
                pass
        raise ValueError(f'Invalid alert level: {value!r}')

    def __str__(self) -> str:
        return self.name.lower()


@dataclass
class RawSample:
    """A single RSSI reading from the passive watch."""
    rssi: int
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class DiscoveredDevice:
    """A device returned by transport discovery."""
    identity: str
    name: Optional[str] = None
    rssi: Optional[int] = None


@dataclass
class DiscoveryOptions:
    """
    Options for device discovery.

    chooser plays the role of the device picker: it receives the candidate
    devices and returns the selected one, or None if the user dismissed it.
    """
    address: Optional[str] = None
    name: Optional[str] = None
    timeout: Optional[float] = None
    service_uuids: list[str] = field(default_factory=list)
    chooser: Optional[Callable[[Sequence[DiscoveredDevice]], Optional[DiscoveredDevice]]] = None

    def to_dict(self) -> dict:
        return {
            'address': self.address,
            'name': self.name,
            'timeout': self.timeout,
            'service_uuids': list(self.service_uuids),
        }


@dataclass
class TrackedDevice:
    """The single device tracked by the current session."""
    identity: str
    display_name: Optional[str] = None
    last_rssi: Optional[int] = None
    last_distance_m: Optional[float] = None
    proximity_category: Optional[ProximityCategory] = None
    last_seen: Optional[datetime] = None

    @property
    def has_signal(self) -> bool:
        return self.last_rssi is not None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'identity': self.identity,
            'name': self.display_name or 'Unknown device',
            'rssi': self.last_rssi,
            'distance_m': self.last_distance_m,
            'proximity_category': (
                self.proximity_category.value if self.proximity_category else None
            ),
            'last_seen': self.last_seen.isoformat() if self.last_seen else None,
        }


class BatteryState(str, Enum):
    """Battery charge classification."""
    CRITICAL = 'critical'  # <= 10%
    LOW = 'low'            # 10-30%
    MEDIUM = 'medium'      # 30-70%
    GOOD = 'good'          # > 70%
    UNKNOWN = 'unknown'

    def __str__(self) -> str:
        return self.value


@dataclass
class BatteryInfo:
    """Battery reading from the tracked device."""
    percentage: int
    state: BatteryState
    voltage_mv: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'percentage': self.percentage,
            'state': self.state.value,
            'voltage_mv': self.voltage_mv,
        }


@dataclass
class ProximityStatus:
    """Snapshot of the state exposed by the mode controller."""
    mode: OperatingMode
    device: Optional[TrackedDevice]
    message: str
    out_of_range: bool = False
    loading: bool = False
    last_error: Optional[str] = None
    alert_cycle: Optional[dict] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            'mode': self.mode.value,
            'device': self.device.to_dict() if self.device else None,
            'message': self.message,
            'out_of_range': self.out_of_range,
            'loading': self.loading,
            'last_error': self.last_error,
            'alert_cycle': self.alert_cycle,
            'timestamp': self.timestamp.isoformat(),
        }
