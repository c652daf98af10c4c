"""
Classified proximity errors.

Transport failures are mapped onto these at the DeviceSession boundary; raw
transport exceptions never travel further up.
"""

from __future__ import annotations


class ProximityError(Exception):
    """Base class for classified proximity errors."""

    kind = 'error'
    default_message = 'Proximity error'

    def __init__(self, message: str = ''):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class UserCancelled(ProximityError):
    """The device picker was dismissed. Never surfaced to the user."""
    kind = 'user_cancelled'
    default_message = 'Device selection cancelled'


class DeviceUnavailable(ProximityError):
    """No compatible device responded."""
    kind = 'device_unavailable'
    default_message = 'No compatible device found'


class ConnectionFailed(ProximityError):
    """The active connection could not be established."""
    kind = 'connection_failed'
    default_message = 'Failed to connect'


class WriteFailed(ProximityError):
    """A characteristic write (or read) failed on a live connection."""
    kind = 'write_failed'
    default_message = 'Failed to write to device'


class Disconnected(ProximityError):
    """The device is gone; always resets the controller to idle."""
    kind = 'disconnected'
    default_message = 'Device disconnected'
