"""
Transport collaborator contracts.

The core never talks to a radio stack directly; it consumes a Transport
(discovery, passive watch, GATT access, disconnect notification) and exposes
alert commands through an AlertTransport.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Optional

from .models import AlertLevel, DiscoveredDevice, DiscoveryOptions, RawSample

logger = logging.getLogger('proxwatch.transport')


class PickerDismissed(Exception):
    """Raised by a transport when the user dismissed device selection."""


class DeviceNotFound(Exception):
    """Raised by a transport when no matching device responded."""


class CancelToken:
    """
    Single-use cancellation signal for a passive watch.

    Once cancelled it stays cancelled; a restarted watch needs a new token.
    Callbacks registered with add_callback() run synchronously inside
    cancel(), so the watch is stopped by the time cancel() returns.
    """

    def __init__(self):
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Register a callback; runs immediately if already cancelled."""
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def cancel(self) -> bool:
        """
        Cancel the token.

        Returns:
            True on the first call, False if it was already cancelled.
        """
        if self._cancelled:
            return False
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cancel callback failed: {e}")
        return True


class Subscription:
    """Handle for a registered listener, released deterministically."""

    def __init__(self, release: Optional[Callable[[], None]] = None):
        self._release = release
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def release(self) -> None:
        """Remove the listener. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        if self._release is not None:
            release, self._release = self._release, None
            release()


class Transport(ABC):
    """
    Wireless transport collaborator.

    Implementations raise their own exception types; DeviceSession classifies
    them. PickerDismissed and DeviceNotFound are the two discovery outcomes
    that carry meaning beyond "it failed".
    """

    @abstractmethod
    async def discover(self, options: DiscoveryOptions) -> DiscoveredDevice:
        """Select a single device."""

    @abstractmethod
    async def watch(self, identity: str, token: CancelToken) -> AsyncIterator[RawSample]:
        """
        Start a passive advertisement watch for one device.

        Returns an async iterator of samples once the watch is running. The
        iterator ends when the token is cancelled.
        """

    @abstractmethod
    async def connect(self, identity: str) -> Any:
        """Open an active connection and return its handle."""

    @abstractmethod
    async def write_characteristic(
        self,
        handle: Any,
        service_uuid: str,
        characteristic_uuid: str,
        data: bytes,
    ) -> None:
        """Write without response."""

    @abstractmethod
    async def read_characteristic(
        self,
        handle: Any,
        service_uuid: str,
        characteristic_uuid: str,
    ) -> bytes:
        """Read a characteristic value."""

    @abstractmethod
    def on_remote_disconnect(self, handle: Any, callback: Callable[[], None]) -> Subscription:
        """Register a callback for a remote-initiated disconnect."""

    @abstractmethod
    async def disconnect(self, handle: Any) -> None:
        """Close an active connection."""


class AlertTransport(ABC):
    """Sink for alert level commands."""

    @abstractmethod
    async def send(self, level: AlertLevel) -> None:
        """Send an alert level. Raises WriteFailed on failure."""
