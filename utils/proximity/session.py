"""
Device session management.

A DeviceSession owns the one live pairing with the tracked device and is the
only place transport exceptions are classified.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Optional

from .battery import build_battery_info, parse_battery_level, parse_battery_voltage
from .constants import (
    ALERT_LEVEL_CHARACTERISTIC_UUID,
    BATTERY_LEVEL_CHARACTERISTIC_UUID,
    BATTERY_SERVICE_UUID,
    BATTERY_VOLTAGE_CHARACTERISTIC_UUID,
    IMMEDIATE_ALERT_SERVICE_UUID,
)
from .errors import (
    ConnectionFailed,
    DeviceUnavailable,
    Disconnected,
    ProximityError,
    UserCancelled,
    WriteFailed,
)
from .models import AlertLevel, BatteryInfo, DiscoveryOptions, RawSample, TrackedDevice
from .transport import (
    AlertTransport,
    CancelToken,
    DeviceNotFound,
    PickerDismissed,
    Subscription,
    Transport,
)

logger = logging.getLogger('proxwatch.session')


class ImmediateAlertTransport(AlertTransport):
    """AlertTransport writing the Immediate Alert level characteristic."""

    def __init__(self, session: 'DeviceSession'):
        self._session = session

    async def send(self, level: AlertLevel) -> None:
        level = AlertLevel(level)
        await self._session.write(
            IMMEDIATE_ALERT_SERVICE_UUID,
            ALERT_LEVEL_CHARACTERISTIC_UUID,
            level.encode(),
        )
        logger.info(f"Alert level sent: {level}")


class DeviceSession:
    """
    Lifecycle of a single tracked device.

    The session is "live" from a successful discovery until teardown. Teardown
    (local or remote) releases the connection handle and the disconnect
    subscription, and invokes on_disconnected exactly once per live session.
    """

    def __init__(
        self,
        transport: Transport,
        on_disconnected: Optional[Callable[[], None]] = None,
    ):
        self._transport = transport
        self.on_disconnected = on_disconnected

        self._identity: Optional[str] = None
        self._handle: Any = None
        self._token: Optional[CancelToken] = None
        self._remote_subscription: Optional[Subscription] = None
        self._torn_down = True
        # Bumped on every release so late transport results can be recognised
        self._epoch = 0

    @property
    def identity(self) -> Optional[str]:
        return self._identity

    @property
    def is_live(self) -> bool:
        return not self._torn_down

    @property
    def is_watching(self) -> bool:
        return self._token is not None and not self._token.cancelled

    @property
    def is_connected(self) -> bool:
        return self._handle is not None

    # -------------------------------------------------------------------------
    # Discovery and passive watch
    # -------------------------------------------------------------------------

    async def start_discovery(self, options: Optional[DiscoveryOptions] = None) -> TrackedDevice:
        """
        Ask the transport to select a device.

        Raises:
            UserCancelled: The picker was dismissed.
            DeviceUnavailable: Nothing compatible responded, or discovery failed.
        """
        if self.is_live:
            raise DeviceUnavailable("A device session is already active")

        options = options or DiscoveryOptions()

        try:
            discovered = await self._transport.discover(options)
        except PickerDismissed as e:
            logger.info("Device selection cancelled")
            raise UserCancelled() from e
        except DeviceNotFound as e:
            logger.warning(f"Discovery found nothing: {e}")
            raise DeviceUnavailable(str(e) or DeviceUnavailable.default_message) from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Discovery failed: {e}")
            raise DeviceUnavailable(f"Discovery failed: {e}") from e

        self._identity = discovered.identity
        self._torn_down = False
        logger.info(f"Selected device {discovered.identity} ({discovered.name or 'unnamed'})")
        return TrackedDevice(identity=discovered.identity, display_name=discovered.name)

    async def begin_watching(self) -> AsyncIterator[RawSample]:
        """
        Open a passive watch on the discovered device.

        Returns:
            Async iterator of samples. It ends when stop_watching() is called
            or the session is torn down.

        Raises:
            DeviceUnavailable: No device selected, or the watch could not start.
        """
        if not self.is_live or self._identity is None:
            raise DeviceUnavailable("No device selected")

        self.stop_watching()
        token = CancelToken()
        self._token = token

        try:
            stream = await self._transport.watch(self._identity, token)
        except asyncio.CancelledError:
            token.cancel()
            if self._token is token:
                self._token = None
            if not self._torn_down:
                self._release(notify=False)
            raise
        except Exception as e:
            token.cancel()
            if self._token is token:
                self._token = None
            self._release(notify=False)
            logger.error(f"Could not start watching: {e}")
            raise DeviceUnavailable(f"Could not watch device: {e}") from e

        return self._guarded(stream, token)

    @staticmethod
    async def _guarded(stream: AsyncIterator[RawSample], token: CancelToken) -> AsyncIterator[RawSample]:
        # Nothing is yielded once the token is cancelled, even if the
        # transport had samples buffered.
        async for sample in stream:
            if token.cancelled:
                break
            yield sample

    def stop_watching(self) -> None:
        """Stop the passive watch. Safe to call when not watching."""
        token, self._token = self._token, None
        if token is not None and token.cancel():
            logger.debug("Passive watch stopped")

    # -------------------------------------------------------------------------
    # Active connection
    # -------------------------------------------------------------------------

    async def connect_for_alerts(self) -> AlertTransport:
        """
        Establish the active connection used for alert commands.

        Raises:
            ConnectionFailed: The session is left disconnected; the caller
                must go back through discovery.
            Disconnected: The session was torn down while connecting. The
                late connection is closed again.
        """
        if not self.is_live or self._identity is None:
            raise ConnectionFailed("No device selected")

        self.stop_watching()
        identity, epoch = self._identity, self._epoch

        try:
            handle = await self._transport.connect(identity)
        except asyncio.CancelledError:
            if self._epoch == epoch:
                logger.info(f"Connection to {identity} abandoned")
                self._release(notify=True)
            raise
        except Exception as e:
            logger.error(f"Connection to {identity} failed: {e}")
            if self._epoch != epoch:
                raise Disconnected("Disconnected while connecting") from e
            self._release(notify=False)
            raise ConnectionFailed(f"Failed to connect: {e}") from e

        if self._epoch != epoch:
            logger.info(f"Session for {identity} closed while connecting, dropping link")
            try:
                await self._transport.disconnect(handle)
            except Exception as e:
                logger.warning(f"Error closing late connection: {e}")
            raise Disconnected("Disconnected while connecting")

        self._handle = handle
        self._remote_subscription = self._transport.on_remote_disconnect(
            handle, self._handle_remote_disconnect
        )
        logger.info(f"Active connection to {self._identity} established")
        return ImmediateAlertTransport(self)

    async def write(self, service_uuid: str, characteristic_uuid: str, data: bytes) -> None:
        """Write a characteristic on the live connection."""
        if self._handle is None:
            raise Disconnected("Not connected")
        try:
            await self._transport.write_characteristic(
                self._handle, service_uuid, characteristic_uuid, data
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Write to {characteristic_uuid} failed: {e}")
            raise WriteFailed(f"Error sending to device: {e}") from e

    async def read(self, service_uuid: str, characteristic_uuid: str) -> bytes:
        """Read a characteristic on the live connection."""
        if self._handle is None:
            raise Disconnected("Not connected")
        try:
            return await self._transport.read_characteristic(
                self._handle, service_uuid, characteristic_uuid
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Read of {characteristic_uuid} failed: {e}")
            raise WriteFailed(f"Error reading from device: {e}") from e

    async def read_battery(self) -> BatteryInfo:
        """Read the battery level, plus the raw voltage when the tag exposes it."""
        level = parse_battery_level(
            await self.read(BATTERY_SERVICE_UUID, BATTERY_LEVEL_CHARACTERISTIC_UUID)
        )
        voltage_mv = None
        try:
            voltage_mv = parse_battery_voltage(
                await self.read(BATTERY_SERVICE_UUID, BATTERY_VOLTAGE_CHARACTERISTIC_UUID)
            )
        except (ProximityError, ValueError) as e:
            logger.debug(f"Battery voltage unavailable: {e}")
        return build_battery_info(level=level, voltage_mv=voltage_mv)

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def disconnect(self) -> None:
        """
        Tear down the session. Best-effort; never raises.

        on_disconnected fires once, even across repeated calls or when the
        remote side already dropped the link.
        """
        self.stop_watching()
        if self._torn_down:
            return

        handle = self._release(notify=True)
        if handle is not None:
            try:
                await self._transport.disconnect(handle)
            except Exception as e:
                logger.warning(f"Error during disconnect: {e}")

    def _handle_remote_disconnect(self) -> None:
        if self._torn_down:
            return
        logger.info(f"Remote side disconnected {self._identity}")
        self.stop_watching()
        self._release(notify=True)

    def _release(self, notify: bool) -> Any:
        """Drop all session-owned resources; returns the old handle."""
        self._torn_down = True
        self._epoch += 1
        subscription, self._remote_subscription = self._remote_subscription, None
        if subscription is not None:
            subscription.release()
        handle, self._handle = self._handle, None
        identity, self._identity = self._identity, None

        if notify:
            logger.info(f"Session for {identity} closed")
            if self.on_disconnected is not None:
                self.on_disconnected()
        return handle
