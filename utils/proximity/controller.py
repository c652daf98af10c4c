"""
Mode controller: the proximity state machine.

Idle -> Radar (passive RSSI monitoring) -> Alert (active connection for alert
commands). The controller is the only writer of the operating mode and the
tracked device record, and the single entry point for user calls and
transport events. It runs entirely on one asyncio loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Optional

from .alert_cycle import AlertCycleManager
from .constants import (
    STATUS_ALERT,
    STATUS_CONNECTING,
    STATUS_DISCONNECTED,
    STATUS_NOT_IN_ALERT,
    STATUS_RADAR,
    STATUS_READY,
    STATUS_SEARCHING,
)
from .distance import SignalProcessor, get_signal_processor
from .errors import ConnectionFailed, ProximityError, UserCancelled
from .indicator import ToneIndicator
from .models import (
    AlertLevel,
    BatteryInfo,
    DiscoveryOptions,
    OperatingMode,
    ProximityStatus,
    RawSample,
    TrackedDevice,
)
from .session import DeviceSession
from .transport import AlertTransport

logger = logging.getLogger('proxwatch.controller')

StatusListener = Callable[[ProximityStatus], None]
EventPublisher = Callable[[str, dict], Any]


class ModeController:
    """
    Top-level state machine for one tracked device.

    State changes are pushed to listeners registered with add_listener() and,
    when a publisher is given, mirrored as (event, payload) pairs.
    """

    def __init__(
        self,
        session: DeviceSession,
        processor: Optional[SignalProcessor] = None,
        alert_cycle: Optional[AlertCycleManager] = None,
        max_auto_retries: int = 1,
        publisher: Optional[EventPublisher] = None,
    ):
        """
        Initialize the controller.

        Args:
            session: Session for the tracked device; its disconnection
                callback is taken over by the controller.
            processor: RSSI processor (defaults to the shared instance).
            alert_cycle: Out-of-range cycle (defaults to a tone indicator).
            max_auto_retries: Automatic returns to radar mode after a failed
                alert-mode connection, per user-initiated transition.
            publisher: Optional callable receiving (event, payload).
        """
        self._session = session
        self._session.on_disconnected = self._on_disconnected
        self._processor = processor or get_signal_processor()
        self._alert_cycle = alert_cycle or AlertCycleManager(ToneIndicator())
        self._publisher = publisher

        self._max_auto_retries = max_auto_retries
        self._retries_left = max_auto_retries

        self._mode = OperatingMode.IDLE
        self._device: Optional[TrackedDevice] = None
        self._message = STATUS_READY
        self._last_error: Optional[str] = None
        self._out_of_range = False
        self._loading = False
        self._transition_pending = False

        self._alert_transport: Optional[AlertTransport] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._listeners: list[StatusListener] = []

    # -------------------------------------------------------------------------
    # Exposed state
    # -------------------------------------------------------------------------

    @property
    def mode(self) -> OperatingMode:
        return self._mode

    @property
    def device(self) -> Optional[TrackedDevice]:
        return self._device

    @property
    def message(self) -> str:
        return self._message

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def out_of_range(self) -> bool:
        return self._out_of_range

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def busy(self) -> bool:
        """True while a mode transition is waiting on the transport."""
        return self._transition_pending

    @property
    def alert_cycle(self) -> AlertCycleManager:
        return self._alert_cycle

    @property
    def processor(self) -> SignalProcessor:
        return self._processor

    @property
    def auto_retries_left(self) -> int:
        return self._retries_left

    def status(self) -> ProximityStatus:
        """Snapshot of the exposed state."""
        cycle = self._alert_cycle.state
        device = None
        if self._device is not None:
            device = TrackedDevice(**vars(self._device))
        return ProximityStatus(
            mode=self._mode,
            device=device,
            message=self._message,
            out_of_range=self._out_of_range,
            loading=self._loading,
            last_error=self._last_error,
            alert_cycle=cycle.to_dict() if cycle else None,
        )

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        """
        Register a listener called with a status snapshot after each change.

        Returns:
            Callable that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # -------------------------------------------------------------------------
    # User-initiated transitions
    # -------------------------------------------------------------------------

    async def request_radar(self, options: Optional[DiscoveryOptions] = None) -> bool:
        """
        Idle -> Radar: select a device and start watching it.

        Returns:
            True if radar mode was entered. False if the call was rejected
            (not idle, or another transition in flight) or failed; failures
            are reported through the status message.
        """
        if self._mode is not OperatingMode.IDLE or self._transition_pending:
            logger.debug(f"Radar request ignored in {self._mode} mode")
            return False
        self._retries_left = self._max_auto_retries
        return await self._enter_radar(options)

    async def request_alert_mode(self) -> bool:
        """
        Radar -> Alert: stop watching and open the active connection.

        On connection failure the controller falls back to radar mode on its
        own, at most max_auto_retries times.
        """
        if (
            self._mode is not OperatingMode.RADAR
            or self._device is None
            or self._transition_pending
        ):
            logger.debug(f"Alert mode request ignored in {self._mode} mode")
            return False

        self._retries_left = self._max_auto_retries
        self._transition_pending = True
        self._loading = True
        self._leave_radar()
        self._session.stop_watching()
        self._set_message(STATUS_CONNECTING)
        self._notify()

        try:
            transport = await self._session.connect_for_alerts()
        except ConnectionFailed as e:
            self._end_transition()
            self._set_message(str(e), e)
            logger.warning(f"Alert mode unavailable: {e}")
            self._notify()
            await self._recover_from_connect_failure(e)
            return False
        except ProximityError as e:
            # Torn down while connecting; the disconnect path already reset us.
            self._end_transition()
            logger.info(f"Alert mode abandoned: {e}")
            self._notify()
            return False
        finally:
            self._end_transition()

        if (
            not self._session.is_connected
            or self._mode is not OperatingMode.RADAR
            or self._device is None
        ):
            logger.info("Device went away while connecting")
            self._notify()
            return False

        self._alert_transport = transport
        self._mode = OperatingMode.ALERT
        self._set_message(STATUS_ALERT)
        logger.info(f"Alert mode active for {self._device.identity}")
        self._publish_mode()
        self._notify()
        return True

    async def send_alert(self, level: Any) -> bool:
        """
        Alert: send an alert level to the device.

        Raises:
            ValueError: If level does not name an alert level.
        """
        level = AlertLevel.parse(level)

        if self._mode is not OperatingMode.ALERT or self._alert_transport is None:
            self._set_message(STATUS_NOT_IN_ALERT)
            self._notify()
            return False

        try:
            await self._alert_transport.send(level)
        except ProximityError as e:
            self._set_message(str(e), e)
            self._notify()
            return False

        self._set_message(f"Alert level set to {level}.")
        self._publish('alert', {'level': str(level), 'value': int(level)})
        self._notify()
        return True

    async def read_battery(self) -> Optional[BatteryInfo]:
        """Alert: read the tag battery. Returns None outside alert mode or on failure."""
        if self._mode is not OperatingMode.ALERT:
            return None
        try:
            return await self._session.read_battery()
        except ProximityError as e:
            self._set_message(str(e), e)
            self._notify()
            return None

    async def disconnect(self) -> None:
        """User-initiated disconnect; the session reports back via callback."""
        self._retries_left = self._max_auto_retries
        await self._session.disconnect()

    # -------------------------------------------------------------------------
    # Transport events
    # -------------------------------------------------------------------------

    def handle_sample(self, sample: RawSample) -> bool:
        """
        Apply one RSSI sample.

        Only accepted in radar mode; the mode is checked when the sample is
        processed, not when it was produced.

        Returns:
            True if the sample was applied.
        """
        if self._mode is not OperatingMode.RADAR or self._device is None:
            logger.debug(f"Discarding sample in {self._mode} mode")
            return False

        distance, category, now_out = self._processor.process(sample.rssi)

        device = self._device
        device.last_rssi = sample.rssi
        device.last_distance_m = distance
        device.proximity_category = category
        device.last_seen = sample.timestamp

        was_out = self._out_of_range
        self._out_of_range = now_out

        if now_out != was_out:
            if now_out:
                logger.info(f"{device.identity} out of range (rssi={sample.rssi})")
            else:
                logger.info(f"{device.identity} back in range (rssi={sample.rssi})")
            self._alert_cycle.on_range_edge(now_out, device_present=True)
            self._publish('range', {
                'identity': device.identity,
                'out_of_range': now_out,
                'rssi': sample.rssi,
                'distance_m': distance,
            })

        self._notify()
        return True

    def _on_disconnected(self) -> None:
        """Any mode -> Idle. The only path that clears the tracked device."""
        self._stop_pump()
        self._alert_cycle.stop()
        self._device = None
        self._alert_transport = None
        self._out_of_range = False
        self._loading = False
        self._mode = OperatingMode.IDLE
        self._set_message(STATUS_DISCONNECTED)
        logger.info("Device disconnected, back to idle")
        self._publish_mode()
        self._notify()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _enter_radar(
        self,
        options: Optional[DiscoveryOptions],
        retained: Optional[TrackedDevice] = None,
        carried_error: Optional[ProximityError] = None,
    ) -> bool:
        self._transition_pending = True
        self._set_message(STATUS_SEARCHING, carried_error)
        self._notify()

        try:
            device = await self._session.start_discovery(options)
            stream = await self._session.begin_watching()
        except UserCancelled:
            self._end_transition()
            self._set_message(STATUS_READY)
            self._notify()
            return False
        except ProximityError as e:
            self._end_transition()
            self._set_message(str(e), e)
            logger.warning(f"Radar mode unavailable: {e}")
            self._notify()
            return False
        except asyncio.CancelledError:
            self._end_transition()
            self._set_message(STATUS_READY)
            logger.info("Radar request abandoned")
            self._notify()
            raise
        finally:
            self._end_transition()

        if not self._session.is_live or self._session.identity != device.identity:
            # Torn down while we were waiting on the transport.
            self._notify()
            return False

        if retained is not None and retained.identity == device.identity:
            device = retained
        self._device = device
        self._mode = OperatingMode.RADAR
        self._out_of_range = False

        if carried_error is not None:
            self._set_message(f"{carried_error}. {STATUS_RADAR}", carried_error)
        else:
            self._set_message(STATUS_RADAR)

        self._start_pump(stream)
        logger.info(f"Radar mode active for {device.identity}")
        self._publish_mode()
        self._notify()
        return True

    async def _recover_from_connect_failure(self, error: ConnectionFailed) -> None:
        retained = self._device
        self._device = None
        self._mode = OperatingMode.IDLE

        if retained is None or self._retries_left <= 0:
            logger.warning("No automatic retry left, staying idle")
            self._publish_mode()
            self._notify()
            return

        self._retries_left -= 1
        logger.info(f"Returning to radar mode for {retained.identity}")
        await self._enter_radar(
            DiscoveryOptions(address=retained.identity),
            retained=retained,
            carried_error=error,
        )

    def _end_transition(self) -> None:
        self._transition_pending = False
        self._loading = False

    def _leave_radar(self) -> None:
        self._stop_pump()
        self._alert_cycle.stop()
        self._out_of_range = False

    def _start_pump(self, stream: AsyncIterator[RawSample]) -> None:
        self._stop_pump()
        self._watch_task = asyncio.get_running_loop().create_task(self._pump(stream))

    def _stop_pump(self) -> None:
        task, self._watch_task = self._watch_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _pump(self, stream: AsyncIterator[RawSample]) -> None:
        try:
            async for sample in stream:
                self.handle_sample(sample)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Sample stream failed: {e}")
            await self._session.disconnect()

    def _set_message(self, message: str, error: Optional[ProximityError] = None) -> None:
        self._message = message
        self._last_error = error.kind if error is not None else None

    def _notify(self) -> None:
        if not self._listeners:
            return
        status = self.status()
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.warning(f"Status listener failed: {e}")

    def _publish_mode(self) -> None:
        self._publish('mode', {
            'mode': self._mode.value,
            'identity': self._device.identity if self._device else None,
        })

    def _publish(self, event: str, data: dict) -> None:
        if self._publisher is None:
            return
        try:
            self._publisher(event, data)
        except Exception as e:
            logger.warning(f"Publishing {event} event failed: {e}")
