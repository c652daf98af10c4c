"""
Unit tests for DeviceSession.

Covers error classification at the transport boundary, watch cancellation and
single-shot teardown.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from conftest import TAG_ADDRESS, settle
from utils.proximity.constants import (
    ALERT_LEVEL_CHARACTERISTIC_UUID,
    BATTERY_LEVEL_CHARACTERISTIC_UUID,
    BATTERY_VOLTAGE_CHARACTERISTIC_UUID,
    IMMEDIATE_ALERT_SERVICE_UUID,
)
from utils.proximity.errors import (
    ConnectionFailed,
    DeviceUnavailable,
    Disconnected,
    UserCancelled,
    WriteFailed,
)
from utils.proximity.models import AlertLevel, BatteryState, DiscoveryOptions
from utils.proximity.transport import DeviceNotFound, PickerDismissed


def run(coro):
    return asyncio.run(coro)


class TestDiscovery:
    """Tests for start_discovery classification."""

    def test_success_returns_tracked_device(self, session):
        """Discovery returns a record for the selected device."""
        device = run(session.start_discovery())
        assert device.identity == TAG_ADDRESS
        assert device.display_name == 'iTAG'
        assert device.last_rssi is None
        assert session.is_live

    def test_options_passed_through(self, session, transport):
        """Discovery options reach the transport."""
        options = DiscoveryOptions(name='tag', timeout=5.0)
        run(session.start_discovery(options))
        assert transport.discover_calls == [options]

    def test_picker_dismissed_is_user_cancelled(self, session, transport):
        """A dismissed picker becomes UserCancelled."""
        transport.discover_error = PickerDismissed('dismissed')
        with pytest.raises(UserCancelled) as exc_info:
            run(session.start_discovery())
        assert isinstance(exc_info.value.__cause__, PickerDismissed)
        assert not session.is_live

    def test_not_found_is_device_unavailable(self, session, transport):
        """Nothing found becomes DeviceUnavailable."""
        transport.discover_error = DeviceNotFound('nothing nearby')
        with pytest.raises(DeviceUnavailable, match='nothing nearby'):
            run(session.start_discovery())

    def test_other_failures_are_device_unavailable(self, session, transport):
        """Other discovery errors become DeviceUnavailable."""
        transport.discover_error = OSError('adapter off')
        with pytest.raises(DeviceUnavailable, match='adapter off'):
            run(session.start_discovery())

    def test_second_discovery_rejected_while_live(self, session):
        """Discovery is refused while a session is live."""
        async def scenario():
            await session.start_discovery()
            await session.start_discovery()

        with pytest.raises(DeviceUnavailable):
            run(scenario())


class TestWatching:
    """Tests for the passive watch."""

    def test_samples_flow_until_stopped(self, session, transport):
        """Samples are yielded until the watch stops."""
        async def scenario():
            await session.start_discovery()
            stream = await session.begin_watching()
            received = []

            async def consume():
                async for sample in stream:
                    received.append(sample.rssi)

            task = asyncio.ensure_future(consume())
            transport.push(-60)
            transport.push(-65)
            await settle()
            session.stop_watching()
            transport.push(-70)
            await settle()
            return received, task.done()

        received, finished = run(scenario())
        assert received == [-60, -65]
        assert finished is True

    def test_buffered_samples_dropped_after_stop(self, session, transport):
        """Nothing is delivered once the token is cancelled."""
        async def scenario():
            await session.start_discovery()
            stream = await session.begin_watching()
            transport.push(-60)
            token = transport.tokens[-1]
            session.stop_watching()
            return [s async for s in stream], token.cancelled

        received, cancelled = run(scenario())
        assert received == []
        assert cancelled is True

    def test_fresh_token_per_watch(self, session, transport):
        """Each watch gets its own cancel token."""
        async def scenario():
            await session.start_discovery()
            await session.begin_watching()
            await session.begin_watching()

        run(scenario())
        first, second = transport.tokens
        assert first is not second
        assert first.cancelled is True
        assert second.cancelled is False

    def test_watch_failure_releases_session(self, session, transport):
        """A failed watch start releases the session silently."""
        transport.watch_error = OSError('scanner busy')
        callback = MagicMock()
        session.on_disconnected = callback

        async def scenario():
            await session.start_discovery()
            await session.begin_watching()

        with pytest.raises(DeviceUnavailable):
            run(scenario())
        assert not session.is_live
        callback.assert_not_called()

    def test_watch_without_device(self, session):
        """Watching without a device is refused."""
        with pytest.raises(DeviceUnavailable):
            run(session.begin_watching())

    def test_stop_watching_when_idle(self, session):
        """Stopping an absent watch is safe."""
        session.stop_watching()
        assert session.is_watching is False


class TestActiveConnection:
    """Tests for connect_for_alerts, writes and reads."""

    def test_connect_stops_watch_and_subscribes(self, session, transport):
        """Connecting stops the watch and listens for drops."""
        async def scenario():
            await session.start_discovery()
            await session.begin_watching()
            return await session.connect_for_alerts()

        run(scenario())
        assert transport.tokens[-1].cancelled is True
        assert session.is_connected
        assert transport.remote_listener_count('handle-1') == 1

    def test_connect_failure(self, session, transport):
        """Connection errors become ConnectionFailed without a disconnect event."""
        transport.connect_error = OSError('out of range')
        callback = MagicMock()
        session.on_disconnected = callback

        async def scenario():
            await session.start_discovery()
            await session.connect_for_alerts()

        with pytest.raises(ConnectionFailed) as exc_info:
            run(scenario())
        assert isinstance(exc_info.value.__cause__, OSError)
        assert not session.is_live
        callback.assert_not_called()

    def test_alert_written_without_response_format(self, session, transport):
        """Alerts write one byte to the alert level characteristic."""
        async def scenario():
            await session.start_discovery()
            alerts = await session.connect_for_alerts()
            await alerts.send(AlertLevel.STRONG)
            await alerts.send(AlertLevel.OFF)

        run(scenario())
        assert transport.writes == [
            ('handle-1', IMMEDIATE_ALERT_SERVICE_UUID, ALERT_LEVEL_CHARACTERISTIC_UUID, b'\x02'),
            ('handle-1', IMMEDIATE_ALERT_SERVICE_UUID, ALERT_LEVEL_CHARACTERISTIC_UUID, b'\x00'),
        ]

    def test_write_failure(self, session, transport):
        """Write errors become WriteFailed."""
        transport.write_error = OSError('GATT error')

        async def scenario():
            await session.start_discovery()
            alerts = await session.connect_for_alerts()
            await alerts.send(AlertLevel.MILD)

        with pytest.raises(WriteFailed):
            run(scenario())
        assert session.is_connected

    def test_write_after_disconnect(self, session):
        """Writes without a connection raise Disconnected."""
        async def scenario():
            await session.start_discovery()
            alerts = await session.connect_for_alerts()
            await session.disconnect()
            await alerts.send(AlertLevel.MILD)

        with pytest.raises(Disconnected):
            run(scenario())

    def test_read_battery_prefers_voltage(self, session, transport):
        """The voltage characteristic wins when present."""
        transport.read_values = {
            BATTERY_LEVEL_CHARACTERISTIC_UUID: b'\x5a',
            BATTERY_VOLTAGE_CHARACTERISTIC_UUID: (2650).to_bytes(2, 'little'),
        }

        async def scenario():
            await session.start_discovery()
            await session.connect_for_alerts()
            return await session.read_battery()

        info = run(scenario())
        assert info.percentage == 50
        assert info.voltage_mv == 2650
        assert info.state == BatteryState.MEDIUM

    def test_read_battery_level_only(self, session, transport):
        """A missing voltage characteristic falls back to the level."""
        transport.read_values = {BATTERY_LEVEL_CHARACTERISTIC_UUID: b'\x5a'}

        async def scenario():
            await session.start_discovery()
            await session.connect_for_alerts()
            return await session.read_battery()

        info = run(scenario())
        assert info.percentage == 90
        assert info.voltage_mv is None


class TestTeardown:
    """Tests for single-shot teardown."""

    def test_disconnect_twice_notifies_once(self, session, transport):
        """Teardown notifies once across repeated calls."""
        callback = MagicMock()
        session.on_disconnected = callback

        async def scenario():
            await session.start_discovery()
            await session.connect_for_alerts()
            await session.disconnect()
            await session.disconnect()

        run(scenario())
        callback.assert_called_once()
        assert transport.disconnects == ['handle-1']
        assert transport.remote_listener_count('handle-1') == 0

    def test_remote_then_local_disconnect(self, session, transport):
        """A remote drop followed by a local disconnect notifies once."""
        callback = MagicMock()
        session.on_disconnected = callback

        async def scenario():
            await session.start_discovery()
            await session.connect_for_alerts()
            transport.drop('handle-1')
            await session.disconnect()

        run(scenario())
        callback.assert_called_once()
        assert transport.disconnects == []
        assert not session.is_connected

    def test_disconnect_in_radar_stops_watch(self, session, transport):
        """Disconnecting in radar cancels the watch."""
        callback = MagicMock()
        session.on_disconnected = callback

        async def scenario():
            await session.start_discovery()
            await session.begin_watching()
            await session.disconnect()

        run(scenario())
        assert transport.tokens[-1].cancelled is True
        callback.assert_called_once()
        assert session.identity is None

    def test_disconnect_before_discovery_is_noop(self, session):
        """Disconnecting before discovery does nothing."""
        callback = MagicMock()
        session.on_disconnected = callback
        run(session.disconnect())
        callback.assert_not_called()

    def test_transport_disconnect_error_is_swallowed(self, session, transport):
        """Transport errors during teardown are logged, not raised."""
        async def failing_disconnect(handle):
            raise OSError('already gone')

        transport.disconnect = failing_disconnect

        async def scenario():
            await session.start_discovery()
            await session.connect_for_alerts()
            await session.disconnect()

        run(scenario())
        assert not session.is_live


class TestInterruptedCalls:
    """Tests for teardown and cancellation racing a pending transport call."""

    def test_late_connection_after_disconnect_is_closed(self, session, transport):
        """A link that completes after teardown is dropped, not adopted."""
        callback = MagicMock()
        session.on_disconnected = callback

        async def scenario():
            await session.start_discovery()
            transport.connect_gate = asyncio.Event()
            pending = asyncio.ensure_future(session.connect_for_alerts())
            await settle()
            await session.disconnect()
            transport.connect_gate.set()
            with pytest.raises(Disconnected):
                await pending

        run(scenario())
        callback.assert_called_once()
        assert not session.is_live
        assert not session.is_connected
        assert transport.disconnects == ['handle-1']
        assert transport.remote_listener_count('handle-1') == 0

    def test_connect_error_after_disconnect_is_not_a_connection_failure(self, session, transport):
        """A failure reported after teardown does not look like a fresh failure."""
        async def scenario():
            await session.start_discovery()
            transport.connect_gate = asyncio.Event()
            transport.connect_error = OSError('aborted')
            pending = asyncio.ensure_future(session.connect_for_alerts())
            await settle()
            await session.disconnect()
            transport.connect_gate.set()
            with pytest.raises(Disconnected):
                await pending

        run(scenario())
        assert transport.disconnects == []

    def test_cancelled_connect_releases_session(self, session, transport):
        """Cancelling the connection attempt closes the session once."""
        callback = MagicMock()
        session.on_disconnected = callback

        async def scenario():
            await session.start_discovery()
            transport.connect_gate = asyncio.Event()
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(session.connect_for_alerts(), 0.05)

        run(scenario())
        callback.assert_called_once()
        assert not session.is_live
        assert session.identity is None

    def test_cancelled_watch_start_releases_session(self, session, transport):
        """Cancelling the watch start leaves no half-open session behind."""
        callback = MagicMock()
        session.on_disconnected = callback

        async def scenario():
            await session.start_discovery()
            transport.watch_gate = asyncio.Event()
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(session.begin_watching(), 0.05)
            return await session.start_discovery()

        device = run(scenario())
        assert device.identity == TAG_ADDRESS
        assert not session.is_watching
        callback.assert_not_called()
