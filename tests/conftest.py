"""Shared fixtures for proximity tests."""

import asyncio

import pytest

from utils.proximity.alert_cycle import AlertCycleManager
from utils.proximity.controller import ModeController
from utils.proximity.distance import SignalProcessor
from utils.proximity.indicator import LocalIndicator
from utils.proximity.models import DiscoveredDevice, RawSample
from utils.proximity.session import DeviceSession
from utils.proximity.transport import Subscription, Transport

TAG_ADDRESS = 'AA:BB:CC:DD:EE:FF'
TAG_NAME = 'iTAG'


class FakeTimer:
    """Timer handle returned by FakeScheduler.call_later."""

    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual clock with asyncio's call_later signature."""

    def __init__(self):
        self.now = 0.0
        self.timers = []

    def call_later(self, delay, callback, *args):
        timer = FakeTimer(self.now + delay, callback, args)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds):
        """Move the clock forward, running due timers in order."""
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.now = timer.when
            timer.fired = True
            timer.callback(*timer.args)
        self.now = target


class RecordingIndicator(LocalIndicator):
    """Counts fires instead of making noise."""

    def __init__(self):
        self.fires = 0

    def fire(self):
        self.fires += 1


class FakeTransport(Transport):
    """
    Scripted in-memory transport.

    Set the *_error attributes to make the matching call raise. Samples are
    injected with push(); remote disconnects with drop().
    """

    def __init__(self, discovered=None):
        self.discovered = discovered or DiscoveredDevice(identity=TAG_ADDRESS, name=TAG_NAME, rssi=-60)
        self.discover_error = None
        self.watch_error = None
        self.connect_error = None
        self.write_error = None
        self.read_error = None
        self.read_values = {}
        # Set to an asyncio.Event to hold the matching call until it is set
        self.discover_gate = None
        self.watch_gate = None
        self.connect_gate = None

        self.discover_calls = []
        self.connect_calls = []
        self.writes = []
        self.disconnects = []
        self.tokens = []
        self.queue = None
        self._remote_callbacks = {}

    async def discover(self, options):
        self.discover_calls.append(options)
        if self.discover_gate is not None:
            await self.discover_gate.wait()
        if self.discover_error is not None:
            raise self.discover_error
        return self.discovered

    async def watch(self, identity, token):
        if self.watch_gate is not None:
            await self.watch_gate.wait()
        if self.watch_error is not None:
            raise self.watch_error
        queue = asyncio.Queue()
        self.queue = queue
        self.tokens.append(token)
        token.add_callback(lambda: queue.put_nowait(None))

        async def drain():
            while True:
                sample = await queue.get()
                if sample is None:
                    return
                yield sample

        return drain()

    def push(self, rssi):
        self.queue.put_nowait(RawSample(rssi=rssi))

    async def connect(self, identity):
        self.connect_calls.append(identity)
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        return f'handle-{len(self.connect_calls)}'

    async def write_characteristic(self, handle, service_uuid, characteristic_uuid, data):
        if self.write_error is not None:
            raise self.write_error
        self.writes.append((handle, service_uuid, characteristic_uuid, bytes(data)))

    async def read_characteristic(self, handle, service_uuid, characteristic_uuid):
        if self.read_error is not None:
            raise self.read_error
        if characteristic_uuid not in self.read_values:
            raise OSError(f'Characteristic {characteristic_uuid} not found')
        return self.read_values[characteristic_uuid]

    def on_remote_disconnect(self, handle, callback):
        callbacks = self._remote_callbacks.setdefault(handle, [])
        callbacks.append(callback)
        return Subscription(lambda: callbacks.remove(callback))

    def remote_listener_count(self, handle):
        return len(self._remote_callbacks.get(handle, []))

    def drop(self, handle):
        """Simulate the tag dropping the link."""
        for callback in list(self._remote_callbacks.get(handle, [])):
            callback()

    async def disconnect(self, handle):
        self.disconnects.append(handle)


async def settle(rounds=10):
    """Let queued samples flow through the watch pump."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def indicator():
    return RecordingIndicator()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def session(transport):
    return DeviceSession(transport)


@pytest.fixture
def alert_cycle(indicator, scheduler):
    return AlertCycleManager(indicator, max_fires=5, period_ms=1000, scheduler=scheduler)


@pytest.fixture
def published():
    return []


@pytest.fixture
def controller(session, alert_cycle, published):
    return ModeController(
        session,
        processor=SignalProcessor(),
        alert_cycle=alert_cycle,
        max_auto_retries=1,
        publisher=lambda event, data: published.append((event, data)),
    )
