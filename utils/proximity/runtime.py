"""
Background runtime for the proximity controller.

The controller and everything below it are single-threaded asyncio code. The
runtime owns one event loop on a daemon thread and lets synchronous callers
(Flask request handlers) run work on it and wait for the result.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Awaitable, Callable, Optional, TypeVar

from .alert_cycle import AlertCycleManager
from .bleak_transport import BleakTransport
from .controller import EventPublisher, ModeController
from .distance import SignalProcessor
from .indicator import ToneIndicator
from .session import DeviceSession

logger = logging.getLogger('proxwatch.runtime')

T = TypeVar('T')

DEFAULT_CALL_TIMEOUT = 30.0


def build_controller(publisher: Optional[EventPublisher] = None) -> ModeController:
    """Wire a controller from the bleak transport and configured calibration."""
    import config

    transport = BleakTransport(
        discovery_timeout=config.DISCOVERY_TIMEOUT,
        connect_timeout=config.CONNECT_TIMEOUT,
    )
    processor = SignalProcessor(
        measured_power_at_1m=config.MEASURED_POWER_AT_1M,
        environmental_factor=config.ENVIRONMENTAL_FACTOR,
        out_of_range_threshold_dbm=config.OUT_OF_RANGE_THRESHOLD_DBM,
    )
    alert_cycle = AlertCycleManager(
        ToneIndicator(command=config.TONE_COMMAND or None),
        max_fires=config.ALERT_CYCLE_MAX_FIRES,
        period_ms=config.ALERT_CYCLE_PERIOD_MS,
    )
    return ModeController(
        DeviceSession(transport),
        processor=processor,
        alert_cycle=alert_cycle,
        max_auto_retries=config.MAX_AUTO_RETRIES,
        publisher=publisher,
    )


class ProximityRuntime:
    """
    Event loop thread hosting one ModeController.

    The controller is created on the loop thread so that timers and tasks it
    creates belong to that loop.
    """

    def __init__(
        self,
        controller_factory: Optional[Callable[[], ModeController]] = None,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
    ):
        self._controller_factory = controller_factory or build_controller
        self._call_timeout = call_timeout
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._controller: Optional[ModeController] = None
        self._ready = threading.Event()
        self._startup_error: Optional[BaseException] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def controller(self) -> Optional[ModeController]:
        return self._controller

    @property
    def call_timeout(self) -> float:
        return self._call_timeout

    def start(self) -> None:
        """Start the loop thread if it is not already running."""
        with self._lock:
            if self.is_running:
                return

            self._ready.clear()
            self._startup_error = None
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(
                target=self._run,
                name='proxwatch-runtime',
                daemon=True,
            )
            self._thread.start()

        self._ready.wait(timeout=5.0)
        if self._startup_error is not None:
            raise RuntimeError(f"Proximity runtime failed to start: {self._startup_error}")
        logger.info("Proximity runtime started")

    def _run(self) -> None:
        loop = self._loop
        asyncio.set_event_loop(loop)
        try:
            self._controller = self._controller_factory()
        except Exception as e:
            logger.error(f"Could not build controller: {e}")
            self._startup_error = e
            self._ready.set()
            loop.close()
            return

        self._ready.set()
        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.close()
            logger.info("Proximity runtime stopped")

    def submit(
        self,
        work: Callable[[ModeController], Awaitable[T]],
        timeout: Optional[float] = None,
    ) -> T:
        """
        Run a coroutine against the controller on the loop thread.

        Args:
            work: Called with the controller; returns the awaitable to run.
            timeout: Seconds to wait for the result.

        Raises:
            TimeoutError: The work did not finish in time; it is cancelled.
        """
        self.start()

        async def invoke() -> T:
            return await work(self._controller)

        future = asyncio.run_coroutine_threadsafe(invoke(), self._loop)
        try:
            return future.result(timeout=timeout or self._call_timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise TimeoutError('Timed out waiting for the proximity runtime')

    def call(self, fn: Callable[[ModeController], T], timeout: Optional[float] = None) -> T:
        """Run a plain function against the controller on the loop thread."""

        async def run(controller: ModeController) -> T:
            return fn(controller)

        return self.submit(run, timeout=timeout)

    def stop(self) -> None:
        """Disconnect the device and stop the loop thread."""
        if not self.is_running:
            return

        try:
            self.submit(lambda controller: controller.disconnect(), timeout=5.0)
        except Exception as e:
            logger.warning(f"Error disconnecting during shutdown: {e}")

        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5.0)
        self._thread = None
        self._controller = None


# Global instance
_runtime: Optional[ProximityRuntime] = None
_runtime_lock = threading.Lock()


def get_proximity_runtime() -> ProximityRuntime:
    """Get or create the global proximity runtime."""
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            import config
            from utils.mqtt import mqtt_publish

            _runtime = ProximityRuntime(
                controller_factory=lambda: build_controller(publisher=mqtt_publish),
                call_timeout=config.RUNTIME_CALL_TIMEOUT,
            )
        return _runtime


def reset_proximity_runtime() -> None:
    """Stop and drop the global runtime."""
    global _runtime
    with _runtime_lock:
        runtime, _runtime = _runtime, None
    if runtime is not None:
        runtime.stop()
