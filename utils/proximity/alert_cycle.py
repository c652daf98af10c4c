"""
Out-of-range alert cycle.

Turns a range edge into a bounded, self-terminating series of local
notifications: fire immediately, then once per period until the device comes
back, the session ends, or max_fires is reached.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from .constants import DEFAULT_ALERT_MAX_FIRES, DEFAULT_ALERT_PERIOD_MS
from .indicator import LocalIndicator

logger = logging.getLogger('proxwatch.alert_cycle')


class Scheduler(Protocol):
    """Anything with asyncio's call_later signature."""

    def call_later(self, delay: float, callback: Any, *args: Any) -> Any:
        ...


@dataclass
class AlertCycleState:
    """State of an active cycle."""
    active: bool
    fired_count: int
    max_fires: int
    period_ms: int

    def to_dict(self) -> dict:
        return {
            'active': self.active,
            'fired_count': self.fired_count,
            'max_fires': self.max_fires,
            'period_ms': self.period_ms,
        }


class AlertCycleManager:
    """
    Owns the repeating out-of-range notification.

    At most one timer is outstanding. start() while a cycle is running is a
    no-op, so a noisy flag cannot stack overlapping cycles.
    """

    def __init__(
        self,
        indicator: LocalIndicator,
        max_fires: int = DEFAULT_ALERT_MAX_FIRES,
        period_ms: int = DEFAULT_ALERT_PERIOD_MS,
        scheduler: Optional[Scheduler] = None,
    ):
        """
        Initialize the manager.

        Args:
            indicator: Local indicator fired on each tick.
            max_fires: Fires per cycle, including the immediate one.
            period_ms: Spacing between fires.
            scheduler: Timer source; defaults to the running event loop.
        """
        if max_fires < 1:
            raise ValueError('max_fires must be at least 1')
        self._indicator = indicator
        self.max_fires = max_fires
        self.period_ms = period_ms
        self._scheduler = scheduler
        self._state: Optional[AlertCycleState] = None
        self._timer: Any = None

    @property
    def state(self) -> Optional[AlertCycleState]:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is not None

    def on_range_edge(self, out_of_range: bool, device_present: bool = True) -> None:
        """React to a range flag flip."""
        if out_of_range and device_present:
            self.start()
        else:
            self.stop()

    def start(self) -> bool:
        """
        Start a cycle: fire now and schedule the next tick.

        Returns:
            True if a new cycle started, False if one was already running.
        """
        if self._state is not None:
            logger.debug("Alert cycle already active")
            return False

        self._state = AlertCycleState(
            active=True,
            fired_count=0,
            max_fires=self.max_fires,
            period_ms=self.period_ms,
        )
        logger.info(f"Out-of-range alert cycle started ({self.max_fires} x {self.period_ms}ms)")
        self._fire()
        self._schedule()
        return True

    def stop(self) -> None:
        """Stop the cycle and cancel the pending timer. Idempotent."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._state is not None:
            logger.info(f"Alert cycle stopped after {self._state.fired_count} fire(s)")
            self._state = None

    def _tick(self) -> None:
        self._timer = None
        state = self._state
        if state is None:
            return
        if state.fired_count >= state.max_fires:
            self.stop()
            return
        self._fire()
        self._schedule()

    def _fire(self) -> None:
        self._state.fired_count += 1
        try:
            self._indicator.fire()
        except Exception as e:
            logger.warning(f"Indicator failed: {e}")

    def _schedule(self) -> None:
        scheduler = self._scheduler or asyncio.get_running_loop()
        self._timer = scheduler.call_later(self.period_ms / 1000.0, self._tick)
