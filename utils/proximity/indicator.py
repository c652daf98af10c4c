"""
Local out-of-range indicators.

An indicator fire is a short, passive notification on the host (a tone). It
does not involve the tracked device's connection.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from typing import Callable, Optional

from .constants import TONE_DURATION_MS, TONE_FREQUENCY_HZ

logger = logging.getLogger('proxwatch.indicator')


class LocalIndicator(ABC):
    """Fire-and-forget local notification."""

    @abstractmethod
    def fire(self) -> None:
        """Emit one notification. Must not block."""


class ToneIndicator(LocalIndicator):
    """
    Short tone on the host.

    Uses an explicit command when configured, the `beep` utility when it is
    installed, and the terminal bell otherwise.
    """

    def __init__(
        self,
        command: Optional[str] = None,
        frequency_hz: float = TONE_FREQUENCY_HZ,
        duration_ms: int = TONE_DURATION_MS,
    ):
        self.frequency_hz = frequency_hz
        self.duration_ms = duration_ms
        self._command = self._resolve_command(command)

    def _resolve_command(self, command: Optional[str]) -> Optional[list[str]]:
        if command:
            return shlex.split(command)
        if shutil.which('beep'):
            return ['beep', '-f', f'{self.frequency_hz:.0f}', '-l', str(self.duration_ms)]
        return None

    @property
    def command(self) -> Optional[list[str]]:
        return self._command

    def fire(self) -> None:
        if self._command:
            subprocess.Popen(
                self._command,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        else:
            sys.stdout.write('\a')
            sys.stdout.flush()
        logger.debug("Out-of-range tone")


class CallbackIndicator(LocalIndicator):
    """Indicator that delegates to a plain callable."""

    def __init__(self, callback: Callable[[], None]):
        self._callback = callback

    def fire(self) -> None:
        self._callback()
