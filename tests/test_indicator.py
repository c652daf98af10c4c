"""Tests for local out-of-range indicators."""

import subprocess
from unittest.mock import MagicMock, patch

from utils.proximity.indicator import CallbackIndicator, ToneIndicator


class TestToneIndicator:
    """Tests for tone command resolution and firing."""

    def test_configured_command_is_split(self):
        """An explicit command is tokenised like a shell would."""
        with patch('utils.proximity.indicator.shutil.which') as mock_which:
            indicator = ToneIndicator(command='play -n synth "0.2" sine 988')
        assert indicator.command == ['play', '-n', 'synth', '0.2', 'sine', '988']
        mock_which.assert_not_called()

    def test_beep_used_when_installed(self):
        """The beep utility gets the tone frequency and duration."""
        with patch('utils.proximity.indicator.shutil.which', return_value='/usr/bin/beep'):
            indicator = ToneIndicator(frequency_hz=987.77, duration_ms=200)
        assert indicator.command == ['beep', '-f', '988', '-l', '200']

    def test_bell_when_nothing_installed(self):
        """Without a command or beep there is nothing to run."""
        with patch('utils.proximity.indicator.shutil.which', return_value=None):
            indicator = ToneIndicator()
        assert indicator.command is None

    def test_fire_runs_command_detached(self):
        """Firing starts the command without waiting on it."""
        with patch('utils.proximity.indicator.shutil.which', return_value='/usr/bin/beep'):
            indicator = ToneIndicator(frequency_hz=1000, duration_ms=150)

        with patch('utils.proximity.indicator.subprocess.Popen') as mock_popen:
            indicator.fire()

        mock_popen.assert_called_once_with(
            ['beep', '-f', '1000', '-l', '150'],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )

    def test_fire_falls_back_to_bell(self):
        """Firing without a command writes the terminal bell."""
        with patch('utils.proximity.indicator.shutil.which', return_value=None):
            indicator = ToneIndicator()

        with patch('utils.proximity.indicator.subprocess.Popen') as mock_popen, \
                patch('utils.proximity.indicator.sys.stdout') as mock_stdout:
            indicator.fire()

        mock_popen.assert_not_called()
        mock_stdout.write.assert_called_once_with('\a')
        mock_stdout.flush.assert_called_once()


class TestCallbackIndicator:

    def test_fire_calls_callback(self):
        """Each fire calls the wrapped callable once."""
        callback = MagicMock()
        indicator = CallbackIndicator(callback)
        indicator.fire()
        indicator.fire()
        assert callback.call_count == 2
