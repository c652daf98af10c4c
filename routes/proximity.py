"""
Proximity API - radar mode, alert mode and tag alerts.

Provides REST endpoints and an SSE stream for the single tracked device. All
work runs on the proximity runtime's event loop; views only validate input
and translate results into HTTP responses.
"""

from __future__ import annotations

import functools
import queue
from typing import Any, Awaitable, Callable, Generator, Optional

from flask import Blueprint, Response, jsonify, request

from utils.logging import get_logger
from utils.proximity import (
    AlertLevel,
    DiscoveryOptions,
    ModeController,
    OperatingMode,
    ProximityStatus,
    get_proximity_runtime,
)
from utils.sse import format_sse

logger = get_logger('proxwatch.proximity')

proximity_bp = Blueprint('proximity', __name__, url_prefix='/api/proximity')

# Seconds between keep-alive events on an idle stream
STREAM_PING_INTERVAL = 15.0
STREAM_QUEUE_SIZE = 100

# Seconds a discovery must leave before the runtime call times out
DISCOVERY_TIMEOUT_MARGIN = 5.0


# =============================================================================
# HELPERS
# =============================================================================


def _execute(work: Callable[[ModeController], Awaitable[Any]]) -> tuple[Any, dict]:
    """Run work on the runtime; returns its result and the status afterwards."""

    async def wrapped(controller: ModeController) -> tuple[Any, dict]:
        result = await work(controller)
        return result, controller.status().to_dict()

    return get_proximity_runtime().submit(wrapped)


def _rejected(status: dict) -> tuple[Response, int]:
    return jsonify({
        'error': f"Not allowed in {status['mode']} mode",
        'proximity': status,
    }), 409


def _failed(status: dict) -> tuple[Response, int]:
    return jsonify({
        'status': 'failed',
        'error': status['message'],
        'error_kind': status['last_error'],
        'proximity': status,
    }), 500


def runtime_errors(view: Callable) -> Callable:
    """Map runtime timeouts to 504 and unexpected failures to 500."""

    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        try:
            return view(*args, **kwargs)
        except TimeoutError:
            logger.warning(f"{request.path}: timed out waiting for the device")
            return jsonify({'error': 'Timed out waiting for the device'}), 504
        except Exception as e:
            logger.exception(f"{request.path} failed: {e}")
            return jsonify({'error': str(e)}), 500

    return wrapper


def parse_discovery_options(data: dict, max_timeout: Optional[float] = None) -> DiscoveryOptions:
    """
    Build discovery options from a request body.

    Raises:
        ValueError: If a field has the wrong type, or the timeout is not
            below max_timeout.
    """
    address = data.get('address')
    name = data.get('name')
    timeout = data.get('timeout')

    if address is not None and not isinstance(address, str):
        raise ValueError('address must be a string')
    if name is not None and not isinstance(name, str):
        raise ValueError('name must be a string')
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError('timeout must be a positive number')
        if max_timeout is not None and timeout >= max_timeout:
            raise ValueError(f'timeout must be below {max_timeout:g} seconds')
        timeout = float(timeout)

    return DiscoveryOptions(address=address or None, name=name or None, timeout=timeout)


# =============================================================================
# STATE
# =============================================================================


@proximity_bp.route('/status', methods=['GET'])
@runtime_errors
def get_status():
    """
    Get the controller state.

    Returns:
        JSON with mode, device, message, range flag and alert cycle.
    """
    status = get_proximity_runtime().call(lambda c: c.status().to_dict())
    return jsonify(status)


@proximity_bp.route('/calibration', methods=['GET'])
@runtime_errors
def get_calibration():
    """Get the RSSI calibration in use."""
    calibration = get_proximity_runtime().call(lambda c: c.processor.to_dict())
    return jsonify(calibration)


@proximity_bp.route('/estimate', methods=['POST'])
@runtime_errors
def estimate():
    """
    Estimate distance for an RSSI value with the current calibration.

    Request JSON:
        - rssi: Signal strength in dBm (integer)
    """
    data = request.get_json(silent=True) or {}
    rssi = data.get('rssi')
    if isinstance(rssi, bool) or not isinstance(rssi, int):
        return jsonify({'error': 'rssi must be an integer'}), 400

    distance, category, out_of_range = get_proximity_runtime().call(
        lambda c: c.processor.process(rssi)
    )
    return jsonify({
        'rssi': rssi,
        'distance_m': distance,
        'proximity_category': category.value,
        'out_of_range': out_of_range,
    })


# =============================================================================
# MODE TRANSITIONS
# =============================================================================


@proximity_bp.route('/radar', methods=['POST'])
@runtime_errors
def start_radar():
    """
    Select a device and enter radar mode.

    Request JSON:
        - address: Device address to look for (optional)
        - name: Name substring filter (optional)
        - timeout: Discovery timeout in seconds (optional)
    """
    data = request.get_json(silent=True) or {}
    max_timeout = get_proximity_runtime().call_timeout - DISCOVERY_TIMEOUT_MARGIN
    try:
        options = parse_discovery_options(data, max_timeout=max_timeout)
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    async def work(controller: ModeController) -> Optional[bool]:
        if controller.mode is not OperatingMode.IDLE or controller.busy:
            return None
        return await controller.request_radar(options)

    started, status = _execute(work)

    if started is None:
        return _rejected(status)
    if started:
        return jsonify({'status': 'started', 'proximity': status})
    if status['last_error'] is None:
        return jsonify({'status': 'cancelled', 'proximity': status})
    return _failed(status)


@proximity_bp.route('/alert-mode', methods=['POST'])
@runtime_errors
def start_alert_mode():
    """Connect to the tracked device for alert commands."""

    async def work(controller: ModeController) -> Optional[bool]:
        if controller.mode is not OperatingMode.RADAR or controller.busy:
            return None
        return await controller.request_alert_mode()

    connected, status = _execute(work)

    if connected is None:
        return _rejected(status)
    if connected:
        return jsonify({'status': 'connected', 'proximity': status})
    return _failed(status)


@proximity_bp.route('/alert', methods=['POST'])
@runtime_errors
def send_alert():
    """
    Send an alert level to the tag.

    Request JSON:
        - level: 'off', 'mild', 'strong' or 0-2
    """
    data = request.get_json(silent=True) or {}
    try:
        level = AlertLevel.parse(data.get('level'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    async def work(controller: ModeController) -> Optional[bool]:
        if controller.mode is not OperatingMode.ALERT:
            return None
        return await controller.send_alert(level)

    sent, status = _execute(work)

    if sent is None:
        return _rejected(status)
    if sent:
        return jsonify({'status': 'sent', 'level': str(level), 'proximity': status})
    return _failed(status)


@proximity_bp.route('/battery', methods=['GET'])
@runtime_errors
def get_battery():
    """Read the tag battery (alert mode only)."""

    async def work(controller: ModeController):
        if controller.mode is not OperatingMode.ALERT:
            return None, False
        return await controller.read_battery(), True

    (info, allowed), status = _execute(work)

    if not allowed:
        return _rejected(status)
    if info is None:
        return _failed(status)
    return jsonify({'battery': info.to_dict(), 'proximity': status})


@proximity_bp.route('/disconnect', methods=['POST'])
@runtime_errors
def disconnect():
    """Release the tracked device and return to idle."""
    _, status = _execute(lambda controller: controller.disconnect())
    return jsonify({'status': 'disconnected', 'proximity': status})


# =============================================================================
# STREAMING
# =============================================================================


@proximity_bp.route('/stream', methods=['GET'])
@runtime_errors
def stream_status():
    """
    SSE stream of controller state.

    Returns:
        Server-Sent Events stream of 'status' events, with 'ping' keep-alives.
    """
    runtime = get_proximity_runtime()
    events: queue.Queue = queue.Queue(maxsize=STREAM_QUEUE_SIZE)

    def listener(status: ProximityStatus) -> None:
        try:
            events.put_nowait(status.to_dict())
        except queue.Full:
            logger.debug("Stream client is slow, dropping status update")

    remove = runtime.call(lambda c: c.add_listener(listener))
    initial = runtime.call(lambda c: c.status().to_dict())

    def event_generator() -> Generator[str, None, None]:
        try:
            yield format_sse(initial, event='status')
            while True:
                try:
                    data = events.get(timeout=STREAM_PING_INTERVAL)
                except queue.Empty:
                    yield format_sse({}, event='ping')
                    continue
                yield format_sse(data, event='status')
        finally:
            if runtime.is_running:
                try:
                    runtime.call(lambda c: remove())
                except Exception as e:
                    logger.warning(f"Could not remove stream listener: {e}")

    return Response(
        event_generator(),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'Connection': 'keep-alive',
            'X-Accel-Buffering': 'no',
        }
    )
