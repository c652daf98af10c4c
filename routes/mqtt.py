"""
MQTT configuration and status routes.

Provides REST API for MQTT configuration, connection management, and status.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request, Response

from utils.mqtt import EVENT_TYPES, get_mqtt_manager, MQTT_AVAILABLE

logger = logging.getLogger('proxwatch.mqtt')

mqtt_bp = Blueprint('mqtt', __name__, url_prefix='/mqtt')


@mqtt_bp.route('/status')
def mqtt_status() -> Response:
    """Get MQTT connection status and statistics."""
    manager = get_mqtt_manager()

    return jsonify({
        'available': MQTT_AVAILABLE,
        'enabled': manager.is_enabled,
        'connected': manager.is_connected,
        'last_error': manager.last_error,
        'stats': manager.stats,
        'config': manager.get_config()
    })


@mqtt_bp.route('/config', methods=['GET'])
def get_config() -> Response:
    """Get current MQTT configuration."""
    return jsonify(get_mqtt_manager().get_config())


@mqtt_bp.route('/config', methods=['POST'])
def save_config() -> Response:
    """Update MQTT configuration and connect or disconnect to match."""
    manager = get_mqtt_manager()

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'status': 'error', 'message': 'No configuration provided'}), 400

    if not manager.save_config(data):
        return jsonify({
            'status': 'error',
            'message': manager.last_error or 'Invalid configuration'
        }), 400

    if manager.is_enabled and not manager.is_connected:
        manager.connect()
    elif not manager.is_enabled and manager.is_connected:
        manager.disconnect()

    return jsonify({
        'status': 'success',
        'message': 'Configuration saved',
        'connected': manager.is_connected
    })


@mqtt_bp.route('/connect', methods=['POST'])
def connect() -> Response:
    """Manually connect to MQTT broker."""
    if not MQTT_AVAILABLE:
        return jsonify({
            'status': 'error',
            'message': 'paho-mqtt library not installed'
        }), 503

    manager = get_mqtt_manager()

    if manager.is_connected:
        return jsonify({'status': 'success', 'message': 'Already connected'})

    if manager.connect():
        return jsonify({'status': 'success', 'message': 'Connection initiated'})

    return jsonify({
        'status': 'error',
        'message': manager.last_error or 'Connection failed'
    }), 500


@mqtt_bp.route('/disconnect', methods=['POST'])
def disconnect() -> Response:
    """Manually disconnect from MQTT broker."""
    manager = get_mqtt_manager()

    if not manager.is_connected:
        return jsonify({'status': 'success', 'message': 'Already disconnected'})

    manager.disconnect()
    return jsonify({'status': 'success', 'message': 'Disconnected'})


@mqtt_bp.route('/test', methods=['POST'])
def test_connection() -> Response:
    """Test MQTT broker connection with current configuration."""
    if not MQTT_AVAILABLE:
        return jsonify({
            'success': False,
            'message': 'paho-mqtt library not installed. Install with: pip install paho-mqtt'
        })

    return jsonify(get_mqtt_manager().test_connection())


@mqtt_bp.route('/topics')
def get_topics() -> Response:
    """Get list of MQTT topics and their enabled status."""
    config = get_mqtt_manager().get_config()
    prefix = config['topic_prefix']

    return jsonify({
        'prefix': prefix,
        'topics': [
            {'event': event, 'topic': f"{prefix}/{event}", 'enabled': enabled}
            for event, enabled in config['topics'].items()
        ]
    })


@mqtt_bp.route('/topics/<event>', methods=['PUT'])
def toggle_topic(event: str) -> Response:
    """Enable or disable a specific event topic."""
    if event not in EVENT_TYPES:
        return jsonify({
            'status': 'error',
            'message': f'Invalid event: {event}. Valid: {", ".join(EVENT_TYPES)}'
        }), 400

    data = request.get_json(silent=True)
    if data is None or 'enabled' not in data:
        return jsonify({
            'status': 'error',
            'message': 'Missing "enabled" field'
        }), 400

    get_mqtt_manager().save_config({'topics': {event: data['enabled']}})

    return jsonify({
        'status': 'success',
        'event': event,
        'enabled': bool(data['enabled'])
    })
