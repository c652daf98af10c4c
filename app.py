"""
ProxWatch - BLE tag proximity monitor.

Flask application exposing the proximity controller and MQTT bridge.
"""

from __future__ import annotations

import atexit

from flask import Flask, jsonify

import config
from routes.mqtt import mqtt_bp
from routes.proximity import proximity_bp
from utils.logging import get_logger
from utils.mqtt import get_mqtt_manager
from utils.proximity import reset_proximity_runtime

logger = get_logger('proxwatch')


def create_app() -> Flask:
    """Create the Flask application with all blueprints registered."""
    app = Flask(__name__)
    app.config['DEBUG'] = config.DEBUG
    app.register_blueprint(proximity_bp)
    app.register_blueprint(mqtt_bp)

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'version': config.VERSION})

    return app


def main() -> None:
    app = create_app()

    if config.MQTT_ENABLED:
        get_mqtt_manager().connect()

    atexit.register(reset_proximity_runtime)

    logger.info(f"ProxWatch {config.VERSION} listening on {config.HOST}:{config.PORT}")
    app.run(host=config.HOST, port=config.PORT, debug=config.DEBUG, threaded=True, use_reloader=False)


if __name__ == '__main__':
    main()
