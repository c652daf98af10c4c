"""
MQTT Client Manager for ProxWatch.

Provides a singleton MQTT client that mirrors proximity events (mode changes,
range edges, alert commands) to an MQTT broker. Supports automatic
reconnection and thread-safe publishing. Defaults come from config and can be
changed at runtime through save_config().
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from datetime import datetime, timezone
from typing import Any, Optional

try:
    import paho.mqtt.client as mqtt
    MQTT_AVAILABLE = True
except ImportError:
    MQTT_AVAILABLE = False
    mqtt = None

import config

logger = logging.getLogger('proxwatch.mqtt')

DEFAULT_KEEPALIVE = 60

# Reconnection settings
RECONNECT_MIN_DELAY = 1
RECONNECT_MAX_DELAY = 60
RECONNECT_MULTIPLIER = 2

# Event types published under <prefix>/<event>
EVENT_TYPES = ('mode', 'range', 'alert')


def _default_config() -> dict:
    return {
        'enabled': config.MQTT_ENABLED,
        'broker_host': config.MQTT_BROKER_HOST,
        'broker_port': config.MQTT_BROKER_PORT,
        'username': config.MQTT_USERNAME,
        'password': config.MQTT_PASSWORD,
        'use_tls': config.MQTT_USE_TLS,
        'client_id': config.MQTT_CLIENT_ID,
        'topic_prefix': config.MQTT_TOPIC_PREFIX,
        'qos': config.MQTT_QOS,
        'topics': {event: True for event in EVENT_TYPES},
    }


class MQTTManager:
    """
    Singleton MQTT client manager.

    Handles connection, reconnection, and thread-safe publishing to the broker.
    """

    _instance: Optional['MQTTManager'] = None
    _lock = threading.Lock()

    def __new__(cls) -> 'MQTTManager':
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._initialized = True
        self._config = _default_config()
        self._client: Optional[Any] = None
        self._connected = False
        self._connecting = False
        self._publish_queue: queue.Queue = queue.Queue(maxsize=1000)
        self._publish_thread: Optional[threading.Thread] = None
        self._reconnect_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._reconnect_delay = RECONNECT_MIN_DELAY
        self._last_error: Optional[str] = None
        self._stats = {
            'messages_published': 0,
            'messages_failed': 0,
            'reconnect_attempts': 0,
            'last_publish_time': None
        }

        logger.info("MQTTManager initialized")

    @property
    def is_available(self) -> bool:
        """Check if paho-mqtt library is available."""
        return MQTT_AVAILABLE

    @property
    def is_enabled(self) -> bool:
        return bool(self._config['enabled'])

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to broker."""
        return self._connected and self._client is not None

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def stats(self) -> dict:
        """Get publishing statistics."""
        return self._stats.copy()

    def get_config(self) -> dict:
        """Get current MQTT configuration (password masked)."""
        current = dict(self._config)
        current['password'] = '***' if self._config['password'] else ''
        current['topics'] = dict(self._config['topics'])
        return current

    def save_config(self, changes: dict) -> bool:
        """
        Apply configuration changes for this process.

        Returns:
            True if the changes were applied.
        """
        try:
            for key in ('enabled', 'use_tls'):
                if key in changes:
                    self._config[key] = bool(changes[key])
            for key in ('broker_host', 'username', 'client_id', 'topic_prefix'):
                if key in changes:
                    self._config[key] = str(changes[key])
            for key in ('broker_port', 'qos'):
                if key in changes:
                    self._config[key] = int(changes[key])
            if 'password' in changes and changes['password'] != '***':
                self._config['password'] = changes['password']
            if 'topics' in changes:
                for event, enabled in changes['topics'].items():
                    if event in EVENT_TYPES:
                        self._config['topics'][event] = bool(enabled)

            logger.info("MQTT configuration updated")
            return True
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"Invalid MQTT config: {e}")
            self._last_error = str(e)
            return False

    def _create_client(self, client_id: str) -> Any:
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv311,
        )
        if self._config['username']:
            client.username_pw_set(self._config['username'], self._config['password'])
        if self._config['use_tls']:
            client.tls_set()
        return client

    def connect(self) -> bool:
        """
        Connect to the MQTT broker.

        Returns True if connection was initiated successfully.
        """
        if not MQTT_AVAILABLE:
            self._last_error = "paho-mqtt library not installed"
            logger.error(self._last_error)
            return False

        if self._connected or self._connecting:
            return True

        self._connecting = True
        self._stop_event.clear()

        try:
            client_id = f"{self._config['client_id']}_{int(time.time())}"
            self._client = self._create_client(client_id)
            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect
            self._client.on_publish = self._on_publish

            host, port = self._config['broker_host'], self._config['broker_port']
            logger.info(f"Connecting to MQTT broker at {host}:{port}")
            self._client.connect_async(host, port, keepalive=DEFAULT_KEEPALIVE)
            self._client.loop_start()

            self._start_publish_thread()
            return True

        except Exception as e:
            self._connecting = False
            self._last_error = str(e)
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    def disconnect(self) -> bool:
        """
        Disconnect from the MQTT broker.

        Returns True if disconnection was successful.
        """
        self._stop_event.set()

        if self._client:
            try:
                self._client.loop_stop()
                self._client.disconnect()
            except Exception as e:
                logger.warning(f"Error during disconnect: {e}")
            finally:
                self._client = None

        self._connected = False
        self._connecting = False

        if self._publish_thread and self._publish_thread.is_alive():
            self._publish_thread.join(timeout=2)

        logger.info("Disconnected from MQTT broker")
        return True

    def publish(self, event_type: str, data: dict) -> bool:
        """
        Queue a proximity event for publishing.

        Args:
            event_type: Event type (mode, range, alert)
            data: Event payload

        Returns True if message was queued for publishing.
        """
        if not self.is_enabled:
            return False

        if not self._connected:
            if not self._connecting:
                self.connect()
            return False

        if not self._config['topics'].get(event_type, True):
            return False

        payload = dict(data)
        payload.setdefault('@timestamp', datetime.now(timezone.utc).isoformat())
        payload['event'] = event_type

        message = {
            'topic': f"{self._config['topic_prefix']}/{event_type}",
            'payload': json.dumps(payload, default=str),
            'qos': self._config['qos'],
        }

        try:
            self._publish_queue.put_nowait(message)
            return True
        except queue.Full:
            self._stats['messages_failed'] += 1
            logger.warning("MQTT publish queue full, dropping message")
            return False

    def test_connection(self) -> dict:
        """
        Test connection to MQTT broker.

        Returns dict with success status and message.
        """
        if not MQTT_AVAILABLE:
            return {'success': False, 'message': 'paho-mqtt library not installed'}

        host, port = self._config['broker_host'], self._config['broker_port']
        test_client = None

        try:
            test_client = self._create_client(f"{self._config['client_id']}_test_{int(time.time())}")
            test_client.connect(host, port, keepalive=10)
            test_client.loop_start()

            result = test_client.publish(
                f"{self._config['topic_prefix']}/test", '{"test": true}', qos=0
            )
            result.wait_for_publish(timeout=5)

            return {'success': True, 'message': f"Successfully connected to {host}:{port}"}

        except Exception as e:
            return {'success': False, 'message': str(e)}
        finally:
            if test_client:
                try:
                    test_client.loop_stop()
                    test_client.disconnect()
                except Exception as e:
                    logger.debug(f"Test client cleanup failed: {e}")

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback when connected to broker."""
        self._connecting = False
        if not reason_code.is_failure:
            self._connected = True
            self._reconnect_delay = RECONNECT_MIN_DELAY
            self._last_error = None
            logger.info("Connected to MQTT broker")
        else:
            self._connected = False
            self._last_error = f"Connection refused: {reason_code}"
            logger.error(f"MQTT connection failed: {self._last_error}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        """Callback when disconnected from broker."""
        self._connected = False

        if reason_code.is_failure:
            self._last_error = f"Unexpected disconnection ({reason_code})"
            logger.warning(f"MQTT disconnected unexpectedly: {self._last_error}")

            if self.is_enabled and not self._stop_event.is_set():
                self._start_reconnect_thread()
        else:
            logger.info("MQTT disconnected gracefully")

    def _on_publish(self, client, userdata, mid, reason_code=None, properties=None):
        self._stats['messages_published'] += 1
        self._stats['last_publish_time'] = datetime.now(timezone.utc).isoformat()

    def _start_publish_thread(self):
        if self._publish_thread and self._publish_thread.is_alive():
            return

        self._publish_thread = threading.Thread(target=self._publish_loop, daemon=True)
        self._publish_thread.start()

    def _publish_loop(self):
        """Background thread for publishing queued messages."""
        while not self._stop_event.is_set():
            try:
                message = self._publish_queue.get(timeout=1)
            except queue.Empty:
                continue

            try:
                if self._connected and self._client:
                    result = self._client.publish(
                        message['topic'],
                        message['payload'],
                        qos=message['qos']
                    )
                    if result.rc != mqtt.MQTT_ERR_SUCCESS:
                        self._stats['messages_failed'] += 1
                        logger.warning(f"MQTT publish failed: {result.rc}")
                else:
                    # Re-queue until the broker is back
                    try:
                        self._publish_queue.put_nowait(message)
                    except queue.Full:
                        self._stats['messages_failed'] += 1
                    time.sleep(0.1)
            except Exception as e:
                self._stats['messages_failed'] += 1
                logger.error(f"Error in publish loop: {e}")

    def _start_reconnect_thread(self):
        if self._reconnect_thread and self._reconnect_thread.is_alive():
            return

        self._reconnect_thread = threading.Thread(target=self._reconnect_loop, daemon=True)
        self._reconnect_thread.start()

    def _reconnect_loop(self):
        """Background thread for reconnection with exponential backoff."""
        while not self._stop_event.is_set() and self.is_enabled and not self._connected:
            self._stats['reconnect_attempts'] += 1
            logger.info(f"Attempting MQTT reconnection (delay: {self._reconnect_delay}s)")

            time.sleep(self._reconnect_delay)

            if self._stop_event.is_set():
                break

            try:
                if self._client:
                    self._client.reconnect()
                else:
                    self.connect()
            except Exception as e:
                logger.warning(f"MQTT reconnection failed: {e}")
                self._reconnect_delay = min(
                    self._reconnect_delay * RECONNECT_MULTIPLIER,
                    RECONNECT_MAX_DELAY
                )

    def shutdown(self):
        """Shutdown the MQTT manager."""
        logger.info("Shutting down MQTT manager")
        self.disconnect()

        while not self._publish_queue.empty():
            try:
                self._publish_queue.get_nowait()
            except queue.Empty:
                break


# Global instance
_mqtt_manager: Optional[MQTTManager] = None


def get_mqtt_manager() -> MQTTManager:
    """Get the global MQTT manager instance."""
    global _mqtt_manager
    if _mqtt_manager is None:
        _mqtt_manager = MQTTManager()
    return _mqtt_manager


def reset_mqtt_manager() -> None:
    """Shut down and forget the global manager."""
    global _mqtt_manager
    if _mqtt_manager is not None:
        _mqtt_manager.shutdown()
    _mqtt_manager = None
    MQTTManager._instance = None


def mqtt_publish(event_type: str, data: dict) -> bool:
    """
    Convenience function to publish a proximity event via MQTT.

    Returns True if message was queued for publishing.
    """
    return get_mqtt_manager().publish(event_type, data)
