"""MQTT mirror for live monitor state.

Publishes heart rate readings, connection status and stress analyses to an
MQTT broker so home automation systems (Home Assistant, OpenHAB, etc.) can
follow the monitor.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Any

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion
from paho.mqtt.properties import Properties
from paho.mqtt.reasoncodes import ReasonCode

from src.models import ClassificationResult, ConnectionState, HistoryPoint
from src.monitor import ANALYSIS, CONNECTION, HISTORY, StateUpdate

logger = logging.getLogger(__name__)

# Default MQTT settings
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 1883
DEFAULT_BASE_TOPIC = "neurocalm"


class MQTTPublisher:
    """Publish monitor state to an MQTT broker.

    Topics (relative to ``base_topic``):
    - ``heart_rate`` - every parsed reading
    - ``analysis`` - latest stress analysis (retained)
    - ``status`` - bridge/connection status (retained)
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        username: str | None = None,
        password: str | None = None,
        base_topic: str = DEFAULT_BASE_TOPIC,
        client_id: str | None = None,
    ):
        """Initialize MQTT publisher.

        Args:
            host: MQTT broker hostname/IP
            port: MQTT broker port
            username: Optional authentication username
            password: Optional authentication password
            base_topic: Base topic for all messages
            client_id: Optional client ID (auto-generated if not provided)
        """
        self.host = host
        self.port = port
        self.base_topic = base_topic.rstrip("/")
        self._username = username
        self._password = password

        client_id = client_id or f"neurocalm-monitor-{datetime.now().timestamp():.0f}"
        self._client = mqtt.Client(
            callback_api_version=CallbackAPIVersion.VERSION2,
            client_id=client_id,
        )

        if username and password:
            self._client.username_pw_set(username, password)

        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect

        self._connected = False
        self._last_error: str | None = None

    def _on_connect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _flags: mqtt.ConnectFlags,
        reason_code: ReasonCode,
        _properties: Properties | None = None,
    ) -> None:
        """Callback when connected to broker."""
        if reason_code == mqtt.CONNACK_ACCEPTED or reason_code.is_failure is False:
            self._connected = True
            self._last_error = None
            logger.info(f"Connected to MQTT broker {self.host}:{self.port}")
        else:
            self._connected = False
            self._last_error = str(reason_code)
            logger.error(f"MQTT connection failed: {reason_code}")

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _disconnect_flags: mqtt.DisconnectFlags,
        reason_code: ReasonCode,
        _properties: Properties | None = None,
    ) -> None:
        """Callback when disconnected from broker."""
        self._connected = False
        if reason_code != mqtt.MQTT_ERR_SUCCESS:
            logger.warning(f"MQTT disconnected unexpectedly: {reason_code}")
        else:
            logger.info("Disconnected from MQTT broker")

    def connect(self, timeout: float = 10.0) -> bool:
        """Connect to MQTT broker.

        Args:
            timeout: Connection timeout in seconds

        Returns:
            True if connection successful
        """
        try:
            self._client.connect(self.host, self.port, keepalive=60)
            self._client.loop_start()

            start = time.time()
            while not self._connected and (time.time() - start) < timeout:
                time.sleep(0.1)

            if not self._connected:
                logger.error(
                    f"MQTT connection timeout after {timeout}s. Last error: {self._last_error}"
                )
                return False

            return True

        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            self._last_error = str(e)
            return False

    def disconnect(self) -> None:
        """Disconnect from MQTT broker."""
        try:
            self._client.loop_stop()
            self._client.disconnect()
        except Exception as e:
            logger.warning(f"Error during MQTT disconnect: {e}")
        finally:
            self._connected = False

    @property
    def is_connected(self) -> bool:
        """Check if connected to broker."""
        return self._connected

    def _topic(self, name: str) -> str:
        return f"{self.base_topic}/{name}"

    def _publish(self, name: str, payload: dict, retain: bool = False, qos: int = 1) -> bool:
        if not self._connected:
            logger.debug(f"MQTT not connected, dropping {name} message")
            return False

        topic = self._topic(name)
        try:
            result = self._client.publish(topic, json.dumps(payload), qos=qos, retain=retain)
            if result.rc == mqtt.MQTT_ERR_SUCCESS:
                logger.debug(f"Published to {topic}: {payload}")
                return True
            logger.error(f"Failed to publish to {topic}: {mqtt.error_string(result.rc)}")
            return False
        except Exception as e:
            logger.error(f"MQTT publish error: {e}")
            return False

    def publish_point(self, point: HistoryPoint) -> bool:
        """Publish one heart rate reading.

        Args:
            point: History point created for the reading

        Returns:
            True if publish successful
        """
        payload = {
            "heart_rate": point.heart_rate,
            "spo2": point.spo2,
            "time": point.time,
            "published_at": datetime.now().isoformat(),
        }
        return self._publish("heart_rate", payload)

    def publish_analysis(self, result: ClassificationResult) -> bool:
        """Publish a stress analysis (retained)."""
        payload = result.to_dict()
        payload["published_at"] = datetime.now().isoformat()
        return self._publish("analysis", payload, retain=True)

    def publish_status(self, status: str, message: str | None = None) -> bool:
        """Publish bridge status message (retained).

        Args:
            status: Status string (e.g., "online", "offline", "connected")
            message: Optional status message

        Returns:
            True if publish successful
        """
        payload = {
            "status": status,
            "message": message,
            "timestamp": datetime.now().isoformat(),
        }
        return self._publish("status", payload, retain=True)

    def handle_update(self, update: StateUpdate) -> None:
        """Monitor subscriber: mirror relevant state updates."""
        if update.kind == HISTORY:
            self.publish_point(update.value)
        elif update.kind == ANALYSIS:
            self.publish_analysis(update.value)
        elif update.kind == CONNECTION and update.value in (
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
        ):
            self.publish_status(update.value.value)

