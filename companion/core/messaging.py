"""MQTT channel for Desktop Companion.

This module wraps a paho-mqtt client and provides the operations the
companion needs: connecting with a last will, publishing Home Assistant
discovery documents (including pruning of stale ones), and publishing all
sensor states as a single retained JSON document.

MQTT Topics Structure:
    homeassistant/<sensor|binary_sensor>/<slug>/<unique_id>/config  - Discovery
    <slug>/sensors                                                  - States (JSON)
    <slug>/status                                                   - online/offline (LWT)
"""

# Standard library imports
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

# Third-party imports
import paho.mqtt.client as mqtt

# Local imports
from companion.collectors.models import DeviceInfo, SensorDefinition, SensorState
from companion.core.discovery import (
    DISCOVERY_PREFIX,
    PAYLOAD_OFFLINE,
    PAYLOAD_ONLINE,
    DiscoveryManager,
)
from companion.core.exceptions import MqttConnectionError, PublishError

logger = logging.getLogger(__name__)

ConnectionListener = Callable[[bool, str], None]

DEFAULT_CLEANUP_WINDOW = 1.5
DEFAULT_CONNECT_TIMEOUT = 5
DEFAULT_MIN_RECONNECT_DELAY = 1
DEFAULT_MAX_RECONNECT_DELAY = 60


def _is_failure(reason_code: Any) -> bool:
    """Interpret a paho v2 ReasonCode (or a plain int from older callers)."""
    if hasattr(reason_code, "is_failure"):
        return bool(reason_code.is_failure)
    return reason_code != 0


def _mqtt_value(value: Any) -> Any:
    """Map a sensor state to the value stored in the JSON state document."""
    if value is None:
        # Rendered by Home Assistant as a Jinja null, shown as "Unknown"
        return "None"
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


class MqttClient:
    """Connection to an MQTT broker publishing Home Assistant discovery and states.

    Attributes:
        slug: Topic-safe device name used in every topic.
        cleanup_window: Seconds to collect retained discovery documents
            before pruning stale ones.
        min_reconnect_delay: First delay of paho's reconnect backoff.
        max_reconnect_delay: Ceiling of paho's reconnect backoff.

    Example:
        >>> mqtt_client = MqttClient("gaming_pc")
        >>> mqtt_client.connect("192.168.1.10", 1883, "user", "pass")
        >>> mqtt_client.publish_all_discovery_configs(definitions, device_info, device_id)
        >>> mqtt_client.publish_sensor_states(states)
        >>> mqtt_client.disconnect()
    """

    def __init__(
        self,
        slug: str,
        client: Optional[mqtt.Client] = None,
        client_id: Optional[str] = None,
        cleanup_window: float = DEFAULT_CLEANUP_WINDOW,
        discovery_prefix: str = DISCOVERY_PREFIX,
        sleep: Callable[[float], None] = time.sleep,
        min_reconnect_delay: int = DEFAULT_MIN_RECONNECT_DELAY,
        max_reconnect_delay: int = DEFAULT_MAX_RECONNECT_DELAY,
    ):
        self.slug = slug
        self.cleanup_window = cleanup_window
        self.min_reconnect_delay = min_reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.discovery_prefix = discovery_prefix
        self.client_id = client_id or f"desktop_companion_{slug}"
        self.client = client
        self._sleep = sleep

        self._connected = False
        self._connect_event = threading.Event()
        self._last_error: Optional[str] = None
        self._refused = False
        self._listeners: List[ConnectionListener] = []
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    @property
    def state_topic(self) -> str:
        return f"{self.slug}/sensors"

    @property
    def availability_topic(self) -> str:
        return f"{self.slug}/status"

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _discovery(
        self, device_info: Optional[DeviceInfo] = None, device_id: str = ""
    ) -> DiscoveryManager:
        return DiscoveryManager(self.slug, device_id, device_info, self.discovery_prefix)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def add_connection_listener(self, listener: ConnectionListener) -> None:
        """Register ``listener(connected, message)`` for connection changes."""
        self._listeners.append(listener)

    def _notify(self, connected: bool, message: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(connected, message)
            except Exception as e:
                logger.error(f"Connection listener failed: {e}", exc_info=True)

    def _create_client(self) -> mqtt.Client:
        return mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=self.client_id)

    def connect(
        self,
        host: str,
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        """Connect to the broker and wait for the CONNACK.

        Configures the last will (``<slug>/status`` = ``offline``), starts the
        paho network loop and blocks up to ``timeout`` seconds. When the
        broker does not answer in time the network loop keeps running and
        retries with paho's backoff; listeners are told once it connects.

        Args:
            host: MQTT broker hostname or IP.
            port: MQTT broker port.
            username: Optional username.
            password: Optional password.
            timeout: Seconds to wait for the broker to accept the connection.

        Raises:
            MqttConnectionError: If the broker address is invalid, the broker
                refuses the connection, or it does not answer in time.
        """
        if self.client is None:
            self.client = self._create_client()
        client = self.client

        self._connect_event.clear()
        self._last_error = None
        self._refused = False

        if username:
            client.username_pw_set(username, password or None)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.will_set(self.availability_topic, payload=PAYLOAD_OFFLINE, qos=1, retain=True)
        client.reconnect_delay_set(
            min_delay=self.min_reconnect_delay, max_delay=self.max_reconnect_delay
        )

        logger.info(f"Connecting to MQTT broker at {host}:{port}...")
        try:
            # The socket is opened by the network loop, which also retries
            # the first connection until the broker answers.
            client.connect_async(host, int(port), keepalive=60)
        except ValueError as e:
            message = f"Invalid MQTT broker address {host}:{port}: {e}"
            logger.error(message)
            self._notify(False, message)
            raise MqttConnectionError(message) from e

        client.loop_start()

        if self._connect_event.wait(timeout) and self._connected:
            return

        if self._refused:
            # A refused CONNACK is not retried
            client.loop_stop()
            raise MqttConnectionError(self._last_error)

        message = (
            f"Timed out waiting for MQTT broker {host}:{port}, "
            f"retrying every {self.min_reconnect_delay}-{self.max_reconnect_delay}s"
        )
        logger.warning(message)
        self._notify(False, message)
        raise MqttConnectionError(message)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if _is_failure(reason_code):
            self._connected = False
            self._refused = True
            self._last_error = f"MQTT connection refused: {reason_code}"
            logger.error(self._last_error)
            self._connect_event.set()
            self._notify(False, self._last_error)
            return

        logger.info("MQTT connected successfully")
        self._connected = True
        # LWT publishes "offline" on unexpected disconnect
        client.publish(self.availability_topic, payload=PAYLOAD_ONLINE, qos=1, retain=True)
        self._connect_event.set()
        self._notify(True, "Connected")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._connected = False
        if _is_failure(reason_code):
            message = f"MQTT disconnected unexpectedly: {reason_code}"
            logger.warning(message)
            logger.info("Automatic reconnection will be attempted by MQTT client...")
        else:
            message = "Disconnected"
            logger.info("MQTT client disconnected cleanly")
        self._notify(False, message)

    def disconnect(self) -> None:
        """Publish ``offline`` and close the connection."""
        if self.client is None:
            return
        if self._connected:
            logger.info("Publishing offline status...")
            info = self.client.publish(
                self.availability_topic, payload=PAYLOAD_OFFLINE, qos=1, retain=True
            )
            try:
                info.wait_for_publish(timeout=2)
            except (RuntimeError, ValueError) as e:
                logger.debug(f"Offline status not confirmed: {e}")
        self.client.disconnect()
        self.client.loop_stop()
        self._connected = False

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _publish(self, topic: str, payload: str, qos: int = 1, retain: bool = True) -> None:
        result = self.client.publish(topic, payload=payload, qos=qos, retain=retain)
        rc = getattr(result, "rc", mqtt.MQTT_ERR_SUCCESS)
        if rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(
                f"MQTT publish to {topic} rejected: {mqtt.error_string(rc)}", channel="mqtt"
            )

    def publish_discovery_config(
        self,
        definition: SensorDefinition,
        device_info: DeviceInfo,
        device_id: str,
    ) -> None:
        """Publish the retained discovery document for one sensor."""
        if not self._connected:
            logger.warning("Cannot publish discovery: not connected")
            return
        discovery = self._discovery(device_info, device_id)
        topic = discovery.config_topic(definition)
        try:
            self._publish(topic, json.dumps(discovery.build_config(definition)))
        except PublishError as e:
            logger.error(f"Discovery publish failed for {definition.unique_id}: {e}")
            return
        logger.debug(f"Published discovery config to {topic}")

    def publish_all_discovery_configs(
        self,
        definitions: List[SensorDefinition],
        device_info: DeviceInfo,
        device_id: str,
    ) -> int:
        """Replace this device's discovery documents with the current set.

        Subscribes to every discovery topic of the device, collects retained
        documents for ``cleanup_window`` seconds, clears the ones whose unique
        id is no longer defined, then publishes the current documents. The
        window is best effort: documents arriving later are not pruned.

        Returns:
            Number of stale documents removed.
        """
        if not self._connected:
            logger.warning("Cannot publish discovery: not connected")
            return 0

        client = self.client
        discovery = self._discovery(device_info, device_id)
        current_ids = {d.unique_id for d in definitions}
        stale_topics: List[str] = []

        def on_retained(client, userdata, msg):
            if not msg.payload:
                return
            unique_id = discovery.unique_id_from_topic(msg.topic)
            with self._lock:
                if unique_id and unique_id not in current_ids and msg.topic not in stale_topics:
                    stale_topics.append(msg.topic)

        logger.info("Cleaning old discovery configs...")
        pattern = discovery.subscription_filter
        client.message_callback_add(pattern, on_retained)
        client.subscribe(pattern, qos=1)
        try:
            self._sleep(self.cleanup_window)
        finally:
            client.message_callback_remove(pattern)
            client.unsubscribe(pattern)

        with self._lock:
            to_remove = list(stale_topics)
        for topic in to_remove:
            client.publish(topic, payload="", qos=1, retain=True)
            logger.info(f"Removed stale discovery: {topic}")

        logger.info(f"Publishing {len(definitions)} MQTT discovery configs...")
        for definition in definitions:
            self.publish_discovery_config(definition, device_info, device_id)
        return len(to_remove)

    def publish_sensor_states(self, states: List[SensorState]) -> None:
        """Publish every state as one retained JSON object keyed by unique id.

        Raises:
            PublishError: If not connected or the publish is rejected.
        """
        if not self._connected or self.client is None:
            raise PublishError("MQTT not connected", channel="mqtt")

        payload: Dict[str, Any] = {s.unique_id: _mqtt_value(s.state) for s in states}
        data = json.dumps(payload)
        logger.debug(f"Publishing to {self.state_topic} ({len(data)} bytes, {len(payload)} sensors)")
        self._publish(self.state_topic, data)

    def remove_all_discovery_configs(self, definitions: List[SensorDefinition]) -> None:
        """Clear the discovery document of every given sensor."""
        if not self._connected:
            logger.warning("Cannot remove discovery: not connected")
            return
        discovery = self._discovery()
        for definition in definitions:
            self.client.publish(discovery.config_topic(definition), payload="", qos=1, retain=True)
        logger.info(f"Removed {len(definitions)} discovery configs")

    # ------------------------------------------------------------------
    # Broker check
    # ------------------------------------------------------------------

    def test_broker(
        self,
        host: str,
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 5,
    ) -> Dict[str, Any]:
        """Try a throwaway connection to a broker without touching this client.

        Returns:
            ``{"reachable": True}`` or ``{"reachable": False, "error": "..."}``.
        """
        probe_client = self._create_client()
        done = threading.Event()
        result: Dict[str, Any] = {"reachable": False, "error": f"Timeout ({timeout}s)"}

        def on_connect(client, userdata, flags, reason_code, properties=None):
            if _is_failure(reason_code):
                result.update(reachable=False, error=str(reason_code))
            else:
                result.clear()
                result["reachable"] = True
            done.set()

        probe_client.on_connect = on_connect
        if username:
            probe_client.username_pw_set(username, password or None)

        try:
            probe_client.connect(host, int(port), keepalive=10)
        except (OSError, ValueError) as e:
            return {"reachable": False, "error": str(e)}

        probe_client.loop_start()
        try:
            done.wait(timeout)
        finally:
            probe_client.disconnect()
            probe_client.loop_stop()
        return result
