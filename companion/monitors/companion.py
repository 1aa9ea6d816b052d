"""Companion agent: startup orchestration and teardown.

This module provides the CompanionAgent class which wires the probe,
registry, collection engine, both publishing channels and the sensor loop
together. Startup runs in a fixed order:

1. Resolve the device id, device identity and sensor definitions, and take
   an initial collection used as the registration state of every sensor.
2. Register the device with Home Assistant if no webhook id is stored.
3. Register every sensor through the webhook; if the hub treats the webhook
   as stale, register the device again and repeat.
4. Connect to the MQTT broker (if configured) and publish discovery. If the
   broker is not up yet, paho keeps retrying and discovery is published
   from the connection listener once it answers.
5. Start the sensor loop.
"""

# Standard library imports
import logging
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional

# Local imports
from companion.collectors.engine import CollectionEngine
from companion.collectors.models import DeviceInfo, SensorDefinition, SensorState
from companion.collectors.probe import HardwareProbe, PsutilProbe
from companion.collectors.registry import SensorRegistry
from companion.core.config import (
    AgentConfig,
    ensure_device_id,
    get_mqtt_broker,
    get_webhook_url,
    save_config,
)
from companion.core.exceptions import (
    MqttConnectionError,
    RegistrationError,
    StaleWebhookError,
)
from companion.core.messaging import MqttClient
from companion.core.webhook import Registration, RegistrationSummary, WebhookClient
from companion.monitors.sensor_loop import LoopStatus, SensorLoop

logger = logging.getLogger(__name__)


class CompanionAgent:
    """Runs the companion: registration, discovery and the publish loop.

    Attributes:
        config: Loaded settings; updated in place when registration returns
            a new webhook.
        registry: Sensor registry.
        engine: Collection engine.
        webhook: Webhook channel.
        mqtt: MQTT channel, or None when no broker is configured.
        loop: Sensor loop.

    Example:
        >>> agent = CompanionAgent(load_config())
        >>> agent.start()
        >>> ...
        >>> agent.stop()
    """

    def __init__(
        self,
        config: AgentConfig,
        probe: Optional[HardwareProbe] = None,
        webhook_client: Optional[WebhookClient] = None,
        mqtt_client: Optional[MqttClient] = None,
        config_path: Optional[Path] = None,
        timer_factory: Callable[..., Any] = threading.Timer,
    ):
        self.config = config
        self.config_path = config_path
        self.probe = probe or PsutilProbe()
        self.registry = SensorRegistry(self.probe)
        self.engine = CollectionEngine(self.probe, self.registry)
        self.webhook = webhook_client or WebhookClient()

        if mqtt_client is None and get_mqtt_broker(config) is not None:
            mqtt_client = MqttClient(
                config.slug,
                min_reconnect_delay=config.mqtt_min_reconnect_delay,
                max_reconnect_delay=config.mqtt_max_reconnect_delay,
            )
        self.mqtt = mqtt_client

        self.loop = SensorLoop(
            self.engine,
            self.webhook,
            self.mqtt,
            self.webhook_url,
            interval=config.interval,
            timer_factory=timer_factory,
        )
        self.loop.add_status_listener(self._on_loop_status)
        if self.mqtt is not None:
            self.mqtt.add_connection_listener(self._on_mqtt_connection)

        self.device_id: Optional[str] = None
        self.device_info: Optional[DeviceInfo] = None
        self.definitions: List[SensorDefinition] = []
        self._discovery_lock = threading.Lock()
        self._discovery_pending = False

    def webhook_url(self) -> Optional[str]:
        return get_webhook_url(self.config)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def _on_loop_status(self, status: LoopStatus, message: str) -> None:
        if status == LoopStatus.ERROR:
            logger.warning(f"Sensor loop error: {message}")
        else:
            logger.info(f"Sensor loop {status.value}: {message}")

    def _on_mqtt_connection(self, connected: bool, message: str) -> None:
        logger.debug(f"MQTT connection changed (connected={connected}): {message}")
        if not connected:
            return
        with self._discovery_lock:
            pending = self._discovery_pending
            self._discovery_pending = False
        if pending:
            logger.info("MQTT broker is up, publishing discovery...")
            # Pruning blocks for the cleanup window and must not run on paho's thread
            threading.Thread(
                target=self._publish_discovery, name="mqtt-discovery", daemon=True
            ).start()

    # ------------------------------------------------------------------
    # Startup steps
    # ------------------------------------------------------------------

    def prepare(self) -> List[SensorState]:
        """Resolve identity and definitions; return the initial states."""
        self.device_id = ensure_device_id(self.config, self.config_path)
        self.device_info = self.registry.get_device_info()
        self.definitions = self.registry.get_definitions()
        logger.info(
            f"Device {self.device_info.device_name} ({self.device_id}): "
            f"{self.device_info.manufacturer} {self.device_info.model}"
        )
        return self.engine.collect()

    def _apply_registration(self, registration: Registration) -> None:
        self.config.webhook_id = registration.webhook_id
        self.config.cloudhook_url = registration.cloudhook_url or ""
        self.config.remote_ui_url = registration.remote_ui_url or ""
        save_config(self.config, self.config_path)

    def register_device(self) -> bool:
        """Register with the hub and store the new webhook; False on failure."""
        try:
            registration = self.webhook.register_device(
                self.config.hass_url, self.config.hass_token, self.device_info, self.device_id
            )
        except RegistrationError as e:
            logger.error(f"Device registration failed: {e}")
            return False
        self._apply_registration(registration)
        logger.info(f"Device registered, webhook_id: {registration.webhook_id}")
        return True

    def _register_sensors(self, initial_states: List[SensorState]) -> RegistrationSummary:
        summary = self.webhook.register_all_sensors(
            self.webhook_url(), self.definitions, initial_states
        )
        if summary.is_stale:
            raise StaleWebhookError(
                f"Webhook answered {summary.stale_count} registrations without success"
            )
        return summary

    def register_with_hub(self, initial_states: List[SensorState]) -> None:
        """Make sure the device and every sensor are known to the hub."""
        config = self.config
        if not config.webhook_id and config.hass_url and config.hass_token:
            logger.info("No webhook_id found, registering device with HA...")
            self.register_device()

        if not self.webhook_url():
            logger.warning("No webhook URL available, sensors will only update via MQTT")
            return

        try:
            summary = self._register_sensors(initial_states)
            logger.info(f"Sensors registered via webhook: {summary.registered} OK")
        except StaleWebhookError as e:
            logger.warning(f"{e}, re-registering device...")
            if not (config.hass_url and config.hass_token):
                logger.error("Cannot re-register: hub URL or token missing")
                return
            if self.register_device():
                try:
                    self._register_sensors(initial_states)
                except StaleWebhookError as retry_error:
                    logger.error(f"Webhook still stale after re-registration: {retry_error}")

    def _connect_broker(self) -> bool:
        broker = get_mqtt_broker(self.config)
        if self.mqtt is None or broker is None:
            logger.info("MQTT not configured")
            return False

        host, port = broker
        try:
            self.mqtt.connect(
                host,
                port,
                self.config.mqtt_username or None,
                self.config.mqtt_password or None,
                timeout=self.config.mqtt_connection_timeout,
            )
        except MqttConnectionError as e:
            logger.warning(f"MQTT connection failed: {e}")
            return False
        return True

    def _publish_discovery(self) -> None:
        self.mqtt.publish_all_discovery_configs(self.definitions, self.device_info, self.device_id)
        logger.info(f"Published {len(self.definitions)} MQTT discovery configs")

    def connect_mqtt(self) -> bool:
        """Connect to the broker and publish discovery.

        Returns:
            True if discovery was published now. False if MQTT is not
            configured or the broker did not answer; in the latter case
            discovery follows as soon as the background reconnect succeeds.
        """
        if not self._connect_broker():
            if self.mqtt is None or get_mqtt_broker(self.config) is None:
                return False
            with self._discovery_lock:
                if not self.mqtt.is_connected:
                    self._discovery_pending = True
                    return False

        self._publish_discovery()
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Run the full startup sequence and start the sensor loop."""
        logger.info("Starting Desktop Companion...")
        initial_states = self.prepare()
        self.register_with_hub(initial_states)
        self.connect_mqtt()
        self.loop.start(self.config.interval)

    def run_once(self) -> bool:
        """Register, publish one cycle on every channel and disconnect."""
        initial_states = self.prepare()
        self.register_with_hub(initial_states)
        self.connect_mqtt()
        try:
            return bool(self.loop.tick())
        finally:
            self.shutdown_mqtt()

    def remove_discovery(self) -> bool:
        """Clear every retained discovery document of this device."""
        self.definitions = self.registry.get_definitions()
        if not self._connect_broker():
            self.shutdown_mqtt()
            return False

        try:
            self.mqtt.remove_all_discovery_configs(self.definitions)
        finally:
            self.shutdown_mqtt()
        return True

    def shutdown_mqtt(self) -> None:
        with self._discovery_lock:
            self._discovery_pending = False
        if self.mqtt is not None and self.mqtt.client is not None:
            self.mqtt.disconnect()

    def stop(self) -> None:
        """Stop the loop and publish ``offline`` before disconnecting."""
        self.loop.stop()
        self.shutdown_mqtt()
        logger.info("Desktop Companion stopped")
