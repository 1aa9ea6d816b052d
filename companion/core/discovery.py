"""Home Assistant MQTT discovery documents for Desktop Companion.

This module builds the discovery topics and configuration payloads that make
Home Assistant create one entity per sensor definition. All entities share a
single JSON state topic and an availability topic backed by the MQTT last
will.
"""

# Standard library imports
import logging
from typing import Any, Dict, Optional

# Local imports
from companion.collectors.models import DeviceInfo, SensorDefinition

logger = logging.getLogger(__name__)

DISCOVERY_PREFIX = "homeassistant"
PAYLOAD_ONLINE = "online"
PAYLOAD_OFFLINE = "offline"


class DiscoveryManager:
    """Builds discovery topics and payloads for one device.

    Attributes:
        slug: Topic-safe device name; prefixes the state and status topics.
        device_id: Stable device identifier used in the device block.
        device_info: Device identity shown in Home Assistant.
        discovery_prefix: Home Assistant discovery prefix.

    Example:
        >>> discovery = DiscoveryManager("gaming_pc", "desktop-companion-1a2b3c4d", info)
        >>> discovery.config_topic(cpu_usage_definition)
        'homeassistant/sensor/gaming_pc/pc_cpu_usage/config'
        >>> discovery.state_topic
        'gaming_pc/sensors'
    """

    def __init__(
        self,
        slug: str,
        device_id: str,
        device_info: Optional[DeviceInfo] = None,
        discovery_prefix: str = DISCOVERY_PREFIX,
    ):
        self.slug = slug
        self.device_id = device_id
        self.device_info = device_info
        self.discovery_prefix = discovery_prefix
        logger.debug(f"DiscoveryManager initialized for device '{slug}'")

    @property
    def state_topic(self) -> str:
        return f"{self.slug}/sensors"

    @property
    def availability_topic(self) -> str:
        return f"{self.slug}/status"

    @property
    def subscription_filter(self) -> str:
        """Wildcard matching every discovery config published for this device."""
        return f"{self.discovery_prefix}/+/{self.slug}/+/config"

    def config_topic(self, definition: SensorDefinition) -> str:
        return (
            f"{self.discovery_prefix}/{definition.kind.value}/"
            f"{self.slug}/{definition.unique_id}/config"
        )

    def unique_id_from_topic(self, topic: str) -> Optional[str]:
        """Extract the unique id from a discovery config topic.

        Example:
            >>> discovery.unique_id_from_topic("homeassistant/sensor/pc/pc_uptime/config")
            'pc_uptime'
        """
        parts = topic.split("/")
        if len(parts) != 5 or parts[0] != self.discovery_prefix or parts[4] != "config":
            return None
        return parts[3]

    def device_block(self) -> Dict[str, Any]:
        info = self.device_info
        block: Dict[str, Any] = {"identifiers": [self.device_id]}
        if info is not None:
            block.update(
                {
                    "name": info.device_name,
                    "manufacturer": info.manufacturer,
                    "model": info.model,
                    "sw_version": info.os_version,
                }
            )
        return block

    def build_config(self, definition: SensorDefinition) -> Dict[str, Any]:
        """Build the discovery payload for one sensor definition.

        Args:
            definition: Sensor to describe.

        Returns:
            Discovery configuration dictionary (serialized to JSON by the
            caller).

        Example:
            >>> discovery.build_config(battery_charging_definition)["payload_on"]
            'true'
        """
        uid = definition.unique_id
        config: Dict[str, Any] = {
            "name": definition.name,
            "unique_id": uid,
            "object_id": uid,
            "state_topic": self.state_topic,
            "value_template": f"{{{{ value_json.{uid} }}}}",
            "availability": {
                "topic": self.availability_topic,
                "payload_available": PAYLOAD_ONLINE,
                "payload_not_available": PAYLOAD_OFFLINE,
            },
            "device": self.device_block(),
        }

        if definition.device_class:
            config["device_class"] = definition.device_class
        if definition.unit_of_measurement:
            config["unit_of_measurement"] = definition.unit_of_measurement
        if definition.state_class:
            config["state_class"] = definition.state_class
        if definition.icon:
            config["icon"] = definition.icon

        if definition.is_binary:
            # Booleans are serialized lowercase in the state document
            config["payload_on"] = "true"
            config["payload_off"] = "false"

        return config
