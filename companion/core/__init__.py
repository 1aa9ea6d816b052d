"""Core infrastructure modules for Desktop Companion.

Modules:
    config: Settings file handling and derived values (webhook URL, broker)
    exceptions: Error types shared by every component
    discovery: Home Assistant MQTT discovery documents
    messaging: MQTT channel
    webhook: mobile_app webhook channel
"""

from .discovery import DiscoveryManager
from .exceptions import (
    CompanionError,
    ConfigurationError,
    MqttConnectionError,
    PublishError,
    RegistrationError,
    StaleWebhookError,
    TransientProbeError,
)
from .messaging import MqttClient
from .webhook import WebhookClient

__all__ = [
    "CompanionError",
    "ConfigurationError",
    "DiscoveryManager",
    "MqttClient",
    "MqttConnectionError",
    "PublishError",
    "RegistrationError",
    "StaleWebhookError",
    "TransientProbeError",
    "WebhookClient",
]
