"""Exception types used across Desktop Companion.

Every failure that can happen while collecting or publishing is represented
here. None of them is allowed to escape a tick of the sensor loop: they are
caught where they originate and turned into log records and status
notifications.
"""

from typing import Optional


class CompanionError(Exception):
    """Base class for all Desktop Companion errors."""


class TransientProbeError(CompanionError):
    """A single expensive probe refresh failed.

    The collection engine keeps serving the previously cached data for the
    affected keys and retries them on the next tick.
    """

    def __init__(self, message: str, keys: Optional[list] = None):
        super().__init__(message)
        self.keys = list(keys or [])


class RegistrationError(CompanionError):
    """Device registration with the hub failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StaleWebhookError(CompanionError):
    """The hub accepted the request but no longer honours the webhook."""


class PublishError(CompanionError):
    """Sending sensor data over one channel failed."""

    def __init__(
        self,
        message: str,
        channel: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.channel = channel
        self.status_code = status_code


class MqttConnectionError(CompanionError, ConnectionError):
    """The MQTT broker is unreachable or refused the connection."""


class ConfigurationError(CompanionError):
    """Required settings (hub URL, broker, webhook) are missing or invalid.

    Retrying does not help until the user reconfigures, so the sensor loop
    reports this without escalating its backoff.
    """
