"""Home Assistant ``mobile_app`` webhook channel.

The webhook is the primary way sensor data reaches the hub. A device is
registered once with a long-lived access token; the hub answers with a
webhook id (and optionally cloudhook / remote UI URLs). Sensors are then
registered and updated by POSTing JSON envelopes to the webhook URL:

    {"type": "register_sensor", "data": {...}}
    {"type": "update_sensor_states", "data": [...]}
"""

# Standard library imports
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

# Third-party imports
import requests

# Local imports
from companion.collectors.models import (
    UNKNOWN,
    DeviceInfo,
    SensorDefinition,
    SensorState,
    StateValue,
)
from companion.core.config import APP_ID, APP_NAME, VERSION, normalize_url
from companion.core.exceptions import PublishError, RegistrationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5

StaleCheck = Callable[[requests.Response, Optional[Dict[str, Any]]], bool]


class SensorRegistrationResult(Enum):
    OK = "ok"
    STALE = "stale"
    FAILED = "failed"


@dataclass
class Registration:
    """Answer of a successful device registration."""

    webhook_id: str
    cloudhook_url: Optional[str] = None
    remote_ui_url: Optional[str] = None
    secret: Optional[str] = None


@dataclass
class RegistrationSummary:
    registered: int = 0
    failed: int = 0
    stale_count: int = 0

    @property
    def is_stale(self) -> bool:
        """Every answer looked stale and nothing registered."""
        return self.stale_count > 0 and self.registered == 0


def default_stale_check(response: requests.Response, body: Optional[Dict[str, Any]]) -> bool:
    """Heuristic for a webhook the hub no longer knows.

    Home Assistant answers 200 with an empty body to a deleted webhook, so an
    OK status without ``success`` in the body is treated as stale.
    """
    return response.status_code == 200 and (not body or not body.get("success"))


def _json_body(response: requests.Response) -> Optional[Dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


class WebhookClient:
    """HTTP client for device registration and sensor updates.

    Args:
        timeout: Per-request timeout in seconds.
        stale_check: Predicate deciding whether a ``register_sensor`` answer
            means the webhook is stale (default: :func:`default_stale_check`).

    Example:
        >>> webhook = WebhookClient()
        >>> reg = webhook.register_device(url, token, device_info, device_id)
        >>> webhook.register_all_sensors(webhook_url, definitions, states)
        >>> webhook.update_sensor_states(webhook_url, states)
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, stale_check: Optional[StaleCheck] = None):
        self.timeout = timeout
        self.stale_check = stale_check or default_stale_check

    def register_device(
        self,
        hub_url: str,
        token: str,
        device_info: DeviceInfo,
        device_id: str,
    ) -> Registration:
        """Register this host as a ``mobile_app`` device.

        Args:
            hub_url: Home Assistant base URL.
            token: Long-lived access token.
            device_info: Identity reported to the hub.
            device_id: Stable device identifier.

        Returns:
            Registration with the webhook id and optional URLs.

        Raises:
            RegistrationError: On transport failure, non-2xx status, or an
                answer without a webhook id.
        """
        url = f"{normalize_url(hub_url)}/api/mobile_app/registrations"
        payload = {
            "device_id": device_id,
            "app_id": APP_ID,
            "app_name": APP_NAME,
            "app_version": VERSION,
            **device_info.to_dict(),
            "supports_encryption": False,
            "app_data": {},
        }

        logger.info(f"Registering device at {url}...")
        try:
            response = requests.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RegistrationError(f"Device registration failed: {e}") from e

        if not response.ok:
            raise RegistrationError(
                f"Device registration failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
            )

        body = _json_body(response) or {}
        if not body.get("webhook_id"):
            raise RegistrationError(
                "Device registration returned no webhook_id",
                status_code=response.status_code,
            )

        logger.info(f"Device registered. Webhook ID: {body['webhook_id']}")
        return Registration(
            webhook_id=body["webhook_id"],
            cloudhook_url=body.get("cloudhook_url"),
            remote_ui_url=body.get("remote_ui_url"),
            secret=body.get("secret"),
        )

    def register_sensor(
        self,
        webhook_url: str,
        definition: SensorDefinition,
        initial_state: StateValue = None,
    ) -> SensorRegistrationResult:
        """Register one sensor; never raises."""
        data = definition.to_registration_payload()
        data["state"] = initial_state if initial_state is not None else UNKNOWN

        try:
            response = requests.post(
                webhook_url,
                json={"type": "register_sensor", "data": data},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Sensor reg error {definition.unique_id}: {e}")
            return SensorRegistrationResult.FAILED

        if not response.ok:
            logger.warning(f"Sensor reg failed: {definition.unique_id} ({response.status_code})")
            return SensorRegistrationResult.FAILED

        if self.stale_check(response, _json_body(response)):
            logger.warning(f"Sensor {definition.unique_id}: webhook may be stale")
            return SensorRegistrationResult.STALE
        return SensorRegistrationResult.OK

    def register_all_sensors(
        self,
        webhook_url: str,
        definitions: Iterable[SensorDefinition],
        initial_states: Iterable[SensorState] = (),
    ) -> RegistrationSummary:
        """Register every sensor in sequence and tally the outcomes."""
        state_map = {s.unique_id: s.state for s in initial_states}
        summary = RegistrationSummary()

        for definition in definitions:
            result = self.register_sensor(
                webhook_url, definition, state_map.get(definition.unique_id)
            )
            if result is SensorRegistrationResult.OK:
                summary.registered += 1
            elif result is SensorRegistrationResult.STALE:
                summary.stale_count += 1
            else:
                summary.failed += 1

        logger.info(
            f"Sensor registration: {summary.registered} OK, {summary.failed} failed, "
            f"{summary.stale_count} stale"
        )
        return summary

    def update_sensor_states(self, webhook_url: str, states: List[SensorState]) -> Dict[str, Any]:
        """Send all states in one ``update_sensor_states`` call.

        Raises:
            PublishError: On transport failure or non-2xx status. No retry is
                attempted here; the sensor loop owns backoff.
        """
        payload = {"type": "update_sensor_states", "data": [s.to_payload() for s in states]}
        try:
            response = requests.post(webhook_url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise PublishError(f"Sensor update failed: {e}", channel="webhook") from e

        if not response.ok:
            raise PublishError(
                f"Sensor update failed ({response.status_code}): {response.text}",
                channel="webhook",
                status_code=response.status_code,
            )
        return _json_body(response) or {}

    def test_connection(self, hub_url: str, token: Optional[str] = None) -> Dict[str, Any]:
        """Check that the hub answers and whether the token is accepted."""
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            response = requests.get(
                f"{normalize_url(hub_url)}/api/", headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            return {"reachable": False, "authenticated": False, "error": str(e)}
        return {
            "reachable": True,
            "authenticated": response.ok,
            "status": response.status_code,
        }
