"""Configuration management for Desktop Companion.

Settings live in an INI file (``data/config.ini`` by default, overridable
with the ``DC_CONFIG_PATH`` environment variable). Nothing is read at import
time: callers load an :class:`AgentConfig` explicitly, which keeps the module
importable in tests without a config file on disk.

Configuration Structure:
    [hass]
        url: Home Assistant base URL (e.g., "http://homeassistant.local:8123")
        token: Long-lived access token used for device registration
        webhook_id: Webhook id returned by device registration
        cloudhook_url: Nabu Casa cloudhook URL, if registration returned one
        remote_ui_url: Remote UI base URL, if registration returned one

    [mqtt]
        broker: MQTT broker hostname or IP address (empty disables MQTT)
        port: MQTT broker port (default: 1883)
        username: MQTT authentication username
        password: MQTT authentication password
        connection_timeout: Seconds to wait for CONNACK (default: 5)
        min_reconnect_delay: First retry delay after a lost connection (default: 1)
        max_reconnect_delay: Retry delay ceiling in seconds (default: 60)

    [device]
        name: Human-readable device name (default: hostname)
        device_id: Stable device identifier, generated on first start
        slug: Topic-safe device name used in MQTT topics
        interval: Publishing interval in seconds (default: 30)

Example:
    >>> config = load_config()
    >>> ensure_device_id(config)
    >>> url = get_webhook_url(config)
"""

# Standard library imports
import configparser
import logging
import os
import socket
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

# Local imports
from companion.core.exceptions import ConfigurationError
from companion.utils.formatting import sanitize_topic

logger = logging.getLogger(__name__)


# ----------------------------
# Paths
# ----------------------------

BASE_DIR = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR / "data" / "config.ini"
VERSION_PATH = BASE_DIR / "VERSION"

APP_ID = "desktop_companion"
APP_NAME = "Desktop Companion"
DEVICE_ID_PREFIX = "desktop-companion-"

DEFAULT_MQTT_PORT = 1883
DEFAULT_CONNECTION_TIMEOUT = 5
DEFAULT_MIN_RECONNECT_DELAY = 1
DEFAULT_MAX_RECONNECT_DELAY = 60
DEFAULT_INTERVAL = 30


# ----------------------------
# Load version
# ----------------------------


def load_version(path: Path = VERSION_PATH) -> str:
    try:
        with path.open("r", encoding="utf-8") as f:
            return f.read().strip() or "0.0.0"
    except FileNotFoundError:
        logger.warning(f"VERSION file not found at {path}, using fallback: 0.0.0")
        return "0.0.0"


VERSION = load_version()


# ----------------------------
# Settings
# ----------------------------


@dataclass
class AgentConfig:
    """Persisted settings for the companion agent."""

    hass_url: str = ""
    hass_token: str = ""
    webhook_id: str = ""
    cloudhook_url: str = ""
    remote_ui_url: str = ""

    mqtt_broker: str = ""
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_username: str = ""
    mqtt_password: str = ""
    mqtt_connection_timeout: int = DEFAULT_CONNECTION_TIMEOUT
    mqtt_min_reconnect_delay: int = DEFAULT_MIN_RECONNECT_DELAY
    mqtt_max_reconnect_delay: int = DEFAULT_MAX_RECONNECT_DELAY

    device_name: str = ""
    device_id: str = ""
    slug: str = ""
    interval: int = DEFAULT_INTERVAL

    def __post_init__(self):
        if not self.device_name:
            self.device_name = socket.gethostname()
        if not self.slug:
            self.slug = sanitize_topic(self.device_name) or "desktop_companion"


def get_config_path() -> Path:
    """Config file location, honouring the ``DC_CONFIG_PATH`` override."""
    override = os.getenv("DC_CONFIG_PATH")
    return Path(override) if override else DEFAULT_CONFIG_PATH


# ----------------------------
# Validation Functions
# ----------------------------


def normalize_url(url: Optional[str]) -> str:
    """Trim whitespace and trailing slashes from a URL.

    Example:
        >>> normalize_url(" http://hass.local:8123/ ")
        'http://hass.local:8123'
    """
    return (url or "").strip().rstrip("/")


def validate_required_mqtt(broker: str, port) -> Tuple[bool, str]:
    """
    Validate required MQTT settings.

    Returns (is_valid, error_message).
    """
    if not broker or not str(broker).strip():
        return False, "MQTT broker cannot be empty"

    try:
        port_int = int(port)
        if not (1 <= port_int <= 65535):
            return False, f"MQTT port must be between 1-65535, got {port}"
    except (TypeError, ValueError):
        return False, f"MQTT port must be a number, got '{port}'"

    return True, ""


# ----------------------------
# Load / save
# ----------------------------


def config_from_env() -> AgentConfig:
    """Build first-run settings from ``DC_*`` environment variables.

    Environment Variables:
        DC_HASS_URL: Home Assistant base URL
        DC_HASS_TOKEN: Long-lived access token
        DC_MQTT_BROKER: MQTT broker hostname
        DC_MQTT_PORT: MQTT broker port (default: 1883)
        DC_MQTT_USER: MQTT username
        DC_MQTT_PASS: MQTT password
        DC_DEVICE_NAME: Device name (default: hostname)
        DC_INTERVAL: Publishing interval in seconds (default: 30)
    """
    try:
        port = int(os.getenv("DC_MQTT_PORT", DEFAULT_MQTT_PORT))
    except ValueError:
        logger.warning("DC_MQTT_PORT is not a number, using 1883")
        port = DEFAULT_MQTT_PORT
    try:
        interval = int(os.getenv("DC_INTERVAL", DEFAULT_INTERVAL))
    except ValueError:
        logger.warning("DC_INTERVAL is not a number, using 30")
        interval = DEFAULT_INTERVAL

    return AgentConfig(
        hass_url=normalize_url(os.getenv("DC_HASS_URL", "")),
        hass_token=os.getenv("DC_HASS_TOKEN", ""),
        mqtt_broker=os.getenv("DC_MQTT_BROKER", ""),
        mqtt_port=port,
        mqtt_username=os.getenv("DC_MQTT_USER", ""),
        mqtt_password=os.getenv("DC_MQTT_PASS", ""),
        device_name=os.getenv("DC_DEVICE_NAME", ""),
        interval=interval,
    )


def load_config(path: Optional[Path] = None) -> AgentConfig:
    """Load settings from the INI file, creating it on first run.

    A missing file is created non-interactively from ``DC_*`` environment
    variables (see :func:`config_from_env`).

    Args:
        path: Config file path (default: :func:`get_config_path`).

    Returns:
        Loaded settings.

    Raises:
        ConfigurationError: If the file exists but cannot be parsed.
    """
    path = Path(path) if path else get_config_path()

    if not path.exists():
        logger.warning(f"Config file not found, creating {path} from environment")
        config = config_from_env()
        save_config(config, path)
        return config

    parser = configparser.ConfigParser(interpolation=None)
    try:
        if not parser.read(path, encoding="utf-8"):
            raise ValueError("Config file exists but couldn't be read")
        config = AgentConfig(
            hass_url=normalize_url(parser.get("hass", "url", fallback="")),
            hass_token=parser.get("hass", "token", fallback=""),
            webhook_id=parser.get("hass", "webhook_id", fallback=""),
            cloudhook_url=parser.get("hass", "cloudhook_url", fallback=""),
            remote_ui_url=normalize_url(parser.get("hass", "remote_ui_url", fallback="")),
            mqtt_broker=parser.get("mqtt", "broker", fallback=""),
            mqtt_port=parser.getint("mqtt", "port", fallback=DEFAULT_MQTT_PORT),
            mqtt_username=parser.get("mqtt", "username", fallback=""),
            mqtt_password=parser.get("mqtt", "password", fallback=""),
            mqtt_connection_timeout=parser.getint(
                "mqtt", "connection_timeout", fallback=DEFAULT_CONNECTION_TIMEOUT
            ),
            mqtt_min_reconnect_delay=parser.getint(
                "mqtt", "min_reconnect_delay", fallback=DEFAULT_MIN_RECONNECT_DELAY
            ),
            mqtt_max_reconnect_delay=parser.getint(
                "mqtt", "max_reconnect_delay", fallback=DEFAULT_MAX_RECONNECT_DELAY
            ),
            device_name=parser.get("device", "name", fallback=""),
            device_id=parser.get("device", "device_id", fallback=""),
            slug=parser.get("device", "slug", fallback=""),
            interval=parser.getint("device", "interval", fallback=DEFAULT_INTERVAL),
        )
    except (configparser.Error, ValueError) as e:
        logger.error(f"Configuration file is corrupt: {e}")
        logger.error(f"Location: {path}")
        raise ConfigurationError(f"Invalid config file {path}: {e}") from e

    if config.interval < 1:
        logger.warning(f"Interval {config.interval}s is too short, using {DEFAULT_INTERVAL}s")
        config.interval = DEFAULT_INTERVAL

    if config.mqtt_max_reconnect_delay < config.mqtt_min_reconnect_delay:
        logger.warning(
            f"max_reconnect_delay {config.mqtt_max_reconnect_delay}s is below "
            f"min_reconnect_delay, using {config.mqtt_min_reconnect_delay}s"
        )
        config.mqtt_max_reconnect_delay = config.mqtt_min_reconnect_delay

    return config


def save_config(config: AgentConfig, path: Optional[Path] = None) -> None:
    """Write settings back to the INI file."""
    path = Path(path) if path else get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    parser = configparser.ConfigParser(interpolation=None)
    parser["hass"] = {
        "url": config.hass_url,
        "token": config.hass_token,
        "webhook_id": config.webhook_id,
        "cloudhook_url": config.cloudhook_url,
        "remote_ui_url": config.remote_ui_url,
    }
    parser["mqtt"] = {
        "broker": config.mqtt_broker,
        "port": str(config.mqtt_port),
        "username": config.mqtt_username,
        "password": config.mqtt_password,
        "connection_timeout": str(config.mqtt_connection_timeout),
        "min_reconnect_delay": str(config.mqtt_min_reconnect_delay),
        "max_reconnect_delay": str(config.mqtt_max_reconnect_delay),
    }
    parser["device"] = {
        "name": config.device_name,
        "device_id": config.device_id,
        "slug": config.slug,
        "interval": str(config.interval),
    }

    with path.open("w", encoding="utf-8") as f:
        f.write("; ================ DESKTOP COMPANION CONFIG ================\n")
        parser.write(f)
    logger.debug(f"Configuration saved to {path}")


# ----------------------------
# Derived values
# ----------------------------


def ensure_device_id(config: AgentConfig, path: Optional[Path] = None) -> str:
    """Return the device id, generating and persisting one if missing."""
    if not config.device_id:
        config.device_id = f"{DEVICE_ID_PREFIX}{uuid.uuid4().hex[:8]}"
        logger.info(f"Generated device id {config.device_id}")
        save_config(config, path)
    return config.device_id


def get_webhook_url(config: AgentConfig) -> Optional[str]:
    """Resolve the URL sensor updates are posted to.

    Priority: cloudhook URL, then the remote UI URL, then the local hub URL.
    Returns None until a webhook id has been obtained.
    """
    if config.cloudhook_url:
        return config.cloudhook_url
    if not config.webhook_id:
        return None
    if config.remote_ui_url:
        return f"{normalize_url(config.remote_ui_url)}/api/webhook/{config.webhook_id}"
    if config.hass_url:
        return f"{normalize_url(config.hass_url)}/api/webhook/{config.webhook_id}"
    return None


def get_mqtt_broker(config: AgentConfig) -> Optional[Tuple[str, int]]:
    """Return ``(host, port)`` when a valid broker is configured, else None."""
    valid, error = validate_required_mqtt(config.mqtt_broker, config.mqtt_port)
    if not valid:
        if config.mqtt_broker:
            logger.warning(f"Ignoring MQTT settings: {error}")
        return None
    return config.mqtt_broker.strip(), int(config.mqtt_port)


def is_configured(config: AgentConfig) -> bool:
    """Whether at least one publishing channel can be used."""
    has_hass = bool(config.hass_url and (config.hass_token or config.webhook_id))
    return has_hass or get_mqtt_broker(config) is not None


def reset_mqtt_config(config: AgentConfig) -> AgentConfig:
    """Clear the MQTT section back to defaults (MQTT disabled)."""
    config.mqtt_broker = ""
    config.mqtt_port = DEFAULT_MQTT_PORT
    config.mqtt_username = ""
    config.mqtt_password = ""
    config.mqtt_connection_timeout = DEFAULT_CONNECTION_TIMEOUT
    config.mqtt_min_reconnect_delay = DEFAULT_MIN_RECONNECT_DELAY
    config.mqtt_max_reconnect_delay = DEFAULT_MAX_RECONNECT_DELAY
    return config
