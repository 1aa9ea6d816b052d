#!/usr/bin/env python3
"""Desktop Companion - Hardware telemetry for Home Assistant.

Desktop Companion collects hardware readings from a desktop computer and
publishes them to Home Assistant through two channels:

- the ``mobile_app`` webhook (device registration, sensor registration and
  batched state updates), and
- MQTT discovery, with every state in one retained JSON document.

Architecture:
    1. **Collectors** (companion/collectors/):
       - probe: Raw hardware readings (psutil, GPUtil)
       - registry: Sensor catalog from detected hardware
       - engine: Tiered cache, refreshing expensive readings on their own period

    2. **Core** (companion/core/):
       - config: Settings file
       - webhook: mobile_app webhook channel
       - messaging, discovery: MQTT channel

    3. **Monitors** (companion/monitors/):
       - sensor_loop: Interval timer with backoff
       - companion: Startup orchestration

MQTT Topics Structure:
    homeassistant/<component>/<slug>/<unique_id>/config  - Discovery (retained)
    <slug>/sensors                                       - All states (JSON)
    <slug>/status                                        - online/offline (LWT)

Usage:
    python main.py                       # Normal operation
    python main.py --once                # Publish a single cycle and exit
    python main.py --remove-discovery    # Clear MQTT discovery documents and exit

Exit Codes:
    0: Clean shutdown
    1: Configuration error or nothing could be published
"""

# Standard library imports
import logging
import signal
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Local imports
from companion.core.config import (
    BASE_DIR,
    VERSION,
    get_config_path,
    is_configured,
    load_config,
)
from companion.core.exceptions import ConfigurationError
from companion.monitors.companion import CompanionAgent

LOG_PATH = BASE_DIR / "data" / "companion.log"

logger = logging.getLogger()

exit_flag = threading.Event()


# ----------------------------
# Logging Configuration
# ----------------------------


def setup_logging(log_path: Path = LOG_PATH, level: int = logging.INFO) -> None:
    """Configure the root logger with console and rotating file output."""
    logger.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(module)s: %(message)s",
        datefmt="%m/%d/%Y %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=5 * 1024 * 1024,  # 5MB per file
        backupCount=3,
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)


# ----------------------------
# Signal Handlers
# ----------------------------


def signal_handler(sig, frame):
    """Handle shutdown signals gracefully."""
    logger.info("Shutdown signal received, stopping...")
    exit_flag.set()


# ----------------------------
# Main
# ----------------------------


def main(argv=None) -> int:
    """
    Main entry point for Desktop Companion.

    Loads the configuration, builds the agent and runs it until SIGINT or
    SIGTERM is received. On shutdown the sensor loop is stopped and the MQTT
    status topic is set to offline before disconnecting.
    """
    argv = sys.argv[1:] if argv is None else argv
    setup_logging()

    logger.info(f"Desktop Companion v{VERSION}")

    config_path = get_config_path()
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    if not is_configured(config):
        logger.error("Neither Home Assistant nor an MQTT broker is configured")
        logger.error(f"Edit {config_path} (or set DC_HASS_URL / DC_MQTT_BROKER) and restart")
        return 1

    agent = CompanionAgent(config, config_path=config_path)

    if "--remove-discovery" in argv:
        return 0 if agent.remove_discovery() else 1

    if "--once" in argv:
        return 0 if agent.run_once() else 1

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    agent.start()

    logger.info("=" * 50)
    logger.info("Desktop Companion running. Press Ctrl+C to exit...")
    logger.info(f"Device: {config.device_name} ({config.device_id})")
    logger.info(f"Webhook: {'yes' if agent.webhook_url() else 'no'}")
    logger.info(f"MQTT: {config.mqtt_broker or 'disabled'}")
    logger.info("=" * 50)

    try:
        while not exit_flag.wait(1):
            pass
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")

    agent.stop()
    logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
