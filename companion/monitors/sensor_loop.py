"""Periodic sensor collection and publishing.

This module provides the SensorLoop class which drives the collection engine
on a fixed interval and pushes every cycle to both channels: the webhook
first (it is what updates ``mobile_app`` entities), then MQTT. Failed cycles
are retried on a bounded backoff schedule instead of the regular interval.
"""

# Standard library imports
import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

# Local imports
from companion.collectors.engine import CollectionEngine
from companion.core.exceptions import ConfigurationError, PublishError
from companion.core.messaging import MqttClient
from companion.core.webhook import WebhookClient

logger = logging.getLogger(__name__)

# Retry delays in seconds after 1, 2, 3 and 4+ consecutive failures
BACKOFF_SCHEDULE = [5, 10, 30, 60]
ERROR_THRESHOLD = 3


class LoopStatus(str, Enum):
    RUNNING = "running"
    ERROR = "error"
    STOPPED = "stopped"


StatusListener = Callable[[LoopStatus, str], None]


def backoff_delay(consecutive_errors: int) -> int:
    """Delay before the next retry after ``consecutive_errors`` failures.

    Example:
        >>> [backoff_delay(n) for n in range(1, 6)]
        [5, 10, 30, 60, 60]
    """
    index = min(max(consecutive_errors, 1) - 1, len(BACKOFF_SCHEDULE) - 1)
    return BACKOFF_SCHEDULE[index]


class SensorLoop:
    """Timer-driven publish loop with single-flight ticks and backoff.

    Exactly one timer is armed at any time: either the regular interval timer
    or a one-shot backoff retry. Every armed timer carries a generation
    number; a timer whose generation is no longer current does nothing when
    it fires, so callbacks cancelled by :meth:`stop` or re-arming can never
    run a stray tick.

    Attributes:
        engine: Collection engine producing sensor states.
        webhook_client: Webhook channel.
        mqtt_client: MQTT channel (optional).
        webhook_url_provider: Returns the current webhook URL or None.
        interval: Regular interval in seconds.
        consecutive_errors: Failed ticks since the last success.

    Example:
        >>> loop = SensorLoop(engine, webhook, mqtt_client, lambda: get_webhook_url(config))
        >>> loop.add_status_listener(lambda status, msg: print(status.value, msg))
        >>> loop.start(30)
        >>> loop.stop()
    """

    def __init__(
        self,
        engine: CollectionEngine,
        webhook_client: WebhookClient,
        mqtt_client: Optional[MqttClient],
        webhook_url_provider: Callable[[], Optional[str]],
        interval: int = 30,
        timer_factory: Callable[..., Any] = threading.Timer,
    ):
        self.engine = engine
        self.webhook_client = webhook_client
        self.mqtt_client = mqtt_client
        self.webhook_url_provider = webhook_url_provider
        self.interval = interval
        self._timer_factory = timer_factory

        self.is_running = False
        self.is_updating = False
        self.consecutive_errors = 0

        self._lock = threading.Lock()
        self._timer_lock = threading.RLock()
        self._timer = None
        self._generation = 0
        self._status_listeners: List[StatusListener] = []

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def _emit(self, status: LoopStatus, message: str) -> None:
        for listener in list(self._status_listeners):
            try:
                listener(status, message)
            except Exception as e:
                logger.error(f"Status listener failed: {e}", exc_info=True)

    def _mqtt_connected(self) -> bool:
        return self.mqtt_client is not None and self.mqtt_client.is_connected

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "interval": self.interval,
            "errors": self.consecutive_errors,
            "mqtt_connected": self._mqtt_connected(),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, interval: Optional[int] = None) -> None:
        """Run an immediate tick, then tick every ``interval`` seconds."""
        if self.is_running:
            logger.info("Sensor loop already running")
            return

        if interval:
            self.interval = interval
        self.is_running = True
        self.consecutive_errors = 0

        logger.info(f"Starting sensor loop with {self.interval}s interval")
        self._emit(LoopStatus.RUNNING, f"Sensor updates every {self.interval}s")

        self.tick()
        with self._timer_lock:
            if self.is_running and self._timer is None:
                self._arm(self.interval)

    def stop(self) -> None:
        if not self.is_running:
            return

        with self._timer_lock:
            self.is_running = False
            self._generation += 1
            self._cancel_timer()
        self.consecutive_errors = 0
        logger.info("Sensor loop stopped")
        self._emit(LoopStatus.STOPPED, "Sensor updates stopped")

    def set_interval(self, seconds: int) -> None:
        """Change the regular interval; re-arms the timer when running."""
        if seconds <= 0:
            raise ValueError(f"Interval must be positive, got {seconds}")
        self.interval = seconds
        logger.info(f"Interval changed to {seconds}s")
        self._arm_if_running(seconds)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm(self, delay: float) -> None:
        with self._timer_lock:
            self._cancel_timer()
            self._generation += 1
            timer = self._timer_factory(delay, self._run_scheduled, args=(self._generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _arm_if_running(self, delay: float) -> None:
        # Checked under the lock so stop() cannot slip in between
        with self._timer_lock:
            if self.is_running:
                self._arm(delay)

    def _run_scheduled(self, generation: int) -> None:
        with self._timer_lock:
            if generation != self._generation or not self.is_running:
                return
            self._timer = None

        self.tick()

        with self._timer_lock:
            # A failed tick has already armed its backoff retry
            if self.is_running and self._timer is None:
                self._arm(self.interval)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self) -> Optional[bool]:
        """Collect once and publish to every available channel.

        Returns:
            True if at least one channel received the states, False if the
            tick failed or was skipped for missing configuration, None if
            another tick was still running.
        """
        with self._lock:
            if self.is_updating:
                logger.info("Previous tick still running, skipping")
                return None
            self.is_updating = True

        try:
            return self._tick()
        finally:
            with self._lock:
                self.is_updating = False

    def _tick(self) -> bool:
        webhook_url = self.webhook_url_provider()
        mqtt_connected = self._mqtt_connected()

        if not webhook_url and not mqtt_connected:
            error = ConfigurationError("No webhook URL and MQTT not connected")
            logger.warning(f"{error}, skipping update")
            self._emit(LoopStatus.ERROR, str(error))
            return False

        try:
            states = self.engine.collect()
        except Exception as e:
            logger.error(f"Sensor collection failed: {e}", exc_info=True)
            return self._on_failure(f"collection failed: {e}")

        if not states:
            logger.warning("Collection returned no sensor states")
            self._emit(LoopStatus.ERROR, "No sensor data available")
            return False

        errors = []
        delivered = 0

        # 1. Webhook (primary, updates mobile_app entities)
        if webhook_url:
            try:
                self.webhook_client.update_sensor_states(webhook_url, states)
                delivered += 1
                by_id = {s.unique_id: s.state for s in states}
                logger.info(
                    f"Webhook OK: {len(states)} sensors | CPU={by_id.get('pc_cpu_usage')}% "
                    f"MEM={by_id.get('pc_mem_percent')}%"
                )
            except PublishError as e:
                logger.error(f"Webhook FAILED: {e}")
                errors.append(str(e))
            except Exception as e:
                logger.error(f"Webhook FAILED: {e}", exc_info=True)
                errors.append(str(e))
        else:
            logger.warning("No webhook URL, mobile_app entities will not update")

        # 2. MQTT (for discovered entities)
        if mqtt_connected:
            try:
                self.mqtt_client.publish_sensor_states(states)
                delivered += 1
            except PublishError as e:
                logger.error(f"MQTT publish failed: {e}")
                errors.append(str(e))
            except Exception as e:
                logger.error(f"MQTT publish failed: {e}", exc_info=True)
                errors.append(str(e))

        if delivered == 0:
            return self._on_failure("; ".join(errors))
        return self._on_success()

    def _on_failure(self, message: str) -> bool:
        self.consecutive_errors += 1
        delay = backoff_delay(self.consecutive_errors)
        logger.error(
            f"Update failed (attempt {self.consecutive_errors}): {message} "
            f"| Next retry in {delay}s"
        )

        if self.consecutive_errors >= ERROR_THRESHOLD:
            self._emit(
                LoopStatus.ERROR,
                f"Connection lost ({self.consecutive_errors} attempts failed)",
            )

        self._arm_if_running(delay)
        return False

    def _on_success(self) -> bool:
        if self.consecutive_errors > 0:
            logger.info("Connection restored")
            self.consecutive_errors = 0
            self._emit(LoopStatus.RUNNING, "Connection restored")
            self._arm_if_running(self.interval)
        return True
