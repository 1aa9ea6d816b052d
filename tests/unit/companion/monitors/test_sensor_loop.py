"""Unit tests for the sensor loop.

This module tests the timer-driven publish loop: immediate first tick,
interval re-arming, bounded backoff after failures, recovery, precondition
failures and stale timer callbacks. Timers are replaced by the
timer_factory fixture so no real threads are started.

Example Run:
    pytest tests/unit/companion/monitors/test_sensor_loop.py -v
"""

from unittest.mock import MagicMock

import pytest

from companion.collectors.models import SensorState
from companion.core.exceptions import PublishError
from companion.monitors.sensor_loop import (
    BACKOFF_SCHEDULE,
    LoopStatus,
    SensorLoop,
    backoff_delay,
)

WEBHOOK_URL = "http://hass.local:8123/api/webhook/abc123"

STATES = [SensorState("pc_cpu_usage", 12.5), SensorState("pc_mem_percent", 37.5)]


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.collect.return_value = STATES
    return engine


@pytest.fixture
def webhook_client():
    return MagicMock()


@pytest.fixture
def mqtt_client():
    client = MagicMock()
    client.is_connected = True
    return client


@pytest.fixture
def statuses():
    return []


def _loop(engine, webhook_client, mqtt_client, timer_factory, statuses, url=WEBHOOK_URL):
    loop = SensorLoop(
        engine,
        webhook_client,
        mqtt_client,
        lambda: url,
        interval=30,
        timer_factory=timer_factory,
    )
    loop.add_status_listener(lambda status, message: statuses.append(status))
    return loop


class TestBackoffDelay:
    """Test suite for the retry schedule."""

    def test_schedule(self):
        """Test delays for increasing failure counts."""
        assert BACKOFF_SCHEDULE == [5, 10, 30, 60]
        assert [backoff_delay(n) for n in range(1, 7)] == [5, 10, 30, 60, 60, 60]


class TestLifecycle:
    """Test suite for starting, stopping and the interval timer."""

    def test_start_ticks_immediately_and_arms_interval(
        self, engine, webhook_client, mqtt_client, timer_factory, statuses
    ):
        """Test the first tick and the interval timer armed by start()."""
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses)

        loop.start()

        engine.collect.assert_called_once()
        webhook_client.update_sensor_states.assert_called_once_with(WEBHOOK_URL, STATES)
        mqtt_client.publish_sensor_states.assert_called_once_with(STATES)
        assert timer_factory.delays == [30]
        assert timer_factory.last.started is True
        assert timer_factory.last.daemon is True
        assert statuses == [LoopStatus.RUNNING]

    def test_interval_re_armed_after_tick(
        self, engine, webhook_client, mqtt_client, timer_factory, statuses
    ):
        """Test that every scheduled tick arms the next interval."""
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses)
        loop.start(15)

        timer_factory.last.fire()
        timer_factory.last.fire()

        assert engine.collect.call_count == 3
        assert timer_factory.delays == [15, 15, 15]

    def test_start_twice(self, engine, webhook_client, mqtt_client, timer_factory, statuses):
        """Test that a second start() is ignored."""
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses)
        loop.start()
        loop.start()

        assert engine.collect.call_count == 1
        assert len(timer_factory.timers) == 1

    def test_stop_invalidates_pending_timer(
        self, engine, webhook_client, mqtt_client, timer_factory, statuses
    ):
        """Test that a timer firing after stop() does nothing."""
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses)
        loop.start()
        pending = timer_factory.last

        loop.stop()
        pending.fire()

        assert pending.cancelled is True
        assert engine.collect.call_count == 1
        assert len(timer_factory.timers) == 1
        assert statuses[-1] == LoopStatus.STOPPED
        assert loop.is_running is False

    def test_superseded_timer_ignored(
        self, engine, webhook_client, mqtt_client, timer_factory, statuses
    ):
        """Test that an older timer cannot tick after re-arming."""
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses)
        loop.start()
        old = timer_factory.last

        loop.set_interval(10)
        old.fire()

        assert old.cancelled is True
        assert engine.collect.call_count == 1
        assert timer_factory.delays == [30, 10]

    def test_set_interval_rejects_non_positive(
        self, engine, webhook_client, mqtt_client, timer_factory, statuses
    ):
        """Test that a zero interval is rejected."""
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses)

        with pytest.raises(ValueError):
            loop.set_interval(0)

    def test_get_status(self, engine, webhook_client, mqtt_client, timer_factory, statuses):
        """Test the status snapshot."""
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses)
        loop.start()

        assert loop.get_status() == {
            "running": True,
            "interval": 30,
            "errors": 0,
            "mqtt_connected": True,
        }


class TestBackoff:
    """Test suite for failure handling and recovery."""

    def test_backoff_then_recovery(self, engine, webhook_client, timer_factory, statuses):
        """Test the retry delays, the error status and recovery."""
        webhook_client.update_sensor_states.side_effect = PublishError(
            "Sensor update failed (502)", channel="webhook", status_code=502
        )
        loop = _loop(engine, webhook_client, None, timer_factory, statuses)

        loop.start()
        for _ in range(4):
            timer_factory.last.fire()

        assert timer_factory.delays == [5, 10, 30, 60, 60]
        assert loop.consecutive_errors == 5
        assert statuses.count(LoopStatus.ERROR) == 3

        webhook_client.update_sensor_states.side_effect = None
        timer_factory.last.fire()

        assert loop.consecutive_errors == 0
        assert timer_factory.delays[-1] == 30
        assert len(timer_factory.timers) == 6
        assert statuses[-1] == LoopStatus.RUNNING

    def test_stop_during_failed_tick(self, engine, webhook_client, timer_factory, statuses):
        """Test that a tick failing after stop() arms no retry."""
        loop = _loop(engine, webhook_client, None, timer_factory, statuses)

        def stop_then_fail(*args, **kwargs):
            loop.stop()
            raise PublishError("Sensor update failed (503)", channel="webhook", status_code=503)

        webhook_client.update_sensor_states.side_effect = stop_then_fail
        loop.start()

        assert loop.is_running is False
        assert timer_factory.timers == []
        assert loop.consecutive_errors == 1

    def test_collection_failure(self, engine, webhook_client, mqtt_client, timer_factory, statuses):
        """Test that an exception from the engine counts as a failed tick."""
        engine.collect.side_effect = RuntimeError("probe crashed")
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses)

        loop.start()

        assert loop.consecutive_errors == 1
        assert timer_factory.delays == [5]
        webhook_client.update_sensor_states.assert_not_called()

    def test_partial_delivery_is_success(
        self, engine, webhook_client, mqtt_client, timer_factory, statuses
    ):
        """Test that one working channel is enough."""
        webhook_client.update_sensor_states.side_effect = PublishError("down", channel="webhook")
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses)

        assert loop.tick() is True
        assert loop.consecutive_errors == 0
        mqtt_client.publish_sensor_states.assert_called_once_with(STATES)

    def test_both_channels_fail(self, engine, webhook_client, mqtt_client, timer_factory, statuses):
        """Test that failing on every channel counts as one failure."""
        webhook_client.update_sensor_states.side_effect = PublishError("down", channel="webhook")
        mqtt_client.publish_sensor_states.side_effect = PublishError("down", channel="mqtt")
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses)

        assert loop.tick() is False
        assert loop.consecutive_errors == 1

    def test_webhook_before_mqtt(self, engine, webhook_client, mqtt_client, timer_factory, statuses):
        """Test the delivery order within a tick."""
        calls = []
        webhook_client.update_sensor_states.side_effect = lambda *a: calls.append("webhook")
        mqtt_client.publish_sensor_states.side_effect = lambda *a: calls.append("mqtt")
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses)

        loop.tick()

        assert calls == ["webhook", "mqtt"]


class TestPreconditions:
    """Test suite for ticks that cannot publish at all."""

    def test_no_channel_available(self, engine, webhook_client, mqtt_client, timer_factory, statuses):
        """Test that missing configuration reports an error without backoff."""
        mqtt_client.is_connected = False
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses, url=None)

        loop.start()

        engine.collect.assert_not_called()
        assert loop.consecutive_errors == 0
        assert timer_factory.delays == [30]
        assert LoopStatus.ERROR in statuses

    def test_mqtt_only(self, engine, webhook_client, mqtt_client, timer_factory, statuses):
        """Test publishing without a webhook URL."""
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses, url=None)

        assert loop.tick() is True
        webhook_client.update_sensor_states.assert_not_called()
        mqtt_client.publish_sensor_states.assert_called_once_with(STATES)

    def test_empty_states(self, engine, webhook_client, mqtt_client, timer_factory, statuses):
        """Test that an empty collection is an error without backoff."""
        engine.collect.return_value = []
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses)

        assert loop.tick() is False
        assert loop.consecutive_errors == 0
        assert statuses == [LoopStatus.ERROR]
        webhook_client.update_sensor_states.assert_not_called()

    def test_overlapping_tick_skipped(
        self, engine, webhook_client, mqtt_client, timer_factory, statuses
    ):
        """Test that a tick while another runs is skipped."""
        loop = _loop(engine, webhook_client, mqtt_client, timer_factory, statuses)
        loop.is_updating = True

        assert loop.tick() is None
        engine.collect.assert_not_called()
