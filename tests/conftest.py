"""Pytest configuration and global fixtures.

This module provides fixtures and configuration that are available to all tests.
Fixtures defined here are automatically discovered by pytest and can be used
by any test function by including them as parameters.

Common Fixtures:
    - mock_mqtt_client: Mocked paho-mqtt client for testing without broker
    - fake_probe: In-memory hardware probe with call counting
    - bare_probe: FakeProbe without GPU, battery, disk temperatures or interfaces
    - temp_config_file: Temporary config.ini for testing
    - timer_factory: Recording replacement for threading.Timer

Example:
    def test_something(fake_probe):
        registry = SensorRegistry(fake_probe)
        assert registry.get_definitions()
"""

import configparser
import copy
import threading
from unittest.mock import MagicMock

import pytest

from companion.collectors.probe import HardwareProbe

GIB = 1024 ** 3

STATIC_HARDWARE = {
    "system": {"manufacturer": "To Be Filled By O.E.M.", "model": "Default string"},
    "baseboard": {"manufacturer": "ASUSTeK COMPUTER INC.", "model": "ROG STRIX B550-F"},
    "bios": {"vendor": "American Megatrends", "version": "2803", "release_date": "04/27/2022"},
    "cpu": {
        "manufacturer": "AMD",
        "brand": "AMD Ryzen 7 5800X",
        "cores": 16,
        "physical_cores": 8,
        "speed": 3.8,
    },
    "graphics": [
        {
            "vendor": "NVIDIA",
            "model": "NVIDIA GeForce RTX 3070",
            "vram": 8192.0,
            "driver_version": "535.104",
        }
    ],
    "os": {"platform": "linux", "distro": "Ubuntu", "release": "22.04"},
    "network_interfaces": [
        {"iface": "lo", "operstate": "up", "internal": True, "ip4": "127.0.0.1"},
        {"iface": "eth0", "operstate": "up", "internal": False, "ip4": "192.168.1.20"},
        {"iface": "wlan0", "operstate": "down", "internal": False, "ip4": ""},
    ],
    "fs_size": [
        {"mount": "/", "size": 500 * GIB, "used": 200 * GIB, "use": 40.0, "type": "ext4"},
        {"mount": "/home", "size": 1000 * GIB, "used": 250 * GIB, "use": 25.0, "type": "ext4"},
        {"mount": "/snap/core", "size": 0, "used": 0, "use": 0, "type": "squashfs"},
    ],
    "disk_layout": [
        {"name": "nvme0", "temperature": 38.0},
        {"name": "sda", "temperature": None},
    ],
    "battery": {"has_battery": True},
    "hostname": "gaming-pc",
}

QUERY_RESULTS = {
    "cpu_temp": {"main": 48.25, "cores": [46.0, 47.0]},
    "cpu_speed": {"avg": 3.712},
    "gpu": {
        "controllers": [
            {
                "vendor": "NVIDIA",
                "name": "NVIDIA GeForce RTX 3070",
                "temperature_gpu": 55.0,
                "utilization_gpu": 12,
            }
        ]
    },
    "disk_usage": [
        {"mount": "/", "size": 500 * GIB, "used": 200 * GIB, "use": 40.0, "type": "ext4"},
        {"mount": "/home", "size": 1000 * GIB, "used": 250 * GIB, "use": 25.04, "type": "ext4"},
    ],
    "disk_temps": [{"name": "nvme0", "temperature": 38.0}, {"name": "sda", "temperature": None}],
    "net_stats": [{"iface": "eth0", "rx_sec": 2048.0, "tx_sec": 512.0}],
    "swap": {"swaptotal": 2 * GIB, "swapused": GIB // 2},
    "battery": {"percent": 75, "is_charging": True, "ac_connected": True},
}


class FakeProbe(HardwareProbe):
    """Hardware probe returning canned data and recording every query.

    Attributes:
        static: Dictionary returned by get_static_data().
        results: Per-key data returned by query().
        queries: List of key lists passed to query(), in call order.
        cpu_times: Queue of (idle, total) samples; the last one repeats.
        query_error: Exception raised by query() when set.
        secondary_available: Value of has_secondary_cpu_temperature().
        secondary_temp: Value of get_secondary_cpu_temperature().
    """

    def __init__(self, static=None, results=None):
        self.static = copy.deepcopy(STATIC_HARDWARE if static is None else static)
        self.results = copy.deepcopy(QUERY_RESULTS if results is None else results)
        self.queries = []
        self.static_calls = 0
        self.cpu_times = [(900.0, 1000.0), (1700.0, 2000.0)]
        self.memory = (16 * GIB, 6 * GIB)
        self.uptime = 3661
        self.query_error = None
        self.secondary_available = False
        self.secondary_temp = None
        self.secondary_calls = 0
        self.block = None

    def get_static_data(self):
        self.static_calls += 1
        return copy.deepcopy(self.static)

    def get_cpu_times(self):
        if len(self.cpu_times) > 1:
            return self.cpu_times.pop(0)
        return self.cpu_times[0]

    def get_memory(self):
        return self.memory

    def get_uptime(self):
        return self.uptime

    def query(self, keys):
        keys = list(keys)
        self.queries.append(keys)
        if self.block is not None:
            self.block.wait(5)
        if self.query_error is not None:
            raise self.query_error
        return {k: copy.deepcopy(self.results[k]) for k in keys if k in self.results}

    def get_hostname(self):
        return self.static.get("hostname") or "fake-host"

    def has_secondary_cpu_temperature(self):
        return self.secondary_available

    def get_secondary_cpu_temperature(self):
        self.secondary_calls += 1
        return self.secondary_temp


class FakeTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, delay, function, args=()):
        self.delay = delay
        self.function = function
        self.args = args
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args)


class FakeTimerFactory:
    """Timer factory recording every timer the sensor loop arms."""

    def __init__(self):
        self.timers = []

    def __call__(self, delay, function, args=()):
        timer = FakeTimer(delay, function, args)
        self.timers.append(timer)
        return timer

    @property
    def delays(self):
        return [t.delay for t in self.timers]

    @property
    def last(self):
        return self.timers[-1]


@pytest.fixture
def timer_factory():
    """Provide a FakeTimerFactory for driving the sensor loop by hand."""
    return FakeTimerFactory()


@pytest.fixture
def fake_probe():
    """Provide a FakeProbe describing a desktop with GPU, battery and one NIC."""
    return FakeProbe()


@pytest.fixture
def bare_probe():
    """Provide a FakeProbe without GPU, battery, disk temperatures or interfaces."""
    static = copy.deepcopy(STATIC_HARDWARE)
    static["graphics"] = []
    static["battery"] = {"has_battery": False}
    static["network_interfaces"] = []
    static["disk_layout"] = []
    return FakeProbe(static=static)


@pytest.fixture
def blocking_event():
    """Event used to hold a FakeProbe query open from another thread."""
    return threading.Event()


@pytest.fixture
def mock_mqtt_client():
    """Provide a mocked paho-mqtt client for testing.

    This fixture creates a fully mocked paho-mqtt client that can be used
    in tests without requiring an actual MQTT broker connection.

    Returns:
        MagicMock: Mocked MQTT client with common methods stubbed

    Example:
        def test_publish(mock_mqtt_client):
            mqtt_client = MqttClient("test_pc", client=mock_mqtt_client)
            mqtt_client.remove_all_discovery_configs(definitions)
            mock_mqtt_client.publish.assert_called()
    """
    client = MagicMock()
    # Configure return values for common methods
    client.connect.return_value = 0
    client.connect_async.return_value = None
    client.publish.return_value = MagicMock(rc=0)
    client.subscribe.return_value = (0, 1)
    client.unsubscribe.return_value = (0, 2)
    client.loop_start.return_value = None
    client.loop_stop.return_value = None
    client.disconnect.return_value = None
    return client


@pytest.fixture
def temp_config_file(tmp_path):
    """Create a temporary config.ini file for testing.

    Args:
        tmp_path: pytest fixture providing temporary directory

    Returns:
        Path: Path to temporary config file

    Example:
        def test_load_config(temp_config_file):
            config = load_config(temp_config_file)
            assert config.mqtt_broker == "test.broker.local"
    """
    config = configparser.ConfigParser()

    config["hass"] = {
        "url": "http://hass.local:8123/",
        "token": "test_token_123",
        "webhook_id": "abc123",
        "cloudhook_url": "",
        "remote_ui_url": "",
    }

    config["mqtt"] = {
        "broker": "test.broker.local",
        "port": "1884",
        "username": "testuser",
        "password": "testpass",
        "connection_timeout": "5",
    }

    config["device"] = {
        "name": "Test Device",
        "device_id": "desktop-companion-0011aabb",
        "slug": "test_device",
        "interval": "15",
    }

    config_file = tmp_path / "config.ini"
    with open(config_file, "w") as f:
        config.write(f)

    return config_file


# Pytest hooks for custom behavior


def pytest_configure(config):
    """Keep tests away from a real config file in the checkout."""
    import os

    os.environ.pop("DC_CONFIG_PATH", None)


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add automatic markers.

    This hook runs after test collection and can be used to automatically
    add markers to tests based on their location or name.

    Args:
        config: pytest config object
        items: list of collected test items
    """
    for item in items:
        # Auto-mark all tests in tests/unit as unit tests
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Auto-mark integration tests
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
