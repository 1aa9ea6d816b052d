"""Desktop Companion Test Suite.

Unit tests for the companion package. Hardware access goes through the
FakeProbe from conftest.py, the paho client and HTTP calls are mocked, and
timers are recorded instead of started, so no test needs a broker, a Home
Assistant instance or real sensors.

Test Organization:
    tests/
        unit/companion/
            collectors/     - Hardware probe, sensor registry, collection engine
            core/           - Config, discovery, MQTT and webhook channels
            monitors/       - Sensor loop and agent startup
            utils/          - Formatting and platform helpers
        conftest.py         - FakeProbe, timer factory and shared fixtures

Running Tests:
    # Run all tests
    pytest

    # Run with coverage
    pytest --cov=companion --cov-report=html

    # Run one area
    pytest tests/unit/companion/collectors

    # Run tests matching pattern
    pytest -k reconnect

    # Run only unit tests (marker added automatically by conftest.py)
    pytest -m unit
"""
