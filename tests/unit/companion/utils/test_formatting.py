"""Unit tests for formatting utilities.

This module tests the helpers that turn raw readings into published values:
half-up rounding, size and uptime strings, battery icons and id slugs.

Example Run:
    pytest tests/unit/companion/utils/test_formatting.py -v
"""

import pytest

from companion.utils.formatting import (
    battery_icon,
    format_size,
    format_uptime,
    format_used_total,
    round1,
    round_half_up,
    sanitize_topic,
    slugify_id,
)

GIB = 1024 ** 3


class TestRounding:
    """Test suite for half-up rounding."""

    def test_half_rounds_up(self):
        """Test that .5 rounds away from zero instead of to even."""
        assert round_half_up(2.5) == 3.0
        assert round_half_up(3.5) == 4.0
        assert round_half_up(-2.5) == -3.0

    def test_one_decimal(self):
        """Test rounding to one decimal place."""
        assert round1(12.345) == 12.3
        assert round1(0.25) == 0.3
        assert round1(20) == 20.0


class TestFormatSize:
    """Test suite for format_size thresholds."""

    @pytest.mark.parametrize(
        "gb,expected",
        [
            (1843, "1.8 TB"),
            (1000, "1.0 TB"),
            (999.9, "1000 GB"),
            (512, "512 GB"),
            (10, "10 GB"),
            (7.63, "7.6 GB"),
            (1.0, "1.0 GB"),
            (0.5, "512 MB"),
            (0.05, "51.2 MB"),
        ],
    )
    def test_boundaries(self, gb, expected):
        """Test each unit boundary of format_size."""
        assert format_size(gb) == expected

    def test_used_total(self):
        """Test the used/total pair built from byte counts."""
        assert format_used_total(6 * GIB, 16 * GIB) == "6.0 GB / 16 GB"

    def test_used_total_zero(self):
        """Test a zero used value renders in MB."""
        assert format_used_total(0, 2 * GIB) == "0.0 MB / 2.0 GB"


class TestFormatUptime:
    """Test suite for format_uptime."""

    @pytest.mark.parametrize(
        "seconds,expected",
        [
            (0, "0m"),
            (59, "0m"),
            (2700, "45m"),
            (3661, "1h 1m"),
            (86400, "1d 0h 0m"),
            (90000, "1d 1h 0m"),
            (200700, "2d 7h 45m"),
        ],
    )
    def test_uptime_strings(self, seconds, expected):
        """Test days, hours and minutes are shown as expected."""
        assert format_uptime(seconds) == expected

    def test_negative_clamped(self):
        """Test that a negative uptime is treated as zero."""
        assert format_uptime(-10) == "0m"


class TestBatteryIcon:
    """Test suite for battery_icon."""

    def test_unknown_level(self):
        """Test that a missing level gives the unknown icon."""
        assert battery_icon(None) == "mdi:battery-unknown"

    def test_full(self):
        """Test full battery icons with and without charger."""
        assert battery_icon(95) == "mdi:battery"
        assert battery_icon(95, charging=True) == "mdi:battery-charging-100"

    def test_levels(self):
        """Test intermediate levels map to the nearest icon bucket."""
        assert battery_icon(75) == "mdi:battery-80"
        assert battery_icon(55, charging=True) == "mdi:battery-charging-60"
        assert battery_icon(30) == "mdi:battery-40"
        assert battery_icon(12) == "mdi:battery-20"

    def test_critical(self):
        """Test very low levels."""
        assert battery_icon(5) == "mdi:battery-alert"
        assert battery_icon(5, charging=True) == "mdi:battery-charging-outline"


class TestSlugs:
    """Test suite for id slugs and topic sanitizing."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("/", "_"),
            ("/home", "_home"),
            ("C:\\", "c__"),
            ("Wi-Fi 2", "wi_fi_2"),
            ("eth0", "eth0"),
        ],
    )
    def test_slugify_id(self, name, expected):
        """Test that non-alphanumerics become underscores and case is lowered."""
        assert slugify_id(name) == expected

    def test_slugify_is_idempotent(self):
        """Test that slugging a slug changes nothing."""
        for name in ["/mnt/Data Disk", "Ethernet 3", "nvme0n1"]:
            once = slugify_id(name)
            assert slugify_id(once) == once

    def test_sanitize_topic(self):
        """Test topic sanitizing of device names."""
        assert sanitize_topic("My PC Name") == "my_pc_name"
        assert sanitize_topic("Test/Device") == "test_device"
        assert sanitize_topic("gaming-pc") == "gaming_pc"
