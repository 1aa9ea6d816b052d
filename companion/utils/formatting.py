"""Data formatting and transformation utilities.

This module provides reusable formatting functions for converting
raw hardware readings into the strings and rounded numbers that are
published to Home Assistant.
"""

import math
import re
from typing import Optional, Union

Number = Union[int, float]

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def round_half_up(value: float, decimals: int = 0) -> float:
    """Round a value with halves rounded away from zero.

    Python's built-in ``round`` uses banker's rounding, which would render
    ``2.5`` as ``2``. Sensor values are rounded the way people expect.

    Args:
        value: Number to round.
        decimals: Number of decimal places to keep (default: 0).

    Returns:
        Rounded value as a float.

    Example:
        >>> round_half_up(2.5)
        3.0
        >>> round_half_up(12.345, 1)
        12.3
    """
    factor = 10 ** decimals
    scaled = abs(value) * factor
    rounded = math.floor(scaled + 0.5) / factor
    return math.copysign(rounded, value)


def round1(value: Number) -> float:
    """Round to one decimal place (percentages, CPU usage, rates)."""
    return round_half_up(float(value), 1)


def format_size(gb: float) -> str:
    """Format a size given in GB into a compact human-readable string.

    Sizes of at least 1000 GB are shown in TB with one decimal, sizes of at
    least 10 GB as whole GB, sizes of at least 1 GB with one decimal. Smaller
    sizes are shown in MB, whole above 100 MB and with one decimal below.

    Args:
        gb: Size in gigabytes (1024-based).

    Returns:
        Formatted string (e.g., "1.8 TB", "512 GB", "7.6 GB", "51.2 MB").

    Example:
        >>> format_size(1.0)
        '1.0 GB'
        >>> format_size(999.9)
        '1000 GB'
        >>> format_size(0.05)
        '51.2 MB'
    """
    if gb >= 1000:
        return f"{round_half_up(gb / 1000, 1):.1f} TB"
    if gb >= 10:
        return f"{int(round_half_up(gb))} GB"
    if gb >= 1:
        return f"{round_half_up(gb, 1):.1f} GB"
    mb = gb * 1024
    if mb >= 100:
        return f"{int(round_half_up(mb))} MB"
    return f"{round_half_up(mb, 1):.1f} MB"


def format_used_total(used_bytes: Number, total_bytes: Number) -> str:
    """Format a used/total pair of byte counts as ``"<used> / <total>"``."""
    gib = 1024 ** 3
    return f"{format_size(used_bytes / gib)} / {format_size(total_bytes / gib)}"


def format_uptime(seconds: Number) -> str:
    """Format an uptime in seconds as a compact duration.

    Days and hours are omitted while they are zero (hours are kept once days
    are shown); minutes always appear.

    Example:
        >>> format_uptime(0)
        '0m'
        >>> format_uptime(3661)
        '1h 1m'
        >>> format_uptime(200700)
        '2d 7h 45m'
    """
    seconds = max(0, int(seconds))
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0 or days > 0:
        parts.append(f"{hours}h")
    parts.append(f"{minutes}m")
    return " ".join(parts)


def battery_icon(percent: Optional[Number], charging: bool = False) -> str:
    """Pick a Material Design battery icon for a charge level.

    Example:
        >>> battery_icon(75, charging=False)
        'mdi:battery-80'
        >>> battery_icon(5, charging=True)
        'mdi:battery-charging-outline'
    """
    prefix = "mdi:battery-charging" if charging else "mdi:battery"
    if percent is None:
        return "mdi:battery-unknown"
    if percent >= 90:
        return "mdi:battery-charging-100" if charging else "mdi:battery"
    if percent >= 70:
        return f"{prefix}-80"
    if percent >= 50:
        return f"{prefix}-60"
    if percent >= 30:
        return f"{prefix}-40"
    if percent >= 10:
        return f"{prefix}-20"
    return "mdi:battery-charging-outline" if charging else "mdi:battery-alert"


def slugify_id(name: str) -> str:
    """Turn a mount path, interface name or disk label into an id fragment.

    Every character that is not an ASCII letter or digit becomes ``_`` and
    the result is lowercased. The mapping is deterministic so unique ids, and
    the MQTT discovery topics built from them, survive restarts.

    Example:
        >>> slugify_id("/home")
        '_home'
        >>> slugify_id("C:")
        'c_'
        >>> slugify_id("Wi-Fi 2")
        'wi_fi_2'
    """
    return _NON_ALNUM.sub("_", name).lower()


def sanitize_topic(name: str) -> str:
    """Sanitize a string for use in MQTT topics.

    Replaces spaces and special characters with underscores, converts
    to lowercase, and removes problematic characters for MQTT topics.

    Args:
        name: String to sanitize.

    Returns:
        Sanitized string safe for MQTT topics.

    Example:
        >>> sanitize_topic("My PC Name")
        'my_pc_name'
        >>> sanitize_topic("Test/Device")
        'test_device'
    """
    name = name.lower().replace(" ", "_").replace("-", "_")

    # MQTT wildcards and separators
    for char in ["/", "+", "#", "$", "\\", "?"]:
        name = name.replace(char, "_")

    while "__" in name:
        name = name.replace("__", "_")

    return name.strip("_")
