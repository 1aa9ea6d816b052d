"""Utility functions and helpers for Desktop Companion.

Modules:
    platform: Platform detection and platform-specific operations
    formatting: Data formatting and transformation utilities
"""

from .formatting import (
    battery_icon,
    format_size,
    format_uptime,
    format_used_total,
    round1,
    sanitize_topic,
    slugify_id,
)
from .platform import PlatformUtils

__all__ = [
    "PlatformUtils",
    "battery_icon",
    "format_size",
    "format_uptime",
    "format_used_total",
    "round1",
    "sanitize_topic",
    "slugify_id",
]
