"""Data collection classes for Desktop Companion.

This package turns raw hardware readings into sensor definitions and
per-cycle sensor states. It knows nothing about publishing.

Modules:
    models: Sensor definitions, states, cache entries and device identity
    probe: Hardware probe interface and the psutil implementation
    registry: Sensor catalog derived from detected hardware
    engine: Tiered, cached collection of sensor states
"""

from .engine import REFRESH_TICKS, CollectionEngine, CpuTempMethod
from .models import (
    CacheEntry,
    DeviceInfo,
    SensorDefinition,
    SensorKind,
    SensorState,
    StaticHardware,
)
from .probe import HardwareProbe, PsutilProbe
from .registry import SensorRegistry

__all__ = [
    "CacheEntry",
    "CollectionEngine",
    "CpuTempMethod",
    "DeviceInfo",
    "HardwareProbe",
    "PsutilProbe",
    "REFRESH_TICKS",
    "SensorDefinition",
    "SensorKind",
    "SensorRegistry",
    "SensorState",
    "StaticHardware",
]
