"""Data model for sensor definitions, states and cache entries.

These types are shared by the registry, the collection engine and both
publishers. Definitions are immutable for the process lifetime; states are
rebuilt on every collection cycle.
"""

# Standard library imports
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

StateValue = Union[int, float, str, bool, None]

UNKNOWN = "unknown"


class SensorKind(str, Enum):
    """Home Assistant component a sensor is created as."""

    SENSOR = "sensor"
    BINARY_SENSOR = "binary_sensor"


@dataclass(frozen=True)
class SensorDefinition:
    """Immutable descriptor of one sensor entity.

    The ``mount``, ``iface`` and ``disk_index`` fields correlate the definition
    with probe data inside the collection engine. They, and ``is_static``, are
    never sent to the hub.

    Example:
        >>> SensorDefinition("pc_cpu_usage", "CPU Usage", unit_of_measurement="%")
    """

    unique_id: str
    name: str
    kind: SensorKind = SensorKind.SENSOR
    device_class: Optional[str] = None
    unit_of_measurement: Optional[str] = None
    state_class: Optional[str] = None
    icon: Optional[str] = None
    mount: Optional[str] = None
    iface: Optional[str] = None
    disk_index: Optional[int] = None
    is_static: bool = False

    @property
    def is_binary(self) -> bool:
        return self.kind == SensorKind.BINARY_SENSOR

    def to_registration_payload(self) -> Dict[str, Any]:
        """Return the public fields used in a ``register_sensor`` webhook call."""
        payload: Dict[str, Any] = {
            "unique_id": self.unique_id,
            "name": self.name,
            "type": self.kind.value,
        }
        if self.device_class:
            payload["device_class"] = self.device_class
        if self.unit_of_measurement:
            payload["unit_of_measurement"] = self.unit_of_measurement
        if self.state_class:
            payload["state_class"] = self.state_class
        if self.icon:
            payload["icon"] = self.icon
        return payload


@dataclass
class SensorState:
    """Value of one sensor for a single collection cycle."""

    unique_id: str
    state: StateValue
    kind: SensorKind = SensorKind.SENSOR
    attributes: Optional[Dict[str, Any]] = None
    icon: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """Return the entry used in an ``update_sensor_states`` webhook call."""
        payload: Dict[str, Any] = {
            "unique_id": self.unique_id,
            "type": self.kind.value,
            "state": self.state,
        }
        if self.attributes:
            payload["attributes"] = self.attributes
        if self.icon:
            payload["icon"] = self.icon
        return payload


@dataclass
class CacheEntry:
    """Cached result of an expensive probe query.

    ``tick`` is the collection tick of the last successful refresh. It starts
    at negative infinity so the first cycle refreshes every key it needs.
    """

    data: Any = None
    tick: float = float("-inf")


@dataclass
class DeviceInfo:
    """Identity of the host as presented to the hub."""

    device_name: str
    manufacturer: str
    model: str
    os_name: str
    os_version: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "device_name": self.device_name,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "os_name": self.os_name,
            "os_version": self.os_version,
        }


@dataclass
class StaticHardware:
    """Snapshot of hardware facts that do not change while running.

    Every field is the plain dictionary/list shape returned by
    :meth:`HardwareProbe.get_static_data`.
    """

    system: Dict[str, Any] = field(default_factory=dict)
    baseboard: Dict[str, Any] = field(default_factory=dict)
    bios: Dict[str, Any] = field(default_factory=dict)
    cpu: Dict[str, Any] = field(default_factory=dict)
    graphics: list = field(default_factory=list)
    os: Dict[str, Any] = field(default_factory=dict)
    network_interfaces: list = field(default_factory=list)
    fs_size: list = field(default_factory=list)
    disk_layout: list = field(default_factory=list)
    battery: Dict[str, Any] = field(default_factory=dict)
    hostname: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StaticHardware":
        """Build a snapshot from a probe dictionary, ignoring unknown keys."""
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        # Probes may hand back None for groups they could not read
        return cls(**{k: v for k, v in known.items() if v is not None})

    @property
    def primary_gpu(self) -> Dict[str, Any]:
        return self.graphics[0] if self.graphics else {}
