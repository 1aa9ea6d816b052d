"""Sensor registry: the static catalog of sensors this host exposes.

The registry reads the probe's static data once, detects which optional
hardware exists (GPU, battery, disks, network interfaces) and derives the
list of :class:`SensorDefinition` objects from it. The list is fixed for the
process lifetime until :meth:`SensorRegistry.reset` forces re-detection.
"""

# Standard library imports
import logging
import threading
from typing import Any, Dict, List, Optional

# Local imports
from companion.collectors.models import (
    UNKNOWN,
    DeviceInfo,
    SensorDefinition,
    SensorKind,
    SensorState,
    StaticHardware,
)
from companion.collectors.probe import HardwareProbe
from companion.utils.formatting import slugify_id

logger = logging.getLogger(__name__)

GPU_VENDORS = ("nvidia",)

GENERIC_OEM_VALUES = {
    "",
    "system manufacturer",
    "system product name",
    "to be filled by o.e.m.",
    "default string",
    "unknown",
}

TEMP_UNIT = "°C"


def is_generic(value: Optional[str]) -> bool:
    """Whether a DMI/OEM string is a placeholder rather than real data."""
    return not value or value.lower().strip() in GENERIC_OEM_VALUES


def select_network_interfaces(interfaces: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Pick the interfaces that get rx/tx sensors.

    Interfaces must be up, not internal, and have an IPv4 address. If that
    yields nothing while interfaces exist, the "up" requirement is dropped
    (some drivers report an unknown operstate).
    """
    strict = [
        n for n in interfaces
        if n.get("operstate") == "up" and not n.get("internal") and n.get("ip4")
    ]
    if strict or not interfaces:
        return strict

    logger.warning("Strict interface filter found nothing, retrying without operstate check")
    relaxed = [n for n in interfaces if not n.get("internal") and n.get("ip4")]
    if relaxed:
        logger.info(f"Relaxed filter found {len(relaxed)} interface(s)")
    return relaxed


def _static(unique_id: str, name: str, icon: str, **kwargs) -> SensorDefinition:
    return SensorDefinition(unique_id, name, icon=icon, is_static=True, **kwargs)


class SensorRegistry:
    """Builds and caches sensor definitions from detected hardware.

    Attributes:
        probe: Hardware probe supplying the static data snapshot.

    Example:
        >>> registry = SensorRegistry(PsutilProbe())
        >>> definitions = registry.get_definitions()
        >>> info = registry.get_device_info()
    """

    def __init__(self, probe: HardwareProbe):
        self.probe = probe
        self._lock = threading.Lock()
        self._static: Optional[StaticHardware] = None
        self._definitions: Optional[List[SensorDefinition]] = None
        self._has_gpu = False
        self._has_battery = False
        self._active_interfaces: List[Dict[str, Any]] = []
        self._disk_mounts: List[Dict[str, Any]] = []
        self._disk_temp_indices: List[Dict[str, Any]] = []

    # ------------------------------------------------------------------
    # Detected hardware
    # ------------------------------------------------------------------

    @property
    def static_data(self) -> Optional[StaticHardware]:
        return self._static

    @property
    def has_gpu(self) -> bool:
        return self._has_gpu

    @property
    def has_battery(self) -> bool:
        return self._has_battery

    @property
    def active_interfaces(self) -> List[Dict[str, Any]]:
        return list(self._active_interfaces)

    @property
    def disk_mounts(self) -> List[Dict[str, Any]]:
        return list(self._disk_mounts)

    @property
    def disk_temp_indices(self) -> List[Dict[str, Any]]:
        return list(self._disk_temp_indices)

    def fetch_static_data(self) -> StaticHardware:
        """Read static hardware data once and detect optional hardware."""
        if self._static is not None:
            return self._static

        logger.info("Fetching static system data (one-time)...")
        data = StaticHardware.from_dict(self.probe.get_static_data() or {})

        self._has_gpu = any(
            vendor in (c.get("vendor") or "").lower()
            for c in data.graphics
            for vendor in GPU_VENDORS
        )
        self._has_battery = bool(data.battery.get("has_battery"))

        logger.info(f"Found {len(data.network_interfaces)} network interface(s)")
        self._active_interfaces = select_network_interfaces(data.network_interfaces)
        if not self._active_interfaces:
            logger.warning("No active network interfaces found, network sensors disabled")

        self._disk_mounts = [d for d in data.fs_size if d.get("mount") and (d.get("size") or 0) > 0]

        self._disk_temp_indices = []
        for index, disk in enumerate(data.disk_layout):
            temp = disk.get("temperature")
            if temp is not None and temp > 0:
                self._disk_temp_indices.append(
                    {"index": index, "name": disk.get("name") or f"Disk {index}"}
                )

        self._static = data
        return data

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def build_definitions(self) -> List[SensorDefinition]:
        """Build (or return the already built) sensor definitions."""
        with self._lock:
            if self._definitions is not None:
                return self._definitions

            self.fetch_static_data()
            definitions: List[SensorDefinition] = []

            definitions.append(
                SensorDefinition(
                    "pc_cpu_temp", "CPU Temperature", device_class="temperature",
                    unit_of_measurement=TEMP_UNIT, state_class="measurement",
                    icon="mdi:thermometer",
                )
            )
            definitions.append(
                SensorDefinition(
                    "pc_cpu_usage", "CPU Usage", unit_of_measurement="%",
                    state_class="measurement", icon="mdi:cpu-64-bit",
                )
            )
            definitions.append(
                SensorDefinition(
                    "pc_cpu_speed", "CPU Speed", device_class="frequency",
                    unit_of_measurement="GHz", state_class="measurement",
                    icon="mdi:speedometer",
                )
            )

            if self._has_gpu:
                definitions.append(
                    SensorDefinition(
                        "pc_gpu_temp", "GPU Temperature", device_class="temperature",
                        unit_of_measurement=TEMP_UNIT, state_class="measurement",
                        icon="mdi:expansion-card",
                    )
                )
                definitions.append(
                    SensorDefinition(
                        "pc_gpu_usage", "GPU Usage", unit_of_measurement="%",
                        state_class="measurement", icon="mdi:expansion-card-variant",
                    )
                )

            definitions.extend(
                [
                    SensorDefinition("pc_mem_usage", "Memory Usage", icon="mdi:memory"),
                    SensorDefinition(
                        "pc_mem_total", "Memory Total", device_class="data_size",
                        unit_of_measurement="GB", state_class="measurement",
                        icon="mdi:memory",
                    ),
                    SensorDefinition(
                        "pc_mem_percent", "Memory Percentage", unit_of_measurement="%",
                        state_class="measurement", icon="mdi:memory",
                    ),
                    SensorDefinition("pc_swap_usage", "Swap Usage", icon="mdi:swap-horizontal"),
                ]
            )

            for disk in self._disk_mounts:
                mount = disk["mount"]
                definitions.append(
                    SensorDefinition(
                        f"pc_disk_{slugify_id(mount)}_usage", f"Disk {mount} Usage",
                        icon="mdi:harddisk", mount=mount,
                    )
                )

            for disk in self._disk_temp_indices:
                definitions.append(
                    SensorDefinition(
                        f"pc_disk_{slugify_id(disk['name'])}_temp",
                        f"Disk {disk['name']} Temperature", device_class="temperature",
                        unit_of_measurement=TEMP_UNIT, state_class="measurement",
                        icon="mdi:harddisk", disk_index=disk["index"],
                    )
                )

            for net in self._active_interfaces:
                iface = net["iface"]
                slug = slugify_id(iface)
                definitions.append(
                    SensorDefinition(
                        f"pc_net_{slug}_rx", f"Network {iface} Download",
                        device_class="data_rate", unit_of_measurement="KB/s",
                        state_class="measurement", icon="mdi:download-network",
                        iface=iface,
                    )
                )
                definitions.append(
                    SensorDefinition(
                        f"pc_net_{slug}_tx", f"Network {iface} Upload",
                        device_class="data_rate", unit_of_measurement="KB/s",
                        state_class="measurement", icon="mdi:upload-network",
                        iface=iface,
                    )
                )

            if self._has_battery:
                definitions.extend(
                    [
                        SensorDefinition(
                            "pc_battery_level", "Battery Level", device_class="battery",
                            unit_of_measurement="%", state_class="measurement",
                            icon="mdi:battery",
                        ),
                        SensorDefinition(
                            "pc_battery_charging", "Battery Charging",
                            kind=SensorKind.BINARY_SENSOR,
                            device_class="battery_charging", icon="mdi:battery-charging",
                        ),
                        SensorDefinition(
                            "pc_ac_connected", "AC Connected",
                            kind=SensorKind.BINARY_SENSOR, device_class="plug",
                            icon="mdi:power-plug",
                        ),
                    ]
                )

            logger.info(
                f"Hardware detected: GPU={'NVIDIA' if self._has_gpu else 'none'}, "
                f"Battery={'yes' if self._has_battery else 'no'}, "
                f"Networks={len(self._active_interfaces)}, Disks={len(self._disk_mounts)}, "
                f"DiskTemps={len(self._disk_temp_indices)}"
            )

            definitions.extend(
                [
                    _static("pc_baseboard_manufacturer", "Baseboard Manufacturer", "mdi:chip"),
                    _static("pc_baseboard_model", "Baseboard Model", "mdi:chip"),
                    _static("pc_bios_version", "BIOS Version", "mdi:memory"),
                    _static("pc_cpu_model", "CPU Model", "mdi:cpu-64-bit"),
                    _static("pc_gpu_model", "GPU Model", "mdi:expansion-card"),
                    _static("pc_gpu_vendor", "GPU Vendor", "mdi:expansion-card"),
                    _static(
                        "pc_gpu_vram", "GPU VRAM", "mdi:expansion-card-variant",
                        device_class="data_size", unit_of_measurement="MB",
                        state_class="measurement",
                    ),
                    _static("pc_gpu_driver", "GPU Driver Version", "mdi:update"),
                    _static("pc_os_name", "Operating System", "mdi:desktop-classic"),
                    _static("pc_os_version", "OS Version", "mdi:information-outline"),
                    _static("pc_hostname", "Hostname", "mdi:desktop-tower"),
                    SensorDefinition("pc_uptime", "Uptime", icon="mdi:clock-outline"),
                ]
            )

            static_count = sum(1 for d in definitions if d.is_static)
            logger.info(
                f"Built {len(definitions)} sensor definitions "
                f"({static_count} static, {len(definitions) - static_count} dynamic)"
            )
            self._definitions = definitions
            return definitions

    def get_definitions(self) -> List[SensorDefinition]:
        if self._definitions is None:
            return self.build_definitions()
        return self._definitions

    def reset(self) -> None:
        """Forget definitions and static data; the next build re-detects hardware."""
        with self._lock:
            self._definitions = None
            self._static = None
            self._has_gpu = False
            self._has_battery = False
            self._active_interfaces = []
            self._disk_mounts = []
            self._disk_temp_indices = []
        logger.info("Sensor definitions reset")

    # ------------------------------------------------------------------
    # Device identity and static states
    # ------------------------------------------------------------------

    def get_device_info(self) -> DeviceInfo:
        """Resolve manufacturer/model/OS identity for registration and discovery.

        Manufacturer prefers the system vendor, then the baseboard vendor, then
        the CPU manufacturer; OEM placeholder strings are skipped. The model
        falls back to "<cpu brand> / <gpu model>".
        """
        data = self.fetch_static_data()

        manufacturer = data.system.get("manufacturer")
        if is_generic(manufacturer):
            manufacturer = data.baseboard.get("manufacturer")
        if is_generic(manufacturer):
            manufacturer = data.cpu.get("manufacturer")
        if is_generic(manufacturer):
            manufacturer = "Custom PC"

        model = data.system.get("model")
        if is_generic(model):
            parts = [data.cpu.get("brand") or "Unknown CPU"]
            gpu_model = data.primary_gpu.get("model")
            if gpu_model:
                parts.append(f"/ {gpu_model}")
            model = " ".join(parts)

        return DeviceInfo(
            device_name=data.hostname or self.probe.get_hostname(),
            manufacturer=manufacturer,
            model=model,
            os_name=data.os.get("platform") or UNKNOWN,
            os_version=os_version_string(data),
        )

    def get_static_sensor_states(self) -> List[SensorState]:
        """States for the static info sensors, resolved from the cached snapshot."""
        if self._static is None:
            return []
        return [
            static_state(unique_id, self._static, self.probe)
            for unique_id in STATIC_SENSOR_IDS
        ]


STATIC_SENSOR_IDS = (
    "pc_baseboard_manufacturer",
    "pc_baseboard_model",
    "pc_bios_version",
    "pc_cpu_model",
    "pc_gpu_model",
    "pc_gpu_vendor",
    "pc_gpu_vram",
    "pc_gpu_driver",
    "pc_os_name",
    "pc_os_version",
    "pc_hostname",
)


def os_version_string(data: StaticHardware) -> str:
    return f"{data.os.get('distro') or ''} {data.os.get('release') or ''}".strip() or UNKNOWN


def static_state(unique_id: str, data: StaticHardware, probe: HardwareProbe) -> SensorState:
    """Resolve the state of one static info sensor from the snapshot."""
    gpu = data.primary_gpu
    attributes = None

    if unique_id == "pc_baseboard_manufacturer":
        value = data.baseboard.get("manufacturer") or UNKNOWN
    elif unique_id == "pc_baseboard_model":
        value = data.baseboard.get("model") or UNKNOWN
    elif unique_id == "pc_bios_version":
        version = data.bios.get("version")
        value = f"{data.bios.get('vendor') or ''} {version}".strip() if version else UNKNOWN
        if data.bios.get("release_date"):
            attributes = {"release_date": data.bios["release_date"]}
    elif unique_id == "pc_cpu_model":
        value = data.cpu.get("brand") or UNKNOWN
        if data.cpu.get("cores"):
            attributes = {
                "cores": data.cpu.get("cores"),
                "physical_cores": data.cpu.get("physical_cores"),
                "speed_ghz": data.cpu.get("speed"),
            }
    elif unique_id == "pc_gpu_model":
        value = gpu.get("model") or gpu.get("name") or UNKNOWN
    elif unique_id == "pc_gpu_vendor":
        value = gpu.get("vendor") or UNKNOWN
    elif unique_id == "pc_gpu_vram":
        value = gpu.get("vram") if gpu.get("vram") is not None else UNKNOWN
    elif unique_id == "pc_gpu_driver":
        value = gpu.get("driver_version") or UNKNOWN
    elif unique_id == "pc_os_name":
        value = data.os.get("platform") or UNKNOWN
    elif unique_id == "pc_os_version":
        value = os_version_string(data)
    elif unique_id == "pc_hostname":
        value = data.hostname or probe.get_hostname()
    else:
        raise KeyError(f"Not a static sensor: {unique_id}")

    return SensorState(unique_id, value, attributes=attributes)
