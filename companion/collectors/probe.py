"""Hardware probe: raw point-in-time readings from the host.

The collection engine never talks to psutil or the OS directly. It asks a
:class:`HardwareProbe` for readings, split into three cost classes:

* static data, read once at startup (hardware identity, disks, interfaces),
* cheap readings, taken every tick (CPU times, memory, uptime),
* expensive groups, fetched in one batched :meth:`HardwareProbe.query` call
  only when the engine's cache for them has gone stale.

:class:`PsutilProbe` is the production implementation. GPU readings use
GPUtil when it is installed (NVIDIA only).
"""

# Standard library imports
import logging
import math
import socket
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

# Third-party imports
import psutil

# Local imports
from companion.utils.platform import PlatformUtils

logger = logging.getLogger(__name__)

# Keys understood by HardwareProbe.query()
QUERY_KEYS = (
    "cpu_temp",
    "cpu_speed",
    "gpu",
    "disk_usage",
    "disk_temps",
    "net_stats",
    "swap",
    "battery",
)

CPU_SENSOR_CHIPS = ["coretemp", "k10temp", "zenpower", "cpu_thermal", "acpitz"]
DISK_SENSOR_CHIPS = ["nvme", "drivetemp"]
DMI_PATH = Path("/sys/class/dmi/id")


class HardwareProbe(ABC):
    """Interface the collection engine and sensor registry depend on.

    Query results use plain dictionaries and lists so that test doubles can
    be written without touching any OS API.
    """

    @abstractmethod
    def get_static_data(self) -> Dict[str, Any]:
        """Return hardware facts that do not change while running.

        Keys: ``system``, ``baseboard``, ``bios``, ``cpu``, ``graphics``,
        ``os``, ``network_interfaces``, ``fs_size``, ``disk_layout``,
        ``battery`` and ``hostname``.
        """

    @abstractmethod
    def get_cpu_times(self) -> Tuple[float, float]:
        """Return aggregate ``(idle, total)`` CPU time over all cores."""

    @abstractmethod
    def get_memory(self) -> Tuple[int, int]:
        """Return ``(total, used)`` physical memory in bytes."""

    @abstractmethod
    def get_uptime(self) -> float:
        """Return system uptime in seconds."""

    @abstractmethod
    def query(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Fetch the expensive data groups named in ``keys`` in one call.

        Groups that could not be read are left out of the result.
        """

    def get_hostname(self) -> str:
        return socket.gethostname()

    def has_secondary_cpu_temperature(self) -> bool:
        """Whether a platform-specific CPU temperature fallback exists."""
        return False

    def get_secondary_cpu_temperature(self) -> Optional[float]:
        """Read the CPU temperature through the platform fallback."""
        return None


def _safe_number(val: Any, default: Optional[float] = None) -> Optional[float]:
    """Convert a reading to float, mapping None/NaN/Inf to ``default``."""
    if val is None or isinstance(val, bool):
        return default
    if isinstance(val, (int, float)):
        if math.isnan(val) or math.isinf(val):
            return default
        return float(val)
    return default


def _read_dmi(name: str) -> Optional[str]:
    try:
        return (DMI_PATH / name).read_text(encoding="utf-8").strip() or None
    except (IOError, OSError):
        return None


class PsutilProbe(HardwareProbe):
    """Hardware probe backed by psutil (and GPUtil for NVIDIA GPUs).

    Network rates are derived from the interface byte counters of two
    consecutive ``net_stats`` queries; the first query reports 0.

    Example:
        >>> probe = PsutilProbe()
        >>> static = probe.get_static_data()
        >>> probe.query(["cpu_temp", "swap"])
        {'cpu_temp': {'main': 48.0, 'cores': [46.0, 47.0]}, 'swap': {...}}
    """

    def __init__(self, platform_utils: Optional[PlatformUtils] = None):
        self.platform = platform_utils or PlatformUtils()
        self._prev_net: Optional[Tuple[float, Dict[str, Tuple[int, int]]]] = None

    # ------------------------------------------------------------------
    # Static data
    # ------------------------------------------------------------------

    def get_static_data(self) -> Dict[str, Any]:
        os_info = self.platform.get_os_info()
        battery = None
        try:
            battery = psutil.sensors_battery() if hasattr(psutil, "sensors_battery") else None
        except (OSError, RuntimeError) as e:
            logger.debug(f"Could not read battery: {e}")

        return {
            "system": {
                "manufacturer": _read_dmi("sys_vendor"),
                "model": _read_dmi("product_name"),
            },
            "baseboard": {
                "manufacturer": _read_dmi("board_vendor"),
                "model": _read_dmi("board_name"),
            },
            "bios": {
                "vendor": _read_dmi("bios_vendor"),
                "version": _read_dmi("bios_version"),
                "release_date": _read_dmi("bios_date"),
            },
            "cpu": self._static_cpu(),
            "graphics": self._static_graphics(),
            "os": os_info,
            "network_interfaces": self._network_interfaces(),
            "fs_size": self._disk_usage(),
            "disk_layout": self._disk_temperatures(),
            "battery": {"has_battery": battery is not None},
            "hostname": self.get_hostname(),
        }

    def _static_cpu(self) -> Dict[str, Any]:
        brand = self.platform.get_cpu_model()
        manufacturer = None
        for vendor in ("Intel", "AMD", "Apple", "ARM", "Qualcomm"):
            if vendor.lower() in brand.lower():
                manufacturer = vendor
                break

        speed = None
        try:
            freq = psutil.cpu_freq()
            if freq and freq.max:
                speed = round(freq.max / 1000, 2)
            elif freq:
                speed = round(freq.current / 1000, 2)
        except (AttributeError, OSError, NotImplementedError) as e:
            logger.debug(f"Could not get CPU frequency: {e}")

        return {
            "manufacturer": manufacturer,
            "brand": brand,
            "cores": psutil.cpu_count(logical=True),
            "physical_cores": psutil.cpu_count(logical=False),
            "speed": speed,
        }

    def _gpus(self) -> list:
        try:
            import GPUtil

            return GPUtil.getGPUs()
        except ImportError:
            logger.debug("GPUtil not available, GPU monitoring disabled")
        except Exception as e:
            logger.warning(f"Error detecting GPUs: {e}")
        return []

    def _static_graphics(self) -> List[Dict[str, Any]]:
        controllers = []
        for gpu in self._gpus():
            controllers.append(
                {
                    "vendor": "NVIDIA",
                    "model": gpu.name or "Unknown GPU",
                    "vram": _safe_number(gpu.memoryTotal),
                    "driver_version": getattr(gpu, "driver", None),
                }
            )
        if controllers:
            logger.info(f"Detected {len(controllers)} GPU(s)")
        return controllers

    def _network_interfaces(self) -> List[Dict[str, Any]]:
        interfaces = []
        try:
            addrs = psutil.net_if_addrs()
            stats = psutil.net_if_stats()
        except OSError as e:
            logger.warning(f"Could not enumerate network interfaces: {e}")
            return interfaces

        for iface, iface_addrs in addrs.items():
            ip4 = next(
                (a.address for a in iface_addrs if a.family == socket.AF_INET), ""
            )
            stat = stats.get(iface)
            interfaces.append(
                {
                    "iface": iface,
                    "operstate": "up" if stat and stat.isup else "down",
                    "internal": iface == "lo" or ip4.startswith("127."),
                    "ip4": ip4,
                }
            )
        return interfaces

    # ------------------------------------------------------------------
    # Cheap readings
    # ------------------------------------------------------------------

    def get_cpu_times(self) -> Tuple[float, float]:
        t = psutil.cpu_times()
        idle = t.idle
        total = t.user + getattr(t, "nice", 0.0) + t.system + t.idle + getattr(t, "irq", 0.0)
        return idle, total

    def get_memory(self) -> Tuple[int, int]:
        mem = psutil.virtual_memory()
        return mem.total, mem.total - mem.available

    def get_uptime(self) -> float:
        return time.time() - psutil.boot_time()

    # ------------------------------------------------------------------
    # Expensive groups
    # ------------------------------------------------------------------

    def query(self, keys: Iterable[str]) -> Dict[str, Any]:
        handlers = {
            "cpu_temp": self._cpu_temperature,
            "cpu_speed": self._cpu_speed,
            "gpu": self._gpu_stats,
            "disk_usage": self._disk_usage,
            "disk_temps": self._disk_temperatures,
            "net_stats": self._network_stats,
            "swap": self._swap,
            "battery": self._battery,
        }
        result = {}
        for key in keys:
            handler = handlers.get(key)
            if handler is None:
                logger.warning(f"Unknown probe query key: {key}")
                continue
            try:
                result[key] = handler()
            except Exception as e:
                logger.warning(f"Probe query '{key}' failed: {e}")
        return result

    def _cpu_temperature(self) -> Dict[str, Any]:
        main = None
        cores: List[float] = []
        if not hasattr(psutil, "sensors_temperatures"):
            return {"main": None, "cores": cores}

        temps = psutil.sensors_temperatures()
        for chip in CPU_SENSOR_CHIPS:
            entries = temps.get(chip)
            if not entries:
                continue
            for entry in entries:
                label = entry.label or ""
                if main is None and ("Package" in label or "Tctl" in label):
                    main = entry.current
                elif label.startswith("Core"):
                    cores.append(entry.current)
            if main is None:
                main = entries[0].current
            break
        return {"main": _safe_number(main), "cores": cores}

    def _cpu_speed(self) -> Dict[str, Any]:
        freq = psutil.cpu_freq()
        return {"avg": round(freq.current / 1000, 2) if freq else None}

    def _gpu_stats(self) -> Dict[str, Any]:
        controllers = []
        for gpu in self._gpus():
            load = _safe_number(gpu.load)
            controllers.append(
                {
                    "vendor": "NVIDIA",
                    "name": gpu.name,
                    "temperature_gpu": _safe_number(gpu.temperature),
                    "utilization_gpu": round(load * 100) if load is not None else None,
                }
            )
        return {"controllers": controllers}

    def _disk_usage(self) -> List[Dict[str, Any]]:
        disks = []
        for partition in psutil.disk_partitions(all=False):
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except (PermissionError, OSError):
                # Skip inaccessible partitions (empty card readers, snaps)
                continue
            disks.append(
                {
                    "mount": partition.mountpoint,
                    "size": usage.total,
                    "used": usage.used,
                    "use": usage.percent,
                    "type": partition.fstype,
                }
            )
        return disks

    def _disk_temperatures(self) -> List[Dict[str, Any]]:
        layout = []
        if not hasattr(psutil, "sensors_temperatures"):
            return layout
        try:
            temps = psutil.sensors_temperatures()
        except (OSError, RuntimeError) as e:
            logger.debug(f"Could not read disk temperatures: {e}")
            return layout
        for chip in DISK_SENSOR_CHIPS:
            for i, entry in enumerate(temps.get(chip, [])):
                layout.append(
                    {
                        "name": f"{chip}{i}" if not entry.label else f"{chip} {entry.label}",
                        "temperature": _safe_number(entry.current),
                    }
                )
        return layout

    def _network_stats(self) -> List[Dict[str, Any]]:
        now = time.monotonic()
        counters = psutil.net_io_counters(pernic=True)
        current = {name: (c.bytes_recv, c.bytes_sent) for name, c in counters.items()}

        stats = []
        previous = self._prev_net
        for iface, (recv, sent) in current.items():
            rx_sec = tx_sec = 0.0
            if previous is not None and iface in previous[1]:
                elapsed = now - previous[0]
                if elapsed > 0:
                    prev_recv, prev_sent = previous[1][iface]
                    rx_sec = max(0.0, (recv - prev_recv) / elapsed)
                    tx_sec = max(0.0, (sent - prev_sent) / elapsed)
            stats.append({"iface": iface, "rx_sec": rx_sec, "tx_sec": tx_sec})

        self._prev_net = (now, current)
        return stats

    def _swap(self) -> Dict[str, Any]:
        swap = psutil.swap_memory()
        return {"swaptotal": swap.total, "swapused": swap.used}

    def _battery(self) -> Dict[str, Any]:
        battery = psutil.sensors_battery()
        if battery is None:
            return {}
        return {
            "percent": round(battery.percent),
            "is_charging": bool(battery.power_plugged) and battery.percent < 100,
            "ac_connected": bool(battery.power_plugged),
        }

    # ------------------------------------------------------------------
    # Platform fallback
    # ------------------------------------------------------------------

    def has_secondary_cpu_temperature(self) -> bool:
        return self.platform.has_windows_thermal_zone()

    def get_secondary_cpu_temperature(self) -> Optional[float]:
        return self.platform.read_windows_cpu_temperature()
