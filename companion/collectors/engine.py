"""Collection engine: tiered, staggered sampling of hardware readings.

Cheap readings (CPU times, memory, uptime) are taken on every cycle.
Expensive groups are cached and refreshed on their own period, measured in
collection ticks, so that a 30 second publish interval does not turn into a
burst of slow OS queries every 30 seconds. All stale groups of one cycle are
fetched in a single batched probe call.
"""

# Standard library imports
import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

# Local imports
from companion.collectors.models import (
    UNKNOWN,
    CacheEntry,
    SensorDefinition,
    SensorState,
)
from companion.collectors.probe import HardwareProbe
from companion.collectors.registry import SensorRegistry, static_state
from companion.core.exceptions import TransientProbeError
from companion.utils.formatting import (
    battery_icon,
    format_uptime,
    format_used_total,
    round1,
)

logger = logging.getLogger(__name__)

# Refresh period of each expensive group, in collection ticks
REFRESH_TICKS: Dict[str, int] = {
    "cpu_temp": 2,
    "cpu_speed": 3,
    "gpu": 3,
    "disk_usage": 6,
    "disk_temps": 10,
    "net_stats": 1,
    "swap": 6,
    "battery": 2,
}

GIB = 1024 ** 3


class CpuTempMethod(Enum):
    """Source the CPU temperature is read from, decided at runtime."""

    UNKNOWN = "unknown"
    PRIMARY = "primary"
    SECONDARY = "secondary"
    NONE = "none"


class CollectionEngine:
    """Produces one :class:`SensorState` per sensor definition per cycle.

    Args:
        probe: Hardware probe to read from.
        registry: Sensor registry holding definitions and static data.
        refresh_ticks: Refresh period per expensive group (default
            :data:`REFRESH_TICKS`).

    Example:
        >>> probe = PsutilProbe()
        >>> engine = CollectionEngine(probe, SensorRegistry(probe))
        >>> states = engine.collect()
        >>> [s.unique_id for s in states][:2]
        ['pc_cpu_temp', 'pc_cpu_usage']
    """

    def __init__(
        self,
        probe: HardwareProbe,
        registry: SensorRegistry,
        refresh_ticks: Optional[Dict[str, int]] = None,
    ):
        self.probe = probe
        self.registry = registry
        self.refresh_ticks = dict(refresh_ticks or REFRESH_TICKS)

        self._lock = threading.Lock()
        self.is_collecting = False
        self.tick = 0
        self.cache: Dict[str, CacheEntry] = {key: CacheEntry() for key in self.refresh_ticks}
        self.cpu_temp_method = CpuTempMethod.UNKNOWN
        self._secondary_temp: Optional[float] = None
        self._prev_cpu: Optional[Tuple[float, float]] = None
        self._last_states: List[SensorState] = []

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def collect(self) -> List[SensorState]:
        """Run one collection cycle.

        If a cycle is already running on another thread, the previous
        cycle's list is returned immediately without touching the probe.

        Returns:
            List of sensor states in definition order.
        """
        with self._lock:
            if self.is_collecting:
                logger.debug("Collection already in progress, returning last states")
                return self._last_states
            self.is_collecting = True

        try:
            try:
                definitions = self.registry.get_definitions()
            except Exception as e:
                logger.warning(f"Sensor definitions unavailable: {e}", exc_info=True)
                return self._last_states
            if not definitions:
                return []

            self.tick += 1
            cpu_usage = self._read("CPU times", self._cpu_usage)
            mem_total, mem_used = self._read("memory", self.probe.get_memory) or (None, None)
            uptime = self._read("uptime", self.probe.get_uptime)

            self._refresh_stale()

            cheap = {
                "cpu_usage": cpu_usage,
                "mem_total": mem_total,
                "mem_used": mem_used,
                "uptime": uptime,
            }
            states = [self._safe_state_for(d, cheap) for d in definitions]
            self._last_states = states
            return states
        finally:
            with self._lock:
                self.is_collecting = False

    def reset(self) -> None:
        """Drop every cache and baseline and force hardware re-detection."""
        with self._lock:
            self.cache = {key: CacheEntry() for key in self.refresh_ticks}
            self.tick = 0
            self._prev_cpu = None
            self._last_states = []
            self.cpu_temp_method = CpuTempMethod.UNKNOWN
            self._secondary_temp = None
        self.registry.reset()
        logger.info("Collection engine reset")

    @property
    def last_states(self) -> List[SensorState]:
        return self._last_states

    # ------------------------------------------------------------------
    # Tier 1
    # ------------------------------------------------------------------

    def _read(self, label: str, reader: Callable[[], Any]) -> Any:
        """Run a cheap reading; a failure yields None for this cycle only."""
        try:
            return reader()
        except Exception as e:
            logger.warning(f"Reading {label} failed: {e}")
            return None

    def _cpu_usage(self) -> Optional[float]:
        idle, total = self.probe.get_cpu_times()
        previous = self._prev_cpu
        self._prev_cpu = (idle, total)
        if previous is None:
            return None

        d_idle = idle - previous[0]
        d_total = total - previous[1]
        if d_total <= 0:
            return 0
        return round1((d_total - d_idle) / d_total * 100)

    # ------------------------------------------------------------------
    # Tier 2
    # ------------------------------------------------------------------

    def _needed_keys(self) -> List[str]:
        needed = []
        for key in self.refresh_ticks:
            if key == "gpu" and not self.registry.has_gpu:
                continue
            if key == "disk_temps" and not self.registry.disk_temp_indices:
                continue
            if key == "net_stats" and not self.registry.active_interfaces:
                continue
            if key == "battery" and not self.registry.has_battery:
                continue
            needed.append(key)
        return needed

    def stale_keys(self) -> List[str]:
        """Keys whose cache entry is due for a refresh on the current tick."""
        return [
            key for key in self._needed_keys()
            if self.tick - self.cache[key].tick >= self.refresh_ticks[key]
        ]

    def _refresh_stale(self) -> None:
        keys = self.stale_keys()
        if not keys:
            return

        try:
            result = self.probe.query(keys) or {}
        except Exception as e:
            error = TransientProbeError(f"Probe query failed: {e}", keys)
            logger.warning(f"{error} (keys: {', '.join(error.keys)}), serving cached data")
            return

        for key in keys:
            if key in result:
                self.cache[key] = CacheEntry(result[key], self.tick)

        if "cpu_temp" in keys:
            self._update_cpu_temp_method()

    def _update_cpu_temp_method(self) -> None:
        primary = (self.cache["cpu_temp"].data or {}).get("main")
        if primary is not None and primary > 0:
            if self.cpu_temp_method != CpuTempMethod.PRIMARY:
                logger.info("CPU temperature available from primary sensor")
            self.cpu_temp_method = CpuTempMethod.PRIMARY
            return

        # A primary sensor that drops out stays primary; everything else keeps
        # retrying the secondary source on each refresh.
        if self.cpu_temp_method == CpuTempMethod.PRIMARY:
            return

        if not self.probe.has_secondary_cpu_temperature():
            if self.cpu_temp_method == CpuTempMethod.UNKNOWN:
                logger.info("CPU temperature not available on this system")
                self.cpu_temp_method = CpuTempMethod.NONE
            return

        secondary = None
        try:
            secondary = self.probe.get_secondary_cpu_temperature()
        except Exception as e:
            logger.debug(f"Secondary CPU temperature failed: {e}")

        if secondary is not None and secondary > 0:
            if self.cpu_temp_method != CpuTempMethod.SECONDARY:
                logger.info("Using secondary source for CPU temperature")
            self.cpu_temp_method = CpuTempMethod.SECONDARY
            self._secondary_temp = secondary
        elif self.cpu_temp_method == CpuTempMethod.SECONDARY:
            logger.debug("Secondary CPU temperature returned no reading")
            self._secondary_temp = None
        elif self.cpu_temp_method == CpuTempMethod.UNKNOWN:
            logger.info("CPU temperature not available on this system")
            self.cpu_temp_method = CpuTempMethod.NONE

    # ------------------------------------------------------------------
    # State mapping
    # ------------------------------------------------------------------

    def _cached(self, key: str) -> Any:
        return self.cache[key].data if key in self.cache else None

    def _safe_state_for(self, definition: SensorDefinition, cheap: Dict[str, Any]) -> SensorState:
        try:
            return self._state_for(definition, cheap)
        except Exception as e:
            logger.warning(f"Computing state of {definition.unique_id} failed: {e}", exc_info=True)
            return SensorState(definition.unique_id, UNKNOWN, definition.kind)

    def _state_for(self, definition: SensorDefinition, cheap: Dict[str, Any]) -> SensorState:
        uid = definition.unique_id
        kind = definition.kind

        if definition.is_static:
            state = static_state(uid, self.registry.static_data, self.probe)
            state.kind = kind
            return state

        if uid == "pc_cpu_temp":
            return self._cpu_temp_state(definition)
        if uid == "pc_cpu_usage":
            usage = cheap["cpu_usage"]
            return SensorState(uid, usage if usage is not None else UNKNOWN, kind)
        if uid == "pc_cpu_speed":
            avg = (self._cached("cpu_speed") or {}).get("avg")
            return SensorState(uid, round(avg, 2) if avg else UNKNOWN, kind)

        if uid in ("pc_gpu_temp", "pc_gpu_usage"):
            return self._gpu_state(definition)

        if uid == "pc_mem_usage":
            total, used = cheap["mem_total"], cheap["mem_used"]
            value = format_used_total(used, total) if total else UNKNOWN
            return SensorState(uid, value, kind)
        if uid == "pc_mem_total":
            total = cheap["mem_total"]
            return SensorState(uid, round1(total / GIB) if total else UNKNOWN, kind)
        if uid == "pc_mem_percent":
            total, used = cheap["mem_total"], cheap["mem_used"]
            return SensorState(uid, round1(used / total * 100) if total else UNKNOWN, kind)

        if uid == "pc_swap_usage":
            swap = self._cached("swap") or {}
            if swap.get("swaptotal"):
                value = format_used_total(swap.get("swapused") or 0, swap["swaptotal"])
            else:
                value = "0 GB / 0 GB"
            return SensorState(uid, value, kind)

        if uid == "pc_uptime":
            uptime = cheap["uptime"]
            return SensorState(uid, format_uptime(uptime) if uptime is not None else UNKNOWN, kind)

        if uid in ("pc_battery_level", "pc_battery_charging", "pc_ac_connected"):
            return self._battery_state(definition)

        if definition.mount is not None:
            return self._disk_usage_state(definition)
        if definition.disk_index is not None:
            return self._disk_temp_state(definition)
        if definition.iface is not None:
            return self._network_state(definition)

        logger.warning(f"No value source for sensor {uid}")
        return SensorState(uid, UNKNOWN, kind)

    def _cpu_temp_state(self, definition: SensorDefinition) -> SensorState:
        data = self._cached("cpu_temp") or {}
        if self.cpu_temp_method == CpuTempMethod.SECONDARY:
            value = self._secondary_temp
        else:
            value = data.get("main")
        if value is not None and value > 0:
            value = round1(value)
        else:
            value = None
        cores = data.get("cores") or []
        return SensorState(
            definition.unique_id, value, definition.kind,
            attributes={"cores": cores} if cores else None,
        )

    def _gpu_state(self, definition: SensorDefinition) -> SensorState:
        controllers = (self._cached("gpu") or {}).get("controllers") or []
        gpu = next(
            (c for c in controllers if "nvidia" in (c.get("vendor") or "").lower()),
            controllers[0] if controllers else {},
        )
        field = "temperature_gpu" if definition.unique_id == "pc_gpu_temp" else "utilization_gpu"
        value = gpu.get(field)
        return SensorState(
            definition.unique_id,
            value if value is not None else UNKNOWN,
            definition.kind,
            attributes={"gpu_name": gpu["name"]} if gpu.get("name") else None,
        )

    def _battery_state(self, definition: SensorDefinition) -> SensorState:
        battery = self._cached("battery") or {}
        uid = definition.unique_id
        if uid == "pc_battery_level":
            percent = battery.get("percent")
            return SensorState(
                uid,
                percent if percent is not None else UNKNOWN,
                definition.kind,
                icon=battery_icon(percent, bool(battery.get("is_charging"))),
            )
        field = "is_charging" if uid == "pc_battery_charging" else "ac_connected"
        return SensorState(uid, bool(battery.get(field, False)), definition.kind)

    def _disk_usage_state(self, definition: SensorDefinition) -> SensorState:
        disks = self._cached("disk_usage") or []
        disk = next((d for d in disks if d.get("mount") == definition.mount), None)
        if not disk or not disk.get("size"):
            return SensorState(definition.unique_id, UNKNOWN, definition.kind)
        return SensorState(
            definition.unique_id,
            format_used_total(disk.get("used") or 0, disk["size"]),
            definition.kind,
            attributes={
                "percent": round1(disk.get("use") or 0),
                "fs_type": disk.get("type"),
            },
        )

    def _disk_temp_state(self, definition: SensorDefinition) -> SensorState:
        layout = self._cached("disk_temps") or []
        temp = None
        if definition.disk_index < len(layout):
            temp = layout[definition.disk_index].get("temperature")
        value = temp if temp is not None and temp > 0 else UNKNOWN
        return SensorState(definition.unique_id, value, definition.kind)

    def _network_state(self, definition: SensorDefinition) -> SensorState:
        stats = self._cached("net_stats") or []
        entry = next((s for s in stats if s.get("iface") == definition.iface), {})
        rate = entry.get("rx_sec" if definition.unique_id.endswith("_rx") else "tx_sec")
        value = round1(rate / 1024) if rate is not None else 0
        return SensorState(definition.unique_id, value, definition.kind)
