"""Platform detection and platform-specific hardware queries.

This module centralizes the logic that differs between Linux and Windows:
OS naming, CPU model lookup and the Windows thermal-zone fallback used when
psutil cannot read a CPU temperature.
"""

import logging
import os
import platform
import shutil
import subprocess
import sys
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# Thermal zone temperature is reported in tenths of Kelvin
_THERMAL_ZONE_QUERY = (
    "Get-CimInstance -Namespace root/cimv2 "
    "-ClassName Win32_PerfFormattedData_Counters_ThermalZoneInformation "
    "-ErrorAction SilentlyContinue | "
    "Select-Object -ExpandProperty HighPrecisionTemperature -First 1"
)


class PlatformUtils:
    """Utilities for platform detection and platform-specific operations.

    Results that never change at runtime (platform, OS info, CPU model) are
    cached on the instance.

    Example:
        >>> utils = PlatformUtils()
        >>> if utils.is_windows():
        ...     temp = utils.read_windows_cpu_temperature()
        >>> print(utils.get_os_info()["distro"])
    """

    def __init__(self):
        self._platform: Optional[str] = None
        self._os_info: Optional[Dict[str, str]] = None
        self._cpu_model: Optional[str] = None

    def get_platform(self) -> str:
        """Get the current platform: "linux", "windows", "darwin" or "unknown"."""
        if self._platform is None:
            if sys.platform.startswith("linux"):
                self._platform = "linux"
            elif sys.platform.startswith("win"):
                self._platform = "windows"
            elif sys.platform == "darwin":
                self._platform = "darwin"
            else:
                self._platform = "unknown"
                logger.warning(f"Unknown platform: {sys.platform}")
        return self._platform

    def is_linux(self) -> bool:
        return self.get_platform() == "linux"

    def is_windows(self) -> bool:
        return self.get_platform() == "windows"

    def get_os_info(self) -> Dict[str, str]:
        """Get OS platform, distribution name and release.

        On Linux the distribution comes from ``/etc/os-release`` (NAME and
        VERSION_ID), falling back to ``platform.system()``.

        Returns:
            Dictionary with ``platform``, ``distro`` and ``release`` keys.

        Example:
            >>> PlatformUtils().get_os_info()
            {'platform': 'linux', 'distro': 'Ubuntu', 'release': '22.04'}
        """
        if self._os_info is not None:
            return self._os_info

        info = {
            "platform": self.get_platform(),
            "distro": platform.system() or "Unknown",
            "release": platform.release() or "",
        }

        if self.is_linux() and os.path.exists("/etc/os-release"):
            try:
                data = {}
                with open("/etc/os-release", encoding="utf-8") as f:
                    for line in f:
                        if "=" in line:
                            key, value = line.strip().split("=", 1)
                            data[key] = value.strip('"')
                if data.get("NAME"):
                    info["distro"] = data["NAME"]
                    info["release"] = data.get("VERSION_ID", info["release"])
            except (IOError, OSError, ValueError) as e:
                logger.debug(f"Could not read /etc/os-release: {e}")
        elif self.is_windows():
            info["distro"] = f"Windows {platform.release()}".strip()
            info["release"] = platform.version() or ""

        self._os_info = info
        return info

    def get_cpu_model(self) -> str:
        """Get CPU model name (platform-specific).

        - Windows: Registry ``ProcessorNameString``
        - Linux: ``model name`` from /proc/cpuinfo
        - Other: ``platform.processor()``

        Returns:
            CPU model string (e.g., "Intel(R) Core(TM) i7-9700K CPU @ 3.60GHz").
        """
        if self._cpu_model is not None:
            return self._cpu_model

        model = None
        if self.is_windows():
            try:
                import winreg

                key = winreg.OpenKey(
                    winreg.HKEY_LOCAL_MACHINE,
                    r"HARDWARE\DESCRIPTION\System\CentralProcessor\0",
                )
                model, _ = winreg.QueryValueEx(key, "ProcessorNameString")
                winreg.CloseKey(key)
            except (ImportError, OSError) as e:
                logger.debug(f"Error getting CPU model from registry: {e}")
        elif self.is_linux():
            try:
                with open("/proc/cpuinfo", encoding="utf-8") as f:
                    for line in f:
                        if "model name" in line:
                            model = line.split(":", 1)[1].strip()
                            break
            except (IOError, OSError) as e:
                logger.debug(f"Could not read /proc/cpuinfo: {e}")

        self._cpu_model = (model or platform.processor() or "Unknown CPU").strip()
        return self._cpu_model

    def has_windows_thermal_zone(self) -> bool:
        """Whether the PowerShell thermal-zone fallback can be attempted."""
        return self.is_windows() and shutil.which("powershell") is not None

    def read_windows_cpu_temperature(self, timeout: float = 5) -> Optional[float]:
        """Read the CPU temperature from the Windows thermal zone counters.

        Works on Windows 10 1903+ without admin rights. Spawns a PowerShell
        process, so callers should only use it on cache refresh ticks.

        Returns:
            Temperature in Celsius rounded to one decimal, or None if the
            counter is unavailable or outside 0-150 °C.
        """
        if not self.has_windows_thermal_zone():
            return None

        try:
            output = subprocess.check_output(
                ["powershell", "-NoProfile", "-NoLogo", "-Command", _THERMAL_ZONE_QUERY],
                timeout=timeout,
            )
            raw = float(output.decode().strip())
        except (
            subprocess.CalledProcessError,
            subprocess.TimeoutExpired,
            OSError,
            UnicodeDecodeError,
            ValueError,
        ) as e:
            logger.debug(f"Thermal zone query failed: {e}")
            return None

        if raw <= 0:
            return None
        celsius = raw / 10 - 273.15
        if celsius < 0 or celsius > 150:
            return None
        return round(celsius, 1)
