"""ADB device discovery and identification."""

import shlex
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from tenacity import retry, stop_after_attempt, wait_exponential

from ..util.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DeviceInfo:
    """Information about an Android device."""

    serial: str
    model: str
    brand: str
    android_version: str
    sdk_version: str
    state: str = "device"

    @property
    def display_name(self) -> str:
        """Get a human-readable device name."""
        return f"{self.brand} {self.model} ({self.serial})"


class ADBError(Exception):
    """ADB command execution error."""
    pass


class ADBDevice:
    """Represents an ADB-connected Android device."""

    def __init__(self, serial: str, adb_path: str = "adb"):
        self.serial = serial
        self.adb_path = adb_path
        self._device_info: Optional[DeviceInfo] = None

    def shell_argv(self, command: str, su_path: Optional[str] = None) -> List[str]:
        """Argument vector running ``command`` in the device shell, optionally via su."""
        if su_path:
            command = f"{su_path} -c {shlex.quote(command)}"
        return [self.adb_path, "-s", self.serial, "shell", command]

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=1, max=10))
    def _getprop(self, name: str, timeout: int = 10) -> str:
        """Read a system property, retrying while the device settles."""
        cmd = self.shell_argv(f"getprop {name}")

        try:
            logger.debug(f"Running ADB command: {' '.join(cmd)}")
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=True
            )
            return result.stdout.strip()
        except subprocess.CalledProcessError as e:
            error_msg = f"ADB command failed: {' '.join(cmd)}\nError: {e.stderr}"
            logger.error(error_msg)
            raise ADBError(error_msg) from e
        except subprocess.TimeoutExpired as e:
            error_msg = f"ADB command timed out: {' '.join(cmd)}"
            logger.error(error_msg)
            raise ADBError(error_msg) from e

    def get_device_info(self) -> DeviceInfo:
        """Get detailed device information."""
        if self._device_info is not None:
            return self._device_info

        self._device_info = DeviceInfo(
            serial=self.serial,
            model=self._getprop("ro.product.model"),
            brand=self._getprop("ro.product.brand"),
            android_version=self._getprop("ro.build.version.release"),
            sdk_version=self._getprop("ro.build.version.sdk"),
            state="device"
        )

        logger.info(f"Device info: {self._device_info.display_name}")
        return self._device_info


def check_adb_available(adb_path: str = "adb") -> bool:
    """Check if ADB is available and working."""
    try:
        result = subprocess.run(
            [adb_path, "version"],
            capture_output=True,
            text=True,
            timeout=10
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return False


def list_devices(adb_path: str = "adb") -> List[ADBDevice]:
    """List all connected ADB devices."""
    if not check_adb_available(adb_path):
        raise ADBError("ADB is not available or not in PATH")

    try:
        result = subprocess.run(
            [adb_path, "devices"],
            capture_output=True,
            text=True,
            timeout=10,
            check=True
        )
    except subprocess.CalledProcessError as e:
        raise ADBError(f"Failed to list devices: {e.stderr}") from e

    devices = []
    for line in result.stdout.strip().split("\n")[1:]:  # Skip header
        parts = line.strip().split("\t")
        if len(parts) >= 2 and parts[1] == "device":
            devices.append(ADBDevice(parts[0], adb_path))

    return devices


def get_device_by_serial(serial: Optional[str], adb_path: str = "adb") -> ADBDevice:
    """Pick the device with ``serial``, or the only connected device."""
    devices = list_devices(adb_path)

    if serial:
        for device in devices:
            if device.serial == serial:
                return device
        raise ADBError(f"Device with serial {serial} not found")

    if len(devices) == 1:
        return devices[0]
    if not devices:
        raise ADBError("No devices found")
    raise ADBError("Multiple devices found. Please specify a serial")
