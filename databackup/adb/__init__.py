"""ADB and privileged shell module initialization."""

from .device import ADBDevice, ADBError, DeviceInfo, check_adb_available, get_device_by_serial, list_devices
from .package import PackageInfo, PackageManager
from .shell import (
    ADBTransport,
    RootShell,
    ShellResult,
    ShellTransport,
    ShTransport,
    SuTransport,
    transport_from_config,
)

__all__ = [
    # device
    "ADBDevice",
    "ADBError",
    "DeviceInfo",
    "check_adb_available",
    "get_device_by_serial",
    "list_devices",
    # shell
    "ADBTransport",
    "RootShell",
    "ShellResult",
    "ShellTransport",
    "ShTransport",
    "SuTransport",
    "transport_from_config",
    # package
    "PackageInfo",
    "PackageManager",
]
