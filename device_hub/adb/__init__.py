"""ADB module for device discovery and connection."""

from .adb_backend import AdbBackend
from .backend import DeviceBackend

__all__ = [
    "AdbBackend",
    "DeviceBackend",
]
