"""Device sources, registry, selection and connection orchestration."""

from .hub import DeviceHub
from .models import (
    ConnectedDevice,
    ConnectionMethod,
    DeviceCategory,
    DiscoveredUsbDevice,
    DiscoveredWirelessDevice,
    PairedDevice,
    PairingData,
    PairingRequest,
    PairingSession,
    TcpConnection,
    Transport,
    UnifiedDeviceEntry,
    UsbConnection,
)
from .orchestrator import AttemptState, ConnectionOrchestrator
from .paired_store import PairedDeviceStore
from .pollers import (
    ConnectedDevicePoller,
    EmulatorPoller,
    PollPolicy,
    SourcePoller,
    UsbDevicePoller,
    WirelessDevicePoller,
)
from .registry import RegistryPolicy, unify
from .selection import SelectionController

__all__ = [
    "AttemptState",
    "ConnectedDevice",
    "ConnectedDevicePoller",
    "ConnectionMethod",
    "ConnectionOrchestrator",
    "DeviceCategory",
    "DeviceHub",
    "DiscoveredUsbDevice",
    "DiscoveredWirelessDevice",
    "EmulatorPoller",
    "PairedDevice",
    "PairedDeviceStore",
    "PairingData",
    "PairingRequest",
    "PairingSession",
    "PollPolicy",
    "RegistryPolicy",
    "SelectionController",
    "SourcePoller",
    "TcpConnection",
    "Transport",
    "UnifiedDeviceEntry",
    "UsbConnection",
    "UsbDevicePoller",
    "WirelessDevicePoller",
    "unify",
]
