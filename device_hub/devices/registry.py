"""Merge every device source into one sorted, de-duplicated list."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from device_hub.config.app_settings import DeviceSettings

from .models import (
    ConnectedDevice,
    DeviceCategory,
    DiscoveredUsbDevice,
    DiscoveredWirelessDevice,
    PairedDevice,
    UnifiedDeviceEntry,
)


@dataclass(frozen=True)
class RegistryPolicy:
    """影响合并结果的开关"""

    auto_discover_usb: bool = True
    show_unpaired_devices: bool = True

    @classmethod
    def from_settings(cls, settings: DeviceSettings) -> RegistryPolicy:
        return cls(
            auto_discover_usb=settings.auto_discover_usb,
            show_unpaired_devices=settings.show_unpaired_devices,
        )


def connected_entry(device: ConnectedDevice) -> UnifiedDeviceEntry:
    return UnifiedDeviceEntry(
        id=f"{DeviceCategory.CONNECTED.value}:{device.serial_no}",
        category=DeviceCategory.CONNECTED,
        display_name=device.model or device.serial_no,
        subtitle=f"Android {device.android_version} • API {device.sdk_version}",
        is_connected=True,
        source_data=device,
    )


def emulator_entry(image: str) -> UnifiedDeviceEntry:
    return UnifiedDeviceEntry(
        id=f"{DeviceCategory.EMULATOR.value}:{image}",
        category=DeviceCategory.EMULATOR,
        display_name=image,
        subtitle="Emulator",
        is_connected=False,
        source_data=image,
    )


def usb_entry(device: DiscoveredUsbDevice) -> UnifiedDeviceEntry:
    return UnifiedDeviceEntry(
        id=f"{DeviceCategory.USB.value}:{device.identity}",
        category=DeviceCategory.USB,
        display_name=device.model or "Unknown Device",
        subtitle="USB Device",
        is_connected=False,
        source_data=device,
    )


def paired_entry(device: PairedDevice) -> UnifiedDeviceEntry:
    last = datetime.fromtimestamp(device.last_connected / 1000).strftime("%Y-%m-%d")
    return UnifiedDeviceEntry(
        id=f"{DeviceCategory.PAIRED.value}:{device.id}",
        category=DeviceCategory.PAIRED,
        display_name=device.name,
        subtitle=f"Paired • Last: {last}",
        is_connected=False,
        source_data=device,
    )


def wireless_entry(device: DiscoveredWirelessDevice) -> UnifiedDeviceEntry:
    # (ip, port) 是唯一可靠的等价键，fullname 只在没有 IPv4 地址时兜底
    key = device.address_key
    identity = f"{key[0]}:{key[1]}" if key else device.fullname
    return UnifiedDeviceEntry(
        id=f"{DeviceCategory.WIRELESS.value}:{identity}",
        category=DeviceCategory.WIRELESS,
        display_name=device.name,
        subtitle="Discovered",
        is_connected=False,
        source_data=device,
    )


def sort_key(entry: UnifiedDeviceEntry) -> tuple[bool, str, str]:
    """已连接优先，其次按名称，名称相同按 id"""
    return (not entry.is_connected, entry.display_name, entry.id)


def unify(
    connected: Iterable[ConnectedDevice],
    usb: Iterable[DiscoveredUsbDevice],
    wireless: Iterable[DiscoveredWirelessDevice],
    paired: Iterable[PairedDevice],
    emulators: Iterable[str],
    policy: RegistryPolicy,
) -> list[UnifiedDeviceEntry]:
    """合并所有数据源（纯函数，相同输入总是得到相同输出）"""
    entries: list[UnifiedDeviceEntry] = []

    entries.extend(connected_entry(d) for d in connected)
    entries.extend(emulator_entry(name) for name in emulators)

    if policy.auto_discover_usb:
        entries.extend(usb_entry(d) for d in usb if not d.is_connected)

    # 已配对设备由用户维护，不受发现开关影响
    entries.extend(paired_entry(d) for d in paired)

    if policy.show_unpaired_devices:
        entries.extend(wireless_entry(d) for d in wireless if not d.is_paired)

    seen: set[str] = set()
    unique: list[UnifiedDeviceEntry] = []
    for entry in entries:
        if entry.id in seen:
            continue
        seen.add(entry.id)
        unique.append(entry)

    return sorted(unique, key=sort_key)


def order_connected(devices: Iterable[ConnectedDevice]) -> list[ConnectedDevice]:
    """已连接设备按统一列表中的顺序排列"""
    return sorted(devices, key=lambda d: sort_key(connected_entry(d)))
