"""Abstract base class for device backends."""

from __future__ import annotations

from abc import ABC, abstractmethod

from device_hub.devices.models import (
    ConnectedDevice,
    DiscoveredUsbDevice,
    DiscoveredWirelessDevice,
    PairingData,
    TcpConnection,
    UsbConnection,
)


class DeviceBackend(ABC):
    """设备后端抽象基类

    负责 USB 枚举、ADB 通信、mDNS 发现与配对握手。失败时抛出 BackendError。
    所有方法均为协程，不得阻塞事件循环。
    """

    @abstractmethod
    async def get_connected_device_info(self) -> ConnectedDevice:
        """探测当前活动会话的设备；没有设备时抛出 NoDeviceError"""
        pass

    @abstractmethod
    async def list_usb_discovered_devices(self) -> list[DiscoveredUsbDevice]:
        """枚举 USB 设备"""
        pass

    @abstractmethod
    async def list_wireless_discovered_devices(self) -> list[DiscoveredWirelessDevice]:
        """mDNS 发现无线设备（每次返回完整快照）"""
        pass

    @abstractmethod
    async def list_emulator_images(self) -> list[str]:
        """列出可用的模拟器镜像"""
        pass

    @abstractmethod
    async def connect_to_usb_device(
        self, method: UsbConnection | TcpConnection
    ) -> ConnectedDevice:
        """连接已发现的设备"""
        pass

    @abstractmethod
    async def connect_wireless_device(self, ip: str, port: int) -> ConnectedDevice:
        """通过 ip:port 连接无线设备"""
        pass

    @abstractmethod
    async def pair_wireless_device(self, ip: str, port: int, code: str) -> ConnectedDevice:
        """配对并连接无线设备"""
        pass

    @abstractmethod
    async def get_pairing_qr_payload(self) -> PairingData:
        """生成二维码配对数据"""
        pass

    @abstractmethod
    async def launch_emulator_image(self, name: str) -> None:
        """启动模拟器（不等待启动完成）"""
        pass

    async def disconnect_device(self, serial: str) -> None:
        """断开设备会话；默认无操作"""
        return None
