"""Shared fixtures: a scriptable in-memory backend and wired-up stores."""

from __future__ import annotations

import asyncio
from collections import Counter

import pytest

from device_hub.adb.backend import DeviceBackend
from device_hub.config import ConfigStore, Settings
from device_hub.devices import (
    ConnectedDevice,
    DeviceHub,
    DiscoveredUsbDevice,
    DiscoveredWirelessDevice,
    PairedDeviceStore,
    PairingData,
    TcpConnection,
    Transport,
    UsbConnection,
)
from device_hub.exceptions import BackendError, NoDeviceError


class FakeBackend(DeviceBackend):
    """可编排的内存后端

    - fail: 调用时抛出 BackendError 的方法名
    - raises: 调用时抛出指定异常的方法名
    - gates: 方法在对应 Event 被 set 之前阻塞
    - calls: 按顺序记录所有调用
    """

    def __init__(self) -> None:
        self.connected_info: ConnectedDevice | None = None
        self.usb_devices: list[DiscoveredUsbDevice] = []
        self.wireless_devices: list[DiscoveredWirelessDevice] = []
        self.emulator_images: list[str] = []
        self.models: dict[str, str] = {}
        self.fail: set[str] = set()
        self.raises: dict[str, BaseException] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple] = []
        self.pairing_data = PairingData(
            ip="192.168.1.2",
            port=5037,
            service_name="studio-test",
            password="secret",
            qr_payload="WIFI:T:ADB;S:studio-test;P:secret;;",
        )

    def count(self, name: str) -> int:
        return Counter(call[0] for call in self.calls)[name]

    async def _enter(self, name: str, *args: object) -> None:
        self.calls.append((name, *args))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        if name in self.raises:
            raise self.raises[name]
        if name in self.fail:
            raise BackendError(f"{name} failed")

    def _tcp_device(self, ip: str, port: int) -> ConnectedDevice:
        serial = f"{ip}:{port}"
        return ConnectedDevice(
            transport=Transport.TCP,
            serial_no=serial,
            model=self.models.get(serial, "Pixel 8"),
            android_version="14",
            sdk_version="34",
        )

    async def get_connected_device_info(self) -> ConnectedDevice:
        await self._enter("get_connected_device_info")
        if self.connected_info is None:
            raise NoDeviceError("no device")
        return self.connected_info

    async def list_usb_discovered_devices(self) -> list[DiscoveredUsbDevice]:
        await self._enter("list_usb_discovered_devices")
        return list(self.usb_devices)

    async def list_wireless_discovered_devices(self) -> list[DiscoveredWirelessDevice]:
        await self._enter("list_wireless_discovered_devices")
        return list(self.wireless_devices)

    async def list_emulator_images(self) -> list[str]:
        await self._enter("list_emulator_images")
        return list(self.emulator_images)

    async def connect_to_usb_device(
        self, method: UsbConnection | TcpConnection
    ) -> ConnectedDevice:
        await self._enter("connect_to_usb_device", method)
        serial = method.serial_number if isinstance(method, UsbConnection) else method.socket_address
        model = None
        for index, device in enumerate(self.usb_devices):
            if device.identity == serial:
                model = device.model
                self.usb_devices[index] = device.model_copy(update={"is_connected": True})
        return ConnectedDevice(
            transport=Transport.USB,
            serial_no=serial,
            model=model or "",
            android_version="13",
            sdk_version="33",
        )

    async def connect_wireless_device(self, ip: str, port: int) -> ConnectedDevice:
        await self._enter("connect_wireless_device", ip, port)
        return self._tcp_device(ip, port)

    async def pair_wireless_device(self, ip: str, port: int, code: str) -> ConnectedDevice:
        await self._enter("pair_wireless_device", ip, port, code)
        return self._tcp_device(ip, port)

    async def get_pairing_qr_payload(self) -> PairingData:
        await self._enter("get_pairing_qr_payload")
        return self.pairing_data

    async def launch_emulator_image(self, name: str) -> None:
        await self._enter("launch_emulator_image", name)

    async def disconnect_device(self, serial: str) -> None:
        await self._enter("disconnect_device", serial)


class FakeClock:
    """毫秒时钟，每次读取前可手动推进"""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1000) -> int:
        self.now += ms
        return self.now


def usb_device(serial: str, model: str | None = "Pixel 7", **kwargs) -> DiscoveredUsbDevice:
    return DiscoveredUsbDevice(
        connection_method=UsbConnection(serial_number=serial),
        model=model,
        **kwargs,
    )


def wireless_device(
    name: str, ip: str = "192.168.1.20", port: int = 37000, **kwargs
) -> DiscoveredWirelessDevice:
    return DiscoveredWirelessDevice(
        name=name,
        fullname=f"{name}._adb-tls-pairing._tcp.local.",
        addresses=[ip],
        port=port,
        **kwargs,
    )


def connected_device(
    serial: str, model: str = "", transport: Transport = Transport.USB
) -> ConnectedDevice:
    return ConnectedDevice(
        transport=transport,
        serial_no=serial,
        model=model,
        android_version="14",
        sdk_version="34",
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=tmp_path,
        emulator_boot_grace=0.01,
        pairing_session_ttl=0.2,
        qr_poll_interval=0.01,
    )


@pytest.fixture
def config_store(settings) -> ConfigStore:
    return ConfigStore(settings.settings_path)


@pytest.fixture
def paired_store(settings, clock) -> PairedDeviceStore:
    return PairedDeviceStore(settings.paired_devices_path, clock=clock)


@pytest.fixture
async def hub(backend, config_store, paired_store, settings):
    hub = DeviceHub(backend, config_store, paired_store, settings)
    yield hub
    await hub.stop()
    await hub.orchestrator.aclose()
