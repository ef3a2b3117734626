"""Device backend built on adbutils and the adb / emulator command-line tools."""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import secrets
import socket
import string
import sys
from pathlib import Path
from typing import Callable, TypeVar

import adbutils
from adbutils import AdbClient, AdbDevice, AdbError

from device_hub.devices.models import (
    ConnectedDevice,
    DiscoveredUsbDevice,
    DiscoveredWirelessDevice,
    PairingData,
    TcpConnection,
    Transport,
    UsbConnection,
)
from device_hub.exceptions import BackendError, NoDeviceError

from .backend import DeviceBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

PAIRING_SERVICE = "_adb-tls-pairing._tcp"
CONNECT_SERVICE = "_adb-tls-connect._tcp"
DEFAULT_CONNECT_PORT = 5555

SdkPathProvider = Callable[[], "str | None"]


def parse_props(output: str) -> dict[str, str]:
    """解析 getprop 输出"""
    result: dict[str, str] = {}
    for line in output.split("\n"):
        line = line.strip()
        if line.startswith("[") and "]: [" in line:
            # [key]: [value]
            key_end = line.index("]: [")
            key = line[1:key_end]
            value = line[key_end + 4 : -1]
            result[key] = value
    return result


def parse_mdns_services(output: str) -> list[tuple[str, str, str, int]]:
    """解析 `adb mdns services` 输出，返回 (实例名, 服务类型, ip, 端口)"""
    services: list[tuple[str, str, str, int]] = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 3 or not parts[1].startswith("_adb"):
            continue
        name, service, address = parts[0], parts[1].rstrip("."), parts[-1]
        host, sep, port = address.rpartition(":")
        if not sep or not port.isdigit():
            continue
        services.append((name, service, host, int(port)))
    return services


def get_android_home(sdk_path: str | None = None) -> Path | None:
    """定位 Android SDK：设置项、ANDROID_HOME、常见安装位置"""
    candidates: list[Path] = []
    if sdk_path:
        candidates.append(Path(sdk_path).expanduser())
    for env in ("ANDROID_HOME", "ANDROID_SDK_ROOT"):
        if value := os.environ.get(env):
            candidates.append(Path(value))

    home = Path.home()
    candidates += [
        home / "Library/Android/sdk",
        home / "Android/Sdk",
        Path("/usr/local/android-sdk"),
    ]

    for path in candidates:
        if path.exists():
            return path
    return None


def local_ip() -> str:
    """本机局域网地址（UDP connect 不会真正发包）"""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        try:
            sock.connect(("10.255.255.255", 1))
            return sock.getsockname()[0]
        except OSError:
            return "127.0.0.1"


class AdbBackend(DeviceBackend):
    """ADB 设备后端

    adbutils 的调用是阻塞的，统一放到默认线程池执行；
    mDNS 与配对通过 adb 命令行完成。
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 5037,
        sdk_path: SdkPathProvider | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self._sdk_path = sdk_path or (lambda: None)
        self._client: AdbClient | None = None
        # 通过本后端建立了会话的序列号
        self._sessions: set[str] = set()

    @property
    def client(self) -> AdbClient:
        """获取 ADB 客户端"""
        if self._client is None:
            self._client = AdbClient(host=self.host, port=self.port)
        return self._client

    # 设备信息

    async def get_connected_device_info(self) -> ConnectedDevice:
        devices = await self._run(self.client.device_list)
        if not devices:
            raise NoDeviceError("未检测到已连接设备")

        # 优先返回已建立会话的设备
        devices.sort(key=lambda d: (d.serial not in self._sessions, d.serial))
        return await self._run(self._device_info, devices[0])

    def _device_info(self, device: AdbDevice, serial: str | None = None) -> ConnectedDevice:
        try:
            props = parse_props(device.shell("getprop"))
        except AdbError as e:
            raise BackendError(f"读取设备属性失败 {device.serial}: {e}") from e

        serial = serial or device.serial
        return ConnectedDevice(
            transport=Transport.TCP if ":" in serial else Transport.USB,
            serial_no=serial,
            model=props.get("ro.product.model", ""),
            android_version=props.get("ro.build.version.release", ""),
            sdk_version=props.get("ro.build.version.sdk", ""),
        )

    # 发现

    async def list_usb_discovered_devices(self) -> list[DiscoveredUsbDevice]:
        devices = await self._run(self.client.device_list)
        result: list[DiscoveredUsbDevice] = []
        for device in devices:
            serial = device.serial
            if ":" in serial:
                method: UsbConnection | TcpConnection = TcpConnection(socket_address=serial)
            else:
                method = UsbConnection(serial_number=serial)

            try:
                props = parse_props(await self._run(device.shell, "getprop"))
            except AdbError as e:
                # 未授权的设备读不到属性，仍然列出
                logger.debug("读取设备属性失败 %s: %s", serial, e)
                props = {}

            result.append(
                DiscoveredUsbDevice(
                    connection_method=method,
                    model=props.get("ro.product.model"),
                    android_version=props.get("ro.build.version.release"),
                    sdk_version=props.get("ro.build.version.sdk"),
                    is_connected=serial in self._sessions,
                )
            )
        return result

    async def list_wireless_discovered_devices(self) -> list[DiscoveredWirelessDevice]:
        services = await self._mdns_services()
        serials = {d.serial for d in await self._run(self.client.device_list)}

        result: list[DiscoveredWirelessDevice] = []
        for name, service, ip, port in services:
            if service not in (PAIRING_SERVICE, CONNECT_SERVICE):
                continue
            result.append(
                DiscoveredWirelessDevice(
                    name=name,
                    fullname=f"{name}.{service}.local.",
                    addresses=[ip],
                    port=port,
                    # 只广播连接服务的设备已经配对过
                    is_paired=service == CONNECT_SERVICE,
                    is_connected=f"{ip}:{port}" in serials,
                )
            )
        return result

    async def list_emulator_images(self) -> list[str]:
        emulator = self._emulator_binary()
        if emulator is None:
            return []

        output = await self._exec(str(emulator), "-list-avds")
        return [line.strip() for line in output.splitlines() if line.strip()]

    # 连接

    async def connect_to_usb_device(
        self, method: UsbConnection | TcpConnection
    ) -> ConnectedDevice:
        if isinstance(method, UsbConnection):
            serial = method.serial_number
        elif isinstance(method, TcpConnection):
            serial = method.socket_address
            await self._adb_connect(serial)
        else:
            raise TypeError(f"未知的连接方式: {method!r}")

        device = self.client.device(serial=serial)
        info = await self._run(self._device_info, device)
        self._sessions.add(serial)
        return info

    async def connect_wireless_device(self, ip: str, port: int) -> ConnectedDevice:
        address = f"{ip}:{port}"
        try:
            await self._adb_connect(address)
        except BackendError:
            # 保存的可能是配对端口，改用设备广播的连接端口
            connect_port = await self._connection_port(ip)
            if connect_port == port:
                raise
            address = f"{ip}:{connect_port}"
            await self._adb_connect(address)

        info = await self._run(self._device_info, self.client.device(serial=address), address)
        self._sessions.add(address)
        return info

    async def pair_wireless_device(self, ip: str, port: int, code: str) -> ConnectedDevice:
        output = await self._exec(adbutils.adb_path(), "pair", f"{ip}:{port}", code)
        if "Successfully paired" not in output:
            raise BackendError(f"配对失败: {output.strip() or '无输出'}")
        logger.debug("adb pair: %s", output.strip())

        address = f"{ip}:{await self._connection_port(ip)}"
        await self._adb_connect(address)

        info = await self._run(self._device_info, self.client.device(serial=address), address)
        self._sessions.add(address)
        return info

    async def get_pairing_qr_payload(self) -> PairingData:
        service_name = f"studio-{secrets.token_hex(5)}"
        alphabet = string.ascii_letters + string.digits
        password = "".join(secrets.choice(alphabet) for _ in range(12))
        return PairingData(
            ip=local_ip(),
            port=self.port,
            service_name=service_name,
            password=password,
            qr_payload=f"WIFI:T:ADB;S:{service_name};P:{password};;",
        )

    async def launch_emulator_image(self, name: str) -> None:
        emulator = self._emulator_binary()
        if emulator is None:
            raise BackendError("未找到 Android SDK")

        try:
            await asyncio.create_subprocess_exec(
                str(emulator),
                "-avd",
                name,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise BackendError(f"启动模拟器失败: {e}") from e

    async def disconnect_device(self, serial: str) -> None:
        self._sessions.discard(serial)
        if ":" not in serial:
            return
        try:
            await self._run(self.client.disconnect, serial)
        except AdbError as e:
            raise BackendError(f"断开失败 {serial}: {e}") from e

    # 内部方法

    async def _run(self, func: Callable[..., T], *args: object) -> T:
        """在线程池中执行阻塞的 adbutils 调用"""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(func, *args))
        except AdbError as e:
            raise BackendError(str(e)) from e

    async def _exec(self, program: str, *args: str) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                program,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise BackendError(f"无法执行 {Path(program).name}: {e}") from e

        stdout, _ = await process.communicate()
        output = stdout.decode("utf-8", errors="replace")
        if process.returncode != 0:
            raise BackendError(f"{Path(program).name} 退出码 {process.returncode}: {output.strip()}")
        return output

    async def _adb_connect(self, address: str) -> None:
        output = await self._run(self.client.connect, address)
        if "connected to" not in output:
            raise BackendError(f"连接失败 {address}: {output.strip()}")

    async def _mdns_services(self) -> list[tuple[str, str, str, int]]:
        output = await self._exec(adbutils.adb_path(), "mdns", "services")
        return parse_mdns_services(output)

    async def _connection_port(self, ip: str) -> int:
        """设备广播的连接端口，找不到时使用默认端口"""
        try:
            services = await self._mdns_services()
        except BackendError as e:
            logger.debug("查询连接端口失败: %s", e)
            return DEFAULT_CONNECT_PORT

        for _, service, host, port in services:
            if service == CONNECT_SERVICE and host == ip:
                return port
        return DEFAULT_CONNECT_PORT

    def _emulator_binary(self) -> Path | None:
        android_home = get_android_home(self._sdk_path())
        if android_home is None:
            return None
        binary = "emulator.exe" if sys.platform == "win32" else "emulator"
        path = android_home / "emulator" / binary
        return path if path.exists() else None
