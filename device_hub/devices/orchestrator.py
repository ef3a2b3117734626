"""Connect, pair and launch operations plus startup auto-reconnect."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable, TypeVar

from pydantic import ValidationError

from device_hub.exceptions import (
    BackendError,
    DeviceConnectionError,
    DiscoveryError,
    InvalidPairingRequest,
    PairingSessionExpired,
    PersistenceError,
)

from .models import (
    ConnectedDevice,
    DiscoveredUsbDevice,
    PairedDevice,
    PairingMethod,
    PairingRequest,
    PairingSession,
    TcpConnection,
    UsbConnection,
)
from .registry import order_connected

if TYPE_CHECKING:
    from device_hub.adb.backend import DeviceBackend
    from device_hub.config.app_settings import DeviceSettings
    from device_hub.config.store import ConfigStore

    from .paired_store import PairedDeviceStore
    from .pollers import ConnectedDevicePoller
    from .selection import SelectionController

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AttemptState(str, Enum):
    """单个目标的连接状态"""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


AttemptListener = Callable[[str, AttemptState, "BaseException | None"], None]


def method_identity(method: UsbConnection | TcpConnection) -> str:
    if isinstance(method, UsbConnection):
        return f"usb:{method.serial_number}"
    if isinstance(method, TcpConnection):
        return f"tcp:{method.socket_address}"
    raise TypeError(f"未知的连接方式: {method!r}")


def tcp_identity(ip: str, port: int) -> str:
    return f"tcp:{ip}:{port}"


class ConnectionOrchestrator:
    """连接编排器

    不同目标的操作可以并发；同一目标（序列号 / 地址 / 镜像名）的操作串行执行。
    """

    def __init__(
        self,
        backend: DeviceBackend,
        config_store: ConfigStore,
        paired_store: PairedDeviceStore,
        connected: ConnectedDevicePoller,
        selection: SelectionController,
        *,
        emulator_boot_grace: float = 3.0,
        pairing_session_ttl: float = 120.0,
        qr_poll_interval: float = 1.0,
    ) -> None:
        self.backend = backend
        self.config_store = config_store
        self.paired_store = paired_store
        self.connected = connected
        self.selection = selection
        self.emulator_boot_grace = emulator_boot_grace
        self.pairing_session_ttl = pairing_session_ttl
        self.qr_poll_interval = qr_poll_interval

        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._states: dict[str, AttemptState] = {}
        self._listeners: list[AttemptListener] = []
        self._pending: set[asyncio.Task[None]] = set()
        self._auto_reconnect_attempted = False

    @property
    def device_settings(self) -> DeviceSettings:
        return self.config_store.get_category("devices")  # type: ignore[return-value]

    @property
    def auto_reconnect_attempted(self) -> bool:
        return self._auto_reconnect_attempted

    def state_of(self, identity: str) -> AttemptState:
        return self._states.get(identity, AttemptState.IDLE)

    # 连接操作

    async def connect_usb(self, device: DiscoveredUsbDevice) -> ConnectedDevice:
        """连接 USB 枚举发现的设备"""
        method = device.connection_method
        async with self._attempt(method_identity(method)):
            connected = await self._call(self.backend.connect_to_usb_device(method))
            self._register(connected)
        logger.info("已连接 USB 设备: %s", connected.serial_no)
        return connected

    async def connect_wireless(self, ip: str, port: int) -> ConnectedDevice:
        """通过 ip:port 连接无线设备"""
        async with self._attempt(tcp_identity(ip, port)):
            connected = await self._call(self.backend.connect_wireless_device(ip, port))
            self._register(connected)
        logger.info("已连接无线设备: %s", connected.serial_no)

        paired = self.paired_store.find_by_address(ip, port)
        if paired is not None:
            try:
                await self.paired_store.touch(paired.id)
            except PersistenceError as e:
                # 连接本身已成功，只是最近连接时间没能保存
                logger.warning("更新最近连接时间失败: %s", e)
        return connected

    async def pair_wireless(
        self,
        ip: str,
        port: int,
        code: str,
        display_name: str | None = None,
    ) -> ConnectedDevice:
        """使用 6 位配对码配对并连接"""
        try:
            request = PairingRequest(ip=ip, port=port, code=code.strip(), display_name=display_name)
        except ValidationError as e:
            raise InvalidPairingRequest(f"配对参数无效: {e}") from e

        return await self._pair(
            str(request.ip), request.port, request.code, request.display_name, "pairing-code"
        )

    async def launch_emulator(self, name: str) -> None:
        """启动模拟器，并在宽限期后刷新一次已连接设备"""
        async with self._attempt(f"emulator:{name}", settled=AttemptState.IDLE):
            await self._call(self.backend.launch_emulator_image(name))
        logger.info("正在启动模拟器: %s", name)

        task = asyncio.create_task(self._refresh_connected_later(self.emulator_boot_grace))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def disconnect(self, serial: str) -> bool:
        """显式断开设备"""
        device = self.connected.get(serial)
        if device is None:
            return False

        try:
            await self.backend.disconnect_device(serial)
        except (BackendError, OSError) as e:
            logger.warning("断开设备失败，仍从列表中移除: %s", e)

        self.connected.remove(serial)
        for identity in (f"usb:{serial}", f"tcp:{serial}"):
            self._states.pop(identity, None)
        self.selection.reconcile(order_connected(self.connected.current_snapshot()))
        logger.info("已断开设备: %s", serial)
        return True

    async def forget_paired(self, device_id: str) -> bool:
        """忘记已配对设备"""
        return await self.paired_store.remove(device_id)

    # 二维码配对

    async def create_pairing_session(self) -> PairingSession:
        """生成二维码配对会话"""
        data = await self._call(self.backend.get_pairing_qr_payload())
        loop = asyncio.get_running_loop()
        return PairingSession(data=data, expires_at=loop.time() + self.pairing_session_ttl)

    async def complete_qr_pairing(
        self,
        session: PairingSession,
        display_name: str | None = None,
    ) -> ConnectedDevice:
        """等待手机扫码后广播配对服务，然后用会话密码完成配对"""
        loop = asyncio.get_running_loop()
        service_name = session.data.service_name

        while loop.time() < session.expires_at:
            try:
                devices = await self.backend.list_wireless_discovered_devices()
            except (BackendError, OSError) as e:
                logger.debug("二维码配对时无线发现失败: %s", e)
                devices = []

            for device in devices:
                if device.name == service_name and device.ipv4_address:
                    return await self._pair(
                        device.ipv4_address,
                        device.port,
                        session.data.password,
                        display_name,
                        "qr-code",
                    )

            remaining = session.expires_at - loop.time()
            await asyncio.sleep(max(0.0, min(self.qr_poll_interval, remaining)))

        raise PairingSessionExpired("二维码配对会话已过期")

    # 启动时自动重连

    async def auto_reconnect(
        self, paired_devices: list[PairedDevice] | None = None
    ) -> ConnectedDevice | None:
        """启动时重连最近使用的已配对设备；整个进程只执行一次，失败不抛出"""
        if self._auto_reconnect_attempted:
            return None
        self._auto_reconnect_attempted = True

        if not self.device_settings.auto_reconnect_paired:
            return None

        candidates = self.paired_store.list() if paired_devices is None else paired_devices
        if not candidates:
            return None

        if self.selection.selected is not None:
            logger.debug("已有选中设备，跳过自动重连")
            return None

        target = max(candidates, key=lambda d: (d.last_connected, d.id))
        logger.info("尝试自动重连: %s (%s:%d)", target.name, target.ip, target.port)
        try:
            return await self.connect_wireless(target.ip, target.port)
        except Exception as e:
            logger.info("自动重连失败: %s", e)
            return None

    # 生命周期

    async def aclose(self) -> None:
        """取消尚未执行的延迟刷新"""
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def subscribe(self, listener: AttemptListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    # 内部方法

    async def _pair(
        self,
        ip: str,
        port: int,
        code: str,
        display_name: str | None,
        method: PairingMethod,
    ) -> ConnectedDevice:
        async with self._attempt(tcp_identity(ip, port)):
            connected = await self._call(self.backend.pair_wireless_device(ip, port, code))
            self._register(connected)
        logger.info("配对成功: %s:%d -> %s", ip, port, connected.serial_no)

        name = display_name or connected.model or f"{ip}:{port}"
        await self.paired_store.upsert_by_address(ip, port, name, method)
        return connected

    def _register(self, device: ConnectedDevice) -> None:
        self.connected.add(device)
        self.selection.offer(device)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        """调用后端，超时与后端错误统一转换为 DeviceConnectionError"""
        timeout = self.device_settings.connection_timeout / 1000
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise DeviceConnectionError(f"操作超时（{timeout:g} 秒）") from e
        except (BackendError, OSError) as e:
            raise DeviceConnectionError(str(e)) from e

    @contextlib.asynccontextmanager
    async def _attempt(
        self,
        identity: str,
        settled: AttemptState = AttemptState.CONNECTED,
    ) -> AsyncIterator[None]:
        lock = self._locks.setdefault(identity, asyncio.Lock())
        self._lock_users[identity] = self._lock_users.get(identity, 0) + 1
        try:
            async with lock:
                self._set_state(identity, AttemptState.CONNECTING)
                try:
                    yield
                except asyncio.CancelledError:
                    self._set_state(identity, AttemptState.IDLE)
                    raise
                except Exception as e:
                    self._set_state(identity, AttemptState.FAILED, e)
                    self._set_state(identity, AttemptState.IDLE)
                    logger.warning("操作失败 %s: %s", identity, e)
                    raise
                self._set_state(identity, settled)
        finally:
            # 没有其他等待者时释放该目标的锁
            self._lock_users[identity] -= 1
            if not self._lock_users[identity]:
                del self._lock_users[identity]
                del self._locks[identity]

    def _set_state(
        self,
        identity: str,
        state: AttemptState,
        error: BaseException | None = None,
    ) -> None:
        if state == AttemptState.IDLE:
            self._states.pop(identity, None)
        else:
            self._states[identity] = state
        for listener in list(self._listeners):
            listener(identity, state, error)

    async def _refresh_connected_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.connected.refresh()
        except DiscoveryError:
            # 模拟器可能还没启动完成，等待下一次常规轮询
            pass
