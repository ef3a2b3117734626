"""Independently scheduled device sources with cached snapshots."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Generic, TypeVar

from device_hub.exceptions import DiscoveryError, NoDeviceError

from .models import ConnectedDevice, DiscoveredUsbDevice, DiscoveredWirelessDevice, Transport

if TYPE_CHECKING:
    from device_hub.adb.backend import DeviceBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 全局递增序号，用于判断 USB 枚举与已连接记录的先后
_ticks = itertools.count(1)


@dataclass(frozen=True)
class PollPolicy:
    """轮询策略"""

    enabled: bool
    interval_seconds: float
    auto_refresh: bool = True

    @property
    def polls(self) -> bool:
        return self.enabled and self.auto_refresh


PolicyProvider = Callable[[], PollPolicy]
PollerListener = Callable[["SourcePoller", bool], None]


class SourcePoller(Generic[T]):
    """设备数据源

    current_snapshot() 返回最近一次的结果；refresh() 重新拉取，
    并发调用会共享同一个进行中的请求。
    """

    name = "source"
    # 失败时是否保留旧快照（已建立的状态保留，纯发现类数据源清空）
    keep_on_failure = False

    def __init__(self, backend: DeviceBackend, policy: PolicyProvider) -> None:
        self.backend = backend
        self._policy = policy
        self._snapshot: list[T] = []
        self._inflight: asyncio.Future[list[T]] | None = None
        self._task: asyncio.Task[None] | None = None
        self._wake = asyncio.Event()
        self._last_enabled: bool | None = None
        self._listeners: list[PollerListener] = []
        self.last_error: DiscoveryError | None = None

    @property
    def policy(self) -> PollPolicy:
        return self._policy()

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None

    def current_snapshot(self) -> list[T]:
        """最近一次快照；数据源禁用时视为空"""
        if not self.policy.enabled:
            return []
        return list(self._snapshot)

    async def refresh(self) -> list[T]:
        """拉取新快照；已有请求进行中时复用其结果"""
        if self._inflight is None:
            future = asyncio.ensure_future(self._run_refresh())
            self._inflight = future
            future.add_done_callback(self._clear_inflight)
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, future: asyncio.Future[list[T]]) -> None:
        if self._inflight is future:
            self._inflight = None

    async def _run_refresh(self) -> list[T]:
        try:
            result = await self.fetch()
        except Exception as e:
            error = DiscoveryError(self.name, e)
            self.last_error = error
            if not self.keep_on_failure:
                self._snapshot = []
            logger.warning("%s", error)
            self._notify(False)
            raise error from e

        self.last_error = None
        self._snapshot = self.apply(result)
        self._notify(True)
        return list(self._snapshot)

    async def fetch(self) -> list[T]:
        raise NotImplementedError

    def apply(self, result: list[T]) -> list[T]:
        """把拉取结果合并为新快照"""
        return list(result)

    # 后台轮询

    def start(self) -> None:
        if self._task is None:
            self._last_enabled = self.policy.polls
            self._task = asyncio.create_task(self._poll_loop(), name=f"poll-{self.name}")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def policy_changed(self) -> bool:
        """策略变化时调用；只有启用状态翻转才会重置计时。

        返回 True 表示后台轮询刚被重新启用。
        """
        polls = self.policy.polls
        resumed = False
        if polls != self._last_enabled:
            resumed = polls
            self._last_enabled = polls
            self._wake.set()
        # 禁用后快照视为空，通知下游重新计算
        self._notify(False)
        return resumed

    async def _poll_loop(self) -> None:
        while True:
            policy = self.policy
            if not policy.polls:
                await self._wake.wait()
                self._wake.clear()
                continue

            try:
                await asyncio.wait_for(self._wake.wait(), timeout=policy.interval_seconds)
            except asyncio.TimeoutError:
                pass
            else:
                # 被唤醒：重新读取策略，以新的间隔开始计时
                self._wake.clear()
                continue

            if self.in_flight:
                continue

            try:
                await self.refresh()
            except DiscoveryError:
                # 已在 _run_refresh 中记录
                pass
            except Exception:
                logger.exception("%s 轮询出错，继续下一轮", self.name)

    def subscribe(self, listener: PollerListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self, fetched: bool) -> None:
        """fetched 仅在成功拉取新快照后为 True"""
        for listener in list(self._listeners):
            listener(self, fetched)


class ConnectedDevicePoller(SourcePoller[ConnectedDevice]):
    """已连接设备：探测活动会话并按序列号合并"""

    name = "connected"
    keep_on_failure = True

    def __init__(self, backend: DeviceBackend, policy: PolicyProvider) -> None:
        super().__init__(backend, policy)
        # 序列号 -> 首次加入时的序号
        self._added: dict[str, int] = {}

    async def fetch(self) -> list[ConnectedDevice]:
        try:
            return [await self.backend.get_connected_device_info()]
        except NoDeviceError as e:
            # 没有设备不算失败，保留已有记录
            logger.debug("%s", e)
            return []

    def apply(self, result: list[ConnectedDevice]) -> list[ConnectedDevice]:
        devices = list(self._snapshot)
        for device in result:
            devices = self._upsert(devices, device)
        return devices

    def add(self, device: ConnectedDevice) -> None:
        """新增或替换同序列号的记录"""
        self._snapshot = self._upsert(self._snapshot, device)
        self._notify(False)

    def remove(self, serial: str) -> bool:
        """显式移除（无线设备只能通过这里移除）"""
        devices = [d for d in self._snapshot if d.serial_no != serial]
        if len(devices) == len(self._snapshot):
            return False
        self._snapshot = devices
        self._added.pop(serial, None)
        self._notify(False)
        return True

    def prune_usb(self, present_serials: set[str], since: int | None = None) -> list[str]:
        """移除不在最新 USB 枚举中的 USB 设备，返回被移除的序列号

        since 为该次枚举开始时的序号；在它之后才加入的记录不会被移除。
        """
        removed = [
            d.serial_no
            for d in self._snapshot
            if d.transport == Transport.USB
            and d.serial_no not in present_serials
            and (since is None or self._added.get(d.serial_no, 0) < since)
        ]
        if removed:
            self._snapshot = [d for d in self._snapshot if d.serial_no not in removed]
            for serial in removed:
                self._added.pop(serial, None)
            logger.info("USB 设备已拔出: %s", ", ".join(removed))
            self._notify(False)
        return removed

    def get(self, serial: str) -> ConnectedDevice | None:
        for device in self._snapshot:
            if device.serial_no == serial:
                return device
        return None

    def _upsert(self, devices: list[ConnectedDevice], device: ConnectedDevice) -> list[ConnectedDevice]:
        self._added.setdefault(device.serial_no, next(_ticks))
        for index, existing in enumerate(devices):
            if existing.serial_no == device.serial_no:
                return devices[:index] + [device] + devices[index + 1 :]
        return devices + [device]


class UsbDevicePoller(SourcePoller[DiscoveredUsbDevice]):
    """USB 枚举"""

    name = "usb"

    def __init__(self, backend: DeviceBackend, policy: PolicyProvider) -> None:
        super().__init__(backend, policy)
        self._fetch_tick = 0
        # 当前快照对应的枚举开始序号
        self.snapshot_tick = 0

    async def fetch(self) -> list[DiscoveredUsbDevice]:
        self._fetch_tick = next(_ticks)
        devices = await self.backend.list_usb_discovered_devices()
        return [d for d in devices if d.is_usb]

    def apply(self, result: list[DiscoveredUsbDevice]) -> list[DiscoveredUsbDevice]:
        self.snapshot_tick = self._fetch_tick
        return list(result)


class WirelessDevicePoller(SourcePoller[DiscoveredWirelessDevice]):
    """无线发现"""

    name = "wireless"

    async def fetch(self) -> list[DiscoveredWirelessDevice]:
        return await self.backend.list_wireless_discovered_devices()


class EmulatorPoller(SourcePoller[str]):
    """模拟器镜像列表"""

    name = "emulator"

    async def fetch(self) -> list[str]:
        return await self.backend.list_emulator_images()
