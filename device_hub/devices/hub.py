"""Reconciliation loop tying sources, stores, registry and selection together."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Callable

from device_hub.exceptions import DiscoveryError

from .models import ConnectedDevice, DeviceCategory, UnifiedDeviceEntry
from .orchestrator import ConnectionOrchestrator
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

if TYPE_CHECKING:
    from device_hub.adb.backend import DeviceBackend
    from device_hub.config.app_settings import AndroidSdkSettings, DeviceSettings
    from device_hub.config.settings import Settings
    from device_hub.config.store import ConfigStore

    from .paired_store import PairedDeviceStore

logger = logging.getLogger(__name__)

HubListener = Callable[[list[UnifiedDeviceEntry], "ConnectedDevice | None"], None]


class DeviceHub:
    """设备中心

    所有上游变化（数据源快照、设置、已配对设备、已连接设备）只设置一个脏标记，
    由单个协调任务统一重新计算统一列表与选中设备。
    """

    def __init__(
        self,
        backend: DeviceBackend,
        config_store: ConfigStore,
        paired_store: PairedDeviceStore,
        settings: Settings | None = None,
    ) -> None:
        self.backend = backend
        self.config_store = config_store
        self.paired_store = paired_store

        self.connected = ConnectedDevicePoller(backend, self._connected_policy)
        self.usb = UsbDevicePoller(backend, self._usb_policy)
        self.wireless = WirelessDevicePoller(backend, self._wireless_policy)
        self.emulators = EmulatorPoller(backend, self._emulator_policy)

        self.selection = SelectionController()
        options = {}
        if settings is not None:
            options = {
                "emulator_boot_grace": settings.emulator_boot_grace,
                "pairing_session_ttl": settings.pairing_session_ttl,
                "qr_poll_interval": settings.qr_poll_interval,
            }
        self.orchestrator = ConnectionOrchestrator(
            backend,
            config_store,
            paired_store,
            self.connected,
            self.selection,
            **options,
        )

        self._entries: list[UnifiedDeviceEntry] = []
        self._listeners: list[HubListener] = []
        self._unsubscribers: list[Callable[[], None]] = []
        self._dirty = asyncio.Event()
        self._reconcile_task: asyncio.Task[None] | None = None
        self._resume_tasks: set[asyncio.Task[None]] = set()
        self._usb_fetched = False
        self._started = False

    @property
    def pollers(self) -> list[SourcePoller]:
        return [self.connected, self.usb, self.wireless, self.emulators]

    @property
    def entries(self) -> list[UnifiedDeviceEntry]:
        return list(self._entries)

    @property
    def selected(self) -> ConnectedDevice | None:
        return self.selection.selected

    # 生命周期

    async def start(self) -> None:
        """加载存储、首次刷新、启动后台轮询，然后尝试一次自动重连"""
        if self._started:
            return
        self._started = True

        await self.config_store.load()
        await self.paired_store.load()

        for poller in self.pollers:
            self._unsubscribers.append(poller.subscribe(self._on_source_update))
        self._unsubscribers.append(self.config_store.subscribe(self._on_settings_changed))
        self._unsubscribers.append(self.paired_store.subscribe(lambda _: self._mark_dirty()))

        errors = await self.refresh_all()
        if errors:
            logger.info("首次刷新有 %d 个数据源失败", len(errors))
        self.recompute()

        for poller in self.pollers:
            poller.start()
        self._reconcile_task = asyncio.create_task(self._reconcile_loop(), name="device-hub-reconcile")

        await self.orchestrator.auto_reconnect()
        self.recompute()
        logger.info("设备中心已启动")

    async def stop(self) -> None:
        """停止所有后台任务"""
        if not self._started:
            return
        self._started = False

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        for poller in self.pollers:
            await poller.stop()
        await self.orchestrator.aclose()
        pending = list(self._resume_tasks)
        for resume in pending:
            resume.cancel()
        for resume in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await resume

        task, self._reconcile_task = self._reconcile_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.info("设备中心已停止")

    async def __aenter__(self) -> DeviceHub:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # 刷新

    async def refresh_all(self) -> list[DiscoveryError]:
        """并发刷新所有已启用的数据源，返回失败列表（不抛出）"""
        pollers = [p for p in self.pollers if p.policy.enabled]
        results = await asyncio.gather(*(p.refresh() for p in pollers), return_exceptions=True)

        errors: list[DiscoveryError] = []
        for result in results:
            if isinstance(result, DiscoveryError):
                errors.append(result)
            elif isinstance(result, BaseException):
                raise result
        return errors

    # 协调

    def recompute(self) -> list[UnifiedDeviceEntry]:
        """重新计算统一列表与选中设备，并通知订阅者"""
        self._dirty.clear()

        if self._usb_fetched:
            self._usb_fetched = False
            if self.usb.policy.enabled:
                present = {d.identity for d in self.usb.current_snapshot()}
                self.connected.prune_usb(present, since=self.usb.snapshot_tick)
                self._dirty.clear()

        devices: DeviceSettings = self.config_store.get_category("devices")  # type: ignore[assignment]
        entries = unify(
            self.connected.current_snapshot(),
            self.usb.current_snapshot(),
            self.wireless.current_snapshot(),
            self.paired_store.list(),
            self.emulators.current_snapshot(),
            RegistryPolicy.from_settings(devices),
        )
        self._entries = entries

        connected = [e.source_data for e in entries if e.category == DeviceCategory.CONNECTED]
        selected = self.selection.reconcile(connected)

        for listener in list(self._listeners):
            listener(list(entries), selected)
        return entries

    def subscribe(self, listener: HubListener) -> Callable[[], None]:
        """订阅统一列表变化"""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    async def _reconcile_loop(self) -> None:
        while True:
            await self._dirty.wait()
            # 让同一轮中的多次变化合并为一次重新计算
            await asyncio.sleep(0)
            self.recompute()

    def _mark_dirty(self) -> None:
        self._dirty.set()

    def _on_source_update(self, poller: SourcePoller, fetched: bool) -> None:
        if poller is self.usb and fetched:
            self._usb_fetched = True
        self._mark_dirty()

    def _on_settings_changed(self, category: str) -> None:
        if category in ("devices", "android-sdk"):
            for poller in self.pollers:
                if poller.policy_changed() and self._started:
                    # 重新启用的数据源立即刷新一次
                    task = asyncio.create_task(self._refresh_quietly(poller))
                    self._resume_tasks.add(task)
                    task.add_done_callback(self._resume_tasks.discard)
        self._mark_dirty()

    async def _refresh_quietly(self, poller: SourcePoller) -> None:
        try:
            await poller.refresh()
        except DiscoveryError:
            # 已在数据源中记录
            pass

    # 策略（实时读取设置）

    def _devices(self) -> DeviceSettings:
        return self.config_store.get_category("devices")  # type: ignore[return-value]

    def _android_sdk(self) -> AndroidSdkSettings:
        return self.config_store.get_category("android-sdk")  # type: ignore[return-value]

    def _connected_policy(self) -> PollPolicy:
        devices = self._devices()
        return PollPolicy(True, devices.polling_interval, devices.auto_refresh)

    def _usb_policy(self) -> PollPolicy:
        devices = self._devices()
        return PollPolicy(devices.auto_discover_usb, devices.polling_interval, devices.auto_refresh)

    def _wireless_policy(self) -> PollPolicy:
        devices = self._devices()
        return PollPolicy(devices.auto_discover_wireless, devices.wireless_discovery_interval)

    def _emulator_policy(self) -> PollPolicy:
        return PollPolicy(True, self._android_sdk().avd_refresh_interval)
