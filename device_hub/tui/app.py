"""Textual TUI application for Device Hub."""

from __future__ import annotations

import logging

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.widgets import Footer, Header, Label, ListItem, ListView, RichLog, Static

from device_hub.adb import AdbBackend
from device_hub.config import ConfigStore, Settings, get_settings
from device_hub.devices import (
    AttemptState,
    ConnectedDevice,
    DeviceCategory,
    DeviceHub,
    PairedDeviceStore,
    UnifiedDeviceEntry,
)
from device_hub.exceptions import DeviceHubError
from device_hub.log import setup_logging

logger = logging.getLogger(__name__)

CATEGORY_ICONS = {
    DeviceCategory.CONNECTED: "🟢",
    DeviceCategory.USB: "🔌",
    DeviceCategory.WIRELESS: "📶",
    DeviceCategory.PAIRED: "🔗",
    DeviceCategory.EMULATOR: "💻",
}


class EntryListItem(ListItem):
    """设备列表项"""

    def __init__(self, entry: UnifiedDeviceEntry, selected: bool = False) -> None:
        super().__init__()
        self.entry = entry
        self.selected = selected

    def compose(self) -> ComposeResult:
        marker = "▶ " if self.selected else "  "
        icon = CATEGORY_ICONS[self.entry.category]
        yield Label(f"{marker}{icon} {self.entry.display_name}  [dim]{self.entry.subtitle}[/dim]")


def build_hub(settings: Settings) -> DeviceHub:
    """按运行时配置组装设备中心"""
    config_store = ConfigStore(settings.settings_path)
    paired_store = PairedDeviceStore(settings.paired_devices_path)
    backend = AdbBackend(
        host=settings.adb_host,
        port=settings.adb_port,
        sdk_path=lambda: config_store.get_category("android-sdk").sdk_path,
    )
    return DeviceHub(backend, config_store, paired_store, settings)


class DeviceHubApp(App):
    """Device Hub TUI 应用"""

    TITLE = "Android Device Hub"
    SUB_TITLE = "Connect, Pair & Launch"
    CSS = """
    Screen {
        layout: grid;
        grid-size: 2;
        grid-columns: 1fr 1fr;
    }

    #sidebar {
        width: 100%;
        height: 100%;
        border: solid green;
    }

    #device-list {
        height: 1fr;
    }

    #log-panel {
        height: 1fr;
        border: solid cyan;
    }

    .section-title {
        background: $primary;
        color: $text;
        padding: 0 1;
        text-style: bold;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "退出"),
        Binding("r", "refresh_devices", "刷新"),
        Binding("d", "disconnect", "断开"),
        Binding("f", "forget", "忘记"),
        Binding("p", "pair_code", "配对码配对"),
        Binding("c", "pair_qr", "扫码配对"),
        Binding("s", "open_settings", "设置"),
        Binding("ctrl+c", "quit", "退出"),
    ]

    def __init__(self, hub: DeviceHub | None = None) -> None:
        super().__init__()
        self.settings = get_settings()
        self.hub = hub or build_hub(self.settings)
        self._entries: list[UnifiedDeviceEntry] = []
        self._selected: ConnectedDevice | None = None

    def compose(self) -> ComposeResult:
        yield Header()

        with Container(id="sidebar"):
            yield Static("📱 设备列表", classes="section-title")
            yield ListView(id="device-list")

        with Container(id="main-panel"):
            yield Static("📋 日志", classes="section-title")
            yield RichLog(id="log-panel", highlight=True, markup=True, wrap=True)

        yield Footer()

    async def on_mount(self) -> None:
        """应用启动时"""
        self.hub.subscribe(self._on_hub_update)
        self.hub.orchestrator.subscribe(self._on_attempt)
        self._log("[green]Device Hub 启动成功![/green]")
        self.run_worker(self._start_hub(), exclusive=True, name="hub_start")

    async def on_unmount(self) -> None:
        await self.hub.stop()

    async def _start_hub(self) -> None:
        try:
            await self.hub.start()
        except DeviceHubError as e:
            self._log(f"[red]启动失败: {e}[/red]")
            return
        errors = [p.last_error for p in self.hub.pollers if p.last_error]
        for error in errors:
            self._log(f"[yellow]{error}[/yellow]")
        self._log(f"[blue]发现 {len(self._entries)} 个设备条目[/blue]")

    # 列表

    def _on_hub_update(
        self, entries: list[UnifiedDeviceEntry], selected: ConnectedDevice | None
    ) -> None:
        if selected != self._selected:
            name = (selected.model or selected.serial_no) if selected else "无"
            self._log(f"[green]当前设备: {name}[/green]")
        self._entries = entries
        self._selected = selected

        device_list = self.query_one("#device-list", ListView)
        index = device_list.index
        device_list.clear()
        for entry in entries:
            is_selected = (
                selected is not None
                and entry.category == DeviceCategory.CONNECTED
                and entry.source_data.serial_no == selected.serial_no
            )
            device_list.append(EntryListItem(entry, is_selected))
        if index is not None and entries:
            device_list.index = min(index, len(entries) - 1)

    def _on_attempt(self, identity: str, state: AttemptState, error: BaseException | None) -> None:
        if state == AttemptState.CONNECTING:
            self._log(f"[blue]⏳ {identity}[/blue]")
        elif state == AttemptState.FAILED:
            self._log(f"[red]❌ {identity}: {error}[/red]")

    def _highlighted(self) -> UnifiedDeviceEntry | None:
        item = self.query_one("#device-list", ListView).highlighted_child
        return item.entry if isinstance(item, EntryListItem) else None

    async def on_list_view_selected(self, event: ListView.Selected) -> None:
        """条目选择事件：按类型执行对应操作"""
        if not isinstance(event.item, EntryListItem):
            return
        self.run_worker(self._activate(event.item.entry), name="entry_action")

    async def _activate(self, entry: UnifiedDeviceEntry) -> None:
        orchestrator = self.hub.orchestrator
        data = entry.source_data
        try:
            if entry.category == DeviceCategory.CONNECTED:
                if self.hub.selection.select(data.serial_no):
                    self.hub.recompute()
            elif entry.category == DeviceCategory.USB:
                await orchestrator.connect_usb(data)
            elif entry.category == DeviceCategory.PAIRED:
                await orchestrator.connect_wireless(data.ip, data.port)
            elif entry.category == DeviceCategory.WIRELESS:
                if data.ipv4_address is None:
                    self._log("[yellow]该设备没有可用的 IPv4 地址[/yellow]")
                    return
                self._open_pairing(data.ipv4_address, data.port, data.name)
            elif entry.category == DeviceCategory.EMULATOR:
                await orchestrator.launch_emulator(data)
                self._log(f"[blue]正在启动模拟器 {data}...[/blue]")
        except DeviceHubError as e:
            self._log(f"[red]操作失败: {e}[/red]")

    # 动作

    async def action_refresh_devices(self) -> None:
        """刷新所有数据源"""
        self._log("[blue]正在扫描设备...[/blue]")
        errors = await self.hub.refresh_all()
        for error in errors:
            self._log(f"[yellow]{error}[/yellow]")

    async def action_disconnect(self) -> None:
        entry = self._highlighted()
        target = entry.source_data if entry and entry.category == DeviceCategory.CONNECTED else self._selected
        if target is None:
            self._log("[yellow]没有可断开的设备[/yellow]")
            return
        await self.hub.orchestrator.disconnect(target.serial_no)

    async def action_forget(self) -> None:
        entry = self._highlighted()
        if entry is None or entry.category != DeviceCategory.PAIRED:
            self._log("[yellow]请先选中一个已配对设备[/yellow]")
            return
        try:
            await self.hub.orchestrator.forget_paired(entry.source_data.id)
        except DeviceHubError as e:
            self._log(f"[red]忘记设备失败: {e}[/red]")
            return
        self._log(f"[green]已忘记 {entry.display_name}[/green]")

    def action_pair_code(self) -> None:
        self._open_pairing()

    async def action_pair_qr(self) -> None:
        try:
            session = await self.hub.orchestrator.create_pairing_session()
        except DeviceHubError as e:
            self._log(f"[red]生成二维码失败: {e}[/red]")
            return
        self._log("[cyan]请在手机「无线调试 → 使用二维码配对」中扫描以下内容:[/cyan]")
        self._log(session.qr_payload)
        self.run_worker(self._complete_qr(session), exclusive=True, name="qr_pairing")

    async def _complete_qr(self, session) -> None:
        try:
            device = await self.hub.orchestrator.complete_qr_pairing(session)
        except DeviceHubError as e:
            self._log(f"[red]扫码配对失败: {e}[/red]")
            return
        self._log(f"[green]配对成功: {device.model or device.serial_no}[/green]")

    def action_open_settings(self) -> None:
        """打开设置界面"""
        from device_hub.tui.screens.settings import SettingsScreen

        self.push_screen(SettingsScreen(self.hub.config_store))

    def _open_pairing(self, ip: str = "", port: int | None = None, name: str | None = None) -> None:
        from device_hub.tui.screens.pairing import PairingScreen, PairingInput

        def on_result(result: PairingInput | None) -> None:
            if result is not None:
                self.run_worker(self._pair(result), name="pairing")

        self.push_screen(PairingScreen(ip, port, name), on_result)

    async def _pair(self, request) -> None:
        try:
            device = await self.hub.orchestrator.pair_wireless(
                request.ip, request.port, request.code, request.display_name
            )
        except DeviceHubError as e:
            self._log(f"[red]配对失败: {e}[/red]")
            return
        self._log(f"[green]配对成功: {device.model or device.serial_no}[/green]")

    def _log(self, message: str) -> None:
        self.query_one("#log-panel", RichLog).write(message)


def main() -> None:
    """TUI 入口点"""
    from dotenv import load_dotenv

    # 加载环境变量
    load_dotenv()

    settings = get_settings()
    # TUI 占用终端，日志只写文件
    setup_logging(settings, console=False)

    app = DeviceHubApp()
    app.run()


if __name__ == "__main__":
    main()
