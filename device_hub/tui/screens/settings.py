"""Settings screen for editing persisted settings categories."""

from __future__ import annotations

from typing import Any

from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, VerticalScroll
from textual.screen import Screen
from textual.widgets import (
    Button,
    Footer,
    Header,
    Input,
    Static,
    Switch,
    TabbedContent,
    TabPane,
)

from device_hub.config import ConfigStore
from device_hub.config.app_settings import CATEGORIES
from device_hub.exceptions import PersistenceError

# 界面中可编辑的分类
EDITABLE_CATEGORIES = {
    "devices": "📱 设备",
    "android-sdk": "🤖 Android SDK",
    "appearance": "🎨 外观",
}


def _widget_id(category: str, alias: str) -> str:
    return f"setting-{category}-{alias}"


class SettingsScreen(Screen):
    """设置界面（全屏）"""

    BINDINGS = [
        Binding("escape", "go_back", "返回"),
        Binding("ctrl+s", "save_all", "保存"),
    ]

    CSS = """
    SettingsScreen {
        layout: vertical;
    }

    #settings-main {
        width: 100%;
        height: 1fr;
        padding: 1 2;
    }

    .form-row {
        height: auto;
        min-height: 3;
        margin-bottom: 1;
        width: 100%;
    }

    .form-label {
        width: 36;
        height: 3;
        content-align: left middle;
    }

    .form-input {
        width: 1fr;
        height: auto;
    }

    .form-error {
        color: $error;
        height: auto;
    }

    #action-bar {
        height: 4;
        dock: bottom;
        background: $surface;
        border-top: solid $primary;
        padding: 1 2;
        width: 100%;
    }

    #action-bar Button {
        margin-right: 2;
    }
    """

    def __init__(self, config_store: ConfigStore) -> None:
        super().__init__()
        self.config_store = config_store

    def compose(self) -> ComposeResult:
        yield Header()

        with Container(id="settings-main"):
            with TabbedContent():
                for category, title in EDITABLE_CATEGORIES.items():
                    with TabPane(title, id=f"tab-{category}"):
                        with VerticalScroll():
                            yield from self._category_form(category)

        with Horizontal(id="action-bar"):
            yield Button("💾 保存", id="btn-save", variant="primary")
            yield Button("↩️ 恢复默认", id="btn-reset", variant="warning")
            yield Button("返回", id="btn-back", variant="default")

        yield Footer()

    def _category_form(self, category: str) -> ComposeResult:
        current = self.config_store.get_category(category)
        values = current.model_dump(by_alias=True)

        for name, field in type(current).model_fields.items():
            alias = field.alias or name
            value = values[alias]
            widget_id = _widget_id(category, alias)

            with Horizontal(classes="form-row"):
                yield Static(f"{field.description or alias}:", classes="form-label")
                if isinstance(value, bool):
                    yield Switch(value=value, id=widget_id)
                else:
                    yield Input(value=str(value), id=widget_id, classes="form-input")
            yield Static("", id=f"{widget_id}-error", classes="form-error")

    def _collect(self, category: str) -> dict[str, Any]:
        _, model = CATEGORIES[category]
        updates: dict[str, Any] = {}
        for name, field in model.model_fields.items():
            alias = field.alias or name
            widget = self.query_one(f"#{_widget_id(category, alias)}")
            if isinstance(widget, Switch):
                updates[alias] = widget.value
            elif isinstance(widget, Input):
                updates[alias] = widget.value.strip()
        return updates

    def _show_errors(self, category: str) -> None:
        _, model = CATEGORIES[category]
        for name, field in model.model_fields.items():
            alias = field.alias or name
            message = self.config_store.field_error(category, alias)
            self.query_one(f"#{_widget_id(category, alias)}-error", Static).update(message or "")

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        """按钮点击事件"""
        if event.button.id == "btn-save":
            await self._save_all()
        elif event.button.id == "btn-reset":
            await self._reset()
        elif event.button.id == "btn-back":
            self.app.pop_screen()

    async def _save_all(self) -> None:
        """逐个分类保存，互不影响"""
        failed = []
        for category in EDITABLE_CATEGORIES:
            try:
                result = await self.config_store.update_category(category, self._collect(category))
            except PersistenceError as e:
                self.notify(f"保存失败: {e}", severity="error")
                return
            self._show_errors(category)
            if not result.success:
                failed.append(EDITABLE_CATEGORIES[category])

        if failed:
            self.notify(f"以下分类校验失败: {', '.join(failed)}", severity="warning")
        else:
            self.notify("设置已保存", severity="information")

    async def _reset(self) -> None:
        try:
            await self.config_store.reset_to_defaults()
        except PersistenceError as e:
            self.notify(f"重置失败: {e}", severity="error")
            return
        self.app.pop_screen()
        self.notify("已恢复默认设置", severity="information")

    def action_go_back(self) -> None:
        """返回主界面"""
        self.app.pop_screen()

    async def action_save_all(self) -> None:
        """保存所有配置"""
        await self._save_all()
