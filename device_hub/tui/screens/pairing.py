"""Pairing-code dialog."""

from __future__ import annotations

from typing import NamedTuple

from pydantic import ValidationError
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Static

from device_hub.devices.models import PairingRequest


class PairingInput(NamedTuple):
    ip: str
    port: int
    code: str
    display_name: str | None


class PairingScreen(ModalScreen[PairingInput | None]):
    """配对码配对对话框"""

    BINDINGS = [
        Binding("escape", "cancel", "取消"),
    ]

    CSS = """
    PairingScreen {
        align: center middle;
    }

    #pairing-dialog {
        width: 60;
        height: auto;
        border: thick $primary;
        background: $surface;
        padding: 1 2;
    }

    .form-row {
        height: auto;
        margin-bottom: 1;
    }

    .form-label {
        width: 12;
        height: 3;
        content-align: left middle;
    }

    .form-input {
        width: 1fr;
    }

    #pairing-error {
        color: $error;
        height: auto;
    }
    """

    def __init__(self, ip: str = "", port: int | None = None, name: str | None = None) -> None:
        super().__init__()
        self._ip = ip
        self._port = port
        self._name = name

    def compose(self) -> ComposeResult:
        with Vertical(id="pairing-dialog"):
            yield Static("在手机「无线调试 → 使用配对码配对」中查看以下信息：")

            with Horizontal(classes="form-row"):
                yield Static("IP 地址:", classes="form-label")
                yield Input(value=self._ip, placeholder="192.168.1.10", id="input-ip", classes="form-input")

            with Horizontal(classes="form-row"):
                yield Static("端口:", classes="form-label")
                yield Input(
                    value=str(self._port) if self._port else "",
                    placeholder="37123",
                    id="input-port",
                    classes="form-input",
                )

            with Horizontal(classes="form-row"):
                yield Static("配对码:", classes="form-label")
                yield Input(placeholder="6 位数字", max_length=6, id="input-code", classes="form-input")

            with Horizontal(classes="form-row"):
                yield Static("名称:", classes="form-label")
                yield Input(value=self._name or "", placeholder="可选", id="input-name", classes="form-input")

            yield Static("", id="pairing-error")

            with Horizontal():
                yield Button("配对", id="pair-btn", variant="primary")
                yield Button("取消", id="cancel-btn", variant="default")

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "pair-btn":
            self._submit()
        elif event.button.id == "cancel-btn":
            self.action_cancel()

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        self._submit()

    def _submit(self) -> None:
        error = self.query_one("#pairing-error", Static)
        port = self.query_one("#input-port", Input).value.strip()
        values = {
            "ip": self.query_one("#input-ip", Input).value.strip(),
            "port": port if port.isdigit() else 0,
            "code": self.query_one("#input-code", Input).value.strip(),
            "display_name": self.query_one("#input-name", Input).value.strip() or None,
        }

        try:
            request = PairingRequest.model_validate(values)
        except ValidationError as e:
            first = e.errors()[0]
            error.update(f"{first['loc'][0]}: {first['msg']}")
            return

        self.dismiss(PairingInput(str(request.ip), request.port, request.code, request.display_name))

    def action_cancel(self) -> None:
        self.dismiss(None)
