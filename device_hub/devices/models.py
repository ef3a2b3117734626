"""Device data models shared by sources, registry and orchestrator."""

from __future__ import annotations

import ipaddress
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, IPvAnyAddress, field_validator
from pydantic.alias_generators import to_camel


class Transport(str, Enum):
    """设备连接方式"""

    USB = "USB"
    TCP = "TCP"


class ConnectedDevice(BaseModel):
    """已连接设备"""

    transport: Transport
    serial_no: str = Field(description="序列号；无线设备为 ip:port")
    model: str = Field(default="", description="设备型号")
    android_version: str = Field(default="", description="Android 版本")
    sdk_version: str = Field(default="", description="API 级别")


class UsbConnection(BaseModel):
    """USB 连接描述"""

    kind: Literal["usb"] = "usb"
    serial_number: str


class TcpConnection(BaseModel):
    """TCP 连接描述"""

    kind: Literal["tcp"] = "tcp"
    socket_address: str


ConnectionMethod = Annotated[Union[UsbConnection, TcpConnection], Field(discriminator="kind")]


def connection_identity(method: UsbConnection | TcpConnection) -> str:
    """连接描述对应的唯一标识"""
    if isinstance(method, UsbConnection):
        return method.serial_number
    if isinstance(method, TcpConnection):
        return method.socket_address
    raise TypeError(f"未知的连接方式: {method!r}")


class DiscoveredUsbDevice(BaseModel):
    """USB 枚举发现的设备"""

    connection_method: ConnectionMethod
    model: str | None = None
    android_version: str | None = None
    sdk_version: str | None = None
    is_connected: bool = False

    @property
    def identity(self) -> str:
        return connection_identity(self.connection_method)

    @property
    def is_usb(self) -> bool:
        return isinstance(self.connection_method, UsbConnection)


class DiscoveredWirelessDevice(BaseModel):
    """mDNS 发现的无线设备"""

    name: str
    fullname: str
    addresses: list[str] = Field(default_factory=list)
    port: int
    is_paired: bool = False
    is_connected: bool = False

    @property
    def ipv4_address(self) -> str | None:
        """第一个 IPv4 地址（IPv6 地址包含冒号，不用于连接）"""
        for address in self.addresses:
            try:
                if ipaddress.ip_address(address).version == 4:
                    return address
            except ValueError:
                continue
        return None

    @property
    def address_key(self) -> tuple[str, int] | None:
        """设备等价键 (ip, port)；name / fullname 仅用于显示"""
        ip = self.ipv4_address
        return (ip, self.port) if ip else None


PairingMethod = Literal["qr-code", "pairing-code"]


class PairedDevice(BaseModel):
    """已配对的无线设备（持久化使用 camelCase 字段名）"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    ip: str
    port: int = Field(ge=1, le=65535)
    last_connected: int = Field(description="最近连接时间（毫秒时间戳）")
    pairing_method: PairingMethod

    @property
    def address(self) -> tuple[str, int]:
        return self.ip, self.port


class DeviceCategory(str, Enum):
    """统一列表中的条目类型"""

    CONNECTED = "connected"
    USB = "usb"
    WIRELESS = "wireless"
    PAIRED = "paired"
    EMULATOR = "emulator"


class UnifiedDeviceEntry(BaseModel):
    """统一设备列表中的一行"""

    model_config = ConfigDict(frozen=True)

    id: str
    category: DeviceCategory
    display_name: str
    subtitle: str
    is_connected: bool
    source_data: Any = None


class PairingRequest(BaseModel):
    """配对码配对请求"""

    ip: IPvAnyAddress
    port: int = Field(ge=1, le=65535)
    code: str = Field(min_length=6, max_length=6)
    display_name: str | None = None

    @field_validator("ip")
    @classmethod
    def _ipv4_only(cls, value: Any) -> Any:
        if value.version != 4:
            raise ValueError("只支持 IPv4 地址")
        return value

    @field_validator("code")
    @classmethod
    def _digits_only(cls, value: str) -> str:
        if not value.isdigit():
            raise ValueError("配对码必须是 6 位数字")
        return value


class PairingData(BaseModel):
    """后端生成的二维码配对数据"""

    ip: str
    port: int
    service_name: str
    password: str
    qr_payload: str


class PairingSession(BaseModel):
    """二维码配对会话"""

    data: PairingData
    expires_at: float = Field(description="过期时间（event loop 时钟）")

    @property
    def qr_payload(self) -> str:
        return self.data.qr_payload
