"""User-facing settings categories, validated independently."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CategoryModel(BaseModel):
    """设置分类基类（持久化使用 camelCase 字段名）"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class AppearanceSettings(CategoryModel):
    """外观设置"""

    theme: Literal["light", "dark", "system"] = Field(default="system", description="主题")


class AndroidSdkSettings(CategoryModel):
    """Android SDK 设置"""

    sdk_path: str = Field(default="", description="SDK 路径（为空时自动查找）")
    avd_refresh_interval: int = Field(
        default=30, ge=10, le=300, description="模拟器列表刷新间隔（秒）"
    )


class DeviceSettings(CategoryModel):
    """设备发现与连接设置"""

    polling_interval: int = Field(default=3, ge=1, le=10, description="设备轮询间隔（秒）")
    auto_refresh: bool = Field(default=True, description="是否后台自动刷新")
    connection_timeout: int = Field(
        default=5000, ge=1000, le=30000, description="连接超时（毫秒）"
    )
    auto_reconnect_paired: bool = Field(default=False, description="启动时自动重连已配对设备")
    auto_discover_usb: bool = Field(
        default=True, alias="autoDiscoverUSB", description="自动发现 USB 设备"
    )
    auto_discover_wireless: bool = Field(default=False, description="自动发现无线设备")
    wireless_discovery_interval: int = Field(
        default=30, ge=10, le=300, description="无线发现间隔（秒）"
    )
    show_unpaired_devices: bool = Field(default=True, description="显示未配对的无线设备")


class FileSettings(CategoryModel):
    """文件浏览设置"""

    download_path: str = Field(default="", description="下载目录")
    show_hidden: bool = Field(default=False, description="显示隐藏文件")
    transfer_chunk_size: int = Field(
        default=1024, ge=512, le=10240, description="传输块大小（KB）"
    )


class LogcatSettings(CategoryModel):
    """Logcat 设置"""

    default_level: Literal["verbose", "debug", "info", "warn", "error", "fatal"] = Field(
        default="info", description="默认日志级别"
    )
    buffer_size: int = Field(default=1000, ge=100, le=10000, description="缓冲行数")
    auto_scroll: bool = Field(default=True, description="自动滚动")


class AppSettings(BaseModel):
    """全部设置（按分类组织）"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    appearance: AppearanceSettings = Field(default_factory=AppearanceSettings)
    android_sdk: AndroidSdkSettings = Field(
        default_factory=AndroidSdkSettings, alias="android-sdk"
    )
    devices: DeviceSettings = Field(default_factory=DeviceSettings)
    files: FileSettings = Field(default_factory=FileSettings)
    logcat: LogcatSettings = Field(default_factory=LogcatSettings)


# 分类名 -> (AppSettings 属性名, 模型)
CATEGORIES: dict[str, tuple[str, type[CategoryModel]]] = {
    "appearance": ("appearance", AppearanceSettings),
    "android-sdk": ("android_sdk", AndroidSdkSettings),
    "devices": ("devices", DeviceSettings),
    "files": ("files", FileSettings),
    "logcat": ("logcat", LogcatSettings),
}
