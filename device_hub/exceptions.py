"""Typed exception hierarchy for Device Hub."""

from __future__ import annotations

from pathlib import Path


class DeviceHubError(Exception):
    """所有 Device Hub 错误的基类"""

    pass


class BackendError(DeviceHubError):
    """后端命令执行失败（adb / emulator）"""

    pass


class NoDeviceError(BackendError):
    """当前没有任何已连接设备"""

    pass


class DiscoveryError(DeviceHubError):
    """数据源轮询失败"""

    def __init__(self, source: str, cause: BaseException | None = None):
        self.source = source
        self.cause = cause
        message = f"设备源刷新失败: {source}"
        if cause is not None:
            message += f" ({cause})"
        super().__init__(message)


class DeviceConnectionError(DeviceHubError):
    """连接 / 配对 / 启动模拟器失败"""

    pass


class InvalidPairingRequest(DeviceConnectionError):
    """配对参数不合法"""

    pass


class PairingSessionExpired(DeviceConnectionError):
    """二维码配对会话已过期"""

    pass


class PersistenceError(DeviceHubError):
    """持久化写入失败，内存状态未改变"""

    def __init__(self, path: Path, cause: BaseException | None = None):
        self.path = path
        self.cause = cause
        message = f"保存失败: {path}"
        if cause is not None:
            message += f" ({cause})"
        super().__init__(message)


class UnknownCategoryError(DeviceHubError, KeyError):
    """未知的设置分类"""

    def __init__(self, category: str):
        self.category = category
        super().__init__(f"未知的设置分类: {category}")

    def __str__(self) -> str:
        return self.args[0]
