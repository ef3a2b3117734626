"""Runtime settings for Device Hub."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DEVICE_HUB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 持久化配置
    data_dir: Path = Field(default=Path(".device_hub"), description="数据目录")
    settings_file: str = Field(default="settings.yaml", description="用户设置文件名")
    paired_devices_file: str = Field(
        default="paired-devices.json",
        description="已配对设备文件名",
    )

    # ADB 配置
    adb_host: str = Field(default="127.0.0.1", description="ADB server 地址")
    adb_port: int = Field(default=5037, description="ADB server 端口")

    # 连接配置
    emulator_boot_grace: float = Field(
        default=3.0,
        description="启动模拟器后延迟刷新已连接设备的时间（秒）",
    )
    pairing_session_ttl: float = Field(default=120.0, description="二维码配对会话有效期（秒）")
    qr_poll_interval: float = Field(default=1.0, description="二维码配对时无线发现的轮询间隔（秒）")

    # 日志配置
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_file: Path | None = Field(
        default=None,
        description="日志文件路径",
    )

    @property
    def settings_path(self) -> Path:
        return self.data_dir / self.settings_file

    @property
    def paired_devices_path(self) -> Path:
        return self.data_dir / self.paired_devices_file


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
