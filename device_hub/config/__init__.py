"""Configuration module for Device Hub."""

from .settings import Settings, get_settings
from .app_settings import (
    AndroidSdkSettings,
    AppSettings,
    AppearanceSettings,
    DeviceSettings,
    FileSettings,
    LogcatSettings,
)
from .store import ConfigStore, FieldError, UpdateResult

__all__ = [
    "Settings",
    "get_settings",
    "AppSettings",
    "AppearanceSettings",
    "AndroidSdkSettings",
    "DeviceSettings",
    "FileSettings",
    "LogcatSettings",
    "ConfigStore",
    "FieldError",
    "UpdateResult",
]
