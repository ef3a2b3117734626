"""Logging setup for Device Hub."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rich.logging import RichHandler

if TYPE_CHECKING:
    from device_hub.config import Settings

LOGGER_NAME = "device_hub"
FILE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def setup_logging(settings: Settings, console: bool = True) -> logging.Logger:
    """配置 device_hub 日志：终端使用 rich 输出，可选写入文件"""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(settings.log_level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if console:
        logger.addHandler(RichHandler(rich_tracebacks=True, show_path=False))

    if settings.log_file is not None:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(settings.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    logger.propagate = False
    return logger
