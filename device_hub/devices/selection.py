"""Single selected-device state with auto-selection rules."""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from .models import ConnectedDevice

logger = logging.getLogger(__name__)

SelectionListener = Callable[[ConnectedDevice | None], None]


class SelectionController:
    """当前选中设备

    规则（按优先级）：
    1. 已选中的设备只要仍在已连接列表中就不会被替换
    2. 没有选中设备且已连接列表非空时，选中排序后的第一个
    3. 新连接的设备只在当时没有选中设备时才被选中
    4. 选中设备断开后按规则 2 重新选择，列表为空则清空
    """

    def __init__(self) -> None:
        self._selected: ConnectedDevice | None = None
        self._connected: list[ConnectedDevice] = []
        self._listeners: list[SelectionListener] = []

    @property
    def selected(self) -> ConnectedDevice | None:
        return self._selected

    def select(self, serial: str) -> bool:
        """用户显式选择设备；设备必须已连接"""
        for device in self._connected:
            if device.serial_no == serial:
                self._set(device)
                return True
        return False

    def offer(self, device: ConnectedDevice) -> bool:
        """新连接的设备，当前没有选中设备时才选中它"""
        if all(d.serial_no != device.serial_no for d in self._connected):
            self._connected = self._connected + [device]
        if self._selected is not None:
            return False
        self._set(device)
        return True

    def reconcile(self, connected: Sequence[ConnectedDevice]) -> ConnectedDevice | None:
        """已连接列表（按统一列表顺序）变化后重新应用规则"""
        self._connected = list(connected)

        if self._selected is not None:
            for device in self._connected:
                if device.serial_no == self._selected.serial_no:
                    # 同一设备，记录可能已更新
                    if device != self._selected:
                        self._set(device)
                    return self._selected
            logger.info("选中设备已断开: %s", self._selected.serial_no)

        self._set(self._connected[0] if self._connected else None)
        return self._selected

    def clear(self) -> None:
        self._set(None)

    def subscribe(self, listener: SelectionListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _set(self, device: ConnectedDevice | None) -> None:
        if device == self._selected:
            return
        self._selected = device
        for listener in list(self._listeners):
            listener(device)
