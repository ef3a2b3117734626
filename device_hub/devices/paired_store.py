"""Persisted set of trusted wireless devices, keyed by address."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from device_hub.exceptions import PersistenceError
from device_hub.storage import read_document_async, write_atomic_async

from .models import PairedDevice, PairingMethod

logger = logging.getLogger(__name__)

PairedListener = Callable[[list[PairedDevice]], None]


def now_ms() -> int:
    return int(time.time() * 1000)


class PairedDeviceStore:
    """已配对设备存储

    每个 (ip, port) 最多一条记录。所有修改先持久化成功，再替换内存中的列表。
    """

    def __init__(self, path: Path, clock: Callable[[], int] = now_ms) -> None:
        self.path = Path(path)
        self._clock = clock
        self._devices: list[PairedDevice] = []
        self._lock = asyncio.Lock()
        self._listeners: list[PairedListener] = []

    async def load(self) -> None:
        """加载已配对设备；文件缺失或损坏时为空列表"""
        try:
            raw = await read_document_async(self.path)
        except OSError as e:
            logger.warning("读取已配对设备失败: %s", e)
            self._devices = []
            return

        if raw is None:
            self._devices = []
            return

        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning("已配对设备文件无效，忽略: %s", e)
            self._devices = []
            return

        records = data.get("devices") if isinstance(data, dict) else None
        if not isinstance(records, list):
            logger.warning("已配对设备文件格式错误，忽略")
            self._devices = []
            return

        by_address: dict[tuple[str, int], PairedDevice] = {}
        for record in records:
            try:
                device = PairedDevice.model_validate(record)
            except ValidationError as e:
                logger.warning("跳过无效的已配对设备记录: %s", e)
                continue
            # 同一地址出现多次时保留最近使用的一条
            existing = by_address.get(device.address)
            if existing is None or device.last_connected > existing.last_connected:
                by_address[device.address] = device

        self._devices = list(by_address.values())

    def list(self) -> list[PairedDevice]:
        return [d.model_copy() for d in self._devices]

    def get(self, device_id: str) -> PairedDevice | None:
        for device in self._devices:
            if device.id == device_id:
                return device.model_copy()
        return None

    def find_by_address(self, ip: str, port: int) -> PairedDevice | None:
        for device in self._devices:
            if device.ip == ip and device.port == port:
                return device.model_copy()
        return None

    async def upsert_by_address(
        self,
        ip: str,
        port: int,
        name: str,
        method: PairingMethod,
    ) -> PairedDevice:
        """按地址新增或更新记录"""
        async with self._lock:
            now = self._clock()
            devices = list(self._devices)

            for index, device in enumerate(devices):
                if device.ip == ip and device.port == port:
                    updated = device.model_copy(
                        update={"name": name, "pairing_method": method, "last_connected": now}
                    )
                    devices[index] = updated
                    break
            else:
                updated = PairedDevice(
                    id=str(uuid.uuid4()),
                    name=name,
                    ip=ip,
                    port=port,
                    last_connected=now,
                    pairing_method=method,
                )
                devices.append(updated)

            await self._commit(devices)

        self._notify()
        return updated.model_copy()

    async def touch(self, device_id: str) -> bool:
        """更新最近连接时间"""
        async with self._lock:
            devices = list(self._devices)
            for index, device in enumerate(devices):
                if device.id == device_id:
                    devices[index] = device.model_copy(update={"last_connected": self._clock()})
                    break
            else:
                return False

            await self._commit(devices)

        self._notify()
        return True

    async def remove(self, device_id: str) -> bool:
        """删除记录（忘记设备）"""
        async with self._lock:
            devices = [d for d in self._devices if d.id != device_id]
            if len(devices) == len(self._devices):
                return False

            await self._commit(devices)

        self._notify()
        return True

    def subscribe(self, listener: PairedListener) -> Callable[[], None]:
        """订阅变化，返回取消订阅函数"""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    async def _commit(self, devices: list[PairedDevice]) -> None:
        content = json.dumps(
            {"devices": [d.model_dump(by_alias=True, mode="json") for d in devices]},
            ensure_ascii=False,
            indent=2,
        )
        try:
            await write_atomic_async(self.path, content)
        except OSError as e:
            logger.error("保存已配对设备失败: %s", e)
            raise PersistenceError(self.path, e) from e
        self._devices = devices

    def _notify(self) -> None:
        snapshot = self.list()
        for listener in list(self._listeners):
            listener(snapshot)
