"""File helpers shared by the persisted stores."""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path


def read_document(path: Path) -> str | None:
    """读取文档，不存在时返回 None"""
    if not path.exists():
        return None
    return path.read_text(encoding="utf-8")


def write_atomic(path: Path, content: str) -> None:
    """原子写入：先写临时文件再替换，避免写到一半崩溃留下损坏文件"""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


async def read_document_async(path: Path) -> str | None:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, read_document, path)


async def write_atomic_async(path: Path, content: str) -> None:
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, write_atomic, path, content)
