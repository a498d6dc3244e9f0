"""
临时资源管理 - 每次上传一个独立临时目录

职责：
1. create: 写入上传内容并返回资源句柄
2. acquire: 异步上下文管理器，任何退出路径（成功/异常/超时取消）都释放资源
3. release: 幂等，删除失败只记录日志不抛出
4. sweep: 清理超过保留期的残留目录

测试要点：
- test_acquire_releases_on_success
- test_acquire_releases_on_error
- test_acquire_cancelled_while_writing: 写入期间被取消也会删除
- test_release_idempotent
- test_sweep_stale_dirs
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import AsyncIterator

from ..config import RuntimeConfig

logger = logging.getLogger(__name__)


@dataclass
class TempResource:
    """临时资源句柄"""
    resource_id: str
    directory: Path
    path: Path
    released: bool = False

    @property
    def work_dir(self) -> Path:
        """转换等中间文件目录（与资源同生命周期）"""
        return self.directory / "work"


class TempResourceManager:
    """临时资源管理器"""

    def __init__(self, root: Path):
        self.root = root

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> TempResourceManager:
        return cls(config.lifecycle.temp_dir)

    def reserve(self, extension: str) -> TempResource:
        """分配资源路径（不触及文件系统）"""
        resource_id = str(uuid.uuid4())
        directory = self.root / resource_id
        return TempResource(
            resource_id=resource_id,
            directory=directory,
            path=directory / f"{resource_id}.{extension}",
        )

    def create(self, data: bytes, extension: str) -> TempResource:
        """写入上传内容"""
        resource = self.reserve(extension)
        self._write(resource, data)
        return resource

    def _write(self, resource: TempResource, data: bytes) -> None:
        resource.directory.mkdir(parents=True, exist_ok=False)
        resource.path.write_bytes(data)
        logger.debug(f"已创建临时资源: {resource.path} ({len(data)} bytes)")

    def release(self, resource: TempResource) -> None:
        """删除临时资源（幂等，失败只记录日志）"""
        if resource.released:
            return
        resource.released = True
        try:
            shutil.rmtree(resource.directory)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"删除临时资源失败: {resource.directory}: {e}")
            return
        logger.debug(f"已删除临时资源: {resource.directory}")

    @asynccontextmanager
    async def acquire(self, data: bytes, extension: str) -> AsyncIterator[TempResource]:
        resource = self.reserve(extension)
        write = asyncio.ensure_future(asyncio.to_thread(self._write, resource, data))
        try:
            await asyncio.shield(write)
            yield resource
        finally:
            if not write.done():
                # 写入线程无法中断，等待其结束后再删除
                await asyncio.wait([write])
            self.release(resource)

    def sweep(self, max_age: timedelta) -> int:
        """清理超过保留期的临时目录"""
        if not self.root.exists():
            return 0

        cutoff = time.time() - max_age.total_seconds()
        removed = 0
        for directory in self.root.iterdir():
            if not directory.is_dir():
                continue
            try:
                if directory.stat().st_mtime >= cutoff:
                    continue
                shutil.rmtree(directory)
                removed += 1
            except OSError as e:
                logger.warning(f"清理临时目录失败: {directory}: {e}")

        if removed:
            logger.info(f"已清理过期临时目录: {removed}")
        return removed
