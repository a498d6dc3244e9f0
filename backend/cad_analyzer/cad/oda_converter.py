"""
ODA 转换器 - 本地 ODA File Converter（DWG→DXF）

职责：
- 以子进程调用 ODA File Converter 执行格式转换
- 超时后终止子进程（任务取消时同样终止）
- 返回转换后的 DXF 字节，中间文件留在调用方的临时目录中

依赖：
- ODA File Converter 可执行文件（路径由运行期配置 oda.exe_path 指定）

测试要点：
- test_missing_exe: 可执行文件不存在 → ConversionError
- test_dwg_not_found: 输入文件不存在
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from ..config import RuntimeConfig
from ..interfaces import ConversionError, IDWGConverter

logger = logging.getLogger(__name__)


class ODAConverter(IDWGConverter):
    """ODA File Converter 封装"""

    def __init__(self, exe_path: str | Path, timeout: float = 600):
        self.exe_path = Path(exe_path)
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: RuntimeConfig) -> ODAConverter:
        return cls(config.oda.exe_path, timeout=config.oda.timeout_sec)

    def _ensure_exe(self) -> None:
        if not str(self.exe_path) or not self.exe_path.exists():
            raise ConversionError(f"ODA可执行文件不存在: {self.exe_path}")

    async def dwg_to_dxf(self, dwg_path: Path, output_dir: Path) -> bytes:
        """DWG 转 DXF"""
        if not dwg_path.exists():
            raise ConversionError(f"DWG文件不存在: {dwg_path}")

        self._ensure_exe()
        output_dir.mkdir(parents=True, exist_ok=True)

        cmd = [
            str(self.exe_path),
            str(dwg_path.parent),
            str(output_dir),
            "ACAD2018",
            "DXF",
            "0",  # Recursive
            "1",  # Audit
            dwg_path.name,  # Filter
        ]

        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            await self._kill(process)
            raise ConversionError(f"ODA转换超时: {dwg_path.name}") from e
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        if process.returncode != 0:
            detail = (stderr or stdout or b"").decode("utf-8", errors="replace")
            raise ConversionError(f"ODA转换失败: {detail}")

        output_path = self._resolve_output(output_dir, dwg_path.stem, ".dxf")
        logger.info(f"ODA转换完成: {dwg_path.name} → {output_path.name}")
        return await asyncio.to_thread(output_path.read_bytes)

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            process.kill()
            await process.wait()

    @staticmethod
    def _resolve_output(output_dir: Path, stem: str, suffix: str) -> Path:
        expected = output_dir / f"{stem}{suffix}"
        if expected.exists():
            return expected
        for candidate in output_dir.glob(f"{stem}.*"):
            if candidate.suffix.lower() == suffix:
                return candidate
        raise ConversionError(f"转换后文件不存在: {expected}")
