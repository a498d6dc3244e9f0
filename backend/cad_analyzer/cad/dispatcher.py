"""
解析分发器 - 按格式的解析策略选择处理方式

职责：
1. 查格式注册表得到解析策略（DIRECT / EXTERNAL_CONVERSION / KERNEL_BRIDGE）
2. 每个策略恰有一个处理函数（构造时检查）
3. 前置条件不满足（未配置转换服务/内核未启用）→ SERVICE_UNAVAILABLE，不返回占位数据
4. 解析过程中的非预期异常包装为 FILE_PROCESSING_ERROR 并记录文件上下文

测试要点：
- test_every_strategy_has_handler
- test_kernel_disabled_unavailable: STEP 在内核关闭时 503
- test_dwg_unconfigured_unavailable: DWG 无转换服务时 503
- test_dwg_http_conversion: MockTransport 返回DXF
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable

import httpx

from ..config import RuntimeConfig
from ..interfaces import (
    CADAnalyzerError,
    FileProcessingError,
    ICADParser,
    IDWGConverter,
    IKernelBridge,
    ServiceUnavailableError,
)
from ..models import ParsedDrawing, Precision
from .dwg_converter import HTTPDWGConverter
from .dxf_reader import DXFReader
from .formats import CADFormat, ParseStrategy, resolve_format
from .ifc_reader import IFCReader
from .kernel_bridge import HTTPKernelBridge, KernelDocumentAdapter
from .oda_converter import ODAConverter
from .stl_reader import STLReader

logger = logging.getLogger(__name__)

Handler = Callable[[Path, CADFormat, Precision], Awaitable[ParsedDrawing]]


class CADParserDispatcher(ICADParser):
    """解析分发器"""

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        dwg_converter: IDWGConverter | None = None,
        kernel_bridge: IKernelBridge | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._dwg_converter = dwg_converter
        self._kernel_bridge = kernel_bridge
        self._http_client = http_client
        self._adapter = KernelDocumentAdapter()

        self.handlers: dict[ParseStrategy, Handler] = {
            ParseStrategy.DIRECT: self._parse_direct,
            ParseStrategy.EXTERNAL_CONVERSION: self._parse_converted,
            ParseStrategy.KERNEL_BRIDGE: self._parse_bridged,
        }
        missing = set(ParseStrategy) - set(self.handlers)
        if missing:
            raise ValueError(f"解析策略缺少处理函数: {sorted(s.value for s in missing)}")

    async def parse(self, path: Path, extension: str, precision: Precision) -> ParsedDrawing:
        """按格式解析文件"""
        fmt = resolve_format(extension)
        handler = self.handlers[fmt.strategy]
        logger.info(f"开始解析: {path.name} (格式={fmt.extension}, 策略={fmt.strategy.value})")

        try:
            parsed = await handler(path, fmt, precision)
        except CADAnalyzerError:
            raise
        except Exception as e:
            logger.exception(f"解析失败: {path.name} (格式={fmt.extension})")
            raise FileProcessingError(
                f"{fmt.extension.upper()}解析失败: {e}",
                detail={"file": path.name, "format": fmt.extension},
            ) from e

        logger.info(f"解析完成: {path.name} (实体总数={parsed.entities.total})")
        return parsed

    # ------------------------------------------------------------------
    # DIRECT
    # ------------------------------------------------------------------
    async def _parse_direct(self, path: Path, fmt: CADFormat, precision: Precision) -> ParsedDrawing:
        if fmt.extension == "dxf":
            return await asyncio.to_thread(DXFReader().read_file, path, precision)
        if fmt.extension == "stl":
            return await asyncio.to_thread(STLReader().read_file, path, precision)
        if fmt.extension == "ifc":
            return await asyncio.to_thread(IFCReader().read_file, path)
        raise FileProcessingError(f"没有直接解析器: {fmt.extension}")

    # ------------------------------------------------------------------
    # EXTERNAL_CONVERSION
    # ------------------------------------------------------------------
    def resolve_dwg_converter(self) -> IDWGConverter:
        """转换服务优先，其次本地 ODA；都未配置时不可用"""
        if self._dwg_converter is not None:
            return self._dwg_converter
        if self.config.converter.base_url:
            return HTTPDWGConverter.from_config(self.config, http_client=self._http_client)
        if self.config.oda.exe_path:
            return ODAConverter.from_config(self.config)
        raise ServiceUnavailableError(
            "DWG转换服务未配置: 请设置 converter.base_url 指向 DWG→DXF 转换服务，或配置 oda.exe_path",
            detail={"format": "dwg"},
        )

    async def _parse_converted(self, path: Path, fmt: CADFormat, precision: Precision) -> ParsedDrawing:
        converter = self.resolve_dwg_converter()
        dxf_bytes = await converter.dwg_to_dxf(path, path.parent / "converted")

        reader = DXFReader(software_label=f"DXF (converted from {fmt.extension.upper()})")
        parsed = await asyncio.to_thread(reader.read_bytes, dxf_bytes, precision)
        parsed.source = "converted"
        return parsed

    # ------------------------------------------------------------------
    # KERNEL_BRIDGE
    # ------------------------------------------------------------------
    def resolve_kernel_bridge(self) -> IKernelBridge:
        if not self.config.kernel_bridge.enabled:
            raise ServiceUnavailableError(
                "几何内核桥接未启用: 请设置 kernel_bridge.enabled=true 并配置内核服务",
                detail={"hint": "CAD_ANALYZER_KERNEL_BRIDGE__ENABLED=true"},
            )
        if self._kernel_bridge is not None:
            return self._kernel_bridge
        if self.config.kernel_bridge.base_url:
            return HTTPKernelBridge.from_config(self.config, http_client=self._http_client)
        raise ServiceUnavailableError("几何内核桥接未加载: 未配置 kernel_bridge.base_url")

    async def _parse_bridged(self, path: Path, fmt: CADFormat, precision: Precision) -> ParsedDrawing:
        bridge = self.resolve_kernel_bridge()
        doc = await bridge.import_document(path, fmt.extension, precision)
        return self._adapter.normalize(doc, fmt.extension)
