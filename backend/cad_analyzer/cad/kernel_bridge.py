"""
几何内核桥接 - STEP/IGES 参数化模型导入

职责：
1. HTTPKernelBridge: 将文件上传到内核服务 {base_url}/import/{ext}，返回内核原生文档
2. KernelDocumentAdapter: 将内核文档归一化为 ParsedDrawing
   - 计数字段: entities | counts | statistics
   - 包围盒字段: bbox | boundingBox | aabb（width/height/depth 或 min/max）
     min/max 角点可为 {x,y,z} 或 [x, y, z]
   - 元数据字段: metadata | header
   - 缺失时回退为全0计数与 100x100x100 mm 包围盒，并附带告警

依赖：
- httpx: 异步HTTP客户端

测试要点：
- test_adapter_counts_alias: statistics 字段名
- test_adapter_bbox_min_max: min/max 形式包围盒
- test_adapter_bbox_corner_arrays: 数组形式角点
- test_adapter_defaults: 空文档回退默认值
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import httpx

from ..config import RuntimeConfig
from ..interfaces import IKernelBridge, KernelBridgeError
from ..models import (
    PRECISION_SETTINGS,
    UNKNOWN,
    CADMetadata,
    Dimensions,
    EntityCounts,
    ParsedDrawing,
    Precision,
)

logger = logging.getLogger(__name__)

COUNT_KEYS = ("entities", "counts", "statistics")
BBOX_KEYS = ("bbox", "boundingBox", "aabb")
METADATA_KEYS = ("metadata", "header")
AXES = ("x", "y", "z")

DEFAULT_BBOX = Dimensions(width=100.0, height=100.0, depth=100.0, unit="mm")


def _first(doc: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = doc.get(key)
        if value:
            return value
    return None


def _number(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _coordinate(point: Any, axis: int) -> float | None:
    """角点坐标: {x,y,z} 或 [x, y, z]，缺失按0处理，其他形式返回 None"""
    if point is None:
        return 0.0
    if isinstance(point, dict):
        return _number(point.get(AXES[axis]))
    if isinstance(point, (list, tuple)):
        return _number(point[axis]) if axis < len(point) else 0.0
    return None


class KernelDocumentAdapter:
    """内核文档归一化适配器（唯一入口）"""

    def normalize(self, doc: dict[str, Any], extension: str) -> ParsedDrawing:
        warnings: list[str] = []

        entities = self._entities(doc)
        if entities is None:
            warnings.append("内核文档缺少实体计数，已使用0")
            entities = EntityCounts()

        dimensions = self._dimensions(doc)
        if dimensions is None:
            warnings.append("内核文档缺少包围盒，已使用默认 100x100x100 mm")
            dimensions = DEFAULT_BBOX.model_copy()

        layers = doc.get("assemblies") or doc.get("layers") or []

        return ParsedDrawing(
            entities=entities,
            layers=list(dict.fromkeys(str(x) for x in layers)),
            dimensions=dimensions,
            metadata=self._metadata(doc, extension),
            raw_stats={k: v for k, v in doc.items() if k in ("volume", "surfaceArea", "assemblies")},
            warnings=warnings,
            source="bridged",
        )

    @staticmethod
    def _entities(doc: dict[str, Any]) -> EntityCounts | None:
        counts = _first(doc, COUNT_KEYS)
        if not isinstance(counts, dict):
            return None
        return EntityCounts(**{
            field: int(_number(counts.get(field)))
            for field in EntityCounts.model_fields
        })

    @staticmethod
    def _dimensions(doc: dict[str, Any]) -> Dimensions | None:
        box = _first(doc, BBOX_KEYS)
        if not isinstance(box, dict):
            return None

        low = box.get("min")
        high = box.get("max")

        def extent(size_key: str, axis: int) -> float | None:
            if box.get(size_key) is not None:
                return _number(box[size_key])
            start, end = _coordinate(low, axis), _coordinate(high, axis)
            if start is None or end is None:
                return None
            return abs(end - start)

        width, height, depth = extent("width", 0), extent("height", 1), extent("depth", 2)
        if width is None or height is None or depth is None:
            logger.warning(f"无法识别的包围盒角点格式: min={low!r}, max={high!r}")
            return None

        return Dimensions(
            width=width,
            height=height,
            depth=depth,
            unit=box.get("unit") or "mm",
        )

    @staticmethod
    def _metadata(doc: dict[str, Any], extension: str) -> CADMetadata:
        meta = _first(doc, METADATA_KEYS)
        if not isinstance(meta, dict):
            meta = {}

        def pick(*keys: str) -> str:
            for key in keys:
                if meta.get(key):
                    return str(meta[key])
            return UNKNOWN

        return CADMetadata(
            author=pick("author", "originator"),
            software=pick("software", "originatingSystem", "preprocessor"),
            created_at=pick("createdAt", "created_at", "timestamp"),
            modified_at=pick("modifiedAt", "modified_at"),
            version=pick("version", "schema") if meta else extension.upper(),
        )


class HTTPKernelBridge(IKernelBridge):
    """内核服务 HTTP 客户端"""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url must not be empty")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client

    @classmethod
    def from_config(
        cls, config: RuntimeConfig, http_client: httpx.AsyncClient | None = None
    ) -> HTTPKernelBridge:
        return cls(
            config.kernel_bridge.base_url,
            timeout=config.kernel_bridge.timeout_sec,
            http_client=http_client,
        )

    async def import_document(
        self, path: Path, extension: str, precision: Precision
    ) -> dict[str, Any]:
        url = f"{self.base_url}/import/{extension}"
        payload = await asyncio.to_thread(path.read_bytes)
        files = {"file": (path.name, payload, "application/octet-stream")}
        data = {
            "precision": precision.value,
            "tolerance": str(PRECISION_SETTINGS[precision].tolerance),
        }

        try:
            if self._client is not None:
                response = await self._client.post(url, files=files, data=data, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, files=files, data=data)
            response.raise_for_status()
            doc = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise KernelBridgeError(f"几何内核导入失败: {e}", detail={"url": url}) from e

        if not isinstance(doc, dict):
            raise KernelBridgeError("几何内核返回的文档格式无效", detail={"url": url})
        return doc
