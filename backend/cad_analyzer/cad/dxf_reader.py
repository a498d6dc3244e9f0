"""
DXF 读取器 - ezdxf 解析与实体统计

职责：
1. 统计各布局中的实体类型（LINE/CIRCLE/ARC/...）
2. 读取图层表
3. 由 $EXTMIN/$EXTMAX 推导包围尺寸（缺失时使用固定占位 1000x1000）
4. 读取头部元数据（作者/版本/创建与修改时间/单位）
5. 收集原始统计（图块插入、分图层线长）供领域分析使用

依赖：
- ezdxf: DXF解析

测试要点：
- test_entity_tally: 3条LINE + 1个CIRCLE
- test_layer_table: 图层表2项
- test_placeholder_extents: 无范围头变量时使用占位尺寸
- test_converted_payload: 由字节内容解析（DWG转换结果）
- test_converted_payload_codepage: 按 $DWGCODEPAGE 解码图层名
"""

from __future__ import annotations

import io
import logging
import math
from collections import Counter, defaultdict
from pathlib import Path
from typing import Any, Iterator

import ezdxf
from ezdxf import bbox, recover
from ezdxf.math import Vec3
from ezdxf.tools.juliandate import calendardate

from ..interfaces import FileProcessingError
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

# DXF实体类型 → 计数字段
ENTITY_TYPE_MAP: dict[str, str] = {
    "LINE": "lines",
    "CIRCLE": "circles",
    "ARC": "arcs",
    "LWPOLYLINE": "polylines",
    "POLYLINE": "polylines",
    "TEXT": "text",
    "MTEXT": "text",
    "DIMENSION": "dimensions",
    "INSERT": "blocks",
}

PLACEHOLDER_DIMENSIONS = Dimensions(width=1000.0, height=1000.0, unit="unit")

ACAD_RELEASES: dict[str, str] = {
    "AC1009": "R12",
    "AC1012": "R13",
    "AC1014": "R14",
    "AC1015": "R2000",
    "AC1018": "R2004",
    "AC1021": "R2007",
    "AC1024": "R2010",
    "AC1027": "R2013",
    "AC1032": "R2018",
}

# $INSUNITS 枚举
INSUNITS: dict[int, str] = {
    1: "in",
    2: "ft",
    4: "mm",
    5: "cm",
    6: "m",
    7: "km",
    8: "µin",
    9: "mil",
    10: "yd",
    14: "dm",
}

# 头部范围变量未初始化时 ezdxf 使用 ±1e20
_EXTENTS_LIMIT = 1e19

SYSTEM_LAYER = "defpoints"


class DXFReader:
    """DXF 读取器"""

    def __init__(self, software_label: str = "DXF"):
        self.software_label = software_label

    def read_file(self, path: Path, precision: Precision = Precision.STANDARD) -> ParsedDrawing:
        """解析DXF文件"""
        if not path.exists():
            raise FileProcessingError(f"DXF文件不存在: {path}")

        try:
            doc = ezdxf.readfile(str(path))
        except Exception as e:
            raise FileProcessingError(
                f"DXF解析失败: {e}", detail={"file": path.name}
            ) from e

        return self.summarize(doc, precision)

    def read_bytes(self, data: bytes, precision: Precision = Precision.STANDARD) -> ParsedDrawing:
        """解析DXF字节内容（如DWG转换服务的返回），按 $DWGCODEPAGE 解码"""
        try:
            doc, auditor = recover.read(io.BytesIO(data))
        except Exception as e:
            raise FileProcessingError(f"DXF解析失败: {e}") from e

        if auditor.has_errors:
            logger.warning(f"DXF内容存在 {len(auditor.errors)} 处结构错误，已尽量修复")
        return self.summarize(doc, precision)

    def summarize(self, doc: Any, precision: Precision) -> ParsedDrawing:
        """从 ezdxf 文档生成归一化结果"""
        counts: Counter[str] = Counter()
        inserts: Counter[tuple[str, str]] = Counter()
        layer_lengths: defaultdict[str, float] = defaultdict(float)
        used_layers: set[str] = set()

        for layout in self._iter_layouts(doc):
            for entity in layout:
                dxftype = entity.dxftype()
                counts[dxftype] += 1
                layer = entity.dxf.get("layer", "0")
                used_layers.add(layer)
                if dxftype == "INSERT":
                    inserts[(entity.dxf.name, layer)] += 1
                elif dxftype in ("LINE", "LWPOLYLINE"):
                    layer_lengths[layer] += self._entity_length(entity)

        entities = self._map_counts(counts)
        warnings: list[str] = []
        limit = PRECISION_SETTINGS[precision].max_entity_count
        if entities.total > limit:
            warnings.append(f"实体数量 {entities.total} 超过 {precision.value} 精度上限 {limit}")

        # Defpoints 为系统图层，加载时可能被自动补建，仅在被引用时列出
        layers = [
            name
            for name in dict.fromkeys(layer.dxf.name for layer in doc.layers)
            if name.lower() != SYSTEM_LAYER or name in used_layers
        ]

        return ParsedDrawing(
            entities=entities,
            layers=layers,
            dimensions=self._read_dimensions(doc, precision),
            metadata=self._read_metadata(doc),
            raw_stats={
                "entity_types": dict(counts),
                "block_inserts": [
                    {"name": name, "layer": layer, "count": count}
                    for (name, layer), count in sorted(inserts.items())
                ],
                "layer_lengths": {k: round(v, 3) for k, v in sorted(layer_lengths.items())},
            },
            warnings=warnings,
        )

    @staticmethod
    def _iter_layouts(doc: Any) -> Iterator[Any]:
        yield doc.modelspace()
        for name in doc.layouts.names_in_taborder():
            if name.lower() == "model":
                continue
            yield doc.layouts.get(name)

    @staticmethod
    def _map_counts(counts: Counter[str]) -> EntityCounts:
        mapped: Counter[str] = Counter()
        for dxftype, field in ENTITY_TYPE_MAP.items():
            mapped[field] += counts.get(dxftype, 0)
        return EntityCounts(**mapped)

    @staticmethod
    def _entity_length(entity: Any) -> float:
        if entity.dxftype() == "LINE":
            return Vec3(entity.dxf.start).distance(Vec3(entity.dxf.end))
        points = [Vec3(p[0], p[1]) for p in entity.get_points("xy")]
        if entity.closed and len(points) > 2:
            points.append(points[0])
        return sum(a.distance(b) for a, b in zip(points, points[1:]))

    def _read_dimensions(self, doc: Any, precision: Precision) -> Dimensions:
        unit = INSUNITS.get(doc.header.get("$INSUNITS", 0), "unit")
        extmin = doc.header.get("$EXTMIN")
        extmax = doc.header.get("$EXTMAX")

        if self._valid_extents(extmin, extmax):
            size = Vec3(extmax) - Vec3(extmin)
            return Dimensions(width=abs(size.x), height=abs(size.y), depth=abs(size.z), unit=unit)

        if precision == Precision.HIGH:
            box = bbox.extents(doc.modelspace(), fast=True)
            if box.has_data:
                return Dimensions(width=box.size.x, height=box.size.y, depth=box.size.z, unit=unit)

        return PLACEHOLDER_DIMENSIONS.model_copy(update={"unit": unit})

    @staticmethod
    def _valid_extents(extmin: Any, extmax: Any) -> bool:
        if extmin is None or extmax is None:
            return False
        low, high = Vec3(extmin), Vec3(extmax)
        values = (low.x, low.y, high.x, high.y)
        if not all(math.isfinite(v) and abs(v) < _EXTENTS_LIMIT for v in values):
            return False
        return high.x >= low.x and high.y >= low.y

    def _read_metadata(self, doc: Any) -> CADMetadata:
        header = doc.header
        acadver = header.get("$ACADVER", "")
        release = ACAD_RELEASES.get(acadver, acadver)
        software = f"{self.software_label} {release}".strip() if release else self.software_label

        return CADMetadata(
            author=header.get("$LASTSAVEDBY") or UNKNOWN,
            software=software,
            created_at=self._julian_to_iso(header.get("$TDCREATE")),
            modified_at=self._julian_to_iso(header.get("$TDUPDATE")),
            version=acadver or UNKNOWN,
        )

    @staticmethod
    def _julian_to_iso(value: Any) -> str:
        if not value:
            return UNKNOWN
        try:
            return calendardate(float(value)).isoformat()
        except (TypeError, ValueError, OverflowError):
            logger.debug(f"无法解析儒略日期: {value}")
            return UNKNOWN
