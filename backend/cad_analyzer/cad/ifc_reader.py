"""
IFC 读取器 - STEP 物理文件（ISO-10303-21）扫描

职责：
1. 读取 HEADER 段 FILE_SCHEMA / FILE_NAME
2. 统计 DATA 段各 IFC 实体类型数量
3. 提取项目名称、楼层名称、空间数量
4. 构件（墙/板/梁/柱/门/窗等）计为 solids

只做文本扫描，不求解几何；包围尺寸未知时保持为0。
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from pathlib import Path

from ..interfaces import FileProcessingError
from ..models import (
    UNKNOWN,
    BIMData,
    CADMetadata,
    Dimensions,
    EntityCounts,
    ParsedDrawing,
)

logger = logging.getLogger(__name__)

# #123= IFCWALL('guid',#5,'Name',...);
_ENTITY_RE = re.compile(r"^#(\d+)\s*=\s*(IFC[A-Z0-9_]+)\s*\((.*)\)\s*;", re.MULTILINE | re.DOTALL)
_RECORD_RE = re.compile(r"#\d+\s*=\s*IFC[A-Z0-9_]+\s*\(.*?\)\s*;", re.DOTALL)
_STRING_RE = re.compile(r"'((?:[^']|'')*)'")
_SCHEMA_RE = re.compile(r"FILE_SCHEMA\s*\(\s*\(\s*'([^']*)'", re.IGNORECASE)
_FILE_NAME_RE = re.compile(r"FILE_NAME\s*\((.*?)\)\s*;", re.IGNORECASE | re.DOTALL)

BUILDING_ELEMENTS = frozenset({
    "IFCWALL",
    "IFCWALLSTANDARDCASE",
    "IFCSLAB",
    "IFCBEAM",
    "IFCCOLUMN",
    "IFCDOOR",
    "IFCWINDOW",
    "IFCROOF",
    "IFCSTAIR",
    "IFCRAILING",
    "IFCCOVERING",
    "IFCPLATE",
    "IFCMEMBER",
    "IFCFOOTING",
    "IFCPILE",
    "IFCBUILDINGELEMENTPROXY",
})


def _strings(args: str) -> list[str]:
    return [s.replace("''", "'") for s in _STRING_RE.findall(args)]


def _name_attribute(args: str) -> str:
    """IfcRoot 派生实体的第3个属性为 Name"""
    parts = _split_top_level(args)
    if len(parts) < 3:
        return ""
    value = parts[2].strip()
    if value.startswith("'") and value.endswith("'"):
        return value[1:-1].replace("''", "'")
    return ""


def _split_top_level(args: str) -> list[str]:
    parts, depth, in_string, current = [], 0, False, []
    for ch in args:
        if ch == "'":
            in_string = not in_string
        elif not in_string:
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
            elif ch == "," and depth == 0:
                parts.append("".join(current))
                current = []
                continue
        current.append(ch)
    parts.append("".join(current))
    return parts


class IFCReader:
    """IFC 读取器"""

    def read_file(self, path: Path) -> ParsedDrawing:
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise FileProcessingError(f"IFC读取失败: {e}", detail={"file": path.name}) from e
        return self.read_text(text)

    def read_text(self, text: str) -> ParsedDrawing:
        if "ISO-10303-21" not in text or "DATA;" not in text:
            raise FileProcessingError("不是有效的IFC物理文件（缺少 ISO-10303-21 或 DATA 段）")

        header, _, data = text.partition("DATA;")
        counts: Counter[str] = Counter()
        project_name = ""
        storeys: list[str] = []

        for record in _RECORD_RE.findall(data):
            match = _ENTITY_RE.match(record.strip())
            if match is None:
                continue
            _, ifc_type, args = match.groups()
            counts[ifc_type] += 1
            if ifc_type == "IFCPROJECT" and not project_name:
                project_name = _name_attribute(args)
            elif ifc_type == "IFCBUILDINGSTOREY":
                storeys.append(_name_attribute(args) or f"Storey {len(storeys) + 1}")

        if not counts:
            raise FileProcessingError("IFC文件中没有实体")

        schema_match = _SCHEMA_RE.search(header)
        schema = schema_match.group(1) if schema_match else ""
        logger.debug(f"IFC扫描完成: schema={schema}, 实体类型数={len(counts)}")

        element_counts = {k: v for k, v in sorted(counts.items()) if k in BUILDING_ELEMENTS}

        return ParsedDrawing(
            entities=EntityCounts(solids=sum(element_counts.values())),
            layers=storeys,
            dimensions=Dimensions(unit="m"),
            metadata=self._read_metadata(header, schema),
            bim_data=BIMData(
                schema_version=schema,
                project_name=project_name,
                element_counts=element_counts,
                storeys=storeys,
                spaces=counts.get("IFCSPACE", 0),
            ),
            raw_stats={"ifc_types": dict(counts)},
        )

    @staticmethod
    def _read_metadata(header: str, schema: str) -> CADMetadata:
        match = _FILE_NAME_RE.search(header)
        if match is None:
            return CADMetadata(version=schema or UNKNOWN)

        # FILE_NAME(name, time_stamp, (author), (organization), preprocessor, originating_system, authorization)
        parts = _split_top_level(match.group(1))

        def field(index: int) -> str:
            if index >= len(parts):
                return ""
            values = [v for v in _strings(parts[index]) if v]
            return values[0] if values else ""

        software = field(5) or field(4)
        return CADMetadata(
            author=field(2) or UNKNOWN,
            software=software or UNKNOWN,
            created_at=field(1) or UNKNOWN,
            version=schema or UNKNOWN,
        )
