"""
格式校验器 - 声明扩展名与文件头签名比对

职责：
1. 读取文件前 N 字节（默认512）
2. 文本格式按标记子串判定（DXF/STEP/IFC/IGES/ASCII STL）
3. 无可靠文本标记的二进制格式按"非以可打印ASCII为主"启发式判定（DWG/二进制STL）
4. 未知扩展名一律判定为无效

测试要点：
- test_dxf_markers: SECTION + ENTITIES 同时存在
- test_step_header: ISO-10303-21
- test_iges_start_record: 第73列为 S
- test_dwg_binary_heuristic: 文本伪装DWG被拒
- test_unknown_extension: 未知扩展名为 False
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from ..interfaces import IFormatValidator
from .formats import normalize_extension

logger = logging.getLogger(__name__)

PRINTABLE_BYTES = frozenset(range(0x20, 0x7F)) | {0x09, 0x0A, 0x0D}

# 可打印字节占比不低于该阈值时视为文本
TEXT_RATIO_THRESHOLD = 0.8


def printable_ratio(data: bytes) -> float:
    """可打印ASCII字节占比"""
    if not data:
        return 0.0
    printable = sum(1 for b in data if b in PRINTABLE_BYTES)
    return printable / len(data)


def is_mostly_text(data: bytes) -> bool:
    return printable_ratio(data) >= TEXT_RATIO_THRESHOLD


def _check_dxf(prefix: bytes) -> bool:
    return b"SECTION" in prefix and b"ENTITIES" in prefix


def _check_dwg(prefix: bytes) -> bool:
    # DWG 没有可靠的文本标记（仅前6字节为版本号 AC10xx），按二进制启发式判定
    return not is_mostly_text(prefix)


def _check_step(prefix: bytes) -> bool:
    return b"ISO-10303-21" in prefix


def _check_iges(prefix: bytes) -> bool:
    if b"S0000001" in prefix or b"IGES" in prefix[:80]:
        return True
    # 固定80列记录，第73列为段标识，首段为 Start(S)
    first_record = prefix.split(b"\n", 1)[0].rstrip(b"\r")
    return len(first_record) >= 73 and first_record[72:73] == b"S"


def _check_stl(prefix: bytes) -> bool:
    if prefix.lstrip().lower().startswith(b"solid") and b"facet" in prefix.lower():
        return True
    return not is_mostly_text(prefix)


SIGNATURE_CHECKS: dict[str, Callable[[bytes], bool]] = {
    "dxf": _check_dxf,
    "dwg": _check_dwg,
    "step": _check_step,
    "stp": _check_step,
    "ifc": _check_step,
    "iges": _check_iges,
    "igs": _check_iges,
    "stl": _check_stl,
}


class FormatValidator(IFormatValidator):
    """格式校验器实现"""

    def __init__(self, prefix_bytes: int = 512):
        self.prefix_bytes = prefix_bytes

    def read_prefix(self, path: Path) -> bytes:
        with open(path, "rb") as f:
            return f.read(self.prefix_bytes)

    def validate(self, path: Path, extension: str) -> bool:
        """校验文件内容是否与声明的扩展名一致"""
        check = SIGNATURE_CHECKS.get(normalize_extension(extension))
        if check is None:
            return False

        try:
            prefix = self.read_prefix(path)
        except OSError as e:
            logger.error(f"验证CAD文件失败: {path}: {e}")
            return False

        if not prefix:
            return False
        return check(prefix)
