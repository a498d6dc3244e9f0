"""
格式注册表 - 扩展名 → 类别/解析策略/队列

解析策略为封闭集合（DIRECT / EXTERNAL_CONVERSION / KERNEL_BRIDGE），
新增格式只需在 CAD_FORMATS 中登记一行。
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..interfaces import BadRequestError


class ParseStrategy(str, Enum):
    """解析策略"""
    DIRECT = "direct"                            # 进程内直接解析
    EXTERNAL_CONVERSION = "external_conversion"  # 外部转换后再解析
    KERNEL_BRIDGE = "kernel_bridge"              # 几何内核桥接


class FormatCategory(str, Enum):
    """格式类别"""
    TWO_D = "2d"
    PARAMETRIC_3D = "3d_parametric"
    MESH_3D = "3d_mesh"
    BIM = "bim"


@dataclass(frozen=True)
class CADFormat:
    """单个格式的登记信息"""
    extension: str
    description: str
    category: FormatCategory
    strategy: ParseStrategy
    queue: str
    mime_type: str


CAD_FORMATS: dict[str, CADFormat] = {
    fmt.extension: fmt
    for fmt in (
        CADFormat("dxf", "2D AutoCAD交换格式", FormatCategory.TWO_D, ParseStrategy.DIRECT, "dxf", "application/dxf"),
        CADFormat("dwg", "2D/3D AutoCAD原生格式", FormatCategory.TWO_D, ParseStrategy.EXTERNAL_CONVERSION, "dwg", "application/acad"),
        CADFormat("step", "3D STEP格式 (ISO 10303)", FormatCategory.PARAMETRIC_3D, ParseStrategy.KERNEL_BRIDGE, "step", "application/step"),
        CADFormat("stp", "3D STEP格式 (ISO 10303)", FormatCategory.PARAMETRIC_3D, ParseStrategy.KERNEL_BRIDGE, "step", "application/step"),
        CADFormat("iges", "3D IGES格式", FormatCategory.PARAMETRIC_3D, ParseStrategy.KERNEL_BRIDGE, "iges", "application/iges"),
        CADFormat("igs", "3D IGES格式", FormatCategory.PARAMETRIC_3D, ParseStrategy.KERNEL_BRIDGE, "iges", "application/iges"),
        CADFormat("stl", "3D STL网格格式", FormatCategory.MESH_3D, ParseStrategy.DIRECT, "mesh", "model/stl"),
        CADFormat("ifc", "Industry Foundation Classes (BIM)", FormatCategory.BIM, ParseStrategy.DIRECT, "bim", "application/x-step"),
    )
}


def normalize_extension(name: str) -> str:
    """从文件名或扩展名得到小写、不带点的扩展名"""
    name = name.strip().lower()
    if "." not in name:
        return name
    return name.rsplit(".", 1)[-1]


def extension_of(file_name: str) -> str:
    """从文件名取扩展名，没有扩展名时返回空串"""
    return normalize_extension(file_name) if "." in file_name else ""


def resolve_format(extension: str) -> CADFormat:
    """
    查找格式登记信息

    Raises:
        BadRequestError: 扩展名不支持
    """
    ext = normalize_extension(extension)
    fmt = CAD_FORMATS.get(ext)
    if fmt is None:
        supported = ", ".join(CAD_FORMATS)
        raise BadRequestError(
            f"不支持的文件格式: {ext or '未知'}. 支持的格式: {supported}",
            detail={"extension": ext, "supported": list(CAD_FORMATS)},
        )
    return fmt
