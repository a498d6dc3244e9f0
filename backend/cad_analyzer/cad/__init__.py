"""
CAD 处理模块 - 格式校验/解析分发/格式转换

子模块：
- formats: 扩展名 → 类别/解析策略/队列
- validator: 文件头签名校验
- dxf_reader: ezdxf 解析与实体统计
- stl_reader: STL 网格拓扑统计
- ifc_reader: IFC 物理文件扫描
- dwg_converter: 外部 DWG→DXF 转换服务
- oda_converter: 本地 ODA File Converter
- kernel_bridge: STEP/IGES 几何内核桥接
- dispatcher: 解析策略分发
"""

from .dispatcher import CADParserDispatcher
from .dwg_converter import HTTPDWGConverter
from .dxf_reader import DXFReader
from .formats import CAD_FORMATS, CADFormat, FormatCategory, ParseStrategy, resolve_format
from .ifc_reader import IFCReader
from .kernel_bridge import HTTPKernelBridge, KernelDocumentAdapter
from .oda_converter import ODAConverter
from .stl_reader import STLReader
from .validator import FormatValidator

__all__ = [
    "CAD_FORMATS",
    "CADFormat",
    "FormatCategory",
    "ParseStrategy",
    "resolve_format",
    "FormatValidator",
    "DXFReader",
    "STLReader",
    "IFCReader",
    "HTTPDWGConverter",
    "ODAConverter",
    "HTTPKernelBridge",
    "KernelDocumentAdapter",
    "CADParserDispatcher",
]
