"""
pytest 配置与公共 fixtures

使用方式：
    def test_something(runtime_config, sample_dxf_path):
        pipeline = AnalysisPipeline(runtime_config)
"""

from __future__ import annotations

import struct
from pathlib import Path

import pytest

from cad_analyzer.config import QueueConfig, RuntimeConfig
from cad_analyzer.config.runtime_config import (
    CacheConfig,
    LifecycleConfig,
    RetryConfig,
)
from cad_analyzer.models import AnalysisSession, ParsedDrawing


# ============================================================================
# 样例文件内容
# ============================================================================

def _dxf(*lines: str) -> str:
    return "\n".join(lines) + "\n"


# 3 条 LINE + 1 个 CIRCLE，图层表 2 项（0 / WALLS），范围 100 x 50
SAMPLE_DXF = _dxf(
    "  0", "SECTION", "  2", "HEADER",
    "  9", "$ACADVER", "  1", "AC1009",
    "  9", "$EXTMIN", " 10", "0.0", " 20", "0.0", " 30", "0.0",
    "  9", "$EXTMAX", " 10", "100.0", " 20", "50.0", " 30", "0.0",
    "  0", "ENDSEC",
    "  0", "SECTION", "  2", "TABLES",
    "  0", "TABLE", "  2", "LAYER", " 70", "2",
    "  0", "LAYER", "  2", "0", " 70", "0", " 62", "7", "  6", "CONTINUOUS",
    "  0", "LAYER", "  2", "WALLS", " 70", "0", " 62", "1", "  6", "CONTINUOUS",
    "  0", "ENDTAB",
    "  0", "ENDSEC",
    "  0", "SECTION", "  2", "ENTITIES",
    "  0", "LINE", "  8", "WALLS",
    " 10", "0.0", " 20", "0.0", " 30", "0.0", " 11", "100.0", " 21", "0.0", " 31", "0.0",
    "  0", "LINE", "  8", "WALLS",
    " 10", "100.0", " 20", "0.0", " 30", "0.0", " 11", "100.0", " 21", "50.0", " 31", "0.0",
    "  0", "LINE", "  8", "WALLS",
    " 10", "0.0", " 20", "50.0", " 30", "0.0", " 11", "100.0", " 21", "50.0", " 31", "0.0",
    "  0", "CIRCLE", "  8", "0",
    " 10", "50.0", " 20", "25.0", " 30", "0.0", " 40", "10.0",
    "  0", "ENDSEC",
    "  0", "EOF",
)

# 仅 ENTITIES 段（无头部范围变量）
ENTITIES_ONLY_DXF = _dxf(
    "  0", "SECTION", "  2", "ENTITIES",
    "  0", "LINE", "  8", "0",
    " 10", "0.0", " 20", "0.0", " 30", "0.0", " 11", "10.0", " 21", "10.0", " 31", "0.0",
    "  0", "ENDSEC",
    "  0", "EOF",
)

# 四面体: (0,0,0) (10,0,0) (0,20,0) (0,0,30)
TETRAHEDRON = [
    ((0.0, 0.0, 0.0), (10.0, 0.0, 0.0), (0.0, 20.0, 0.0)),
    ((0.0, 0.0, 0.0), (10.0, 0.0, 0.0), (0.0, 0.0, 30.0)),
    ((0.0, 0.0, 0.0), (0.0, 20.0, 0.0), (0.0, 0.0, 30.0)),
    ((10.0, 0.0, 0.0), (0.0, 20.0, 0.0), (0.0, 0.0, 30.0)),
]


def ascii_stl(triangles, name: str = "tetra") -> bytes:
    lines = [f"solid {name}"]
    for tri in triangles:
        lines.append("  facet normal 0 0 0")
        lines.append("    outer loop")
        for x, y, z in tri:
            lines.append(f"      vertex {x} {y} {z}")
        lines.append("    endloop")
        lines.append("  endfacet")
    lines.append(f"endsolid {name}")
    return ("\n".join(lines) + "\n").encode("ascii")


def binary_stl(triangles) -> bytes:
    header = b"\x00" * 80
    body = [struct.pack("<I", len(triangles))]
    for tri in triangles:
        values = [0.0, 0.0, 0.0] + [c for vertex in tri for c in vertex]
        body.append(struct.pack("<12fH", *values, 0))
    return header + b"".join(body)


SAMPLE_IFC = """ISO-10303-21;
HEADER;
FILE_DESCRIPTION(('ViewDefinition [CoordinationView]'),'2;1');
FILE_NAME('office.ifc','2024-03-01T10:00:00',('Zhang San'),('Design Co'),'IfcOpenShell','Revit 2024','');
FILE_SCHEMA(('IFC4'));
ENDSEC;
DATA;
#1=IFCPROJECT('0YvctVUKr0kugbFTf53O9L',$,'Office Tower',$,$,$,$,(#20),#30);
#10=IFCBUILDINGSTOREY('1a',$,'Level 1',$,$,#40,$,$,.ELEMENT.,0.);
#11=IFCBUILDINGSTOREY('1b',$,'Level 2',$,$,#41,$,$,.ELEMENT.,3500.);
#50=IFCWALLSTANDARDCASE('2a',$,'Wall-01',$,$,#60,#61,$,$);
#51=IFCWALLSTANDARDCASE('2b',$,'Wall-02',$,$,#62,#63,$,$);
#52=IFCDOOR('3a',$,'Door-01',$,$,#64,#65,$,2100.,900.,$,$,$);
#53=IFCSLAB('4a',$,'Slab-01',$,$,#66,#67,$,.FLOOR.);
#70=IFCSPACE('5a',$,'Room 101',$,$,#68,#69,$,.ELEMENT.,.INTERNAL.,$);
ENDSEC;
END-ISO-10303-21;
"""

STEP_HEADER = b"ISO-10303-21;\nHEADER;\nFILE_SCHEMA(('AUTOMOTIVE_DESIGN'));\nENDSEC;\nDATA;\nENDSEC;\nEND-ISO-10303-21;\n"

# DWG 文件头: 版本号 + 二进制内容
DWG_BYTES = b"AC1032" + bytes(range(256)) * 2


# ============================================================================
# 配置 Fixtures
# ============================================================================

@pytest.fixture
def runtime_config(tmp_path: Path) -> RuntimeConfig:
    """运行期配置（目录指向临时路径，重试不退避）"""
    config = RuntimeConfig(
        storage_dir=tmp_path / "storage",
        retries=RetryConfig(max_retries=2, retry_backoff_ms=0, attempt_timeout_sec=5),
        lifecycle=LifecycleConfig(temp_dir=tmp_path / "uploads"),
        cache=CacheConfig(enabled=False),
    )
    config.ensure_dirs()
    return config


@pytest.fixture
def fast_timeout_config(runtime_config: RuntimeConfig) -> RuntimeConfig:
    """DXF 队列超时 0.05s"""
    runtime_config.queues["dxf"] = QueueConfig(concurrency=1, timeout_sec=0.05)
    return runtime_config


# ============================================================================
# 样例文件 Fixtures
# ============================================================================

@pytest.fixture
def sample_dxf_bytes() -> bytes:
    return SAMPLE_DXF.encode("ascii")


@pytest.fixture
def sample_dxf_path(tmp_path: Path, sample_dxf_bytes: bytes) -> Path:
    path = tmp_path / "sample.dxf"
    path.write_bytes(sample_dxf_bytes)
    return path


@pytest.fixture
def sample_stl_path(tmp_path: Path) -> Path:
    path = tmp_path / "tetra.stl"
    path.write_bytes(ascii_stl(TETRAHEDRON))
    return path


@pytest.fixture
def sample_ifc_path(tmp_path: Path) -> Path:
    path = tmp_path / "office.ifc"
    path.write_text(SAMPLE_IFC, encoding="utf-8")
    return path


# ============================================================================
# 模型 Fixtures
# ============================================================================

@pytest.fixture
def sample_session() -> AnalysisSession:
    return AnalysisSession(
        session_id="s-001",
        owner_id="run-001",
        file_name="sample.dxf",
        file_format="dxf",
        file_size=1024,
    )


@pytest.fixture
def electrical_parsed() -> ParsedDrawing:
    """带图块插入与分图层线长的解析结果"""
    return ParsedDrawing(
        layers=["0", "E-WIRE", "E-DEVICE"],
        raw_stats={
            "block_inserts": [
                {"name": "SOCKET", "layer": "E-DEVICE", "count": 6},
                {"name": "SOCKET", "layer": "0", "count": 2},
                {"name": "SWITCH", "layer": "E-DEVICE", "count": 3},
            ],
            "layer_lengths": {"E-WIRE": 120.5, "0": 40.0, "CABLE-TRAY": 30.0},
        },
    )


@pytest.fixture
def samples() -> dict[str, bytes]:
    """各格式样例内容"""
    return {
        "dxf": SAMPLE_DXF.encode("ascii"),
        "dxf_entities_only": ENTITIES_ONLY_DXF.encode("ascii"),
        "stl": ascii_stl(TETRAHEDRON),
        "stl_binary": binary_stl(TETRAHEDRON),
        "ifc": SAMPLE_IFC.encode("utf-8"),
        "step": STEP_HEADER,
        "dwg": DWG_BYTES,
    }


@pytest.fixture
def write_file(tmp_path: Path):
    """在临时目录写入文件"""
    def _write(name: str, data: bytes) -> Path:
        path = tmp_path / name
        path.write_bytes(data)
        return path
    return _write
