"""
分析结果模型 - 各解析策略的归一化输出与对外结果

约定：
- 所有可选块默认为"空但类型完整"的结构，不出现 None
- 元数据缺失时使用 "unknown" 哨兵值
- 对外序列化使用 camelCase 字段名（model_dump(by_alias=True)）
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

UNKNOWN = "unknown"


class CamelModel(BaseModel):
    """camelCase 序列化基类"""

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class EntityCounts(CamelModel):
    """实体计数（2D图元 + 3D拓扑）"""
    lines: int = 0
    circles: int = 0
    arcs: int = 0
    polylines: int = 0
    text: int = 0
    dimensions: int = 0
    blocks: int = 0
    faces: int = 0
    edges: int = 0
    vertices: int = 0
    shells: int = 0
    solids: int = 0

    @property
    def total(self) -> int:
        return sum(self.model_dump().values())


class Dimensions(CamelModel):
    """包围尺寸"""
    width: float = 0.0
    height: float = 0.0
    depth: float = 0.0
    unit: str = "unit"


class CADMetadata(CamelModel):
    """文件元数据"""
    author: str = UNKNOWN
    software: str = UNKNOWN
    created_at: str = UNKNOWN
    modified_at: str = UNKNOWN
    version: str = UNKNOWN


class Device(CamelModel):
    """识别出的设备"""
    type: str
    count: int = 0
    location: str = ""


class WiringDetail(CamelModel):
    """布线分段"""
    path: str = ""
    source: str = ""
    length: float = 0.0


class WiringSummary(CamelModel):
    """布线汇总"""
    total_length: float = 0.0
    details: list[WiringDetail] = Field(default_factory=list)


class AIInsight(CamelModel):
    """AI 分析块"""
    summary: str = ""
    observations: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    issues: list[dict[str, Any]] = Field(default_factory=list)
    components: list[dict[str, Any]] = Field(default_factory=list)
    confidence_score: float = 0.0
    model: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.summary or self.observations or self.recommendations or self.issues)


class DomainAnalysis(CamelModel):
    """领域分析块"""
    model_type: str = ""
    insights: list[str] = Field(default_factory=list)
    metrics: dict[str, float] = Field(default_factory=dict)
    devices: list[Device] = Field(default_factory=list)
    wiring: WiringSummary = Field(default_factory=WiringSummary)

    @property
    def is_empty(self) -> bool:
        return not (self.model_type or self.insights or self.metrics)


class BIMData(CamelModel):
    """BIM/IFC 数据块"""
    schema_version: str = ""
    project_name: str = ""
    element_counts: dict[str, int] = Field(default_factory=dict)
    storeys: list[str] = Field(default_factory=list)
    spaces: int = 0


class ValidationIssue(CamelModel):
    """结果校验问题"""
    rule_id: str
    severity: str
    message: str


class FileInfo(CamelModel):
    """文件信息"""
    id: str
    name: str
    type: str
    size: int = 0


class ParsedDrawing(CamelModel):
    """解析策略的统一输出"""
    entities: EntityCounts = Field(default_factory=EntityCounts)
    layers: list[str] = Field(default_factory=list)
    dimensions: Dimensions = Field(default_factory=Dimensions)
    metadata: CADMetadata = Field(default_factory=CADMetadata)
    devices: list[Device] = Field(default_factory=list)
    wiring: WiringSummary = Field(default_factory=WiringSummary)
    bim_data: BIMData = Field(default_factory=BIMData)

    # 供领域分析使用的原始统计（如图块插入计数、分图层线长）
    raw_stats: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)

    # 解析来源（direct/converted/bridged）
    source: str = "direct"


class CADAnalysisResult(CamelModel):
    """对外分析结果"""
    session_id: str
    file_info: FileInfo
    entities: EntityCounts = Field(default_factory=EntityCounts)
    layers: list[str] = Field(default_factory=list)
    dimensions: Dimensions = Field(default_factory=Dimensions)
    metadata: CADMetadata = Field(default_factory=CADMetadata)
    devices: list[Device] = Field(default_factory=list)
    wiring: WiringSummary = Field(default_factory=WiringSummary)
    ai_analysis: AIInsight = Field(default_factory=AIInsight)
    domain_analysis: DomainAnalysis = Field(default_factory=DomainAnalysis)
    bim_data: BIMData = Field(default_factory=BIMData)
    complexity_score: int = 0
    confidence: float = 0.0
    warnings: list[ValidationIssue] = Field(default_factory=list)
    thumbnail_url: str | None = None
    processing_time_ms: int = 0
