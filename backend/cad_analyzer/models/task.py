"""
解析任务模型 - 队列中的一次解析工作单元
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from .result import CamelModel


class Precision(str, Enum):
    """解析精度"""
    LOW = "low"
    STANDARD = "standard"
    HIGH = "high"


class PrecisionSettings(BaseModel):
    """精度对应的解析参数"""
    tolerance: float
    simplify_mesh: bool
    max_entity_count: int


PRECISION_SETTINGS: dict[Precision, PrecisionSettings] = {
    Precision.LOW: PrecisionSettings(tolerance=0.1, simplify_mesh=True, max_entity_count=50_000),
    Precision.STANDARD: PrecisionSettings(tolerance=0.01, simplify_mesh=True, max_entity_count=100_000),
    Precision.HIGH: PrecisionSettings(tolerance=0.001, simplify_mesh=False, max_entity_count=500_000),
}


class ParseTask(BaseModel):
    """解析任务（创建于提交时，仅被队列消费一次）"""
    resource_path: Path
    file_format: str
    precision: Precision = Precision.STANDARD
    enqueued_at: datetime = Field(default_factory=datetime.now)

    model_config = {"arbitrary_types_allowed": True}

    @property
    def settings(self) -> PrecisionSettings:
        return PRECISION_SETTINGS[self.precision]


class AnalysisOptions(CamelModel):
    """上传时的可选分析开关（JSON，camelCase 字段）"""
    include_ai_analysis: bool | None = None  # 未指定时仅专业分析启用
    include_thumbnail: bool = False
    domain_model: str | None = None
    screenshot_url: str | None = None
