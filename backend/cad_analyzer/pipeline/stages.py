"""
流水线阶段定义

职责：
1. 定义各阶段名称与进度检查点
2. 区分必需阶段与可选阶段（可选阶段失败只记录标记）

测试要点：
- test_checkpoints_monotonic: 检查点单调递增
- test_optional_stage_flag: 可选阶段标记名称
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class StageEnum(str, Enum):
    """流水线阶段枚举"""
    QUEUED = "QUEUED"
    METADATA = "METADATA"
    ENTITIES = "ENTITIES"
    AI_ANALYSIS = "AI_ANALYSIS"
    DOMAIN_ANALYSIS = "DOMAIN_ANALYSIS"
    THUMBNAIL = "THUMBNAIL"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class PipelineStage:
    """流水线阶段"""
    name: str
    progress_start: int  # 进度起点（0-100）
    progress_end: int    # 进度终点
    optional: bool = False

    @property
    def failure_flag(self) -> str:
        return f"{self.name.lower()}_failed"


ANALYSIS_STAGES: dict[StageEnum, PipelineStage] = {
    StageEnum.QUEUED: PipelineStage(StageEnum.QUEUED.value, 0, 5),
    StageEnum.METADATA: PipelineStage(StageEnum.METADATA.value, 5, 10),
    StageEnum.ENTITIES: PipelineStage(StageEnum.ENTITIES.value, 10, 30),
    StageEnum.AI_ANALYSIS: PipelineStage(StageEnum.AI_ANALYSIS.value, 50, 70, optional=True),
    StageEnum.DOMAIN_ANALYSIS: PipelineStage(StageEnum.DOMAIN_ANALYSIS.value, 70, 90, optional=True),
    StageEnum.THUMBNAIL: PipelineStage(StageEnum.THUMBNAIL.value, 90, 90, optional=True),
    StageEnum.COMPLETED: PipelineStage(StageEnum.COMPLETED.value, 100, 100),
}
