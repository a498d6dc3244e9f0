"""
数据模型层 - 定义系统核心数据结构

所有模块通过这些模型交互，实现解耦：
- AnalysisSession: 分析会话状态与生命周期
- ParseTask: 队列中的解析工作单元
- ParsedDrawing: 各解析策略的归一化输出
- CADAnalysisResult: 对外分析结果
"""

from .result import (
    UNKNOWN,
    AIInsight,
    BIMData,
    CADAnalysisResult,
    CADMetadata,
    Device,
    Dimensions,
    DomainAnalysis,
    EntityCounts,
    FileInfo,
    ParsedDrawing,
    ValidationIssue,
    WiringDetail,
    WiringSummary,
)
from .session import AnalysisSession, AnalysisType, SessionProgress, SessionStatus
from .task import PRECISION_SETTINGS, AnalysisOptions, ParseTask, Precision, PrecisionSettings

__all__ = [
    "AnalysisSession",
    "AnalysisType",
    "SessionProgress",
    "SessionStatus",
    "AnalysisOptions",
    "ParseTask",
    "Precision",
    "PrecisionSettings",
    "PRECISION_SETTINGS",
    "UNKNOWN",
    "AIInsight",
    "BIMData",
    "CADAnalysisResult",
    "CADMetadata",
    "Device",
    "Dimensions",
    "DomainAnalysis",
    "EntityCounts",
    "FileInfo",
    "ParsedDrawing",
    "ValidationIssue",
    "WiringDetail",
    "WiringSummary",
]
