"""
分析会话模型 - 定义单次上传分析的状态与生命周期

状态迁移：
    CREATED → PROCESSING → COMPLETED / FAILED
    CREATED → FAILED（格式校验失败等，在入队前短路）

进度约束：
- 非终态时进度单调不减
- 进入终态后不再接受进度写入
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from ..interfaces import SessionStateError


class SessionStatus(str, Enum):
    """会话状态枚举"""
    CREATED = "created"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisType(str, Enum):
    """分析类型"""
    STANDARD = "standard"            # 标准分析
    DETAILED = "detailed"            # 详细分析
    PROFESSIONAL = "professional"    # 专业分析（含AI增强）
    MEASUREMENT = "measurement"      # 测量分析


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED})


class SessionProgress(BaseModel):
    """会话进度"""
    stage: str = "CREATED"
    percent: int = 0
    message: str = ""


class AnalysisSession(BaseModel):
    """分析会话实体"""
    session_id: str = Field(..., description="UUID")
    owner_id: str = Field(..., description="创建该会话的流水线运行ID")

    # 文件信息
    file_name: str
    file_format: str
    file_size: int = 0
    analysis_type: AnalysisType = AnalysisType.STANDARD

    # 状态
    status: SessionStatus = SessionStatus.CREATED
    progress: SessionProgress = Field(default_factory=SessionProgress)

    # 结果
    flags: list[str] = Field(default_factory=list, description="可选阶段失败等告警标记")
    errors: list[str] = Field(default_factory=list, description="错误信息")
    error_code: str | None = None

    # 时间戳
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_processing(self, stage: str = "QUEUED") -> None:
        """标记为处理中"""
        if self.status != SessionStatus.CREATED:
            raise SessionStateError(
                f"会话状态不允许开始处理: {self.session_id} ({self.status.value})"
            )
        self.status = SessionStatus.PROCESSING
        self.started_at = datetime.now()
        self.progress.stage = stage

    def advance(self, percent: int, stage: str, message: str = "") -> bool:
        """
        推进进度

        终态会话忽略写入；百分比取已有值与新值的较大者。

        Returns:
            是否写入成功
        """
        if self.is_terminal:
            return False
        percent = max(0, min(100, int(percent)))
        self.progress.percent = max(self.progress.percent, percent)
        self.progress.stage = stage
        self.progress.message = message
        return True

    def mark_completed(self) -> None:
        """标记为完成"""
        if self.status != SessionStatus.PROCESSING:
            raise SessionStateError(
                f"会话状态不允许完成: {self.session_id} ({self.status.value})"
            )
        self.status = SessionStatus.COMPLETED
        self.finished_at = datetime.now()
        self.progress.percent = 100
        self.progress.stage = "COMPLETED"
        self.progress.message = "分析完成"

    def mark_failed(self, error: str, code: str | None = None) -> None:
        """标记为失败"""
        if self.status == SessionStatus.FAILED:
            return
        if self.status == SessionStatus.COMPLETED:
            raise SessionStateError(f"已完成的会话不能标记失败: {self.session_id}")
        self.status = SessionStatus.FAILED
        self.finished_at = datetime.now()
        self.error_code = code
        self.errors.append(error)
        self.progress.stage = "FAILED"
        self.progress.message = error

    def add_flag(self, flag: str) -> None:
        """添加告警标记（不中断）"""
        if flag not in self.flags:
            self.flags.append(flag)
