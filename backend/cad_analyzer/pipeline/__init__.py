"""
流水线模块 - 任务编排与执行

子模块：
- task_queue: 有界并发任务队列
- stages: 流水线各阶段与进度检查点
- session_store: 会话存储
- temp_storage: 临时资源管理
- assembler: 结果组装与校验
- ai_analyzer / domain_analyzer / thumbnail: 可选分析阶段
- cache: 结果缓存
- executor: 流水线执行器
"""

from .assembler import ResultAssembler, complexity_score, validate_result
from .cache import InMemoryCache
from .executor import AnalysisPipeline
from .session_store import FileSessionStore, InMemorySessionStore
from .stages import ANALYSIS_STAGES, PipelineStage, StageEnum
from .task_queue import QueueRegistry, TaskQueue
from .temp_storage import TempResource, TempResourceManager

__all__ = [
    "AnalysisPipeline",
    "ANALYSIS_STAGES",
    "PipelineStage",
    "StageEnum",
    "TaskQueue",
    "QueueRegistry",
    "InMemorySessionStore",
    "FileSessionStore",
    "TempResource",
    "TempResourceManager",
    "ResultAssembler",
    "complexity_score",
    "validate_result",
    "InMemoryCache",
]
