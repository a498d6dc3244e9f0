"""
模块接口契约 - 定义各模块的抽象接口

设计原则：
1. 模块间通过接口通信，不直接依赖具体实现
2. 每个接口定义清晰的输入输出类型
3. 便于单元测试和mock替换

使用方式：
    from cad_analyzer.interfaces import ISessionStore

    class RedisSessionStore(ISessionStore):
        def get(self, session_id: str) -> AnalysisSession | None:
            ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import AnalysisSession, ParsedDrawing, Precision, SessionStatus


# ============================================================================
# CAD 处理模块接口
# ============================================================================

class IFormatValidator(ABC):
    """格式校验器接口 - 声明扩展名与文件头签名比对"""

    @abstractmethod
    def validate(self, path: Path, extension: str) -> bool:
        """
        校验文件内容是否与声明的扩展名一致

        Args:
            path: 临时文件路径
            extension: 声明的扩展名（不含点，小写）

        Returns:
            True 表示签名匹配；未知扩展名一律返回 False
        """
        ...


class ICADParser(ABC):
    """CAD 解析策略接口 - 每种解析方式一个实现"""

    @abstractmethod
    async def parse(self, path: Path, extension: str, precision: Precision) -> ParsedDrawing:
        """
        解析文件并返回归一化结果

        Raises:
            ServiceUnavailableError: 前置条件（配置/开关/外部服务）不满足
            FileProcessingError: 文件内容无法解析
        """
        ...


class IDWGConverter(ABC):
    """DWG 转换器接口 - DWG→DXF"""

    @abstractmethod
    async def dwg_to_dxf(self, dwg_path: Path, output_dir: Path) -> bytes:
        """
        DWG 转 DXF

        Args:
            dwg_path: 输入DWG文件路径
            output_dir: 可写的中间目录

        Returns:
            DXF 文本内容（字节）

        Raises:
            ConversionError: 转换失败
        """
        ...


class IKernelBridge(ABC):
    """几何内核桥接接口 - 读取STEP/IGES并返回内核原生文档"""

    @abstractmethod
    async def import_document(
        self, path: Path, extension: str, precision: Precision
    ) -> dict[str, Any]:
        """返回内核输出的原始文档（字段命名随桥接版本而异）"""
        ...


# ============================================================================
# 会话与协作方接口
# ============================================================================

class ISessionStore(ABC):
    """会话存储接口"""

    @abstractmethod
    def get(self, session_id: str) -> AnalysisSession | None:
        """获取会话快照（返回副本，读方修改不影响存储）"""
        ...

    @abstractmethod
    def put(self, session_id: str, session: AnalysisSession) -> None:
        """写入会话（仅创建该会话的流水线可写）"""
        ...

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """删除会话"""
        ...

    @abstractmethod
    def sweep(self, max_age: timedelta) -> int:
        """清理超过保留期的会话，返回清理数量"""
        ...

    @abstractmethod
    def list(self, status: SessionStatus | None = None, limit: int = 100) -> list[AnalysisSession]:
        """列出会话（按创建时间降序）"""
        ...


class ICacheBackend(ABC):
    """缓存协作方接口（TTL + 标签失效）"""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl: float | None = None, tags: list[str] | None = None) -> None:
        ...

    @abstractmethod
    def delete_by_tag(self, tag: str) -> int:
        ...


# ============================================================================
# 异常定义
# ============================================================================

class CADAnalyzerError(Exception):
    """基础异常（携带机器可读错误码与HTTP状态码）"""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.detail:
            payload["detail"] = self.detail
        return payload


class BadRequestError(CADAnalyzerError):
    """请求错误（缺文件/扩展名不支持/签名校验失败），不重试"""
    code = "BAD_REQUEST"
    status_code = 400


class NotFoundError(CADAnalyzerError):
    """资源不存在（会话ID未知或已清理）"""
    code = "NOT_FOUND"
    status_code = 404


class ServiceUnavailableError(CADAnalyzerError):
    """服务不可用（功能开关关闭/外部服务未配置或不可达/重试耗尽）"""
    code = "SERVICE_UNAVAILABLE"
    status_code = 503


class ConversionError(ServiceUnavailableError):
    """转换错误"""
    pass


class KernelBridgeError(ServiceUnavailableError):
    """几何内核桥接错误"""
    pass


class ProcessingTimeoutError(CADAnalyzerError):
    """队列任务超时"""
    code = "TIMEOUT"
    status_code = 504


class FileProcessingError(CADAnalyzerError):
    """解析器内部异常"""
    code = "FILE_PROCESSING_ERROR"
    status_code = 500


class SessionStateError(CADAnalyzerError):
    """会话状态非法迁移或越权写入"""
    code = "SESSION_STATE_ERROR"
    status_code = 409
