"""
流水线执行器 - 单次上传的端到端编排

流程：
1. 大小/扩展名检查（失败 → BAD_REQUEST，不创建临时资源）
2. 结果缓存命中则直接返回
3. 创建会话 → 写入临时资源 → 签名校验
4. 解析任务提交到格式对应的队列（超时 → TIMEOUT）
5. 检查点推进进度（每次 await 之后重新读取会话）
6. 可选阶段（AI/领域/缩略图）失败只记录标记
7. 组装结果 → 会话完成 → 写入缓存
8. 任何退出路径都释放临时资源；失败时会话标记为 FAILED 并重新抛出

测试要点：
- test_analyze_dxf_success: 完成后会话 COMPLETED、进度 100
- test_ai_failure_still_completes: aiAnalysis 为空，会话带 ai_analysis_failed 标记
- test_temp_released_on_success/error/timeout
- test_signature_mismatch_bad_request: 会话 FAILED，未入队
- test_parse_upload_uses_format_queue: 独立解析使用格式队列
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import timedelta
from typing import Any, Awaitable, Callable

import httpx

from ..cad import CADParserDispatcher, FormatValidator, resolve_format
from ..cad.formats import CADFormat, extension_of
from ..config import RuntimeConfig, get_config
from ..interfaces import (
    BadRequestError,
    CADAnalyzerError,
    ICacheBackend,
    ICADParser,
    IFormatValidator,
    ISessionStore,
    ServiceUnavailableError,
    SessionStateError,
)
from ..models import (
    AIInsight,
    AnalysisOptions,
    AnalysisSession,
    AnalysisType,
    CADAnalysisResult,
    DomainAnalysis,
    FileInfo,
    ParsedDrawing,
    ParseTask,
    Precision,
)
from .ai_analyzer import AIAnalyzer
from .assembler import ResultAssembler
from .cache import InMemoryCache, cache_key
from .domain_analyzer import DomainAnalyzer, resolve_domain_model
from .session_store import InMemorySessionStore
from .stages import ANALYSIS_STAGES, PipelineStage, StageEnum
from .task_queue import QueueRegistry
from .temp_storage import TempResource, TempResourceManager
from .thumbnail import ThumbnailProvider

logger = logging.getLogger(__name__)


class AnalysisPipeline:
    """分析流水线"""

    def __init__(
        self,
        config: RuntimeConfig | None = None,
        *,
        session_store: ISessionStore | None = None,
        dispatcher: ICADParser | None = None,
        validator: IFormatValidator | None = None,
        temp_manager: TempResourceManager | None = None,
        queues: QueueRegistry | None = None,
        cache: ICacheBackend | None = None,
        ai_analyzer: AIAnalyzer | None = None,
        domain_analyzer: DomainAnalyzer | None = None,
        thumbnail_provider: ThumbnailProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config or get_config()
        self.sessions = session_store or InMemorySessionStore()
        self.dispatcher = dispatcher or CADParserDispatcher(self.config, http_client=http_client)
        self.validator = validator or FormatValidator(self.config.upload_limits.signature_prefix_bytes)
        self.temp = temp_manager or TempResourceManager.from_config(self.config)
        self.queues = queues or QueueRegistry(self.config)
        self.cache = cache or InMemoryCache(default_ttl=self.config.cache.ttl_sec)
        self.ai = ai_analyzer or AIAnalyzer.from_config(self.config, http_client=http_client)
        self.domain = domain_analyzer or DomainAnalyzer()
        self.thumbnails = thumbnail_provider or ThumbnailProvider.from_config(self.config, http_client=http_client)
        self.assembler = ResultAssembler()

    # ------------------------------------------------------------------
    # 入口
    # ------------------------------------------------------------------
    def check_upload(self, file_name: str, size: int) -> CADFormat:
        """扩展名与大小检查（不读取内容）"""
        if not file_name:
            raise BadRequestError("未提供文件")

        ext = extension_of(file_name)
        if ext not in self.config.upload_limits.allowed_exts:
            raise BadRequestError(
                f"不支持的文件格式: {ext}",
                detail={"extension": ext, "supported": self.config.upload_limits.allowed_exts},
            )
        fmt = resolve_format(ext)

        if size <= 0:
            raise BadRequestError("文件为空")
        if size > self.config.max_file_bytes:
            raise BadRequestError(
                f"文件过大: {size / (1024 * 1024):.2f}MB，最大允许 {self.config.upload_limits.max_file_mb}MB",
                detail={"size": size, "max_bytes": self.config.max_file_bytes},
            )
        return fmt

    async def analyze(
        self,
        file_name: str,
        data: bytes,
        precision: Precision = Precision.STANDARD,
        analysis_type: AnalysisType = AnalysisType.STANDARD,
        options: AnalysisOptions | None = None,
    ) -> CADAnalysisResult:
        """执行一次完整分析"""
        started = time.perf_counter()
        options = options or AnalysisOptions()
        fmt = self.check_upload(file_name, len(data))

        key = cache_key(data, fmt.extension, precision.value, analysis_type.value, options.model_dump_json())
        if self.config.cache.enabled:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info(f"命中结果缓存: {file_name}")
                return cached.model_copy(deep=True)

        session = AnalysisSession(
            session_id=str(uuid.uuid4()),
            owner_id=str(uuid.uuid4()),
            file_name=file_name,
            file_format=fmt.extension,
            file_size=len(data),
            analysis_type=analysis_type,
        )
        self.sessions.put(session.session_id, session)
        logger.info(f"[{session.session_id}] 开始分析: {file_name} ({fmt.extension}, {len(data)} bytes)")

        try:
            async with self.temp.acquire(data, fmt.extension) as resource:
                result = await self._run(session, fmt, resource, precision, analysis_type, options, started)
        except CADAnalyzerError as e:
            logger.error(f"[{session.session_id}] 分析失败: {e.code}: {e.message}")
            self._fail(session, e.message, e.code)
            raise
        except asyncio.CancelledError:
            self._fail(session, "分析已取消", "CANCELLED")
            raise
        except Exception as e:
            logger.exception(f"[{session.session_id}] 分析异常: {file_name}")
            self._fail(session, str(e), "INTERNAL_ERROR")
            raise

        if self.config.cache.enabled:
            self.cache.set(
                key,
                result.model_copy(deep=True),
                ttl=self.config.cache.ttl_sec,
                tags=[f"session:{session.session_id}", f"format:{fmt.extension}"],
            )
        return result

    async def _run(
        self,
        session: AnalysisSession,
        fmt: CADFormat,
        resource: TempResource,
        precision: Precision,
        analysis_type: AnalysisType,
        options: AnalysisOptions,
        started: float,
    ) -> CADAnalysisResult:
        await self._check_signature(resource, fmt)
        self._update(session, lambda s: s.mark_processing(StageEnum.QUEUED.value))

        task = ParseTask(resource_path=resource.path, file_format=fmt.extension, precision=precision)
        parsed = await self.queues.get(fmt.queue).submit(
            lambda: self.dispatcher.parse(task.resource_path, task.file_format, task.precision)
        )
        self._checkpoint(session, ANALYSIS_STAGES[StageEnum.METADATA].progress_end, StageEnum.METADATA.value, "元数据已读取")
        self._checkpoint(session, ANALYSIS_STAGES[StageEnum.ENTITIES].progress_end, StageEnum.ENTITIES.value, "实体已提取")

        ai_insight: AIInsight | None = None
        if self._wants_ai(analysis_type, options):
            ai_insight = await self._optional(
                session,
                ANALYSIS_STAGES[StageEnum.AI_ANALYSIS],
                lambda: self.queues.get("ai").submit(
                    lambda: self.ai.analyze(
                        parsed,
                        session.file_name,
                        analysis_type.value,
                        model_type=options.domain_model,
                        screenshot_url=options.screenshot_url,
                    )
                ),
            )

        domain: DomainAnalysis | None = None
        if options.domain_model or analysis_type in (AnalysisType.DETAILED, AnalysisType.PROFESSIONAL):
            model_type = resolve_domain_model(options.domain_model, fmt.category)
            domain = await self._optional(
                session,
                ANALYSIS_STAGES[StageEnum.DOMAIN_ANALYSIS],
                lambda: asyncio.to_thread(self.domain.analyze, parsed, model_type),
            )

        thumbnail_url: str | None = None
        if options.include_thumbnail:
            thumbnail_url = await self._optional(
                session,
                ANALYSIS_STAGES[StageEnum.THUMBNAIL],
                lambda: self.thumbnails.generate(resource.path, fmt.extension),
            )

        result = self.assembler.assemble(
            session.session_id,
            FileInfo(id=session.session_id, name=session.file_name, type=fmt.extension, size=session.file_size),
            parsed,
            ai_analysis=ai_insight,
            domain_analysis=domain,
            thumbnail_url=thumbnail_url,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
        )

        self._update(session, lambda s: s.mark_completed())
        logger.info(
            f"[{session.session_id}] 分析完成: {session.file_name} "
            f"(复杂度={result.complexity_score}, 耗时={result.processing_time_ms}ms)"
        )
        return result

    async def _check_signature(self, resource: TempResource, fmt: CADFormat) -> None:
        valid = await asyncio.to_thread(self.validator.validate, resource.path, fmt.extension)
        if not valid:
            raise BadRequestError(
                f"文件内容与扩展名不匹配: {fmt.extension}",
                detail={"extension": fmt.extension},
            )

    @staticmethod
    def _wants_ai(analysis_type: AnalysisType, options: AnalysisOptions) -> bool:
        if options.include_ai_analysis is not None:
            return options.include_ai_analysis
        return analysis_type == AnalysisType.PROFESSIONAL

    async def _optional(
        self,
        session: AnalysisSession,
        stage: PipelineStage,
        factory: Callable[[], Awaitable[Any]],
    ) -> Any:
        """可选阶段：失败记录标记并返回 None"""
        self._checkpoint(session, stage.progress_start, stage.name, f"开始阶段: {stage.name}")
        try:
            value = await factory()
        except Exception as e:
            logger.warning(f"[{session.session_id}] 可选阶段失败: {stage.name}: {e}")
            self._update(session, lambda s: s.add_flag(stage.failure_flag))
            value = None
        self._checkpoint(session, stage.progress_end, stage.name, f"阶段结束: {stage.name}")
        return value

    # ------------------------------------------------------------------
    # 独立端点（不创建会话，各自使用对应队列）
    # ------------------------------------------------------------------
    async def parse_upload(
        self,
        file_name: str,
        data: bytes,
        precision: Precision = Precision.STANDARD,
        *,
        queue: str | None = None,
    ) -> tuple[CADFormat, ParsedDrawing]:
        """仅解析；指定 queue 时只接受登记到该队列的格式"""
        fmt = self.check_upload(file_name, len(data))
        if queue is not None and fmt.queue != queue:
            raise BadRequestError(
                f"该接口只接受 {queue} 格式文件: {fmt.extension}",
                detail={"extension": fmt.extension, "expected": queue},
            )

        async with self.temp.acquire(data, fmt.extension) as resource:
            await self._check_signature(resource, fmt)
            parsed = await self.queues.get(fmt.queue).submit(
                lambda: self.dispatcher.parse(resource.path, fmt.extension, precision)
            )
        logger.info(f"解析完成: {file_name} ({fmt.extension}, 实体={parsed.entities.total})")
        return fmt, parsed

    async def analyze_with_ai(
        self,
        file_name: str,
        data: bytes,
        analysis_type: AnalysisType = AnalysisType.PROFESSIONAL,
        options: AnalysisOptions | None = None,
    ) -> AIInsight:
        """解析后执行AI多模态分析（失败直接抛出）"""
        options = options or AnalysisOptions()
        if not self.ai.configured:
            raise ServiceUnavailableError("AI分析服务未配置: 请设置 ai.base_url 与 ai.api_key")

        _, parsed = await self.parse_upload(file_name, data)
        return await self.queues.get("ai").submit(
            lambda: self.ai.analyze(
                parsed,
                file_name,
                analysis_type.value,
                model_type=options.domain_model,
                screenshot_url=options.screenshot_url,
            )
        )

    async def generate_thumbnail(self, file_name: str, data: bytes) -> str:
        if not self.thumbnails.configured:
            raise ServiceUnavailableError("缩略图服务未配置: 请设置 thumbnail.base_url")

        fmt = self.check_upload(file_name, len(data))
        async with self.temp.acquire(data, fmt.extension) as resource:
            await self._check_signature(resource, fmt)
            return await self.queues.get("thumbnail").submit(
                lambda: self.thumbnails.generate(resource.path, fmt.extension)
            )

    # ------------------------------------------------------------------
    # 会话写入（每次 await 之后重新读取存储）
    # ------------------------------------------------------------------
    def _update(
        self, session: AnalysisSession, mutate: Callable[[AnalysisSession], Any]
    ) -> AnalysisSession | None:
        current = self.sessions.get(session.session_id)
        if current is None:
            logger.warning(f"[{session.session_id}] 会话已被删除，跳过写入")
            return None
        if current.is_terminal:
            return current
        mutate(current)
        self.sessions.put(current.session_id, current)
        return current

    def _checkpoint(self, session: AnalysisSession, percent: int, stage: str, message: str = "") -> None:
        self._update(session, lambda s: s.advance(percent, stage, message))

    def _fail(self, session: AnalysisSession, error: str, code: str) -> None:
        try:
            self._update(session, lambda s: s.mark_failed(error, code))
        except SessionStateError as e:
            logger.warning(f"[{session.session_id}] 无法标记会话失败: {e}")

    # ------------------------------------------------------------------
    # 查询与清理
    # ------------------------------------------------------------------
    def get_session(self, session_id: str) -> AnalysisSession | None:
        return self.sessions.get(session_id)

    def cleanup(self, max_age: timedelta | None = None) -> dict[str, int]:
        """按保留期清理临时目录与会话"""
        max_age = max_age or timedelta(hours=self.config.lifecycle.retention_hours)
        temp_removed = self.temp.sweep(max_age)
        sessions_removed = self.sessions.sweep(max_age)
        logger.info(f"清理完成: 临时目录 {temp_removed}, 会话 {sessions_removed}")
        return {"tempDirs": temp_removed, "sessions": sessions_removed}
