"""
CAD 分析接口

- POST /cad/upload      上传并分析
- POST /cad/validate    仅做格式签名校验
- POST /cad/{fmt}-parse  按格式解析（dxf/dwg/step/iges，各自队列）
- POST /cad/ai-multimodal-analysis  解析后AI分析
- POST /cad/generate-thumbnail      生成缩略图
- GET  /cad/sessions/{id}  查询会话进度
- POST /cad/cleanup     清理过期临时目录与会话
"""

from __future__ import annotations

import asyncio
import time

from fastapi import APIRouter, File, Form, Request, UploadFile
from pydantic import ValidationError

from ..cad import CAD_FORMATS
from ..interfaces import BadRequestError, NotFoundError
from ..models import AnalysisOptions, AnalysisType, Precision
from ..pipeline import AnalysisPipeline

router = APIRouter(prefix="/cad", tags=["cad"])

# 独立解析接口 → 队列名
PARSE_ROUTES = ("dxf", "dwg", "step", "iges")


def get_pipeline(request: Request) -> AnalysisPipeline:
    return request.app.state.pipeline


def _parse_enum(enum_cls, value: str | None, field: str):
    try:
        return enum_cls((value or "").strip().lower())
    except ValueError as e:
        allowed = [m.value for m in enum_cls]
        raise BadRequestError(
            f"无效的参数 {field}: {value}",
            detail={"field": field, "allowed": allowed},
        ) from e


def _parse_options(raw: str | None) -> AnalysisOptions:
    if not raw:
        return AnalysisOptions()
    try:
        return AnalysisOptions.model_validate_json(raw)
    except ValidationError as e:
        raise BadRequestError(f"无效的 options: {e.error_count()} 个字段错误", detail={"field": "options"}) from e


async def _read_upload(file: UploadFile | None) -> tuple[str, bytes]:
    if file is None or not file.filename:
        raise BadRequestError("未提供文件")
    try:
        data = await file.read()
    finally:
        await file.close()
    return file.filename, data


@router.post("/upload")
async def upload_cad(
    request: Request,
    file: UploadFile | None = File(None),
    precision: str = Form("standard"),
    analysis_type: str = Form("standard", alias="analysisType"),
    options: str | None = Form(None),
) -> dict:
    """上传CAD文件并执行分析"""
    pipeline = get_pipeline(request)
    file_name, data = await _read_upload(file)

    result = await pipeline.analyze(
        file_name,
        data,
        precision=_parse_enum(Precision, precision, "precision"),
        analysis_type=_parse_enum(AnalysisType, analysis_type, "analysisType"),
        options=_parse_options(options),
    )
    return result.model_dump(by_alias=True, mode="json")


@router.post("/validate")
async def validate_cad(request: Request, file: UploadFile | None = File(None)) -> dict:
    """校验文件内容与扩展名是否一致（不解析）"""
    pipeline = get_pipeline(request)
    file_name, data = await _read_upload(file)
    fmt = pipeline.check_upload(file_name, len(data))

    async with pipeline.temp.acquire(data, fmt.extension) as resource:
        valid = await pipeline.queues.get("upload").submit(
            lambda: asyncio.to_thread(pipeline.validator.validate, resource.path, fmt.extension)
        )

    return {
        "valid": valid,
        "format": fmt.extension,
        "category": fmt.category.value,
        "strategy": fmt.strategy.value,
    }


@router.post("/ai-multimodal-analysis")
async def ai_multimodal_analysis(
    request: Request,
    file: UploadFile | None = File(None),
    analysis_type: str = Form("professional", alias="analysisType"),
    options: str | None = Form(None),
) -> dict:
    """解析后调用AI多模态分析（可附带截图地址）"""
    pipeline = get_pipeline(request)
    file_name, data = await _read_upload(file)

    insight = await pipeline.analyze_with_ai(
        file_name,
        data,
        analysis_type=_parse_enum(AnalysisType, analysis_type, "analysisType"),
        options=_parse_options(options),
    )
    return insight.model_dump(by_alias=True, mode="json")


@router.post("/generate-thumbnail")
async def generate_thumbnail(request: Request, file: UploadFile | None = File(None)) -> dict:
    pipeline = get_pipeline(request)
    file_name, data = await _read_upload(file)
    return {"thumbnailUrl": await pipeline.generate_thumbnail(file_name, data)}


@router.post("/{kind}-parse")
async def parse_cad(
    request: Request,
    kind: str,
    file: UploadFile | None = File(None),
    precision: str = Form("standard"),
) -> dict:
    """按格式解析（不创建会话）"""
    if kind not in PARSE_ROUTES:
        raise NotFoundError(f"未知的解析接口: {kind}-parse", detail={"supported": list(PARSE_ROUTES)})

    pipeline = get_pipeline(request)
    file_name, data = await _read_upload(file)
    started = time.perf_counter()

    fmt, parsed = await pipeline.parse_upload(
        file_name,
        data,
        _parse_enum(Precision, precision, "precision"),
        queue=kind,
    )
    body = parsed.model_dump(by_alias=True, mode="json")
    body["fileInfo"] = {"name": file_name, "type": fmt.extension, "size": len(data)}
    body["processingTimeMs"] = int((time.perf_counter() - started) * 1000)
    return body


@router.get("/formats")
async def list_formats() -> dict:
    """支持的格式"""
    items = []
    for fmt in CAD_FORMATS.values():
        items.append({
            "extension": fmt.extension,
            "description": fmt.description,
            "category": fmt.category.value,
            "strategy": fmt.strategy.value,
        })
    return {"items": items}


@router.get("/sessions/{session_id}")
async def get_session(request: Request, session_id: str) -> dict:
    """查询会话状态与进度"""
    session = get_pipeline(request).get_session(session_id)
    if session is None:
        raise NotFoundError(f"会话不存在: {session_id}", detail={"session_id": session_id})

    return {
        "sessionId": session.session_id,
        "fileName": session.file_name,
        "fileFormat": session.file_format,
        "status": session.status.value,
        "progress": session.progress.model_dump(),
        "flags": session.flags,
        "errors": session.errors,
        "errorCode": session.error_code,
        "createdAt": session.created_at.isoformat(),
        "finishedAt": session.finished_at.isoformat() if session.finished_at else None,
    }


@router.post("/cleanup")
async def cleanup(request: Request) -> dict:
    """清理超过保留期的临时目录与会话"""
    removed = await asyncio.to_thread(get_pipeline(request).cleanup)
    return {"success": True, "removed": removed}
