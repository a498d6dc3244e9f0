"""
HTTP 应用 - FastAPI 应用工厂

错误响应统一为 {code, message, detail?}，状态码取自异常类型。
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import RuntimeConfig, configure_logging, get_config
from ..interfaces import CADAnalyzerError
from ..pipeline import AnalysisPipeline
from . import routes

logger = logging.getLogger(__name__)


def create_app(
    config: RuntimeConfig | None = None,
    pipeline: AnalysisPipeline | None = None,
) -> FastAPI:
    config = config or get_config()
    configure_logging(config)
    config.ensure_dirs()

    app = FastAPI(title="CAD Analyzer API", version=__version__)
    app.state.config = config
    app.state.pipeline = pipeline or AnalysisPipeline(config)

    origins_env = os.getenv("API_CORS_ORIGINS", "")
    origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
    if not origins:
        origins = ["http://localhost:3000", "http://127.0.0.1:3000"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CADAnalyzerError)
    async def handle_analyzer_error(request: Request, exc: CADAnalyzerError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} → {exc.status_code} {exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.include_router(routes.router, prefix="/api")

    @app.get("/api/health")
    async def health() -> dict:
        return {
            "status": "ok",
            "version": __version__,
            "queues": app.state.pipeline.queues.stats(),
        }

    return app
