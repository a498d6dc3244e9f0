"""
HTTP 接口层 - FastAPI 应用与路由

启动：
    uvicorn cad_analyzer.api:create_app --factory
"""

from .app import create_app

__all__ = ["create_app"]
