"""
缩略图服务客户端（可选）

上传文件到 {base_url}/thumbnail，响应 JSON 中的 url/thumbnailUrl 即缩略图地址。
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import httpx

from ..config import RuntimeConfig
from ..config.runtime_config import ThumbnailConfig
from ..interfaces import ServiceUnavailableError

logger = logging.getLogger(__name__)

THUMBNAIL_WIDTH = 800
THUMBNAIL_HEIGHT = 600


class ThumbnailProvider:
    """缩略图服务"""

    def __init__(self, config: ThumbnailConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self._client = http_client

    @classmethod
    def from_config(
        cls, config: RuntimeConfig, http_client: httpx.AsyncClient | None = None
    ) -> ThumbnailProvider:
        return cls(config.thumbnail, http_client=http_client)

    @property
    def configured(self) -> bool:
        return bool(self.config.base_url)

    async def generate(self, path: Path, extension: str) -> str:
        if not self.configured:
            raise ServiceUnavailableError("缩略图服务未配置: 请设置 thumbnail.base_url")

        url = f"{self.config.base_url.rstrip('/')}/thumbnail"
        payload = await asyncio.to_thread(path.read_bytes)
        files = {"file": (path.name, payload, "application/octet-stream")}
        data = {"type": extension, "width": str(THUMBNAIL_WIDTH), "height": str(THUMBNAIL_HEIGHT)}

        try:
            if self._client is not None:
                response = await self._client.post(url, files=files, data=data, timeout=self.config.timeout_sec)
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout_sec) as client:
                    response = await client.post(url, files=files, data=data)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ServiceUnavailableError(f"缩略图服务调用失败: {e}", detail={"url": url}) from e

        thumbnail_url = body.get("url") or body.get("thumbnailUrl") if isinstance(body, dict) else None
        if not thumbnail_url:
            raise ServiceUnavailableError("缩略图服务响应缺少 url", detail={"url": url})
        return str(thumbnail_url)
