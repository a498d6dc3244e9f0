"""
DWG 转换器 - 外部 HTTP 转换服务（DWG→DXF）

职责：
- 以 multipart 上传 DWG 到 {base_url}/convert/dwg-to-dxf
- 单次请求超时 + 指数退避重试（retry_backoff_ms * 2**attempt）
- 重试耗尽后抛出 ConversionError（SERVICE_UNAVAILABLE），链接最后一次错误

依赖：
- httpx: 异步HTTP客户端（测试中使用 MockTransport）

测试要点：
- test_convert_success: 返回DXF字节
- test_convert_retries_then_succeeds: 前两次5xx，第三次成功
- test_convert_exhausts_retries: 三次均失败 → SERVICE_UNAVAILABLE
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import httpx

from ..config import RuntimeConfig
from ..config.runtime_config import RetryConfig
from ..interfaces import ConversionError, IDWGConverter

logger = logging.getLogger(__name__)

CONVERT_PATH = "/convert/dwg-to-dxf"


class HTTPDWGConverter(IDWGConverter):
    """外部 DWG 转换服务客户端"""

    def __init__(
        self,
        base_url: str,
        *,
        retries: RetryConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url must not be empty")
        self.base_url = base_url.rstrip("/")
        self.retries = retries or RetryConfig()
        self._client = http_client

    @classmethod
    def from_config(
        cls, config: RuntimeConfig, http_client: httpx.AsyncClient | None = None
    ) -> HTTPDWGConverter:
        return cls(config.converter.base_url, retries=config.retries, http_client=http_client)

    @property
    def url(self) -> str:
        return f"{self.base_url}{CONVERT_PATH}"

    async def dwg_to_dxf(self, dwg_path: Path, output_dir: Path) -> bytes:
        """DWG 转 DXF，返回 DXF 字节"""
        if not dwg_path.exists():
            raise ConversionError(f"DWG文件不存在: {dwg_path}")

        payload = await asyncio.to_thread(dwg_path.read_bytes)
        last_error: Exception | None = None

        for attempt in range(self.retries.max_retries + 1):
            try:
                content = await self._post(dwg_path.name, payload)
                logger.info(f"DWG转换成功: {dwg_path.name} (第{attempt + 1}次尝试, {len(content)} bytes)")
                return content
            except (httpx.HTTPError, ConversionError) as e:
                last_error = e
                logger.warning(f"DWG转换失败 (第{attempt + 1}次尝试): {e}")

            if attempt < self.retries.max_retries:
                await asyncio.sleep(self.retries.retry_backoff_ms * (2 ** attempt) / 1000)

        raise ConversionError(
            f"DWG转换服务不可用: {last_error}",
            detail={"attempts": self.retries.max_retries + 1, "url": self.url},
        ) from last_error

    async def _post(self, file_name: str, payload: bytes) -> bytes:
        files = {"file": (file_name, payload, "application/acad")}
        timeout = httpx.Timeout(self.retries.attempt_timeout_sec)

        if self._client is not None:
            response = await self._client.post(self.url, files=files, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(self.url, files=files)

        if response.status_code >= 400:
            raise ConversionError(
                f"DWG转换失败: {response.status_code} {response.reason_phrase}"
            )
        if not response.content:
            raise ConversionError("DWG转换服务返回空内容")
        return response.content
