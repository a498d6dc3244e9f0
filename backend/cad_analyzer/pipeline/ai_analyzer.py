"""
AI 分析 - OpenAI 兼容的 chat completions 接口

职责：
1. 组装系统提示（按专业领域）与用户内容（CAD统计 + 可选截图）
2. 要求 JSON 输出（response_format=json_object）并解析为 AIInsight
3. 未配置服务或调用失败 → 抛出异常，由流水线记录为可选阶段失败

置信度：带截图 0.92，不带截图 0.85

测试要点：
- test_unconfigured_unavailable
- test_parses_json_response: MockTransport 返回 JSON 内容
- test_invalid_json_raises
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from ..config import RuntimeConfig
from ..config.runtime_config import AIConfig
from ..interfaces import ServiceUnavailableError
from ..models import AIInsight, ParsedDrawing

logger = logging.getLogger(__name__)

SPECIALTIES: dict[str, str] = {
    "electrical": "电气工程和电路设计",
    "mechanical": "机械工程和零部件设计",
    "architecture": "建筑设计和空间布局",
    "architectural": "建筑设计和空间布局",
    "plumbing": "管道系统和流体工程",
}
DEFAULT_SPECIALTY = "CAD设计和工程绘图"

CONFIDENCE_WITH_IMAGE = 0.92
CONFIDENCE_TEXT_ONLY = 0.85

SYSTEM_PROMPT = """你是一个专业的CAD图纸分析AI助手，专长于{specialty}。
请基于提供的CAD元数据和图片(如有)，进行全面专业的分析。
你的分析应该包括:
1. 图纸的整体概述和主要内容
2. 专业领域的具体见解和发现
3. 识别潜在的设计问题和优化机会
4. 符合行业标准的专业评估

请以JSON格式返回，字段: summary(字符串), observations(字符串数组),
recommendations(字符串数组), issues(对象数组: severity/description),
components(对象数组: name/count)。"""


def specialty_description(model_type: str | None) -> str:
    return SPECIALTIES.get((model_type or "").lower(), DEFAULT_SPECIALTY)


class AIAnalyzer:
    """AI 多模态分析客户端"""

    def __init__(self, config: AIConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self._client = http_client

    @classmethod
    def from_config(
        cls, config: RuntimeConfig, http_client: httpx.AsyncClient | None = None
    ) -> AIAnalyzer:
        return cls(config.ai, http_client=http_client)

    @property
    def configured(self) -> bool:
        return bool(self.config.base_url and self.config.api_key)

    def build_messages(
        self,
        parsed: ParsedDrawing,
        file_name: str,
        analysis_type: str,
        model_type: str | None = None,
        screenshot_url: str | None = None,
    ) -> list[dict[str, Any]]:
        summary = {
            "fileName": file_name,
            "entities": parsed.entities.model_dump(by_alias=True),
            "layers": parsed.layers,
            "dimensions": parsed.dimensions.model_dump(by_alias=True),
            "metadata": parsed.metadata.model_dump(by_alias=True),
        }
        content: list[dict[str, Any]] = [
            {
                "type": "text",
                "text": (
                    f"请分析以下CAD图纸数据:\n{json.dumps(summary, ensure_ascii=False, indent=2)}\n\n"
                    f"分析类型: {analysis_type}\n专业领域: {model_type or 'general'}"
                ),
            }
        ]
        if screenshot_url:
            content.append({"type": "image_url", "image_url": {"url": screenshot_url}})

        return [
            {"role": "system", "content": SYSTEM_PROMPT.format(specialty=specialty_description(model_type))},
            {"role": "user", "content": content},
        ]

    async def analyze(
        self,
        parsed: ParsedDrawing,
        file_name: str,
        analysis_type: str,
        model_type: str | None = None,
        screenshot_url: str | None = None,
    ) -> AIInsight:
        """调用补全接口"""
        if not self.configured:
            raise ServiceUnavailableError("AI分析服务未配置: 请设置 ai.base_url 与 ai.api_key")

        url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        body = {
            "model": self.config.model,
            "messages": self.build_messages(parsed, file_name, analysis_type, model_type, screenshot_url),
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "response_format": {"type": "json_object"},
        }
        headers = {"Authorization": f"Bearer {self.config.api_key}"}

        try:
            if self._client is not None:
                response = await self._client.post(url, json=body, headers=headers, timeout=self.config.timeout_sec)
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout_sec) as client:
                    response = await client.post(url, json=body, headers=headers)
            response.raise_for_status()
            insight = self.parse_response(response.json())
        except (httpx.HTTPError, ValueError) as e:
            raise ServiceUnavailableError(f"AI分析服务调用失败: {e}", detail={"url": url}) from e

        insight.confidence_score = CONFIDENCE_WITH_IMAGE if screenshot_url else CONFIDENCE_TEXT_ONLY
        insight.model = self.config.model
        logger.info(f"AI分析完成: {file_name} (问题数={len(insight.issues)})")
        return insight

    @staticmethod
    def parse_response(payload: dict[str, Any]) -> AIInsight:
        try:
            content = payload["choices"][0]["message"]["content"] or "{}"
            data = json.loads(content)
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
            raise ValueError(f"无法解析AI响应: {e}") from e

        if not isinstance(data, dict):
            raise ValueError("AI响应不是JSON对象")

        def strings(key: str) -> list[str]:
            value = data.get(key) or []
            return [str(v) for v in value] if isinstance(value, list) else [str(value)]

        def objects(key: str) -> list[dict[str, Any]]:
            value = data.get(key) or []
            return [v for v in value if isinstance(v, dict)] if isinstance(value, list) else []

        return AIInsight(
            summary=str(data.get("summary") or ""),
            observations=strings("observations") or strings("categorySpecificInsights"),
            recommendations=strings("recommendations"),
            issues=objects("issues"),
            components=objects("components"),
        )
