"""
结果组装 - 合并解析输出与可选分析块

职责：
1. 复杂度评分: min(100, round(实体数*0.05 + 图层数*5))，四舍五入取半进位
2. 结果校验规则（必需实体/有效尺寸/元数据完整性/图层组织）
3. 置信度: 直接解析 1.0，转换/桥接 0.9，每个 error 级问题 -0.1
4. 领域分析的设备/布线补充解析结果中的空列表

测试要点：
- test_complexity_half_up: complexity_score(650, 6) == 63
- test_validation_rules
- test_devices_from_domain_fill_empty
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable

from ..models import (
    UNKNOWN,
    AIInsight,
    CADAnalysisResult,
    DomainAnalysis,
    FileInfo,
    ParsedDrawing,
    ValidationIssue,
)

DIRECT_CONFIDENCE = 1.0
INDIRECT_CONFIDENCE = 0.9
ERROR_PENALTY = 0.1


def complexity_score(entity_count: int, layer_count: int) -> int:
    """复杂度评分（0-100）"""
    raw = Decimal(str(entity_count)) * Decimal("0.05") + Decimal(layer_count) * 5
    return min(100, int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


@dataclass(frozen=True)
class ValidationRule:
    rule_id: str
    severity: str
    check: Callable[[ParsedDrawing], bool]
    message: Callable[[ParsedDrawing], str]


VALIDATION_RULES: list[ValidationRule] = [
    ValidationRule(
        "required-entities",
        "error",
        lambda p: p.entities.total > 0,
        lambda p: "文件不包含任何实体，可能为空文件或解析失败",
    ),
    ValidationRule(
        "valid-dimensions",
        "warning",
        lambda p: p.dimensions.width > 0 and p.dimensions.height > 0,
        lambda p: f"无效的文件尺寸: {p.dimensions.width}x{p.dimensions.height} {p.dimensions.unit}",
    ),
    ValidationRule(
        "metadata-completeness",
        "info",
        lambda p: p.metadata.author != UNKNOWN and p.metadata.created_at != UNKNOWN,
        lambda p: "文件缺少作者或创建日期等重要元数据",
    ),
    ValidationRule(
        "layer-organization",
        "warning",
        lambda p: len(set(p.layers)) > 1,
        lambda p: "文件没有使用多个图层，这可能影响文件的组织结构",
    ),
]


def validate_result(parsed: ParsedDrawing) -> list[ValidationIssue]:
    """按规则校验解析结果"""
    return [
        ValidationIssue(rule_id=rule.rule_id, severity=rule.severity, message=rule.message(parsed))
        for rule in VALIDATION_RULES
        if not rule.check(parsed)
    ]


def confidence_for(parsed: ParsedDrawing, issues: list[ValidationIssue]) -> float:
    base = DIRECT_CONFIDENCE if parsed.source == "direct" else INDIRECT_CONFIDENCE
    errors = sum(1 for issue in issues if issue.severity == "error")
    return round(max(0.0, base - ERROR_PENALTY * errors), 2)


class ResultAssembler:
    """结果组装器"""

    def assemble(
        self,
        session_id: str,
        file_info: FileInfo,
        parsed: ParsedDrawing,
        *,
        ai_analysis: AIInsight | None = None,
        domain_analysis: DomainAnalysis | None = None,
        thumbnail_url: str | None = None,
        processing_time_ms: int = 0,
    ) -> CADAnalysisResult:
        domain_analysis = domain_analysis or DomainAnalysis()

        devices = parsed.devices or domain_analysis.devices
        wiring = parsed.wiring if parsed.wiring.details else domain_analysis.wiring

        layers = list(dict.fromkeys(parsed.layers))

        issues = validate_result(parsed)
        issues.extend(
            ValidationIssue(rule_id="parser-warning", severity="warning", message=w)
            for w in parsed.warnings
        )

        return CADAnalysisResult(
            session_id=session_id,
            file_info=file_info,
            entities=parsed.entities,
            layers=layers,
            dimensions=parsed.dimensions,
            metadata=parsed.metadata,
            devices=devices,
            wiring=wiring,
            ai_analysis=ai_analysis or AIInsight(),
            domain_analysis=domain_analysis,
            bim_data=parsed.bim_data,
            complexity_score=complexity_score(parsed.entities.total, len(layers)),
            confidence=confidence_for(parsed, issues),
            warnings=issues,
            thumbnail_url=thumbnail_url,
            processing_time_ms=processing_time_ms,
        )
