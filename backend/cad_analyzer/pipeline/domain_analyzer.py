"""
领域分析 - 基于解析统计的规则分析（电气/机械/建筑/给排水/通用）

职责：
1. 确定领域模型（显式指定优先，否则按格式类别推断）
2. 由图块插入统计识别设备（名称 → 数量、所在图层）
3. 由线缆/管线图层的线长汇总布线
4. 输出各领域指标与文字洞察

测试要点：
- test_electrical_devices_and_wiring
- test_infer_mechanical_for_parametric
- test_architectural_from_bim
"""

from __future__ import annotations

import logging
from collections import defaultdict

from ..cad.formats import FormatCategory
from ..models import Device, DomainAnalysis, ParsedDrawing, WiringDetail, WiringSummary

logger = logging.getLogger(__name__)

DOMAIN_MODELS = ("electrical", "mechanical", "architectural", "plumbing", "general")

_ALIASES = {"architecture": "architectural"}

WIRING_LAYER_KEYWORDS = ("wire", "wiring", "cable", "circuit", "电缆", "导线", "线路", "配线")
PIPE_LAYER_KEYWORDS = ("pipe", "plumb", "drain", "water", "管", "给水", "排水")

_CATEGORY_DEFAULTS: dict[FormatCategory, str] = {
    FormatCategory.PARAMETRIC_3D: "mechanical",
    FormatCategory.MESH_3D: "mechanical",
    FormatCategory.BIM: "architectural",
    FormatCategory.TWO_D: "general",
}


def resolve_domain_model(model_type: str | None, category: FormatCategory) -> str:
    """显式指定优先，未知值回退为 general"""
    if model_type:
        name = _ALIASES.get(model_type.lower(), model_type.lower())
        return name if name in DOMAIN_MODELS else "general"
    return _CATEGORY_DEFAULTS.get(category, "general")


def _matches(layer: str, keywords: tuple[str, ...]) -> bool:
    lowered = layer.lower()
    return any(k in lowered for k in keywords)


class DomainAnalyzer:
    """规则领域分析器"""

    def analyze(self, parsed: ParsedDrawing, model_type: str) -> DomainAnalysis:
        devices = self.collect_devices(parsed)
        layer_lengths: dict[str, float] = parsed.raw_stats.get("layer_lengths", {})

        if model_type == "electrical":
            wiring = self.summarize_lines(layer_lengths, WIRING_LAYER_KEYWORDS, "wiring")
            insights, metrics = self._electrical(parsed, devices, wiring)
        elif model_type == "plumbing":
            wiring = self.summarize_lines(layer_lengths, PIPE_LAYER_KEYWORDS, "pipe")
            insights, metrics = self._plumbing(parsed, devices, wiring)
        elif model_type == "mechanical":
            wiring = WiringSummary()
            insights, metrics = self._mechanical(parsed)
        elif model_type == "architectural":
            wiring = WiringSummary()
            insights, metrics = self._architectural(parsed)
        else:
            wiring = WiringSummary()
            insights, metrics = self._general(parsed)

        logger.debug(f"领域分析完成: {model_type} (设备={len(devices)}, 指标={len(metrics)})")
        return DomainAnalysis(
            model_type=model_type,
            insights=insights,
            metrics=metrics,
            devices=devices,
            wiring=wiring,
        )

    @staticmethod
    def collect_devices(parsed: ParsedDrawing) -> list[Device]:
        """按图块名称汇总插入次数，位置取插入最多的图层"""
        counts: dict[str, int] = defaultdict(int)
        by_layer: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for item in parsed.raw_stats.get("block_inserts", []):
            counts[item["name"]] += item["count"]
            by_layer[item["name"]][item["layer"]] += item["count"]

        devices = []
        for name, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])):
            layers = by_layer[name]
            location = max(layers, key=lambda layer: layers[layer])
            devices.append(Device(type=name, count=count, location=location))
        return devices

    @staticmethod
    def summarize_lines(
        layer_lengths: dict[str, float], keywords: tuple[str, ...], source: str
    ) -> WiringSummary:
        details = [
            WiringDetail(path=layer, source=source, length=round(length, 3))
            for layer, length in sorted(layer_lengths.items())
            if _matches(layer, keywords) and length > 0
        ]
        return WiringSummary(
            total_length=round(sum(d.length for d in details), 3),
            details=details,
        )

    # ------------------------------------------------------------------
    # 各领域规则
    # ------------------------------------------------------------------
    @staticmethod
    def _electrical(parsed, devices, wiring) -> tuple[list[str], dict[str, float]]:
        insights = []
        device_total = sum(d.count for d in devices)
        if device_total:
            insights.append(f"识别到 {len(devices)} 类设备，共 {device_total} 个")
        else:
            insights.append("未识别到设备图块，设备统计依赖图块(INSERT)")
        if wiring.details:
            insights.append(f"布线图层 {len(wiring.details)} 个，总长度 {wiring.total_length}")
        else:
            insights.append("未找到布线图层（图层名包含 wire/cable/电缆 等）")

        metrics = {
            "device_types": float(len(devices)),
            "device_count": float(device_total),
            "wiring_length": wiring.total_length,
        }
        if device_total:
            metrics["wiring_per_device"] = round(wiring.total_length / device_total, 3)
        return insights, metrics

    @staticmethod
    def _plumbing(parsed, devices, pipes) -> tuple[list[str], dict[str, float]]:
        insights = [f"管线图层 {len(pipes.details)} 个，总长度 {pipes.total_length}"]
        fixture_total = sum(d.count for d in devices)
        if fixture_total:
            insights.append(f"识别到卫浴/阀门等图块 {fixture_total} 个")
        return insights, {
            "pipe_length": pipes.total_length,
            "fixture_count": float(fixture_total),
        }

    @staticmethod
    def _mechanical(parsed) -> tuple[list[str], dict[str, float]]:
        e = parsed.entities
        dims = parsed.dimensions
        volume = dims.width * dims.height * dims.depth
        insights = [f"拓扑: {e.solids} 实体, {e.shells} 壳, {e.faces} 面, {e.edges} 边"]
        if e.solids > 1:
            insights.append("包含多个实体，可能为装配体")
        return insights, {
            "faces": float(e.faces),
            "edges": float(e.edges),
            "solids": float(e.solids),
            "bbox_volume": round(volume, 3),
        }

    @staticmethod
    def _architectural(parsed) -> tuple[list[str], dict[str, float]]:
        bim = parsed.bim_data
        insights = []
        if bim.storeys:
            insights.append(f"楼层 {len(bim.storeys)} 个: {', '.join(bim.storeys)}")
        if bim.element_counts:
            top = sorted(bim.element_counts.items(), key=lambda kv: -kv[1])[:3]
            insights.append("主要构件: " + ", ".join(f"{k}={v}" for k, v in top))
        if not insights:
            insights.append(f"图层 {len(parsed.layers)} 个，无BIM构件数据")
        return insights, {
            "storeys": float(len(bim.storeys)),
            "spaces": float(bim.spaces),
            "building_elements": float(sum(bim.element_counts.values())),
            "layers": float(len(parsed.layers)),
        }

    @staticmethod
    def _general(parsed) -> tuple[list[str], dict[str, float]]:
        total = parsed.entities.total
        layers = len(parsed.layers)
        insights = [f"实体 {total} 个，图层 {layers} 个"]
        if layers and total / layers > 1000:
            insights.append("单图层实体密度较高，建议按用途拆分图层")
        return insights, {
            "entities": float(total),
            "layers": float(layers),
            "entities_per_layer": round(total / layers, 3) if layers else 0.0,
        }
