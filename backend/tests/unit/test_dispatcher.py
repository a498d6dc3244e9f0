"""
解析分发与外部服务客户端测试（DWG 转换 / 几何内核桥接）
"""

import asyncio
import json

import httpx
import pytest

from cad_analyzer.cad import (
    CADParserDispatcher,
    HTTPDWGConverter,
    HTTPKernelBridge,
    KernelDocumentAdapter,
    ODAConverter,
    ParseStrategy,
)
from cad_analyzer.config.runtime_config import RetryConfig
from cad_analyzer.interfaces import (
    ConversionError,
    FileProcessingError,
    KernelBridgeError,
    ServiceUnavailableError,
)
from cad_analyzer.models import Precision


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestDispatcher:
    """分发器测试"""

    def test_every_strategy_has_handler(self, runtime_config):
        """测试每个策略都有处理函数"""
        dispatcher = CADParserDispatcher(runtime_config)
        assert set(dispatcher.handlers) == set(ParseStrategy)

    def test_direct_dxf(self, runtime_config, sample_dxf_path):
        """测试直接解析DXF"""
        dispatcher = CADParserDispatcher(runtime_config)
        parsed = asyncio.run(dispatcher.parse(sample_dxf_path, "dxf", Precision.STANDARD))
        assert parsed.entities.lines == 3
        assert parsed.source == "direct"

    def test_kernel_disabled_unavailable(self, runtime_config, write_file, samples):
        """测试 STEP 在内核关闭时 503"""
        dispatcher = CADParserDispatcher(runtime_config)
        path = write_file("part.step", samples["step"])
        with pytest.raises(ServiceUnavailableError) as exc_info:
            asyncio.run(dispatcher.parse(path, "step", Precision.STANDARD))
        assert exc_info.value.status_code == 503
        assert exc_info.value.code == "SERVICE_UNAVAILABLE"

    def test_kernel_enabled_without_bridge(self, runtime_config, write_file, samples):
        """测试内核开启但未配置服务地址"""
        runtime_config.kernel_bridge.enabled = True
        dispatcher = CADParserDispatcher(runtime_config)
        with pytest.raises(ServiceUnavailableError):
            asyncio.run(dispatcher.parse(write_file("a.igs", samples["step"]), "igs", Precision.STANDARD))

    def test_dwg_unconfigured_unavailable(self, runtime_config, write_file, samples):
        """测试 DWG 无转换服务时 503"""
        dispatcher = CADParserDispatcher(runtime_config)
        path = write_file("plan.dwg", samples["dwg"])
        with pytest.raises(ServiceUnavailableError) as exc_info:
            asyncio.run(dispatcher.parse(path, "dwg", Precision.STANDARD))
        assert exc_info.value.detail == {"format": "dwg"}

    def test_resolve_dwg_converter_prefers_http(self, runtime_config):
        """测试转换服务优先于本地 ODA"""
        runtime_config.oda.exe_path = "/opt/oda/ODAFileConverter"
        assert isinstance(CADParserDispatcher(runtime_config).resolve_dwg_converter(), ODAConverter)

        runtime_config.converter.base_url = "http://dwg-converter:8080"
        assert isinstance(CADParserDispatcher(runtime_config).resolve_dwg_converter(), HTTPDWGConverter)

    def test_dwg_http_conversion(self, runtime_config, write_file, samples):
        """测试 MockTransport 返回DXF"""
        runtime_config.converter.base_url = "http://dwg-converter:8080"

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/convert/dwg-to-dxf"
            return httpx.Response(200, content=samples["dxf"])

        async def scenario():
            async with _client(handler) as client:
                dispatcher = CADParserDispatcher(runtime_config, http_client=client)
                return await dispatcher.parse(write_file("plan.dwg", samples["dwg"]), "dwg", Precision.STANDARD)

        parsed = asyncio.run(scenario())
        assert parsed.entities.lines == 3
        assert parsed.source == "converted"
        assert parsed.metadata.software.startswith("DXF (converted from DWG)")

    def test_kernel_bridge_import(self, runtime_config, write_file, samples):
        """测试内核桥接返回文档的归一化"""
        runtime_config.kernel_bridge.enabled = True
        runtime_config.kernel_bridge.base_url = "http://kernel:9000"
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            return httpx.Response(200, json={
                "statistics": {"faces": 12, "edges": 24, "vertices": 8, "solids": 1, "shells": 1},
                "boundingBox": {"width": 10, "height": 20, "depth": 30},
                "header": {"originatingSystem": "SolidWorks 2023", "schema": "AP214"},
            })

        async def scenario():
            async with _client(handler) as client:
                dispatcher = CADParserDispatcher(runtime_config, http_client=client)
                return await dispatcher.parse(write_file("part.stp", samples["step"]), "stp", Precision.HIGH)

        parsed = asyncio.run(scenario())
        assert seen["path"] == "/import/stp"
        assert parsed.entities.faces == 12
        assert parsed.dimensions.depth == 30
        assert parsed.metadata.software == "SolidWorks 2023"
        assert parsed.source == "bridged"

    def test_unexpected_error_wrapped(self, runtime_config, sample_dxf_path, monkeypatch):
        """测试非预期异常包装为 FILE_PROCESSING_ERROR"""
        dispatcher = CADParserDispatcher(runtime_config)

        async def broken(path, fmt, precision):
            raise KeyError("layer")

        monkeypatch.setitem(dispatcher.handlers, ParseStrategy.DIRECT, broken)
        with pytest.raises(FileProcessingError) as exc_info:
            asyncio.run(dispatcher.parse(sample_dxf_path, "dxf", Precision.STANDARD))
        assert exc_info.value.status_code == 500
        assert exc_info.value.detail["file"] == sample_dxf_path.name


class TestHTTPDWGConverter:
    """DWG 转换服务客户端测试"""

    def test_convert_retries_then_succeeds(self, write_file, samples, tmp_path):
        """测试前两次5xx，第三次成功"""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(502)
            return httpx.Response(200, content=samples["dxf"])

        async def scenario():
            async with _client(handler) as client:
                converter = HTTPDWGConverter(
                    "http://dwg-converter:8080/",
                    retries=RetryConfig(max_retries=2, retry_backoff_ms=0),
                    http_client=client,
                )
                return await converter.dwg_to_dxf(write_file("a.dwg", samples["dwg"]), tmp_path)

        content = asyncio.run(scenario())
        assert content == samples["dxf"]
        assert len(calls) == 3

    def test_convert_exhausts_retries(self, write_file, samples, tmp_path):
        """测试三次均失败 → SERVICE_UNAVAILABLE"""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        async def scenario():
            async with _client(handler) as client:
                converter = HTTPDWGConverter(
                    "http://dwg-converter:8080",
                    retries=RetryConfig(max_retries=2, retry_backoff_ms=0),
                    http_client=client,
                )
                await converter.dwg_to_dxf(write_file("a.dwg", samples["dwg"]), tmp_path)

        with pytest.raises(ConversionError) as exc_info:
            asyncio.run(scenario())
        assert len(calls) == 3
        assert exc_info.value.status_code == 503
        assert exc_info.value.detail["attempts"] == 3
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    def test_empty_response_is_failure(self, write_file, samples, tmp_path):
        """测试空响应视为失败"""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"")

        async def scenario():
            async with _client(handler) as client:
                converter = HTTPDWGConverter(
                    "http://dwg-converter:8080",
                    retries=RetryConfig(max_retries=0, retry_backoff_ms=0),
                    http_client=client,
                )
                await converter.dwg_to_dxf(write_file("a.dwg", samples["dwg"]), tmp_path)

        with pytest.raises(ConversionError):
            asyncio.run(scenario())


class TestKernelBridge:
    """内核文档适配器与客户端测试"""

    def test_adapter_counts_alias(self):
        """测试 statistics / counts 字段名"""
        adapter = KernelDocumentAdapter()
        parsed = adapter.normalize({"counts": {"faces": "6", "edges": 12}}, "step")
        assert parsed.entities.faces == 6
        assert parsed.entities.edges == 12

    def test_adapter_bbox_min_max(self):
        """测试 min/max 形式包围盒"""
        parsed = KernelDocumentAdapter().normalize(
            {
                "entities": {"solids": 1},
                "aabb": {"min": {"x": -5, "y": 0, "z": 0}, "max": {"x": 5, "y": 4, "z": 2}},
            },
            "iges",
        )
        assert parsed.dimensions.width == 10
        assert parsed.dimensions.height == 4
        assert parsed.dimensions.depth == 2
        assert parsed.warnings == []

    def test_adapter_bbox_corner_arrays(self):
        """测试 [x, y, z] 数组形式角点"""
        parsed = KernelDocumentAdapter().normalize(
            {"entities": {"faces": 6}, "bbox": {"min": [0, 0, 0], "max": [10, 20, 30]}},
            "step",
        )
        assert (parsed.dimensions.width, parsed.dimensions.height, parsed.dimensions.depth) == (10, 20, 30)
        assert parsed.warnings == []

    def test_adapter_bbox_unknown_corner_shape(self):
        """测试无法识别的角点格式回退默认包围盒"""
        parsed = KernelDocumentAdapter().normalize(
            {"entities": {"faces": 6}, "bbox": {"min": "0,0,0", "max": "10,20,30"}},
            "step",
        )
        assert parsed.dimensions.width == 100.0
        assert len(parsed.warnings) == 1

    def test_adapter_defaults(self):
        """测试空文档回退默认值"""
        parsed = KernelDocumentAdapter().normalize({}, "step")
        assert parsed.entities.total == 0
        assert parsed.dimensions.width == 100.0
        assert parsed.dimensions.unit == "mm"
        assert parsed.metadata.version == "STEP"
        assert len(parsed.warnings) == 2

    def test_bridge_http_error(self, write_file, samples):
        """测试内核服务错误"""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="kernel crashed")

        async def scenario():
            async with _client(handler) as client:
                bridge = HTTPKernelBridge("http://kernel:9000", http_client=client)
                await bridge.import_document(write_file("a.step", samples["step"]), "step", Precision.LOW)

        with pytest.raises(KernelBridgeError) as exc_info:
            asyncio.run(scenario())
        assert exc_info.value.status_code == 503

    def test_bridge_sends_precision(self, write_file, samples):
        """测试上传精度参数"""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = request.content
            return httpx.Response(200, content=json.dumps({"entities": {}}).encode())

        async def scenario():
            async with _client(handler) as client:
                bridge = HTTPKernelBridge("http://kernel:9000", http_client=client)
                return await bridge.import_document(write_file("a.step", samples["step"]), "step", Precision.HIGH)

        assert asyncio.run(scenario()) == {"entities": {}}
        assert b"0.001" in seen["body"]
        assert b'name="precision"' in seen["body"]


class TestODAConverter:
    """本地 ODA 转换器测试"""

    def test_missing_exe(self, write_file, samples, tmp_path):
        """测试可执行文件不存在 → ConversionError"""
        converter = ODAConverter(tmp_path / "missing" / "ODAFileConverter")
        with pytest.raises(ConversionError):
            asyncio.run(converter.dwg_to_dxf(write_file("a.dwg", samples["dwg"]), tmp_path / "out"))

    def test_dwg_not_found(self, tmp_path):
        """测试输入文件不存在"""
        converter = ODAConverter(tmp_path / "ODAFileConverter")
        with pytest.raises(ConversionError):
            asyncio.run(converter.dwg_to_dxf(tmp_path / "missing.dwg", tmp_path / "out"))
