"""
配置单元测试
"""

from pathlib import Path

from cad_analyzer.config import QueueConfig, RuntimeConfig


class TestRuntimeConfig:
    """运行期配置测试"""

    def test_defaults(self):
        """测试默认值"""
        config = RuntimeConfig()
        assert config.upload_limits.max_file_mb == 50
        assert config.kernel_bridge.enabled is False
        assert config.converter.base_url == ""
        assert config.retries.max_retries == 2
        assert "stl" in config.upload_limits.allowed_exts

    def test_max_file_bytes(self):
        """测试上传上限换算"""
        config = RuntimeConfig()
        assert config.max_file_bytes == 50 * 1024 * 1024

    def test_get_queue_config(self):
        """测试队列配置查找"""
        config = RuntimeConfig()
        assert config.get_queue_config("step").timeout_sec == 240
        assert config.get_queue_config("unknown") == QueueConfig()

    def test_from_yaml_default_leaves(self, tmp_path: Path):
        """测试 {default: ...} 叶子展开"""
        yaml_path = tmp_path / "cad_analyzer.yaml"
        yaml_path.write_text(
            "runtime_options:\n"
            "  queues:\n"
            "    dxf: {concurrency: {default: 4}, timeout_sec: {default: 30}}\n"
            "  retries:\n"
            "    max_retries: {default: 5, desc: \"重试次数\"}\n"
            "  kernel_bridge:\n"
            "    enabled: {default: true}\n"
            "    base_url: {default: \"http://kernel:9000\"}\n"
            "  upload_limits:\n"
            "    max_file_mb: 10\n",
            encoding="utf-8",
        )
        config = RuntimeConfig.from_yaml(yaml_path)

        assert config.get_queue_config("dxf") == QueueConfig(concurrency=4, timeout_sec=30)
        assert config.get_queue_config("step").timeout_sec == 240
        assert config.retries.max_retries == 5
        assert config.kernel_bridge.enabled is True
        assert config.kernel_bridge.base_url == "http://kernel:9000"
        assert config.max_file_bytes == 10 * 1024 * 1024

    def test_env_overrides_yaml(self, tmp_path: Path, monkeypatch):
        """测试环境变量覆盖YAML中的值，未覆盖的字段保留YAML值"""
        yaml_path = tmp_path / "cad_analyzer.yaml"
        yaml_path.write_text(
            "runtime_options:\n"
            "  queues:\n"
            "    dxf: {concurrency: {default: 4}, timeout_sec: {default: 30}}\n"
            "  kernel_bridge:\n"
            "    enabled: {default: false}\n"
            "    base_url: {default: \"http://kernel:9000\"}\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("CAD_ANALYZER_KERNEL_BRIDGE__ENABLED", "true")
        monkeypatch.setenv("CAD_ANALYZER_QUEUES__DXF__TIMEOUT_SEC", "5")

        config = RuntimeConfig.from_yaml(yaml_path)

        assert config.kernel_bridge.enabled is True
        assert config.kernel_bridge.base_url == "http://kernel:9000"
        assert config.get_queue_config("dxf") == QueueConfig(concurrency=4, timeout_sec=5)

    def test_from_yaml_missing_file(self, tmp_path: Path):
        """测试配置文件不存在时使用默认值"""
        config = RuntimeConfig.from_yaml(tmp_path / "missing.yaml")
        assert config.upload_limits.max_file_mb == 50

    def test_relative_oda_path_resolved(self, tmp_path: Path):
        """测试相对路径基于配置文件目录解析"""
        yaml_path = tmp_path / "cad_analyzer.yaml"
        yaml_path.write_text(
            "runtime_options:\n  oda_converter:\n    exe_path: {default: \"bin/ODAFileConverter\"}\n",
            encoding="utf-8",
        )
        config = RuntimeConfig.from_yaml(yaml_path)
        assert Path(config.oda.exe_path) == (tmp_path / "bin" / "ODAFileConverter").resolve()

    def test_ensure_dirs(self, runtime_config: RuntimeConfig):
        """测试目录创建"""
        assert runtime_config.get_session_dir().is_dir()
        assert runtime_config.lifecycle.temp_dir.is_dir()
