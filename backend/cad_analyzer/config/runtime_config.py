"""
运行期配置 - 读取 config/cad_analyzer.yaml

职责：
- 加载队列并发/超时、重试、外部服务地址等运行参数
- 提供环境变量覆盖机制（前缀 CAD_ANALYZER_，嵌套分隔符 __）
- 类型安全的配置访问
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, EnvSettingsSource


class QueueConfig(BaseModel):
    """单个队列的并发/超时"""

    concurrency: int = 2
    timeout_sec: float = 120.0


def _default_queues() -> dict[str, QueueConfig]:
    # 3D文件处理需要更长时间
    return {
        "upload": QueueConfig(concurrency=2, timeout_sec=120),
        "dxf": QueueConfig(concurrency=2, timeout_sec=120),
        "dwg": QueueConfig(concurrency=2, timeout_sec=180),
        "step": QueueConfig(concurrency=2, timeout_sec=240),
        "iges": QueueConfig(concurrency=2, timeout_sec=240),
        "mesh": QueueConfig(concurrency=2, timeout_sec=120),
        "bim": QueueConfig(concurrency=2, timeout_sec=180),
        "ai": QueueConfig(concurrency=2, timeout_sec=180),
        "thumbnail": QueueConfig(concurrency=2, timeout_sec=60),
    }


class RetryConfig(BaseModel):
    """重试配置"""

    max_retries: int = 2
    retry_backoff_ms: int = 500
    attempt_timeout_sec: float = 60.0


class ConverterConfig(BaseModel):
    """外部 DWG→DXF 转换服务"""

    base_url: str = ""


class ODAConfig(BaseModel):
    """本地 ODA File Converter（未配置转换服务时使用）"""

    exe_path: str = ""
    timeout_sec: int = 600


class KernelBridgeConfig(BaseModel):
    """几何内核桥接（STEP/IGES）"""

    enabled: bool = False
    base_url: str = ""
    timeout_sec: float = 120.0


class AIConfig(BaseModel):
    """AI 补全服务（OpenAI 兼容接口）"""

    base_url: str = ""
    api_key: str = ""
    model: str = "gpt-4o-mini"
    timeout_sec: float = 120.0
    temperature: float = 0.2
    max_tokens: int = 4000


class ThumbnailConfig(BaseModel):
    """缩略图服务"""

    base_url: str = ""
    timeout_sec: float = 30.0


class UploadLimitsConfig(BaseModel):
    """上传限制"""

    max_file_mb: int = 50
    allowed_exts: list[str] = Field(
        default_factory=lambda: ["dxf", "dwg", "step", "stp", "iges", "igs", "stl", "ifc"]
    )
    signature_prefix_bytes: int = 512


class LifecycleConfig(BaseModel):
    """生命周期配置"""

    retention_hours: int = 24
    temp_dir: Path = Path("tmp/cad-uploads")


class CacheConfig(BaseModel):
    """结果缓存"""

    enabled: bool = True
    ttl_sec: int = 24 * 60 * 60


class LoggingConfig(BaseModel):
    """日志配置"""

    log_level: str = "INFO"
    log_to_file: bool = False


# 配置字段 → runtime_options 中的节名
YAML_SECTIONS: dict[str, str] = {
    "retries": "retries",
    "converter": "converter",
    "oda": "oda_converter",
    "kernel_bridge": "kernel_bridge",
    "ai": "ai",
    "thumbnail": "thumbnail",
    "upload_limits": "upload_limits",
    "lifecycle": "lifecycle",
    "cache": "cache",
    "logging": "logging",
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class RuntimeConfig(BaseSettings):
    """运行期配置（支持环境变量覆盖）"""

    # 基础路径
    base_dir: Path = Path(".")
    storage_dir: Path = Path("storage")

    # 各子配置
    queues: dict[str, QueueConfig] = Field(default_factory=_default_queues)
    retries: RetryConfig = Field(default_factory=RetryConfig)
    converter: ConverterConfig = Field(default_factory=ConverterConfig)
    oda: ODAConfig = Field(default_factory=ODAConfig)
    kernel_bridge: KernelBridgeConfig = Field(default_factory=KernelBridgeConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    thumbnail: ThumbnailConfig = Field(default_factory=ThumbnailConfig)
    upload_limits: UploadLimitsConfig = Field(default_factory=UploadLimitsConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {
        "env_prefix": "CAD_ANALYZER_",
        "env_nested_delimiter": "__",
        "arbitrary_types_allowed": True,
    }

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> RuntimeConfig:
        """从YAML文件加载配置（环境变量优先于YAML）"""
        path = Path(yaml_path)
        if not path.exists():
            return cls()

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        runtime_opts = data.get("runtime_options", {})

        values: dict[str, Any] = {
            "queues": {name: queue.model_dump() for name, queue in _default_queues().items()},
        }
        for name, section in (runtime_opts.get("queues") or {}).items():
            values["queues"][name] = cls._flatten(section)
        for field_name, yaml_key in YAML_SECTIONS.items():
            values[field_name] = cls._extract(runtime_opts, yaml_key)

        # 环境变量优先于YAML
        config = cls(**_deep_merge(values, EnvSettingsSource(cls)()))

        config._resolve_paths(base_dir=path.parent)
        return config

    @classmethod
    def _extract(cls, data: dict[str, Any], key: str) -> dict[str, Any]:
        """提取并展平配置"""
        return cls._flatten(data.get(key) or {})

    @staticmethod
    def _flatten(section: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for k, v in section.items():
            if isinstance(v, dict) and "default" in v:
                result[k] = v["default"]
            elif not isinstance(v, dict):
                result[k] = v
        return result

    def _resolve_paths(self, base_dir: Path) -> None:
        """解析相对路径配置为绝对路径（基于配置文件所在目录）"""
        if self.oda.exe_path:
            exe_path = Path(self.oda.exe_path)
            if not exe_path.is_absolute():
                self.oda.exe_path = str((base_dir / exe_path).resolve())

    def get_queue_config(self, name: str) -> QueueConfig:
        """获取指定端点的队列配置（未配置时使用默认值）"""
        return self.queues.get(name) or QueueConfig()

    @property
    def max_file_bytes(self) -> int:
        return self.upload_limits.max_file_mb * 1024 * 1024

    def get_session_dir(self) -> Path:
        """获取会话持久化目录"""
        return self.storage_dir / "sessions"

    def ensure_dirs(self) -> None:
        """确保必要目录存在"""
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.get_session_dir().mkdir(exist_ok=True)
        self.lifecycle.temp_dir.mkdir(parents=True, exist_ok=True)


# 全局配置实例
_config: RuntimeConfig | None = None

DEFAULT_CONFIG_PATH = Path("config/cad_analyzer.yaml")


def get_config() -> RuntimeConfig:
    """获取全局配置（惰性加载）"""
    global _config
    if _config is None:
        _config = RuntimeConfig.from_yaml(DEFAULT_CONFIG_PATH)
    return _config


def reload_config(yaml_path: str | Path | None = None) -> RuntimeConfig:
    """重新加载配置"""
    global _config
    path = yaml_path or DEFAULT_CONFIG_PATH
    _config = RuntimeConfig.from_yaml(path)
    return _config
