"""
日志初始化 - 按运行期配置设置级别与文件输出
"""

from __future__ import annotations

import logging
import sys

from .runtime_config import RuntimeConfig, get_config

LOG_FORMAT = "%(asctime)s - [%(levelname)s] - %(name)s - %(message)s"


def configure_logging(config: RuntimeConfig | None = None) -> None:
    """配置根日志（可重复调用）"""
    config = config or get_config()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if config.logging.log_to_file:
        log_dir = config.storage_dir / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "cad_analyzer.log", encoding="utf-8"))

    logging.basicConfig(
        level=config.logging.log_level.upper(),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
