"""
结果缓存 - 进程内 TTL + 标签失效
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..interfaces import ICacheBackend

logger = logging.getLogger(__name__)


def cache_key(data: bytes, *parts: str) -> str:
    """内容哈希 + 参数组成缓存键"""
    digest = hashlib.sha256(data).hexdigest()
    return ":".join(["cad", digest, *parts])


@dataclass
class _Entry:
    value: Any
    expires_at: float | None
    tags: set[str] = field(default_factory=set)


class InMemoryCache(ICacheBackend):
    """进程内缓存"""

    def __init__(self, default_ttl: float | None = None):
        self.default_ttl = default_ttl
        self._entries: dict[str, _Entry] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= time.monotonic():
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None, tags: list[str] | None = None) -> None:
        ttl = ttl if ttl is not None else self.default_ttl
        expires_at = time.monotonic() + ttl if ttl else None
        self._entries[key] = _Entry(value=value, expires_at=expires_at, tags=set(tags or []))

    def delete_by_tag(self, tag: str) -> int:
        keys = [k for k, e in self._entries.items() if tag in e.tags]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.debug(f"按标签失效缓存: {tag} ({len(keys)})")
        return len(keys)
