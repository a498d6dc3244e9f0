"""
会话存储 - 分析会话的保存/查询/清理

职责：
1. get 返回副本（调用方修改不影响存储）
2. put 拒绝其他流水线运行的写入、拒绝对终态会话的写入
3. sweep 按保留期清理（处理中的会话不清理）
4. FileSessionStore 每个会话一个 JSON 文件（storage_dir/sessions）

说明：
InMemorySessionStore 仅在单进程内可见，多进程部署应使用 FileSessionStore
或其他共享实现。

测试要点：
- test_get_returns_copy
- test_put_rejects_foreign_owner
- test_put_rejects_after_terminal
- test_sweep_keeps_processing
- test_file_store_roundtrip
"""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from ..interfaces import ISessionStore, SessionStateError
from ..models import AnalysisSession, SessionStatus

logger = logging.getLogger(__name__)


class BaseSessionStore(ISessionStore):
    """写入校验逻辑（子类提供读写原语）"""

    @abstractmethod
    def _load(self, session_id: str) -> AnalysisSession | None:
        """读取会话（不存在返回 None）"""

    @abstractmethod
    def _save(self, session: AnalysisSession) -> None:
        """写入会话"""

    @abstractmethod
    def _remove(self, session_id: str) -> bool:
        """删除会话，返回是否存在"""

    @abstractmethod
    def _all(self) -> list[AnalysisSession]:
        """全部会话"""

    def get(self, session_id: str) -> AnalysisSession | None:
        session = self._load(session_id)
        return session.model_copy(deep=True) if session else None

    def put(self, session_id: str, session: AnalysisSession) -> None:
        if session.session_id != session_id:
            raise SessionStateError(f"会话ID不一致: {session_id} != {session.session_id}")

        current = self._load(session_id)
        if current is not None:
            if current.owner_id != session.owner_id:
                raise SessionStateError(
                    f"会话 {session_id} 属于其他流水线运行，拒绝写入",
                    detail={"session_id": session_id},
                )
            if current.is_terminal:
                raise SessionStateError(
                    f"会话 {session_id} 已处于终态 ({current.status.value})，拒绝写入",
                    detail={"session_id": session_id, "status": current.status.value},
                )
        self._save(session.model_copy(deep=True))

    def delete(self, session_id: str) -> bool:
        return self._remove(session_id)

    def list(self, status: SessionStatus | None = None, limit: int = 100) -> list[AnalysisSession]:
        """列出会话（按创建时间降序）"""
        sessions = self._all()
        if status:
            sessions = [s for s in sessions if s.status == status]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return [s.model_copy(deep=True) for s in sessions[:limit]]

    def sweep(self, max_age: timedelta) -> int:
        cutoff = datetime.now() - max_age
        removed = 0
        for session in self._all():
            if session.status == SessionStatus.PROCESSING:
                continue
            if session.created_at < cutoff and self._remove(session.session_id):
                removed += 1
        if removed:
            logger.info(f"已清理过期会话: {removed}")
        return removed


class InMemorySessionStore(BaseSessionStore):
    """进程内会话存储"""

    def __init__(self):
        self._sessions: dict[str, AnalysisSession] = {}

    def _load(self, session_id: str) -> AnalysisSession | None:
        return self._sessions.get(session_id)

    def _save(self, session: AnalysisSession) -> None:
        self._sessions[session.session_id] = session

    def _remove(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def _all(self) -> list[AnalysisSession]:
        return list(self._sessions.values())


class FileSessionStore(BaseSessionStore):
    """JSON 文件会话存储"""

    def __init__(self, session_dir: Path):
        self.session_dir = session_dir
        self.session_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        return self.session_dir / f"{session_id}.json"

    def _load(self, session_id: str) -> AnalysisSession | None:
        return self._read(self._path(session_id))

    def _read(self, path: Path) -> AnalysisSession | None:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return AnalysisSession(**data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"会话文件无法读取: {path.name}: {e}")
            return None

    def _save(self, session: AnalysisSession) -> None:
        path = self._path(session.session_id)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(session.model_dump(mode="json"), f, ensure_ascii=False, indent=2)
        tmp_path.replace(path)

    def _remove(self, session_id: str) -> bool:
        path = self._path(session_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def _all(self) -> list[AnalysisSession]:
        sessions = []
        for path in sorted(self.session_dir.glob("*.json")):
            session = self._read(path)
            if session is not None:
                sessions.append(session)
        return sessions
