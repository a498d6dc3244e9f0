"""
会话存储 / 临时资源 / 结果缓存测试
"""

import asyncio
import os
import threading
import time
from datetime import datetime, timedelta

import pytest

from cad_analyzer.interfaces import SessionStateError
from cad_analyzer.models import AnalysisSession, SessionStatus
from cad_analyzer.pipeline import (
    FileSessionStore,
    InMemoryCache,
    InMemorySessionStore,
    TempResourceManager,
)
from cad_analyzer.pipeline.cache import cache_key
from cad_analyzer.pipeline.session_store import BaseSessionStore


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemorySessionStore()
    return FileSessionStore(tmp_path / "sessions")


def _session(session_id: str, owner: str = "run-1", **kwargs) -> AnalysisSession:
    return AnalysisSession(
        session_id=session_id,
        owner_id=owner,
        file_name=f"{session_id}.dxf",
        file_format="dxf",
        **kwargs,
    )


class TestSessionStore:
    """会话存储测试（内存与文件实现）"""

    def test_get_returns_copy(self, store):
        """测试 get 返回副本"""
        store.put("s1", _session("s1"))
        snapshot = store.get("s1")
        snapshot.progress.percent = 99
        assert store.get("s1").progress.percent == 0

    def test_put_rejects_foreign_owner(self, store):
        """测试拒绝其他流水线运行写入"""
        store.put("s1", _session("s1", owner="run-1"))
        with pytest.raises(SessionStateError):
            store.put("s1", _session("s1", owner="run-2"))

    def test_put_rejects_after_terminal(self, store):
        """测试终态会话拒绝写入"""
        session = _session("s1")
        session.mark_failed("boom")
        store.put("s1", session)

        late = store.get("s1")
        late.progress.percent = 50
        with pytest.raises(SessionStateError):
            store.put("s1", late)

    def test_put_id_mismatch(self, store):
        """测试会话ID不一致"""
        with pytest.raises(SessionStateError):
            store.put("other", _session("s1"))

    def test_delete(self, store):
        """测试删除"""
        store.put("s1", _session("s1"))
        assert store.delete("s1") is True
        assert store.get("s1") is None
        assert store.delete("s1") is False

    def test_list_by_status(self, store):
        """测试按状态列出"""
        store.put("old", _session("old", created_at=datetime.now() - timedelta(hours=1)))
        store.put("new", _session("new"))
        failed = _session("bad")
        failed.mark_failed("boom")
        store.put("bad", failed)

        assert [s.session_id for s in store.list(SessionStatus.CREATED)] == ["new", "old"]
        assert len(store.list(limit=1)) == 1

    def test_sweep_keeps_processing(self, store):
        """测试清理跳过处理中的会话"""
        old = datetime.now() - timedelta(hours=48)
        store.put("done", _session("done", created_at=old))
        running = _session("running", created_at=old)
        running.mark_processing()
        store.put("running", running)
        store.put("fresh", _session("fresh"))

        assert store.sweep(timedelta(hours=24)) == 1
        assert store.get("done") is None
        assert store.get("running") is not None
        assert store.get("fresh") is not None

    def test_base_store_requires_primitives(self):
        """测试缺少读写原语的子类无法实例化"""

        class LoadOnlyStore(BaseSessionStore):
            def _load(self, session_id):
                return None

        with pytest.raises(TypeError):
            LoadOnlyStore()


class TestFileSessionStore:
    """文件会话存储测试"""

    def test_file_store_roundtrip(self, tmp_path):
        """测试跨实例读取"""
        session_dir = tmp_path / "sessions"
        session = _session("s1")
        session.mark_processing()
        session.advance(30, "ENTITIES")
        FileSessionStore(session_dir).put("s1", session)

        loaded = FileSessionStore(session_dir).get("s1")
        assert loaded.status == SessionStatus.PROCESSING
        assert loaded.progress.percent == 30

    def test_corrupted_file_ignored(self, tmp_path):
        """测试损坏的会话文件"""
        store = FileSessionStore(tmp_path / "sessions")
        (tmp_path / "sessions" / "broken.json").write_text("{not json", encoding="utf-8")
        assert store.get("broken") is None
        assert store.list() == []


class TestTempResourceManager:
    """临时资源测试"""

    def test_acquire_releases_on_success(self, tmp_path):
        """测试正常退出后删除"""
        manager = TempResourceManager(tmp_path / "uploads")

        async def scenario():
            async with manager.acquire(b"data", "dxf") as resource:
                assert resource.path.read_bytes() == b"data"
                assert resource.path.suffix == ".dxf"
                return resource

        resource = asyncio.run(scenario())
        assert resource.released
        assert not resource.directory.exists()

    def test_acquire_releases_on_error(self, tmp_path):
        """测试异常退出后删除"""
        manager = TempResourceManager(tmp_path / "uploads")
        holder = {}

        async def scenario():
            async with manager.acquire(b"data", "stl") as resource:
                holder["resource"] = resource
                raise RuntimeError("parse failed")

        with pytest.raises(RuntimeError):
            asyncio.run(scenario())
        assert not holder["resource"].directory.exists()

    def test_acquire_cancelled_while_writing(self, tmp_path):
        """测试写入期间被取消，写入结束后目录仍被删除"""
        manager = TempResourceManager(tmp_path / "uploads")
        started = threading.Event()
        proceed = threading.Event()
        write = manager._write

        def slow_write(resource, data):
            started.set()
            proceed.wait(5)
            write(resource, data)

        manager._write = slow_write

        async def use():
            async with manager.acquire(b"data", "dxf"):
                pytest.fail("取消后不应进入上下文")

        async def scenario():
            task = asyncio.create_task(use())
            await asyncio.to_thread(started.wait, 5)
            task.cancel()
            await asyncio.sleep(0.01)
            proceed.set()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())
        root = tmp_path / "uploads"
        assert not root.exists() or list(root.iterdir()) == []

    def test_release_idempotent(self, tmp_path):
        """测试重复释放"""
        manager = TempResourceManager(tmp_path / "uploads")
        resource = manager.create(b"x", "dxf")
        manager.release(resource)
        manager.release(resource)
        assert not resource.directory.exists()

    def test_sweep_stale_dirs(self, tmp_path):
        """测试清理过期目录"""
        manager = TempResourceManager(tmp_path / "uploads")
        stale = manager.create(b"x", "dxf")
        fresh = manager.create(b"y", "dxf")
        old = time.time() - 3 * 24 * 3600
        os.utime(stale.directory, (old, old))

        assert manager.sweep(timedelta(hours=24)) == 1
        assert not stale.directory.exists()
        assert fresh.directory.exists()

    def test_sweep_missing_root(self, tmp_path):
        """测试根目录不存在"""
        assert TempResourceManager(tmp_path / "nope").sweep(timedelta(hours=1)) == 0


class TestInMemoryCache:
    """结果缓存测试"""

    def test_set_get(self):
        cache = InMemoryCache()
        cache.set("k", {"v": 1})
        assert cache.get("k") == {"v": 1}
        assert cache.get("missing") is None

    def test_ttl_expiry(self, monkeypatch):
        """测试过期失效"""
        now = [1000.0]
        monkeypatch.setattr("cad_analyzer.pipeline.cache.time.monotonic", lambda: now[0])
        cache = InMemoryCache(default_ttl=10)
        cache.set("k", "v")
        now[0] += 11
        assert cache.get("k") is None

    def test_delete_by_tag(self):
        """测试按标签失效"""
        cache = InMemoryCache()
        cache.set("a", 1, tags=["format:dxf"])
        cache.set("b", 2, tags=["format:dxf", "session:1"])
        cache.set("c", 3, tags=["format:stl"])
        assert cache.delete_by_tag("format:dxf") == 2
        assert cache.get("c") == 3

    def test_cache_key_depends_on_params(self):
        """测试缓存键包含内容哈希与参数"""
        assert cache_key(b"x", "dxf", "low") != cache_key(b"x", "dxf", "high")
        assert cache_key(b"x", "dxf").startswith("cad:")
