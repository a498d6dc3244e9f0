"""
有界并发任务队列 - FIFO + 准入控制 + 单任务超时

职责：
1. 同时运行的任务数不超过 concurrency
2. 槽位释放后立即按 FIFO 调度下一个积压任务
3. 每个任务与超时竞争，超时后取消该协程并报 TIMEOUT
4. 单个任务失败不影响队列继续调度
5. 调用方放弃等待时，积压项被跳过、运行中的任务被取消

测试要点：
- test_running_never_exceeds_limit: M > N 个任务，运行数始终 ≤ N，全部完成
- test_failure_does_not_poison_queue: 任务抛异常后后续任务正常
- test_timeout_cancels_task: 超时报 TIMEOUT，被取消的协程收到 CancelledError
- test_fifo_order: 同一队列内按提交顺序开始
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, TypeVar

from ..config import RuntimeConfig
from ..interfaces import ProcessingTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TaskFactory = Callable[[], Awaitable[T]]


class TaskQueue:
    """有界并发任务队列（单事件循环内使用）"""

    def __init__(self, concurrency: int = 2, timeout: float | None = 120.0, name: str = "default"):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.concurrency = concurrency
        self.timeout = timeout
        self.name = name
        self._backlog: deque[tuple[TaskFactory[Any], asyncio.Future[Any]]] = deque()
        self._running = 0
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def running(self) -> int:
        return self._running

    @property
    def pending(self) -> int:
        return sum(1 for _, future in self._backlog if not future.done())

    async def submit(self, factory: TaskFactory[T]) -> T:
        """提交任务并等待结果"""
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._backlog.append((factory, future))
        self._dispatch()
        return await future

    def _dispatch(self) -> None:
        while self._running < self.concurrency and self._backlog:
            factory, future = self._backlog.popleft()
            if future.done():
                # 调用方已放弃
                continue
            self._running += 1
            task = asyncio.ensure_future(self._run(factory, future))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, factory: TaskFactory[Any], future: asyncio.Future[Any]) -> None:
        try:
            work = asyncio.ensure_future(factory())

            def _abandon(f: asyncio.Future[Any]) -> None:
                if f.cancelled() and not work.done():
                    work.cancel()

            future.add_done_callback(_abandon)
            result = await asyncio.wait_for(work, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{self.name}] 任务超时 ({self.timeout}s)，已取消")
            if not future.done():
                future.set_exception(
                    ProcessingTimeoutError(
                        f"处理超时 ({self.timeout}s)",
                        detail={"queue": self.name, "timeout_sec": self.timeout},
                    )
                )
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            self._running -= 1
            self._dispatch()


class QueueRegistry:
    """按端点名称管理队列（upload/dxf/dwg/step/iges/mesh/bim/ai）"""

    def __init__(self, config: RuntimeConfig):
        self.config = config
        self._queues: dict[str, TaskQueue] = {}

    def get(self, name: str) -> TaskQueue:
        queue = self._queues.get(name)
        if queue is None:
            cfg = self.config.get_queue_config(name)
            queue = TaskQueue(concurrency=cfg.concurrency, timeout=cfg.timeout_sec, name=name)
            self._queues[name] = queue
        return queue

    def stats(self) -> dict[str, dict[str, int]]:
        return {
            name: {"running": q.running, "pending": q.pending, "concurrency": q.concurrency}
            for name, q in self._queues.items()
        }
