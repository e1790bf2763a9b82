"""
请求合并层
- RequestBatcher : 短时间窗口内的多个单键请求合并为一次批量调用
- RequestCoalescer: 同一键的并发请求共享同一个在途任务
"""

import asyncio
import logging
from typing import (
    Awaitable,
    Callable,
    Dict,
    Generic,
    Hashable,
    List,
    Mapping,
    Optional,
    Set,
    TypeVar,
)

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

BatchFn = Callable[[List[K]], Awaitable[Mapping[K, V]]]


class RequestBatcher(Generic[K, V]):
    """
    定时刷新的批量执行器

    ``add(key)`` 进入队列；队列在 ``batch_delay`` 秒后或达到
    ``max_batch_size`` 时刷新，以去重后的键列表调用一次 ``batch_fn``。
    已在队列中或正在执行的键直接复用其结果，不会重复进入批次。
    """

    def __init__(
        self,
        batch_fn: BatchFn,
        max_batch_size: int = 50,
        batch_delay: float = 0.05,
        name: str = "batcher",
    ):
        self._batch_fn = batch_fn
        self._max_batch_size = max(1, max_batch_size)
        self._batch_delay = batch_delay
        self._name = name
        self._queue: List[K] = []
        self._pending: Dict[K, "asyncio.Future[Optional[V]]"] = {}
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._batches = 0

    async def add(self, key: K) -> Optional[V]:
        future = self._pending.get(key)
        if future is None:
            loop = asyncio.get_running_loop()
            future = loop.create_future()
            self._pending[key] = future
            self._queue.append(key)
            if len(self._queue) >= self._max_batch_size:
                self._flush()
            elif self._timer is None:
                self._timer = loop.call_later(self._batch_delay, self._flush)
        else:
            logger.debug(f"[{self._name}] 复用在途请求: {key}")
        # shield：单个调用方取消不影响同批次其他调用方
        return await asyncio.shield(future)

    async def drain(self) -> None:
        """立即刷新队列并等待所有在途批次完成"""
        self._flush()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def stats(self) -> dict:
        return {
            "name": self._name,
            "queued": len(self._queue),
            "in_flight": len(self._pending) - len(self._queue),
            "batches": self._batches,
        }

    def _flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._queue:
            return
        keys, self._queue = self._queue, []
        task = asyncio.get_running_loop().create_task(self._execute(keys))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _execute(self, keys: List[K]) -> None:
        self._batches += 1
        logger.debug(f"[{self._name}] 执行批量请求，共 {len(keys)} 个键")
        try:
            results = await self._batch_fn(keys)
        except Exception as exc:
            for key in keys:
                future = self._pending.pop(key, None)
                if future is not None and not future.done():
                    future.set_exception(exc)
            return
        for key in keys:
            future = self._pending.pop(key, None)
            if future is not None and not future.done():
                future.set_result(results.get(key))


class RequestCoalescer(Generic[K, V]):
    """单键在途去重：同一键的并发调用只触发一次 fetcher"""

    def __init__(self, name: str = "coalescer"):
        self._name = name
        self._inflight: Dict[K, "asyncio.Task[V]"] = {}

    async def get_or_fetch(self, key: K, fetcher: Callable[[], Awaitable[V]]) -> V:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fetcher())
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._forget(key, t))
        else:
            logger.debug(f"[{self._name}] 复用在途请求: {key}")
        return await asyncio.shield(task)

    def _forget(self, key: K, task: "asyncio.Task[V]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def in_flight(self) -> int:
        return len(self._inflight)
