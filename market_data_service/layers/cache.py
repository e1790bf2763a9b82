"""
Layer 2 – 缓存层
进程内 TTL 缓存：按条目过期 + 容量上限，过期在读取时惰性检查，无后台清理线程
"""

import copy
import hashlib
import heapq
import logging
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def make_key(namespace: str, *parts: str) -> str:
    """生成规范化缓存键"""
    raw = ":".join([namespace] + [str(p) for p in parts])
    if len(raw) > 200:
        raw = namespace + ":" + hashlib.md5(raw.encode()).hexdigest()
    return raw


@dataclass(slots=True)
class CacheEntry:
    value: Any
    expires_at: float


def _detach(value: Any) -> Any:
    # 冻结的领域对象 / tuple 可直接共享，可变容器返回副本
    if isinstance(value, (list, dict, set)):
        return copy.deepcopy(value)
    return value


class TTLCache:
    """
    带 TTL 与容量上限的键值缓存

    - 未设置与已过期对调用方不可区分，二者都返回 None
    - 条目数超过 ``max_entries`` 时，按过期时间最早的顺序批量淘汰
      （非严格 LRU，读取时无需额外记账）
    """

    def __init__(
        self,
        default_ttl: float = 60.0,
        max_entries: int = 1000,
        evict_batch: Optional[int] = None,
        clock: Clock = time.monotonic,
        name: str = "cache",
    ):
        self._default_ttl = default_ttl
        self._max_entries = max_entries
        self._evict_batch = evict_batch or max(1, max_entries // 5)
        self._clock = clock
        self._name = name
        self._store: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() > entry.expires_at:
                del self._store[key]
                self._misses += 1
                return None
            self._hits += 1
            value = entry.value
        logger.debug(f"缓存命中（{self._name}）: {key}")
        return _detach(value)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if ttl is None:
            ttl = self._default_ttl
        with self._lock:
            self._store[key] = CacheEntry(
                value=_detach(value), expires_at=self._clock() + ttl
            )
            if len(self._store) > self._max_entries:
                self._evict()

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def invalidate_pattern(self, pattern: str) -> int:
        """删除匹配正则的所有条目，返回删除数量"""
        regex = re.compile(pattern)
        with self._lock:
            keys = [k for k in self._store if regex.search(k)]
            for k in keys:
                del self._store[k]
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def remaining_ttl(self, key: str) -> Optional[float]:
        """条目剩余存活秒数；不存在或已过期返回 None"""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            remaining = entry.expires_at - self._clock()
        return remaining if remaining >= 0 else None

    def stats(self) -> dict:
        with self._lock:
            return {
                "name": self._name,
                "size": len(self._store),
                "max_entries": self._max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def __len__(self) -> int:
        return len(self._store)

    def _evict(self) -> None:
        # 调用方已持有锁
        now = self._clock()
        expired = [k for k, e in self._store.items() if now > e.expires_at]
        for k in expired:
            del self._store[k]
        overflow = len(self._store) - self._max_entries
        if overflow <= 0:
            return
        count = max(overflow, self._evict_batch)
        victims = heapq.nsmallest(
            count, self._store.items(), key=lambda item: item[1].expires_at
        )
        for k, _ in victims:
            del self._store[k]
        self._evictions += len(victims)
        logger.debug(f"缓存容量超限（{self._name}），淘汰 {len(victims)} 条")
