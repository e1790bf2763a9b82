"""
数据源熔断
每个 (数据源, 操作) 一个熔断器：Closed → Open(until) → Closed
数据源返回拒绝访问（401/403）时打开，退避时间到达后在下一次读取时自动关闭
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

BreakerKey = Tuple[str, str]


class CircuitBreakerRegistry:
    """熔断状态注册表，进程内共享"""

    def __init__(
        self,
        backoff_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._backoff_seconds = backoff_seconds
        self._clock = clock
        self._open_until: Dict[BreakerKey, float] = {}
        self._lock = threading.Lock()

    def is_open(self, provider: str, operation: str) -> bool:
        key = (provider, operation)
        with self._lock:
            until = self._open_until.get(key)
            if until is None:
                return False
            if self._clock() >= until:
                del self._open_until[key]
                logger.info(f"熔断恢复: {provider}/{operation}")
                return False
            return True

    def trip(
        self, provider: str, operation: str, backoff: Optional[float] = None
    ) -> float:
        """打开熔断器，返回恢复时刻"""
        backoff = self._backoff_seconds if backoff is None else backoff
        with self._lock:
            until = self._clock() + backoff
            self._open_until[(provider, operation)] = until
        logger.warning(f"⚠️ 数据源拒绝访问，熔断 {backoff:.0f}s: {provider}/{operation}")
        return until

    def reset(self, provider: Optional[str] = None, operation: Optional[str] = None) -> None:
        with self._lock:
            if provider is None:
                self._open_until.clear()
                return
            for key in list(self._open_until):
                if key[0] == provider and (operation is None or key[1] == operation):
                    del self._open_until[key]

    def snapshot(self) -> Dict[str, dict]:
        now = self._clock()
        with self._lock:
            return {
                f"{p}/{op}": {"open": True, "retry_in_seconds": round(until - now, 1)}
                for (p, op), until in self._open_until.items()
                if until > now
            }
