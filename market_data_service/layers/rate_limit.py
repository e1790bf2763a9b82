"""
入站限流
固定窗口计数器，按调用方身份计数；窗口过期后在下一次请求时惰性重置
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

_CLEANUP_INTERVAL_SECONDS = 300.0


@dataclass(slots=True)
class RateLimitWindow:
    count: int
    reset_at: float


@dataclass(frozen=True, slots=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    reset_at: float
    retry_after: Optional[float] = None

    def headers(self) -> Dict[str, str]:
        result = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
        }
        if self.retry_after is not None:
            result["Retry-After"] = str(max(1, int(self.retry_after + 0.999)))
        return result


class RateLimiter:
    """
    固定窗口限流器

    窗口边界处允许突发（最多 2 倍），用于保护第三方 API 配额足够，
    不用于精确公平调度。
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "default",
    ):
        if max_requests < 1:
            raise ValueError("max_requests 必须 >= 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock
        self._windows: Dict[str, RateLimitWindow] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def check_and_consume(self, identity: str) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            self._cleanup(now)

            window = self._windows.get(identity)
            if window is None or now > window.reset_at:
                window = RateLimitWindow(count=1, reset_at=now + self.window_seconds)
                self._windows[identity] = window
                return RateLimitResult(
                    allowed=True,
                    remaining=self.max_requests - 1,
                    limit=self.max_requests,
                    reset_at=window.reset_at,
                )

            if window.count >= self.max_requests:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    limit=self.max_requests,
                    reset_at=window.reset_at,
                    retry_after=window.reset_at - now,
                )

            window.count += 1
            return RateLimitResult(
                allowed=True,
                remaining=self.max_requests - window.count,
                limit=self.max_requests,
                reset_at=window.reset_at,
            )

    def reset(self, identity: Optional[str] = None) -> None:
        with self._lock:
            if identity is None:
                self._windows.clear()
            else:
                self._windows.pop(identity, None)

    def tracked_identities(self) -> int:
        return len(self._windows)

    def _cleanup(self, now: float) -> None:
        if now - self._last_cleanup < _CLEANUP_INTERVAL_SECONDS:
            return
        self._last_cleanup = now
        expired = [k for k, w in self._windows.items() if now > w.reset_at]
        for k in expired:
            del self._windows[k]
        if expired:
            logger.debug(f"限流器 {self.name} 清理过期窗口 {len(expired)} 个")
