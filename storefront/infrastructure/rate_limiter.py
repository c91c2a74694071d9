import math
import threading
import time
from typing import Callable, Optional
from pydantic import BaseModel


class RateLimitConfig(BaseModel):
    max_requests: int
    window_seconds: float


class RateLimitResult(BaseModel):
    allowed: bool
    remaining: int
    reset_at: float

    def retry_after(self, now: float) -> int:
        return max(1, math.ceil(self.reset_at - now))


RATE_LIMITS = {
    "auth": RateLimitConfig(max_requests=5, window_seconds=15 * 60),
    "admin": RateLimitConfig(max_requests=30, window_seconds=60),
    "api": RateLimitConfig(max_requests=60, window_seconds=60),
    "public": RateLimitConfig(max_requests=120, window_seconds=60),
    "coupon": RateLimitConfig(max_requests=5, window_seconds=60),
}


class _Window:
    __slots__ = ("count", "reset_at")

    def __init__(self, count: int, reset_at: float):
        self.count = count
        self.reset_at = reset_at


class FixedWindowRateLimiter:
    """Счетчик с фиксированным окном на процесс.

    На границе окна счетчик сбрасывается целиком, поэтому всплеск на стыке
    двух окон может пропустить до 2 * max_requests. Несколько инстансов
    лимитируют независимо.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None, purge_every: int = 1000):
        self._clock = clock or time.monotonic
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._purge_every = purge_every
        self._checks = 0

    def now(self) -> float:
        return self._clock()

    def check(self, identity: str, config: RateLimitConfig, bucket: str = "default") -> RateLimitResult:
        key = f"{identity}:{bucket}"
        with self._lock:
            now = self._clock()
            self._checks += 1
            if self._checks % self._purge_every == 0:
                self._purge(now)

            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                window = _Window(count=1, reset_at=now + config.window_seconds)
                self._windows[key] = window
            else:
                window.count += 1

            return RateLimitResult(
                allowed=window.count <= config.max_requests,
                remaining=max(0, config.max_requests - window.count),
                reset_at=window.reset_at
            )

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _purge(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if now >= window.reset_at]
        for key in expired:
            del self._windows[key]


def client_identity(headers, peer: Optional[str] = None) -> str:
    """Первый адрес X-Forwarded-For, затем X-Real-IP, затем адрес сокета"""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return peer or "unknown"


rate_limiter = FixedWindowRateLimiter()
