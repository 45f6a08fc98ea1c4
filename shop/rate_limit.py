# shop/rate_limit.py: fixed-window request limiter stored in the Django cache
import time
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.core.cache import cache


@dataclass
class RateLimitResult:
    allowed: bool
    reset_time: Optional[float] = None

    @property
    def retry_after(self) -> int:
        if self.reset_time is None:
            return 0
        return max(1, int(self.reset_time - time.time() + 0.999))


class RateLimiter:
    def __init__(self, scope: str, max_requests: int = 100, window_seconds: int = 60):
        self.scope = scope
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def _key(self, identifier: str) -> str:
        return f"ratelimit:{self.scope}:{identifier}"

    def _window(self, now: float) -> int:
        return int(now // self.window_seconds)

    def is_allowed(self, identifier: str) -> RateLimitResult:
        # one counter per fixed window, created with add() and bumped with incr()
        now = time.time()
        window = self._window(now)
        key = f"{self._key(identifier)}:{window}"

        if cache.add(key, 1, self.window_seconds + 1):
            count = 1
        else:
            try:
                count = cache.incr(key)
            except ValueError:
                # expired between add() and incr()
                cache.add(key, 1, self.window_seconds + 1)
                count = 1

        if count > self.max_requests:
            return RateLimitResult(False, (window + 1) * self.window_seconds)
        return RateLimitResult(True)

    def remaining(self, identifier: str) -> int:
        key = f"{self._key(identifier)}:{self._window(time.time())}"
        return max(0, self.max_requests - (cache.get(key) or 0))

    def reset(self, identifier: str) -> None:
        cache.delete(f"{self._key(identifier)}:{self._window(time.time())}")


def registration_rate_limiter() -> RateLimiter:
    return RateLimiter(
        "register",
        max_requests=getattr(settings, "REGISTRATION_RATE_LIMIT", 100),
        window_seconds=getattr(settings, "REGISTRATION_RATE_WINDOW", 60),
    )
