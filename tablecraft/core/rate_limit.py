# tablecraft/core/rate_limit.py
import logging
import threading
import time
from typing import Dict, Optional, Tuple

from fastapi import HTTPException, Request, status

from tablecraft.core.cache import DummyRedis, get_redis
from tablecraft.core.config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "ratelimit"


class RateLimiter:
    """Fixed-window request counter per client, in Redis or in process memory"""

    def __init__(self, limit: Optional[int] = None, window_seconds: Optional[int] = None):
        self.limit = limit if limit is not None else settings.RATE_LIMIT_PER_MINUTE
        self.window = window_seconds if window_seconds is not None else settings.RATE_LIMIT_WINDOW_SECONDS
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    def _local_hit(self, key: str) -> int:
        now = time.time()
        with self._lock:
            expired = [k for k, (begun, _) in self._windows.items() if now - begun >= self.window]
            for k in expired:
                del self._windows[k]
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window:
                started, count = now, 0
            count += 1
            self._windows[key] = (started, count)
            return count

    async def hit(self, client: str) -> int:
        """Count one request for client and return the count in the current window"""
        key = f"{KEY_PREFIX}:{client}"
        redis = await get_redis()
        if not isinstance(redis, DummyRedis):
            try:
                count = await redis.incr(key)
                if count == 1:
                    await redis.expire(key, self.window)
                return int(count)
            except Exception as e:
                logger.warning(f"Rate limit counter unavailable in Redis, using local window: {str(e)}")
        return self._local_hit(key)

    async def check(self, client: str) -> None:
        count = await self.hit(client)
        if count > self.limit:
            logger.warning(f"Rate limit exceeded for {client}: {count}/{self.limit}")
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests",
                headers={"Retry-After": str(self.window)},
            )

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


limiter = RateLimiter()


def client_identity(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "anonymous"


async def rate_limit(request: Request) -> None:
    """FastAPI dependency enforcing the per-client request budget"""
    await limiter.check(client_identity(request))
