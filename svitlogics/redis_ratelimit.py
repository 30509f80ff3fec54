import os
import time
from typing import Any, Optional, Tuple

try:
    import redis
except Exception:  # pragma: no cover - redis is optional for single-process deployments
    redis = None

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
WINDOW_SECONDS = int(os.getenv("RATE_WINDOW_SECONDS", "3600"))
MAX_REQUESTS = int(os.getenv("RATE_MAX_REQUESTS", "20"))


def _part(value: Optional[str], default: str) -> str:
    return (value or "").strip() or default


class RedisRateLimiter:
    """
    Fixed-window limiter shared across processes; same return shape as
    svitlogics.ratelimit.check_and_increment.

    Each (bucket, client, window) gets its own counter key that expires at the
    end of its window, so no cleanup pass is needed.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        window_seconds: Optional[int] = None,
        max_requests: Optional[int] = None,
        client: Any = None,
    ) -> None:
        self.window_seconds = int(window_seconds or WINDOW_SECONDS)
        self.max_requests = int(max_requests or MAX_REQUESTS)
        if client is None:
            if redis is None:
                raise RuntimeError("redis package is not installed")
            client = redis.from_url(_part(redis_url, REDIS_URL), decode_responses=True)
        self._client = client

    def window_bounds(self, ts: int) -> Tuple[int, int]:
        start = ts - ts % self.window_seconds
        return start, start + self.window_seconds

    def check_and_increment(self, bucket: str, key: str, now: Optional[int] = None) -> Tuple[bool, int, int]:
        ts = int(now) if now is not None else int(time.time())
        start, reset_ts = self.window_bounds(ts)
        counter = ":".join(("svitlogics", "rl", _part(bucket, "default"), _part(key, "anon"), str(start)))
        with self._client.pipeline() as pipe:
            pipe.incr(counter)
            pipe.expireat(counter, reset_ts)
            used = int(pipe.execute()[0])
        if used > self.max_requests:
            return False, 0, reset_ts
        return True, self.max_requests - used, reset_ts
