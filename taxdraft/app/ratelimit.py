"""Rate limiting utilities."""

from datetime import datetime
from typing import Annotated

import redis
from fastapi import Depends, HTTPException, Request, status

from taxdraft.app.config import get_settings
from taxdraft.app.db.inmemory import InMemoryRateLimiter
from taxdraft.app.db.repositories import RateLimiter, RetryAfter

CHAT_BUCKET = "chat"


def make_rate_limit_key(client_id: str, bucket: str) -> str:
    """Create rate limit key from client and bucket.

    Args:
        client_id: Caller identity (client address)
        bucket: Bucket name (e.g., "chat")

    Returns:
        Rate limit key
    """
    return f"{client_id}:{bucket}"


class RedisRateLimiter:
    """Redis-based rate limiter using INCR + EXPIRE pattern."""

    def __init__(self, redis_client: redis.Redis, max_requests: int, window_seconds: int = 60) -> None:
        """Initialize rate limiter.

        Args:
            redis_client: Redis client
            max_requests: Maximum requests per window
            window_seconds: Window size in seconds (default 60)
        """
        self._redis = redis_client
        self._max_requests = max_requests
        self._window_seconds = window_seconds

    def check_quota(self, key: str, now: datetime) -> RetryAfter | None:
        """Check if quota is available.

        Args:
            key: Rate limit key
            now: Current timestamp

        Returns:
            RetryAfter if over quota, None if allowed
        """
        window_start = int(now.timestamp() / self._window_seconds) * self._window_seconds
        redis_key = f"ratelimit:{key}:{window_start}"

        count = self._redis.incr(redis_key)

        # Set expiry on first request
        if count == 1:
            self._redis.expire(redis_key, self._window_seconds)

        if count > self._max_requests:
            ttl = self._redis.ttl(redis_key)
            return RetryAfter(seconds=max(1, ttl))

        return None


_chat_limiter: RateLimiter | None = None


def get_chat_rate_limiter() -> RateLimiter:
    """Process-wide limiter for chat endpoints.

    Redis-backed when redis_url is configured, in-process otherwise.
    """
    global _chat_limiter
    if _chat_limiter is None:
        settings = get_settings()
        if settings.redis_url:
            client = redis.from_url(settings.redis_url, decode_responses=True)  # type: ignore[no-untyped-call]
            _chat_limiter = RedisRateLimiter(client, settings.chat_requests_per_min)
        else:
            _chat_limiter = InMemoryRateLimiter(settings.chat_requests_per_min)
    return _chat_limiter


def enforce_chat_rate_limit(
    request: Request,
    limiter: Annotated[RateLimiter, Depends(get_chat_rate_limiter)],
) -> None:
    """FastAPI dependency rejecting chat calls over quota with 429.

    Raises:
        HTTPException: 429 with a Retry-After header
    """
    client_id = request.client.host if request.client else "anonymous"
    retry_after = limiter.check_quota(make_rate_limit_key(client_id, CHAT_BUCKET), datetime.now())
    if retry_after is not None:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many chat requests, please retry later",
            headers={"Retry-After": str(retry_after.seconds)},
        )
