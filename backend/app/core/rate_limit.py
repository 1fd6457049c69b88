from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request

from app.core.redis_client import get_redis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    key: str
    limit: int
    window_seconds: int


def _subject(request: Request) -> str:
    # Authenticated routes resolve the user before this dependency runs.
    uid = getattr(getattr(request, "state", None), "user_id", None)
    if uid:
        return f"user:{uid}"
    if request.client and request.client.host:
        return f"ip:{request.client.host}"
    return "ip:unknown"


def rate_limit(*, key_prefix: str, limit: int, window_seconds: int):
    """Fixed-window counter in Redis. Fails open if Redis is down."""

    async def _dep(request: Request) -> RateLimit:
        key = f"rl:{key_prefix}:{_subject(request)}"
        try:
            r = get_redis()
            current = r.incr(key)
            if current == 1:
                r.expire(key, int(window_seconds))
        except Exception as e:
            logger.warning("rate_limit: redis unavailable, not limiting key=%s err=%s", key, type(e).__name__)
            return RateLimit(key=key, limit=int(limit), window_seconds=int(window_seconds))

        if int(current) > int(limit):
            ttl = r.ttl(key)
            retry_after = int(ttl) if ttl and ttl > 0 else int(window_seconds)
            raise HTTPException(
                status_code=429,
                detail="rate limit exceeded",
                headers={"Retry-After": str(retry_after)},
            )

        return RateLimit(key=key, limit=int(limit), window_seconds=int(window_seconds))

    return Depends(_dep)
