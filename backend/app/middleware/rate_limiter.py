from starlette.middleware.base import BaseHTTPMiddleware
from fastapi import Request, HTTPException
from typing import Dict, List, Optional
from app import config
import time
import uuid
import logging

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = "Too many requests, please try again later."
TOO_MANY_LOGINS = "Too many login attempts, please try again later."
LOGIN_PATH = "/api/auth/login"


class MemoryCounter:
    """Sliding-window counter kept in process memory (single instance only)."""

    def __init__(self):
        self.hits: Dict[str, List[float]] = {}

    async def hit(self, key: str, limit: int, window: int) -> bool:
        now = time.time()
        recent = [t for t in self.hits.get(key, []) if t > now - window]
        allowed = len(recent) < limit
        if allowed:
            recent.append(now)
        self.hits[key] = recent
        return allowed


class RedisCounter:
    """Sliding-window counter shared by every API instance (one sorted set per key)."""

    def __init__(self, url: str):
        from redis import asyncio as redis_asyncio
        self.client = redis_asyncio.from_url(url)

    async def hit(self, key: str, limit: int, window: int) -> bool:
        now = time.time()
        async with self.client.pipeline(transaction=True) as tx:
            tx.zremrangebyscore(key, 0, now - window)
            tx.zcard(key)
            _, count = await tx.execute()
        if count >= limit:
            return False
        async with self.client.pipeline(transaction=True) as tx:
            tx.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
            tx.expire(key, window)
            await tx.execute()
        return True


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """Per-IP request limits.

    Every request counts against RATE_LIMIT per RATE_LIMIT_WINDOW seconds;
    POST /api/auth/login also counts against AUTH_RATE_LIMIT. Counters live in
    Redis when REDIS_URL is set and in memory otherwise, or after Redis fails.
    """

    def __init__(self, app, redis_url: Optional[str] = None):
        super().__init__(app)
        self.memory = MemoryCounter()
        self.redis = RedisCounter(redis_url) if redis_url else None

    async def dispatch(self, request: Request, call_next):
        # CORS pre-flights are never counted
        if config.DISABLE_RATE_LIMIT or request.method == "OPTIONS":
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        limits = [(f"rate:{client_ip}", config.RATE_LIMIT, TOO_MANY_REQUESTS)]
        if request.method == "POST" and request.url.path == LOGIN_PATH:
            limits.append((f"rate:login:{client_ip}", config.AUTH_RATE_LIMIT, TOO_MANY_LOGINS))

        for key, limit, message in limits:
            if not await self._hit(key, limit):
                logger.warning("Rate limit exceeded for %s on %s", client_ip, request.url.path)
                raise HTTPException(status_code=429, detail=message)

        return await call_next(request)

    async def _hit(self, key: str, limit: int) -> bool:
        if self.redis is not None:
            try:
                return await self.redis.hit(key, limit, config.RATE_LIMIT_WINDOW)
            except Exception as exc:
                logger.warning("Redis unavailable for rate limiting, using in-memory counters: %s", exc)
                self.redis = None
        return await self.memory.hit(key, limit, config.RATE_LIMIT_WINDOW)
