"""
Rate limiting à fenêtre fixe, par route et par IP client.
- Redis: fastapi-limiter (FastAPILimiter.init dans le lifespan, RateLimiter par route),
  compteurs partagés entre instances, script Lua atomique.
- MemoryWindowStore: compteurs en mémoire du process (dev, fallback, tests).
- FixedWindowRateLimiter.allow(key) -> bool, indépendant du stockage.
Le store actif est choisi par le lifespan et posé sur app.state.rate_limit_store.
"""
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

from fastapi import Request, Response
from fastapi_limiter import FastAPILimiter
from fastapi_limiter.depends import RateLimiter
from redis.exceptions import NoScriptError

from backend import config
from backend.payments.errors import ShopError

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = "Too many requests. Please try again later."
KEY_NAMESPACE = "ratelimit"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: Optional[int] = None
    retry_after: int = 0


@dataclass
class _Bucket:
    count: int
    reset_at: float


class MemoryWindowStore:
    """Buckets {count, reset_at} en mémoire; une requête rejetée n'incrémente pas."""

    backend = "memory"
    ready = True

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._buckets: Dict[str, _Bucket] = {}

    def __len__(self) -> int:
        return len(self._buckets)

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, bucket in self._buckets.items() if now >= bucket.reset_at]
        for key in expired:
            del self._buckets[key]

    async def hit(self, key: str, max_requests: int, window_seconds: int) -> RateLimitDecision:
        now = self._clock()
        self._evict_expired(now)
        bucket = self._buckets.get(key)
        if bucket is None:
            self._buckets[key] = _Bucket(count=1, reset_at=now + window_seconds)
            return RateLimitDecision(True, 1)
        if bucket.count >= max_requests:
            return RateLimitDecision(False, bucket.count, max(1, math.ceil(bucket.reset_at - now)))
        bucket.count += 1
        return RateLimitDecision(True, bucket.count)

    def reset(self) -> None:
        self._buckets.clear()


class RedisWindowStore:
    """
    Compteurs Redis gérés par fastapi-limiter (FastAPILimiter.init requis).
    hit() exécute le même script Lua que RateLimiter: la clé est créée avec son
    expiration, une requête au-delà du budget renvoie le PTTL sans incrémenter.
    """

    backend = "redis"

    @property
    def ready(self) -> bool:
        return FastAPILimiter.redis is not None

    async def _check(self, key: str, max_requests: int, window_ms: int) -> int:
        redis = FastAPILimiter.redis
        try:
            return await redis.evalsha(FastAPILimiter.lua_sha, 1, key, str(max_requests), str(window_ms))
        except NoScriptError:
            FastAPILimiter.lua_sha = await redis.script_load(FastAPILimiter.lua_script)
            return await redis.evalsha(FastAPILimiter.lua_sha, 1, key, str(max_requests), str(window_ms))

    async def hit(self, key: str, max_requests: int, window_seconds: int) -> RateLimitDecision:
        pexpire = await self._check(f"{FastAPILimiter.prefix}:{key}", max_requests, window_seconds * 1000)
        if pexpire != 0:
            return RateLimitDecision(False, retry_after=max(1, math.ceil(int(pexpire) / 1000)))
        return RateLimitDecision(True)

    async def close(self) -> None:
        if FastAPILimiter.redis is not None:
            await FastAPILimiter.redis.aclose()


class FixedWindowRateLimiter:
    def __init__(self, store, max_requests: int, window_seconds: int):
        self.store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    async def hit(self, key: str) -> RateLimitDecision:
        return await self.store.hit(key, self.max_requests, self.window_seconds)

    async def allow(self, key: str) -> bool:
        decision = await self.hit(key)
        return decision.allowed


def client_ip(request: Request) -> str:
    """Première entrée de X-Forwarded-For, sinon l'adresse du pair."""
    forwarded = request.headers.get("x-forwarded-for") or ""
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    return request.client.host if request.client else "unknown"


# module backend.utils.rate_limit
def rate_limit(key_prefix: str, max_requests: int, window_seconds: int):
    """
    Dépendance FastAPI: 429 {"error": "Too many requests..."} + Retry-After au-delà du budget.
    - Store Redis -> RateLimiter de fastapi-limiter (identifiant "<prefix>:<ip>").
    - Store mémoire -> FixedWindowRateLimiter.
    - Pas de store sur app.state (rate limiting désactivé) -> laisse passer.
    - Redis indisponible en cours de route -> warning et laisse passer (pas de 429 en prod).
    """
    async def _identifier(request: Request) -> str:
        return f"{key_prefix}:{client_ip(request)}"

    async def _reject(request: Request, response: Response, pexpire: int):
        retry_after = max(1, math.ceil(pexpire / 1000))
        logger.info("rate_limit rejected key=%s retry_after=%s", await _identifier(request), retry_after)
        raise ShopError(TOO_MANY_REQUESTS, status_code=429, headers={"Retry-After": str(retry_after)})

    redis_limiter = RateLimiter(times=max_requests, seconds=window_seconds, identifier=_identifier, callback=_reject)

    async def _dep(request: Request, response: Response):
        store = getattr(request.app.state, "rate_limit_store", None)
        if store is None:
            return
        key = await _identifier(request)
        try:
            if isinstance(store, RedisWindowStore):
                await redis_limiter(request, response)
                return
            decision = await FixedWindowRateLimiter(store, max_requests, window_seconds).hit(key)
        except ShopError:
            raise
        except Exception as e:
            logger.warning("rate_limit store error key=%s: %s", key, e)
            return
        if not decision.allowed:
            await _reject(request, response, decision.retry_after * 1000)
    return _dep


def rate_limit_health_info(request: Request) -> Dict[str, Any]:
    store = getattr(request.app.state, "rate_limit_store", None)
    backend: Optional[str] = getattr(store, "backend", None)
    info: Dict[str, Any] = {
        "enabled": store is not None,
        "ready": bool(getattr(store, "ready", False)),
        "backend": backend,
        "limits": {
            "checkout": config.CHECKOUT_RATE_LIMIT,
            "portal": config.PORTAL_RATE_LIMIT,
            "window_seconds": config.RATE_LIMIT_WINDOW_SECONDS,
        },
    }
    if backend == "redis" and config.RATE_LIMIT_REDIS_URL:
        p = urlparse(config.RATE_LIMIT_REDIS_URL)
        info["redis"] = {"scheme": p.scheme, "host": p.hostname, "port": p.port}
    return info
