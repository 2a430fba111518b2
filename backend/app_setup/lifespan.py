"""
Lifespan FastAPI: initialisation/arrêt des ressources partagées.
- Initialise FastAPILimiter (Redis, fakeredis en tests) ou le fallback mémoire, et pose le
  store sur app.state.rate_limit_store (None = désactivé).
- Variables d'environnement supportées:
  - DISABLE_RATE_LIMIT_FOR_TESTS=1: désactive complètement (tests)
  - USE_FAKE_REDIS_FOR_TESTS=1: utilise fakeredis (tests)
  - LOCAL_RATE_LIMIT_FALLBACK=1: compteurs en mémoire si Redis est injoignable
"""
import os
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
import redis.asyncio as aioredis
from fastapi_limiter import FastAPILimiter

from backend import config
from backend.utils.rate_limit import KEY_NAMESPACE, MemoryWindowStore, RedisWindowStore

try:
    from fakeredis import FakeAsyncRedis  # tests only
except ImportError:
    FakeAsyncRedis = None


async def _init_rate_limit_store(app: FastAPI, logger: logging.Logger) -> None:
    if os.getenv("DISABLE_RATE_LIMIT_FOR_TESTS") == "1":
        app.state.rate_limit_store = None
        logger.info("Rate limiting disabled by DISABLE_RATE_LIMIT_FOR_TESTS")
        return
    try:
        if os.getenv("USE_FAKE_REDIS_FOR_TESTS") == "1":
            if not FakeAsyncRedis:
                raise RuntimeError("USE_FAKE_REDIS_FOR_TESTS=1 mais fakeredis n'est pas installé.")
            r = FakeAsyncRedis(decode_responses=True)
        else:
            r = aioredis.from_url(config.RATE_LIMIT_REDIS_URL, encoding="utf-8", decode_responses=True)
        await FastAPILimiter.init(r, prefix=KEY_NAMESPACE)
        app.state.rate_limit_store = RedisWindowStore()
        logger.info("Rate limiting enabled (redis)")
    except Exception as e:
        if os.getenv("LOCAL_RATE_LIMIT_FALLBACK") == "1":
            app.state.rate_limit_store = MemoryWindowStore()
            logger.warning(f"Rate limiting falling back to local in-memory due to init error: {e}")
        else:
            app.state.rate_limit_store = None
            logger.warning(f"Rate limiting disabled due to init error: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Configure le rate limiting et gère les fallbacks.
    - Un store déjà posé sur app.state (tests) est conservé tel quel.
    - Les logs indiquent l'état effectif pour observabilité.
    """
    logger = logging.getLogger("uvicorn.error")
    if not hasattr(app.state, "rate_limit_store"):
        await _init_rate_limit_store(app, logger)
    logger.info(
        "Integrations: stripe=%s webhook=%s supabase=%s sendgrid=%s",
        bool(config.STRIPE_SECRET_KEY), bool(config.STRIPE_WEBHOOK_SECRET),
        bool(config.SUPABASE_URL and config.SUPABASE_SERVICE_KEY), bool(config.SENDGRID_API_KEY),
    )
    yield
    store = getattr(app.state, "rate_limit_store", None)
    if isinstance(store, RedisWindowStore):
        await store.close()
