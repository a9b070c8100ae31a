"""
cache.py — Redis caching layer for resolved tax rules.

Namespace conventions:
  ruleset:{fiscal_year}   → ResolvedRuleSet JSON (rules + source + resolved_at)   TTL 7d (settings)

Design:
  - Uses redis.asyncio (async client, part of redis-py 5.x — do NOT use aioredis separately)
  - Pool created once in lifespan, stored on app.state.redis and handed to the RuleSetProvider
  - Helper functions take the client as a param — no module-level global state
  - This is the shared tier behind each process's in-memory cache; the provider treats
    any RedisError as a miss, so a Redis outage only costs a reload
"""
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from takehome.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefix constants
# ---------------------------------------------------------------------------
RULESET_PREFIX = "ruleset"


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

def make_ruleset_key(fiscal_year: str) -> str:
    """Build Redis key for a resolved ruleset: ruleset:{fiscal_year}"""
    return f"{RULESET_PREFIX}:{fiscal_year}"


# ---------------------------------------------------------------------------
# Pool factory: called once in lifespan
# ---------------------------------------------------------------------------

async def create_redis_pool() -> Optional[aioredis.Redis]:
    """
    Create and return an async Redis connection pool.
    Called once in FastAPI lifespan startup — stored on app.state.redis.
    Returns None when REDIS_URL is empty or the server does not answer PING;
    the shared tier is then disabled and the in-process cache carries on alone.
    """
    if not settings.redis_url:
        logger.info("REDIS_URL empty — shared ruleset cache disabled")
        return None
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    try:
        await client.ping()
    except RedisError as exc:
        logger.warning("Redis unreachable at %s (%s), shared ruleset cache disabled", settings.redis_url, exc)
        await client.aclose()
        return None
    logger.info("Redis connection pool established at %s", settings.redis_url)
    return client


# ---------------------------------------------------------------------------
# Ruleset helpers
# ---------------------------------------------------------------------------

async def get_cached_ruleset(client: aioredis.Redis, fiscal_year: str) -> Optional[str]:
    """
    Return the raw JSON of a cached ResolvedRuleSet, or None on miss.
    Decoding and re-validation are the provider's job.
    """
    key = make_ruleset_key(fiscal_year)
    raw = await client.get(key)
    if raw is None:
        return None
    logger.info("Ruleset cache hit key=%s", key)
    return raw


async def set_cached_ruleset(
    client: aioredis.Redis, fiscal_year: str, payload: str, ttl_seconds: int
) -> None:
    """Store a serialized ResolvedRuleSet; overwrites and resets TTL on every write."""
    key = make_ruleset_key(fiscal_year)
    await client.setex(key, ttl_seconds, payload)
    logger.info("Ruleset cached key=%s ttl=%ds", key, ttl_seconds)


async def delete_cached_ruleset(client: aioredis.Redis, fiscal_year: Optional[str] = None) -> int:
    """
    Delete one fiscal year's entry, or every ruleset:* entry when fiscal_year is None.
    Returns the number of keys removed.
    """
    if fiscal_year is not None:
        removed = await client.delete(make_ruleset_key(fiscal_year))
    else:
        keys = [key async for key in client.scan_iter(match=f"{RULESET_PREFIX}:*")]
        removed = await client.delete(*keys) if keys else 0
    logger.info("Ruleset cache cleared fiscal_year=%s removed=%d", fiscal_year or "*", removed)
    return removed
