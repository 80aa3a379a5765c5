"""
Store Module - Upstash Redis client and cart key layout

Provides a lazily created async Upstash Redis client used as the remote
cart store:
- one hash per user holding line items keyed by product id
- one Redis Stream per user carrying change notifications
"""

import os
from typing import Optional

from upstash_redis.asyncio import Redis as AsyncRedis


# Upstash uses REST_URL and REST_TOKEN
UPSTASH_REDIS_REST_URL = os.environ.get("UPSTASH_REDIS_REST_URL", "")
UPSTASH_REDIS_REST_TOKEN = os.environ.get("UPSTASH_REDIS_REST_TOKEN", "")


_redis_client: Optional[AsyncRedis] = None


def get_redis() -> AsyncRedis:
    """
    Get async Upstash Redis client (singleton).

    Uses standard Upstash env var names:
    - UPSTASH_REDIS_REST_URL
    - UPSTASH_REDIS_REST_TOKEN

    The client is a transport only; cart state is never cached here.
    """
    global _redis_client

    if _redis_client is None:
        if not UPSTASH_REDIS_REST_URL or not UPSTASH_REDIS_REST_TOKEN:
            raise ValueError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set")
        _redis_client = AsyncRedis(url=UPSTASH_REDIS_REST_URL, token=UPSTASH_REDIS_REST_TOKEN)

    return _redis_client


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


class RedisKeys:
    """Redis key prefixes for cart data."""

    CART = "cart:"  # cart:{user_id} -> hash {product_id: json record}
    CART_STREAM = "stream:cart:"  # stream:cart:{user_id}

    @staticmethod
    def cart_key(user_id: str) -> str:
        return f"{RedisKeys.CART}{user_id}"

    @staticmethod
    def stream_key(user_id: str) -> str:
        return f"{RedisKeys.CART_STREAM}{user_id}"


class SyncIntervals:
    """Polling, resync and reconnect tuning for cart subscriptions."""

    # upstash-redis REST API does NOT support blocking XREAD, so subscriptions poll
    POLL = _env_float("CART_POLL_INTERVAL_SECS", 1.0)
    # Quiet polls between full re-reads of the hash
    RESYNC_EVERY_POLLS = _env_int("CART_RESYNC_EVERY_POLLS", 30)
    RECONNECT_MIN = _env_float("CART_RECONNECT_MIN_SECS", 1.0)
    RECONNECT_MAX = _env_float("CART_RECONNECT_MAX_SECS", 30.0)
    # Change stream entries kept per user
    STREAM_MAXLEN = _env_int("CART_STREAM_MAXLEN", 200)
