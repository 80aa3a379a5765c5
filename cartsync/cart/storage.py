"""Redis access for cart."""
from cartsync.db import get_redis, RedisKeys, SyncIntervals

__all__ = ["get_redis", "RedisKeys", "SyncIntervals"]
