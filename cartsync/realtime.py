"""Cart change stream - notifications over Redis Streams.

Every cart write appends an entry to the user's change stream; subscribers
poll the stream with XRANGE and re-read the cart hash when it moves.

Note: Using Redis Streams (XADD/XRANGE) instead of Pub/Sub for better
compatibility with Upstash REST API, which has no blocking reads.
"""

import json
from typing import Any

from cartsync.db import RedisKeys, SyncIntervals
from cartsync.logging import get_logger, sanitize_id_for_logging

logger = get_logger(__name__)

# Stream id that sorts before every real entry
STREAM_START = "0-0"

# Maximum number of entries to read per poll
MAX_EVENTS_PER_POLL = 50

EVENT_CART_CHANGED = "cart.changed"


async def emit_cart_change(redis: Any, user_id: str, product_id: str, op: str) -> None:
    """Emit cart.changed event for a user.

    Failures are logged and swallowed: the write itself already landed and
    subscribers resync periodically.

    Args:
        redis: Async Redis client
        user_id: Cart owner
        product_id: Line item that changed
        op: "upsert" or "delete"
    """
    try:
        payload = {
            "event": EVENT_CART_CHANGED,
            "user_id": user_id,
            "product_id": product_id,
            "op": op,
        }
        await redis.xadd(
            RedisKeys.stream_key(user_id),
            "*",
            {"data": json.dumps(payload)},
            maxlen=SyncIntervals.STREAM_MAXLEN,
        )
        logger.debug(f"Emitted cart.changed ({op}) for user {sanitize_id_for_logging(user_id)}")
    except Exception as e:
        logger.warning(f"Failed to emit cart.changed: {e}", exc_info=True)


async def latest_stream_id(redis: Any, user_id: str) -> str:
    """Id of the newest change entry, or STREAM_START when the stream is empty."""
    entries = await redis.xrevrange(RedisKeys.stream_key(user_id), end="+", start="-", count=1)
    if not entries:
        return STREAM_START
    entry_id, _fields = entries[0]
    return str(entry_id)


async def read_changes_after(redis: Any, user_id: str, last_id: str) -> list[dict[str, Any]]:
    """Read change events newer than last_id, oldest first.

    Returns:
        List of {"id": entry_id, **payload}; entries with unreadable payloads
        keep only their id so the cursor still advances past them.
    """
    entries = await redis.xrange(
        RedisKeys.stream_key(user_id), start=f"({last_id}", end="+", count=MAX_EVENTS_PER_POLL
    )
    events: list[dict[str, Any]] = []
    for entry_id, fields in entries or []:
        data = fields.get("data", "{}")
        payload: dict[str, Any] = {}
        if isinstance(data, str):
            try:
                payload = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON in cart stream for {sanitize_id_for_logging(user_id)}")
        elif isinstance(data, dict):
            payload = data
        events.append({**payload, "id": str(entry_id)})
    return events
