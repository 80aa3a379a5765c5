"""Cart Repository - the only code that talks to the remote cart store.

Layout in Upstash Redis:
    cart:{user_id}         hash, field = product id, value = JSON line item
    stream:cart:{user_id}  change notifications, one entry per write/delete
"""

import asyncio
import json
from contextlib import aclosing, asynccontextmanager
from typing import Any, AsyncIterator, Optional

from pydantic import ValidationError

from cartsync.errors import ReadError, StoreConnectionError, WriteError
from cartsync.logging import get_logger, sanitize_id_for_logging
from cartsync.realtime import emit_cart_change, latest_stream_id, read_changes_after

from .models import CartLineItem, CartSnapshot
from .storage import RedisKeys, SyncIntervals

logger = get_logger(__name__)


class CartRepository:
    """Cart store operations.

    Accepts any async client with the upstash-redis hash and stream commands.
    """

    def __init__(
        self,
        client: Any,
        poll_interval: float = SyncIntervals.POLL,
        resync_every_polls: int = SyncIntervals.RESYNC_EVERY_POLLS,
    ) -> None:
        self.client = client
        self.poll_interval = poll_interval
        self.resync_every_polls = resync_every_polls

    async def _read_entries(self, user_id: str) -> dict[str, Any]:
        data = await self.client.hgetall(RedisKeys.cart_key(user_id))
        return dict(data or {})

    async def subscribe(self, user_id: str) -> AsyncIterator[CartSnapshot]:
        """Yield a full snapshot now and again after every remote change.

        Never ends on its own. Raises StoreConnectionError when the store
        cannot be reached; callers resubscribe.
        """
        safe_user = sanitize_id_for_logging(user_id)
        try:
            # Cursor first: a change landing between the two reads is re-read later
            cursor = await latest_stream_id(self.client, user_id)
            entries = await self._read_entries(user_id)
        except Exception as e:
            logger.warning(f"Cart subscription for {safe_user} could not be established: {e}")
            raise StoreConnectionError(raw_error=e) from e

        logger.debug(f"Cart subscription opened for {safe_user}")
        try:
            yield CartSnapshot(user_id=user_id, entries=entries, cursor=cursor)

            quiet_polls = 0
            while True:
                await asyncio.sleep(self.poll_interval)
                try:
                    changes = await read_changes_after(self.client, user_id, cursor)
                    if changes:
                        cursor = changes[-1]["id"]
                        quiet_polls = 0
                        entries = await self._read_entries(user_id)
                        yield CartSnapshot(user_id=user_id, entries=entries, cursor=cursor)
                        continue

                    quiet_polls += 1
                    if self.resync_every_polls and quiet_polls >= self.resync_every_polls:
                        quiet_polls = 0
                        fresh = await self._read_entries(user_id)
                        if fresh != entries:
                            logger.info(f"Cart resync for {safe_user} found unannounced changes")
                            entries = fresh
                            yield CartSnapshot(user_id=user_id, entries=entries, cursor=cursor)
                except Exception as e:
                    logger.warning(f"Cart subscription for {safe_user} lost: {e}")
                    raise StoreConnectionError(raw_error=e) from e
        finally:
            logger.debug(f"Cart subscription released for {safe_user}")

    @asynccontextmanager
    async def open_subscription(self, user_id: str) -> AsyncIterator[AsyncIterator[CartSnapshot]]:
        """Scoped subscription: the stream is closed when the block exits."""
        async with aclosing(self.subscribe(user_id)) as snapshots:
            yield snapshots

    async def read_item(self, user_id: str, product_id: str) -> Optional[CartLineItem]:
        """Point lookup of one line item; malformed records read as absent."""
        try:
            raw = await self.client.hget(RedisKeys.cart_key(user_id), product_id)
        except Exception as e:
            logger.error(f"Failed to read cart item {sanitize_id_for_logging(product_id)}: {e}")
            raise ReadError(raw_error=e) from e

        if raw is None:
            return None
        try:
            data = json.loads(raw) if isinstance(raw, str) else raw
            item = CartLineItem.from_wire(data)
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning(
                f"Corrupted cart item {sanitize_id_for_logging(product_id)} "
                f"for user {sanitize_id_for_logging(user_id)}: {e}"
            )
            return None
        if item.product_id != product_id:
            logger.warning(f"Cart item stored under {sanitize_id_for_logging(product_id)} has another id")
            return None
        return item

    async def write_item(self, user_id: str, item: CartLineItem) -> None:
        """Upsert the complete line item record."""
        try:
            await self.client.hset(
                RedisKeys.cart_key(user_id),
                item.product_id,
                json.dumps(item.to_wire()),
            )
        except Exception as e:
            logger.error(f"Failed to write cart item {sanitize_id_for_logging(item.product_id)}: {e}")
            raise WriteError(raw_error=e) from e
        await emit_cart_change(self.client, user_id, item.product_id, "upsert")

    async def delete_item(self, user_id: str, product_id: str) -> None:
        """Remove a line item. Deleting an absent item succeeds."""
        try:
            await self.client.hdel(RedisKeys.cart_key(user_id), product_id)
        except Exception as e:
            logger.error(f"Failed to delete cart item {sanitize_id_for_logging(product_id)}: {e}")
            raise WriteError(raw_error=e) from e
        await emit_cart_change(self.client, user_id, product_id, "delete")
