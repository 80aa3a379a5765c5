"""Mutation Coordinator - the only component that initiates cart writes."""
import asyncio
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from cartsync.errors import CartSyncError, ConflictError
from cartsync.logging import get_logger, sanitize_id_for_logging
from cartsync.services.money import to_decimal
from cartsync.session import SessionContext

from .models import CartLineItem, PendingOperation
from .repository import CartRepository

logger = get_logger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(UTC)


class CartMutationCoordinator:
    """
    Serializes add / set-quantity / remove per line item.

    Features:
    - At most one pending operation per product id; a second request for a
      busy item fails fast with ConflictError (nothing is queued)
    - Merge-on-add: adding a product already in the cart sums quantities
    - Clamp-to-remove: setting a quantity <= 0 deletes the item
    - Issued store work is shielded from caller cancellation and always
      settles, clearing its pending entry

    Known limitation: the merge on add is read-then-write, not an atomic
    increment. Two coordinators (two devices) adding the same product at
    the same time can lose one of the increments.
    """

    def __init__(
        self,
        repository: CartRepository,
        session: SessionContext,
        on_pending_change: Optional[Callable[[Mapping[str, PendingOperation]], None]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.session = session
        self._on_pending_change = on_pending_change
        self._clock = clock
        self._pending: dict[str, PendingOperation] = {}
        self._inflight: set[asyncio.Task] = set()

    @property
    def pending(self) -> Mapping[str, PendingOperation]:
        """Read-only view of the pending-operation table."""
        return MappingProxyType(self._pending)

    def pending_for(self, product_id: str) -> Optional[PendingOperation]:
        return self._pending.get(product_id)

    def is_pending(self, product_id: str) -> bool:
        return product_id in self._pending

    def _notify_pending(self) -> None:
        if self._on_pending_change is not None:
            self._on_pending_change(self.pending)

    def _claim(self, operation: PendingOperation) -> None:
        existing = self._pending.get(operation.product_id)
        if existing is not None:
            logger.info(
                f"Rejected {operation.kind.value} for {sanitize_id_for_logging(operation.product_id)}: "
                f"{existing.kind.value} still pending"
            )
            raise ConflictError(operation.product_id, pending=existing)
        self._pending[operation.product_id] = operation
        self._notify_pending()

    def _release(self, product_id: str) -> None:
        self._pending.pop(product_id, None)
        self._notify_pending()

    async def _settle(self, operation: PendingOperation, work: Awaitable[T]) -> T:
        try:
            return await work
        except CartSyncError as e:
            logger.warning(
                f"Cart {operation.kind.value} failed for {sanitize_id_for_logging(operation.product_id)}: {e}"
            )
            raise
        finally:
            self._release(operation.product_id)

    def _forget(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        # Mark the outcome retrieved; a caller that went away never awaits it
        if not task.cancelled():
            task.exception()

    async def _drive(self, operation: PendingOperation, work: Callable[[], Awaitable[T]]) -> T:
        """Mark pending, run work to completion in its own task, clear pending."""
        self._claim(operation)
        task = asyncio.ensure_future(self._settle(operation, work()))
        self._inflight.add(task)
        task.add_done_callback(self._forget)
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait until every issued mutation has settled."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # === Operations ===

    async def add(self, product: Any, quantity: int = 1) -> CartLineItem:
        """
        Add quantity units of a catalog product, merging with an existing line.

        Args:
            product: Catalog record exposing product_id, title, image_ref,
                category and unit_price
            quantity: Units to add, >= 1

        Returns:
            The line item as written
        """
        user_id = self.session.require_user_id()
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValueError("quantity must be a positive integer")
        product_id = str(product.product_id)
        if not product_id:
            raise ValueError("product_id must be a non-empty string")
        unit_price = to_decimal(product.unit_price)
        if unit_price < 0:
            raise ValueError("unit_price must be a non-negative number")

        async def work() -> CartLineItem:
            existing = await self.repository.read_item(user_id, product_id)
            if existing is not None:
                item = existing.with_quantity(existing.quantity + quantity)
            else:
                item = CartLineItem(
                    product_id=product_id,
                    title=product.title,
                    image_ref=product.image_ref or "",
                    category=product.category or "",
                    unit_price=unit_price,
                    quantity=quantity,
                    added_at=self._clock(),
                )
            await self.repository.write_item(user_id, item)
            logger.info(
                f"Added {quantity} x {sanitize_id_for_logging(product_id)} "
                f"(now {item.quantity}) for user {sanitize_id_for_logging(user_id)}"
            )
            return item

        return await self._drive(PendingOperation.adding(product_id), work)

    async def set_quantity(self, product_id: str, new_quantity: int) -> Optional[CartLineItem]:
        """
        Overwrite a line's quantity. new_quantity <= 0 removes the line.

        Returns:
            The line item as written, or None when the line was removed or
            is no longer in the cart
        """
        user_id = self.session.require_user_id()
        if isinstance(new_quantity, bool) or not isinstance(new_quantity, int):
            raise ValueError("new_quantity must be an integer")
        if new_quantity <= 0:
            await self.remove(product_id)
            return None

        async def work() -> Optional[CartLineItem]:
            current = await self.repository.read_item(user_id, product_id)
            if current is None:
                # Removed elsewhere; writing it back would resurrect it
                logger.info(f"Quantity update skipped, {sanitize_id_for_logging(product_id)} not in cart")
                return None
            item = current.with_quantity(new_quantity)
            await self.repository.write_item(user_id, item)
            return item

        return await self._drive(PendingOperation.updating(product_id, new_quantity), work)

    async def remove(self, product_id: str) -> None:
        """Delete a line unconditionally. Removing an absent line succeeds."""
        user_id = self.session.require_user_id()

        async def work() -> None:
            await self.repository.delete_item(user_id, product_id)
            logger.info(
                f"Removed {sanitize_id_for_logging(product_id)} for user {sanitize_id_for_logging(user_id)}"
            )

        await self._drive(PendingOperation.removing(product_id), work)
