"""Cart sync engine - one instance per authenticated session."""
import asyncio
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Optional

from cartsync.logging import get_logger, sanitize_id_for_logging
from cartsync.session import SessionContext

from .coordinator import CartMutationCoordinator, utcnow
from .models import Cart, CartLineItem
from .reconciler import CartReconciler
from .repository import CartRepository
from .storage import get_redis
from .view_model import CartView, CartViewModel

logger = get_logger(__name__)


class CartSyncEngine:
    """
    Wires repository, reconciler, mutation coordinator and view model for
    one session.

    Usage:
        async with CartSyncEngine.for_session(session) as engine:
            await engine.add_item(product, quantity=2)
            async for view in engine.views():
                render(view)
    """

    def __init__(
        self,
        session: SessionContext,
        repository: CartRepository,
        clock: Callable[[], datetime] = utcnow,
    ):
        user_id = session.require_user_id()
        self.session = session
        self.repository = repository
        self.view_model = CartViewModel()
        self.reconciler = CartReconciler(user_id, on_update=self.view_model.on_cart_update)
        self.coordinator = CartMutationCoordinator(
            repository,
            session,
            on_pending_change=self.view_model.on_pending_change,
            clock=clock,
        )
        self._sync_task: Optional[asyncio.Task] = None

    @classmethod
    def for_session(cls, session: SessionContext, client: Any = None) -> "CartSyncEngine":
        """Build an engine on the shared Upstash client (or the given one)."""
        return cls(session, CartRepository(client if client is not None else get_redis()))

    @property
    def user_id(self) -> str:
        return self.reconciler.user_id

    @property
    def running(self) -> bool:
        return self._sync_task is not None and not self._sync_task.done()

    def start(self) -> None:
        """Start following the remote cart in a background task."""
        if self.running:
            return
        logger.debug(f"Starting cart sync for {sanitize_id_for_logging(self.user_id)}")
        self._sync_task = asyncio.ensure_future(self.reconciler.run(self.repository))

    async def stop(self) -> None:
        """Cancel the subscription and let in-flight mutations settle."""
        if self._sync_task is not None:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None
        await self.coordinator.drain()
        self.reconciler.close()
        self.view_model.close()
        logger.debug(f"Stopped cart sync for {sanitize_id_for_logging(self.user_id)}")

    async def __aenter__(self) -> "CartSyncEngine":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # === Reads ===

    @property
    def cart(self) -> Optional[Cart]:
        return self.reconciler.cart

    @property
    def view(self) -> CartView:
        return self.view_model.current

    def views(self) -> AsyncIterator[CartView]:
        return self.view_model.views()

    # === Intents ===

    async def add_item(self, product: Any, quantity: int = 1) -> CartLineItem:
        return await self.coordinator.add(product, quantity)

    async def set_quantity(self, product_id: str, quantity: int) -> Optional[CartLineItem]:
        return await self.coordinator.set_quantity(product_id, quantity)

    async def remove_item(self, product_id: str) -> None:
        await self.coordinator.remove(product_id)

    async def increment(self, product_id: str) -> Optional[CartLineItem]:
        """+1 on a line shown in the cart."""
        return await self._step(product_id, 1)

    async def decrement(self, product_id: str) -> Optional[CartLineItem]:
        """-1 on a line shown in the cart; reaching zero removes it."""
        return await self._step(product_id, -1)

    async def _step(self, product_id: str, delta: int) -> Optional[CartLineItem]:
        self.session.require_user_id()
        item = self.cart.get(product_id) if self.cart is not None else None
        if item is None:
            logger.debug(f"Ignoring step on {sanitize_id_for_logging(product_id)}, not in local cart")
            return None
        return await self.coordinator.set_quantity(product_id, item.quantity + delta)
