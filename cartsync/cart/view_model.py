"""Cart View Model - read-only aggregates derived from the reconciled cart."""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import AsyncIterator, Mapping, Optional

from cartsync.services.money import format_money, round_money, to_float

from .broadcast import LatestBroadcast
from .models import CartLineItem, PendingOperation
from .reconciler import CartUpdate, SyncStatus


@dataclass(frozen=True)
class CartLineView:
    """One rendered line: the item, its subtotal and any in-flight change."""
    item: CartLineItem
    subtotal: Decimal
    pending: Optional[PendingOperation] = None

    @property
    def product_id(self) -> str:
        return self.item.product_id

    @property
    def quantity(self) -> int:
        return self.item.quantity

    @property
    def busy(self) -> bool:
        """Controls for this line should be disabled."""
        return self.pending is not None

    @property
    def can_decrement(self) -> bool:
        return not self.busy and self.item.quantity > 1


@dataclass(frozen=True)
class CartView:
    """Derived cart state for the UI.

    "Loading" (no snapshot yet) and "empty" (a snapshot with no items) are
    different states.
    """
    status: SyncStatus
    loaded: bool
    lines: tuple[CartLineView, ...] = field(default_factory=tuple)
    total_item_count: int = 0
    total_price: Decimal = Decimal("0")
    degraded: bool = False

    @property
    def is_loading(self) -> bool:
        return not self.loaded

    @property
    def is_empty(self) -> bool:
        return self.loaded and not self.lines

    @property
    def is_available(self) -> bool:
        return self.status is not SyncStatus.UNAVAILABLE

    @property
    def display_total(self) -> str:
        return format_money(self.total_price)

    def line(self, product_id: str) -> Optional[CartLineView]:
        return next((line for line in self.lines if line.product_id == product_id), None)

    def summary(self) -> dict:
        """Plain-data summary with prices rounded for display."""
        return {
            "status": self.status.value,
            "is_loading": self.is_loading,
            "is_empty": self.is_empty,
            "total_items": self.total_item_count,
            "items": [
                {
                    "product_id": line.product_id,
                    "title": line.item.title,
                    "quantity": line.quantity,
                    "unit_price": to_float(round_money(line.item.unit_price)),
                    "subtotal": to_float(round_money(line.subtotal)),
                    "busy": line.busy,
                }
                for line in self.lines
            ],
            "total": to_float(round_money(self.total_price)),
        }


def derive_view(
    update: CartUpdate,
    pending: Optional[Mapping[str, PendingOperation]] = None,
) -> CartView:
    """Pure derivation of the view from a reconciled update and the pending table."""
    pending = pending or {}
    if update.cart is None:
        return CartView(status=update.status, loaded=False)

    lines = tuple(
        CartLineView(item=item, subtotal=item.subtotal, pending=pending.get(item.product_id))
        for item in update.cart
    )
    # Decimal sums are exact; rounding is left to display_total / summary()
    total_price = sum((line.subtotal for line in lines), Decimal("0"))
    total_item_count = sum(line.quantity for line in lines)
    return CartView(
        status=update.status,
        loaded=True,
        lines=lines,
        total_item_count=total_item_count,
        total_price=total_price,
        degraded=update.degraded,
    )


class CartViewModel:
    """Keeps the latest CartView current as the cart or pending table change."""

    def __init__(self, update: Optional[CartUpdate] = None):
        self._update = update or CartUpdate(sequence=0, status=SyncStatus.LOADING)
        self._pending: Mapping[str, PendingOperation] = {}
        self._broadcast: LatestBroadcast[CartView] = LatestBroadcast()
        self._current = derive_view(self._update, self._pending)

    @property
    def current(self) -> CartView:
        return self._current

    def views(self, replay_latest: bool = True) -> AsyncIterator[CartView]:
        return self._broadcast.subscribe(replay_latest=replay_latest)

    def _recompute(self) -> None:
        self._current = derive_view(self._update, self._pending)
        if not self._broadcast.closed:
            self._broadcast.publish(self._current)

    def on_cart_update(self, update: CartUpdate) -> None:
        self._update = update
        self._recompute()

    def on_pending_change(self, pending: Mapping[str, PendingOperation]) -> None:
        self._pending = dict(pending)
        self._recompute()

    def close(self) -> None:
        self._broadcast.close()
