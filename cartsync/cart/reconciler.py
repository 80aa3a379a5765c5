"""Reconciliation Engine - turns raw store snapshots into the local cart."""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional

from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_never,
    wait_exponential,
)

from cartsync.errors import MalformedDataError, StoreConnectionError
from cartsync.logging import get_logger, sanitize_id_for_logging

from .broadcast import LatestBroadcast
from .models import Cart, CartLineItem, CartSnapshot
from .storage import SyncIntervals

logger = get_logger(__name__)


class SyncStatus(str, Enum):
    """Health of the subscription feeding the local cart."""
    LOADING = "loading"
    LIVE = "live"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class CartUpdate:
    """One published state of the local cart.

    cart is None until the first snapshot has been reconciled.
    """
    sequence: int
    status: SyncStatus
    cart: Optional[Cart] = None
    diagnostics: tuple[MalformedDataError, ...] = field(default_factory=tuple)

    @property
    def degraded(self) -> bool:
        return bool(self.diagnostics)


def parse_entry(key: str, raw: Any) -> CartLineItem:
    """Validate one hash entry. Raises MalformedDataError."""
    try:
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    except json.JSONDecodeError as e:
        raise MalformedDataError(key, f"invalid JSON ({e.msg})") from e
    if not isinstance(data, dict):
        raise MalformedDataError(key, "record is not an object")
    try:
        item = CartLineItem.from_wire(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise MalformedDataError(key, f"invalid fields: {fields}") from e
    if item.product_id != key:
        raise MalformedDataError(key, f"productId {item.product_id!r} does not match its key")
    return item


class CartReconciler:
    """
    Owns the authoritative local cart for one user.

    Every snapshot replaces the local cart wholesale; the remote store is the
    single source of truth. Updates are published synchronously to on_update
    and to async consumers of updates() (at-most-latest delivery).
    """

    def __init__(
        self,
        user_id: str,
        on_update: Optional[Callable[[CartUpdate], None]] = None,
    ):
        self.user_id = user_id
        self._on_update = on_update
        self._broadcast: LatestBroadcast[CartUpdate] = LatestBroadcast()
        self._sequence = 0
        self._current = CartUpdate(sequence=0, status=SyncStatus.LOADING)

    @property
    def current(self) -> CartUpdate:
        return self._current

    @property
    def cart(self) -> Optional[Cart]:
        """Latest reconciled cart, None while still loading."""
        return self._current.cart

    def updates(self, replay_latest: bool = True) -> AsyncIterator[CartUpdate]:
        return self._broadcast.subscribe(replay_latest=replay_latest)

    def _publish(self, status: SyncStatus, cart: Optional[Cart], diagnostics=()) -> CartUpdate:
        self._sequence += 1
        update = CartUpdate(
            sequence=self._sequence,
            status=status,
            cart=cart,
            diagnostics=tuple(diagnostics),
        )
        self._current = update
        if self._on_update is not None:
            self._on_update(update)
        if not self._broadcast.closed:
            self._broadcast.publish(update)
        return update

    def apply(self, snapshot: CartSnapshot) -> CartUpdate:
        """Reconcile one snapshot. Malformed entries are dropped, never raised."""
        if snapshot.user_id != self.user_id:
            raise ValueError("Snapshot belongs to another user")

        items: list[CartLineItem] = []
        diagnostics: list[MalformedDataError] = []
        for key, raw in snapshot.entries.items():
            try:
                items.append(parse_entry(str(key), raw))
            except MalformedDataError as diagnostic:
                diagnostics.append(diagnostic)

        if diagnostics:
            logger.warning(
                f"Dropped {len(diagnostics)} malformed cart entries for user "
                f"{sanitize_id_for_logging(self.user_id)}: "
                + "; ".join(d.reason for d in diagnostics)
            )

        cart = Cart.from_items(self.user_id, items)
        return self._publish(SyncStatus.LIVE, cart, diagnostics)

    def mark_unavailable(self) -> CartUpdate:
        """Publish the transient unavailable signal, keeping the last cart."""
        return self._publish(SyncStatus.UNAVAILABLE, self._current.cart, self._current.diagnostics)

    def close(self) -> None:
        """End all updates() iterations."""
        self._broadcast.close()

    def _before_reconnect(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"Cart store unavailable for {sanitize_id_for_logging(self.user_id)} "
            f"(attempt {retry_state.attempt_number}), retrying in {delay:.1f}s: {error}"
        )
        if self._current.status is not SyncStatus.UNAVAILABLE:
            self.mark_unavailable()

    async def run(
        self,
        repository,
        reconnect_min: float = SyncIntervals.RECONNECT_MIN,
        reconnect_max: float = SyncIntervals.RECONNECT_MAX,
    ) -> None:
        """Follow the user's cart forever, resubscribing with backoff on connection loss.

        Returns only by cancellation; the subscription is closed on the way out.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(StoreConnectionError),
            wait=wait_exponential(multiplier=reconnect_min, min=reconnect_min, max=reconnect_max),
            stop=stop_never,
            before_sleep=self._before_reconnect,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                async with repository.open_subscription(self.user_id) as snapshots:
                    async for snapshot in snapshots:
                        self.apply(snapshot)
