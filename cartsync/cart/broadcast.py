"""At-most-latest fan-out of values to async consumers."""
import asyncio
from typing import AsyncIterator, Generic, Optional, TypeVar

T = TypeVar("T")

_EMPTY = object()
_CLOSED = object()


class _Slot:
    """One consumer's mailbox holding at most one undelivered value."""

    __slots__ = ("value", "ready")

    def __init__(self) -> None:
        self.value: object = _EMPTY
        self.ready = asyncio.Event()

    def put(self, value: object) -> None:
        self.value = value
        self.ready.set()


class LatestBroadcast(Generic[T]):
    """
    Publish values to any number of async consumers.

    A slow consumer skips intermediate values and receives only the most
    recent one; values it does receive arrive in publish order.
    publish() never blocks and never suspends.
    """

    def __init__(self) -> None:
        self._slots: set[_Slot] = set()
        self._latest: object = _EMPTY
        self._closed = False

    @property
    def latest(self) -> Optional[T]:
        return None if self._latest is _EMPTY else self._latest  # type: ignore[return-value]

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._slots)

    def publish(self, value: T) -> None:
        if self._closed:
            raise RuntimeError("broadcast is closed")
        self._latest = value
        for slot in self._slots:
            slot.put(value)

    def close(self) -> None:
        """End every consumer's iteration."""
        self._closed = True
        for slot in self._slots:
            slot.put(_CLOSED)

    async def subscribe(self, replay_latest: bool = True) -> AsyncIterator[T]:
        """Iterate published values; starts with the current one when replay_latest."""
        slot = _Slot()
        if self._closed:
            return
        if replay_latest and self._latest is not _EMPTY:
            slot.put(self._latest)
        self._slots.add(slot)
        try:
            while True:
                await slot.ready.wait()
                slot.ready.clear()
                value, slot.value = slot.value, _EMPTY
                if value is _CLOSED:
                    return
                if value is _EMPTY:
                    continue
                yield value  # type: ignore[misc]
        finally:
            self._slots.discard(slot)
