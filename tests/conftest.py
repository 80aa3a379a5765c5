"""Pytest configuration and fixtures"""
import asyncio
import os
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

import pytest

from cartsync.cart import CartLineItem, CartRepository
from cartsync.services.catalog import CatalogProduct
from cartsync.session import SessionContext

# Set test environment variables
os.environ.setdefault("UPSTASH_REDIS_REST_URL", "https://test.upstash.io")
os.environ.setdefault("UPSTASH_REDIS_REST_TOKEN", "test_token")

USER_ID = "user-123"


def _stream_id(entry_id: str) -> tuple[int, int]:
    ms, _, seq = entry_id.partition("-")
    return int(ms), int(seq or 0)


class FakeRedis:
    """In-memory stand-in for the upstash async client (hashes + streams only)."""

    def __init__(self):
        self.hashes: dict[str, dict[str, Any]] = {}
        self.streams: dict[str, list[tuple[str, dict]]] = {}
        self.fail_with: Optional[Exception] = None
        self._seq = 0

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def hgetall(self, key):
        self._check()
        return dict(self.hashes.get(key, {}))

    async def hget(self, key, field):
        self._check()
        return self.hashes.get(key, {}).get(field)

    async def hset(self, key, field=None, value=None, values=None):
        self._check()
        bucket = self.hashes.setdefault(key, {})
        pairs = dict(values or {})
        if field is not None:
            pairs[field] = value
        added = sum(1 for f in pairs if f not in bucket)
        bucket.update(pairs)
        return added

    async def hdel(self, key, *fields):
        self._check()
        bucket = self.hashes.get(key, {})
        removed = sum(1 for f in fields if bucket.pop(f, None) is not None)
        if not bucket:
            self.hashes.pop(key, None)
        return removed

    async def xadd(self, key, id, data, maxlen=None, **kwargs):
        self._check()
        self._seq += 1
        entry_id = f"{self._seq}-0"
        stream = self.streams.setdefault(key, [])
        stream.append((entry_id, dict(data)))
        if maxlen:
            del stream[:-maxlen]
        return entry_id

    async def xrange(self, key, start="-", end="+", count=None):
        self._check()
        entries = self.streams.get(key, [])
        if start.startswith("("):
            after = _stream_id(start[1:])
            entries = [e for e in entries if _stream_id(e[0]) > after]
        elif start != "-":
            entries = [e for e in entries if _stream_id(e[0]) >= _stream_id(start)]
        return list(entries[:count] if count else entries)

    async def xrevrange(self, key, end="+", start="-", count=None):
        self._check()
        entries = list(reversed(self.streams.get(key, [])))
        return entries[:count] if count else entries

    # Test helpers

    def put_raw(self, user_id: str, field: str, raw: Any) -> None:
        self.hashes.setdefault(f"cart:{user_id}", {})[field] = raw

    def stream_events(self, user_id: str) -> list[dict]:
        return [fields for _id, fields in self.streams.get(f"stream:cart:{user_id}", [])]


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 1, tzinfo=UTC)
        self.calls: list[datetime] = []

    def __call__(self) -> datetime:
        current = self.now
        self.calls.append(current)
        self.now = current + timedelta(seconds=1)
        return current


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def repository(fake_redis):
    """Repository polling fast enough for tests."""
    return CartRepository(fake_redis, poll_interval=0.01, resync_every_polls=3)


@pytest.fixture
def session():
    return SessionContext.for_user(USER_ID)


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def sample_product():
    """Sample catalog product (Fake Store shape)"""
    return CatalogProduct(
        id=1,
        title="Fjallraven - Foldsack No. 1 Backpack",
        price=109.95,
        description="Your perfect pack for everyday use",
        category="men's clothing",
        image="https://fakestoreapi.com/img/81fPKd-2AYL._AC_SL1500_.jpg",
        rating={"rate": 3.9, "count": 120},
    )


@pytest.fixture
def make_product():
    def _make(product_id: str = "A", price: float = 9.99, title: Optional[str] = None) -> CatalogProduct:
        return CatalogProduct(
            id=product_id,
            title=title or f"Product {product_id}",
            price=price,
            category="electronics",
            image=f"https://img.example/{product_id}.jpg",
        )
    return _make


@pytest.fixture
def make_item():
    def _make(
        product_id: str = "A",
        quantity: int = 1,
        price: str = "9.99",
        added_at: Optional[datetime] = None,
    ) -> CartLineItem:
        return CartLineItem(
            product_id=product_id,
            title=f"Product {product_id}",
            image_ref=f"https://img.example/{product_id}.jpg",
            category="electronics",
            unit_price=price,
            quantity=quantity,
            added_at=added_at or datetime(2025, 1, 1, tzinfo=UTC),
        )
    return _make


@pytest.fixture
def wait_until():
    """Poll a predicate until true or fail after timeout seconds."""
    async def _wait(predicate, timeout: float = 2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.005)
    return _wait
