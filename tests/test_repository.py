"""Tests for the cart repository against an in-memory store"""
import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from cartsync.cart import CartRepository
from cartsync.errors import ReadError, StoreConnectionError, WriteError

USER = "user-123"


@pytest.mark.asyncio
async def test_read_absent_item(repository):
    assert await repository.read_item(USER, "A") is None


@pytest.mark.asyncio
async def test_write_then_read(repository, fake_redis, make_item):
    item = make_item("A", quantity=2)

    await repository.write_item(USER, item)

    assert await repository.read_item(USER, "A") == item
    stored = json.loads(fake_redis.hashes["cart:user-123"]["A"])
    assert stored["quantity"] == 2
    assert stored["addedAt"] == "2025-01-01T00:00:00+00:00"


@pytest.mark.asyncio
async def test_write_emits_change_event(repository, fake_redis, make_item):
    await repository.write_item(USER, make_item("A"))

    events = fake_redis.stream_events(USER)
    assert len(events) == 1
    payload = json.loads(events[0]["data"])
    assert payload == {"event": "cart.changed", "user_id": USER, "product_id": "A", "op": "upsert"}


@pytest.mark.asyncio
async def test_delete_absent_item_succeeds(repository, fake_redis):
    await repository.delete_item(USER, "missing")

    assert fake_redis.hashes.get("cart:user-123") is None
    assert json.loads(fake_redis.stream_events(USER)[0]["data"])["op"] == "delete"


@pytest.mark.asyncio
async def test_delete_item(repository, make_item):
    await repository.write_item(USER, make_item("A"))
    await repository.delete_item(USER, "A")

    assert await repository.read_item(USER, "A") is None


@pytest.mark.asyncio
async def test_read_malformed_item_is_absent(repository, fake_redis):
    fake_redis.put_raw(USER, "A", "{not json")
    assert await repository.read_item(USER, "A") is None

    fake_redis.put_raw(USER, "B", json.dumps({"productId": "B", "quantity": 0}))
    assert await repository.read_item(USER, "B") is None


@pytest.mark.asyncio
async def test_read_item_stored_under_wrong_key_is_absent(repository, fake_redis, make_item):
    fake_redis.put_raw(USER, "A", json.dumps(make_item("B").to_wire()))
    assert await repository.read_item(USER, "A") is None


@pytest.mark.asyncio
async def test_read_failure_raises_read_error():
    client = AsyncMock()
    client.hget.side_effect = OSError("network down")

    with pytest.raises(ReadError) as exc_info:
        await CartRepository(client).read_item(USER, "A")
    assert exc_info.value.retryable


@pytest.mark.asyncio
async def test_write_failure_raises_write_error(make_item):
    client = AsyncMock()
    client.hset.side_effect = OSError("network down")

    with pytest.raises(WriteError):
        await CartRepository(client).write_item(USER, make_item("A"))
    client.xadd.assert_not_awaited()


@pytest.mark.asyncio
async def test_delete_failure_raises_write_error():
    client = AsyncMock()
    client.hdel.side_effect = OSError("network down")

    with pytest.raises(WriteError):
        await CartRepository(client).delete_item(USER, "A")


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_write(make_item):
    client = AsyncMock()
    client.xadd.side_effect = OSError("stream unavailable")

    await CartRepository(client).write_item(USER, make_item("A"))
    client.hset.assert_awaited_once()


@pytest.mark.asyncio
async def test_subscribe_delivers_initial_empty_snapshot(repository):
    async with repository.open_subscription(USER) as snapshots:
        snapshot = await asyncio.wait_for(anext(snapshots), timeout=1)

    assert snapshot.user_id == USER
    assert snapshot.entries == {}


@pytest.mark.asyncio
async def test_subscribe_delivers_snapshot_after_change(repository, make_item):
    async with repository.open_subscription(USER) as snapshots:
        await anext(snapshots)
        await repository.write_item(USER, make_item("A", quantity=3))

        snapshot = await asyncio.wait_for(anext(snapshots), timeout=1)

    assert set(snapshot.entries) == {"A"}
    assert json.loads(snapshot.entries["A"])["quantity"] == 3


@pytest.mark.asyncio
async def test_subscribe_sees_full_state_not_diff(repository, make_item):
    await repository.write_item(USER, make_item("A"))

    async with repository.open_subscription(USER) as snapshots:
        first = await anext(snapshots)
        await repository.write_item(USER, make_item("B"))
        second = await asyncio.wait_for(anext(snapshots), timeout=1)

    assert set(first.entries) == {"A"}
    assert set(second.entries) == {"A", "B"}


@pytest.mark.asyncio
async def test_resync_picks_up_unannounced_change(repository, fake_redis, make_item):
    async with repository.open_subscription(USER) as snapshots:
        await anext(snapshots)
        # Written without a change event
        fake_redis.put_raw(USER, "A", json.dumps(make_item("A").to_wire()))

        snapshot = await asyncio.wait_for(anext(snapshots), timeout=1)

    assert set(snapshot.entries) == {"A"}


@pytest.mark.asyncio
async def test_subscribe_cannot_connect(repository, fake_redis):
    fake_redis.fail_with = ConnectionError("refused")

    with pytest.raises(StoreConnectionError):
        async with repository.open_subscription(USER) as snapshots:
            await anext(snapshots)


@pytest.mark.asyncio
async def test_subscription_lost(repository, fake_redis):
    async with repository.open_subscription(USER) as snapshots:
        await anext(snapshots)
        fake_redis.fail_with = ConnectionError("reset")

        with pytest.raises(StoreConnectionError):
            await asyncio.wait_for(anext(snapshots), timeout=1)


@pytest.mark.asyncio
async def test_subscription_closed_on_exit(repository):
    async with repository.open_subscription(USER) as snapshots:
        await anext(snapshots)

    with pytest.raises(StopAsyncIteration):
        await anext(snapshots)


@pytest.mark.asyncio
async def test_subscribe_is_restartable(repository, make_item):
    async with repository.open_subscription(USER) as snapshots:
        await anext(snapshots)
    await repository.write_item(USER, make_item("A"))

    async with repository.open_subscription(USER) as snapshots:
        snapshot = await anext(snapshots)

    assert set(snapshot.entries) == {"A"}
