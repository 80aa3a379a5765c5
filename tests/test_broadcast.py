"""Tests for at-most-latest broadcast"""
import asyncio

import pytest

from cartsync.cart.broadcast import LatestBroadcast


@pytest.mark.asyncio
async def test_replays_latest_to_new_subscriber():
    broadcast = LatestBroadcast()
    broadcast.publish(1)
    broadcast.publish(2)

    values = broadcast.subscribe()
    assert await anext(values) == 2
    await values.aclose()


@pytest.mark.asyncio
async def test_every_subscriber_receives():
    broadcast = LatestBroadcast()
    first, second = broadcast.subscribe(), broadcast.subscribe()
    waiting = [asyncio.ensure_future(anext(first)), asyncio.ensure_future(anext(second))]
    await asyncio.sleep(0)

    broadcast.publish("x")

    assert await asyncio.gather(*waiting) == ["x", "x"]
    assert broadcast.subscriber_count == 2
    await first.aclose()
    await second.aclose()
    assert broadcast.subscriber_count == 0


@pytest.mark.asyncio
async def test_publish_after_close_fails():
    broadcast = LatestBroadcast()
    broadcast.close()

    with pytest.raises(RuntimeError):
        broadcast.publish(1)
    assert [v async for v in broadcast.subscribe()] == []
