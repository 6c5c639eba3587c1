import asyncio
from decimal import Decimal

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.errors import NotificationEnqueueFailed
from app.events import OrderConfirmationMessage
from app.notification_queue import NotificationQueue, QueueState


def message(order_number="ORD-1"):
    return OrderConfirmationMessage(
        order_number=order_number,
        email="alice@example.com",
        username="alice",
        product_name="Widget",
        total_amount=Decimal("30.00"),
    )


async def test_starts_disconnected_and_rejects_publish(redis):
    queue = NotificationQueue(redis)

    assert queue.state is QueueState.DISCONNECTED
    with pytest.raises(NotificationEnqueueFailed):
        await queue.publish(message())
    assert not await redis.exists(queue.stream)


async def test_connect_is_idempotent(redis):
    queue = NotificationQueue(redis, stream="s", group="g")

    assert await queue.connect()
    assert await queue.connect()
    assert queue.state is QueueState.READY


async def test_connect_failure_goes_back_to_disconnected(redis, monkeypatch):
    queue = NotificationQueue(redis)

    async def refused():
        raise RedisConnectionError("Connection refused")

    monkeypatch.setattr(redis, "ping", refused)

    assert not await queue.connect()
    assert queue.state is QueueState.DISCONNECTED


async def test_maintain_connects_after_startup_delay(redis):
    queue = NotificationQueue(redis, stream="s", group="g")
    shutdown = asyncio.Event()

    task = asyncio.create_task(
        queue.maintain(shutdown, startup_delay=0.01, reconnect_interval=0.01)
    )
    for _ in range(100):
        if queue.ready:
            break
        await asyncio.sleep(0.01)
    shutdown.set()
    await asyncio.wait_for(task, timeout=1)

    assert queue.ready


async def test_publish_then_fetch_and_ack(queue, redis):
    message_id = await queue.publish(message())

    deliveries = await queue.fetch(block_ms=10)

    assert [d.message_id for d in deliveries] == [message_id]
    assert OrderConfirmationMessage.model_validate_json(deliveries[0].payload) == message()

    await queue.ack(message_id)
    assert (await redis.xpending(queue.stream, queue.group))["pending"] == 0


async def test_unacked_message_is_redelivered(queue):
    message_id = await queue.publish(message())

    first = await queue.fetch(block_ms=10)
    second = await queue.fetch(block_ms=10)

    assert [d.message_id for d in first] == [message_id]
    assert [d.message_id for d in second] == [message_id]


async def test_exhausted_message_is_dead_lettered(queue, redis):
    message_id = await queue.publish(message())

    for _ in range(queue.max_deliveries):
        assert await queue.fetch(block_ms=10)

    assert await queue.fetch(block_ms=10) == []

    dead = await redis.xrange(queue.dead_letter_stream)
    assert len(dead) == 1
    assert dead[0][1]["original_id"] == message_id
    assert (await redis.xpending(queue.stream, queue.group))["pending"] == 0


async def test_delivered_markers(queue):
    assert not await queue.was_delivered("ORD-1")

    await queue.mark_delivered("ORD-1")

    assert await queue.was_delivered("ORD-1")
    assert not await queue.was_delivered("ORD-2")


async def test_slow_publish_times_out_and_disconnects(queue, monkeypatch):
    queue.publish_timeout = 0.05

    async def slow_xadd(*args, **kwargs):
        await asyncio.sleep(1)

    monkeypatch.setattr(queue.redis, "xadd", slow_xadd)

    with pytest.raises(NotificationEnqueueFailed, match="timed out"):
        await queue.publish(message())

    assert queue.state is QueueState.DISCONNECTED


async def test_delivery_claim_is_exclusive(queue):
    assert await queue.claim_delivery("ORD-1")
    assert not await queue.claim_delivery("ORD-1")
    assert not await queue.was_delivered("ORD-1")

    await queue.release_claim("ORD-1")
    assert await queue.claim_delivery("ORD-1")

    await queue.mark_delivered("ORD-1")
    await queue.release_claim("ORD-1")

    assert await queue.was_delivered("ORD-1")
    assert not await queue.claim_delivery("ORD-1")
