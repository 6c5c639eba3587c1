from decimal import Decimal

import pytest
from sqlalchemy import select

from app import order_store
from app.db import orders
from app.errors import DuplicateOrderNumber, OrderNotFound
from app.order_store import DeliveryAddress, OrderDraft, OrderStatus


class ScriptedGenerator:
    def __init__(self, *numbers):
        self.numbers = list(numbers)

    def next(self):
        return self.numbers.pop(0)


def make_draft(user_id="u1", quantity=1):
    return OrderDraft(
        user_id=user_id,
        username="alice",
        email="alice@example.com",
        product_id="widget",
        product_name="Widget",
        unit_price=Decimal("10.00"),
        quantity=quantity,
        address=DeliveryAddress("1 Main St", "Springfield", "12345", "555-0100"),
        total_amount=Decimal("10.00") * quantity,
    )


async def load(session_factory, order_number):
    async with session_factory() as session:
        result = await session.execute(
            select(orders).where(orders.c.order_number == order_number)
        )
        return result.fetchone()


async def test_create_persists_confirmed_order(session_factory):
    async with session_factory() as session:
        number = await order_store.create(session, make_draft(quantity=3), ScriptedGenerator("ORD-1"))

    row = await load(session_factory, number)
    assert number == "ORD-1"
    assert row.status == OrderStatus.CONFIRMED.value
    assert row.payment_method == "Cash on Delivery"
    assert row.quantity == 3
    assert row.city == "Springfield"


async def test_collision_is_retried_without_overwriting(session_factory):
    async with session_factory() as session:
        await order_store.create(session, make_draft(user_id="first"), ScriptedGenerator("ORD-1"))

    async with session_factory() as session:
        number = await order_store.create(
            session, make_draft(user_id="second"), ScriptedGenerator("ORD-1", "ORD-2")
        )

    assert number == "ORD-2"
    assert (await load(session_factory, "ORD-1")).user_id == "first"
    assert (await load(session_factory, "ORD-2")).user_id == "second"


async def test_persistent_collision_raises(session_factory):
    async with session_factory() as session:
        await order_store.create(session, make_draft(), ScriptedGenerator("ORD-1"))

    async with session_factory() as session:
        with pytest.raises(DuplicateOrderNumber):
            await order_store.create(
                session, make_draft(), ScriptedGenerator("ORD-1", "ORD-1", "ORD-1")
            )


async def test_update_status_only_touches_status(session_factory):
    async with session_factory() as session:
        await order_store.create(session, make_draft(quantity=2), ScriptedGenerator("ORD-1"))
    async with session_factory() as session:
        await order_store.update_status(session, "ORD-1", OrderStatus.SHIPPED)

    row = await load(session_factory, "ORD-1")
    assert row.status == "Shipped"
    assert row.quantity == 2


async def test_update_status_unknown_order(session_factory):
    async with session_factory() as session:
        with pytest.raises(OrderNotFound):
            await order_store.update_status(session, "ORD-404", OrderStatus.SHIPPED)
