import asyncio
from decimal import Decimal

import pytest

from app import inventory
from app.errors import InsufficientStock, ProductNotFound


async def test_reserve_decrements_and_snapshots_price(session_factory, add_product, stock_of):
    await add_product("widget", name="Widget", price="10.00", stock=5)

    async with session_factory() as session:
        reservation = await inventory.reserve(session, "widget", 3)

    assert reservation.product_name == "Widget"
    assert reservation.unit_price == Decimal("10.00")
    assert reservation.quantity == 3
    assert await stock_of("widget") == 2


async def test_reserve_unknown_product(session_factory):
    async with session_factory() as session:
        with pytest.raises(ProductNotFound):
            await inventory.reserve(session, "missing", 1)


async def test_insufficient_stock_leaves_stock_unchanged(session_factory, add_product, stock_of):
    await add_product("widget", stock=2)

    async with session_factory() as session:
        with pytest.raises(InsufficientStock) as exc_info:
            await inventory.reserve(session, "widget", 3)

    assert exc_info.value.available == 2
    assert exc_info.value.requested == 3
    assert await stock_of("widget") == 2


async def test_reserve_exact_stock_reaches_zero(session_factory, add_product, stock_of):
    await add_product("widget", stock=4)

    async with session_factory() as session:
        await inventory.reserve(session, "widget", 4)

    assert await stock_of("widget") == 0


async def test_release_restores_stock(session_factory, add_product, stock_of):
    await add_product("widget", stock=5)

    async with session_factory() as session:
        await inventory.reserve(session, "widget", 2)
    async with session_factory() as session:
        await inventory.release(session, "widget", 2)

    assert await stock_of("widget") == 5


async def test_release_unknown_product(session_factory):
    async with session_factory() as session:
        with pytest.raises(ProductNotFound):
            await inventory.release(session, "missing", 1)


async def test_concurrent_reservations_never_overdraw(session_factory, add_product, stock_of):
    await add_product("widget", stock=7)

    async def attempt():
        async with session_factory() as session:
            return await inventory.reserve(session, "widget", 2)

    results = await asyncio.gather(*(attempt() for _ in range(6)), return_exceptions=True)

    succeeded = [r for r in results if isinstance(r, inventory.Reservation)]
    rejected = [r for r in results if isinstance(r, InsufficientStock)]
    assert len(succeeded) == 3
    assert len(rejected) == 3
    assert await stock_of("widget") == 1
