"""
Storefront Service — 在庫台帳 (Inventory Ledger)

在庫数を変更できるのはこのモジュールの reserve / release だけ。
「在庫 >= 数量」の確認と減算を 1 本の条件付き UPDATE で行うため、
同じ商品への同時リクエストが両方とも確認を通過して在庫を
マイナスにすることはない (lost update が構造的に起きない)。
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .db import products, to_money
from .errors import InsufficientStock, ProductNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    """引き当て結果。商品名と単価は引き当て時点のスナップショット。"""

    product_id: str
    product_name: str
    unit_price: Decimal
    quantity: int


async def reserve(session: AsyncSession, product_id: str, quantity: int) -> Reservation:
    """
    在庫引き当て

    成功時は在庫をちょうど quantity だけ減らしてコミットする。
    失敗時 (ProductNotFound / InsufficientStock) は在庫を変更しない。
    補償 (release) は呼び出し側の責務。
    """
    result = await session.execute(
        update(products)
        .where(products.c.id == product_id, products.c.stock >= quantity)
        .values(
            stock=products.c.stock - quantity,
            updated_at=datetime.now(timezone.utc),
        )
        .returning(products.c.name, products.c.price)
    )
    row = result.fetchone()
    if row is None:
        await session.rollback()
        result = await session.execute(
            select(products.c.stock).where(products.c.id == product_id)
        )
        current = result.fetchone()
        if current is None:
            raise ProductNotFound(f"Product not found: {product_id}")
        raise InsufficientStock(product_id, quantity, current.stock)

    await session.commit()
    logger.info("Reserved %d x %s", quantity, product_id)
    return Reservation(
        product_id=product_id,
        product_name=row.name,
        unit_price=to_money(row.price),
        quantity=quantity,
    )


async def release(session: AsyncSession, product_id: str, quantity: int) -> None:
    """引き当て済み在庫を戻す (補償トランザクション)。"""
    result = await session.execute(
        update(products)
        .where(products.c.id == product_id)
        .values(
            stock=products.c.stock + quantity,
            updated_at=datetime.now(timezone.utc),
        )
    )
    if result.rowcount == 0:
        await session.rollback()
        raise ProductNotFound(f"Product not found: {product_id}")
    await session.commit()
    logger.info("Released %d x %s", quantity, product_id)
