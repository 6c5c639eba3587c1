"""
Storefront Service — 注文ストア (Order Store)

確定済み注文を注文番号をキーに保存する。
order_number には UNIQUE 制約があり、衝突した場合は
既存レコードを上書きせず、新しい番号で採番し直す。
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .db import orders
from .errors import DuplicateOrderNumber, OrderNotFound
from .order_numbers import OrderNumberGenerator

logger = logging.getLogger(__name__)

PAYMENT_METHOD = "Cash on Delivery"
MAX_CREATE_ATTEMPTS = 3


class OrderStatus(str, Enum):
    """
    注文ステータス

    状態遷移 (管理者のみ変更可):
        Confirmed → Shipped → Delivered
        Confirmed / Shipped → Cancelled
    """

    CONFIRMED = "Confirmed"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


@dataclass(frozen=True)
class DeliveryAddress:
    street: str
    city: str
    zip_code: str
    phone: str


@dataclass(frozen=True)
class OrderDraft:
    user_id: str
    username: str
    email: str
    product_id: str
    product_name: str
    unit_price: Decimal
    quantity: int
    address: DeliveryAddress
    total_amount: Decimal


async def create(
    session: AsyncSession,
    draft: OrderDraft,
    generator: OrderNumberGenerator,
) -> str:
    """
    注文レコードを作成し、採番した注文番号を返す。

    UNIQUE 制約違反は注文番号の衝突とみなして再採番する。
    それ以外の DB エラーはそのまま呼び出し側へ伝播する。
    """
    for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
        order_number = generator.next()
        now = datetime.now(timezone.utc)
        try:
            await session.execute(
                insert(orders).values(
                    order_number=order_number,
                    user_id=draft.user_id,
                    username=draft.username,
                    email=draft.email,
                    product_id=draft.product_id,
                    product_name=draft.product_name,
                    unit_price=draft.unit_price,
                    quantity=draft.quantity,
                    street=draft.address.street,
                    city=draft.address.city,
                    zip_code=draft.address.zip_code,
                    phone=draft.address.phone,
                    total_amount=draft.total_amount,
                    payment_method=PAYMENT_METHOD,
                    status=OrderStatus.CONFIRMED.value,
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.warning(
                "Order number collision on %s (attempt %d/%d)",
                order_number,
                attempt,
                MAX_CREATE_ATTEMPTS,
            )
            continue
        return order_number

    raise DuplicateOrderNumber(
        f"Could not allocate a unique order number after {MAX_CREATE_ATTEMPTS} attempts"
    )


async def update_status(
    session: AsyncSession,
    order_number: str,
    status: OrderStatus,
) -> None:
    """ステータスのみを更新する (管理者用)。他のフィールドは不変。"""
    result = await session.execute(
        update(orders)
        .where(orders.c.order_number == order_number)
        .values(status=status.value, updated_at=datetime.now(timezone.utc))
    )
    if result.rowcount == 0:
        await session.rollback()
        raise OrderNotFound(f"Order not found: {order_number}")
    await session.commit()
