"""
Storefront Service — クエリハンドラ (Read 側)

注文一覧 (ユーザー用 / 管理者用) と商品一覧を返す。
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .db import orders, products, to_money


def _order_row(row) -> dict:
    return {
        "order_number": row.order_number,
        "user_id": row.user_id,
        "username": row.username,
        "email": row.email,
        "product": {
            "id": row.product_id,
            "name": row.product_name,
            "price": str(to_money(row.unit_price)),
            "quantity": row.quantity,
        },
        "delivery_address": {
            "street": row.street,
            "city": row.city,
            "zip_code": row.zip_code,
            "phone": row.phone,
        },
        "total_amount": str(to_money(row.total_amount)),
        "payment_method": row.payment_method,
        "status": row.status,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


async def get_order(session: AsyncSession, order_number: str) -> dict | None:
    result = await session.execute(
        select(orders).where(orders.c.order_number == order_number)
    )
    row = result.fetchone()
    if not row:
        return None
    return _order_row(row)


async def list_orders(session: AsyncSession) -> list[dict]:
    """全注文 (新しい順)。管理者画面用。"""
    result = await session.execute(
        select(orders).order_by(orders.c.created_at.desc(), orders.c.id.desc())
    )
    return [_order_row(row) for row in result.fetchall()]


async def list_user_orders(session: AsyncSession, user_id: str) -> list[dict]:
    """指定ユーザーの注文 (新しい順)"""
    result = await session.execute(
        select(orders)
        .where(orders.c.user_id == user_id)
        .order_by(orders.c.created_at.desc(), orders.c.id.desc())
    )
    return [_order_row(row) for row in result.fetchall()]


async def list_products(session: AsyncSession) -> list[dict]:
    result = await session.execute(select(products).order_by(products.c.name))
    return [_product_row(row) for row in result.fetchall()]


def _product_row(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "price": str(to_money(row.price)),
        "image": row.image,
        "stock": row.stock,
    }
