"""
Storefront Service — サンプルデータ

起動時と POST /api/seed の両方から呼ばれる。
既存の商品は上書きしない (冪等)。
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from .db import products

logger = logging.getLogger(__name__)

SAMPLE_PRODUCTS = [
    {
        "id": "wireless-headphones",
        "name": "Wireless Headphones",
        "description": "High-quality wireless headphones with noise cancellation",
        "price": Decimal("99.99"),
        "image": "",
        "stock": 15,
    },
    {
        "id": "smart-watch",
        "name": "Smart Watch",
        "description": "Fitness tracking smart watch with heart rate monitor",
        "price": Decimal("199.99"),
        "image": "",
        "stock": 20,
    },
    {
        "id": "laptop-stand",
        "name": "Laptop Stand",
        "description": "Adjustable aluminum laptop stand for better ergonomics",
        "price": Decimal("49.99"),
        "image": "",
        "stock": 25,
    },
]


async def ensure_seed_data(session: AsyncSession) -> list[str]:
    """存在しないサンプル商品だけを追加し、追加した ID を返す。"""
    result = await session.execute(select(products.c.id))
    existing = {row.id for row in result.fetchall()}

    now = datetime.now(timezone.utc)
    missing = [p for p in SAMPLE_PRODUCTS if p["id"] not in existing]
    if missing:
        await session.execute(
            insert(products),
            [{**p, "created_at": now, "updated_at": now} for p in missing],
        )
        await session.commit()
        logger.info("Seeded %d product(s)", len(missing))
    return [p["id"] for p in missing]
