"""
Storefront Service — データベース

テーブル定義 (SQLAlchemy Core) と非同期エンジン / セッションファクトリ。
クエリは各モジュールでこのテーブル定義に対する Core 式 (select / insert / update) で書く。
"""

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

CENT = Decimal("0.01")

metadata = MetaData()

products = Table(
    "products",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(200), nullable=False),
    Column("description", String(1000), nullable=False, default=""),
    Column("price", Numeric(10, 2), nullable=False),
    Column("image", String(500), nullable=False, default=""),
    Column("stock", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
    CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_number", String(64), nullable=False, unique=True),
    Column("user_id", String(64), nullable=False, index=True),
    Column("username", String(100), nullable=False),
    Column("email", String(255), nullable=False),
    Column("product_id", String(64), nullable=False),
    Column("product_name", String(200), nullable=False),
    Column("unit_price", Numeric(10, 2), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("street", String(200), nullable=False),
    Column("city", String(100), nullable=False),
    Column("zip_code", String(20), nullable=False),
    Column("phone", String(40), nullable=False),
    Column("total_amount", Numeric(12, 2), nullable=False),
    Column("payment_method", String(40), nullable=False),
    Column("status", String(20), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)


def to_money(value) -> Decimal:
    """DB から読んだ金額を Decimal (小数 2 桁) に揃える。

    PostgreSQL は Decimal を返すが、SQLite は float を返すため
    str() を経由して二進誤差を持ち込まないようにする。
    """
    if isinstance(value, Decimal):
        return value.quantize(CENT, rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def create_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, echo=False)


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """テーブルが無ければ作成する。"""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
