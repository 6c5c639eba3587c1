import os
import tempfile

# app.main / app.config は import 時に環境変数を読むため、先に設定する
os.environ.setdefault(
    "DATABASE_URL", f"sqlite+aiosqlite:///{tempfile.mkdtemp()}/storefront-test.db"
)
os.environ["QUEUE_STARTUP_DELAY"] = "0"
os.environ["RUN_NOTIFICATION_CONSUMER"] = "false"

from datetime import datetime, timezone
from decimal import Decimal

import fakeredis
import pytest
from sqlalchemy import insert, select

from app.db import create_engine, create_session_factory, init_db, orders, products
from app.errors import NotificationSendFailed
from app.notification_queue import NotificationQueue


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def add_product(session_factory):
    async def _add(product_id="widget", name="Widget", price="10.00", stock=5):
        now = datetime.now(timezone.utc)
        async with session_factory() as session:
            await session.execute(
                insert(products).values(
                    id=product_id,
                    name=name,
                    description="",
                    price=Decimal(price),
                    image="",
                    stock=stock,
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.commit()
        return product_id

    return _add


@pytest.fixture
def stock_of(session_factory):
    async def _stock(product_id):
        async with session_factory() as session:
            result = await session.execute(
                select(products.c.stock).where(products.c.id == product_id)
            )
            return result.scalar_one()

    return _stock


@pytest.fixture
def count_orders(session_factory):
    async def _count():
        async with session_factory() as session:
            result = await session.execute(select(orders.c.id))
            return len(result.fetchall())

    return _count


@pytest.fixture
async def redis():
    client = fakeredis.aioredis.FakeRedis(
        server=fakeredis.FakeServer(), decode_responses=True
    )
    yield client
    await client.aclose()


@pytest.fixture
async def queue(redis):
    queue = NotificationQueue(
        redis,
        stream="test_email_queue",
        group="test_senders",
        consumer="test-consumer",
        visibility_timeout_ms=0,
        max_deliveries=3,
    )
    assert await queue.connect()
    return queue


class RecordingSender:
    """送信内容を記録するメール送信のテスト用実装。fail_times 回だけ失敗する。"""

    def __init__(self, fail_times=0):
        self.fail_times = fail_times
        self.attempts = 0
        self.sent = []

    async def send(self, email):
        self.attempts += 1
        if self.attempts <= self.fail_times:
            raise NotificationSendFailed("SMTP 421 service not available")
        self.sent.append(email)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def flaky_sender():
    return RecordingSender(fail_times=1)


@pytest.fixture
def broken_sender():
    return RecordingSender(fail_times=10**6)
