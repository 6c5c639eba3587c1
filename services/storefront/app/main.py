"""
Storefront Service — FastAPI エントリーポイント

注文確定 (在庫引き当て → 注文保存 → 通知キュー投入) を同期で行い、
確認メールは通知コンシューマが非同期に送信する。

┌────────┐  POST /api/orders  ┌────────────────────┐   XADD   ┌─────────────┐
│ Client │ ─────────────────▶ │ OrderCommitService │ ───────▶ │ email_queue │
└────────┘ ◀───────────────── │  (在庫 / 注文 DB)   │          └──────┬──────┘
            order_number,      └────────────────────┘                 │
            total_amount                                   ┌──────────▼───────────┐
                                                           │ NotificationConsumer │──▶ SMTP
                                                           └──────────────────────┘

認証は上流ゲートウェイの責務。本サービスは X-User-Id / X-User-Email /
X-Username ヘッダーを認証済みの利用者情報として扱う。
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from . import commands, config, metrics, queries
from .commands import OrderCommitService
from .consumer import NotificationConsumer
from .db import create_engine, create_session_factory, init_db
from .errors import OrderServiceError
from .logging_config import configure_logging
from .mailer import SmtpSender
from .notification_queue import NotificationQueue, create_queue, redis_from_config
from .order_store import DeliveryAddress
from .seed import ensure_seed_data

logger = logging.getLogger(__name__)

DATABASE_URL = os.environ["DATABASE_URL"]

engine = create_engine(DATABASE_URL)
async_session = create_session_factory(engine)
queue: NotificationQueue | None = None
commit_service: OrderCommitService | None = None


def redis_client() -> aioredis.Redis:
    return redis_from_config()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    起動時:
      - テーブル作成とサンプルデータ投入
      - 通知キューの接続をバックグラウンドで開始 (起動猶予あり、リクエストはブロックしない)
      - 通知コンシューマをバックグラウンドタスクとして開始
    """
    global queue, commit_service
    configure_logging()
    await init_db(engine)
    if config.SEED_ON_STARTUP:
        async with async_session() as session:
            await ensure_seed_data(session)

    redis = redis_client()
    queue = create_queue(redis)
    commit_service = OrderCommitService(async_session, queue)

    shutdown_event = asyncio.Event()
    tasks = [
        asyncio.create_task(
            queue.maintain(
                shutdown_event,
                startup_delay=config.QUEUE_STARTUP_DELAY,
                reconnect_interval=config.QUEUE_RECONNECT_INTERVAL,
            )
        )
    ]
    if config.RUN_NOTIFICATION_CONSUMER:
        consumer = NotificationConsumer(
            queue, SmtpSender(), concurrency=config.NOTIFY_CONCURRENCY
        )
        tasks.append(asyncio.create_task(consumer.run(shutdown_event)))

    yield

    shutdown_event.set()
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await redis.aclose()
    await engine.dispose()


app = FastAPI(title="Storefront Service", lifespan=lifespan)


@app.exception_handler(OrderServiceError)
async def order_service_error_handler(request: Request, exc: OrderServiceError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.kind},
    )


# ── Request Models ───────────────────────────────


class DeliveryAddressRequest(BaseModel):
    street: str
    city: str
    zip_code: str
    phone: str


class PlaceOrderRequest(BaseModel):
    """金額はリクエストに含めても無視される (サーバー側で計算する)。"""

    product_id: str
    quantity: int
    delivery_address: DeliveryAddressRequest


class UpdateStatusRequest(BaseModel):
    status: str


# ── Command Endpoints ────────────────────────────


@app.post("/api/orders", status_code=201)
async def place_order(
    req: PlaceOrderRequest,
    x_user_id: str = Header(),
    x_user_email: str = Header(),
    x_username: str = Header(),
):
    """注文確定コマンド"""
    placed = await commit_service.place_order(
        user_id=x_user_id,
        email=x_user_email,
        username=x_username,
        product_id=req.product_id,
        quantity=req.quantity,
        delivery_address=DeliveryAddress(**req.delivery_address.model_dump()),
    )
    return {
        "message": "Order placed successfully",
        "order_number": placed.order_number,
        "total_amount": str(placed.total_amount),
        "notification_status": placed.notification_status,
        "email_confirmation": "Email confirmation will be sent shortly"
        if placed.notification_status == commands.NOTIFICATION_QUEUED
        else "Email confirmation may be delayed",
    }


@app.patch("/api/admin/orders/{order_number}")
async def admin_update_order(order_number: str, req: UpdateStatusRequest):
    """注文ステータス変更 (管理者用)"""
    await commands.update_order_status(async_session, order_number, req.status)
    async with async_session() as session:
        return await queries.get_order(session, order_number)


@app.post("/api/seed")
async def seed():
    """サンプル商品を投入する (既存データは変更しない)"""
    async with async_session() as session:
        created = await ensure_seed_data(session)
    return {"message": "Data seeded successfully", "created": created}


# ── Query Endpoints ──────────────────────────────


@app.get("/api/products")
async def list_products():
    async with async_session() as session:
        return await queries.list_products(session)


@app.get("/api/orders/my-orders")
async def my_orders(x_user_id: str = Header()):
    """ログインユーザーの注文一覧"""
    async with async_session() as session:
        return await queries.list_user_orders(session, x_user_id)


@app.get("/api/orders/{order_number}")
async def get_order(order_number: str, x_user_id: str = Header()):
    async with async_session() as session:
        order = await queries.get_order(session, order_number)
    if not order or order["user_id"] != x_user_id:
        raise HTTPException(404, "Order not found")
    return order


@app.get("/api/admin/orders")
async def admin_list_orders():
    """全注文一覧 (管理者用)"""
    async with async_session() as session:
        return await queries.list_orders(session)


@app.get("/metrics")
async def prometheus_metrics():
    return Response(metrics.get_metrics_text(), media_type=metrics.get_content_type())


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": "storefront-service",
        "notification_queue": queue.state.value if queue else "disconnected",
    }
