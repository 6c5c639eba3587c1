"""
Storefront Service — 注文確定 (Order Commit Service)

注文 1 件の確定処理をオーケストレーションする。

  フロー:
  ┌──────────────────────────────────────────────────────────┐
  │  1. 入力検証              失敗 → InvalidInput (副作用なし)  │
  │  2. 在庫引き当て          失敗 → ProductNotFound /          │
  │                                  InsufficientStock         │
  │  3. 合計金額をサーバー側で計算 (単価 × 数量)                 │
  │  4. 注文レコードを保存                                      │
  │     └─ 失敗 → 在庫を戻す (補償トランザクション)              │
  │              → CommitFailed                                │
  │  5. 通知キューへ確認メッセージを投入                         │
  │     └─ 失敗しても注文は成功 (notification_status=delayed)   │
  └──────────────────────────────────────────────────────────┘

在庫と注文は強い整合性 (補償で必ず揃える)、注文と通知は
結果整合 (ベストエフォート) として扱う。分散トランザクションは使わない。
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy.orm import sessionmaker

from . import inventory, metrics, order_store
from .db import CENT
from .errors import (
    CommitFailed,
    InsufficientStock,
    InvalidInput,
    NotificationEnqueueFailed,
    ProductNotFound,
)
from .events import OrderConfirmationMessage
from .notification_queue import NotificationQueue
from .order_numbers import OrderNumberGenerator, default_generator
from .order_store import DeliveryAddress, OrderDraft, OrderStatus

logger = logging.getLogger(__name__)

NOTIFICATION_QUEUED = "queued"
NOTIFICATION_DELAYED = "delayed"

# 合計金額の列 (Numeric(12,2)) と PostgreSQL の integer に収まる範囲
MAX_QUANTITY = 10_000


@dataclass(frozen=True)
class PlacedOrder:
    order_number: str
    total_amount: Decimal
    notification_status: str


class OrderCommitService:
    """注文確定のオーケストレーター"""

    def __init__(
        self,
        session_factory: sessionmaker,
        queue: NotificationQueue,
        generator: OrderNumberGenerator = default_generator,
    ) -> None:
        self.session_factory = session_factory
        self.queue = queue
        self.generator = generator

    async def place_order(
        self,
        user_id: str,
        email: str,
        username: str,
        product_id: str,
        quantity: int,
        delivery_address: DeliveryAddress,
    ) -> PlacedOrder:
        # ── Step 1: 入力検証 ──────────────────────────
        address = _validate(user_id, email, username, product_id, quantity, delivery_address)

        # ── Step 2: 在庫引き当て ──────────────────────
        try:
            async with self.session_factory() as session:
                reservation = await inventory.reserve(session, product_id, quantity)
        except (ProductNotFound, InsufficientStock) as e:
            metrics.RESERVATION_REJECTIONS.labels(reason=e.kind).inc()
            raise

        # ── Step 3: 合計金額 (クライアントの値は使わない) ─
        total_amount = (reservation.unit_price * quantity).quantize(
            CENT, rounding=ROUND_HALF_UP
        )

        # ── Step 4: 注文を保存 ────────────────────────
        draft = OrderDraft(
            user_id=user_id,
            username=username,
            email=email,
            product_id=product_id,
            product_name=reservation.product_name,
            unit_price=reservation.unit_price,
            quantity=quantity,
            address=address,
            total_amount=total_amount,
        )
        try:
            async with self.session_factory() as session:
                order_number = await order_store.create(session, draft, self.generator)
        except Exception as e:
            logger.error("Order persistence failed for %s: %r", product_id, e)
            await asyncio.shield(self._compensate(reservation))
            metrics.ORDER_COMMIT_FAILURES.inc()
            raise CommitFailed("Order could not be saved; no order was created") from e
        except BaseException:
            # キャンセル等でも引き当てた在庫は戻してから伝播させる
            logger.warning("Order persistence interrupted for %s; releasing stock", product_id)
            await asyncio.shield(self._compensate(reservation))
            raise

        metrics.ORDERS_PLACED.inc()
        logger.info(
            "Order %s committed: %d x %s = %s",
            order_number,
            quantity,
            product_id,
            total_amount,
        )

        # ── Step 5: 確認メールを非同期で依頼 ───────────
        message = OrderConfirmationMessage(
            order_number=order_number,
            email=email,
            username=username,
            product_name=reservation.product_name,
            total_amount=total_amount,
        )
        try:
            await self.queue.publish(message)
            notification_status = NOTIFICATION_QUEUED
        except NotificationEnqueueFailed as e:
            logger.warning(
                "NotificationEnqueueFailed for order %s: %s", order_number, e
            )
            notification_status = NOTIFICATION_DELAYED
            metrics.NOTIFICATION_ENQUEUE_FAILURES.inc()

        return PlacedOrder(order_number, total_amount, notification_status)

    async def _compensate(self, reservation: inventory.Reservation) -> None:
        """引き当て済み在庫を戻す。失敗しても CommitFailed は送出される。"""
        try:
            async with self.session_factory() as session:
                await inventory.release(
                    session, reservation.product_id, reservation.quantity
                )
        except Exception:
            logger.critical(
                "Compensation failed: %d x %s could not be returned to stock",
                reservation.quantity,
                reservation.product_id,
                exc_info=True,
            )


async def update_order_status(
    session_factory: sessionmaker,
    order_number: str,
    status: str,
) -> None:
    """注文ステータス変更コマンド (管理者用)。在庫と通知には触れない。"""
    try:
        new_status = OrderStatus(status)
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise InvalidInput(f"Unknown status {status!r}; expected one of: {allowed}") from None
    async with session_factory() as session:
        await order_store.update_status(session, order_number, new_status)
    logger.info("Order %s status -> %s", order_number, new_status.value)


def _validate(
    user_id: str,
    email: str,
    username: str,
    product_id: str,
    quantity: int,
    address: DeliveryAddress,
) -> DeliveryAddress:
    if not (user_id and email and username):
        raise InvalidInput("Authenticated user identity is required")
    if not product_id:
        raise InvalidInput("product_id is required")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidInput("quantity must be an integer >= 1")
    if quantity > MAX_QUANTITY:
        raise InvalidInput(f"quantity must not exceed {MAX_QUANTITY}")

    cleaned = DeliveryAddress(
        street=(address.street or "").strip(),
        city=(address.city or "").strip(),
        zip_code=(address.zip_code or "").strip(),
        phone=(address.phone or "").strip(),
    )
    missing = [name for name, value in asdict(cleaned).items() if not value]
    if missing:
        raise InvalidInput(f"Delivery address fields must not be empty: {', '.join(missing)}")
    return cleaned
