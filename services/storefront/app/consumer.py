"""
Storefront Service — 通知コンシューマ

email_queue を購読し、注文確認メールを送信する。

メッセージごとの状態:
    Pending → Delivered (送信成功 → ACK)
    Pending → Redelivered (送信失敗 → ACK しない → 可視性タイムアウト後に再配信) → ...

コンシューマ自身はリトライ / バックオフを持たない。再送はキューの
再配信に、配信回数上限の超過はキューの dead-letter に任せる。
"""

import asyncio
import logging

from pydantic import ValidationError
from redis.exceptions import RedisError

from . import metrics
from .errors import NotificationSendFailed
from .events import OrderConfirmationMessage
from .mailer import render_confirmation
from .notification_queue import Delivery, NotificationQueue

logger = logging.getLogger(__name__)

DELIVERED = "delivered"
SKIPPED = "skipped"
REDELIVER = "redeliver"


class NotificationConsumer:
    def __init__(
        self,
        queue: NotificationQueue,
        sender,
        concurrency: int = 4,
        batch_size: int = 10,
        block_ms: int = 1000,
        idle_interval: float = 1.0,
    ) -> None:
        self.queue = queue
        self.sender = sender
        self.batch_size = batch_size
        self.block_ms = block_ms
        self.idle_interval = idle_interval
        self._semaphore = asyncio.Semaphore(concurrency)

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """shutdown_event がセットされるまでキューを処理し続ける。"""
        logger.info("Notification consumer started (%s)", self.queue.consumer)
        while not shutdown_event.is_set():
            if not self.queue.ready:
                await asyncio.sleep(self.idle_interval)
                continue
            try:
                await self.process_batch()
            except RedisError:
                logger.exception("Notification queue read failed")
                await asyncio.sleep(self.idle_interval)
            except Exception:
                logger.exception("Notification batch failed")
                await asyncio.sleep(self.idle_interval)
        logger.info("Notification consumer stopped")

    async def process_batch(self) -> list[str]:
        deliveries = await self.queue.fetch(count=self.batch_size, block_ms=self.block_ms)
        return list(await asyncio.gather(*(self._bounded(d) for d in deliveries)))

    async def _bounded(self, delivery: Delivery) -> str:
        async with self._semaphore:
            try:
                return await self.handle(delivery)
            except Exception:
                # 1 件の失敗でコンシューマ全体を止めない (ACK せず再配信に任せる)
                logger.exception("Notification %s failed", delivery.message_id)
                metrics.NOTIFICATION_REDELIVERIES.labels(reason="error").inc()
                return REDELIVER

    async def handle(self, delivery: Delivery) -> str:
        """
        1 メッセージを処理する。送信に成功した場合のみ ACK する。

        送信前に注文番号ごとの送信権を取得する。送信済みなら送信せず ACK だけ行い
        (送信後 ACK 前にクラッシュした場合)、別のコンシューマが送信中なら
        ACK せずに再配信を待つ (同じ注文のメッセージが並行して届いた場合)。
        """
        try:
            message = OrderConfirmationMessage.model_validate_json(delivery.payload or "")
        except ValidationError:
            logger.error(
                "Undecodable notification %s left for dead-letter: %r",
                delivery.message_id,
                delivery.payload,
            )
            metrics.NOTIFICATION_REDELIVERIES.labels(reason="undecodable").inc()
            return REDELIVER

        order_number = message.order_number
        if not await self.queue.claim_delivery(order_number):
            if await self.queue.was_delivered(order_number):
                await self.queue.ack(delivery.message_id)
                logger.info("Confirmation for %s already sent; acked", order_number)
                return SKIPPED
            logger.info("Confirmation for %s is being sent elsewhere", order_number)
            metrics.NOTIFICATION_REDELIVERIES.labels(reason="in_flight").inc()
            return REDELIVER

        try:
            await self.sender.send(render_confirmation(message))
        except NotificationSendFailed as e:
            await self.queue.release_claim(order_number)
            logger.warning(
                "NotificationSendFailed for %s (message %s): %s",
                order_number,
                delivery.message_id,
                e,
            )
            metrics.NOTIFICATION_REDELIVERIES.labels(reason="send_failed").inc()
            return REDELIVER
        except Exception:
            await self.queue.release_claim(order_number)
            raise

        await self.queue.mark_delivered(order_number)
        await self.queue.ack(delivery.message_id)
        metrics.NOTIFICATIONS_SENT.inc()
        return DELIVERED
