"""
Storefront Service — 通知キュー (Redis Streams)

Redis Pub/Sub は fire-and-forget で、購読者がダウンしている間の
メッセージは失われる。確認メールは確実に届けたいので、
Redis Streams + コンシューマグループで at-least-once 配信を行う。

┌───────────────┐  XADD   ┌──────────────┐  XREADGROUP  ┌──────────────┐
│ Order Commit  │ ──────▶ │ email_queue  │ ───────────▶ │  Consumer    │
│ (Producer)    │         │ (Stream)     │ ◀─────────── │  (送信後 ACK) │
└───────────────┘         └──────┬───────┘     XACK      └──────────────┘
                                 │ XAUTOCLAIM (未 ACK のまま可視性タイムアウト超過 → 再配信)
                                 │ 配信回数上限超過 → email_queue:dead
"""

import asyncio
import logging
import os
import socket
from dataclasses import dataclass
from enum import Enum

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError, ResponseError

from . import config, metrics
from .errors import NotificationEnqueueFailed

logger = logging.getLogger(__name__)

DELIVERED_MARKER_TTL = 7 * 24 * 3600
MARKER_SENDING = "sending"
MARKER_SENT = "sent"


class QueueState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"


@dataclass(frozen=True)
class Delivery:
    """キューから受け取った 1 メッセージ (ACK まではペンディング)"""

    message_id: str
    fields: dict

    @property
    def payload(self) -> str | None:
        return self.fields.get("payload")


def default_consumer_name() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class NotificationQueue:
    """
    通知キューのクライアント。

    接続状態を明示的に持ち、Producer は READY のときだけ発行する。
    接続確立前や Redis 障害中の publish は NotificationEnqueueFailed になり、
    呼び出し側 (注文確定) はブロックされない。
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        stream: str = "email_queue",
        group: str = "email_senders",
        consumer: str | None = None,
        visibility_timeout_ms: int = 60_000,
        max_deliveries: int = 5,
        publish_timeout: float = 0.5,
    ) -> None:
        self.redis = redis
        self.stream = stream
        self.group = group
        self.consumer = consumer or default_consumer_name()
        self.visibility_timeout_ms = visibility_timeout_ms
        self.max_deliveries = max_deliveries
        self.publish_timeout = publish_timeout
        self.dead_letter_stream = f"{stream}:dead"
        self.state = QueueState.DISCONNECTED

    @property
    def ready(self) -> bool:
        return self.state is QueueState.READY

    # ── 接続管理 ─────────────────────────────────────

    async def connect(self) -> bool:
        """Redis への疎通確認とコンシューマグループ作成。成功すれば READY。"""
        self.state = QueueState.CONNECTING
        try:
            await self.redis.ping()
            try:
                await self.redis.xgroup_create(
                    self.stream, self.group, id="0", mkstream=True
                )
            except ResponseError as e:
                if "BUSYGROUP" not in str(e):
                    raise
        except RedisError as e:
            self.state = QueueState.DISCONNECTED
            logger.warning("Notification queue connection failed: %s", e)
            return False

        self.state = QueueState.READY
        logger.info("Notification queue ready (stream=%s, group=%s)", self.stream, self.group)
        return True

    async def maintain(
        self,
        shutdown_event: asyncio.Event,
        startup_delay: float = 0.0,
        reconnect_interval: float = 5.0,
    ) -> None:
        """
        起動猶予の後に接続し、切断されたら再接続を繰り返す。
        shutdown_event がセットされるまでバックグラウンドで動き続ける。
        """
        if await _wait(shutdown_event, startup_delay):
            return
        while not shutdown_event.is_set():
            if self.state is QueueState.DISCONNECTED:
                await self.connect()
            if await _wait(shutdown_event, reconnect_interval):
                return

    # ── Producer ────────────────────────────────────

    async def publish(self, message: BaseModel) -> str:
        """publish_timeout 秒以内に書き込めなければ NotificationEnqueueFailed。"""
        if not self.ready:
            raise NotificationEnqueueFailed(f"queue is {self.state.value}")
        try:
            return await asyncio.wait_for(
                self.redis.xadd(self.stream, {"payload": message.model_dump_json()}),
                timeout=self.publish_timeout,
            )
        except asyncio.TimeoutError as e:
            self.state = QueueState.DISCONNECTED
            raise NotificationEnqueueFailed(
                f"publish timed out after {self.publish_timeout}s"
            ) from e
        except RedisError as e:
            self.state = QueueState.DISCONNECTED
            raise NotificationEnqueueFailed(str(e)) from e

    # ── Consumer ────────────────────────────────────

    async def fetch(self, count: int = 10, block_ms: int = 1000) -> list[Delivery]:
        """
        再配信対象 (可視性タイムアウト超過) を先に回収し、続けて新着を読む。
        再配信対象がある場合は新着の読み込みでブロックしない。
        """
        deliveries = await self._reclaim(count)
        result = await self.redis.xreadgroup(
            self.group,
            self.consumer,
            {self.stream: ">"},
            count=count,
            block=None if deliveries else block_ms,
        )
        for _stream, messages in result or []:
            deliveries.extend(
                Delivery(message_id, fields) for message_id, fields in messages
            )
        return deliveries

    async def ack(self, message_id: str) -> None:
        await self.redis.xack(self.stream, self.group, message_id)

    async def _reclaim(self, count: int) -> list[Delivery]:
        await self._dead_letter_exhausted(count)
        result = await self.redis.xautoclaim(
            self.stream,
            self.group,
            self.consumer,
            min_idle_time=self.visibility_timeout_ms,
            start_id="0-0",
            count=count,
        )
        messages = result[1] if result else []
        deliveries = [
            Delivery(message_id, fields) for message_id, fields in messages if fields
        ]
        if deliveries:
            logger.info("Reclaimed %d unacknowledged message(s)", len(deliveries))
        return deliveries

    async def _dead_letter_exhausted(self, count: int) -> None:
        """配信回数の上限に達したメッセージを dead-letter ストリームへ移す。"""
        pending = await self.redis.xpending_range(
            self.stream, self.group, min="-", max="+", count=count
        )
        for entry in pending:
            if entry["times_delivered"] < self.max_deliveries:
                continue
            if entry["time_since_delivered"] < self.visibility_timeout_ms:
                continue
            message_id = entry["message_id"]
            entries = await self.redis.xrange(self.stream, min=message_id, max=message_id)
            fields = dict(entries[0][1]) if entries else {}
            fields["original_id"] = message_id
            fields["deliveries"] = entry["times_delivered"]
            await self.redis.xadd(self.dead_letter_stream, fields)
            await self.redis.xack(self.stream, self.group, message_id)
            metrics.NOTIFICATIONS_DEAD_LETTERED.inc()
            logger.error(
                "Message %s dead-lettered after %d deliveries",
                message_id,
                entry["times_delivered"],
            )

    # ── 重複送信の抑止 ───────────────────────────────

    def _marker_key(self, order_number: str) -> str:
        return f"{self.stream}:delivered:{order_number}"

    async def claim_delivery(self, order_number: str) -> bool:
        """
        送信権を取得する (SET NX)。同じ注文のメッセージが並行して届いても
        送信するのは取得できた 1 件だけ。送信中のまま落ちた場合は
        可視性タイムアウトで権利が失効し、再配信で送り直される。
        """
        return bool(
            await self.redis.set(
                self._marker_key(order_number),
                MARKER_SENDING,
                nx=True,
                px=max(self.visibility_timeout_ms, 1000),
            )
        )

    async def release_claim(self, order_number: str) -> None:
        """送信失敗時に送信権を手放す (送信済みマーカーは消さない)。"""
        key = self._marker_key(order_number)
        if await self.redis.get(key) == MARKER_SENDING:
            await self.redis.delete(key)

    async def was_delivered(self, order_number: str) -> bool:
        return await self.redis.get(self._marker_key(order_number)) == MARKER_SENT

    async def mark_delivered(self, order_number: str) -> None:
        await self.redis.set(
            self._marker_key(order_number), MARKER_SENT, ex=DELIVERED_MARKER_TTL
        )


async def _wait(event: asyncio.Event, timeout: float) -> bool:
    """timeout 秒待つ。途中で event がセットされたら True。"""
    try:
        await asyncio.wait_for(event.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        return False
    return True


def create_queue(redis: aioredis.Redis) -> NotificationQueue:
    """環境変数の設定で NotificationQueue を組み立てる。"""
    return NotificationQueue(
        redis,
        stream=config.NOTIFICATION_QUEUE,
        group=config.NOTIFICATION_GROUP,
        visibility_timeout_ms=config.QUEUE_VISIBILITY_TIMEOUT_MS,
        max_deliveries=config.QUEUE_MAX_DELIVERIES,
        publish_timeout=config.QUEUE_PUBLISH_TIMEOUT,
    )


def redis_from_config() -> aioredis.Redis:
    """
    ソケットタイムアウト付きで接続する。Redis が応答しなくなっても
    呼び出し側が無期限に待たされないようにする
    (XREADGROUP の block 時間より長くしておくこと)。
    """
    return aioredis.from_url(
        config.REDIS_URL,
        decode_responses=True,
        socket_timeout=config.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=config.REDIS_SOCKET_TIMEOUT,
    )
