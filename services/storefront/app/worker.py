"""
Storefront Service — 通知ワーカー (単独プロセス)

API プロセスとは別に通知コンシューマだけを動かす場合のエントリーポイント。

    python -m app.worker

SIGINT / SIGTERM で処理中のバッチを終えてから停止する。
"""

import asyncio
import logging
import signal

from . import config
from .consumer import NotificationConsumer
from .logging_config import configure_logging
from .mailer import SmtpSender
from .notification_queue import create_queue, redis_from_config

logger = logging.getLogger(__name__)


async def run_worker(shutdown_event: asyncio.Event) -> None:
    redis = redis_from_config()
    queue = create_queue(redis)
    consumer = NotificationConsumer(
        queue, SmtpSender(), concurrency=config.NOTIFY_CONCURRENCY
    )
    maintainer = asyncio.create_task(
        queue.maintain(
            shutdown_event, reconnect_interval=config.QUEUE_RECONNECT_INTERVAL
        )
    )
    try:
        await consumer.run(shutdown_event)
    finally:
        shutdown_event.set()
        await maintainer
        await redis.aclose()


async def main() -> None:
    configure_logging()
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown_event.set)
    await run_worker(shutdown_event)


if __name__ == "__main__":
    asyncio.run(main())
