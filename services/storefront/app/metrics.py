"""
Storefront Service — Prometheus メトリクス

GET /metrics で公開する。プロセス標準メトリクス (CPU / メモリ / FD) に加えて、
注文パイプラインと通知配信のカウンタを持つ。

専用の REGISTRY に登録するため、テストや複数アプリの同居で
グローバルレジストリの重複登録エラーは起きない。
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

REGISTRY = CollectorRegistry()
ProcessCollector(registry=REGISTRY)
PlatformCollector(registry=REGISTRY)

# ── 注文確定 ─────────────────────────────────────
ORDERS_PLACED = Counter(
    "storefront_orders_placed",
    "Orders committed (stock reserved and order saved)",
    registry=REGISTRY,
)
RESERVATION_REJECTIONS = Counter(
    "storefront_reservation_rejections",
    "Orders rejected at stock reservation",
    ["reason"],
    registry=REGISTRY,
)
ORDER_COMMIT_FAILURES = Counter(
    "storefront_order_commit_failures",
    "Orders whose persistence failed after reservation (stock compensated)",
    registry=REGISTRY,
)

# ── 通知 ────────────────────────────────────────
NOTIFICATION_ENQUEUE_FAILURES = Counter(
    "storefront_notification_enqueue_failures",
    "Confirmation messages that could not be queued",
    registry=REGISTRY,
)
NOTIFICATIONS_SENT = Counter(
    "storefront_notifications_sent",
    "Confirmation emails sent and acknowledged",
    registry=REGISTRY,
)
NOTIFICATION_REDELIVERIES = Counter(
    "storefront_notification_redeliveries",
    "Messages left unacknowledged for redelivery",
    ["reason"],
    registry=REGISTRY,
)
NOTIFICATIONS_DEAD_LETTERED = Counter(
    "storefront_notifications_dead_lettered",
    "Messages moved to the dead-letter stream",
    registry=REGISTRY,
)


def get_metrics_text() -> bytes:
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
