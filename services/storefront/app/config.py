"""
Storefront Service — 設定

すべての設定は環境変数から読み込む。ローカル開発向けのデフォルト値を持つ。
DATABASE_URL は API サービス (main.py) でのみ必須。
"""

import os


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
REDIS_SOCKET_TIMEOUT = float(os.environ.get("REDIS_SOCKET_TIMEOUT", "5.0"))

# ── 通知キュー (Redis Streams) ───────────────────
NOTIFICATION_QUEUE = os.environ.get("NOTIFICATION_QUEUE", "email_queue")
NOTIFICATION_GROUP = os.environ.get("NOTIFICATION_GROUP", "email_senders")
QUEUE_STARTUP_DELAY = float(os.environ.get("QUEUE_STARTUP_DELAY", "2.0"))
QUEUE_RECONNECT_INTERVAL = float(os.environ.get("QUEUE_RECONNECT_INTERVAL", "5.0"))
QUEUE_VISIBILITY_TIMEOUT_MS = int(os.environ.get("QUEUE_VISIBILITY_TIMEOUT_MS", "60000"))
QUEUE_MAX_DELIVERIES = int(os.environ.get("QUEUE_MAX_DELIVERIES", "5"))
QUEUE_PUBLISH_TIMEOUT = float(os.environ.get("QUEUE_PUBLISH_TIMEOUT", "0.5"))
NOTIFY_CONCURRENCY = int(os.environ.get("NOTIFY_CONCURRENCY", "4"))
RUN_NOTIFICATION_CONSUMER = _flag("RUN_NOTIFICATION_CONSUMER", "true")

SEED_ON_STARTUP = _flag("SEED_ON_STARTUP", "true")

# ── メール送信 (SMTP) ────────────────────────────
SMTP_HOST = os.environ.get("SMTP_HOST", "")
SMTP_PORT = int(os.environ.get("SMTP_PORT", "0")) or None
SMTP_USERNAME = os.environ.get("SMTP_USERNAME", "")
SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD", "")
SMTP_FROM_EMAIL = os.environ.get("SMTP_FROM_EMAIL", "")
SMTP_FROM_NAME = os.environ.get("SMTP_FROM_NAME", "Storefront")
SMTP_USE_TLS = _flag("SMTP_USE_TLS", "true")
SMTP_USE_SSL = _flag("SMTP_USE_SSL", "false")
SMTP_TIMEOUT = float(os.environ.get("SMTP_TIMEOUT", "10"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
