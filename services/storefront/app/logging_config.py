"""
Storefront Service — ロギング設定

アプリケーションのログは INFO (LOG_LEVEL で変更可)、
冗長なライブラリのログは WARNING に抑える。
"""

import logging

from . import config


def configure_logging(level: str | None = None) -> None:
    log_level = getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    for noisy in ("sqlalchemy", "sqlalchemy.engine", "asyncpg", "httpx", "httpcore", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger("app").setLevel(log_level)
