"""
Order Service — 設定

環境変数から設定を読み込む。プロセス起動時(lifespan)に一度だけ生成し、
各コンポーネントへ明示的に渡す。
"""

import logging
import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    redis_url: str = "redis://localhost:6379"
    order_events_channel: str = "order_events"
    request_timeout_seconds: float = 15.0
    publish_timeout_seconds: float = 2.0
    create_tables: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.environ["DATABASE_URL"],
            redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379"),
            order_events_channel=os.environ.get("ORDER_EVENTS_CHANNEL", "order_events"),
            request_timeout_seconds=float(os.environ.get("REQUEST_TIMEOUT_SECONDS", "15")),
            publish_timeout_seconds=float(os.environ.get("PUBLISH_TIMEOUT_SECONDS", "2")),
            create_tables=_env_bool("CREATE_TABLES", False),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
