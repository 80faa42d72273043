"""
Order Service — イベント発行 (Redis Pub/Sub)

コミット済みの注文イベントを order_events チャネルへ発行し、
他サービスのリードモデル更新に使ってもらう。

注意: Pub/Sub は fire-and-forget。発行に失敗しても注文は既にコミット
されているため、ログに残して処理を続ける。イベントの正は order_events
テーブル側にある。
"""

import asyncio
import json
import logging
from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .events import OrderEventModel

logger = logging.getLogger(__name__)


class EventPublisher(Protocol):
    async def publish(self, event: OrderEventModel) -> None: ...


class RedisEventPublisher:
    def __init__(
        self,
        redis: aioredis.Redis,
        channel: str = "order_events",
        timeout: float = 2.0,
    ) -> None:
        self.redis = redis
        self.channel = channel
        self.timeout = timeout

    async def publish(self, event: OrderEventModel) -> None:
        message = json.dumps(
            {"event_type": event.event_type(), "data": event.payload()},
            default=str,
        )
        try:
            await asyncio.wait_for(
                self.redis.publish(self.channel, message), timeout=self.timeout
            )
        except (RedisError, asyncio.TimeoutError):
            logger.exception(
                "Failed to publish %s for order %s", event.event_type(), event.order_id
            )
            return
        logger.debug("Published %s for order %s", event.event_type(), event.order_id)
