"""
Rental Service — イベント定義と発行

コミット済みの事実だけを Redis Pub/Sub に流す。
発行はコミットの後に行うので、発行に失敗してもコミット済みの結果は変わらない。
"""

import json
import logging
from datetime import datetime

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

from .models import OrderStatus, PlacedOrder

logger = logging.getLogger(__name__)


class OrderPlaced(BaseModel):
    """注文が作成され在庫が引き当てられた"""
    order_id: str
    transaction_id: str
    user_id: str
    total: int
    item_count: int
    due_date: datetime
    timestamp: datetime


class OrderStatusChanged(BaseModel):
    """管理者が注文と支払いレコードのステータスを変更した"""
    order_id: str
    transaction_id: str
    old_status: OrderStatus
    new_status: OrderStatus
    timestamp: datetime


class EventPublisher:
    def __init__(self, redis: aioredis.Redis | None, channel: str = "order_events"):
        self.redis = redis
        self.channel = channel

    async def publish(self, event: BaseModel) -> None:
        if self.redis is None:
            return
        event_type = type(event).__name__
        try:
            await self.redis.publish(
                self.channel,
                json.dumps(
                    {
                        "event_type": event_type,
                        "data": event.model_dump(mode="json"),
                    },
                    default=str,
                ),
            )
        except RedisError:
            logger.exception("Failed to publish %s", event_type)

    async def order_placed(self, placed: PlacedOrder) -> None:
        await self.publish(
            OrderPlaced(
                order_id=placed.order.id,
                transaction_id=placed.transaction.id,
                user_id=placed.order.user_id,
                total=placed.order.total,
                item_count=len(placed.order.items),
                due_date=placed.order.due_date,
                timestamp=placed.order.created_at,
            )
        )
