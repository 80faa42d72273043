"""
Order Service — イベント定義

注文の状態変化を表すイベント。過去形で命名し、不変として扱う。
order_events テーブルへの記録と Redis Pub/Sub への発行で同じ形を使う。
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class OrderEventModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: UUID
    timestamp: datetime

    @classmethod
    def event_type(cls) -> str:
        return cls.__name__

    def payload(self) -> dict:
        return self.model_dump(mode="json")


class OrderLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: UUID
    quantity: int
    price: Decimal


class OrderCreated(OrderEventModel):
    """注文が作成された(在庫引き当て済み)"""
    user_id: int
    items: list[OrderLine]
    total: Decimal


class OrderStatusChanged(OrderEventModel):
    """管理者が注文ステータスを変更した"""
    previous_status: str
    status: str


class OrderCancelled(OrderEventModel):
    """注文がキャンセルされた(在庫を戻した)"""
    previous_status: str
    cancelled_by: int | None
    restocked: list[OrderLine]
