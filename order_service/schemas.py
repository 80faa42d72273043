"""
Order Service — Request / Response モデル
"""

import math
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, computed_field

from .aggregate import OrderStatus


# ── Request Models ───────────────────────────────


class OrderItemInput(BaseModel):
    product_id: UUID
    quantity: int


class CreateOrderRequest(BaseModel):
    items: list[OrderItemInput]


class UpdateStatusRequest(BaseModel):
    status: OrderStatus


# ── Response Models ──────────────────────────────


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str


class ProductSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str


class OrderItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: UUID
    quantity: int
    price: Decimal
    product: ProductSummary | None = None

    @computed_field
    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: int
    total: Decimal
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemRead]
    user: UserSummary | None = None


class OrderPage(BaseModel):
    orders: list[OrderRead]
    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def build(cls, orders: list[OrderRead], total: int, page: int, limit: int) -> "OrderPage":
        return cls(
            orders=orders,
            total=total,
            page=page,
            limit=limit,
            pages=math.ceil(total / limit),
        )


class OrderEventRead(BaseModel):
    event_type: str
    event_data: dict
    version: int
    created_at: str | None
