"""
Order Service — 注文ステータスの状態遷移

状態遷移:
    Pending    → Processing | Shipped | Delivered | Cancelled
    Processing → Shipped | Delivered | Cancelled
    Shipped    → Delivered
    Delivered  (終端)
    Cancelled  (終端)

自己遷移は許可しない。キャンセル可能なのは Pending / Processing のみ。
"""

import enum
from uuid import UUID

from .errors import InvalidTransition


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
        }
    ),
    OrderStatus.PROCESSING: frozenset(
        {OrderStatus.SHIPPED, OrderStatus.DELIVERED, OrderStatus.CANCELLED}
    ),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

CANCELLABLE = frozenset(
    s for s, targets in ALLOWED_TRANSITIONS.items() if OrderStatus.CANCELLED in targets
)


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def is_terminal(status: OrderStatus) -> bool:
    return not ALLOWED_TRANSITIONS[status]


def ensure_transition(order_id: UUID, current: OrderStatus, target: OrderStatus) -> None:
    """遷移表にない遷移なら InvalidTransition を送出する。"""
    if not can_transition(current, target):
        raise InvalidTransition(order_id, current.value, target.value)
