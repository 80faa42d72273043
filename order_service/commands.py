"""
Order Service — コマンドハンドラ (書き込み側)

注文作成・ステータス変更・キャンセルを扱う。各コマンドは

1. async with session.begin() でトランザクションを開始
2. 注文行・明細行・在庫の増減・イベントログをまとめて書き込む
3. ブロックを抜けるとコミット (例外・キャンセル時は全てロールバック)
4. コミット済みのイベントを返す (発行は呼び出し側)

という流れで、在庫だけ減って注文が無い(またはその逆)状態を残さない。
在庫行は常に商品 id 順にロックする。
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from . import catalog, event_store
from .aggregate import OrderStatus, ensure_transition
from .catalog import StockAdjustment
from .errors import InsufficientStock, OrderNotFound, ProductNotFound, ValidationError
from .events import OrderCancelled, OrderCreated, OrderLine, OrderStatusChanged
from .models import Order, OrderItem
from .schemas import OrderItemInput

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENTS)


def _merge_lines(items: Iterable[OrderItemInput]) -> dict[UUID, int]:
    """同じ商品の行を 1 行にまとめる。要求順は保持する。"""
    lines: dict[UUID, int] = {}
    for item in items:
        if item.quantity <= 0:
            raise ValidationError(
                f"Quantity must be positive (product {item.product_id}: {item.quantity})"
            )
        lines[item.product_id] = lines.get(item.product_id, 0) + item.quantity
    if not lines:
        raise ValidationError("Order must contain at least one item")
    return lines


def _lines_of(order: Order) -> list[OrderLine]:
    return [
        OrderLine(product_id=i.product_id, quantity=i.quantity, price=i.price)
        for i in order.items
    ]


async def _lock_order(
    session: AsyncSession, order_id: UUID, owner_id: int | None = None
) -> Order | None:
    stmt = (
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items))
        .with_for_update(of=Order)
    )
    if owner_id is not None:
        stmt = stmt.where(Order.user_id == owner_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


# ── 注文作成 ─────────────────────────────────────


async def create_order(
    session: AsyncSession,
    user_id: int,
    items: Iterable[OrderItemInput],
) -> OrderCreated:
    """
    注文作成コマンド

    1. 対象商品を id 順に行ロックして読み出す
    2. 商品の存在と在庫を確認し、単価スナップショットと合計を計算
    3. 注文・明細を INSERT、各商品の在庫を減算、OrderCreated を記録
    """
    lines = _merge_lines(items)
    now = datetime.now(timezone.utc)

    async with session.begin():
        products = await catalog.find_products(session, list(lines), lock=True)

        order_items: list[OrderItem] = []
        total = Decimal("0")
        for product_id, quantity in lines.items():
            product = products.get(product_id)
            if product is None:
                raise ProductNotFound(product_id)
            if quantity > product.stock:
                raise InsufficientStock(product_id, product.name, product.stock, quantity)

            price = _money(product.price)
            total += price * quantity
            order_items.append(
                OrderItem(product_id=product_id, quantity=quantity, price=price)
            )

        order = Order(
            id=uuid4(),
            user_id=user_id,
            total=_money(total),
            status=OrderStatus.PENDING,
            created_at=now,
            updated_at=now,
            items=order_items,
        )
        session.add(order)
        await session.flush()

        for item in sorted(order_items, key=lambda i: i.product_id):
            await catalog.adjust_stock(
                session, StockAdjustment(item.product_id, -item.quantity)
            )

        event = OrderCreated(
            order_id=order.id,
            timestamp=now,
            user_id=user_id,
            items=_lines_of(order),
            total=order.total,
        )
        await event_store.append_event(session, event, 0)

    logger.info(
        "Order created: order=%s user=%s items=%d total=%s",
        order.id, user_id, len(order_items), order.total,
    )
    return event


# ── キャンセル ───────────────────────────────────


async def _cancel_locked(
    session: AsyncSession, order: Order, cancelled_by: int | None, now: datetime
) -> OrderCancelled:
    """
    ロック済みの注文をキャンセルし、引き当てた在庫を戻す。

    キャンセル可能なのは Pending / Processing のみ。二重キャンセルは
    InvalidTransition になるため、在庫が二重に戻ることはない。
    商品行は create_order と同じく id 順にロックしてから戻す。
    """
    previous = order.status
    ensure_transition(order.id, previous, OrderStatus.CANCELLED)

    items = sorted(order.items, key=lambda i: i.product_id)
    await catalog.find_products(session, [i.product_id for i in items], lock=True)
    for item in items:
        await catalog.adjust_stock(session, StockAdjustment(item.product_id, item.quantity))

    order.status = OrderStatus.CANCELLED
    order.updated_at = now

    version = await event_store.current_version(session, order.id)
    event = OrderCancelled(
        order_id=order.id,
        timestamp=now,
        previous_status=previous.value,
        cancelled_by=cancelled_by,
        restocked=_lines_of(order),
    )
    await event_store.append_event(session, event, version)
    return event


async def cancel_order(
    session: AsyncSession,
    order_id: UUID,
    user_id: int,
    is_admin: bool,
) -> OrderCancelled:
    """
    注文キャンセルコマンド

    管理者以外は自分の注文のみ。他人の注文は存在しない注文と同じく
    OrderNotFound になる。
    """
    now = datetime.now(timezone.utc)

    async with session.begin():
        order = await _lock_order(session, order_id, None if is_admin else user_id)
        if order is None:
            raise OrderNotFound(order_id)
        event = await _cancel_locked(session, order, user_id, now)

    logger.info("Order cancelled: order=%s by user=%s admin=%s", order_id, user_id, is_admin)
    return event


# ── ステータス変更 (管理者) ──────────────────────


async def update_order_status(
    session: AsyncSession,
    order_id: UUID,
    status: OrderStatus,
    changed_by: int | None = None,
) -> OrderStatusChanged | OrderCancelled:
    """
    注文ステータス変更コマンド

    遷移表にない遷移は InvalidTransition。Cancelled への変更は
    キャンセルと同じ経路を通り、在庫を戻す。
    """
    now = datetime.now(timezone.utc)

    async with session.begin():
        order = await _lock_order(session, order_id)
        if order is None:
            raise OrderNotFound(order_id)

        if status is OrderStatus.CANCELLED:
            event = await _cancel_locked(session, order, changed_by, now)
        else:
            previous = order.status
            ensure_transition(order.id, previous, status)
            order.status = status
            order.updated_at = now

            version = await event_store.current_version(session, order.id)
            event = OrderStatusChanged(
                order_id=order.id,
                timestamp=now,
                previous_status=previous.value,
                status=status.value,
            )
            await event_store.append_event(session, event, version)

    logger.info("Order status changed: order=%s status=%s", order_id, status.value)
    return event
