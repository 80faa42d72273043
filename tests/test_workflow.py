"""Tests for order placement, status changes and cancellation."""
import asyncio
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch
from uuid import uuid4

import pytest

from order_service import catalog
from order_service.aggregate import OrderStatus
from order_service.errors import (
    InsufficientStock,
    InvalidTransition,
    OperationTimeout,
    OrderNotFound,
    ProductNotFound,
    ValidationError,
)
from order_service.models import Product
from order_service.schemas import OrderItemInput
from order_service.workflow import OrderWorkflow

from .conftest import RecordingPublisher, order_count, stock_of


def _items(*lines) -> list[OrderItemInput]:
    return [OrderItemInput(product_id=pid, quantity=qty) for pid, qty in lines]


# ── create_order ─────────────────────────────────


async def test_create_order_reserves_stock(workflow, session_factory, publisher, seed):
    order = await workflow.create_order(seed.customer_id, _items((seed.shirt_id, 2)))

    assert order.status is OrderStatus.PENDING
    assert order.user_id == seed.customer_id
    assert order.total == Decimal("20.00")
    assert [(i.product_id, i.quantity, i.price) for i in order.items] == [
        (seed.shirt_id, 2, Decimal("10.00"))
    ]
    assert await stock_of(session_factory, seed.shirt_id) == 3
    assert publisher.types() == ["OrderCreated"]


async def test_create_order_total_matches_line_items(workflow, seed):
    order = await workflow.create_order(
        seed.customer_id, _items((seed.shirt_id, 3), (seed.shoes_id, 2))
    )

    assert order.total == Decimal("149.98")  # 3 * 10.00 + 2 * 59.99
    assert order.total == sum(i.price * i.quantity for i in order.items)
    assert order.total == sum(i.subtotal for i in order.items)


async def test_create_order_merges_duplicate_lines(workflow, session_factory, seed):
    order = await workflow.create_order(
        seed.customer_id, _items((seed.shirt_id, 2), (seed.shirt_id, 1))
    )

    assert len(order.items) == 1
    assert order.items[0].quantity == 3
    assert await stock_of(session_factory, seed.shirt_id) == 2


async def test_duplicate_lines_are_checked_against_stock_together(
    workflow, session_factory, seed
):
    with pytest.raises(InsufficientStock):
        await workflow.create_order(
            seed.customer_id, _items((seed.shirt_id, 3), (seed.shirt_id, 3))
        )
    assert await stock_of(session_factory, seed.shirt_id) == 5


async def test_insufficient_stock_changes_nothing(workflow, session_factory, publisher, seed):
    await workflow.create_order(seed.customer_id, _items((seed.shirt_id, 2)))

    with pytest.raises(InsufficientStock) as exc_info:
        await workflow.create_order(seed.other_id, _items((seed.shirt_id, 5)))

    assert exc_info.value.product_id == seed.shirt_id
    assert exc_info.value.available == 3
    assert await stock_of(session_factory, seed.shirt_id) == 3
    assert await order_count(session_factory) == 1
    assert publisher.types() == ["OrderCreated"]


async def test_failure_on_later_item_rolls_back_earlier_items(workflow, session_factory, seed):
    with pytest.raises(InsufficientStock):
        await workflow.create_order(
            seed.customer_id, _items((seed.shoes_id, 4), (seed.watch_id, 1))
        )

    assert await stock_of(session_factory, seed.shoes_id) == 30
    assert await order_count(session_factory) == 0


async def test_unknown_product_fails_whole_order(workflow, session_factory, seed):
    missing = uuid4()
    with pytest.raises(ProductNotFound) as exc_info:
        await workflow.create_order(
            seed.customer_id, _items((seed.shirt_id, 1), (missing, 1))
        )

    assert exc_info.value.product_id == missing
    assert await stock_of(session_factory, seed.shirt_id) == 5
    assert await order_count(session_factory) == 0


async def test_stale_stock_read_cannot_oversell(workflow, session_factory, seed):
    """The conditional decrement rejects the order even if the pre-check was fooled."""
    real_find = catalog.find_products

    async def stale_find(session, product_ids, *, lock=False):
        products = await real_find(session, product_ids, lock=lock)
        return {
            pid: SimpleNamespace(id=p.id, name=p.name, price=p.price, stock=1000)
            for pid, p in products.items()
        }

    with patch.object(catalog, "find_products", stale_find):
        with pytest.raises(InsufficientStock):
            await workflow.create_order(seed.customer_id, _items((seed.shirt_id, 6)))

    assert await stock_of(session_factory, seed.shirt_id) == 5
    assert await order_count(session_factory) == 0


@pytest.mark.parametrize("quantities", [[], [0], [-1], [2, 0]])
async def test_create_order_validation(workflow, session_factory, seed, quantities):
    items = _items(*[(seed.shirt_id, qty) for qty in quantities])

    with pytest.raises(ValidationError):
        await workflow.create_order(seed.customer_id, items)
    assert await order_count(session_factory) == 0


async def test_price_snapshot_survives_price_change(workflow, session_factory, seed):
    order = await workflow.create_order(seed.customer_id, _items((seed.shirt_id, 1)))

    async with session_factory() as session, session.begin():
        product = await session.get(Product, seed.shirt_id)
        product.price = Decimal("15.00")

    reloaded = await workflow.get_order_by_id(order.id)
    assert reloaded.items[0].price == Decimal("10.00")
    assert reloaded.total == Decimal("10.00")


# ── cancel_order ─────────────────────────────────


async def test_cancel_restores_stock(workflow, session_factory, publisher, seed):
    order = await workflow.create_order(seed.customer_id, _items((seed.shirt_id, 2)))

    cancelled = await workflow.cancel_order(order.id, seed.customer_id, is_admin=False)

    assert cancelled.status is OrderStatus.CANCELLED
    assert await stock_of(session_factory, seed.shirt_id) == 5
    assert publisher.types() == ["OrderCreated", "OrderCancelled"]


async def test_cancel_twice_does_not_restore_twice(workflow, session_factory, seed):
    order = await workflow.create_order(seed.customer_id, _items((seed.shirt_id, 2)))
    await workflow.cancel_order(order.id, seed.customer_id, is_admin=False)

    with pytest.raises(InvalidTransition):
        await workflow.cancel_order(order.id, seed.customer_id, is_admin=False)

    assert await stock_of(session_factory, seed.shirt_id) == 5


async def test_non_owner_cannot_cancel(workflow, session_factory, seed):
    order = await workflow.create_order(seed.customer_id, _items((seed.shirt_id, 2)))

    with pytest.raises(OrderNotFound):
        await workflow.cancel_order(order.id, seed.other_id, is_admin=False)

    assert await stock_of(session_factory, seed.shirt_id) == 3
    unchanged = await workflow.get_order_by_id(order.id)
    assert unchanged.status is OrderStatus.PENDING


async def test_admin_can_cancel_any_order(workflow, session_factory, seed):
    order = await workflow.create_order(seed.customer_id, _items((seed.shoes_id, 4)))

    cancelled = await workflow.cancel_order(order.id, seed.admin_id, is_admin=True)

    assert cancelled.status is OrderStatus.CANCELLED
    assert await stock_of(session_factory, seed.shoes_id) == 30


async def test_cancel_locks_and_restocks_in_product_id_order(workflow, session_factory, seed):
    high, low = sorted([seed.shirt_id, seed.shoes_id], reverse=True)
    order = await workflow.create_order(seed.customer_id, _items((high, 1), (low, 2)))

    real_find = catalog.find_products
    real_adjust = catalog.adjust_stock
    locked, restocked = [], []

    async def spy_find(session, product_ids, *, lock=False):
        locked.append((list(product_ids), lock))
        return await real_find(session, product_ids, lock=lock)

    async def spy_adjust(session, adj):
        restocked.append(adj.product_id)
        return await real_adjust(session, adj)

    with patch.object(catalog, "find_products", spy_find), \
            patch.object(catalog, "adjust_stock", spy_adjust):
        await workflow.cancel_order(order.id, seed.customer_id, is_admin=False)

    assert locked == [([low, high], True)]
    assert restocked == [low, high]
    assert await stock_of(session_factory, seed.shirt_id) == 5
    assert await stock_of(session_factory, seed.shoes_id) == 30


async def test_shipped_order_cannot_be_cancelled(workflow, session_factory, seed):
    order = await workflow.create_order(seed.customer_id, _items((seed.shirt_id, 1)))
    await workflow.update_order_status(order.id, OrderStatus.SHIPPED)

    with pytest.raises(InvalidTransition):
        await workflow.cancel_order(order.id, seed.customer_id, is_admin=False)

    assert await stock_of(session_factory, seed.shirt_id) == 4


async def test_cancel_unknown_order(workflow, seed):
    with pytest.raises(OrderNotFound):
        await workflow.cancel_order(uuid4(), seed.admin_id, is_admin=True)


async def test_stock_equals_initial_minus_active_orders(workflow, session_factory, seed):
    first = await workflow.create_order(seed.customer_id, _items((seed.shoes_id, 5)))
    await workflow.create_order(seed.other_id, _items((seed.shoes_id, 7)))
    third = await workflow.create_order(seed.customer_id, _items((seed.shoes_id, 2)))
    await workflow.cancel_order(first.id, seed.customer_id, is_admin=False)
    await workflow.cancel_order(third.id, seed.admin_id, is_admin=True)

    assert await stock_of(session_factory, seed.shoes_id) == 30 - 7


# ── update_order_status ──────────────────────────


async def test_update_status_persists(workflow, session_factory, publisher, seed):
    order = await workflow.create_order(seed.customer_id, _items((seed.shirt_id, 1)))

    updated = await workflow.update_order_status(order.id, OrderStatus.SHIPPED)

    assert updated.status is OrderStatus.SHIPPED
    assert (await workflow.get_order_by_id(order.id)).status is OrderStatus.SHIPPED
    assert await stock_of(session_factory, seed.shirt_id) == 4
    assert publisher.types() == ["OrderCreated", "OrderStatusChanged"]


async def test_update_status_rejects_illegal_transition(workflow, seed):
    order = await workflow.create_order(seed.customer_id, _items((seed.shirt_id, 1)))
    await workflow.update_order_status(order.id, OrderStatus.DELIVERED)

    with pytest.raises(InvalidTransition):
        await workflow.update_order_status(order.id, OrderStatus.PROCESSING)

    assert (await workflow.get_order_by_id(order.id)).status is OrderStatus.DELIVERED


async def test_update_status_to_cancelled_restores_stock(workflow, session_factory, seed):
    order = await workflow.create_order(seed.customer_id, _items((seed.shirt_id, 3)))

    updated = await workflow.update_order_status(
        order.id, OrderStatus.CANCELLED, changed_by=seed.admin_id
    )

    assert updated.status is OrderStatus.CANCELLED
    assert await stock_of(session_factory, seed.shirt_id) == 5


async def test_update_status_unknown_order(workflow, seed):
    with pytest.raises(OrderNotFound):
        await workflow.update_order_status(uuid4(), OrderStatus.SHIPPED)


# ── order events ─────────────────────────────────


async def test_events_are_versioned_per_order(workflow, seed):
    order = await workflow.create_order(seed.customer_id, _items((seed.shirt_id, 2)))
    await workflow.update_order_status(order.id, OrderStatus.PROCESSING)
    await workflow.cancel_order(order.id, seed.customer_id, is_admin=False)

    events = await workflow.get_order_events(order.id)

    assert [(e.event_type, e.version) for e in events] == [
        ("OrderCreated", 1),
        ("OrderStatusChanged", 2),
        ("OrderCancelled", 3),
    ]
    assert events[0].event_data["total"] == "20.00"
    assert events[2].event_data["previous_status"] == "Processing"
    assert events[2].event_data["restocked"][0]["quantity"] == 2


async def test_events_for_unknown_order(workflow, seed):
    with pytest.raises(OrderNotFound):
        await workflow.get_order_events(uuid4())


# ── write deadline ───────────────────────────────


async def test_write_timeout_rolls_back(session_factory, publisher, seed):
    real_adjust = catalog.adjust_stock

    async def slow_adjust(session, adj):
        await asyncio.sleep(1)
        return await real_adjust(session, adj)

    workflow = OrderWorkflow(session_factory, publisher, write_timeout=0.1)
    with patch.object(catalog, "adjust_stock", slow_adjust):
        with pytest.raises(OperationTimeout):
            await workflow.create_order(seed.customer_id, _items((seed.shirt_id, 2)))

    assert await order_count(session_factory) == 0
    assert await stock_of(session_factory, seed.shirt_id) == 5
    assert publisher.events == []


async def test_publish_runs_outside_write_timeout(session_factory, seed):
    class SlowPublisher(RecordingPublisher):
        async def publish(self, event) -> None:
            await asyncio.sleep(0.5)
            await super().publish(event)

    publisher = SlowPublisher()
    workflow = OrderWorkflow(session_factory, publisher, write_timeout=0.2)

    order = await workflow.create_order(seed.customer_id, _items((seed.shirt_id, 2)))

    assert order.status is OrderStatus.PENDING
    assert await order_count(session_factory) == 1
    assert publisher.types() == ["OrderCreated"]
