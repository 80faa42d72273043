"""
Order Service — 注文ワークフロー

HTTP 層から呼ばれる唯一の入口。プロセス起動時に一度だけ生成し、
app.state 経由でリクエストハンドラへ渡す。呼び出しごとにセッションを開き、
ORM オブジェクトではなく Response モデルを返す。

書き込みの期限 (write_timeout) はトランザクション部分にだけかかる。
期限切れならロールバックして OperationTimeout。コミット後のイベント発行と
再読み込みは期限の外で行うため、コミット済みの注文が失敗として返ることはない。
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import commands, event_store, queries
from .aggregate import OrderStatus
from .errors import OperationTimeout, OrderNotFound, ValidationError
from .events import OrderEventModel
from .publisher import EventPublisher
from .schemas import OrderEventRead, OrderItemInput, OrderPage, OrderRead

logger = logging.getLogger(__name__)

MAX_PAGE_LIMIT = 100
DEFAULT_WRITE_TIMEOUT = 15.0


class OrderWorkflow:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: EventPublisher,
        write_timeout: float | None = DEFAULT_WRITE_TIMEOUT,
    ) -> None:
        self.session_factory = session_factory
        self.publisher = publisher
        self.write_timeout = write_timeout

    async def _write(
        self, command: Callable[[AsyncSession], Awaitable[OrderEventModel]]
    ) -> OrderRead:
        async with self.session_factory() as session:
            try:
                event = await asyncio.wait_for(command(session), timeout=self.write_timeout)
            except asyncio.TimeoutError:
                logger.warning("Write timed out after %ss, rolled back", self.write_timeout)
                raise OperationTimeout(self.write_timeout) from None

        await self.publisher.publish(event)

        async with self.session_factory() as session:
            order = await queries.get_order(session, event.order_id)
            if order is None:
                raise OrderNotFound(event.order_id)
            return OrderRead.model_validate(order)

    # ── Commands ─────────────────────────────────

    async def create_order(self, user_id: int, items: Iterable[OrderItemInput]) -> OrderRead:
        return await self._write(
            lambda session: commands.create_order(session, user_id, items)
        )

    async def update_order_status(
        self, order_id: UUID, status: OrderStatus, changed_by: int | None = None
    ) -> OrderRead:
        return await self._write(
            lambda session: commands.update_order_status(session, order_id, status, changed_by)
        )

    async def cancel_order(self, order_id: UUID, user_id: int, is_admin: bool) -> OrderRead:
        return await self._write(
            lambda session: commands.cancel_order(session, order_id, user_id, is_admin)
        )

    # ── Queries ──────────────────────────────────

    async def get_orders(
        self,
        page: int = 1,
        limit: int = 10,
        search: str | None = None,
        status: OrderStatus | None = None,
    ) -> OrderPage:
        if page < 1:
            raise ValidationError("page must be >= 1")
        if not 1 <= limit <= MAX_PAGE_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}")

        async with self.session_factory() as session:
            orders, total = await queries.list_orders(session, page, limit, search, status)
            return OrderPage.build(
                [OrderRead.model_validate(o) for o in orders], total, page, limit
            )

    async def get_user_orders(self, user_id: int) -> list[OrderRead]:
        async with self.session_factory() as session:
            orders = await queries.list_user_orders(session, user_id)
            return [OrderRead.model_validate(o) for o in orders]

    async def get_order_by_id(self, order_id: UUID, user_id: int | None = None) -> OrderRead | None:
        async with self.session_factory() as session:
            order = await queries.get_order(session, order_id, user_id)
            if order is None:
                return None
            return OrderRead.model_validate(order)

    async def get_order_events(self, order_id: UUID) -> list[OrderEventRead]:
        async with self.session_factory() as session:
            if await queries.get_order(session, order_id) is None:
                raise OrderNotFound(order_id)
            events = await event_store.load_events(session, order_id)
            return [OrderEventRead(**e) for e in events]
