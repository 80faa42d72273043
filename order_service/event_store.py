"""
Order Service — 注文イベントログ

注文の状態変化を、状態更新と同じトランザクション内で order_events に追記する。
(order_id, version) の UNIQUE 制約による楽観的ロックで同時書き込みを検知する。
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .events import OrderEventModel
from .models import OrderEvent


async def current_version(session: AsyncSession, order_id: UUID) -> int:
    result = await session.execute(
        select(func.coalesce(func.max(OrderEvent.version), 0)).where(
            OrderEvent.order_id == order_id
        )
    )
    return result.scalar_one()


async def append_event(
    session: AsyncSession,
    event: OrderEventModel,
    expected_version: int,
) -> int:
    """
    イベントを追記して新しいバージョンを返す。

    同じ order_id + version が既に存在すると flush 時に IntegrityError になり、
    呼び出し側のトランザクションごとロールバックされる。
    """
    new_version = expected_version + 1
    session.add(
        OrderEvent(
            order_id=event.order_id,
            event_type=event.event_type(),
            event_data=event.payload(),
            version=new_version,
            created_at=event.timestamp,
        )
    )
    await session.flush()
    return new_version


async def load_events(session: AsyncSession, order_id: UUID) -> list[dict]:
    """指定注文の全イベントをバージョン順に読み出す。"""
    result = await session.execute(
        select(OrderEvent)
        .where(OrderEvent.order_id == order_id)
        .order_by(OrderEvent.version.asc())
    )
    return [
        {
            "event_type": row.event_type,
            "event_data": row.event_data,
            "version": row.version,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in result.scalars().all()
    ]
