"""
Order Service — クエリハンドラ (読み取り側)

在庫には一切触れない。明細 (商品名付き) とユーザー情報は selectinload でまとめて読む。
"""

from uuid import UUID

from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .aggregate import OrderStatus
from .models import Order, OrderItem, User


def _with_details(stmt: Select) -> Select:
    return stmt.options(
        selectinload(Order.items).selectinload(OrderItem.product),
        selectinload(Order.user),
    ).execution_options(populate_existing=True)


async def get_order(
    session: AsyncSession, order_id: UUID, user_id: int | None = None
) -> Order | None:
    """注文を取得する。user_id 指定時はその所有者の注文に限る。"""
    stmt = select(Order).where(Order.id == order_id)
    if user_id is not None:
        stmt = stmt.where(Order.user_id == user_id)
    result = await session.execute(_with_details(stmt))
    return result.scalar_one_or_none()


async def list_user_orders(session: AsyncSession, user_id: int) -> list[Order]:
    result = await session.execute(
        _with_details(
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
        )
    )
    return list(result.scalars().all())


async def list_orders(
    session: AsyncSession,
    page: int,
    limit: int,
    search: str | None = None,
    status: OrderStatus | None = None,
) -> tuple[list[Order], int]:
    """
    全注文をページングして返す (管理者用)。

    search は注文者の名前・メールアドレスに対する大文字小文字を区別しない
    部分一致。戻り値は (当該ページの注文, 条件に合う総件数)。
    """
    conditions = []
    if search:
        conditions.append(
            or_(
                User.name.icontains(search, autoescape=True),
                User.email.icontains(search, autoescape=True),
            )
        )
    if status is not None:
        conditions.append(Order.status == status)

    count_result = await session.execute(
        select(func.count()).select_from(Order).join(Order.user).where(*conditions)
    )
    total = count_result.scalar_one()

    result = await session.execute(
        _with_details(
            select(Order)
            .join(Order.user)
            .where(*conditions)
            .order_by(Order.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
    )
    return list(result.scalars().all()), total
