"""
Order Service — カタログストア (商品の参照と在庫増減)

products テーブルはカタログ側が所有する。このサービスからの在庫変更は
必ずここを通し、呼び出し側のトランザクション内で実行する。
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import InsufficientStock, ProductNotFound
from .models import Product

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockAdjustment:
    product_id: UUID
    delta: int


async def find_products(
    session: AsyncSession,
    product_ids: list[UUID],
    *,
    lock: bool = False,
) -> dict[UUID, Product]:
    """
    商品をまとめて取得する。

    lock=True の場合は id 順に行ロック (SELECT ... FOR UPDATE) を取る。
    同じ商品群を扱う複数トランザクションが同じ順序でロックするため
    デッドロックにならない。
    """
    stmt = select(Product).where(Product.id.in_(product_ids)).order_by(Product.id)
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return {p.id: p for p in result.scalars().all()}


async def adjust_stock(session: AsyncSession, adjustment: StockAdjustment) -> int:
    """
    在庫数を delta だけ増減し、更新後の在庫数を返す。

    減算は WHERE stock >= :qty 付きの条件付き UPDATE で行うため、
    先行する読み取りが古くても在庫がマイナスになることはない。
    """
    stmt = update(Product).where(Product.id == adjustment.product_id)
    if adjustment.delta < 0:
        stmt = stmt.where(Product.stock >= -adjustment.delta)
    stmt = stmt.values(stock=Product.stock + adjustment.delta).returning(Product.stock)

    result = await session.execute(stmt)
    new_stock = result.scalar_one_or_none()
    if new_stock is not None:
        logger.debug(
            "stock adjusted: product=%s delta=%d stock=%d",
            adjustment.product_id, adjustment.delta, new_stock,
        )
        return new_stock

    current = await session.execute(
        select(Product.name, Product.stock).where(Product.id == adjustment.product_id)
    )
    row = current.one_or_none()
    if row is None:
        raise ProductNotFound(adjustment.product_id)
    raise InsufficientStock(adjustment.product_id, row.name, row.stock, -adjustment.delta)
