"""Pytest fixtures for the order service (SQLite via aiosqlite)."""

from decimal import Decimal
from types import SimpleNamespace
from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select

from order_service import db
from order_service.models import Order, Product, User
from order_service.workflow import OrderWorkflow


class RecordingPublisher:
    """Collects published events instead of sending them to Redis."""

    def __init__(self) -> None:
        self.events = []

    async def publish(self, event) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.event_type() for e in self.events]


@pytest.fixture
async def engine(tmp_path):
    engine = db.create_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await db.create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return db.create_session_factory(engine)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def workflow(session_factory, publisher) -> OrderWorkflow:
    return OrderWorkflow(session_factory, publisher)


@pytest.fixture
async def seed(session_factory) -> SimpleNamespace:
    customer = User(id=1, name="Cliente Prueba", email="cliente@example.com", role="customer")
    other = User(id=2, name="Otra Persona", email="otra@example.com", role="customer")
    admin = User(id=99, name="Administrador", email="admin@example.com", role="admin")

    shirt = Product(id=uuid4(), name="Camiseta básica", price=Decimal("10.00"), stock=5)
    shoes = Product(id=uuid4(), name="Zapatillas", price=Decimal("59.99"), stock=30)
    watch = Product(id=uuid4(), name="Reloj", price=Decimal("99.99"), stock=0)  # Out of stock

    async with session_factory() as session, session.begin():
        session.add_all([customer, other, admin, shirt, shoes, watch])

    return SimpleNamespace(
        customer_id=customer.id,
        other_id=other.id,
        admin_id=admin.id,
        shirt_id=shirt.id,
        shoes_id=shoes.id,
        watch_id=watch.id,
    )


async def stock_of(session_factory, product_id: UUID) -> int:
    async with session_factory() as session:
        result = await session.execute(select(Product.stock).where(Product.id == product_id))
        return result.scalar_one()


async def order_count(session_factory) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(Order))
        return result.scalar_one()
