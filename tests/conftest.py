"""
Pytest configuration and fixtures.

Каждый тест получает свою SQLite-базу во временной папке (aiosqlite, NullPool),
поэтому сервисные async-тесты и TestClient не делят соединения между event loop'ами.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./restaurant-orders-test.db")

from decimal import Decimal

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from restaurant_orders.broadcast import BroadcastChannel
from restaurant_orders.db.base import Base
from restaurant_orders.db.deps import get_async_session
from restaurant_orders.main import app
from restaurant_orders.models import Category, MenuItem, Order, OrderItem


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}"


@pytest_asyncio.fixture
async def engine(db_url):
    engine = create_async_engine(db_url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    """Сессия с теми же настройками, что и в приложении (expire_on_commit=False)."""
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def menu(db):
    """
    Меню: A = 5.00, B = 3.00, C = 2.50, X снят с продажи.
    Возвращает {ключ: id блюда}.
    """
    category = Category(name="Mains", display_order=1)
    items = {
        "A": MenuItem(name="Butter Chicken", price=Decimal("5.00"), category=category),
        "B": MenuItem(name="Garlic Naan", price=Decimal("3.00"), category=category),
        "C": MenuItem(name="Mango Lassi", price=Decimal("2.50"), category=category),
        "X": MenuItem(name="Seasonal Special", price=Decimal("9.00"), category=category, is_available=False),
    }
    db.add(category)
    db.add_all(items.values())
    await db.commit()
    # только id: после rollback в тесте ORM-объекты протухают
    return {key: item.id for key, item in items.items()}


@pytest.fixture
def channel():
    return BroadcastChannel(queue_size=100)


@pytest.fixture
def events(channel):
    """Подписка на канал: сюда попадают все события, опубликованные сервисом."""
    return channel.subscribe()


def drain(subscription):
    received = []
    while True:
        event = subscription.get_nowait()
        if event is None:
            return received
        received.append(event)


async def assert_totals_consistent(db):
    """total_amount каждого заказа равен сумме его позиций."""
    orders = (await db.execute(select(Order).execution_options(populate_existing=True))).scalars().all()
    items = (await db.execute(select(OrderItem).execution_options(populate_existing=True))).scalars().all()
    for order in orders:
        expected = sum(
            (Decimal(i.price_at_time) * i.quantity for i in items if i.order_id == order.id),
            Decimal("0"),
        )
        assert Decimal(order.total_amount) == expected.quantize(Decimal("0.01")), order.id


@pytest.fixture
def client(db_url):
    """
    TestClient с подменённой сессией БД.
    Схема создаётся синхронным движком, запросы идут через aiosqlite в loop'е приложения.
    """
    sync_engine = create_engine(db_url.replace("+aiosqlite", ""))
    Base.metadata.create_all(sync_engine)

    session_engine = create_async_engine(db_url, poolclass=NullPool)
    session_factory = async_sessionmaker(bind=session_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_async_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_async_session

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    sync_engine.dispose()


@pytest.fixture
def seeded_client(client):
    """Клиент с меню, созданным через API: возвращает (client, {ключ: id блюда})."""
    response = client.post("/categories/", json={"name": "Mains", "display_order": 1})
    assert response.status_code == 201, response.text
    category_id = response.json()["id"]

    ids = {}
    for key, name, price in (("A", "Butter Chicken", "5.00"), ("B", "Garlic Naan", "3.00"), ("C", "Mango Lassi", "2.50")):
        response = client.post(
            "/menu/", json={"name": name, "price": price, "category_id": category_id}
        )
        assert response.status_code == 201, response.text
        ids[key] = response.json()["id"]
    return client, ids
