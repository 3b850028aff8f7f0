"""
Shared test fixtures for the FoodHub test suite.

Every test gets its own SQLite database file, a zero-latency mock gateway
and push provider, and services wired to them. API tests drive the FastAPI
app in-process through httpx's ASGI transport with the same wiring.
"""

import os

# Settings are read at import time; point them at throwaway resources first
os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["NOTIFICATION_DISPATCH_MODE"] = "inline"

import uuid
from dataclasses import dataclass

import httpx
import pytest
import pytest_asyncio

from foodhub.database import build_engine, build_session_maker, init_db
from foodhub.models import MenuItem, NotificationToken, Restaurant, User
from foodhub.services.notifications import (
    InlineEventPublisher,
    MockPushProvider,
    NotificationDispatcher,
)
from foodhub.services.orders import LineRequest, OrderLifecycleManager
from foodhub.services.payment import MockPaymentGateway, PaymentSessionCoordinator


@dataclass
class Catalog:
    owner: User
    customer: User
    bystander: User
    restaurant: Restaurant
    rival: Restaurant
    pizza: MenuItem          # price 100
    salad: MenuItem          # price 50
    rival_item: MenuItem


# ============================================================================
# Database
# ============================================================================

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'foodhub.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def catalog(session_maker) -> Catalog:
    """Three users, two restaurants and a small menu."""
    async with session_maker() as session:
        owner = User(username="owner", display_name="Restaurant Owner")
        customer = User(username="customer", display_name="Hungry Customer")
        bystander = User(username="bystander")
        session.add_all([owner, customer, bystander])
        await session.flush()

        restaurant = Restaurant(name="Spice Route", owner_id=owner.id)
        rival = Restaurant(name="Other Place", owner_id=owner.id)
        session.add_all([restaurant, rival])
        await session.flush()

        pizza = MenuItem(restaurant_id=restaurant.id, name="Pizza", price=100)
        salad = MenuItem(restaurant_id=restaurant.id, name="Salad", price=50)
        rival_item = MenuItem(restaurant_id=rival.id, name="Burger", price=80)
        session.add_all([pizza, salad, rival_item])
        await session.commit()

        return Catalog(
            owner=owner,
            customer=customer,
            bystander=bystander,
            restaurant=restaurant,
            rival=rival,
            pizza=pizza,
            salad=salad,
            rival_item=rival_item,
        )


@pytest.fixture
def add_token(session_maker):
    """Register a device token directly in the database."""
    async def _add(user_id: uuid.UUID, device_id: str, token: str) -> None:
        async with session_maker() as session:
            session.add(NotificationToken(user_id=user_id, device_id=device_id, token=token))
            await session.commit()
    return _add


# ============================================================================
# Services
# ============================================================================

@pytest.fixture
def gateway():
    return MockPaymentGateway(failure_rate=0.0, min_latency=0, max_latency=0)


@pytest.fixture
def push():
    return MockPushProvider(failure_rate=0.0, min_latency=0, max_latency=0)


@pytest.fixture
def dispatcher(push):
    return NotificationDispatcher(push, concurrency=4)


@pytest.fixture
def publisher(session_maker, dispatcher):
    return InlineEventPublisher(session_maker, dispatcher)


@pytest.fixture
def lifecycle(publisher):
    return OrderLifecycleManager(publisher=publisher)


@pytest.fixture
def coordinator(gateway, lifecycle):
    return PaymentSessionCoordinator(gateway, lifecycle, timeout=1.0)


@pytest_asyncio.fixture
async def order(session_maker, lifecycle, catalog):
    """An unpaid order of 2 x 100 + 1 x 50, detached from any session."""
    async with session_maker() as session:
        return await lifecycle.place_order(
            session,
            restaurant_id=catalog.restaurant.id,
            customer_id=catalog.customer.id,
            lines=[
                LineRequest(item_id=catalog.pizza.id, quantity=2),
                LineRequest(item_id=catalog.salad.id, quantity=1),
            ],
        )


# ============================================================================
# API
# ============================================================================

@pytest_asyncio.fixture
async def client(session_maker, gateway, dispatcher, publisher):
    from foodhub.database import get_db
    from foodhub.main import app, get_dispatcher, get_event_publisher, get_gateway

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_event_publisher] = lambda: publisher

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
