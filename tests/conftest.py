"""
Shared fixtures for provider integration and sync tests

Key Components:
1. In-memory aiosqlite database with the full schema
2. FakeTransport standing in for ProviderHttpClient (records requests, replays payloads)
3. PanelFactory for providers, services, users, orders and commissions
4. FakeClock for wall-clock budget tests
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from database import build_async_engine, build_session_factory
from models import (
    AffiliateCommission,
    Base,
    Category,
    CommissionStatus,
    Order,
    OrderStatus,
    Provider,
    ProviderStatus,
    Service,
    User,
)
from services.provider_errors import ProviderTransportError
from services.provider_order_forwarder import ProviderOrderForwarder
from services.provider_response_parser import ProviderResponseParser
from utils.helpers import utc_now

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


class FakeTransport:
    """
    Replaces the aiohttp client. Queued items are returned in order: dicts/lists as the
    decoded payload, strings as a raw body, exceptions are raised. A handler, when set,
    answers every request instead of the queue.
    """

    def __init__(self):
        self.requests: List[Any] = []
        self.responses: List[Any] = []
        self.handler: Optional[Callable] = None
        self.closed = False

    def queue(self, *items):
        self.responses.extend(items)

    async def send(self, request, timeout_seconds):
        self.requests.append(request)
        if self.handler is not None:
            item = self.handler(request)
        elif self.responses:
            item = self.responses.pop(0)
        else:
            raise ProviderTransportError("No fake response queued")
        if isinstance(item, Exception):
            raise item
        if isinstance(item, (str, bytes)) or item is None:
            return ProviderResponseParser.decode(item)
        return item

    async def close(self):
        self.closed = True


class FakeClock:
    """Monotonic clock the tests move by hand"""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class PanelFactory:
    """Creates committed rows, each in its own session"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _save(self, obj):
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
        return obj

    async def create_provider(self, **kwargs) -> Provider:
        values = {
            "name": "TestProvider",
            "api_url": "https://provider.example/api/v2",
            "api_key": "test-api-key-123456",
            "status": ProviderStatus.ACTIVE.value,
            "created_at": utc_now(),
        }
        values.update(kwargs)
        return await self._save(Provider(**values))

    async def create_category(self, name: str = "Instagram Followers") -> Category:
        return await self._save(Category(name=name))

    async def create_service(self, provider: Optional[Provider], **kwargs) -> Service:
        values = {
            "name": "Instagram Followers [Real]",
            "provider_id": provider.id if provider is not None else None,
            "provider_service_id": "101",
            "rate": Decimal("1.20"),
            "min_order": 10,
            "max_order": 100000,
            "refill": True,
            "cancel": True,
        }
        values.update(kwargs)
        return await self._save(Service(**values))

    async def create_user(self, **kwargs) -> User:
        values = {
            "username": "buyer",
            "email": "buyer@example.com",
            "balance": Decimal("10.00"),
            "total_spent": Decimal("5.00"),
            "currency": "USD",
            "created_at": utc_now(),
        }
        values.update(kwargs)
        return await self._save(User(**values))

    async def create_order(self, user: User, service: Service, **kwargs) -> Order:
        values = {
            "user_id": user.id,
            "service_id": service.id,
            "category_id": service.category_id,
            "link": "https://instagram.com/someone",
            "qty": 1000,
            "usd_price": Decimal("2.00"),
            "currency": user.currency,
            "status": OrderStatus.PROCESSING.value,
            "provider_status": OrderStatus.PROCESSING.value,
            "provider_order_id": "9001",
            "start_count": 0,
            "remains": 0,
            "created_at": utc_now(),
        }
        values.update(kwargs)
        return await self._save(Order(**values))

    async def create_commission(self, order: Order, affiliate: User, amount=Decimal("0.50"), **kwargs):
        values = {
            "order_id": order.id,
            "affiliate_user_id": affiliate.id,
            "amount": amount,
            "status": CommissionStatus.PENDING.value,
            "created_at": utc_now(),
        }
        values.update(kwargs)
        return await self._save(AffiliateCommission(**values))

    async def get(self, model, pk):
        async with self.session_factory() as session:
            return await session.get(model, pk)


@pytest_asyncio.fixture
async def engine():
    engine = build_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def factory(session_factory):
    return PanelFactory(session_factory)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def forwarder(transport):
    return ProviderOrderForwarder(http_client=transport)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def days_ago():
    def _days_ago(days: int) -> datetime:
        return utc_now() - timedelta(days=days)
    return _days_ago
