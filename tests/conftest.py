"""Shared fixtures: a throwaway SQLite database per test, seed helpers and the API client."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storefront.config import settings
from storefront.database import get_session_factory
from storefront.domain.models import (
    Cart, CartItem, Coupon, DiscountType, Order, OrderItem, OrderStatus, PaymentStatus,
    NotificationKind, Product, ShippingAddress,
)
from storefront.infrastructure.db_schema import metadata
from storefront.infrastructure.rate_limiter import FixedWindowRateLimiter
from storefront.infrastructure.unit_of_work import UnitOfWork

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

WEBHOOK_SECRET = "whsec_test_secret"
CRON_SECRET = "cron-test-secret"
ADMIN_JWT_SECRET = "admin-test-secret"


class RecordingNotifications:
    """Notifier fake that records every accepted message."""

    def __init__(self, should_succeed: bool = True):
        self.sent: list[dict] = []
        self._should_succeed = should_succeed

    def configure(self, should_succeed: bool = True) -> None:
        self._should_succeed = should_succeed

    async def send(self, recipient, template, payload, idempotency_key=None) -> bool:
        if not self._should_succeed:
            return False
        self.sent.append({
            "recipient": recipient,
            "template": template,
            "payload": payload,
            "idempotency_key": idempotency_key,
        })
        return True

    def sent_to(self, recipient: str) -> list[dict]:
        return [message for message in self.sent if message["recipient"] == recipient]

    def of_kind(self, template: NotificationKind) -> list[dict]:
        return [message for message in self.sent if message["template"] == template]


def fixed_clock(moment: datetime = NOW):
    return lambda: moment


def make_coupon(**overrides) -> Coupon:
    defaults = {
        "id": str(uuid.uuid4()),
        "code": "SAVE20",
        "description": "20% off",
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": 20,
        "max_uses": None,
        "current_uses": 0,
        "min_order_amount": None,
        "max_discount_amount": None,
        "start_date": None,
        "end_date": None,
        "is_active": True,
    }
    defaults.update(overrides)
    return Coupon(**defaults)


def make_product(**overrides) -> Product:
    defaults = {
        "id": f"prod-{uuid.uuid4().hex[:8]}",
        "name": "Lavender Soap",
        "price": 12.0,
        "base_price": 4.0,
        "stock_quantity": 50,
    }
    defaults.update(overrides)
    return Product(**defaults)


def make_cart(**overrides) -> Cart:
    defaults = {
        "id": str(uuid.uuid4()),
        "session_id": f"sess-{uuid.uuid4().hex[:8]}",
        "customer_email": "shopper@example.com",
        "customer_name": "Ana",
        "items": [CartItem(product_id="prod-1", name="Lavender Soap", quantity=2, price=12.0)],
        "total": 24.0,
        "last_updated": NOW - timedelta(hours=2),
        "recovery_email_sent": False,
        "followup_email_sent": False,
    }
    defaults.update(overrides)
    return Cart(**defaults)


def make_order(**overrides) -> Order:
    order_id = overrides.pop("id", str(uuid.uuid4()))
    defaults = {
        "id": order_id,
        "order_number": f"ORD-{uuid.uuid4().hex[:8].upper()}",
        "email": "buyer@example.com",
        "status": OrderStatus.PAID,
        "payment_status": PaymentStatus.PAID,
        "payment_reference": f"pi_{uuid.uuid4().hex[:10]}",
        "subtotal": 24.0,
        "total": 24.0,
        "shipping": ShippingAddress(name="Ana Buyer", line1="1 Main St", city="Austin", postal_code="73301", country="US"),
        "items": [
            OrderItem(
                id=str(uuid.uuid4()), order_id=order_id, product_id="prod-1",
                product_name="Lavender Soap", price=12.0, base_price=4.0, quantity=2,
            )
        ],
        "created_at": NOW,
        "updated_at": NOW,
    }
    defaults.update(overrides)
    return Order(**defaults)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'storefront_test.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def uow(session_factory):
    return UnitOfWork(session_factory)


@pytest.fixture
def notifications():
    return RecordingNotifications()


@pytest.fixture
def seed(uow):
    """Async helpers that persist domain objects in their own transaction."""

    class Seeder:
        async def coupon(self, **overrides) -> Coupon:
            coupon = make_coupon(**overrides)
            async with uow() as tx:
                await tx.coupons.create(coupon)
                await tx.commit()
            return coupon

        async def product(self, **overrides) -> Product:
            product = make_product(**overrides)
            async with uow() as tx:
                await tx.products.create(product)
                await tx.commit()
            return product

        async def cart(self, **overrides) -> Cart:
            cart = make_cart(**overrides)
            async with uow() as tx:
                await tx.carts.save(cart)
                await tx.commit()
            return cart

        async def order(self, **overrides) -> Order:
            order = make_order(**overrides)
            async with uow() as tx:
                await tx.orders.create(order)
                await tx.commit()
            return order

    return Seeder()


@pytest.fixture
def configured_settings(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)
    monkeypatch.setattr(settings, "ADMIN_JWT_SECRET", ADMIN_JWT_SECRET)
    monkeypatch.setattr(settings, "OPERATOR_EMAILS", ["ops@example.com", "owner@example.com"])
    monkeypatch.setattr(settings, "NOTIFICATION_TIMEOUT_SECONDS", 1.0)
    return settings


@pytest.fixture
def limiter():
    return FixedWindowRateLimiter()


@pytest.fixture
async def client(session_factory, notifications, limiter, configured_settings):
    from storefront.main import app
    from storefront.presentation.api import get_notifications, get_rate_limiter

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notifications] = lambda: notifications
    app.dependency_overrides[get_rate_limiter] = lambda: limiter

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()
