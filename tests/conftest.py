# Shared pytest configuration and fixtures
import os

# Settings are cached on first use, so the environment must be ready before any app import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["DEBUG"] = "false"
os.environ["PAYPAL_CLIENT_ID"] = "test-client-id"
os.environ["PAYPAL_CLIENT_SECRET"] = "test-client-secret"
os.environ["PAYPAL_API_BASE"] = "https://api-m.sandbox.paypal.com"
os.environ["PAYPAL_WEBHOOK_ID"] = "WH-TEST"
os.environ["PAYPAL_WEBHOOK_BYPASS"] = "false"

from datetime import timedelta
from decimal import Decimal

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from coachlatam.app import app
from coachlatam.db.session import get_db, get_service_db
from coachlatam.models import Base, Coupon, Subscription, SubscriptionPlan, User
from coachlatam.services.paypal_client import PayPalError, get_paypal_client
from coachlatam.utils import now_utc

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
JWT_SECRET = "test-jwt-secret"

STARTER_PLAN = "P-STARTER"
PRO_PLAN = "P-PRO"
MASTER_PLAN = "P-MASTER"


class FakePayPal:
    """Stands in for PayPalClient; records every call and fails on request."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.fail: set[str] = set()
        self.remote: dict[str, dict] = {}
        self.signature_valid = True

    def _maybe_fail(self, operation: str):
        if operation in self.fail:
            raise PayPalError(f"PayPal {operation} failed", 500, '{"name": "INTERNAL_SERVICE_ERROR"}')

    async def get_subscription(self, subscription_id):
        self.calls.append(("get", subscription_id))
        self._maybe_fail("get")
        return self.remote.get(subscription_id, {"id": subscription_id, "status": "APPROVED", "plan_id": PRO_PLAN})

    async def cancel_subscription(self, subscription_id, reason):
        self.calls.append(("cancel", subscription_id, reason))
        self._maybe_fail("cancel")

    async def activate_subscription(self, subscription_id, reason):
        self.calls.append(("activate", subscription_id, reason))
        self._maybe_fail("activate")

    async def verify_webhook_signature(self, headers, body):
        self.calls.append(("verify",))
        return self.signature_valid

    def calls_to(self, operation: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == operation]


def make_token(user_id: str, **overrides) -> str:
    claims = {
        "sub": user_id,
        "aud": "authenticated",
        "exp": now_utc() + timedelta(hours=1),
        "role": "authenticated",
    }
    claims.update(overrides)
    return jwt.encode(claims, JWT_SECRET, algorithm="HS256")


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user.id)}"}


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """In-memory database shared by every session of one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_db(test_engine):
    factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def paypal():
    return FakePayPal()


@pytest_asyncio.fixture(scope="function")
async def client(test_db: AsyncSession, paypal: FakePayPal):
    """HTTP client against the app, with database and PayPal dependencies overridden."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_service_db] = override_get_db
    app.dependency_overrides[get_paypal_client] = lambda: paypal

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def plans(test_db: AsyncSession):
    rows = [
        SubscriptionPlan(name="starter", price=Decimal("19.00"), paypal_plan_id=STARTER_PLAN),
        SubscriptionPlan(name="professional", price=Decimal("39.00"), paypal_plan_id=PRO_PLAN),
        SubscriptionPlan(name="master", price=Decimal("79.00"), paypal_plan_id=MASTER_PLAN),
    ]
    test_db.add_all(rows)
    await test_db.commit()
    return {plan.name: plan for plan in rows}


@pytest_asyncio.fixture(scope="function")
async def coach(test_db: AsyncSession):
    user = User(id="6f1d7c8e-2b1a-4c55-9a0e-3f7a1b2c4d5e", email="coach@example.com", full_name="Ana Coach")
    test_db.add(user)
    await test_db.commit()
    return user


@pytest_asyncio.fixture(scope="function")
async def admin(test_db: AsyncSession):
    user = User(
        id="0a9b8c7d-6e5f-4a3b-2c1d-0e9f8a7b6c5d",
        email="admin@example.com",
        full_name="Admin",
        role="admin",
    )
    test_db.add(user)
    await test_db.commit()
    return user


@pytest_asyncio.fixture(scope="function")
async def active_subscription(test_db: AsyncSession, coach: User, plans):
    subscription = Subscription(
        user_id=coach.id,
        paypal_subscription_id="sub_123",
        paypal_plan_id=PRO_PLAN,
        status="active",
    )
    coach.subscription_plan = "professional"
    coach.subscription_status = "active"
    test_db.add(subscription)
    await test_db.commit()
    return subscription


@pytest_asyncio.fixture(scope="function")
async def save20(test_db: AsyncSession, plans):
    coupon = Coupon(
        code="SAVE20",
        description="20% off",
        discount_type="percentage",
        discount_value=Decimal("20"),
        max_uses=100,
    )
    test_db.add(coupon)
    await test_db.commit()
    return coupon
