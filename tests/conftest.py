import os
import uuid
from decimal import Decimal
from typing import AsyncGenerator, Optional

# Settings are read at import time by libs.db.config; point them at SQLite
# before anything from libs/ or services/ is imported.
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./ledger-test.db"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["NOTIFICATIONS_ENABLED"] = "false"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.db.base import Base
from services.ledger_service import models as _ledger_models  # noqa: F401
from services.ledger_service.models import Network
from services.ledger_service.services.payment_gateway import (
    GatewayError,
    PaymentSession,
    SessionStatus,
)
from services.ledger_service.services.price_source import PriceSourceError
from services.ledger_service.services.rate_cache import RateCache
from services.ledger_service.services.rate_oracle import RateOracle

# Clear cached settings to reload with new env vars
get_settings.cache_clear()
settings = get_settings()

WEBHOOK_SECRET = settings.PAYMENT_WEBHOOK_SECRET


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    A fresh SQLite file per test. Settlement code commits on its own, so
    isolation comes from the throwaway database rather than a rolled-back
    outer transaction.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        future=True,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Same session settings as libs.db.config.AsyncSessionLocal."""
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# External services
# ---------------------------------------------------------------------------


class FakePriceSource:
    """In-memory stand-in for the spot price API."""

    def __init__(self, prices: Optional[dict] = None):
        self.prices = dict(prices or {})
        self.calls = 0
        self.fail = False

    async def fetch_spot_prices(self, networks=None):
        self.calls += 1
        if self.fail:
            raise PriceSourceError("price source unavailable")
        networks = list(networks or Network)
        return {n: self.prices[n] for n in networks if n in self.prices}


class FakeGateway:
    """In-memory stand-in for the payment gateway microservice."""

    def __init__(self):
        self.statuses: dict[str, SessionStatus] = {}
        self.created: list[dict] = []
        self.cancelled: list[str] = []
        self.fail_create = False
        self.available = True

    async def create_session(self, user_id, network, amount, metadata=None):
        if self.fail_create:
            raise GatewayError("gateway down", status_code=503)
        session_id = f"sess-{uuid.uuid4().hex[:12]}"
        self.created.append(
            {"user_id": user_id, "network": network, "amount": amount, "session_id": session_id}
        )
        self.statuses[session_id] = SessionStatus(
            status="pending", confirmations=0, tx_hash=None, received_amount_usd=None
        )
        return PaymentSession(
            session_id=session_id,
            payment_address=f"addr-{session_id}",
            expires_at=None,
        )

    def set_status(
        self,
        session_id: str,
        status: str,
        confirmations: int = 0,
        tx_hash: Optional[str] = None,
        received_amount_usd: Optional[Decimal] = None,
    ) -> None:
        self.statuses[session_id] = SessionStatus(
            status=status,
            confirmations=confirmations,
            tx_hash=tx_hash,
            received_amount_usd=received_amount_usd,
        )

    async def get_session_status(self, session_id):
        if session_id not in self.statuses:
            raise GatewayError("unknown session", status_code=404)
        return self.statuses[session_id]

    async def cancel_session(self, session_id):
        self.cancelled.append(session_id)

    async def is_available(self):
        return self.available


@pytest.fixture
def price_source() -> FakePriceSource:
    return FakePriceSource()


@pytest.fixture
def oracle(price_source) -> RateOracle:
    return RateOracle(
        cache=RateCache(ttl_seconds=60), price_source=price_source, staleness_seconds=300
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def webhook_secret() -> str:
    return WEBHOOK_SECRET


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


MEMBER_USER = AuthUser(user_id="member-auth-1", email="member@test.com", role="authenticated")
ADMIN_USER = AuthUser(user_id="admin-auth-1", email="admin@test.com", role="admin")


class AuthState:
    """Who the overridden ``get_current_user`` reports as the caller."""

    def __init__(self):
        self.user = MEMBER_USER

    def as_member(self, user: AuthUser = MEMBER_USER) -> None:
        self.user = user

    def as_admin(self) -> None:
        self.user = ADMIN_USER


@pytest.fixture
def auth_state() -> AuthState:
    return AuthState()


@pytest_asyncio.fixture
async def ledger_client(
    session_factory, oracle, gateway, auth_state
) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient bound to the ledger app with DB, auth, rate oracle
    and payment gateway dependencies overridden.
    """
    from libs.auth.dependencies import get_current_user
    from libs.db.session import get_async_db
    from services.ledger_service.app.main import app
    from services.ledger_service.dependencies import (
        get_payment_gateway,
        get_rate_oracle,
    )

    async def _db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_db] = _db
    app.dependency_overrides[get_current_user] = lambda: auth_state.user
    app.dependency_overrides[get_rate_oracle] = lambda: oracle
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
