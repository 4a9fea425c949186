"""
Shared pytest fixtures.

Provides an in-memory SQLite database, fake Stripe / Supabase providers and
a TestClient wired to them through FastAPI dependency overrides.
"""

from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cortex.config.billing import PriceCatalog
from cortex.database.session import enable_sqlite_foreign_keys, get_db_session
from cortex.db_base import Base
from cortex.entitlements.tiers import Tier
from cortex.middleware import rate_limit

from tests.fakes import (
    ELITE_PRICE,
    FINANCE_PRO_PRICE,
    FakeBillingProvider,
    FakeIdentityProvider,
)

# ============================================================================
# DATABASE
# ============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    import cortex.models  # noqa: F401

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


# ============================================================================
# PROVIDERS & APP
# ============================================================================

@pytest.fixture
def identity():
    return FakeIdentityProvider()


@pytest.fixture
def billing():
    return FakeBillingProvider()


@pytest.fixture
def prices():
    return PriceCatalog(prices={FINANCE_PRO_PRICE: Tier.FINANCE_PRO, ELITE_PRICE: Tier.ELITE})


@pytest.fixture(autouse=True)
def fresh_rate_window_store(monkeypatch):
    """Every test starts with empty counters and rate limiting enabled."""
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "true")
    rate_limit.set_rate_window_store(rate_limit.InMemoryRateWindowStore())
    yield
    rate_limit.set_rate_window_store(None)


@pytest.fixture
def app(db_session, identity, billing, prices):
    from cortex.api.dependencies.providers import (
        get_billing_provider,
        get_identity_remover,
        get_price_catalog,
    )
    from cortex.main import create_app
    from cortex.platform.identity_gate import get_identity_provider

    app = create_app(create_tables=False)

    def _db():
        yield db_session

    app.dependency_overrides[get_db_session] = _db
    app.dependency_overrides[get_identity_provider] = lambda: identity
    app.dependency_overrides[get_identity_remover] = lambda: identity
    app.dependency_overrides[get_billing_provider] = lambda: billing
    app.dependency_overrides[get_price_catalog] = lambda: prices
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_profile(db_session):
    """Insert a profile row directly."""
    from cortex.models.user_profile import UserProfile

    def _make(
        user_id: str = "user-1",
        tier: Tier = Tier.FREE,
        subscription_status: Optional[str] = None,
        stripe_customer_id: Optional[str] = None,
        stripe_subscription_id: Optional[str] = None,
    ) -> UserProfile:
        profile = UserProfile(
            id=user_id,
            email=f"{user_id}@example.com",
            tier=tier,
            subscription_status=subscription_status,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
        )
        db_session.add(profile)
        db_session.commit()
        return profile

    return _make
