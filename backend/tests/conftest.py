"""Shared pytest fixtures for test suite"""
import json
import pytest
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Generator
from unittest.mock import patch
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
import fakeredis

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from billing_webhooks.main import app
from billing_webhooks.core.config import settings
from billing_webhooks.db.session import get_db
from billing_webhooks.db import redis as redis_module
from billing_webhooks.models import (
    Base, Organization, Plan, Addon, Subscription, SubscriptionStatus,
    SubscriptionAddon, AddonStatus
)
from billing_webhooks.services.price_registry import StripeRegistry, PLAN, ADDON
from billing_webhooks.services.signature import build_signature_header


TEST_WEBHOOK_SECRET = "whsec_test_secret"

# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    # Create session
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function", autouse=True)
def mock_redis():
    """Mock Redis client using fakeredis (webhook locks)"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, '_client', fake_redis):
        yield fake_redis


@pytest.fixture(scope="function", autouse=True)
def webhook_secret():
    """Configure a known signing secret for every test"""
    with patch.object(settings, 'STRIPE_WEBHOOK_SECRET', TEST_WEBHOOK_SECRET):
        yield TEST_WEBHOOK_SECRET


@pytest.fixture(scope="function", autouse=True)
def price_registry():
    """Seed the Stripe price registry with the test catalogue"""
    StripeRegistry.clear()
    StripeRegistry.register("price_starter", PLAN, "starter")
    StripeRegistry.register("price_professional", PLAN, "professional")
    StripeRegistry.register("price_white_label", ADDON, "white-label")
    StripeRegistry.register("price_extra_bot", ADDON, "extra-bot")
    yield StripeRegistry
    StripeRegistry.clear()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked Redis"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db

    try:
        # Disable OpenTelemetry and startup side effects in tests
        with patch('billing_webhooks.core.otel.initialize_otel', return_value=False):
            with patch('billing_webhooks.core.otel.setup_otel_logging', return_value=False):
                with patch('billing_webhooks.main.init_db'):
                    with patch.object(StripeRegistry, 'load_from_settings', return_value=0):
                        with patch.object(StripeRegistry, 'sync', return_value=0):
                            with TestClient(app) as test_client:
                                yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def billing_setup(db_session: Session) -> SimpleNamespace:
    """Organization with an ACTIVE starter subscription sub_1 and one active addon"""
    org = Organization(name="Acme Inc", stripe_customer_id="cus_acme")
    starter = Plan(slug="starter", name="Starter", stripe_price_id="price_starter")
    professional = Plan(slug="professional", name="Professional", stripe_price_id="price_professional")
    white_label = Addon(slug="white-label", name="White label")
    extra_bot = Addon(slug="extra-bot", name="Extra bot", is_quantity_based=True)
    db_session.add_all([org, starter, professional, white_label, extra_bot])
    db_session.commit()

    subscription = Subscription(
        organization_id=org.id,
        plan_id=starter.id,
        stripe_subscription_id="sub_1",
        stripe_customer_id="cus_acme",
        status=SubscriptionStatus.ACTIVE.value
    )
    db_session.add(subscription)
    db_session.commit()

    db_session.add(SubscriptionAddon(
        subscription_id=subscription.id,
        addon_id=white_label.id,
        quantity=1,
        status=AddonStatus.ACTIVE.value
    ))
    db_session.commit()
    db_session.refresh(subscription)

    return SimpleNamespace(
        organization=org,
        subscription=subscription,
        starter=starter,
        professional=professional,
        white_label=white_label,
        extra_bot=extra_bot
    )


def make_event(event_id: str, event_type: str, obj: dict, created: int = 1760000000) -> dict:
    """Stripe event envelope"""
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": created,
        "data": {"object": obj}
    }


def subscription_object(
    subscription_id: str = "sub_1",
    status: str = "active",
    items: list = None,
    **extra
) -> dict:
    obj = {
        "id": subscription_id,
        "object": "subscription",
        "customer": "cus_acme",
        "status": status,
        "cancel_at_period_end": False,
        "current_period_start": 1760000000,
        "current_period_end": 1762592000,
        "items": {"data": items if items is not None else [
            {"price": {"id": "price_starter"}, "quantity": 1}
        ]},
    }
    obj.update(extra)
    return obj


def invoice_object(
    invoice_id: str = "in_1",
    subscription_id: str = "sub_1",
    currency: str = "eur",
    **amounts
) -> dict:
    obj = {
        "id": invoice_id,
        "object": "invoice",
        "subscription": subscription_id,
        "currency": currency,
        "payment_intent": "pi_1",
    }
    obj.update(amounts)
    return obj


@pytest.fixture(scope="function")
def post_webhook(client: TestClient, webhook_secret: str):
    """Send a correctly signed webhook delivery"""
    def _post(event: dict, path: str = "/api/billing/webhook", secret: str = None, timestamp: int = None):
        payload = json.dumps(event).encode("utf-8")
        header = build_signature_header(payload, secret or webhook_secret, timestamp=timestamp)
        return client.post(
            path,
            content=payload,
            headers={"stripe-signature": header, "content-type": "application/json"}
        )
    return _post
