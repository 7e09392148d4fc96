"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import os
import sys
import time
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import fakeredis
import pytest
import stripe
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""
os.environ["FRONTEND_URL"] = "http://localhost:3000"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_billing_test"
os.environ["STRIPE_CONNECT_WEBHOOK_SECRET"] = "whsec_connect_test"
os.environ["STRIPE_PRO_PRODUCT_ID"] = "prod_pro"
os.environ["STRIPE_BUSINESS_PRODUCT_ID"] = "prod_business"
os.environ["STRIPE_PRO_MONTHLY_PRICE_ID"] = "price_pro_monthly"
os.environ["STRIPE_BUSINESS_MONTHLY_PRICE_ID"] = "price_business_monthly"

from lemons.main import app  # noqa: E402
from lemons.db import redis as redis_module  # noqa: E402
from lemons.db.session import get_db  # noqa: E402
from lemons.models import Base  # noqa: E402
from lemons.models.account import Account, OnboardingStatus, SubscriptionTier  # noqa: E402
from lemons.models.offer import Offer, Package  # noqa: E402

BILLING_SECRET = "whsec_billing_test"
CONNECT_SECRET = "whsec_connect_test"
SELLER_STRIPE_ACCOUNT = "acct_seller123"


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
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Session store backed by fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "get_redis_client", return_value=fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked Redis"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    try:
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def login(client: TestClient, mock_redis):
    """Return a callable that signs the client in as the given account"""

    def _login(account: Account) -> TestClient:
        session_id = f"sess_{account.id}"
        redis_module.set_session(session_id, account.id, account.email)
        client.cookies.set("session_id", session_id)
        return client

    return _login


# ============================================================================
# DOMAIN FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def seller(db_session: Session) -> Account:
    """A seller with a fully onboarded connected account on the pro tier"""
    account = Account(
        email="seller@example.com",
        country="DE",
        external_payment_account_id=SELLER_STRIPE_ACCOUNT,
        onboarding_status=OnboardingStatus.COMPLETE,
        subscription_tier=SubscriptionTier.PRO,
    )
    db_session.add(account)
    db_session.commit()
    db_session.refresh(account)
    return account


@pytest.fixture(scope="function")
def buyer(db_session: Session) -> Account:
    account = Account(email="buyer@example.com")
    db_session.add(account)
    db_session.commit()
    db_session.refresh(account)
    return account


@pytest.fixture(scope="function")
def new_account(db_session: Session) -> Account:
    """An account that has never started Connect onboarding"""
    account = Account(email="newseller@example.com", country="FR")
    db_session.add(account)
    db_session.commit()
    db_session.refresh(account)
    return account


@pytest.fixture(scope="function")
def offer(db_session: Session, seller: Account) -> Offer:
    offer = Offer(slug="logo-design", title="Logo design", currency_code="EUR", creator_id=seller.id)
    db_session.add(offer)
    db_session.commit()
    db_session.refresh(offer)
    return offer


@pytest.fixture(scope="function")
def package(db_session: Session, offer: Offer) -> Package:
    package = Package(offer_id=offer.id, name="Standard", price_cents=10000)
    db_session.add(package)
    db_session.commit()
    db_session.refresh(package)
    return package


# ============================================================================
# STRIPE
# ============================================================================

@pytest.fixture(scope="function", autouse=True)
def auto_mock_stripe():
    """Automatically mock the Stripe SDK used by the gateway so no test reaches Stripe.

    Webhook signature verification is not mocked: tests sign payloads with
    real HMAC and the SDK verifies them.
    """
    with patch("lemons.services.stripe_service.stripe") as mock_stripe_module:
        # Keep real exception classes so except clauses still match
        mock_stripe_module.StripeError = stripe.StripeError

        mock_stripe_module.PaymentIntent.retrieve.return_value = {
            "id": "pi_test123",
            "status": "succeeded",
            "amount": 10000,
            "currency": "eur",
            "application_fee_amount": 700,
        }
        mock_stripe_module.checkout.Session.create.return_value = {
            "id": "cs_test123",
            "url": "https://checkout.stripe.com/c/pay/cs_test123",
        }
        mock_stripe_module.Account.create.return_value = {"id": "acct_new123"}
        mock_stripe_module.Account.retrieve.return_value = {
            "id": SELLER_STRIPE_ACCOUNT,
            "charges_enabled": True,
            "payouts_enabled": True,
            "details_submitted": True,
        }
        mock_stripe_module.Account.create_login_link.return_value = {
            "url": "https://connect.stripe.com/express/login"
        }
        mock_stripe_module.AccountLink.create.return_value = {
            "url": "https://connect.stripe.com/setup/e/acct_new123"
        }
        mock_stripe_module.Customer.create.return_value = {"id": "cus_test123"}
        mock_stripe_module.billing_portal.Session.create.return_value = {
            "url": "https://billing.stripe.com/p/session/test"
        }

        yield mock_stripe_module


def sign_payload(payload: str, secret: str, timestamp: int = None) -> str:
    """Build a stripe-signature header the way Stripe does"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture(scope="function")
def signed():
    """Return a callable producing (payload, stripe-signature header) for an event"""

    def _signed(event: dict, secret: str = BILLING_SECRET, timestamp: int = None):
        payload = json.dumps(event)
        return payload, sign_payload(payload, secret, timestamp)

    return _signed


@pytest.fixture(scope="function")
def post_webhook(client: TestClient, signed):
    """Return a callable that posts a signed event to the webhook endpoint"""

    def _post(event: dict, secret: str = BILLING_SECRET):
        payload, header = signed(event, secret)
        return client.post(
            "/api/stripe/webhooks",
            content=payload,
            headers={"stripe-signature": header, "content-type": "application/json"},
        )

    return _post


def make_event(event_type: str, obj: dict = None, event_id: str = "evt_test123", **extra) -> dict:
    event = {"id": event_id, "object": "event", "type": event_type, "created": int(time.time())}
    if obj is not None:
        event["data"] = {"object": obj}
    event.update(extra)
    return event


@pytest.fixture(scope="function")
def event_factory():
    return make_event


@pytest.fixture(scope="function")
def checkout_session_factory(seller: Account, offer: Offer, package: Package):
    """Return a callable building a completed checkout session payload"""

    def _session(session_id: str = "cs_test123", payment_intent: str = "pi_test123", **overrides) -> dict:
        session = {
            "id": session_id,
            "object": "checkout.session",
            "mode": "payment",
            "payment_intent": payment_intent,
            "payment_status": "paid",
            "amount_total": 10000,
            "currency": "eur",
            "customer_details": {"email": "guest@example.com"},
            "metadata": {
                "seller_id": seller.id,
                "offer_id": offer.id,
                "package_id": package.id,
                "buyer_id": "",
            },
        }
        session.update(overrides)
        return session

    return _session


@pytest.fixture(scope="function")
def subscription_factory():
    """Return a callable building a subscription payload"""

    def _subscription(
        account_id,
        status: str = "active",
        product: str = "prod_pro",
        subscription_id: str = "sub_test123",
        **overrides
    ) -> dict:
        subscription = {
            "id": subscription_id,
            "object": "subscription",
            "status": status,
            "customer": "cus_test123",
            "cancel_at_period_end": False,
            "metadata": {"account_id": account_id} if account_id else {},
            "items": {
                "object": "list",
                "data": [{
                    "id": "si_test123",
                    "current_period_end": 1767225600,
                    "price": {"id": "price_pro_monthly", "product": product},
                }],
            },
        }
        subscription.update(overrides)
        return subscription

    return _subscription
