"""Shared test fixtures for the payments test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, rate limits off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: product catalog + a listing owned by the test user
- auth_user: Supabase Auth lookup patched to accept any bearer token
- stripe_client: per-request StripeClient replaced by a MagicMock
- send_webhook: posts a correctly signed Stripe event
"""

import hashlib
import hmac
import json
import time
from unittest.mock import MagicMock, patch

import pytest

from ollync import create_app
from ollync.extensions import db as _db
from ollync.models.payment import PaymentProduct
from ollync.models.post import Post

USER_ID = "5f0c7a8e-1b2d-4c3e-9f10-aa11bb22cc33"
USER_EMAIL = "creator@ollync.test"
AUTH_HEADERS = {"Authorization": "Bearer test-access-token"}


def compute_signature(timestamp, payload, secret):
    """Hex HMAC-SHA256 of "{timestamp}.{payload}", as Stripe signs."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def sign_payload(payload, secret, timestamp=None):
    """Build the Stripe-Signature header Stripe would send for `payload`."""
    timestamp = int(timestamp if timestamp is not None else time.time())
    return f"t={timestamp},v1={compute_signature(timestamp, payload, secret)}"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed the catalog and one listing.

    Returns a dict of plain values so tests can use them across contexts.
    """
    products = [
        PaymentProduct(code="BOOST_24H", name="Boost 24h", amount_cents=299, currency="eur"),
        PaymentProduct(
            code="BOOST_7D",
            name="Boost 7 days",
            description="Top of the feed for a week",
            amount_cents=999,
            currency="eur",
        ),
        PaymentProduct(code="BOOST_30D", name="Boost 30 days", amount_cents=2999, currency="eur"),
        PaymentProduct(
            code="SPONSOR_MONTH",
            name="Sponsored listing",
            amount_cents=4999,
            currency="eur",
            stripe_price_id="price_sponsor_test",
        ),
        PaymentProduct(code="CREDITS_10", name="10 credits", amount_cents=500, currency="eur"),
        PaymentProduct(
            code="BOOST_LEGACY", name="Legacy boost", amount_cents=199, currency="eur", active=False
        ),
    ]
    _db.session.add_all(products)

    post = Post(id="abc", user_id=USER_ID, title="Video editing for YouTubers")
    other_post = Post(id="not-mine", user_id="someone-else", title="Logo design")
    _db.session.add_all([post, other_post])
    _db.session.commit()

    return {
        "user_id": USER_ID,
        "user_email": USER_EMAIL,
        "product_ids": {p.code: p.id for p in products},
        "post_id": post.id,
        "other_post_id": other_post.id,
    }


@pytest.fixture
def auth_user():
    """Supabase Auth answers with the test user for any bearer token."""
    with patch("ollync.services.auth_service.requests.get") as mock_get:
        mock_get.return_value.status_code = 200
        mock_get.return_value.json.return_value = {"id": USER_ID, "email": USER_EMAIL}
        yield mock_get


@pytest.fixture
def stripe_client():
    """MagicMock standing in for the per-request stripe.StripeClient."""
    with patch("ollync.services.stripe_service.stripe.StripeClient") as mock_cls:
        client = MagicMock()
        client.v1.customers.create.return_value = MagicMock(id="cus_test_123")
        client.v1.checkout.sessions.create.return_value = MagicMock(
            id="cs_test_123",
            url="https://checkout.stripe.com/c/pay/cs_test_123",
        )
        mock_cls.return_value = client
        yield client


@pytest.fixture
def send_webhook(app, client):
    """Return a function that POSTs a signed event to the webhook endpoint."""

    def _send(event, secret=None, header=None, body=None):
        raw = body if body is not None else json.dumps(event)
        if header is None:
            header = sign_payload(raw, secret or app.config["STRIPE_WEBHOOK_SECRET"])
        return client.post(
            "/functions/v1/stripe-webhook",
            data=raw,
            content_type="application/json",
            headers={"Stripe-Signature": header},
        )

    return _send


def checkout_event(event_id, order_id, event_type="checkout.session.completed",
                   product_code="BOOST_7D", post_id=None, session_id="cs_test_123",
                   payment_intent="pi_test_123"):
    """Build a Stripe checkout.session.* event envelope."""
    metadata = {
        "order_id": order_id,
        "user_id": USER_ID,
        "product_code": product_code,
    }
    if post_id:
        metadata["post_id"] = post_id
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_intent": payment_intent,
                "payment_status": "paid" if event_type.endswith("completed") else "unpaid",
                "metadata": metadata,
            }
        },
    }


def make_order(product_code="BOOST_7D", status="pending", amount_cents=999, quantity=1,
               user_id=USER_ID, **kwargs):
    """Insert a PaymentOrder for `product_code` (seed_data must be loaded)."""
    from ollync.models.payment import PaymentOrder

    product = PaymentProduct.query.filter_by(code=product_code).first()
    order = PaymentOrder(
        user_id=user_id,
        product_id=product.id,
        product_code=product_code,
        amount_cents=amount_cents,
        currency="eur",
        quantity=quantity,
        status=status,
        stripe_customer_id="cus_test_123",
        stripe_checkout_session_id="cs_test_123",
        **kwargs,
    )
    _db.session.add(order)
    _db.session.commit()
    return order.id
