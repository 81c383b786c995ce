"""Shared test fixtures for the PayGate test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- gateway: FakeStripeGateway installed in app.extensions
- auth_as: patch Supabase Auth so a bearer token resolves to a user
- sign_payload: build a valid Stripe-Signature header for a raw body
"""

import hashlib
import hmac
import itertools
import json
import time
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import stripe

from paygate import create_app
from paygate.extensions import db as _db
from paygate.services.stripe_gateway import EXTENSION_KEY

WEBHOOK_SECRET = "whsec_test_fake"


class FakeStripeGateway:
    """In-memory stand-in for StripeGateway. Records every call."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.created_customers = []
        self.deleted_customers = []
        self.sessions = []
        self.payment_methods = {}
        self.fail_delete = False
        self.fail_session = False

    def create_customer(self, email=None, metadata=None):
        customer_id = f"cus_test_{next(self._ids)}"
        self.created_customers.append(
            {"id": customer_id, "email": email, "metadata": metadata}
        )
        return SimpleNamespace(id=customer_id)

    def delete_customer(self, customer_id):
        if self.fail_delete:
            raise stripe.APIConnectionError("Stripe is unreachable")
        self.deleted_customers.append(customer_id)
        return SimpleNamespace(id=customer_id, deleted=True)

    def create_checkout_session(self, **params):
        if self.fail_session:
            raise stripe.APIConnectionError("Stripe is unreachable")
        session_id = f"cs_test_{next(self._ids)}"
        self.sessions.append(params)
        return SimpleNamespace(
            id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}"
        )

    def retrieve_payment_method(self, payment_method_id):
        if payment_method_id not in self.payment_methods:
            raise stripe.InvalidRequestError(
                f"No such PaymentMethod: '{payment_method_id}'", param="id"
            )
        return self.payment_methods[payment_method_id]

    def retrieve_price(self, price_id):
        return SimpleNamespace(id=price_id, livemode=False, recurring=None)


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
def gateway(app):
    """Swap the app's Stripe gateway for an in-memory fake."""
    original = app.extensions[EXTENSION_KEY]
    fake = FakeStripeGateway()
    app.extensions[EXTENSION_KEY] = fake
    yield fake
    app.extensions[EXTENSION_KEY] = original


@pytest.fixture
def auth_as():
    """Make Supabase Auth resolve any bearer token to the given user.

    Usage: auth_as("user-1", "a@b.com"); auth_as(status=401) for a rejected token.
    """
    patcher = patch("paygate.services.auth_service.requests.get")
    mock_get = patcher.start()

    def _configure(user_id=None, email=None, status=200):
        resp = MagicMock()
        resp.status_code = status
        resp.json.return_value = {"id": user_id, "email": email} if user_id else {}
        mock_get.return_value = resp
        return mock_get

    yield _configure
    patcher.stop()


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Return a Stripe-Signature header value (v1 scheme) for raw bytes."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def event_body(event_type, obj, event_id="evt_test_1"):
    """Serialize a webhook event the way Stripe sends it."""
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": obj},
    }).encode()


@pytest.fixture
def post_event(client):
    """POST a correctly signed event to the webhook endpoint."""

    def _post(event_type, obj, event_id="evt_test_1"):
        body = event_body(event_type, obj, event_id)
        return client.post(
            "/stripe/webhooks",
            data=body,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(body)},
        )

    return _post
