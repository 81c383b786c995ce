"""Tests for the webhooks blueprint and Stripe event reconciliation.

Covers:
- Webhook signature verification (missing, invalid, tampered, expired)
- checkout.session.completed -> one order, even when redelivered
- customer.subscription.created / updated -> upsert by customer
- customer.subscription.deleted -> soft delete, missing row tolerated
- Payment method lookup failure doesn't fail the upsert
- Unknown event types (acknowledged, no writes)
- Reconciliation failure -> 500 so Stripe retries
"""

import json
import time
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from conftest import event_body, sign_payload
from paygate.extensions import db
from paygate.models.billing import CustomerMapping, Subscription
from paygate.models.order import Order


def _checkout_session(session_id="cs_test_abc", **overrides):
    obj = {
        "id": session_id,
        "object": "checkout.session",
        "customer": "cus_buyer",
        "payment_intent": "pi_123",
        "amount_subtotal": 75000,
        "amount_total": 75000,
        "currency": "eur",
        "payment_status": "paid",
        "mode": "payment",
    }
    obj.update(overrides)
    return obj


def _subscription(status="active", customer="cus_sub", **overrides):
    obj = {
        "id": "sub_123",
        "object": "subscription",
        "customer": customer,
        "status": status,
        "current_period_start": 1767225600,  # 2026-01-01
        "current_period_end": 1769904000,    # 2026-02-01
        "cancel_at_period_end": False,
        "default_payment_method": None,
        "items": {"data": [{"price": {"id": "price_monthly_test"}}]},
    }
    obj.update(overrides)
    return obj


def _db_counts():
    return (
        Order.query.count(),
        Subscription.query.count(),
        CustomerMapping.query.count(),
    )


class TestWebhookSignature:
    """Tests for webhook signature validation."""

    def test_missing_signature_returns_400(self, client):
        """POST /stripe/webhooks without signature -> 400."""
        resp = client.post(
            "/stripe/webhooks",
            data=event_body("checkout.session.completed", _checkout_session()),
            content_type="application/json",
        )
        assert resp.status_code == 400
        assert resp.get_json() == {"error": "No signature provided"}
        assert Order.query.count() == 0

    def test_invalid_signature_returns_400(self, client):
        resp = client.post(
            "/stripe/webhooks",
            data=event_body("checkout.session.completed", _checkout_session()),
            content_type="application/json",
            headers={"Stripe-Signature": "t=123,v1=deadbeef"},
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"].startswith("Webhook Error")

    def test_malformed_signature_header_returns_400(self, client):
        resp = client.post(
            "/stripe/webhooks",
            data=b"{}",
            content_type="application/json",
            headers={"Stripe-Signature": "garbage"},
        )
        assert resp.status_code == 400

    def test_tampered_body_is_rejected_without_writes(self, client):
        """Valid signature for the original bytes, one byte changed in transit."""
        body = event_body("checkout.session.completed", _checkout_session())
        signature = sign_payload(body)
        tampered = body.replace(b"75000", b"75001", 1)
        assert tampered != body

        resp = client.post(
            "/stripe/webhooks",
            data=tampered,
            content_type="application/json",
            headers={"Stripe-Signature": signature},
        )
        assert resp.status_code == 400
        assert _db_counts() == (0, 0, 0)

    def test_wrong_secret_is_rejected(self, client):
        body = event_body("checkout.session.completed", _checkout_session())
        resp = client.post(
            "/stripe/webhooks",
            data=body,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(body, secret="whsec_other")},
        )
        assert resp.status_code == 400

    def test_expired_timestamp_is_rejected(self, client):
        body = event_body("checkout.session.completed", _checkout_session())
        old = int(time.time()) - 3600
        resp = client.post(
            "/stripe/webhooks",
            data=body,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(body, timestamp=old)},
        )
        assert resp.status_code == 400

    def test_signature_checked_on_raw_bytes(self, client):
        """Whitespace Stripe sent is part of the signed payload; it must verify as-is."""
        body = json.dumps(
            {"id": "evt_ws", "type": "invoice.paid", "data": {"object": {}}},
            indent=4,
        ).encode()
        resp = client.post(
            "/stripe/webhooks",
            data=body,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(body)},
        )
        assert resp.status_code == 200

    def test_signed_non_object_body_is_rejected(self, client):
        body = b"[1, 2, 3]"
        resp = client.post(
            "/stripe/webhooks",
            data=body,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(body)},
        )
        assert resp.status_code == 400


class TestCheckoutCompleted:
    """Tests for checkout.session.completed webhook."""

    def test_creates_order(self, post_event):
        resp = post_event("checkout.session.completed", _checkout_session())
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "status": "processed"}

        order = Order.query.one()
        assert order.checkout_session_id == "cs_test_abc"
        assert order.payment_intent_id == "pi_123"
        assert order.external_customer_id == "cus_buyer"
        assert order.amount_subtotal == 75000
        assert order.amount_total == 75000
        assert order.currency == "eur"
        assert order.payment_status == "paid"
        assert order.status == "completed"

    def test_redelivery_creates_one_order(self, post_event):
        """Same event twice (Stripe retry) -> exactly one order row."""
        first = post_event("checkout.session.completed", _checkout_session())
        second = post_event("checkout.session.completed", _checkout_session())
        assert first.status_code == 200
        assert second.status_code == 200
        assert Order.query.count() == 1

    def test_same_session_new_event_id_still_one_order(self, post_event):
        post_event("checkout.session.completed", _checkout_session(), event_id="evt_a")
        post_event("checkout.session.completed", _checkout_session(), event_id="evt_b")
        assert Order.query.count() == 1

    def test_expanded_payment_intent_and_defaults(self, post_event):
        obj = _checkout_session(
            payment_intent={"id": "pi_expanded", "object": "payment_intent"},
            amount_subtotal=None,
            amount_total=None,
            currency=None,
            payment_status=None,
        )
        post_event("checkout.session.completed", obj)

        order = Order.query.one()
        assert order.payment_intent_id == "pi_expanded"
        assert order.amount_subtotal == 0
        assert order.amount_total == 0
        assert order.currency == "usd"
        assert order.payment_status == "unpaid"

    def test_subscription_mode_records_order_only(self, post_event):
        obj = _checkout_session(mode="subscription", payment_intent=None, subscription="sub_123")
        resp = post_event("checkout.session.completed", obj)
        assert resp.status_code == 200
        assert Order.query.one().payment_intent_id is None
        assert Subscription.query.count() == 0

    def test_session_without_customer_is_acknowledged(self, post_event):
        resp = post_event("checkout.session.completed", _checkout_session(customer=None))
        assert resp.status_code == 200
        assert Order.query.count() == 0


class TestSubscriptionUpsert:
    """Tests for customer.subscription.created / updated webhooks."""

    def test_created_fills_placeholder(self, post_event, gateway):
        db.session.add(Subscription(external_customer_id="cus_sub", status="not_started"))
        db.session.commit()

        resp = post_event("customer.subscription.created", _subscription(status="active"))
        assert resp.status_code == 200

        sub = Subscription.query.one()
        assert sub.subscription_id == "sub_123"
        assert sub.price_id == "price_monthly_test"
        assert sub.status == "active"
        assert sub.current_period_start.replace(tzinfo=timezone.utc) == (
            datetime(2026, 1, 1, tzinfo=timezone.utc)
        )
        assert sub.current_period_end.replace(tzinfo=timezone.utc) == (
            datetime(2026, 2, 1, tzinfo=timezone.utc)
        )

    def test_upsert_without_placeholder_inserts(self, post_event, gateway):
        post_event("customer.subscription.updated", _subscription())
        assert Subscription.query.one().status == "active"

    def test_last_applied_status_wins(self, post_event, gateway):
        """Two updates for one customer -> one row, status of the latest."""
        post_event("customer.subscription.updated", _subscription(status="active"), event_id="evt_1")
        post_event("customer.subscription.updated", _subscription(status="past_due"), event_id="evt_2")

        subs = Subscription.query.all()
        assert len(subs) == 1
        assert subs[0].status == "past_due"

    def test_period_read_from_items_on_newer_api(self, post_event, gateway):
        obj = _subscription(current_period_start=None, current_period_end=None)
        obj["items"]["data"][0]["current_period_end"] = 1769904000
        post_event("customer.subscription.updated", obj)

        sub = Subscription.query.one()
        assert sub.current_period_start is None
        assert sub.current_period_end.replace(tzinfo=timezone.utc) == (
            datetime(2026, 2, 1, tzinfo=timezone.utc)
        )

    def test_card_details_from_default_payment_method(self, post_event, gateway):
        gateway.payment_methods["pm_visa"] = SimpleNamespace(
            id="pm_visa", card=SimpleNamespace(brand="visa", last4="4242")
        )
        post_event(
            "customer.subscription.updated",
            _subscription(default_payment_method="pm_visa", cancel_at_period_end=True),
        )

        sub = Subscription.query.one()
        assert sub.payment_method_brand == "visa"
        assert sub.payment_method_last4 == "4242"
        assert sub.cancel_at_period_end is True

    def test_payment_method_lookup_failure_still_upserts(self, post_event, gateway):
        resp = post_event(
            "customer.subscription.updated",
            _subscription(default_payment_method={"id": "pm_missing"}),
        )
        assert resp.status_code == 200

        sub = Subscription.query.one()
        assert sub.status == "active"
        assert sub.payment_method_brand is None
        assert sub.payment_method_last4 is None

    def test_expanded_customer_object(self, post_event, gateway):
        post_event(
            "customer.subscription.updated",
            _subscription(customer={"id": "cus_expanded", "object": "customer"}),
        )
        assert Subscription.query.one().external_customer_id == "cus_expanded"


class TestSubscriptionDeleted:
    """Tests for customer.subscription.deleted webhook."""

    def test_soft_deletes_row(self, post_event):
        db.session.add(Subscription(external_customer_id="cus_sub", subscription_id="sub_123", status="active"))
        db.session.commit()

        resp = post_event("customer.subscription.deleted", _subscription(status="canceled"))
        assert resp.status_code == 200

        sub = Subscription.query.one()
        assert sub.status == "canceled"
        assert sub.deleted_at is not None

    def test_redelivery_keeps_first_deleted_at(self, post_event):
        db.session.add(Subscription(external_customer_id="cus_sub", status="active"))
        db.session.commit()

        post_event("customer.subscription.deleted", _subscription(status="canceled"))
        first = Subscription.query.one().deleted_at
        post_event("customer.subscription.deleted", _subscription(status="canceled"))
        assert Subscription.query.one().deleted_at == first

    def test_missing_row_is_not_an_error(self, post_event):
        resp = post_event("customer.subscription.deleted", _subscription(status="canceled"))
        assert resp.status_code == 200
        assert Subscription.query.count() == 0

    def test_update_after_delete_keeps_deleted_at(self, post_event, gateway):
        db.session.add(Subscription(external_customer_id="cus_sub", status="active"))
        db.session.commit()

        post_event("customer.subscription.deleted", _subscription(status="canceled"), event_id="evt_del")
        post_event("customer.subscription.updated", _subscription(status="active"), event_id="evt_late")

        sub = Subscription.query.one()
        assert sub.deleted_at is not None
        assert sub.status == "active"


class TestUnhandledEvents:

    def test_unknown_type_acknowledged_without_writes(self, post_event):
        resp = post_event("invoice.paid", {"id": "in_123", "customer": "cus_buyer"})
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True, "status": "ignored"}
        assert _db_counts() == (0, 0, 0)


class TestReconciliationFailure:

    @patch("paygate.services.reconciler.Order")
    def test_database_error_returns_500(self, mock_order, post_event):
        mock_order.query.filter_by.side_effect = OperationalError(
            "SELECT", {}, Exception("database is locked")
        )
        resp = post_event("checkout.session.completed", _checkout_session())
        assert resp.status_code == 500
        assert resp.get_json() == {"error": "Internal server error"}

    def test_malformed_reconciled_event_returns_500(self, post_event):
        resp = post_event("checkout.session.completed", {"object": "checkout.session"})
        assert resp.status_code == 500
