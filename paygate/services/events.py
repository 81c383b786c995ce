"""Typed Stripe webhook events.

The webhook payload is untrusted JSON with a loose shape. parse_event()
turns it into one of a closed set of event types; anything we don't
reconcile becomes UnhandledEvent, which handlers acknowledge and ignore.

    checkout.session.completed       -> CheckoutCompleted
    customer.subscription.created    -> SubscriptionChanged
    customer.subscription.updated    -> SubscriptionChanged
    customer.subscription.deleted    -> SubscriptionDeleted
    (anything else)                  -> UnhandledEvent
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    session_id: str
    customer_id: Optional[str]
    payment_intent_id: Optional[str]
    amount_subtotal: int
    amount_total: int
    currency: str
    payment_status: str
    mode: Optional[str]


@dataclass(frozen=True)
class SubscriptionChanged:
    event_id: str
    event_type: str
    subscription_id: str
    customer_id: Optional[str]
    status: str
    price_id: Optional[str]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool
    default_payment_method_id: Optional[str]


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    subscription_id: Optional[str]
    customer_id: Optional[str]


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: Optional[str]
    event_type: Optional[str]


def _id_of(value):
    """Stripe fields like ``customer`` are either an ID or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _from_unix(ts):
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def _first_item(sub_data):
    items = sub_data.get("items") or {}
    data = items.get("data") or []
    return data[0] if data else {}


def _extract_period(sub_data, key):
    """Read current_period_start / current_period_end.

    Newer Stripe API versions moved these from the subscription top level
    to items.data[0]; check both.
    """
    ts = sub_data.get(key)
    if ts is None:
        ts = _first_item(sub_data).get(key)
    return _from_unix(ts)


def _parse_checkout_completed(event_id, obj):
    if not obj.get("id"):
        raise ValueError("checkout.session.completed payload has no session id")
    return CheckoutCompleted(
        event_id=event_id,
        session_id=obj["id"],
        customer_id=_id_of(obj.get("customer")),
        payment_intent_id=_id_of(obj.get("payment_intent")),
        amount_subtotal=obj.get("amount_subtotal") or 0,
        amount_total=obj.get("amount_total") or 0,
        currency=(obj.get("currency") or "usd").lower(),
        payment_status=obj.get("payment_status") or "unpaid",
        mode=obj.get("mode"),
    )


def _parse_subscription_changed(event_id, event_type, obj):
    if not obj.get("id"):
        raise ValueError(f"{event_type} payload has no subscription id")
    price = _first_item(obj).get("price") or {}
    return SubscriptionChanged(
        event_id=event_id,
        event_type=event_type,
        subscription_id=obj["id"],
        customer_id=_id_of(obj.get("customer")),
        status=obj.get("status") or "incomplete",
        price_id=_id_of(price),
        current_period_start=_extract_period(obj, "current_period_start"),
        current_period_end=_extract_period(obj, "current_period_end"),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end", False)),
        default_payment_method_id=_id_of(obj.get("default_payment_method")),
    )


def _parse_subscription_deleted(event_id, obj):
    return SubscriptionDeleted(
        event_id=event_id,
        subscription_id=obj.get("id"),
        customer_id=_id_of(obj.get("customer")),
    )


def parse_event(payload):
    """Build a typed event from a verified webhook payload (a dict).

    Raises ValueError if a reconciled event type is missing the fields we
    key on.
    """
    event_id = payload.get("id")
    event_type = payload.get("type")
    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        obj = {}

    if event_type == "checkout.session.completed":
        return _parse_checkout_completed(event_id, obj)
    if event_type in ("customer.subscription.created", "customer.subscription.updated"):
        return _parse_subscription_changed(event_id, event_type, obj)
    if event_type == "customer.subscription.deleted":
        return _parse_subscription_deleted(event_id, obj)
    return UnhandledEvent(event_id=event_id, event_type=event_type)
