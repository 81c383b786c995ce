"""Reconciler — the only code that writes customer_mappings, orders and
subscriptions.

Responsible for:
- Persisting and retiring customer mappings for the checkout flow
- Writing the not_started subscription placeholder at checkout time
- Applying Stripe webhook events to orders and subscriptions

Every webhook write is keyed by a natural Stripe identifier
(checkout_session_id, external_customer_id) and is safe to apply more than
once. Concurrent duplicate inserts surface as IntegrityError from the
unique constraints and are folded into the existing row.

Ordering: last write wins, by arrival. An "updated" that arrives after
"deleted" rewrites the synced fields but never clears deleted_at.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from paygate.extensions import db
from paygate.models.billing import CustomerMapping, Subscription
from paygate.models.order import Order
from paygate.services.stripe_gateway import get_gateway

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def _commit():
    """Commit, rolling back first if the commit fails."""
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise


# ──────────────────────────────────────────────
# Customer mappings
# ──────────────────────────────────────────────

def find_live_mapping(local_user_id):
    """Return the user's non-deleted CustomerMapping, or None."""
    if local_user_id is None:
        return None
    return (
        CustomerMapping.query
        .filter_by(local_user_id=local_user_id, deleted_at=None)
        .order_by(CustomerMapping.created_at.asc())
        .first()
    )


def insert_customer_mapping(local_user_id, external_customer_id):
    """Persist a new live mapping (committed).

    Raises IntegrityError if the user already has a live mapping (the
    partial unique index on local_user_id), after rolling back.
    """
    mapping = CustomerMapping(
        local_user_id=local_user_id,
        external_customer_id=external_customer_id,
    )
    db.session.add(mapping)
    _commit()
    return mapping


def retire_live_mappings(local_user_id):
    """Soft-delete every live mapping for the user. Returns the count."""
    if local_user_id is None:
        return 0
    count = (
        CustomerMapping.query
        .filter_by(local_user_id=local_user_id, deleted_at=None)
        .update({"deleted_at": _now()}, synchronize_session=False)
    )
    _commit()
    if count:
        logger.info(f"Retired {count} live customer mapping(s) for user {local_user_id}")
    return count


def soft_delete_mapping(external_customer_id):
    """Soft-delete the mapping for a Stripe customer. No-op if absent."""
    mapping = CustomerMapping.query.filter_by(
        external_customer_id=external_customer_id
    ).first()
    if mapping is None or mapping.deleted_at is not None:
        return mapping
    mapping.deleted_at = _now()
    _commit()
    return mapping


def purge_stale_guest_mappings(older_than_days, dry_run=False):
    """Soft-delete guest mappings that never led to an order or subscription.

    Abandoned guest checkouts leave a mapping (and, for subscriptions, a
    not_started placeholder) behind. Returns the matching mappings.
    """
    cutoff = _now() - timedelta(days=older_than_days)

    has_order = (
        db.session.query(Order.id)
        .filter(Order.external_customer_id == CustomerMapping.external_customer_id)
        .exists()
    )
    has_subscription = (
        db.session.query(Subscription.id)
        .filter(
            Subscription.external_customer_id == CustomerMapping.external_customer_id,
            Subscription.status != "not_started",
        )
        .exists()
    )

    stale = (
        CustomerMapping.query
        .filter(
            CustomerMapping.local_user_id.is_(None),
            CustomerMapping.deleted_at.is_(None),
            CustomerMapping.created_at < cutoff,
            ~has_order,
            ~has_subscription,
        )
        .all()
    )

    if not dry_run and stale:
        now = _now()
        for mapping in stale:
            mapping.deleted_at = now
        _commit()
        logger.info(f"Purged {len(stale)} stale guest customer mapping(s)")

    return stale


# ──────────────────────────────────────────────
# Subscription placeholder (checkout time)
# ──────────────────────────────────────────────

def ensure_subscription_placeholder(external_customer_id):
    """Make sure a subscription row exists for this customer.

    A live row is left untouched. A soft-deleted row (an earlier, ended
    subscription of a reused customer) is reset to a fresh not_started
    placeholder. Returns the row (committed).
    """
    sub = Subscription.query.filter_by(
        external_customer_id=external_customer_id
    ).first()

    if sub is not None and sub.deleted_at is None:
        return sub

    if sub is None:
        sub = Subscription(
            external_customer_id=external_customer_id,
            status="not_started",
            cancel_at_period_end=False,
        )
        db.session.add(sub)
    else:
        sub.subscription_id = None
        sub.price_id = None
        sub.current_period_start = None
        sub.current_period_end = None
        sub.cancel_at_period_end = False
        sub.payment_method_brand = None
        sub.payment_method_last4 = None
        sub.status = "not_started"
        sub.deleted_at = None

    try:
        _commit()
    except IntegrityError:
        # Another request wrote the placeholder first.
        return Subscription.query.filter_by(
            external_customer_id=external_customer_id
        ).first()
    return sub


# ──────────────────────────────────────────────
# Webhook reconciliation
# ──────────────────────────────────────────────

def record_completed_checkout(event):
    """Handle checkout.session.completed: record the order exactly once."""
    if not event.customer_id:
        logger.warning(
            f"checkout.session.completed {event.session_id} has no customer, skipping"
        )
        return None

    existing = Order.query.filter_by(checkout_session_id=event.session_id).first()
    if existing:
        logger.info(f"Order for checkout session {event.session_id} already recorded")
        return existing

    if event.payment_status not in Order.PAYMENT_STATUSES:
        logger.warning(
            f"Checkout session {event.session_id} has unexpected payment_status "
            f"{event.payment_status!r}"
        )

    order = Order(
        checkout_session_id=event.session_id,
        payment_intent_id=event.payment_intent_id,
        external_customer_id=event.customer_id,
        amount_subtotal=event.amount_subtotal,
        amount_total=event.amount_total,
        currency=event.currency,
        payment_status=event.payment_status,
        status="completed",
    )
    db.session.add(order)
    try:
        _commit()
    except IntegrityError:
        logger.info(f"Order for checkout session {event.session_id} recorded concurrently")
        return Order.query.filter_by(checkout_session_id=event.session_id).first()

    if event.mode == "subscription":
        # Subscription state is owned by the customer.subscription.* events.
        logger.info(
            f"Subscription checkout {event.session_id} completed, "
            f"waiting for subscription events"
        )
    else:
        logger.info(f"Recorded order for checkout session {event.session_id}")
    return order


def _field(obj, name):
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _lookup_card(payment_method_id):
    """Return (brand, last4) for a payment method, or (None, None).

    Secondary lookup: failure is logged and never fails the upsert.
    """
    if not payment_method_id:
        return None, None
    try:
        payment_method = get_gateway().retrieve_payment_method(payment_method_id)
    except Exception as e:
        logger.error(f"Error retrieving payment method {payment_method_id}: {e}")
        return None, None

    card = _field(payment_method, "card")
    return _field(card, "brand"), _field(card, "last4")


def _apply_subscription_event(sub, event, brand, last4):
    sub.subscription_id = event.subscription_id
    sub.price_id = event.price_id
    sub.current_period_start = event.current_period_start
    sub.current_period_end = event.current_period_end
    sub.cancel_at_period_end = event.cancel_at_period_end
    sub.payment_method_brand = brand
    sub.payment_method_last4 = last4
    sub.status = event.status


def upsert_subscription(event):
    """Handle customer.subscription.created / updated.

    Upserts the row keyed by the Stripe customer ID.
    """
    if not event.customer_id:
        logger.warning(f"{event.event_type} for {event.subscription_id} has no customer, skipping")
        return None

    if event.status not in Subscription.STATUSES:
        logger.warning(
            f"Subscription {event.subscription_id} has unexpected status {event.status!r}"
        )

    brand, last4 = _lookup_card(event.default_payment_method_id)

    sub = Subscription.query.filter_by(external_customer_id=event.customer_id).first()
    if sub is None:
        sub = Subscription(external_customer_id=event.customer_id)
        db.session.add(sub)
    _apply_subscription_event(sub, event, brand, last4)

    try:
        _commit()
    except IntegrityError:
        # Lost an insert race; apply on top of the winner's row.
        sub = Subscription.query.filter_by(external_customer_id=event.customer_id).first()
        _apply_subscription_event(sub, event, brand, last4)
        _commit()

    logger.info(
        f"Subscription {event.subscription_id} for customer {event.customer_id} "
        f"is now {event.status}"
    )
    return sub


def soft_delete_subscription(event):
    """Handle customer.subscription.deleted.

    Marks the customer's row canceled. A missing row means there is nothing
    left to reconcile.
    """
    if not event.customer_id:
        logger.warning(f"subscription.deleted for {event.subscription_id} has no customer, skipping")
        return None

    sub = Subscription.query.filter_by(external_customer_id=event.customer_id).first()
    if sub is None:
        logger.info(
            f"subscription.deleted: no local row for customer {event.customer_id}"
        )
        return None

    if sub.deleted_at is None:
        sub.deleted_at = _now()
    sub.status = "canceled"
    _commit()

    logger.info(f"Subscription for customer {event.customer_id} canceled")
    return sub
