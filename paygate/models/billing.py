"""Billing models.

- CustomerMapping: links a local user (or a guest checkout) to a Stripe
  customer ID. Soft-deleted only, so order history stays attributable.
- Subscription: subscription state synced from Stripe webhooks, one row per
  Stripe customer. A not_started placeholder is written at checkout time.
"""

import uuid

from paygate.extensions import db


class CustomerMapping(db.Model):
    __tablename__ = "customer_mappings"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    local_user_id = db.Column(
        db.String(255), nullable=True, index=True
    )  # None for guest checkout
    external_customer_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "cus_Q1abc..."
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # At most one live mapping per user. NULL user ids (guests) never collide.
        db.Index(
            "uq_customer_mappings_live_user",
            "local_user_id",
            unique=True,
            sqlite_where=db.text("deleted_at IS NULL"),
            postgresql_where=db.text("deleted_at IS NULL"),
        ),
    )

    def __repr__(self):
        return f"<CustomerMapping user={self.local_user_id} stripe={self.external_customer_id}>"


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    # -- Valid statuses (not_started is local; the rest are synced from Stripe) --
    STATUSES = [
        "not_started",
        "incomplete",
        "incomplete_expired",
        "trialing",
        "active",
        "past_due",
        "canceled",
        "unpaid",
        "paused",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    external_customer_id = db.Column(
        db.String(255), unique=True, nullable=False
    )
    subscription_id = db.Column(db.String(255), nullable=True)  # None until Stripe confirms
    price_id = db.Column(db.String(255), nullable=True)
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)
    payment_method_brand = db.Column(db.String(50), nullable=True)
    payment_method_last4 = db.Column(db.String(4), nullable=True)
    status = db.Column(
        db.String(50), nullable=False, default="not_started"
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "customer_id": self.external_customer_id,
            "subscription_id": self.subscription_id,
            "subscription_status": self.status,
            "price_id": self.price_id,
            "current_period_start": _iso(self.current_period_start),
            "current_period_end": _iso(self.current_period_end),
            "cancel_at_period_end": bool(self.cancel_at_period_end),
            "payment_method_brand": self.payment_method_brand,
            "payment_method_last4": self.payment_method_last4,
        }

    def __repr__(self):
        return f"<Subscription {self.external_customer_id} ({self.status})>"


def _iso(value):
    return value.isoformat() if value else None
