"""Order model.

One row per completed Checkout Session. checkout_session_id is the natural
idempotency key: Stripe redelivering checkout.session.completed must never
produce a second row.
"""

import uuid

from paygate.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    PAYMENT_STATUSES = ["unpaid", "paid", "no_payment_required"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    checkout_session_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "cs_test_a1B2..."
    payment_intent_id = db.Column(db.String(255), nullable=True)
    external_customer_id = db.Column(db.String(255), nullable=False, index=True)
    amount_subtotal = db.Column(db.BigInteger, nullable=False, default=0)  # minor units
    amount_total = db.Column(db.BigInteger, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="usd")
    payment_status = db.Column(
        db.String(50), nullable=False, default="unpaid"
    )  # unpaid | paid | no_payment_required
    status = db.Column(
        db.String(50), nullable=False, default="pending"
    )  # pending | completed | canceled
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def to_dict(self):
        return {
            "order_id": self.id,
            "checkout_session_id": self.checkout_session_id,
            "payment_intent_id": self.payment_intent_id,
            "customer_id": self.external_customer_id,
            "amount_subtotal": self.amount_subtotal,
            "amount_total": self.amount_total,
            "currency": self.currency,
            "payment_status": self.payment_status,
            "order_status": self.status,
            "order_date": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Order {self.checkout_session_id} ({self.status})>"
