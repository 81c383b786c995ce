"""Account service — read-only views of a user's billing records."""

from paygate.models.billing import CustomerMapping, Subscription
from paygate.models.order import Order


def _customer_ids_for_user(user_id):
    """Every Stripe customer the user has ever been mapped to."""
    mappings = CustomerMapping.query.filter_by(local_user_id=user_id).all()
    return [m.external_customer_id for m in mappings]


def get_user_orders(user_id):
    """All orders placed under any of the user's Stripe customers, newest first.

    Retired mappings are included so order history survives a customer
    being replaced.
    """
    customer_ids = _customer_ids_for_user(user_id)
    if not customer_ids:
        return []
    return (
        Order.query
        .filter(Order.external_customer_id.in_(customer_ids))
        .order_by(Order.created_at.desc())
        .all()
    )


def get_user_subscription(user_id):
    """The user's most recently updated non-deleted subscription, or None."""
    customer_ids = _customer_ids_for_user(user_id)
    if not customer_ids:
        return None
    return (
        Subscription.query
        .filter(
            Subscription.external_customer_id.in_(customer_ids),
            Subscription.deleted_at.is_(None),
        )
        .order_by(Subscription.updated_at.desc())
        .first()
    )
