"""Checkout service — opens Stripe Checkout Sessions.

Responsible for:
- Checking the requested price against the configured products
- Resolving the Stripe customer (identity_service)
- Writing the not_started subscription placeholder before the session
  exists, so the first subscription webhook always has a row to upsert
- Creating the session and returning its hosted URL

Steps run strictly in order; a failure after a customer was minted undoes
the mint (mapping soft-deleted, Stripe customer deleted) before the error
propagates. Remote work is never rolled back once the session is created.
"""

import logging
from collections import namedtuple

from paygate.catalog import get_product
from paygate.errors import NotFoundError, ValidationError
from paygate.services import reconciler
from paygate.services.identity_service import delete_remote_customer, resolve_customer
from paygate.services.stripe_gateway import get_gateway

logger = logging.getLogger(__name__)

CheckoutSession = namedtuple("CheckoutSession", ["url", "session_id"])


def create_checkout_session(price_id, mode, success_url, cancel_url, caller=None):
    """Create a Stripe Checkout Session for one unit of ``price_id``.

    Args:
        caller: the authenticated Caller, or None for guest checkout.

    Returns a CheckoutSession(url, session_id).
    Raises NotFoundError for an unknown price, ValidationError when the
    price can't be bought in ``mode``, stripe.StripeError on API failures.
    """
    product = get_product(price_id)
    if product is None:
        raise NotFoundError(f"Product not found for price {price_id}")
    if product.mode != mode:
        raise ValidationError(
            f"Price {price_id} is sold in {product.mode} mode, not {mode}"
        )

    customer = resolve_customer(caller)

    if mode == "subscription":
        try:
            reconciler.ensure_subscription_placeholder(customer.external_customer_id)
        except Exception:
            logger.error(
                f"Failed to save subscription placeholder for customer "
                f"{customer.external_customer_id}",
                exc_info=True,
            )
            if customer.minted:
                _undo_minted_customer(customer.external_customer_id)
            raise

    session = get_gateway().create_checkout_session(
        customer=customer.external_customer_id,
        payment_method_types=["card"],
        line_items=[{"price": price_id, "quantity": 1}],
        mode=mode,
        success_url=success_url,
        cancel_url=cancel_url,
        client_reference_id=caller.id if caller else "anonymous",
    )

    logger.info(
        f"Created checkout session {session.id} for customer "
        f"{customer.external_customer_id} ({mode}, {price_id})"
    )
    return CheckoutSession(url=session.url, session_id=session.id)


def _undo_minted_customer(customer_id):
    try:
        reconciler.soft_delete_mapping(customer_id)
    except Exception as e:
        logger.error(f"Failed to retire customer mapping for {customer_id}: {e}")
    delete_remote_customer(customer_id)
