"""Identity service — which Stripe customer should this checkout use?

Policy (CUSTOMER_POLICY):
- "reuse": a signed-in caller with a live mapping reuses its Stripe
  customer; otherwise one is minted and mapped.
- "always_mint": every checkout mints a fresh Stripe customer. The caller's
  previous live mapping is retired first, so a user never has more than
  one live mapping.
- Guests (no caller) always mint; the mapping is stored with a NULL user.

Minting is a two-step transaction across systems (Stripe customer, then
local mapping). If the local write fails, the Stripe customer is deleted
again so it doesn't leak.
"""

import logging
from collections import namedtuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from paygate.services import reconciler
from paygate.services.stripe_gateway import get_gateway

logger = logging.getLogger(__name__)

POLICY_REUSE = "reuse"
POLICY_ALWAYS_MINT = "always_mint"

ResolvedCustomer = namedtuple(
    "ResolvedCustomer", ["external_customer_id", "minted", "mapping_id"]
)


def delete_remote_customer(customer_id):
    """Compensating action: delete a just-minted Stripe customer.

    Best effort. A failure is logged and swallowed so the caller can
    re-raise the error that triggered the compensation.
    """
    try:
        get_gateway().delete_customer(customer_id)
        logger.info(f"Deleted orphaned Stripe customer {customer_id}")
    except Exception as e:
        logger.error(
            f"Failed to clean up Stripe customer {customer_id}: {e}", exc_info=True
        )


def _mint_customer(caller):
    metadata = {"user_id": caller.id if caller else "anonymous"}
    email = caller.email if caller else None
    customer = get_gateway().create_customer(email=email, metadata=metadata)
    logger.info(
        f"Created Stripe customer {customer.id} for "
        f"{'user ' + str(caller.id) if caller else 'guest checkout'}"
    )
    return customer.id


def _persist_or_compensate(local_user_id, customer_id):
    """Insert the mapping; on any failure other than a live-mapping
    conflict, delete the remote customer and re-raise."""
    try:
        return reconciler.insert_customer_mapping(local_user_id, customer_id)
    except IntegrityError:
        raise
    except Exception:
        logger.error(
            f"Failed to save customer mapping for Stripe customer {customer_id}",
            exc_info=True,
        )
        delete_remote_customer(customer_id)
        raise


def resolve_customer(caller):
    """Return the ResolvedCustomer to use for a checkout.

    ``caller`` is a Caller or None (guest).
    """
    policy = current_app.config.get("CUSTOMER_POLICY", POLICY_REUSE)
    user_id = caller.id if caller else None

    if caller is None:
        customer_id = _mint_customer(None)
        try:
            mapping = _persist_or_compensate(None, customer_id)
        except IntegrityError:
            delete_remote_customer(customer_id)
            raise
        return ResolvedCustomer(customer_id, True, mapping.id)

    if policy == POLICY_ALWAYS_MINT:
        return _resolve_always_mint(caller, user_id)
    return _resolve_reuse(caller, user_id)


def _resolve_reuse(caller, user_id):
    existing = reconciler.find_live_mapping(user_id)
    if existing:
        logger.info(
            f"Reusing Stripe customer {existing.external_customer_id} for user {user_id}"
        )
        return ResolvedCustomer(existing.external_customer_id, False, existing.id)

    customer_id = _mint_customer(caller)
    try:
        mapping = _persist_or_compensate(user_id, customer_id)
    except IntegrityError:
        # A concurrent checkout for the same user mapped a customer first.
        # Use theirs and drop ours.
        delete_remote_customer(customer_id)
        winner = reconciler.find_live_mapping(user_id)
        if winner is None:
            raise
        logger.info(
            f"Concurrent checkout for user {user_id}; "
            f"reusing Stripe customer {winner.external_customer_id}"
        )
        return ResolvedCustomer(winner.external_customer_id, False, winner.id)

    return ResolvedCustomer(customer_id, True, mapping.id)


def _resolve_always_mint(caller, user_id):
    customer_id = _mint_customer(caller)
    try:
        reconciler.retire_live_mappings(user_id)
    except Exception:
        delete_remote_customer(customer_id)
        raise

    try:
        mapping = _persist_or_compensate(user_id, customer_id)
    except IntegrityError:
        # A concurrent checkout inserted its mapping between our retire and
        # insert. Both customers are legitimate; retire theirs and retry once.
        try:
            reconciler.retire_live_mappings(user_id)
        except Exception:
            delete_remote_customer(customer_id)
            raise
        try:
            mapping = _persist_or_compensate(user_id, customer_id)
        except IntegrityError:
            delete_remote_customer(customer_id)
            raise

    return ResolvedCustomer(customer_id, True, mapping.id)
