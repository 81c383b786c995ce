"""Webhook service — Stripe webhook verification and dispatch.

Responsible for:
- Verifying the Stripe-Signature header against the raw request body
- Parsing the verified body into a typed event (services.events)
- Routing each event type to its reconciler handler

Idempotency comes from the reconciler's natural-key upserts, not from a
table of seen event IDs.
"""

import json
import logging

import stripe
from flask import current_app

from paygate.errors import InvalidSignatureError, MissingSignatureError
from paygate.extensions import db
from paygate.services import reconciler
from paygate.services.events import (
    CheckoutCompleted,
    SubscriptionChanged,
    SubscriptionDeleted,
    UnhandledEvent,
    parse_event,
)

logger = logging.getLogger(__name__)

HANDLERS = {
    CheckoutCompleted: reconciler.record_completed_checkout,
    SubscriptionChanged: reconciler.upsert_subscription,
    SubscriptionDeleted: reconciler.soft_delete_subscription,
}


def verify_webhook_signature(payload, sig_header):
    """Verify a Stripe webhook and return the event payload as a dict.

    ``payload`` must be the raw request body (bytes), exactly as received.
    The body is only parsed as JSON after the signature checks out.

    Raises MissingSignatureError / InvalidSignatureError.
    """
    if not sig_header:
        raise MissingSignatureError("No signature provided")

    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]
    try:
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        stripe.WebhookSignature.verify_header(
            body, sig_header, webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
        )
    except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
        raise InvalidSignatureError(f"Webhook Error: {e}") from e

    try:
        event = json.loads(body)
    except ValueError as e:
        raise InvalidSignatureError(f"Webhook Error: invalid JSON payload ({e})") from e
    if not isinstance(event, dict):
        raise InvalidSignatureError("Webhook Error: payload is not an event object")
    return event


def handle_webhook_event(payload):
    """Process a verified webhook payload.

    Returns (success: bool, message: str). Unrecognized event types are
    acknowledged without touching the database.
    """
    try:
        event = parse_event(payload)
    except ValueError as e:
        logger.error(f"Malformed {payload.get('type')} event {payload.get('id')}: {e}")
        return False, str(e)

    if isinstance(event, UnhandledEvent):
        logger.info(f"Unhandled event type: {event.event_type}")
        return True, "ignored"

    handler = HANDLERS[type(event)]
    try:
        handler(event)
    except Exception as e:
        logger.error(f"Error handling {payload.get('type')} {event.event_id}: {e}", exc_info=True)
        db.session.rollback()
        return False, str(e)

    return True, "processed"
