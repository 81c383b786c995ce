"""Webhooks blueprint — /stripe/webhooks

Receives Stripe webhook events.
Raw body is required for signature verification.
"""

import logging

from flask import Blueprint, request, jsonify

from paygate.errors import MissingSignatureError, SignatureError
from paygate.services.webhook_service import handle_webhook_event, verify_webhook_signature

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body bytes (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET
    3. Pass to handle_webhook_event (idempotent via natural-key upserts)
    4. Return 200 to acknowledge receipt, 500 so Stripe retries on failure
    """
    payload = request.get_data(cache=False)
    sig_header = request.headers.get("Stripe-Signature")

    # --- Verify signature ---
    try:
        event = verify_webhook_signature(payload, sig_header)
    except MissingSignatureError as e:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": str(e)}), e.status_code
    except SignatureError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return jsonify({"error": str(e)}), e.status_code

    # --- Process event ---
    success, message = handle_webhook_event(event)

    if success:
        return jsonify({"received": True, "status": message}), 200
    else:
        logger.error(f"Webhook processing failed: {message}")
        return jsonify({"error": "Internal server error"}), 500
