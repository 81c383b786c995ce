"""Checkout blueprint — /api/checkout/*

Public JSON API called by the browser frontend to start a Stripe Checkout.
The frontend redirects the buyer to the returned URL; nothing is rendered
here.

Route Map:
  POST    /api/checkout/session — create a Checkout Session, return its URL
  OPTIONS /api/checkout/session — CORS preflight
"""

import logging

from flask import Blueprint, current_app, g, jsonify, make_response, request
from flask_login import current_user

from paygate.catalog import CHECKOUT_MODES
from paygate.errors import PaygateError
from paygate.extensions import limiter
from paygate.services.checkout_service import create_checkout_session
from paygate.services.validation import STRING, OneOf, validate_parameters

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")

logger = logging.getLogger(__name__)

# Checked in this order; the first failure is the one reported.
CHECKOUT_PARAMETERS = [
    ("priceId", STRING),
    ("mode", OneOf(CHECKOUT_MODES)),
    ("successUrl", STRING),
    ("cancelUrl", STRING),
]


@checkout_bp.after_request
def add_cors_headers(response):
    """Add CORS headers so the frontend can call us cross-origin.

    Runs for every response of this blueprint, including 429s from the
    rate limiter and other errors rendered by app-level handlers.
    """
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "POST, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = (
        "authorization, x-client-info, apikey, content-type"
    )
    return response


def _error(message, status, **extra):
    return jsonify(error=message, **extra), status


def _checkout_rate_limit():
    return current_app.config["CHECKOUT_RATE_LIMIT"]


@checkout_bp.route("/session", methods=["OPTIONS"])
def session_preflight():
    """Handle CORS preflight requests."""
    return make_response("", 204)


@checkout_bp.route("/session", methods=["POST"])
@limiter.limit(_checkout_rate_limit)
def create_session():
    """
    Create a Stripe Checkout Session.

    Body: { priceId, mode: "payment"|"subscription", successUrl, cancelUrl }
    Optional Authorization: Bearer <token>; without it this is a guest checkout.

    Returns: { url, sessionId } or { error[, details] }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}

    error = validate_parameters(data, CHECKOUT_PARAMETERS)
    if error:
        return _error(error, 400)

    # --- Resolve caller (Flask-Login request_loader) ---
    caller = current_user if current_user.is_authenticated else None
    auth_failure = g.get("auth_failure")
    if caller is None and auth_failure is not None:
        return _error(str(auth_failure), auth_failure.status_code)

    try:
        session = create_checkout_session(
            price_id=data["priceId"],
            mode=data["mode"],
            success_url=data["successUrl"],
            cancel_url=data["cancelUrl"],
            caller=caller,
        )
    except PaygateError as e:
        return _error(str(e), e.status_code)
    except Exception as e:
        logger.error(f"Error creating checkout session: {e}", exc_info=True)
        return _error(str(e) or "Unknown error", 500, details=repr(e))

    return jsonify(url=session.url, sessionId=session.session_id), 200
