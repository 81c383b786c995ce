"""Account blueprint — /api/account/*

Read-only billing views for the signed-in caller (bearer token required).

Routes:
- GET /api/account/orders        — the caller's orders, newest first
- GET /api/account/subscription  — the caller's current subscription or null
"""

from flask import Blueprint, jsonify
from flask_login import current_user

from paygate.decorators import bearer_required
from paygate.services.account_service import get_user_orders, get_user_subscription

account_bp = Blueprint("account", __name__, url_prefix="/api/account")


@account_bp.route("/orders")
@bearer_required
def orders():
    """List the caller's orders across all of their Stripe customers."""
    return jsonify(orders=[o.to_dict() for o in get_user_orders(current_user.id)])


@account_bp.route("/subscription")
@bearer_required
def subscription():
    sub = get_user_subscription(current_user.id)
    return jsonify(subscription=sub.to_dict() if sub else None)
