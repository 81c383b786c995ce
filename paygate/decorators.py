"""
Custom route decorators for access control.

- bearer_required: ensures the request carries a bearer token that resolved
  to a caller (see the request_loader in extensions.py).
"""

from functools import wraps

from flask import g, jsonify
from flask_login import current_user


def bearer_required(f):
    """Require an authenticated caller; 401 (or 404 for unknown users)."""

    @wraps(f)
    def decorated(*args, **kwargs):
        if not current_user.is_authenticated:
            # Set by the request_loader when a token was sent but rejected
            failure = g.get("auth_failure")
            if failure is not None:
                return jsonify(error=str(failure)), failure.status_code
            return jsonify(error="Authentication required"), 401
        return f(*args, **kwargs)

    return decorated
