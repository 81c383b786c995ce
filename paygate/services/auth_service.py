"""Auth service — resolves Supabase bearer tokens to callers.

The checkout API is called by a browser frontend that signs users in with
Supabase Auth. We verify the access token by asking Supabase who it
belongs to (GET /auth/v1/user). The public anon key is also sent as a
bearer token by signed-out visitors; that means "guest", not "bad token".
"""

import logging

import requests
from flask import current_app
from flask_login import UserMixin

from paygate.errors import AuthenticationError, NotFoundError

logger = logging.getLogger(__name__)


class Caller(UserMixin):
    """An authenticated API caller (Flask-Login user object)."""

    def __init__(self, id, email=None):
        self.id = id
        self.email = email

    def __repr__(self):
        return f"<Caller {self.id}>"


def extract_bearer_token(auth_header):
    """Return the bearer token from an Authorization header, or None.

    None means guest: no header, an empty token, or the public anon key.
    """
    if not auth_header:
        return None

    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    if not token:
        return None

    anon_key = current_app.config.get("SUPABASE_ANON_KEY")
    if anon_key and token == anon_key:
        return None
    return token


def authenticate_bearer(token):
    """Resolve an access token to a Caller via Supabase Auth.

    Raises AuthenticationError if Supabase rejects the token or cannot be
    reached, NotFoundError if it accepts it but returns no user.
    """
    base_url = (current_app.config.get("SUPABASE_URL") or "").rstrip("/")
    if not base_url:
        raise AuthenticationError("Failed to authenticate user")

    headers = {"Authorization": f"Bearer {token}"}
    anon_key = current_app.config.get("SUPABASE_ANON_KEY")
    if anon_key:
        headers["apikey"] = anon_key

    try:
        resp = requests.get(
            f"{base_url}/auth/v1/user",
            headers=headers,
            timeout=current_app.config.get("SUPABASE_AUTH_TIMEOUT_SECONDS", 10),
        )
    except requests.RequestException as e:
        logger.error(f"Supabase auth request failed: {e}")
        raise AuthenticationError("Failed to authenticate user") from e

    if resp.status_code != 200:
        logger.info(f"Supabase rejected bearer token (HTTP {resp.status_code})")
        raise AuthenticationError("Failed to authenticate user")

    try:
        user = resp.json() or {}
    except ValueError as e:
        raise AuthenticationError("Failed to authenticate user") from e

    if not isinstance(user, dict) or not user.get("id"):
        raise NotFoundError("User not found")

    return Caller(id=user["id"], email=user.get("email"))
