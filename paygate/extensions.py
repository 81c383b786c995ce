"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from paygate.services.stripe_gateway import StripeGateway

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # per-route limits only
    storage_uri="memory://",
)
stripe_gateway = StripeGateway()

# Bearer-token API: no cookie sessions to protect.
login_manager.session_protection = None


@login_manager.request_loader
def load_caller_from_request(request):
    """Resolve the Authorization bearer token to a Caller.

    Returns None for guests (no token, or the public anon key). When a token
    was presented but could not be resolved, the reason is left on
    ``g.auth_failure`` so routes can answer 401/404 instead of treating the
    request as a guest checkout.
    """
    from flask import g

    from paygate.errors import AuthenticationError, NotFoundError
    from paygate.services.auth_service import authenticate_bearer, extract_bearer_token

    token = extract_bearer_token(request.headers.get("Authorization"))
    if token is None:
        return None

    try:
        return authenticate_bearer(token)
    except (AuthenticationError, NotFoundError) as e:
        g.auth_failure = e
        return None
