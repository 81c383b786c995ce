"""Stripe gateway — the one handle through which the app talks to Stripe.

Built once per app in create_app() (init_app) and stored in
app.extensions["stripe_gateway"]. Services fetch it with get_gateway()
instead of configuring the global ``stripe.api_key``, so tests can swap in
a fake without touching process-wide state.

Only the operations the checkout and reconciliation flows need are exposed.
"""

import logging

import stripe
from flask import current_app

logger = logging.getLogger(__name__)

EXTENSION_KEY = "stripe_gateway"


class StripeGateway:
    """Thin wrapper over ``stripe.StripeClient``."""

    def __init__(self, app=None, client=None):
        self.client = client
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """Bind a gateway with its own StripeClient to ``app``.

        The deferred instance in extensions.py stays unbound; each app gets
        its own handle.
        """
        app.extensions[EXTENSION_KEY] = StripeGateway(client=_build_client(app))

    def _require_client(self):
        if self.client is None:
            raise RuntimeError("Stripe client is not configured (STRIPE_SECRET_KEY missing)")
        return self.client

    # ── Customers ──

    def create_customer(self, email=None, metadata=None):
        params = {"metadata": metadata or {}}
        if email:
            params["email"] = email
        return self._require_client().customers.create(params=params)

    def delete_customer(self, customer_id):
        return self._require_client().customers.delete(customer_id)

    # ── Checkout ──

    def create_checkout_session(self, **params):
        return self._require_client().checkout.sessions.create(params=params)

    # ── Payment methods / prices ──

    def retrieve_payment_method(self, payment_method_id):
        return self._require_client().payment_methods.retrieve(payment_method_id)

    def retrieve_price(self, price_id):
        return self._require_client().prices.retrieve(
            price_id, params={"expand": ["product"]}
        )


def _build_client(app):
    api_key = app.config.get("STRIPE_SECRET_KEY")
    if not api_key:
        logger.warning("STRIPE_SECRET_KEY not set; Stripe calls will fail")
        return None
    return stripe.StripeClient(
        api_key,
        max_network_retries=app.config.get("STRIPE_MAX_NETWORK_RETRIES", 2),
        http_client=stripe.RequestsClient(
            timeout=app.config.get("STRIPE_TIMEOUT_SECONDS", 20)
        ),
    )


def get_gateway():
    """Return the gateway bound to the current app."""
    return current_app.extensions[EXTENSION_KEY]
