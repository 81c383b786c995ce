import os
import logging

import click
from flask import Flask, g, jsonify

from paygate.config import config_by_name
from paygate.extensions import db, migrate, login_manager, limiter, stripe_gateway


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)
    stripe_gateway.init_app(app)

    @app.before_request
    def reset_caller():
        """The caller comes from this request's Authorization header only."""
        g.pop("_login_user", None)
        g.pop("auth_failure", None)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from paygate import models  # noqa: F401

    # --- Register blueprints ---
    from paygate.blueprints.checkout import checkout_bp
    from paygate.blueprints.webhooks import webhooks_bp
    from paygate.blueprints.account import account_bp

    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(account_bp)

    @app.route("/health")
    def health():
        """Liveness probe for the load balancer."""
        return jsonify(status="ok")

    # --- Error handlers (JSON API, no templates) ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify(error="Not found"), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify(error="Method not allowed"), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify(error="Too many requests", details=str(e.description)), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify(error="Internal server error"), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # API responses are never HTML
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("verify-stripe-prices")
    def verify_stripe_prices():
        """Verify configured Stripe price IDs exist and are usable (same mode as key).

        Checks every product in STRIPE_PRODUCTS. Run with prod env vars to
        confirm Live prices; run with test vars for Test mode.
        """
        import stripe

        from paygate.catalog import all_products
        from paygate.services.stripe_gateway import get_gateway

        api_key = app.config.get("STRIPE_SECRET_KEY")
        if not api_key:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return
        key_mode = "Live" if api_key.startswith("sk_live_") else "Test"
        click.echo(f"Stripe key mode: {key_mode}")
        click.echo("")

        products = all_products()
        if not products:
            click.echo("No products configured (STRIPE_PRODUCTS is empty).")
            return

        gateway = get_gateway()
        for product in products:
            click.echo(f"{product.name} ({product.mode}):")
            try:
                price = gateway.retrieve_price(product.price_id)
            except stripe.StripeError as e:
                click.echo(f"  {product.price_id}")
                click.echo(f"    ERROR: {e}")
                click.echo("")
                continue

            livemode = getattr(price, "livemode", "?")
            recurring = getattr(price, "recurring", None)
            price_mode = "subscription" if recurring else "payment"
            click.echo(f"  {product.price_id}")
            click.echo(f"    exists=True, livemode={livemode}, type={price_mode}")
            if livemode is True and key_mode != "Live":
                click.echo("    WARNING: This price is Live but your key is Test.")
            elif livemode is False and key_mode == "Live":
                click.echo("    WARNING: This price is Test but your key is Live.")
            if price_mode != product.mode:
                click.echo(
                    f"    WARNING: configured for {product.mode} checkout "
                    f"but the price is {'recurring' if recurring else 'one-time'}."
                )
            click.echo("")

    @app.cli.command("purge-guest-mappings")
    @click.option("--days", default=30, show_default=True, help="Minimum age in days.")
    @click.option("--dry-run", is_flag=True, help="Show what would be purged without changing anything.")
    def purge_guest_mappings(days, dry_run):
        """Soft-delete guest customer mappings from abandoned checkouts.

        A guest mapping is stale when it is older than --days and its Stripe
        customer has no order and no started subscription.

        Usage:
            flask purge-guest-mappings
            flask purge-guest-mappings --days 7 --dry-run
        """
        from paygate.services.reconciler import purge_stale_guest_mappings

        stale = purge_stale_guest_mappings(days, dry_run=dry_run)
        for mapping in stale:
            click.echo(f"  {mapping.external_customer_id} (created {mapping.created_at})")
        verb = "Would purge" if dry_run else "Purged"
        click.echo(f"{verb} {len(stale)} guest mapping(s).")
