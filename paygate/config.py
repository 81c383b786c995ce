import json
import os


def _load_products(raw):
    """Parse STRIPE_PRODUCTS (JSON list) — empty list when unset."""
    if not raw:
        return []
    return json.loads(raw)


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_TIMEOUT_SECONDS = float(os.environ.get("STRIPE_TIMEOUT_SECONDS", 20))
    STRIPE_MAX_NETWORK_RETRIES = int(os.environ.get("STRIPE_MAX_NETWORK_RETRIES", 2))

    # Sellable prices. Each entry: {"priceId", "name", "mode", "amount", "currency"}
    STRIPE_PRODUCTS = _load_products(os.environ.get("STRIPE_PRODUCTS"))

    # --- Customer identity policy ---
    # "reuse": a signed-in user keeps one Stripe customer across purchases.
    # "always_mint": every checkout creates a fresh Stripe customer.
    # Guests always get a fresh customer either way.
    CUSTOMER_POLICY = os.environ.get("CUSTOMER_POLICY", "reuse")

    # --- Supabase Auth (bearer token verification) ---
    SUPABASE_URL = os.environ.get("SUPABASE_URL")            # e.g. https://xyz.supabase.co
    SUPABASE_ANON_KEY = os.environ.get("SUPABASE_ANON_KEY")  # public key, never a user token
    SUPABASE_AUTH_TIMEOUT_SECONDS = float(
        os.environ.get("SUPABASE_AUTH_TIMEOUT_SECONDS", 10)
    )

    # --- Rate limiting ---
    CHECKOUT_RATE_LIMIT = os.environ.get("CHECKOUT_RATE_LIMIT", "30 per minute")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "STRIPE_PRODUCTS",
            "SUPABASE_URL",
            "SUPABASE_ANON_KEY",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        policy = os.environ.get("CUSTOMER_POLICY", "reuse")
        if policy not in ("reuse", "always_mint"):
            raise RuntimeError(
                f"CUSTOMER_POLICY must be 'reuse' or 'always_mint', got {policy!r}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite, fake Stripe keys."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    STRIPE_PRODUCTS = [
        {
            "priceId": "p1",
            "name": "Consulting Basic",
            "mode": "payment",
            "amount": 75000,
            "currency": "eur",
        },
        {
            "priceId": "price_monthly_test",
            "name": "Monthly Retainer",
            "mode": "subscription",
            "amount": 9900,
            "currency": "eur",
        },
    ]
    CUSTOMER_POLICY = "reuse"
    SUPABASE_URL = "https://auth.test.local"
    SUPABASE_ANON_KEY = "anon-test-key"
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
