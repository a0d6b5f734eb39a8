import os
from datetime import timedelta


# Promotion products -> listing field + window length.
# A trailing "*" matches every code with that prefix.
DEFAULT_PROMOTION_RULES = {
    "BOOST_24H": ("boosted_until", timedelta(hours=24)),
    "BOOST_7D": ("boosted_until", timedelta(days=7)),
    "BOOST_30D": ("boosted_until", timedelta(days=30)),
    "SPONSOR_*": ("sponsored_until", timedelta(days=30)),
}


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    DATABASE_URL = _db_url or None
    SQLALCHEMY_DATABASE_URI = DATABASE_URL

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_TIMEOUT_SECONDS = float(os.environ.get("STRIPE_TIMEOUT_SECONDS", 10))
    # 0 disables the signature timestamp age check
    STRIPE_WEBHOOK_TOLERANCE = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE", 0))

    # Redirect base for Checkout success/cancel, e.g. https://ollync.app
    APP_BASE_URL = os.environ.get("APP_BASE_URL")

    # --- Supabase ---
    # Auth is resolved against Supabase; tables live in its Postgres.
    SUPABASE_URL = os.environ.get("SUPABASE_URL")                # e.g. https://xyz.supabase.co
    SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY") # service_role key
    SUPABASE_AUTH_TIMEOUT_SECONDS = float(
        os.environ.get("SUPABASE_AUTH_TIMEOUT_SECONDS", 5)
    )

    # --- Checkout policy ---
    CHECKOUT_MAX_QUANTITY = int(os.environ.get("CHECKOUT_MAX_QUANTITY", 99))
    CHECKOUT_RATE_LIMIT = os.environ.get("CHECKOUT_RATE_LIMIT", "30 per minute")
    PROMOTION_RULES = DEFAULT_PROMOTION_RULES

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # No cookie-based login: every request carries its own bearer token.
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # Keys the checkout endpoint cannot run without
    CHECKOUT_REQUIRED = (
        "DATABASE_URL",
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "STRIPE_SECRET_KEY",
        "APP_BASE_URL",
    )
    # Keys the webhook endpoint cannot run without
    WEBHOOK_REQUIRED = ("DATABASE_URL", "STRIPE_WEBHOOK_SECRET")

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "SUPABASE_URL",
            "SUPABASE_SERVICE_KEY",
            "APP_BASE_URL",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SESSION_COOKIE_SECURE = False


class TestConfig(Config):
    """Testing — in-memory SQLite, external services faked."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    DATABASE_URL = "sqlite:///:memory:"
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    STRIPE_WEBHOOK_TOLERANCE = 0
    SUPABASE_URL = "https://project.supabase.test"
    SUPABASE_SERVICE_KEY = "service_role_test_fake"
    APP_BASE_URL = "https://ollync.test"
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SESSION_COOKIE_SECURE = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
