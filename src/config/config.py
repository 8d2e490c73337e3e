import os

from dotenv import load_dotenv

from src.schemas.billing import PriceTierTable
from src.utils.exceptions import BillingConfigurationError

# Load environment variables from .env file
load_dotenv()


def _get_env_var(name: str, default: str | None = None, *, strip: bool = True) -> str | None:
    """
    Fetch an environment variable with optional whitespace trimming.

    Args:
        name: Environment variable to look up.
        default: Value to return when the env var is unset or empty.
        strip: Whether to strip leading/trailing whitespace (default: True).

    Returns:
        The normalized string value or the provided default when empty.
    """
    value = os.environ.get(name)
    if value is None:
        return default

    if strip:
        value = value.strip()

    return value or default


def _get_float_env(name: str, default: float) -> float:
    value = _get_env_var(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_bool_env(name: str, default: bool = False) -> bool:
    value = _get_env_var(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


class Config:
    """Configuration class for the billing reconciliation service"""

    # Environment Detection
    APP_ENV = os.environ.get("APP_ENV", "development")  # development, staging, production
    IS_PRODUCTION = APP_ENV == "production"
    IS_DEVELOPMENT = APP_ENV == "development"
    IS_TESTING = APP_ENV in {"testing", "test"} or _get_bool_env("TESTING")
    LOG_LEVEL = _get_env_var("LOG_LEVEL", "INFO")

    # Stripe (payment provider, source of truth for subscriptions)
    STRIPE_SECRET_KEY = _get_env_var("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = _get_env_var("STRIPE_WEBHOOK_SECRET")
    # Pinned so current_period_end stays on the subscription object
    STRIPE_API_VERSION = _get_env_var("STRIPE_API_VERSION", "2025-02-24.acacia")
    STRIPE_TIMEOUT_SECONDS = _get_float_env("STRIPE_TIMEOUT_SECONDS", 15.0)

    # Price identifiers used to classify subscriptions
    STRIPE_PREMIUM_MONTHLY_PRICE_ID = _get_env_var("STRIPE_PREMIUM_MONTHLY_PRICE_ID")
    STRIPE_PREMIUM_HALF_YEAR_PRICE_ID = _get_env_var("STRIPE_PREMIUM_HALF_YEAR_PRICE_ID")
    STRIPE_STANDARD_MONTHLY_PRICE_ID = _get_env_var("STRIPE_STANDARD_MONTHLY_PRICE_ID")
    STRIPE_STANDARD_HALF_YEAR_PRICE_ID = _get_env_var("STRIPE_STANDARD_HALF_YEAR_PRICE_ID")

    # Supabase (durable store)
    SUPABASE_URL = _get_env_var("SUPABASE_URL")
    SUPABASE_KEY = _get_env_var("SUPABASE_KEY")
    SUPABASE_TIMEOUT_SECONDS = _get_float_env("SUPABASE_TIMEOUT_SECONDS", 15.0)

    # Clerk (identity provider, fast-path metadata cache)
    CLERK_SECRET_KEY = _get_env_var("CLERK_SECRET_KEY")
    CLERK_API_URL = _get_env_var("CLERK_API_URL", "https://api.clerk.com/v1")
    # PEM public key for networkless session token verification
    CLERK_JWT_KEY = _get_env_var("CLERK_JWT_KEY", strip=False)
    CLERK_TIMEOUT_SECONDS = _get_float_env("CLERK_TIMEOUT_SECONDS", 10.0)

    # Admin access for operator endpoints
    ADMIN_API_KEY = _get_env_var("ADMIN_API_KEY")

    # Sentry
    SENTRY_DSN = _get_env_var("SENTRY_DSN")
    SENTRY_ENABLED = _get_bool_env("SENTRY_ENABLED", True)
    SENTRY_ENVIRONMENT = _get_env_var("SENTRY_ENVIRONMENT", APP_ENV)
    SENTRY_RELEASE = _get_env_var("SENTRY_RELEASE")

    @classmethod
    def reload(cls) -> None:
        """Re-read every setting from the environment (used by scripts and tests)."""
        cls.APP_ENV = os.environ.get("APP_ENV", "development")
        cls.IS_PRODUCTION = cls.APP_ENV == "production"
        cls.IS_DEVELOPMENT = cls.APP_ENV == "development"
        cls.IS_TESTING = cls.APP_ENV in {"testing", "test"} or _get_bool_env("TESTING")
        cls.LOG_LEVEL = _get_env_var("LOG_LEVEL", "INFO")
        cls.STRIPE_SECRET_KEY = _get_env_var("STRIPE_SECRET_KEY")
        cls.STRIPE_WEBHOOK_SECRET = _get_env_var("STRIPE_WEBHOOK_SECRET")
        cls.STRIPE_API_VERSION = _get_env_var("STRIPE_API_VERSION", "2025-02-24.acacia")
        cls.STRIPE_TIMEOUT_SECONDS = _get_float_env("STRIPE_TIMEOUT_SECONDS", 15.0)
        cls.STRIPE_PREMIUM_MONTHLY_PRICE_ID = _get_env_var("STRIPE_PREMIUM_MONTHLY_PRICE_ID")
        cls.STRIPE_PREMIUM_HALF_YEAR_PRICE_ID = _get_env_var("STRIPE_PREMIUM_HALF_YEAR_PRICE_ID")
        cls.STRIPE_STANDARD_MONTHLY_PRICE_ID = _get_env_var("STRIPE_STANDARD_MONTHLY_PRICE_ID")
        cls.STRIPE_STANDARD_HALF_YEAR_PRICE_ID = _get_env_var("STRIPE_STANDARD_HALF_YEAR_PRICE_ID")
        cls.SUPABASE_URL = _get_env_var("SUPABASE_URL")
        cls.SUPABASE_KEY = _get_env_var("SUPABASE_KEY")
        cls.SUPABASE_TIMEOUT_SECONDS = _get_float_env("SUPABASE_TIMEOUT_SECONDS", 15.0)
        cls.CLERK_SECRET_KEY = _get_env_var("CLERK_SECRET_KEY")
        cls.CLERK_API_URL = _get_env_var("CLERK_API_URL", "https://api.clerk.com/v1")
        cls.CLERK_JWT_KEY = _get_env_var("CLERK_JWT_KEY", strip=False)
        cls.CLERK_TIMEOUT_SECONDS = _get_float_env("CLERK_TIMEOUT_SECONDS", 10.0)
        cls.ADMIN_API_KEY = _get_env_var("ADMIN_API_KEY")
        cls.SENTRY_DSN = _get_env_var("SENTRY_DSN")
        cls.SENTRY_ENABLED = _get_bool_env("SENTRY_ENABLED", True)
        cls.SENTRY_ENVIRONMENT = _get_env_var("SENTRY_ENVIRONMENT", cls.APP_ENV)
        cls.SENTRY_RELEASE = _get_env_var("SENTRY_RELEASE")

    @classmethod
    def missing_billing_vars(cls) -> list[str]:
        """Return the names of required billing variables that are not set."""
        required = {
            "STRIPE_SECRET_KEY": cls.STRIPE_SECRET_KEY,
            "STRIPE_PREMIUM_MONTHLY_PRICE_ID": cls.STRIPE_PREMIUM_MONTHLY_PRICE_ID,
            "STRIPE_PREMIUM_HALF_YEAR_PRICE_ID": cls.STRIPE_PREMIUM_HALF_YEAR_PRICE_ID,
            "SUPABASE_URL": cls.SUPABASE_URL,
            "SUPABASE_KEY": cls.SUPABASE_KEY,
            "CLERK_SECRET_KEY": cls.CLERK_SECRET_KEY,
        }
        return [name for name, value in required.items() if not value]

    @classmethod
    def validate_billing(cls) -> bool:
        """
        Validate that every credential the reconciliation engine needs is present.

        Raises:
            BillingConfigurationError: listing every missing variable. The Stripe
                key is reported first because nothing can run without it.
        """
        missing = cls.missing_billing_vars()
        if missing:
            raise BillingConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                "Please create a .env file with the following variables:\n"
                "STRIPE_SECRET_KEY=sk_live_or_test_key\n"
                "STRIPE_PREMIUM_MONTHLY_PRICE_ID=price_...\n"
                "STRIPE_PREMIUM_HALF_YEAR_PRICE_ID=price_...\n"
                "SUPABASE_URL=your_supabase_project_url\n"
                "SUPABASE_KEY=your_supabase_service_role_key\n"
                "CLERK_SECRET_KEY=sk_...",
                missing=missing,
            )
        return True

    @classmethod
    def premium_price_ids(cls) -> list[str]:
        return [
            price_id
            for price_id in (cls.STRIPE_PREMIUM_MONTHLY_PRICE_ID, cls.STRIPE_PREMIUM_HALF_YEAR_PRICE_ID)
            if price_id
        ]

    @classmethod
    def standard_price_ids(cls) -> list[str]:
        return [
            price_id
            for price_id in (
                cls.STRIPE_STANDARD_MONTHLY_PRICE_ID,
                cls.STRIPE_STANDARD_HALF_YEAR_PRICE_ID,
            )
            if price_id
        ]

    @classmethod
    def price_tier_table(cls) -> PriceTierTable:
        """Build the price classification table from the configured price ids."""
        return PriceTierTable(
            premium_price_ids=frozenset(cls.premium_price_ids()),
            standard_price_ids=frozenset(cls.standard_price_ids()),
        )

    @classmethod
    def get_supabase_config(cls):
        """Get Supabase configuration as a tuple"""
        return cls.SUPABASE_URL, cls.SUPABASE_KEY
