import os

# Settings are read when src.config is first imported, so they must be in place
# before any test module imports application code
os.environ["APP_ENV"] = "testing"
os.environ["TESTING"] = "true"
os.environ["SENTRY_ENABLED"] = "false"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PREMIUM_MONTHLY_PRICE_ID"] = "price_premium_monthly"
os.environ["STRIPE_PREMIUM_HALF_YEAR_PRICE_ID"] = "price_premium_half_year"
os.environ["STRIPE_STANDARD_MONTHLY_PRICE_ID"] = "price_standard_monthly"
os.environ["STRIPE_STANDARD_HALF_YEAR_PRICE_ID"] = "price_standard_half_year"
os.environ["SUPABASE_URL"] = "https://test.supabase.co"
os.environ["SUPABASE_KEY"] = "test-service-role-key"
os.environ["CLERK_SECRET_KEY"] = "sk_test_clerk"
os.environ["ADMIN_API_KEY"] = "test-admin-key"

import pytest  # noqa: E402

from tests.helpers.mocks import (  # noqa: E402
    FakeClerkServer,
    FakeStripeClient,
    MockSupabaseClient,
    make_billing_services,
)


@pytest.fixture
def supabase(monkeypatch):
    """
    In-memory Supabase client, also installed as the shared client so modules
    that use ``get_supabase_client`` (webhook event tracking) hit the same store.
    """
    sb = MockSupabaseClient({"users": [], "stripe_webhook_events": []})
    monkeypatch.setattr("src.config.supabase_config.get_supabase_client", lambda: sb)
    return sb


@pytest.fixture
def stripe_client():
    return FakeStripeClient()


@pytest.fixture
def clerk_server():
    return FakeClerkServer()


@pytest.fixture
def services(supabase, stripe_client, clerk_server):
    billing_services = make_billing_services(supabase, stripe_client, clerk_server)
    yield billing_services
    billing_services.clerk._http.close()
