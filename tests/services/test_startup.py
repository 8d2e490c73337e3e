"""
Tests for the application lifespan and service wiring
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from src.config import Config
from src.services.billing_services import build_billing_services
from src.services.startup import lifespan
from src.utils.exceptions import BillingConfigurationError


def _run_lifespan(app, body=None):
    async def run():
        async with lifespan(app):
            if body:
                body()

    asyncio.run(run())


class TestLifespan:
    def test_builds_and_closes_services(self):
        app = SimpleNamespace(state=SimpleNamespace())
        services = MagicMock()
        seen = []

        with (
            patch("src.services.startup.build_billing_services", return_value=services),
            patch("src.services.startup.cleanup_supabase_client") as mock_cleanup,
        ):
            _run_lifespan(app, lambda: seen.append(app.state.billing))

        assert seen == [services]
        services.close.assert_called_once()
        mock_cleanup.assert_called_once()
        assert app.state.billing is None

    def test_missing_configuration_fails_fast(self):
        app = SimpleNamespace(state=SimpleNamespace())
        error = BillingConfigurationError("missing", missing=["STRIPE_SECRET_KEY"])

        with patch("src.services.startup.build_billing_services", side_effect=error):
            with pytest.raises(BillingConfigurationError):
                _run_lifespan(app)

        assert getattr(app.state, "billing", None) is None


class TestBuildBillingServices:
    def test_no_client_built_when_configuration_missing(self, monkeypatch):
        monkeypatch.setattr(Config, "STRIPE_SECRET_KEY", None)

        with (
            patch("src.services.billing_services.build_stripe_client") as mock_stripe,
            patch("src.services.billing_services.build_clerk_http_client") as mock_clerk,
        ):
            with pytest.raises(BillingConfigurationError) as exc_info:
                build_billing_services()

        assert exc_info.value.missing[0] == "STRIPE_SECRET_KEY"
        mock_stripe.assert_not_called()
        mock_clerk.assert_not_called()

    def test_wires_services_from_configuration(self):
        with (
            patch("src.services.billing_services.build_stripe_client"),
            patch("src.services.billing_services.build_clerk_http_client") as mock_clerk,
        ):
            services = build_billing_services()

        assert services.price_table.plan_for("price_premium_monthly").value == "premium"
        assert services.clerk_http is mock_clerk.return_value
        services.close()
        mock_clerk.return_value.close.assert_called_once()
