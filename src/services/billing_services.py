"""
Wiring for the billing reconciliation services.

The API lifespan and the operator scripts both build one ``BillingServices``
bundle from configuration; routes receive it through ``get_billing_services``.
"""

import logging
from dataclasses import dataclass

import httpx
from fastapi import Request

from src.config import Config
from src.config.stripe_config import build_stripe_client
from src.db.billing_records import SupabaseBillingStore
from src.schemas.billing import PriceTierTable
from src.services.billing_reconciliation import BillingReconciler
from src.services.billing_webhooks import BillingWebhookHandler
from src.services.billing_writer import BillingWriter
from src.services.clerk_client import ClerkClient, build_clerk_http_client
from src.services.manual_override import ManualBillingOverride
from src.services.stripe_gateway import StripeGateway
from src.services.subscription_lookup import SubscriptionLookup
from src.utils.exceptions import APIExceptions

logger = logging.getLogger(__name__)


@dataclass
class BillingServices:
    gateway: StripeGateway
    store: SupabaseBillingStore
    clerk: ClerkClient
    writer: BillingWriter
    lookup: SubscriptionLookup
    reconciler: BillingReconciler
    manual_override: ManualBillingOverride
    webhooks: BillingWebhookHandler
    price_table: PriceTierTable
    clerk_http: httpx.Client | None = None

    def close(self) -> None:
        if self.clerk_http is not None:
            self.clerk_http.close()


def build_billing_services() -> BillingServices:
    """
    Validate configuration and build every billing service.

    Raises:
        BillingConfigurationError: a required variable is missing; nothing is built.
    """
    Config.validate_billing()

    price_table = Config.price_tier_table()
    gateway = StripeGateway(build_stripe_client())
    store = SupabaseBillingStore()
    clerk_http = build_clerk_http_client()
    clerk = ClerkClient(clerk_http)
    writer = BillingWriter(store, clerk)
    lookup = SubscriptionLookup(gateway, store)
    reconciler = BillingReconciler(lookup, gateway, writer, store, price_table)

    logger.info(
        f"Billing services ready ({len(price_table.premium_price_ids)} premium price id(s), "
        f"{len(price_table.standard_price_ids)} standard price id(s))"
    )
    if not Config.STRIPE_WEBHOOK_SECRET:
        logger.warning("STRIPE_WEBHOOK_SECRET not configured - webhook deliveries will be rejected")

    return BillingServices(
        gateway=gateway,
        store=store,
        clerk=clerk,
        writer=writer,
        lookup=lookup,
        reconciler=reconciler,
        manual_override=ManualBillingOverride(gateway, store, clerk, writer, price_table),
        webhooks=BillingWebhookHandler(reconciler, store, Config.STRIPE_WEBHOOK_SECRET),
        price_table=price_table,
        clerk_http=clerk_http,
    )


def get_billing_services(request: Request) -> BillingServices:
    """FastAPI dependency returning the services built during startup."""
    services = getattr(request.app.state, "billing", None)
    if services is None:
        raise APIExceptions.service_unavailable("Billing service")
    return services
