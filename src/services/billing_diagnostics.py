"""
Read-only billing diagnosis for one email address.

Collects what each store currently says about the user and what the tier
resolver would produce from Stripe today. Nothing is written.
"""

import logging
from typing import Any

from src.config import Config
from src.constants import USER_BILLING_COLUMNS
from src.db.billing_records import SupabaseBillingStore
from src.schemas.billing import PriceTierTable, SubscriptionSnapshot
from src.services.clerk_client import ClerkClient
from src.services.stripe_gateway import StripeGateway
from src.services.tier_resolver import classify_plan, resolve
from src.utils.exceptions import IdentityProviderError
from src.utils.security_validators import normalize_email

logger = logging.getLogger(__name__)


def configured_price_ids() -> dict[str, str | None]:
    return {
        "STRIPE_PREMIUM_MONTHLY_PRICE_ID": Config.STRIPE_PREMIUM_MONTHLY_PRICE_ID,
        "STRIPE_PREMIUM_HALF_YEAR_PRICE_ID": Config.STRIPE_PREMIUM_HALF_YEAR_PRICE_ID,
        "STRIPE_STANDARD_MONTHLY_PRICE_ID": Config.STRIPE_STANDARD_MONTHLY_PRICE_ID,
        "STRIPE_STANDARD_HALF_YEAR_PRICE_ID": Config.STRIPE_STANDARD_HALF_YEAR_PRICE_ID,
    }


def describe_subscription(
    subscription: SubscriptionSnapshot, price_table: PriceTierTable
) -> dict[str, Any]:
    unclassified = [price_id for price_id in subscription.price_ids if not price_table.is_known(price_id)]
    return {
        "id": subscription.id,
        "status": subscription.status,
        "price_ids": list(subscription.price_ids),
        "plan": classify_plan(subscription, price_table).value,
        "current_period_end": (
            subscription.current_period_end.isoformat() if subscription.current_period_end else None
        ),
        "cancel_at_period_end": subscription.cancel_at_period_end,
        "metadata": subscription.metadata,
        # Unknown prices silently count as standard, which is the usual cause of a wrong tier
        "unclassified_price_ids": unclassified,
    }


class BillingDiagnostics:
    def __init__(
        self,
        gateway: StripeGateway,
        store: SupabaseBillingStore,
        clerk: ClerkClient,
        price_table: PriceTierTable,
    ):
        self._gateway = gateway
        self._store = store
        self._clerk = clerk
        self._price_table = price_table

    def diagnose(self, email: str) -> dict[str, Any]:
        email = normalize_email(email)
        report: dict[str, Any] = {"email": email, "price_ids": configured_price_ids()}

        user = self._store.find_user_by_email(email)
        report["supabase"] = {column: user.get(column) for column in USER_BILLING_COLUMNS} if user else None

        report["clerk"] = self._clerk_state(email, user["id"] if user else None)

        customer = self._gateway.find_customer_by_email(email)
        if customer is None:
            report["stripe"] = None
            report["resolved"] = None
            return report

        subscriptions = self._gateway.list_all_subscriptions(customer.id)
        invoices = self._gateway.list_unpaid_invoices(customer.id)
        paying = next(
            (sub for sub in subscriptions if sub.status == "active"),
            next((sub for sub in subscriptions if sub.status == "trialing"), None),
        )
        resolved = resolve(paying, invoices, self._price_table)

        report["stripe"] = {
            "customer_id": customer.id,
            "customer_metadata": customer.metadata,
            "subscriptions": [describe_subscription(sub, self._price_table) for sub in subscriptions],
            "unpaid_invoices": [
                {"id": inv.id, "status": inv.status, "amount_due": inv.amount_due, "currency": inv.currency}
                for inv in invoices
            ],
        }
        report["resolved"] = {
            "subscription_id": paying.id if paying else None,
            "plan": resolved.fields.plan.value,
            "billing_status": resolved.fields.status.value,
            "tier": resolved.tier.value,
        }
        return report

    def _clerk_state(self, email: str, user_id: str | None) -> dict[str, Any] | None:
        try:
            if user_id is None:
                user_ids = self._clerk.find_user_ids_by_email(email)
                if not user_ids:
                    return None
                user_id = user_ids[0]
            return {"user_id": user_id, "public_metadata": self._clerk.get_public_metadata(user_id)}
        except IdentityProviderError as e:
            logger.warning(f"Could not read Clerk state: {e}")
            return {"user_id": user_id, "error": str(e)}
