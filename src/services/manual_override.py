"""
Manual billing override.

Operator tool that re-derives one user's tier from Stripe, starting from an
email address. Unpaid invoices are always checked before anything is written,
and every write carries an audit reason (``unpaid_invoices`` or ``manual_sync``).
"""

import logging
from dataclasses import replace

from src.constants import COL_BILLING_STATUS, COL_TIER, STRIPE_USER_ID_METADATA_KEY
from src.db.billing_records import SupabaseBillingStore
from src.schemas.billing import (
    CustomerSnapshot,
    ManualOverrideResult,
    PriceTierTable,
    SubscriptionSnapshot,
    SyncReason,
    TierResetReason,
)
from src.services.billing_writer import BillingWriter
from src.services.clerk_client import ClerkClient
from src.services.prometheus_metrics import record_reconciliation
from src.services.stripe_gateway import StripeGateway
from src.services.tier_resolver import resolve, unpaid_invoices
from src.utils.exceptions import BillingError, IdentityProviderError
from src.utils.security_validators import mask_email, normalize_email
from src.utils.sentry_context import capture_payment_error

logger = logging.getLogger(__name__)

TRIGGER = "manual"


class ManualBillingOverride:
    def __init__(
        self,
        gateway: StripeGateway,
        store: SupabaseBillingStore,
        clerk: ClerkClient,
        writer: BillingWriter,
        price_table: PriceTierTable,
    ):
        self._gateway = gateway
        self._store = store
        self._clerk = clerk
        self._writer = writer
        self._price_table = price_table

    def run(self, email: str) -> ManualOverrideResult:
        """
        Reset the billing state of the user owning ``email`` to match Stripe.

        Returns:
            A result describing what was found and written. ``success`` is False
            when no customer or user could be found or a provider call failed.
        """
        email = normalize_email(email)
        try:
            return self._run(email)
        except BillingError as e:
            logger.error(f"[MANUAL_OVERRIDE] Failed for {mask_email(email)}: {type(e).__name__}: {e}")
            record_reconciliation(TRIGGER, None, "error")
            capture_payment_error(e, operation="manual_override")
            return ManualOverrideResult(success=False, email=email, error=str(e))

    def _run(self, email: str) -> ManualOverrideResult:
        logger.info(f"[MANUAL_OVERRIDE] Checking payment status for {mask_email(email)}")

        customer = self._gateway.find_customer_by_email(email)
        if customer is None:
            logger.warning(f"[MANUAL_OVERRIDE] No Stripe customer for {mask_email(email)}")
            return ManualOverrideResult(
                success=False,
                email=email,
                error="No customer/subscription found for this email",
            )

        # Must complete before any write
        invoices = self._gateway.list_unpaid_invoices(customer.id)
        unpaid = unpaid_invoices(invoices)
        for invoice in unpaid:
            logger.warning(
                f"[MANUAL_OVERRIDE] {invoice.status.upper()} invoice {invoice.id}: "
                f"{invoice.amount_due / 100:.2f} {invoice.currency.upper()}"
            )

        subscription = self._find_paying_subscription(customer.id)

        user_id = self._resolve_user_id(email, customer, subscription)
        if user_id is None:
            logger.warning(f"[MANUAL_OVERRIDE] No user found for {mask_email(email)}")
            return ManualOverrideResult(
                success=False,
                email=email,
                customer_id=customer.id,
                invoices_checked=True,
                has_unpaid_invoices=bool(unpaid),
                unpaid_invoice_ids=[invoice.id for invoice in unpaid],
                error="No user found for this email",
            )

        previous_tier, previous_status = self._previous_state(user_id)

        resolved = resolve(subscription, invoices, self._price_table)
        if subscription is None:
            # Keep the discovered customer attached even though there is nothing to bill
            resolved = replace(resolved, fields=replace(resolved.fields, customer_id=customer.id))

        reason = TierResetReason.UNPAID_INVOICES if unpaid else TierResetReason.MANUAL_SYNC
        write = self._writer.write(user_id, resolved, reason=reason)

        logger.info(
            f"[MANUAL_OVERRIDE] User {user_id}: tier {previous_tier} -> {resolved.tier.value}, "
            f"billing status {previous_status} -> {resolved.fields.status.value} "
            f"(reason={reason.value})"
        )
        record_reconciliation(
            TRIGGER, None, "found" if subscription else SyncReason.NO_SUBSCRIPTION_FOUND.value
        )

        return ManualOverrideResult(
            success=True,
            email=email,
            user_id=user_id,
            customer_id=customer.id,
            subscription_id=subscription.id if subscription else None,
            stripe_status=subscription.status if subscription else None,
            invoices_checked=True,
            has_unpaid_invoices=bool(unpaid),
            unpaid_invoice_ids=[invoice.id for invoice in unpaid],
            determined_tier=resolved.tier.value,
            determined_billing_status=resolved.fields.status.value,
            previous_tier=previous_tier,
            previous_billing_status=previous_status,
            tier_reset_reason=reason.value,
            reason=None if subscription else SyncReason.NO_SUBSCRIPTION_FOUND.value,
            cache_updated=write.cache_updated,
        )

    def _find_paying_subscription(self, customer_id: str) -> SubscriptionSnapshot | None:
        for status in ("active", "trialing"):
            subscriptions = self._gateway.list_subscriptions(customer_id, status=status, limit=1)
            if subscriptions:
                return subscriptions[0]
        return None

    def _resolve_user_id(
        self,
        email: str,
        customer: CustomerSnapshot,
        subscription: SubscriptionSnapshot | None,
    ) -> str | None:
        if subscription and subscription.metadata.get(STRIPE_USER_ID_METADATA_KEY):
            return subscription.metadata[STRIPE_USER_ID_METADATA_KEY]

        if customer.metadata.get(STRIPE_USER_ID_METADATA_KEY):
            return customer.metadata[STRIPE_USER_ID_METADATA_KEY]

        try:
            user_ids = self._clerk.find_user_ids_by_email(email)
        except IdentityProviderError as e:
            logger.warning(f"[MANUAL_OVERRIDE] Clerk email search failed, trying Supabase: {e}")
            user_ids = []
        if user_ids:
            return user_ids[0]

        user = self._store.find_user_by_email(email)
        return user["id"] if user else None

    def _previous_state(self, user_id: str) -> tuple[str | None, str | None]:
        user = self._store.get_user(user_id)
        if user:
            return user.get(COL_TIER), user.get(COL_BILLING_STATUS)
        return None, None
