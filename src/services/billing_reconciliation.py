"""
Billing state reconciliation engine.

One run moves through LOOKUP -> RESOLVE -> WRITE -> DONE. The engine keeps no
state between runs and never retries internally: a transient failure anywhere
aborts the run with ``ReconciliationError`` and the caller decides whether to
run it again. Re-running is always safe because every write is a full
overwrite of the owned fields.
"""

import logging

from src.constants import COL_CUSTOMER_ID, COL_SUBSCRIPTION_ID
from src.db.billing_records import SupabaseBillingStore
from src.schemas.billing import (
    InvoiceSnapshot,
    PriceTierTable,
    ReconciliationContext,
    ReconciliationOutcome,
    SyncReason,
    TierResetReason,
)
from src.services.billing_writer import BillingWriter
from src.services.prometheus_metrics import record_reconciliation, track_reconciliation
from src.services.stripe_gateway import StripeGateway
from src.services.subscription_lookup import Found, SubscriptionLookup, TransientError
from src.services.tier_resolver import resolve
from src.utils.exceptions import BillingError, ReconciliationError
from src.utils.sentry_context import capture_payment_error

logger = logging.getLogger(__name__)

STATE_DONE = "DONE"


class BillingReconciler:
    """Finds a user's subscription, resolves the tier and writes it to both stores."""

    def __init__(
        self,
        lookup: SubscriptionLookup,
        gateway: StripeGateway,
        writer: BillingWriter,
        store: SupabaseBillingStore,
        price_table: PriceTierTable,
    ):
        self._lookup = lookup
        self._gateway = gateway
        self._writer = writer
        self._store = store
        self._price_table = price_table

    def sync_user(self, user_id: str, trigger: str = "sync") -> ReconciliationOutcome:
        """
        Reconcile a user identified only by id, loading stored identifiers first.

        A missing user row is a normal outcome (reason ``no_user``) and nothing is written.
        """
        try:
            user = self._store.get_user(user_id)
        except BillingError as e:
            self._fail(e, user_id, "load_user", trigger)

        if user is None:
            logger.info(f"[BILLING_SYNC] No user row for {user_id}")
            record_reconciliation(trigger, None, SyncReason.NO_USER.value)
            return ReconciliationOutcome(state=STATE_DONE, found=False, reason=SyncReason.NO_USER)

        context = ReconciliationContext(
            user_id=user_id,
            subscription_id=user.get(COL_SUBSCRIPTION_ID),
            customer_id=user.get(COL_CUSTOMER_ID),
            email=user.get("email"),
        )
        return self.reconcile(context, trigger=trigger)

    def reconcile(
        self,
        context: ReconciliationContext,
        trigger: str = "sync",
        reason: TierResetReason | None = None,
    ) -> ReconciliationOutcome:
        """
        Run one reconciliation for the user in ``context``.

        Raises:
            ReconciliationError: a provider or store call failed transiently.
        """
        with track_reconciliation(trigger):
            result = self._lookup.find(context)

            if isinstance(result, TransientError):
                self._fail(result.cause, context.user_id, "lookup", trigger)

            if isinstance(result, Found):
                invoices = self._unpaid_invoices(result.customer_id, context.user_id, trigger)
                resolved = resolve(result.subscription, invoices, self._price_table)
            else:
                resolved = resolve(None, [], self._price_table)

            try:
                write = self._writer.write(context.user_id, resolved, reason=reason)
            except BillingError as e:
                self._fail(e, context.user_id, "write", trigger)

        if isinstance(result, Found):
            logger.info(
                f"[BILLING_SYNC] User {context.user_id} synced via {result.method.value}: "
                f"stripe_status={result.subscription.status} tier={resolved.tier.value} "
                f"billing_status={resolved.fields.status.value}",
                extra={"user_id": context.user_id, "method": result.method.value, "trigger": trigger},
            )
            record_reconciliation(trigger, result.method.value, "found")
            return ReconciliationOutcome(
                state=STATE_DONE,
                found=True,
                method=result.method,
                subscription_status=result.subscription.status,
                resolved=resolved,
                write=write,
            )

        logger.info(
            f"[BILLING_SYNC] No subscription found for user {context.user_id}, reset to free",
            extra={"user_id": context.user_id, "trigger": trigger},
        )
        record_reconciliation(trigger, None, SyncReason.NO_SUBSCRIPTION_FOUND.value)
        return ReconciliationOutcome(
            state=STATE_DONE,
            found=False,
            resolved=resolved,
            write=write,
            reason=SyncReason.NO_SUBSCRIPTION_FOUND,
        )

    def _unpaid_invoices(
        self, customer_id: str | None, user_id: str, trigger: str
    ) -> list[InvoiceSnapshot]:
        if not customer_id:
            return []
        try:
            return self._gateway.list_unpaid_invoices(customer_id)
        except BillingError as e:
            self._fail(e, user_id, "list_invoices", trigger)

    @staticmethod
    def _fail(error: BillingError, user_id: str, step: str, trigger: str):
        logger.error(
            f"[BILLING_SYNC] Reconciliation aborted for user {user_id} at {step}: "
            f"{type(error).__name__}: {error}",
            extra={"user_id": user_id, "trigger": trigger},
        )
        record_reconciliation(trigger, None, "error")
        capture_payment_error(
            error, operation="reconcile", user_id=user_id, details={"step": step, "trigger": trigger}
        )
        raise ReconciliationError(
            f"Billing reconciliation failed at {step}", user_id=user_id, step=step
        ) from error
