"""
Stripe webhook handling.

Webhooks only tell us *which* user changed. The event payload may be stale or
arrive out of order, so each handled event triggers a normal reconciliation
that re-reads the subscription from Stripe.
"""

import logging
from datetime import UTC, datetime
from typing import Any

import stripe

from src.constants import COL_CUSTOMER_ID, COL_SUBSCRIPTION_ID, STRIPE_USER_ID_METADATA_KEY
from src.db.billing_records import SupabaseBillingStore
from src.db.webhook_events import (
    OUTCOME_PROCESSED,
    OUTCOME_UNMATCHED,
    is_event_processed,
    record_processed_event,
)
from src.schemas.billing import ReconciliationContext, ReconciliationOutcome, WebhookProcessingResult
from src.services.billing_reconciliation import BillingReconciler
from src.services.prometheus_metrics import record_webhook_event
from src.services.stripe_gateway import get_stripe_value, metadata_to_dict

logger = logging.getLogger(__name__)

TRIGGER = "webhook"

HANDLED_EVENT_TYPES = frozenset(
    {
        "checkout.session.completed",
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
        "invoice.paid",
        "invoice.payment_failed",
    }
)


def _object_id(value: Any) -> str | None:
    """Stripe references are either an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return get_stripe_value(value, "id")


def extract_references(event_type: str, obj: Any) -> tuple[str | None, str | None, str | None]:
    """
    Pull (user id, subscription id, customer id) out of an event object.

    Returns:
        A tuple where any element may be None.
    """
    metadata = metadata_to_dict(get_stripe_value(obj, "metadata"))
    user_id = metadata.get(STRIPE_USER_ID_METADATA_KEY)
    customer_id = _object_id(get_stripe_value(obj, "customer"))

    if event_type.startswith("customer.subscription."):
        subscription_id = get_stripe_value(obj, "id")
    elif event_type.startswith("invoice."):
        subscription_id = _object_id(get_stripe_value(obj, "subscription"))
        if subscription_id is None:
            # API versions from 2025-03 moved the reference under parent.subscription_details
            parent = get_stripe_value(obj, "parent")
            details = get_stripe_value(parent, "subscription_details")
            subscription_id = _object_id(get_stripe_value(details, "subscription"))
            user_id = user_id or metadata_to_dict(
                get_stripe_value(details, "metadata")
            ).get(STRIPE_USER_ID_METADATA_KEY)
    else:
        subscription_id = _object_id(get_stripe_value(obj, "subscription"))
        user_id = user_id or get_stripe_value(obj, "client_reference_id")

    return user_id, subscription_id, customer_id


class BillingWebhookHandler:
    """Verifies, de-duplicates and dispatches Stripe webhook events."""

    def __init__(
        self,
        reconciler: BillingReconciler,
        store: SupabaseBillingStore,
        webhook_secret: str | None,
    ):
        self._reconciler = reconciler
        self._store = store
        self._webhook_secret = webhook_secret

    def construct_event(self, payload: bytes, signature: str | None):
        """
        Verify the signature and parse the event.

        Raises:
            ValueError: missing secret, missing signature, bad signature or bad payload.
        """
        if not self._webhook_secret:
            logger.error("Webhook secret not configured - rejecting webhook")
            raise ValueError("Webhook secret not configured")
        if not signature:
            logger.error("Missing webhook signature")
            raise ValueError("Missing webhook signature")
        try:
            # Constant-time comparison happens inside the SDK
            return stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.error(f"Invalid webhook signature: {e}")
            raise ValueError("Invalid webhook signature") from e

    def handle(self, payload: bytes, signature: str | None) -> WebhookProcessingResult:
        """
        Process one webhook delivery.

        Raises:
            ValueError: the delivery could not be authenticated or parsed.
            ReconciliationError: reconciliation failed; Stripe should retry.
        """
        event = self.construct_event(payload, signature)
        event_id = event["id"]
        event_type = event["type"]
        logger.info(f"[STRIPE_WEBHOOK] Processing {event_type} (ID: {event_id})")

        if is_event_processed(event_id):
            logger.warning(f"[STRIPE_WEBHOOK] Duplicate webhook event detected, skipping: {event_id}")
            record_webhook_event(event_type, "duplicate")
            return self._result(event_type, event_id, f"Event {event_id} already processed (duplicate)")

        if event_type not in HANDLED_EVENT_TYPES:
            record_webhook_event(event_type, "ignored")
            return self._result(event_type, event_id, f"Event {event_type} ignored")

        user_id, outcome = self._process(event_type, event["data"]["object"])
        resolved = outcome.resolved if outcome else None

        record_processed_event(
            event_id=event_id,
            event_type=event_type,
            outcome=OUTCOME_PROCESSED if user_id else OUTCOME_UNMATCHED,
            user_id=user_id,
            tier=resolved.tier.value if resolved else None,
            billing_status=resolved.fields.status.value if resolved else None,
            stripe_account=get_stripe_value(event, "account"),
        )
        record_webhook_event(event_type, OUTCOME_PROCESSED if user_id else OUTCOME_UNMATCHED)
        return self._result(
            event_type, event_id, f"Event {event_type} processed successfully", user_id=user_id
        )

    def _process(self, event_type: str, obj: Any) -> tuple[str | None, ReconciliationOutcome | None]:
        metadata_user_id, subscription_id, customer_id = extract_references(event_type, obj)

        user = None
        if metadata_user_id:
            user = self._store.get_user(metadata_user_id)
            if user is None:
                logger.warning(
                    f"[STRIPE_WEBHOOK] userId {metadata_user_id} from {event_type} metadata has no user row"
                )
        if user is None and customer_id:
            user = self._store.find_user_by_customer_id(customer_id)

        if user is None:
            logger.warning(
                f"[STRIPE_WEBHOOK] No user for {event_type} "
                f"(subscription={subscription_id}, customer={customer_id}); nothing to reconcile"
            )
            return None, None

        user_id = str(user["id"])
        context = ReconciliationContext(
            user_id=user_id,
            subscription_id=subscription_id or user.get(COL_SUBSCRIPTION_ID),
            customer_id=customer_id or user.get(COL_CUSTOMER_ID),
            email=user.get("email"),
        )
        outcome = self._reconciler.reconcile(context, trigger=TRIGGER)
        logger.info(
            f"[STRIPE_WEBHOOK] {event_type} reconciled user {user_id}: found={outcome.found} "
            f"tier={outcome.resolved.tier.value if outcome.resolved else None}"
        )
        return user_id, outcome

    @staticmethod
    def _result(
        event_type: str, event_id: str, message: str, user_id: str | None = None
    ) -> WebhookProcessingResult:
        return WebhookProcessingResult(
            success=True,
            event_type=event_type,
            event_id=event_id,
            message=message,
            user_id=user_id,
            processed_at=datetime.now(UTC),
        )
