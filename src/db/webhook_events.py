"""
Processed Stripe webhook events.

One row per event that reached a final outcome, keyed by the Stripe event id.
Rows are written only after the reconciliation the event triggered has been
committed, so an event that failed is redelivered by Stripe and processed again.
The row also keeps what the event resolved to, which answers "why did this
user's tier change" without replaying Stripe history.
"""

import logging
from datetime import UTC, datetime

from src.config.supabase_config import execute_with_retry
from src.constants import WEBHOOK_EVENTS_TABLE

logger = logging.getLogger(__name__)

OUTCOME_PROCESSED = "processed"
OUTCOME_UNMATCHED = "unmatched"


def is_event_processed(event_id: str) -> bool:
    """
    Check whether a Stripe event already reached a final outcome.

    A failed check reads as "not processed": reconciliation is idempotent, so
    handling the event twice costs one extra Stripe read.
    """
    try:
        result = execute_with_retry(
            lambda client: client.table(WEBHOOK_EVENTS_TABLE)
            .select("event_id")
            .eq("event_id", event_id)
            .limit(1)
            .execute(),
            operation_name="is_event_processed",
        )
    except Exception as e:
        logger.error(f"[STRIPE_WEBHOOK] Could not check event {event_id}, processing it again: {e}")
        return False

    return bool(result.data)


def record_processed_event(
    event_id: str,
    event_type: str,
    outcome: str,
    user_id: str | None = None,
    tier: str | None = None,
    billing_status: str | None = None,
    stripe_account: str | None = None,
) -> bool:
    """
    Record the outcome of a handled event.

    Args:
        event_id: Stripe event id (evt_xxx)
        event_type: Stripe event type, e.g. ``invoice.paid``
        outcome: ``processed`` when a user was reconciled, ``unmatched`` when
            no user row matched the event
        user_id: Reconciled user, if any
        tier: Tier written by the reconciliation
        billing_status: Billing status written by the reconciliation
        stripe_account: Connected account the event came from, if any

    Returns:
        True if the row was stored. A failure is logged and not raised because
        the billing write has already been committed.
    """
    row = {
        "event_id": event_id,
        "event_type": event_type,
        "outcome": outcome,
        "user_id": user_id,
        "tier": tier,
        "billing_status": billing_status,
        "stripe_account": stripe_account,
        "processed_at": datetime.now(UTC).isoformat(),
    }
    try:
        result = execute_with_retry(
            lambda client: client.table(WEBHOOK_EVENTS_TABLE).insert(row).execute(),
            operation_name="record_processed_event",
        )
    except Exception as e:
        # A duplicate id means a concurrent delivery already recorded this event
        if "duplicate key" in str(e).lower():
            logger.info(f"[STRIPE_WEBHOOK] Event {event_id} was already recorded")
            return True
        logger.error(f"[STRIPE_WEBHOOK] Could not record event {event_id} ({event_type}): {e}")
        return False

    if not result.data:
        logger.error(f"[STRIPE_WEBHOOK] Recording event {event_id} returned no row")
        return False

    logger.info(f"[STRIPE_WEBHOOK] Recorded {event_type} {event_id}: {outcome} (tier={tier})")
    return True
