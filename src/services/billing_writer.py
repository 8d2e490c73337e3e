"""
Dual-store billing writer.

Applies a resolved billing tuple to the durable store first and the Clerk
metadata cache second. The durable write must succeed; the cache write is
best effort and its failure is reported, not raised.
"""

import logging
from typing import Any

from src.constants import (
    META_BILLING_PERIOD_END,
    META_BILLING_STATUS,
    META_CANCEL_AT_PERIOD_END,
    META_TIER,
)
from src.db.billing_records import SupabaseBillingStore
from src.schemas.billing import ResolvedBilling, TierResetReason, WriteReport
from src.services.clerk_client import ClerkClient
from src.services.prometheus_metrics import record_cache_write_failure
from src.utils.exceptions import IdentityProviderError
from src.utils.sentry_context import capture_cache_error

logger = logging.getLogger(__name__)


def cache_metadata(resolved: ResolvedBilling) -> dict[str, Any]:
    """Owned keys for the fast-path metadata cache."""
    period_end = resolved.fields.current_period_end
    return {
        META_TIER: resolved.tier.value,
        META_BILLING_STATUS: resolved.fields.status.value,
        META_BILLING_PERIOD_END: period_end.isoformat() if period_end else None,
        META_CANCEL_AT_PERIOD_END: resolved.fields.cancel_at_period_end,
    }


class BillingWriter:
    def __init__(self, store: SupabaseBillingStore, clerk: ClerkClient):
        self._store = store
        self._clerk = clerk

    def write(
        self,
        user_id: str,
        resolved: ResolvedBilling,
        reason: TierResetReason | None = None,
    ) -> WriteReport:
        """
        Write ``resolved`` for ``user_id`` to both stores.

        Raises:
            BillingStoreError: the durable write failed; the cache is left untouched.
        """
        self._store.save_billing(user_id, resolved, reason=reason)

        metadata = cache_metadata(resolved)
        try:
            self._clerk.merge_public_metadata(user_id, metadata)
        except IdentityProviderError as e:
            logger.error(
                f"[BILLING_SYNC] Cache write failed for user {user_id} "
                f"(intended tier={resolved.tier.value}, status={resolved.fields.status.value}): {e}",
                extra={
                    "user_id": user_id,
                    "tier": resolved.tier.value,
                    "billing_status": resolved.fields.status.value,
                },
            )
            record_cache_write_failure()
            capture_cache_error(
                e,
                operation="merge_public_metadata",
                user_id=user_id,
                details={"tier": resolved.tier.value, "billing_status": resolved.fields.status.value},
            )
            return WriteReport(durable_updated=True, cache_updated=False, cache_error=str(e))

        return WriteReport(durable_updated=True, cache_updated=True)
