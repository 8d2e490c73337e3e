"""
Billing record persistence in the Supabase ``users`` table.

Only the billing columns listed in ``src.constants`` are ever written; every
update is a column-scoped PATCH on one row so unrelated user data is untouched.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from supabase import Client

from src.config.supabase_config import execute_with_retry
from src.constants import (
    COL_BILLING_CANCEL_AT_PERIOD_END,
    COL_BILLING_PERIOD_END,
    COL_BILLING_PLAN,
    COL_BILLING_STATUS,
    COL_CUSTOMER_ID,
    COL_SUBSCRIPTION_ID,
    COL_TIER,
    COL_TIER_RESET_AT,
    COL_TIER_RESET_REASON,
    COL_UPDATED_AT,
    USER_BILLING_COLUMNS,
    USERS_TABLE,
)
from src.schemas.billing import ResolvedBilling, TierResetReason
from src.services.prometheus_metrics import track_provider_call
from src.utils.exceptions import BillingStoreError
from src.utils.security_validators import sanitize_for_logging

logger = logging.getLogger(__name__)


def billing_columns(
    resolved: ResolvedBilling,
    now: datetime,
    reason: TierResetReason | None = None,
) -> dict[str, Any]:
    """
    Map a resolved billing tuple to the owned ``users`` columns.

    The customer id is omitted when unknown so a previously discovered
    customer is never erased.
    """
    fields = resolved.fields
    columns: dict[str, Any] = {
        COL_BILLING_PLAN: fields.plan.value,
        COL_BILLING_STATUS: fields.status.value,
        COL_BILLING_PERIOD_END: (
            fields.current_period_end.isoformat() if fields.current_period_end else None
        ),
        COL_BILLING_CANCEL_AT_PERIOD_END: fields.cancel_at_period_end,
        COL_SUBSCRIPTION_ID: fields.subscription_id,
        COL_TIER: resolved.tier.value,
        COL_UPDATED_AT: now.isoformat(),
    }
    if fields.customer_id:
        columns[COL_CUSTOMER_ID] = fields.customer_id
    if reason is not None:
        columns[COL_TIER_RESET_AT] = now.isoformat()
        columns[COL_TIER_RESET_REASON] = reason.value
    return columns


class SupabaseBillingStore:
    """Reads user rows and writes billing columns through PostgREST."""

    def __init__(self, get_client: Callable[[], Client] | None = None):
        self._get_client = get_client

    def _execute(self, operation_name: str, operation: Callable[[Client], Any]):
        with track_provider_call("supabase", operation_name):
            return execute_with_retry(
                operation, operation_name=operation_name, get_client=self._get_client
            )

    def _select_one(self, operation_name: str, column: str, value: str) -> dict[str, Any] | None:
        try:
            result = self._execute(
                operation_name,
                lambda client: client.table(USERS_TABLE)
                .select(",".join(USER_BILLING_COLUMNS))
                .eq(column, value)
                .limit(1)
                .execute(),
            )
        except Exception as e:
            logger.error(
                f"Error in {operation_name} for {column}={sanitize_for_logging(value)}: {e}"
            )
            raise BillingStoreError(f"{operation_name} failed") from e

        if result.data:
            return result.data[0]
        return None

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        return self._select_one("get_user", "id", user_id)

    def find_user_by_email(self, email: str) -> dict[str, Any] | None:
        return self._select_one("find_user_by_email", "email", email.strip().lower())

    def find_user_by_customer_id(self, customer_id: str) -> dict[str, Any] | None:
        return self._select_one("find_user_by_customer_id", COL_CUSTOMER_ID, customer_id)

    def _update(self, operation_name: str, user_id: str, columns: dict[str, Any]) -> None:
        try:
            result = self._execute(
                operation_name,
                lambda client: client.table(USERS_TABLE)
                .update(columns)
                .eq("id", user_id)
                .execute(),
            )
        except Exception as e:
            logger.error(f"Error in {operation_name} for user {sanitize_for_logging(user_id)}: {e}")
            raise BillingStoreError(f"{operation_name} failed", user_id=user_id) from e

        if not result.data:
            raise BillingStoreError(f"{operation_name} matched no user row", user_id=user_id)

    def save_billing(
        self,
        user_id: str,
        resolved: ResolvedBilling,
        reason: TierResetReason | None = None,
    ) -> dict[str, Any]:
        """
        Write the owned billing columns for one user.

        Returns:
            The columns that were sent.

        Raises:
            BillingStoreError: when the update fails or matches no row.
        """
        columns = billing_columns(resolved, datetime.now(UTC), reason)
        self._update("save_billing", user_id, columns)
        logger.info(
            f"Saved billing record for user {user_id}: tier={resolved.tier.value} "
            f"status={resolved.fields.status.value}"
        )
        return columns

    def save_customer_id(self, user_id: str, customer_id: str) -> None:
        self._update(
            "save_customer_id",
            user_id,
            {COL_CUSTOMER_ID: customer_id, COL_UPDATED_AT: datetime.now(UTC).isoformat()},
        )
        logger.info(f"Persisted Stripe customer {customer_id} for user {user_id}")
