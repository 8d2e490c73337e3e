"""
Billing sync routes

Lets a signed-in user (or an operator) force their billing state to be
reconciled with Stripe, for example right after checkout when the webhook
has not arrived yet.
"""

import logging

from fastapi import APIRouter, Depends

from src.schemas.billing import BillingSyncResponse
from src.security.deps import get_admin_key, get_current_user_id
from src.services.billing_services import BillingServices, get_billing_services
from src.utils.exceptions import APIExceptions, ReconciliationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Billing"])

# Seconds clients should wait before retrying a failed sync
SYNC_RETRY_AFTER = 30


def _sync(services: BillingServices, user_id: str, trigger: str) -> BillingSyncResponse:
    try:
        outcome = services.reconciler.sync_user(user_id, trigger=trigger)
    except ReconciliationError:
        # Details were logged and captured by the reconciler
        raise APIExceptions.service_unavailable(
            "Billing sync", retry_after=SYNC_RETRY_AFTER
        ) from None

    return BillingSyncResponse.from_outcome(outcome)


@router.post("/billing/sync", response_model=BillingSyncResponse, response_model_exclude_none=True)
def sync_billing(
    user_id: str = Depends(get_current_user_id),
    services: BillingServices = Depends(get_billing_services),
):
    """
    Reconcile the caller's subscription, tier and billing status with Stripe.

    Returns:
        ``{synced, method?, status?, reason?, cancelAtPeriodEnd?}``. When no
        subscription was synced, ``synced`` is false and ``reason`` is
        ``no_user`` when there is no user row and ``no_subscription_found`` when
        the user was reset to free.
    """
    logger.info(f"[BILLING_SYNC] Sync requested by user {user_id}")
    return _sync(services, user_id, trigger="sync")


@router.post(
    "/admin/billing/sync/{user_id}",
    response_model=BillingSyncResponse,
    response_model_exclude_none=True,
)
def admin_sync_billing(
    user_id: str,
    admin_key: str = Depends(get_admin_key),
    services: BillingServices = Depends(get_billing_services),
):
    """Operator variant of the sync endpoint for an arbitrary user id."""
    logger.info(f"[BILLING_SYNC] Admin sync requested for user {user_id}")
    return _sync(services, user_id, trigger="admin")
