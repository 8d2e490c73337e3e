"""
Stripe Webhook Routes
Endpoint receiving Stripe subscription and invoice events
"""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from src.services.billing_services import BillingServices, get_billing_services
from src.utils.exceptions import BillingError
from src.utils.sentry_context import capture_payment_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["Stripe Webhooks"])


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": message,
            "processed_at": datetime.now(UTC).isoformat(),
        },
    )


@router.post("/webhook", status_code=200)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="stripe-signature"),
    services: BillingServices = Depends(get_billing_services),
):
    """
    Stripe webhook endpoint

    Handled events, each of which re-reconciles the affected user from Stripe:
    - checkout.session.completed
    - customer.subscription.created / updated / deleted
    - invoice.paid / invoice.payment_failed

    Other event types are acknowledged and ignored.

    Status codes:
    - 200: processed, duplicate, ignored, or no matching user
    - 400: missing or invalid signature, unparseable payload
    - 500: reconciliation failed; Stripe retries the delivery
    """
    payload = await request.body()

    try:
        result = await run_in_threadpool(services.webhooks.handle, payload, stripe_signature)
    except ValueError as e:
        logger.error(f"Webhook validation failed: {e}")
        return _error_response(400, f"Validation failed: {e}")
    except BillingError as e:
        logger.error(f"Webhook processing error: {type(e).__name__}: {e}", exc_info=True)
        capture_payment_error(e, operation="webhook")
        return _error_response(500, "Webhook processing failed")

    logger.info(f"Webhook processed: {result.event_type} - {result.message}")
    return JSONResponse(status_code=200, content=result.model_dump(mode="json"))
