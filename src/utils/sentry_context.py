"""
Sentry error context utilities.

Helpers that attach structured billing context to errors captured by Sentry.
When Sentry was never initialised the SDK calls are no-ops.
"""

import logging
from typing import Any

import sentry_sdk
from sentry_sdk import capture_exception, set_context, set_tag

logger = logging.getLogger(__name__)


def init_sentry(dsn: str | None, environment: str, release: str | None = None) -> bool:
    """
    Initialise the Sentry SDK when a DSN is configured.

    Returns:
        True when Sentry was initialised
    """
    if not dsn:
        logger.info("Sentry disabled (SENTRY_DSN not set)")
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=release,
        send_default_pii=False,
        traces_sample_rate=0.0,
    )
    logger.info(f"Sentry initialized (environment={environment})")
    return True


def capture_error(
    exception: Exception,
    context_type: str | None = None,
    context_data: dict[str, Any] | None = None,
    tags: dict[str, str] | None = None,
) -> str | None:
    """
    Capture an exception to Sentry with structured context.

    Args:
        exception: The exception to capture
        context_type: Type of context for the error
        context_data: Additional context information
        tags: Dictionary of tags for filtering

    Returns:
        Event ID if captured, None if Sentry is disabled
    """
    try:
        if context_type and context_data:
            set_context(context_type, context_data)

        if tags:
            for key, value in tags.items():
                set_tag(key, str(value))

        return capture_exception(exception)
    except Exception as e:
        logger.warning(f"Failed to capture exception to Sentry: {e}")
        return None


def capture_payment_error(
    exception: Exception,
    operation: str,
    provider: str = "stripe",
    user_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> str | None:
    """
    Capture a payment-related error with standard context.

    Args:
        exception: The exception to capture
        operation: Billing operation (e.g., 'reconcile', 'webhook', 'manual_override')
        provider: Payment provider (default: 'stripe')
        user_id: User ID if applicable
        details: Additional details (customer ID, subscription ID, etc.)

    Returns:
        Event ID if captured, None if Sentry is disabled
    """
    context_data = {
        "operation": operation,
        "provider": provider,
    }
    if user_id:
        context_data["user_id"] = user_id
    if details:
        context_data.update(details)

    return capture_error(
        exception,
        context_type="payment",
        context_data=context_data,
        tags={"operation": operation, "provider": provider},
    )


def capture_cache_error(
    exception: Exception,
    operation: str,
    user_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> str | None:
    """
    Capture a fast-path metadata cache failure.

    The durable store already holds the new values when this is called, so
    the event is informational for operators rather than a user-facing error.
    """
    context_data: dict[str, Any] = {"operation": operation, "cache": "clerk_metadata"}
    if user_id:
        context_data["user_id"] = user_id
    if details:
        context_data.update(details)

    return capture_error(
        exception,
        context_type="cache",
        context_data=context_data,
        tags={"operation": operation, "cache": "clerk_metadata"},
    )
