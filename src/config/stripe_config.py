import logging

import stripe

from src.config.config import Config

logger = logging.getLogger(__name__)


def build_stripe_client(
    api_key: str | None = None,
    timeout: float | None = None,
    api_version: str | None = None,
) -> stripe.StripeClient:
    """
    Build a Stripe client bound to one API key.

    The client is returned to the caller rather than stored globally so the
    API process and each CLI run own an explicit instance.
    """
    key = api_key or Config.STRIPE_SECRET_KEY
    if not key:
        raise ValueError("STRIPE_SECRET_KEY not found in environment variables")

    client = stripe.StripeClient(
        key,
        stripe_version=api_version or Config.STRIPE_API_VERSION,
        http_client=stripe.RequestsClient(timeout=timeout or Config.STRIPE_TIMEOUT_SECONDS),
    )
    logger.info(
        f"Stripe client initialized (api_version={api_version or Config.STRIPE_API_VERSION}, "
        f"timeout={timeout or Config.STRIPE_TIMEOUT_SECONDS}s)"
    )
    return client
