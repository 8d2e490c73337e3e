"""
Startup service for validating configuration and building the billing services.
"""

import logging
from contextlib import asynccontextmanager

from src.config.supabase_config import cleanup_supabase_client
from src.services.billing_services import build_billing_services
from src.utils.exceptions import BillingConfigurationError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app):
    """
    Application lifespan manager for startup and shutdown events
    """
    logger.info("Starting billing reconciliation service...")

    # Fail fast: no client is built when a required variable is missing
    try:
        app.state.billing = build_billing_services()
    except BillingConfigurationError as e:
        logger.error(f"CRITICAL: Missing required environment variables: {e.missing}")
        logger.error("Application cannot start without these variables")
        raise
    logger.info("All critical environment variables validated")

    try:
        yield
    finally:
        logger.info("Shutting down billing reconciliation service...")
        services = getattr(app.state, "billing", None)
        if services is not None:
            services.close()
            app.state.billing = None
        cleanup_supabase_client()
