"""
Liveness endpoint.

Makes no calls to Stripe, Supabase or Clerk so load balancers can poll it
cheaply; the body reports whether the billing services were built at startup.
"""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Request

from src.config import Config

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", tags=["health"])
async def health_check(request: Request):
    """
    Simple health check endpoint

    Always returns HTTP 200 while the process is serving requests.
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "environment": Config.APP_ENV,
        "billing_services": getattr(request.app.state, "billing", None) is not None,
    }
