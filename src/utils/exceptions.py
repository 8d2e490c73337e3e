"""
Billing exceptions and HTTP exception factories.

Domain exceptions describe what went wrong while reconciling billing state;
routes translate them to HTTP responses through APIExceptions so end users
never see raw provider messages.

Usage:
    from src.utils.exceptions import APIExceptions, ReconciliationError

    try:
        outcome = reconciler.sync_user(user_id)
    except ReconciliationError:
        raise APIExceptions.service_unavailable("Billing sync", retry_after=30)
"""

from fastapi import HTTPException


class BillingError(Exception):
    """Base class for billing reconciliation failures."""


class BillingConfigurationError(BillingError):
    """Required configuration is missing; raised before any client is built."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = missing or []


class BillingProviderError(BillingError):
    """Transient failure talking to the payment provider (network, 5xx, rate limit)."""

    def __init__(self, message: str, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class BillingStoreError(BillingError):
    """The durable store could not be read or updated."""

    def __init__(self, message: str, user_id: str | None = None):
        super().__init__(message)
        self.user_id = user_id


class IdentityProviderError(BillingError):
    """The identity provider (metadata cache) rejected or timed out a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ReconciliationError(BillingError):
    """A reconciliation run aborted on a transient error; callers may retry the whole run."""

    def __init__(self, message: str, user_id: str | None = None, step: str | None = None):
        super().__init__(message)
        self.user_id = user_id
        self.step = step


class APIExceptions:
    """Factory class for creating standardized HTTP exceptions."""

    @staticmethod
    def unauthorized(detail: str = "Invalid or missing session token") -> HTTPException:
        """
        401 Unauthorized - Authentication failed.

        Args:
            detail: Custom error message

        Returns:
            HTTPException with status 401
        """
        return HTTPException(
            status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"}
        )

    @staticmethod
    def service_unavailable(
        service: str = "Service", retry_after: int | None = None
    ) -> HTTPException:
        """
        503 Service Unavailable - A dependency is temporarily failing.

        Args:
            service: Human readable name of the unavailable service
            retry_after: Optional seconds until the client should retry

        Returns:
            HTTPException with status 503 and optional Retry-After header
        """
        headers = {"Retry-After": str(retry_after)} if retry_after else None
        return HTTPException(
            status_code=503,
            detail=f"{service} is temporarily unavailable",
            headers=headers,
        )
