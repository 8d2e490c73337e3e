"""
Clerk backend API client.

Clerk holds the per-user ``public_metadata`` that every authorization check
reads, so it acts as the fast-path cache for tier and billing status. Only the
handful of Backend API endpoints needed for that are wrapped here.

API Documentation: https://clerk.com/docs/reference/backend-api
"""

import logging
from typing import Any

import httpx

from src.config import Config
from src.services.prometheus_metrics import track_provider_call
from src.utils.exceptions import IdentityProviderError
from src.utils.security_validators import sanitize_for_logging

logger = logging.getLogger(__name__)


def build_clerk_http_client(
    secret_key: str | None = None,
    base_url: str | None = None,
    timeout: float | None = None,
) -> httpx.Client:
    """Build the httpx client used to talk to the Clerk Backend API."""
    key = secret_key or Config.CLERK_SECRET_KEY
    if not key:
        raise ValueError("CLERK_SECRET_KEY not found in environment variables")

    request_timeout = timeout or Config.CLERK_TIMEOUT_SECONDS
    return httpx.Client(
        base_url=(base_url or Config.CLERK_API_URL).rstrip("/"),
        headers={
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        },
        timeout=httpx.Timeout(request_timeout, connect=min(request_timeout, 5.0)),
    )


class ClerkClient:
    """Thin wrapper around the Clerk users endpoints."""

    def __init__(self, http_client: httpx.Client):
        self._http = http_client

    def _request(self, operation: str, method: str, path: str, **kwargs) -> Any:
        try:
            with track_provider_call("clerk", operation):
                response = self._http.request(method, path, **kwargs)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.warning(
                f"Clerk {operation} returned HTTP {status_code} for {sanitize_for_logging(path)}"
            )
            raise IdentityProviderError(
                f"Clerk {operation} failed with HTTP {status_code}", status_code=status_code
            ) from e
        except httpx.RequestError as e:
            logger.warning(f"Clerk {operation} request error: {type(e).__name__}: {e}")
            raise IdentityProviderError(f"Clerk {operation} request failed: {type(e).__name__}") from e

        if not response.content:
            return None
        return response.json()

    def get_user(self, user_id: str) -> dict[str, Any]:
        return self._request("get_user", "GET", f"/users/{user_id}") or {}

    def get_public_metadata(self, user_id: str) -> dict[str, Any]:
        user = self.get_user(user_id)
        return dict(user.get("public_metadata") or {})

    def merge_public_metadata(self, user_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        """
        Merge ``updates`` into the user's public metadata and write it back.

        Keys not present in ``updates`` are preserved.

        Returns:
            The metadata that was sent.
        """
        current = self.get_public_metadata(user_id)
        merged = {**current, **updates}
        self._request(
            "update_metadata",
            "PATCH",
            f"/users/{user_id}/metadata",
            json={"public_metadata": merged},
        )
        return merged

    def find_user_ids_by_email(self, email: str) -> list[str]:
        users = self._request(
            "list_users", "GET", "/users", params={"email_address": email, "limit": 10}
        )
        # The list endpoint returns a bare array; paginated deployments wrap it in "data"
        if isinstance(users, dict):
            users = users.get("data") or []
        return [user["id"] for user in users or [] if user.get("id")]
