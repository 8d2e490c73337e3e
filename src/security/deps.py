"""
FastAPI Security Dependencies
Dependency injection functions for authentication and authorization
"""

import logging
import secrets

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.config import Config
from src.utils.exceptions import APIExceptions

logger = logging.getLogger(__name__)

# HTTP Bearer security scheme with auto_error=False to allow custom error handling
security = HTTPBearer(auto_error=False)

# Constants
ERROR_INVALID_ADMIN_API_KEY = "Invalid admin API key"
SESSION_TOKEN_ALGORITHMS = ["RS256"]

_jwks_client: jwt.PyJWKClient | None = None


def _get_jwks_client() -> jwt.PyJWKClient:
    """Lazily build the JWKS client used when no PEM key is configured."""
    global _jwks_client
    if _jwks_client is None:
        _jwks_client = jwt.PyJWKClient(
            f"{Config.CLERK_API_URL.rstrip('/')}/jwks",
            cache_keys=True,
            headers={"Authorization": f"Bearer {Config.CLERK_SECRET_KEY}"},
            timeout=int(Config.CLERK_TIMEOUT_SECONDS),
        )
    return _jwks_client


def _signing_key(token: str):
    if Config.CLERK_JWT_KEY:
        # Keys pasted into env files often carry escaped newlines
        return Config.CLERK_JWT_KEY.replace("\\n", "\n")
    return _get_jwks_client().get_signing_key_from_jwt(token).key


def decode_session_token(token: str) -> dict:
    """
    Verify a Clerk session token and return its claims.

    Raises:
        jwt.InvalidTokenError: the token is malformed, expired or wrongly signed.
    """
    return jwt.decode(
        token,
        _signing_key(token),
        algorithms=SESSION_TOKEN_ALGORITHMS,
        options={"require": ["exp", "sub"], "verify_aud": False},
        leeway=5,
    )


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    """
    Resolve the signed-in user's id from the bearer session token.

    Raises:
        HTTPException: 401 when the token is missing or cannot be verified
    """
    if credentials is None or not credentials.credentials:
        raise APIExceptions.unauthorized()

    try:
        claims = decode_session_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise APIExceptions.unauthorized("Session token expired") from None
    except jwt.PyJWKClientError as e:
        logger.error(f"Could not fetch Clerk signing keys: {e}")
        raise APIExceptions.unauthorized() from None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected session token: {type(e).__name__}")
        raise APIExceptions.unauthorized() from None

    return claims["sub"]


def get_admin_key(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> str:
    """
    Validate admin API key

    The provided key is compared with the configured ADMIN_API_KEY using a
    constant-time comparison to prevent timing attacks.

    Raises:
        HTTPException: 401 if the admin key is invalid, missing, or doesn't match
    """
    if credentials is None or not credentials.credentials:
        raise APIExceptions.unauthorized(ERROR_INVALID_ADMIN_API_KEY)

    expected_key = Config.ADMIN_API_KEY
    if not expected_key:
        logger.error("ADMIN_API_KEY environment variable is not configured")
        raise APIExceptions.unauthorized(ERROR_INVALID_ADMIN_API_KEY)

    if not secrets.compare_digest(credentials.credentials, expected_key):
        raise APIExceptions.unauthorized(ERROR_INVALID_ADMIN_API_KEY)

    return credentials.credentials
