import logging
import time
from collections.abc import Callable

import httpx

from src.config.config import Config
from supabase import Client, create_client
from supabase.client import ClientOptions

logger = logging.getLogger(__name__)

_supabase_client: Client | None = None
_last_error: Exception | None = None  # Track last initialization error
_last_error_time: float = 0  # Timestamp of last error
ERROR_CACHE_TTL = 60.0  # Retry after 60 seconds


def get_supabase_client() -> Client:
    global _supabase_client, _last_error, _last_error_time

    if _supabase_client is not None:
        return _supabase_client

    # Check if error is stale (>60s old), retry if so
    if _last_error is not None:
        time_since_error = time.time() - _last_error_time
        if time_since_error < ERROR_CACHE_TTL:
            retry_in = int(ERROR_CACHE_TTL - time_since_error)
            raise RuntimeError(
                f"Supabase unavailable (retry in {retry_in}s): {_last_error}"
            ) from _last_error
        logger.info("Error cache expired, retrying Supabase initialization...")
        _last_error = None
        _last_error_time = 0

    try:
        if not Config.SUPABASE_URL or not Config.SUPABASE_KEY:
            raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set")
        if not Config.SUPABASE_URL.startswith(("http://", "https://")):
            raise RuntimeError(
                f"SUPABASE_URL must start with 'http://' or 'https://'. "
                f"Expected: 'https://{Config.SUPABASE_URL}'"
            )

        url = Config.SUPABASE_URL
        masked_url = url[:30] + "..." if len(url) > 30 else url
        logger.info(f"Initializing Supabase client with URL: {masked_url}")

        postgrest_base_url = f"{Config.SUPABASE_URL}/rest/v1"
        timeout = Config.SUPABASE_TIMEOUT_SECONDS

        # base_url must be set so postgrest relative paths resolve correctly
        httpx_client = httpx.Client(
            base_url=postgrest_base_url,
            headers={
                "apikey": Config.SUPABASE_KEY,
                "Authorization": f"Bearer {Config.SUPABASE_KEY}",
            },
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            limits=httpx.Limits(
                max_connections=20,
                max_keepalive_connections=10,
                keepalive_expiry=60.0,
            ),
            http2=True,
        )

        _supabase_client = create_client(
            supabase_url=Config.SUPABASE_URL,
            supabase_key=Config.SUPABASE_KEY,
            options=ClientOptions(
                postgrest_client_timeout=timeout,
                schema="public",
                headers={"X-Client-Info": "billing-sync/1.0"},
            ),
        )

        if hasattr(_supabase_client, "postgrest") and hasattr(_supabase_client.postgrest, "session"):
            _supabase_client.postgrest.session = httpx_client
            logger.info(
                "Configured Supabase client with HTTP/2 connection pooling (base_url: %s)",
                postgrest_base_url,
            )

        return _supabase_client

    except Exception as e:
        _last_error = e
        _last_error_time = time.time()
        logger.error(
            f"Failed to initialize Supabase client: {type(e).__name__}: {e}",
            exc_info=True,
        )
        raise RuntimeError(f"Supabase client initialization failed: {e}") from e


def cleanup_supabase_client():
    """
    Cleanup the Supabase client and close httpx connections.

    Called during application shutdown.
    """
    global _supabase_client

    try:
        if _supabase_client is not None:
            if hasattr(_supabase_client, "postgrest") and hasattr(_supabase_client.postgrest, "session"):
                session = _supabase_client.postgrest.session
                if hasattr(session, "close"):
                    session.close()
            _supabase_client = None
            logger.info("Supabase client cleanup completed")
    except Exception as e:
        logger.warning(f"Error during Supabase client cleanup: {e}")


def reset_supabase_client() -> bool:
    """
    Close the cached client so the next call builds a fresh connection pool.

    Returns:
        bool: True if reset was performed, False if no client was cached
    """
    global _supabase_client, _last_error, _last_error_time

    if _supabase_client is None:
        return False

    try:
        if hasattr(_supabase_client, "postgrest") and hasattr(_supabase_client.postgrest, "session"):
            session = _supabase_client.postgrest.session
            if hasattr(session, "close"):
                session.close()
    except Exception as close_error:
        logger.debug(f"Error closing httpx client during reset: {close_error}")

    _supabase_client = None
    _last_error = None
    _last_error_time = 0
    logger.info("Supabase client reset - next request will create fresh connection")
    return True


def is_http2_protocol_error(error: Exception) -> bool:
    """
    Check if an exception is an HTTP/2 protocol error that requires connection reset.

    These typically follow a server-side connection reset or a stale keepalive
    connection.
    """
    error_str = str(error).lower()
    error_type = type(error).__name__

    if "protocolerror" in error_type.lower():
        return True

    http2_error_indicators = [
        "streaminputs.send_headers",
        "streaminputs.recv_data",
        "connectioninputs.recv_data",
        "connectionstate.closed",
        "stream closed",
        "connection reset by peer",
        "goaway",
        "h2_error",
    ]
    if any(indicator in error_str for indicator in http2_error_indicators):
        return True

    return "invalid input" in error_str and ("state" in error_str or "inputs" in error_str)


def execute_with_retry(
    operation: Callable[[Client], object],
    max_retries: int = 2,
    operation_name: str = "database operation",
    get_client: Callable[[], Client] | None = None,
):
    """
    Execute a database operation with automatic retry on HTTP/2 protocol errors.

    Args:
        operation: Callable that receives a Supabase client and performs the query.
        max_retries: Maximum number of retry attempts (default: 2)
        operation_name: Name of the operation for logging purposes
        get_client: Client factory; defaults to the shared lazily built client.

    Returns:
        The result of the operation

    Example:
        def update_user(client):
            return client.table("users").update(data).eq("id", user_id).execute()

        result = execute_with_retry(update_user, operation_name="update_user")
    """
    client_factory = get_client or get_supabase_client
    last_error = None

    for attempt in range(max_retries + 1):
        try:
            client = client_factory()
            return operation(client)
        except Exception as e:
            last_error = e

            if not is_http2_protocol_error(e):
                raise
            if attempt >= max_retries:
                logger.error(
                    f"HTTP/2 protocol error in {operation_name} after {max_retries + 1} attempts: {e}"
                )
                raise

            logger.warning(
                f"HTTP/2 protocol error in {operation_name} (attempt {attempt + 1}/{max_retries + 1}): {e}. "
                f"Resetting client and retrying..."
            )
            if get_client is None:
                reset_supabase_client()
            time.sleep(0.1)

    raise last_error if last_error else RuntimeError(f"{operation_name} failed with no error captured")
