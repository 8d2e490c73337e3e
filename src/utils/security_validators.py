"""
Validation and log-sanitizing helpers for user-supplied values.

Emails arrive from operators on the command line and from provider payloads,
so they are validated before lookups and masked before they reach the logs.
"""

import logging
import re

logger = logging.getLogger(__name__)

# RFC 5322 style pattern, strict enough to reject colons in the local part
EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)


def is_valid_email(email: str) -> bool:
    """Validate an email address before using it for provider lookups.

    Examples:
        >>> is_valid_email("user@example.com")
        True
        >>> is_valid_email("invalid@")
        False
    """
    if not email or not isinstance(email, str):
        return False

    parts = email.rsplit("@", 1)
    if len(parts) != 2:
        return False

    local_part, domain_part = parts
    # RFC 5321 length limits
    if len(local_part) > 64 or len(domain_part) > 255:
        return False

    return bool(EMAIL_PATTERN.match(email))


def normalize_email(email: str) -> str:
    return email.strip().lower()


def sanitize_for_logging(value: str) -> str:
    """Sanitize user-controlled strings for safe logging.

    Prevents log injection by removing newlines and other control characters
    that could be used to forge log entries.
    """
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    return value.replace("\n", " ").replace("\r", " ").replace("\x00", "")


def mask_email(email: str | None) -> str:
    """Mask an email for logs: ``jane.doe@example.com`` -> ``ja***oe@example.com``."""
    if not email:
        return ""
    email = sanitize_for_logging(email)
    local, _, domain = email.partition("@")
    masked_local = f"{local[:2]}***{local[-2:]}" if len(local) > 4 else "***"
    return f"{masked_local}@{domain}" if domain else masked_local
