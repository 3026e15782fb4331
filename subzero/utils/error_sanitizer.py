"""
Client-safe error messages.

Messages returned to API clients must not carry file paths, SQL errors,
tokens, ciphertext or internal module names. Short validation messages pass
through for 400 responses; everything else collapses to a generic message.
"""

from __future__ import annotations

import re

from subzero.observability.logging import get_logger

logger = get_logger(__name__)

_SENSITIVE = re.compile(
    "|".join(
        [
            r"/[^\s]+\.py",
            r"Traceback \(most recent call last\)",
            r"File \".*\"",
            r"sqlite3?\.",
            r"constraint failed",
            r"no such (table|column)",
            r"Bearer [A-Za-z0-9._-]+",
            r"ya29\.[A-Za-z0-9._-]+",
            r"[0-9a-f]{24}:[0-9a-f]{32}:",
            r"[A-Za-z0-9_-]{32,}",
            r"subzero\.[a-z_.]+",
        ]
    ),
    re.IGNORECASE,
)

GENERIC_MESSAGES = {
    400: "Invalid request. Please check your input and try again.",
    401: "Authentication required.",
    404: "Resource not found.",
    409: "Request conflicts with the current state.",
    422: "Invalid data format.",
    500: "An internal error occurred. Please try again later.",
    502: "Upstream service error. Please try again later.",
    503: "Service temporarily unavailable.",
}

_MAX_PASSTHROUGH_LENGTH = 120


def sanitize_error_message(message: str | None, status_code: int = 500) -> str:
    """Return ``message`` if it is safe to show a client, else a generic message."""
    generic = GENERIC_MESSAGES.get(status_code, "An error occurred.")
    if not message:
        return generic

    if _SENSITIVE.search(message):
        logger.warning("Sanitized sensitive error message (status=%d)", status_code)
        return generic

    if (
        status_code in (400, 409)
        and len(message) <= _MAX_PASSTHROUGH_LENGTH
        and not any(c in message for c in "{}[]\n")
    ):
        return message

    return generic
