"""
Gmail payload helpers: header lookup and plain-text body resolution.

Side-effect free. Decoding failures surface as GmailParsingError so the
scanner can count the message as a failed fetch instead of crashing.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterable
from typing import Any

_TEXT_PLAIN = "text/plain"


class GmailParsingError(ValueError):
    """Raised when a Gmail payload cannot be decoded."""


def header_lookup(headers: Iterable[dict[str, str]], name: str) -> str | None:
    name_lower = name.lower()
    for header in headers:
        if header.get("name", "").lower() == name_lower:
            return header.get("value")
    return None


def decode_base64url(data: str) -> str:
    """Decode Gmail's URL-safe base64 body data ('-' and '_' alphabet, no padding)."""
    standard = data.replace("-", "+").replace("_", "/")
    padding = "=" * (-len(standard) % 4)
    try:
        decoded = base64.b64decode(standard + padding)
    except (binascii.Error, ValueError) as exc:
        raise GmailParsingError("failed to decode message body") from exc
    return decoded.decode("utf-8", errors="replace")


def _find_plain_part(parts: list[dict[str, Any]]) -> str | None:
    """Depth-first: first text/plain part with inline data, nested parts before siblings."""
    for part in parts:
        data = (part.get("body") or {}).get("data")
        if part.get("mimeType") == _TEXT_PLAIN and data:
            return decode_base64url(data)
        if not data and part.get("parts"):
            found = _find_plain_part(part["parts"])
            if found is not None:
                return found
    return None


def extract_plain_text(payload: dict[str, Any] | None) -> str:
    """
    Resolve the readable text of a message payload.

    Inline top-level body data wins. Otherwise the MIME tree is searched
    for the first text/plain part. No match returns "" which callers treat
    as nothing to extract, not as an error.
    """
    if not payload:
        return ""

    data = (payload.get("body") or {}).get("data")
    if data:
        return decode_base64url(data)

    found = _find_plain_part(payload.get("parts") or [])
    return found if found is not None else ""


def message_subject(message: dict[str, Any]) -> str:
    headers = (message.get("payload") or {}).get("headers") or []
    return header_lookup(headers, "Subject") or ""
