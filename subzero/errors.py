"""Exception taxonomy shared across the ingestion pipeline.

Configuration errors are fatal for the whole operation. Credential, provider
and extraction errors are scoped to one account or one call and are recovered
as close to their origin as possible.
"""

from __future__ import annotations


class SubZeroError(Exception):
    """Base class for all SubZero errors."""


class ConfigurationError(SubZeroError):
    """Deployment misconfiguration (missing key, missing OAuth client settings)."""


class CredentialError(SubZeroError):
    """A stored credential bundle could not be used."""


class MalformedCiphertextError(CredentialError):
    """Stored ciphertext is structurally invalid (segments, hex, nonce/tag length)."""


class DecryptionError(CredentialError):
    """Authentication tag mismatch: wrong key or tampered ciphertext."""


class MailProviderError(SubZeroError):
    """Gmail list/get/userinfo call failed."""


class ExtractionError(SubZeroError):
    """Extraction oracle failed or returned unusable output."""


class SubscriptionValidationError(SubZeroError):
    """Subscription input failed validation before reaching the store."""

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []


class PersistenceError(SubZeroError):
    """A single document-store write failed."""
