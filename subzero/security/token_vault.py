"""Token Vault - encryption at rest for OAuth credential bundles

Bundles are serialized to JSON and sealed with AES-256-GCM.

SECURITY:
- Key must be set via SUBZERO_ENCRYPTION_KEY (64 hex chars = 32 bytes)
- Key is read at first use, not at import, so late-loaded .env files work
- A fresh 12-byte random nonce per call; the 16-byte tag is stored separately
- Stored format is hex "nonce:tag:ciphertext" (self-describing, opaque blob)

Malformed blobs raise MalformedCiphertextError; authentication failures
(wrong key, tampered data) raise DecryptionError. Neither is retried.
"""

from __future__ import annotations

import binascii
import json
import os
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from subzero.errors import ConfigurationError, DecryptionError, MalformedCiphertextError
from subzero.gmail.models import CredentialBundle
from subzero.observability.logging import get_logger
from subzero.observability.telemetry import counter

logger = get_logger(__name__)

ENCRYPTION_KEY_ENV = "SUBZERO_ENCRYPTION_KEY"
KEY_HEX_LENGTH = 64
NONCE_BYTES = 12
TAG_BYTES = 16
SEPARATOR = ":"


def generate_key() -> str:
    """Return a new random key in the format SUBZERO_ENCRYPTION_KEY expects."""
    return secrets.token_hex(KEY_HEX_LENGTH // 2)


def _load_key() -> bytes:
    """
    Read and validate the encryption key

    Raises:
        ConfigurationError: If the key is missing, not hex, or the wrong length
    """
    key_hex = os.getenv(ENCRYPTION_KEY_ENV)

    if not key_hex:
        raise ConfigurationError(
            f"{ENCRYPTION_KEY_ENV} environment variable must be set. "
            "Generate one with: python -c "
            "'from subzero.security.token_vault import generate_key; print(generate_key())'"
        )

    if len(key_hex) != KEY_HEX_LENGTH:
        raise ConfigurationError(
            f"{ENCRYPTION_KEY_ENV} must be {KEY_HEX_LENGTH} hex characters (32 bytes), "
            f"got {len(key_hex)}"
        )

    try:
        return bytes.fromhex(key_hex)
    except ValueError as e:
        raise ConfigurationError(f"{ENCRYPTION_KEY_ENV} is not valid hex") from e


def encrypt(plaintext: str) -> str:
    """
    Encrypt a string into a "nonce:tag:ciphertext" hex token

    Raises:
        ConfigurationError: If the key is missing or invalid
    """
    aesgcm = AESGCM(_load_key())
    nonce = os.urandom(NONCE_BYTES)
    # AESGCM appends the tag to the ciphertext
    sealed = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return SEPARATOR.join((nonce.hex(), tag.hex(), ciphertext.hex()))


def decrypt(token: str) -> str:
    """
    Decrypt a token produced by encrypt()

    Raises:
        ConfigurationError: If the key is missing or invalid
        MalformedCiphertextError: Wrong segment count, invalid hex, bad lengths
        DecryptionError: Authentication tag mismatch (wrong key or tampering)
    """
    key = _load_key()

    segments = token.split(SEPARATOR) if isinstance(token, str) else []
    if len(segments) != 3:
        counter("vault.malformed")
        raise MalformedCiphertextError(
            f"Expected 3 segments in stored credential, got {len(segments)}"
        )

    try:
        nonce, tag, ciphertext = (binascii.unhexlify(s) for s in segments)
    except (binascii.Error, ValueError) as e:
        counter("vault.malformed")
        raise MalformedCiphertextError("Stored credential is not valid hex") from e

    if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
        counter("vault.malformed")
        raise MalformedCiphertextError(
            f"Invalid nonce/tag length ({len(nonce)}/{len(tag)} bytes)"
        )

    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as e:
        counter("vault.auth_failed")
        logger.warning("Credential authentication failed (wrong key or tampered data)")
        raise DecryptionError("Failed to decrypt stored credential") from e

    return plaintext.decode("utf-8")


def encrypt_bundle(bundle: CredentialBundle) -> str:
    """Serialize and encrypt a credential bundle."""
    return encrypt(bundle.model_dump_json())


def decrypt_bundle(token: str) -> CredentialBundle:
    """
    Decrypt and parse a credential bundle

    Raises:
        MalformedCiphertextError: Also raised when the plaintext is not a bundle
    """
    plaintext = decrypt(token)
    try:
        return CredentialBundle.model_validate(json.loads(plaintext))
    except (json.JSONDecodeError, ValueError) as e:
        counter("vault.malformed")
        raise MalformedCiphertextError("Decrypted credential is not a valid bundle") from e
