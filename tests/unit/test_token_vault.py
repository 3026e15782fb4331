"""Unit tests for the Token Vault

Tests cover:
- Encrypt/decrypt of strings and credential bundles
- Fresh nonce per call
- Tamper and wrong-key detection
- Malformed ciphertext (segments, hex, lengths)
- Key configuration errors at first use
"""

from __future__ import annotations

import pytest

from subzero.errors import (
    ConfigurationError,
    CredentialError,
    DecryptionError,
    MalformedCiphertextError,
)
from subzero.gmail.models import CredentialBundle
from subzero.observability.telemetry import get_counter
from subzero.security import token_vault
from subzero.security.token_vault import ENCRYPTION_KEY_ENV


def test_decrypt_inverts_encrypt(encryption_key):
    token = token_vault.encrypt("hello ✓ world")

    assert token_vault.decrypt(token) == "hello ✓ world"


def test_token_format_is_nonce_tag_ciphertext(encryption_key):
    nonce, tag, ciphertext = token_vault.encrypt("abc").split(":")

    assert len(bytes.fromhex(nonce)) == 12
    assert len(bytes.fromhex(tag)) == 16
    assert len(bytes.fromhex(ciphertext)) == 3


def test_same_plaintext_gets_fresh_nonce(encryption_key):
    first = token_vault.encrypt("same")
    second = token_vault.encrypt("same")

    assert first != second
    assert first.split(":")[0] != second.split(":")[0]


def test_empty_plaintext_round_trips(encryption_key):
    assert token_vault.decrypt(token_vault.encrypt("")) == ""


def test_bundle_round_trip_keeps_every_field(encryption_key):
    bundle = CredentialBundle(
        access_token="ya29.access",
        refresh_token="1//refresh",
        expiry=1_790_000_000_000,
        token_type="Bearer",
        scope="https://www.googleapis.com/auth/gmail.readonly",
    )

    restored = token_vault.decrypt_bundle(token_vault.encrypt_bundle(bundle))

    assert restored == bundle


def test_tampered_ciphertext_raises_decryption_error(encryption_key):
    nonce, tag, ciphertext = token_vault.encrypt("secret payload").split(":")
    flipped = f"{int(ciphertext[0], 16) ^ 1:x}" + ciphertext[1:]

    with pytest.raises(DecryptionError):
        token_vault.decrypt(f"{nonce}:{tag}:{flipped}")
    assert get_counter("vault.auth_failed") == 1


def test_tampered_tag_raises_decryption_error(encryption_key):
    nonce, tag, ciphertext = token_vault.encrypt("secret payload").split(":")
    bad_tag = ("0" if tag[0] != "0" else "1") + tag[1:]

    with pytest.raises(DecryptionError):
        token_vault.decrypt(f"{nonce}:{bad_tag}:{ciphertext}")


def test_wrong_key_raises_decryption_error(monkeypatch, encryption_key):
    token = token_vault.encrypt("secret payload")
    monkeypatch.setenv(ENCRYPTION_KEY_ENV, token_vault.generate_key())

    with pytest.raises(DecryptionError):
        token_vault.decrypt(token)


@pytest.mark.parametrize(
    "token",
    [
        "only-one-segment",
        "a:b",
        "a:b:c:d",
        "",
    ],
)
def test_wrong_segment_count_is_malformed(encryption_key, token):
    with pytest.raises(MalformedCiphertextError):
        token_vault.decrypt(token)


def test_non_hex_segment_is_malformed(encryption_key):
    nonce, tag, _ = token_vault.encrypt("x").split(":")

    with pytest.raises(MalformedCiphertextError):
        token_vault.decrypt(f"{nonce}:{tag}:not-hex!")


def test_short_nonce_is_malformed(encryption_key):
    _, tag, ciphertext = token_vault.encrypt("x").split(":")

    with pytest.raises(MalformedCiphertextError):
        token_vault.decrypt(f"{'00' * 8}:{tag}:{ciphertext}")
    assert get_counter("vault.malformed") == 1


def test_malformed_and_auth_failures_share_credential_base(encryption_key):
    assert issubclass(MalformedCiphertextError, CredentialError)
    assert issubclass(DecryptionError, CredentialError)
    assert not issubclass(MalformedCiphertextError, DecryptionError)


def test_non_bundle_plaintext_is_malformed(encryption_key):
    token = token_vault.encrypt("not json at all")

    with pytest.raises(MalformedCiphertextError):
        token_vault.decrypt_bundle(token)


def test_missing_key_raises_configuration_error_at_first_use(monkeypatch):
    monkeypatch.delenv(ENCRYPTION_KEY_ENV, raising=False)

    with pytest.raises(ConfigurationError):
        token_vault.encrypt("x")


def test_wrong_length_key_raises_configuration_error(monkeypatch):
    monkeypatch.setenv(ENCRYPTION_KEY_ENV, "ab" * 16)

    with pytest.raises(ConfigurationError):
        token_vault.encrypt("x")


def test_non_hex_key_raises_configuration_error(monkeypatch):
    monkeypatch.setenv(ENCRYPTION_KEY_ENV, "zz" * 32)

    with pytest.raises(ConfigurationError):
        token_vault.decrypt("00:00:00")


def test_generate_key_is_64_hex_chars():
    key = token_vault.generate_key()

    assert len(key) == 64
    bytes.fromhex(key)
