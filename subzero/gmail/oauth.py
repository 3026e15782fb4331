"""Gmail OAuth2 service

Handles the OAuth2 lifecycle for connected mailboxes:
- Consent URL generation (offline access, forced consent for a refresh token)
- Authorization code exchange
- Mailbox address lookup via the userinfo API
- Credentials construction from a stored bundle, and token refresh
- Connect / disconnect of a mailbox for a user

Clients are short-lived: credentials are built per operation from an
explicit CredentialBundle, never held in a process-wide singleton.

SECURITY:
- Tokens are persisted only as Token Vault ciphertext
- OAuth client settings are read at first use; missing values raise
  ConfigurationError
"""

from __future__ import annotations

import hashlib
import hmac
import os
import time
from dataclasses import dataclass
from datetime import UTC

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from subzero.config import OAUTH_STATE_MAX_AGE_SECONDS
from subzero.errors import ConfigurationError, CredentialError, MailProviderError
from subzero.gmail.models import ConnectedMailAccount, CredentialBundle
from subzero.observability.logging import get_logger
from subzero.observability.telemetry import counter, log_event, redact_id
from subzero.security import token_vault
from subzero.storage.mail_accounts import MailAccountRepository

logger = get_logger(__name__)

GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
    "openid",
]
AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
UNKNOWN_ADDRESS = "unknown@gmail.com"


@dataclass(frozen=True)
class OAuthClientConfig:
    client_id: str
    client_secret: str
    redirect_uri: str

    @classmethod
    def from_env(cls) -> OAuthClientConfig:
        """
        Read GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET / GOOGLE_REDIRECT_URI

        Raises:
            ConfigurationError: If any of them is missing
        """
        client_id = os.getenv("GOOGLE_CLIENT_ID")
        client_secret = os.getenv("GOOGLE_CLIENT_SECRET")
        redirect_uri = os.getenv("GOOGLE_REDIRECT_URI")

        if not client_id or not client_secret or not redirect_uri:
            raise ConfigurationError(
                "Missing Google OAuth env vars: "
                "GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_REDIRECT_URI"
            )

        return cls(client_id=client_id, client_secret=client_secret, redirect_uri=redirect_uri)


class GmailOAuthService:
    """
    Service for Gmail OAuth2 and mailbox connection management
    """

    def __init__(self, client_config: OAuthClientConfig | None = None):
        self._client_config = client_config

    @property
    def client_config(self) -> OAuthClientConfig:
        if self._client_config is None:
            self._client_config = OAuthClientConfig.from_env()
        return self._client_config

    def _flow(self) -> Flow:
        config = self.client_config
        return Flow.from_client_config(
            {
                "web": {
                    "client_id": config.client_id,
                    "client_secret": config.client_secret,
                    "auth_uri": AUTH_URI,
                    "token_uri": TOKEN_URI,
                    "redirect_uris": [config.redirect_uri],
                }
            },
            scopes=GMAIL_SCOPES,
            redirect_uri=config.redirect_uri,
            # Connect and callback are separate requests; no PKCE verifier to carry over
            autogenerate_code_verifier=False,
        )

    def authorization_url(self, user_id: str) -> str:
        """
        Build the Google consent URL

        Args:
            user_id: SubZero user the mailbox will belong to; carried to the
                callback inside a signed ``state``

        Raises:
            ConfigurationError: If OAuth client settings are missing
        """
        auth_url, _ = self._flow().authorization_url(
            access_type="offline",
            prompt="consent",
            include_granted_scopes="true",
            state=self.sign_state(user_id),
        )
        return auth_url

    def sign_state(self, user_id: str, issued_at: int | None = None) -> str:
        """Return ``<user_id>:<issued_at>:<hmac>`` keyed with the OAuth client secret."""
        issued = int(time.time()) if issued_at is None else issued_at
        payload = f"{user_id}:{issued}"
        return f"{payload}:{self._state_signature(payload)}"

    def verify_state(self, state: str, now: int | None = None) -> str:
        """
        Check a callback ``state`` and return the user id it was issued for

        Raises:
            CredentialError: Malformed, forged or expired state
        """
        try:
            user_id, issued, signature = state.rsplit(":", 2)
            issued_at = int(issued)
        except ValueError:
            counter("oauth.state_rejected")
            raise CredentialError("Malformed OAuth state") from None

        expected = self._state_signature(f"{user_id}:{issued}")
        if not user_id or not hmac.compare_digest(signature, expected):
            counter("oauth.state_rejected")
            raise CredentialError("OAuth state signature mismatch")

        age = (int(time.time()) if now is None else now) - issued_at
        if age > OAUTH_STATE_MAX_AGE_SECONDS:
            counter("oauth.state_rejected")
            raise CredentialError("OAuth state expired")
        return user_id

    def _state_signature(self, payload: str) -> str:
        key = self.client_config.client_secret.encode()
        return hmac.new(key, payload.encode(), hashlib.sha256).hexdigest()

    def exchange_code(self, code: str) -> CredentialBundle:
        """
        Exchange an authorization code for a token bundle

        Raises:
            ConfigurationError: If OAuth client settings are missing
            CredentialError: If Google rejects the code
        """
        flow = self._flow()
        try:
            flow.fetch_token(code=code)
        except Exception as e:
            logger.error("Failed to exchange authorization code: %s", e)
            counter("oauth.code_exchange_failed")
            raise CredentialError(f"Token exchange failed: {e}") from e

        counter("oauth.code_exchanged")
        return self.bundle_from_credentials(flow.credentials)

    def build_credentials(self, bundle: CredentialBundle) -> Credentials:
        """
        Build google-auth Credentials from a stored bundle

        Raises:
            ConfigurationError: If OAuth client settings are missing
        """
        config = self.client_config
        expiry = bundle.expiry_datetime()
        return Credentials(
            token=bundle.access_token,
            refresh_token=bundle.refresh_token,
            token_uri=TOKEN_URI,
            client_id=config.client_id,
            client_secret=config.client_secret,
            scopes=bundle.scope.split() if bundle.scope else None,
            # google-auth compares expiry as naive UTC
            expiry=expiry.astimezone(UTC).replace(tzinfo=None) if expiry else None,
        )

    @staticmethod
    def needs_refresh(credentials: Credentials) -> bool:
        return bool(credentials.refresh_token) and (
            credentials.token is None or credentials.expired
        )

    @staticmethod
    def refresh(credentials: Credentials) -> None:
        """
        Refresh the access token in place (blocking)

        Raises:
            CredentialError: Refresh token expired or revoked
            MailProviderError: Network failure talking to Google
        """
        try:
            credentials.refresh(Request())
        except RefreshError as e:
            counter("oauth.refresh_failed")
            raise CredentialError(f"Token refresh failed: {e}") from e
        except TransportError as e:
            counter("oauth.refresh_transport_error")
            raise MailProviderError(f"Token refresh transport error: {e}") from e

        counter("oauth.token_refreshed")

    @staticmethod
    def bundle_from_credentials(credentials: Credentials) -> CredentialBundle:
        expiry_ms = None
        if credentials.expiry is not None:
            expiry_ms = int(credentials.expiry.replace(tzinfo=UTC).timestamp() * 1000)

        scopes = getattr(credentials, "granted_scopes", None) or credentials.scopes
        return CredentialBundle(
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            expiry=expiry_ms,
            scope=" ".join(scopes) if scopes else None,
        )

    @staticmethod
    def fetch_user_email(credentials: Credentials) -> str:
        """
        Resolve the mailbox address for a set of credentials (blocking)

        Falls back to a placeholder address when Google omits it.

        Raises:
            MailProviderError: If the userinfo call fails
        """
        try:
            service = build("oauth2", "v2", credentials=credentials, cache_discovery=False)
            info = service.userinfo().get().execute()
        except HttpError as e:
            raise MailProviderError(f"Userinfo lookup failed: {e}") from e

        return info.get("email") or UNKNOWN_ADDRESS

    def connect_account(self, user_id: str, code: str) -> ConnectedMailAccount:
        """
        Complete the OAuth callback for a user

        Exchanges the code, resolves the mailbox address, encrypts the bundle
        and upserts the ConnectedMailAccount by (user, address).

        Raises:
            ConfigurationError: OAuth client settings or encryption key missing
            CredentialError: Code exchange rejected
            MailProviderError: Userinfo lookup failed
        """
        bundle = self.exchange_code(code)
        address = self.fetch_user_email(self.build_credentials(bundle))
        account = MailAccountRepository.upsert(
            user_id=user_id,
            email=address,
            encrypted_credentials=token_vault.encrypt_bundle(bundle),
        )

        counter("oauth.account_connected")
        log_event("gmail.account_connected", user_id=user_id, account=redact_id(address))
        return account

    @staticmethod
    def disconnect_account(user_id: str, account_id: str) -> bool:
        """Remove a connected mailbox. Returns False if not found or not owned."""
        removed = MailAccountRepository.delete(user_id, account_id)
        if removed:
            counter("oauth.account_disconnected")
            log_event("gmail.account_disconnected", user_id=user_id, account_id=account_id)
        return removed
