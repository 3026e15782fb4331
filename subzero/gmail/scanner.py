"""
Mailbox Scanner - fetch candidate receipt emails from one Gmail account.

Given a decrypted CredentialBundle and a search query, returns the plain-text
bodies of matching messages. Message gets are issued concurrently and settle
independently: one failed or timed-out fetch is recorded and skipped, never
propagated to its siblings.

Token rotation is surfaced as an explicit awaited callback. If the access
token is refreshed before the scan or rotated by the transport mid-scan, the
merged bundle (refresh token preserved) is handed to ``on_token_refresh``
before scan() returns.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol

from google.oauth2.credentials import Credentials

from subzero.config import (
    PROVIDER_TIMEOUT_SECONDS,
    SCAN_DISCOVERY_QUERY,
    SCAN_LABEL_QUERY,
    SCAN_MAX_RESULTS,
    SCAN_WINDOW_DAYS,
)
from subzero.errors import MailProviderError
from subzero.gmail.client import GmailApiClient
from subzero.gmail.models import CredentialBundle, ScannedEmail, ScanResult
from subzero.gmail.oauth import GmailOAuthService
from subzero.gmail.parser import GmailParsingError, extract_plain_text, message_subject
from subzero.observability.logging import get_logger
from subzero.observability.telemetry import counter, log_event, redact_id, time_block

logger = get_logger(__name__)

TokenRefreshCallback = Callable[[CredentialBundle], Awaitable[None]]

BASE_QUERIES = {"keywords": SCAN_DISCOVERY_QUERY, "labels": SCAN_LABEL_QUERY}


class MailboxClient(Protocol):
    def list_message_ids(self, query: str, max_results: int) -> list[str]: ...

    def get_message(self, message_id: str) -> dict[str, Any]: ...


def base_query_for(mode: str) -> str:
    """Keyword search over subjects and bodies, or Gmail's purchase labels."""
    try:
        return BASE_QUERIES[mode]
    except KeyError:
        raise ValueError(f"Unknown scan query mode: {mode!r}") from None


def build_query(
    base_query: str = SCAN_DISCOVERY_QUERY,
    newer_than_days: int | None = SCAN_WINDOW_DAYS,
    after: datetime | None = None,
) -> str:
    """
    Combine a Gmail search query with a recency bound.

    An explicit ``after`` timestamp (incremental sync) wins over the rolling
    ``newer_than`` window (discovery sync).
    """
    if after is not None:
        return f"{base_query} after:{int(after.timestamp())}"
    if newer_than_days:
        return f"{base_query} newer_than:{newer_than_days}d"
    return base_query


def format_email_text(account_email: str, subject: str, body: str) -> str:
    """Prefix a body with its source account so pooled texts stay traceable."""
    return f"[Account: {account_email}]\nSubject: {subject}\n\n{body}"


class MailboxScanner:
    """Scans one mailbox per call. Holds no credentials between calls."""

    def __init__(
        self,
        oauth_service: GmailOAuthService | None = None,
        client_factory: Callable[[Credentials], MailboxClient] | None = None,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
        label_with_account: bool = True,
    ):
        self.oauth_service = oauth_service or GmailOAuthService()
        self.client_factory = client_factory or GmailApiClient
        self.timeout = timeout
        self.label_with_account = label_with_account

    async def scan(
        self,
        account_email: str,
        bundle: CredentialBundle,
        query: str | None = None,
        max_results: int = SCAN_MAX_RESULTS,
        on_token_refresh: TokenRefreshCallback | None = None,
    ) -> ScanResult:
        """
        Scan one mailbox.

        Raises:
            ConfigurationError: OAuth client settings missing
            CredentialError: Refresh token expired or revoked
            MailProviderError: Listing failed
            asyncio.TimeoutError: Refresh or listing exceeded the provider timeout
        """
        query = query or build_query()
        credentials = self.oauth_service.build_credentials(bundle)
        result = ScanResult(account_email=account_email)

        if self.oauth_service.needs_refresh(credentials):
            await self._with_timeout(self.oauth_service.refresh, credentials)
            await self._rotate(result, bundle, credentials, on_token_refresh)

        with time_block("gmail.scan"):
            client = await asyncio.to_thread(self.client_factory, credentials)
            message_ids = await self._with_timeout(client.list_message_ids, query, max_results)
            result.listed = len(message_ids)

            outcomes = await asyncio.gather(
                *(self._fetch(client, account_email, message_id) for message_id in message_ids),
                return_exceptions=True,
            )

        for message_id, outcome in zip(message_ids, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                counter("gmail.message_fetch_failed")
                result.failures.append(redact_id(message_id))
                logger.warning(
                    "Message fetch failed (%s): %s",
                    type(outcome).__name__,
                    redact_id(message_id),
                )
                continue
            if outcome is not None:
                result.emails.append(outcome)

        # The transport refreshes expired tokens on 401 without telling us
        if credentials.token != (result.refreshed_bundle or bundle).access_token:
            await self._rotate(result, bundle, credentials, on_token_refresh)

        log_event(
            "gmail.scan_complete",
            account=redact_id(account_email),
            listed=result.listed,
            extracted=len(result.emails),
            failed=len(result.failures),
        )
        return result

    async def _with_timeout(self, func: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)

    async def _fetch(
        self, client: MailboxClient, account_email: str, message_id: str
    ) -> ScannedEmail | None:
        message = await self._with_timeout(client.get_message, message_id)
        if not isinstance(message, dict):
            raise MailProviderError("Malformed message response")

        try:
            body = extract_plain_text(message.get("payload"))
        except GmailParsingError:
            counter("gmail.body_decode_failed")
            raise

        if not body.strip():
            counter("gmail.empty_body")
            return None

        subject = message_subject(message)
        text = format_email_text(account_email, subject, body) if self.label_with_account else body
        return ScannedEmail(
            account_email=account_email,
            message_id=message_id,
            subject=subject,
            text=text,
        )

    async def _rotate(
        self,
        result: ScanResult,
        bundle: CredentialBundle,
        credentials: Credentials,
        on_token_refresh: TokenRefreshCallback | None,
    ) -> None:
        merged = bundle.merged(self.oauth_service.bundle_from_credentials(credentials))
        result.refreshed_bundle = merged
        counter("gmail.token_rotated")

        if on_token_refresh is None:
            return
        try:
            await on_token_refresh(merged)
        except Exception as e:
            # The in-memory token is still valid for this scan; report the lost write
            counter("gmail.token_persist_failed")
            logger.error("Failed to persist rotated credentials: %s", type(e).__name__)
            result.token_persist_error = str(e) or type(e).__name__
