"""
Sync Orchestrator - scan every connected mailbox, extract, persist.

Flow per sync(user_id):
    1. Load the user's connected accounts (none -> failed result, no writes)
    2. Take the per-user advisory lock
    3. Scan all accounts concurrently; each account settles on its own and a
       failed account contributes zero emails
    4. Extract candidates per account so detections stay attributable
    5. Persist candidates (AI-detected, dedup-merged)
    6. Stamp last_synced_at / last_sync_count on every loaded account
    7. Release the lock, return aggregate counts

sync() never raises to its caller; failures are reported in SyncResult.
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from subzero.config import (
    PROVIDER_TIMEOUT_SECONDS,
    SCAN_INCREMENTAL_MAX_RESULTS,
    SCAN_MAX_RESULTS,
    SCAN_QUERY_MODE,
    SYNC_LOCK_TTL_SECONDS,
    SYNC_STALENESS_HOURS,
)
from subzero.errors import ConfigurationError
from subzero.gmail.models import ConnectedMailAccount, CredentialBundle, ScanResult, utc_now
from subzero.gmail.scanner import MailboxScanner, base_query_for, build_query
from subzero.infrastructure import sync_lock
from subzero.observability.logging import get_logger
from subzero.observability.telemetry import counter, log_event, redact_id, time_block
from subzero.security.token_vault import decrypt_bundle, encrypt_bundle
from subzero.storage import MailAccountRepository
from subzero.subscriptions.extractor import SubscriptionExtractor
from subzero.subscriptions.models import SubscriptionSource
from subzero.subscriptions.service import SubscriptionService

logger = get_logger(__name__)

NO_ACCOUNTS_ERROR = "No Gmail accounts connected. Connect an account first."
SYNC_IN_PROGRESS_ERROR = "A sync is already in progress."


@dataclass
class SyncResult:
    """Aggregate outcome of one sync invocation."""

    success: bool
    added: int = 0
    scanned: int = 0
    accounts_scanned: int = 0
    error: str | None = None


def should_auto_sync(
    accounts: list[ConnectedMailAccount],
    now: datetime,
    staleness: timedelta = timedelta(hours=SYNC_STALENESS_HOURS),
) -> bool:
    """
    True when the user has accounts and the newest last_synced_at is older
    than the staleness window (or no account has synced yet).
    """
    if not accounts:
        return False
    synced = [a.last_synced_at for a in accounts if a.last_synced_at is not None]
    if not synced:
        return True
    return now - max(synced) > staleness


class SyncOrchestrator:
    """Runs full syncs for one user at a time (per-user lock)."""

    def __init__(
        self,
        scanner: MailboxScanner | None = None,
        extractor: SubscriptionExtractor | None = None,
        service: SubscriptionService | None = None,
        account_timeout: float = PROVIDER_TIMEOUT_SECONDS * 4,
        lock_ttl: float = SYNC_LOCK_TTL_SECONDS,
        query_mode: str = SCAN_QUERY_MODE,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.scanner = scanner or MailboxScanner()
        self.extractor = extractor or SubscriptionExtractor()
        self.service = service or SubscriptionService()
        self.account_timeout = account_timeout
        self.lock_ttl = lock_ttl
        self.base_query = base_query_for(query_mode)
        self.clock = clock

    async def sync(self, user_id: str, after: datetime | None = None) -> SyncResult:
        """
        Run one full sync across every mailbox the user has connected.

        Args:
            user_id: Owner of the accounts
            after: Incremental bound; None runs the rolling discovery window
        """
        try:
            accounts = await asyncio.to_thread(MailAccountRepository.list_by_user, user_id)
        except sqlite3.Error as e:
            logger.error("Failed to load accounts for user %s: %s", user_id, e)
            return SyncResult(success=False, error="Failed to load connected accounts.")

        if not accounts:
            return SyncResult(success=False, error=NO_ACCOUNTS_ERROR)

        owner = await asyncio.to_thread(sync_lock.acquire, user_id, self.lock_ttl)
        if owner is None:
            return SyncResult(success=False, error=SYNC_IN_PROGRESS_ERROR)

        try:
            with time_block("sync.total"):
                return await self._run(user_id, accounts, after)
        except ConfigurationError as e:
            counter("sync.config_error")
            logger.error("Sync aborted for user %s: %s", user_id, e)
            return SyncResult(success=False, error=str(e))
        finally:
            try:
                await asyncio.to_thread(sync_lock.release, user_id, owner)
            except sqlite3.Error as e:
                # Lock expires on its own after lock_ttl
                logger.error("Failed to release sync lock for user %s: %s", user_id, e)

    async def auto_sync(self, user_id: str) -> SyncResult | None:
        """Run exactly one sync if the user's data is stale, else return None."""
        try:
            accounts = await asyncio.to_thread(MailAccountRepository.list_by_user, user_id)
        except sqlite3.Error as e:
            logger.error("Failed to load accounts for user %s: %s", user_id, e)
            return SyncResult(success=False, error="Failed to load connected accounts.")
        if not should_auto_sync(accounts, self.clock()):
            return None
        counter("sync.auto_triggered")
        return await self.sync(user_id)

    async def _run(
        self, user_id: str, accounts: list[ConnectedMailAccount], after: datetime | None
    ) -> SyncResult:
        now = self.clock()
        query = build_query(self.base_query, after=after)
        max_results = SCAN_INCREMENTAL_MAX_RESULTS if after else SCAN_MAX_RESULTS

        outcomes = await asyncio.gather(
            *(self._scan_account(account, query, max_results) for account in accounts),
            return_exceptions=True,
        )

        scans: list[tuple[ConnectedMailAccount, ScanResult]] = []
        for account, outcome in zip(accounts, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, ConfigurationError) or not isinstance(outcome, Exception):
                    raise outcome
                counter("sync.account_failed")
                logger.warning(
                    "Account %s skipped (%s): %s",
                    redact_id(account.email),
                    type(outcome).__name__,
                    outcome,
                )
                continue
            scans.append((account, outcome))

        scanned = sum(len(result.emails) for _, result in scans)

        # Extraction per account keeps each detection tied to its mailbox
        extracted = await asyncio.gather(
            *(self.extractor.extract([e.text for e in result.emails]) for _, result in scans)
        )

        added_by_account: dict[str, int] = {}
        for (account, _), candidates in zip(scans, extracted):
            added = 0
            for candidate in candidates:
                result = await asyncio.to_thread(
                    self.service.persist, user_id, candidate, SubscriptionSource.AI_DETECTED, now
                )
                if result.success and not result.merged:
                    added += 1
                elif not result.success:
                    logger.warning("Candidate not saved: %s", result.error)
            added_by_account[account.id] = added

        for account in accounts:
            try:
                await asyncio.to_thread(
                    MailAccountRepository.record_sync,
                    account.id,
                    now,
                    added_by_account.get(account.id, 0),
                )
            except sqlite3.Error as e:
                counter("sync.bookkeeping_failed")
                logger.error("Failed to record sync for %s: %s", redact_id(account.email), e)

        total_added = sum(added_by_account.values())
        log_event(
            "sync.complete",
            user_id=user_id,
            accounts=len(accounts),
            accounts_failed=len(accounts) - len(scans),
            scanned=scanned,
            added=total_added,
        )
        return SyncResult(
            success=True,
            added=total_added,
            scanned=scanned,
            accounts_scanned=len(accounts),
        )

    async def _scan_account(
        self, account: ConnectedMailAccount, query: str, max_results: int
    ) -> ScanResult:
        bundle = decrypt_bundle(account.encrypted_credentials)

        async def persist_rotated(refreshed: CredentialBundle) -> None:
            ciphertext = encrypt_bundle(refreshed)
            await asyncio.to_thread(
                MailAccountRepository.update_credentials, account.id, ciphertext
            )

        return await asyncio.wait_for(
            self.scanner.scan(
                account.email,
                bundle,
                query=query,
                max_results=max_results,
                on_token_refresh=persist_rotated,
            ),
            timeout=self.account_timeout,
        )
