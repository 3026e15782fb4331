"""
Gmail API endpoints: connect mailboxes, list/disconnect them, run syncs.

The OAuth callback is called by Google's redirect, not by the dashboard, so it
carries no bearer token; the user is identified by the signed ``state``
parameter issued with the consent URL.
"""

from __future__ import annotations

import asyncio
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from subzero.api.middleware.user_auth import AuthenticatedUser, get_current_user
from subzero.config import APP_BASE_URL
from subzero.errors import ConfigurationError, CredentialError, MailProviderError
from subzero.gmail.models import ConnectedMailAccount
from subzero.gmail.oauth import GmailOAuthService
from subzero.observability.logging import get_logger
from subzero.storage import MailAccountRepository, UserRepository
from subzero.subscriptions.sync import SyncOrchestrator, SyncResult

router = APIRouter(prefix="/api/gmail", tags=["gmail"])
logger = get_logger(__name__)


def get_oauth_service() -> GmailOAuthService:
    return GmailOAuthService()


def get_sync_orchestrator() -> SyncOrchestrator:
    return SyncOrchestrator()


class ConnectResponse(BaseModel):
    url: str


class ConnectedAccountResponse(BaseModel):
    """A connected mailbox, without its credentials."""

    id: str
    email: str
    connected_at: str
    last_synced_at: str | None
    last_sync_count: int

    @classmethod
    def from_account(cls, account: ConnectedMailAccount) -> ConnectedAccountResponse:
        return cls(
            id=account.id,
            email=account.email,
            connected_at=account.connected_at.isoformat(),
            last_synced_at=account.last_synced_at.isoformat() if account.last_synced_at else None,
            last_sync_count=account.last_sync_count,
        )


class SyncRequest(BaseModel):
    after: datetime | None = None


class SyncResponse(BaseModel):
    success: bool
    added: int
    scanned: int
    accounts_scanned: int
    error: str | None = None
    skipped: bool = False

    @classmethod
    def from_result(cls, result: SyncResult) -> SyncResponse:
        return cls(
            success=result.success,
            added=result.added,
            scanned=result.scanned,
            accounts_scanned=result.accounts_scanned,
            error=result.error,
        )


def _dashboard_redirect(outcome: str) -> RedirectResponse:
    return RedirectResponse(url=f"{APP_BASE_URL.rstrip('/')}/dashboard?sync={outcome}")


@router.get("/connect", response_model=ConnectResponse)
async def connect(
    user: AuthenticatedUser = Depends(get_current_user),
    oauth: GmailOAuthService = Depends(get_oauth_service),
) -> ConnectResponse:
    """Google consent URL for connecting another mailbox."""
    try:
        return ConnectResponse(url=oauth.authorization_url(user.id))
    except ConfigurationError as e:
        logger.error("Gmail connect unavailable: %s", e)
        raise HTTPException(status_code=503, detail="Gmail connection is not configured") from None


@router.get("/callback")
async def callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    oauth: GmailOAuthService = Depends(get_oauth_service),
) -> RedirectResponse:
    """
    OAuth redirect target.

    Exchanges the code, stores the encrypted token bundle (upsert by
    address) and sends the browser back to the dashboard.
    """
    if error:
        logger.info("User denied Gmail access: %s", error)
        return _dashboard_redirect("denied")

    if not code or not state:
        raise HTTPException(
            status_code=400, detail="Missing code or state from Google OAuth callback."
        )

    try:
        user_id = oauth.verify_state(state)
        await asyncio.to_thread(UserRepository.ensure, user_id)
        await asyncio.to_thread(oauth.connect_account, user_id, code)
    except (ConfigurationError, CredentialError, MailProviderError) as e:
        logger.error("Gmail connect failed (%s): %s", type(e).__name__, e)
        return _dashboard_redirect("error")

    return _dashboard_redirect("connected")


@router.get("/accounts", response_model=list[ConnectedAccountResponse])
async def list_accounts(
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[ConnectedAccountResponse]:
    accounts = await asyncio.to_thread(MailAccountRepository.list_by_user, user.id)
    return [ConnectedAccountResponse.from_account(a) for a in accounts]


@router.delete("/accounts/{account_id}")
async def disconnect(
    account_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    oauth: GmailOAuthService = Depends(get_oauth_service),
) -> dict[str, str]:
    removed = await asyncio.to_thread(oauth.disconnect_account, user.id, account_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Connected account not found")
    return {"status": "deleted", "id": account_id}


@router.post("/sync", response_model=SyncResponse)
async def sync(
    request: SyncRequest | None = None,
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
) -> SyncResponse:
    """Run one sync across all of the user's mailboxes."""
    after = request.after if request else None
    result = await orchestrator.sync(user.id, after=after)
    return SyncResponse.from_result(result)


@router.post("/auto-sync", response_model=SyncResponse)
async def auto_sync(
    user: AuthenticatedUser = Depends(get_current_user),
    orchestrator: SyncOrchestrator = Depends(get_sync_orchestrator),
) -> SyncResponse:
    """Sync only if the newest sync is older than the staleness window."""
    result = await orchestrator.auto_sync(user.id)
    if result is None:
        return SyncResponse(success=True, added=0, scanned=0, accounts_scanned=0, skipped=True)
    return SyncResponse.from_result(result)
