"""
Scheduled job endpoints.

Called by an external scheduler, authenticated with a shared secret in the
query string rather than a user token.
"""

from __future__ import annotations

import asyncio
import hmac
import os

from fastapi import APIRouter, HTTPException, Query

from subzero.observability.logging import get_logger
from subzero.subscriptions.reminders import ReminderService

router = APIRouter(prefix="/api/cron", tags=["cron"])
logger = get_logger(__name__)


def _check_secret(secret: str | None) -> None:
    expected = os.getenv("SUBZERO_CRON_SECRET")
    if not expected:
        logger.error("SUBZERO_CRON_SECRET not configured; rejecting cron call")
        raise HTTPException(status_code=503, detail="Cron is not configured")
    if not secret or not hmac.compare_digest(secret, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/send-reminders")
async def send_reminders(secret: str | None = Query(default=None)) -> dict[str, object]:
    """Create renewal notifications for subscriptions renewing within the window."""
    _check_secret(secret)

    report = await asyncio.to_thread(ReminderService().run)
    return {
        "success": True,
        "message": report.message,
        "reminded": report.reminded,
        "users": report.users,
        "notifications": report.notifications,
        "email_recipients": len(report.email_recipients),
    }
