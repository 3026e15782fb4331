"""Dashboard notifications (renewal alerts)."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Query

from subzero.api.middleware.user_auth import AuthenticatedUser, get_current_user
from subzero.storage import NotificationRepository
from subzero.subscriptions.models import Notification

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=list[Notification])
async def list_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[Notification]:
    """Newest first."""
    return await asyncio.to_thread(NotificationRepository.list_by_user, user.id, limit)
