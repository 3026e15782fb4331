"""User settings endpoints (notification preferences)."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends

from subzero.api.middleware.user_auth import AuthenticatedUser, get_current_user
from subzero.storage import UserRepository
from subzero.subscriptions.models import NotificationSettings

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("/notifications", response_model=NotificationSettings)
async def get_notifications(
    user: AuthenticatedUser = Depends(get_current_user),
) -> NotificationSettings:
    return await asyncio.to_thread(UserRepository.get_notification_settings, user.id)


@router.put("/notifications", response_model=NotificationSettings)
async def update_notifications(
    request: NotificationSettings,
    user: AuthenticatedUser = Depends(get_current_user),
) -> NotificationSettings:
    await asyncio.to_thread(UserRepository.ensure, user.id, user.email or None)
    return await asyncio.to_thread(UserRepository.update_notification_settings, user.id, request)
