"""
Subscription API endpoints.

Manual CRUD plus verification of AI-detected entries. All operations are
scoped to the signed-in user.
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from subzero.api.middleware.user_auth import AuthenticatedUser, get_current_user
from subzero.errors import SubscriptionValidationError
from subzero.observability.logging import get_logger
from subzero.subscriptions.models import (
    Subscription,
    SubscriptionCreate,
    SubscriptionSource,
    SubscriptionUpdate,
)
from subzero.subscriptions.service import SubscriptionService
from subzero.utils.error_sanitizer import sanitize_error_message

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])
logger = get_logger(__name__)


def get_subscription_service() -> SubscriptionService:
    return SubscriptionService()


class SubscriptionResponse(BaseModel):
    id: str
    name: str
    amount: float
    billing_cycle: str
    category: str
    renewal_date: str
    original_currency: str
    amount_in_base_currency: float
    source: str
    verified: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_subscription(cls, sub: Subscription) -> SubscriptionResponse:
        return cls(
            id=sub.id,
            name=sub.name,
            amount=sub.amount,
            billing_cycle=sub.billing_cycle,
            category=sub.category,
            renewal_date=sub.renewal_date.isoformat(),
            original_currency=sub.original_currency,
            amount_in_base_currency=sub.amount_in_base_currency,
            source=sub.source,
            verified=sub.verified,
            created_at=sub.created_at.isoformat(),
            updated_at=sub.updated_at.isoformat(),
        )


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Subscription not found")


@router.get("", response_model=list[SubscriptionResponse])
async def list_subscriptions(
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[SubscriptionResponse]:
    subs = await asyncio.to_thread(SubscriptionService.list_for_user, user.id)
    return [SubscriptionResponse.from_subscription(s) for s in subs]


@router.post("", response_model=SubscriptionResponse, status_code=201)
async def create_subscription(
    request: SubscriptionCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    """Add a subscription by hand. Manual entries are verified immediately."""
    result = await asyncio.to_thread(
        service.persist, user.id, request, SubscriptionSource.MANUAL
    )
    if not result.success or result.id is None:
        raise HTTPException(
            status_code=500, detail=sanitize_error_message(result.error, 500)
        )

    sub = await asyncio.to_thread(SubscriptionService.get, user.id, result.id)
    if sub is None:
        raise _not_found()
    return SubscriptionResponse.from_subscription(sub)


@router.patch("/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription(
    subscription_id: str,
    request: SubscriptionUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    try:
        sub = await asyncio.to_thread(service.update, user.id, subscription_id, request)
    except SubscriptionValidationError as e:
        raise HTTPException(status_code=400, detail=sanitize_error_message(str(e), 400)) from None

    if sub is None:
        raise _not_found()
    return SubscriptionResponse.from_subscription(sub)


@router.delete("/{subscription_id}")
async def delete_subscription(
    subscription_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, str]:
    deleted = await asyncio.to_thread(SubscriptionService.delete, user.id, subscription_id)
    if not deleted:
        raise _not_found()
    return {"status": "deleted", "id": subscription_id}


@router.post("/{subscription_id}/verify", response_model=SubscriptionResponse)
async def verify_subscription(
    subscription_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
) -> SubscriptionResponse:
    """Confirm an AI-detected subscription."""
    sub = await asyncio.to_thread(SubscriptionService.verify, user.id, subscription_id)
    if sub is None:
        raise _not_found()
    return SubscriptionResponse.from_subscription(sub)
