"""Analytics endpoints: burn chart series, dashboard stats and spending insights."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from subzero.api.middleware.user_auth import AuthenticatedUser, get_current_user
from subzero.subscriptions import projection
from subzero.subscriptions.insights import analyze_spending
from subzero.subscriptions.models import AIAnalysisResult, BurnDataPoint, DashboardStats, utc_now
from subzero.subscriptions.repository import SubscriptionRepository

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


class BurnResponse(BaseModel):
    points: list[BurnDataPoint]
    annual_savings: float


@router.get("/burn", response_model=BurnResponse)
async def burn(user: AuthenticatedUser = Depends(get_current_user)) -> BurnResponse:
    """12-month burn series with the optimized path, plus the yearly saving."""
    subs = await asyncio.to_thread(SubscriptionRepository.list_by_user, user.id)
    return BurnResponse(
        points=projection.burn_series(subs, utc_now()),
        annual_savings=projection.annual_savings(subs),
    )


@router.get("/stats", response_model=DashboardStats)
async def stats(user: AuthenticatedUser = Depends(get_current_user)) -> DashboardStats:
    subs = await asyncio.to_thread(SubscriptionRepository.list_by_user, user.id)
    return projection.dashboard_stats(subs, utc_now())


@router.get("/insights", response_model=AIAnalysisResult)
async def insights(user: AuthenticatedUser = Depends(get_current_user)) -> AIAnalysisResult:
    """Rule-based spending insights; ``kill`` entries feed the dashboard kill list."""
    subs = await asyncio.to_thread(SubscriptionRepository.list_by_user, user.id)
    return analyze_spending(subs, utc_now())
