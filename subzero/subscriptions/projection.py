"""
Financial Projection Engine - 12-month burn forecast and optimized path.

Pure functions over a subscription list. ``now`` is always passed in, so
results are reproducible. All amounts are in the base currency
(amount_in_base_currency); rounding to 2 decimals happens only when a point
is constructed.

Series layout (index -> month offset from now):
    0-4   past months     actual only
    5     pivot month     actual and projected (same value)
    6-11  future months   projected = baseline + yearly renewals that month
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime

from dateutil.relativedelta import relativedelta

from subzero.config import UPCOMING_RENEWAL_DAYS, YEARLY_DISCOUNT_RATE
from subzero.subscriptions.models import (
    BillingCycle,
    BurnDataPoint,
    DashboardStats,
    OptimizedPoint,
    Subscription,
    SubscriptionSource,
)

PAST_MONTHS = 5
FUTURE_MONTHS = 6
PIVOT_INDEX = PAST_MONTHS
MONTH_LABEL_FORMAT = "%b %y"


def _as_date(now: date | datetime) -> date:
    return now.date() if isinstance(now, datetime) else now


def _month_at(now: date | datetime, offset: int) -> date:
    return _as_date(now).replace(day=1) + relativedelta(months=offset)


def _round(value: float) -> float:
    return round(value, 2)


def monthly_equivalent(subscriptions: Iterable[Subscription]) -> float:
    """Baseline monthly cost: monthly amounts plus yearly amounts / 12."""
    return sum(sub.monthly_cost() for sub in subscriptions)


def optimized_monthly_equivalent(
    subscriptions: Iterable[Subscription], discount: float = YEARLY_DISCOUNT_RATE
) -> float:
    """Baseline if every monthly subscription switched to discounted yearly billing."""
    total = 0.0
    for sub in subscriptions:
        if sub.billing_cycle == BillingCycle.MONTHLY:
            total += sub.amount_in_base_currency * (1 - discount)
        else:
            total += sub.amount_in_base_currency / 12
    return total


def yearly_hit(subscriptions: Iterable[Subscription], month: date) -> float:
    """Full amount of yearly subscriptions renewing in the calendar month of ``month``."""
    return sum(
        sub.amount_in_base_currency
        for sub in subscriptions
        if sub.billing_cycle == BillingCycle.YEARLY
        and sub.renewal_date.year == month.year
        and sub.renewal_date.month == month.month
    )


def month_labels(now: date | datetime) -> list[str]:
    return [
        _month_at(now, offset).strftime(MONTH_LABEL_FORMAT)
        for offset in range(-PAST_MONTHS, FUTURE_MONTHS + 1)
    ]


def project(subscriptions: list[Subscription], now: date | datetime) -> list[BurnDataPoint]:
    """Build the 12-point burn series."""
    baseline = monthly_equivalent(subscriptions)
    points = []

    for offset in range(-PAST_MONTHS, FUTURE_MONTHS + 1):
        month = _month_at(now, offset)
        label = month.strftime(MONTH_LABEL_FORMAT)

        if offset < 0:
            points.append(BurnDataPoint(month=label, actual=_round(baseline)))
        elif offset == 0:
            value = _round(baseline)
            points.append(BurnDataPoint(month=label, actual=value, projected=value))
        else:
            value = _round(baseline + yearly_hit(subscriptions, month))
            points.append(BurnDataPoint(month=label, projected=value))

    return points


def optimize(
    subscriptions: list[Subscription],
    months: list[str],
    now: date | datetime,
    discount: float = YEARLY_DISCOUNT_RATE,
) -> list[OptimizedPoint]:
    """
    Optimized-path values aligned to ``months`` (labels from project()).

    Index PIVOT_INDEX is the current month. Past months get no value; the
    pivot gets the optimized baseline; future months add the same yearly
    renewals the projected series carries.
    """
    base = optimized_monthly_equivalent(subscriptions, discount)
    points = []

    for index, label in enumerate(months):
        offset = index - PIVOT_INDEX
        if offset < 0:
            points.append(OptimizedPoint(month=label))
            continue

        hit = yearly_hit(subscriptions, _month_at(now, offset)) if offset > 0 else 0.0
        points.append(OptimizedPoint(month=label, optimized=_round(base + hit)))

    return points


def annual_savings(
    subscriptions: Iterable[Subscription], discount: float = YEARLY_DISCOUNT_RATE
) -> float:
    """Yearly saving if every monthly subscription switched to yearly billing."""
    total = sum(
        sub.amount_in_base_currency * 12 * discount
        for sub in subscriptions
        if sub.billing_cycle == BillingCycle.MONTHLY
    )
    return _round(total)


def burn_series(subscriptions: list[Subscription], now: date | datetime) -> list[BurnDataPoint]:
    """project() with the optimized path merged in by position."""
    points = project(subscriptions, now)
    optimized = optimize(subscriptions, [p.month for p in points], now)
    return [
        point.model_copy(update={"optimized": opt.optimized})
        for point, opt in zip(points, optimized)
    ]


def dashboard_stats(
    subscriptions: list[Subscription],
    now: date | datetime,
    upcoming_days: int = UPCOMING_RENEWAL_DAYS,
) -> DashboardStats:
    today = _as_date(now)
    monthly = monthly_equivalent(subscriptions)
    upcoming = sum(
        1 for sub in subscriptions if 0 <= (sub.renewal_date - today).days <= upcoming_days
    )
    return DashboardStats(
        total_monthly_spend=_round(monthly),
        total_yearly_spend=_round(monthly * 12),
        active_count=len(subscriptions),
        ai_detected_count=sum(
            1 for sub in subscriptions if sub.source == SubscriptionSource.AI_DETECTED
        ),
        upcoming_renewals=upcoming,
    )
