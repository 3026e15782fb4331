"""
Spending insights - rule-based observations over a user's subscriptions.

Rules, in output order:
    - High monthly spend (monthly equivalent above the threshold): warning
    - Streaming fatigue (more than INSIGHT_STREAMING_LIMIT streaming plans): kill
    - Duplicate names (same normalized name more than once): kill, one per name
    - Nothing flagged: a single "Looking Good!" tip

Pure over its inputs; ``now`` only stamps analyzed_at.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime

from subzero.config import (
    BASE_CURRENCY,
    INSIGHT_HIGH_SPEND_THRESHOLD,
    INSIGHT_SAVINGS_RATE,
    INSIGHT_STREAMING_LIMIT,
    INSIGHT_STREAMING_SAVINGS_RATE,
)
from subzero.observability.telemetry import counter
from subzero.subscriptions.currency import format_amount
from subzero.subscriptions.models import (
    AIAnalysisResult,
    AIInsight,
    Category,
    InsightType,
    Subscription,
)
from subzero.subscriptions.projection import monthly_equivalent
from subzero.subscriptions.repository import normalize_name

LOOKING_GOOD = AIInsight(
    title="Looking Good!",
    summary="Your subscription spending appears well-optimized. Keep it up!",
    type=InsightType.TIP,
    confidence=0.9,
)


def high_spend_insight(total_monthly: float) -> AIInsight | None:
    if total_monthly <= INSIGHT_HIGH_SPEND_THRESHOLD:
        return None
    return AIInsight(
        title="High Monthly Spend Detected",
        summary=(
            f"You're spending {format_amount(total_monthly, BASE_CURRENCY)}/month on "
            "subscriptions. Consider reviewing services you rarely use."
        ),
        type=InsightType.WARNING,
        confidence=0.85,
    )


def streaming_fatigue_insight(
    subscriptions: list[Subscription], total_monthly: float
) -> AIInsight | None:
    streaming = sum(1 for sub in subscriptions if sub.category == Category.STREAMING)
    if streaming <= INSIGHT_STREAMING_LIMIT:
        return None
    saving = format_amount(total_monthly * INSIGHT_STREAMING_SAVINGS_RATE, BASE_CURRENCY, 0)
    return AIInsight(
        title="Streaming Service Fatigue",
        summary=(
            f"You have {streaming} active streaming services. "
            f"Consider canceling 1-2 to save up to {saving}/mo."
        ),
        type=InsightType.KILL,
        confidence=0.82,
    )


def duplicate_insights(subscriptions: list[Subscription]) -> list[AIInsight]:
    """One kill insight per name that appears more than once, in first-seen order."""
    counts = Counter(normalize_name(sub.name) for sub in subscriptions)
    return [
        AIInsight(
            title=f"Duplicate Detected: {name}",
            summary=(
                f'You appear to have {count} active subscriptions for "{name}". '
                "This might be redundant or an error."
            ),
            type=InsightType.KILL,
            confidence=0.95,
        )
        for name, count in counts.items()
        if count > 1
    ]


def analyze_spending(subscriptions: list[Subscription], now: datetime) -> AIAnalysisResult:
    total_monthly = monthly_equivalent(subscriptions)

    insights: list[AIInsight] = []
    for insight in (
        high_spend_insight(total_monthly),
        streaming_fatigue_insight(subscriptions, total_monthly),
    ):
        if insight is not None:
            insights.append(insight)
    insights.extend(duplicate_insights(subscriptions))

    if not insights:
        insights.append(LOOKING_GOOD)

    for insight in insights:
        counter(f"insights.{insight.type}")

    savings = 0.0
    if total_monthly > INSIGHT_HIGH_SPEND_THRESHOLD:
        savings = total_monthly * INSIGHT_SAVINGS_RATE
    return AIAnalysisResult(
        insights=insights,
        estimated_monthly_savings=round(savings, 2),
        analyzed_at=now,
    )
