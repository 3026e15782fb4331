"""
Subscription domain models for SubZero.

Subscriptions are created manually (verified) or by the Gmail sync pipeline
(unverified until the user confirms). ExtractedCandidate is the transient
shape returned by the extraction oracle before persistence.
"""

from __future__ import annotations

import json
import re
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from subzero.config import BASE_CURRENCY

ISO_DATE_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Category(str, Enum):
    STREAMING = "Streaming"
    SOFTWARE = "Software"
    CLOUD = "Cloud"
    EDUCATION = "Education"
    UTILITIES = "Utilities"
    OTHERS = "Others"


class SubscriptionSource(str, Enum):
    MANUAL = "manual"
    AI_DETECTED = "ai-detected"


class NotificationType(str, Enum):
    RENEWAL = "renewal"
    SAVING = "saving"


class InsightType(str, Enum):
    SAVING = "saving"
    WARNING = "warning"
    TIP = "tip"
    KILL = "kill"


def _normalize_currency(v: str | None) -> str:
    if not v:
        return BASE_CURRENCY
    code = v.strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValueError("currency must be a 3-letter ISO 4217 code")
    return code


def _strict_iso_date(v: Any) -> Any:
    """Accept date objects or 'YYYY-MM-DD' strings only."""
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    if isinstance(v, str):
        text = v.strip()
        if not ISO_DATE_PATTERN.fullmatch(text):
            raise ValueError("renewal_date must be an ISO date (YYYY-MM-DD)")
        try:
            return date.fromisoformat(text)
        except ValueError as e:
            raise ValueError("renewal_date must be an ISO date (YYYY-MM-DD)") from e
    raise ValueError("renewal_date must be an ISO date (YYYY-MM-DD)")


class SubscriptionCreate(BaseModel):
    """Validated input for a new subscription (manual form or AI candidate)."""

    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(..., min_length=1, max_length=100)
    amount: float = Field(..., gt=0)
    billing_cycle: BillingCycle
    category: Category
    renewal_date: date
    currency: str = BASE_CURRENCY

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Subscription name is required")
        return v.strip()

    @field_validator("currency", mode="before")
    @classmethod
    def currency_code(cls, v: str | None) -> str:
        return _normalize_currency(v)

    @field_validator("renewal_date", mode="before")
    @classmethod
    def renewal_iso(cls, v: Any) -> Any:
        return _strict_iso_date(v)


class SubscriptionUpdate(BaseModel):
    """Partial update; unset fields are left unchanged."""

    model_config = ConfigDict(use_enum_values=True)

    name: str | None = Field(default=None, min_length=1, max_length=100)
    amount: float | None = Field(default=None, gt=0)
    billing_cycle: BillingCycle | None = None
    category: Category | None = None
    renewal_date: date | None = None
    currency: str | None = None

    @field_validator("currency", mode="before")
    @classmethod
    def currency_code(cls, v: str | None) -> str | None:
        return None if v is None else _normalize_currency(v)

    @field_validator("renewal_date", mode="before")
    @classmethod
    def renewal_iso(cls, v: Any) -> Any:
        return None if v is None else _strict_iso_date(v)


class Subscription(BaseModel):
    """A tracked recurring charge owned by one user."""

    model_config = ConfigDict(use_enum_values=True)

    id: str
    user_id: str
    name: str
    amount: float = Field(..., gt=0)
    billing_cycle: BillingCycle
    category: Category
    renewal_date: date
    original_currency: str = BASE_CURRENCY
    amount_in_base_currency: float
    source: SubscriptionSource
    verified: bool
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    reminder_sent_at: datetime | None = None
    last_detected_at: datetime | None = None

    def monthly_cost(self) -> float:
        """Monthly-equivalent cost in the base currency."""
        if self.billing_cycle == BillingCycle.YEARLY:
            return self.amount_in_base_currency / 12
        return self.amount_in_base_currency

    def to_db_dict(self) -> dict[str, Any]:
        """Convert to dict for database storage."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "amount": self.amount,
            "billing_cycle": self.billing_cycle,
            "category": self.category,
            "renewal_date": self.renewal_date.isoformat(),
            "original_currency": self.original_currency,
            "amount_in_base_currency": self.amount_in_base_currency,
            "source": self.source,
            "verified": int(self.verified),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "reminder_sent_at": self.reminder_sent_at.isoformat()
            if self.reminder_sent_at
            else None,
            "last_detected_at": self.last_detected_at.isoformat()
            if self.last_detected_at
            else None,
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> Subscription:
        """Create Subscription from database row."""

        def parse_dt(val: str | None) -> datetime | None:
            return datetime.fromisoformat(val) if val else None

        return cls(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            amount=row["amount"],
            billing_cycle=BillingCycle(row["billing_cycle"]),
            category=Category(row["category"]),
            renewal_date=date.fromisoformat(row["renewal_date"]),
            original_currency=row["original_currency"],
            amount_in_base_currency=row["amount_in_base_currency"],
            source=SubscriptionSource(row["source"]),
            verified=bool(row["verified"]),
            created_at=parse_dt(row["created_at"]) or utc_now(),
            updated_at=parse_dt(row["updated_at"]) or utc_now(),
            reminder_sent_at=parse_dt(row.get("reminder_sent_at")),
            last_detected_at=parse_dt(row.get("last_detected_at")),
        )


class ExtractedCandidate(BaseModel):
    """
    One subscription proposed by the extraction oracle.

    Enum values are matched case-insensitively since model output casing
    drifts; everything else is strict.
    """

    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(..., min_length=1, max_length=100)
    amount: float = Field(..., gt=0)
    billing_cycle: BillingCycle
    category: Category
    renewal_date: date
    confidence: float = Field(..., ge=0, le=1)
    currency: str = BASE_CURRENCY
    email_subject: str | None = None
    account_email: str | None = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip()

    @field_validator("billing_cycle", mode="before")
    @classmethod
    def cycle_casefold(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("category", mode="before")
    @classmethod
    def category_casefold(cls, v: Any) -> Any:
        if isinstance(v, str):
            for category in Category:
                if category.value.lower() == v.strip().lower():
                    return category
        return v

    @field_validator("currency", mode="before")
    @classmethod
    def currency_code(cls, v: str | None) -> str:
        return _normalize_currency(v)

    @field_validator("renewal_date", mode="before")
    @classmethod
    def renewal_iso(cls, v: Any) -> Any:
        return _strict_iso_date(v)

    def to_create(self) -> SubscriptionCreate:
        return SubscriptionCreate(
            name=self.name,
            amount=self.amount,
            billing_cycle=self.billing_cycle,
            category=self.category,
            renewal_date=self.renewal_date,
            currency=self.currency,
        )


class BurnDataPoint(BaseModel):
    """One month of the 12-month burn chart."""

    month: str
    actual: float | None = None
    projected: float | None = None
    optimized: float | None = None


class OptimizedPoint(BaseModel):
    """Optimized-path value for one chart month; unset for past months."""

    month: str
    optimized: float | None = None


class AIInsight(BaseModel):
    """One spending observation shown on the dashboard; ``kill`` feeds the kill list."""

    model_config = ConfigDict(use_enum_values=True)

    title: str
    summary: str
    type: InsightType
    confidence: float = Field(..., ge=0, le=1)


class AIAnalysisResult(BaseModel):
    insights: list[AIInsight]
    estimated_monthly_savings: float
    analyzed_at: datetime


class DashboardStats(BaseModel):
    total_monthly_spend: float
    total_yearly_spend: float
    active_count: int
    ai_detected_count: int
    upcoming_renewals: int


class NotificationSettings(BaseModel):
    email: bool = True
    dashboard: bool = True


class Notification(BaseModel):
    """Dashboard alert for a user (renewal reminders, saving tips)."""

    model_config = ConfigDict(use_enum_values=True)

    id: str
    user_id: str
    title: str
    message: str
    type: NotificationType
    read: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    def to_db_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "read": int(self.read),
            "metadata": json.dumps(self.metadata),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> Notification:
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            message=row["message"],
            type=NotificationType(row["type"]),
            read=bool(row["read"]),
            metadata=json.loads(row["metadata"]) if row.get("metadata") else {},
            created_at=datetime.fromisoformat(row["created_at"]),
        )
