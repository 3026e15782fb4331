"""Subscription service layer - facade between API routes, sync and repository.

Centralizes verification rules, currency normalization and the dedup/merge
of re-detected subscriptions. Every method that takes a subscription id
enforces ownership: not-owned ids behave as not found. Store failures on
verify, update and delete surface as PersistenceError.
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from subzero.config import DEDUP_AMOUNT_MIN_DELTA, DEDUP_AMOUNT_TOLERANCE
from subzero.errors import PersistenceError, SubscriptionValidationError
from subzero.observability.logging import get_logger
from subzero.observability.telemetry import counter
from subzero.subscriptions.currency import CurrencyConverter, get_converter
from subzero.subscriptions.models import (
    ExtractedCandidate,
    Subscription,
    SubscriptionCreate,
    SubscriptionSource,
    SubscriptionUpdate,
    utc_now,
)
from subzero.subscriptions.repository import SubscriptionRepository

logger = get_logger(__name__)


@dataclass
class PersistResult:
    """Outcome of a single persist call."""

    success: bool
    id: str | None = None
    error: str | None = None
    merged: bool = False


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(p) for p in first["loc"]) or "input"
    return f"{field}: {first['msg']}"


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """Re-raise store failures as PersistenceError."""
    try:
        yield
    except sqlite3.Error as e:
        counter("subscriptions.persist_failed")
        logger.error("Failed to %s subscription: %s", action, e)
        raise PersistenceError(f"Failed to {action} subscription") from e


class SubscriptionService:
    """Service layer for subscription operations."""

    def __init__(self, converter: CurrencyConverter | None = None):
        self.converter = converter or get_converter()

    def validate(
        self, data: SubscriptionCreate | ExtractedCandidate | dict[str, Any]
    ) -> SubscriptionCreate:
        """
        Coerce input into a SubscriptionCreate.

        Raises:
            SubscriptionValidationError: Input fails the form schema
        """
        if isinstance(data, SubscriptionCreate):
            return data
        if isinstance(data, ExtractedCandidate):
            return data.to_create()
        try:
            return SubscriptionCreate.model_validate(data)
        except ValidationError as e:
            raise SubscriptionValidationError(_validation_message(e), e.errors()) from e

    def persist(
        self,
        user_id: str,
        data: SubscriptionCreate | ExtractedCandidate | dict[str, Any],
        source: SubscriptionSource | str = SubscriptionSource.MANUAL,
        now: datetime | None = None,
    ) -> PersistResult:
        """
        Validate and store one subscription.

        Manual entries are verified on creation and always inserted.
        AI-detected entries start unverified; one that matches an existing
        subscription (same normalized name, amount within tolerance) is
        merged into it instead of inserted.

        Never raises for bad input or a failed write; the outcome is in the
        returned PersistResult.
        """
        source = SubscriptionSource(source)
        now = now or utc_now()

        try:
            form = self.validate(data)
        except SubscriptionValidationError as e:
            counter("subscriptions.validation_failed")
            return PersistResult(success=False, error=str(e))

        try:
            with _store_errors("save"):
                return self._store(user_id, form, source, now)
        except PersistenceError as e:
            return PersistResult(success=False, error=str(e))

    def _store(
        self,
        user_id: str,
        form: SubscriptionCreate,
        source: SubscriptionSource,
        now: datetime,
    ) -> PersistResult:
        if source == SubscriptionSource.AI_DETECTED:
            existing = SubscriptionRepository.find_duplicate(
                user_id,
                form.name,
                form.amount,
                tolerance=DEDUP_AMOUNT_TOLERANCE,
                min_delta=DEDUP_AMOUNT_MIN_DELTA,
            )
            if existing is not None:
                SubscriptionRepository.mark_detected(existing.id, now, form.renewal_date)
                counter("subscriptions.merged")
                logger.info("Merged re-detected subscription into %s", existing.id)
                return PersistResult(success=True, id=existing.id, merged=True)

        subscription = Subscription(
            id=str(uuid.uuid4()),
            user_id=user_id,
            name=form.name,
            amount=form.amount,
            billing_cycle=form.billing_cycle,
            category=form.category,
            renewal_date=form.renewal_date,
            original_currency=form.currency,
            amount_in_base_currency=self.converter.to_base(form.amount, form.currency),
            source=source,
            verified=source == SubscriptionSource.MANUAL,
            created_at=now,
            updated_at=now,
            last_detected_at=now if source == SubscriptionSource.AI_DETECTED else None,
        )
        SubscriptionRepository.create(subscription)

        counter(f"subscriptions.created.{source.value}")
        return PersistResult(success=True, id=subscription.id)

    @staticmethod
    def list_for_user(user_id: str) -> list[Subscription]:
        return SubscriptionRepository.list_by_user(user_id)

    @staticmethod
    def get(user_id: str, subscription_id: str) -> Subscription | None:
        return SubscriptionRepository.get_by_id(user_id, subscription_id)

    @staticmethod
    def verify(user_id: str, subscription_id: str) -> Subscription | None:
        """Confirm an AI-detected subscription. Idempotent; never un-verifies."""
        with _store_errors("verify"):
            subscription = SubscriptionRepository.verify(user_id, subscription_id)
        if subscription:
            counter("subscriptions.verified")
        return subscription

    def update(
        self, user_id: str, subscription_id: str, updates: SubscriptionUpdate
    ) -> Subscription | None:
        """
        Apply a partial update.

        The base-currency amount is re-derived whenever amount or currency
        changes. Returns None if not found or not owned.
        """
        existing = SubscriptionRepository.get_by_id(user_id, subscription_id)
        if existing is None:
            return None

        changes = updates.model_dump(exclude_none=True)
        fields: dict[str, Any] = {}
        for key in ("name", "amount", "billing_cycle", "category"):
            if key in changes:
                fields[key] = changes[key]
        if "name" in fields:
            fields["name"] = fields["name"].strip()
            if not fields["name"]:
                raise SubscriptionValidationError("name: Subscription name is required")
        if "renewal_date" in changes:
            fields["renewal_date"] = changes["renewal_date"].isoformat()
        if "currency" in changes:
            fields["original_currency"] = changes["currency"]

        if "amount" in changes or "currency" in changes:
            amount = changes.get("amount", existing.amount)
            currency = changes.get("currency", existing.original_currency)
            fields["amount_in_base_currency"] = self.converter.to_base(amount, currency)

        with _store_errors("update"):
            return SubscriptionRepository.update(user_id, subscription_id, fields)

    @staticmethod
    def delete(user_id: str, subscription_id: str) -> bool:
        with _store_errors("delete"):
            return SubscriptionRepository.delete(user_id, subscription_id)
