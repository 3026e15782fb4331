"""Unit tests for SubscriptionService and SubscriptionRepository

Tests cover:
- Manual vs. AI-detected creation (verified flag, base-currency amount)
- Dedup/merge of re-detected subscriptions
- Ownership on get/update/verify/delete
- Partial updates re-deriving the base amount
- Validation failures reported, not raised
- Store failures reported by persist, raised as PersistenceError elsewhere
"""

from __future__ import annotations

import sqlite3
from datetime import UTC, date, datetime
from unittest.mock import patch

import pytest

from subzero.errors import PersistenceError, SubscriptionValidationError
from subzero.observability.telemetry import get_counter
from subzero.subscriptions.models import (
    ExtractedCandidate,
    SubscriptionCreate,
    SubscriptionSource,
    SubscriptionUpdate,
)
from subzero.subscriptions.repository import SubscriptionRepository, normalize_name
from subzero.subscriptions.service import SubscriptionService

NOW = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)


def form(**overrides):
    data = {
        "name": "Netflix",
        "amount": 649,
        "billing_cycle": "monthly",
        "category": "Streaming",
        "renewal_date": "2026-11-05",
        "currency": "INR",
    }
    data.update(overrides)
    return data


def candidate(**overrides):
    data = {**form(), "confidence": 0.9}
    data.update(overrides)
    return ExtractedCandidate.model_validate(data)


@pytest.fixture
def service(temp_db):
    return SubscriptionService()


def test_manual_entry_is_verified(service):
    result = service.persist("user-1", form(), SubscriptionSource.MANUAL, now=NOW)

    assert result.success
    stored = service.get("user-1", result.id)
    assert stored.verified is True
    assert stored.source == "manual"
    assert stored.last_detected_at is None
    assert stored.amount_in_base_currency == 649
    assert get_counter("subscriptions.created.manual") == 1


def test_ai_detected_entry_starts_unverified(service):
    result = service.persist("user-1", candidate(), SubscriptionSource.AI_DETECTED, now=NOW)

    stored = service.get("user-1", result.id)
    assert stored.verified is False
    assert stored.source == "ai-detected"
    assert stored.last_detected_at == NOW


def test_foreign_currency_is_normalized(service):
    result = service.persist("user-1", form(name="ChatGPT", amount=20, currency="usd"))

    stored = service.get("user-1", result.id)
    assert stored.original_currency == "USD"
    assert stored.amount == 20
    assert stored.amount_in_base_currency == 1660


def test_pydantic_create_model_is_accepted(service):
    result = service.persist("user-1", SubscriptionCreate.model_validate(form()))

    assert result.success


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "   "},
        {"amount": 0},
        {"billing_cycle": "weekly"},
        {"renewal_date": "soon"},
        {"renewal_date": "2026-11-05T10:00:00"},
        {"currency": "rupees"},
    ],
)
def test_invalid_input_returns_failure(service, overrides):
    result = service.persist("user-1", form(**overrides))

    assert result.success is False
    assert result.error
    assert service.list_for_user("user-1") == []


def test_redetected_subscription_is_merged(service):
    first = service.persist("user-1", candidate(), SubscriptionSource.AI_DETECTED, now=NOW)
    later = datetime(2026, 11, 6, tzinfo=UTC)

    second = service.persist(
        "user-1",
        candidate(name="  NETFLIX ", amount=650, renewal_date="2026-12-05"),
        SubscriptionSource.AI_DETECTED,
        now=later,
    )

    assert second.success and second.merged
    assert second.id == first.id
    subs = service.list_for_user("user-1")
    assert len(subs) == 1
    assert subs[0].renewal_date == date(2026, 12, 5)
    assert subs[0].last_detected_at == later
    assert get_counter("subscriptions.merged") == 1


def test_merge_never_moves_renewal_backwards(service):
    first = service.persist(
        "user-1", candidate(renewal_date="2026-12-05"), SubscriptionSource.AI_DETECTED, now=NOW
    )

    service.persist(
        "user-1", candidate(renewal_date="2026-11-05"), SubscriptionSource.AI_DETECTED, now=NOW
    )

    assert service.get("user-1", first.id).renewal_date == date(2026, 12, 5)


def test_redetection_matches_manual_entry(service):
    manual = service.persist("user-1", form(), SubscriptionSource.MANUAL, now=NOW)

    result = service.persist("user-1", candidate(), SubscriptionSource.AI_DETECTED, now=NOW)

    assert result.merged
    assert result.id == manual.id
    assert service.get("user-1", manual.id).verified is True


def test_different_amount_is_a_new_subscription(service):
    service.persist("user-1", candidate(), SubscriptionSource.AI_DETECTED, now=NOW)

    result = service.persist(
        "user-1", candidate(amount=199), SubscriptionSource.AI_DETECTED, now=NOW
    )

    assert result.success and not result.merged
    assert len(service.list_for_user("user-1")) == 2


def test_manual_entries_are_never_merged(service):
    service.persist("user-1", form(), SubscriptionSource.MANUAL, now=NOW)
    service.persist("user-1", form(), SubscriptionSource.MANUAL, now=NOW)

    assert len(service.list_for_user("user-1")) == 2


def test_dedup_is_scoped_to_user(service):
    service.persist("user-1", candidate(), SubscriptionSource.AI_DETECTED, now=NOW)

    result = service.persist("user-2", candidate(), SubscriptionSource.AI_DETECTED, now=NOW)

    assert not result.merged


def test_other_users_subscription_is_not_found(service):
    result = service.persist("user-1", form())

    assert service.get("user-2", result.id) is None
    assert service.verify("user-2", result.id) is None
    assert service.delete("user-2", result.id) is False
    assert service.update("user-2", result.id, SubscriptionUpdate(amount=1)) is None
    assert service.get("user-1", result.id) is not None


def test_verify_is_idempotent(service):
    result = service.persist("user-1", candidate(), SubscriptionSource.AI_DETECTED)

    assert service.verify("user-1", result.id).verified is True
    assert service.verify("user-1", result.id).verified is True


def test_update_rederives_base_amount(service):
    result = service.persist("user-1", form(name="ChatGPT", amount=20, currency="USD"))

    updated = service.update("user-1", result.id, SubscriptionUpdate(currency="EUR"))

    assert updated.original_currency == "EUR"
    assert updated.amount_in_base_currency == 1800

    updated = service.update("user-1", result.id, SubscriptionUpdate(amount=25))

    assert updated.amount == 25
    assert updated.amount_in_base_currency == 2250


def test_update_changes_only_given_fields(service):
    result = service.persist("user-1", form())

    updated = service.update(
        "user-1",
        result.id,
        SubscriptionUpdate(billing_cycle="yearly", renewal_date="2027-01-01"),
    )

    assert updated.billing_cycle == "yearly"
    assert updated.renewal_date == date(2027, 1, 1)
    assert updated.name == "Netflix"
    assert updated.amount_in_base_currency == 649


def test_update_rejects_blank_name(service):
    result = service.persist("user-1", form())

    with pytest.raises(SubscriptionValidationError):
        service.update("user-1", result.id, SubscriptionUpdate(name="   "))


def test_delete_removes_row(service):
    result = service.persist("user-1", form())

    assert service.delete("user-1", result.id) is True
    assert service.get("user-1", result.id) is None
    assert service.delete("user-1", result.id) is False


def test_failed_write_is_reported_not_raised(service):
    with patch.object(
        SubscriptionRepository, "create", side_effect=sqlite3.OperationalError("disk I/O error")
    ):
        result = service.persist("user-1", form())

    assert result.success is False
    assert result.error == "Failed to save subscription"
    assert get_counter("subscriptions.persist_failed") == 1
    assert service.list_for_user("user-1") == []


def test_failed_delete_raises_persistence_error(service):
    result = service.persist("user-1", form())

    with patch.object(
        SubscriptionRepository, "delete", side_effect=sqlite3.OperationalError("disk I/O error")
    ):
        with pytest.raises(PersistenceError):
            service.delete("user-1", result.id)

    assert service.get("user-1", result.id) is not None


def test_list_is_newest_first(service):
    service.persist("user-1", form(name="Old"), now=datetime(2026, 1, 1, tzinfo=UTC))
    service.persist("user-1", form(name="New"), now=datetime(2026, 6, 1, tzinfo=UTC))

    assert [s.name for s in service.list_for_user("user-1")] == ["New", "Old"]


def test_find_duplicate_amount_tolerance(service):
    service.persist("user-1", form(amount=100))

    assert SubscriptionRepository.find_duplicate("user-1", "netflix", 100.9, 0.01, 0.01)
    assert SubscriptionRepository.find_duplicate("user-1", "netflix", 101.5, 0.01, 0.01) is None


def test_normalize_name():
    assert normalize_name("  Amazon   Prime\tVideo ") == "amazon prime video"
