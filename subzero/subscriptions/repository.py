"""
Subscription repository - CRUD operations for the subscriptions table.

Every read and write is scoped to the owning user; an id that belongs to
another user behaves exactly like an id that does not exist.
"""

from __future__ import annotations

import re
import sqlite3
from datetime import date, datetime, timedelta
from typing import Any

from subzero.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from subzero.observability.logging import get_logger
from subzero.subscriptions.models import Subscription, utc_now

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """Case-insensitive, whitespace-collapsed form used for duplicate matching."""
    return _WHITESPACE.sub(" ", name).strip().casefold()


class SubscriptionRepository:
    """Repository for subscription CRUD operations."""

    @staticmethod
    @retry_on_db_lock()
    def create(subscription: Subscription) -> Subscription:
        """
        Insert a new subscription.

        Side Effects:
            - Inserts a row into subscriptions
        """
        row = subscription.to_db_dict()
        columns = ", ".join(row)
        placeholders = ", ".join(f":{key}" for key in row)

        with db_transaction() as conn:
            conn.execute(f"INSERT INTO subscriptions ({columns}) VALUES ({placeholders})", row)

        logger.info(
            "Created subscription %s for user %s (%s)",
            subscription.id,
            subscription.user_id,
            subscription.source,
        )
        return subscription

    @staticmethod
    def get_by_id(user_id: str, subscription_id: str) -> Subscription | None:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM subscriptions WHERE id = ? AND user_id = ?",
                (subscription_id, user_id),
            ).fetchone()

        return Subscription.from_db_row(dict(row)) if row else None

    @staticmethod
    def list_by_user(user_id: str) -> list[Subscription]:
        """All subscriptions for a user, newest first."""
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM subscriptions
                WHERE user_id = ?
                ORDER BY created_at DESC
                """,
                (user_id,),
            ).fetchall()

        return [Subscription.from_db_row(dict(row)) for row in rows]

    @staticmethod
    def find_duplicate(
        user_id: str,
        name: str,
        amount: float,
        tolerance: float,
        min_delta: float,
    ) -> Subscription | None:
        """
        Find an existing subscription that looks like the same charge.

        Matches on normalized name and an original amount within
        ``max(amount * tolerance, min_delta)``. Oldest match wins.
        """
        wanted = normalize_name(name)
        delta = max(abs(amount) * tolerance, min_delta)

        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM subscriptions
                WHERE user_id = ? AND amount BETWEEN ? AND ?
                ORDER BY created_at ASC
                """,
                (user_id, amount - delta, amount + delta),
            ).fetchall()

        for row in rows:
            if normalize_name(row["name"]) == wanted:
                return Subscription.from_db_row(dict(row))
        return None

    @staticmethod
    @retry_on_db_lock()
    def mark_detected(
        subscription_id: str,
        detected_at: datetime,
        renewal_date: date | None = None,
    ) -> None:
        """
        Record a re-detection of an existing subscription.

        The renewal date only moves forward.

        Side Effects:
            - Updates last_detected_at and updated_at
            - Advances renewal_date when the new one is later
        """
        stamp = detected_at.isoformat()
        with db_transaction() as conn:
            conn.execute(
                """
                UPDATE subscriptions
                SET last_detected_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (stamp, stamp, subscription_id),
            )
            if renewal_date is not None:
                conn.execute(
                    """
                    UPDATE subscriptions
                    SET renewal_date = ?
                    WHERE id = ? AND renewal_date < ?
                    """,
                    (renewal_date.isoformat(), subscription_id, renewal_date.isoformat()),
                )

    @staticmethod
    @retry_on_db_lock()
    def update(
        user_id: str, subscription_id: str, fields: dict[str, Any]
    ) -> Subscription | None:
        """
        Update selected columns of a subscription.

        Args:
            fields: Column name -> already-serialized value

        Returns:
            Updated Subscription, or None if not found
        """
        if not fields:
            return SubscriptionRepository.get_by_id(user_id, subscription_id)

        update_data = {**fields, "updated_at": utc_now().isoformat()}
        set_clause = ", ".join(f"{key} = :{key}" for key in update_data)

        with db_transaction() as conn:
            cursor = conn.execute(
                f"UPDATE subscriptions SET {set_clause} WHERE id = :id AND user_id = :user_id",
                {**update_data, "id": subscription_id, "user_id": user_id},
            )
            if cursor.rowcount == 0:
                return None

        logger.info("Updated subscription %s: %s", subscription_id, ", ".join(fields))
        return SubscriptionRepository.get_by_id(user_id, subscription_id)

    @staticmethod
    @retry_on_db_lock()
    def verify(user_id: str, subscription_id: str) -> Subscription | None:
        """
        Mark a subscription as confirmed by its owner.

        One-way: there is no operation that clears the flag.
        """
        with db_transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE subscriptions
                SET verified = 1, updated_at = ?
                WHERE id = ? AND user_id = ?
                """,
                (utc_now().isoformat(), subscription_id, user_id),
            )
            if cursor.rowcount == 0:
                return None

        return SubscriptionRepository.get_by_id(user_id, subscription_id)

    @staticmethod
    @retry_on_db_lock()
    def delete(user_id: str, subscription_id: str) -> bool:
        """Hard delete. Returns False if not found or not owned."""
        with db_transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM subscriptions WHERE id = ? AND user_id = ?",
                (subscription_id, user_id),
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info("Deleted subscription %s", subscription_id)
        return deleted

    @staticmethod
    def list_due_for_reminder(
        today: date, window_days: int, cooldown_days: int, now: datetime
    ) -> list[Subscription]:
        """
        Subscriptions (all users) renewing within [today, today + window_days]
        that were not reminded in the last cooldown_days.
        """
        horizon = today + timedelta(days=window_days)
        cutoff = (now - timedelta(days=cooldown_days)).isoformat()

        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM subscriptions
                WHERE renewal_date >= ? AND renewal_date <= ?
                  AND (reminder_sent_at IS NULL OR reminder_sent_at < ?)
                ORDER BY user_id, renewal_date ASC
                """,
                (today.isoformat(), horizon.isoformat(), cutoff),
            ).fetchall()

        return [Subscription.from_db_row(dict(row)) for row in rows]

    @staticmethod
    def stamp_reminded(conn: sqlite3.Connection, subscription_ids: list[str], now: datetime) -> None:
        """Set reminder_sent_at using the caller's transaction."""
        conn.executemany(
            "UPDATE subscriptions SET reminder_sent_at = ? WHERE id = ?",
            [(now.isoformat(), sid) for sid in subscription_ids],
        )
