"""
Notification repository.

insert() takes an open connection so callers can write notifications inside
the same transaction as the subscription rows they describe.
"""

from __future__ import annotations

import sqlite3
import uuid
from typing import Any

from subzero.infrastructure.database import get_db_connection
from subzero.subscriptions.models import Notification, NotificationType, utc_now


class NotificationRepository:
    @staticmethod
    def build(
        user_id: str,
        title: str,
        message: str,
        type: NotificationType,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        return Notification(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            metadata=metadata or {},
            created_at=utc_now(),
        )

    @staticmethod
    def insert(conn: sqlite3.Connection, notification: Notification) -> None:
        """Insert using the caller's connection; the caller owns commit/rollback."""
        conn.execute(
            """
            INSERT INTO notifications (id, user_id, title, message, type, read, metadata, created_at)
            VALUES (:id, :user_id, :title, :message, :type, :read, :metadata, :created_at)
            """,
            notification.to_db_dict(),
        )

    @staticmethod
    def list_by_user(user_id: str, limit: int = 50) -> list[Notification]:
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM notifications
                WHERE user_id = ?
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()

        return [Notification.from_db_row(dict(row)) for row in rows]
