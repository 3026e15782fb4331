"""
User profile repository.

Only what the pipeline consumes: the user's address and notification
settings (email / dashboard, both on by default).
"""

from __future__ import annotations

from subzero.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from subzero.observability.logging import get_logger
from subzero.subscriptions.models import NotificationSettings, utc_now

logger = get_logger(__name__)


class UserRepository:
    @staticmethod
    @retry_on_db_lock()
    def ensure(user_id: str, email: str | None = None) -> None:
        """
        Create the user row on first sight; keep the email current.

        Side Effects:
            - Inserts or updates a users row
        """
        now = utc_now().isoformat()
        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO users (id, email, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    email = COALESCE(excluded.email, users.email)
                """,
                (user_id, email, now, now),
            )

    @staticmethod
    def get_notification_settings(user_id: str) -> NotificationSettings:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT notify_email, notify_dashboard FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()

        if not row:
            return NotificationSettings()
        return NotificationSettings(email=bool(row[0]), dashboard=bool(row[1]))

    @staticmethod
    def get_email(user_id: str) -> str | None:
        with get_db_connection() as conn:
            row = conn.execute("SELECT email FROM users WHERE id = ?", (user_id,)).fetchone()
        return row[0] if row else None

    @staticmethod
    @retry_on_db_lock()
    def update_notification_settings(
        user_id: str, settings: NotificationSettings
    ) -> NotificationSettings:
        """
        Persist notification preferences, creating the user row if needed.

        Side Effects:
            - Inserts or updates a users row
        """
        now = utc_now().isoformat()
        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO users (id, notify_email, notify_dashboard, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    notify_email = excluded.notify_email,
                    notify_dashboard = excluded.notify_dashboard,
                    updated_at = excluded.updated_at
                """,
                (user_id, int(settings.email), int(settings.dashboard), now, now),
            )

        logger.info("Updated notification settings for user %s", user_id)
        return settings
