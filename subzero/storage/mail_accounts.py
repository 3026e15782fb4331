"""
Connected mailbox repository - CRUD for connected_mail_accounts.

One row per (user_id, email). Credentials are stored only as Token Vault
ciphertext; this module never sees plaintext tokens.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from subzero.gmail.models import ConnectedMailAccount, utc_now
from subzero.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from subzero.observability.logging import get_logger
from subzero.observability.telemetry import redact_id

logger = get_logger(__name__)


class MailAccountRepository:
    """Static-method repository over connected_mail_accounts."""

    @staticmethod
    @retry_on_db_lock()
    def upsert(user_id: str, email: str, encrypted_credentials: str) -> ConnectedMailAccount:
        """
        Connect a mailbox, or refresh the credentials of an already-connected one.

        Re-connecting the same address never creates a second row; the original
        connected_at and sync metadata are preserved.

        Side Effects:
            - Inserts or updates a connected_mail_accounts row
        """
        address = email.strip().lower()
        now = utc_now().isoformat()

        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO connected_mail_accounts (
                    id, user_id, email, encrypted_credentials,
                    connected_at, updated_at, last_synced_at, last_sync_count
                ) VALUES (?, ?, ?, ?, ?, ?, NULL, 0)
                ON CONFLICT(user_id, email) DO UPDATE SET
                    encrypted_credentials = excluded.encrypted_credentials,
                    updated_at = excluded.updated_at
                """,
                (str(uuid.uuid4()), user_id, address, encrypted_credentials, now, now),
            )
            row = conn.execute(
                "SELECT * FROM connected_mail_accounts WHERE user_id = ? AND email = ?",
                (user_id, address),
            ).fetchone()

        logger.info("Connected mailbox %s for user %s", redact_id(address), user_id)
        return ConnectedMailAccount.from_db_row(dict(row))

    @staticmethod
    def list_by_user(user_id: str) -> list[ConnectedMailAccount]:
        """List a user's mailboxes, oldest connection first."""
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM connected_mail_accounts
                WHERE user_id = ?
                ORDER BY connected_at ASC
                """,
                (user_id,),
            ).fetchall()

        return [ConnectedMailAccount.from_db_row(dict(row)) for row in rows]

    @staticmethod
    def get(user_id: str, account_id: str) -> ConnectedMailAccount | None:
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM connected_mail_accounts WHERE id = ? AND user_id = ?",
                (account_id, user_id),
            ).fetchone()

        return ConnectedMailAccount.from_db_row(dict(row)) if row else None

    @staticmethod
    @retry_on_db_lock()
    def update_credentials(account_id: str, encrypted_credentials: str) -> None:
        """
        Replace the stored ciphertext after a token rotation.

        Side Effects:
            - Updates encrypted_credentials and updated_at
        """
        with db_transaction() as conn:
            conn.execute(
                """
                UPDATE connected_mail_accounts
                SET encrypted_credentials = ?, updated_at = ?
                WHERE id = ?
                """,
                (encrypted_credentials, utc_now().isoformat(), account_id),
            )

    @staticmethod
    @retry_on_db_lock()
    def record_sync(account_id: str, synced_at: datetime, count: int) -> None:
        """
        Stamp sync bookkeeping for one mailbox.

        Side Effects:
            - Updates last_synced_at and last_sync_count
        """
        with db_transaction() as conn:
            conn.execute(
                """
                UPDATE connected_mail_accounts
                SET last_synced_at = ?, last_sync_count = ?
                WHERE id = ?
                """,
                (synced_at.isoformat(), max(0, count), account_id),
            )

    @staticmethod
    @retry_on_db_lock()
    def delete(user_id: str, account_id: str) -> bool:
        """Disconnect a mailbox. Returns False if not found or not owned."""
        with db_transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM connected_mail_accounts WHERE id = ? AND user_id = ?",
                (account_id, user_id),
            )
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info("Disconnected mailbox %s for user %s", account_id, user_id)
        return deleted
