"""
Database schema initialization for SubZero.

Tables mirror the per-user document collections: users (profile and
notification settings), connected_mail_accounts, subscriptions,
notifications, plus sync_locks for the per-user advisory sync lock.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from subzero.observability.logging import get_logger

logger = get_logger(__name__)

EXPECTED_TABLES = (
    "users",
    "connected_mail_accounts",
    "subscriptions",
    "notifications",
    "sync_locks",
)


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    Args:
        db_path: Path to the database file

    Side Effects:
    - Creates tables and indexes if they don't exist
    - Creates the parent directory if needed
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT,
                notify_email INTEGER NOT NULL DEFAULT 1,
                notify_dashboard INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS connected_mail_accounts (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                email TEXT NOT NULL,
                encrypted_credentials TEXT NOT NULL,
                connected_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                last_synced_at TEXT,
                last_sync_count INTEGER NOT NULL DEFAULT 0 CHECK (last_sync_count >= 0),
                UNIQUE(user_id, email)
            );

            CREATE INDEX IF NOT EXISTS idx_mail_accounts_user
            ON connected_mail_accounts(user_id, connected_at);

            CREATE TABLE IF NOT EXISTS subscriptions (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                name TEXT NOT NULL,
                amount REAL NOT NULL CHECK (amount > 0),
                billing_cycle TEXT NOT NULL CHECK (billing_cycle IN ('monthly', 'yearly')),
                category TEXT NOT NULL,
                renewal_date TEXT NOT NULL,
                original_currency TEXT NOT NULL,
                amount_in_base_currency REAL NOT NULL,
                source TEXT NOT NULL CHECK (source IN ('manual', 'ai-detected')),
                verified INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                reminder_sent_at TEXT,
                last_detected_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_subscriptions_user
            ON subscriptions(user_id, created_at);

            CREATE INDEX IF NOT EXISTS idx_subscriptions_renewal
            ON subscriptions(renewal_date);

            CREATE TABLE IF NOT EXISTS notifications (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                message TEXT NOT NULL,
                type TEXT NOT NULL CHECK (type IN ('renewal', 'saving')),
                read INTEGER NOT NULL DEFAULT 0,
                metadata TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_notifications_user
            ON notifications(user_id, created_at);

            CREATE TABLE IF NOT EXISTS sync_locks (
                user_id TEXT PRIMARY KEY,
                owner TEXT NOT NULL,
                expires_at REAL NOT NULL
            );
        """)
        conn.commit()
    finally:
        conn.close()

    logger.info("Database schema ready at %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Validate database has expected tables

    Raises:
        ValueError: If tables are missing
    """
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    present = {row[0] for row in rows}
    missing = [t for t in EXPECTED_TABLES if t not in present]
    if missing:
        raise ValueError(f"Missing tables: {', '.join(missing)}")
    return True
