"""Per-user advisory sync lock

One row per user in sync_locks. Acquisition is a single conditional upsert,
so two processes racing for the same user cannot both win. Locks carry an
expiry so a crashed holder blocks syncs for at most ttl_seconds.
"""

from __future__ import annotations

import time
import uuid

from subzero.config import SYNC_LOCK_TTL_SECONDS
from subzero.infrastructure.database import db_transaction, retry_on_db_lock
from subzero.observability.logging import get_logger
from subzero.observability.telemetry import counter

logger = get_logger(__name__)


@retry_on_db_lock()
def acquire(
    user_id: str, ttl_seconds: float = SYNC_LOCK_TTL_SECONDS, now: float | None = None
) -> str | None:
    """
    Try to take the sync lock for a user.

    Returns:
        An owner token to pass to release(), or None if another live holder exists

    Side Effects:
        - Inserts or takes over an expired sync_locks row
    """
    now = time.time() if now is None else now
    owner = uuid.uuid4().hex

    with db_transaction() as conn:
        cursor = conn.execute(
            """
            INSERT INTO sync_locks (user_id, owner, expires_at)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                owner = excluded.owner,
                expires_at = excluded.expires_at
            WHERE sync_locks.expires_at <= ?
            """,
            (user_id, owner, now + ttl_seconds, now),
        )
        acquired = cursor.rowcount > 0

    if not acquired:
        counter("sync.lock_contended")
        logger.info("Sync lock for user %s is held by another sync", user_id)
        return None
    return owner


@retry_on_db_lock()
def release(user_id: str, owner: str) -> bool:
    """
    Release a lock taken with acquire().

    Only the holder's own row is removed; a lock that expired and was taken
    over by another sync is left alone.
    """
    with db_transaction() as conn:
        cursor = conn.execute(
            "DELETE FROM sync_locks WHERE user_id = ? AND owner = ?",
            (user_id, owner),
        )
        released = cursor.rowcount > 0

    if not released:
        logger.warning("Sync lock for user %s expired before release", user_id)
    return released
