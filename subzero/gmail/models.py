"""
Connected mailbox domain models.

A ConnectedMailAccount is one Gmail address linked to a SubZero user. Its
OAuth credentials are stored only as an encrypted CredentialBundle.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


class CredentialBundle(BaseModel):
    """OAuth token set for one mailbox. Serialized to JSON before encryption."""

    access_token: str | None = None
    refresh_token: str | None = None
    expiry: int | None = Field(default=None, description="Access token expiry, epoch millis")
    token_type: str | None = "Bearer"
    scope: str | None = None

    def merged(self, update: CredentialBundle) -> CredentialBundle:
        """
        Overlay a refreshed token set onto this bundle.

        Google usually omits the refresh token (and sometimes scope) on
        refresh; fields missing from ``update`` keep their current values.
        """
        fresh = update.model_dump(exclude_none=True)
        return self.model_copy(update=fresh)

    def expiry_datetime(self) -> datetime | None:
        if self.expiry is None:
            return None
        return datetime.fromtimestamp(self.expiry / 1000, tz=UTC)


class ConnectedMailAccount(BaseModel):
    """A Gmail mailbox connected by a user. Unique per (user_id, email)."""

    id: str
    user_id: str
    email: str
    encrypted_credentials: str
    connected_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_synced_at: datetime | None = None
    last_sync_count: int = Field(default=0, ge=0)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> ConnectedMailAccount:
        def parse_dt(val: str | None) -> datetime | None:
            return datetime.fromisoformat(val) if val else None

        return cls(
            id=row["id"],
            user_id=row["user_id"],
            email=row["email"],
            encrypted_credentials=row["encrypted_credentials"],
            connected_at=parse_dt(row["connected_at"]) or utc_now(),
            updated_at=parse_dt(row["updated_at"]) or utc_now(),
            last_synced_at=parse_dt(row.get("last_synced_at")),
            last_sync_count=row.get("last_sync_count") or 0,
        )


class ScannedEmail(BaseModel):
    """Plain-text body of one fetched message, ready for extraction."""

    model_config = ConfigDict(frozen=True)

    account_email: str
    message_id: str
    subject: str = ""
    text: str


class ScanResult(BaseModel):
    """Outcome of scanning one mailbox. Email order is not significant."""

    account_email: str
    emails: list[ScannedEmail] = Field(default_factory=list)
    listed: int = 0
    failures: list[str] = Field(default_factory=list, description="Redacted ids of failed fetches")
    refreshed_bundle: CredentialBundle | None = None
    token_persist_error: str | None = None
