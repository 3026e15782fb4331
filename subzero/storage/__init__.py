"""Storage - repositories for users, connected mailboxes and notifications"""

from __future__ import annotations

from subzero.storage.mail_accounts import MailAccountRepository
from subzero.storage.notifications import NotificationRepository
from subzero.storage.users import UserRepository

__all__ = ["MailAccountRepository", "NotificationRepository", "UserRepository"]
