"""
Renewal reminders - the scheduled consumer of renewal dates.

Run once per cron tick. Finds subscriptions renewing within the reminder
window that were not reminded recently, creates one dashboard notification
per user (if enabled), and stamps reminder_sent_at. All writes for a run
commit in one transaction.

Email delivery is not performed here; the report lists the users who
opted into email so a mail sender can pick them up.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from subzero.config import REMINDER_COOLDOWN_DAYS, REMINDER_WINDOW_DAYS
from subzero.infrastructure.database import db_transaction, retry_on_db_lock
from subzero.observability.logging import get_logger
from subzero.observability.telemetry import counter, log_event
from subzero.storage import NotificationRepository, UserRepository
from subzero.subscriptions.models import Notification, NotificationType, Subscription, utc_now
from subzero.subscriptions.repository import SubscriptionRepository

logger = get_logger(__name__)

RENEWAL_TITLE = "Subscription Renewal Alert"


@dataclass
class ReminderReport:
    reminded: int = 0
    users: int = 0
    notifications: int = 0
    email_recipients: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        if not self.reminded:
            return "No new reminders to send."
        return (
            f"Reminded {self.reminded} subscriptions for {self.users} users "
            f"({self.notifications} notifications)."
        )


def renewal_message(subscriptions: list[Subscription], now: datetime, window_days: int) -> str:
    if len(subscriptions) == 1:
        sub = subscriptions[0]
        days = (sub.renewal_date - now.date()).days
        return f"Your {sub.name} subscription is renewing in {days} days."
    return f"You have {len(subscriptions)} subscriptions renewing in the next {window_days} days."


class ReminderService:
    def __init__(
        self,
        window_days: int = REMINDER_WINDOW_DAYS,
        cooldown_days: int = REMINDER_COOLDOWN_DAYS,
    ):
        self.window_days = window_days
        self.cooldown_days = cooldown_days

    @retry_on_db_lock()
    def run(self, now: datetime | None = None) -> ReminderReport:
        """
        Process due reminders across all users.

        Side Effects:
            - Inserts renewal notifications for users with dashboard alerts on
            - Sets reminder_sent_at on every reminded subscription
        """
        now = now or utc_now()
        due = SubscriptionRepository.list_due_for_reminder(
            now.date(), self.window_days, self.cooldown_days, now
        )
        report = ReminderReport()
        if not due:
            return report

        by_user: dict[str, list[Subscription]] = defaultdict(list)
        for sub in due:
            by_user[sub.user_id].append(sub)

        notifications: list[Notification] = []
        for user_id, subs in by_user.items():
            settings = UserRepository.get_notification_settings(user_id)
            if settings.email:
                report.email_recipients.append(user_id)
            if settings.dashboard:
                notifications.append(
                    NotificationRepository.build(
                        user_id=user_id,
                        title=RENEWAL_TITLE,
                        message=renewal_message(subs, now, self.window_days),
                        type=NotificationType.RENEWAL,
                        metadata={
                            "subscription_id": subs[0].id if len(subs) == 1 else None,
                            "amount": round(sum(s.amount for s in subs), 2),
                        },
                    )
                )

        with db_transaction() as conn:
            for notification in notifications:
                NotificationRepository.insert(conn, notification)
            SubscriptionRepository.stamp_reminded(conn, [s.id for s in due], now)

        report.reminded = len(due)
        report.users = len(by_user)
        report.notifications = len(notifications)
        counter("reminders.sent", report.reminded)
        log_event(
            "reminders.complete",
            reminded=report.reminded,
            users=report.users,
            notifications=report.notifications,
        )
        return report
