"""
Tool: Schedule Notifications
Purpose: Decide who hears about a schedule change and when reminders fire

Delivery itself is out of scope. The scheduler hands a schedule, the
recipient list and the change type to a NotificationDispatcher; the default
dispatcher only logs.

Usage:
    from calsync.notifications import LoggingDispatcher, recipients_for, due_reminders

    dispatcher = LoggingDispatcher()
    dispatcher.dispatch(schedule, recipients_for(schedule, actor="alice"), ChangeType.CREATED)

    for schedule, minutes in due_reminders(upcoming, now):
        dispatcher.dispatch(schedule, recipients_for(schedule), ChangeType.REMINDER)
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timedelta

from calsync.models import ChangeType, Schedule, as_utc


logger = logging.getLogger(__name__)


class NotificationDispatcher(ABC):
    """Receives change notifications. Implementations own delivery."""

    @abstractmethod
    def dispatch(self, schedule: Schedule, recipients: list[str], change_type: ChangeType) -> None:
        pass


class LoggingDispatcher(NotificationDispatcher):
    """Writes each notification to the log."""

    def dispatch(self, schedule: Schedule, recipients: list[str], change_type: ChangeType) -> None:
        if not recipients:
            return
        logger.info(
            "Notify %s of %s schedule %s (%s)",
            ", ".join(recipients),
            change_type.value,
            schedule.id,
            schedule.title,
        )


def recipients_for(schedule: Schedule, actor: str | None = None) -> list[str]:
    """
    Participants to notify, in order, without the user who made the change.

    The creator is included when they are not a participant, so a change made
    by someone else on their booking still reaches them.
    """
    recipients = list(dict.fromkeys(schedule.participants))
    if schedule.created_by and schedule.created_by not in recipients:
        recipients.append(schedule.created_by)
    return [r for r in recipients if r != actor]


def due_reminders(
    schedules: Iterable[Schedule],
    now: datetime,
    window: timedelta = timedelta(minutes=1),
) -> list[tuple[Schedule, int]]:
    """
    Reminders whose fire time falls in [now, now + window).

    Returns:
        (schedule, minutes_before) pairs ordered by fire time
    """
    now = as_utc(now)
    due = []
    for schedule in schedules:
        for minutes in schedule.reminders:
            fire_at = as_utc(schedule.start_time) - timedelta(minutes=minutes)
            if now <= fire_at < now + window:
                due.append((fire_at, schedule, minutes))
    due.sort(key=lambda item: item[0])
    return [(schedule, minutes) for _, schedule, minutes in due]


__all__ = ["LoggingDispatcher", "NotificationDispatcher", "due_reminders", "recipients_for"]
