"""
Notifications engine - durable per-recipient rows plus real-time push.
"""

from orderflow.engines.notifications.dispatcher import NotificationDispatcher, notification_event
from orderflow.engines.notifications.inbox import NotificationInbox
from orderflow.engines.notifications.reminders import DeadlineReminderScheduler, DeadlineReminders

__all__ = [
    "DeadlineReminderScheduler",
    "DeadlineReminders",
    "NotificationDispatcher",
    "NotificationInbox",
    "notification_event",
]
