"""
Notification Module.

Transactional outbox and dispatcher protocol for auction events.
"""

from coinbid.core.notify.outbox import (
    EventKind,
    LoggingDispatcher,
    Notification,
    NotificationDispatcher,
    NotificationOutbox,
)

__all__ = ["EventKind", "LoggingDispatcher", "Notification", "NotificationDispatcher", "NotificationOutbox"]
