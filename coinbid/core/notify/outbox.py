"""
Notification Outbox - Post-commit delivery of auction events.

The engine records a notification intent in the same transaction as the
state change that caused it (outbid, sale, ...). After the transaction
commits, dispatch_pending() hands pending rows to a dispatcher. A failing
or slow dispatcher can therefore never block or roll back bidding; failed
rows stay pending and are retried until max_attempts.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from coinbid.core.auction.models import from_iso, to_iso, utcnow
from coinbid.core.storage.sqlite_adapter import SQLiteAdapter
from coinbid.utils.logger import get_logger

logger = get_logger("notify.outbox")

DEFAULT_MAX_ATTEMPTS = 5


class EventKind(str, Enum):
    OUTBID = "outbid"
    AUCTION_WON = "auction_won"
    AUCTION_ENDED_NO_SALE = "auction_ended_no_sale"
    BUY_NOW_CONFIRMED = "buy_now_confirmed"
    AUCTION_SOLD = "auction_sold"
    AUCTION_CANCELLED = "auction_cancelled"
    AUCTION_ENDED = "auction_ended"


class NotificationDispatcher(Protocol):
    """Anything that can deliver a notification (push, email, queue)."""

    def notify(self, actor_id: str, event_kind: str, payload: Dict[str, Any]) -> None:
        ...


class LoggingDispatcher:
    """Dispatcher that only logs; the default when none is configured."""

    def notify(self, actor_id: str, event_kind: str, payload: Dict[str, Any]) -> None:
        logger.info(f"notify {actor_id}: {event_kind} {payload}")


@dataclass
class Notification:
    notification_id: int
    actor_id: str
    event_kind: EventKind
    payload: Dict[str, Any]
    auction_id: Optional[str]
    created_at: datetime
    dispatched_at: Optional[datetime]
    attempts: int
    last_error: Optional[str]


def _notification_from_row(row) -> Notification:
    return Notification(
        notification_id=row["notification_id"],
        actor_id=row["actor_id"],
        event_kind=EventKind(row["event_kind"]),
        payload=json.loads(row["payload"]),
        auction_id=row["auction_id"],
        created_at=from_iso(row["created_at"]),
        dispatched_at=from_iso(row["dispatched_at"]),
        attempts=row["attempts"],
        last_error=row["last_error"],
    )


class NotificationOutbox:
    """
    Transactional outbox for engine events.

    enqueue() joins the caller's open transaction; dispatch_pending() must
    be called with no transaction open.
    """

    def __init__(
        self,
        adapter: SQLiteAdapter,
        dispatcher: Optional[NotificationDispatcher] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.adapter = adapter
        self.dispatcher = dispatcher or LoggingDispatcher()
        self.max_attempts = max_attempts

    def enqueue(
        self,
        actor_id: str,
        event_kind: EventKind,
        payload: Dict[str, Any],
        auction_id: Optional[str] = None,
    ) -> int:
        return self.adapter.insert_notification(
            actor_id=actor_id,
            event_kind=event_kind.value,
            payload=json.dumps(payload, sort_keys=True, default=str),
            created_at=to_iso(utcnow()),
            auction_id=auction_id,
        )

    def pending(self, limit: int = 100) -> List[Notification]:
        rows = self.adapter.get_pending_notifications(self.max_attempts, limit)
        return [_notification_from_row(r) for r in rows]

    def all_for(self, actor_id: Optional[str] = None) -> List[Notification]:
        return [_notification_from_row(r) for r in self.adapter.get_notifications(actor_id)]

    def dispatch_pending(self, limit: int = 100) -> Tuple[int, int]:
        """
        Deliver pending notifications.

        Each row is claimed before delivery so concurrent dispatchers do not
        send it twice; a row whose delivery fails is put back as pending.

        Returns:
            (sent, failed)
        """
        sent = failed = 0
        for note in self.pending(limit):
            with self.adapter.transaction():
                claimed = self.adapter.mark_notification_dispatched(note.notification_id, to_iso(utcnow()))
            if not claimed:
                continue

            try:
                self.dispatcher.notify(note.actor_id, note.event_kind.value, note.payload)
            except Exception as e:
                # Delivery problems must never surface into bidding
                failed += 1
                logger.warning(f"Dispatch failed for notification {note.notification_id} ({note.event_kind.value}): {e}")
                with self.adapter.transaction():
                    self.adapter.release_notification_claim(note.notification_id, str(e))
                continue

            sent += 1

        if sent or failed:
            logger.debug(f"Outbox dispatch: {sent} sent, {failed} failed")
        return sent, failed

