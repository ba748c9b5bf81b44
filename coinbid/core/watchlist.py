"""
Watchlist - Auctions an actor follows.

A watch entry carries two preferences:
- notify_outbid: send `outbid` notifications when the actor is displaced
  as leader (bidders who never watched get them by default)
- notify_ending: send `auction_ended` when the auction closes
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from coinbid.core.auction.models import from_iso, to_iso, utcnow
from coinbid.core.storage.sqlite_adapter import SQLiteAdapter
from coinbid.utils.logger import get_logger
from coinbid.utils.validation import validate_actor_id, validate_auction_id

logger = get_logger("watchlist")


@dataclass
class WatchEntry:
    auction_id: str
    actor_id: str
    notify_outbid: bool
    notify_ending: bool
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "auction_id": self.auction_id,
            "actor_id": self.actor_id,
            "notify_outbid": self.notify_outbid,
            "notify_ending": self.notify_ending,
            "created_at": to_iso(self.created_at),
        }


def _entry_from_row(row) -> WatchEntry:
    return WatchEntry(
        auction_id=row["auction_id"],
        actor_id=row["actor_id"],
        notify_outbid=bool(row["notify_outbid"]),
        notify_ending=bool(row["notify_ending"]),
        created_at=from_iso(row["created_at"]),
    )


class Watchlist:
    """Per-actor auction watchlist stored next to the auctions."""

    def __init__(self, adapter: SQLiteAdapter):
        self.adapter = adapter

    def watch(
        self,
        auction_id: str,
        actor_id: str,
        notify_outbid: bool = True,
        notify_ending: bool = True,
    ) -> Tuple[bool, str]:
        """
        Add an auction to an actor's watchlist, or update its preferences.

        Returns:
            (success, error_message)
        """
        valid, err = validate_auction_id(auction_id)
        if not valid:
            return False, err
        valid, err = validate_actor_id(actor_id)
        if not valid:
            return False, err

        with self.adapter.transaction():
            if self.adapter.get_auction(auction_id) is None:
                return False, f"Auction not found: {auction_id}"
            self.adapter.upsert_watch(auction_id, actor_id, notify_outbid, notify_ending, to_iso(utcnow()))

        logger.debug(f"{actor_id} watching {auction_id}")
        return True, ""

    def unwatch(self, auction_id: str, actor_id: str) -> Tuple[bool, str]:
        with self.adapter.transaction():
            removed = self.adapter.delete_watch(auction_id, actor_id)
        if not removed:
            return False, "Not watching this auction"
        return True, ""

    def get(self, auction_id: str, actor_id: str) -> Optional[WatchEntry]:
        row = self.adapter.get_watch(auction_id, actor_id)
        return _entry_from_row(row) if row else None

    def list_for_actor(self, actor_id: str) -> List[WatchEntry]:
        return [_entry_from_row(r) for r in self.adapter.get_watches_for_actor(actor_id)]

    def watchers(self, auction_id: str) -> List[WatchEntry]:
        return [_entry_from_row(r) for r in self.adapter.get_watchers(auction_id)]

    def wants_outbid(self, auction_id: str, actor_id: str) -> bool:
        entry = self.get(auction_id, actor_id)
        return entry is None or entry.notify_outbid
