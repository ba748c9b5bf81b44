"""
Persistent Storage Module.

Provides SQLite-backed persistence for:
- Actor balances and the coin ledger
- Auctions and bids
- Notification outbox and watchlist
"""

from coinbid.core.storage.sqlite_adapter import SQLiteAdapter, is_transient_error
from coinbid.core.storage.storage_manager import StorageManager

__all__ = ["SQLiteAdapter", "StorageManager", "is_transient_error"]
