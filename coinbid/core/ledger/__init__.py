"""
Coin Ledger Module.

Per-actor coin balances and the append-only ledger of every movement.
"""

from coinbid.core.ledger.balances import AuctionAudit, BalanceStore, EntryKind, LedgerEntry

__all__ = ["AuctionAudit", "BalanceStore", "EntryKind", "LedgerEntry"]
