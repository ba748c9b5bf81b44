"""
Balances - Coin balance store for coinbid.

Conceptual Background:
---------------------
Every actor (bidder or seller) has one non-negative integer balance. All
movements go through transfer(), which writes the balance change and an
entry in the append-only coin ledger in the same transaction:

    transfer(A, B, n)     A pays B directly (e.g. a paid message)
    transfer(A, None, n)  n coins leave A into escrow (bid hold)
    transfer(None, A, n)  n coins enter A from escrow (refund, sale credit)
                          or from outside the system (deposit)

Escrow itself is not an account: what an auction holds is the sum of its
bid_hold entries minus its hold_release and sale_credit entries, which the
audit helpers below compute for conservation checks.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from coinbid.core.auction.models import from_iso, to_iso, utcnow
from coinbid.core.storage.sqlite_adapter import SQLiteAdapter
from coinbid.utils.logger import get_logger
from coinbid.utils.validation import validate_actor_id, validate_amount

logger = get_logger("ledger")


class EntryKind(str, Enum):
    DEPOSIT = "deposit"              # Coins bought / granted from outside
    TRANSFER = "transfer"            # Direct actor-to-actor payment
    BID_HOLD = "bid_hold"            # Bidder -> escrow
    HOLD_RELEASE = "hold_release"    # Escrow -> bidder
    SALE_CREDIT = "sale_credit"      # Escrow -> seller


@dataclass
class LedgerEntry:
    entry_id: int
    from_actor: Optional[str]
    to_actor: Optional[str]
    amount: int
    kind: EntryKind
    auction_id: Optional[str]
    bid_id: Optional[str]
    created_at: datetime


@dataclass
class AuctionAudit:
    """
    Coin flow for one auction.

    held: total debited from bidders into escrow
    released: total returned to bidders
    credited: total paid out to the seller
    """
    auction_id: str
    held: int
    released: int
    credited: int

    @property
    def in_escrow(self) -> int:
        return self.held - self.released - self.credited


class BalanceStore:
    """
    Per-actor coin balances backed by SQLite.

    Methods join the caller's transaction when one is open, so the engine
    can move coins in the same transaction as its auction writes.
    """

    def __init__(self, adapter: SQLiteAdapter):
        self.adapter = adapter

    # =========================================================================
    # Reads
    # =========================================================================

    def get_balance(self, actor_id: str) -> int:
        """Balance of an actor; unknown actors have 0."""
        balance = self.adapter.get_balance(actor_id)
        return balance if balance is not None else 0

    def entries(
        self,
        auction_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> List[LedgerEntry]:
        rows = self.adapter.get_ledger_entries(auction_id=auction_id, actor_id=actor_id)
        return [
            LedgerEntry(
                entry_id=row["entry_id"],
                from_actor=row["from_actor"],
                to_actor=row["to_actor"],
                amount=row["amount"],
                kind=EntryKind(row["kind"]),
                auction_id=row["auction_id"],
                bid_id=row["bid_id"],
                created_at=from_iso(row["created_at"]),
            )
            for row in rows
        ]

    def audit_auction(self, auction_id: str) -> AuctionAudit:
        held = released = credited = 0
        for entry in self.entries(auction_id=auction_id):
            if entry.kind == EntryKind.BID_HOLD:
                held += entry.amount
            elif entry.kind == EntryKind.HOLD_RELEASE:
                released += entry.amount
            elif entry.kind == EntryKind.SALE_CREDIT:
                credited += entry.amount
        return AuctionAudit(auction_id=auction_id, held=held, released=released, credited=credited)

    # =========================================================================
    # Writes
    # =========================================================================

    def ensure_actor(self, actor_id: str) -> None:
        self.adapter.ensure_actor(actor_id, to_iso(utcnow()))

    def deposit(self, actor_id: str, amount: int) -> Tuple[bool, str]:
        """
        Add coins to an actor from outside the system.

        Returns:
            (success, error_message)
        """
        return self.transfer(None, actor_id, amount, kind=EntryKind.DEPOSIT)

    def transfer(
        self,
        from_actor_id: Optional[str],
        to_actor_id: Optional[str],
        amount: int,
        kind: EntryKind = EntryKind.TRANSFER,
        auction_id: Optional[str] = None,
        bid_id: Optional[str] = None,
    ) -> Tuple[bool, str]:
        """
        Move coins between actors, escrow and the outside world.

        Checks:
        1. Amount is a positive integer
        2. At least one side is an actor
        3. Sender balance covers the amount

        Args:
            from_actor_id: Debited actor, or None for escrow / mint
            to_actor_id: Credited actor, or None for escrow
            amount: Coins to move
            kind: Ledger entry kind
            auction_id: Auction the movement belongs to
            bid_id: Bid row the movement belongs to

        Returns:
            (success, error_message)
        """
        valid, err = validate_amount(amount)
        if not valid:
            return False, err
        if amount == 0:
            return False, "amount must be > 0"
        if from_actor_id is None and to_actor_id is None:
            return False, "transfer needs a sender or a recipient"
        for actor_id in (from_actor_id, to_actor_id):
            if actor_id is not None:
                valid, err = validate_actor_id(actor_id)
                if not valid:
                    return False, err

        with self.adapter.transaction():
            if from_actor_id is not None:
                self.ensure_actor(from_actor_id)
                if not self.adapter.adjust_balance(from_actor_id, -amount):
                    balance = self.get_balance(from_actor_id)
                    return False, f"Insufficient balance: have {balance}, need {amount}"
            if to_actor_id is not None:
                self.ensure_actor(to_actor_id)
                self.adapter.adjust_balance(to_actor_id, amount)

            self.adapter.insert_ledger_entry(
                from_actor=from_actor_id,
                to_actor=to_actor_id,
                amount=amount,
                kind=kind.value,
                created_at=to_iso(utcnow()),
                auction_id=auction_id,
                bid_id=bid_id,
            )

        logger.debug(f"{kind.value}: {from_actor_id or 'escrow'} -> {to_actor_id or 'escrow'} ({amount})")
        return True, ""
