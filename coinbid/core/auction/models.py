"""
Auction Models - Records for auctions and bids.

An Auction is a single item listed for coin-denominated bidding with a
scheduled end time. A Bid is a commitment by an actor to pay a specific
amount, optionally with an automatic escalation ceiling (max_auto_bid).

Bid rows are append-only: when the engine raises a proxy bidder it writes
a new row and demotes the old one. Only status and escrow release columns
are ever updated in place. A new row is stored ACTIVE with its hold taken
and moves to WINNING or OUTBID before the transaction commits.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


# =============================================================================
# Enums
# =============================================================================


class AuctionStatus(str, Enum):
    """Lifecycle state of an auction."""
    DRAFT = "draft"          # Editable, not visible to bidders
    ACTIVE = "active"        # Accepting bids
    ENDED = "ended"          # Closed without a sale
    SOLD = "sold"            # Closed with a winner
    CANCELLED = "cancelled"  # Withdrawn by seller or admin

    @property
    def is_terminal(self) -> bool:
        return self in (AuctionStatus.ENDED, AuctionStatus.SOLD, AuctionStatus.CANCELLED)


class BidStatus(str, Enum):
    """State of a single bid row."""
    ACTIVE = "active"        # Hold taken, not yet resolved
    WINNING = "winning"      # Current leader (at most one per auction)
    OUTBID = "outbid"        # Overtaken, hold released
    REFUNDED = "refunded"    # Hold returned without being consumed


class AuctionCategory(str, Enum):
    VIDEO_CALL = "video_call"
    CUSTOM_CONTENT = "custom_content"
    MEET_GREET = "meet_greet"
    SHOUTOUT = "shoutout"
    EXPERIENCE = "experience"
    OTHER = "other"


class SettlementOutcome(str, Enum):
    """Result of settling an auction at expiry."""
    SOLD = "sold"
    ENDED = "ended"
    ALREADY_SETTLED = "already_settled"
    NOT_EXPIRED = "not_expired"


# =============================================================================
# Time helpers
# =============================================================================


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """
    Serialize a datetime for storage.

    Naive values are taken as UTC. Always emits microseconds so that stored
    timestamps compare correctly as strings.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_id() -> str:
    return uuid.uuid4().hex


# =============================================================================
# Records
# =============================================================================


@dataclass
class Auction:
    """
    A listed auction.

    Attributes:
        auction_id: Unique identifier
        seller_id: Actor who listed the auction
        starting_price: Lowest acceptable first bid
        current_bid: Highest accepted amount, None before the first bid
        buy_now_price: Immediate purchase price, if offered
        reserve_price: Hidden minimum for a sale at expiry, if any
        ends_at: Scheduled end, only ever moves forward
        original_end_at: End time before any anti-sniping extension
        extension_count: Number of anti-sniping extensions applied
        winner_id: Set only when status is SOLD
    """
    auction_id: str
    seller_id: str
    title: str
    starting_price: int
    ends_at: datetime
    original_end_at: datetime
    status: AuctionStatus = AuctionStatus.DRAFT
    category: AuctionCategory = AuctionCategory.OTHER
    description: Optional[str] = None
    deliverables: Optional[str] = None
    current_bid: Optional[int] = None
    buy_now_price: Optional[int] = None
    reserve_price: Optional[int] = None
    allow_auto_bid: bool = True
    anti_snipe_minutes: int = 2
    extension_count: int = 0
    bid_count: int = 0
    winner_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def minimum_bid(self, increment: int) -> int:
        """Smallest amount the next bid must reach."""
        if self.current_bid is None:
            return self.starting_price
        return self.current_bid + increment

    def is_open(self, now: datetime) -> bool:
        return self.status == AuctionStatus.ACTIVE and now < self.ends_at

    def is_expired(self, now: datetime) -> bool:
        return self.status == AuctionStatus.ACTIVE and self.ends_at <= now

    def to_dict(self) -> dict:
        return {
            "id": self.auction_id,
            "seller_id": self.seller_id,
            "title": self.title,
            "description": self.description,
            "deliverables": self.deliverables,
            "category": self.category.value,
            "starting_price": self.starting_price,
            "current_bid": self.current_bid,
            "buy_now_price": self.buy_now_price,
            "reserve_price": self.reserve_price,
            "status": self.status.value,
            "ends_at": to_iso(self.ends_at),
            "original_end_at": to_iso(self.original_end_at),
            "extension_count": self.extension_count,
            "allow_auto_bid": self.allow_auto_bid,
            "anti_snipe_minutes": self.anti_snipe_minutes,
            "bid_count": self.bid_count,
            "winner_id": self.winner_id,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }


@dataclass
class Bid:
    """
    A single bid row.

    escrow_amount is what was debited from the bidder for this row;
    escrow_released_at is set when it is given back.
    """
    bid_id: str
    auction_id: str
    bidder_id: str
    amount: int
    status: BidStatus = BidStatus.ACTIVE
    max_auto_bid: Optional[int] = None
    is_auto: bool = False
    is_buy_now: bool = False
    escrow_amount: int = 0
    escrow_released_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def holds_escrow(self) -> bool:
        return self.escrow_amount > 0 and self.escrow_released_at is None

    @property
    def ceiling(self) -> int:
        """Highest amount this bid may be raised to by proxy resolution."""
        if self.max_auto_bid is None:
            return self.amount
        return max(self.amount, self.max_auto_bid)

    def to_dict(self) -> dict:
        return {
            "id": self.bid_id,
            "auction_id": self.auction_id,
            "bidder_id": self.bidder_id,
            "amount": self.amount,
            "max_auto_bid": self.max_auto_bid,
            "status": self.status.value,
            "is_auto": self.is_auto,
            "is_buy_now": self.is_buy_now,
            "escrow_amount": self.escrow_amount,
            "escrow_released_at": to_iso(self.escrow_released_at) if self.escrow_released_at else None,
            "created_at": to_iso(self.created_at),
        }


@dataclass
class PlaceBidOutcome:
    """What the caller of place_bid gets back."""
    bid_id: str
    final_amount: int
    is_winning: bool
    escrow_deducted: int
    auction_extended: bool
    new_end_time: datetime
    new_balance: int
    current_bid: int


@dataclass
class BuyNowOutcome:
    bid_id: str
    amount: int
    new_balance: int
