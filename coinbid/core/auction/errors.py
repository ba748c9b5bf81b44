"""
Typed failures for the auction engine.

Every failure is an expected, caller-recoverable condition. The engine
raises them inside a transaction so the transaction rolls back, then hands
them to its caller as the second member of a (result, failure) tuple.
"""

from enum import Enum
from typing import Any, Dict, Optional


class FailureKind(str, Enum):
    AUCTION_NOT_FOUND = "auction_not_found"
    AUCTION_NOT_ACTIVE = "auction_not_active"
    SELF_BID_NOT_ALLOWED = "self_bid_not_allowed"
    BID_TOO_LOW = "bid_too_low"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    BUY_NOW_UNAVAILABLE = "buy_now_unavailable"
    TRANSIENT_CONFLICT = "transient_conflict"
    NOT_AUCTION_OWNER = "not_auction_owner"
    INVALID_AUCTION_STATE = "invalid_auction_state"
    INVALID_REQUEST = "invalid_request"


class AuctionFailure(Exception):
    """Base class for all engine failures."""

    kind: FailureKind = FailureKind.INVALID_REQUEST

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> dict:
        return {"error": self.kind.value, "message": self.message, **self.details}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, {self.details})"


# =============================================================================
# Not found
# =============================================================================


class AuctionNotFound(AuctionFailure):
    kind = FailureKind.AUCTION_NOT_FOUND

    def __init__(self, auction_id: str):
        super().__init__(f"Auction not found: {auction_id}", auction_id=auction_id)


# =============================================================================
# Validation
# =============================================================================


class AuctionNotActive(AuctionFailure):
    kind = FailureKind.AUCTION_NOT_ACTIVE

    def __init__(self, auction_id: str, status: str):
        super().__init__("This auction is not active", auction_id=auction_id, status=status)


class SelfBidNotAllowed(AuctionFailure):
    kind = FailureKind.SELF_BID_NOT_ALLOWED

    def __init__(self, auction_id: str):
        super().__init__("Cannot bid on your own auction", auction_id=auction_id)


class BidTooLow(AuctionFailure):
    kind = FailureKind.BID_TOO_LOW

    def __init__(self, amount: int, required: int):
        super().__init__(f"Minimum bid is {required} coins", amount=amount, required=required)

    @property
    def required(self) -> int:
        return self.details["required"]


class BuyNowUnavailable(AuctionFailure):
    kind = FailureKind.BUY_NOW_UNAVAILABLE

    def __init__(self, auction_id: str, message: str = "Buy now is not offered on this auction"):
        super().__init__(message, auction_id=auction_id)


class NotAuctionOwner(AuctionFailure):
    kind = FailureKind.NOT_AUCTION_OWNER

    def __init__(self, auction_id: str, actor_id: str):
        super().__init__("Not your auction", auction_id=auction_id, actor_id=actor_id)


class InvalidAuctionState(AuctionFailure):
    kind = FailureKind.INVALID_AUCTION_STATE

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message, status=status)


class InvalidRequest(AuctionFailure):
    kind = FailureKind.INVALID_REQUEST


# =============================================================================
# Resources and concurrency
# =============================================================================


class InsufficientBalance(AuctionFailure):
    kind = FailureKind.INSUFFICIENT_BALANCE

    def __init__(self, balance: int, required: int):
        super().__init__(
            f"Insufficient coin balance: have {balance}, need {required}",
            balance=balance,
            required=required,
            shortfall=required - balance,
        )

    @property
    def balance(self) -> int:
        return self.details["balance"]

    @property
    def required(self) -> int:
        return self.details["required"]


class TransientConflict(AuctionFailure):
    kind = FailureKind.TRANSIENT_CONFLICT

    def __init__(self, operation: str, attempts: int):
        super().__init__(
            "The auction is busy, please retry",
            operation=operation,
            attempts=attempts,
        )
