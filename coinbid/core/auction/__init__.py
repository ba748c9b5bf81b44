"""
Auction Module.

Records, failures and the pure bidding rules:
- Auction / Bid models and status enums
- Typed failures
- Proxy (auto-)bid resolution
- Anti-sniping extension policy
- Request schemas

The engine itself lives in coinbid.core.auction.engine.
"""

from coinbid.core.auction.models import (
    Auction,
    AuctionCategory,
    AuctionStatus,
    Bid,
    BidStatus,
    BuyNowOutcome,
    PlaceBidOutcome,
    SettlementOutcome,
)

from coinbid.core.auction.errors import (
    AuctionFailure,
    AuctionNotActive,
    AuctionNotFound,
    BidTooLow,
    BuyNowUnavailable,
    FailureKind,
    InsufficientBalance,
    InvalidAuctionState,
    InvalidRequest,
    NotAuctionOwner,
    SelfBidNotAllowed,
    TransientConflict,
)

from coinbid.core.auction.proxy import Contender, Resolution, duel, resolve
from coinbid.core.auction.extension import ExtensionDecision, ExtensionPolicy
from coinbid.core.auction.schemas import CreateAuctionRequest, UpdateAuctionRequest

__all__ = [
    # Models
    "Auction",
    "AuctionCategory",
    "AuctionStatus",
    "Bid",
    "BidStatus",
    "BuyNowOutcome",
    "PlaceBidOutcome",
    "SettlementOutcome",
    # Failures
    "AuctionFailure",
    "AuctionNotActive",
    "AuctionNotFound",
    "BidTooLow",
    "BuyNowUnavailable",
    "FailureKind",
    "InsufficientBalance",
    "InvalidAuctionState",
    "InvalidRequest",
    "NotAuctionOwner",
    "SelfBidNotAllowed",
    "TransientConflict",
    # Rules
    "Contender",
    "Resolution",
    "duel",
    "resolve",
    "ExtensionDecision",
    "ExtensionPolicy",
    # Schemas
    "CreateAuctionRequest",
    "UpdateAuctionRequest",
]
