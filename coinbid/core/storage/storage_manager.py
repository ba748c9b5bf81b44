from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from coinbid.core.auction.models import (
    Auction,
    AuctionCategory,
    AuctionStatus,
    Bid,
    BidStatus,
    from_iso,
    to_iso,
)
from coinbid.core.storage.sqlite_adapter import SQLiteAdapter
from coinbid.utils.logger import get_logger

logger = get_logger("storage.manager")


def _auction_from_row(row) -> Auction:
    return Auction(
        auction_id=row["auction_id"],
        seller_id=row["seller_id"],
        title=row["title"],
        description=row["description"],
        deliverables=row["deliverables"],
        category=AuctionCategory(row["category"]),
        starting_price=row["starting_price"],
        current_bid=row["current_bid"],
        buy_now_price=row["buy_now_price"],
        reserve_price=row["reserve_price"],
        status=AuctionStatus(row["status"]),
        ends_at=from_iso(row["ends_at"]),
        original_end_at=from_iso(row["original_end_at"]),
        extension_count=row["extension_count"],
        allow_auto_bid=bool(row["allow_auto_bid"]),
        anti_snipe_minutes=row["anti_snipe_minutes"],
        bid_count=row["bid_count"],
        winner_id=row["winner_id"],
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
    )


def _auction_to_values(auction: Auction) -> Dict[str, Any]:
    return {
        "auction_id": auction.auction_id,
        "seller_id": auction.seller_id,
        "title": auction.title,
        "description": auction.description,
        "deliverables": auction.deliverables,
        "category": auction.category.value,
        "starting_price": auction.starting_price,
        "current_bid": auction.current_bid,
        "buy_now_price": auction.buy_now_price,
        "reserve_price": auction.reserve_price,
        "status": auction.status.value,
        "ends_at": to_iso(auction.ends_at),
        "original_end_at": to_iso(auction.original_end_at),
        "extension_count": auction.extension_count,
        "allow_auto_bid": int(auction.allow_auto_bid),
        "anti_snipe_minutes": auction.anti_snipe_minutes,
        "bid_count": auction.bid_count,
        "winner_id": auction.winner_id,
        "created_at": to_iso(auction.created_at),
        "updated_at": to_iso(auction.updated_at),
    }


def _bid_from_row(row) -> Bid:
    return Bid(
        bid_id=row["bid_id"],
        auction_id=row["auction_id"],
        bidder_id=row["bidder_id"],
        amount=row["amount"],
        max_auto_bid=row["max_auto_bid"],
        status=BidStatus(row["status"]),
        is_auto=bool(row["is_auto"]),
        is_buy_now=bool(row["is_buy_now"]),
        escrow_amount=row["escrow_amount"],
        escrow_released_at=from_iso(row["escrow_released_at"]),
        created_at=from_iso(row["created_at"]),
    )


def _bid_to_values(bid: Bid) -> Dict[str, Any]:
    return {
        "bid_id": bid.bid_id,
        "auction_id": bid.auction_id,
        "bidder_id": bid.bidder_id,
        "amount": bid.amount,
        "max_auto_bid": bid.max_auto_bid,
        "status": bid.status.value,
        "is_auto": int(bid.is_auto),
        "is_buy_now": int(bid.is_buy_now),
        "escrow_amount": bid.escrow_amount,
        "escrow_released_at": to_iso(bid.escrow_released_at) if bid.escrow_released_at else None,
        "created_at": to_iso(bid.created_at),
    }


def _encode_value(value: Any) -> Any:
    if isinstance(value, (AuctionStatus, AuctionCategory, BidStatus)):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if hasattr(value, "tzinfo"):
        return to_iso(value)
    return value


class StorageManager:
    """
    Manages persistent storage for the auction engine.

    Wraps the SQLite adapter and converts rows to Auction / Bid records.
    Handles:
    - Auctions (lifecycle columns, listing queries, expiry scan)
    - Bids (append-only rows with status transitions)
    - Transactions spanning both
    """

    def __init__(self, data_dir: Path, db_name: str = "coinbid.db", busy_timeout: float = 5.0):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path, busy_timeout=busy_timeout)

        logger.info(f"StorageManager initialized at {self.db_path}")

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self.adapter.transaction():
            yield

    def close(self):
        self.adapter.close()

    # =========================================================================
    # Auctions
    # =========================================================================

    def save_new_auction(self, auction: Auction):
        self.adapter.insert_auction(_auction_to_values(auction))

    def get_auction(self, auction_id: str) -> Optional[Auction]:
        row = self.adapter.get_auction(auction_id)
        return _auction_from_row(row) if row else None

    def update_auction(self, auction_id: str, expected_status: Optional[AuctionStatus] = None, **changes) -> bool:
        """
        Write changed auction fields.

        Returns False if expected_status was given and no longer matches.
        """
        values = {name: _encode_value(value) for name, value in changes.items()}
        status = expected_status.value if expected_status is not None else None
        return self.adapter.update_auction(auction_id, values, expected_status=status) == 1

    def delete_auction(self, auction_id: str) -> bool:
        return self.adapter.delete_auction(auction_id) == 1

    def list_auctions(
        self,
        where: Sequence[str],
        params: Sequence[Any],
        order_by: str,
        limit: int,
        offset: int,
    ) -> Tuple[List[Auction], int]:
        rows = self.adapter.query_auctions(where, params, order_by, limit, offset)
        total = self.adapter.count_auctions(where, params)
        return [_auction_from_row(r) for r in rows], total

    def get_due_auction_ids(self, now, limit: Optional[int] = None) -> List[str]:
        return self.adapter.get_due_auction_ids(to_iso(now), limit)

    # =========================================================================
    # Bids
    # =========================================================================

    def save_new_bid(self, bid: Bid):
        self.adapter.insert_bid(_bid_to_values(bid))

    def get_bid(self, bid_id: str) -> Optional[Bid]:
        row = self.adapter.get_bid(bid_id)
        return _bid_from_row(row) if row else None

    def get_winning_bid(self, auction_id: str) -> Optional[Bid]:
        row = self.adapter.get_winning_bid(auction_id)
        return _bid_from_row(row) if row else None

    def get_bids_for_auction(self, auction_id: str, limit: Optional[int] = None) -> List[Bid]:
        return [_bid_from_row(r) for r in self.adapter.get_bids_for_auction(auction_id, limit)]

    def get_bids_for_bidder(self, bidder_id: str, limit: Optional[int] = None) -> List[Bid]:
        return [_bid_from_row(r) for r in self.adapter.get_bids_for_bidder(bidder_id, limit)]

    def get_open_escrow_bids(self, auction_id: str) -> List[Bid]:
        return [_bid_from_row(r) for r in self.adapter.get_open_escrow_bids(auction_id)]

    def set_bid_status(self, bid_id: str, status: BidStatus, escrow_released_at=None) -> bool:
        released = to_iso(escrow_released_at) if escrow_released_at is not None else None
        return self.adapter.update_bid_status(bid_id, status.value, released) == 1
