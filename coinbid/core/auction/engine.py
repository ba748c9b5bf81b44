"""
Auction Engine - Bidding, buy-now and settlement against coin balances.

Conceptual Background:
---------------------
Every state-changing call runs as one SQLite transaction that takes the
write lock before it reads anything (BEGIN IMMEDIATE). Inside it the engine
reads the auction and its leading bid, validates, resolves proxy
competition, moves coins through the balance store and writes the new
auction state. Typed failures are raised inside the transaction so that it
rolls back, and are handed to the caller as (None, failure).

Coins a bidder commits are held in escrow:
- The leading bid row holds exactly its amount.
- A displaced leader's hold is released in the same transaction that
  debits the new leader.
- On sale the winning hold is credited to the seller; every other hold is
  refunded.

Notifications are written to the outbox inside the transaction and only
dispatched after commit.
"""

import sqlite3
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from coinbid.core.auction.errors import (
    AuctionFailure,
    AuctionNotActive,
    AuctionNotFound,
    BidTooLow,
    BuyNowUnavailable,
    InsufficientBalance,
    InvalidAuctionState,
    InvalidRequest,
    NotAuctionOwner,
    SelfBidNotAllowed,
    TransientConflict,
)
from coinbid.core.auction.extension import ExtensionPolicy
from coinbid.core.auction.models import (
    Auction,
    AuctionStatus,
    Bid,
    BidStatus,
    BuyNowOutcome,
    PlaceBidOutcome,
    SettlementOutcome,
    new_id,
    to_iso,
    utcnow,
)
from coinbid.core.auction.proxy import Contender, resolve
from coinbid.core.auction.schemas import CreateAuctionRequest, UpdateAuctionRequest
from coinbid.core.config import EngineConfig, config as default_config
from coinbid.core.ledger.balances import BalanceStore, EntryKind
from coinbid.core.notify.outbox import EventKind, NotificationDispatcher, NotificationOutbox
from coinbid.core.storage.sqlite_adapter import is_transient_error
from coinbid.core.storage.storage_manager import StorageManager
from coinbid.core.watchlist import Watchlist
from coinbid.utils.logger import get_logger
from coinbid.utils.validation import validate_actor_id, validate_auction_id, validate_bid_data

logger = get_logger("auction.engine")

T = TypeVar("T")
Result = Tuple[Optional[T], Optional[AuctionFailure]]


# =============================================================================
# Listing
# =============================================================================

LISTING_FILTERS = ("all", "active", "ending_soon", "new")

SORT_ORDERS = {
    "ending_soon": "ends_at ASC",
    "newest": "created_at DESC",
    "most_bids": "bid_count DESC, ends_at ASC",
    "price_low": "current_bid ASC, ends_at ASC",
    "price_high": "current_bid DESC, ends_at ASC",
}


@dataclass
class AuctionPage:
    auctions: List[Auction]
    total: int
    page: int
    page_size: int

    def to_dict(self) -> dict:
        return {
            "auctions": [a.to_dict() for a in self.auctions],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
        }


@dataclass
class SweepReport:
    """Result of one expiry sweep."""
    outcomes: Dict[str, SettlementOutcome] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def sold(self) -> List[str]:
        return [a for a, o in self.outcomes.items() if o == SettlementOutcome.SOLD]

    @property
    def ended(self) -> List[str]:
        return [a for a, o in self.outcomes.items() if o == SettlementOutcome.ENDED]

    def to_dict(self) -> dict:
        return {
            "outcomes": {a: o.value for a, o in self.outcomes.items()},
            "failed": dict(self.failed),
        }


# =============================================================================
# Engine
# =============================================================================


class AuctionEngine:
    """
    Coin-backed English auction engine.

    Public operations return (result, None) on success and
    (None, AuctionFailure) on an expected failure. Unexpected storage
    errors other than lock contention propagate.
    """

    def __init__(
        self,
        storage: StorageManager,
        config: Optional[EngineConfig] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
        auto_dispatch: bool = True,
    ):
        """
        Args:
            storage: Storage manager holding auctions, bids and balances
            config: Engine configuration (global config if omitted)
            dispatcher: Notification dispatcher (logs only if omitted)
            clock: Returns the current UTC time
            auto_dispatch: Dispatch pending notifications after each commit
        """
        self.storage = storage
        self.config = config or default_config
        self.clock = clock or utcnow
        self.auto_dispatch = auto_dispatch

        self.balances = BalanceStore(storage.adapter)
        self.outbox = NotificationOutbox(storage.adapter, dispatcher)
        self.watchlist = Watchlist(storage.adapter)
        self.extension = ExtensionPolicy(
            self.config.extension_amount_minutes,
            self.config.max_extensions,
        )

        logger.info(
            f"AuctionEngine ready (increment={self.config.min_bid_increment}, "
            f"extension={self.config.extension_amount_minutes}m x{self.config.max_extensions})"
        )

    # =========================================================================
    # Transactions
    # =========================================================================

    def _execute(self, operation: str, fn: Callable[[], T]) -> Result[T]:
        """
        Run fn in one transaction, retrying on lock contention.

        AuctionFailure raised by fn rolls the transaction back and is
        returned. After max_retries failed retries the caller gets
        TransientConflict; nothing is ever partially applied.
        """
        attempts = 0
        while True:
            attempts += 1
            try:
                with self.storage.transaction():
                    result = fn()
            except AuctionFailure as failure:
                logger.debug(f"{operation} rejected: {failure.kind.value} {failure.details}")
                return None, failure
            except sqlite3.OperationalError as e:
                if not is_transient_error(e):
                    raise
                if attempts > self.config.max_retries:
                    logger.warning(f"{operation} gave up after {attempts} attempts: {e}")
                    return None, TransientConflict(operation, attempts)
                logger.warning(f"{operation} hit a busy database (attempt {attempts}), retrying")
                time.sleep(self.config.retry_backoff_seconds * attempts)
                continue
            break

        if self.auto_dispatch:
            self.dispatch_notifications()
        return result, None

    def dispatch_notifications(self, limit: int = 100) -> Tuple[int, int]:
        """
        Deliver pending outbox entries.

        Lock contention only defers delivery; the rows stay pending.

        Returns:
            (sent, failed)
        """
        try:
            return self.outbox.dispatch_pending(limit)
        except sqlite3.OperationalError as e:
            if not is_transient_error(e):
                raise
            logger.warning(f"Outbox dispatch deferred: {e}")
            return 0, 0

    @staticmethod
    def _first_invalid(*checks: Tuple[bool, str]) -> Optional[InvalidRequest]:
        for valid, err in checks:
            if not valid:
                return InvalidRequest(err)
        return None

    @staticmethod
    def _parse(model: Type[BaseModel], data: Union[BaseModel, Dict[str, Any]]):
        if isinstance(data, model):
            return data
        try:
            return model.model_validate(data)
        except ValidationError as e:
            problems = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise InvalidRequest(f"Invalid {model.__name__}", errors=problems) from e

    # =========================================================================
    # Shared helpers (run inside a transaction)
    # =========================================================================

    def _load_auction(self, auction_id: str) -> Auction:
        auction = self.storage.get_auction(auction_id)
        if auction is None:
            raise AuctionNotFound(auction_id)
        return auction

    def _load_owned(self, auction_id: str, seller_id: str) -> Auction:
        auction = self._load_auction(auction_id)
        if auction.seller_id != seller_id:
            raise NotAuctionOwner(auction_id, seller_id)
        return auction

    def _move(
        self,
        from_actor: Optional[str],
        to_actor: Optional[str],
        amount: int,
        kind: EntryKind,
        auction_id: str,
        bid_id: str,
    ):
        if amount == 0:
            return
        ok, err = self.balances.transfer(from_actor, to_actor, amount, kind=kind, auction_id=auction_id, bid_id=bid_id)
        if not ok:
            if from_actor is not None:
                raise InsufficientBalance(self.balances.get_balance(from_actor), amount)
            raise InvalidRequest(err)

    def _release(self, bid: Bid, status: BidStatus, now: datetime):
        """Give a bid's hold back to its bidder and move it to status."""
        if bid.holds_escrow:
            self._move(None, bid.bidder_id, bid.escrow_amount, EntryKind.HOLD_RELEASE, bid.auction_id, bid.bid_id)
            self.storage.set_bid_status(bid.bid_id, status, escrow_released_at=now)
        else:
            self.storage.set_bid_status(bid.bid_id, status)

    def _hold_new_bid(
        self,
        auction_id: str,
        bidder_id: str,
        amount: int,
        max_auto_bid: Optional[int],
        is_auto: bool,
        now: datetime,
    ) -> Bid:
        """Store an ACTIVE bid row and debit its amount into escrow."""
        bid = Bid(
            bid_id=new_id(),
            auction_id=auction_id,
            bidder_id=bidder_id,
            amount=amount,
            status=BidStatus.ACTIVE,
            max_auto_bid=max_auto_bid,
            is_auto=is_auto,
            escrow_amount=amount,
            created_at=now,
        )
        self.storage.save_new_bid(bid)
        self._move(bidder_id, None, amount, EntryKind.BID_HOLD, auction_id, bid.bid_id)
        return bid

    def _refund_all(self, auction_id: str, now: datetime) -> List[Bid]:
        refunded = self.storage.get_open_escrow_bids(auction_id)
        for bid in refunded:
            self._release(bid, BidStatus.REFUNDED, now)
        return refunded

    @staticmethod
    def _own_hold(leader_bid: Optional[Bid], actor_id: str) -> int:
        if leader_bid is not None and leader_bid.bidder_id == actor_id and leader_bid.holds_escrow:
            return leader_bid.escrow_amount
        return 0

    @staticmethod
    def _payload(auction: Auction, **extra) -> Dict[str, Any]:
        return {"auction_id": auction.auction_id, "title": auction.title, **extra}

    def _notify_watchers(self, auction: Auction, event: EventKind, skip: set, **extra):
        for entry in self.watchlist.watchers(auction.auction_id):
            if entry.notify_ending and entry.actor_id not in skip:
                self.outbox.enqueue(entry.actor_id, event, self._payload(auction, **extra), auction.auction_id)

    # =========================================================================
    # Proxy contenders
    # =========================================================================

    def _bidder_positions(self, auction_id: str) -> Dict[str, Tuple[Bid, datetime]]:
        """
        Latest bid row per bidder, with the time its ceiling was set.

        A proxy raise keeps the ceiling of the bid it continues, so its
        ceiling dates from the bid that first set it.
        """
        positions: Dict[str, Tuple[Bid, datetime]] = {}
        for bid in reversed(self.storage.get_bids_for_auction(auction_id)):
            previous = positions.get(bid.bidder_id)
            since = bid.created_at
            if previous is not None and bid.is_auto and bid.max_auto_bid == previous[0].max_auto_bid:
                since = previous[1]
            positions[bid.bidder_id] = (bid, since)
        return positions

    def _contender(self, bid: Bid, since: datetime) -> Contender:
        # Never raise a bidder past what they can pay
        affordable = self.balances.get_balance(bid.bidder_id) + (bid.escrow_amount if bid.holds_escrow else 0)
        return Contender(
            bidder_id=bid.bidder_id,
            amount=bid.amount,
            ceiling=max(bid.amount, min(bid.ceiling, affordable)),
            placed_at=since,
            bid_id=bid.bid_id,
        )

    # =========================================================================
    # place_bid
    # =========================================================================

    def place_bid(
        self,
        auction_id: str,
        bidder_id: str,
        amount: int,
        max_auto_bid: Optional[int] = None,
    ) -> Result[PlaceBidOutcome]:
        """
        Place a bid, optionally with an auto-bid ceiling.

        Checks, in order:
        1. Auction exists and is open
        2. Bidder is not the seller
        3. Amount reaches the minimum bid
        4. Bidder can pay the amount (a leader raising their own bid may
           count their current hold)
        5. max_auto_bid is kept only if >= amount and the auction allows
           auto-bids

        Args:
            auction_id: Auction to bid on
            bidder_id: Bidding actor
            amount: Coins offered
            max_auto_bid: Optional ceiling for automatic raises

        Returns:
            (PlaceBidOutcome, None) or (None, failure)
        """
        valid, err = validate_bid_data({
            "auction_id": auction_id,
            "bidder_id": bidder_id,
            "amount": amount,
            "max_auto_bid": max_auto_bid,
        })
        if not valid:
            return None, InvalidRequest(err)

        return self._execute(
            "place_bid",
            lambda: self._place_bid(auction_id, bidder_id, amount, max_auto_bid),
        )

    def _place_bid(
        self,
        auction_id: str,
        bidder_id: str,
        amount: int,
        max_auto_bid: Optional[int],
    ) -> PlaceBidOutcome:
        now = self.clock()
        increment = self.config.min_bid_increment

        # 1. Auction is open
        auction = self._load_auction(auction_id)
        if not auction.is_open(now):
            raise AuctionNotActive(auction_id, auction.status.value)

        # 2. No bidding on own auction
        if bidder_id == auction.seller_id:
            raise SelfBidNotAllowed(auction_id)

        # 3. Minimum bid
        required = auction.minimum_bid(increment)
        if amount < required:
            raise BidTooLow(amount, required)

        # 4. Coins available
        leader_bid = self.storage.get_winning_bid(auction_id)
        balance_before = self.balances.get_balance(bidder_id)
        available = balance_before + self._own_hold(leader_bid, bidder_id)
        if amount > available:
            raise InsufficientBalance(available, amount)

        # 5. Auto-bid ceiling
        if max_auto_bid is not None and (max_auto_bid < amount or not auction.allow_auto_bid):
            logger.debug(f"Ignoring max_auto_bid {max_auto_bid} on {auction_id[:8]}")
            max_auto_bid = None

        # Resolve against the leader and any other live auto-bids
        positions = self._bidder_positions(auction_id)
        incoming = Contender(
            bidder_id=bidder_id,
            amount=amount,
            ceiling=min(max_auto_bid, available) if max_auto_bid is not None else amount,
            placed_at=now,
        )
        leader = None
        if leader_bid is not None and leader_bid.bidder_id != bidder_id:
            leader = self._contender(leader_bid, positions[leader_bid.bidder_id][1])
        latent = []
        if auction.allow_auto_bid:
            latent = [
                self._contender(bid, since)
                for bid, since in positions.values()
                if bid.max_auto_bid is not None and bid.status == BidStatus.OUTBID
            ]
        final = resolve(leader, incoming, latent, increment).leader
        incoming_wins = final.bidder_id == bidder_id

        # Previous leader's hold comes back before anyone is debited
        displaced = None
        if leader_bid is not None:
            self._release(leader_bid, BidStatus.OUTBID, now)
            if leader_bid.bidder_id not in (bidder_id, final.bidder_id):
                displaced = leader_bid

        # New rows start ACTIVE with their hold taken, then move to their
        # resolved status
        held = final.amount if incoming_wins else amount
        bid = self._hold_new_bid(auction_id, bidder_id, held, max_auto_bid, False, now)
        rows_added = 1

        if incoming_wins:
            self.storage.set_bid_status(bid.bid_id, BidStatus.WINNING)
        else:
            # Beaten on arrival: the hold goes straight back and the
            # proxy bidder is raised with a new row
            self._release(bid, BidStatus.OUTBID, now)
            source = self.storage.get_bid(final.bid_id)
            raised = self._hold_new_bid(auction_id, final.bidder_id, final.amount, source.max_auto_bid, True, now)
            self.storage.set_bid_status(raised.bid_id, BidStatus.WINNING)
            rows_added += 1

        decision = self.extension.evaluate(
            now,
            auction.ends_at,
            auction.original_end_at,
            auction.extension_count,
            auction.anti_snipe_minutes,
        )
        updated = self.storage.update_auction(
            auction_id,
            expected_status=AuctionStatus.ACTIVE,
            current_bid=final.amount,
            bid_count=auction.bid_count + rows_added,
            ends_at=decision.ends_at,
            extension_count=decision.extension_count,
            updated_at=now,
        )
        if not updated:
            raise AuctionNotActive(auction_id, auction.status.value)

        if displaced is not None and self.watchlist.wants_outbid(auction_id, displaced.bidder_id):
            self.outbox.enqueue(
                displaced.bidder_id,
                EventKind.OUTBID,
                self._payload(
                    auction,
                    your_bid=displaced.amount,
                    current_bid=final.amount,
                    ends_at=to_iso(decision.ends_at),
                ),
                auction_id,
            )

        new_balance = self.balances.get_balance(bidder_id)
        logger.info(
            f"Bid on {auction_id[:8]}: {bidder_id} offered {amount}, "
            f"leader {final.bidder_id} at {final.amount}"
            + (f", extended to {to_iso(decision.ends_at)}" if decision.extended else "")
        )

        return PlaceBidOutcome(
            bid_id=bid.bid_id,
            final_amount=final.amount,
            is_winning=incoming_wins,
            escrow_deducted=balance_before - new_balance,
            auction_extended=decision.extended,
            new_end_time=decision.ends_at,
            new_balance=new_balance,
            current_bid=final.amount,
        )

    # =========================================================================
    # buy_now
    # =========================================================================

    def buy_now(self, auction_id: str, buyer_id: str) -> Result[BuyNowOutcome]:
        """
        Buy an auction outright at its buy-now price.

        Every open hold is refunded in full, the buyer pays the seller and
        the auction closes as sold with ends_at = now. Once the current bid
        reaches the buy-now price, buy-now is no longer offered.

        Returns:
            (BuyNowOutcome, None) or (None, failure)
        """
        invalid = self._first_invalid(
            validate_auction_id(auction_id),
            validate_actor_id(buyer_id, "buyer_id"),
        )
        if invalid:
            return None, invalid

        return self._execute("buy_now", lambda: self._buy_now(auction_id, buyer_id))

    def _buy_now(self, auction_id: str, buyer_id: str) -> BuyNowOutcome:
        now = self.clock()

        auction = self._load_auction(auction_id)
        if not auction.is_open(now):
            raise AuctionNotActive(auction_id, auction.status.value)
        if buyer_id == auction.seller_id:
            raise SelfBidNotAllowed(auction_id)
        if auction.buy_now_price is None:
            raise BuyNowUnavailable(auction_id)
        if auction.current_bid is not None and auction.current_bid >= auction.buy_now_price:
            raise BuyNowUnavailable(auction_id, "Bidding has passed the buy now price")

        price = auction.buy_now_price
        leader_bid = self.storage.get_winning_bid(auction_id)
        available = self.balances.get_balance(buyer_id) + self._own_hold(leader_bid, buyer_id)
        if price > available:
            raise InsufficientBalance(available, price)

        refunded = self._refund_all(auction_id, now)

        bid = Bid(
            bid_id=new_id(),
            auction_id=auction_id,
            bidder_id=buyer_id,
            amount=price,
            status=BidStatus.WINNING,
            is_buy_now=True,
            escrow_amount=price,
            escrow_released_at=now,
            created_at=now,
        )
        self.storage.save_new_bid(bid)
        self._move(buyer_id, None, price, EntryKind.BID_HOLD, auction_id, bid.bid_id)
        self._move(None, auction.seller_id, price, EntryKind.SALE_CREDIT, auction_id, bid.bid_id)

        updated = self.storage.update_auction(
            auction_id,
            expected_status=AuctionStatus.ACTIVE,
            status=AuctionStatus.SOLD,
            winner_id=buyer_id,
            current_bid=price,
            ends_at=now,
            bid_count=auction.bid_count + 1,
            updated_at=now,
        )
        if not updated:
            raise AuctionNotActive(auction_id, auction.status.value)

        # Notifications
        notified = {buyer_id, auction.seller_id}
        for refund in refunded:
            if refund.bidder_id in notified:
                continue
            notified.add(refund.bidder_id)
            if self.watchlist.wants_outbid(auction_id, refund.bidder_id):
                self.outbox.enqueue(
                    refund.bidder_id,
                    EventKind.OUTBID,
                    self._payload(auction, your_bid=refund.amount, current_bid=price, reason="buy_now"),
                    auction_id,
                )
        self.outbox.enqueue(buyer_id, EventKind.BUY_NOW_CONFIRMED, self._payload(auction, amount=price), auction_id)
        self.outbox.enqueue(
            auction.seller_id,
            EventKind.AUCTION_SOLD,
            self._payload(auction, winner_id=buyer_id, amount=price, buy_now=True),
            auction_id,
        )
        self._notify_watchers(auction, EventKind.AUCTION_ENDED, notified, outcome=SettlementOutcome.SOLD.value)

        new_balance = self.balances.get_balance(buyer_id)
        logger.info(f"Auction {auction_id[:8]} bought now by {buyer_id} for {price}")
        return BuyNowOutcome(bid_id=bid.bid_id, amount=price, new_balance=new_balance)

    # =========================================================================
    # Settlement
    # =========================================================================

    def settle_expired(self, auction_id: str) -> Result[SettlementOutcome]:
        """
        Settle an auction whose end time has passed.

        Safe to call any number of times, concurrently: the status moves out
        of ACTIVE exactly once and later calls report ALREADY_SETTLED.

        Returns:
            (SettlementOutcome, None) or (None, failure)
        """
        invalid = self._first_invalid(validate_auction_id(auction_id))
        if invalid:
            return None, invalid

        return self._execute("settle_expired", lambda: self._settle(auction_id))

    def _settle(self, auction_id: str) -> SettlementOutcome:
        now = self.clock()

        auction = self._load_auction(auction_id)
        if auction.status == AuctionStatus.DRAFT:
            raise InvalidAuctionState("Draft auctions cannot be settled", auction.status.value)
        if auction.status != AuctionStatus.ACTIVE:
            return SettlementOutcome.ALREADY_SETTLED
        if not auction.is_expired(now):
            return SettlementOutcome.NOT_EXPIRED

        leader_bid = self.storage.get_winning_bid(auction_id)
        reserve_met = leader_bid is not None and (
            auction.reserve_price is None or leader_bid.amount >= auction.reserve_price
        )

        if reserve_met:
            if not self.storage.update_auction(
                auction_id,
                expected_status=AuctionStatus.ACTIVE,
                status=AuctionStatus.SOLD,
                winner_id=leader_bid.bidder_id,
                updated_at=now,
            ):
                return SettlementOutcome.ALREADY_SETTLED

            for bid in self.storage.get_open_escrow_bids(auction_id):
                if bid.bid_id == leader_bid.bid_id:
                    self._move(None, auction.seller_id, bid.escrow_amount, EntryKind.SALE_CREDIT, auction_id, bid.bid_id)
                    self.storage.set_bid_status(bid.bid_id, BidStatus.WINNING, escrow_released_at=now)
                else:
                    self._release(bid, BidStatus.REFUNDED, now)

            self.outbox.enqueue(
                leader_bid.bidder_id,
                EventKind.AUCTION_WON,
                self._payload(auction, amount=leader_bid.amount),
                auction_id,
            )
            self.outbox.enqueue(
                auction.seller_id,
                EventKind.AUCTION_SOLD,
                self._payload(auction, winner_id=leader_bid.bidder_id, amount=leader_bid.amount),
                auction_id,
            )
            outcome = SettlementOutcome.SOLD
            logger.info(f"Auction {auction_id[:8]} sold to {leader_bid.bidder_id} for {leader_bid.amount}")
        else:
            if not self.storage.update_auction(
                auction_id,
                expected_status=AuctionStatus.ACTIVE,
                status=AuctionStatus.ENDED,
                updated_at=now,
            ):
                return SettlementOutcome.ALREADY_SETTLED

            self._refund_all(auction_id, now)
            reason = "no_bids" if leader_bid is None else "reserve_not_met"
            self.outbox.enqueue(
                auction.seller_id,
                EventKind.AUCTION_ENDED_NO_SALE,
                self._payload(auction, reason=reason),
                auction_id,
            )
            if leader_bid is not None:
                self.outbox.enqueue(
                    leader_bid.bidder_id,
                    EventKind.AUCTION_ENDED_NO_SALE,
                    self._payload(auction, reason=reason, your_bid=leader_bid.amount),
                    auction_id,
                )
            outcome = SettlementOutcome.ENDED
            logger.info(f"Auction {auction_id[:8]} ended without sale ({reason})")

        skip = {auction.seller_id}
        if leader_bid is not None:
            skip.add(leader_bid.bidder_id)
        self._notify_watchers(auction, EventKind.AUCTION_ENDED, skip, outcome=outcome.value)
        return outcome

    def sweep_expired(self, limit: Optional[int] = None) -> SweepReport:
        """
        Settle every active auction whose end time has passed.

        Each auction settles in its own transaction. A failure on one
        auction is logged and recorded; the sweep carries on.
        """
        report = SweepReport()
        due = self.storage.get_due_auction_ids(self.clock(), limit)

        for auction_id in due:
            try:
                outcome, failure = self.settle_expired(auction_id)
            except Exception as e:
                logger.exception(f"Settlement of auction {auction_id} failed")
                report.failed[auction_id] = str(e)
                continue

            if failure is not None:
                logger.warning(f"Settlement of auction {auction_id} rejected: {failure.message}")
                report.failed[auction_id] = failure.message
                continue
            report.outcomes[auction_id] = outcome

        if due:
            logger.info(
                f"Sweep: {len(report.sold)} sold, {len(report.ended)} ended, {len(report.failed)} failed"
            )
        return report

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _check_listing(self, auction: Auction):
        if auction.starting_price < self.config.min_starting_price:
            raise InvalidRequest(
                f"Starting price must be at least {self.config.min_starting_price} coins",
                starting_price=auction.starting_price,
            )
        if auction.buy_now_price is not None and auction.buy_now_price <= auction.starting_price:
            raise InvalidRequest("Buy now price must be greater than starting price")
        if auction.reserve_price is not None and auction.reserve_price <= auction.starting_price:
            raise InvalidRequest("Reserve price must be greater than starting price")
        if not 0 <= auction.anti_snipe_minutes <= self.config.max_anti_snipe_minutes:
            raise InvalidRequest(
                f"anti_snipe_minutes must be between 0 and {self.config.max_anti_snipe_minutes}"
            )

    def create_auction(
        self,
        seller_id: str,
        request: Union[CreateAuctionRequest, Dict[str, Any]],
    ) -> Result[Auction]:
        """Create a draft auction."""
        invalid = self._first_invalid(validate_actor_id(seller_id, "seller_id"))
        if invalid:
            return None, invalid
        try:
            request = self._parse(CreateAuctionRequest, request)
        except InvalidRequest as failure:
            return None, failure

        def run() -> Auction:
            now = self.clock()
            if request.ends_at <= now:
                raise InvalidRequest("End time must be in the future")
            anti_snipe = request.anti_snipe_minutes
            auction = Auction(
                auction_id=new_id(),
                seller_id=seller_id,
                title=request.title,
                description=request.description,
                deliverables=request.deliverables,
                category=request.category,
                starting_price=request.starting_price,
                reserve_price=request.reserve_price,
                buy_now_price=request.buy_now_price,
                ends_at=request.ends_at,
                original_end_at=request.ends_at,
                allow_auto_bid=request.allow_auto_bid,
                anti_snipe_minutes=anti_snipe if anti_snipe is not None else self.config.extension_window_minutes,
                created_at=now,
                updated_at=now,
            )
            self._check_listing(auction)
            self.balances.ensure_actor(seller_id)
            self.storage.save_new_auction(auction)
            logger.info(f"Auction {auction.auction_id[:8]} created by {seller_id}: {auction.title!r}")
            return auction

        return self._execute("create_auction", run)

    def update_auction(
        self,
        auction_id: str,
        seller_id: str,
        request: Union[UpdateAuctionRequest, Dict[str, Any]],
    ) -> Result[Auction]:
        """
        Edit a draft auction.

        Only fields set on the request change. A new ends_at also becomes
        the original end time used by the extension cap.
        """
        try:
            request = self._parse(UpdateAuctionRequest, request)
        except InvalidRequest as failure:
            return None, failure

        def run() -> Auction:
            now = self.clock()
            auction = self._load_owned(auction_id, seller_id)
            if auction.status != AuctionStatus.DRAFT:
                raise InvalidAuctionState("Only draft auctions can be edited", auction.status.value)

            changes = request.model_dump(exclude_unset=True)
            for name in ("title", "category", "starting_price", "ends_at", "allow_auto_bid", "anti_snipe_minutes"):
                if name in changes and changes[name] is None:
                    raise InvalidRequest(f"{name} cannot be cleared")
            if "ends_at" in changes:
                if changes["ends_at"] <= now:
                    raise InvalidRequest("End time must be in the future")
                changes["original_end_at"] = changes["ends_at"]

            self._check_listing(replace(auction, **changes))
            self.storage.update_auction(auction_id, expected_status=AuctionStatus.DRAFT, updated_at=now, **changes)
            return self.storage.get_auction(auction_id)

        return self._execute("update_auction", run)

    def delete_auction(self, auction_id: str, seller_id: str) -> Result[bool]:
        """Delete a draft auction."""

        def run() -> bool:
            auction = self._load_owned(auction_id, seller_id)
            if auction.status != AuctionStatus.DRAFT:
                raise InvalidAuctionState("Only draft auctions can be deleted", auction.status.value)
            self.storage.delete_auction(auction_id)
            logger.info(f"Auction {auction_id[:8]} deleted")
            return True

        return self._execute("delete_auction", run)

    def publish_auction(self, auction_id: str, seller_id: str) -> Result[Auction]:
        """Open a draft auction for bidding."""

        def run() -> Auction:
            now = self.clock()
            auction = self._load_owned(auction_id, seller_id)
            if auction.status != AuctionStatus.DRAFT:
                raise InvalidAuctionState("Only draft auctions can be published", auction.status.value)
            if auction.ends_at <= now:
                raise InvalidAuctionState("End time must be in the future", auction.status.value)

            self.storage.update_auction(
                auction_id,
                expected_status=AuctionStatus.DRAFT,
                status=AuctionStatus.ACTIVE,
                original_end_at=auction.ends_at,
                extension_count=0,
                updated_at=now,
            )
            logger.info(f"Auction {auction_id[:8]} published, ends {to_iso(auction.ends_at)}")
            return self.storage.get_auction(auction_id)

        return self._execute("publish_auction", run)

    def cancel_auction(self, auction_id: str, actor_id: str, admin: bool = False) -> Result[Auction]:
        """
        Cancel a draft or active auction.

        Only the seller may cancel, unless admin is set. Every open hold is
        refunded.
        """

        def run() -> Auction:
            now = self.clock()
            auction = self._load_auction(auction_id)
            if not admin and auction.seller_id != actor_id:
                raise NotAuctionOwner(auction_id, actor_id)
            if auction.status.is_terminal:
                raise InvalidAuctionState("Only draft or active auctions can be cancelled", auction.status.value)

            self.storage.update_auction(
                auction_id,
                expected_status=auction.status,
                status=AuctionStatus.CANCELLED,
                updated_at=now,
            )
            refunded = self._refund_all(auction_id, now)

            notified = {auction.seller_id}
            for bid in refunded:
                if bid.bidder_id not in notified:
                    notified.add(bid.bidder_id)
                    self.outbox.enqueue(
                        bid.bidder_id,
                        EventKind.AUCTION_CANCELLED,
                        self._payload(auction, refunded=bid.escrow_amount),
                        auction_id,
                    )
            if actor_id != auction.seller_id:
                self.outbox.enqueue(
                    auction.seller_id,
                    EventKind.AUCTION_CANCELLED,
                    self._payload(auction, cancelled_by=actor_id),
                    auction_id,
                )
            self._notify_watchers(auction, EventKind.AUCTION_CANCELLED, notified)

            logger.info(f"Auction {auction_id[:8]} cancelled by {actor_id}, {len(refunded)} holds refunded")
            return self.storage.get_auction(auction_id)

        return self._execute("cancel_auction", run)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_auction(self, auction_id: str) -> Result[Auction]:
        auction = self.storage.get_auction(auction_id)
        if auction is None:
            return None, AuctionNotFound(auction_id)
        return auction, None

    def list_auctions(
        self,
        status: str = "active",
        seller_id: Optional[str] = None,
        has_buy_now: bool = False,
        sort: str = "ending_soon",
        page: int = 1,
        page_size: int = 20,
    ) -> Result[AuctionPage]:
        """
        List auctions for browsing.

        Args:
            status: all (everything but drafts), active, ending_soon or new
            seller_id: Only this seller's auctions
            has_buy_now: Only auctions offering buy-now
            sort: ending_soon, newest, most_bids, price_low or price_high
            page: 1-based page number
            page_size: Capped at max_page_size
        """
        if status not in LISTING_FILTERS:
            return None, InvalidRequest(f"Unknown status filter: {status}")
        if sort not in SORT_ORDERS:
            return None, InvalidRequest(f"Unknown sort order: {sort}")
        if page < 1 or page_size < 1:
            return None, InvalidRequest("page and page_size must be >= 1")
        page_size = min(page_size, self.config.max_page_size)

        now = self.clock()
        where: List[str] = []
        params: List[Any] = []

        if status == "all":
            where.append("status != ?")
            params.append(AuctionStatus.DRAFT.value)
        else:
            where.append("status = ?")
            params.append(AuctionStatus.ACTIVE.value)
        if status == "ending_soon":
            where.append("ends_at < ?")
            params.append(to_iso(now + timedelta(hours=self.config.ending_soon_hours)))
        elif status == "new":
            where.append("created_at > ?")
            params.append(to_iso(now - timedelta(hours=self.config.new_listing_hours)))

        if seller_id is not None:
            where.append("seller_id = ?")
            params.append(seller_id)
        if has_buy_now:
            where.append("buy_now_price IS NOT NULL")

        auctions, total = self.storage.list_auctions(
            where, params, SORT_ORDERS[sort], page_size, (page - 1) * page_size
        )
        return AuctionPage(auctions=auctions, total=total, page=page, page_size=page_size), None

    def get_bids(self, auction_id: str, limit: Optional[int] = None) -> Result[List[Bid]]:
        """Bid history of an auction, newest first."""
        if self.storage.get_auction(auction_id) is None:
            return None, AuctionNotFound(auction_id)
        return self.storage.get_bids_for_auction(auction_id, limit), None

    def get_bidder_bids(self, bidder_id: str, limit: Optional[int] = None) -> Result[List[Bid]]:
        invalid = self._first_invalid(validate_actor_id(bidder_id, "bidder_id"))
        if invalid:
            return None, invalid
        return self.storage.get_bids_for_bidder(bidder_id, limit), None

    # =========================================================================
    # Balances
    # =========================================================================

    def deposit(self, actor_id: str, amount: int) -> Tuple[bool, str]:
        return self.balances.deposit(actor_id, amount)

    def get_balance(self, actor_id: str) -> int:
        return self.balances.get_balance(actor_id)
