"""
Unit tests for buy-now purchases.
"""

import pytest

from coinbid.core.auction.errors import (
    AuctionNotActive,
    BuyNowUnavailable,
    InsufficientBalance,
    SelfBidNotAllowed,
)
from coinbid.core.auction.models import AuctionStatus, BidStatus, SettlementOutcome


@pytest.fixture
def contested(engine, fund, make_auction):
    """Auction with buy-now at 300 where bob leads at 160 by proxy."""
    fund(alice=500, bob=1000, carol=1000, dave=1000)
    auction = make_auction(buy_now_price=300)
    engine.place_bid(auction.auction_id, "alice", 100)
    engine.place_bid(auction.auction_id, "bob", 120, max_auto_bid=200)
    engine.place_bid(auction.auction_id, "carol", 150)
    return auction


# =============================================================================
# Purchase Tests
# =============================================================================


class TestBuyNow:

    def test_refunds_and_pays_seller(self, engine, contested, clock):
        assert engine.get_balance("bob") == 840

        outcome, failure = engine.buy_now(contested.auction_id, "dave")

        assert failure is None
        assert outcome.amount == 300
        assert outcome.new_balance == 700
        assert engine.get_balance("bob") == 1000
        assert engine.get_balance("alice") == 500
        assert engine.get_balance("carol") == 1000
        assert engine.get_balance("seller") == 300

        auction, _ = engine.get_auction(contested.auction_id)
        assert auction.status == AuctionStatus.SOLD
        assert auction.winner_id == "dave"
        assert auction.current_bid == 300
        assert auction.ends_at == clock.now

    def test_bid_rows_after_purchase(self, engine, contested):
        outcome, _ = engine.buy_now(contested.auction_id, "dave")

        bids, _ = engine.get_bids(contested.auction_id)
        winners = [b for b in bids if b.status == BidStatus.WINNING]
        assert [b.bid_id for b in winners] == [outcome.bid_id]
        assert winners[0].is_buy_now
        assert engine.storage.get_open_escrow_bids(contested.auction_id) == []
        assert any(b.bidder_id == "bob" and b.status == BidStatus.REFUNDED for b in bids)

    def test_escrow_empty_after_purchase(self, engine, contested):
        engine.buy_now(contested.auction_id, "dave")

        audit = engine.balances.audit_auction(contested.auction_id)
        assert audit.in_escrow == 0
        assert audit.credited == 300

    def test_closed_after_purchase(self, engine, contested):
        engine.buy_now(contested.auction_id, "dave")

        _, failure = engine.place_bid(contested.auction_id, "carol", 400)
        assert isinstance(failure, AuctionNotActive)
        _, failure = engine.buy_now(contested.auction_id, "carol")
        assert isinstance(failure, AuctionNotActive)

        outcome, failure = engine.settle_expired(contested.auction_id)
        assert failure is None
        assert outcome == SettlementOutcome.ALREADY_SETTLED

    def test_leader_may_use_own_hold(self, engine, fund, make_auction):
        fund(alice=300)
        auction = make_auction(buy_now_price=300)
        engine.place_bid(auction.auction_id, "alice", 150)

        outcome, failure = engine.buy_now(auction.auction_id, "alice")

        assert failure is None
        assert outcome.new_balance == 0
        assert engine.get_balance("seller") == 300


# =============================================================================
# Failure Tests
# =============================================================================


class TestBuyNowFailures:

    def test_not_offered(self, engine, fund, make_auction):
        fund(dave=1000)
        auction = make_auction()

        _, failure = engine.buy_now(auction.auction_id, "dave")
        assert isinstance(failure, BuyNowUnavailable)

    def test_withdrawn_once_bidding_passes_price(self, engine, fund, make_auction):
        fund(alice=1000, dave=1000)
        auction = make_auction(buy_now_price=300)
        engine.place_bid(auction.auction_id, "alice", 400)

        _, failure = engine.buy_now(auction.auction_id, "dave")

        assert isinstance(failure, BuyNowUnavailable)
        assert failure.message == "Bidding has passed the buy now price"
        current, _ = engine.get_auction(auction.auction_id)
        assert current.status == AuctionStatus.ACTIVE
        assert current.current_bid == 400
        assert engine.get_balance("alice") == 600
        assert engine.get_balance("dave") == 1000
        assert engine.get_balance("seller") == 0

    def test_withdrawn_at_exact_price(self, engine, fund, make_auction):
        fund(alice=1000, dave=1000)
        auction = make_auction(buy_now_price=300)
        engine.place_bid(auction.auction_id, "alice", 300)

        _, failure = engine.buy_now(auction.auction_id, "dave")
        assert isinstance(failure, BuyNowUnavailable)

    def test_seller_cannot_buy(self, engine, fund, make_auction):
        fund(seller=1000)
        auction = make_auction(buy_now_price=300)

        _, failure = engine.buy_now(auction.auction_id, "seller")
        assert isinstance(failure, SelfBidNotAllowed)

    def test_insufficient_balance(self, engine, contested):
        _, failure = engine.buy_now(contested.auction_id, "eve")

        assert isinstance(failure, InsufficientBalance)
        assert failure.required == 300
        # Nothing moved
        assert engine.get_balance("bob") == 840
        auction, _ = engine.get_auction(contested.auction_id)
        assert auction.status == AuctionStatus.ACTIVE

    def test_expired_auction(self, engine, fund, make_auction, clock):
        fund(dave=1000)
        auction = make_auction(buy_now_price=300, minutes=10)
        clock.advance(minutes=10)

        _, failure = engine.buy_now(auction.auction_id, "dave")
        assert isinstance(failure, AuctionNotActive)


# =============================================================================
# Notification Tests
# =============================================================================


class TestBuyNowNotifications:

    def test_events(self, engine, contested, dispatcher):
        engine.watchlist.watch(contested.auction_id, "eve")
        dispatcher.sent.clear()

        engine.buy_now(contested.auction_id, "dave")

        assert dispatcher.events_for("bob") == ["outbid"]
        assert dispatcher.events_for("dave") == ["buy_now_confirmed"]
        assert dispatcher.events_for("seller") == ["auction_sold"]
        assert dispatcher.events_for("eve") == ["auction_ended"]
        assert dispatcher.events_for("alice") == []

        bob_payload = [p for a, _, p in dispatcher.sent if a == "bob"][0]
        assert bob_payload["reason"] == "buy_now"
        assert bob_payload["current_bid"] == 300


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
