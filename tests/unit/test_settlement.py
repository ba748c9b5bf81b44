"""
Unit tests for settlement at expiry and the expiry sweep.

Tests cover:
1. Sold / ended outcomes and coin movements
2. Reserve price handling
3. Idempotent repeated settlement
4. Sweep over due auctions with per-auction failure isolation
"""

import pytest

from coinbid.core.auction.errors import AuctionNotFound, InvalidAuctionState
from coinbid.core.auction.models import AuctionStatus, BidStatus, SettlementOutcome


# =============================================================================
# Outcome Tests
# =============================================================================


class TestSettleExpired:

    def test_no_bids_ends(self, engine, make_auction, clock, dispatcher):
        auction = make_auction(minutes=10)
        clock.advance(minutes=10)

        outcome, failure = engine.settle_expired(auction.auction_id)

        assert failure is None
        assert outcome == SettlementOutcome.ENDED
        current, _ = engine.get_auction(auction.auction_id)
        assert current.status == AuctionStatus.ENDED
        assert current.winner_id is None
        assert dispatcher.events_for("seller") == ["auction_ended_no_sale"]
        assert dispatcher.sent[-1][2]["reason"] == "no_bids"

    def test_not_expired(self, engine, make_auction, clock):
        auction = make_auction(minutes=10)
        clock.advance(minutes=9)

        outcome, failure = engine.settle_expired(auction.auction_id)

        assert failure is None
        assert outcome == SettlementOutcome.NOT_EXPIRED
        current, _ = engine.get_auction(auction.auction_id)
        assert current.status == AuctionStatus.ACTIVE

    def test_sold_to_leader(self, engine, fund, make_auction, clock, dispatcher):
        fund(alice=500, bob=500)
        auction = make_auction(minutes=10)
        engine.place_bid(auction.auction_id, "alice", 100)
        engine.place_bid(auction.auction_id, "bob", 130)
        clock.advance(minutes=10)
        dispatcher.sent.clear()

        outcome, _ = engine.settle_expired(auction.auction_id)

        assert outcome == SettlementOutcome.SOLD
        current, _ = engine.get_auction(auction.auction_id)
        assert current.status == AuctionStatus.SOLD
        assert current.winner_id == "bob"
        assert engine.get_balance("seller") == 130
        assert engine.get_balance("bob") == 370
        assert engine.get_balance("alice") == 500

        winning = engine.storage.get_winning_bid(auction.auction_id)
        assert winning.bidder_id == "bob"
        assert winning.escrow_released_at is not None
        assert engine.balances.audit_auction(auction.auction_id).in_escrow == 0

        assert dispatcher.events_for("bob") == ["auction_won"]
        assert dispatcher.events_for("seller") == ["auction_sold"]
        assert dispatcher.events_for("alice") == []

    def test_idempotent(self, engine, fund, make_auction, clock):
        fund(alice=500)
        auction = make_auction(minutes=10)
        engine.place_bid(auction.auction_id, "alice", 100)
        clock.advance(minutes=10)

        first, _ = engine.settle_expired(auction.auction_id)
        second, _ = engine.settle_expired(auction.auction_id)

        assert first == SettlementOutcome.SOLD
        assert second == SettlementOutcome.ALREADY_SETTLED
        assert engine.get_balance("seller") == 100

    def test_reserve_not_met(self, engine, fund, make_auction, clock, dispatcher):
        fund(alice=500)
        auction = make_auction(minutes=10, reserve_price=250)
        engine.place_bid(auction.auction_id, "alice", 200)
        clock.advance(minutes=10)

        outcome, _ = engine.settle_expired(auction.auction_id)

        assert outcome == SettlementOutcome.ENDED
        assert engine.get_balance("alice") == 500
        assert engine.get_balance("seller") == 0
        bid = engine.storage.get_bids_for_auction(auction.auction_id)[0]
        assert bid.status == BidStatus.REFUNDED
        assert "auction_ended_no_sale" in dispatcher.events_for("alice")
        assert dispatcher.sent[-1][2]["reason"] == "reserve_not_met"

    def test_reserve_met(self, engine, fund, make_auction, clock):
        fund(alice=500)
        auction = make_auction(minutes=10, reserve_price=250)
        engine.place_bid(auction.auction_id, "alice", 250)
        clock.advance(minutes=10)

        outcome, _ = engine.settle_expired(auction.auction_id)

        assert outcome == SettlementOutcome.SOLD
        assert engine.get_balance("seller") == 250

    def test_extended_auction_settles_at_new_end(self, engine, fund, make_auction, clock):
        fund(alice=500)
        auction = make_auction(minutes=10)
        clock.advance(minutes=9)
        engine.place_bid(auction.auction_id, "alice", 100)
        clock.advance(minutes=1)

        outcome, _ = engine.settle_expired(auction.auction_id)
        assert outcome == SettlementOutcome.NOT_EXPIRED

        clock.advance(minutes=1)
        outcome, _ = engine.settle_expired(auction.auction_id)
        assert outcome == SettlementOutcome.SOLD

    def test_watchers_told(self, engine, fund, make_auction, clock, dispatcher):
        fund(alice=500)
        auction = make_auction(minutes=10)
        engine.watchlist.watch(auction.auction_id, "eve")
        engine.watchlist.watch(auction.auction_id, "frank", notify_ending=False)
        engine.watchlist.watch(auction.auction_id, "alice")
        engine.place_bid(auction.auction_id, "alice", 100)
        clock.advance(minutes=10)

        engine.settle_expired(auction.auction_id)

        assert dispatcher.events_for("eve") == ["auction_ended"]
        assert dispatcher.events_for("frank") == []
        assert dispatcher.events_for("alice") == ["auction_won"]


class TestSettlementFailures:

    def test_draft(self, engine, make_auction, clock):
        auction = make_auction(minutes=10, publish=False)
        clock.advance(minutes=10)

        _, failure = engine.settle_expired(auction.auction_id)
        assert isinstance(failure, InvalidAuctionState)

    def test_missing(self, engine):
        _, failure = engine.settle_expired("missing")
        assert isinstance(failure, AuctionNotFound)

    def test_cancelled_is_already_settled(self, engine, make_auction, clock):
        auction = make_auction(minutes=10)
        engine.cancel_auction(auction.auction_id, "seller")
        clock.advance(minutes=10)

        outcome, _ = engine.settle_expired(auction.auction_id)
        assert outcome == SettlementOutcome.ALREADY_SETTLED


# =============================================================================
# Sweep Tests
# =============================================================================


class TestSweep:

    def test_settles_due_only(self, engine, fund, make_auction, clock):
        fund(alice=500)
        sold = make_auction(minutes=10)
        ended = make_auction(minutes=20)
        later = make_auction(minutes=90)
        engine.place_bid(sold.auction_id, "alice", 100)
        clock.advance(minutes=30)

        report = engine.sweep_expired()

        assert report.sold == [sold.auction_id]
        assert report.ended == [ended.auction_id]
        assert later.auction_id not in report.outcomes
        assert report.failed == {}

        again = engine.sweep_expired()
        assert again.outcomes == {}

    def test_limit(self, engine, make_auction, clock):
        for _ in range(3):
            make_auction(minutes=10)
        clock.advance(minutes=10)

        assert len(engine.sweep_expired(limit=2).outcomes) == 2
        assert len(engine.sweep_expired().outcomes) == 1

    def test_failure_isolated(self, engine, make_auction, clock, monkeypatch):
        broken = make_auction(minutes=10)
        healthy = make_auction(minutes=15)
        clock.advance(minutes=20)

        original = engine._settle

        def flaky(auction_id):
            if auction_id == broken.auction_id:
                raise RuntimeError("disk on fire")
            return original(auction_id)

        monkeypatch.setattr(engine, "_settle", flaky)
        report = engine.sweep_expired()

        assert report.failed == {broken.auction_id: "disk on fire"}
        assert report.outcomes == {healthy.auction_id: SettlementOutcome.ENDED}
        current, _ = engine.get_auction(broken.auction_id)
        assert current.status == AuctionStatus.ACTIVE

    def test_report_dict(self, engine, make_auction, clock):
        auction = make_auction(minutes=10)
        clock.advance(minutes=10)

        data = engine.sweep_expired().to_dict()
        assert data == {"outcomes": {auction.auction_id: "ended"}, "failed": {}}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
