"""
Unit tests for bid placement.

Tests cover:
1. Precondition checks and their failures
2. Proxy (auto-)bid resolution through the engine
3. Escrow accounting per bidder
4. Anti-sniping extension
5. Outbid notifications
"""

from datetime import timedelta

import pytest

from coinbid.core.auction.errors import (
    AuctionNotActive,
    AuctionNotFound,
    BidTooLow,
    FailureKind,
    InsufficientBalance,
    InvalidRequest,
    SelfBidNotAllowed,
)
from coinbid.core.auction.models import BidStatus


# =============================================================================
# Helpers
# =============================================================================


def winning_rows(engine, auction_id):
    bids, _ = engine.get_bids(auction_id)
    return [b for b in bids if b.status == BidStatus.WINNING]


def open_holds(engine, auction_id):
    return engine.storage.get_open_escrow_bids(auction_id)


# =============================================================================
# Precondition Tests
# =============================================================================


class TestPreconditions:
    """Each check fails with its own failure type and changes nothing."""

    def test_auction_not_found(self, engine, fund):
        fund(alice=500)
        result, failure = engine.place_bid("missing", "alice", 100)

        assert result is None
        assert isinstance(failure, AuctionNotFound)
        assert failure.kind == FailureKind.AUCTION_NOT_FOUND

    def test_draft_not_active(self, engine, fund, make_auction):
        fund(alice=500)
        auction = make_auction(publish=False)

        _, failure = engine.place_bid(auction.auction_id, "alice", 100)
        assert isinstance(failure, AuctionNotActive)
        assert failure.details["status"] == "draft"

    def test_expired_not_active(self, engine, fund, make_auction, clock):
        fund(alice=500)
        auction = make_auction(minutes=30)
        clock.advance(minutes=30)

        _, failure = engine.place_bid(auction.auction_id, "alice", 100)
        assert isinstance(failure, AuctionNotActive)

    def test_self_bid(self, engine, fund, make_auction):
        fund(seller=1000)
        auction = make_auction()

        _, failure = engine.place_bid(auction.auction_id, "seller", 100)
        assert isinstance(failure, SelfBidNotAllowed)

    def test_first_bid_below_start(self, engine, fund, make_auction):
        fund(alice=500)
        auction = make_auction()

        _, failure = engine.place_bid(auction.auction_id, "alice", 90)
        assert isinstance(failure, BidTooLow)
        assert failure.required == 100

    def test_bid_below_increment(self, engine, fund, make_auction):
        fund(alice=500, bob=500)
        auction = make_auction()
        engine.place_bid(auction.auction_id, "alice", 100)

        _, failure = engine.place_bid(auction.auction_id, "bob", 105)
        assert isinstance(failure, BidTooLow)
        assert failure.required == 110
        assert failure.message == "Minimum bid is 110 coins"

    def test_insufficient_balance(self, engine, fund, make_auction):
        fund(alice=50)
        auction = make_auction()

        _, failure = engine.place_bid(auction.auction_id, "alice", 100)
        assert isinstance(failure, InsufficientBalance)
        assert failure.balance == 50
        assert failure.required == 100
        assert failure.details["shortfall"] == 50

        assert engine.get_balance("alice") == 50
        bids, _ = engine.get_bids(auction.auction_id)
        assert bids == []

    def test_checks_run_in_order(self, engine, make_auction):
        """Too low is reported before insufficient balance."""
        auction = make_auction()
        _, failure = engine.place_bid(auction.auction_id, "broke", 50)
        assert isinstance(failure, BidTooLow)

    def test_invalid_input(self, engine, make_auction):
        auction = make_auction()

        _, failure = engine.place_bid(auction.auction_id, "alice", -5)
        assert isinstance(failure, InvalidRequest)
        _, failure = engine.place_bid(auction.auction_id, "", 100)
        assert isinstance(failure, InvalidRequest)
        _, failure = engine.place_bid(auction.auction_id, "alice", True)
        assert isinstance(failure, InvalidRequest)


# =============================================================================
# Proxy Bidding Tests
# =============================================================================


class TestProxyBidding:
    """Tests for auto-bid resolution inside place_bid."""

    def test_worked_example(self, engine, fund, make_auction, dispatcher):
        """100 / 120 auto 200 / 150 resolves to the auto-bidder at 160."""
        fund(alice=500, bob=1000, carol=1000)
        auction = make_auction(starting_price=100)
        auction_id = auction.auction_id

        a, _ = engine.place_bid(auction_id, "alice", 100)
        assert a.is_winning
        assert a.final_amount == 100
        assert a.new_balance == 400
        assert a.escrow_deducted == 100

        b, _ = engine.place_bid(auction_id, "bob", 120, max_auto_bid=200)
        assert b.is_winning
        assert b.final_amount == 120
        assert b.new_balance == 880
        assert engine.get_balance("alice") == 500

        c, failure = engine.place_bid(auction_id, "carol", 150)
        assert failure is None
        assert not c.is_winning
        assert c.final_amount == 160
        assert c.escrow_deducted == 0
        assert c.new_balance == 1000
        assert engine.get_balance("bob") == 840

        current, _ = engine.get_auction(auction_id)
        assert current.current_bid == 160

        leaders = winning_rows(engine, auction_id)
        assert len(leaders) == 1
        assert leaders[0].bidder_id == "bob"
        assert leaders[0].amount == 160
        assert leaders[0].is_auto
        assert leaders[0].max_auto_bid == 200

        holds = open_holds(engine, auction_id)
        assert [(h.bidder_id, h.escrow_amount) for h in holds] == [("bob", 160)]

        assert dispatcher.events_for("alice") == ["outbid"]
        assert dispatcher.events_for("bob") == []
        assert dispatcher.events_for("carol") == []

    def test_auto_bid_disallowed(self, engine, fund, make_auction):
        fund(bob=1000, carol=1000)
        auction = make_auction(allow_auto_bid=False)

        engine.place_bid(auction.auction_id, "bob", 120, max_auto_bid=200)
        outcome, _ = engine.place_bid(auction.auction_id, "carol", 150)

        assert outcome.is_winning
        assert outcome.final_amount == 150
        bids, _ = engine.get_bids(auction.auction_id)
        assert all(b.max_auto_bid is None for b in bids)

    def test_ceiling_below_amount_ignored(self, engine, fund, make_auction):
        fund(bob=1000)
        auction = make_auction()

        outcome, _ = engine.place_bid(auction.auction_id, "bob", 120, max_auto_bid=110)
        bid = engine.storage.get_bid(outcome.bid_id)
        assert bid.max_auto_bid is None

    def test_equal_ceilings_first_mover_wins(self, engine, fund, make_auction, clock):
        fund(bob=1000, carol=1000)
        auction = make_auction()

        engine.place_bid(auction.auction_id, "bob", 120, max_auto_bid=200)
        clock.advance(seconds=30)
        outcome, _ = engine.place_bid(auction.auction_id, "carol", 130, max_auto_bid=200)

        assert not outcome.is_winning
        assert outcome.final_amount == 200
        assert engine.get_balance("bob") == 800
        assert engine.get_balance("carol") == 1000

    def test_higher_incoming_ceiling_takes_lead(self, engine, fund, make_auction, dispatcher):
        fund(bob=1000, carol=1000)
        auction = make_auction()

        engine.place_bid(auction.auction_id, "bob", 120, max_auto_bid=200)
        outcome, _ = engine.place_bid(auction.auction_id, "carol", 150, max_auto_bid=300)

        assert outcome.is_winning
        assert outcome.final_amount == 210
        assert outcome.new_balance == 790
        assert engine.get_balance("bob") == 1000
        assert dispatcher.events_for("bob") == ["outbid"]

    def test_ceiling_capped_by_balance(self, engine, fund, make_auction):
        fund(bob=150, carol=1000)
        auction = make_auction()

        engine.place_bid(auction.auction_id, "bob", 120, max_auto_bid=500)
        outcome, _ = engine.place_bid(auction.auction_id, "carol", 170)

        assert outcome.is_winning
        assert outcome.final_amount == 170
        assert engine.get_balance("bob") == 150

    def test_latent_auto_bid_reenters_after_deposit(self, engine, fund, make_auction, dispatcher):
        fund(bob=150, carol=1000, dave=1000)
        auction = make_auction()
        auction_id = auction.auction_id

        engine.place_bid(auction_id, "bob", 120, max_auto_bid=200)
        carol, _ = engine.place_bid(auction_id, "carol", 160)
        assert carol.is_winning

        fund(bob=1000)
        dave, _ = engine.place_bid(auction_id, "dave", 170)

        assert not dave.is_winning
        assert dave.final_amount == 180
        leaders = winning_rows(engine, auction_id)
        assert leaders[0].bidder_id == "bob"
        assert leaders[0].is_auto
        assert engine.get_balance("bob") == 1150 - 180
        assert engine.get_balance("carol") == 1000
        assert engine.get_balance("dave") == 1000
        assert "outbid" in dispatcher.events_for("carol")


# =============================================================================
# Escrow Tests
# =============================================================================


class TestEscrow:
    """Tests for what each bidder has on hold."""

    def test_leader_raises_own_bid(self, engine, fund, make_auction, dispatcher):
        fund(alice=500)
        auction = make_auction()

        engine.place_bid(auction.auction_id, "alice", 100)
        outcome, failure = engine.place_bid(auction.auction_id, "alice", 150)

        assert failure is None
        assert outcome.is_winning
        assert outcome.escrow_deducted == 50
        assert outcome.new_balance == 350
        holds = open_holds(engine, auction.auction_id)
        assert [(h.bidder_id, h.escrow_amount) for h in holds] == [("alice", 150)]
        assert dispatcher.events_for("alice") == []

    def test_leader_may_reuse_hold(self, engine, fund, make_auction):
        """Balance check counts the bidder's own current hold."""
        fund(alice=200)
        auction = make_auction()

        engine.place_bid(auction.auction_id, "alice", 150)
        outcome, failure = engine.place_bid(auction.auction_id, "alice", 200)

        assert failure is None
        assert outcome.new_balance == 0

    def test_one_winner_after_many_bids(self, engine, fund, make_auction):
        fund(alice=5000, bob=5000, carol=5000)
        auction = make_auction()
        amount = 100
        for bidder in ["alice", "bob", "carol"] * 4:
            outcome, failure = engine.place_bid(auction.auction_id, bidder, amount)
            assert failure is None
            amount = outcome.current_bid + 10

        assert len(winning_rows(engine, auction.auction_id)) == 1
        assert len(open_holds(engine, auction.auction_id)) == 1

    def test_no_row_left_active(self, engine, fund, make_auction):
        fund(alice=500, bob=1000, carol=1000)
        auction = make_auction()
        engine.place_bid(auction.auction_id, "alice", 100)
        engine.place_bid(auction.auction_id, "bob", 120, max_auto_bid=200)
        engine.place_bid(auction.auction_id, "carol", 150)

        bids, _ = engine.get_bids(auction.auction_id)
        assert all(b.status != BidStatus.ACTIVE for b in bids)

    def test_beaten_bid_hold_taken_and_returned(self, engine, fund, make_auction):
        fund(bob=1000, carol=1000)
        auction = make_auction()
        engine.place_bid(auction.auction_id, "bob", 120, max_auto_bid=200)
        outcome, _ = engine.place_bid(auction.auction_id, "carol", 150)

        kinds = [e.kind.value for e in engine.balances.entries(actor_id="carol") if e.bid_id == outcome.bid_id]
        assert kinds == ["bid_hold", "hold_release"]
        assert engine.storage.get_bid(outcome.bid_id).status == BidStatus.OUTBID

    def test_bid_count_includes_proxy_rows(self, engine, fund, make_auction):
        fund(bob=1000, carol=1000)
        auction = make_auction()

        engine.place_bid(auction.auction_id, "bob", 120, max_auto_bid=200)
        engine.place_bid(auction.auction_id, "carol", 150)

        current, _ = engine.get_auction(auction.auction_id)
        assert current.bid_count == 3


# =============================================================================
# Extension Tests
# =============================================================================


class TestAntiSniping:

    def test_late_bid_extends(self, engine, fund, make_auction, clock):
        fund(alice=500)
        auction = make_auction(minutes=60)
        clock.advance(minutes=59)

        outcome, _ = engine.place_bid(auction.auction_id, "alice", 100)

        assert outcome.auction_extended
        assert outcome.new_end_time == clock.now + timedelta(minutes=2)
        current, _ = engine.get_auction(auction.auction_id)
        assert current.ends_at == outcome.new_end_time
        assert current.extension_count == 1
        assert current.original_end_at == auction.ends_at

    def test_early_bid_does_not_extend(self, engine, fund, make_auction):
        fund(alice=500)
        auction = make_auction(minutes=60)

        outcome, _ = engine.place_bid(auction.auction_id, "alice", 100)

        assert not outcome.auction_extended
        assert outcome.new_end_time == auction.ends_at

    def test_window_disabled_per_auction(self, engine, fund, make_auction, clock):
        fund(alice=500)
        auction = make_auction(minutes=60, anti_snipe_minutes=0)
        clock.advance(minutes=59, seconds=50)

        outcome, _ = engine.place_bid(auction.auction_id, "alice", 100)
        assert not outcome.auction_extended


# =============================================================================
# Notification Preference Tests
# =============================================================================


class TestOutbidNotifications:

    def test_muted_by_watch_preference(self, engine, fund, make_auction, dispatcher):
        fund(alice=500, bob=500)
        auction = make_auction()
        engine.watchlist.watch(auction.auction_id, "alice", notify_outbid=False)

        engine.place_bid(auction.auction_id, "alice", 100)
        engine.place_bid(auction.auction_id, "bob", 110)

        assert dispatcher.events_for("alice") == []

    def test_payload(self, engine, fund, make_auction, dispatcher):
        fund(alice=500, bob=500)
        auction = make_auction()

        engine.place_bid(auction.auction_id, "alice", 100)
        engine.place_bid(auction.auction_id, "bob", 110)

        actor, kind, payload = dispatcher.sent[-1]
        assert (actor, kind) == ("alice", "outbid")
        assert payload["auction_id"] == auction.auction_id
        assert payload["your_bid"] == 100
        assert payload["current_bid"] == 110


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
