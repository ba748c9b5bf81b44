"""
Shared fixtures for coinbid tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from coinbid.core.auction.engine import AuctionEngine
from coinbid.core.config import EngineConfig
from coinbid.core.storage import StorageManager


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class RecordingDispatcher:
    """Dispatcher that records deliveries and can be made to fail."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def notify(self, actor_id, event_kind, payload):
        if self.fail:
            raise RuntimeError("dispatcher unavailable")
        self.sent.append((actor_id, event_kind, payload))

    def events_for(self, actor_id):
        return [kind for actor, kind, _ in self.sent if actor == actor_id]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def engine_config(tmp_path):
    return EngineConfig(data_dir=tmp_path)


@pytest.fixture
def storage(tmp_path):
    manager = StorageManager(tmp_path)
    yield manager
    manager.close()


@pytest.fixture
def engine(storage, engine_config, dispatcher, clock):
    return AuctionEngine(storage, engine_config, dispatcher=dispatcher, clock=clock)


@pytest.fixture
def fund(engine):
    """Deposit coins: fund(alice=500, bob=1000)."""

    def _fund(**balances):
        for actor_id, amount in balances.items():
            ok, err = engine.deposit(actor_id, amount)
            assert ok, err

    return _fund


@pytest.fixture
def make_auction(engine, clock):
    """Create (and by default publish) an auction owned by 'seller'."""

    def _make(seller="seller", starting_price=100, minutes=60, publish=True, **fields):
        request = {
            "title": "Signed polaroid",
            "starting_price": starting_price,
            "ends_at": clock.now + timedelta(minutes=minutes),
        }
        request.update(fields)
        auction, failure = engine.create_auction(seller, request)
        assert failure is None, failure
        if publish:
            auction, failure = engine.publish_auction(auction.auction_id, seller)
            assert failure is None, failure
        return auction

    return _make
