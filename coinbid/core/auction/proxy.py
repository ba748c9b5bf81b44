"""
Proxy Bidding - Automatic bid escalation up to a ceiling.

A bidder may attach a ceiling (max_auto_bid) to a bid. When a competing bid
arrives the engine raises the bidder on their behalf, never past the
ceiling and never past what they can afford.

Duel rule between two contenders:
- The higher ceiling wins.
- It wins at max(own amount, min(own ceiling, loser ceiling + increment)).
- Equal ceilings: the earlier-placed contender wins, at the ceiling.

Resolution runs the incoming bid against the current leader, then lets
any other live auto-bid that could still beat the leader challenge it,
strongest first. Each contender duels at most once, so the loop is bounded
by the number of contenders.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional, Sequence

from coinbid.utils.logger import get_logger

logger = get_logger("auction.proxy")


@dataclass(frozen=True)
class Contender:
    """
    One bidder's position in a resolution.

    Attributes:
        bidder_id: Who is bidding
        amount: Amount the bidder currently stands at
        ceiling: Highest amount they may be raised to (already capped by
            what the bidder can afford)
        placed_at: When their ceiling was set (tie-break)
        bid_id: Existing bid row, None for the incoming bid
    """
    bidder_id: str
    amount: int
    ceiling: int
    placed_at: datetime
    bid_id: Optional[str] = None

    def beats(self, other: "Contender") -> bool:
        """True if this contender outranks other (ties go to the earlier one)."""
        if self.ceiling != other.ceiling:
            return self.ceiling > other.ceiling
        return self.placed_at < other.placed_at


@dataclass
class DuelResult:
    winner: Contender
    loser: Contender


@dataclass
class Resolution:
    """
    Outcome of a proxy resolution.

    leader: Final leading contender, amount set to the new current bid
    duels: Every duel fought, in order
    """
    leader: Contender
    duels: List[DuelResult] = field(default_factory=list)

    @property
    def losers(self) -> List[Contender]:
        return [d.loser for d in self.duels]


def duel(incumbent: Contender, challenger: Contender, increment: int) -> DuelResult:
    """Resolve two contenders."""
    if challenger.beats(incumbent):
        winner, loser = challenger, incumbent
    else:
        winner, loser = incumbent, challenger

    if winner.ceiling == loser.ceiling:
        amount = winner.ceiling
    else:
        amount = min(winner.ceiling, loser.ceiling + increment)
    amount = max(amount, winner.amount)

    return DuelResult(winner=replace(winner, amount=amount), loser=loser)


def resolve(
    leader: Optional[Contender],
    incoming: Contender,
    latent: Sequence[Contender],
    increment: int,
) -> Resolution:
    """
    Resolve an incoming bid against the leader and latent auto-bids.

    Args:
        leader: Current leader, None if there is none (or it is the
            incoming bidder's own superseded bid)
        incoming: The bid being placed
        latent: Other bidders' auto-bids that are not leading
        increment: Minimum bid increment

    Returns:
        Resolution with the final leader
    """
    resolution = Resolution(leader=incoming)
    if leader is not None:
        result = duel(leader, incoming, increment)
        resolution.duels.append(result)
        resolution.leader = result.winner

    excluded = {incoming.bidder_id}
    if leader is not None:
        excluded.add(leader.bidder_id)
    pending = sorted(
        (c for c in latent if c.bidder_id not in excluded),
        key=lambda c: (-c.ceiling, c.placed_at),
    )

    # Each pending contender gets one chance; stop once none can beat the leader
    for _ in range(len(pending)):
        current = resolution.leader
        challengers = [c for c in pending if c.ceiling > current.amount]
        if not challengers:
            break
        challenger = challengers[0]
        pending.remove(challenger)
        result = duel(current, challenger, increment)
        resolution.duels.append(result)
        resolution.leader = result.winner
        logger.debug(
            f"Proxy round: {result.winner.bidder_id} over {result.loser.bidder_id} at {result.winner.amount}"
        )

    return resolution
