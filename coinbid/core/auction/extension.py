"""
Anti-Sniping - Automatic end-time extension for late bids.

A bid accepted within the auction's window before ends_at pushes ends_at
to now + extension amount. The end time only moves forward, at most
max_extensions times, and never past
original_end_at + max_extensions * extension amount.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from coinbid.utils.logger import get_logger

logger = get_logger("auction.extension")


@dataclass
class ExtensionDecision:
    extended: bool
    ends_at: datetime
    extension_count: int


class ExtensionPolicy:
    """Decides whether an accepted bid extends its auction."""

    def __init__(self, amount_minutes: int, max_extensions: int):
        self.amount = timedelta(minutes=amount_minutes)
        self.max_extensions = max_extensions

    def cap_for(self, original_end_at: datetime) -> datetime:
        return original_end_at + self.amount * self.max_extensions

    def evaluate(
        self,
        now: datetime,
        ends_at: datetime,
        original_end_at: datetime,
        extension_count: int,
        window_minutes: int,
    ) -> ExtensionDecision:
        """
        Evaluate a bid accepted at `now`.

        Args:
            now: Acceptance time
            ends_at: Current scheduled end
            original_end_at: End before any extension
            extension_count: Extensions already applied
            window_minutes: Auction's anti-snipe window (0 disables)

        Returns:
            ExtensionDecision with the (possibly unchanged) end time
        """
        unchanged = ExtensionDecision(False, ends_at, extension_count)

        if window_minutes <= 0 or self.amount <= timedelta(0):
            return unchanged
        if extension_count >= self.max_extensions:
            return unchanged
        if ends_at - now > timedelta(minutes=window_minutes):
            return unchanged

        new_end = min(now + self.amount, self.cap_for(original_end_at))
        if new_end <= ends_at:
            return unchanged

        logger.debug(f"Extending auction end {ends_at.isoformat()} -> {new_end.isoformat()}")
        return ExtensionDecision(True, new_end, extension_count + 1)
