"""
Input Validation - Sanitization for values crossing the engine boundary.

Provides validation for identifiers and coin amounts to prevent:
- Integer overflows in SQLite columns
- Non-integer or boolean amounts
- Oversized or malformed identifiers
"""

import re
from typing import Any, Optional, Tuple

# =============================================================================
# Constants
# =============================================================================

MAX_ID_LENGTH = 128
MAX_STRING_LENGTH = 1024

# SQLite INTEGER is a signed 64-bit value
MIN_AMOUNT = 0
MAX_AMOUNT = 2**63 - 1

ID_PATTERN = r"^[A-Za-z0-9_.:@-]+$"


# =============================================================================
# Validation Functions
# =============================================================================


def validate_integer(
    value: Any,
    name: str,
    min_val: int = MIN_AMOUNT,
    max_val: int = MAX_AMOUNT,
) -> Tuple[bool, str]:
    """
    Validate integer within bounds.

    Args:
        value: Value to validate
        name: Field name for errors
        min_val: Minimum allowed value
        max_val: Maximum allowed value

    Returns:
        (is_valid, error_message)
    """
    if isinstance(value, bool) or not isinstance(value, int):
        return False, f"{name} must be int, got {type(value).__name__}"

    if value < min_val:
        return False, f"{name} must be >= {min_val}, got {value}"

    if value > max_val:
        return False, f"{name} must be <= {max_val}, got {value}"

    return True, ""


def validate_amount(amount: Any, name: str = "amount") -> Tuple[bool, str]:
    """Validate a coin amount."""
    return validate_integer(amount, name, MIN_AMOUNT, MAX_AMOUNT)


def validate_string(
    value: Any,
    name: str,
    max_length: int = MAX_STRING_LENGTH,
    pattern: Optional[str] = None,
) -> Tuple[bool, str]:
    """
    Validate string input.

    Args:
        value: Value to validate
        name: Field name for errors
        max_length: Maximum string length
        pattern: Optional regex pattern

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    if not value:
        return False, f"{name} must not be empty"

    if len(value) > max_length:
        return False, f"{name} exceeds max length {max_length}"

    if pattern and not re.match(pattern, value):
        return False, f"{name} does not match required pattern"

    return True, ""


def validate_actor_id(actor_id: Any, name: str = "actor_id") -> Tuple[bool, str]:
    """Validate an actor (bidder, seller, buyer) identifier."""
    return validate_string(actor_id, name, MAX_ID_LENGTH, ID_PATTERN)


def validate_auction_id(auction_id: Any) -> Tuple[bool, str]:
    """Validate an auction identifier."""
    return validate_string(auction_id, "auction_id", MAX_ID_LENGTH, ID_PATTERN)


# =============================================================================
# Composite Validators
# =============================================================================


def validate_bid_data(data: Any) -> Tuple[bool, str]:
    """Validate a bid request body (auction_id, bidder_id, amount, max_auto_bid)."""
    if not isinstance(data, dict):
        return False, "Bid data must be dict"

    required = ["auction_id", "bidder_id", "amount"]
    for field in required:
        if field not in data:
            return False, f"Missing required field: {field}"

    valid, err = validate_auction_id(data["auction_id"])
    if not valid:
        return False, err

    valid, err = validate_actor_id(data["bidder_id"], "bidder_id")
    if not valid:
        return False, err

    valid, err = validate_amount(data["amount"])
    if not valid:
        return False, err

    if data.get("max_auto_bid") is not None:
        valid, err = validate_amount(data["max_auto_bid"], "max_auto_bid")
        if not valid:
            return False, err

    return True, ""


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "validate_integer",
    "validate_amount",
    "validate_string",
    "validate_actor_id",
    "validate_auction_id",
    "validate_bid_data",
    "MAX_ID_LENGTH",
    "MAX_AMOUNT",
]
