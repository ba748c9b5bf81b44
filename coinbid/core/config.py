"""
Engine configuration parameters for coinbid.

Defines bidding rules, anti-sniping policy, retry limits, paths and logging.
Values can be overridden through COINBID_* environment variables or a
.env file.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "COINBID_"


@dataclass
class EngineConfig:
    """Engine-wide configuration parameters"""

    # Bidding rules
    min_bid_increment: int = 10  # Coins needed to outbid the current bid
    min_starting_price: int = 10  # Lowest allowed starting price

    # Anti-sniping
    extension_window_minutes: int = 2  # Default per-auction window
    extension_amount_minutes: int = 2  # End time is pushed to now + this
    max_extensions: int = 10  # Per auction
    max_anti_snipe_minutes: int = 10  # Upper bound for a seller-chosen window

    # Concurrency
    max_retries: int = 3  # Retries on a locked/busy database
    retry_backoff_seconds: float = 0.05

    # Listing filters
    ending_soon_hours: int = 24
    new_listing_hours: int = 24
    max_page_size: int = 100

    # Paths
    data_dir: Path = Path("data")
    db_name: str = "coinbid.db"
    log_dir: Path = Path("logs")

    # Logging
    log_level: str = "WARNING"
    log_to_file: bool = False  # Also write <log_dir>/coinbid.log

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        self.log_dir = Path(self.log_dir)

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name


# Global config instance (can be overridden)
config = EngineConfig()


def _coerce(raw: str, current):
    if isinstance(current, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if isinstance(current, Path):
        return Path(raw).expanduser()
    return raw


def load_config(env_file: Optional[str] = None, **overrides) -> EngineConfig:
    """
    Load configuration from the environment.

    A .env file (the given path, or one found from the working directory)
    is loaded first without overriding variables already set. Every field
    of EngineConfig can be set as COINBID_<FIELD_NAME>, e.g.
    COINBID_MIN_BID_INCREMENT=25.

    Args:
        env_file: Optional path to a .env file
        **overrides: Explicit values that win over the environment

    Returns:
        EngineConfig instance

    Raises:
        ValueError: If an environment value cannot be parsed
    """
    if env_file:
        load_dotenv(env_file, override=False)
    else:
        load_dotenv(override=False)

    defaults = EngineConfig()
    values = {}
    for f in fields(EngineConfig):
        raw = os.environ.get(ENV_PREFIX + f.name.upper())
        if raw is None:
            continue
        try:
            values[f.name] = _coerce(raw, getattr(defaults, f.name))
        except ValueError as e:
            raise ValueError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r}") from e

    values.update(overrides)
    return EngineConfig(**values)
