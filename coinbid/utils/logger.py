"""
Logging setup for coinbid.

Every engine module logs through a child of the ``coinbid`` logger:

    auction.engine      bid, buy-now, settlement and lifecycle decisions
    auction.proxy       auto-bid resolution
    auction.extension   anti-sniping extensions
    ledger              coin movements and escrow audits
    notify.outbox       notification enqueue and dispatch
    storage.*           sqlite adapter and storage manager
    watchlist           watch / unwatch
    cli                 operator commands

Console output is colored; a plain-text copy goes to <log_dir>/coinbid.log
when file logging is on.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

import colorlog

ROOT_LOGGER = "coinbid"
LOG_FILE = "coinbid.log"

SUBSYSTEMS = frozenset({
    "auction",
    "ledger",
    "notify",
    "storage",
    "watchlist",
    "cli",
})

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)-8s %(message)s"
CONSOLE_FORMAT = "%(log_color)s%(asctime)s [%(name)s] %(levelname)-8s%(reset)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_level(level: Union[int, str]) -> int:
    """Accept a logging level as an int or a name such as 'warning'."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


class CoinbidLogger:
    """Owns the handlers on the coinbid root logger"""

    _initialized = False
    _log_file: Optional[Path] = None

    @classmethod
    def setup(
        cls,
        level: Union[int, str] = logging.INFO,
        log_dir: Optional[Union[str, Path]] = None,
        log_to_file: bool = False,
        force: bool = False,
    ):
        """
        Attach handlers to the coinbid root logger.

        Args:
            level: Threshold for every subsystem, int or level name
            log_dir: Where coinbid.log is written (default ./logs)
            log_to_file: Also write plain-text records to coinbid.log
            force: Replace handlers from an earlier setup
        """
        if cls._initialized and not force:
            return

        level = resolve_level(level)
        root_logger = logging.getLogger(ROOT_LOGGER)
        root_logger.setLevel(level)
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

        # Diagnostics go to stderr; stdout is reserved for CLI output
        console_handler = colorlog.StreamHandler(sys.stderr)
        console_handler.setFormatter(colorlog.ColoredFormatter(
            CONSOLE_FORMAT,
            datefmt=DATE_FORMAT,
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        ))
        root_logger.addHandler(console_handler)

        cls._log_file = None
        if log_to_file:
            directory = Path(log_dir) if log_dir else Path("logs")
            directory.mkdir(parents=True, exist_ok=True)
            cls._log_file = directory / LOG_FILE
            file_handler = logging.FileHandler(cls._log_file)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
            root_logger.addHandler(file_handler)

        cls._initialized = True

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """
        Logger for a coinbid subsystem.

        Args:
            name: Dotted name under a known subsystem, e.g. 'auction.proxy'

        Raises:
            ValueError: If the first segment is not a known subsystem
        """
        subsystem = name.split(".", 1)[0]
        if subsystem not in SUBSYSTEMS:
            raise ValueError(f"Unknown logging subsystem: {subsystem!r}")

        if not cls._initialized:
            cls.setup()

        return logging.getLogger(f"{ROOT_LOGGER}.{name}")

    @classmethod
    def log_file(cls) -> Optional[Path]:
        return cls._log_file


def get_logger(name: str) -> logging.Logger:
    return CoinbidLogger.get_logger(name)


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_dir: Optional[Union[str, Path]] = None,
    log_to_file: bool = False,
):
    """(Re)configure coinbid logging"""
    CoinbidLogger.setup(level=level, log_dir=log_dir, log_to_file=log_to_file, force=True)


def setup_from_config(config, debug: bool = False):
    """Configure logging from an EngineConfig; debug forces DEBUG level."""
    setup_logging(
        level=logging.DEBUG if debug else config.log_level,
        log_dir=config.log_dir,
        log_to_file=config.log_to_file,
    )
