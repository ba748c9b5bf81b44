import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from coinbid.utils.logger import get_logger

logger = get_logger("storage.sqlite")

AUCTION_COLUMNS = (
    "auction_id", "seller_id", "title", "description", "deliverables", "category",
    "starting_price", "current_bid", "buy_now_price", "reserve_price", "status",
    "ends_at", "original_end_at", "extension_count", "allow_auto_bid",
    "anti_snipe_minutes", "bid_count", "winner_id", "created_at", "updated_at",
)

BID_COLUMNS = (
    "bid_id", "auction_id", "bidder_id", "amount", "max_auto_bid", "status",
    "is_auto", "is_buy_now", "escrow_amount", "escrow_released_at", "created_at",
)

# Fields an auction update may touch
MUTABLE_AUCTION_COLUMNS = frozenset(AUCTION_COLUMNS) - {"auction_id", "seller_id", "created_at"}

TRANSIENT_ERROR_MARKERS = ("database is locked", "database table is locked", "database is busy")


def is_transient_error(error: sqlite3.Error) -> bool:
    """True for lock/busy errors that a retry may resolve."""
    if not isinstance(error, sqlite3.OperationalError):
        return False
    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_ERROR_MARKERS)


class SQLiteAdapter:
    """
    SQLite backend for the auction engine.

    Provides:
    1. Actor balances and an append-only coin ledger.
    2. Auctions and their bid rows.
    3. Notification outbox and watchlist.

    Each thread gets its own connection in autocommit mode. Work that must
    be atomic runs inside transaction(), which takes the write lock up front
    (BEGIN IMMEDIATE) so concurrent writers are serialized.
    """

    def __init__(self, db_path: Path, busy_timeout: float = 5.0):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._conn_local = threading.local()

        if not db_path.parent.exists():
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            conn = sqlite3.connect(
                self.db_path,
                timeout=self.busy_timeout,
                check_same_thread=False,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row
            # WAL lets readers proceed while a bid transaction holds the write lock
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA foreign_keys=ON;")
            self._conn_local.conn = conn
        return self._conn_local.conn

    def close(self):
        """Close the connection owned by the current thread."""
        conn = getattr(self._conn_local, "conn", None)
        if conn is not None:
            conn.close()
            del self._conn_local.conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block as one serializable transaction.

        Nested use joins the outer transaction.
        """
        conn = self._get_conn()
        if conn.in_transaction:
            yield conn
            return

        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        try:
            conn.execute("COMMIT")
        except sqlite3.Error:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    def _init_schema(self):
        """Initialize database schema."""
        conn = self._get_conn()
        with self.transaction():
            # 1. Balances
            conn.execute("""
                CREATE TABLE IF NOT EXISTS actors (
                    actor_id TEXT PRIMARY KEY,
                    balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
                    created_at TEXT NOT NULL
                )
            """)

            # 2. Coin ledger (append-only audit of every balance movement)
            # NULL from_actor/to_actor means coins enter/leave escrow or the system
            conn.execute("""
                CREATE TABLE IF NOT EXISTS coin_ledger (
                    entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    from_actor TEXT,
                    to_actor TEXT,
                    amount INTEGER NOT NULL CHECK (amount > 0),
                    kind TEXT NOT NULL,
                    auction_id TEXT,
                    bid_id TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_ledger_auction ON coin_ledger(auction_id);")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_ledger_from ON coin_ledger(from_actor);")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_ledger_to ON coin_ledger(to_actor);")

            # 3. Auctions
            conn.execute("""
                CREATE TABLE IF NOT EXISTS auctions (
                    auction_id TEXT PRIMARY KEY,
                    seller_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    deliverables TEXT,
                    category TEXT NOT NULL DEFAULT 'other',
                    starting_price INTEGER NOT NULL CHECK (starting_price >= 0),
                    current_bid INTEGER,
                    buy_now_price INTEGER,
                    reserve_price INTEGER,
                    status TEXT NOT NULL DEFAULT 'draft',
                    ends_at TEXT NOT NULL,
                    original_end_at TEXT NOT NULL,
                    extension_count INTEGER NOT NULL DEFAULT 0,
                    allow_auto_bid INTEGER NOT NULL DEFAULT 1,
                    anti_snipe_minutes INTEGER NOT NULL DEFAULT 2,
                    bid_count INTEGER NOT NULL DEFAULT 0,
                    winner_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK (current_bid IS NULL OR current_bid >= starting_price),
                    CHECK ((status = 'sold') = (winner_id IS NOT NULL))
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_auction_status_end ON auctions(status, ends_at);")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_auction_seller ON auctions(seller_id);")

            # 4. Bids
            conn.execute("""
                CREATE TABLE IF NOT EXISTS bids (
                    bid_id TEXT PRIMARY KEY,
                    auction_id TEXT NOT NULL REFERENCES auctions(auction_id) ON DELETE CASCADE,
                    bidder_id TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    max_auto_bid INTEGER,
                    status TEXT NOT NULL,
                    is_auto INTEGER NOT NULL DEFAULT 0,
                    is_buy_now INTEGER NOT NULL DEFAULT 0,
                    escrow_amount INTEGER NOT NULL DEFAULT 0,
                    escrow_released_at TEXT,
                    created_at TEXT NOT NULL,
                    seq INTEGER NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_bids_auction ON bids(auction_id, seq);")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_bids_bidder ON bids(bidder_id);")
            # At most one leader per auction
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_bids_one_winner
                ON bids(auction_id) WHERE status = 'winning'
            """)

            # 5. Notification outbox
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notification_outbox (
                    notification_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    actor_id TEXT NOT NULL,
                    event_kind TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    auction_id TEXT,
                    created_at TEXT NOT NULL,
                    dispatched_at TEXT,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_outbox_pending ON notification_outbox(dispatched_at, notification_id);"
            )

            # 6. Watchlist
            conn.execute("""
                CREATE TABLE IF NOT EXISTS watchlist (
                    auction_id TEXT NOT NULL REFERENCES auctions(auction_id) ON DELETE CASCADE,
                    actor_id TEXT NOT NULL,
                    notify_outbid INTEGER NOT NULL DEFAULT 1,
                    notify_ending INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (auction_id, actor_id)
                )
            """)

    # =========================================================================
    # Actor / Balance Operations
    # =========================================================================

    def ensure_actor(self, actor_id: str, created_at: str):
        conn = self._get_conn()
        conn.execute(
            "INSERT OR IGNORE INTO actors (actor_id, balance, created_at) VALUES (?, 0, ?)",
            (actor_id, created_at),
        )

    def get_balance(self, actor_id: str) -> Optional[int]:
        conn = self._get_conn()
        row = conn.execute("SELECT balance FROM actors WHERE actor_id = ?", (actor_id,)).fetchone()
        return row["balance"] if row else None

    def adjust_balance(self, actor_id: str, delta: int) -> bool:
        """
        Add delta to an actor's balance.

        Returns False (and changes nothing) if the result would be negative
        or the actor does not exist.
        """
        conn = self._get_conn()
        cursor = conn.execute(
            "UPDATE actors SET balance = balance + ? WHERE actor_id = ? AND balance + ? >= 0",
            (delta, actor_id, delta),
        )
        return cursor.rowcount == 1

    def insert_ledger_entry(
        self,
        from_actor: Optional[str],
        to_actor: Optional[str],
        amount: int,
        kind: str,
        created_at: str,
        auction_id: Optional[str] = None,
        bid_id: Optional[str] = None,
    ) -> int:
        conn = self._get_conn()
        cursor = conn.execute(
            "INSERT INTO coin_ledger (from_actor, to_actor, amount, kind, auction_id, bid_id, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (from_actor, to_actor, amount, kind, auction_id, bid_id, created_at),
        )
        return cursor.lastrowid

    def get_ledger_entries(
        self,
        auction_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> List[sqlite3.Row]:
        clauses = []
        params: List[Any] = []
        if auction_id is not None:
            clauses.append("auction_id = ?")
            params.append(auction_id)
        if actor_id is not None:
            clauses.append("(from_actor = ? OR to_actor = ?)")
            params.extend([actor_id, actor_id])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = self._get_conn()
        cursor = conn.execute(f"SELECT * FROM coin_ledger {where} ORDER BY entry_id ASC", params)
        return cursor.fetchall()

    # =========================================================================
    # Auction Operations
    # =========================================================================

    def insert_auction(self, values: Dict[str, Any]):
        columns = [c for c in AUCTION_COLUMNS if c in values]
        placeholders = ", ".join("?" for _ in columns)
        conn = self._get_conn()
        conn.execute(
            f"INSERT INTO auctions ({', '.join(columns)}) VALUES ({placeholders})",
            [values[c] for c in columns],
        )

    def get_auction(self, auction_id: str) -> Optional[sqlite3.Row]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT * FROM auctions WHERE auction_id = ?", (auction_id,))
        return cursor.fetchone()

    def update_auction(
        self,
        auction_id: str,
        values: Dict[str, Any],
        expected_status: Optional[str] = None,
    ) -> int:
        """
        Update auction columns.

        With expected_status the write only happens while the row still has
        that status, which makes status transitions happen exactly once.

        Returns:
            Number of rows updated (0 or 1)
        """
        unknown = set(values) - MUTABLE_AUCTION_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update auction columns: {sorted(unknown)}")
        if not values:
            return 0

        assignments = ", ".join(f"{c} = ?" for c in values)
        params: List[Any] = list(values.values())
        sql = f"UPDATE auctions SET {assignments} WHERE auction_id = ?"
        params.append(auction_id)
        if expected_status is not None:
            sql += " AND status = ?"
            params.append(expected_status)

        conn = self._get_conn()
        return conn.execute(sql, params).rowcount

    def delete_auction(self, auction_id: str) -> int:
        conn = self._get_conn()
        return conn.execute("DELETE FROM auctions WHERE auction_id = ?", (auction_id,)).rowcount

    def query_auctions(
        self,
        where: Sequence[str],
        params: Sequence[Any],
        order_by: str,
        limit: int,
        offset: int,
    ) -> List[sqlite3.Row]:
        clause = f"WHERE {' AND '.join(where)}" if where else ""
        conn = self._get_conn()
        cursor = conn.execute(
            f"SELECT * FROM auctions {clause} ORDER BY {order_by} LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )
        return cursor.fetchall()

    def count_auctions(self, where: Sequence[str], params: Sequence[Any]) -> int:
        clause = f"WHERE {' AND '.join(where)}" if where else ""
        conn = self._get_conn()
        cursor = conn.execute(f"SELECT COUNT(*) AS cnt FROM auctions {clause}", list(params))
        return cursor.fetchone()["cnt"]

    def get_due_auction_ids(self, now: str, limit: Optional[int] = None) -> List[str]:
        """Active auctions whose end time has passed, oldest first."""
        sql = "SELECT auction_id FROM auctions WHERE status = 'active' AND ends_at <= ? ORDER BY ends_at ASC"
        params: List[Any] = [now]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        conn = self._get_conn()
        return [row["auction_id"] for row in conn.execute(sql, params)]

    # =========================================================================
    # Bid Operations
    # =========================================================================

    def insert_bid(self, values: Dict[str, Any]):
        conn = self._get_conn()
        seq = conn.execute(
            "SELECT COALESCE(MAX(seq), 0) + 1 AS next_seq FROM bids WHERE auction_id = ?",
            (values["auction_id"],),
        ).fetchone()["next_seq"]
        columns = [c for c in BID_COLUMNS if c in values]
        placeholders = ", ".join("?" for _ in columns)
        conn.execute(
            f"INSERT INTO bids ({', '.join(columns)}, seq) VALUES ({placeholders}, ?)",
            [*[values[c] for c in columns], seq],
        )

    def get_bid(self, bid_id: str) -> Optional[sqlite3.Row]:
        conn = self._get_conn()
        return conn.execute("SELECT * FROM bids WHERE bid_id = ?", (bid_id,)).fetchone()

    def get_winning_bid(self, auction_id: str) -> Optional[sqlite3.Row]:
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT * FROM bids WHERE auction_id = ? AND status = 'winning'",
            (auction_id,),
        )
        return cursor.fetchone()

    def get_bids_for_auction(self, auction_id: str, limit: Optional[int] = None) -> List[sqlite3.Row]:
        """Bid rows for an auction, newest first."""
        sql = "SELECT * FROM bids WHERE auction_id = ? ORDER BY seq DESC"
        params: List[Any] = [auction_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        conn = self._get_conn()
        return conn.execute(sql, params).fetchall()

    def get_bids_for_bidder(self, bidder_id: str, limit: Optional[int] = None) -> List[sqlite3.Row]:
        sql = "SELECT * FROM bids WHERE bidder_id = ? ORDER BY created_at DESC, seq DESC"
        params: List[Any] = [bidder_id]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        conn = self._get_conn()
        return conn.execute(sql, params).fetchall()

    def get_open_escrow_bids(self, auction_id: str) -> List[sqlite3.Row]:
        """Bid rows still holding coins."""
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT * FROM bids WHERE auction_id = ? AND escrow_amount > 0 "
            "AND escrow_released_at IS NULL ORDER BY seq ASC",
            (auction_id,),
        )
        return cursor.fetchall()

    def update_bid_status(self, bid_id: str, status: str, escrow_released_at: Optional[str] = None) -> int:
        conn = self._get_conn()
        if escrow_released_at is None:
            cursor = conn.execute("UPDATE bids SET status = ? WHERE bid_id = ?", (status, bid_id))
        else:
            cursor = conn.execute(
                "UPDATE bids SET status = ?, escrow_released_at = ? WHERE bid_id = ?",
                (status, escrow_released_at, bid_id),
            )
        return cursor.rowcount

    # =========================================================================
    # Outbox Operations
    # =========================================================================

    def insert_notification(
        self,
        actor_id: str,
        event_kind: str,
        payload: str,
        created_at: str,
        auction_id: Optional[str] = None,
    ) -> int:
        conn = self._get_conn()
        cursor = conn.execute(
            "INSERT INTO notification_outbox (actor_id, event_kind, payload, auction_id, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (actor_id, event_kind, payload, auction_id, created_at),
        )
        return cursor.lastrowid

    def get_pending_notifications(self, max_attempts: int, limit: int) -> List[sqlite3.Row]:
        conn = self._get_conn()
        cursor = conn.execute(
            "SELECT * FROM notification_outbox WHERE dispatched_at IS NULL AND attempts < ? "
            "ORDER BY notification_id ASC LIMIT ?",
            (max_attempts, limit),
        )
        return cursor.fetchall()

    def get_notifications(self, actor_id: Optional[str] = None) -> List[sqlite3.Row]:
        conn = self._get_conn()
        if actor_id is None:
            cursor = conn.execute("SELECT * FROM notification_outbox ORDER BY notification_id ASC")
        else:
            cursor = conn.execute(
                "SELECT * FROM notification_outbox WHERE actor_id = ? ORDER BY notification_id ASC",
                (actor_id,),
            )
        return cursor.fetchall()

    def mark_notification_dispatched(self, notification_id: int, dispatched_at: str) -> int:
        """Claim a notification as sent. Returns 0 if another worker got it first."""
        conn = self._get_conn()
        cursor = conn.execute(
            "UPDATE notification_outbox SET dispatched_at = ?, attempts = attempts + 1 "
            "WHERE notification_id = ? AND dispatched_at IS NULL",
            (dispatched_at, notification_id),
        )
        return cursor.rowcount

    def release_notification_claim(self, notification_id: int, error: str):
        """Put a claimed notification back as pending after a failed delivery."""
        conn = self._get_conn()
        conn.execute(
            "UPDATE notification_outbox SET dispatched_at = NULL, last_error = ? WHERE notification_id = ?",
            (error, notification_id),
        )

    # =========================================================================
    # Watchlist Operations
    # =========================================================================

    def upsert_watch(self, auction_id: str, actor_id: str, notify_outbid: bool, notify_ending: bool, created_at: str):
        conn = self._get_conn()
        conn.execute(
            "INSERT INTO watchlist (auction_id, actor_id, notify_outbid, notify_ending, created_at) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(auction_id, actor_id) DO UPDATE SET "
            "notify_outbid = excluded.notify_outbid, notify_ending = excluded.notify_ending",
            (auction_id, actor_id, int(notify_outbid), int(notify_ending), created_at),
        )

    def delete_watch(self, auction_id: str, actor_id: str) -> int:
        conn = self._get_conn()
        return conn.execute(
            "DELETE FROM watchlist WHERE auction_id = ? AND actor_id = ?",
            (auction_id, actor_id),
        ).rowcount

    def get_watch(self, auction_id: str, actor_id: str) -> Optional[sqlite3.Row]:
        conn = self._get_conn()
        return conn.execute(
            "SELECT * FROM watchlist WHERE auction_id = ? AND actor_id = ?",
            (auction_id, actor_id),
        ).fetchone()

    def get_watches_for_actor(self, actor_id: str) -> List[sqlite3.Row]:
        conn = self._get_conn()
        return conn.execute(
            "SELECT * FROM watchlist WHERE actor_id = ? ORDER BY created_at DESC",
            (actor_id,),
        ).fetchall()

    def get_watchers(self, auction_id: str) -> List[sqlite3.Row]:
        conn = self._get_conn()
        return conn.execute(
            "SELECT * FROM watchlist WHERE auction_id = ? ORDER BY created_at ASC",
            (auction_id,),
        ).fetchall()
