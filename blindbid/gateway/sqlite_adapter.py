import json
import sqlite3
import threading
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from blindbid.utils.logger import get_logger

logger = get_logger("ledger.sqlite")


class ReadConflictError(Exception):
    """A key read during simulation changed before the commit."""

    def __init__(self, key: str, expected: int, found: int):
        super().__init__(f"Key {key!r} is at version {found}, simulation read {expected}")
        self.key = key
        self.expected = expected
        self.found = found


class LedgerStateAdapter:
    """
    SQLite backend for the local ledger.

    Provides:
    1. World state (public key/value pairs, readable by every member).
    2. Private partitions (collection, key) -> value, plus the value hash
       that every member may read.
    3. Validation parameters: per-key endorsement policy (set of orgs).
    4. Transaction log of committed proposals (function, public args,
       creator, endorsers). Transient data is never logged.

    Every world state key carries a version that is bumped on each write.
    A commit names the versions its simulation read and is rejected with
    ReadConflictError if any of them moved in the meantime.
    """

    def __init__(self, db_path: Optional[Path] = None, busy_timeout: float = 30.0):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._conn_local = threading.local()

        if db_path is not None and not db_path.parent.exists():
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            target = str(self.db_path) if self.db_path is not None else ":memory:"
            self._conn_local.conn = sqlite3.connect(
                target,
                timeout=self.busy_timeout,
                check_same_thread=False,
            )
            self._conn_local.conn.row_factory = sqlite3.Row
            if self.db_path is not None:
                # WAL lets concurrent client processes read while one commits
                self._conn_local.conn.execute("PRAGMA journal_mode=WAL;")
                self._conn_local.conn.execute("PRAGMA synchronous=NORMAL;")
        return self._conn_local.conn

    def _init_schema(self):
        """Initialize database schema."""
        conn = self._get_conn()
        with conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS world_state (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS private_data (
                    collection TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value BLOB NOT NULL,
                    value_hash BLOB NOT NULL,
                    PRIMARY KEY (collection, key)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS validation_params (
                    key TEXT PRIMARY KEY,
                    orgs TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS transactions (
                    tx_id TEXT PRIMARY KEY,
                    function TEXT NOT NULL,
                    args TEXT NOT NULL,
                    creator TEXT NOT NULL,
                    endorsers TEXT NOT NULL,
                    committed_at INTEGER NOT NULL
                )
            """)

    def close(self):
        """Close the connection of the current thread."""
        conn = getattr(self._conn_local, "conn", None)
        if conn is not None:
            conn.close()
            del self._conn_local.conn

    # =========================================================================
    # Reads
    # =========================================================================

    def get_state(self, key: str) -> Optional[bytes]:
        row = self._get_conn().execute(
            "SELECT value FROM world_state WHERE key = ?", (key,)
        ).fetchone()
        return bytes(row["value"]) if row else None

    def get_versioned_state(self, key: str) -> Tuple[Optional[bytes], int]:
        """Value and version of `key`; an absent key has version 0."""
        row = self._get_conn().execute(
            "SELECT value, version FROM world_state WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None, 0
        return bytes(row["value"]), row["version"]

    def get_private(self, collection: str, key: str) -> Optional[bytes]:
        row = self._get_conn().execute(
            "SELECT value FROM private_data WHERE collection = ? AND key = ?",
            (collection, key),
        ).fetchone()
        return bytes(row["value"]) if row else None

    def get_private_hash(self, collection: str, key: str) -> Optional[bytes]:
        row = self._get_conn().execute(
            "SELECT value_hash FROM private_data WHERE collection = ? AND key = ?",
            (collection, key),
        ).fetchone()
        return bytes(row["value_hash"]) if row else None

    def get_validation_param(self, key: str) -> Optional[List[str]]:
        row = self._get_conn().execute(
            "SELECT orgs FROM validation_params WHERE key = ?", (key,)
        ).fetchone()
        return json.loads(row["orgs"]) if row else None

    def has_transaction(self, tx_id: str) -> bool:
        row = self._get_conn().execute(
            "SELECT 1 FROM transactions WHERE tx_id = ?", (tx_id,)
        ).fetchone()
        return row is not None

    def get_transactions(self) -> List[Dict]:
        """All committed transactions, oldest first."""
        rows = self._get_conn().execute(
            "SELECT tx_id, function, args, creator, endorsers, committed_at "
            "FROM transactions ORDER BY rowid"
        ).fetchall()
        return [
            {
                "tx_id": r["tx_id"],
                "function": r["function"],
                "args": json.loads(r["args"]),
                "creator": r["creator"],
                "endorsers": json.loads(r["endorsers"]),
                "committed_at": r["committed_at"],
            }
            for r in rows
        ]

    def get_public_values(self) -> List[bytes]:
        rows = self._get_conn().execute("SELECT value FROM world_state").fetchall()
        return [bytes(r["value"]) for r in rows]

    # =========================================================================
    # Commit
    # =========================================================================

    def commit_write_set(
        self,
        tx_id: str,
        function: str,
        args: Iterable[str],
        creator: str,
        endorsers: Iterable[str],
        public_writes: Dict[str, bytes],
        private_writes: Dict[Tuple[str, str], Tuple[bytes, bytes]],
        param_writes: Dict[str, List[str]],
        read_versions: Optional[Dict[str, int]] = None,
        busy_timeout: Optional[float] = None,
    ):
        """
        Atomically apply a validated write set and log the transaction.

        Raises:
            ReadConflictError: If a key in `read_versions` moved since it
                was read
            sqlite3.IntegrityError: If tx_id was already committed
            sqlite3.OperationalError: If the database stays locked past
                the busy timeout
        """
        conn = self._get_conn()
        if busy_timeout is not None:
            conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout * 1000)};")

        with conn:
            # Take the write lock before checking versions so no other
            # writer can commit between the check and the apply
            conn.execute("BEGIN IMMEDIATE")
            for key, expected in (read_versions or {}).items():
                row = conn.execute(
                    "SELECT version FROM world_state WHERE key = ?", (key,)
                ).fetchone()
                found = row["version"] if row else 0
                if found != expected:
                    raise ReadConflictError(key, expected, found)

            conn.execute(
                "INSERT INTO transactions "
                "(tx_id, function, args, creator, endorsers, committed_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    tx_id,
                    function,
                    json.dumps(list(args)),
                    creator,
                    json.dumps(sorted(endorsers)),
                    int(time.time()),
                ),
            )
            for key, value in public_writes.items():
                conn.execute(
                    "INSERT INTO world_state (key, value, version) VALUES (?, ?, 1) "
                    "ON CONFLICT(key) DO UPDATE SET "
                    "value = excluded.value, version = world_state.version + 1",
                    (key, value),
                )
            for (collection, key), (value, value_hash) in private_writes.items():
                conn.execute(
                    "INSERT OR REPLACE INTO private_data "
                    "(collection, key, value, value_hash) VALUES (?, ?, ?, ?)",
                    (collection, key, value, value_hash),
                )
            for key, orgs in param_writes.items():
                conn.execute(
                    "INSERT OR REPLACE INTO validation_params (key, orgs) VALUES (?, ?)",
                    (key, json.dumps(orgs)),
                )

        logger.debug(
            f"Committed {function} tx {tx_id[:12]}... "
            f"({len(public_writes)} public, {len(private_writes)} private writes)"
        )
