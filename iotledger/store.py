"""
Storage module for iotledger.

SQLite-backed durable state: devices, authority, counters, ingestion and
analytics records, proof attestations, and the hash-chained event log.

All mutations go through ``LedgerStore.transaction()``, which serializes
writers, commits only when the whole unit of work succeeds and rolls back
every staged write otherwise. Reads go through ``LedgerStore.read()`` and
never observe a write that has not committed.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List

logger = logging.getLogger(__name__)

COUNTER_NAMES = ("total_devices", "total_records", "total_analytics", "total_proofs")

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS authority (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        owner TEXT NOT NULL,
        authorized_submitter TEXT
    );""",
    """
    CREATE TABLE IF NOT EXISTS registry_state (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        registry_fee INTEGER NOT NULL DEFAULT 0,
        paused INTEGER NOT NULL DEFAULT 0
    );""",
    """
    CREATE TABLE IF NOT EXISTS counters (
        name TEXT PRIMARY KEY,
        value INTEGER NOT NULL DEFAULT 0 CHECK (value >= 0)
    );""",
    """
    CREATE TABLE IF NOT EXISTS devices (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        id_hash TEXT NOT NULL UNIQUE,
        identifier TEXT NOT NULL,
        owner TEXT NOT NULL,
        did_document TEXT NOT NULL,
        public_key BLOB NOT NULL,
        device_type TEXT NOT NULL,
        manufacturer TEXT NOT NULL,
        model TEXT NOT NULL,
        firmware_version TEXT NOT NULL,
        deployment_zone TEXT NOT NULL,
        expected_data_rate INTEGER NOT NULL,
        registered_at INTEGER NOT NULL
    );""",
    """
    CREATE INDEX IF NOT EXISTS idx_devices_owner
    ON devices(owner);""",
    """
    CREATE TABLE IF NOT EXISTS processing_requirements (
        id_hash TEXT PRIMARY KEY REFERENCES devices(id_hash),
        requires_verified_compute INTEGER NOT NULL,
        encryption_level INTEGER NOT NULL,
        analytics_tier INTEGER NOT NULL,
        settlement_priority INTEGER NOT NULL
    );""",
    """
    CREATE TABLE IF NOT EXISTS ingestion_records (
        record_id INTEGER PRIMARY KEY,
        device_id_hash TEXT NOT NULL REFERENCES devices(id_hash),
        data_hash TEXT NOT NULL,
        submitted_at INTEGER NOT NULL
    );""",
    """
    CREATE INDEX IF NOT EXISTS idx_ingestion_device
    ON ingestion_records(device_id_hash);""",
    """
    CREATE TABLE IF NOT EXISTS analytics_records (
        record_id INTEGER PRIMARY KEY REFERENCES ingestion_records(record_id),
        analytics_hash TEXT NOT NULL,
        source_data_hash TEXT NOT NULL,
        analytics_type INTEGER NOT NULL,
        computed_at INTEGER NOT NULL,
        proof_required INTEGER NOT NULL
    );""",
    """
    CREATE TABLE IF NOT EXISTS proofs (
        proof_id INTEGER PRIMARY KEY,
        record_id INTEGER NOT NULL REFERENCES analytics_records(record_id),
        analytics_hash TEXT NOT NULL,
        proof_hash TEXT NOT NULL,
        public_inputs_hash TEXT NOT NULL,
        is_valid INTEGER NOT NULL,
        stored_at INTEGER NOT NULL
    );""",
    """
    CREATE INDEX IF NOT EXISTS idx_proofs_record
    ON proofs(record_id);""",
    """
    CREATE TABLE IF NOT EXISTS analytics_configs (
        analytics_type INTEGER PRIMARY KEY,
        enabled INTEGER NOT NULL,
        processing_fee INTEGER NOT NULL,
        requires_proof INTEGER NOT NULL
    );""",
    """
    CREATE TABLE IF NOT EXISTS events (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        event_type TEXT NOT NULL,
        body_json TEXT NOT NULL,
        emitted_at INTEGER NOT NULL,
        payload_hash TEXT NOT NULL,
        prev_entry_hash TEXT,
        entry_hash TEXT NOT NULL
    );""",
    """
    CREATE INDEX IF NOT EXISTS idx_events_type
    ON events(event_type);""",
)


class LedgerStore:
    """
    One SQLite database holding the whole ledger.

    A single connection is shared behind a re-entrant lock, so mutating
    operations are totally ordered and each runs to commit or full
    rollback before the next begins.
    """

    def __init__(self, path: str = ":memory:"):
        self.path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None: transactions are opened explicitly below
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys=ON;")
        if path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=FULL;")
        self._lock = threading.RLock()
        self._depth = 0
        self._after_commit: List[Callable[[], None]] = []
        self.init_schema()

    def init_schema(self) -> None:
        """
        Initialize database schema with proper indexes.
        Safe to call multiple times (uses IF NOT EXISTS).
        """
        with self.transaction() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
            for name in COUNTER_NAMES:
                conn.execute("INSERT OR IGNORE INTO counters(name, value) VALUES(?, 0)", (name,))

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Unit of work: commit on success, roll back on any exception.

        Nested calls join the outermost transaction, so a failure anywhere
        inside discards every write staged since it began.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self._conn
                finally:
                    self._depth -= 1
                return

            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self._conn
            except BaseException:
                self._depth = 0
                self._after_commit.clear()
                self._conn.execute("ROLLBACK")
                raise
            self._depth = 0
            try:
                self._conn.execute("COMMIT")
            except sqlite3.Error:
                self._after_commit.clear()
                self._conn.execute("ROLLBACK")
                raise
            callbacks, self._after_commit = self._after_commit, []

        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("post-commit callback failed")

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Read committed state."""
        with self._lock:
            yield self._conn

    def call_after_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the current transaction commits; dropped on rollback."""
        if not self._depth:
            raise RuntimeError("call_after_commit requires an open transaction")
        self._after_commit.append(callback)

    # ============================================================
    # Counters
    # ============================================================

    def increment_counter(self, conn: sqlite3.Connection, name: str) -> int:
        """Increment a counter inside the caller's transaction; returns the new value."""
        if name not in COUNTER_NAMES:
            raise KeyError(name)
        conn.execute("UPDATE counters SET value = value + 1 WHERE name=?", (name,))
        return self.counter(conn, name)

    def counter(self, conn: sqlite3.Connection, name: str) -> int:
        row = conn.execute("SELECT value FROM counters WHERE name=?", (name,)).fetchone()
        return row["value"] if row else 0

    def counters(self) -> Dict[str, int]:
        with self.read() as conn:
            rows = conn.execute("SELECT name, value FROM counters").fetchall()
        return {row["name"]: row["value"] for row in rows}

    # ============================================================
    # Metrics and Health
    # ============================================================

    def get_db_stats(self) -> Dict[str, int]:
        """Get row counts for monitoring."""
        stats = {}
        with self.read() as conn:
            for table in ("devices", "ingestion_records", "analytics_records", "proofs", "events"):
                cur = conn.execute(f"SELECT COUNT(*) AS cnt FROM {table}")
                stats[f"{table}_count"] = cur.fetchone()["cnt"]
        return stats

    def is_bootstrapped(self) -> bool:
        with self.read() as conn:
            return conn.execute("SELECT 1 FROM authority WHERE id=1").fetchone() is not None

    def close(self) -> None:
        with self._lock:
            self._conn.close()
