"""
Database module for docanchor.

Provides SQLite-based storage for the proof index, anchor claims,
organization bindings and the local consensus log. Uses thread-local
connections and proper indexing for performance.

Duplicate anchoring is prevented by the UNIQUE constraints declared
here, not by any in-process lock.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Union

TABLES = ("document_proofs", "anchor_claims", "api_keys", "organizations", "consensus_messages")


class Database:
    """
    Thread-local SQLite connections onto a single database file.

    One instance is created at process start and shared by the proof
    index, the organization store and (optionally) the local consensus log.
    """

    def __init__(self, path: Union[str, Path], busy_timeout: float = 30.0):
        self.path = Path(path)
        self._busy_timeout = busy_timeout
        self._local = threading.local()

    def connection(self) -> sqlite3.Connection:
        """
        Get a thread-local database connection.
        Connections are reused within the same thread for performance.
        """
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path), timeout=self._busy_timeout, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA foreign_keys=ON;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for database transactions.
        Automatically commits on success, rolls back on failure.
        """
        conn = self.connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def init_schema(self) -> None:
        """
        Initialize database schema with proper indexes.
        Safe to call multiple times (uses IF NOT EXISTS).
        """
        with self.transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS organizations (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                identity TEXT UNIQUE,
                created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
            );""")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS api_keys (
                key TEXT PRIMARY KEY,
                organization_id TEXT NOT NULL REFERENCES organizations(id),
                expires_at INTEGER,
                last_used_at INTEGER
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_api_keys_org
            ON api_keys(organization_id);""")

            # One row per content hash, ever
            conn.execute("""
            CREATE TABLE IF NOT EXISTS document_proofs (
                content_hash TEXT PRIMARY KEY,
                log_transaction_id TEXT NOT NULL,
                consensus_timestamp TEXT NOT NULL,
                issuer_identity TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_document_proofs_issuer
            ON document_proofs(issuer_identity);""")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS anchor_claims (
                content_hash TEXT PRIMARY KEY,
                claim_token TEXT NOT NULL,
                expires_at REAL NOT NULL
            );""")

            conn.execute("""
            CREATE TABLE IF NOT EXISTS consensus_messages (
                topic_id TEXT NOT NULL,
                sequence_number INTEGER NOT NULL,
                consensus_timestamp TEXT NOT NULL,
                transaction_id TEXT NOT NULL UNIQUE,
                message BLOB NOT NULL,
                running_hash TEXT NOT NULL,
                PRIMARY KEY (topic_id, sequence_number)
            );""")

    def stats(self) -> Dict[str, int]:
        """Get database statistics for monitoring."""
        conn = self.connection()
        stats = {}
        for table in TABLES:
            cur = conn.execute(f"SELECT COUNT(*) AS cnt FROM {table}")
            stats[f"{table}_count"] = cur.fetchone()['cnt']
        return stats

    def close(self) -> None:
        """Close the calling thread's connection."""
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            conn.close()
            self._local.conn = None
