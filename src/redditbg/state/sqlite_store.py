from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from redditbg.core.errors import LedgerError
from redditbg.core.models import LedgerStatus
from redditbg.sinks.image_store import ImageStore
from redditbg.state.base import reconcile
from redditbg.utils.hashing import reference_identity
from redditbg.utils.logging import get_logger


class SQLiteDedupLedger:
    """SQLite-backed dedup ledger on one connection; every insert is its own committed transaction."""

    def __init__(self, path: str):
        self.path = path
        self.log = get_logger("redditbg.ledger.sqlite")
        self._conn: Optional[sqlite3.Connection] = None
        try:
            self._ensure_parent_dir(path)
            self._ensure_schema()
        except (OSError, sqlite3.Error) as e:
            raise LedgerError(f"Could not open ledger at {path}: {e}") from e

    def contains(self, reference: str) -> bool:
        return self.status_of(reference) is not None

    def status_of(self, reference: str) -> Optional[LedgerStatus]:
        identity = reference_identity(reference)
        with self._session() as conn:
            row = conn.execute(
                "SELECT name FROM persistent_sets WHERE identity = ?",
                (identity,),
            ).fetchone()
        return LedgerStatus(row["name"]) if row else None

    def insert(self, reference: str, status: LedgerStatus) -> None:
        self.insert_identity(reference_identity(reference), status)

    def insert_identity(self, identity: str, status: LedgerStatus) -> None:
        status = LedgerStatus(status)
        with self._session() as conn:
            conn.execute(
                "DELETE FROM persistent_sets WHERE identity = ? AND name <> ?",
                (identity, status.value),
            )
            conn.execute(
                """
                INSERT OR IGNORE INTO persistent_sets (name, identity)
                VALUES (?, ?)
                """,
                (status.value, identity),
            )

    def count(self, status: LedgerStatus) -> int:
        with self._session() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM persistent_sets WHERE name = ?",
                (LedgerStatus(status).value,),
            ).fetchone()
        return int(row["n"]) if row else 0

    def reconcile_from_store(self, store: ImageStore) -> int:
        return reconcile(self, store)

    def flush(self) -> None:
        # Every insert already committed on its own.
        return None

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _ensure_schema(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS persistent_sets (
                    name TEXT NOT NULL,
                    identity TEXT NOT NULL,
                    created_at_utc TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
                    PRIMARY KEY (name, identity)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_persistent_sets_identity
                ON persistent_sets (identity)
                """
            )

    def _connect(self) -> sqlite3.Connection:
        # Opened on first use and kept until close().
        if self._conn is None:
            conn = sqlite3.connect(self.path, timeout=30)
            conn.row_factory = sqlite3.Row
            self._conn = conn
        return self._conn

    @contextmanager
    def _session(self):
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise LedgerError(f"Could not connect to ledger at {self.path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise LedgerError(f"Ledger operation failed: {e}") from e

    def _ensure_parent_dir(self, path: str) -> None:
        parent = Path(path).parent
        if str(parent) not in {"", "."}:
            parent.mkdir(parents=True, exist_ok=True)
