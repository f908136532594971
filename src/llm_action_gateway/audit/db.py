"""SQLite access layer for the append-only audit trail."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Mapping, Sequence

from llm_action_gateway.audit.models import AuditEntry

_SqlValue = str | bytes | int | float | None
_SqlParams = Sequence[_SqlValue] | Mapping[str, _SqlValue]


class SqliteStore:
    def __init__(self, path: str, wal: bool = True) -> None:
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        if wal and path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS audit_entries (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                entry_id TEXT NOT NULL UNIQUE,
                correlation_id TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                category TEXT NOT NULL,
                event_type TEXT NOT NULL,
                user_id TEXT,
                resource_type TEXT,
                resource_path TEXT,
                action_type TEXT,
                details TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_audit_entries_correlation
                ON audit_entries(correlation_id, seq);
            CREATE INDEX IF NOT EXISTS idx_audit_entries_event_type
                ON audit_entries(event_type);

            CREATE TRIGGER IF NOT EXISTS audit_entries_no_update
                BEFORE UPDATE ON audit_entries
                BEGIN
                    SELECT RAISE(ABORT, 'audit entries are append-only');
                END;

            CREATE TRIGGER IF NOT EXISTS audit_entries_no_delete
                BEFORE DELETE ON audit_entries
                BEGIN
                    SELECT RAISE(ABORT, 'audit entries are append-only');
                END;
            """
        )
        self._conn.commit()

    def execute(
        self,
        query: str,
        params: _SqlParams,
    ) -> None:
        with self._lock:
            self._conn.execute(query, params)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    def fetch_one(
        self,
        query: str,
        params: _SqlParams,
    ) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchone()

    def fetch_all(
        self,
        query: str,
        params: _SqlParams,
    ) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchall()

    def append(self, entry: AuditEntry) -> None:
        self.execute(
            """
            INSERT INTO audit_entries (
                entry_id, correlation_id, timestamp, category, event_type,
                user_id, resource_type, resource_path, action_type, details
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.entry_id,
                entry.correlation_id,
                entry.timestamp,
                entry.category.value,
                entry.event_type,
                entry.user_id,
                entry.resource_type,
                entry.resource_path,
                entry.action_type,
                entry.details_json(),
            ),
        )

    def entries_for(self, correlation_id: str) -> list[AuditEntry]:
        rows = self.fetch_all(
            "SELECT * FROM audit_entries WHERE correlation_id = ? ORDER BY seq",
            (correlation_id,),
        )
        return [AuditEntry.from_row(row) for row in rows]

    def count_entries(self, event_type: str | None = None) -> int:
        if event_type is None:
            row = self.fetch_one("SELECT COUNT(*) AS n FROM audit_entries", ())
        else:
            row = self.fetch_one(
                "SELECT COUNT(*) AS n FROM audit_entries WHERE event_type = ?",
                (event_type,),
            )
        return int(row["n"]) if row is not None else 0
