"""SQLite audit log."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Mapping, Protocol, Sequence
from uuid import uuid4

from access_review.audit.models import AuditEventRecord
from access_review.utils.serialization import json_default
from access_review.utils.time import utc_now_iso

_SqlValue = str | bytes | int | float | None
_SqlParams = Sequence[_SqlValue] | Mapping[str, _SqlValue]


class Auditor(Protocol):
    def record(
        self,
        actor: str | None,
        action: str,
        target: str | None,
        classification: str | None = None,
        **extra: object,
    ) -> AuditEventRecord: ...


class SqliteAuditLog:
    def __init__(self, path: str, wal: bool = True) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        if wal:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS audit_events (
                event_id TEXT PRIMARY KEY,
                actor TEXT,
                action TEXT NOT NULL,
                target TEXT,
                classification TEXT,
                extra TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_audit_events_action ON audit_events(action);
            CREATE INDEX IF NOT EXISTS idx_audit_events_target ON audit_events(target);
            """
        )
        self._conn.commit()

    def execute(self, query: str, params: _SqlParams) -> None:
        with self._lock:
            self._conn.execute(query, params)
            self._conn.commit()

    def fetch_all(self, query: str, params: _SqlParams) -> list[sqlite3.Row]:
        with self._lock:
            return list(self._conn.execute(query, params).fetchall())

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    def record(
        self,
        actor: str | None,
        action: str,
        target: str | None,
        classification: str | None = None,
        **extra: object,
    ) -> AuditEventRecord:
        event = AuditEventRecord(
            event_id=uuid4().hex,
            actor=actor,
            action=action,
            target=target,
            classification=classification,
            created_at=utc_now_iso(),
            extra=dict(extra),
        )
        self.execute(
            """
            INSERT INTO audit_events (
                event_id, actor, action, target, classification, extra, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.actor,
                event.action,
                event.target,
                event.classification,
                json.dumps(event.extra, default=json_default, sort_keys=True),
                event.created_at,
            ),
        )
        return event

    def list_events(
        self, action: str | None = None, target: str | None = None
    ) -> list[AuditEventRecord]:
        clauses: list[str] = []
        params: list[_SqlValue] = []
        if action is not None:
            clauses.append("action = ?")
            params.append(action)
        if target is not None:
            clauses.append("target = ?")
            params.append(target)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.fetch_all(
            f"SELECT * FROM audit_events{where} ORDER BY created_at, rowid", params
        )
        events: list[AuditEventRecord] = []
        for row in rows:
            data = dict(row)
            data["extra"] = json.loads(data["extra"]) if data["extra"] else {}
            events.append(AuditEventRecord(**data))
        return events
