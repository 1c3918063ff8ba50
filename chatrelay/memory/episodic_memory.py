"""Episodic event store: the runtime's diagnostic log."""

from __future__ import annotations

import json
import sqlite3
import threading
from typing import Any


class EpisodicMemoryStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()

    def record(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        chat_id: int | None = None,
        decision: str | None = None,
    ) -> int:
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT INTO episodic_memory (event_type, chat_id, decision, payload)
                VALUES (?, ?, ?, ?)
                """,
                (event_type, chat_id, decision, json.dumps(payload, ensure_ascii=True, default=str)),
            )
            self._conn.commit()
        return int(cursor.lastrowid)

    def latest(self, limit: int = 50, *, chat_id: int | None = None, event_type: str | None = None) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if chat_id is not None:
            clauses.append("chat_id = ?")
            params.append(chat_id)
        if event_type is not None:
            clauses.append("event_type = ?")
            params.append(event_type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"""
            SELECT id, event_type, chat_id, decision, payload, created_at
            FROM episodic_memory
            {where}
            ORDER BY id DESC
            LIMIT ?
            """,
            (*params, limit),
        ).fetchall()

        events: list[dict[str, Any]] = []
        for row in rows:
            event = dict(row)
            event["payload"] = json.loads(event["payload"])
            events.append(event)
        return events
