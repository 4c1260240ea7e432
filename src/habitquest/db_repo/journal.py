from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Protocol

from habitquest.db_converters import _row_to_journal
from habitquest.db_models import JournalEntry
from habitquest.db_repo.base import new_id


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...


class JournalMixin:
    def add_journal_entry(
        self: DbProtocol,
        user_id: str,
        entry_text: str,
        created_at: datetime,
        mood: int | None = None,
    ) -> JournalEntry:
        entry_id = new_id()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO journal_entries(id, user_id, entry_text, mood, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (entry_id, user_id, entry_text, mood, created_at.isoformat()),
            )
            row = conn.execute("SELECT * FROM journal_entries WHERE id = ?", (entry_id,)).fetchone()
        assert row is not None
        return _row_to_journal(row)

    def get_journal_entry(self: DbProtocol, entry_id: str, user_id: str) -> JournalEntry | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM journal_entries WHERE id = ? AND user_id = ?",
                (entry_id, user_id),
            ).fetchone()
        return _row_to_journal(row) if row else None

    def set_journal_narrative(self: DbProtocol, entry_id: str, user_id: str, narrative: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE journal_entries SET transformed_narrative = ? WHERE id = ? AND user_id = ?",
                (narrative, entry_id, user_id),
            )
        return cur.rowcount > 0

    def list_journal_entries_between(self: DbProtocol, user_id: str, start: datetime, end: datetime) -> list[JournalEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM journal_entries
                WHERE user_id = ? AND created_at >= ? AND created_at < ?
                ORDER BY created_at ASC
                """,
                (user_id, start.isoformat(), end.isoformat()),
            ).fetchall()
        return [_row_to_journal(r) for r in rows]

    def list_recent_narratives(self: DbProtocol, user_id: str, limit: int = 3) -> list[JournalEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM journal_entries
                WHERE user_id = ? AND transformed_narrative IS NOT NULL
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
        return [_row_to_journal(r) for r in rows]
