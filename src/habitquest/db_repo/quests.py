from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Protocol

from habitquest.db_converters import _row_to_quest
from habitquest.db_models import DIFFICULTIES, Quest, QuestStatus
from habitquest.db_repo.base import new_id


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...


class QuestMixin:
    def insert_quest(
        self: DbProtocol,
        user_id: str,
        original_text: str,
        transformed_text: str,
        difficulty: str,
        xp_value: int,
        created_at: datetime,
        story_thread: str | None = None,
        narrative_impact: str | None = None,
        quest_id: str | None = None,
    ) -> Quest:
        if difficulty not in DIFFICULTIES:
            raise ValueError(f"Unknown difficulty: {difficulty}")
        quest_id = quest_id or new_id()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO quests(
                    id, user_id, original_text, transformed_text, difficulty, xp_value, status,
                    story_thread, narrative_impact, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    quest_id,
                    user_id,
                    original_text,
                    transformed_text,
                    difficulty,
                    xp_value,
                    QuestStatus.ACTIVE.value,
                    story_thread,
                    narrative_impact,
                    created_at.isoformat(),
                ),
            )
            row = conn.execute("SELECT * FROM quests WHERE id = ?", (quest_id,)).fetchone()
        assert row is not None
        return _row_to_quest(row)

    def get_quest_for_actor(self: DbProtocol, quest_id: str, user_id: str) -> Quest | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM quests WHERE id = ? AND user_id = ?",
                (quest_id, user_id),
            ).fetchone()
        return _row_to_quest(row) if row else None

    def complete_quest_if_active(self: DbProtocol, quest_id: str, user_id: str, completed_at: datetime) -> bool:
        """Move a quest from active to completed.

        Returns True for exactly one caller per quest; every other caller,
        concurrent or later, gets False. The check and the write are one
        conditional UPDATE, so no reader can slip in between them.
        """
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE quests
                SET status = ?, completed_at = ?
                WHERE id = ? AND user_id = ? AND status = ?
                """,
                (
                    QuestStatus.COMPLETED.value,
                    completed_at.isoformat(),
                    quest_id,
                    user_id,
                    QuestStatus.ACTIVE.value,
                ),
            )
        return cur.rowcount == 1

    def list_completed_quests_between(self: DbProtocol, user_id: str, start: datetime, end: datetime) -> list[Quest]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM quests
                WHERE user_id = ? AND status = ? AND completed_at >= ? AND completed_at < ?
                ORDER BY completed_at ASC
                """,
                (user_id, QuestStatus.COMPLETED.value, start.isoformat(), end.isoformat()),
            ).fetchall()
        return [_row_to_quest(r) for r in rows]
