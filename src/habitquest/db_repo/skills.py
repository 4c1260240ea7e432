from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Protocol


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...


class SkillMixin:
    def unlock_skill(self: DbProtocol, user_id: str, skill_id: str, now: datetime) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO unlocked_skills(user_id, skill_id, unlocked_at) VALUES (?, ?, ?)",
                (user_id, skill_id, now.isoformat()),
            )
        return cur.rowcount > 0

    def list_unlocked_skills(self: DbProtocol, user_id: str) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT skill_id FROM unlocked_skills WHERE user_id = ? ORDER BY unlocked_at ASC, skill_id ASC",
                (user_id,),
            ).fetchall()
        return [r["skill_id"] for r in rows]

    def purchase_skill(self: DbProtocol, user_id: str, skill_id: str, cost: int, now: datetime) -> bool:
        """Unlock ``skill_id`` and deduct ``cost`` skill points, or change nothing.

        False when the skill is already unlocked or the balance is short.
        """
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            inserted = conn.execute(
                "INSERT OR IGNORE INTO unlocked_skills(user_id, skill_id, unlocked_at) VALUES (?, ?, ?)",
                (user_id, skill_id, now.isoformat()),
            ).rowcount
            if not inserted:
                return False
            spent = conn.execute(
                """
                UPDATE profiles SET skill_points = skill_points - ?, updated_at = ?
                WHERE id = ? AND skill_points >= ?
                """,
                (cost, now.isoformat(), user_id, cost),
            ).rowcount
            if not spent:
                conn.rollback()
                return False
        return True
