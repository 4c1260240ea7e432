from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any, Protocol

from habitquest.db_constants import XP_PER_LEVEL
from habitquest.db_converters import _row_to_profile
from habitquest.db_models import Profile
from habitquest.rewards import level_for_xp

PROFILE_SELECT = """
    SELECT p.*,
           w.id AS weapon_id, w.name AS weapon_name, w.type AS weapon_type,
           w.xp_multiplier AS weapon_xp_multiplier, w.gold_cost AS weapon_gold_cost,
           w.level_required AS weapon_level_required, w.rarity AS weapon_rarity,
           a.id AS armor_id, a.name AS armor_name, a.type AS armor_type,
           a.xp_multiplier AS armor_xp_multiplier, a.gold_cost AS armor_gold_cost,
           a.level_required AS armor_level_required, a.rarity AS armor_rarity,
           c.id AS accessory_id, c.name AS accessory_name, c.type AS accessory_type,
           c.xp_multiplier AS accessory_xp_multiplier, c.gold_cost AS accessory_gold_cost,
           c.level_required AS accessory_level_required, c.rarity AS accessory_rarity
    FROM profiles p
    LEFT JOIN equipment_catalog w ON w.id = p.equipped_weapon
    LEFT JOIN equipment_catalog a ON a.id = p.equipped_armor
    LEFT JOIN equipment_catalog c ON c.id = p.equipped_accessory
"""


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...
    def get_profile(self, user_id: str) -> Profile | None: ...


class ProfileMixin:
    def create_profile(
        self: DbProtocol,
        user_id: str,
        now: datetime,
        archetype: str | None = None,
        xp: int = 0,
        current_streak: int = 0,
        longest_streak: int = 0,
        last_quest_date: datetime | None = None,
        is_premium: bool = False,
        subscription_status: str = "inactive",
    ) -> Profile:
        """Insert a profile row. Gold always starts at zero; only the ledger changes it."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO profiles(
                    id, archetype, level, xp, gold, current_streak, longest_streak, last_quest_date,
                    is_premium, subscription_status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, 0, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    archetype,
                    level_for_xp(xp),
                    xp,
                    current_streak,
                    longest_streak,
                    last_quest_date.isoformat() if last_quest_date else None,
                    1 if is_premium else 0,
                    subscription_status,
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
        profile = self.get_profile(user_id)
        assert profile is not None
        return profile

    def get_or_create_profile(self: DbProtocol, user_id: str, now: datetime) -> Profile:
        """Return the actor's profile, inserting a level-1 default row on first sight."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO profiles(id, level, xp, gold, created_at, updated_at)
                VALUES (?, 1, 0, 0, ?, ?)
                """,
                (user_id, now.isoformat(), now.isoformat()),
            )
        profile = self.get_profile(user_id)
        assert profile is not None
        return profile

    def get_profile(self: DbProtocol, user_id: str) -> Profile | None:
        with self._connect() as conn:
            row = conn.execute(f"{PROFILE_SELECT} WHERE p.id = ?", (user_id,)).fetchone()
        return _row_to_profile(row) if row else None

    def get_tier_flags(self: DbProtocol, user_id: str) -> tuple[bool, str] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT is_premium, subscription_status FROM profiles WHERE id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return bool(row["is_premium"]), row["subscription_status"] or "inactive"

    def set_premium(self: DbProtocol, user_id: str, is_premium: bool, subscription_status: str, now: datetime) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE profiles SET is_premium = ?, subscription_status = ?, updated_at = ? WHERE id = ?",
                (1 if is_premium else 0, subscription_status, now.isoformat(), user_id),
            )
        return cur.rowcount > 0

    def update_profile_progress(
        self: DbProtocol,
        user_id: str,
        xp_delta: int,
        current_streak: int,
        longest_streak: int,
        last_quest_date: datetime,
        story_state: dict[str, Any],
        skill_points_delta: int,
        now: datetime,
    ) -> bool:
        """Single write for everything a completion changes except gold.

        XP is incremented in SQL and the level derived from the incremented
        value in the same statement.
        """
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE profiles
                SET xp = xp + ?,
                    level = (xp + ?) / ? + 1,
                    current_streak = ?,
                    longest_streak = ?,
                    last_quest_date = ?,
                    story_state = ?,
                    skill_points = skill_points + ?,
                    total_skill_points_earned = total_skill_points_earned + ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    xp_delta,
                    xp_delta,
                    XP_PER_LEVEL,
                    current_streak,
                    longest_streak,
                    last_quest_date.isoformat(),
                    json.dumps(story_state),
                    skill_points_delta,
                    skill_points_delta,
                    now.isoformat(),
                    user_id,
                ),
            )
        return cur.rowcount > 0
