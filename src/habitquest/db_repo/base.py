from __future__ import annotations

import sqlite3
import uuid
from pathlib import Path

from habitquest.time_utils import now_utc


def new_id() -> str:
    return str(uuid.uuid4())


class BaseDatabase:
    def __init__(self, path: Path, timeout_seconds: float = 5.0) -> None:
        self.path = path
        self.timeout_seconds = timeout_seconds
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=self.timeout_seconds)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """
            )
            current = {row["version"] for row in conn.execute("SELECT version FROM schema_migrations")}

            migrations: dict[int, str] = {
                1: """
                    CREATE TABLE equipment_catalog (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        type TEXT NOT NULL CHECK(type IN ('weapon', 'armor', 'accessory')),
                        description TEXT,
                        xp_multiplier REAL NOT NULL DEFAULT 1.0,
                        gold_cost INTEGER NOT NULL DEFAULT 0,
                        level_required INTEGER NOT NULL DEFAULT 1,
                        rarity TEXT CHECK(rarity IN ('common', 'uncommon', 'rare', 'epic', 'legendary')),
                        created_at TEXT NOT NULL
                    );

                    CREATE TABLE profiles (
                        id TEXT PRIMARY KEY,
                        archetype TEXT,
                        level INTEGER NOT NULL DEFAULT 1,
                        xp INTEGER NOT NULL DEFAULT 0 CHECK(xp >= 0),
                        gold INTEGER NOT NULL DEFAULT 0 CHECK(gold >= 0),
                        current_streak INTEGER NOT NULL DEFAULT 0,
                        longest_streak INTEGER NOT NULL DEFAULT 0,
                        last_quest_date TEXT,
                        skill_points INTEGER NOT NULL DEFAULT 0,
                        total_skill_points_earned INTEGER NOT NULL DEFAULT 0,
                        is_premium INTEGER NOT NULL DEFAULT 0,
                        subscription_status TEXT NOT NULL DEFAULT 'inactive',
                        equipped_weapon TEXT REFERENCES equipment_catalog(id),
                        equipped_armor TEXT REFERENCES equipment_catalog(id),
                        equipped_accessory TEXT REFERENCES equipment_catalog(id),
                        story_state TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );

                    CREATE TABLE quests (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
                        original_text TEXT NOT NULL,
                        transformed_text TEXT NOT NULL,
                        difficulty TEXT NOT NULL CHECK(difficulty IN ('easy', 'medium', 'hard')),
                        xp_value INTEGER NOT NULL,
                        status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'completed')),
                        completed_at TEXT,
                        story_thread TEXT,
                        narrative_impact TEXT,
                        created_at TEXT NOT NULL
                    );

                    CREATE INDEX idx_quests_user_created ON quests(user_id, created_at DESC);
                    CREATE INDEX idx_quests_user_status ON quests(user_id, status, completed_at DESC);

                    CREATE TABLE gold_transactions (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
                        amount INTEGER NOT NULL,
                        transaction_type TEXT NOT NULL,
                        reference_id TEXT,
                        metadata TEXT,
                        created_at TEXT NOT NULL
                    );

                    CREATE INDEX idx_gold_transactions_user ON gold_transactions(user_id, created_at DESC);
                """,
                2: """
                    CREATE TABLE api_rate_limits (
                        user_id TEXT NOT NULL,
                        endpoint TEXT NOT NULL,
                        window_start TEXT NOT NULL,
                        window_minutes INTEGER NOT NULL,
                        request_count INTEGER NOT NULL DEFAULT 0,
                        PRIMARY KEY(user_id, endpoint, window_start)
                    );

                    CREATE INDEX idx_api_rate_limits_user_window ON api_rate_limits(user_id, window_start DESC);
                """,
                3: """
                    CREATE TABLE unlocked_skills (
                        user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
                        skill_id TEXT NOT NULL,
                        unlocked_at TEXT NOT NULL,
                        PRIMARY KEY(user_id, skill_id)
                    );
                """,
                4: """
                    CREATE TABLE journal_entries (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
                        entry_text TEXT NOT NULL,
                        transformed_narrative TEXT,
                        mood INTEGER CHECK(mood BETWEEN 1 AND 5),
                        created_at TEXT NOT NULL
                    );

                    CREATE INDEX idx_journal_entries_user_created ON journal_entries(user_id, created_at DESC);
                """,
                5: """
                    CREATE TABLE user_equipment (
                        user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
                        item_id TEXT NOT NULL REFERENCES equipment_catalog(id),
                        acquired_at TEXT NOT NULL,
                        PRIMARY KEY(user_id, item_id)
                    );
                """,
            }

            now = now_utc().isoformat(timespec="seconds")
            for version in sorted(migrations):
                if version in current:
                    continue
                conn.executescript(migrations[version])
                conn.execute(
                    "INSERT INTO schema_migrations(version, applied_at) VALUES (?, ?)",
                    (version, now),
                )
