from __future__ import annotations

import json
import sqlite3
from datetime import datetime

from habitquest.db_models import (
    EquipmentItem,
    GoldTransaction,
    JournalEntry,
    Profile,
    Quest,
    QuestStatus,
)
from habitquest.time_utils import parse_timestamp


def _ts(value: str) -> datetime:
    parsed = parse_timestamp(value)
    assert parsed is not None
    return parsed


def _json_or_none(raw: str | None) -> dict | None:
    if not raw:
        return None
    value = json.loads(raw)
    return value if isinstance(value, dict) else None


def _row_to_equipment(row: sqlite3.Row, prefix: str = "") -> EquipmentItem | None:
    item_id = row[f"{prefix}id"]
    if item_id is None:
        return None
    return EquipmentItem(
        id=item_id,
        name=row[f"{prefix}name"],
        slot=row[f"{prefix}type"],
        xp_multiplier=float(row[f"{prefix}xp_multiplier"] if row[f"{prefix}xp_multiplier"] is not None else 1.0),
        gold_cost=int(row[f"{prefix}gold_cost"] or 0),
        level_required=int(row[f"{prefix}level_required"] or 1),
        rarity=row[f"{prefix}rarity"],
    )


def _row_to_profile(row: sqlite3.Row) -> Profile:
    keys = row.keys()
    return Profile(
        id=row["id"],
        archetype=row["archetype"],
        xp=int(row["xp"]),
        level=int(row["level"]),
        gold=int(row["gold"]),
        current_streak=int(row["current_streak"]),
        longest_streak=int(row["longest_streak"]),
        last_quest_date=parse_timestamp(row["last_quest_date"]),
        skill_points=int(row["skill_points"]),
        total_skill_points_earned=int(row["total_skill_points_earned"]),
        is_premium=bool(row["is_premium"]),
        subscription_status=row["subscription_status"] or "inactive",
        story_state=_json_or_none(row["story_state"]) or {},
        equipped_weapon=_row_to_equipment(row, "weapon_") if "weapon_id" in keys else None,
        equipped_armor=_row_to_equipment(row, "armor_") if "armor_id" in keys else None,
        equipped_accessory=_row_to_equipment(row, "accessory_") if "accessory_id" in keys else None,
        created_at=_ts(row["created_at"]),
        updated_at=_ts(row["updated_at"]),
    )


def _row_to_quest(row: sqlite3.Row) -> Quest:
    return Quest(
        id=row["id"],
        user_id=row["user_id"],
        original_text=row["original_text"],
        transformed_text=row["transformed_text"],
        difficulty=row["difficulty"],
        xp_value=int(row["xp_value"]),
        status=QuestStatus(row["status"]),
        completed_at=parse_timestamp(row["completed_at"]),
        story_thread=row["story_thread"],
        narrative_impact=row["narrative_impact"],
        created_at=_ts(row["created_at"]),
    )


def _row_to_transaction(row: sqlite3.Row) -> GoldTransaction:
    return GoldTransaction(
        id=row["id"],
        user_id=row["user_id"],
        amount=int(row["amount"]),
        transaction_type=row["transaction_type"],
        reference_id=row["reference_id"],
        metadata=_json_or_none(row["metadata"]),
        created_at=_ts(row["created_at"]),
    )


def _row_to_journal(row: sqlite3.Row) -> JournalEntry:
    return JournalEntry(
        id=row["id"],
        user_id=row["user_id"],
        entry_text=row["entry_text"],
        transformed_narrative=row["transformed_narrative"],
        mood=int(row["mood"]) if row["mood"] is not None else None,
        created_at=_ts(row["created_at"]),
    )
