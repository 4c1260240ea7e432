from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

EQUIPMENT_SLOTS = ("weapon", "armor", "accessory")
DIFFICULTIES = ("easy", "medium", "hard")


class QuestStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass(frozen=True)
class EquipmentItem:
    id: str
    name: str
    slot: str
    xp_multiplier: float
    gold_cost: int
    level_required: int
    rarity: str | None


@dataclass(frozen=True)
class Profile:
    id: str
    archetype: str | None
    xp: int
    level: int
    gold: int
    current_streak: int
    longest_streak: int
    last_quest_date: datetime | None
    skill_points: int
    total_skill_points_earned: int
    is_premium: bool
    subscription_status: str
    story_state: dict[str, Any]
    equipped_weapon: EquipmentItem | None
    equipped_armor: EquipmentItem | None
    equipped_accessory: EquipmentItem | None
    created_at: datetime
    updated_at: datetime

    @property
    def equipped_items(self) -> list[EquipmentItem]:
        slots = (self.equipped_weapon, self.equipped_armor, self.equipped_accessory)
        return [item for item in slots if item is not None]


@dataclass(frozen=True)
class Quest:
    id: str
    user_id: str
    original_text: str
    transformed_text: str
    difficulty: str
    xp_value: int
    status: QuestStatus
    completed_at: datetime | None
    story_thread: str | None
    narrative_impact: str | None
    created_at: datetime

    @property
    def completed(self) -> bool:
        return self.status is QuestStatus.COMPLETED

    @property
    def display_text(self) -> str:
        return self.transformed_text or self.original_text


@dataclass(frozen=True)
class GoldTransaction:
    id: str
    user_id: str
    amount: int
    transaction_type: str
    reference_id: str | None
    metadata: dict[str, Any] | None
    created_at: datetime


@dataclass(frozen=True)
class LedgerResult:
    success: bool
    new_balance: int
    transaction_id: str | None


@dataclass(frozen=True)
class QuotaResult:
    allowed: bool
    current: int
    limit: int
    reset_at: datetime
    error: str | None = None


@dataclass(frozen=True)
class JournalEntry:
    id: str
    user_id: str
    entry_text: str
    transformed_narrative: str | None
    mood: int | None
    created_at: datetime


class PurchaseStatus(str, Enum):
    PURCHASED = "purchased"
    ALREADY_OWNED = "already_owned"
    INSUFFICIENT_GOLD = "insufficient_gold"
    NO_PROFILE = "no_profile"


@dataclass(frozen=True)
class PurchaseResult:
    status: PurchaseStatus
    new_balance: int
    transaction_id: str | None
