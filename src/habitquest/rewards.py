from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal
from typing import TYPE_CHECKING, Any, Protocol

from habitquest.db_constants import (
    COMEBACK_BONUS_XP,
    COMEBACK_DAYS,
    DEFAULT_GOLD_REWARD,
    GOLD_REWARDS,
    LEVELS_PER_SKILL_POINT,
    XP_PER_LEVEL,
)
from habitquest.time_utils import whole_days_between

if TYPE_CHECKING:
    from habitquest.db_models import EquipmentItem, Profile, Quest
    from habitquest.skill_effects import SkillBonus


class SkillBonusSource(Protocol):
    def compute_skill_bonus(self, actor_id: str, difficulty: str, base_xp: int, current_streak: int) -> SkillBonus: ...


def level_for_xp(xp: int) -> int:
    return max(0, xp) // XP_PER_LEVEL + 1


def skill_points_earned(old_level: int, new_level: int) -> int:
    return max(0, new_level // LEVELS_PER_SKILL_POINT - old_level // LEVELS_PER_SKILL_POINT)


def gold_for_difficulty(difficulty: str) -> int:
    return GOLD_REWARDS.get(difficulty, DEFAULT_GOLD_REWARD)


def equipment_multiplier(items: list[EquipmentItem]) -> Decimal:
    """1.0 plus each equipped item's bonus over 1.0; empty slots add nothing.

    Kept as a Decimal so e.g. a 1.2x weapon on 10 XP floors to 12, not 11.
    """
    total = Decimal("1.0")
    for item in items:
        total += Decimal(str(item.xp_multiplier)) - Decimal("1.0")
    return total


def is_comeback(last_quest_date: datetime | None, now: datetime) -> bool:
    if last_quest_date is None:
        return False
    return whole_days_between(last_quest_date, now) >= COMEBACK_DAYS


def compute_streak(last_quest_date: datetime | None, current_streak: int, now: datetime) -> int:
    if last_quest_date is None:
        return 1
    days = whole_days_between(last_quest_date, now)
    if days in (0, 1):
        return current_streak + 1
    return 1


@dataclass(frozen=True)
class RewardBreakdown:
    base_xp: int
    skill_xp: int
    skill_bonus_xp: int
    streak_bonus_xp: int
    lucky_proc: bool
    applied_skills: tuple[str, ...]
    equipment_multiplier: float
    equipment_bonus_xp: int
    comeback_bonus: bool
    comeback_bonus_xp: int
    double_friday: bool
    xp: int
    gold: int
    old_xp: int
    new_total_xp: int
    old_level: int
    new_level: int
    skill_points_earned: int

    @property
    def level_up(self) -> bool:
        return self.new_level > self.old_level

    def to_dict(self) -> dict[str, Any]:
        return {
            "xp": self.xp,
            "base_xp": self.base_xp,
            "equipment_bonus_xp": self.equipment_bonus_xp,
            "skill_bonus_xp": self.skill_bonus_xp,
            "comeback_bonus": self.comeback_bonus,
            "comeback_bonus_xp": self.comeback_bonus_xp,
            "lucky_proc": self.lucky_proc,
            "double_friday": self.double_friday,
            "gold": self.gold,
            "new_level": self.new_level,
            "level_up": self.level_up,
            "skill_points_earned": self.skill_points_earned,
        }


def compute_reward(
    quest: Quest,
    profile: Profile,
    skill_effects: SkillBonusSource,
    is_special_day: bool,
    now: datetime,
) -> RewardBreakdown:
    """Layered XP and flat gold for one completed quest.

    Order matters: skill bonus, then the equipment multiplier (floored), then
    the flat comeback bonus, then the special-day doubling over all of it.
    Gold comes from the difficulty table only.
    """
    base_xp = quest.xp_value
    bonus = skill_effects.compute_skill_bonus(profile.id, quest.difficulty, base_xp, profile.current_streak)

    multiplier = equipment_multiplier(profile.equipped_items)
    boosted = int((Decimal(bonus.final_xp) * multiplier).to_integral_value(rounding=ROUND_FLOOR))

    comeback = is_comeback(profile.last_quest_date, now)
    comeback_xp = COMEBACK_BONUS_XP if comeback else 0

    total = boosted + comeback_xp
    if is_special_day:
        total *= 2

    old_level = level_for_xp(profile.xp)
    new_total = profile.xp + total
    new_level = level_for_xp(new_total)

    return RewardBreakdown(
        base_xp=base_xp,
        skill_xp=bonus.final_xp,
        skill_bonus_xp=bonus.skill_bonus_xp,
        streak_bonus_xp=bonus.streak_bonus_xp,
        lucky_proc=bonus.lucky_proc,
        applied_skills=bonus.applied_skills,
        equipment_multiplier=float(multiplier),
        equipment_bonus_xp=boosted - bonus.final_xp,
        comeback_bonus=comeback,
        comeback_bonus_xp=comeback_xp,
        double_friday=is_special_day,
        xp=total,
        gold=gold_for_difficulty(quest.difficulty),
        old_xp=profile.xp,
        new_total_xp=new_total,
        old_level=old_level,
        new_level=new_level,
        skill_points_earned=skill_points_earned(old_level, new_level),
    )
