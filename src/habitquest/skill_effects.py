from __future__ import annotations

import random
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from habitquest.time_utils import Clock, is_friday, now_utc

# Percentage points added to the XP multiplier.
GLOBAL_XP_SKILLS = {"power_1": 5, "power_2": 5}
HARD_XP_SKILLS = {"power_3": 20}
EASY_XP_SKILLS = {"efficiency_1": 20, "efficiency_2": 30}

STREAK_SKILL = "power_4"
STREAK_MIN_DAYS = 3
STREAK_PERCENT_PER_DAY = 2
STREAK_PERCENT_CAP = 20

LUCK_SKILLS = {"fortune_1": 10, "fortune_2": 10}
LUCK_DOUBLER = "fortune_5"

SPECIAL_DAY_SKILL = "efficiency_5"

# skill id -> (skill point cost, prerequisites)
SKILL_TREE: dict[str, tuple[int, tuple[str, ...]]] = {
    "power_1": (1, ()),
    "power_2": (1, ("power_1",)),
    "power_3": (2, ("power_2",)),
    "power_4": (2, ("power_2",)),
    "power_5": (3, ("power_3", "power_4")),
    "wisdom_1": (1, ()),
    "wisdom_2": (1, ("wisdom_1",)),
    "wisdom_3": (2, ("wisdom_2",)),
    "wisdom_4": (2, ("wisdom_2",)),
    "wisdom_5": (3, ("wisdom_3", "wisdom_4")),
    "efficiency_1": (1, ()),
    "efficiency_2": (1, ("efficiency_1",)),
    "efficiency_3": (2, ("efficiency_2",)),
    "efficiency_4": (2, ("efficiency_2",)),
    "efficiency_5": (3, ("efficiency_3", "efficiency_4")),
    "fortune_1": (1, ()),
    "fortune_2": (1, ("fortune_1",)),
    "fortune_3": (2, ("fortune_2",)),
    "fortune_4": (2, ("fortune_2",)),
    "fortune_5": (3, ("fortune_3", "fortune_4")),
}


class SkillSource(Protocol):
    def list_unlocked_skills(self, user_id: str) -> list[str]: ...


@dataclass(frozen=True)
class SkillBonus:
    base_xp: int
    final_xp: int
    skill_bonus_xp: int
    streak_bonus_xp: int
    lucky_proc: bool
    multiplier_percent: int
    applied_skills: tuple[str, ...]


def xp_bonus_percent(skills: Iterable[str], difficulty: str) -> int:
    unlocked = set(skills)
    percent = sum(v for k, v in GLOBAL_XP_SKILLS.items() if k in unlocked)
    if difficulty == "hard":
        percent += sum(v for k, v in HARD_XP_SKILLS.items() if k in unlocked)
    if difficulty == "easy":
        percent += sum(v for k, v in EASY_XP_SKILLS.items() if k in unlocked)
    return percent


def streak_bonus_xp(skills: Iterable[str], current_streak: int, base_xp: int) -> int:
    if STREAK_SKILL not in set(skills) or current_streak < STREAK_MIN_DAYS:
        return 0
    percent = min(current_streak * STREAK_PERCENT_PER_DAY, STREAK_PERCENT_CAP)
    return base_xp * percent // 100


def luck_chance(skills: Iterable[str]) -> float:
    unlocked = set(skills)
    percent = sum(v for k, v in LUCK_SKILLS.items() if k in unlocked)
    if LUCK_DOUBLER in unlocked:
        percent *= 2
    return percent / 100


def applied_xp_skills(skills: Iterable[str]) -> tuple[str, ...]:
    return tuple(s for s in skills if s.startswith("power_") or s.startswith("efficiency_"))


class SkillEffects:
    """Turns a user's unlocked skills into XP bonuses.

    ``rng`` and ``clock`` are injectable so lucky procs and the Friday check
    can be pinned in tests.
    """

    def __init__(self, db: SkillSource, rng: random.Random | None = None, clock: Clock = now_utc) -> None:
        self.db = db
        self.rng = rng or random.Random()
        self.clock = clock

    def compute_skill_bonus(self, actor_id: str, difficulty: str, base_xp: int, current_streak: int) -> SkillBonus:
        skills = self.db.list_unlocked_skills(actor_id)
        percent = xp_bonus_percent(skills, difficulty)
        skill_bonus = base_xp * percent // 100
        streak_bonus = streak_bonus_xp(skills, current_streak, base_xp)

        chance = luck_chance(skills)
        lucky = chance > 0 and self.rng.random() < chance

        final_xp = base_xp + skill_bonus + streak_bonus
        if lucky:
            final_xp *= 2

        return SkillBonus(
            base_xp=base_xp,
            final_xp=final_xp,
            skill_bonus_xp=skill_bonus,
            streak_bonus_xp=streak_bonus,
            lucky_proc=lucky,
            multiplier_percent=100 + percent,
            applied_skills=applied_xp_skills(skills),
        )

    def is_special_day_active(self, actor_id: str, now: datetime | None = None) -> bool:
        today = now or self.clock()
        if not is_friday(today):
            return False
        return SPECIAL_DAY_SKILL in self.db.list_unlocked_skills(actor_id)
