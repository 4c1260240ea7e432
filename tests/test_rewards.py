from __future__ import annotations

from datetime import datetime, timedelta, timezone

from habitquest.db_models import EquipmentItem, Profile, Quest, QuestStatus
from habitquest.rewards import (
    compute_reward,
    compute_streak,
    equipment_multiplier,
    gold_for_difficulty,
    is_comeback,
    level_for_xp,
    skill_points_earned,
)
from habitquest.skill_effects import SkillEffects


def _dt(y: int, m: int, d: int, h: int = 10, minute: int = 0) -> datetime:
    return datetime(y, m, d, h, minute, tzinfo=timezone.utc)


class _Skills:
    def __init__(self, skills: list[str] | None = None) -> None:
        self.skills = skills or []

    def list_unlocked_skills(self, user_id: str) -> list[str]:
        return list(self.skills)


def _item(slot: str, multiplier: float) -> EquipmentItem:
    return EquipmentItem(
        id=f"{slot}-{multiplier}",
        name=f"Test {slot}",
        slot=slot,
        xp_multiplier=multiplier,
        gold_cost=0,
        level_required=1,
        rarity="common",
    )


def _profile(
    xp: int = 0,
    last_quest_date: datetime | None = None,
    weapon: EquipmentItem | None = None,
    armor: EquipmentItem | None = None,
    accessory: EquipmentItem | None = None,
    current_streak: int = 0,
) -> Profile:
    now = _dt(2025, 1, 1)
    return Profile(
        id="u1",
        archetype="warrior",
        xp=xp,
        level=level_for_xp(xp),
        gold=0,
        current_streak=current_streak,
        longest_streak=current_streak,
        last_quest_date=last_quest_date,
        skill_points=0,
        total_skill_points_earned=0,
        is_premium=False,
        subscription_status="inactive",
        story_state={},
        equipped_weapon=weapon,
        equipped_armor=armor,
        equipped_accessory=accessory,
        created_at=now,
        updated_at=now,
    )


def _quest(difficulty: str = "easy", xp_value: int = 10) -> Quest:
    return Quest(
        id="q1",
        user_id="u1",
        original_text="Do the dishes",
        transformed_text="Cleanse the Cauldrons of the Great Hall",
        difficulty=difficulty,
        xp_value=xp_value,
        status=QuestStatus.ACTIVE,
        completed_at=None,
        story_thread=None,
        narrative_impact=None,
        created_at=_dt(2025, 1, 1),
    )


def _effects(skills: list[str] | None = None) -> SkillEffects:
    return SkillEffects(_Skills(skills))


def test_level_boundaries() -> None:
    assert level_for_xp(0) == 1
    assert level_for_xp(99) == 1
    assert level_for_xp(100) == 2
    assert level_for_xp(545) == 6


def test_skill_points_only_every_five_levels() -> None:
    assert skill_points_earned(5, 6) == 0
    assert skill_points_earned(4, 5) == 1
    assert skill_points_earned(9, 10) == 1
    assert skill_points_earned(4, 11) == 2
    assert skill_points_earned(6, 6) == 0


def test_gold_table_is_flat() -> None:
    assert gold_for_difficulty("easy") == 50
    assert gold_for_difficulty("medium") == 150
    assert gold_for_difficulty("hard") == 350
    assert gold_for_difficulty("legendary") == 50


def test_new_actor_easy_quest() -> None:
    reward = compute_reward(_quest("easy", 10), _profile(), _effects(), False, _dt(2025, 1, 6))

    assert reward.xp == 10
    assert reward.gold == 50
    assert reward.new_level == 1
    assert reward.level_up is False
    assert reward.skill_points_earned == 0
    assert reward.comeback_bonus is False


def test_hard_quest_crosses_level_without_skill_point() -> None:
    reward = compute_reward(_quest("hard", 50), _profile(xp=495), _effects(), False, _dt(2025, 1, 6))

    assert reward.new_total_xp == 545
    assert reward.old_level == 5
    assert reward.new_level == 6
    assert reward.level_up is True
    assert reward.skill_points_earned == 0
    assert reward.gold == 350


def test_sixty_xp_from_490() -> None:
    reward = compute_reward(_quest("medium", 60), _profile(xp=490), _effects(), False, _dt(2025, 1, 6))

    assert reward.new_total_xp == 550
    assert reward.new_level == 6
    assert reward.skill_points_earned == 0


def test_reaching_level_ten_awards_a_skill_point() -> None:
    reward = compute_reward(_quest("hard", 50), _profile(xp=880), _effects(), False, _dt(2025, 1, 6))

    assert reward.old_level == 9
    assert reward.new_level == 10
    assert reward.skill_points_earned == 1


def test_comeback_after_eight_days() -> None:
    now = _dt(2025, 1, 20)
    profile = _profile(last_quest_date=now - timedelta(days=8))

    reward = compute_reward(_quest("easy", 10), profile, _effects(), False, now)

    assert reward.comeback_bonus is True
    assert reward.comeback_bonus_xp == 20
    assert reward.xp == 30


def test_comeback_needs_seven_whole_days() -> None:
    now = _dt(2025, 1, 20, 10)
    assert is_comeback(now - timedelta(days=7), now) is True
    assert is_comeback(now - timedelta(days=6, hours=23), now) is False
    assert is_comeback(None, now) is False


def test_special_day_doubles_comeback_too() -> None:
    now = _dt(2025, 1, 20)
    profile = _profile(last_quest_date=now - timedelta(days=8))

    reward = compute_reward(_quest("easy", 10), profile, _effects(), True, now)

    # (10 + 20) * 2: doubling is applied after the comeback bonus.
    assert reward.xp == 60
    assert reward.double_friday is True


def test_equipment_multiplier_sums_slot_bonuses() -> None:
    items = [_item("weapon", 1.2), _item("armor", 1.1), _item("accessory", 1.05)]
    assert float(equipment_multiplier(items)) == 1.35
    assert float(equipment_multiplier([])) == 1.0


def test_equipment_bonus_floors_after_skills() -> None:
    profile = _profile(weapon=_item("weapon", 1.2))

    reward = compute_reward(_quest("easy", 10), profile, _effects(), False, _dt(2025, 1, 6))

    assert reward.xp == 12
    assert reward.equipment_bonus_xp == 2
    assert reward.gold == 50


def test_gold_ignores_multipliers_and_skills() -> None:
    profile = _profile(weapon=_item("weapon", 2.0), armor=_item("armor", 1.5))
    effects = _effects(["power_1", "power_2", "power_3"])

    reward = compute_reward(_quest("hard", 50), profile, effects, True, _dt(2025, 1, 6))

    assert reward.gold == 350


def test_skill_bonus_feeds_equipment_multiplier() -> None:
    profile = _profile(weapon=_item("weapon", 1.5))
    effects = _effects(["power_1", "power_2", "power_3"])

    reward = compute_reward(_quest("hard", 50), profile, effects, False, _dt(2025, 1, 6))

    # 50 * 1.30 = 65 skill-boosted, then * 1.5 = 97.5 -> 97
    assert reward.skill_xp == 65
    assert reward.skill_bonus_xp == 15
    assert reward.xp == 97
    assert reward.equipment_bonus_xp == 32
    assert reward.applied_skills == ("power_1", "power_2", "power_3")


def test_reward_is_deterministic_without_luck() -> None:
    profile = _profile(xp=240, weapon=_item("weapon", 1.1), current_streak=5)
    effects = _effects(["power_1", "power_4", "efficiency_1"])
    now = _dt(2025, 1, 6)

    first = compute_reward(_quest("easy", 10), profile, effects, False, now)
    second = compute_reward(_quest("easy", 10), profile, effects, False, now)

    assert first == second


def test_streak_rules() -> None:
    now = _dt(2025, 1, 10, 9)
    assert compute_streak(None, 0, now) == 1
    assert compute_streak(now - timedelta(hours=3), 4, now) == 5
    assert compute_streak(now - timedelta(days=1, hours=5), 4, now) == 5
    assert compute_streak(now - timedelta(days=2), 4, now) == 1
