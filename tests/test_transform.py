from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from habitquest.db import Database
from habitquest.errors import DownstreamUnavailable, InvalidInput, NotFound, RateLimited
from habitquest.quota_store import QuotaStore
from habitquest.rate_limiter import RateLimiter
from habitquest.tier_cache import TierCache, TierResolver
from habitquest.transform import TransformService, week_bounds


def _dt(y: int, m: int, d: int, h: int = 10, minute: int = 0) -> datetime:
    return datetime(y, m, d, h, minute, tzinfo=timezone.utc)


WEDNESDAY = _dt(2025, 1, 8)
ENTRY_TEXT = "Today I finally cleaned the garage after putting it off for weeks and it felt great."


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class _FakeTransformer:
    def __init__(self, reply: str = "  An epic tale.  ", fail: bool = False) -> None:
        self.reply = reply
        self.fail = fail
        self.calls: list[tuple[str, int]] = []

    def transform(self, prompt: str, max_tokens: int = 150) -> str:
        self.calls.append((prompt, max_tokens))
        if self.fail:
            raise DownstreamUnavailable("Story generation failed. Please try again.")
        return self.reply


def _service(
    tmp_path: Path,
    transformer: _FakeTransformer,
    premium: bool = False,
    now: datetime = WEDNESDAY,
) -> tuple[Database, TransformService, _Clock]:
    clock = _Clock(now)
    db = Database(tmp_path / "app.db")
    db.create_profile(
        "u1",
        now - timedelta(days=30),
        archetype="sage",
        is_premium=premium,
        subscription_status="active" if premium else "inactive",
    )
    limiter = RateLimiter(QuotaStore(db, clock=clock), TierResolver(db, TierCache(clock=clock)), clock=clock)
    return db, TransformService(db, limiter, transformer, clock=clock), clock


def test_week_bounds_start_monday() -> None:
    start, end = week_bounds(_dt(2025, 1, 12, 23, 59))
    assert start == _dt(2025, 1, 6, 0)
    assert end == _dt(2025, 1, 13, 0)


def test_transform_quest_stores_active_quest(tmp_path: Path) -> None:
    transformer = _FakeTransformer("  Brave the Sink of Sorrows.  ")
    db, service, _ = _service(tmp_path, transformer)

    quest = service.transform_quest("u1", "Wash <b>dishes</b>", "hard", story_thread="Forge of Resolve")

    assert quest.transformed_text == "Brave the Sink of Sorrows."
    assert quest.xp_value == 50
    assert quest.completed is False
    assert quest.story_thread == "Forge of Resolve"
    assert db.get_quest_for_actor(quest.id, "u1") == quest
    prompt, max_tokens = transformer.calls[0]
    assert "SAGE" in prompt
    assert "<b>" not in prompt
    assert max_tokens == 150


@pytest.mark.parametrize("text,difficulty", [("", "easy"), (None, "easy"), ("x" * 501, "easy"), ("Run", "epic")])
def test_transform_quest_validates_before_admission(tmp_path: Path, text: object, difficulty: object) -> None:
    transformer = _FakeTransformer()
    db, service, clock = _service(tmp_path, transformer)

    with pytest.raises(InvalidInput):
        service.transform_quest("u1", text, difficulty)

    assert transformer.calls == []
    assert service.rate_limiter.quota_store.usage("u1", "transform-quest", 24 * 60) == 0


def test_transform_failure_returns_original_text(tmp_path: Path) -> None:
    db, service, _ = _service(tmp_path, _FakeTransformer(fail=True))

    with pytest.raises(DownstreamUnavailable) as exc_info:
        service.transform_quest("u1", "Walk the dog", "easy")

    assert exc_info.value.details["transformed_text"] == "Walk the dog"
    assert exc_info.value.message == "Failed to transform quest"


def test_transform_quest_is_rate_limited(tmp_path: Path) -> None:
    transformer = _FakeTransformer()
    _, service, clock = _service(tmp_path, transformer)

    for _ in range(20):
        service.transform_quest("u1", "Walk the dog", "easy")
        clock.now += timedelta(minutes=1)

    with pytest.raises(RateLimited) as exc_info:
        service.transform_quest("u1", "Walk the dog", "easy")

    assert exc_info.value.result.limit == 20
    assert len(transformer.calls) == 20


def test_first_transform_creates_the_profile_before_admission(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    transformer = _FakeTransformer()
    db, service, _ = _service(tmp_path, transformer)
    assert db.get_profile("newbie") is None

    with caplog.at_level(logging.WARNING, logger="habitquest.tier_cache"):
        quest = service.transform_quest("newbie", "Water the plants", "easy")

    assert quest.user_id == "newbie"
    profile = db.get_profile("newbie")
    assert profile is not None
    assert profile.level == 1
    assert profile.gold == 0
    assert service.rate_limiter.quota_store.usage("newbie", "transform-quest", 24 * 60) == 1
    assert not [r for r in caplog.records if "found no profile" in r.getMessage()]


def test_weekly_summary_for_a_new_actor(tmp_path: Path) -> None:
    db, service, _ = _service(tmp_path, _FakeTransformer())

    body = service.weekly_summary("newbie")

    assert body["quests_completed"] == 0
    assert db.get_profile("newbie") is not None


def test_journal_basic_transform(tmp_path: Path) -> None:
    transformer = _FakeTransformer("The hero reclaimed the forgotten vault.")
    db, service, _ = _service(tmp_path, transformer)
    entry = db.add_journal_entry("u1", ENTRY_TEXT, WEDNESDAY, mood=4)

    body = service.transform_journal("u1", entry.id)

    assert body == {
        "success": True,
        "transformed_narrative": "The hero reclaimed the forgotten vault.",
        "transformation_type": "basic",
    }
    assert db.get_journal_entry(entry.id, "u1").transformed_narrative == body["transformed_narrative"]
    assert transformer.calls[0][1] == 300


def test_journal_premium_transform_is_deep(tmp_path: Path) -> None:
    transformer = _FakeTransformer()
    db, service, _ = _service(tmp_path, transformer, premium=True)
    older = db.add_journal_entry("u1", ENTRY_TEXT, WEDNESDAY - timedelta(days=1))
    db.set_journal_narrative(older.id, "u1", "Yesterday the sage rested by the fire.")
    entry = db.add_journal_entry("u1", ENTRY_TEXT, WEDNESDAY)

    body = service.transform_journal("u1", entry.id)

    assert body["transformation_type"] == "deep"
    prompt, max_tokens = transformer.calls[0]
    assert max_tokens == 500
    assert "RECENT REFLECTIONS" in prompt


def test_journal_entry_of_another_actor_is_not_found(tmp_path: Path) -> None:
    db, service, _ = _service(tmp_path, _FakeTransformer())
    db.create_profile("u2", WEDNESDAY)
    entry = db.add_journal_entry("u2", ENTRY_TEXT, WEDNESDAY)

    with pytest.raises(NotFound):
        service.transform_journal("u1", entry.id)


def test_journal_entry_too_short(tmp_path: Path) -> None:
    transformer = _FakeTransformer()
    db, service, _ = _service(tmp_path, transformer)
    entry = db.add_journal_entry("u1", "Short day.", WEDNESDAY)

    with pytest.raises(InvalidInput):
        service.transform_journal("u1", entry.id)

    assert transformer.calls == []


def test_weekly_summary_without_activity(tmp_path: Path) -> None:
    _, service, _ = _service(tmp_path, _FakeTransformer())

    body = service.weekly_summary("u1")

    assert body["quests_completed"] == 0
    assert body["journal_entries_count"] == 0


def test_free_weekly_summary_is_a_report(tmp_path: Path) -> None:
    transformer = _FakeTransformer()
    db, service, _ = _service(tmp_path, transformer)
    quest = db.insert_quest("u1", "Walk", "Patrol the Borderlands", "medium", 25, WEDNESDAY - timedelta(days=1))
    db.complete_quest_if_active(quest.id, "u1", WEDNESDAY - timedelta(hours=2))
    last_week = db.insert_quest("u1", "Read", "Study the Tomes", "hard", 50, WEDNESDAY - timedelta(days=9))
    db.complete_quest_if_active(last_week.id, "u1", WEDNESDAY - timedelta(days=8))

    summary = service.weekly_summary("u1")["summary"]

    assert summary["summary_type"] == "free"
    assert summary["quests_completed"] == 1
    assert summary["xp_gained"] == 25
    assert summary["week_start_date"] == "2025-01-06"
    assert summary["week_end_date"] == "2025-01-12"
    assert summary["summary_text"].startswith("This week you completed 1 quest and earned 25 XP!")
    assert "1. Patrol the Borderlands" in summary["summary_text"]
    assert transformer.calls == []


def test_premium_weekly_summary_is_a_chapter(tmp_path: Path) -> None:
    transformer = _FakeTransformer("Chapter Two: the sage returns.")
    db, service, _ = _service(tmp_path, transformer, premium=True)
    db.add_journal_entry("u1", ENTRY_TEXT, WEDNESDAY - timedelta(hours=3), mood=3)

    summary = service.weekly_summary("u1")["summary"]

    assert summary["summary_type"] == "premium"
    assert summary["summary_text"] == "Chapter Two: the sage returns."
    assert summary["quests_completed"] == 0
    assert "(No quests completed)" in transformer.calls[0][0]


def test_weekly_summary_is_limited_per_week(tmp_path: Path) -> None:
    _, service, clock = _service(tmp_path, _FakeTransformer())
    service.weekly_summary("u1")
    clock.now += timedelta(hours=2)

    with pytest.raises(RateLimited):
        service.weekly_summary("u1")
