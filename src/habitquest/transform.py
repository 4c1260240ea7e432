from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from habitquest.db import Database
from habitquest.db_constants import JOURNAL_MAX_CHARS, JOURNAL_MIN_CHARS, QUEST_TEXT_MAX_CHARS, QUEST_XP_VALUES
from habitquest.db_models import DIFFICULTIES, Quest
from habitquest.errors import DownstreamUnavailable, InvalidInput, NotFound, RateLimited
from habitquest.narrative import NarrativeState
from habitquest.prompts import (
    build_journal_prompt,
    build_quest_prompt,
    build_weekly_chapter_prompt,
    build_weekly_report,
)
from habitquest.rate_limiter import RateLimiter
from habitquest.time_utils import Clock, now_utc

logger = logging.getLogger(__name__)

QUEST_MAX_TOKENS = 150
JOURNAL_MAX_TOKENS_DEEP = 500
JOURNAL_MAX_TOKENS_BASIC = 300
WEEKLY_MAX_TOKENS = 500


class Transformer(Protocol):
    def transform(self, prompt: str, max_tokens: int = 150) -> str: ...


def week_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Monday 00:00 UTC of the week containing ``now`` and the next Monday."""
    day = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    start = day - timedelta(days=day.weekday())
    return start, start + timedelta(days=7)


class TransformService:
    """LLM-backed endpoints. Every call is admitted by the rate limiter first."""

    def __init__(
        self,
        db: Database,
        rate_limiter: RateLimiter,
        transformer: Transformer,
        clock: Clock = now_utc,
    ) -> None:
        self.db = db
        self.rate_limiter = rate_limiter
        self.transformer = transformer
        self.clock = clock

    def _admit(self, actor_id: str, endpoint: str) -> None:
        result = self.rate_limiter.check_rate_limit(actor_id, endpoint)
        if not result.allowed:
            logger.warning(
                "Rate limit exceeded user_id=%s endpoint=%s current=%s limit=%s reset_at=%s",
                actor_id,
                endpoint,
                result.current,
                result.limit,
                result.reset_at.isoformat(),
            )
            raise RateLimited(result, endpoint)

    def transform_quest(
        self,
        actor_id: str,
        quest_text: Any,
        difficulty: Any,
        story_thread: str | None = None,
        narrative_impact: str | None = None,
    ) -> Quest:
        if not isinstance(quest_text, str) or not quest_text.strip():
            raise InvalidInput("Invalid quest text", details={"field": "quest_text"})
        if len(quest_text) > QUEST_TEXT_MAX_CHARS:
            raise InvalidInput(f"Quest text too long (max {QUEST_TEXT_MAX_CHARS} characters)")
        if difficulty not in DIFFICULTIES:
            raise InvalidInput("Invalid difficulty", details={"field": "difficulty"})

        profile = self.db.get_or_create_profile(actor_id, self.clock())
        self._admit(actor_id, "transform-quest")

        prompt = build_quest_prompt(quest_text, profile.archetype, difficulty)
        try:
            transformed = self.transformer.transform(prompt, max_tokens=QUEST_MAX_TOKENS)
        except DownstreamUnavailable as exc:
            logger.error("Quest transformation failed user_id=%s: %s", actor_id, exc)
            raise DownstreamUnavailable(
                "Failed to transform quest",
                details={"transformed_text": quest_text},
            ) from exc

        return self.db.insert_quest(
            user_id=actor_id,
            original_text=quest_text,
            transformed_text=transformed.strip(),
            difficulty=difficulty,
            xp_value=QUEST_XP_VALUES[difficulty],
            created_at=self.clock(),
            story_thread=story_thread,
            narrative_impact=narrative_impact,
        )

    def transform_journal(self, actor_id: str, entry_id: Any) -> dict[str, Any]:
        if not isinstance(entry_id, str) or not entry_id.strip():
            raise InvalidInput("Invalid entry ID", details={"field": "entry_id"})

        profile = self.db.get_or_create_profile(actor_id, self.clock())
        self._admit(actor_id, "transform-journal")

        entry = self.db.get_journal_entry(entry_id, actor_id)
        if entry is None:
            raise NotFound("Entry not found or access denied")
        if len(entry.entry_text) < JOURNAL_MIN_CHARS:
            raise InvalidInput(f"Entry must be at least {JOURNAL_MIN_CHARS} characters")
        if len(entry.entry_text) > JOURNAL_MAX_CHARS:
            raise InvalidInput(f"Entry text too long (max {JOURNAL_MAX_CHARS} characters)")

        premium = self.rate_limiter.tiers.is_premium(actor_id)
        recent = self.db.list_recent_narratives(actor_id) if premium else []
        prompt = build_journal_prompt(entry.entry_text, profile.archetype, premium, recent)

        try:
            narrative = self.transformer.transform(
                prompt,
                max_tokens=JOURNAL_MAX_TOKENS_DEEP if premium else JOURNAL_MAX_TOKENS_BASIC,
            )
        except DownstreamUnavailable as exc:
            logger.error("Journal transformation failed user_id=%s entry_id=%s: %s", actor_id, entry_id, exc)
            raise DownstreamUnavailable(
                "Failed to transform journal entry. Your entry has been saved without transformation."
            ) from exc

        narrative = narrative.strip()
        self.db.set_journal_narrative(entry_id, actor_id, narrative)
        transformation_type = "deep" if premium else "basic"
        logger.info(
            "Journal entry transformed user_id=%s entry_id=%s type=%s words=%s",
            actor_id,
            entry_id,
            transformation_type,
            len(narrative.split()),
        )
        return {
            "success": True,
            "transformed_narrative": narrative,
            "transformation_type": transformation_type,
        }

    def weekly_summary(self, actor_id: str) -> dict[str, Any]:
        profile = self.db.get_or_create_profile(actor_id, self.clock())
        self._admit(actor_id, "weekly-summary")

        start, end = week_bounds(self.clock())
        quests = self.db.list_completed_quests_between(actor_id, start, end)
        entries = self.db.list_journal_entries_between(actor_id, start, end)
        if not quests and not entries:
            return {
                "message": "No completed quests or journal entries this week yet",
                "quests_completed": 0,
                "journal_entries_count": 0,
            }

        premium = self.rate_limiter.tiers.is_premium(actor_id)
        if premium:
            story = NarrativeState.from_dict(profile.story_state)
            prompt = build_weekly_chapter_prompt(
                profile.archetype,
                quests,
                entries,
                profile.level,
                profile.current_streak,
                story.recent_events[0] if story.recent_events else None,
            )
            try:
                text = self.transformer.transform(prompt, max_tokens=WEEKLY_MAX_TOKENS).strip()
            except DownstreamUnavailable as exc:
                logger.error("Weekly chapter generation failed user_id=%s: %s", actor_id, exc)
                raise DownstreamUnavailable("Failed to generate weekly summary") from exc
        else:
            text = build_weekly_report(quests, entries)

        return {
            "summary": {
                "summary_type": "premium" if premium else "free",
                "summary_text": text,
                "week_start_date": start.date().isoformat(),
                "week_end_date": (end - timedelta(days=1)).date().isoformat(),
                "quests_completed": len(quests),
                "xp_gained": sum(q.xp_value for q in quests),
            }
        }
