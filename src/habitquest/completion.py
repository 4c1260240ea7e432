from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from habitquest.db import Database
from habitquest.db_constants import QUEST_REWARD_TRANSACTION
from habitquest.db_models import LedgerResult, Quest
from habitquest.errors import AlreadyCompleted, DownstreamUnavailable, InvalidInput, NotFound, RateLimited
from habitquest.narrative import NarrativeState, StoryUpdate, advance_story
from habitquest.rate_limiter import RateLimiter
from habitquest.rewards import RewardBreakdown, compute_reward, compute_streak
from habitquest.skill_effects import SkillEffects
from habitquest.time_utils import Clock, now_utc

logger = logging.getLogger(__name__)

COMPLETE_QUEST_ENDPOINT = "complete-quest"


@dataclass(frozen=True)
class CompletionResult:
    quest_id: str
    reward: RewardBreakdown
    story: StoryUpdate
    xp: int
    level: int
    gold: int
    current_streak: int
    longest_streak: int
    skill_points: int
    gold_awarded: bool

    def to_response(self) -> dict[str, Any]:
        state = self.story.state
        return {
            "success": True,
            "rewards": self.reward.to_dict(),
            "profile": {
                "xp": self.xp,
                "level": self.level,
                "gold": self.gold,
                "current_streak": self.current_streak,
                "skill_points": self.skill_points,
            },
            "story": {
                "current_thread": state.current_thread,
                "thread_completion": state.thread_completion,
                "story_completed": self.story.story_completed,
                "new_story_started": self.story.new_story_started,
            },
            "skill_effects": {
                "applied": list(self.reward.applied_skills),
                "lucky_proc": self.reward.lucky_proc,
                "double_friday": self.reward.double_friday,
            },
        }


class QuestCompletionService:
    """Completes a quest and issues its reward at most once.

    The conditional Active -> Completed update is the only gate to the
    reward path. After it the profile write must succeed; the gold credit
    may fail and is only logged.
    """

    def __init__(
        self,
        db: Database,
        skill_effects: SkillEffects,
        rate_limiter: RateLimiter | None = None,
        clock: Clock = now_utc,
    ) -> None:
        self.db = db
        self.skill_effects = skill_effects
        self.rate_limiter = rate_limiter
        self.clock = clock

    def complete(self, actor_id: str, quest_id: Any) -> CompletionResult:
        if not isinstance(quest_id, str) or not quest_id.strip():
            raise InvalidInput("Invalid quest ID", details={"field": "quest_id"})

        if self.rate_limiter is not None:
            limited = self.rate_limiter.check_rate_limit(actor_id, COMPLETE_QUEST_ENDPOINT)
            if not limited.allowed:
                raise RateLimited(limited, COMPLETE_QUEST_ENDPOINT)

        quest = self.db.get_quest_for_actor(quest_id, actor_id)
        if quest is None:
            raise NotFound("Quest not found")
        if quest.completed:
            raise AlreadyCompleted("Quest already completed")

        now = self.clock()
        if not self._transition(quest, actor_id, now):
            logger.warning(
                "Quest completion race lost user_id=%s quest_id=%s at=%s",
                actor_id,
                quest_id,
                now.isoformat(),
            )
            raise AlreadyCompleted("Quest already completed")

        profile = self.db.get_profile(actor_id)
        if profile is None:
            raise NotFound("Profile not found")

        special_day = self.skill_effects.is_special_day_active(actor_id, now)
        reward = compute_reward(quest, profile, self.skill_effects, special_day, now)
        story = advance_story(NarrativeState.from_dict(profile.story_state), quest, now)
        streak = compute_streak(profile.last_quest_date, profile.current_streak, now)
        longest = max(profile.longest_streak, streak)

        self.db.update_profile_progress(
            user_id=actor_id,
            xp_delta=reward.xp,
            current_streak=streak,
            longest_streak=longest,
            last_quest_date=now,
            story_state=story.state.to_dict(),
            skill_points_delta=reward.skill_points_earned,
            now=now,
        )

        ledger = self._award_gold(actor_id, quest, reward)
        gold_awarded = ledger is not None and ledger.success
        gold_balance = ledger.new_balance if ledger is not None and ledger.success else profile.gold + reward.gold

        logger.info(
            "Quest completed user_id=%s quest_id=%s difficulty=%s base_xp=%s xp=%s gold=%s new_level=%s",
            actor_id,
            quest_id,
            quest.difficulty,
            reward.base_xp,
            reward.xp,
            reward.gold,
            reward.new_level,
        )

        return CompletionResult(
            quest_id=quest_id,
            reward=reward,
            story=story,
            xp=reward.new_total_xp,
            level=reward.new_level,
            gold=gold_balance,
            current_streak=streak,
            longest_streak=longest,
            skill_points=profile.skill_points + reward.skill_points_earned,
            gold_awarded=gold_awarded,
        )

    def _transition(self, quest: Quest, actor_id: str, now: datetime) -> bool:
        try:
            return self.db.complete_quest_if_active(quest.id, actor_id, now)
        except sqlite3.Error as exc:
            logger.warning("Quest transition failed user_id=%s quest_id=%s: %s", actor_id, quest.id, exc)

        # Whether the write landed is unknown; only the stored status can say.
        try:
            current = self.db.get_quest_for_actor(quest.id, actor_id)
        except sqlite3.Error as exc:
            raise DownstreamUnavailable("Quest store unavailable. Please try again.") from exc
        if current is not None and not current.completed:
            raise DownstreamUnavailable("Quest store unavailable. Please try again.")
        return False

    def _award_gold(self, actor_id: str, quest: Quest, reward: RewardBreakdown) -> LedgerResult | None:
        metadata = {
            "quest_difficulty": quest.difficulty,
            "quest_text": quest.display_text,
            "xp_earned": reward.xp,
        }
        try:
            result = self.db.adjust_currency(
                actor_id,
                reward.gold,
                QUEST_REWARD_TRANSACTION,
                quest.id,
                metadata,
                self.clock(),
            )
        except sqlite3.Error as exc:
            logger.error(
                "Failed to award gold user_id=%s quest_id=%s amount=%s: %s",
                actor_id,
                quest.id,
                reward.gold,
                exc,
            )
            return None
        if not result.success:
            logger.error(
                "Gold award rejected user_id=%s quest_id=%s amount=%s balance=%s",
                actor_id,
                quest.id,
                reward.gold,
                result.new_balance,
            )
        return result
