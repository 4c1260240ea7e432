from __future__ import annotations

GOLD_REWARDS: dict[str, int] = {
    "easy": 50,
    "medium": 150,
    "hard": 350,
}
DEFAULT_GOLD_REWARD = GOLD_REWARDS["easy"]

QUEST_XP_VALUES: dict[str, int] = {
    "easy": 10,
    "medium": 25,
    "hard": 50,
}

XP_PER_LEVEL = 100
LEVELS_PER_SKILL_POINT = 5

COMEBACK_DAYS = 7
COMEBACK_BONUS_XP = 20

QUEST_REWARD_TRANSACTION = "quest_reward"
PURCHASE_TRANSACTION = "purchase"

RECENT_EVENTS_CAP = 10
NPCS_CAP = 20
CONFLICTS_CAP = 10
COMPLETED_THREADS_CAP = 5
THREAD_PROGRESS_STEP = 15
COMPLETED_EVENT_TEXT_LIMIT = 50

JOURNAL_MIN_CHARS = 50
JOURNAL_MAX_CHARS = 5000
QUEST_TEXT_MAX_CHARS = 500
