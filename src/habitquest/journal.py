from __future__ import annotations

import logging
import re
from typing import Any

from habitquest.db import Database
from habitquest.db_constants import JOURNAL_MAX_CHARS, JOURNAL_MIN_CHARS
from habitquest.db_models import JournalEntry
from habitquest.errors import InvalidInput
from habitquest.time_utils import Clock, now_utc

logger = logging.getLogger(__name__)

MOOD_RANGE = (1, 5)
_ANGLE_BRACKETS = re.compile(r"[<>]")


def clean_entry_text(text: str) -> str:
    return _ANGLE_BRACKETS.sub("", text).strip()


class JournalService:
    def __init__(self, db: Database, clock: Clock = now_utc) -> None:
        self.db = db
        self.clock = clock

    def create_entry(self, actor_id: str, entry_text: Any, mood: Any = None) -> JournalEntry:
        """Store a raw journal entry so it can later be transformed."""
        if not isinstance(entry_text, str) or not entry_text.strip():
            raise InvalidInput("Invalid entry text", details={"field": "entry_text"})
        text = clean_entry_text(entry_text)
        if len(text) < JOURNAL_MIN_CHARS:
            raise InvalidInput(f"Entry must be at least {JOURNAL_MIN_CHARS} characters")
        if len(text) > JOURNAL_MAX_CHARS:
            raise InvalidInput(f"Entry must be less than {JOURNAL_MAX_CHARS} characters")
        if mood is not None:
            low, high = MOOD_RANGE
            if isinstance(mood, bool) or not isinstance(mood, int) or not low <= mood <= high:
                raise InvalidInput(f"Mood must be between {low} and {high}", details={"field": "mood"})

        now = self.clock()
        self.db.get_or_create_profile(actor_id, now)
        entry = self.db.add_journal_entry(actor_id, text, now, mood=mood)
        logger.info(
            "Journal entry created user_id=%s entry_id=%s words=%s",
            actor_id,
            entry.id,
            len(text.split()),
        )
        return entry
