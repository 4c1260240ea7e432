from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any

from habitquest.db_constants import (
    COMPLETED_EVENT_TEXT_LIMIT,
    COMPLETED_THREADS_CAP,
    CONFLICTS_CAP,
    NPCS_CAP,
    RECENT_EVENTS_CAP,
    THREAD_PROGRESS_STEP,
)

if TYPE_CHECKING:
    from habitquest.db_models import Quest

_NAME = r"([A-Z][\w'-]*(?:\s+(?:of\s+|the\s+)?[A-Z][\w'-]*)*)"
_NPC_PATTERN = re.compile(r"\b(?i:met|encountered|aided|helped|fought)\s+(?:(?i:the|a|an)\s+)?" + _NAME)
_CONFLICT_PATTERN = re.compile(
    r"\b(?i:defeat\w*|destroy\w*|weaken\w*|against|battle\w*|fight\w*)\s+(?:(?i:the|a|an)\s+)?" + _NAME
)


@dataclass(frozen=True)
class CompletedThread:
    name: str
    completed_at: str
    final_event: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "completed_at": self.completed_at, "final_event": self.final_event}


@dataclass(frozen=True)
class NarrativeState:
    current_thread: str | None = None
    thread_completion: int = 0
    recent_events: tuple[str, ...] = ()
    npcs_met: tuple[str, ...] = ()
    ongoing_conflicts: tuple[str, ...] = ()
    completed_threads: tuple[CompletedThread, ...] = ()

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> NarrativeState:
        if not raw:
            return cls()
        completed: list[CompletedThread] = []
        for item in raw.get("completed_threads") or []:
            if isinstance(item, dict) and item.get("name"):
                completed.append(
                    CompletedThread(
                        name=str(item["name"]),
                        completed_at=str(item.get("completed_at") or ""),
                        final_event=str(item.get("final_event") or ""),
                    )
                )
        completion = raw.get("thread_completion") or 0
        return cls(
            current_thread=raw.get("current_thread") or None,
            thread_completion=min(100, max(0, int(completion))),
            recent_events=tuple(str(e) for e in raw.get("recent_events") or [])[:RECENT_EVENTS_CAP],
            npcs_met=tuple(str(n) for n in raw.get("npcs_met") or [])[:NPCS_CAP],
            ongoing_conflicts=tuple(str(c) for c in raw.get("ongoing_conflicts") or [])[:CONFLICTS_CAP],
            completed_threads=tuple(completed[-COMPLETED_THREADS_CAP:]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_thread": self.current_thread,
            "thread_completion": self.thread_completion,
            "recent_events": list(self.recent_events),
            "npcs_met": list(self.npcs_met),
            "ongoing_conflicts": list(self.ongoing_conflicts),
            "completed_threads": [t.to_dict() for t in self.completed_threads],
        }


@dataclass(frozen=True)
class NarrativeEntities:
    npcs: tuple[str, ...]
    conflicts: tuple[str, ...]


@dataclass(frozen=True)
class StoryUpdate:
    state: NarrativeState
    story_completed: bool = False
    new_story_started: bool = False


def extract_narrative_entities(text: str | None) -> NarrativeEntities:
    """Best-effort scan for capitalized names after a few trigger verbs.

    Misses and odd matches are expected; callers treat the result as flavor.
    """
    if not text:
        return NarrativeEntities(npcs=(), conflicts=())
    npcs = tuple(dict.fromkeys(m.group(1).strip() for m in _NPC_PATTERN.finditer(text)))
    conflicts = tuple(dict.fromkeys(m.group(1).strip() for m in _CONFLICT_PATTERN.finditer(text)))
    return NarrativeEntities(npcs=npcs, conflicts=conflicts)


def _push_event(events: tuple[str, ...], line: str) -> tuple[str, ...]:
    return ((line,) + events)[:RECENT_EVENTS_CAP]


def _add_capped(items: tuple[str, ...], new: tuple[str, ...], cap: int) -> tuple[str, ...]:
    out = list(items)
    for name in new:
        if name in out or len(out) >= cap:
            continue
        out.append(name)
    return tuple(out)


def advance_story(state: NarrativeState, quest: Quest, now: datetime) -> StoryUpdate:
    story_thread = quest.story_thread
    narrative_impact = quest.narrative_impact
    events = _push_event(state.recent_events, f"Completed: {quest.display_text[:COMPLETED_EVENT_TEXT_LIMIT]}")

    entities = extract_narrative_entities(narrative_impact)
    state = replace(
        state,
        recent_events=events,
        npcs_met=_add_capped(state.npcs_met, entities.npcs, NPCS_CAP),
        ongoing_conflicts=_add_capped(state.ongoing_conflicts, entities.conflicts, CONFLICTS_CAP),
    )

    if not story_thread or not narrative_impact:
        return StoryUpdate(state=state)

    if story_thread == state.current_thread:
        completion = min(100, state.thread_completion + THREAD_PROGRESS_STEP)
        events = _push_event(state.recent_events, narrative_impact)
        if completion < 100:
            return StoryUpdate(state=replace(state, thread_completion=completion, recent_events=events))

        archived = state.completed_threads + (
            CompletedThread(name=story_thread, completed_at=now.isoformat(), final_event=narrative_impact),
        )
        return StoryUpdate(
            state=replace(
                state,
                current_thread=None,
                thread_completion=0,
                ongoing_conflicts=(),
                completed_threads=archived[-COMPLETED_THREADS_CAP:],
                recent_events=_push_event(events, f"📖 STORY COMPLETED: {story_thread}"),
            ),
            story_completed=True,
        )

    if state.current_thread is None or state.thread_completion == 0:
        return StoryUpdate(
            state=replace(
                state,
                current_thread=story_thread,
                thread_completion=THREAD_PROGRESS_STEP,
                recent_events=_push_event(state.recent_events, f"📖 NEW STORY: {story_thread}"),
            ),
            new_story_started=True,
        )

    # Another thread is in progress; this quest is a side event.
    return StoryUpdate(state=state)
