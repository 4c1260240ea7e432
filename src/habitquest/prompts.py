from __future__ import annotations

from habitquest.db_models import JournalEntry, Quest

DEFAULT_ARCHETYPE = "warrior"

ARCHETYPE_STYLES = {
    "warrior": "Transform this into a heroic battle or conquest. Use bold, action-oriented language.",
    "builder": "Transform this into a construction or creation project. Use engineering and crafting language.",
    "shadow": "Transform this into a stealth mission or cunning strategy. Use mysterious, strategic language.",
    "sage": "Transform this into a quest for knowledge or wisdom. Use mystical, intellectual language.",
    "seeker": "Transform this into an exploration or discovery adventure. Use curious, adventurous language.",
}

ARCHETYPE_VOICES = {
    "warrior": "determined, courageous, action-oriented - frames struggles as battles to overcome",
    "builder": "pragmatic, constructive, steady - frames challenges as projects to build through",
    "shadow": "introspective, strategic, deep - frames emotions as inner landscapes to navigate",
    "sage": "wise, reflective, philosophical - frames experiences as lessons and growth",
    "seeker": "curious, adventurous, open - frames life as an ongoing journey of discovery",
}

JOURNAL_DEEP_WORDS = 250
JOURNAL_BASIC_WORDS = 100


def normalize_archetype(archetype: str | None) -> str:
    value = (archetype or "").strip().lower()
    return value if value in ARCHETYPE_STYLES else DEFAULT_ARCHETYPE


def sanitize_user_text(text: str) -> str:
    return text.replace("<", "").replace(">", "").strip()


def build_quest_prompt(quest_text: str, archetype: str | None, difficulty: str) -> str:
    arch = normalize_archetype(archetype)
    return (
        "You are a quest generator for an RPG game.\n\n"
        f"Archetype: {arch.upper()}\n"
        f"Style: {ARCHETYPE_STYLES[arch]}\n"
        f"Difficulty: {difficulty}\n\n"
        f'Original task: "{sanitize_user_text(quest_text)}"\n\n'
        "Transform this boring task into an epic RPG quest. Keep it to 1-2 sentences. "
        "Make it exciting and match the archetype style.\n\n"
        "Quest:"
    )


def build_journal_prompt(
    entry_text: str,
    archetype: str | None,
    premium: bool,
    recent: list[JournalEntry] | None = None,
) -> str:
    arch = normalize_archetype(archetype)
    depth = "deep" if premium else "basic"
    max_words = JOURNAL_DEEP_WORDS if premium else JOURNAL_BASIC_WORDS

    context = ""
    if premium and recent:
        lines = [
            f"- {(e.transformed_narrative or '')[:100]}... (mood: {e.mood or 'neutral'})"
            for e in recent
        ]
        context = (
            "\nRECENT REFLECTIONS (for continuity):\n"
            + "\n".join(lines)
            + "\nCreate subtle continuity with these recent reflections if appropriate.\n"
        )

    if premium:
        mode = (
            "DEEP MODE: Include rich detail, multiple metaphor layers, archetype-specific wisdom. "
            "Extract specific quest-like suggestions from their reflection."
        )
    else:
        mode = f"BASIC MODE: Keep it concise but impactful ({max_words} words max)."

    return (
        "You are transforming a user's personal journal entry into an epic narrative that fits their "
        f"{arch.upper()} character in an ongoing RPG story.\n\n"
        f"TRANSFORMATION TYPE: {depth}\n"
        f"MAX WORDS: {max_words}\n"
        f"ARCHETYPE VOICE: {ARCHETYPE_VOICES[arch]}\n"
        f"{context}\n"
        f'JOURNAL ENTRY:\n"{sanitize_user_text(entry_text)}"\n\n'
        f"Transform this into a {depth} narrative ({max_words} words max) that treats their real emotions "
        "as heroic inner struggles or victories, stays emotionally authentic and validating, and ends with "
        "forward momentum.\n\n"
        f"{mode}\n\n"
        "Write ONLY the narrative transformation. No preamble."
    )


def _pluralize(count: int, one: str, many: str) -> str:
    return one if count == 1 else many


def average_mood(entries: list[JournalEntry]) -> float | None:
    moods = [e.mood for e in entries if e.mood is not None]
    if not moods:
        return None
    return round(sum(moods) / len(moods), 1)


def build_weekly_report(quests: list[Quest], entries: list[JournalEntry]) -> str:
    """Plain progress report for free-tier users."""
    total_xp = sum(q.xp_value for q in quests)
    count = len(quests)
    lines = [f"This week you completed {count} {_pluralize(count, 'quest', 'quests')} and earned {total_xp} XP!"]
    if entries:
        lines[0] += f" You also wrote {len(entries)} journal {_pluralize(len(entries), 'entry', 'entries')}."

    top = quests[:3]
    if top:
        lines.append("")
        lines.append("Top quests:")
        lines.extend(f"{i}. {q.display_text}" for i, q in enumerate(top, start=1))

    hard = sum(1 for q in quests if q.difficulty == "hard")
    closing = ""
    if hard:
        closing += f"You conquered {hard} hard {_pluralize(hard, 'quest', 'quests')} - impressive! "
    mood = average_mood(entries)
    if mood is not None:
        closing += f"Your average mood was {mood}/5. "
    lines.append("")
    lines.append(closing + "Keep up the great work!")
    return "\n".join(lines)


def build_weekly_chapter_prompt(
    archetype: str | None,
    quests: list[Quest],
    entries: list[JournalEntry],
    level: int,
    current_streak: int,
    last_event: str | None,
) -> str:
    arch = normalize_archetype(archetype)
    quest_list = "\n".join(f"- {q.display_text} ({q.difficulty})" for q in quests[:10]) or "(No quests completed)"
    reflections = "\n".join(f"- {e.transformed_narrative}" for e in entries if e.transformed_narrative)
    mood = average_mood(entries)
    by_difficulty = {d: sum(1 for q in quests if q.difficulty == d) for d in ("easy", "medium", "hard")}

    parts = [
        f"You are writing this week's chapter of a {arch}'s personal epic journey in an RPG-style productivity adventure.",
        "",
        "PREVIOUS CHAPTER ENDING:",
        f'"{last_event or "Your journey began in the realm of forgotten tasks..."}"',
        "",
        "THIS WEEK'S QUESTS:",
        quest_list,
        "",
    ]
    if reflections:
        parts += ["INNER REFLECTIONS (Journal Entries):", reflections, ""]
    parts += [
        "STATS THIS WEEK:",
        f"- Quests Completed: {len(quests)}",
        f"- Journal Entries: {len(entries)}" + (f"\n- Average Mood: {mood}/5" if mood is not None else ""),
        f"- XP Gained: {sum(q.xp_value for q in quests)}",
        f"- Current Level: {level}",
        f"- Current Streak: {current_streak} days",
        f"- Easy: {by_difficulty['easy']}, Medium: {by_difficulty['medium']}, Hard: {by_difficulty['hard']}",
        "",
        "Write a 250-300 word fantasy story chapter that opens with a one sentence recap, weaves the quests "
        "and reflections into one narrative, and ends with a hint about next week's challenges.",
        "",
        "Write the chapter now:",
    ]
    return "\n".join(parts)
