from __future__ import annotations

from habitquest.db_repo import (
    BaseDatabase,
    EquipmentMixin,
    JournalMixin,
    LedgerMixin,
    ProfileMixin,
    QuestMixin,
    QuotaMixin,
    SkillMixin,
)


class Database(
    ProfileMixin,
    EquipmentMixin,
    QuestMixin,
    LedgerMixin,
    QuotaMixin,
    SkillMixin,
    JournalMixin,
    BaseDatabase,
):
    pass
