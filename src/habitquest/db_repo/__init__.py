from .base import BaseDatabase
from .profiles import ProfileMixin
from .quests import QuestMixin
from .ledger import LedgerMixin
from .quota import QuotaMixin
from .skills import SkillMixin
from .journal import JournalMixin
from .equipment import EquipmentMixin

__all__ = [
    "BaseDatabase",
    "ProfileMixin",
    "QuestMixin",
    "LedgerMixin",
    "QuotaMixin",
    "SkillMixin",
    "JournalMixin",
    "EquipmentMixin",
]
