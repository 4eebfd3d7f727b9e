from __future__ import annotations

from focusquest.db_models import CombatState, CompletionRecord, LootEntry, ProgressionProfile, Task
from focusquest.db_repo import (
    BaseDatabase,
    BattleMixin,
    InsufficientCurrency,
    ProfileMixin,
    SystemMixin,
    TaskMixin,
    UserMixin,
)

__all__ = [
    "Database",
    "CombatState",
    "CompletionRecord",
    "InsufficientCurrency",
    "LootEntry",
    "ProgressionProfile",
    "Task",
]


class Database(BaseDatabase, UserMixin, ProfileMixin, TaskMixin, BattleMixin, SystemMixin):
    pass
