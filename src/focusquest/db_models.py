from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from focusquest.recurrence import RecurrenceRule


@dataclass(frozen=True)
class ProgressionProfile:
    user_id: int
    xp: int
    level: int
    currency: int


@dataclass(frozen=True)
class CombatState:
    user_id: int
    round: int
    player_hp: int
    current_enemy_hp: int
    enemies_defeated: int
    drops_settled_round: int
    last_penalty_date: date | None
    updated_at: datetime


@dataclass(frozen=True)
class Task:
    id: int
    user_id: int
    title: str
    difficulty: int
    recurrence: RecurrenceRule | None
    next_due: datetime | None
    active: bool
    created_at: datetime
    archived_at: datetime | None


@dataclass(frozen=True)
class CompletionRecord:
    task: Task
    completed_count: int
    next_due: datetime | None
    archived: bool


@dataclass(frozen=True)
class LootEntry:
    user_id: int
    round: int
    drop_index: int
    kind: str
    amount: int
    name: str | None
    created_at: datetime
