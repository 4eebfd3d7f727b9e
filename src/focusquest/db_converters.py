from __future__ import annotations

import json
import sqlite3
from datetime import date, datetime

from focusquest.db_models import CombatState, LootEntry, ProgressionProfile, Task
from focusquest.recurrence import rule_from_json
from focusquest.time_utils import parse_instant


def _row_to_profile(row: sqlite3.Row) -> ProgressionProfile:
    return ProgressionProfile(
        user_id=int(row["user_id"]),
        xp=int(row["xp"]),
        level=int(row["level"]),
        currency=int(row["currency"]),
    )


def _row_to_combat(row: sqlite3.Row) -> CombatState:
    return CombatState(
        user_id=int(row["user_id"]),
        round=int(row["round"]),
        player_hp=int(row["player_hp"]),
        current_enemy_hp=int(row["current_enemy_hp"]),
        enemies_defeated=int(row["enemies_defeated"]),
        drops_settled_round=int(row["drops_settled_round"]),
        last_penalty_date=date.fromisoformat(row["last_penalty_date"]) if row["last_penalty_date"] else None,
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _row_to_task(row: sqlite3.Row) -> Task:
    raw_rule = row["recurrence_json"]
    return Task(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        title=str(row["title"]),
        difficulty=int(row["difficulty"]),
        recurrence=rule_from_json(json.loads(raw_rule)) if raw_rule else None,
        next_due=parse_instant(row["next_due"]),
        active=bool(row["active"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        archived_at=datetime.fromisoformat(row["archived_at"]) if row["archived_at"] else None,
    )


def _row_to_loot(row: sqlite3.Row) -> LootEntry:
    return LootEntry(
        user_id=int(row["user_id"]),
        round=int(row["round"]),
        drop_index=int(row["drop_index"]),
        kind=str(row["kind"]),
        amount=int(row["amount"]),
        name=row["name"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )
