from __future__ import annotations

import sqlite3
from contextlib import AbstractContextManager
from datetime import date, datetime
from typing import Callable, Protocol

from focusquest.combat import Drop
from focusquest.db_converters import _row_to_combat, _row_to_loot
from focusquest.db_constants import LOOT_KINDS
from focusquest.db_models import CombatState, LootEntry
from focusquest.leveling import rescale_hp

_COMBAT_COLUMNS = (
    "user_id, round, player_hp, current_enemy_hp, enemies_defeated, drops_settled_round, last_penalty_date, updated_at"
)


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...
    def _immediate(self) -> AbstractContextManager[sqlite3.Connection]: ...


class BattleMixin:
    def ensure_combat_state(
        self: DbProtocol,
        user_id: int,
        enemy_hp: int,
        player_hp: int,
        now: datetime,
    ) -> CombatState:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO combat_states(user_id, round, player_hp, current_enemy_hp, enemies_defeated, updated_at)
                VALUES (?, 1, ?, ?, 0, ?)
                ON CONFLICT(user_id) DO NOTHING
                """,
                (user_id, player_hp, enemy_hp, now.isoformat()),
            )
            row = conn.execute(
                f"SELECT {_COMBAT_COLUMNS} FROM combat_states WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        assert row is not None
        return _row_to_combat(row)

    def get_combat_state(self: DbProtocol, user_id: int) -> CombatState | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COMBAT_COLUMNS} FROM combat_states WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return _row_to_combat(row) if row else None

    def damage_enemy(
        self: DbProtocol,
        user_id: int,
        round_number: int,
        apply: Callable[[int], int],
        now: datetime,
    ) -> tuple[int, int] | None:
        """Apply ``apply(stored_hp) -> new_hp`` to the enemy of ``round_number``.

        Returns ``(hp_before, hp_after)``, or None if the stored round moved on.
        """
        with self._immediate() as conn:
            row = conn.execute(
                "SELECT round, current_enemy_hp FROM combat_states WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            if row is None or int(row["round"]) != round_number:
                return None
            before = int(row["current_enemy_hp"])
            after = max(0, min(before, apply(before)))
            conn.execute(
                "UPDATE combat_states SET current_enemy_hp = ?, updated_at = ? WHERE user_id = ? AND round = ?",
                (after, now.isoformat(), user_id, round_number),
            )
        return before, after

    def claim_drop(
        self: DbProtocol,
        user_id: int,
        round_number: int,
        drop_index: int,
        drop: Drop,
        now: datetime,
    ) -> bool:
        """Log a drop and pay it out once; a repeated claim for the same round is a no-op."""
        if drop.kind not in LOOT_KINDS:
            raise ValueError(f"Unknown drop kind: {drop.kind}")
        stamp = now.isoformat()
        with self._immediate() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO loot_log(user_id, round, drop_index, kind, amount, name, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, round_number, drop_index, drop.kind, drop.amount, drop.name, stamp),
            )
            if cur.rowcount == 0:
                return False
            if drop.kind in ("gold", "xp"):
                conn.execute(
                    """
                    INSERT INTO progression_profiles(user_id, xp, level, currency, updated_at)
                    VALUES (?, 0, 1, 0, ?)
                    ON CONFLICT(user_id) DO NOTHING
                    """,
                    (user_id, stamp),
                )
                column = "currency" if drop.kind == "gold" else "xp"
                conn.execute(
                    f"UPDATE progression_profiles SET {column} = {column} + ?, updated_at = ? WHERE user_id = ?",
                    (drop.amount, stamp, user_id),
                )
        return True

    def advance_round(self: DbProtocol, user_id: int, from_round: int, new_enemy_hp: int, now: datetime) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE combat_states
                SET round = round + 1,
                    enemies_defeated = enemies_defeated + 1,
                    current_enemy_hp = ?,
                    updated_at = ?
                WHERE user_id = ? AND round = ? AND current_enemy_hp = 0
                """,
                (new_enemy_hp, now.isoformat(), user_id, from_round),
            )
        return cur.rowcount > 0

    def mark_drops_settled(self: DbProtocol, user_id: int, round_number: int, now: datetime) -> bool:
        """Move the settled watermark to ``round_number`` if every earlier round is settled."""
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE combat_states
                SET drops_settled_round = ?, updated_at = ?
                WHERE user_id = ? AND drops_settled_round = ?
                """,
                (round_number, now.isoformat(), user_id, round_number - 1),
            )
        return cur.rowcount > 0

    def rescale_player_hp(self: DbProtocol, user_id: int, old_max: int, new_max: int, now: datetime) -> int | None:
        with self._immediate() as conn:
            row = conn.execute("SELECT player_hp FROM combat_states WHERE user_id = ?", (user_id,)).fetchone()
            if row is None:
                return None
            new_hp = rescale_hp(int(row["player_hp"]), old_max, new_max)
            conn.execute(
                "UPDATE combat_states SET player_hp = ?, updated_at = ? WHERE user_id = ?",
                (new_hp, now.isoformat(), user_id),
            )
        return new_hp

    def apply_daily_penalty(self: DbProtocol, user_id: int, day: date, damage: int, now: datetime) -> int | None:
        """Subtract ``damage`` once per ``day``; returns the new HP or None if already applied."""
        day_key = day.isoformat()
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE combat_states
                SET player_hp = MAX(0, player_hp - ?),
                    last_penalty_date = ?,
                    updated_at = ?
                WHERE user_id = ? AND (last_penalty_date IS NULL OR last_penalty_date < ?)
                """,
                (max(0, damage), day_key, now.isoformat(), user_id, day_key),
            )
            if cur.rowcount == 0:
                return None
            row = conn.execute("SELECT player_hp FROM combat_states WHERE user_id = ?", (user_id,)).fetchone()
        return int(row["player_hp"])

    def list_loot(self: DbProtocol, user_id: int, limit: int = 20) -> list[LootEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM loot_log
                WHERE user_id = ?
                ORDER BY round DESC, drop_index ASC
                LIMIT ?
                """,
                (user_id, max(1, limit)),
            ).fetchall()
        return [_row_to_loot(r) for r in rows]
