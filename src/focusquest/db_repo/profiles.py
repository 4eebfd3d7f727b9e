from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Protocol

from focusquest.db_converters import _row_to_profile
from focusquest.db_models import ProgressionProfile

_ENSURE_PROFILE_SQL = """
    INSERT INTO progression_profiles(user_id, xp, level, currency, updated_at)
    VALUES (?, 0, 1, 0, ?)
    ON CONFLICT(user_id) DO NOTHING
"""


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...


class InsufficientCurrency(ValueError):
    pass


class ProfileMixin:
    def ensure_profile(self: DbProtocol, user_id: int, now: datetime | None = None) -> ProgressionProfile:
        stamp = (now or datetime.now()).isoformat()
        with self._connect() as conn:
            conn.execute(_ENSURE_PROFILE_SQL, (user_id, stamp))
            row = conn.execute(
                "SELECT user_id, xp, level, currency FROM progression_profiles WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        assert row is not None
        return _row_to_profile(row)

    def get_profile(self: DbProtocol, user_id: int) -> ProgressionProfile | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT user_id, xp, level, currency FROM progression_profiles WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        return _row_to_profile(row) if row else None

    def add_xp(self: DbProtocol, user_id: int, amount: int, now: datetime | None = None) -> int:
        stamp = (now or datetime.now()).isoformat()
        with self._connect() as conn:
            conn.execute(_ENSURE_PROFILE_SQL, (user_id, stamp))
            conn.execute(
                "UPDATE progression_profiles SET xp = MAX(0, xp + ?), updated_at = ? WHERE user_id = ?",
                (int(amount), stamp, user_id),
            )
            row = conn.execute("SELECT xp FROM progression_profiles WHERE user_id = ?", (user_id,)).fetchone()
        return int(row["xp"])

    def add_currency(self: DbProtocol, user_id: int, amount: int, now: datetime | None = None) -> int:
        stamp = (now or datetime.now()).isoformat()
        with self._connect() as conn:
            conn.execute(_ENSURE_PROFILE_SQL, (user_id, stamp))
            cur = conn.execute(
                """
                UPDATE progression_profiles
                SET currency = currency + ?, updated_at = ?
                WHERE user_id = ? AND currency + ? >= 0
                """,
                (int(amount), stamp, user_id, int(amount)),
            )
            if cur.rowcount == 0:
                raise InsufficientCurrency(f"Not enough gold to spend {-int(amount)}")
            row = conn.execute("SELECT currency FROM progression_profiles WHERE user_id = ?", (user_id,)).fetchone()
        return int(row["currency"])

    def raise_level(self: DbProtocol, user_id: int, level: int, now: datetime | None = None) -> bool:
        stamp = (now or datetime.now()).isoformat()
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE progression_profiles SET level = ?, updated_at = ? WHERE user_id = ? AND level < ?",
                (level, stamp, user_id, level),
            )
        return cur.rowcount > 0
