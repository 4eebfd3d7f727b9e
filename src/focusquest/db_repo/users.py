from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any, Protocol


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...


class UserMixin:
    def upsert_user_profile(self: DbProtocol, user_id: int, chat_id: int, seen_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO user_profiles(user_id, chat_id, last_seen_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    chat_id=excluded.chat_id,
                    last_seen_at=excluded.last_seen_at
                """,
                (user_id, chat_id, seen_at.isoformat()),
            )

    def get_all_user_profiles(self: DbProtocol) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT user_id, chat_id, last_seen_at
                FROM user_profiles
                ORDER BY user_id
                """
            ).fetchall()
        return [dict(row) for row in rows]
