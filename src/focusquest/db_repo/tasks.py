from __future__ import annotations

import json
import sqlite3
from contextlib import AbstractContextManager
from datetime import datetime, timezone
from typing import Callable, Protocol

from focusquest.db_converters import _row_to_task
from focusquest.db_models import CompletionRecord, Task
from focusquest.recurrence import RecurrenceRule, rule_to_json
from focusquest.time_utils import format_instant


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...
    def _immediate(self) -> AbstractContextManager[sqlite3.Connection]: ...


def _due_key(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_instant(value.astimezone(timezone.utc))


class TaskMixin:
    def add_task(
        self: DbProtocol,
        user_id: int,
        title: str,
        difficulty: int,
        recurrence: RecurrenceRule | None,
        next_due: datetime | None,
        created_at: datetime,
    ) -> Task:
        rule_json = json.dumps(rule_to_json(recurrence)) if recurrence is not None else None
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO tasks(user_id, title, difficulty, recurrence_json, next_due, active, created_at)
                VALUES (?, ?, ?, ?, ?, 1, ?)
                """,
                (user_id, title, difficulty, rule_json, _due_key(next_due), created_at.isoformat()),
            )
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (cursor.lastrowid,)).fetchone()
        assert row is not None
        return _row_to_task(row)

    def get_task(self: DbProtocol, task_id: int) -> Task | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(row) if row else None

    def list_active_tasks(self: DbProtocol, user_id: int) -> list[Task]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM tasks
                WHERE user_id = ? AND active = 1
                ORDER BY next_due IS NULL, next_due ASC, id ASC
                """,
                (user_id,),
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    def list_overdue_tasks(self: DbProtocol, user_id: int, before: datetime) -> list[Task]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM tasks
                WHERE user_id = ? AND active = 1 AND next_due IS NOT NULL AND next_due < ?
                ORDER BY next_due ASC, id ASC
                """,
                (user_id, _due_key(before)),
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    def complete_task(
        self: DbProtocol,
        task_id: int,
        user_id: int,
        completed_at: datetime,
        resolve_next_due: Callable[[Task, int], datetime | None],
    ) -> CompletionRecord | None:
        """Append a completion and reschedule or archive the task in one transaction.

        ``resolve_next_due`` receives the task and the completion count including
        this one. Returns None when the task is unknown, foreign or archived.
        """
        stamp = completed_at.isoformat()
        with self._immediate() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE id = ? AND user_id = ? AND active = 1",
                (task_id, user_id),
            ).fetchone()
            if row is None:
                return None
            task = _row_to_task(row)
            conn.execute(
                "INSERT INTO task_completions(task_id, user_id, completed_at) VALUES (?, ?, ?)",
                (task_id, user_id, stamp),
            )
            count_row = conn.execute(
                "SELECT COUNT(*) AS total FROM task_completions WHERE task_id = ?",
                (task_id,),
            ).fetchone()
            completed_count = int(count_row["total"])
            next_due = resolve_next_due(task, completed_count)
            if next_due is None:
                conn.execute(
                    "UPDATE tasks SET active = 0, next_due = NULL, archived_at = ? WHERE id = ?",
                    (stamp, task_id),
                )
            else:
                conn.execute(
                    "UPDATE tasks SET next_due = ? WHERE id = ?",
                    (_due_key(next_due), task_id),
                )
            updated = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        assert updated is not None
        return CompletionRecord(
            task=_row_to_task(updated),
            completed_count=completed_count,
            next_due=next_due,
            archived=next_due is None,
        )

    def archive_task(self: DbProtocol, task_id: int, user_id: int, archived_at: datetime) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE tasks SET active = 0, next_due = NULL, archived_at = ?
                WHERE id = ? AND user_id = ? AND active = 1
                """,
                (archived_at.isoformat(), task_id, user_id),
            )
        return cur.rowcount > 0
