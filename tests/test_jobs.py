from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from focusquest.config import Settings
from focusquest.db import Database
from focusquest.jobs_runner import collect_penalties, run_job
from focusquest.recurrence import Daily
from focusquest.service import create_task


def _dt(y: int, m: int, d: int, h: int = 10, minute: int = 0) -> datetime:
    return datetime(y, m, d, h, minute, tzinfo=ZoneInfo("Europe/Oslo"))


def _settings(path: Path) -> Settings:
    return Settings(
        telegram_bot_token="",
        database_path=path,
        tz="Europe/Oslo",
        admin_panel_token=None,
        admin_host="127.0.0.1",
        admin_port=8080,
    )


def test_collect_penalties_only_for_users_with_overdue_tasks(tmp_path) -> None:
    db = Database(tmp_path / "app.db")
    start = _dt(2024, 1, 8)
    db.upsert_user_profile(user_id=1, chat_id=100, seen_at=start)
    db.upsert_user_profile(user_id=2, chat_id=200, seen_at=start)
    create_task(db, 1, "Stretch", 3, Daily(), today=start.date(), now=start)
    create_task(db, 2, "Read", 1, Daily(), today=date(2024, 1, 10), now=_dt(2024, 1, 10))
    now = _dt(2024, 1, 10, 6)

    notices = collect_penalties(db, now.date(), now)

    assert [(n.user_id, n.chat_id) for n in notices] == [(1, 100)]
    assert "18 damage" in notices[0].text
    assert "82/100" in notices[0].text
    assert collect_penalties(db, now.date(), now) == []


def test_unknown_job_exits(tmp_path) -> None:
    db = Database(tmp_path / "app.db")
    with pytest.raises(SystemExit):
        run_job("sunday_summary", db, _settings(tmp_path / "app.db"))


def test_disabled_job_is_skipped(tmp_path) -> None:
    db = Database(tmp_path / "app.db")
    db.set_app_config({"job.daily_penalty_enabled": False}, actor="test")
    start = _dt(2024, 1, 8)
    db.upsert_user_profile(user_id=1, chat_id=100, seen_at=start)
    create_task(db, 1, "Stretch", 3, Daily(), today=start.date(), now=start)

    run_job("daily_penalty", db, _settings(tmp_path / "app.db"))

    assert db.get_combat_state(1) is None
