from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from focusquest.combat import spawn_enemy
from focusquest.db import Database
from focusquest.errors import InvalidRule, NotAuthenticated, PersistenceFailure, TaskNotFound
from focusquest.recurrence import Daily, EveryNDays, OneTime, Weekly
from focusquest.service import (
    archive_task,
    build_status_view,
    check_and_update_level,
    complete_task,
    create_task,
    ensure_battle,
    handle_defeat,
    run_daily_penalty,
    seed_key_for,
)

USER = 1


def _dt(y: int, m: int, d: int, h: int = 10, minute: int = 0) -> datetime:
    return datetime(y, m, d, h, minute, tzinfo=ZoneInfo("Europe/Oslo"))


def _utc(y: int, m: int, d: int) -> datetime:
    return datetime(y, m, d, tzinfo=timezone.utc)


def _new_task(db: Database, now: datetime, rule=None, difficulty: int = 1, title: str = "Read", **kwargs):
    return create_task(db, USER, title, difficulty, rule, today=now.date(), now=now, **kwargs)


class TestCreateTask:
    def test_initial_due_for_daily(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        task = _new_task(db, now, Daily())
        assert task.next_due == _utc(2024, 1, 10)
        assert task.active is True
        assert db.get_task(task.id).recurrence == Daily()

    def test_rejects_bad_input(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        with pytest.raises(InvalidRule):
            _new_task(db, now, Weekly())
        with pytest.raises(ValueError):
            _new_task(db, now, Daily(), title="   ")
        with pytest.raises(ValueError):
            _new_task(db, now, Daily(), difficulty=5)
        with pytest.raises(NotAuthenticated):
            create_task(db, None, "Read", 1, Daily(), today=now.date(), now=now)
        assert db.list_active_tasks(USER) == []


class TestCompleteTask:
    def test_rewards_and_reschedules(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        task = _new_task(db, now, Daily())

        outcome = complete_task(db, USER, task.id, now)

        assert outcome.failed_steps == []
        assert outcome.record.next_due == _utc(2024, 1, 11)
        assert outcome.record.archived is False
        assert outcome.record.completed_count == 1
        assert (outcome.xp_total, outcome.currency_total) == (10, 5)
        enemy = spawn_enemy(1, seed_key_for(USER))
        assert outcome.attack is not None
        assert outcome.attack.hp_before == enemy.max_hp
        assert outcome.attack.hp_after == enemy.max_hp - 8
        assert db.get_combat_state(USER).current_enemy_hp == enemy.max_hp - 8

    def test_every_n_days_from_today(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        task = _new_task(db, now, EveryNDays(interval=3))
        outcome = complete_task(db, USER, task.id, now)
        assert outcome.record.next_due == _utc(2024, 1, 13)

    def test_late_completion_anchors_on_today(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        task = _new_task(db, _dt(2024, 1, 5), Daily())
        outcome = complete_task(db, USER, task.id, _dt(2024, 1, 10))
        assert outcome.record.next_due == _utc(2024, 1, 11)

    def test_early_completion_anchors_on_due_date(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 15)  # Monday
        task = _new_task(db, now, Weekly(frozenset({3})))
        assert task.next_due == _utc(2024, 1, 17)
        outcome = complete_task(db, USER, task.id, now)
        assert outcome.record.next_due == _utc(2024, 1, 24)

    def test_one_time_task_is_archived(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        task = _new_task(db, now, OneTime())
        outcome = complete_task(db, USER, task.id, now)
        assert outcome.record.archived is True
        assert outcome.record.next_due is None
        assert db.list_active_tasks(USER) == []
        with pytest.raises(TaskNotFound):
            complete_task(db, USER, task.id, now)

    def test_count_cap_archives_on_last_completion(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        task = _new_task(db, now, Daily(max_occurrences=2))
        first = complete_task(db, USER, task.id, now)
        second = complete_task(db, USER, task.id, now)
        assert first.record.archived is False
        assert second.record.archived is True
        assert second.record.completed_count == 2
        assert db.get_task(task.id).active is False

    def test_foreign_and_missing_tasks(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        task = _new_task(db, now, Daily())
        with pytest.raises(TaskNotFound):
            complete_task(db, 2, task.id, now)
        with pytest.raises(TaskNotFound):
            complete_task(db, USER, 999, now)
        with pytest.raises(NotAuthenticated):
            complete_task(db, None, task.id, now)

    def test_combat_can_be_disabled(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        db.set_app_config({"feature.combat_enabled": False}, actor="test")
        now = _dt(2024, 1, 10)
        task = _new_task(db, now, Daily())
        outcome = complete_task(db, USER, task.id, now)
        assert outcome.attack is None
        assert outcome.xp_total == 10
        assert db.get_combat_state(USER) is None


class TestDefeat:
    def test_kill_advances_exactly_one_round(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        ensure_battle(db, USER, now)
        db.damage_enemy(USER, 1, lambda hp: 5, now)
        task = _new_task(db, now, Daily())

        outcome = complete_task(db, USER, task.id, now)

        defeated = spawn_enemy(1, seed_key_for(USER))
        gold, xp = defeated.drops
        assert outcome.attack.defeat is not None
        assert outcome.attack.defeat.advanced is True
        assert outcome.attack.defeat.claimed == defeated.drops
        state = db.get_combat_state(USER)
        assert state.round == 2
        assert state.enemies_defeated == 1
        assert state.current_enemy_hp == spawn_enemy(2, seed_key_for(USER)).max_hp
        profile = db.get_profile(USER)
        assert profile.currency == 5 + gold.amount
        assert profile.xp == 10 + xp.amount
        assert outcome.xp_total == profile.xp
        assert len(db.list_loot(USER)) == 2

    def test_rerun_for_handled_round_changes_nothing(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        ensure_battle(db, USER, now)
        db.damage_enemy(USER, 1, lambda hp: 0, now)
        first = handle_defeat(db, USER, 1, now)
        state = db.get_combat_state(USER)
        profile = db.get_profile(USER)

        again = handle_defeat(db, USER, 1, now)

        assert first.advanced is True
        assert again.advanced is False
        assert again.claimed == ()
        assert db.get_combat_state(USER) == state
        assert db.get_profile(USER) == profile

    def test_stuck_defeat_is_repaired_on_next_attack(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        ensure_battle(db, USER, now)
        db.damage_enemy(USER, 1, lambda hp: 0, now)
        task = _new_task(db, now, Daily())

        outcome = complete_task(db, USER, task.id, now)

        assert outcome.attack.repaired is not None
        assert outcome.attack.repaired.advanced is True
        next_enemy = spawn_enemy(2, seed_key_for(USER))
        assert outcome.attack.enemy == next_enemy
        assert outcome.attack.hp_after == next_enemy.max_hp - 8
        assert db.get_combat_state(USER).round == 2

    def test_failed_drop_is_paid_on_next_attack(self, tmp_path, monkeypatch) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        ensure_battle(db, USER, now)
        db.damage_enemy(USER, 1, lambda hp: 5, now)
        task = _new_task(db, now, Daily())
        real_claim = db.claim_drop

        def claim_without_gold(user_id, round_number, drop_index, drop, when):
            if drop.kind == "gold":
                raise sqlite3.OperationalError("database is locked")
            return real_claim(user_id, round_number, drop_index, drop, when)

        monkeypatch.setattr(db, "claim_drop", claim_without_gold)
        first = complete_task(db, USER, task.id, now)

        gold, xp = spawn_enemy(1, seed_key_for(USER)).drops
        assert first.failed_steps == ["drop:gold"]
        assert first.attack.defeat.advanced is True
        assert first.attack.defeat.claimed == (xp,)
        state = db.get_combat_state(USER)
        assert (state.round, state.drops_settled_round) == (2, 0)
        assert db.get_profile(USER).currency == 5

        monkeypatch.setattr(db, "claim_drop", real_claim)
        second = complete_task(db, USER, task.id, now)

        assert second.failed_steps == []
        assert second.attack.settled is not None
        assert second.attack.settled.claimed == (gold,)
        assert db.get_profile(USER).currency == 5 + 5 + gold.amount
        assert db.get_combat_state(USER).drops_settled_round == 1
        assert sorted((e.round, e.kind) for e in db.list_loot(USER)) == [(1, "gold"), (1, "xp")]

        third = complete_task(db, USER, task.id, now)
        assert third.attack.settled is None
        assert db.get_profile(USER).currency == 5 + 5 + 5 + gold.amount


def test_level_up_rescales_player_hp(tmp_path) -> None:
    db = Database(tmp_path / "app.db")
    now = _dt(2024, 1, 10)
    ensure_battle(db, USER, now)
    db.apply_daily_penalty(USER, date(2024, 1, 10), 50, now)
    db.add_xp(USER, 100, now)

    check = check_and_update_level(db, USER, now)

    assert (check.level, check.previous_level, check.leveled_up) == (2, 1, True)
    assert db.get_combat_state(USER).player_hp == 55
    assert check_and_update_level(db, USER, now).leveled_up is False


class TestDailyPenalty:
    def test_sums_only_overdue_active_tasks(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        _new_task(db, _dt(2024, 1, 8), Daily(), difficulty=2, title="Stretch")
        _new_task(db, _dt(2024, 1, 10), Daily(), difficulty=4, title="Due today")
        _new_task(db, _dt(2024, 1, 10), OneTime(), difficulty=3, title="Later", one_time_date=date(2024, 1, 20))
        done = _new_task(db, _dt(2024, 1, 7), OneTime(), difficulty=4, title="Done")
        archive_task(db, USER, done.id, _dt(2024, 1, 7))
        now = _dt(2024, 1, 10, 6)

        outcome = run_daily_penalty(db, USER, date(2024, 1, 10), now)

        assert outcome.applied is True
        assert outcome.damage == 12
        assert outcome.player_hp == 88
        assert [t.title for t in outcome.overdue] == ["Stretch"]

    def test_second_run_same_day_is_noop(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        _new_task(db, _dt(2024, 1, 8), Daily(), difficulty=2)
        now = _dt(2024, 1, 10, 6)
        first = run_daily_penalty(db, USER, date(2024, 1, 10), now)
        second = run_daily_penalty(db, USER, date(2024, 1, 10), now)
        third = run_daily_penalty(db, USER, date(2024, 1, 11), _dt(2024, 1, 11, 6))

        assert first.applied is True
        assert second.applied is False
        assert second.player_hp == 88
        assert db.get_combat_state(USER).last_penalty_date == date(2024, 1, 11)
        assert third.player_hp == 76

    def test_disabled_by_flag(self, tmp_path) -> None:
        db = Database(tmp_path / "app.db")
        db.set_app_config({"feature.penalty_enabled": False}, actor="test")
        _new_task(db, _dt(2024, 1, 8), Daily(), difficulty=2)
        outcome = run_daily_penalty(db, USER, date(2024, 1, 10), _dt(2024, 1, 10))
        assert outcome.applied is False
        assert db.get_combat_state(USER) is None

class TestFailurePolicy:
    def test_recording_failure_raises_persistence_failure(self, tmp_path, monkeypatch) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        task = _new_task(db, now, Daily())

        def locked(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(db, "complete_task", locked)
        with pytest.raises(PersistenceFailure):
            complete_task(db, USER, task.id, now)
        assert db.get_profile(USER) is None
        assert db.get_combat_state(USER) is None

    def test_failed_xp_award_is_reported_and_later_steps_run(self, tmp_path, monkeypatch, caplog) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        task = _new_task(db, now, Daily())

        def locked(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(db, "add_xp", locked)
        with caplog.at_level(logging.ERROR, logger="focusquest.service"):
            outcome = complete_task(db, USER, task.id, now)

        assert outcome.failed_steps == ["xp"]
        assert outcome.xp_total is None
        assert outcome.currency_total == 5
        assert outcome.record.next_due == _utc(2024, 1, 11)
        assert outcome.attack is not None
        assert outcome.attack.damage == 8
        assert db.get_profile(USER).xp == 0
        assert any("xp award failed" in r.getMessage() for r in caplog.records)

    def test_failed_currency_award_still_defeats_enemy(self, tmp_path, monkeypatch) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        ensure_battle(db, USER, now)
        db.damage_enemy(USER, 1, lambda hp: 5, now)
        task = _new_task(db, now, Daily())

        def locked(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(db, "add_currency", locked)
        outcome = complete_task(db, USER, task.id, now)

        gold, xp = spawn_enemy(1, seed_key_for(USER)).drops
        assert outcome.failed_steps == ["currency"]
        assert outcome.currency_total is None
        assert outcome.attack.defeat.advanced is True
        assert db.get_combat_state(USER).round == 2
        profile = db.get_profile(USER)
        assert profile.currency == gold.amount
        assert profile.xp == 10 + xp.amount

    def test_failed_round_advance_is_repaired_on_next_attack(self, tmp_path, monkeypatch) -> None:
        db = Database(tmp_path / "app.db")
        now = _dt(2024, 1, 10)
        ensure_battle(db, USER, now)
        db.damage_enemy(USER, 1, lambda hp: 5, now)
        task = _new_task(db, now, Daily())
        real_advance = db.advance_round

        def locked(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(db, "advance_round", locked)
        first = complete_task(db, USER, task.id, now)

        assert first.failed_steps == ["advance_round"]
        assert len(first.attack.defeat.claimed) == 2
        state = db.get_combat_state(USER)
        assert (state.round, state.current_enemy_hp) == (1, 0)

        monkeypatch.setattr(db, "advance_round", real_advance)
        second = complete_task(db, USER, task.id, now)

        assert second.failed_steps == []
        assert second.attack.repaired.advanced is True
        assert second.attack.repaired.claimed == ()
        assert db.get_combat_state(USER).round == 2



def test_archive_task_checks_owner(tmp_path) -> None:
    db = Database(tmp_path / "app.db")
    now = _dt(2024, 1, 10)
    task = _new_task(db, now, Daily())
    with pytest.raises(TaskNotFound):
        archive_task(db, 2, task.id, now)
    archived = archive_task(db, USER, task.id, now)
    assert (archived.id, archived.active) == (task.id, False)
    with pytest.raises(TaskNotFound):
        archive_task(db, USER, task.id, now)


def test_status_view_counts(tmp_path) -> None:
    db = Database(tmp_path / "app.db")
    _new_task(db, _dt(2024, 1, 8), Daily())
    _new_task(db, _dt(2024, 1, 10), Daily())
    _new_task(db, _dt(2024, 1, 10), OneTime(), one_time_date=date(2024, 2, 1))
    now = _dt(2024, 1, 10)

    view = build_status_view(db, USER, now.date(), now)

    assert (view.active_tasks, view.due_today, view.overdue) == (3, 1, 1)
    assert view.title == "Novice"
    assert view.enemy == spawn_enemy(1, seed_key_for(USER))
    assert view.combat.player_hp == view.stats.max_hp == 100
