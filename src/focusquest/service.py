from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date, datetime

from focusquest.combat import Drop, Enemy, apply_damage, penalty_total, spawn_enemy
from focusquest.db import CombatState, CompletionRecord, Database, LootEntry, ProgressionProfile, Task
from focusquest.errors import NotAuthenticated, PersistenceFailure, TaskNotFound
from focusquest.leveling import (
    DIFFICULTY_REWARDS,
    LevelInfo,
    PlayerStats,
    TaskReward,
    get_title,
    level_from_xp,
    level_info,
    player_stats,
    reward_for_difficulty,
)
from focusquest.recurrence import OneTime, RecurrenceRule, compute_next_due, initial_due, is_due_on_date, validate_rule
from focusquest.time_utils import utc_midnight

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LevelCheck:
    level: int
    previous_level: int
    leveled_up: bool


@dataclass(frozen=True)
class DefeatOutcome:
    enemy: Enemy
    claimed: tuple[Drop, ...]
    advanced: bool
    next_enemy: Enemy
    failed_steps: tuple[str, ...] = ()


@dataclass(frozen=True)
class DropSettlement:
    claimed: tuple[Drop, ...]
    failed_steps: tuple[str, ...] = ()


@dataclass(frozen=True)
class AttackOutcome:
    enemy: Enemy
    damage: int
    hp_before: int
    hp_after: int
    defeat: DefeatOutcome | None = None
    repaired: DefeatOutcome | None = None
    settled: DropSettlement | None = None


@dataclass(frozen=True)
class CompletionOutcome:
    record: CompletionRecord
    reward: TaskReward
    xp_total: int | None
    currency_total: int | None
    level: LevelCheck | None
    attack: AttackOutcome | None
    failed_steps: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PenaltyOutcome:
    applied: bool
    damage: int
    player_hp: int | None
    overdue: list[Task]


@dataclass(frozen=True)
class StatusView:
    profile: ProgressionProfile
    level: LevelInfo
    title: str
    stats: PlayerStats
    combat: CombatState
    enemy: Enemy
    active_tasks: int
    due_today: int
    overdue: int
    recent_loot: list[LootEntry]


def seed_key_for(user_id: int) -> str:
    return str(user_id)


def _require_user(user_id: int | None) -> int:
    if user_id is None:
        raise NotAuthenticated("No active user")
    return int(user_id)


def create_task(
    db: Database,
    user_id: int | None,
    title: str,
    difficulty: int,
    rule: RecurrenceRule | None,
    today: date,
    now: datetime,
    one_time_date: date | None = None,
) -> Task:
    uid = _require_user(user_id)
    clean_title = title.strip()
    if not clean_title:
        raise ValueError("Task title is required")
    if difficulty not in DIFFICULTY_REWARDS:
        raise ValueError("Difficulty must be between 1 and 4")
    validate_rule(rule)
    next_due = initial_due(rule, today, one_time_date=one_time_date)
    task = db.add_task(uid, clean_title, difficulty, rule, next_due, now)
    logger.info("task created user_id=%s task_id=%s next_due=%s", uid, task.id, next_due)
    return task


def archive_task(db: Database, user_id: int | None, task_id: int, now: datetime) -> Task:
    uid = _require_user(user_id)
    if not db.archive_task(task_id, uid, now):
        raise TaskNotFound(f"Task #{task_id} not found")
    task = db.get_task(task_id)
    assert task is not None
    return task


def resolve_next_due(task: Task, completed_count: int, today: date) -> datetime | None:
    """Next due date after a completion.

    The anchor is the task's current due date, moved up to today when the task
    is overdue so a late completion does not schedule an occurrence in the past.
    """
    if task.recurrence is None or isinstance(task.recurrence, OneTime):
        return None
    today_start = utc_midnight(today)
    anchor = today_start if task.next_due is None else max(task.next_due, today_start)
    return compute_next_due(task.recurrence, anchor, completed_count)


def ensure_battle(db: Database, user_id: int, now: datetime, tuning: dict[str, int] | None = None) -> CombatState:
    cfg = tuning or db.get_progression_tuning()
    profile = db.ensure_profile(user_id, now)
    stats = player_stats(profile.level, tuning=cfg)
    first_enemy = spawn_enemy(1, seed_key_for(user_id))
    return db.ensure_combat_state(user_id, first_enemy.max_hp, stats.max_hp, now)


def check_and_update_level(
    db: Database,
    user_id: int,
    now: datetime,
    tuning: dict[str, int] | None = None,
) -> LevelCheck:
    cfg = tuning or db.get_progression_tuning()
    profile = db.ensure_profile(user_id, now)
    computed = level_from_xp(profile.xp, tuning=cfg)
    if computed <= profile.level or not db.raise_level(user_id, computed, now):
        return LevelCheck(level=profile.level, previous_level=profile.level, leveled_up=False)

    old_max = player_stats(profile.level, tuning=cfg).max_hp
    new_max = player_stats(computed, tuning=cfg).max_hp
    if old_max != new_max:
        db.rescale_player_hp(user_id, old_max, new_max, now)
    logger.info("level up user_id=%s level=%s previous=%s", user_id, computed, profile.level)
    return LevelCheck(level=computed, previous_level=profile.level, leveled_up=True)


def _claim_drops(
    db: Database,
    user_id: int,
    round_number: int,
    enemy: Enemy,
    now: datetime,
) -> tuple[list[Drop], list[str]]:
    claimed: list[Drop] = []
    failed: list[str] = []
    for index, drop in enumerate(enemy.drops):
        try:
            if db.claim_drop(user_id, round_number, index, drop, now):
                claimed.append(drop)
        except sqlite3.Error:
            logger.exception("drop claim failed user_id=%s round=%s drop_index=%s", user_id, round_number, index)
            failed.append(f"drop:{drop.kind}")
    if not failed:
        try:
            db.mark_drops_settled(user_id, round_number, now)
        except sqlite3.Error:
            logger.exception("settle mark failed user_id=%s round=%s", user_id, round_number)
    return claimed, failed


def handle_defeat(db: Database, user_id: int, round_number: int, now: datetime) -> DefeatOutcome:
    """Pay out the drops of ``round_number`` and move on to the next enemy.

    Every step is keyed by the round, so running this again for a round that
    was already handled changes nothing. Drops that fail to pay out here are
    picked up by ``settle_pending_drops`` on a later attack.
    """
    seed_key = seed_key_for(user_id)
    enemy = spawn_enemy(round_number, seed_key)
    next_enemy = spawn_enemy(round_number + 1, seed_key)
    claimed, failed = _claim_drops(db, user_id, round_number, enemy, now)

    advanced = False
    try:
        advanced = db.advance_round(user_id, round_number, next_enemy.max_hp, now)
    except sqlite3.Error:
        logger.exception("round advance failed user_id=%s round=%s", user_id, round_number)
        failed.append("advance_round")

    if advanced:
        logger.info(
            "enemy defeated user_id=%s round=%s enemy=%s claimed=%s",
            user_id,
            round_number,
            enemy.name,
            len(claimed),
        )
    return DefeatOutcome(
        enemy=enemy,
        claimed=tuple(claimed),
        advanced=advanced,
        next_enemy=next_enemy,
        failed_steps=tuple(failed),
    )


def settle_pending_drops(db: Database, user_id: int, state: CombatState, now: datetime) -> DropSettlement:
    """Retry drop payouts for defeated rounds past the settled watermark, oldest first."""
    claimed: list[Drop] = []
    failed: list[str] = []
    seed_key = seed_key_for(user_id)
    for round_number in range(state.drops_settled_round + 1, state.round):
        got, missed = _claim_drops(db, user_id, round_number, spawn_enemy(round_number, seed_key), now)
        claimed.extend(got)
        if missed:
            failed.extend(missed)
            break
    if claimed:
        logger.info("pending drops settled user_id=%s count=%s", user_id, len(claimed))
    return DropSettlement(claimed=tuple(claimed), failed_steps=tuple(failed))


def attack_enemy(
    db: Database,
    user_id: int,
    raw_damage: int,
    now: datetime,
    tuning: dict[str, int] | None = None,
) -> AttackOutcome:
    cfg = tuning or db.get_progression_tuning()
    state = ensure_battle(db, user_id, now, tuning=cfg)

    repaired: DefeatOutcome | None = None
    if state.current_enemy_hp == 0:
        repaired = handle_defeat(db, user_id, state.round, now)
        state = db.get_combat_state(user_id) or state

    settled: DropSettlement | None = None
    if state.drops_settled_round < state.round - 1:
        settled = settle_pending_drops(db, user_id, state, now)

    profile = db.ensure_profile(user_id, now)
    stats = player_stats(profile.level, tuning=cfg)
    enemy = spawn_enemy(state.round, seed_key_for(user_id))

    result = db.damage_enemy(
        user_id,
        state.round,
        lambda hp: apply_damage(hp, raw_damage, stats.attack, cfg["base_attack"]),
        now,
    )
    if result is None:
        logger.warning("attack skipped, round moved user_id=%s round=%s", user_id, state.round)
        return AttackOutcome(
            enemy=enemy,
            damage=0,
            hp_before=state.current_enemy_hp,
            hp_after=state.current_enemy_hp,
            repaired=repaired,
            settled=settled,
        )

    before, after = result
    defeat = None
    if before > 0 and after == 0:
        defeat = handle_defeat(db, user_id, state.round, now)
    return AttackOutcome(
        enemy=enemy,
        damage=before - after,
        hp_before=before,
        hp_after=after,
        defeat=defeat,
        repaired=repaired,
        settled=settled,
    )


def _merge_level_checks(first: LevelCheck | None, second: LevelCheck | None) -> LevelCheck | None:
    if first is None:
        return second
    if second is None:
        return first
    return LevelCheck(
        level=max(first.level, second.level),
        previous_level=first.previous_level,
        leveled_up=first.leveled_up or second.leveled_up,
    )


def complete_task(
    db: Database,
    user_id: int | None,
    task_id: int,
    now: datetime,
    today: date | None = None,
) -> CompletionOutcome:
    uid = _require_user(user_id)
    day = today or now.date()

    try:
        tuning = db.get_progression_tuning()
        combat_enabled = db.is_feature_enabled("combat")
        record = db.complete_task(task_id, uid, now, lambda task, count: resolve_next_due(task, count, day))
    except sqlite3.Error as exc:
        logger.exception("completion failed user_id=%s task_id=%s", uid, task_id)
        raise PersistenceFailure("Could not record the completion") from exc
    if record is None:
        raise TaskNotFound(f"Task #{task_id} not found")

    reward = reward_for_difficulty(record.task.difficulty)
    failed: list[str] = []

    xp_total: int | None = None
    try:
        xp_total = db.add_xp(uid, reward.xp, now)
    except sqlite3.Error:
        logger.exception("xp award failed user_id=%s task_id=%s", uid, task_id)
        failed.append("xp")

    currency_total: int | None = None
    try:
        currency_total = db.add_currency(uid, reward.currency, now)
    except sqlite3.Error:
        logger.exception("currency award failed user_id=%s task_id=%s", uid, task_id)
        failed.append("currency")

    level: LevelCheck | None = None
    try:
        level = check_and_update_level(db, uid, now, tuning=tuning)
    except sqlite3.Error:
        logger.exception("level sync failed user_id=%s", uid)
        failed.append("level")

    attack: AttackOutcome | None = None
    if combat_enabled:
        try:
            attack = attack_enemy(db, uid, reward.damage, now, tuning=tuning)
        except sqlite3.Error:
            logger.exception("attack failed user_id=%s task_id=%s", uid, task_id)
            failed.append("combat")

    if attack is not None:
        for defeat in (attack.repaired, attack.defeat):
            if defeat is not None:
                failed.extend(defeat.failed_steps)
        if attack.settled is not None:
            failed.extend(attack.settled.failed_steps)
        if attack.defeat is not None or attack.repaired is not None or attack.settled is not None:
            try:
                level = _merge_level_checks(level, check_and_update_level(db, uid, now, tuning=tuning))
                if xp_total is not None:
                    xp_total = db.ensure_profile(uid, now).xp
            except sqlite3.Error:
                logger.exception("level sync after loot failed user_id=%s", uid)
                failed.append("level")

    logger.info(
        "task completed user_id=%s task_id=%s count=%s archived=%s failed=%s",
        uid,
        task_id,
        record.completed_count,
        record.archived,
        ",".join(failed) or "-",
    )
    return CompletionOutcome(
        record=record,
        reward=reward,
        xp_total=xp_total,
        currency_total=currency_total,
        level=level,
        attack=attack,
        failed_steps=failed,
    )


def run_daily_penalty(db: Database, user_id: int | None, today: date, now: datetime) -> PenaltyOutcome:
    """Charge overdue tasks against the player's HP, at most once per day."""
    uid = _require_user(user_id)
    if not (db.is_feature_enabled("combat") and db.is_feature_enabled("penalty")):
        return PenaltyOutcome(applied=False, damage=0, player_hp=None, overdue=[])

    state = ensure_battle(db, uid, now)
    overdue = db.list_overdue_tasks(uid, utc_midnight(today))
    damage = penalty_total(reward_for_difficulty(t.difficulty).damage for t in overdue)
    new_hp = db.apply_daily_penalty(uid, today, damage, now)
    if new_hp is None:
        return PenaltyOutcome(applied=False, damage=0, player_hp=state.player_hp, overdue=overdue)

    logger.info("daily penalty user_id=%s date=%s overdue=%s damage=%s hp=%s", uid, today, len(overdue), damage, new_hp)
    return PenaltyOutcome(applied=True, damage=damage, player_hp=new_hp, overdue=overdue)


def build_status_view(db: Database, user_id: int | None, today: date, now: datetime) -> StatusView:
    uid = _require_user(user_id)
    tuning = db.get_progression_tuning()
    combat = ensure_battle(db, uid, now, tuning=tuning)
    profile = db.ensure_profile(uid, now)
    info = level_info(profile.xp, tuning=tuning)
    tasks = db.list_active_tasks(uid)
    today_start = utc_midnight(today)
    return StatusView(
        profile=profile,
        level=info,
        title=get_title(profile.level),
        stats=player_stats(profile.level, tuning=tuning),
        combat=combat,
        enemy=spawn_enemy(combat.round, seed_key_for(uid)),
        active_tasks=len(tasks),
        due_today=sum(1 for t in tasks if is_due_on_date(t.next_due, today)),
        overdue=sum(1 for t in tasks if t.next_due is not None and t.next_due < today_start),
        recent_loot=db.list_loot(uid, limit=5),
    )
