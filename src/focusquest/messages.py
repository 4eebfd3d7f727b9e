from __future__ import annotations

from datetime import date

from focusquest.combat import Drop, Enemy
from focusquest.db import Task
from focusquest.leveling import reward_for_difficulty
from focusquest.recurrence import describe_rule
from focusquest.service import AttackOutcome, CompletionOutcome, DefeatOutcome, PenaltyOutcome, StatusView


def _bar(ratio: float, width: int = 20) -> str:
    filled = max(0, min(width, int(round(ratio * width))))
    return "█" * filled + "░" * (width - filled)


def _hp_line(label: str, current: int, maximum: int) -> str:
    ratio = current / max(maximum, 1)
    return f"{label} {_bar(ratio, width=12)} {current}/{maximum}"


def _drop_text(drop: Drop) -> str:
    if drop.kind == "gold":
        return f"💰 {drop.amount} gold"
    if drop.kind == "xp":
        return f"✨ {drop.amount} XP"
    return f"🎁 {drop.name}"


def _due_text(task: Task, today: date) -> str:
    if task.next_due is None:
        return "no due date"
    due_day = task.next_due.date()
    if due_day < today:
        return f"⚠️ overdue since {due_day.isoformat()}"
    if due_day == today:
        return "due today"
    return f"due {due_day.isoformat()}"


def enemy_line(enemy: Enemy) -> str:
    icon = "👑" if enemy.is_boss else "👾"
    return f"{icon} Round {enemy.round}: {enemy.name} (Lv {enemy.level})"


def task_created_message(task: Task, today: date) -> str:
    reward = reward_for_difficulty(task.difficulty)
    return (
        f"✅ Task #{task.id} added: {task.title}\n"
        f"🔁 {describe_rule(task.recurrence)} · {_due_text(task, today)}\n"
        f"🎯 {reward.label}: +{reward.xp} XP, +{reward.currency} gold, {reward.damage} damage"
    )


def task_list_message(tasks: list[Task], today: date) -> str:
    if not tasks:
        return "📝 No active tasks. Add one with /task add <difficulty> <rule> <title>"
    lines = ["📝 Active tasks", ""]
    for task in tasks:
        label = reward_for_difficulty(task.difficulty).label
        lines.append(f"#{task.id} {task.title}")
        lines.append(f"   {label} · {describe_rule(task.recurrence)} · {_due_text(task, today)}")
    return "\n".join(lines)


def defeat_lines(defeat: DefeatOutcome) -> list[str]:
    lines = [f"🏆 {defeat.enemy.name} defeated!"]
    if defeat.claimed:
        lines.append("Loot: " + ", ".join(_drop_text(d) for d in defeat.claimed))
    if defeat.advanced:
        lines.append("Next up: " + enemy_line(defeat.next_enemy))
    return lines


def attack_lines(attack: AttackOutcome) -> list[str]:
    lines: list[str] = []
    if attack.repaired is not None and attack.repaired.advanced:
        lines.extend(defeat_lines(attack.repaired))
    if attack.settled is not None and attack.settled.claimed:
        lines.append("📦 Delayed loot: " + ", ".join(_drop_text(d) for d in attack.settled.claimed))
    lines.append(f"⚔️ You hit {attack.enemy.name} for {attack.damage} damage")
    lines.append(_hp_line("👾 HP", attack.hp_after, attack.enemy.max_hp))
    if attack.defeat is not None:
        lines.extend(defeat_lines(attack.defeat))
    return lines


def completion_message(outcome: CompletionOutcome, today: date) -> str:
    task = outcome.record.task
    lines = [f"🎉 Done: {task.title}", f"+{outcome.reward.xp} XP, +{outcome.reward.currency} gold"]
    if outcome.record.archived:
        lines.append("📦 Task finished and archived")
    elif outcome.record.next_due is not None:
        lines.append(f"🔁 Next: {outcome.record.next_due.date().isoformat()}")
    if outcome.attack is not None:
        lines.append("")
        lines.extend(attack_lines(outcome.attack))
    if outcome.level is not None and outcome.level.leveled_up:
        lines.append("")
        lines.append(f"⬆️ Level up! You are now level {outcome.level.level}")
    if outcome.failed_steps:
        lines.append("")
        lines.append("⚠️ Some rewards could not be saved. They will be retried on your next completion.")
    return "\n".join(lines)


def status_message(view: StatusView, username: str | None = None) -> str:
    header = f"📊 Status · @{username}" if username else "📊 Status"
    lines = [
        header,
        "",
        f"⚡ Level {view.profile.level} · {view.title}",
        f"📊 XP: {view.level.xp_into_level:,} / {view.level.xp_for_next_level:,} (to Level {view.level.level + 1})",
        f"{_bar(view.level.progress_ratio)} {view.level.progress_ratio * 100:.1f}%",
        f"💰 Gold: {view.profile.currency:,}",
        f"🗡️ Attack: {view.stats.attack}",
        _hp_line("❤️ HP", view.combat.player_hp, view.stats.max_hp),
        "",
        f"📝 Tasks: {view.active_tasks} active, {view.due_today} due today, {view.overdue} overdue",
    ]
    return "\n".join(lines)


def battle_message(view: StatusView) -> str:
    lines = [
        enemy_line(view.enemy),
        _hp_line("👾 HP", view.combat.current_enemy_hp, view.enemy.max_hp),
        "",
        _hp_line("❤️ You", view.combat.player_hp, view.stats.max_hp),
        f"🗡️ Attack {view.stats.attack} · 💀 Defeated {view.combat.enemies_defeated}",
    ]
    if view.recent_loot:
        lines.append("")
        lines.append("Recent loot:")
        for entry in view.recent_loot:
            drop = Drop(kind=entry.kind, amount=entry.amount, name=entry.name)
            lines.append(f"• R{entry.round}: {_drop_text(drop)}")
    return "\n".join(lines)


def penalty_message(outcome: PenaltyOutcome, max_hp: int) -> str:
    lines = [f"💥 {len(outcome.overdue)} overdue task(s) hit you for {outcome.damage} damage"]
    for task in outcome.overdue[:5]:
        lines.append(f"• #{task.id} {task.title}")
    if len(outcome.overdue) > 5:
        lines.append(f"… and {len(outcome.overdue) - 5} more")
    if outcome.player_hp is not None:
        lines.append(_hp_line("❤️ HP", outcome.player_hp, max_hp))
    return "\n".join(lines)
