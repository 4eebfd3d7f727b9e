from __future__ import annotations

import logging

from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from focusquest.commands_shared import get_db, touch_user
from focusquest.errors import FocusQuestError
from focusquest.messages import (
    battle_message,
    completion_message,
    status_message,
    task_created_message,
    task_list_message,
)
from focusquest.recurrence import parse_rule_args
from focusquest.service import archive_task, build_status_view, complete_task, create_task

logger = logging.getLogger(__name__)

TASK_USAGE = (
    "Usage:\n"
    "/task add <difficulty> <rule> [xN] <title>\n"
    "/task rm <id>\n\n"
    "difficulty: 1-4 or easy, medium, hard, veryhard\n"
    "rule: once, once:2024-12-31, daily, daily:2, every:3, weekly:mon,wed\n"
    "xN: stop after N completions"
)

DIFFICULTY_ALIASES = {
    "easy": 1,
    "medium": 2,
    "med": 2,
    "hard": 3,
    "veryhard": 4,
    "very-hard": 4,
    "vh": 4,
}


def parse_difficulty(raw: str) -> int | None:
    token = raw.strip().lower()
    if token.isdigit():
        value = int(token)
        return value if 1 <= value <= 4 else None
    return DIFFICULTY_ALIASES.get(token)


def _parse_task_id(raw: str) -> int | None:
    token = raw.strip().lstrip("#")
    return int(token) if token.isdigit() else None


async def cmd_task(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id, _, now = touch_user(update, context)
    db = get_db(context)
    args = context.args or []
    if not args:
        await update.effective_message.reply_text(TASK_USAGE)
        return

    sub = args[0].lower()
    if sub == "add":
        if len(args) < 4:
            await update.effective_message.reply_text(TASK_USAGE)
            return
        difficulty = parse_difficulty(args[1])
        if difficulty is None:
            await update.effective_message.reply_text("Difficulty must be 1-4 or easy, medium, hard, veryhard")
            return
        try:
            parsed = parse_rule_args(args[2:])
            title = " ".join(parsed.rest).strip()
            if not title:
                await update.effective_message.reply_text("Please provide a task title.")
                return
            task = create_task(
                db,
                user_id,
                title,
                difficulty,
                parsed.rule,
                today=now.date(),
                now=now,
                one_time_date=parsed.one_time_date,
            )
        except (FocusQuestError, ValueError) as exc:
            await update.effective_message.reply_text(f"❌ {exc}")
            return
        await update.effective_message.reply_text(task_created_message(task, now.date()))
        return

    if sub in {"rm", "remove", "del"}:
        task_id = _parse_task_id(args[1]) if len(args) > 1 else None
        if task_id is None:
            await update.effective_message.reply_text("Usage: /task rm <id>")
            return
        try:
            task = archive_task(db, user_id, task_id, now)
        except FocusQuestError as exc:
            await update.effective_message.reply_text(f"❌ {exc}")
            return
        await update.effective_message.reply_text(f"🗑️ Task #{task_id} archived: {task.title}")
        return

    await update.effective_message.reply_text(TASK_USAGE)


async def cmd_tasks(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id, _, now = touch_user(update, context)
    if user_id is None:
        return
    tasks = get_db(context).list_active_tasks(user_id)
    await update.effective_message.reply_text(task_list_message(tasks, now.date()))


async def cmd_done(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id, _, now = touch_user(update, context)
    args = context.args or []
    task_id = _parse_task_id(args[0]) if args else None
    if task_id is None:
        await update.effective_message.reply_text("Usage: /done <id>")
        return
    try:
        outcome = complete_task(get_db(context), user_id, task_id, now, today=now.date())
    except FocusQuestError as exc:
        logger.info("done rejected user_id=%s task_id=%s reason=%s", user_id, task_id, exc)
        await update.effective_message.reply_text(f"❌ {exc}")
        return
    await update.effective_message.reply_text(completion_message(outcome, now.date()))


async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id, _, now = touch_user(update, context)
    try:
        view = build_status_view(get_db(context), user_id, now.date(), now)
    except FocusQuestError as exc:
        await update.effective_message.reply_text(f"❌ {exc}")
        return
    username = update.effective_user.username if update.effective_user else None
    await update.effective_message.reply_text(status_message(view, username=username))


async def cmd_battle(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    user_id, _, now = touch_user(update, context)
    try:
        view = build_status_view(get_db(context), user_id, now.date(), now)
    except FocusQuestError as exc:
        await update.effective_message.reply_text(f"❌ {exc}")
        return
    await update.effective_message.reply_text(battle_message(view))


def register_task_handlers(app: Application) -> None:
    app.add_handler(CommandHandler("task", cmd_task))
    app.add_handler(CommandHandler("tasks", cmd_tasks))
    app.add_handler(CommandHandler("done", cmd_done))
    app.add_handler(CommandHandler("status", cmd_status))
    app.add_handler(CommandHandler("battle", cmd_battle))
