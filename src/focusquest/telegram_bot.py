from __future__ import annotations

import logging

from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from focusquest.commands_shared import touch_user
from focusquest.commands_tasks import register_task_handlers
from focusquest.config import Settings
from focusquest.db import Database

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "⚔️ FocusQuest\n\n"
    "Finish tasks to earn XP and gold and to hit the enemy in front of you. "
    "Every 5th round is a boss. Tasks left overdue hurt you once a day.\n\n"
    "/task add <difficulty> <rule> [xN] <title>\n"
    "   e.g. /task add hard weekly:mon,thu Gym\n"
    "   e.g. /task add 1 daily x30 Read 10 pages\n"
    "/task rm <id>\n"
    "/tasks · list active tasks\n"
    "/done <id> · complete a task\n"
    "/battle · current enemy and loot\n"
    "/status · level, gold and HP"
)


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    touch_user(update, context)
    await update.effective_message.reply_text(HELP_TEXT)


async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.effective_message.reply_text(HELP_TEXT)


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("unhandled bot error", exc_info=context.error)
    if isinstance(update, Update) and update.effective_message is not None:
        await update.effective_message.reply_text("⚠️ Something went wrong. Please try again.")


def build_application(settings: Settings, db: Database) -> Application:
    app = Application.builder().token(settings.telegram_bot_token).build()
    app.bot_data["db"] = db
    app.bot_data["settings"] = settings

    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("help", cmd_help))
    register_task_handlers(app)
    app.add_error_handler(handle_error)

    return app
