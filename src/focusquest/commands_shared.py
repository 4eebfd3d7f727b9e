from __future__ import annotations

from datetime import datetime

from telegram import Update
from telegram.ext import ContextTypes

from focusquest.config import Settings
from focusquest.db import Database
from focusquest.time_utils import now_local


def get_db(context: ContextTypes.DEFAULT_TYPE) -> Database:
    db = context.application.bot_data.get("db")
    assert isinstance(db, Database)
    return db


def get_settings(context: ContextTypes.DEFAULT_TYPE) -> Settings:
    settings = context.application.bot_data.get("settings")
    assert isinstance(settings, Settings)
    return settings


def touch_user(update: Update, context: ContextTypes.DEFAULT_TYPE) -> tuple[int | None, int | None, datetime]:
    now = now_local(get_settings(context).tz)
    if update.effective_user is None or update.effective_chat is None:
        return None, None, now
    user_id = update.effective_user.id
    chat_id = update.effective_chat.id
    get_db(context).upsert_user_profile(user_id=user_id, chat_id=chat_id, seen_at=now)
    return user_id, chat_id, now
