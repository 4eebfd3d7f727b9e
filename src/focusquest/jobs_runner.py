from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime

from telegram import Bot
from telegram.error import TelegramError

from focusquest.config import Settings
from focusquest.db import Database
from focusquest.leveling import player_stats
from focusquest.messages import penalty_message
from focusquest.service import PenaltyOutcome, run_daily_penalty
from focusquest.time_utils import now_local

logger = logging.getLogger(__name__)

JOB_NAMES = ("daily_penalty",)


@dataclass(frozen=True)
class PenaltyNotice:
    user_id: int
    chat_id: int
    text: str


def collect_penalties(db: Database, today: date, now: datetime) -> list[PenaltyNotice]:
    """Apply today's penalty to every known user; returns the users who lost HP."""
    tuning = db.get_progression_tuning()
    notices: list[PenaltyNotice] = []
    for profile in db.get_all_user_profiles():
        user_id = int(profile["user_id"])
        outcome: PenaltyOutcome = run_daily_penalty(db, user_id, today, now)
        if not outcome.applied or outcome.damage <= 0:
            continue
        level = db.ensure_profile(user_id, now).level
        max_hp = player_stats(level, tuning=tuning).max_hp
        notices.append(
            PenaltyNotice(
                user_id=user_id,
                chat_id=int(profile["chat_id"]),
                text=penalty_message(outcome, max_hp),
            )
        )
    return notices


async def run_daily_penalty_job(db: Database, settings: Settings) -> None:
    now = now_local(settings.tz)
    notices = collect_penalties(db, now.date(), now)
    if not notices:
        logger.info("daily penalty: nothing to send")
        return

    bot = Bot(token=settings.telegram_bot_token)
    for notice in notices:
        try:
            await bot.send_message(chat_id=notice.chat_id, text=notice.text)
        except TelegramError:
            logger.exception("penalty notice failed user_id=%s", notice.user_id)
            continue
        logger.info("sent penalty notice user_id=%s", notice.user_id)


def run_job(job_name: str, db: Database, settings: Settings) -> None:
    if job_name not in JOB_NAMES:
        raise SystemExit(f"Unknown job '{job_name}'. Expected one of: {', '.join(JOB_NAMES)}")
    if not db.is_job_enabled(job_name):
        logger.info("job disabled: %s", job_name)
        return
    if job_name == "daily_penalty":
        asyncio.run(run_daily_penalty_job(db, settings))
