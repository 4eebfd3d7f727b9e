from __future__ import annotations

import asyncio

from focusquest.config import load_settings
from focusquest.db import Database
from focusquest.logging_setup import setup_logging
from focusquest.telegram_bot import build_application


def run_bot() -> None:
    setup_logging()
    settings = load_settings()
    db = Database(settings.database_path)

    # Python 3.14 does not auto-create a default event loop in main thread.
    try:
        asyncio.get_event_loop()
    except RuntimeError:
        asyncio.set_event_loop(asyncio.new_event_loop())

    application = build_application(settings, db)
    application.run_polling()
