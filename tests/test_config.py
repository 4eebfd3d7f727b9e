from __future__ import annotations

import logging
from pathlib import Path

import pytest

from focusquest.commands_tasks import parse_difficulty
from focusquest.config import load_settings
from focusquest.logging_setup import setup_logging

_ENV_KEYS = ("TELEGRAM_BOT_TOKEN", "DATABASE_PATH", "TZ", "ADMIN_PANEL_TOKEN", "ADMIN_HOST", "ADMIN_PORT")


@pytest.fixture
def clean_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for key in _ENV_KEYS:
        # setenv first so values written by the .env loader are undone too
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    return monkeypatch


def test_token_required_by_default(clean_env) -> None:
    with pytest.raises(RuntimeError):
        load_settings()


def test_defaults_without_token(clean_env) -> None:
    settings = load_settings(require_token=False)
    assert settings.telegram_bot_token == ""
    assert settings.database_path == Path("./data/app.db")
    assert settings.tz == "Europe/Oslo"
    assert settings.admin_panel_token is None
    assert settings.admin_port == 8080


def test_env_file_is_read(clean_env, tmp_path) -> None:
    (tmp_path / ".env").write_text(
        "# local\nTELEGRAM_BOT_TOKEN='abc'\nADMIN_PORT=9000\nADMIN_PANEL_TOKEN=\n"
    )
    clean_env.setenv("ADMIN_HOST", "0.0.0.0")
    settings = load_settings()
    assert settings.telegram_bot_token == "abc"
    assert settings.admin_port == 9000
    assert settings.admin_host == "0.0.0.0"
    assert settings.admin_panel_token is None


def test_bad_port_falls_back(clean_env) -> None:
    clean_env.setenv("ADMIN_PORT", "eighty")
    assert load_settings(require_token=False).admin_port == 8080


def test_setup_logging_levels() -> None:
    setup_logging("debug")
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING
    setup_logging("nonsense")
    assert logging.getLogger().level == logging.INFO


def test_parse_difficulty() -> None:
    assert parse_difficulty("2") == 2
    assert parse_difficulty("Hard") == 3
    assert parse_difficulty("veryhard") == 4
    assert parse_difficulty("5") is None
    assert parse_difficulty("epic") is None
