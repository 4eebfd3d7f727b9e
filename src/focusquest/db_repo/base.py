from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator


class BaseDatabase:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _immediate(self) -> Iterator[sqlite3.Connection]:
        """Read-modify-write under a write lock taken up front.

        Two completions racing on the same row serialize here instead of both
        reading the same snapshot.
        """
        conn = self._connect()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """
            )
            current = {row["version"] for row in conn.execute("SELECT version FROM schema_migrations")}

            migrations: dict[int, str] = {
                1: """
                    CREATE TABLE user_profiles (
                        user_id INTEGER PRIMARY KEY,
                        chat_id INTEGER NOT NULL,
                        last_seen_at TEXT NOT NULL
                    );

                    CREATE TABLE progression_profiles (
                        user_id INTEGER PRIMARY KEY,
                        xp INTEGER NOT NULL DEFAULT 0 CHECK(xp >= 0),
                        level INTEGER NOT NULL DEFAULT 1 CHECK(level >= 1),
                        currency INTEGER NOT NULL DEFAULT 0 CHECK(currency >= 0),
                        updated_at TEXT NOT NULL
                    );

                    CREATE TABLE combat_states (
                        user_id INTEGER PRIMARY KEY,
                        round INTEGER NOT NULL DEFAULT 1 CHECK(round >= 1),
                        player_hp INTEGER NOT NULL CHECK(player_hp >= 0),
                        current_enemy_hp INTEGER NOT NULL CHECK(current_enemy_hp >= 0),
                        enemies_defeated INTEGER NOT NULL DEFAULT 0,
                        last_penalty_date TEXT,
                        updated_at TEXT NOT NULL
                    );
                """,
                2: """
                    CREATE TABLE tasks (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id INTEGER NOT NULL,
                        title TEXT NOT NULL,
                        difficulty INTEGER NOT NULL CHECK(difficulty BETWEEN 1 AND 4),
                        recurrence_json TEXT,
                        next_due TEXT,
                        active INTEGER NOT NULL DEFAULT 1,
                        created_at TEXT NOT NULL,
                        archived_at TEXT
                    );
                    CREATE INDEX idx_tasks_user_active_due ON tasks(user_id, active, next_due);

                    CREATE TABLE task_completions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        task_id INTEGER NOT NULL,
                        user_id INTEGER NOT NULL,
                        completed_at TEXT NOT NULL,
                        FOREIGN KEY (task_id) REFERENCES tasks(id)
                    );
                    CREATE INDEX idx_task_completions_task ON task_completions(task_id);
                """,
                3: """
                    CREATE TABLE loot_log (
                        user_id INTEGER NOT NULL,
                        round INTEGER NOT NULL,
                        drop_index INTEGER NOT NULL,
                        kind TEXT NOT NULL CHECK(kind IN ('gold', 'xp', 'item')),
                        amount INTEGER NOT NULL DEFAULT 0,
                        name TEXT,
                        created_at TEXT NOT NULL,
                        PRIMARY KEY(user_id, round, drop_index)
                    );
                """,
                4: """
                    CREATE TABLE app_config (
                        key TEXT PRIMARY KEY,
                        value_json TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        updated_by TEXT
                    );

                    CREATE TABLE config_snapshots (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        config_json TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        created_by TEXT,
                        note TEXT
                    );

                    CREATE TABLE admin_audit_log (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        actor TEXT NOT NULL,
                        action TEXT NOT NULL,
                        target TEXT NOT NULL,
                        payload_json TEXT,
                        created_at TEXT NOT NULL
                    );
                """,
                5: """
                    ALTER TABLE combat_states ADD COLUMN drops_settled_round INTEGER NOT NULL DEFAULT 0;
                    UPDATE combat_states SET drops_settled_round = round - 1;
                """,
            }

            now = datetime.now().isoformat(timespec="seconds")
            for version in sorted(migrations):
                if version in current:
                    continue
                conn.executescript(migrations[version])
                conn.execute(
                    "INSERT INTO schema_migrations(version, applied_at) VALUES (?, ?)",
                    (version, now),
                )
