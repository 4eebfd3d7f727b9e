from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any, Protocol

from focusquest.db_constants import APP_CONFIG_DEFAULTS, JOB_CONFIG_KEYS

_UPSERT_CONFIG_SQL = """
    INSERT INTO app_config(key, value_json, updated_at, updated_by)
    VALUES (?, ?, ?, ?)
    ON CONFLICT(key) DO UPDATE SET
        value_json=excluded.value_json,
        updated_at=excluded.updated_at,
        updated_by=excluded.updated_by
"""


class DbProtocol(Protocol):
    def _connect(self) -> sqlite3.Connection: ...
    def get_app_config(self) -> dict[str, Any]: ...
    def get_app_config_value(self, key: str) -> Any: ...


class SystemMixin:
    def get_app_config(self: DbProtocol) -> dict[str, Any]:
        config = dict(APP_CONFIG_DEFAULTS)
        with self._connect() as conn:
            rows = conn.execute("SELECT key, value_json FROM app_config").fetchall()
        for row in rows:
            key = str(row["key"])
            if key not in APP_CONFIG_DEFAULTS:
                continue
            try:
                config[key] = json.loads(str(row["value_json"]))
            except json.JSONDecodeError:
                continue
        return config

    def set_app_config(self: DbProtocol, updates: dict[str, Any], actor: str = "system", note: str | None = None) -> dict[str, Any]:
        if not updates:
            return self.get_app_config()
        now = datetime.now().isoformat()
        with self._connect() as conn:
            for key, value in updates.items():
                if key not in APP_CONFIG_DEFAULTS:
                    continue
                conn.execute(_UPSERT_CONFIG_SQL, (key, json.dumps(value), now, actor))
                conn.execute(
                    """
                    INSERT INTO admin_audit_log(actor, action, target, payload_json, created_at)
                    VALUES (?, 'config.update', ?, ?, ?)
                    """,
                    (actor, key, json.dumps({"value": value, "note": note}), now),
                )
        return self.get_app_config()

    def get_app_config_value(self: DbProtocol, key: str) -> Any:
        config = self.get_app_config()
        return config.get(key, APP_CONFIG_DEFAULTS.get(key))

    def is_feature_enabled(self: DbProtocol, feature_name: str) -> bool:
        value = self.get_app_config_value(f"feature.{feature_name}_enabled")
        if value is None:
            return True
        return bool(value)

    def is_job_enabled(self: DbProtocol, job_name: str) -> bool:
        key = JOB_CONFIG_KEYS.get(job_name)
        if not key:
            return True
        value = self.get_app_config_value(key)
        if value is None:
            return True
        return bool(value)

    def get_progression_tuning(self: DbProtocol) -> dict[str, int]:
        config = self.get_app_config()

        def _i(key: str, default: int) -> int:
            try:
                return int(config.get(key, default))
            except (TypeError, ValueError):
                return default

        return {
            "xp_base": max(1, _i("progression.xp_base", 100)),
            "xp_increment": max(0, _i("progression.xp_increment", 25)),
            "base_attack": max(1, _i("combat.base_attack", 10)),
            "attack_per_level": max(0, _i("combat.attack_per_level", 2)),
            "base_hp": max(1, _i("combat.base_hp", 100)),
            "hp_per_level": max(0, _i("combat.hp_per_level", 10)),
        }

    def create_config_snapshot(self: DbProtocol, actor: str = "system", note: str | None = None) -> int:
        now = datetime.now().isoformat()
        payload = json.dumps(self.get_app_config())
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO config_snapshots(config_json, created_at, created_by, note)
                VALUES (?, ?, ?, ?)
                """,
                (payload, now, actor, note),
            )
            conn.execute(
                """
                INSERT INTO admin_audit_log(actor, action, target, payload_json, created_at)
                VALUES (?, 'config.snapshot', 'all', ?, ?)
                """,
                (actor, json.dumps({"snapshot_id": int(cur.lastrowid), "note": note}), now),
            )
        return int(cur.lastrowid)

    def list_config_snapshots(self: DbProtocol, limit: int = 20) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, created_at, created_by, note
                FROM config_snapshots
                ORDER BY id DESC
                LIMIT ?
                """,
                (max(1, limit),),
            ).fetchall()
        return [dict(r) for r in rows]

    def restore_config_snapshot(self: DbProtocol, snapshot_id: int, actor: str = "system") -> bool:
        now = datetime.now().isoformat()
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, config_json FROM config_snapshots WHERE id = ?",
                (snapshot_id,),
            ).fetchone()
            if row is None:
                return False
            try:
                payload = json.loads(str(row["config_json"]))
            except json.JSONDecodeError:
                return False
            if not isinstance(payload, dict):
                return False
            for key, value in payload.items():
                if key not in APP_CONFIG_DEFAULTS:
                    continue
                conn.execute(_UPSERT_CONFIG_SQL, (key, json.dumps(value), now, actor))
            conn.execute(
                """
                INSERT INTO admin_audit_log(actor, action, target, payload_json, created_at)
                VALUES (?, 'config.restore', 'all', ?, ?)
                """,
                (actor, json.dumps({"snapshot_id": snapshot_id}), now),
            )
        return True

    def list_admin_audit(self: DbProtocol, limit: int = 100) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, actor, action, target, payload_json, created_at
                FROM admin_audit_log
                ORDER BY id DESC
                LIMIT ?
                """,
                (max(1, limit),),
            ).fetchall()
        return [dict(r) for r in rows]
