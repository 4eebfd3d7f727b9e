from __future__ import annotations

from dataclasses import asdict
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field

from focusquest.combat import spawn_enemy
from focusquest.config import load_settings
from focusquest.db import Database
from focusquest.db_constants import APP_CONFIG_DEFAULTS
from focusquest.logging_setup import setup_logging
from focusquest.service import build_status_view
from focusquest.time_utils import DEFAULT_TZ, now_local


def _coerce_value(key: str, value: Any) -> Any:
    default = APP_CONFIG_DEFAULTS.get(key)
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if isinstance(default, int):
        try:
            return int(value)
        except (TypeError, ValueError):
            return default
    return value


def _require_auth(request: Request, token: str | None) -> None:
    if not token:
        return
    header = request.headers.get("x-admin-token")
    query = request.query_params.get("token")
    if header == token or query == token:
        return
    raise HTTPException(status_code=401, detail="Unauthorized")


class ConfigUpdateRequest(BaseModel):
    updates: dict[str, Any] = Field(default_factory=dict)
    actor: str = "admin"
    note: str | None = None


class SnapshotRequest(BaseModel):
    actor: str = "admin"
    note: str | None = None


INDEX_HTML = """
<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>FocusQuest Admin</title>
  <style>
    body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif; margin: 24px; background: #f5f7fb; }
    h1, h2 { margin: 0 0 12px; }
    .card { background: #fff; border-radius: 12px; padding: 16px; margin-bottom: 16px; box-shadow: 0 2px 12px rgba(0,0,0,0.08); }
    .grid { display: grid; gap: 10px; grid-template-columns: repeat(auto-fit, minmax(260px, 1fr)); }
    label { display: block; font-size: 14px; margin-bottom: 6px; color: #374151; }
    input, select, button { width: 100%; box-sizing: border-box; padding: 10px; border: 1px solid #cbd5e1; border-radius: 8px; }
    .row { display: flex; gap: 8px; }
    .row > * { flex: 1; }
    button { background: #111827; color: #fff; cursor: pointer; }
    button.secondary { background: #475569; }
    pre { white-space: pre-wrap; background: #0f172a; color: #e2e8f0; padding: 12px; border-radius: 8px; max-height: 260px; overflow: auto; }
  </style>
</head>
<body>
  <h1>FocusQuest Admin Panel</h1>

  <div class="card"><h2>Flags</h2><div class="grid" id="flags"></div></div>
  <div class="card"><h2>Progression &amp; Combat Tuning</h2><div class="grid" id="tuning"></div></div>

  <div class="card">
    <div class="row">
      <button id="saveBtn">Save Config</button>
      <button id="snapshotBtn" class="secondary">Create Snapshot</button>
    </div>
  </div>

  <div class="card">
    <h2>Snapshots</h2>
    <div class="row">
      <select id="snapshotSelect"></select>
      <button id="restoreBtn" class="secondary">Restore Selected</button>
    </div>
  </div>

  <div class="card">
    <h2>Player</h2>
    <div class="row">
      <input type="number" id="userId" placeholder="Telegram user id" />
      <button id="lookupBtn" class="secondary">Show Progress</button>
    </div>
    <pre id="progress"></pre>
  </div>

  <div class="card"><h2>Audit Log (latest 50)</h2><pre id="audit"></pre></div>

  <script>
    const state = {};
    const token = new URLSearchParams(window.location.search).get("token");
    function withToken(url) {
      if (!token) return url;
      const sep = url.includes("?") ? "&" : "?";
      return `${url}${sep}token=${encodeURIComponent(token)}`;
    }

    function boolInput(key, value) {
      return `<label><input type="checkbox" id="${key}" ${value ? "checked": ""}/> ${key}</label>`;
    }

    function numberInput(key, value) {
      return `<label>${key}<input type="number" id="${key}" value="${value}" /></label>`;
    }

    let flagKeys = [];
    let tuningKeys = [];

    async function loadAll() {
      const cfg = await (await fetch(withToken("/api/config"))).json();
      Object.assign(state, cfg.config || {});
      flagKeys = Object.keys(cfg.defaults).filter(k => typeof cfg.defaults[k] === "boolean");
      tuningKeys = Object.keys(cfg.defaults).filter(k => typeof cfg.defaults[k] === "number");
      document.getElementById("flags").innerHTML = flagKeys.map(k => boolInput(k, !!state[k])).join("");
      document.getElementById("tuning").innerHTML = tuningKeys.map(k => numberInput(k, state[k] ?? 0)).join("");

      const snaps = await (await fetch(withToken("/api/snapshots?limit=20"))).json();
      document.getElementById("snapshotSelect").innerHTML = (snaps.snapshots || []).map(s => `<option value="${s.id}">#${s.id} | ${s.created_at} | ${s.created_by || "unknown"} | ${s.note || ""}</option>`).join("");

      const audit = await (await fetch(withToken("/api/audit?limit=50"))).json();
      document.getElementById("audit").textContent = JSON.stringify(audit.rows || [], null, 2);
    }

    function collectUpdates() {
      const updates = {};
      for (const k of flagKeys) updates[k] = !!document.getElementById(k).checked;
      for (const k of tuningKeys) updates[k] = Number(document.getElementById(k).value);
      return updates;
    }

    async function post(url, body) {
      return fetch(withToken(url), {method: "POST", headers: {"content-type": "application/json"}, body: JSON.stringify(body)});
    }

    document.getElementById("saveBtn").addEventListener("click", async () => {
      const res = await post("/api/config", {updates: collectUpdates(), actor: "panel"});
      if (!res.ok) { alert("Save failed"); return; }
      await loadAll();
    });

    document.getElementById("snapshotBtn").addEventListener("click", async () => {
      const note = prompt("Snapshot note (optional):") || "";
      const res = await post("/api/snapshots", {actor: "panel", note});
      if (!res.ok) { alert("Snapshot failed"); return; }
      await loadAll();
    });

    document.getElementById("restoreBtn").addEventListener("click", async () => {
      const id = document.getElementById("snapshotSelect").value;
      if (!id || !confirm(`Restore snapshot #${id}?`)) return;
      const res = await post(`/api/snapshots/${id}/restore`, {actor: "panel"});
      if (!res.ok) { alert("Restore failed"); return; }
      await loadAll();
    });

    document.getElementById("lookupBtn").addEventListener("click", async () => {
      const id = document.getElementById("userId").value;
      if (!id) return;
      const res = await fetch(withToken(`/api/users/${id}/progress`));
      document.getElementById("progress").textContent = JSON.stringify(await res.json(), null, 2);
    });

    loadAll();
  </script>
</body>
</html>
"""


def build_admin_app(db: Database, admin_token: str | None, tz: str = DEFAULT_TZ) -> FastAPI:
    app = FastAPI(title="FocusQuest Admin", version="1.0.0")

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request) -> str:
        _require_auth(request, admin_token)
        return INDEX_HTML

    @app.get("/api/config")
    async def api_config(request: Request) -> dict[str, Any]:
        _require_auth(request, admin_token)
        return {"config": db.get_app_config(), "defaults": APP_CONFIG_DEFAULTS}

    @app.post("/api/config")
    async def api_update_config(request: Request, payload: ConfigUpdateRequest) -> dict[str, Any]:
        _require_auth(request, admin_token)
        sanitized: dict[str, Any] = {}
        for key, value in payload.updates.items():
            if key not in APP_CONFIG_DEFAULTS:
                continue
            sanitized[key] = _coerce_value(key, value)
        cfg = db.set_app_config(sanitized, actor=payload.actor, note=payload.note)
        return {"ok": True, "updated_count": len(sanitized), "config": cfg}

    @app.get("/api/snapshots")
    async def api_snapshots(request: Request, limit: int = 20) -> dict[str, Any]:
        _require_auth(request, admin_token)
        return {"snapshots": db.list_config_snapshots(limit=limit)}

    @app.post("/api/snapshots")
    async def api_create_snapshot(request: Request, payload: SnapshotRequest) -> dict[str, Any]:
        _require_auth(request, admin_token)
        sid = db.create_config_snapshot(actor=payload.actor, note=payload.note)
        return {"ok": True, "snapshot_id": sid}

    @app.post("/api/snapshots/{snapshot_id}/restore")
    async def api_restore_snapshot(snapshot_id: int, request: Request, payload: SnapshotRequest) -> dict[str, Any]:
        _require_auth(request, admin_token)
        ok = db.restore_config_snapshot(snapshot_id, actor=payload.actor)
        if not ok:
            raise HTTPException(status_code=404, detail="Snapshot not found")
        return {"ok": True}

    @app.get("/api/audit")
    async def api_audit(request: Request, limit: int = 100) -> dict[str, Any]:
        _require_auth(request, admin_token)
        return {"rows": db.list_admin_audit(limit=limit)}

    @app.get("/api/users/{user_id}/progress")
    async def api_user_progress(user_id: int, request: Request) -> dict[str, Any]:
        _require_auth(request, admin_token)
        if db.get_profile(user_id) is None:
            raise HTTPException(status_code=404, detail="User not found")
        now = now_local(tz)
        view = build_status_view(db, user_id, now.date(), now)
        return {
            "user_id": user_id,
            "xp": view.profile.xp,
            "level": view.profile.level,
            "title": view.title,
            "currency": view.profile.currency,
            "xp_into_level": view.level.xp_into_level,
            "xp_for_next_level": view.level.xp_for_next_level,
            "attack": view.stats.attack,
            "max_hp": view.stats.max_hp,
            "combat": {
                "round": view.combat.round,
                "player_hp": view.combat.player_hp,
                "current_enemy_hp": view.combat.current_enemy_hp,
                "enemies_defeated": view.combat.enemies_defeated,
                "last_penalty_date": view.combat.last_penalty_date.isoformat() if view.combat.last_penalty_date else None,
            },
            "enemy": asdict(view.enemy),
            "tasks": {"active": view.active_tasks, "due_today": view.due_today, "overdue": view.overdue},
        }

    @app.get("/api/enemies/preview")
    async def api_enemy_preview(
        request: Request,
        seed_key: str,
        round: int = Query(1, ge=1, le=10_000),
    ) -> dict[str, Any]:
        _require_auth(request, admin_token)
        return {"enemy": asdict(spawn_enemy(round, seed_key))}

    return app


def run_admin() -> None:
    setup_logging()
    settings = load_settings(require_token=False)
    db = Database(settings.database_path)
    app = build_admin_app(db, settings.admin_panel_token, tz=settings.tz)
    uvicorn.run(app, host=settings.admin_host, port=settings.admin_port)
