from __future__ import annotations

from typing import Any

APP_CONFIG_DEFAULTS: dict[str, Any] = {
    "feature.combat_enabled": True,
    "feature.penalty_enabled": True,
    "job.daily_penalty_enabled": True,
    "progression.xp_base": 100,
    "progression.xp_increment": 25,
    "combat.base_attack": 10,
    "combat.attack_per_level": 2,
    "combat.base_hp": 100,
    "combat.hp_per_level": 10,
}

JOB_CONFIG_KEYS = {
    "daily_penalty": "job.daily_penalty_enabled",
}

LOOT_KINDS = ("gold", "xp", "item")
