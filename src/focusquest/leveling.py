from __future__ import annotations

import math
from dataclasses import dataclass

DEFAULT_PROGRESSION_TUNING = {
    "xp_base": 100,
    "xp_increment": 25,
    "base_attack": 10,
    "attack_per_level": 2,
    "base_hp": 100,
    "hp_per_level": 10,
}

TITLES = {
    1: "Novice",
    2: "Apprentice",
    3: "Squire",
    4: "Adventurer",
    5: "Pathfinder",
    6: "Ranger",
    7: "Knight",
    8: "Veteran",
    9: "Champion",
    10: "Hero",
    12: "Warlord",
    15: "Legend",
    20: "Mythic",
}


@dataclass(frozen=True)
class TaskReward:
    label: str
    xp: int
    damage: int
    currency: int


DIFFICULTY_REWARDS: dict[int, TaskReward] = {
    1: TaskReward(label="Easy", xp=10, damage=8, currency=5),
    2: TaskReward(label="Medium", xp=20, damage=12, currency=10),
    3: TaskReward(label="Hard", xp=35, damage=18, currency=20),
    4: TaskReward(label="Very hard", xp=50, damage=25, currency=35),
}


@dataclass(frozen=True)
class LevelInfo:
    level: int
    xp_into_level: int
    xp_for_next_level: int
    xp_at_level_start: int

    @property
    def progress_ratio(self) -> float:
        return self.xp_into_level / max(self.xp_for_next_level, 1)

    @property
    def remaining_to_next(self) -> int:
        return max(self.xp_for_next_level - self.xp_into_level, 0)


@dataclass(frozen=True)
class PlayerStats:
    level: int
    attack: int
    max_hp: int


def _effective_tuning(tuning: dict[str, int] | None = None) -> dict[str, int]:
    if not tuning:
        return dict(DEFAULT_PROGRESSION_TUNING)
    merged = dict(DEFAULT_PROGRESSION_TUNING)
    merged.update(tuning)
    return merged


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def reward_for_difficulty(difficulty: int) -> TaskReward:
    clamped = max(1, min(4, int(difficulty)))
    return DIFFICULTY_REWARDS[clamped]


def level_info(xp: int, tuning: dict[str, int] | None = None) -> LevelInfo:
    cfg = _effective_tuning(tuning)
    total = max(0, int(xp))
    increment = max(0, int(cfg["xp_increment"]))
    level = 1
    at_start = 0
    needed = max(1, int(cfg["xp_base"]))
    while total >= at_start + needed:
        at_start += needed
        level += 1
        needed += increment
    return LevelInfo(
        level=level,
        xp_into_level=total - at_start,
        xp_for_next_level=needed,
        xp_at_level_start=at_start,
    )


def level_from_xp(xp: int, tuning: dict[str, int] | None = None) -> int:
    return level_info(xp, tuning=tuning).level


def get_title(level: int) -> str:
    best = 1
    for threshold in TITLES:
        if threshold <= level and threshold > best:
            best = threshold
    return TITLES[best]


def player_stats(level: int, tuning: dict[str, int] | None = None) -> PlayerStats:
    cfg = _effective_tuning(tuning)
    lvl = max(1, level)
    return PlayerStats(
        level=lvl,
        attack=int(cfg["base_attack"]) + (lvl - 1) * int(cfg["attack_per_level"]),
        max_hp=int(cfg["base_hp"]) + (lvl - 1) * int(cfg["hp_per_level"]),
    )


def rescale_hp(old_hp: int, old_max: int, new_max: int) -> int:
    """Keep the HP ratio across a max HP change; never kills, never tops up."""
    if new_max <= 0:
        return 0
    if old_max <= 0:
        return new_max
    scaled = round_half_up((old_hp / old_max) * new_max)
    return max(1, min(new_max, scaled))
