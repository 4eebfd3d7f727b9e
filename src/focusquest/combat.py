"""Deterministic combat math.

Enemies are regenerated from ``(seed_key, round)`` instead of being stored, so
the hash and the PRNG below are part of the contract: any reimplementation
must produce the same 32-bit values for the same inputs.

* seed: FNV-1a, 32 bit, over the UTF-8 bytes of ``f"{seed_key}:{round}"``
* PRNG: Mulberry32, 32-bit state, outputs in ``[0, 2**32)``
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterable

from focusquest.leveling import round_half_up

MASK_32 = 0xFFFFFFFF
FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193
MULBERRY_INCREMENT = 0x6D2B79F5

BOSS_EVERY = 5
BOSS_HP_MULTIPLIER = 1.8
HP_JITTER = 10

ENEMY_NAMES = (
    "Procrastination Imp",
    "Clutter Goblin",
    "Snooze Slime",
    "Doomscroll Bat",
    "Inbox Hydra Hatchling",
    "Deadline Wraith",
    "Couch Troll",
    "Distraction Sprite",
)

BOSS_NAMES = (
    "Lord of Later",
    "The Backlog Behemoth",
    "Burnout Dragon",
    "Queen of Excuses",
)

BOSS_ITEMS = (
    "Health Potion",
    "Magic Sword",
    "Shield",
    "Spell Book",
    "Armor",
    "Bow & Arrow",
    "Magic Ring",
    "Staff",
)


def _imul(a: int, b: int) -> int:
    return (a * b) & MASK_32


def fnv1a_32(text: str) -> int:
    value = FNV_OFFSET_BASIS
    for byte in text.encode("utf-8"):
        value ^= byte
        value = _imul(value, FNV_PRIME)
    return value


def seed_from_key(seed_key: str, round_number: int) -> int:
    return fnv1a_32(f"{seed_key}:{round_number}")


class Mulberry32:
    def __init__(self, seed: int) -> None:
        self.state = seed & MASK_32

    def next_u32(self) -> int:
        self.state = (self.state + MULBERRY_INCREMENT) & MASK_32
        t = self.state
        t = _imul(t ^ (t >> 15), t | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & MASK_32
        return (t ^ (t >> 14)) & MASK_32

    def random(self) -> float:
        return self.next_u32() / 4294967296

    def randint(self, low: int, high: int) -> int:
        return low + int(self.random() * (high - low + 1))

    def choice(self, options: tuple[str, ...]) -> str:
        return options[self.randint(0, len(options) - 1)]


@dataclass(frozen=True)
class Drop:
    kind: str  # gold | xp | item
    amount: int = 0
    name: str | None = None


@dataclass(frozen=True)
class Enemy:
    round: int
    name: str
    is_boss: bool
    max_hp: int
    level: int
    drops: tuple[Drop, ...]


def is_boss_round(round_number: int) -> bool:
    return round_number % BOSS_EVERY == 0


def spawn_enemy(round_number: int, seed_key: str | None) -> Enemy:
    """Build the enemy for a round.

    ``seed_key=None`` is the guest path: same generator, random seed. It must
    never back persisted combat state.
    """
    rnd = max(1, int(round_number))
    if seed_key is None:
        rng = Mulberry32(random.getrandbits(32))
    else:
        rng = Mulberry32(seed_from_key(seed_key, rnd))

    boss = is_boss_round(rnd)
    base_hp = 100 + (rnd - 1) * 15
    if boss:
        max_hp = round_half_up(base_hp * BOSS_HP_MULTIPLIER)
    else:
        max_hp = base_hp + rng.randint(-HP_JITTER, HP_JITTER)

    if boss:
        gold = rng.randint(40 + 5 * rnd, 80 + 8 * rnd)
        xp = rng.randint(50 + 5 * rnd, 100 + 8 * rnd)
    else:
        gold = rng.randint(5 + rnd, 15 + 2 * rnd)
        xp = rng.randint(10 + 2 * rnd, 20 + 3 * rnd)

    drops = [Drop(kind="gold", amount=gold), Drop(kind="xp", amount=xp)]
    if boss:
        drops.append(Drop(kind="item", amount=1, name=rng.choice(BOSS_ITEMS)))

    name = rng.choice(BOSS_NAMES if boss else ENEMY_NAMES)
    return Enemy(
        round=rnd,
        name=name,
        is_boss=boss,
        max_hp=max(1, max_hp),
        level=1 + (rnd - 1) // 2,
        drops=tuple(drops),
    )


def effective_damage(raw_damage: int, player_attack: int, base_attack: int) -> int:
    scaled = round_half_up(raw_damage * player_attack / max(base_attack, 1))
    return max(1, scaled)


def apply_damage(enemy_hp: int, raw_damage: int, player_attack: int, base_attack: int) -> int:
    return max(0, enemy_hp - effective_damage(raw_damage, player_attack, base_attack))


def penalty_total(damages: Iterable[int]) -> int:
    return sum(max(0, d) for d in damages)
