"""
Rule Calculator - Pure functions from character attributes to numbers.

No state, no side effects. Every function is total over its numeric domain.

Two scales are in play:
- The stat bonus curve feeds skill-check modifiers (a percentage added to
  the oracle's base success chance).
- Ability modifiers, floor((stat - 8) / 2), feed combat damage directly.
"""

from __future__ import annotations
from enum import Enum
import math

from .state import SKILL_POOL_NAMES, Skill


# Step table for the stat bonus curve: (inclusive upper bound, bonus)
_BONUS_STEPS = ((4, 1), (8, 2), (12, 4), (16, 8), (20, 16))

# Which attributes back the checks of each skill pool
POOL_STATS: dict[str, tuple[str, str]] = {
    "Combat": ("STR", "CON"),
    "Magic": ("INT", "WIS"),
    "Utility": ("CHA", "DEX"),
}

_MULTIPLIER_TABLE = {1: 1.0, 2: 1.2, 3: 1.4, 4: 1.8, 5: 2.6, 6: 4.2}

MAX_DODGE_CHANCE = 50.0
UNARMED_DAMAGE = 1
LIQUIDATION_PERCENT = 50


class AttackKind(Enum):
    MELEE = "melee"
    RANGED = "ranged"
    MAGIC = "magic"


ATTACK_STAT = {
    AttackKind.MELEE: "STR",
    AttackKind.RANGED: "DEX",
    AttackKind.MAGIC: "WIS",
}

# Skill pool a player attack draws its skill from when none is named
ATTACK_POOL = {
    AttackKind.MELEE: "Combat",
    AttackKind.RANGED: "Combat",
    AttackKind.MAGIC: "Magic",
}


# =============================================================================
# Stat bonus curve & skill checks
# =============================================================================

def stat_bonus(value: int) -> int:
    """
    Bonus for an attribute value.

    0 at or below zero, then 1/2/4/8/16 up to 20, then +4 for every
    additional 4 points (partial steps round up).
    """
    if value <= 0:
        return 0
    for bound, bonus in _BONUS_STEPS:
        if value <= bound:
            return bonus
    return 16 + 4 * math.ceil((value - 20) / 4)


def skill_pool_of(skill: str, skill_pools: dict[str, list[Skill]] | None) -> str | None:
    """Return the pool containing the skill, or None when it is in none."""
    if not skill_pools:
        return None
    for pool_name in SKILL_POOL_NAMES:
        for candidate in skill_pools.get(pool_name, []):
            if candidate.name == skill:
                return pool_name
    return None


def skill_check_modifier(
    skill: str,
    stats: dict[str, int],
    skill_pools: dict[str, list[Skill]] | None,
) -> int:
    """Percentage added to the oracle's base success chance for a check."""
    pool = skill_pool_of(skill, skill_pools)
    if pool is None:
        return 0
    first, second = POOL_STATS[pool]
    return stat_bonus(stats.get(first, 0)) + stat_bonus(stats.get(second, 0))


def skill_check_modifiers(
    skills: dict[str, int],
    stats: dict[str, int],
    skill_pools: dict[str, list[Skill]] | None,
) -> dict[str, int]:
    """Modifier for every skill the character has, keyed by skill name."""
    return {name: skill_check_modifier(name, stats, skill_pools) for name in skills}


# =============================================================================
# Combat
# =============================================================================

def ability_modifier(stat_value: int) -> int:
    """Flat combat bonus: floor((stat - 8) / 2)."""
    return (stat_value - 8) // 2


def attack_modifier(kind: AttackKind, stats: dict[str, int]) -> int:
    return ability_modifier(stats.get(ATTACK_STAT[kind], 0))


def dodge_chance(dex: int) -> float:
    """Percent chance an enemy attack is a total miss."""
    return max(0.0, min(MAX_DODGE_CHANCE, dex * 1.5))


def skill_damage_multiplier(level: int) -> float:
    """
    Damage multiplier for a skill level.

    Levels 1..6 come from a fixed table; past 6 each increment is double
    the previous one. Untrained (level < 1) counts as level 1.
    """
    if level <= 1:
        return _MULTIPLIER_TABLE[1]
    if level <= 6:
        return _MULTIPLIER_TABLE[level]

    before, current = _MULTIPLIER_TABLE[5], _MULTIPLIER_TABLE[6]
    for _ in range(level - 6):
        before, current = current, current + 2 * (current - before)
    return current


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def weapon_damage(base_damage: int, skill_level: int) -> int:
    """Weapon base damage scaled by the skill multiplier, rounded."""
    return round_half_up(base_damage * skill_damage_multiplier(skill_level))


def mitigate(raw_damage: int, damage_reduction: int) -> int:
    """Damage left after armor; never negative."""
    return max(0, raw_damage - max(0, damage_reduction))


# =============================================================================
# Economy
# =============================================================================
# Percent arithmetic stays in integers so prices never drift on float error.

def buy_percent(cha: int) -> int:
    return max(50, 100 - (cha - 8) * 2)


def sell_percent(cha: int) -> int:
    return 50 + (cha - 8) * 2


def buy_price(value: int, cha: int) -> int:
    """ceil(value * buy_percent / 100)."""
    return -(-value * buy_percent(cha) // 100)


def sell_price(value: int, cha: int) -> int:
    """floor(value * sell_percent / 100), never negative."""
    return max(0, value * sell_percent(cha) // 100)


def liquidation_price(value: int) -> int:
    """Flat sell-back for gear sold outside a vendor screen."""
    return value * LIQUIDATION_PERCENT // 100


# =============================================================================
# Progression
# =============================================================================

def skill_points_earned(old_xp: int, new_xp: int, per_point: int = 100) -> int:
    """One skill point per XP boundary crossed upward."""
    return max(0, new_xp // per_point - old_xp // per_point)
