"""
Progression & Economy - XP accrual, skill allocation, gold.

Every function takes a state (or character) and returns a new one, raising
RuleViolation when the request breaks a rule. Nothing here talks to the
oracle; narrated outcomes (a wager won or lost) arrive as plain arguments.
"""

from __future__ import annotations
from dataclasses import replace

from ..errors import RuleViolation
from .rules import buy_price, liquidation_price, sell_price, skill_points_earned
from .state import (
    Character,
    CreationDraft,
    Equipment,
    GameState,
    Loadout,
    SegmentKind,
    StorySegment,
    STAT_NAMES,
    XP_PER_SKILL_POINT,
    starter_loadout,
)


# =============================================================================
# Experience
# =============================================================================

def accrue_xp(character: Character, delta: int) -> Character:
    """
    Add XP and award one skill point per 100-XP boundary crossed.

    XP never drops below zero and a loss of XP never takes points back.
    """
    old_xp = character.xp
    new_xp = max(0, old_xp + delta)
    earned = skill_points_earned(old_xp, new_xp, XP_PER_SKILL_POINT)
    return replace(character, xp=new_xp, skill_points=character.skill_points + earned)


# =============================================================================
# Skill & stat allocation
# =============================================================================

def _allocation_cost(
    current: dict[str, int],
    requested: dict[str, int],
    allowed: set[str] | None,
    what: str,
) -> int:
    """Points needed to move from current to requested levels (1 per step)."""
    cost = 0
    for name, level in requested.items():
        if allowed is not None and name not in allowed:
            raise RuleViolation(f"Unknown {what}: {name}")
        before = current.get(name, 0)
        if level < before:
            raise RuleViolation(f"{what.capitalize()} {name} cannot drop from {before} to {level}")
        cost += level - before
    missing = set(current) - set(requested)
    if missing:
        raise RuleViolation(f"Allocation drops {what}s: {', '.join(sorted(missing))}")
    return cost


def finalize_character(
    draft: CreationDraft,
    chosen_skills: dict[str, int],
    portrait: str | None = None,
) -> Character:
    """
    Materialize the character from the creation draft.

    Levels are bought one point each from the starting pool; unspent
    points stay on the character for a later level-up.
    """
    allowed = {skill.name for pool in draft.skill_pools.values() for skill in pool}
    chosen = {name: level for name, level in chosen_skills.items() if level > 0}
    cost = _allocation_cost({}, chosen, allowed, "skill")
    if cost > draft.starting_skill_points:
        raise RuleViolation(
            f"Allocated {cost} points but only {draft.starting_skill_points} are available"
        )
    return Character(
        name=draft.name,
        gender=draft.gender,
        description=draft.description,
        skills=chosen,
        skill_points=draft.starting_skill_points - cost,
        equipment=starter_loadout(),
        portrait=portrait,
    )


def allocate_level_up(
    state: GameState,
    skills: dict[str, int],
    stats: dict[str, int] | None = None,
) -> Character:
    """
    Apply a level-up allocation and return the updated character.

    skills is the full requested skill map; stats optionally raises
    attributes. Both are paid from unspent skill points, 1 per step.
    """
    character = state.character
    if character is None:
        raise RuleViolation("No character to level up")

    skill_cost = _allocation_cost(character.skills, skills, state.all_skill_names() | set(character.skills), "skill")
    new_stats = dict(character.stats)
    stat_cost = 0
    if stats:
        requested = {**character.stats, **stats}
        stat_cost = _allocation_cost(character.stats, requested, set(STAT_NAMES), "stat")
        new_stats = requested

    spent = skill_cost + stat_cost
    if spent > character.skill_points:
        raise RuleViolation(f"Allocated {spent} points but only {character.skill_points} are available")

    return replace(
        character,
        skills={name: level for name, level in skills.items() if level > 0 or name in character.skills},
        stats=new_stats,
        skill_points=character.skill_points - spent,
    )


# =============================================================================
# Gold
# =============================================================================

def buy_item(character: Character, item: Equipment) -> tuple[Character, int]:
    """Buy at the charisma-adjusted price; the item goes to gear."""
    price = buy_price(item.value, character.stat("CHA"))
    if price > character.gold:
        raise RuleViolation(f"{item.name} costs {price} gold, you have {character.gold}")
    equipment = character.equipment
    loadout = Loadout(weapon=equipment.weapon, armor=equipment.armor, gear=equipment.gear + [item])
    return replace(character, gold=character.gold - price, equipment=loadout), price


def _without_gear(character: Character, item_name: str) -> tuple[Equipment, Loadout]:
    equipment = character.equipment
    item = equipment.find_gear(item_name)
    if item is None:
        raise RuleViolation(f"You are not carrying {item_name}")
    gear = list(equipment.gear)
    gear.remove(item)
    return item, Loadout(weapon=equipment.weapon, armor=equipment.armor, gear=gear)


def sell_item(character: Character, item_name: str) -> tuple[Character, int]:
    """Sell a gear item to a vendor at the charisma-adjusted price."""
    item, loadout = _without_gear(character, item_name)
    price = sell_price(item.value, character.stat("CHA"))
    return replace(character, gold=character.gold + price, equipment=loadout), price


def liquidate_item(character: Character, item_name: str) -> tuple[Character, int]:
    """Sell a gear item outside a vendor screen for a flat half of its value."""
    item, loadout = _without_gear(character, item_name)
    price = liquidation_price(item.value)
    return replace(character, gold=character.gold + price, equipment=loadout), price


def settle_wager(character: Character, stake: int, won: bool) -> Character:
    """Win or lose the stake; the stake must be covered by gold on hand."""
    if stake < 1:
        raise RuleViolation("A wager needs a stake of at least 1 gold")
    if stake > character.gold:
        raise RuleViolation(f"You cannot stake {stake} gold with {character.gold} on hand")
    return replace(character, gold=character.gold + stake if won else character.gold - stake)


def collect_loot(character: Character, xp: int, gold: int, items: list[Equipment]) -> Character:
    """Victory spoils: XP accrual, gold, and items into gear."""
    character = accrue_xp(character, xp)
    equipment = character.equipment
    loadout = Loadout(weapon=equipment.weapon, armor=equipment.armor, gear=equipment.gear + list(items))
    return replace(character, gold=character.gold + max(0, gold), equipment=loadout)


def opening_segment(draft: CreationDraft, illustration: str | None) -> StorySegment:
    return StorySegment(text=draft.opening_text, illustration=illustration, kind=SegmentKind.STORY)
