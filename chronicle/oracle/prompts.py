"""
Oracle Prompts - Request context and response schemas per call kind.

Every oracle call is an OracleRequest: the call kind, a structured context
dict (character sheet snapshot, history, the numeric modifiers the rule
calculator computed), a rendered prompt and the JSON schema the response
must follow.

The context dict is the contract; the prompt text is a rendering of it.
Modifiers are always included so the oracle never has to do the math.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
import json

from ..engine_core.rules import (
    ATTACK_STAT,
    ability_modifier,
    dodge_chance,
    skill_check_modifiers,
    skill_damage_multiplier,
)
from ..engine_core.state import GameState, StorySegment
from .schemas import (
    AlignmentSyncPayload,
    CharacterGenPayload,
    CombatTurnPayload,
    GamblePayload,
    MapSyncPayload,
    NextStepPayload,
    OracleModel,
    SummaryPayload,
    VictoryPayload,
)


HISTORY_WINDOW = 50
SUMMARY_WINDOW = 10

CAMPAIGN_TYPES = (
    "Revenge Story", "Romantic Conquest", "World War", "Monster Hunt",
    "Political Intrigue", "Guild Rivalry", "Lost Heir", "Cursed Land",
    "Ancient Prophecy", "Exploration and Discovery", "Defend the Realm", "Heist",
    "Magical Tournament", "Survive the Apocalypse", "Solve a Mystery", "Uprising Against Tyranny",
    "Thieves' Guild Initiation", "Royal Escort Mission", "Artifact Recovery", "Establish a Colony",
    "Gladiator Arena", "Spy Thriller", "Cosmic Horror", "Time Travel Paradox",
)

RACES = ("Human", "Elf", "Dwarf", "Orc", "Halfling", "Gnome", "Dragonborn", "Tiefling", "Half-Elf")

CLASSES = (
    "Warrior", "Paladin", "Ranger", "Rogue", "Monk", "Barbarian", "Bard", "Cleric", "Druid",
    "Sorcerer", "Warlock", "Wizard", "Artificer", "Blood Hunter", "Death Knight", "Demon Hunter",
    "Spellblade", "Necromancer", "Summoner", "Elementalist", "Shaman", "Templar", "Assassin",
    "Swashbuckler", "Gunslinger", "Alchemist", "Berserker", "Gladiator", "Scout", "Inquisitor",
)

BACKGROUNDS = (
    "Commoner", "Noble", "Royalty", "Magical Family", "Farmer", "Soldier", "Criminal", "Sage",
    "Artisan", "Entertainer", "Hermit", "Outcast", "Merchant", "Acolyte", "Urchin",
)


class CallKind(Enum):
    """Oracle call kinds, each with its own response schema."""
    CHARACTER_GEN = "character_gen"
    NEXT_STEP = "next_step"
    COMBAT_TURN = "combat_turn"
    VICTORY = "victory"
    SUMMARY = "summary"
    MAP_SYNC = "map_sync"
    ALIGNMENT_SYNC = "alignment_sync"
    GAMBLE = "gamble"


PAYLOAD_MODELS: dict[CallKind, type[OracleModel]] = {
    CallKind.CHARACTER_GEN: CharacterGenPayload,
    CallKind.NEXT_STEP: NextStepPayload,
    CallKind.COMBAT_TURN: CombatTurnPayload,
    CallKind.VICTORY: VictoryPayload,
    CallKind.SUMMARY: SummaryPayload,
    CallKind.MAP_SYNC: MapSyncPayload,
    CallKind.ALIGNMENT_SYNC: AlignmentSyncPayload,
    CallKind.GAMBLE: GamblePayload,
}


def response_schema(kind: CallKind) -> dict[str, Any]:
    """JSON schema of the payload expected back for a call kind."""
    return PAYLOAD_MODELS[kind].model_json_schema(by_alias=True)


@dataclass
class OracleRequest:
    """A single oracle call: what is asked, with what context."""
    kind: CallKind
    context: dict[str, Any]
    prompt: str
    schema: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.schema:
            self.schema = response_schema(self.kind)


# =============================================================================
# Context snapshots
# =============================================================================

def character_sheet(state: GameState) -> dict[str, Any]:
    """Snapshot of the character, party and surroundings for the oracle."""
    character = state.character
    if character is None:
        return {}
    equipment = character.equipment
    return {
        "name": character.name,
        "gender": character.gender,
        "description": character.description,
        "hp": character.hp,
        "maxHp": character.max_hp,
        "xp": character.xp,
        "gold": character.gold,
        "stats": dict(character.stats),
        "skills": dict(character.skills),
        "alignment": {"order": character.alignment.order, "morality": character.alignment.morality},
        "reputation": dict(character.reputation),
        "equipment": {
            "weapon": {"name": equipment.weapon.name, "damage": equipment.weapon.damage}
            if equipment.weapon else None,
            "armor": {"name": equipment.armor.name, "damageReduction": equipment.armor.damage_reduction}
            if equipment.armor else None,
            "gear": [item.name for item in equipment.gear],
        },
        "companions": [
            {
                "name": companion.name,
                "personality": companion.personality,
                "relationship": companion.relationship,
            }
            for companion in state.companions
        ],
        "weather": state.weather,
        "timeOfDay": state.time_of_day,
        "location": state.map.current_location,
    }


def story_history(log: list[StorySegment], window: int = HISTORY_WINDOW) -> list[str]:
    return [segment.text for segment in log[-window:]]


def skill_modifiers(state: GameState) -> dict[str, int]:
    """Skill-check modifiers (percent) for every skill the character has."""
    if state.character is None:
        return {}
    return skill_check_modifiers(state.character.skills, state.character.stats, state.skill_pools)


def combat_modifiers(state: GameState) -> dict[str, Any]:
    """Ability modifiers, dodge chance and skill multipliers for a fight."""
    character = state.character
    return {
        "ability": {
            kind.value: ability_modifier(character.stat(stat)) for kind, stat in ATTACK_STAT.items()
        },
        "dodgeChance": dodge_chance(character.stat("DEX")),
        "skillMultipliers": {
            name: skill_damage_multiplier(level) for name, level in character.skills.items()
        },
    }


def _render(instruction: str, context: dict[str, Any]) -> str:
    return f"{instruction.strip()}\n\nCONTEXT (JSON):\n{json.dumps(context, indent=2, default=str)}"


# =============================================================================
# Builders
# =============================================================================

def character_gen_request(details: dict[str, Any]) -> OracleRequest:
    context = {
        "name": details.get("name", ""),
        "gender": details.get("gender", ""),
        "race": details.get("race", RACES[0]),
        "class": details.get("character_class", details.get("class", CLASSES[0])),
        "background": details.get("background", BACKGROUNDS[0]),
        "campaign": details.get("campaign", CAMPAIGN_TYPES[0]),
    }
    instruction = """
Generate a fantasy character, story guidance, skill pools (Combat, Magic,
Utility) and an opening scene for a text adventure game, based on the
attributes in the context. The desired campaign type shapes the opening
event and the plot. Offer one or two starting companions. Make the
character description detailed enough to paint a portrait from.
"""
    return OracleRequest(CallKind.CHARACTER_GEN, context, _render(instruction, context))


def next_step_request(state: GameState, action_text: str) -> OracleRequest:
    context = {
        "storyGuidance": {
            "setting": state.story_guidance.setting,
            "plot": state.story_guidance.plot,
        } if state.story_guidance else None,
        "character": character_sheet(state),
        "storySummary": (state.character.story_summary if state.character else None)
        or "The story is just beginning.",
        "history": story_history(state.story_log),
        "skillCheckModifiers": skill_modifiers(state),
        "map": [
            {"name": location.name, "visited": location.visited} for location in state.map.locations
        ],
        "playerAction": action_text,
    }
    instruction = """
Continue this text adventure from the player's action. Report HP and XP
changes, offer new actions and keep the story moving. If the action calls
for a skill check, return it with a base chance; the context lists the
modifier to add for each skill. Update companion relationships when their
opinion of the player changes. You may offer a new companion to recruit.
Start combat with a list of enemies, or a trade with a vendor, when the
story calls for it.
"""
    return OracleRequest(CallKind.NEXT_STEP, context, _render(instruction, context))


def combat_turn_request(state: GameState, action_text: str) -> OracleRequest:
    combat = state.combat
    context = {
        "character": character_sheet(state),
        "modifiers": combat_modifiers(state),
        "round": combat.round,
        "enemies": [
            {
                "id": enemy.enemy_id,
                "name": enemy.name,
                "hp": enemy.hp,
                "maxHp": enemy.max_hp,
                "damage": enemy.damage,
                "defeated": enemy.is_defeated,
            }
            for enemy in combat.enemies
        ],
        "log": combat.log[-SUMMARY_WINDOW:],
        "playerAction": action_text,
    }
    instruction = """
Narrate one round of combat. Say which kind of attack the player makes
(melee, ranged or magic), the skill used and the targeted enemy id. List
the damage each enemy still standing tries to deal. The engine computes
the final hit points; describe, do not decide, who wins.
"""
    return OracleRequest(CallKind.COMBAT_TURN, context, _render(instruction, context))


def victory_request(state: GameState) -> OracleRequest:
    context = {
        "character": character_sheet(state),
        "defeated": [enemy.name for enemy in state.combat.enemies],
        "log": state.combat.log[-SUMMARY_WINDOW:],
    }
    instruction = """
The battle is won. Write an epic closing passage, award XP, and describe
the loot: an amount of gold and a list of items with their value.
"""
    return OracleRequest(CallKind.VICTORY, context, _render(instruction, context))


def summary_request(state: GameState) -> OracleRequest:
    character = state.character
    context = {
        "previousSummary": (character.story_summary if character else None) or "The story has just begun.",
        "recentEvents": story_history(state.story_log, SUMMARY_WINDOW),
    }
    instruction = """
You are a master storyteller. Update the character's story summary:
- 40% importance on the PREVIOUS SUMMARY.
- 60% importance on the RECENT EVENTS.
Weave the new events into the existing narrative as one cohesive summary.
"""
    return OracleRequest(CallKind.SUMMARY, context, _render(instruction, context))


def map_sync_request(state: GameState) -> OracleRequest:
    context = {
        "history": story_history(state.story_log, SUMMARY_WINDOW),
        "known": [location.name for location in state.map.locations],
    }
    instruction = "List places the recent story introduced and the one the character is at."
    return OracleRequest(CallKind.MAP_SYNC, context, _render(instruction, context))


def alignment_sync_request(state: GameState) -> OracleRequest:
    context = {
        "character": character_sheet(state),
        "history": story_history(state.story_log, SUMMARY_WINDOW),
    }
    instruction = "Judge how the character's recent choices moved them on the order and morality axes."
    return OracleRequest(CallKind.ALIGNMENT_SYNC, context, _render(instruction, context))


def gamble_request(state: GameState, stake: int) -> OracleRequest:
    context = {
        "character": character_sheet(state),
        "stake": stake,
        "utilityModifiers": skill_modifiers(state),
    }
    instruction = "The character wagers the stake at a game of chance. Narrate it and say whether they won."
    return OracleRequest(CallKind.GAMBLE, context, _render(instruction, context))


def illustration_prompt(state: GameState, text: str) -> str:
    setting = state.story_guidance.setting if state.story_guidance else "a fantasy world"
    return f"Digital painting, fantasy art. Setting: {setting}. Scene: {text[:600]}"


def portrait_prompt(description: str) -> str:
    return f"Fantasy character portrait, digital painting. {description[:600]}"
