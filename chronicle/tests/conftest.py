"""
Pytest fixtures for Chronicle tests.
"""

import random

import pytest

from ..engine_core.state import (
    Character,
    CombatState,
    Enemy,
    GameMode,
    GameState,
    Skill,
    StoryGuidance,
    StorySegment,
    starter_loadout,
)
from ..oracle.client import ScriptedOracle
from ..oracle.prompts import CallKind


class FixedRandom(random.Random):
    """random() always returns the same roll."""

    def __init__(self, roll: float):
        super().__init__(0)
        self.roll = roll

    def random(self) -> float:
        return self.roll


@pytest.fixture
def never_dodge() -> FixedRandom:
    # 99 is above every dodge chance (capped at 50)
    return FixedRandom(0.99)


@pytest.fixture
def always_dodge() -> FixedRandom:
    return FixedRandom(0.0)


@pytest.fixture
def skill_pools() -> dict[str, list[Skill]]:
    return {
        "Combat": [Skill("Swordplay"), Skill("Archery")],
        "Magic": [Skill("Fire Bolt")],
        "Utility": [Skill("Lockpicking"), Skill("Persuasion")],
    }


@pytest.fixture
def character() -> Character:
    """A fresh adventurer with the starter loadout."""
    return Character(
        name="Arin",
        gender="female",
        description="A wandering sellsword.",
        skills={"Swordplay": 2, "Lockpicking": 1},
        equipment=starter_loadout(),
        gold=50,
    )


@pytest.fixture
def playing_state(character: Character, skill_pools) -> GameState:
    """A game in progress, one segment into the story."""
    return GameState(
        mode=GameMode.PLAYING,
        character=character,
        story_log=[StorySegment(text="You wake at the crossroads.")],
        current_actions=["Walk north", "Rest"],
        story_guidance=StoryGuidance(plot="Find the lost crown.", setting="The Ashen Vale"),
        skill_pools=skill_pools,
        segments_written=1,
    )


@pytest.fixture
def combat_state(playing_state: GameState) -> GameState:
    """Two enemies: a goblin (10 HP, 4 damage) and a wolf (6 HP, 3 damage)."""
    return playing_state._copy_with(
        mode=GameMode.COMBAT,
        combat=CombatState(
            enemies=[
                Enemy(enemy_id="Goblin-0", name="Goblin", hp=10, max_hp=10, damage=4),
                Enemy(enemy_id="Wolf-1", name="Wolf", hp=6, max_hp=6, damage=3),
            ],
            log=["A goblin and a wolf leap from the brush."],
        ),
        current_actions=["Attack the goblin", "Attack the wolf"],
    )


@pytest.fixture
def oracle() -> ScriptedOracle:
    return ScriptedOracle()


@pytest.fixture
def character_gen_response() -> dict:
    """A character-gen answer in the oracle's own wire shape."""
    return {
        "character": {"name": "Arin", "description": "A wandering sellsword."},
        "storyGuidance": {"plot": "Find the lost crown.", "setting": "The Ashen Vale"},
        "initialStory": {"text": "You wake at the crossroads.", "actions": ["Walk north", "Rest"]},
        "companions": [
            {
                "name": "Brom",
                "description": "A dwarf smith.",
                "personality": "Gruff",
                "skills": [{"skillName": "Smithing", "level": 3}],
                "alignment": {"order": 40, "morality": 10},
            },
        ],
        "skillPools": {
            "Combat": [{"name": "Swordplay"}, {"name": "Archery"}],
            "Magic": ["Fire Bolt"],
            "Utility": [{"name": "Lockpicking", "description": "Open locks."}, "Persuasion"],
        },
        "startingSkillPoints": 5,
    }


@pytest.fixture
def ready_oracle(oracle: ScriptedOracle, character_gen_response: dict) -> ScriptedOracle:
    """Oracle primed to answer character generation."""
    return oracle.push(CallKind.CHARACTER_GEN, character_gen_response)
