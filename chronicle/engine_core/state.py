"""
Game State - The authoritative record of one adventure.

Design principles:
- Immutable-friendly: all mutations return new state
- Serializable: to_dict()/from_dict() round-trip for persistence
- One aggregate root: GameState owns the character, party and mode sub-state
- Mode-specific sub-state (combat, loot, transaction) is only set while
  its mode is active
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any
from enum import Enum


# Limits and starting values
MAX_STORY_LOG = 100
SUMMARY_EVERY = 10
MAX_PARTY_SIZE = 5
XP_PER_SKILL_POINT = 100
ALIGNMENT_BOUND = 100
RELATIONSHIP_BOUND = 100
RECRUITED_RELATIONSHIP = 20
STARTING_HP = 100
BASE_STAT = 8
DEFAULT_WEATHER = "Clear Skies"
DEFAULT_TIME_OF_DAY = "Morning"

STAT_NAMES = ("STR", "DEX", "CON", "INT", "WIS", "CHA")
SKILL_POOL_NAMES = ("Combat", "Magic", "Utility")


class GameMode(Enum):
    """The mode discriminator (gameStatus)."""
    INITIAL_LOAD = "initial_load"
    CHARACTER_CREATION = "characterCreation"
    CHARACTER_CUSTOMIZE = "characterCustomize"
    PLAYING = "playing"
    COMBAT = "combat"
    LOOTING = "looting"
    TRANSACTION = "transaction"
    GAMBLING = "gambling"
    LEVEL_UP = "levelUp"
    GAME_OVER = "gameOver"


class SegmentKind(Enum):
    """What a story log entry records."""
    STORY = "story"
    INFO = "info"
    VICTORY = "victory"
    DEFEAT = "defeat"


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


# =============================================================================
# Character & party
# =============================================================================

@dataclass
class Equipment:
    """
    A piece of equipment.

    stats carries numeric properties; the engine reads "damage" for weapons
    and "damageReduction" for armor. value is the base trade value in gold.
    """
    name: str
    description: str = ""
    stats: dict[str, int] = field(default_factory=dict)
    value: int = 0

    @property
    def damage(self) -> int:
        return int(self.stats.get("damage", 0))

    @property
    def damage_reduction(self) -> int:
        return int(self.stats.get("damageReduction", 0))


@dataclass
class Loadout:
    """Single weapon slot, single armor slot, unordered gear."""
    weapon: Equipment | None = None
    armor: Equipment | None = None
    gear: list[Equipment] = field(default_factory=list)

    def find_gear(self, name: str) -> Equipment | None:
        lowered = name.lower()
        for item in self.gear:
            if item.name.lower() == lowered:
                return item
        return None


@dataclass
class Alignment:
    """Two independent axes, each clamped to [-100, 100]."""
    order: int = 0  # chaotic (-) .. lawful (+)
    morality: int = 0  # evil (-) .. good (+)

    def shifted(self, order: int = 0, morality: int = 0) -> Alignment:
        return Alignment(
            order=clamp(self.order + order, -ALIGNMENT_BOUND, ALIGNMENT_BOUND),
            morality=clamp(self.morality + morality, -ALIGNMENT_BOUND, ALIGNMENT_BOUND),
        )

    def distance(self, other: Alignment) -> int:
        return abs(self.order - other.order) + abs(self.morality - other.morality)


def starting_stats() -> dict[str, int]:
    return {name: BASE_STAT for name in STAT_NAMES}


def starter_loadout() -> Loadout:
    return Loadout(
        weapon=Equipment(
            name="Rusty Dagger",
            description="A simple, old dagger.",
            stats={"damage": 5},
            value=10,
        ),
        armor=Equipment(
            name="Worn Leather",
            description="Basic leather armor.",
            stats={"damageReduction": 2},
            value=15,
        ),
    )


@dataclass
class Character:
    """
    The player character.

    Owned by exactly one GameState; only the reducer, the combat resolver
    and the progression rules produce changed copies.
    """
    name: str
    gender: str = ""
    description: str = ""
    hp: int = STARTING_HP
    max_hp: int = STARTING_HP
    xp: int = 0
    skills: dict[str, int] = field(default_factory=dict)
    skill_points: int = 0
    stats: dict[str, int] = field(default_factory=starting_stats)
    alignment: Alignment = field(default_factory=Alignment)
    reputation: dict[str, int] = field(default_factory=dict)
    equipment: Loadout = field(default_factory=Loadout)
    gold: int = 0
    story_summary: str | None = None
    portrait: str | None = None

    @property
    def is_dead(self) -> bool:
        return self.hp <= 0

    def stat(self, name: str) -> int:
        return self.stats.get(name, 0)

    def with_hp(self, hp: int) -> Character:
        """Return a copy with hp clamped into [0, max_hp]."""
        return replace(self, hp=clamp(hp, 0, self.max_hp))


@dataclass
class Companion:
    """A party member other than the player."""
    name: str
    description: str = ""
    personality: str = ""
    skills: dict[str, int] = field(default_factory=dict)
    alignment: Alignment = field(default_factory=Alignment)
    relationship: int = 0

    def with_relationship_change(self, delta: int) -> Companion:
        return replace(
            self,
            relationship=clamp(self.relationship + delta, -RELATIONSHIP_BOUND, RELATIONSHIP_BOUND),
        )


# =============================================================================
# Story
# =============================================================================

@dataclass
class SkillCheck:
    """Outcome of a skill check, as asserted by the oracle."""
    skill: str
    modifier: int
    base_chance: int
    success: bool

    @property
    def effective_chance(self) -> int:
        return clamp(self.base_chance + self.modifier, 0, 100)


@dataclass
class StorySegment:
    """One narrated entry in the story log."""
    text: str
    illustration: str | None = None
    skill_check: SkillCheck | None = None
    kind: SegmentKind = SegmentKind.STORY


@dataclass
class Skill:
    name: str
    description: str = ""


@dataclass
class StoryGuidance:
    """Setting and plot, fixed once the character is created."""
    plot: str
    setting: str


# =============================================================================
# Mode sub-state
# =============================================================================

@dataclass
class Enemy:
    """A combatant. Defeated enemies stay in the roster at 0 HP."""
    enemy_id: str
    name: str
    hp: int
    max_hp: int
    damage: int = 0
    description: str = ""

    @property
    def is_defeated(self) -> bool:
        return self.hp <= 0


@dataclass
class CombatState:
    enemies: list[Enemy] = field(default_factory=list)
    round: int = 1
    log: list[str] = field(default_factory=list)

    def get_enemy(self, enemy_id: str) -> Enemy | None:
        for enemy in self.enemies:
            if enemy.enemy_id == enemy_id:
                return enemy
        return None

    @property
    def living_enemies(self) -> list[Enemy]:
        return [e for e in self.enemies if not e.is_defeated]

    @property
    def all_defeated(self) -> bool:
        return all(e.is_defeated for e in self.enemies)


@dataclass
class LootState:
    """Victory spoils, kept for the loot screen."""
    text: str = ""
    xp: int = 0
    gold: int = 0
    items: list[Equipment] = field(default_factory=list)


@dataclass
class Vendor:
    name: str
    description: str = ""
    inventory: list[Equipment] = field(default_factory=list)

    def find_item(self, name: str) -> Equipment | None:
        lowered = name.lower()
        for item in self.inventory:
            if item.name.lower() == lowered:
                return item
        return None


@dataclass
class TransactionState:
    vendor: Vendor


@dataclass
class MapLocation:
    name: str
    description: str = ""
    visited: bool = False


@dataclass
class MapState:
    """Append-only by name; visited never reverts."""
    locations: list[MapLocation] = field(default_factory=list)
    current_location: str | None = None

    def get_location(self, name: str) -> MapLocation | None:
        for location in self.locations:
            if location.name == name:
                return location
        return None


@dataclass
class CreationDraft:
    """Generated character data held while the player allocates skills."""
    name: str
    gender: str
    description: str
    story_guidance: StoryGuidance
    opening_text: str
    opening_actions: list[str]
    skill_pools: dict[str, list[Skill]]
    starting_skill_points: int


# =============================================================================
# Aggregate root
# =============================================================================

@dataclass
class GameState:
    """
    Complete game state at a point in time.

    This is the canonical state that the engine operates on.
    All state changes go through the reducer, the combat resolver,
    or the progression rules.
    """
    mode: GameMode = GameMode.INITIAL_LOAD
    character: Character | None = None
    companions: list[Companion] = field(default_factory=list)
    story_log: list[StorySegment] = field(default_factory=list)
    current_actions: list[str] = field(default_factory=list)
    story_guidance: StoryGuidance | None = None
    skill_pools: dict[str, list[Skill]] | None = None
    weather: str = DEFAULT_WEATHER
    time_of_day: str = DEFAULT_TIME_OF_DAY

    combat: CombatState | None = None
    loot: LootState | None = None
    transaction: TransactionState | None = None
    map: MapState = field(default_factory=MapState)

    draft: CreationDraft | None = None

    # Segments ever written; drives the summary cadence past the log cap
    segments_written: int = 0

    @property
    def is_over(self) -> bool:
        return self.mode == GameMode.GAME_OVER

    def all_skill_names(self) -> set[str]:
        if not self.skill_pools:
            return set()
        return {skill.name for pool in self.skill_pools.values() for skill in pool}

    def with_segment(self, segment: StorySegment) -> GameState:
        """Return new state with a segment appended, keeping the newest MAX_STORY_LOG."""
        log = (self.story_log + [segment])[-MAX_STORY_LOG:]
        return self._copy_with(story_log=log, segments_written=self.segments_written + 1)

    def _copy_with(self, **kwargs) -> GameState:
        """Create a copy with some fields replaced."""
        return replace(self, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        return _to_plain(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GameState:
        return _state_from_dict(data)


def check_invariants(state: GameState) -> list[str]:
    """Return human-readable invariant violations (empty when healthy)."""
    problems: list[str] = []

    active = [name for name in ("combat", "loot", "transaction") if getattr(state, name) is not None]
    if len(active) > 1:
        problems.append(f"more than one mode sub-state set: {active}")
    expected = {
        "combat": GameMode.COMBAT,
        "loot": GameMode.LOOTING,
        "transaction": GameMode.TRANSACTION,
    }
    for name in active:
        if state.mode != expected[name]:
            problems.append(f"{name} set while mode is {state.mode.value}")

    if len(state.story_log) > MAX_STORY_LOG:
        problems.append(f"story log holds {len(state.story_log)} segments")

    character = state.character
    if character is not None:
        if not 0 <= character.hp <= character.max_hp:
            problems.append(f"hp {character.hp} outside [0, {character.max_hp}]")
        if character.hp == 0 and state.mode != GameMode.GAME_OVER:
            problems.append("character at 0 hp but game is not over")
        if character.gold < 0:
            problems.append("negative gold")
        if character.skill_points < 0:
            problems.append("negative skill points")
        for axis in (character.alignment.order, character.alignment.morality):
            if abs(axis) > ALIGNMENT_BOUND:
                problems.append(f"alignment axis {axis} out of bounds")

    if len(state.companions) > MAX_PARTY_SIZE:
        problems.append(f"party of {len(state.companions)} exceeds {MAX_PARTY_SIZE}")
    for companion in state.companions:
        if abs(companion.relationship) > RELATIONSHIP_BOUND:
            problems.append(f"{companion.name} relationship out of bounds")

    if state.mode in {GameMode.PLAYING, GameMode.COMBAT, GameMode.LEVEL_UP}:
        if state.character is None or state.story_guidance is None:
            problems.append(f"mode {state.mode.value} without a materialized character")

    return problems


# =============================================================================
# Serialization
# =============================================================================

def _to_plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "__dataclass_fields__"):
        return {name: _to_plain(getattr(value, name)) for name in value.__dataclass_fields__}
    if isinstance(value, dict):
        return {key: _to_plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_to_plain(item) for item in value]
    return value


def _equipment(data: dict | None) -> Equipment | None:
    if not data:
        return None
    return Equipment(
        name=data["name"],
        description=data.get("description", ""),
        stats=dict(data.get("stats", {})),
        value=data.get("value", 0),
    )


def _alignment(data: dict | None) -> Alignment:
    data = data or {}
    return Alignment(order=data.get("order", 0), morality=data.get("morality", 0))


def _skill_pools(data: dict | None) -> dict[str, list[Skill]] | None:
    if data is None:
        return None
    return {
        pool: [Skill(name=s["name"], description=s.get("description", "")) for s in skills]
        for pool, skills in data.items()
    }


def _guidance(data: dict | None) -> StoryGuidance | None:
    if not data:
        return None
    return StoryGuidance(plot=data["plot"], setting=data["setting"])


def _character(data: dict | None) -> Character | None:
    if not data:
        return None
    equipment = data.get("equipment") or {}
    return Character(
        name=data["name"],
        gender=data.get("gender", ""),
        description=data.get("description", ""),
        hp=data.get("hp", STARTING_HP),
        max_hp=data.get("max_hp", STARTING_HP),
        xp=data.get("xp", 0),
        skills=dict(data.get("skills", {})),
        skill_points=data.get("skill_points", 0),
        stats=dict(data.get("stats") or starting_stats()),
        alignment=_alignment(data.get("alignment")),
        reputation=dict(data.get("reputation", {})),
        equipment=Loadout(
            weapon=_equipment(equipment.get("weapon")),
            armor=_equipment(equipment.get("armor")),
            gear=[_equipment(item) for item in equipment.get("gear", [])],
        ),
        gold=data.get("gold", 0),
        story_summary=data.get("story_summary"),
        portrait=data.get("portrait"),
    )


def _segment(data: dict) -> StorySegment:
    check = data.get("skill_check")
    return StorySegment(
        text=data["text"],
        illustration=data.get("illustration"),
        skill_check=SkillCheck(**check) if check else None,
        kind=SegmentKind(data.get("kind", SegmentKind.STORY.value)),
    )


def _state_from_dict(data: dict[str, Any]) -> GameState:
    combat = data.get("combat")
    loot = data.get("loot")
    transaction = data.get("transaction")
    map_data = data.get("map") or {}
    draft = data.get("draft")

    return GameState(
        mode=GameMode(data.get("mode", GameMode.INITIAL_LOAD.value)),
        character=_character(data.get("character")),
        companions=[
            Companion(
                name=c["name"],
                description=c.get("description", ""),
                personality=c.get("personality", ""),
                skills=dict(c.get("skills", {})),
                alignment=_alignment(c.get("alignment")),
                relationship=c.get("relationship", 0),
            )
            for c in data.get("companions", [])
        ],
        story_log=[_segment(s) for s in data.get("story_log", [])],
        current_actions=list(data.get("current_actions", [])),
        story_guidance=_guidance(data.get("story_guidance")),
        skill_pools=_skill_pools(data.get("skill_pools")),
        weather=data.get("weather", DEFAULT_WEATHER),
        time_of_day=data.get("time_of_day", DEFAULT_TIME_OF_DAY),
        combat=CombatState(
            enemies=[Enemy(**e) for e in combat.get("enemies", [])],
            round=combat.get("round", 1),
            log=list(combat.get("log", [])),
        ) if combat else None,
        loot=LootState(
            text=loot.get("text", ""),
            xp=loot.get("xp", 0),
            gold=loot.get("gold", 0),
            items=[_equipment(i) for i in loot.get("items", [])],
        ) if loot else None,
        transaction=TransactionState(
            vendor=Vendor(
                name=transaction["vendor"]["name"],
                description=transaction["vendor"].get("description", ""),
                inventory=[_equipment(i) for i in transaction["vendor"].get("inventory", [])],
            )
        ) if transaction else None,
        map=MapState(
            locations=[MapLocation(**loc) for loc in map_data.get("locations", [])],
            current_location=map_data.get("current_location"),
        ),
        draft=CreationDraft(
            name=draft["name"],
            gender=draft.get("gender", ""),
            description=draft.get("description", ""),
            story_guidance=_guidance(draft["story_guidance"]),
            opening_text=draft.get("opening_text", ""),
            opening_actions=list(draft.get("opening_actions", [])),
            skill_pools=_skill_pools(draft["skill_pools"]),
            starting_skill_points=draft.get("starting_skill_points", 0),
        ) if draft else None,
        segments_written=data.get("segments_written", len(data.get("story_log", []))),
    )
