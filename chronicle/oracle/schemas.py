"""
Oracle Payload Adapters - Validate and default everything the oracle says.

The oracle's JSON is schema-shaped but semantically untrusted. Every call
kind has a model here; adapt() turns raw oracle output into a fully
defaulted model so the reducer never has to ask "is this field present".

Repair policy:
- Unparseable JSON -> OracleUnavailable (the call failed)
- Not a JSON object, or a required core field missing -> MalformedPayload
- An optional field with the wrong type -> dropped (logged), defaults apply
- One bad entry in a list of models -> that entry alone is dropped

Field names accept the oracle's camelCase, the original wire names
(didHpChange, relationshipChange, ...) and snake_case.
"""

from __future__ import annotations
from typing import Any, ClassVar, Literal, TypeVar, get_args, get_origin
import json
import logging

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from ..errors import MalformedPayload, OracleUnavailable
from ..engine_core.rules import AttackKind

logger = logging.getLogger(__name__)

M = TypeVar("M", bound="OracleModel")

MAX_REPAIRS = 5


class OracleModel(BaseModel):
    """Base for oracle payloads: camelCase on the wire, unknown keys ignored."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    # Key the oracle sometimes wraps the payload in ({"story": {...}})
    envelope: ClassVar[str | None] = None

    @field_validator("*", mode="before")
    @classmethod
    def _drop_bad_entries(cls, value: Any, info: ValidationInfo) -> Any:
        """In a list of payload models, skip the entries that do not validate."""
        entry_model = _list_entry_model(cls.model_fields[info.field_name].annotation)
        if entry_model is None or not isinstance(value, list):
            return value
        kept = []
        for entry in value:
            try:
                kept.append(entry_model.model_validate(entry))
            except ValidationError as exc:
                logger.warning(
                    "dropping malformed %s entry from %s.%s (%d errors)",
                    entry_model.__name__, cls.__name__, info.field_name, exc.error_count(),
                )
        return kept


def _list_entry_model(annotation: Any) -> type[OracleModel] | None:
    """OracleModel subclass X for a list[X] annotation, else None."""
    if get_origin(annotation) is not list:
        return None
    args = get_args(annotation)
    if args and isinstance(args[0], type) and issubclass(args[0], OracleModel):
        return args[0]
    return None


# =============================================================================
# Shared pieces
# =============================================================================

class SkillLevel(OracleModel):
    skill_name: str
    level: int = 1


def _fold_skill_levels(value: Any) -> Any:
    """[{skillName, level}, ...] -> {name: level}; dicts pass through."""
    if isinstance(value, list):
        folded: dict[str, int] = {}
        for entry in value:
            if not isinstance(entry, dict):
                continue
            try:
                skill = SkillLevel.model_validate(entry)
            except ValidationError:
                continue
            folded[skill.skill_name] = skill.level
        return folded
    return value


class SkillSeed(OracleModel):
    name: str
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"name": value}
        return value


class AlignmentDelta(OracleModel):
    order: int = Field(default=0, validation_alias=AliasChoices("order", "lawChaos", "lawful"))
    morality: int = Field(default=0, validation_alias=AliasChoices("morality", "goodEvil", "good"))


class ItemSeed(OracleModel):
    name: str
    description: str = ""
    stats: dict[str, int] = Field(default_factory=dict)
    value: int = 0

    @model_validator(mode="before")
    @classmethod
    def _lift_stats(cls, value: Any) -> Any:
        """Accept damage / damageReduction at the top level."""
        if isinstance(value, dict):
            stats = dict(value.get("stats") or {})
            for key in ("damage", "damageReduction"):
                if key in value and key not in stats:
                    stats[key] = value[key]
            value = {**value, "stats": {k: v for k, v in stats.items() if isinstance(v, int)}}
        return value

    @field_validator("value")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        return max(0, value)


class CompanionSeed(OracleModel):
    name: str
    description: str = ""
    personality: str = ""
    skills: dict[str, int] = Field(default_factory=dict)
    alignment: AlignmentDelta = Field(default_factory=AlignmentDelta)

    @field_validator("skills", mode="before")
    @classmethod
    def _fold_skills(cls, value: Any) -> Any:
        return _fold_skill_levels(value)


class CompanionUpdate(OracleModel):
    name: str
    relationship_change: int = 0


class EquipmentUpdate(OracleModel):
    slot: Literal["weapon", "armor", "gear"]
    action: Literal["add", "remove", "replace", "update"] = "add"
    item: ItemSeed | None = None
    target: str | None = None  # name of the gear item to remove/replace/update

    @field_validator("slot", "action", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class LocationSeed(OracleModel):
    name: str
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _from_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"name": value}
        return value


class MapUpdate(OracleModel):
    new_locations: list[LocationSeed] = Field(default_factory=list)
    visited: str | None = Field(
        default=None,
        validation_alias=AliasChoices("visited", "visitedLocation", "visited_location"),
    )


class EnemySeed(OracleModel):
    name: str
    hp: int = Field(default=10, validation_alias=AliasChoices("hp", "maxHp", "health"))
    damage: int = 0
    description: str = ""

    @field_validator("hp")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)

    @field_validator("damage")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        return max(0, value)


class VendorSeed(OracleModel):
    name: str
    description: str = ""
    inventory: list[ItemSeed] = Field(default_factory=list)


class SkillCheckSeed(OracleModel):
    skill: str
    base_chance: int = 50
    success: bool = False
    spawns_encounter: bool = False


def _int_map(value: Any) -> Any:
    """Keep only integer entries of a name -> int map."""
    if isinstance(value, dict):
        return {str(k): v for k, v in value.items() if isinstance(v, int) and not isinstance(v, bool)}
    return value


# =============================================================================
# Call kinds
# =============================================================================

class CharacterSeed(OracleModel):
    name: str
    description: str = ""


class GuidanceSeed(OracleModel):
    plot: str
    setting: str


class OpeningSeed(OracleModel):
    text: str
    actions: list[str] = Field(default_factory=list)


class CharacterGenPayload(OracleModel):
    """Character generation: identity, guidance, opening scene, skill pools."""
    character: CharacterSeed
    story_guidance: GuidanceSeed
    initial_story: OpeningSeed
    companions: list[CompanionSeed] = Field(default_factory=list)
    skill_pools: dict[str, list[SkillSeed]] = Field(default_factory=dict)
    starting_skill_points: int = 5

    @field_validator("skill_pools")
    @classmethod
    def _all_pools(cls, value: dict[str, list[SkillSeed]]) -> dict[str, list[SkillSeed]]:
        return {pool: list(value.get(pool, [])) for pool in ("Combat", "Magic", "Utility")}

    @field_validator("starting_skill_points")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        return max(0, value)


class NextStepPayload(OracleModel):
    """A story continuation and the deltas that come with it."""
    envelope: ClassVar[str | None] = "story"

    text: str
    actions: list[str] = Field(default_factory=list)
    hp_change: int = Field(default=0, validation_alias=AliasChoices("didHpChange", "hpChange", "hp_change"))
    xp_change: int = Field(default=0, validation_alias=AliasChoices("didXpChange", "xpChange", "xp_change"))
    alignment_change: AlignmentDelta | None = None
    reputation_change: dict[str, int] = Field(default_factory=dict)
    equipment_updates: list[EquipmentUpdate] = Field(default_factory=list)
    companion_updates: list[CompanionUpdate] = Field(default_factory=list)
    new_companion: CompanionSeed | None = None
    map_update: MapUpdate | None = None
    new_weather: str | None = None
    new_time_of_day: str | None = None
    start_combat: bool = Field(
        default=False,
        validation_alias=AliasChoices("startCombat", "initiateCombat", "start_combat"),
    )
    enemies: list[EnemySeed] = Field(default_factory=list)
    start_transaction: bool = Field(
        default=False,
        validation_alias=AliasChoices("startTransaction", "initiateTransaction", "start_transaction"),
    )
    vendor: VendorSeed | None = None
    skill_check: SkillCheckSeed | None = None

    @field_validator("reputation_change", mode="before")
    @classmethod
    def _int_reputation(cls, value: Any) -> Any:
        return _int_map(value)


class AttackSeed(OracleModel):
    kind: AttackKind = AttackKind.MELEE
    skill: str | None = None
    target_id: str | None = None

    @field_validator("kind", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class EnemyAttack(OracleModel):
    enemy_id: str
    damage: int = 0


class CombatTurnPayload(OracleModel):
    """Narration of one combat round. HP math is recomputed by the engine."""
    narration: str = Field(default="", validation_alias=AliasChoices("narration", "text"))
    actions: list[str] = Field(default_factory=list)
    attack: AttackSeed = Field(default_factory=AttackSeed)
    enemy_attacks: list[EnemyAttack] = Field(default_factory=list)
    combat_over: bool = False
    player_defeated: bool = False


class LootSeed(OracleModel):
    gold: int = 0
    items: list[ItemSeed] = Field(default_factory=list)

    @field_validator("gold")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        return max(0, value)


class VictoryPayload(OracleModel):
    text: str
    xp: int = 0
    loot: LootSeed = Field(default_factory=LootSeed)

    @field_validator("xp")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        return max(0, value)


class SummaryPayload(OracleModel):
    summary: str


class GamblePayload(OracleModel):
    text: str = ""
    won: bool = False


class MapSyncPayload(MapUpdate):
    pass


class AlignmentSyncPayload(OracleModel):
    alignment_change: AlignmentDelta = Field(default_factory=AlignmentDelta)


# =============================================================================
# Adapter
# =============================================================================

def _input_names(model_cls: type[OracleModel], key: Any) -> tuple[str | None, set[str]]:
    """Map an error location key to (field name, every input name for it)."""
    for name, info in model_cls.model_fields.items():
        names = {name}
        if info.alias:
            names.add(info.alias)
        alias = info.validation_alias
        if isinstance(alias, str):
            names.add(alias)
        elif isinstance(alias, AliasChoices):
            names.update(choice for choice in alias.choices if isinstance(choice, str))
        if key in names:
            return name, names
    return None, {str(key)}


def adapt(model_cls: type[M], raw: Any) -> M:
    """
    Turn raw oracle output (JSON text or decoded object) into a payload model.

    Raises OracleUnavailable for unparseable text and MalformedPayload when
    nothing usable can be recovered.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise OracleUnavailable(f"Oracle returned invalid JSON: {exc}") from exc

    if not isinstance(raw, dict):
        raise MalformedPayload(f"Expected a JSON object, got {type(raw).__name__}")

    data = dict(raw)
    if model_cls.envelope and isinstance(data.get(model_cls.envelope), dict):
        data = dict(data[model_cls.envelope])

    for _ in range(MAX_REPAIRS):
        try:
            return model_cls.model_validate(data)
        except ValidationError as exc:
            dropped: set[str] = set()
            for error in exc.errors():
                if not error["loc"]:
                    raise MalformedPayload(f"{model_cls.__name__}: {error['msg']}") from exc
                field_name, names = _input_names(model_cls, error["loc"][0])
                if field_name is None or model_cls.model_fields[field_name].is_required():
                    raise MalformedPayload(
                        f"{model_cls.__name__} is missing a usable '{error['loc'][0]}'"
                    ) from exc
                dropped.update(name for name in names if name in data)
            if not dropped:
                raise MalformedPayload(f"{model_cls.__name__}: {exc}") from exc
            logger.warning("dropping malformed oracle fields %s from %s", sorted(dropped), model_cls.__name__)
            data = {key: value for key, value in data.items() if key not in dropped}

    raise MalformedPayload(f"{model_cls.__name__} could not be repaired")
