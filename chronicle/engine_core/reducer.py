"""
Narrative Reducer - Folds an oracle story payload into the next GameState.

The reducer is the single point of state mutation for story turns.

Design principles:
- Pure function: (state, payload, action text) -> new state
- The payload is already adapted (every optional field defaulted)
- The previous state object is never touched; a complete next state or none
- Low trust: the oracle cannot grow the party unless the player asked

Three branches, in priority order:
1. Encounter setup (combat flagged with enemies) -> combat
2. Vendor (transaction flagged with a vendor) -> transaction
3. Ordinary continuation: every delta applied
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace

from ..oracle.schemas import (
    AlignmentDelta,
    CompanionSeed,
    CompanionUpdate,
    EquipmentUpdate,
    ItemSeed,
    MapUpdate,
    NextStepPayload,
)
from .modes import Trigger, transition
from .progression import accrue_xp
from .state import (
    Alignment,
    Character,
    CombatState,
    Companion,
    Enemy,
    Equipment,
    GameState,
    Loadout,
    MapLocation,
    MapState,
    MAX_PARTY_SIZE,
    RECRUITED_RELATIONSHIP,
    SegmentKind,
    SkillCheck,
    StorySegment,
    SUMMARY_EVERY,
    TransactionState,
    Vendor,
)


@dataclass
class ReduceOutcome:
    """Next state plus what the caller has to do about it."""
    new_state: GameState
    changes: list[str] = field(default_factory=list)
    summary_due: bool = False


# =============================================================================
# Delta helpers
# =============================================================================

def to_equipment(seed: ItemSeed) -> Equipment:
    return Equipment(
        name=seed.name,
        description=seed.description,
        stats=dict(seed.stats),
        value=seed.value,
    )


def _merge_item(existing: Equipment, seed: ItemSeed) -> Equipment:
    return Equipment(
        name=existing.name,
        description=seed.description or existing.description,
        stats={**existing.stats, **seed.stats},
        value=seed.value or existing.value,
    )


def apply_equipment_updates(loadout: Loadout, updates: list[EquipmentUpdate]) -> Loadout:
    """
    Apply equipment updates in order.

    weapon/armor: add, replace and update set the slot; remove empties it.
    gear: add appends; remove/replace/update match an item by name
    (target, falling back to the item's own name). Unmatched gear updates
    are ignored.
    """
    weapon, armor, gear = loadout.weapon, loadout.armor, list(loadout.gear)

    for update in updates:
        if update.slot in ("weapon", "armor"):
            current = weapon if update.slot == "weapon" else armor
            if update.action == "remove":
                new_item = None
            elif update.item is None:
                continue
            elif update.action == "update" and current is not None:
                new_item = _merge_item(current, update.item)
            else:
                new_item = to_equipment(update.item)
            if update.slot == "weapon":
                weapon = new_item
            else:
                armor = new_item
            continue

        if update.action == "add":
            if update.item is not None:
                gear.append(to_equipment(update.item))
            continue

        target = update.target or (update.item.name if update.item else None)
        if target is None:
            continue
        index = next((i for i, item in enumerate(gear) if item.name.lower() == target.lower()), None)
        if index is None:
            continue
        if update.action == "remove":
            del gear[index]
        elif update.item is not None and update.action == "replace":
            gear[index] = to_equipment(update.item)
        elif update.item is not None and update.action == "update":
            gear[index] = _merge_item(gear[index], update.item)

    return Loadout(weapon=weapon, armor=armor, gear=gear)


def apply_map_update(map_state: MapState, update: MapUpdate | None) -> MapState:
    """Append unseen locations as unvisited; mark the visited one."""
    if update is None:
        return map_state

    locations = [replace(location) for location in map_state.locations]
    known = {location.name for location in locations}
    for seed in update.new_locations:
        if seed.name not in known:
            locations.append(MapLocation(name=seed.name, description=seed.description))
            known.add(seed.name)

    current = map_state.current_location
    if update.visited:
        if update.visited not in known:
            locations.append(MapLocation(name=update.visited))
        locations = [
            replace(location, visited=True) if location.name == update.visited else location
            for location in locations
        ]
        current = update.visited

    return MapState(locations=locations, current_location=current)


def apply_reputation(reputation: dict[str, int], changes: dict[str, int]) -> dict[str, int]:
    updated = dict(reputation)
    for faction, change in changes.items():
        updated[faction] = updated.get(faction, 0) + change
    return updated


def apply_companion_updates(companions: list[Companion], updates: list[CompanionUpdate]) -> list[Companion]:
    """Additive relationship changes matched by name; unknown names ignored."""
    updated = list(companions)
    for change in updates:
        for index, companion in enumerate(updated):
            if companion.name == change.name:
                updated[index] = companion.with_relationship_change(change.relationship_change)
                break
    return updated


def apply_alignment_drift(
    companions: list[Companion],
    before: Alignment,
    after: Alignment,
) -> list[Companion]:
    """
    Companions the player moved away from lose 1 relationship.

    Only applies when the player's alignment actually changed.
    """
    if before == after:
        return list(companions)
    return [
        companion.with_relationship_change(-1)
        if companion.alignment.distance(after) > companion.alignment.distance(before)
        else companion
        for companion in companions
    ]


def recruitment_phrase(name: str) -> str:
    return f"recruit {name.lower()}"


def maybe_recruit(
    companions: list[Companion],
    seed: CompanionSeed | None,
    action_text: str,
) -> list[Companion]:
    """
    Admit the offered companion only if the player asked for them by name
    and the party has room.
    """
    if seed is None or len(companions) >= MAX_PARTY_SIZE:
        return companions
    if recruitment_phrase(seed.name) not in action_text.lower():
        return companions
    if any(companion.name == seed.name for companion in companions):
        return companions
    recruit = Companion(
        name=seed.name,
        description=seed.description,
        personality=seed.personality,
        skills=dict(seed.skills),
        alignment=Alignment().shifted(seed.alignment.order, seed.alignment.morality),
        relationship=RECRUITED_RELATIONSHIP,
    )
    return companions + [recruit]


def _shift_alignment(alignment: Alignment, delta: AlignmentDelta | None) -> Alignment:
    if delta is None:
        return alignment
    return alignment.shifted(delta.order, delta.morality)


# =============================================================================
# Reducer
# =============================================================================

@dataclass
class NarrativeReducer:
    """
    Applies story payloads to game state.

    Stateless - all state is in GameState.
    """

    def reduce(
        self,
        state: GameState,
        payload: NextStepPayload,
        action_text: str,
        illustration: str | None = None,
        skill_check: SkillCheck | None = None,
    ) -> ReduceOutcome:
        """Return the next state for a story turn."""
        if state.character is None:
            raise ValueError("Story turns need a character")

        wants_combat = payload.start_combat or (
            payload.skill_check is not None and payload.skill_check.spawns_encounter
        )
        if wants_combat and payload.enemies:
            return self._setup_encounter(state, payload, illustration)
        if payload.start_transaction and payload.vendor is not None:
            return self._open_vendor(state, payload, illustration)
        return self._continue(state, payload, action_text, illustration, skill_check)

    def _setup_encounter(
        self,
        state: GameState,
        payload: NextStepPayload,
        illustration: str | None,
    ) -> ReduceOutcome:
        enemies = [
            Enemy(
                enemy_id=f"{seed.name}-{index}",
                name=seed.name,
                hp=seed.hp,
                max_hp=seed.hp,
                damage=seed.damage,
                description=seed.description,
            )
            for index, seed in enumerate(payload.enemies)
        ]
        segment = StorySegment(text=payload.text, illustration=illustration, kind=SegmentKind.INFO)
        new_state = state.with_segment(segment)
        new_state = transition(
            new_state,
            Trigger.START_ENCOUNTER,
            combat=CombatState(enemies=enemies, log=[payload.text]),
            current_actions=list(payload.actions),
        )
        names = ", ".join(enemy.name for enemy in enemies)
        return ReduceOutcome(
            new_state=new_state,
            changes=[f"Combat begins against {names}"],
            summary_due=self._summary_due(new_state),
        )

    def _open_vendor(
        self,
        state: GameState,
        payload: NextStepPayload,
        illustration: str | None,
    ) -> ReduceOutcome:
        seed = payload.vendor
        vendor = Vendor(
            name=seed.name,
            description=seed.description,
            inventory=[to_equipment(item) for item in seed.inventory],
        )
        segment = StorySegment(text=payload.text, illustration=illustration, kind=SegmentKind.INFO)
        new_state = state.with_segment(segment)
        new_state = transition(
            new_state,
            Trigger.INITIATE_TRANSACTION,
            transaction=TransactionState(vendor=vendor),
        )
        return ReduceOutcome(
            new_state=new_state,
            changes=[f"Trading with {vendor.name}"],
            summary_due=self._summary_due(new_state),
        )

    def _continue(
        self,
        state: GameState,
        payload: NextStepPayload,
        action_text: str,
        illustration: str | None,
        skill_check: SkillCheck | None,
    ) -> ReduceOutcome:
        character: Character = state.character
        changes: list[str] = []

        character = character.with_hp(character.hp + payload.hp_change)
        if payload.hp_change:
            changes.append(f"HP {payload.hp_change:+d} -> {character.hp}/{character.max_hp}")

        before_points = character.skill_points
        character = accrue_xp(character, payload.xp_change)
        if payload.xp_change:
            changes.append(f"XP {payload.xp_change:+d} -> {character.xp}")
        if character.skill_points > before_points:
            changes.append(f"Gained {character.skill_points - before_points} skill point(s)")

        old_alignment = character.alignment
        new_alignment = _shift_alignment(old_alignment, payload.alignment_change)

        character = replace(
            character,
            alignment=new_alignment,
            reputation=apply_reputation(character.reputation, payload.reputation_change),
            equipment=apply_equipment_updates(character.equipment, payload.equipment_updates),
        )

        companions = apply_companion_updates(state.companions, payload.companion_updates)
        companions = apply_alignment_drift(companions, old_alignment, new_alignment)
        party_before = len(companions)
        companions = maybe_recruit(companions, payload.new_companion, action_text)
        if len(companions) > party_before:
            changes.append(f"{companions[-1].name} joined the party")

        segment = StorySegment(text=payload.text, illustration=illustration, skill_check=skill_check)
        new_state = state._copy_with(
            character=character,
            companions=companions,
            map=apply_map_update(state.map, payload.map_update),
            weather=payload.new_weather or state.weather,
            time_of_day=payload.new_time_of_day or state.time_of_day,
            current_actions=list(payload.actions),
        ).with_segment(segment)

        if character.is_dead:
            new_state = transition(new_state, Trigger.DEFEAT, current_actions=[])
            changes.append(f"{character.name} has fallen")

        return ReduceOutcome(
            new_state=new_state,
            changes=changes,
            summary_due=self._summary_due(new_state),
        )

    @staticmethod
    def _summary_due(state: GameState) -> bool:
        return state.segments_written > 0 and state.segments_written % SUMMARY_EVERY == 0


def reduce_story(
    state: GameState,
    payload: NextStepPayload,
    action_text: str,
    illustration: str | None = None,
    skill_check: SkillCheck | None = None,
) -> ReduceOutcome:
    """
    Convenience function to reduce a story turn.

    Creates a NarrativeReducer and applies the payload.
    """
    return NarrativeReducer().reduce(state, payload, action_text, illustration, skill_check)


__all__ = ["NarrativeReducer", "ReduceOutcome", "reduce_story"]
