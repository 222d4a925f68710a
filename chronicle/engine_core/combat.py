"""
Combat Resolver - Arbitrates one round of combat.

The oracle narrates; the resolver owns the numbers. Player damage, enemy
damage, dodges and armor are all recomputed here from the character sheet
and the enemy roster the engine itself tracks.

Outcome of a round, checked in this order:
1. Player at 0 HP (or asserted defeated by the oracle) -> gameOver
2. Every enemy at 0 HP -> victory (loot is resolved by a second call)
3. Otherwise -> the fight goes on with the next suggested actions

An oracle "combat over" flag is never taken at its word.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
import random

from ..oracle.schemas import CombatTurnPayload, VictoryPayload
from .modes import Trigger, transition
from .progression import collect_loot
from .reducer import to_equipment
from .rules import (
    ATTACK_POOL,
    AttackKind,
    UNARMED_DAMAGE,
    attack_modifier,
    dodge_chance,
    mitigate,
    skill_pool_of,
    weapon_damage,
)
from .state import (
    Character,
    CombatState,
    GameState,
    LootState,
    SegmentKind,
    StorySegment,
)


class CombatStatus(Enum):
    ONGOING = "ongoing"
    VICTORY = "victory"
    DEFEAT = "defeat"


@dataclass
class CombatOutcome:
    """
    Result of one resolved round.

    On VICTORY the state is still in combat with every enemy at 0 HP;
    resolve_victory() moves it to looting once the victory payload arrives.
    """
    new_state: GameState
    status: CombatStatus
    changes: list[str] = field(default_factory=list)
    damage_dealt: int = 0
    damage_taken: int = 0


def attack_skill(character: Character, kind: AttackKind, requested: str | None, skill_pools) -> tuple[str | None, int]:
    """
    Pick the skill an attack is attributed to.

    A named skill the character has wins; otherwise the character's best
    skill from the pool matching the attack kind. Untrained is level 0.
    """
    if requested and requested in character.skills:
        return requested, character.skills[requested]

    pool = ATTACK_POOL[kind]
    candidates = [
        (level, name) for name, level in character.skills.items()
        if skill_pool_of(name, skill_pools) == pool
    ]
    if not candidates:
        return None, 0
    level, name = max(candidates)
    return name, level


def player_attack_damage(character: Character, kind: AttackKind, skill_level: int) -> int:
    """Weapon damage scaled by skill, plus the flat ability modifier."""
    weapon = character.equipment.weapon
    base = weapon.damage if weapon is not None else UNARMED_DAMAGE
    return max(0, weapon_damage(base, skill_level) + attack_modifier(kind, character.stats))


@dataclass
class CombatResolver:
    """
    Resolves combat rounds against the engine's own enemy roster.

    rng is injected so dodge rolls are reproducible in tests.
    """
    rng: random.Random = field(default_factory=random.Random)

    def resolve_turn(self, state: GameState, payload: CombatTurnPayload) -> CombatOutcome:
        if state.combat is None or state.character is None:
            raise ValueError("No combat in progress")

        character = state.character
        combat = state.combat
        changes: list[str] = []

        # Player strikes first
        kind = payload.attack.kind
        skill_name, level = attack_skill(character, kind, payload.attack.skill, state.skill_pools)
        dealt = player_attack_damage(character, kind, level)

        target = None
        if payload.attack.target_id:
            candidate = combat.get_enemy(payload.attack.target_id)
            if candidate is not None and not candidate.is_defeated:
                target = candidate
        if target is None and combat.living_enemies:
            target = combat.living_enemies[0]

        enemies = list(combat.enemies)
        if target is not None:
            index = enemies.index(target)
            struck = replace(target, hp=max(0, target.hp - dealt))
            enemies[index] = struck
            changes.append(f"{character.name} hits {target.name} for {dealt}"
                           + (f" ({skill_name})" if skill_name else ""))
            if struck.is_defeated:
                changes.append(f"{target.name} is defeated")

        # Enemies still standing strike back
        asserted = {attack.enemy_id: attack.damage for attack in payload.enemy_attacks}
        armor = character.equipment.armor
        reduction = armor.damage_reduction if armor is not None else 0
        dodge = dodge_chance(character.stat("DEX"))
        taken = 0
        for enemy in enemies:
            if enemy.is_defeated:
                continue
            raw = max(0, asserted.get(enemy.enemy_id, enemy.damage))
            if self.rng.random() * 100 < dodge:
                changes.append(f"{character.name} dodges {enemy.name}")
                continue
            hit = mitigate(raw, reduction)
            taken += hit
            changes.append(f"{enemy.name} hits for {hit}")

        character = character.with_hp(character.hp - taken)
        if payload.player_defeated:
            character = character.with_hp(0)

        narration = payload.narration
        log = combat.log + ([narration] if narration else [])

        if character.is_dead:
            segment = StorySegment(text=narration or f"{character.name} falls in battle.", kind=SegmentKind.DEFEAT)
            new_state = state._copy_with(character=character).with_segment(segment)
            new_state = transition(new_state, Trigger.DEFEAT, current_actions=[])
            changes.append(f"{character.name} has fallen")
            return CombatOutcome(new_state, CombatStatus.DEFEAT, changes, dealt, taken)

        new_combat = CombatState(enemies=enemies, round=combat.round, log=log)
        if new_combat.all_defeated:
            new_state = state._copy_with(character=character, combat=new_combat, current_actions=[])
            return CombatOutcome(new_state, CombatStatus.VICTORY, changes, dealt, taken)

        new_combat = replace(new_combat, round=combat.round + 1)
        new_state = state._copy_with(
            character=character,
            combat=new_combat,
            current_actions=list(payload.actions) or list(state.current_actions),
        )
        return CombatOutcome(new_state, CombatStatus.ONGOING, changes, dealt, taken)

    def resolve_victory(self, state: GameState, payload: VictoryPayload) -> CombatOutcome:
        """Award XP and loot, then move to the loot screen."""
        if state.combat is None or not state.combat.all_defeated:
            raise ValueError("Victory needs every enemy defeated")

        items = [to_equipment(item) for item in payload.loot.items]
        before_points = state.character.skill_points
        character = collect_loot(state.character, payload.xp, payload.loot.gold, items)

        loot = LootState(text=payload.text, xp=payload.xp, gold=payload.loot.gold, items=items)
        segment = StorySegment(text=payload.text, kind=SegmentKind.VICTORY)
        new_state = state._copy_with(character=character).with_segment(segment)
        new_state = transition(new_state, Trigger.VICTORY, loot=loot, combat=None, current_actions=[])

        changes = [f"Victory: +{payload.xp} XP, +{payload.loot.gold} gold"]
        changes.extend(f"Looted {item.name}" for item in items)
        if character.skill_points > before_points:
            changes.append(f"Gained {character.skill_points - before_points} skill point(s)")
        return CombatOutcome(new_state, CombatStatus.VICTORY, changes)
