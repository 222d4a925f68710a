"""
Engine Core - Deterministic game state resolution.

The engine is the runtime that:
1. Holds the authoritative GameState
2. Computes every number from the rule calculator
3. Folds oracle story payloads into state via the reducer
4. Arbitrates combat rounds
5. Guards every mode change through the mode state machine
"""

from .state import GameMode, GameState, Character, Companion, Equipment, StorySegment, check_invariants
from .action import Action, ActionType, ActionPayload, ActionResult, TransactionKind
from .modes import Trigger, transition, next_mode
from .reducer import NarrativeReducer, ReduceOutcome, reduce_story
from .combat import CombatResolver, CombatOutcome, CombatStatus

__all__ = [
    "GameMode",
    "GameState",
    "Character",
    "Companion",
    "Equipment",
    "StorySegment",
    "check_invariants",
    "Action",
    "ActionType",
    "ActionPayload",
    "ActionResult",
    "TransactionKind",
    "Trigger",
    "transition",
    "next_mode",
    "NarrativeReducer",
    "ReduceOutcome",
    "reduce_story",
    "CombatResolver",
    "CombatOutcome",
    "CombatStatus",
]
