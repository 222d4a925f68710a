"""
Mode State Machine - The legal game-mode transitions.

Every mode change in the engine goes through transition(). The table is
closed: a (mode, trigger) pair that is not listed is an InvalidTransition,
and anything fired from GAME_OVER other than NEW_GAME is a TerminalState.

    characterCreation -(create)-> characterCustomize -(finalize)-> playing
    playing -(start_encounter)-> combat -(victory)-> looting -(continue)-> playing
    combat -(defeat)-> gameOver
    playing -(initiate_transaction)-> transaction -(exit_transaction)-> playing
    playing <-> levelUp        (enter when skill points are unspent)
    playing <-> gambling
    * -(new_game)-> characterCreation
"""

from __future__ import annotations
from enum import Enum
import logging

from ..errors import InvalidTransition, TerminalState
from .action import ActionType
from .state import GameMode, GameState

logger = logging.getLogger(__name__)


class Trigger(Enum):
    NEW_GAME = "new_game"
    CREATE = "create"
    FINALIZE = "finalize"
    START_ENCOUNTER = "start_encounter"
    VICTORY = "victory"
    DEFEAT = "defeat"
    CONTINUE = "continue"
    INITIATE_TRANSACTION = "initiate_transaction"
    EXIT_TRANSACTION = "exit_transaction"
    ENTER_LEVEL_UP = "enter_level_up"
    CONFIRM_LEVEL_UP = "confirm_level_up"
    CANCEL_LEVEL_UP = "cancel_level_up"
    ENTER_GAMBLING = "enter_gambling"
    LEAVE_GAMBLING = "leave_gambling"


TRANSITIONS: dict[tuple[GameMode, Trigger], GameMode] = {
    (GameMode.CHARACTER_CREATION, Trigger.CREATE): GameMode.CHARACTER_CUSTOMIZE,
    (GameMode.CHARACTER_CUSTOMIZE, Trigger.FINALIZE): GameMode.PLAYING,
    (GameMode.PLAYING, Trigger.START_ENCOUNTER): GameMode.COMBAT,
    (GameMode.PLAYING, Trigger.DEFEAT): GameMode.GAME_OVER,
    (GameMode.COMBAT, Trigger.VICTORY): GameMode.LOOTING,
    (GameMode.COMBAT, Trigger.DEFEAT): GameMode.GAME_OVER,
    (GameMode.LOOTING, Trigger.CONTINUE): GameMode.PLAYING,
    (GameMode.PLAYING, Trigger.INITIATE_TRANSACTION): GameMode.TRANSACTION,
    (GameMode.TRANSACTION, Trigger.EXIT_TRANSACTION): GameMode.PLAYING,
    (GameMode.PLAYING, Trigger.ENTER_LEVEL_UP): GameMode.LEVEL_UP,
    (GameMode.LEVEL_UP, Trigger.CONFIRM_LEVEL_UP): GameMode.PLAYING,
    (GameMode.LEVEL_UP, Trigger.CANCEL_LEVEL_UP): GameMode.PLAYING,
    (GameMode.PLAYING, Trigger.ENTER_GAMBLING): GameMode.GAMBLING,
    (GameMode.GAMBLING, Trigger.LEAVE_GAMBLING): GameMode.PLAYING,
}

# Actions each mode accepts; every GameMode must appear here
ACCEPTED_ACTIONS: dict[GameMode, frozenset[ActionType]] = {
    GameMode.INITIAL_LOAD: frozenset({ActionType.NEW_GAME}),
    GameMode.CHARACTER_CREATION: frozenset({ActionType.NEW_GAME, ActionType.CREATE_CHARACTER}),
    GameMode.CHARACTER_CUSTOMIZE: frozenset({ActionType.NEW_GAME, ActionType.FINALIZE_CHARACTER}),
    GameMode.PLAYING: frozenset({
        ActionType.NEW_GAME,
        ActionType.STORY,
        ActionType.ENTER_LEVEL_UP,
        ActionType.ENTER_GAMBLING,
        ActionType.LIQUIDATE,
    }),
    GameMode.COMBAT: frozenset({ActionType.NEW_GAME, ActionType.COMBAT}),
    GameMode.LOOTING: frozenset({ActionType.NEW_GAME, ActionType.CONTINUE}),
    GameMode.TRANSACTION: frozenset({ActionType.NEW_GAME, ActionType.TRANSACTION}),
    GameMode.GAMBLING: frozenset({
        ActionType.NEW_GAME,
        ActionType.WAGER,
        ActionType.LEAVE_GAMBLING,
    }),
    GameMode.LEVEL_UP: frozenset({
        ActionType.NEW_GAME,
        ActionType.CONFIRM_LEVEL_UP,
        ActionType.CANCEL_LEVEL_UP,
    }),
    GameMode.GAME_OVER: frozenset({ActionType.NEW_GAME}),
}

# Modes that need a fully materialized character and story guidance
_MATERIALIZED_MODES = frozenset({
    GameMode.PLAYING,
    GameMode.COMBAT,
    GameMode.LOOTING,
    GameMode.TRANSACTION,
    GameMode.GAMBLING,
    GameMode.LEVEL_UP,
})


def next_mode(current: GameMode, trigger: Trigger) -> GameMode:
    """Look up the target mode for a trigger, or raise."""
    if trigger == Trigger.NEW_GAME:
        return GameMode.CHARACTER_CREATION
    if current == GameMode.GAME_OVER:
        raise TerminalState("The adventure is over - start a new character")
    target = TRANSITIONS.get((current, trigger))
    if target is None:
        raise InvalidTransition(f"Cannot {trigger.value} while {current.value}")
    return target


def require_accepts(state: GameState, action_type: ActionType) -> None:
    """Raise unless the current mode accepts the action."""
    if action_type in ACCEPTED_ACTIONS[state.mode]:
        return
    if state.mode == GameMode.GAME_OVER:
        raise TerminalState("The adventure is over - start a new character")
    raise InvalidTransition(f"{action_type.value} is not allowed while {state.mode.value}")


def transition(state: GameState, trigger: Trigger, **changes) -> GameState:
    """
    Move the state to the mode selected by trigger.

    changes are applied together with the mode (e.g. combat=CombatState(...)).
    Sub-state that does not belong to the target mode is cleared, and guards
    are checked against the resulting state.
    """
    target = next_mode(state.mode, trigger)

    if target == GameMode.LEVEL_UP:
        if state.character is None or state.character.skill_points <= 0:
            raise InvalidTransition("No unspent skill points to allocate")

    changes.setdefault("combat", state.combat if target == GameMode.COMBAT else None)
    changes.setdefault("loot", state.loot if target == GameMode.LOOTING else None)
    changes.setdefault("transaction", state.transaction if target == GameMode.TRANSACTION else None)
    new_state = state._copy_with(mode=target, **changes)

    if target in _MATERIALIZED_MODES:
        if new_state.character is None or new_state.story_guidance is None:
            raise InvalidTransition(f"Cannot enter {target.value} without a finished character")
    if target == GameMode.COMBAT and new_state.combat is None:
        raise InvalidTransition("Cannot enter combat without an encounter")
    if target == GameMode.TRANSACTION and new_state.transaction is None:
        raise InvalidTransition("Cannot trade without a vendor")

    if target != state.mode:
        logger.info("mode %s -> %s (%s)", state.mode.value, target.value, trigger.value)
    return new_state
