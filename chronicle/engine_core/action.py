"""
Action System - Actions, payloads, and results.

Actions represent:
1. Player intent (free-form story actions, combat moves, trades)
2. Progression choices (skill allocation, level-up)
3. Mode changes the player asks for (enter level-up, leave a vendor)

All state changes flow through actions. Every entry point answers with an
ActionResult carrying either the next GameState or a typed failure.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import ChronicleError, ErrorCode


class ActionType(Enum):
    """Types of actions in the system."""
    # Setup
    NEW_GAME = "new_game"
    CREATE_CHARACTER = "create_character"
    FINALIZE_CHARACTER = "finalize_character"

    # Narrative
    STORY = "story"
    COMBAT = "combat"
    CONTINUE = "continue"  # Leave the loot screen

    # Progression
    ENTER_LEVEL_UP = "enter_level_up"
    CONFIRM_LEVEL_UP = "confirm_level_up"
    CANCEL_LEVEL_UP = "cancel_level_up"

    # Economy
    TRANSACTION = "transaction"
    LIQUIDATE = "liquidate"
    ENTER_GAMBLING = "enter_gambling"
    WAGER = "wager"
    LEAVE_GAMBLING = "leave_gambling"


class TransactionKind(Enum):
    BUY = "buy"
    SELL = "sell"
    EXIT = "exit"


@dataclass
class ActionPayload:
    """
    Payload for an action - contains the action parameters.

    Different action types have different payload shapes.
    This is a generic container; validation happens where it is applied.
    """
    player_id: str | None = None
    text: str | None = None

    # Skill / stat allocation
    skills: dict[str, int] | None = None
    stats: dict[str, int] | None = None

    # Economy
    transaction: TransactionKind | None = None
    item_name: str | None = None
    stake: int | None = None

    # Generic params (character creation details, etc.)
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class Action:
    """
    A complete action to be applied to the game state.

    Actions are:
    - Validated against the current mode before application
    - Applied atomically (a complete next state or none)
    """
    action_type: ActionType
    payload: ActionPayload = field(default_factory=ActionPayload)
    timestamp: float | None = None
    action_id: str | None = None

    @classmethod
    def story(cls, text: str, player_id: str | None = None) -> Action:
        """Factory for a free-form or suggested story action."""
        return cls(
            action_type=ActionType.STORY,
            payload=ActionPayload(player_id=player_id, text=text),
        )

    @classmethod
    def combat(cls, text: str, player_id: str | None = None) -> Action:
        """Factory for a combat move."""
        return cls(
            action_type=ActionType.COMBAT,
            payload=ActionPayload(player_id=player_id, text=text),
        )

    @classmethod
    def create_character(cls, details: dict[str, Any], player_id: str | None = None) -> Action:
        return cls(
            action_type=ActionType.CREATE_CHARACTER,
            payload=ActionPayload(player_id=player_id, params=dict(details)),
        )

    @classmethod
    def finalize_character(cls, skills: dict[str, int], player_id: str | None = None) -> Action:
        return cls(
            action_type=ActionType.FINALIZE_CHARACTER,
            payload=ActionPayload(player_id=player_id, skills=dict(skills)),
        )

    @classmethod
    def confirm_level_up(
        cls,
        skills: dict[str, int],
        stats: dict[str, int] | None = None,
        player_id: str | None = None,
    ) -> Action:
        return cls(
            action_type=ActionType.CONFIRM_LEVEL_UP,
            payload=ActionPayload(player_id=player_id, skills=dict(skills), stats=stats),
        )

    @classmethod
    def transaction(
        cls,
        kind: TransactionKind,
        item_name: str | None = None,
        player_id: str | None = None,
    ) -> Action:
        return cls(
            action_type=ActionType.TRANSACTION,
            payload=ActionPayload(player_id=player_id, transaction=kind, item_name=item_name),
        )

    @classmethod
    def wager(cls, stake: int, player_id: str | None = None) -> Action:
        return cls(
            action_type=ActionType.WAGER,
            payload=ActionPayload(player_id=player_id, stake=stake),
        )

    @classmethod
    def simple(cls, action_type: ActionType, player_id: str | None = None) -> Action:
        """Factory for actions that carry no parameters."""
        return cls(action_type=action_type, payload=ActionPayload(player_id=player_id))


@dataclass
class ActionResult:
    """
    Result of applying an action.

    Contains:
    - Whether action succeeded
    - New state (if succeeded)
    - Errors (if failed)
    - Human-readable changes (for UI updates and logs)
    """
    success: bool
    new_state: Any | None = None  # GameState
    error: str | None = None
    error_code: ErrorCode | None = None

    state_changes: list[str] = field(default_factory=list)

    @classmethod
    def failure(cls, error: str, error_code: ErrorCode | None = None) -> ActionResult:
        """Create a failure result."""
        return cls(success=False, error=error, error_code=error_code)

    @classmethod
    def from_error(cls, exc: ChronicleError) -> ActionResult:
        """Create a failure result from an engine error."""
        return cls(success=False, error=exc.message, error_code=exc.error_code)

    @classmethod
    def success_with_state(
        cls,
        state: Any,
        changes: list[str] | None = None,
    ) -> ActionResult:
        """Create a success result with new state."""
        return cls(
            success=True,
            new_state=state,
            state_changes=changes or [],
        )
