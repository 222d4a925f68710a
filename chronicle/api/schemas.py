"""
Pydantic Schemas for API - Request/response models for OpenAPI.

These models define the contract between clients and the engine.
Game state travels as the engine's own plain-dict rendering
(GameState.to_dict()), so the API never drifts from the data model.

Error Codes (see chronicle.errors.ErrorCode):
- ORACLE_UNAVAILABLE / MALFORMED_PAYLOAD: the narrator failed, state unchanged
- INVALID_TURN: not the caller's turn in a shared session
- TERMINAL_STATE: the character is dead; only a new game is possible
- INVALID_TRANSITION / ACTION_IN_FLIGHT: not allowed right now
- RULE_VIOLATION: the request breaks a game rule
- PERSISTENCE_ERROR: saves are unavailable; retry later
- SESSION_NOT_FOUND / GAME_NOT_FOUND
"""

from typing import Any, Literal, Optional
from pydantic import BaseModel, Field

from ..errors import ErrorCode
from ..oracle.prompts import BACKGROUNDS, CAMPAIGN_TYPES, CLASSES, RACES


# =============================================================================
# Shared Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str = Field(..., description="Human-readable error message")
    error_code: ErrorCode = Field(..., description="Machine-readable error code")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error context")
    api_version: str = Field("v1", description="API version")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str


class PlayerInfo(BaseModel):
    player_id: str
    name: str
    is_host: bool = False
    ready: bool = False
    is_current_turn: bool = False


class SaveInfo(BaseModel):
    """One row of the save menu."""
    game_id: str
    owner_id: Optional[str] = None
    character_name: Optional[str] = None
    mode: str
    story_length: int = 0
    updated_at: float = 0.0


class CreationOptionsResponse(BaseModel):
    """Choices offered on the character creation screen."""
    races: list[str] = Field(default_factory=lambda: list(RACES))
    classes: list[str] = Field(default_factory=lambda: list(CLASSES))
    backgrounds: list[str] = Field(default_factory=lambda: list(BACKGROUNDS))
    campaign_types: list[str] = Field(default_factory=lambda: list(CAMPAIGN_TYPES))


# =============================================================================
# Single-player requests
# =============================================================================

class CreateGameRequest(BaseModel):
    owner_id: Optional[str] = Field(None, description="Who the save belongs to")


class CreateCharacterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    gender: str = ""
    race: str = RACES[0]
    character_class: str = CLASSES[0]
    background: str = BACKGROUNDS[0]
    campaign: str = CAMPAIGN_TYPES[0]


class FinalizeCharacterRequest(BaseModel):
    skills: dict[str, int] = Field(default_factory=dict, description="Skill name -> level")


class StoryActionRequest(BaseModel):
    text: str = Field(..., min_length=1, description="Suggested or free-form action")


class LevelUpRequest(BaseModel):
    skills: dict[str, int] = Field(..., description="Full requested skill map")
    stats: Optional[dict[str, int]] = Field(None, description="Optional raised attributes")


class TransactionRequest(BaseModel):
    kind: Literal["buy", "sell", "exit"]
    item_name: Optional[str] = None


class LiquidateRequest(BaseModel):
    item_name: str = Field(..., min_length=1)


class WagerRequest(BaseModel):
    stake: int = Field(..., ge=1)


# =============================================================================
# Shared-session requests
# =============================================================================

class CreateSessionRequest(BaseModel):
    host_id: str = Field(..., min_length=1)
    host_name: str = ""


class JoinSessionRequest(BaseModel):
    player_id: str = Field(..., min_length=1)
    name: str = ""


class ReadyRequest(BaseModel):
    player_id: str
    ready: bool = True


class AdvanceStatusRequest(BaseModel):
    player_id: str
    status: Literal["setup", "playing", "finished"]


class SessionActionRequest(BaseModel):
    """Any engine action, submitted by a player of a shared session."""
    player_id: str
    action_type: str = Field(..., description="story, combat, continue, transaction, ...")
    text: Optional[str] = None
    skills: Optional[dict[str, int]] = None
    stats: Optional[dict[str, int]] = None
    transaction: Optional[Literal["buy", "sell", "exit"]] = None
    item_name: Optional[str] = None
    stake: Optional[int] = None
    params: dict[str, Any] = Field(default_factory=dict)
    expected_turn_index: Optional[int] = Field(
        None, description="Turn index the client last saw; stale values are rejected"
    )


# =============================================================================
# Responses
# =============================================================================

class GameStateResponse(BaseModel):
    game_id: str
    mode: str
    state: dict[str, Any]


class ActionResponse(BaseModel):
    """Result of an accepted action."""
    success: bool = True
    game_id: str
    mode: str
    state_changes: list[str] = Field(default_factory=list)
    state: dict[str, Any]


class GameListResponse(BaseModel):
    games: list[SaveInfo]
    count: int


class SessionResponse(BaseModel):
    session_id: str
    host_id: str
    status: str
    players: list[PlayerInfo]
    current_turn_index: int
    acting_player_id: Optional[str] = None
    mode: str
    state: dict[str, Any]


class SessionActionResponse(SessionResponse):
    state_changes: list[str] = Field(default_factory=list)


class SessionListResponse(BaseModel):
    sessions: list[str]
    count: int


class EndResponse(BaseModel):
    success: bool
    id: str
