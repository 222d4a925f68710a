"""
API Module - Client interface.

Exposes the engine via REST and WebSocket:
1. Single-player games, saved to the configured store
2. Shared sessions where players take turns on one adventure
3. Real-time state updates for every session participant
"""

from .schemas import (
    # Requests
    CreateGameRequest,
    CreateCharacterRequest,
    FinalizeCharacterRequest,
    StoryActionRequest,
    LevelUpRequest,
    TransactionRequest,
    LiquidateRequest,
    WagerRequest,
    CreateSessionRequest,
    JoinSessionRequest,
    ReadyRequest,
    AdvanceStatusRequest,
    SessionActionRequest,
    # Responses
    ActionResponse,
    GameStateResponse,
    GameListResponse,
    SessionResponse,
    SessionActionResponse,
    ErrorResponse,
    # Shared
    PlayerInfo,
    SaveInfo,
)
from .service import APIService, build_action
from .app import create_app

__all__ = [
    # Requests
    "CreateGameRequest",
    "CreateCharacterRequest",
    "FinalizeCharacterRequest",
    "StoryActionRequest",
    "LevelUpRequest",
    "TransactionRequest",
    "LiquidateRequest",
    "WagerRequest",
    "CreateSessionRequest",
    "JoinSessionRequest",
    "ReadyRequest",
    "AdvanceStatusRequest",
    "SessionActionRequest",
    # Responses
    "ActionResponse",
    "GameStateResponse",
    "GameListResponse",
    "SessionResponse",
    "SessionActionResponse",
    "ErrorResponse",
    # Shared
    "PlayerInfo",
    "SaveInfo",
    # Service
    "APIService",
    "build_action",
    "create_app",
]
