"""
FastAPI Application - REST + WebSocket API for the engine.

Endpoints:
    GET    /api/v1/options                          Character creation choices

    POST   /api/v1/games                            Start a single-player game
    GET    /api/v1/games                            List saves (?owner_id=)
    GET    /api/v1/games/{id}                       Current game state
    DELETE /api/v1/games/{id}                       Delete a save
    POST   /api/v1/games/{id}/new-game              Start over
    POST   /api/v1/games/{id}/character             Generate a character
    POST   /api/v1/games/{id}/character/finalize    Allocate starting skills
    POST   /api/v1/games/{id}/actions               Story action
    POST   /api/v1/games/{id}/combat                Combat action
    POST   /api/v1/games/{id}/loot/continue         Leave the loot screen
    POST   /api/v1/games/{id}/level-up              Enter level-up
    POST   /api/v1/games/{id}/level-up/confirm      Spend skill points
    POST   /api/v1/games/{id}/level-up/cancel       Leave level-up
    POST   /api/v1/games/{id}/transaction           Buy / sell / exit
    POST   /api/v1/games/{id}/liquidate             Sell gear for half value
    POST   /api/v1/games/{id}/gambling              Enter gambling
    POST   /api/v1/games/{id}/gambling/wager        Place a wager
    POST   /api/v1/games/{id}/gambling/leave        Leave gambling

    POST   /api/v1/sessions                         Create a shared session
    GET    /api/v1/sessions                         List active sessions
    GET    /api/v1/sessions/{id}                    Session status and state
    DELETE /api/v1/sessions/{id}                    End session
    POST   /api/v1/sessions/{id}/join               Join
    POST   /api/v1/sessions/{id}/ready              Mark ready
    POST   /api/v1/sessions/{id}/status             Host advances the lifecycle
    POST   /api/v1/sessions/{id}/actions            Submit an action on your turn
    WS     /api/v1/sessions/{id}/ws                 Real-time updates

Engine failures are returned as ErrorResponse with an HTTP status chosen
from the error code.

Run with: uvicorn --factory chronicle.api.app:create_app
(settings come from CHRONICLE_* environment variables)
"""

from typing import Optional
import json
import logging

from ..config import Settings, configure_logging
from ..errors import ChronicleError, ErrorCode

logger = logging.getLogger(__name__)

HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.GAME_NOT_FOUND: 404,
    ErrorCode.INVALID_TURN: 409,
    ErrorCode.TERMINAL_STATE: 409,
    ErrorCode.INVALID_TRANSITION: 409,
    ErrorCode.ACTION_IN_FLIGHT: 409,
    ErrorCode.RULE_VIOLATION: 422,
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.ORACLE_UNAVAILABLE: 502,
    ErrorCode.MALFORMED_PAYLOAD: 502,
    ErrorCode.PERSISTENCE_ERROR: 503,
    ErrorCode.INTERNAL_ERROR: 500,
}


def create_app(service=None, settings: Optional[Settings] = None):
    """
    Create the FastAPI application.

    Args:
        service: Optional APIService instance (built from settings if not provided)
        settings: Optional Settings (read from the environment if not provided)

    Returns:
        FastAPI application instance
    """
    from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
    from fastapi.middleware.cors import CORSMiddleware
    from fastapi.responses import JSONResponse

    from .. import __version__
    from ..engine_core.action import Action, ActionType, TransactionKind
    from .service import APIService, build_action
    from .schemas import (
        # Request models
        AdvanceStatusRequest,
        CreateCharacterRequest,
        CreateGameRequest,
        CreateSessionRequest,
        FinalizeCharacterRequest,
        JoinSessionRequest,
        LevelUpRequest,
        LiquidateRequest,
        ReadyRequest,
        SessionActionRequest,
        StoryActionRequest,
        TransactionRequest,
        WagerRequest,
        # Response models
        ActionResponse,
        CreationOptionsResponse,
        EndResponse,
        ErrorResponse,
        GameListResponse,
        GameStateResponse,
        HealthResponse,
        SessionActionResponse,
        SessionListResponse,
        SessionResponse,
    )

    settings = settings or Settings.from_env()
    configure_logging(settings)

    app = FastAPI(
        title="Chronicle Engine API",
        description="""
Narrative RPG engine - an oracle narrates, the engine keeps the rules.

## Error Codes

| Code | HTTP | Description |
|------|------|-------------|
| `GAME_NOT_FOUND` / `SESSION_NOT_FOUND` | 404 | No such game or session |
| `INVALID_TURN` | 409 | Not your turn in a shared session |
| `TERMINAL_STATE` | 409 | The character is dead; start a new game |
| `INVALID_TRANSITION` | 409 | Not allowed in the current mode |
| `ACTION_IN_FLIGHT` | 409 | The previous action has not settled |
| `RULE_VIOLATION` | 422 | The request breaks a game rule |
| `ORACLE_UNAVAILABLE` / `MALFORMED_PAYLOAD` | 502 | The narrator failed; nothing changed |
| `PERSISTENCE_ERROR` | 503 | Saves unavailable; retry |
        """,
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    api_service = service or APIService.from_settings(settings)
    error_responses = {code: {"model": ErrorResponse} for code in (404, 409, 422, 502, 503)}

    # =========================================================================
    # Error helpers
    # =========================================================================

    def make_error_response(
        error_code: ErrorCode,
        message: str,
        details: Optional[dict] = None,
    ) -> JSONResponse:
        """Create a standardized error response."""
        return JSONResponse(
            status_code=HTTP_STATUS.get(error_code, 400),
            content=ErrorResponse(
                error=message,
                error_code=error_code,
                details=details,
            ).model_dump(mode="json"),
        )

    @app.exception_handler(ChronicleError)
    async def chronicle_error_handler(request, exc: ChronicleError):
        return make_error_response(exc.error_code, exc.message)

    async def run_game_action(game_id: str, action: Action):
        result = await api_service.run(game_id, action)
        if not result.success:
            return make_error_response(result.error_code or ErrorCode.INTERNAL_ERROR, result.error or "")
        return api_service.action_response(game_id, result)

    # =========================================================================
    # Options
    # =========================================================================

    @app.get("/api/v1/options", response_model=CreationOptionsResponse, tags=["Games"])
    async def creation_options() -> CreationOptionsResponse:
        """Races, classes, backgrounds and campaign types for character creation."""
        return CreationOptionsResponse()

    # =========================================================================
    # Single-player games
    # =========================================================================

    @app.post("/api/v1/games", response_model=ActionResponse, tags=["Games"], summary="Start a new game")
    async def create_game(request: CreateGameRequest):
        game_id, result = await api_service.create_game(request.owner_id)
        return api_service.action_response(game_id, result)

    @app.get("/api/v1/games", response_model=GameListResponse, tags=["Games"], summary="List saves")
    async def list_games(owner_id: Optional[str] = Query(None)) -> GameListResponse:
        games = api_service.list_games(owner_id)
        return GameListResponse(games=games, count=len(games))

    @app.get("/api/v1/games/{game_id}", response_model=GameStateResponse, responses=error_responses, tags=["Games"])
    async def get_game(game_id: str):
        return api_service.game_state_response(game_id)

    @app.delete("/api/v1/games/{game_id}", response_model=EndResponse, tags=["Games"])
    async def delete_game(game_id: str) -> EndResponse:
        success = await api_service.delete_game(game_id)
        return EndResponse(success=success, id=game_id)

    @app.post("/api/v1/games/{game_id}/new-game", response_model=ActionResponse, responses=error_responses, tags=["Games"])
    async def new_game(game_id: str):
        return await run_game_action(game_id, Action.simple(ActionType.NEW_GAME))

    @app.post("/api/v1/games/{game_id}/character", response_model=ActionResponse, responses=error_responses, tags=["Character"])
    async def create_character(game_id: str, request: CreateCharacterRequest):
        """Ask the narrator for a character, setting and opening scene."""
        return await run_game_action(game_id, Action.create_character(request.model_dump()))

    @app.post(
        "/api/v1/games/{game_id}/character/finalize",
        response_model=ActionResponse,
        responses=error_responses,
        tags=["Character"],
    )
    async def finalize_character(game_id: str, request: FinalizeCharacterRequest):
        return await run_game_action(game_id, Action.finalize_character(request.skills))

    @app.post("/api/v1/games/{game_id}/actions", response_model=ActionResponse, responses=error_responses, tags=["Play"])
    async def submit_action(game_id: str, request: StoryActionRequest):
        return await run_game_action(game_id, Action.story(request.text))

    @app.post("/api/v1/games/{game_id}/combat", response_model=ActionResponse, responses=error_responses, tags=["Play"])
    async def submit_combat_action(game_id: str, request: StoryActionRequest):
        return await run_game_action(game_id, Action.combat(request.text))

    @app.post("/api/v1/games/{game_id}/loot/continue", response_model=ActionResponse, responses=error_responses, tags=["Play"])
    async def continue_from_loot(game_id: str):
        return await run_game_action(game_id, Action.simple(ActionType.CONTINUE))

    @app.post("/api/v1/games/{game_id}/level-up", response_model=ActionResponse, responses=error_responses, tags=["Progression"])
    async def enter_level_up(game_id: str):
        return await run_game_action(game_id, Action.simple(ActionType.ENTER_LEVEL_UP))

    @app.post(
        "/api/v1/games/{game_id}/level-up/confirm",
        response_model=ActionResponse,
        responses=error_responses,
        tags=["Progression"],
    )
    async def confirm_level_up(game_id: str, request: LevelUpRequest):
        return await run_game_action(game_id, Action.confirm_level_up(request.skills, request.stats))

    @app.post(
        "/api/v1/games/{game_id}/level-up/cancel",
        response_model=ActionResponse,
        responses=error_responses,
        tags=["Progression"],
    )
    async def cancel_level_up(game_id: str):
        return await run_game_action(game_id, Action.simple(ActionType.CANCEL_LEVEL_UP))

    @app.post("/api/v1/games/{game_id}/transaction", response_model=ActionResponse, responses=error_responses, tags=["Economy"])
    async def perform_transaction(game_id: str, request: TransactionRequest):
        return await run_game_action(game_id, Action.transaction(TransactionKind(request.kind), request.item_name))

    @app.post("/api/v1/games/{game_id}/liquidate", response_model=ActionResponse, responses=error_responses, tags=["Economy"])
    async def liquidate_gear(game_id: str, request: LiquidateRequest):
        action = Action.simple(ActionType.LIQUIDATE)
        action.payload.item_name = request.item_name
        return await run_game_action(game_id, action)

    @app.post("/api/v1/games/{game_id}/gambling", response_model=ActionResponse, responses=error_responses, tags=["Economy"])
    async def enter_gambling(game_id: str):
        return await run_game_action(game_id, Action.simple(ActionType.ENTER_GAMBLING))

    @app.post(
        "/api/v1/games/{game_id}/gambling/wager",
        response_model=ActionResponse,
        responses=error_responses,
        tags=["Economy"],
    )
    async def place_wager(game_id: str, request: WagerRequest):
        return await run_game_action(game_id, Action.wager(request.stake))

    @app.post(
        "/api/v1/games/{game_id}/gambling/leave",
        response_model=ActionResponse,
        responses=error_responses,
        tags=["Economy"],
    )
    async def leave_gambling(game_id: str):
        return await run_game_action(game_id, Action.simple(ActionType.LEAVE_GAMBLING))

    # =========================================================================
    # Shared sessions
    # =========================================================================

    @app.post("/api/v1/sessions", response_model=SessionResponse, tags=["Sessions"], summary="Create a shared session")
    async def create_session(request: CreateSessionRequest) -> SessionResponse:
        session = api_service.create_session(request.host_id, request.host_name)
        return api_service.session_response(session)

    @app.get("/api/v1/sessions", response_model=SessionListResponse, tags=["Sessions"])
    async def list_sessions() -> SessionListResponse:
        sessions = api_service.list_sessions()
        return SessionListResponse(sessions=sessions, count=len(sessions))

    @app.get("/api/v1/sessions/{session_id}", response_model=SessionResponse, responses=error_responses, tags=["Sessions"])
    async def get_session(session_id: str):
        return api_service.session_response(api_service.session_manager.get_session(session_id))

    @app.delete("/api/v1/sessions/{session_id}", response_model=EndResponse, tags=["Sessions"])
    async def end_session(session_id: str) -> EndResponse:
        active = session_id in api_service.list_sessions()
        await api_service.end_session(session_id)
        return EndResponse(success=active, id=session_id)

    @app.post("/api/v1/sessions/{session_id}/join", response_model=SessionResponse, responses=error_responses, tags=["Sessions"])
    async def join_session(session_id: str, request: JoinSessionRequest):
        session = await api_service.join_session(session_id, request.player_id, request.name)
        return api_service.session_response(session)

    @app.post("/api/v1/sessions/{session_id}/ready", response_model=SessionResponse, responses=error_responses, tags=["Sessions"])
    async def set_ready(session_id: str, request: ReadyRequest):
        session = await api_service.set_ready(session_id, request.player_id, request.ready)
        return api_service.session_response(session)

    @app.post("/api/v1/sessions/{session_id}/status", response_model=SessionResponse, responses=error_responses, tags=["Sessions"])
    async def advance_status(session_id: str, request: AdvanceStatusRequest):
        """Host-only: waiting -> setup -> playing -> finished."""
        session = await api_service.advance_session(session_id, request.player_id, request.status)
        return api_service.session_response(session)

    @app.post(
        "/api/v1/sessions/{session_id}/actions",
        response_model=SessionActionResponse,
        responses=error_responses,
        tags=["Sessions"],
    )
    async def submit_session_action(session_id: str, request: SessionActionRequest):
        """Submit any engine action; in play only the acting player may submit."""
        action = build_action(
            request.action_type,
            text=request.text,
            skills=request.skills,
            stats=request.stats,
            transaction=request.transaction,
            item_name=request.item_name,
            stake=request.stake,
            params=request.params,
        )
        result = await api_service.submit_session_action(
            session_id, request.player_id, action, request.expected_turn_index
        )
        if not result.success:
            return make_error_response(result.error_code or ErrorCode.INTERNAL_ERROR, result.error or "")
        session = api_service.session_manager.get_session(session_id)
        return api_service.session_response(session, result.state_changes)

    @app.websocket("/api/v1/sessions/{session_id}/ws")
    async def websocket_endpoint(websocket: WebSocket, session_id: str):
        """
        WebSocket for real-time updates.

        Messages from server:
        - state_update: session or game state changed
        - error: invalid message

        Messages from client:
        - ping: Keep-alive
        """
        await websocket.accept()

        async def forward(update: dict):
            await websocket.send_json({"type": "state_update", "payload": update})

        unsubscribe = api_service.session_manager.broadcaster.subscribe(session_id, forward)
        try:
            try:
                session = api_service.session_manager.get_session(session_id)
            except ChronicleError as e:
                await websocket.send_json({"type": "error", "payload": {"message": e.message}})
                await websocket.close()
                return
            await forward(session.snapshot())

            while True:
                data = await websocket.receive_text()
                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    await websocket.send_json({"type": "error", "payload": {"message": "Invalid JSON"}})
                    continue
                if isinstance(message, dict) and message.get("type") == "ping":
                    await websocket.send_json({"type": "pong"})
        except WebSocketDisconnect:
            logger.debug("websocket for session %s closed", session_id)
        finally:
            unsubscribe()

    # =========================================================================
    # System
    # =========================================================================

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check() -> HealthResponse:
        return HealthResponse(status="healthy", service="chronicle-engine", version=__version__)

    @app.get("/", tags=["System"])
    async def root():
        return {
            "service": "chronicle-engine",
            "version": __version__,
            "docs": "/api/docs",
            "health": "/health",
        }

    @app.on_event("shutdown")
    async def flush_saves():
        await api_service.flush()

    return app
