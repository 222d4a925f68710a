"""
API Service - Business logic layer between the API and the engine.

The service:
1. Owns the oracle, illustrator and save store
2. Keeps one GameLoop per open single-player game (loaded lazily from saves)
3. Delegates shared sessions to the SessionManager
4. Turns engine objects into response models

This layer is framework-agnostic (can be used with FastAPI, Flask, etc.)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any
import logging
import uuid

from ..config import Settings
from ..engine_core.action import Action, ActionPayload, ActionResult, ActionType, TransactionKind
from ..errors import RuleViolation
from ..oracle.client import HttpIllustrator, HttpOracle, Illustrator, NullIllustrator, Oracle, ScriptedOracle
from ..session.game_loop import GameLoop
from ..session.manager import Session, SessionManager, SessionStatus
from ..storage.store import DebouncedSaver, FileStore, MemoryStore, SaveStore
from .schemas import (
    ActionResponse,
    GameStateResponse,
    PlayerInfo,
    SaveInfo,
    SessionActionResponse,
    SessionResponse,
)

logger = logging.getLogger(__name__)


@dataclass
class APIService:
    """
    Main API service.

    Usage:
        service = APIService.from_settings(Settings.from_env())

        game_id, result = await service.create_game(owner_id="alice")
        result = await service.run(game_id, Action.story("Open the door"))
    """
    oracle: Oracle = field(default_factory=ScriptedOracle)
    illustrator: Illustrator = field(default_factory=NullIllustrator)
    store: SaveStore = field(default_factory=MemoryStore)
    save_debounce: float = 1.0
    session_manager: SessionManager | None = None

    # Open games by id
    _games: dict[str, GameLoop] = field(default_factory=dict)
    _saver: DebouncedSaver | None = None

    def __post_init__(self):
        self._saver = DebouncedSaver(self.store, delay=self.save_debounce)
        if self.session_manager is None:
            self.session_manager = SessionManager(loop_factory=self._new_loop)

    @classmethod
    def from_settings(cls, settings: Settings) -> APIService:
        """Wire real collaborators; without an oracle URL nothing can be narrated."""
        if settings.oracle_url:
            base = settings.oracle_url.rstrip("/")
            oracle: Oracle = HttpOracle(
                f"{base}/geminiProxy",
                model=settings.oracle_model,
                api_key=settings.oracle_api_key,
                timeout=settings.oracle_timeout,
            )
            illustrator: Illustrator = HttpIllustrator(
                f"{base}/imagenProxy",
                model=settings.oracle_image_model,
                api_key=settings.oracle_api_key,
                timeout=settings.oracle_timeout,
            )
        else:
            logger.warning("CHRONICLE_ORACLE_URL is not set; oracle calls will fail")
            oracle, illustrator = ScriptedOracle(), NullIllustrator()
        return cls(
            oracle=oracle,
            illustrator=illustrator,
            store=FileStore(settings.data_dir),
            save_debounce=settings.save_debounce_seconds,
        )

    def _new_loop(self, save_id: str, owner_id: str | None = None, state=None) -> GameLoop:
        return GameLoop(
            oracle=self.oracle,
            illustrator=self.illustrator,
            state=state,
            saver=self._saver,
            save_id=save_id,
            owner_id=owner_id,
        )

    # =========================================================================
    # Single-player games
    # =========================================================================

    async def create_game(self, owner_id: str | None = None) -> tuple[str, ActionResult]:
        game_id = uuid.uuid4().hex
        loop = self._new_loop(game_id, owner_id)
        self._games[game_id] = loop
        result = await loop.new_game()
        logger.info("game %s created for %s", game_id, owner_id)
        return game_id, result

    def get_game(self, game_id: str) -> GameLoop:
        """Open game, or load it from the store (GameNotFound if absent)."""
        loop = self._games.get(game_id)
        if loop is None:
            state = self.store.load(game_id)
            owner = next((s.owner_id for s in self.store.list() if s.save_id == game_id), None)
            loop = self._new_loop(game_id, owner, state)
            self._games[game_id] = loop
        return loop

    def list_games(self, owner_id: str | None = None) -> list[SaveInfo]:
        return [
            SaveInfo(
                game_id=s.save_id,
                owner_id=s.owner_id,
                character_name=s.character_name,
                mode=s.mode,
                story_length=s.story_length,
                updated_at=s.updated_at,
            )
            for s in self.store.list(owner_id)
        ]

    async def delete_game(self, game_id: str) -> bool:
        loop = self._games.pop(game_id, None)
        if loop is not None:
            await loop.drain()
        self._saver.discard(game_id)
        self.store.delete(game_id)
        return loop is not None

    async def run(self, game_id: str, action: Action) -> ActionResult:
        return await self.get_game(game_id).dispatch(action)

    async def flush(self) -> None:
        """Write every pending save now."""
        await self._saver.flush()

    def game_state_response(self, game_id: str) -> GameStateResponse:
        state = self.get_game(game_id).state
        return GameStateResponse(game_id=game_id, mode=state.mode.value, state=state.to_dict())

    @staticmethod
    def action_response(game_id: str, result: ActionResult) -> ActionResponse:
        return ActionResponse(
            game_id=game_id,
            mode=result.new_state.mode.value,
            state_changes=result.state_changes,
            state=result.new_state.to_dict(),
        )

    # =========================================================================
    # Shared sessions
    # =========================================================================

    def create_session(self, host_id: str, host_name: str = "") -> Session:
        return self.session_manager.create_session(host_id, host_name)

    async def join_session(self, session_id: str, player_id: str, name: str = "") -> Session:
        return await self.session_manager.join_session(session_id, player_id, name)

    async def set_ready(self, session_id: str, player_id: str, ready: bool) -> Session:
        return await self.session_manager.set_ready(session_id, player_id, ready)

    async def advance_session(self, session_id: str, player_id: str, status: str) -> Session:
        return await self.session_manager.advance_status(session_id, player_id, SessionStatus(status))

    async def submit_session_action(
        self,
        session_id: str,
        player_id: str,
        action: Action,
        expected_turn_index: int | None = None,
    ) -> ActionResult:
        return await self.session_manager.submit(session_id, player_id, action, expected_turn_index)

    async def end_session(self, session_id: str) -> None:
        await self.session_manager.end_session(session_id)

    def list_sessions(self) -> list[str]:
        return self.session_manager.list_active_sessions()

    @staticmethod
    def session_response(session: Session, changes: list[str] | None = None) -> SessionResponse:
        acting = session.turns.acting_player()
        fields: dict[str, Any] = dict(
            session_id=session.session_id,
            host_id=session.host_id,
            status=session.status.value,
            players=[
                PlayerInfo(
                    player_id=p.player_id,
                    name=p.name,
                    is_host=p.is_host,
                    ready=p.ready,
                    is_current_turn=p.player_id == acting,
                )
                for p in session.players
            ],
            current_turn_index=session.turns.current_turn_index,
            acting_player_id=acting,
            mode=session.loop.state.mode.value,
            state=session.loop.state.to_dict(),
        )
        if changes is None:
            return SessionResponse(**fields)
        return SessionActionResponse(**fields, state_changes=changes)


def build_action(
    action_type: str,
    text: str | None = None,
    skills: dict[str, int] | None = None,
    stats: dict[str, int] | None = None,
    transaction: str | None = None,
    item_name: str | None = None,
    stake: int | None = None,
    params: dict[str, Any] | None = None,
) -> Action:
    """Build an engine Action from loosely typed request fields."""
    try:
        kind = ActionType(action_type)
    except ValueError:
        raise RuleViolation(f"Unknown action type: {action_type}")
    return Action(
        action_type=kind,
        payload=ActionPayload(
            text=text,
            skills=skills,
            stats=stats,
            transaction=TransactionKind(transaction) if transaction else None,
            item_name=item_name,
            stake=stake,
            params=dict(params or {}),
        ),
    )


__all__ = ["APIService", "build_action"]
