"""
Session Manager - Creates and manages shared (multiplayer) sessions.

LIFECYCLE:
1. Host creates a session -> status WAITING, host is the first player
2. Guests join (idempotent per player id) and mark themselves ready
3. Host advances WAITING -> SETUP: the host alone drives character
   creation for the party
4. Host advances SETUP -> PLAYING: every action now goes through the
   turn controller, one player at a time
5. Session ends -> FINISHED, removed from memory

Every accepted action is published on the broadcaster so every participant
sees the same state in the same order.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable
import logging
import time
import uuid

from ..engine_core.action import Action, ActionResult, ActionType
from ..errors import (
    ActionInFlight,
    InvalidTransition,
    InvalidTurn,
    RuleViolation,
    SessionNotFound,
    TerminalState,
)
from .broadcast import Broadcaster
from .game_loop import GameLoop
from .turns import TurnController

logger = logging.getLogger(__name__)

MAX_PLAYERS = 6


class SessionStatus(Enum):
    """Lifecycle of a shared session."""
    WAITING = "waiting"  # Lobby, players joining
    SETUP = "setup"  # Host is creating the character
    PLAYING = "playing"  # Turn rotation in force
    FINISHED = "finished"


# Status changes only the host may make
_HOST_ADVANCES = {
    (SessionStatus.WAITING, SessionStatus.SETUP),
    (SessionStatus.WAITING, SessionStatus.PLAYING),
    (SessionStatus.SETUP, SessionStatus.PLAYING),
    (SessionStatus.WAITING, SessionStatus.FINISHED),
    (SessionStatus.SETUP, SessionStatus.FINISHED),
    (SessionStatus.PLAYING, SessionStatus.FINISHED),
}


@dataclass
class Player:
    player_id: str
    name: str
    is_host: bool = False
    ready: bool = False
    joined_at: float = field(default_factory=time.time)


@dataclass
class Session:
    """
    A shared adventure.

    Contains:
    - The players, in join order (the turn rotation order)
    - The game loop holding the shared GameState
    - The turn controller
    """
    session_id: str
    host_id: str
    loop: GameLoop
    created_at: float
    status: SessionStatus = SessionStatus.WAITING
    players: list[Player] = field(default_factory=list)
    turns: TurnController = field(default_factory=TurnController)
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_active(self) -> bool:
        return self.status != SessionStatus.FINISHED

    def get_player(self, player_id: str) -> Player | None:
        for player in self.players:
            if player.player_id == player_id:
                return player
        return None

    def snapshot(self) -> dict[str, Any]:
        """Partial update pushed to subscribers."""
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "players": [
                {"player_id": p.player_id, "name": p.name, "is_host": p.is_host, "ready": p.ready}
                for p in self.players
            ],
            "current_turn_index": self.turns.current_turn_index,
            "acting_player_id": self.turns.acting_player(),
            "game_state": self.loop.state.to_dict(),
        }


class SessionManager:
    """
    Manages shared sessions.

    Responsibilities:
    - Create sessions and admit players
    - Enforce host-only privileges and turn ownership
    - Publish every accepted change
    - Clean up finished sessions
    """

    def __init__(self, loop_factory: Callable[[str], GameLoop], broadcaster: Broadcaster | None = None):
        self._loop_factory = loop_factory
        self.broadcaster = broadcaster or Broadcaster()
        self._sessions: dict[str, Session] = {}

    def create_session(self, host_id: str, host_name: str = "") -> Session:
        session_id = uuid.uuid4().hex
        session = Session(
            session_id=session_id,
            host_id=host_id,
            loop=self._loop_factory(session_id),
            created_at=time.time(),
        )
        session.players.append(Player(player_id=host_id, name=host_name or host_id, is_host=True))
        session.turns.add_player(host_id)
        self._sessions[session_id] = session
        logger.info("session %s created by %s", session_id, host_id)
        return session

    def get_session(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"No session {session_id}")
        return session

    async def join_session(self, session_id: str, player_id: str, name: str = "") -> Session:
        """Add a player; joining twice is a no-op."""
        session = self.get_session(session_id)
        if session.get_player(player_id) is not None:
            return session
        if not session.is_active():
            raise InvalidTransition("This session has ended")
        if len(session.players) >= MAX_PLAYERS:
            raise RuleViolation(f"Session is full ({MAX_PLAYERS} players)")

        session.players.append(Player(player_id=player_id, name=name or player_id))
        session.turns.add_player(player_id)
        logger.info("player %s joined session %s", player_id, session_id)
        await self.broadcaster.publish(session_id, session.snapshot())
        return session

    async def set_ready(self, session_id: str, player_id: str, ready: bool = True) -> Session:
        session = self.get_session(session_id)
        player = session.get_player(player_id)
        if player is None:
            raise InvalidTurn(f"{player_id} is not in this session")
        player.ready = ready
        await self.broadcaster.publish(session_id, session.snapshot())
        return session

    async def advance_status(self, session_id: str, player_id: str, status: SessionStatus) -> Session:
        """Host-only lifecycle change."""
        session = self.get_session(session_id)
        if player_id != session.host_id:
            raise InvalidTurn("Only the host can change the session status", acting_player_id=session.host_id)
        if (session.status, status) not in _HOST_ADVANCES:
            raise InvalidTransition(f"Cannot move a session from {session.status.value} to {status.value}")
        if status == SessionStatus.PLAYING and session.loop.state.character is None:
            raise InvalidTransition("Finish creating the character before play starts")

        session.status = status
        logger.info("session %s -> %s", session_id, status.value)
        await self.broadcaster.publish(session_id, session.snapshot())
        return session

    async def submit(
        self,
        session_id: str,
        player_id: str,
        action: Action,
        expected_turn_index: int | None = None,
    ) -> ActionResult:
        """
        Run an action on the shared game.

        SETUP: only the host acts and no turn is consumed.
        PLAYING: an action the game would refuse outright (wrong mode, game
        over, empty text) is rejected without touching the rotation. Otherwise
        the turn is claimed before the oracle is consulted, and a failed
        oracle call still consumes it. The host may restart with NEW_GAME
        out of turn, which sends the session back to SETUP.
        """
        try:
            session = self.get_session(session_id)
            if session.get_player(player_id) is None:
                raise InvalidTurn(f"{player_id} is not in this session")

            if session.status == SessionStatus.SETUP:
                if player_id != session.host_id:
                    raise InvalidTurn("The host is setting up the adventure", acting_player_id=session.host_id)
            elif session.status == SessionStatus.PLAYING:
                restart = action.action_type == ActionType.NEW_GAME
                if restart and player_id != session.host_id:
                    raise InvalidTurn("Only the host can restart the adventure", acting_player_id=session.host_id)
                session.loop.precheck(action)
                if not restart:
                    session.turns.claim(player_id, expected_turn_index)
            else:
                raise InvalidTransition(f"Session is {session.status.value}")
        except (SessionNotFound, InvalidTurn, InvalidTransition, TerminalState, ActionInFlight, RuleViolation) as e:
            return ActionResult.from_error(e)

        action.payload.player_id = player_id
        result = await session.loop.dispatch(action)
        if result.success and action.action_type == ActionType.NEW_GAME and session.status == SessionStatus.PLAYING:
            session.status = SessionStatus.SETUP
            logger.info("session %s restarted by the host -> setup", session_id)
        if result.success:
            await self.broadcaster.publish(session_id, {**session.snapshot(), "changes": result.state_changes})
        elif session.status == SessionStatus.PLAYING:
            # The turn still moved on
            await self.broadcaster.publish(session_id, session.snapshot())
        return result

    async def end_session(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        session.status = SessionStatus.FINISHED
        await session.loop.drain()
        await self.broadcaster.publish(session_id, session.snapshot())
        self.broadcaster.close(session_id)
        logger.info("session %s ended", session_id)

    def list_active_sessions(self) -> list[str]:
        return [sid for sid, session in self._sessions.items() if session.is_active()]

    async def cleanup_stale_sessions(self, max_age_seconds: int = 3600) -> list[str]:
        """End sessions older than max_age_seconds."""
        now = time.time()
        stale = [sid for sid, session in self._sessions.items() if now - session.created_at > max_age_seconds]
        for session_id in stale:
            await self.end_session(session_id)
        return stale
