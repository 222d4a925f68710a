"""
Error taxonomy for the engine.

Recoverable:
- OracleUnavailable: transport or parse failure talking to the oracle
- MalformedPayload: oracle JSON that cannot be coerced into a usable update
- InvalidTurn: wrong actor in a shared session

Rejected requests:
- TerminalState: anything but a new game after the character died
- InvalidTransition: trigger not legal from the current mode
- RuleViolation: request breaks a game rule

Fatal (surfaced for the caller to retry):
- PersistenceError
"""

from __future__ import annotations
from enum import Enum


class ErrorCode(str, Enum):
    """Structured error codes shared by the engine and the API."""
    ORACLE_UNAVAILABLE = "ORACLE_UNAVAILABLE"
    MALFORMED_PAYLOAD = "MALFORMED_PAYLOAD"
    INVALID_TURN = "INVALID_TURN"
    TERMINAL_STATE = "TERMINAL_STATE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    RULE_VIOLATION = "RULE_VIOLATION"
    ACTION_IN_FLIGHT = "ACTION_IN_FLIGHT"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    GAME_NOT_FOUND = "GAME_NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ChronicleError(Exception):
    """Base class for engine errors."""
    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class OracleUnavailable(ChronicleError):
    """The oracle could not be reached or returned something unparseable."""
    error_code = ErrorCode.ORACLE_UNAVAILABLE


class MalformedPayload(ChronicleError):
    """The oracle answered, but not with anything the engine can apply."""
    error_code = ErrorCode.MALFORMED_PAYLOAD


class InvalidTurn(ChronicleError):
    """A player acted out of turn in a shared session."""
    error_code = ErrorCode.INVALID_TURN

    def __init__(self, message: str, acting_player_id: str | None = None):
        self.acting_player_id = acting_player_id
        super().__init__(message)


class TerminalState(ChronicleError):
    """The game is over; only a new game may be started."""
    error_code = ErrorCode.TERMINAL_STATE


class InvalidTransition(ChronicleError):
    """A mode trigger was fired from a mode that does not accept it."""
    error_code = ErrorCode.INVALID_TRANSITION


class RuleViolation(ChronicleError):
    """The request breaks a game rule (not enough gold, party full, ...)."""
    error_code = ErrorCode.RULE_VIOLATION


class ActionInFlight(ChronicleError):
    """Another action for the same game has not settled yet."""
    error_code = ErrorCode.ACTION_IN_FLIGHT


class PersistenceError(ChronicleError):
    """The save store is unreachable or holds corrupt data."""
    error_code = ErrorCode.PERSISTENCE_ERROR


class SessionNotFound(ChronicleError):
    """No shared session with the given id."""
    error_code = ErrorCode.SESSION_NOT_FOUND


class GameNotFound(ChronicleError):
    """No game (single-player save slot) with the given id."""
    error_code = ErrorCode.GAME_NOT_FOUND
