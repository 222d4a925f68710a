"""
Session Module - Drives adventures, alone or shared.

- GameLoop: one adventure, one entry point per mode
- TurnController: whose turn it is in a shared session
- SessionManager: lobby, host privileges and turn ownership
- Broadcaster: ordered state fan-out to every participant
"""

from .broadcast import Broadcaster
from .game_loop import GameLoop
from .manager import Player, Session, SessionManager, SessionStatus
from .turns import TurnController

__all__ = [
    "Broadcaster",
    "GameLoop",
    "Player",
    "Session",
    "SessionManager",
    "SessionStatus",
    "TurnController",
]
