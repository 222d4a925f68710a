"""
Turn Controller - Who may act next in a shared session.

One authoritative turn index per session. The acting player is
roster[index % len(roster)].

Ownership, not locking:
- A submission is accepted only from the acting player
- The index advances when the submission is accepted, BEFORE the oracle
  round-trip, so a duplicate from the same player is already stale
- A turn lost to an oracle failure is not handed back

Optional compare-and-swap: a caller that read the index may pass it as
expected_turn_index; a stale value is rejected even from the right player.
"""

from __future__ import annotations
from dataclasses import dataclass, field

from ..errors import InvalidTurn


@dataclass
class TurnController:
    """Rotation over a roster of player ids."""
    roster: list[str] = field(default_factory=list)
    current_turn_index: int = 0

    def acting_player(self) -> str | None:
        if not self.roster:
            return None
        return self.roster[self.current_turn_index % len(self.roster)]

    def is_turn_of(self, player_id: str) -> bool:
        return self.acting_player() == player_id

    def claim(self, player_id: str, expected_turn_index: int | None = None) -> int:
        """
        Take the current turn for player_id and advance the index.

        Returns the index that was claimed. Raises InvalidTurn without
        touching the index when the player may not act.
        """
        acting = self.acting_player()
        if acting is None:
            raise InvalidTurn("Nobody has joined this session")
        if expected_turn_index is not None and expected_turn_index != self.current_turn_index:
            raise InvalidTurn(
                f"Turn {expected_turn_index} is stale; the session is on turn {self.current_turn_index}",
                acting_player_id=acting,
            )
        if acting != player_id:
            raise InvalidTurn(f"Not your turn; waiting on {acting}", acting_player_id=acting)

        claimed = self.current_turn_index
        self.current_turn_index += 1
        return claimed

    def add_player(self, player_id: str) -> None:
        if player_id not in self.roster:
            self.roster.append(player_id)

    def remove_player(self, player_id: str) -> None:
        """Drop a player; whoever was acting keeps the turn when possible."""
        if player_id not in self.roster:
            return
        acting = self.acting_player()
        self.roster.remove(player_id)
        if self.roster and acting in self.roster and acting != player_id:
            self.current_turn_index += (self.roster.index(acting) - self.current_turn_index) % len(self.roster)
