"""
Tests for the turn controller.
"""

import pytest

from ..errors import ErrorCode, InvalidTurn
from ..session.turns import TurnController


@pytest.fixture
def turns():
    return TurnController(roster=["host", "guest1", "guest2"])


class TestTurnController:
    """Tests for turn ownership and rotation."""

    def test_rotation(self, turns):
        order = []
        for _ in range(4):
            order.append(turns.acting_player())
            turns.claim(turns.acting_player())
        assert order == ["host", "guest1", "guest2", "host"]

    def test_claim_returns_claimed_index(self, turns):
        assert turns.claim("host") == 0
        assert turns.current_turn_index == 1

    def test_wrong_player_rejected_without_advancing(self, turns):
        with pytest.raises(InvalidTurn) as exc:
            turns.claim("guest1")
        assert exc.value.error_code == ErrorCode.INVALID_TURN
        assert exc.value.acting_player_id == "host"
        assert turns.current_turn_index == 0

    def test_duplicate_submission_is_stale(self, turns):
        turns.claim("host")
        with pytest.raises(InvalidTurn):
            turns.claim("host")

    def test_expected_index_matches(self, turns):
        assert turns.claim("host", expected_turn_index=0) == 0

    def test_stale_expected_index_rejected(self, turns):
        turns.claim("host")
        turns.claim("guest1")
        turns.claim("guest2")
        # host's turn again, but the client read index 0
        with pytest.raises(InvalidTurn):
            turns.claim("host", expected_turn_index=0)
        assert turns.current_turn_index == 3

    def test_empty_roster(self):
        with pytest.raises(InvalidTurn):
            TurnController().claim("host")

    def test_add_player_idempotent(self, turns):
        turns.add_player("guest1")
        assert turns.roster == ["host", "guest1", "guest2"]

    def test_remove_player_keeps_acting_player(self, turns):
        turns.claim("host")
        turns.claim("guest1")
        # guest2 is acting
        turns.remove_player("guest1")
        assert turns.acting_player() == "guest2"

    def test_remove_acting_player_passes_turn_on(self, turns):
        turns.claim("host")
        turns.remove_player("guest1")
        assert turns.acting_player() in turns.roster
