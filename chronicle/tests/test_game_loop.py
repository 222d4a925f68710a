"""
Tests for the game loop.

Tests:
- Character creation and finalize
- Story and combat turns against a scripted oracle
- Failure atomicity and the in-flight guard
- Level-up, transactions, liquidation and gambling
- Background summaries and debounced saves
"""

import asyncio
from dataclasses import replace

import pytest

from ..engine_core.action import Action, TransactionKind
from ..engine_core.state import (
    Equipment,
    GameMode,
    Loadout,
    SegmentKind,
    TransactionState,
    Vendor,
    check_invariants,
)
from ..errors import ErrorCode
from ..oracle.client import ScriptedOracle
from ..oracle.prompts import CallKind
from ..session.game_loop import AFTER_LOOT_ACTIONS, GameLoop
from ..storage.store import DebouncedSaver, MemoryStore


def run(coro):
    return asyncio.run(coro)


class GatedOracle(ScriptedOracle):
    """Holds every call until the gate opens."""

    gate: asyncio.Event

    async def __call__(self, request):
        await self.gate.wait()
        return await super().__call__(request)


class TestCharacterCreation:
    """Tests for new game, create and finalize."""

    def test_full_flow(self, ready_oracle, never_dodge):
        loop = GameLoop(ready_oracle, rng=never_dodge)

        async def flow():
            started = await loop.new_game()
            assert started.new_state.mode == GameMode.CHARACTER_CREATION

            created = await loop.create_character({"name": "Arin", "gender": "female", "race": "Elf"})
            assert created.success
            assert loop.mode == GameMode.CHARACTER_CUSTOMIZE
            assert loop.state.draft.starting_skill_points == 5
            assert [c.name for c in loop.state.companions] == ["Brom"]
            assert loop.state.companions[0].relationship == 0
            assert loop.state.companions[0].skills == {"Smithing": 3}

            return await loop.finalize_character({"Swordplay": 2, "Lockpicking": 1})

        result = run(flow())
        state = loop.state

        assert result.success
        assert state.mode == GameMode.PLAYING
        assert state.draft is None
        assert state.character.name == "Arin"
        assert state.character.gender == "female"
        assert state.character.hp == 100
        assert state.character.gold == 0
        assert state.character.skills == {"Swordplay": 2, "Lockpicking": 1}
        assert state.character.skill_points == 2
        assert state.character.equipment.weapon.name == "Rusty Dagger"
        assert [s.text for s in state.story_log] == ["You wake at the crossroads."]
        assert state.current_actions == ["Walk north", "Rest"]
        assert state.story_guidance.setting == "The Ashen Vale"
        assert check_invariants(state) == []

    def test_character_gen_context_sent(self, ready_oracle):
        loop = GameLoop(ready_oracle)

        async def flow():
            await loop.new_game()
            await loop.create_character({"name": "Arin", "character_class": "Ranger"})

        run(flow())
        assert ready_oracle.requests[0].kind == CallKind.CHARACTER_GEN
        assert ready_oracle.requests[0].context["class"] == "Ranger"

    def test_overspending_rejected(self, ready_oracle):
        loop = GameLoop(ready_oracle)

        async def flow():
            await loop.new_game()
            await loop.create_character({"name": "Arin"})
            return await loop.finalize_character({"Swordplay": 4, "Lockpicking": 2})

        result = run(flow())
        assert result.error_code == ErrorCode.RULE_VIOLATION
        assert loop.mode == GameMode.CHARACTER_CUSTOMIZE

    def test_unknown_skill_rejected(self, ready_oracle):
        loop = GameLoop(ready_oracle)

        async def flow():
            await loop.new_game()
            await loop.create_character({"name": "Arin"})
            return await loop.finalize_character({"Necromancy": 1})

        assert run(flow()).error_code == ErrorCode.RULE_VIOLATION

    def test_name_required(self, ready_oracle):
        loop = GameLoop(ready_oracle)

        async def flow():
            await loop.new_game()
            return await loop.create_character({"name": "  "})

        assert run(flow()).error_code == ErrorCode.RULE_VIOLATION
        assert ready_oracle.pending(CallKind.CHARACTER_GEN) == 1

    def test_new_game_from_game_over(self, oracle, playing_state):
        over = playing_state._copy_with(mode=GameMode.GAME_OVER, character=playing_state.character.with_hp(0))
        loop = GameLoop(oracle, state=over)

        result = run(loop.new_game())

        assert result.success
        assert loop.mode == GameMode.CHARACTER_CREATION
        assert loop.state.character is None


class TestStoryTurns:
    """Tests for story actions."""

    def test_story_action(self, oracle, playing_state):
        oracle.push(CallKind.NEXT_STEP, {
            "text": "The lock clicks open.",
            "actions": ["Enter"],
            "didXpChange": 100,
            "skillCheck": {"skill": "Lockpicking", "baseChance": 40, "success": True},
        })
        loop = GameLoop(oracle, state=playing_state)

        result = run(loop.submit_action("Pick the lock"))

        assert result.success
        segment = loop.state.story_log[-1]
        assert segment.text == "The lock clicks open."
        assert segment.skill_check.modifier == 4
        assert segment.skill_check.effective_chance == 44
        assert loop.state.character.skill_points == 1
        assert oracle.requests[0].context["skillCheckModifiers"]["Lockpicking"] == 4

    def test_illustration_attached(self, oracle, playing_state):
        async def illustrator(prompt):
            return "data:image/jpeg;base64,AAA"

        oracle.push(CallKind.NEXT_STEP, {"text": "A tower looms."})
        loop = GameLoop(oracle, illustrator=illustrator, state=playing_state)

        run(loop.submit_action("Look up"))

        assert loop.state.story_log[-1].illustration == "data:image/jpeg;base64,AAA"

    def test_illustration_failure_does_not_block(self, oracle, playing_state):
        async def illustrator(prompt):
            raise RuntimeError("image service down")

        oracle.push(CallKind.NEXT_STEP, {"text": "A tower looms."})
        loop = GameLoop(oracle, illustrator=illustrator, state=playing_state)

        result = run(loop.submit_action("Look up"))

        assert result.success
        assert loop.state.story_log[-1].illustration is None

    def test_oracle_failure_leaves_state_unchanged(self, oracle, playing_state):
        loop = GameLoop(oracle, state=playing_state)

        result = run(loop.submit_action("Walk north"))

        assert not result.success
        assert result.error_code == ErrorCode.ORACLE_UNAVAILABLE
        assert loop.state is playing_state
        assert not loop.busy

    def test_malformed_payload_leaves_state_unchanged(self, oracle, playing_state):
        oracle.push(CallKind.NEXT_STEP, {"actions": ["no text"]})
        loop = GameLoop(oracle, state=playing_state)

        result = run(loop.submit_action("Walk north"))

        assert result.error_code == ErrorCode.MALFORMED_PAYLOAD
        assert loop.state is playing_state

    def test_wrong_mode_rejected(self, oracle, playing_state):
        loop = GameLoop(oracle, state=playing_state)
        result = run(loop.submit_combat_action("Strike"))
        assert result.error_code == ErrorCode.INVALID_TRANSITION
        assert oracle.requests == []

    def test_game_over_is_terminal(self, oracle, playing_state):
        loop = GameLoop(oracle, state=playing_state._copy_with(mode=GameMode.GAME_OVER))
        result = run(loop.submit_action("Get up"))
        assert result.error_code == ErrorCode.TERMINAL_STATE

    def test_second_action_in_flight_rejected(self, playing_state):
        oracle = GatedOracle().push(CallKind.NEXT_STEP, {"text": "You walk north."})
        loop = GameLoop(oracle, state=playing_state)

        async def flow():
            oracle.gate = asyncio.Event()
            first = asyncio.create_task(loop.submit_action("Walk north"))
            await asyncio.sleep(0)
            assert loop.busy
            second = await loop.submit_action("Walk south")
            oracle.gate.set()
            return await first, second

        first, second = run(flow())

        assert first.success
        assert second.error_code == ErrorCode.ACTION_IN_FLIGHT
        assert len(oracle.requests) == 1

    def test_encounter_enters_combat(self, oracle, playing_state):
        oracle.push(CallKind.NEXT_STEP, {
            "text": "Bandits!",
            "startCombat": True,
            "enemies": [{"name": "Bandit", "hp": 12, "damage": 4}],
        })
        loop = GameLoop(oracle, state=playing_state)

        run(loop.submit_action("Open the crate"))

        assert loop.mode == GameMode.COMBAT
        assert loop.state.combat.enemies[0].enemy_id == "Bandit-0"

    def test_dispatch_routes_actions(self, oracle, playing_state):
        oracle.push(CallKind.NEXT_STEP, {"text": "Onward."})
        loop = GameLoop(oracle, state=playing_state)
        result = run(loop.dispatch(Action.story("Walk north")))
        assert result.success
        assert loop.state.story_log[-1].text == "Onward."


class TestCombatTurns:
    """Tests for combat through the loop."""

    @pytest.fixture
    def last_goblin(self, combat_state):
        enemies = [replace(combat_state.combat.enemies[0], hp=6), replace(combat_state.combat.enemies[1], hp=0)]
        return combat_state._copy_with(combat=replace(combat_state.combat, enemies=enemies))

    def test_round_continues(self, oracle, combat_state, never_dodge):
        oracle.push(CallKind.COMBAT_TURN, {"narration": "You slash.", "actions": ["Slash again"]})
        loop = GameLoop(oracle, state=combat_state, rng=never_dodge)

        result = run(loop.submit_combat_action("Slash"))

        assert result.success
        assert loop.mode == GameMode.COMBAT
        assert loop.state.combat.round == 2
        assert loop.state.character.hp == 97

    def test_victory_and_loot(self, oracle, last_goblin, never_dodge):
        oracle.push(CallKind.COMBAT_TURN, {"narration": "The goblin falls."})
        oracle.push(CallKind.VICTORY, {"text": "Victory!", "xp": 50, "loot": {"gold": 12, "items": [{"name": "Dagger"}]}})
        loop = GameLoop(oracle, state=last_goblin, rng=never_dodge)

        result = run(loop.submit_combat_action("Finish it"))

        assert result.success
        assert loop.mode == GameMode.LOOTING
        assert loop.state.combat is None
        assert loop.state.loot.gold == 12
        assert loop.state.character.gold == 62

        result = run(loop.continue_from_loot())

        assert result.success
        assert loop.mode == GameMode.PLAYING
        assert loop.state.loot is None
        assert loop.state.current_actions == AFTER_LOOT_ACTIONS

    def test_victory_call_failure_leaves_state_unchanged(self, oracle, last_goblin, never_dodge):
        oracle.push(CallKind.COMBAT_TURN, {"narration": "The goblin falls."})
        loop = GameLoop(oracle, state=last_goblin, rng=never_dodge)

        result = run(loop.submit_combat_action("Finish it"))

        assert result.error_code == ErrorCode.ORACLE_UNAVAILABLE
        assert loop.state is last_goblin

    def test_defeat(self, oracle, combat_state, never_dodge):
        oracle.push(CallKind.COMBAT_TURN, {"narration": "You fall.", "playerDefeated": True})
        loop = GameLoop(oracle, state=combat_state, rng=never_dodge)

        run(loop.submit_combat_action("Charge"))

        assert loop.mode == GameMode.GAME_OVER
        assert run(loop.submit_combat_action("Charge")).error_code == ErrorCode.TERMINAL_STATE


class TestLevelUp:
    """Tests for level-up through the loop."""

    @pytest.fixture
    def with_points(self, playing_state):
        return playing_state._copy_with(character=replace(playing_state.character, skill_points=2))

    def test_confirm(self, oracle, with_points):
        loop = GameLoop(oracle, state=with_points)

        run(loop.enter_level_up())
        assert loop.mode == GameMode.LEVEL_UP

        result = run(loop.confirm_level_up({"Swordplay": 3, "Lockpicking": 1, "Archery": 1}))

        assert result.success
        assert loop.mode == GameMode.PLAYING
        assert loop.state.character.skills == {"Swordplay": 3, "Lockpicking": 1, "Archery": 1}
        assert loop.state.character.skill_points == 0

    def test_stat_raise_costs_points(self, oracle, with_points):
        loop = GameLoop(oracle, state=with_points)
        run(loop.enter_level_up())

        run(loop.confirm_level_up({"Swordplay": 2, "Lockpicking": 1}, stats={"STR": 10}))

        assert loop.state.character.stat("STR") == 10
        assert loop.state.character.skill_points == 0

    def test_lowering_a_skill_rejected(self, oracle, with_points):
        loop = GameLoop(oracle, state=with_points)
        run(loop.enter_level_up())

        result = run(loop.confirm_level_up({"Swordplay": 1, "Lockpicking": 1, "Archery": 2}))

        assert result.error_code == ErrorCode.RULE_VIOLATION
        assert loop.mode == GameMode.LEVEL_UP

    def test_overspending_rejected(self, oracle, with_points):
        loop = GameLoop(oracle, state=with_points)
        run(loop.enter_level_up())
        result = run(loop.confirm_level_up({"Swordplay": 5, "Lockpicking": 1}))
        assert result.error_code == ErrorCode.RULE_VIOLATION

    def test_skill_outside_pools_rejected(self, oracle, with_points):
        loop = GameLoop(oracle, state=with_points)
        run(loop.enter_level_up())
        result = run(loop.confirm_level_up({"Swordplay": 2, "Lockpicking": 1, "Juggling": 1}))
        assert result.error_code == ErrorCode.RULE_VIOLATION

    def test_cancel(self, oracle, with_points):
        loop = GameLoop(oracle, state=with_points)
        run(loop.enter_level_up())
        run(loop.cancel_level_up())
        assert loop.mode == GameMode.PLAYING
        assert loop.state.character == with_points.character

    def test_enter_without_points(self, oracle, playing_state):
        loop = GameLoop(oracle, state=playing_state)
        assert run(loop.enter_level_up()).error_code == ErrorCode.INVALID_TRANSITION


class TestEconomy:
    """Tests for trading, liquidation and gambling."""

    @pytest.fixture
    def at_vendor(self, playing_state):
        vendor = Vendor("Mira", inventory=[Equipment("Potion", value=20), Equipment("Greatsword", value=100)])
        return playing_state._copy_with(mode=GameMode.TRANSACTION, transaction=TransactionState(vendor))

    def test_buy_and_sell(self, oracle, at_vendor):
        loop = GameLoop(oracle, state=at_vendor)

        bought = run(loop.perform_transaction(TransactionKind.BUY, "potion"))

        assert bought.success
        assert loop.state.character.gold == 30
        assert loop.state.character.equipment.find_gear("Potion") is not None
        assert loop.state.transaction.vendor.find_item("Potion") is None

        sold = run(loop.perform_transaction(TransactionKind.SELL, "Potion"))

        assert sold.success
        assert loop.state.character.gold == 40
        assert loop.state.transaction.vendor.find_item("Potion") is not None

    def test_cannot_afford(self, oracle, at_vendor):
        loop = GameLoop(oracle, state=at_vendor)
        result = run(loop.perform_transaction(TransactionKind.BUY, "Greatsword"))
        assert result.error_code == ErrorCode.RULE_VIOLATION
        assert loop.state is at_vendor

    def test_vendor_lacks_item(self, oracle, at_vendor):
        loop = GameLoop(oracle, state=at_vendor)
        result = run(loop.perform_transaction(TransactionKind.BUY, "Dragon Egg"))
        assert result.error_code == ErrorCode.RULE_VIOLATION

    def test_exit(self, oracle, at_vendor):
        loop = GameLoop(oracle, state=at_vendor)
        run(loop.perform_transaction(TransactionKind.EXIT))
        assert loop.mode == GameMode.PLAYING
        assert loop.state.transaction is None

    def test_liquidate(self, oracle, playing_state):
        equipment = playing_state.character.equipment
        loadout = Loadout(equipment.weapon, equipment.armor, [Equipment("Torch", value=9)])
        state = playing_state._copy_with(character=replace(playing_state.character, equipment=loadout))
        loop = GameLoop(oracle, state=state)

        result = run(loop.liquidate_gear("Torch"))

        assert result.success
        assert loop.state.character.gold == 54
        assert loop.state.character.equipment.gear == []
        assert run(loop.liquidate_gear("Torch")).error_code == ErrorCode.RULE_VIOLATION

    def test_gambling(self, oracle, playing_state):
        oracle.push(CallKind.GAMBLE, {"text": "The dice favor you.", "won": True})
        loop = GameLoop(oracle, state=playing_state)

        run(loop.enter_gambling())
        assert loop.mode == GameMode.GAMBLING

        result = run(loop.place_wager(20))

        assert result.success
        assert loop.state.character.gold == 70
        assert loop.state.story_log[-1].kind == SegmentKind.INFO

        run(loop.leave_gambling())
        assert loop.mode == GameMode.PLAYING

    def test_stake_must_be_covered(self, oracle, playing_state):
        loop = GameLoop(oracle, state=playing_state)
        run(loop.enter_gambling())

        result = run(loop.place_wager(500))

        assert result.error_code == ErrorCode.RULE_VIOLATION
        assert oracle.requests == []


class TestBackgroundWork:
    """Tests for summaries and saves."""

    def test_summary_refreshed_every_ten_segments(self, oracle, playing_state):
        oracle.push(CallKind.NEXT_STEP, {"text": "The tenth step."})
        oracle.push(CallKind.SUMMARY, {"summary": "Arin set out and walked far."})
        loop = GameLoop(oracle, state=playing_state._copy_with(segments_written=9))

        async def flow():
            await loop.submit_action("Walk")
            await loop.drain()

        run(flow())

        assert loop.state.character.story_summary == "Arin set out and walked far."
        assert [r.kind for r in oracle.requests] == [CallKind.NEXT_STEP, CallKind.SUMMARY]

    def test_no_summary_between_multiples(self, oracle, playing_state):
        oracle.push(CallKind.NEXT_STEP, {"text": "Another step."})
        loop = GameLoop(oracle, state=playing_state)

        async def flow():
            await loop.submit_action("Walk")
            await loop.drain()

        run(flow())
        assert [r.kind for r in oracle.requests] == [CallKind.NEXT_STEP]

    def test_summary_failure_ignored(self, oracle, playing_state):
        oracle.push(CallKind.NEXT_STEP, {"text": "The tenth step."})
        loop = GameLoop(oracle, state=playing_state._copy_with(segments_written=9))

        async def flow():
            result = await loop.submit_action("Walk")
            await loop.drain()
            return result

        assert run(flow()).success
        assert loop.state.character.story_summary is None
        assert loop.state.segments_written == 10

    def test_summary_discarded_after_new_game(self, playing_state):
        oracle = GatedOracle()
        oracle.push(CallKind.NEXT_STEP, {"text": "The tenth step."})
        oracle.push(CallKind.SUMMARY, {"summary": "Old adventure."})
        loop = GameLoop(oracle, state=playing_state._copy_with(segments_written=9))

        async def flow():
            oracle.gate = asyncio.Event()
            oracle.gate.set()
            await loop.submit_action("Walk")
            oracle.gate.clear()
            await asyncio.sleep(0)
            await loop.new_game()
            oracle.gate.set()
            await loop.drain()

        run(flow())

        assert loop.mode == GameMode.CHARACTER_CREATION
        assert loop.state.character is None

    def test_save_scheduled_after_commit(self, oracle, playing_state):
        store = MemoryStore()
        saver = DebouncedSaver(store, delay=60)
        oracle.push(CallKind.NEXT_STEP, {"text": "Onward."})
        loop = GameLoop(oracle, state=playing_state, saver=saver, save_id="game1", owner_id="alice")

        async def flow():
            await loop.submit_action("Walk")
            await saver.flush()

        run(flow())

        saved = store.load("game1")
        assert [s.text for s in saved.story_log] == ["You wake at the crossroads.", "Onward."]
        assert store.list("alice")[0].save_id == "game1"

    def test_failed_action_not_saved(self, oracle, playing_state):
        store = MemoryStore()
        saver = DebouncedSaver(store, delay=60)
        loop = GameLoop(oracle, state=playing_state, saver=saver, save_id="game1")

        async def flow():
            await loop.submit_action("Walk")
            await saver.flush()

        run(flow())
        assert store.list() == []
