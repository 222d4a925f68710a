"""
Tests for the oracle layer.

Tests:
- Payload adapters (defaults, aliases, repair, failures)
- Request context builders
- Client response parsing and the scripted oracle
"""

import asyncio
import json

import pytest

from ..engine_core.state import StorySegment
from ..errors import ErrorCode, MalformedPayload, OracleUnavailable
from ..oracle.client import HttpOracle, ScriptedOracle
from ..oracle.prompts import (
    HISTORY_WINDOW,
    CallKind,
    alignment_sync_request,
    character_gen_request,
    combat_turn_request,
    gamble_request,
    map_sync_request,
    next_step_request,
    response_schema,
    summary_request,
    victory_request,
)
from ..oracle.schemas import (
    AlignmentSyncPayload,
    CharacterGenPayload,
    CombatTurnPayload,
    EnemySeed,
    MapSyncPayload,
    NextStepPayload,
    VictoryPayload,
    adapt,
)


class TestAdapt:
    """Tests for payload adaptation."""

    def test_defaults_fill_absent_fields(self):
        payload = adapt(NextStepPayload, {"text": "Quiet."})
        assert payload.hp_change == 0
        assert payload.actions == []
        assert payload.equipment_updates == []
        assert payload.new_companion is None
        assert payload.start_combat is False

    def test_accepts_json_text(self):
        payload = adapt(NextStepPayload, json.dumps({"text": "Quiet.", "didXpChange": 20}))
        assert payload.xp_change == 20

    def test_unwraps_story_envelope(self):
        payload = adapt(NextStepPayload, {"story": {"text": "Wrapped.", "actions": ["Go"]}})
        assert payload.text == "Wrapped."
        assert payload.actions == ["Go"]

    def test_invalid_json_is_unavailable(self):
        with pytest.raises(OracleUnavailable) as exc:
            adapt(NextStepPayload, "{not json")
        assert exc.value.error_code == ErrorCode.ORACLE_UNAVAILABLE

    def test_non_object_is_malformed(self):
        with pytest.raises(MalformedPayload):
            adapt(NextStepPayload, ["text"])

    def test_missing_core_field_is_malformed(self):
        with pytest.raises(MalformedPayload):
            adapt(NextStepPayload, {"actions": ["Go"]})

    def test_empty_payload_is_malformed(self):
        with pytest.raises(MalformedPayload):
            adapt(VictoryPayload, {})

    def test_bad_optional_field_dropped(self):
        payload = adapt(NextStepPayload, {"text": "Hm.", "didHpChange": "lots", "vendor": 5, "didXpChange": 10})
        assert payload.hp_change == 0
        assert payload.vendor is None
        assert payload.xp_change == 10

    def test_bad_list_entry_dropped_alone(self):
        payload = adapt(NextStepPayload, {
            "text": "You loot the chest.",
            "equipmentUpdates": [
                {"slot": "gear", "action": "add", "item": {"name": "Rope", "value": 2}},
                {"slot": "ring", "action": "add", "item": {"name": "Band"}},
            ],
            "companionUpdates": [{"name": "Brom", "relationshipChange": 3}, {"relationshipChange": 9}],
            "enemies": [{"name": "Rat"}, {"hp": 3}],
        })
        assert [u.item.name for u in payload.equipment_updates] == ["Rope"]
        assert [(c.name, c.relationship_change) for c in payload.companion_updates] == [("Brom", 3)]
        assert [e.name for e in payload.enemies] == ["Rat"]

    def test_only_bad_entries_leaves_empty_list(self):
        payload = adapt(NextStepPayload, {"text": "Hm.", "equipmentUpdates": [{"slot": "hat"}]})
        assert payload.equipment_updates == []

    def test_bad_loot_item_dropped_alone(self):
        payload = adapt(VictoryPayload, {"text": "Won.", "loot": {"gold": 4, "items": [{"name": "Fang"}, {"value": 3}]}})
        assert payload.loot.gold == 4
        assert [i.name for i in payload.loot.items] == ["Fang"]

    def test_reputation_keeps_integers_only(self):
        payload = adapt(NextStepPayload, {"text": "Hm.", "reputationChange": {"Guild": 2, "Crown": "up"}})
        assert payload.reputation_change == {"Guild": 2}

    def test_alias_variants(self):
        payload = adapt(NextStepPayload, {"text": "Hm.", "initiateCombat": True, "hp_change": -3})
        assert payload.start_combat is True
        assert payload.hp_change == -3

    def test_enemy_hp_at_least_one(self):
        assert EnemySeed.model_validate({"name": "Shade", "hp": -4}).hp == 1

    def test_character_gen(self, character_gen_response):
        payload = adapt(CharacterGenPayload, character_gen_response)
        assert [s.name for s in payload.skill_pools["Magic"]] == ["Fire Bolt"]
        assert payload.skill_pools["Utility"][0].description == "Open locks."
        assert payload.companions[0].skills == {"Smithing": 3}
        assert payload.starting_skill_points == 5

    def test_character_gen_fills_missing_pools(self, character_gen_response):
        raw = {**character_gen_response, "skillPools": {"Combat": ["Brawling"]}}
        payload = adapt(CharacterGenPayload, raw)
        assert set(payload.skill_pools) == {"Combat", "Magic", "Utility"}
        assert payload.skill_pools["Magic"] == []

    def test_combat_turn_defaults(self):
        payload = adapt(CombatTurnPayload, {"text": "Clash."})
        assert payload.narration == "Clash."
        assert payload.attack.target_id is None
        assert payload.player_defeated is False

    def test_sync_payloads(self):
        map_sync = adapt(MapSyncPayload, {"newLocations": ["Mill"], "visited": "Mill"})
        assert map_sync.new_locations[0].name == "Mill"
        alignment = adapt(AlignmentSyncPayload, {"alignmentChange": {"order": -4, "morality": 2}})
        assert (alignment.alignment_change.order, alignment.alignment_change.morality) == (-4, 2)


class TestRequests:
    """Tests for the request context builders."""

    def test_every_kind_has_a_schema(self):
        for kind in CallKind:
            assert response_schema(kind)["type"] == "object"

    def test_next_step_schema_requires_text(self):
        schema = response_schema(CallKind.NEXT_STEP)
        assert "text" in schema["properties"]
        assert "text" in schema["required"]

    def test_character_gen_context(self):
        request = character_gen_request({"name": "Arin", "race": "Elf", "character_class": "Ranger"})
        assert request.kind == CallKind.CHARACTER_GEN
        assert request.context["race"] == "Elf"
        assert request.context["class"] == "Ranger"
        assert "Arin" in request.prompt

    def test_next_step_carries_modifiers(self, playing_state):
        request = next_step_request(playing_state, "Pick the lock")
        assert request.context["skillCheckModifiers"] == {"Swordplay": 4, "Lockpicking": 4}
        assert request.context["playerAction"] == "Pick the lock"
        assert request.context["character"]["equipment"]["weapon"] == {"name": "Rusty Dagger", "damage": 5}
        assert request.schema

    def test_history_window(self, playing_state):
        log = [StorySegment(text=f"segment {i}") for i in range(HISTORY_WINDOW + 10)]
        request = next_step_request(playing_state._copy_with(story_log=log), "Go")
        assert len(request.context["history"]) == HISTORY_WINDOW
        assert request.context["history"][-1] == f"segment {HISTORY_WINDOW + 9}"

    def test_combat_context(self, combat_state):
        request = combat_turn_request(combat_state, "Strike")
        assert request.context["modifiers"]["dodgeChance"] == 12.0
        assert [e["id"] for e in request.context["enemies"]] == ["Goblin-0", "Wolf-1"]

    def test_victory_context(self, combat_state):
        request = victory_request(combat_state)
        assert request.kind == CallKind.VICTORY
        assert request.context["defeated"] == ["Goblin", "Wolf"]

    def test_summary_weighting(self, playing_state):
        request = summary_request(playing_state)
        assert "40%" in request.prompt
        assert "60%" in request.prompt
        assert request.context["recentEvents"] == ["You wake at the crossroads."]

    def test_sync_and_gamble_kinds(self, playing_state):
        assert map_sync_request(playing_state).kind == CallKind.MAP_SYNC
        assert alignment_sync_request(playing_state).kind == CallKind.ALIGNMENT_SYNC
        assert gamble_request(playing_state, 10).context["stake"] == 10


class TestClients:
    """Tests for oracle transports."""

    def test_parse_text_response(self):
        assert HttpOracle._parse_response({"text": '{"text": "hi"}'}) == '{"text": "hi"}'

    def test_parse_candidates_response(self):
        data = {"candidates": [{"content": {"parts": [{"text": '{"te'}, {"text": 'xt": "hi"}'}]}}]}
        assert HttpOracle._parse_response(data) == '{"text": "hi"}'

    def test_parse_unexpected_response(self):
        with pytest.raises(OracleUnavailable):
            HttpOracle._parse_response({"error": "quota"})

    def test_request_body(self, playing_state):
        oracle = HttpOracle("http://localhost/geminiProxy", model="test-model")
        request = next_step_request(playing_state, "Go")
        body = oracle._build_body(request)
        assert body["model"] == "test-model"
        assert body["contents"] == request.prompt
        assert body["config"]["responseSchema"] == request.schema

    def test_scripted_replays_in_order(self, playing_state):
        oracle = ScriptedOracle().push(CallKind.GAMBLE, {"won": True}, {"won": False})
        request = gamble_request(playing_state, 5)

        first = asyncio.run(oracle(request))
        second = asyncio.run(oracle(request))

        assert (first, second) == ({"won": True}, {"won": False})
        assert len(oracle.requests) == 2
        assert oracle.pending(CallKind.GAMBLE) == 0

    def test_scripted_empty_queue(self, playing_state):
        with pytest.raises(OracleUnavailable):
            asyncio.run(ScriptedOracle()(summary_request(playing_state)))

    def test_scripted_raises_queued_errors(self, playing_state):
        oracle = ScriptedOracle().push(CallKind.SUMMARY, MalformedPayload("garbled"))
        with pytest.raises(MalformedPayload):
            asyncio.run(oracle(summary_request(playing_state)))
