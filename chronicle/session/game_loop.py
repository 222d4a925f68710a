"""
Game Loop - One entry point per mode for a single adventure.

Each entry point:
1. Checks the current mode accepts the action
2. Awaits whatever the oracle and illustrator have to say
3. Computes the complete next state (reducer / combat resolver / rules)
4. Commits it in one assignment, or leaves the state untouched

Only one action may be in flight per game; a second submission while the
first is awaiting the oracle is rejected with ACTION_IN_FLIGHT.

Side effects after a commit:
- A story summary refresh runs in the background every 10 segments
- The save is scheduled on the debounced saver, if one is attached
"""

from __future__ import annotations
from dataclasses import replace
from typing import Any, Awaitable, Callable
import asyncio
import logging
import random

from ..engine_core.action import Action, ActionResult, ActionType, TransactionKind
from ..engine_core.combat import CombatResolver, CombatStatus
from ..engine_core.modes import Trigger, require_accepts, transition
from ..engine_core.progression import (
    allocate_level_up,
    buy_item,
    finalize_character as materialize_character,
    liquidate_item,
    opening_segment,
    sell_item,
    settle_wager,
)
from ..engine_core.reducer import NarrativeReducer
from ..engine_core.rules import skill_check_modifier
from ..engine_core.state import (
    Alignment,
    Companion,
    CreationDraft,
    GameMode,
    GameState,
    SegmentKind,
    Skill,
    SkillCheck,
    StoryGuidance,
    StorySegment,
    SUMMARY_EVERY,
    TransactionState,
    Vendor,
)
from ..errors import ActionInFlight, ChronicleError, RuleViolation
from ..oracle.client import Illustrator, NullIllustrator, Oracle
from ..oracle.prompts import (
    OracleRequest,
    PAYLOAD_MODELS,
    character_gen_request,
    combat_turn_request,
    gamble_request,
    illustration_prompt,
    next_step_request,
    portrait_prompt,
    summary_request,
    victory_request,
)
from ..oracle.schemas import CharacterGenPayload, adapt
from ..storage.store import DebouncedSaver

logger = logging.getLogger(__name__)

AFTER_LOOT_ACTIONS = ["Continue onward", "Search the area", "Rest for a moment"]

# Actions that carry player-written text
TEXT_ACTIONS = frozenset({ActionType.STORY, ActionType.COMBAT})

Step = Callable[[GameState], Awaitable[tuple[GameState, list[str]]]]


def summary_crossed(before: GameState, after: GameState) -> bool:
    """True when the segment count passed a multiple of the summary cadence."""
    return after.segments_written // SUMMARY_EVERY > before.segments_written // SUMMARY_EVERY


class GameLoop:
    """
    Drives one adventure.

    Usage:
        loop = GameLoop(oracle=HttpOracle(url))
        await loop.new_game()
        await loop.create_character({"name": "Arin", "gender": "female", ...})
        await loop.finalize_character({"Swordplay": 2, "Lockpicking": 1})

        result = await loop.submit_action("Open the door")
        if not result.success:
            show_error(result.error_code, result.error)

    The loop owns .state; callers only ever read it.
    """

    def __init__(
        self,
        oracle: Oracle,
        illustrator: Illustrator | None = None,
        state: GameState | None = None,
        rng: random.Random | None = None,
        saver: DebouncedSaver | None = None,
        save_id: str | None = None,
        owner_id: str | None = None,
    ):
        self.oracle = oracle
        self.illustrator = illustrator or NullIllustrator()
        self.state = state or GameState()
        self.reducer = NarrativeReducer()
        self.combat = CombatResolver(rng or random.Random())
        self.saver = saver
        self.save_id = save_id
        self.owner_id = owner_id

        self._busy = False
        self._generation = 0
        self._late_summary: str | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        return self._busy

    def precheck(self, action: Action) -> None:
        """
        Raise if action would be refused before the oracle is consulted.

        Shared sessions call this before claiming a turn so that a refused
        action leaves the rotation alone.
        """
        if self._busy:
            raise ActionInFlight("Another action is still being resolved")
        require_accepts(self.state, action.action_type)
        if action.action_type in TEXT_ACTIONS and not (action.payload.text or "").strip():
            raise RuleViolation("An action needs some text")

    # =========================================================================
    # Plumbing
    # =========================================================================

    async def _ask(self, request: OracleRequest) -> Any:
        raw = await self.oracle(request)
        logger.debug("oracle answered %s", request.kind.value)
        return adapt(PAYLOAD_MODELS[request.kind], raw)

    async def _illustrate(self, prompt: str) -> str | None:
        try:
            return await self.illustrator(prompt)
        except Exception as e:
            logger.warning("illustration failed: %s", e)
            return None

    async def _run(self, action_type: ActionType, step: Step) -> ActionResult:
        """Guard, run a step against the current state, and commit."""
        if self._busy:
            return ActionResult.from_error(ActionInFlight("Another action is still being resolved"))
        try:
            require_accepts(self.state, action_type)
        except ChronicleError as e:
            return ActionResult.from_error(e)

        self._busy = True
        before = self.state
        try:
            new_state, changes = await step(before)
        except ChronicleError as e:
            logger.warning("%s failed: %s (%s)", action_type.value, e.message, e.error_code.value)
            self._busy = False
            if self._late_summary is not None:
                self._commit(before, before, [])
            return ActionResult.from_error(e)
        finally:
            self._busy = False

        return self._commit(before, new_state, changes)

    def _commit(self, before: GameState, after: GameState, changes: list[str]) -> ActionResult:
        if self._late_summary is not None and after.character is not None:
            after = after._copy_with(character=replace(after.character, story_summary=self._late_summary))
        self._late_summary = None

        self.state = after
        if summary_crossed(before, after) and after.character is not None:
            self._schedule_summary(after)
        self._schedule_save()
        return ActionResult.success_with_state(after, changes)

    def _schedule_save(self) -> None:
        if self.saver is not None and self.save_id is not None:
            self.saver.schedule(self.save_id, self.state, self.owner_id)

    def _schedule_summary(self, snapshot: GameState) -> None:
        request = summary_request(snapshot)
        task = asyncio.get_running_loop().create_task(self._refresh_summary(request, self._generation))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh_summary(self, request: OracleRequest, generation: int) -> None:
        try:
            payload = await self._ask(request)
        except ChronicleError as e:
            logger.warning("summary refresh failed: %s", e.message)
            return
        if generation != self._generation or self.state.character is None:
            return
        if self._busy:
            self._late_summary = payload.summary
            return
        character = replace(self.state.character, story_summary=payload.summary)
        self.state = self.state._copy_with(character=character)
        logger.debug("story summary refreshed (%d chars)", len(payload.summary))
        self._schedule_save()

    async def drain(self) -> None:
        """Wait for background work (summary refreshes) to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # =========================================================================
    # Setup
    # =========================================================================

    async def new_game(self) -> ActionResult:
        """Start over from character creation; legal from every mode."""
        async def step(state: GameState):
            return transition(GameState(), Trigger.NEW_GAME), ["New adventure"]

        if self._busy:
            return ActionResult.from_error(ActionInFlight("Another action is still being resolved"))
        self._generation += 1
        self._late_summary = None
        return await self._run(ActionType.NEW_GAME, step)

    async def create_character(self, details: dict[str, Any]) -> ActionResult:
        """Ask the oracle for a character, setting and opening scene."""
        async def step(state: GameState):
            name = str(details.get("name", "")).strip()
            if not name:
                raise RuleViolation("A character needs a name")
            request = character_gen_request({**details, "name": name})
            payload: CharacterGenPayload = await self._ask(request)

            pools = {
                pool: [Skill(name=s.name, description=s.description) for s in skills]
                for pool, skills in payload.skill_pools.items()
            }
            draft = CreationDraft(
                name=payload.character.name or name,
                gender=str(details.get("gender", "")),
                description=payload.character.description,
                story_guidance=StoryGuidance(
                    plot=payload.story_guidance.plot,
                    setting=payload.story_guidance.setting,
                ),
                opening_text=payload.initial_story.text,
                opening_actions=list(payload.initial_story.actions),
                skill_pools=pools,
                starting_skill_points=payload.starting_skill_points,
            )
            companions = [
                Companion(
                    name=seed.name,
                    description=seed.description,
                    personality=seed.personality,
                    skills=dict(seed.skills),
                    alignment=Alignment().shifted(seed.alignment.order, seed.alignment.morality),
                    relationship=0,
                )
                for seed in payload.companions[:2]
            ]
            new_state = transition(state, Trigger.CREATE, draft=draft, skill_pools=pools, companions=companions)
            return new_state, [f"{draft.name} is ready for skill allocation"]

        return await self._run(ActionType.CREATE_CHARACTER, step)

    async def finalize_character(self, skills: dict[str, int]) -> ActionResult:
        """Spend starting points and begin the story."""
        async def step(state: GameState):
            draft = state.draft
            character = materialize_character(draft, skills)
            scene, portrait = await asyncio.gather(
                self._illustrate(f"{draft.story_guidance.setting}. {draft.opening_text[:600]}"),
                self._illustrate(portrait_prompt(draft.description)),
            )
            character = replace(character, portrait=portrait)
            new_state = transition(
                state,
                Trigger.FINALIZE,
                character=character,
                story_guidance=draft.story_guidance,
                story_log=[opening_segment(draft, scene)],
                segments_written=1,
                current_actions=list(draft.opening_actions),
                draft=None,
            )
            return new_state, [f"{character.name} sets out"]

        return await self._run(ActionType.FINALIZE_CHARACTER, step)

    # =========================================================================
    # Story and combat
    # =========================================================================

    async def submit_action(self, text: str) -> ActionResult:
        """A free-form or suggested story action."""
        async def step(state: GameState):
            action_text = text.strip()
            if not action_text:
                raise RuleViolation("An action needs some text")
            payload = await self._ask(next_step_request(state, action_text))

            skill_check = None
            if payload.skill_check is not None:
                seed = payload.skill_check
                skill_check = SkillCheck(
                    skill=seed.skill,
                    modifier=skill_check_modifier(seed.skill, state.character.stats, state.skill_pools),
                    base_chance=seed.base_chance,
                    success=seed.success,
                )

            illustration = await self._illustrate(illustration_prompt(state, payload.text))
            outcome = self.reducer.reduce(state, payload, action_text, illustration, skill_check)
            return outcome.new_state, outcome.changes

        return await self._run(ActionType.STORY, step)

    async def submit_combat_action(self, text: str) -> ActionResult:
        """One round of combat; a won fight is resolved into loot before commit."""
        async def step(state: GameState):
            action_text = text.strip()
            if not action_text:
                raise RuleViolation("An action needs some text")
            payload = await self._ask(combat_turn_request(state, action_text))
            outcome = self.combat.resolve_turn(state, payload)
            if outcome.status != CombatStatus.VICTORY:
                return outcome.new_state, outcome.changes

            victory = await self._ask(victory_request(outcome.new_state))
            won = self.combat.resolve_victory(outcome.new_state, victory)
            return won.new_state, outcome.changes + won.changes

        return await self._run(ActionType.COMBAT, step)

    async def continue_from_loot(self) -> ActionResult:
        async def step(state: GameState):
            return transition(state, Trigger.CONTINUE, current_actions=list(AFTER_LOOT_ACTIONS)), []

        return await self._run(ActionType.CONTINUE, step)

    # =========================================================================
    # Level-up
    # =========================================================================

    async def enter_level_up(self) -> ActionResult:
        async def step(state: GameState):
            return transition(state, Trigger.ENTER_LEVEL_UP), []

        return await self._run(ActionType.ENTER_LEVEL_UP, step)

    async def confirm_level_up(self, skills: dict[str, int], stats: dict[str, int] | None = None) -> ActionResult:
        """Apply a full skill map (and optional stat raises) from unspent points."""
        async def step(state: GameState):
            character = allocate_level_up(state, skills, stats)
            spent = state.character.skill_points - character.skill_points
            return transition(state, Trigger.CONFIRM_LEVEL_UP, character=character), [f"Spent {spent} skill point(s)"]

        return await self._run(ActionType.CONFIRM_LEVEL_UP, step)

    async def cancel_level_up(self) -> ActionResult:
        async def step(state: GameState):
            return transition(state, Trigger.CANCEL_LEVEL_UP), []

        return await self._run(ActionType.CANCEL_LEVEL_UP, step)

    # =========================================================================
    # Economy
    # =========================================================================

    async def perform_transaction(self, kind: TransactionKind, item_name: str | None = None) -> ActionResult:
        """Buy from or sell to the current vendor, or walk away."""
        async def step(state: GameState):
            if kind == TransactionKind.EXIT:
                return transition(state, Trigger.EXIT_TRANSACTION), [f"Left {state.transaction.vendor.name}"]
            if not item_name:
                raise RuleViolation(f"Say which item to {kind.value}")

            vendor = state.transaction.vendor
            if kind == TransactionKind.BUY:
                item = vendor.find_item(item_name)
                if item is None:
                    raise RuleViolation(f"{vendor.name} does not sell {item_name}")
                character, price = buy_item(state.character, item)
                inventory = list(vendor.inventory)
                inventory.remove(item)
                change = f"Bought {item.name} for {price} gold"
            else:
                item = state.character.equipment.find_gear(item_name)
                character, price = sell_item(state.character, item_name)
                inventory = vendor.inventory + ([item] if item is not None else [])
                change = f"Sold {item_name} for {price} gold"

            transaction = TransactionState(vendor=Vendor(vendor.name, vendor.description, inventory))
            return state._copy_with(character=character, transaction=transaction), [change]

        return await self._run(ActionType.TRANSACTION, step)

    async def liquidate_gear(self, item_name: str) -> ActionResult:
        """Sell a gear item for half its value, no vendor needed."""
        async def step(state: GameState):
            character, price = liquidate_item(state.character, item_name)
            return state._copy_with(character=character), [f"Sold {item_name} for {price} gold"]

        return await self._run(ActionType.LIQUIDATE, step)

    async def enter_gambling(self) -> ActionResult:
        async def step(state: GameState):
            return transition(state, Trigger.ENTER_GAMBLING), []

        return await self._run(ActionType.ENTER_GAMBLING, step)

    async def place_wager(self, stake: int) -> ActionResult:
        """Stake gold on a game of chance; the oracle decides the outcome."""
        async def step(state: GameState):
            # Validate before spending an oracle call
            settle_wager(state.character, stake, won=False)
            payload = await self._ask(gamble_request(state, stake))
            character = settle_wager(state.character, stake, payload.won)
            new_state = state._copy_with(character=character)
            if payload.text:
                new_state = new_state.with_segment(StorySegment(text=payload.text, kind=SegmentKind.INFO))
            verb = "Won" if payload.won else "Lost"
            return new_state, [f"{verb} {stake} gold"]

        return await self._run(ActionType.WAGER, step)

    async def leave_gambling(self) -> ActionResult:
        async def step(state: GameState):
            return transition(state, Trigger.LEAVE_GAMBLING), []

        return await self._run(ActionType.LEAVE_GAMBLING, step)

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def dispatch(self, action: Action) -> ActionResult:
        """Route an Action to its entry point."""
        payload = action.payload
        handlers: dict[ActionType, Callable[[], Awaitable[ActionResult]]] = {
            ActionType.NEW_GAME: self.new_game,
            ActionType.CREATE_CHARACTER: lambda: self.create_character(payload.params),
            ActionType.FINALIZE_CHARACTER: lambda: self.finalize_character(payload.skills or {}),
            ActionType.STORY: lambda: self.submit_action(payload.text or ""),
            ActionType.COMBAT: lambda: self.submit_combat_action(payload.text or ""),
            ActionType.CONTINUE: self.continue_from_loot,
            ActionType.ENTER_LEVEL_UP: self.enter_level_up,
            ActionType.CONFIRM_LEVEL_UP: lambda: self.confirm_level_up(payload.skills or {}, payload.stats),
            ActionType.CANCEL_LEVEL_UP: self.cancel_level_up,
            ActionType.TRANSACTION: lambda: self.perform_transaction(
                payload.transaction or TransactionKind.EXIT, payload.item_name
            ),
            ActionType.LIQUIDATE: lambda: self.liquidate_gear(payload.item_name or ""),
            ActionType.ENTER_GAMBLING: self.enter_gambling,
            ActionType.WAGER: lambda: self.place_wager(payload.stake or 0),
            ActionType.LEAVE_GAMBLING: self.leave_gambling,
        }
        return await handlers[action.action_type]()

    @property
    def mode(self) -> GameMode:
        return self.state.mode
