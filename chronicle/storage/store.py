"""
Save Store - Persists game state by save id.

The store:
- Keys saves by id (a single-player game id or a shared session id)
- Records the owner so list(owner) can show a save menu
- Stores compacted state: only the newest illustration survives, and
  the portrait is dropped
- Raises PersistenceError when the medium fails; it never retries

Writes go through DebouncedSaver so a burst of turns costs one write.
"""

from __future__ import annotations
import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Protocol

from ..engine_core.state import GameState
from ..errors import GameNotFound, PersistenceError

logger = logging.getLogger(__name__)

_SAVE_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


@dataclass
class SaveSummary:
    """One row of the save menu."""
    save_id: str
    owner_id: str | None
    character_name: str | None
    mode: str
    story_length: int
    updated_at: float


def compact_for_save(state: GameState) -> GameState:
    """Strip every illustration but the newest, and the portrait."""
    log = [replace(segment, illustration=None) for segment in state.story_log[:-1]]
    log.extend(state.story_log[-1:])
    character = state.character
    if character is not None and character.portrait is not None:
        character = replace(character, portrait=None)
    return state._copy_with(story_log=log, character=character)


def summarize(save_id: str, owner_id: str | None, state: GameState, updated_at: float) -> SaveSummary:
    return SaveSummary(
        save_id=save_id,
        owner_id=owner_id,
        character_name=state.character.name if state.character else None,
        mode=state.mode.value,
        story_length=len(state.story_log),
        updated_at=updated_at,
    )


def _check_id(save_id: str) -> str:
    if not _SAVE_ID.match(save_id):
        raise PersistenceError(f"Invalid save id: {save_id!r}")
    return save_id


class SaveStore(Protocol):
    def load(self, save_id: str) -> GameState: ...

    def save(self, save_id: str, state: GameState, owner_id: str | None = None) -> None: ...

    def delete(self, save_id: str) -> None: ...

    def list(self, owner_id: str | None = None) -> list[SaveSummary]: ...


# =============================================================================
# In-memory store
# =============================================================================

class MemoryStore:
    """Keeps serialized saves in a dict; for tests and throwaway servers."""

    def __init__(self):
        self._saves: dict[str, dict[str, Any]] = {}

    def load(self, save_id: str) -> GameState:
        record = self._saves.get(save_id)
        if record is None:
            raise GameNotFound(f"No save {save_id}")
        return GameState.from_dict(record["state"])

    def save(self, save_id: str, state: GameState, owner_id: str | None = None) -> None:
        self._saves[save_id] = {
            "owner_id": owner_id,
            "updated_at": time.time(),
            "state": compact_for_save(state).to_dict(),
        }

    def delete(self, save_id: str) -> None:
        self._saves.pop(save_id, None)

    def list(self, owner_id: str | None = None) -> list[SaveSummary]:
        summaries = [
            summarize(save_id, record["owner_id"], GameState.from_dict(record["state"]), record["updated_at"])
            for save_id, record in self._saves.items()
            if owner_id is None or record["owner_id"] == owner_id
        ]
        return sorted(summaries, key=lambda s: s.updated_at, reverse=True)


# =============================================================================
# File store
# =============================================================================

class FileStore:
    """
    JSON files on local disk, one per save.

    Usage:
        store = FileStore(data_dir="~/.chronicle/saves")
        store.save(game_id, state, owner_id="alice")
        state = store.load(game_id)
    """

    def __init__(self, data_dir: str | Path | None = None):
        if data_dir is None:
            data_dir = Path.home() / ".chronicle" / "saves"
        self.data_dir = Path(data_dir).expanduser()
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create save directory {self.data_dir}: {e}") from e

    def _path(self, save_id: str) -> Path:
        return self.data_dir / f"{_check_id(save_id)}.json"

    def _read(self, path: Path) -> dict[str, Any]:
        try:
            with open(path) as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Corrupt save {path.stem}: {e}") from e
        except OSError as e:
            raise PersistenceError(f"Cannot read save {path.stem}: {e}") from e

    def load(self, save_id: str) -> GameState:
        path = self._path(save_id)
        if not path.exists():
            raise GameNotFound(f"No save {save_id}")
        record = self._read(path)
        try:
            return GameState.from_dict(record["state"])
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Corrupt save {save_id}: {e}") from e

    def save(self, save_id: str, state: GameState, owner_id: str | None = None) -> None:
        path = self._path(save_id)
        record = {
            "save_id": save_id,
            "owner_id": owner_id,
            "updated_at": time.time(),
            "state": compact_for_save(state).to_dict(),
        }
        tmp = path.with_suffix(".json.tmp")
        try:
            with open(tmp, "w") as f:
                json.dump(record, f, indent=2)
            tmp.replace(path)
        except OSError as e:
            raise PersistenceError(f"Cannot write save {save_id}: {e}") from e
        logger.debug("saved %s (%d segments)", save_id, len(state.story_log))

    def delete(self, save_id: str) -> None:
        try:
            self._path(save_id).unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot delete save {save_id}: {e}") from e

    def list(self, owner_id: str | None = None) -> list[SaveSummary]:
        summaries = []
        for path in self.data_dir.glob("*.json"):
            try:
                record = self._read(path)
                state = GameState.from_dict(record["state"])
            except (PersistenceError, KeyError, TypeError, ValueError) as e:
                logger.warning("skipping unreadable save %s: %s", path.stem, e)
                continue
            if owner_id is not None and record.get("owner_id") != owner_id:
                continue
            summaries.append(summarize(path.stem, record.get("owner_id"), state, record.get("updated_at", 0.0)))
        return sorted(summaries, key=lambda s: s.updated_at, reverse=True)


# =============================================================================
# Debounced writes
# =============================================================================

class DebouncedSaver:
    """
    Coalesces saves per id: the newest state is written once the id has
    been quiet for `delay` seconds.

    A failed background write is logged and kept; the next flush() raises
    it as PersistenceError so the caller can retry.
    """

    def __init__(self, store: SaveStore, delay: float = 1.0):
        self.store = store
        self.delay = delay
        self._pending: dict[str, tuple[GameState, str | None]] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self.last_error: PersistenceError | None = None

    def schedule(self, save_id: str, state: GameState, owner_id: str | None = None) -> None:
        """Queue a save; restarts the quiet period for this id."""
        self._pending[save_id] = (state, owner_id)
        timer = self._timers.get(save_id)
        if timer is not None and not timer.done():
            timer.cancel()
        self._timers[save_id] = asyncio.get_running_loop().create_task(self._write_later(save_id))

    async def _write_later(self, save_id: str) -> None:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            return
        self._write(save_id)

    def _write(self, save_id: str) -> None:
        entry = self._pending.pop(save_id, None)
        self._timers.pop(save_id, None)
        if entry is None:
            return
        state, owner_id = entry
        try:
            self.store.save(save_id, state, owner_id)
        except PersistenceError as e:
            logger.error("debounced save of %s failed: %s", save_id, e.message)
            self.last_error = e

    def discard(self, save_id: str) -> None:
        self._pending.pop(save_id, None)
        timer = self._timers.pop(save_id, None)
        if timer is not None:
            timer.cancel()

    async def flush(self) -> None:
        """Write everything pending now."""
        for save_id in list(self._pending):
            timer = self._timers.get(save_id)
            if timer is not None:
                timer.cancel()
            self._write(save_id)
        error, self.last_error = self.last_error, None
        if error is not None:
            raise error

    @property
    def pending(self) -> list[str]:
        return list(self._pending)
