"""
Storage - Save slots for games and shared sessions.

The engine never depends on a storage technology, only on the SaveStore
protocol: load / save / delete / list.
"""

from .store import (
    DebouncedSaver,
    FileStore,
    MemoryStore,
    SaveStore,
    SaveSummary,
    compact_for_save,
)

__all__ = [
    "DebouncedSaver",
    "FileStore",
    "MemoryStore",
    "SaveStore",
    "SaveSummary",
    "compact_for_save",
]
