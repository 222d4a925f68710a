"""
Broadcaster - Ordered per-session fan-out of state updates.

Every participant of a shared session subscribes; every accepted action
publishes the partial update (new state, turn index, changes). Delivery is
in publish order per session. A subscriber that raises is logged and
dropped so one broken connection cannot stall the others.
"""

from __future__ import annotations
import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Subscriber = Callable[[dict[str, Any]], Awaitable[None] | None]


class Broadcaster:
    def __init__(self):
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)
        self._locks: dict[str, asyncio.Lock] = {}

    def subscribe(self, session_id: str, on_update: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers[session_id].append(on_update)

        def unsubscribe() -> None:
            subscribers = self._subscribers.get(session_id, [])
            if on_update in subscribers:
                subscribers.remove(on_update)

        return unsubscribe

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, []))

    async def publish(self, session_id: str, update: dict[str, Any]) -> None:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            for subscriber in list(self._subscribers.get(session_id, [])):
                try:
                    result = subscriber(update)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.warning("dropping subscriber of session %s: %s", session_id, e)
                    if subscriber in self._subscribers[session_id]:
                        self._subscribers[session_id].remove(subscriber)

    def close(self, session_id: str) -> None:
        self._subscribers.pop(session_id, None)
        self._locks.pop(session_id, None)
