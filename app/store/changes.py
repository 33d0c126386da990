"""
Roommate Match — in-process change feed.

A callback registry keyed by ``(collection, doc_id)``.  Document listeners
register with a concrete ``doc_id``; collection listeners register with
``None`` and fire for any document in the collection.  Stores publish
after a write has committed, never while holding internal state.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable

import structlog

logger = structlog.get_logger("roommate.store.changes")

Listener = Callable[[], Awaitable[None]]


async def maybe_await(result: Any) -> Any:
    """Await ``result`` when a callback handed back a coroutine."""
    if inspect.isawaitable(result):
        return await result
    return result


class Registration:
    """Handle returned by :meth:`ChangeFeed.add`; ``cancel`` is idempotent."""

    def __init__(self, feed: "ChangeFeed", key: tuple[str, str | None], listener: Listener) -> None:
        self._feed = feed
        self._key = key
        self.listener = listener
        self.active = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        self._feed._remove(self._key, self)


class ChangeFeed:
    def __init__(self) -> None:
        self._listeners: dict[tuple[str, str | None], list[Registration]] = {}

    def add(self, collection: str, doc_id: str | None, listener: Listener) -> Registration:
        key = (collection, doc_id)
        registration = Registration(self, key, listener)
        self._listeners.setdefault(key, []).append(registration)
        return registration

    def _remove(self, key: tuple[str, str | None], registration: Registration) -> None:
        registrations = self._listeners.get(key)
        if not registrations:
            return
        if registration in registrations:
            registrations.remove(registration)
        if not registrations:
            self._listeners.pop(key, None)

    def listener_count(self, collection: str, doc_id: str | None = None) -> int:
        return len(self._listeners.get((collection, doc_id), []))

    async def publish(self, collection: str, doc_id: str) -> None:
        """Notify document and collection listeners of a committed change."""
        targets = list(self._listeners.get((collection, doc_id), []))
        targets += list(self._listeners.get((collection, None), []))

        for registration in targets:
            if not registration.active:
                continue
            try:
                await registration.listener()
            except Exception:
                # A broken listener must not fail the write that triggered it.
                logger.exception(
                    "change_listener_failed",
                    collection=collection,
                    doc_id=doc_id,
                )
