"""
Roommate Match — document store contract.

Every service in the matching core talks to persistence through this
interface only:

  get(collection, doc_id)                  -> dict | None
  set(collection, doc_id, data, merge)     -> None   (all-or-nothing)
  delete(collection, doc_id)               -> None
  query(collection, predicates, ...)       -> list[StoredDocument]
  batch_write(ops)                         -> None   (atomic if supported)
  subscribe(collection, doc_id, on_change, on_error) -> unsubscribe()

Collections are slash-joined paths (``matches/<uid>/userMatches``) so that
sub-collections are just longer collection names.

A batch may carry ``WriteOp.update`` ops: a merge into a document that
must already exist.  If it does not, the whole batch is rejected with
:class:`MissingDocumentError` and nothing is written.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Sequence

import structlog

from app.store.changes import ChangeFeed, maybe_await
from app.utils.errors import SessionEnded

logger = structlog.get_logger("roommate.store")

ChangeCallback = Callable[[Any], "Awaitable[None] | None"]
ErrorCallback = Callable[[Exception], "Awaitable[None] | None"]
Unsubscribe = Callable[[], None]

ID_FIELD = "__id__"

_MISSING = object()


def resolve_field(doc_id: str, data: dict, path: str) -> Any:
    """Look up a dotted field path; ``__id__`` resolves to the document id."""
    if path == ID_FIELD:
        return doc_id
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def deep_merge(base: dict, updates: dict) -> dict:
    """Return ``base`` with ``updates`` merged in; nested maps merge key-wise."""
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


@dataclass(frozen=True)
class Predicate:
    field: str
    op: str
    value: Any

    _OPS = ("==", "!=", "in", "array-contains")

    def __post_init__(self) -> None:
        if self.op not in self._OPS:
            raise ValueError(f"Unsupported predicate operator {self.op!r}")

    def matches(self, doc_id: str, data: dict) -> bool:
        actual = resolve_field(doc_id, data, self.field)
        if actual is _MISSING:
            return False
        if self.op == "==":
            return actual == self.value
        if self.op == "!=":
            return actual != self.value
        if self.op == "in":
            return actual in self.value
        return isinstance(actual, list) and self.value in actual


@dataclass(frozen=True)
class WriteOp:
    kind: str  # set / update / delete
    collection: str
    doc_id: str
    data: dict | None = None
    merge: bool = False

    @classmethod
    def set(cls, collection: str, doc_id: str, data: dict, merge: bool = False) -> "WriteOp":
        return cls("set", collection, doc_id, data, merge)

    @classmethod
    def update(cls, collection: str, doc_id: str, data: dict) -> "WriteOp":
        return cls("update", collection, doc_id, data, merge=True)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> "WriteOp":
        return cls("delete", collection, doc_id)


@dataclass
class StoredDocument:
    id: str
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"id": self.id, **self.data}


def filter_and_sort(
    documents: Iterable[StoredDocument],
    predicates: Sequence[Predicate] = (),
    order_by: str | None = None,
    descending: bool = False,
    limit: int | None = None,
) -> list[StoredDocument]:
    """Apply query predicates, ordering and limit to loaded documents.

    Documents without the ``order_by`` field (or with ``None``) sort lowest.
    """
    selected = [
        d for d in documents
        if all(p.matches(d.id, d.data) for p in predicates)
    ]
    if order_by is not None:
        def _key(doc: StoredDocument) -> tuple:
            value = resolve_field(doc.id, doc.data, order_by)
            if value is _MISSING or value is None:
                return (0, "")
            return (1, value)

        selected.sort(key=_key, reverse=descending)
    if limit is not None:
        selected = selected[:limit]
    return selected


class DocumentStore(ABC):
    """Abstract keyed document store with change subscriptions."""

    # Stores without a transactional batch set this to False; batch_write
    # then applies the ops one by one and a failure leaves earlier ops
    # committed.
    atomic_batches: bool = True

    def __init__(self, feed: ChangeFeed | None = None) -> None:
        self.feed = feed or ChangeFeed()

    # ── Primitive operations ─────────────────────────────────────────

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> dict | None:
        ...

    @abstractmethod
    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict,
        merge: bool = False,
    ) -> None:
        ...

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[StoredDocument]:
        ...

    @abstractmethod
    async def _apply_batch(self, ops: Sequence[WriteOp]) -> None:
        """Apply all ops as one atomic unit (no change notifications)."""

    # ── Batches ──────────────────────────────────────────────────────

    async def batch_write(self, ops: Sequence[WriteOp]) -> None:
        if not ops:
            return
        if self.atomic_batches:
            await self._apply_batch(ops)
            await self._notify_many((op.collection, op.doc_id) for op in ops)
            return

        for op in ops:
            if op.kind == "set":
                await self.set(op.collection, op.doc_id, op.data or {}, merge=op.merge)
            elif op.kind == "update":
                await self._apply_batch([op])
                await self._notify(op.collection, op.doc_id)
            else:
                await self.delete(op.collection, op.doc_id)

    async def _notify(self, collection: str, doc_id: str) -> None:
        await self.feed.publish(collection, doc_id)

    async def _notify_many(self, changes: Iterable[tuple[str, str]]) -> None:
        seen: set[tuple[str, str]] = set()
        for change in changes:
            if change in seen:
                continue
            seen.add(change)
            await self._notify(*change)

    # ── Subscriptions ────────────────────────────────────────────────

    async def subscribe(
        self,
        collection: str,
        doc_id: str | None,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
        on_session_end: Callable[[], Any] | None = None,
    ) -> Unsubscribe:
        """Watch a document (``doc_id`` given) or a whole collection.

        ``on_change`` receives ``dict | None`` for a document and
        ``list[StoredDocument]`` for a collection.  The current snapshot is
        delivered before this coroutine returns.  Once the returned
        callable has been invoked no further callbacks fire.  A
        :class:`SessionEnded` raised while reading cancels the watch
        without calling ``on_error``; ``on_session_end`` is called instead
        so an owner holding several watches can drop the others.
        """
        registration = None

        async def _deliver() -> None:
            try:
                if doc_id is None:
                    snapshot: Any = await self.query(collection)
                else:
                    snapshot = await self.get(collection, doc_id)
            except SessionEnded:
                logger.info("subscription_session_ended", collection=collection, doc_id=doc_id)
                registration.cancel()
                if on_session_end is not None:
                    await maybe_await(on_session_end())
                return
            except Exception as exc:
                if registration.active:
                    await maybe_await(on_error(exc))
                return
            if registration.active:
                await maybe_await(on_change(snapshot))

        registration = self.feed.add(collection, doc_id, _deliver)
        await _deliver()
        return registration.cancel
