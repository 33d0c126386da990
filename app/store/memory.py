"""
Roommate Match — in-memory document store.

Used by the test-suite and by local development (``STORE_BACKEND=memory``).
Every operation completes without yielding to the event loop, so each call
(and each batch) is atomic with respect to other coroutines.  Stored and
returned documents are deep copies; callers can never mutate stored state
by accident.
"""

from __future__ import annotations

import copy
from typing import Sequence

from app.store.base import (
    DocumentStore,
    Predicate,
    StoredDocument,
    WriteOp,
    deep_merge,
    filter_and_sort,
)
from app.store.changes import ChangeFeed
from app.utils.errors import MissingDocumentError


class InMemoryDocumentStore(DocumentStore):
    def __init__(self, feed: ChangeFeed | None = None) -> None:
        super().__init__(feed)
        self._collections: dict[str, dict[str, dict]] = {}

    async def get(self, collection: str, doc_id: str) -> dict | None:
        data = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(data) if data is not None else None

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict,
        merge: bool = False,
    ) -> None:
        self._write(WriteOp.set(collection, doc_id, data, merge=merge))
        await self._notify(collection, doc_id)

    async def delete(self, collection: str, doc_id: str) -> None:
        self._write(WriteOp.delete(collection, doc_id))
        await self._notify(collection, doc_id)

    async def query(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[StoredDocument]:
        documents = [
            StoredDocument(id=doc_id, data=copy.deepcopy(data))
            for doc_id, data in self._collections.get(collection, {}).items()
        ]
        return filter_and_sort(documents, predicates, order_by, descending, limit)

    async def _apply_batch(self, ops: Sequence[WriteOp]) -> None:
        self._check_updates(ops)
        for op in ops:
            self._write(op)

    def _check_updates(self, ops: Sequence[WriteOp]) -> None:
        """Reject the batch before any write if an update has no target."""
        exists: dict[tuple[str, str], bool] = {}
        for op in ops:
            key = (op.collection, op.doc_id)
            if key not in exists:
                exists[key] = op.doc_id in self._collections.get(op.collection, {})
            if op.kind == "update" and not exists[key]:
                raise MissingDocumentError(op.collection, op.doc_id)
            exists[key] = op.kind != "delete"

    def _write(self, op: WriteOp) -> None:
        documents = self._collections.setdefault(op.collection, {})
        if op.kind == "delete":
            documents.pop(op.doc_id, None)
            if not documents:
                self._collections.pop(op.collection, None)
            return

        existing = documents.get(op.doc_id)
        if op.merge and existing is not None:
            documents[op.doc_id] = deep_merge(existing, op.data or {})
        else:
            documents[op.doc_id] = copy.deepcopy(op.data or {})

    def document_count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))
