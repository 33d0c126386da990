"""
Roommate Match — SQLAlchemy-backed document store.

All documents live in the single ``documents`` table keyed by
``(collection, doc_id)`` with a JSON payload.  Each ``set``/``delete`` and
each ``batch_write`` runs in one transaction, which gives the batch its
both-or-neither semantics.  Predicates and ordering are evaluated in
Python after the collection has been loaded.

After a transaction commits, listeners in this process are notified via
the :class:`ChangeFeed`; when a :class:`RedisChangeRelay` is attached the
change is also published for other workers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

import structlog
from sqlalchemy import delete as sa_delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.document import Document
from app.store.base import (
    DocumentStore,
    Predicate,
    StoredDocument,
    WriteOp,
    deep_merge,
    filter_and_sort,
)
from app.store.changes import ChangeFeed
from app.utils.errors import MissingDocumentError, PersistenceFailure

if TYPE_CHECKING:
    from app.store.relay import RedisChangeRelay

logger = structlog.get_logger("roommate.store.sql")


class SqlDocumentStore(DocumentStore):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed | None = None,
        relay: "RedisChangeRelay | None" = None,
    ) -> None:
        super().__init__(feed)
        self._session_factory = session_factory
        self.relay = relay

    # ── Reads ────────────────────────────────────────────────────────

    async def get(self, collection: str, doc_id: str) -> dict | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(Document, (collection, doc_id))
                return dict(row.data) if row is not None else None
        except SQLAlchemyError as exc:
            logger.error("store_get_failed", collection=collection, doc_id=doc_id, error=str(exc))
            raise PersistenceFailure("get", str(exc)) from exc

    async def query(
        self,
        collection: str,
        predicates: Sequence[Predicate] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[StoredDocument]:
        stmt = select(Document).where(Document.collection == collection)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
                documents = [StoredDocument(id=r.doc_id, data=dict(r.data)) for r in rows]
        except SQLAlchemyError as exc:
            logger.error("store_query_failed", collection=collection, error=str(exc))
            raise PersistenceFailure("query", str(exc)) from exc

        return filter_and_sort(documents, predicates, order_by, descending, limit)

    # ── Writes ───────────────────────────────────────────────────────

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict,
        merge: bool = False,
    ) -> None:
        await self._run([WriteOp.set(collection, doc_id, data, merge=merge)], "set")
        await self._notify(collection, doc_id)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._run([WriteOp.delete(collection, doc_id)], "delete")
        await self._notify(collection, doc_id)

    async def _apply_batch(self, ops: Sequence[WriteOp]) -> None:
        await self._run(ops, "batch_write")

    async def _run(self, ops: Sequence[WriteOp], operation: str) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    for op in ops:
                        await self._apply_op(session, op)
        except MissingDocumentError as exc:
            logger.info(
                "store_update_target_missing",
                operation=operation,
                collection=exc.collection,
                doc_id=exc.doc_id,
            )
            raise
        except SQLAlchemyError as exc:
            logger.error("store_write_failed", operation=operation, op_count=len(ops), error=str(exc))
            raise PersistenceFailure(operation, str(exc)) from exc

    @staticmethod
    async def _apply_op(session: AsyncSession, op: WriteOp) -> None:
        if op.kind == "delete":
            await session.execute(
                sa_delete(Document).where(
                    Document.collection == op.collection,
                    Document.doc_id == op.doc_id,
                )
            )
            return

        row = await session.get(Document, (op.collection, op.doc_id))
        payload = op.data or {}
        if row is None and op.kind == "update":
            raise MissingDocumentError(op.collection, op.doc_id)
        if row is None:
            session.add(Document(collection=op.collection, doc_id=op.doc_id, data=dict(payload)))
            await session.flush()
        elif op.merge:
            # Assign a fresh dict so the JSON column is flagged dirty.
            row.data = deep_merge(row.data, payload)
        else:
            row.data = dict(payload)

    # ── Notifications ────────────────────────────────────────────────

    async def _notify(self, collection: str, doc_id: str) -> None:
        await super()._notify(collection, doc_id)
        if self.relay is not None:
            await self.relay.publish(collection, doc_id)
