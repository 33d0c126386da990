"""
Roommate Match — Swipe ledger.

One document per ordered ``(swiper, swiped)`` pair under
``swipes/<swiper>/swipedUsers/<swiped>``.  Every swipe overwrites the
previous judgment; nothing here ever deletes a swipe.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from app.schemas.match import SwipeRecord
from app.store.base import DocumentStore
from app.utils.keys import require_distinct, swipes_path

logger = structlog.get_logger("roommate.swipe_service")


class SwipeLedger:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def record_swipe(self, swiper_id: str, swiped_id: str, liked: bool) -> SwipeRecord:
        """Upsert the swiper's latest judgment about ``swiped_id``.

        Raises ``InvalidUserIdsError`` before any I/O for empty or equal
        ids, and lets ``PersistenceFailure`` propagate so the caller never
        runs a match check on an unrecorded like.
        """
        require_distinct(swiper_id, swiped_id)

        record = SwipeRecord(
            swiper_id=swiper_id,
            swiped_id=swiped_id,
            liked=liked,
            timestamp=datetime.now(timezone.utc),
        )
        await self.store.set(swipes_path(swiper_id), swiped_id, record.to_document())

        logger.info(
            "swipe_recorded",
            swiper_id=swiper_id,
            swiped_id=swiped_id,
            liked=liked,
        )
        return record

    async def get_swipe(self, swiper_id: str, swiped_id: str) -> SwipeRecord | None:
        data = await self.store.get(swipes_path(swiper_id), swiped_id)
        if data is None:
            return None
        # Legacy swipe documents carry only ``liked`` and ``timestamp``.
        data.setdefault("swiperId", swiper_id)
        data.setdefault("swipedId", swiped_id)
        return SwipeRecord.from_document(data)

    async def has_liked(self, swiper_id: str, swiped_id: str) -> bool:
        """True iff the latest judgment from ``swiper_id`` is a like."""
        data = await self.store.get(swipes_path(swiper_id), swiped_id)
        return bool(data and data.get("liked") is True)
