"""
Roommate Match — Mutual-like detection and symmetric match records.

A match between A and B is stored twice, once per owner:

  matches/A/userMatches/B   {ownerId: A, otherUserId: B, matchedAt}
  matches/B/userMatches/A   {ownerId: B, otherUserId: A, matchedAt}

The pair is consistent only while both documents exist.  Creation writes
the missing side(s) in one atomic batch.  Deletion removes the caller's
side first and the reciprocal side best-effort; any one-sided record left
behind by a partial failure is removed by ``validate_and_repair_matches``
the next time its owner runs it.

Per-pair lifecycle from one user's view:

  Unswiped -> Liked(pending) -> Matched | NoMatch
  Matched  -> Unmatched  (a new like restarts at Liked(pending))
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from app.schemas.match import MatchOutcome, MatchRecord
from app.services.conversation_service import purge_conversation
from app.services.profile_service import ProfileService
from app.services.swipe_service import SwipeLedger
from app.store.base import DocumentStore, WriteOp
from app.utils.errors import PersistenceFailure
from app.utils.keys import require_distinct, user_matches_path

logger = structlog.get_logger("roommate.matching_service")


class MatchManager:
    """Detects mutual likes and owns the two-sided match records.

    Dependencies are injected at construction so that the service can be
    tested against an in-memory store and wired by FastAPI's dependency
    graph.
    """

    def __init__(
        self,
        store: DocumentStore,
        swipes: SwipeLedger,
        profiles: ProfileService,
    ) -> None:
        self.store = store
        self.swipes = swipes
        self.profiles = profiles

    # ── Public API ────────────────────────────────────────────────────────

    async def process_like_and_check_match(self, user_a: str, user_b: str) -> MatchOutcome:
        """Check whether ``user_b`` already likes ``user_a`` and, if so,
        make sure both match records exist.

        Must only be called after ``record_swipe(user_a, user_b, True)``
        has succeeded.

        Returns
        -------
        MatchOutcome
            ``no_match`` when the like is not reciprocated;
            ``matched`` with B's profile when the pair is (now) matched;
            ``match_creation_failed`` when the batch write failed.  The
            like itself stays recorded, so the match is found again on the
            next relevant swipe.
        """
        require_distinct(user_a, user_b)
        log = logger.bind(user_a=user_a, user_b=user_b)

        if not await self.swipes.has_liked(user_b, user_a):
            log.info("match_check_no_reciprocal_like")
            return MatchOutcome(status="no_match", other_user_id=user_b)

        log.info("mutual_like_detected")

        try:
            await self.create_match_pair(user_a, user_b)
        except PersistenceFailure as exc:
            log.error("match_creation_failed", error=str(exc))
            return MatchOutcome(
                status="match_creation_failed",
                other_user_id=user_b,
                detail=str(exc),
            )

        other_profile = None
        try:
            other_profile = await self.profiles.get_profile(user_b)
        except PersistenceFailure as exc:
            log.warning("matched_profile_fetch_failed", error=str(exc))

        return MatchOutcome(
            status="matched",
            other_user_id=user_b,
            other_profile=other_profile,
        )

    async def create_match_pair(self, user_a: str, user_b: str) -> int:
        """Write whichever directional records are missing.

        Idempotent: a pair that already exists on both sides issues no
        write.  Returns the number of records written (0, 1 or 2).
        """
        require_distinct(user_a, user_b)
        log = logger.bind(user_a=user_a, user_b=user_b)

        a_has = await self._has_record(user_a, user_b)
        b_has = await self._has_record(user_b, user_a)
        if a_has and b_has:
            log.debug("match_pair_already_exists")
            return 0

        matched_at = datetime.now(timezone.utc)
        ops: list[WriteOp] = []
        if not a_has:
            ops.append(self._record_op(user_a, user_b, matched_at))
        if not b_has:
            ops.append(self._record_op(user_b, user_a, matched_at))

        await self.store.batch_write(ops)

        log.info(
            "match_pair_created",
            records_written=len(ops),
            atomic=self.store.atomic_batches,
        )
        return len(ops)

    async def are_matched(self, user_a: str, user_b: str) -> bool:
        """True iff both directional records exist."""
        if not user_a or not user_b or user_a == user_b:
            return False
        return (
            await self._has_record(user_a, user_b)
            and await self._has_record(user_b, user_a)
        )

    async def list_matches(self, user_id: str, most_recent_first: bool = False) -> list[MatchRecord]:
        """Records owned by ``user_id``; the reverse side is not checked."""
        if most_recent_first:
            documents = await self.store.query(
                user_matches_path(user_id), order_by="matchedAt", descending=True
            )
        else:
            documents = await self.store.query(user_matches_path(user_id))

        records = []
        for doc in documents:
            data = dict(doc.data)
            data.setdefault("ownerId", user_id)
            data.setdefault("otherUserId", doc.id)
            records.append(MatchRecord.from_document(data))
        return records

    async def list_match_ids(self, user_id: str, most_recent_first: bool = False) -> list[str]:
        records = await self.list_matches(user_id, most_recent_first=most_recent_first)
        logger.debug("match_ids_listed", user_id=user_id, count=len(records))
        return [r.other_user_id for r in records]

    async def validate_and_repair_matches(self, user_id: str) -> int:
        """Delete every record owned by ``user_id`` whose reciprocal is gone.

        Only the caller's own side is touched.  Returns how many orphaned
        records were removed.
        """
        log = logger.bind(user_id=user_id)
        repaired = 0

        for other_id in await self.list_match_ids(user_id):
            if await self._has_record(other_id, user_id):
                continue
            log.warning("inconsistent_match_state", other_user_id=other_id)
            await self.store.delete(user_matches_path(user_id), other_id)
            repaired += 1

        if repaired:
            log.info("matches_repaired", repaired=repaired)
        return repaired

    async def delete_match(self, user_a: str, user_b: str) -> None:
        """Unmatch: remove both records, then the pair's conversation.

        The caller's own record must be removed (a failure propagates).
        The reciprocal record and the conversation cascade are
        best-effort and only logged on failure.
        """
        require_distinct(user_a, user_b)
        log = logger.bind(user_a=user_a, user_b=user_b)

        await self.store.delete(user_matches_path(user_a), user_b)
        log.info("match_side_deleted", owner=user_a)

        try:
            await self.store.delete(user_matches_path(user_b), user_a)
            log.info("match_side_deleted", owner=user_b)
        except PersistenceFailure as exc:
            log.warning("reciprocal_match_delete_failed", owner=user_b, error=str(exc))

        try:
            removed = await purge_conversation(self.store, user_a, user_b)
            log.info("conversation_purged", messages_removed=removed)
        except PersistenceFailure as exc:
            log.warning("conversation_purge_failed", error=str(exc))

    async def get_matched_profiles(self, user_id: str, repair: bool = True) -> tuple[list[dict], int]:
        """Profiles of everyone ``user_id`` is matched with.

        Runs the repair pass first when ``repair`` is set.  Returns the
        profiles and the repaired count.
        """
        repaired = await self.validate_and_repair_matches(user_id) if repair else 0
        ids = await self.list_match_ids(user_id, most_recent_first=True)
        profiles = await self.profiles.get_profiles(ids)
        return profiles, repaired

    # ── Private helpers ──────────────────────────────────────────────────

    async def _has_record(self, owner_id: str, other_id: str) -> bool:
        return await self.store.get(user_matches_path(owner_id), other_id) is not None

    @staticmethod
    def _record_op(owner_id: str, other_id: str, matched_at: datetime) -> WriteOp:
        record = MatchRecord(owner_id=owner_id, other_user_id=other_id, matched_at=matched_at)
        return WriteOp.set(user_matches_path(owner_id), other_id, record.to_document())
