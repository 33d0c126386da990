"""
Roommate Match — Profile store adapter.

Thin wrapper over the ``users`` collection.  Profiles are owned by the
profile-creation flow; the matching core only reads them, except for the
merge-save used by the profile endpoint, which stamps ``createdAt`` on the
first write and ``updatedAt`` on every write.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

import structlog

from app.store.base import DocumentStore, ID_FIELD, Predicate
from app.utils.keys import USERS_COLLECTION

logger = structlog.get_logger("roommate.profile_service")

# Upper bound on ids per ``in`` query.
_MAX_IDS_PER_QUERY = 10


class ProfileService:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def get_profile(self, user_id: str) -> dict | None:
        """Return the profile with its ``id`` injected, or ``None``."""
        if not user_id:
            return None
        data = await self.store.get(USERS_COLLECTION, user_id)
        if data is None:
            logger.debug("profile_not_found", user_id=user_id)
            return None
        return {"id": user_id, **data}

    async def set_profile(self, user_id: str, partial: dict, merge: bool = True) -> None:
        if not user_id:
            raise ValueError("User ID is required to set profile.")

        now = datetime.now(timezone.utc).isoformat()
        data = dict(partial)
        data.pop("id", None)

        if "createdAt" not in data:
            existing = await self.store.get(USERS_COLLECTION, user_id)
            if existing is None:
                data["createdAt"] = now
        data["updatedAt"] = now

        await self.store.set(USERS_COLLECTION, user_id, data, merge=merge)
        logger.info("profile_saved", user_id=user_id, merge=merge, keys=sorted(partial))

    async def list_complete_profiles(self, exclude_user_id: str | None = None) -> list[dict]:
        predicates = [Predicate("isProfileComplete", "==", True)]
        if exclude_user_id:
            predicates.append(Predicate(ID_FIELD, "!=", exclude_user_id))

        documents = await self.store.query(USERS_COLLECTION, predicates)
        logger.debug("complete_profiles_listed", count=len(documents))
        return [d.to_dict() for d in documents]

    async def get_profiles(self, user_ids: Iterable[str]) -> list[dict]:
        """Bulk-load profiles; ids without a profile are skipped."""
        ids = [uid for uid in dict.fromkeys(user_ids) if uid]
        profiles: list[dict] = []
        for start in range(0, len(ids), _MAX_IDS_PER_QUERY):
            chunk = ids[start:start + _MAX_IDS_PER_QUERY]
            documents = await self.store.query(
                USERS_COLLECTION, [Predicate(ID_FIELD, "in", chunk)]
            )
            profiles.extend(d.to_dict() for d in documents)

        position = {uid: i for i, uid in enumerate(ids)}
        profiles.sort(key=lambda p: position[p["id"]])
        logger.debug("profiles_loaded", requested=len(ids), found=len(profiles))
        return profiles

    @staticmethod
    def is_complete(profile: dict | None) -> bool:
        return bool(profile and profile.get("isProfileComplete"))
