"""
Roommate Match — Profiles API

Merge-saves profile documents and keeps the compatibility cache fresh
for complete profiles.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_profile_service, get_scorer, to_http_exception
from app.schemas.profile import ProfileSaved, ProfileUpsert
from app.services.compatibility_service import CompatibilityScorer
from app.services.profile_service import ProfileService
from app.utils.errors import RoommateError

logger = structlog.get_logger("roommate.api.profiles")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# PUT /{user_id} — Merge-save a profile
# ──────────────────────────────────────────────────────────────────────────────

@router.put(
    "/{user_id}",
    response_model=ProfileSaved,
    summary="Create or update a profile",
)
async def save_profile(
    user_id: str,
    payload: ProfileUpsert,
    profiles: ProfileService = Depends(get_profile_service),
    scorer: CompatibilityScorer = Depends(get_scorer),
) -> ProfileSaved:
    """Merge the supplied sections into the stored profile.

    When the resulting profile is complete, the user's score against
    every other complete profile is recomputed.
    """
    log = logger.bind(user_id=user_id)
    log.info("save_profile_start")

    try:
        await profiles.set_profile(user_id, payload.to_partial())
        saved = await profiles.get_profile(user_id)
        complete = ProfileService.is_complete(saved)
        updated = await scorer.recompute_all_for_user(user_id) if complete else 0
    except RoommateError as exc:
        log.warning("save_profile_failed", error=str(exc))
        raise to_http_exception(exc) from exc

    log.info("save_profile_complete", complete=complete, scores_updated=updated)
    return ProfileSaved(user_id=user_id, is_profile_complete=complete, scores_updated=updated)


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id} — Fetch a profile
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/{user_id}", summary="Get a profile")
async def get_profile(
    user_id: str,
    profiles: ProfileService = Depends(get_profile_service),
) -> dict:
    try:
        profile = await profiles.get_profile(user_id)
    except RoommateError as exc:
        raise to_http_exception(exc) from exc

    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Profile {user_id} not found.",
        )
    return profile
