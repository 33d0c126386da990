"""
Roommate Match — Matching API

Endpoints for listing a user's matches, running the consistency repair
pass, and unmatching.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_match_manager, to_http_exception
from app.schemas.match import MatchListResponse, RepairResponse, UnmatchResponse
from app.services.matching_service import MatchManager
from app.utils.errors import RoommateError

logger = structlog.get_logger("roommate.api.matching")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# GET /{user_id} — List matches
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{user_id}",
    response_model=MatchListResponse,
    summary="List a user's matches",
)
async def list_user_matches(
    user_id: str,
    repair: bool = Query(False, description="Remove one-sided records first"),
    include_profiles: bool = Query(False, description="Attach matched users' profiles"),
    matches: MatchManager = Depends(get_match_manager),
) -> MatchListResponse:
    """Return the ids the user is matched with, newest first.  With
    ``include_profiles`` the matched users' profiles come along, as on the
    matches screen."""
    log = logger.bind(user_id=user_id)
    log.info("list_user_matches", repair=repair, include_profiles=include_profiles)

    try:
        if include_profiles:
            profiles, repaired = await matches.get_matched_profiles(user_id, repair=repair)
            match_ids = [p["id"] for p in profiles]
        else:
            repaired = await matches.validate_and_repair_matches(user_id) if repair else 0
            match_ids = await matches.list_match_ids(user_id, most_recent_first=True)
            profiles = None
    except RoommateError as exc:
        raise to_http_exception(exc) from exc

    log.info("list_user_matches_complete", count=len(match_ids), repaired=repaired)
    return MatchListResponse(
        user_id=user_id,
        match_ids=match_ids,
        repaired_count=repaired,
        profiles=profiles,
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST /{user_id}/repair — Remove orphaned records
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{user_id}/repair",
    response_model=RepairResponse,
    summary="Repair one-sided match records",
)
async def repair_matches(
    user_id: str,
    matches: MatchManager = Depends(get_match_manager),
) -> RepairResponse:
    try:
        repaired = await matches.validate_and_repair_matches(user_id)
    except RoommateError as exc:
        raise to_http_exception(exc) from exc
    return RepairResponse(user_id=user_id, repaired_count=repaired)


# ──────────────────────────────────────────────────────────────────────────────
# DELETE /{user_id}/{other_id} — Unmatch
# ──────────────────────────────────────────────────────────────────────────────

@router.delete(
    "/{user_id}/{other_id}",
    response_model=UnmatchResponse,
    summary="Unmatch two users and delete their conversation",
)
async def unmatch(
    user_id: str,
    other_id: str,
    matches: MatchManager = Depends(get_match_manager),
) -> UnmatchResponse:
    try:
        await matches.delete_match(user_id, other_id)
    except RoommateError as exc:
        logger.warning("unmatch_failed", user_id=user_id, other_id=other_id, error=str(exc))
        raise to_http_exception(exc) from exc
    return UnmatchResponse(user_id=user_id, other_user_id=other_id)
