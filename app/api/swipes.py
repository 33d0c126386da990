"""
Roommate Match — Swipes API

Records a swipe and, for likes, runs the mutual-match check in the same
request.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, status

from app.api.deps import get_match_manager, get_swipe_ledger, to_http_exception
from app.schemas.match import SwipeCreate, SwipeResponse
from app.services.matching_service import MatchManager
from app.services.swipe_service import SwipeLedger
from app.utils.errors import RoommateError

logger = structlog.get_logger("roommate.api.swipes")

router = APIRouter()


@router.post(
    "",
    response_model=SwipeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a like or pass",
)
async def create_swipe(
    payload: SwipeCreate,
    swipes: SwipeLedger = Depends(get_swipe_ledger),
    matches: MatchManager = Depends(get_match_manager),
) -> SwipeResponse:
    """Store the swipe first; the match check only runs once the like is
    durably recorded.  A failed match write is reported in the outcome,
    not as an HTTP error, because the like itself was saved."""
    log = logger.bind(swiper_id=payload.swiper_id, swiped_id=payload.swiped_id)

    try:
        await swipes.record_swipe(payload.swiper_id, payload.swiped_id, payload.liked)
        if not payload.liked:
            return SwipeResponse(status="recorded", is_mutual_match=False)
        outcome = await matches.process_like_and_check_match(
            payload.swiper_id, payload.swiped_id
        )
    except RoommateError as exc:
        log.warning("swipe_failed", error=str(exc))
        raise to_http_exception(exc) from exc

    log.info("swipe_processed", status=outcome.status)
    return SwipeResponse(
        status=outcome.status,
        is_mutual_match=outcome.is_match,
        outcome=outcome,
    )
