"""
Roommate Match — Discovery API

Returns the ranked candidate list for the swipe deck.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends

from app.api.deps import get_discovery_ranker, to_http_exception
from app.schemas.compatibility import ScoredProfile, SearchFilters
from app.services.discovery_service import DiscoveryRanker
from app.utils.errors import RoommateError

logger = structlog.get_logger("roommate.api.discovery")

router = APIRouter()


@router.post(
    "/{user_id}",
    response_model=list[ScoredProfile],
    summary="Ranked discovery candidates",
)
async def discover(
    user_id: str,
    filters: Optional[SearchFilters] = None,
    ranker: DiscoveryRanker = Depends(get_discovery_ranker),
) -> list[ScoredProfile]:
    """Candidates for ``user_id`` ranked by compatibility, best first.
    The body is optional; without it every complete profile qualifies."""
    try:
        return await ranker.get_candidates(user_id, filters)
    except RoommateError as exc:
        logger.warning("discovery_failed", user_id=user_id, error=str(exc))
        raise to_http_exception(exc) from exc
