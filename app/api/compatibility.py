"""
Roommate Match — Compatibility API
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from app.api.deps import get_scorer, to_http_exception
from app.schemas.compatibility import CompatibilityScore
from app.services.compatibility_service import CompatibilityScorer
from app.utils.errors import RoommateError

logger = structlog.get_logger("roommate.api.compatibility")

router = APIRouter()


@router.get(
    "/{user_a}/{user_b}",
    response_model=CompatibilityScore,
    summary="Cached or freshly computed compatibility for a pair",
)
async def get_compatibility(
    user_a: str,
    user_b: str,
    scorer: CompatibilityScorer = Depends(get_scorer),
) -> CompatibilityScore:
    try:
        return await scorer.get_or_compute_score(user_a, user_b)
    except RoommateError as exc:
        logger.info("compatibility_unavailable", user_a=user_a, user_b=user_b, error=str(exc))
        raise to_http_exception(exc) from exc
