"""
Roommate Match — Discovery ranking.

Candidates are every complete profile other than the viewer and the
viewer's current matches, narrowed by the viewer's search filters and
ranked by cached (or freshly computed) compatibility, best first.
"""

from __future__ import annotations

import structlog

from app.config import get_settings
from app.schemas.compatibility import ScoredProfile, SearchFilters
from app.services.compatibility_service import CompatibilityScorer, ROOM_TYPE_WILDCARD
from app.services.matching_service import MatchManager
from app.services.profile_service import ProfileService
from app.utils.errors import ProfileNotFoundError

logger = structlog.get_logger("roommate.discovery_service")

_LIFESTYLE_FLAGS = ("smoking", "pets", "drinking", "partying", "visitors")


def _section(profile: dict, name: str) -> dict:
    value = profile.get(name)
    return value if isinstance(value, dict) else {}


def passes_filters(profile: dict, filters: SearchFilters) -> bool:
    """Return True when ``profile`` satisfies every active filter.

    Unset filters (``None`` / ``"Any"`` / all room types) are ignored.
    A candidate missing a filtered attribute does not pass.
    """
    basic = _section(profile, "basicInfo")
    prefs = _section(profile, "preferences")
    lifestyle = _section(profile, "lifestyle")

    if filters.gender and filters.gender != "Any":
        if basic.get("gender") != filters.gender:
            return False

    # Room type only narrows when a single type is selected.
    if len(filters.room_types) == 1:
        wanted = filters.room_types[0]
        room = prefs.get("roomType")
        if room != wanted and room != ROOM_TYPE_WILDCARD and wanted != ROOM_TYPE_WILDCARD:
            return False

    if filters.budget_max is not None:
        budget = prefs.get("budget")
        candidate_min = budget.get("min") if isinstance(budget, dict) else None
        if isinstance(candidate_min, (int, float)) and candidate_min > filters.budget_max:
            return False

    for flag in _LIFESTYLE_FLAGS:
        wanted = getattr(filters, flag)
        if wanted is not None and lifestyle.get(flag) is not wanted:
            return False

    if filters.cleanliness is not None:
        cleanliness = lifestyle.get("cleanliness")
        if not isinstance(cleanliness, (int, float)) or cleanliness < filters.cleanliness:
            return False

    return True


class DiscoveryRanker:
    def __init__(
        self,
        profiles: ProfileService,
        matches: MatchManager,
        scorer: CompatibilityScorer,
    ) -> None:
        self.profiles = profiles
        self.matches = matches
        self.scorer = scorer
        self.default_score = get_settings().DEFAULT_DISCOVERY_SCORE

    async def get_candidates(
        self,
        user_id: str,
        filters: SearchFilters | None = None,
    ) -> list[ScoredProfile]:
        """Ranked candidates for ``user_id``.

        A candidate whose score cannot be produced for any reason other
        than a missing profile is kept with the default score and
        ``score_is_default`` set; one whose profile has disappeared is
        dropped.  A viewer without a profile of their own still gets the
        filtered pool, every candidate at the default score.
        """
        filters = filters or SearchFilters()
        log = logger.bind(user_id=user_id)

        viewer = await self.profiles.get_profile(user_id)
        if viewer is None:
            log.info("discovery_viewer_without_profile")

        matched = set(await self.matches.list_match_ids(user_id))
        pool = [
            p for p in await self.profiles.list_complete_profiles(exclude_user_id=user_id)
            if p["id"] not in matched and p["id"] != user_id
        ]
        candidates = [p for p in pool if passes_filters(p, filters)]

        ranked: list[ScoredProfile] = []
        defaulted = 0
        for candidate in candidates:
            candidate_id = candidate["id"]
            if viewer is None:
                defaulted += 1
                ranked.append(self._with_default_score(candidate))
                continue
            try:
                score = await self.scorer.get_or_compute_score(
                    user_id, candidate_id, profile_a=viewer, profile_b=candidate
                )
            except ProfileNotFoundError:
                log.info("discovery_candidate_vanished", candidate_id=candidate_id)
                continue
            except Exception as exc:
                log.warning("discovery_score_defaulted", candidate_id=candidate_id, error=str(exc))
                defaulted += 1
                ranked.append(self._with_default_score(candidate))
                continue

            ranked.append(
                ScoredProfile(
                    user_id=candidate_id,
                    profile=candidate,
                    compatibility_score=score.overall_score,
                    factor_breakdown=score.factor_breakdown,
                )
            )

        ranked.sort(key=lambda s: s.compatibility_score, reverse=True)

        log.info(
            "discovery_ranked",
            pool=len(pool),
            filtered=len(candidates),
            returned=len(ranked),
            defaulted=defaulted,
        )
        return ranked

    def _with_default_score(self, candidate: dict) -> ScoredProfile:
        return ScoredProfile(
            user_id=candidate["id"],
            profile=candidate,
            compatibility_score=self.default_score,
            score_is_default=True,
        )
