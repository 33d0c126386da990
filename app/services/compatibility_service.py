"""
Roommate Match — Pairwise compatibility scoring.

Five factor sub-scores, each on a 0-100 scale:

  budget     100 if the two [min, max] budget ranges overlap (inclusive)
  gender     constant 100 (preference cross-matching is not modelled)
  room_type  100 if room types are equal or either side says "either"
  lifestyle  mean of cleanliness closeness (100 - 20 x |delta|, floor 0),
             smoking equality and pets equality
  location   100 if the preferred-location strings are exactly equal

  overall = 0.30 x budget + 0.15 x gender + 0.20 x room_type
          + 0.25 x lifestyle + 0.10 x location

Missing attributes score 0 for the component they feed; scoring never
raises on incomplete profile data.  Scores are cached per unordered pair
under ``compatibilityScores/<min>_<max>`` and never expire by age.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog

from app.config import get_settings
from app.schemas.compatibility import CompatibilityScore, FactorBreakdown
from app.services.profile_service import ProfileService
from app.store.base import DocumentStore, WriteOp
from app.utils.errors import ProfileNotFoundError
from app.utils.keys import SCORES_COLLECTION, pair_key, require_distinct

logger = structlog.get_logger("roommate.compatibility_service")

# ──────────────────────────────────────────────────────────────────────────────
# Constants
# ──────────────────────────────────────────────────────────────────────────────

MATCH = 100.0
MISMATCH = 0.0

ROOM_TYPE_WILDCARD = "either"

_CLEANLINESS_STEP_PENALTY = 20.0


def _nested(profile: dict, *path: str) -> Any:
    current: Any = profile
    for part in path:
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class CompatibilityScorer:
    """Computes, caches and batch-refreshes pairwise compatibility.

    ``recompute_all_for_user`` reads every complete profile on each call;
    callers depend only on its signature so an indexed implementation can
    replace it later.
    """

    def __init__(self, store: DocumentStore, profiles: ProfileService) -> None:
        self.store = store
        self.profiles = profiles

        settings = get_settings()
        self.weights: dict[str, float] = dict(settings.factor_weights)
        self.batch_size: int = settings.SCORE_BATCH_SIZE

        logger.debug("compatibility_scorer_initialised", weights=self.weights)

    # ── Pure scoring ──────────────────────────────────────────────────────

    def compute_score(
        self,
        profile_a: dict,
        profile_b: dict,
        user_a_id: str | None = None,
        user_b_id: str | None = None,
    ) -> CompatibilityScore:
        """Score two profile snapshots.  No I/O.

        Parameters
        ----------
        profile_a, profile_b:
            Profile documents (``preferences`` / ``lifestyle`` maps).
        user_a_id, user_b_id:
            Pair identity; defaults to each profile's ``id`` key.

        Returns
        -------
        CompatibilityScore
            With the pair stored in sorted order so that (A, B) and (B, A)
            produce the same record.
        """
        a_id = user_a_id or str(profile_a.get("id", ""))
        b_id = user_b_id or str(profile_b.get("id", ""))
        first, second = sorted((a_id, b_id))

        breakdown = FactorBreakdown(
            budget=self._budget_match(profile_a, profile_b),
            gender=self._gender_match(profile_a, profile_b),
            room_type=self._room_type_match(profile_a, profile_b),
            lifestyle=self._lifestyle_match(profile_a, profile_b),
            location=self._location_match(profile_a, profile_b),
        )
        overall = self._weighted_overall(breakdown)

        logger.debug(
            "compatibility_computed",
            pair=pair_key(first, second),
            overall=overall,
            budget=breakdown.budget,
            room_type=breakdown.room_type,
            lifestyle=breakdown.lifestyle,
            location=breakdown.location,
        )

        return CompatibilityScore(
            user_id_a=first,
            user_id_b=second,
            overall_score=overall,
            factor_breakdown=breakdown,
            last_updated=datetime.now(timezone.utc),
        )

    def _weighted_overall(self, breakdown: FactorBreakdown) -> float:
        overall = (
            self.weights["budget"] * breakdown.budget
            + self.weights["gender"] * breakdown.gender
            + self.weights["room_type"] * breakdown.room_type
            + self.weights["lifestyle"] * breakdown.lifestyle
            + self.weights["location"] * breakdown.location
        )
        return round(max(0.0, min(100.0, overall)), 2)

    # ── Factors ──────────────────────────────────────────────────────────

    @staticmethod
    def _budget_match(profile_a: dict, profile_b: dict) -> float:
        a_min = _nested(profile_a, "preferences", "budget", "min")
        a_max = _nested(profile_a, "preferences", "budget", "max")
        b_min = _nested(profile_b, "preferences", "budget", "min")
        b_max = _nested(profile_b, "preferences", "budget", "max")
        if not all(_is_number(v) for v in (a_min, a_max, b_min, b_max)):
            return MISMATCH
        return MATCH if a_min <= b_max and b_min <= a_max else MISMATCH

    @staticmethod
    def _gender_match(profile_a: dict, profile_b: dict) -> float:
        # Placeholder: stated gender preferences are not cross-checked.
        return MATCH

    @staticmethod
    def _room_type_match(profile_a: dict, profile_b: dict) -> float:
        room_a = _nested(profile_a, "preferences", "roomType")
        room_b = _nested(profile_b, "preferences", "roomType")
        if not room_a or not room_b:
            return MISMATCH
        if room_a == room_b or ROOM_TYPE_WILDCARD in (room_a, room_b):
            return MATCH
        return MISMATCH

    @classmethod
    def _lifestyle_match(cls, profile_a: dict, profile_b: dict) -> float:
        cleanliness = cls._cleanliness_closeness(
            _nested(profile_a, "lifestyle", "cleanliness"),
            _nested(profile_b, "lifestyle", "cleanliness"),
        )
        smoking = cls._bool_equality(
            _nested(profile_a, "lifestyle", "smoking"),
            _nested(profile_b, "lifestyle", "smoking"),
        )
        pets = cls._bool_equality(
            _nested(profile_a, "lifestyle", "pets"),
            _nested(profile_b, "lifestyle", "pets"),
        )
        return round((cleanliness + smoking + pets) / 3.0, 2)

    @staticmethod
    def _cleanliness_closeness(a: Any, b: Any) -> float:
        if not _is_number(a) or not _is_number(b):
            return MISMATCH
        return max(0.0, 100.0 - _CLEANLINESS_STEP_PENALTY * abs(a - b))

    @staticmethod
    def _bool_equality(a: Any, b: Any) -> float:
        if not isinstance(a, bool) or not isinstance(b, bool):
            return MISMATCH
        return MATCH if a == b else MISMATCH

    @staticmethod
    def _location_match(profile_a: dict, profile_b: dict) -> float:
        # Exact string comparison; coordinates are not used.
        loc_a = _nested(profile_a, "preferences", "location")
        loc_b = _nested(profile_b, "preferences", "location")
        if not isinstance(loc_a, str) or not isinstance(loc_b, str) or not loc_a:
            return MISMATCH
        return MATCH if loc_a == loc_b else MISMATCH

    # ── Cached access ────────────────────────────────────────────────────

    async def get_cached_score(self, user_a: str, user_b: str) -> CompatibilityScore | None:
        data = await self.store.get(SCORES_COLLECTION, pair_key(user_a, user_b))
        if data is None:
            return None
        return CompatibilityScore.from_document(data)

    async def get_or_compute_score(
        self,
        user_a: str,
        user_b: str,
        profile_a: dict | None = None,
        profile_b: dict | None = None,
    ) -> CompatibilityScore:
        """Return the persisted score for the pair, computing it on a miss.

        Already-loaded profiles may be passed to skip the profile reads.
        Raises ``ProfileNotFoundError`` (and persists nothing) when either
        profile is missing.
        """
        require_distinct(user_a, user_b)
        key = pair_key(user_a, user_b)
        log = logger.bind(pair=key)

        cached = await self.get_cached_score(user_a, user_b)
        if cached is not None:
            log.debug("compatibility_cache_hit", overall=cached.overall_score)
            return cached

        if profile_a is None:
            profile_a = await self.profiles.get_profile(user_a)
        if profile_a is None:
            log.warning("compatibility_profile_missing", user_id=user_a)
            raise ProfileNotFoundError(user_a)
        if profile_b is None:
            profile_b = await self.profiles.get_profile(user_b)
        if profile_b is None:
            log.warning("compatibility_profile_missing", user_id=user_b)
            raise ProfileNotFoundError(user_b)

        score = self.compute_score(profile_a, profile_b, user_a, user_b)
        await self.store.set(SCORES_COLLECTION, key, score.to_document())

        log.info("compatibility_cache_filled", overall=score.overall_score)
        return score

    async def recompute_all_for_user(self, user_id: str) -> int:
        """Overwrite the score of ``user_id`` against every other complete
        profile.  Returns the number of scores written."""
        log = logger.bind(user_id=user_id)

        profile = await self.profiles.get_profile(user_id)
        if profile is None:
            raise ProfileNotFoundError(user_id)

        others = await self.profiles.list_complete_profiles(exclude_user_id=user_id)
        ops: list[WriteOp] = []
        for other in others:
            score = self.compute_score(profile, other, user_id, other["id"])
            ops.append(WriteOp.set(SCORES_COLLECTION, score.pair_key, score.to_document()))

        for start in range(0, len(ops), self.batch_size):
            await self.store.batch_write(ops[start:start + self.batch_size])

        log.info("compatibility_recomputed", updated=len(ops))
        return len(ops)
