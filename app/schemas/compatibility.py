from pydantic import Field
from datetime import datetime
from typing import Literal, Optional

from app.schemas.document import DocumentModel
from app.utils.keys import pair_key


class FactorBreakdown(DocumentModel):
    budget: float = Field(ge=0, le=100)
    gender: float = Field(ge=0, le=100)
    room_type: float = Field(ge=0, le=100)
    lifestyle: float = Field(ge=0, le=100)
    location: float = Field(ge=0, le=100)

class CompatibilityScore(DocumentModel):
    user_id_a: str
    user_id_b: str
    overall_score: float = Field(ge=0, le=100)
    factor_breakdown: FactorBreakdown
    last_updated: datetime

    @property
    def pair_key(self) -> str:
        return pair_key(self.user_id_a, self.user_id_b)

class SearchFilters(DocumentModel):
    gender: str = "Any"
    room_types: list[Literal["private", "shared", "either"]] = ["private", "shared", "either"]
    budget_max: Optional[float] = Field(None, ge=0)
    smoking: Optional[bool] = None
    pets: Optional[bool] = None
    drinking: Optional[bool] = None
    partying: Optional[bool] = None
    visitors: Optional[bool] = None
    cleanliness: Optional[int] = Field(None, ge=1, le=5)

class ScoredProfile(DocumentModel):
    user_id: str
    profile: dict
    compatibility_score: float
    factor_breakdown: Optional[FactorBreakdown] = None
    score_is_default: bool = False
