from datetime import datetime
from typing import Literal, Optional

from app.schemas.document import DocumentModel


class SwipeRecord(DocumentModel):
    swiper_id: str
    swiped_id: str
    liked: bool
    timestamp: datetime

class MatchRecord(DocumentModel):
    owner_id: str
    other_user_id: str
    matched_at: datetime

class MatchOutcome(DocumentModel):
    status: Literal["no_match", "matched", "match_creation_failed"]
    other_user_id: Optional[str] = None
    other_profile: Optional[dict] = None
    detail: Optional[str] = None

    @property
    def is_match(self) -> bool:
        return self.status == "matched"

class SwipeCreate(DocumentModel):
    swiper_id: str
    swiped_id: str
    liked: bool = True

class SwipeResponse(DocumentModel):
    status: str  # recorded / no_match / matched / match_creation_failed
    is_mutual_match: bool
    outcome: Optional[MatchOutcome] = None

class MatchListResponse(DocumentModel):
    user_id: str
    match_ids: list[str]
    repaired_count: int = 0
    profiles: Optional[list[dict]] = None

class RepairResponse(DocumentModel):
    user_id: str
    repaired_count: int

class UnmatchResponse(DocumentModel):
    user_id: str
    other_user_id: str
    status: str = "unmatched"
