from pydantic import BaseModel
from typing import Optional


class ProfileUpsert(BaseModel):
    """Partial profile document; only the keys present are merged."""

    basicInfo: Optional[dict] = None
    preferences: Optional[dict] = None
    lifestyle: Optional[dict] = None
    photos: Optional[list[str]] = None
    isProfileComplete: Optional[bool] = None

    def to_partial(self) -> dict:
        return self.model_dump(exclude_none=True)

class ProfileSaved(BaseModel):
    user_id: str
    is_profile_complete: bool
    scores_updated: int = 0
