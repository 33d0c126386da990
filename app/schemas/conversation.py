from pydantic import Field
from datetime import datetime
from typing import Optional

from app.schemas.document import DocumentModel


class ConversationRecord(DocumentModel):
    id: str
    participants: list[str] = Field(min_length=2, max_length=2)
    created_at: datetime
    last_message_timestamp: Optional[datetime] = None
    last_message_text: Optional[str] = None
    last_message_sender_id: Optional[str] = None

    def other_participant(self, user_id: str) -> Optional[str]:
        if user_id not in self.participants:
            return None
        others = [p for p in self.participants if p != user_id]
        return others[0] if others else None

class MessagePayload(DocumentModel):
    text: str = ""
    image_url: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = Field(None, ge=0)
    file_type: Optional[str] = None

class MessageRecord(DocumentModel):
    id: str
    sender_id: str
    text: str = ""
    timestamp: datetime
    image_url: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    file_type: Optional[str] = None

class ConversationCreate(DocumentModel):
    user_a_id: str
    user_b_id: str

class ConversationCreated(DocumentModel):
    conversation_id: str

class MessageCreate(MessagePayload):
    sender_id: str

class MessageCreated(DocumentModel):
    message_id: str
    conversation_id: str

class ConversationSummary(DocumentModel):
    conversation: ConversationRecord
    other_user_id: Optional[str] = None
    other_profile: Optional[dict] = None
