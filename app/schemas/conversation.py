from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional, List
from app.schemas.user import ProfileSummary


class ConversationStart(BaseModel):
    user_id: int


class ConversationResponse(BaseModel):
    id: int
    participant1_id: int
    participant2_id: int
    created_at: datetime
    last_message_at: datetime

    class Config:
        from_attributes = True


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=4000)


class MessageResponse(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str
    created_at: datetime
    read_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DeletionRequestResponse(BaseModel):
    conversation_id: int
    requested_by: int
    requested_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True


class DeletionOutcome(BaseModel):
    """Result of asking to delete a conversation.

    ``deleted`` is true when the other participant had already asked, in which
    case the conversation is gone and ``request`` is empty.
    """

    deleted: bool
    request: Optional[DeletionRequestResponse] = None


class ConversationSummary(BaseModel):
    id: int
    other_user: Optional[ProfileSummary] = None
    last_message_at: datetime
    last_message: Optional[MessageResponse] = None
    unread_count: int = 0
    deletion_request: Optional[DeletionRequestResponse] = None


class MarkReadResponse(BaseModel):
    marked: int


class MessageHistory(BaseModel):
    messages: List[MessageResponse]
    next_cursor: Optional[str] = None
    has_more: bool = False
