from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional, List
from app.models.post import PrivacyLevel


class PostCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
    privacy: PrivacyLevel = PrivacyLevel.PUBLIC
    allowed_user_ids: List[int] = Field(default_factory=list)


class PostUpdate(BaseModel):
    """Fields left out keep their current value."""

    content: Optional[str] = Field(None, min_length=1, max_length=2000)
    privacy: Optional[PrivacyLevel] = None
    allowed_user_ids: Optional[List[int]] = None


class PostResponse(BaseModel):
    id: int
    content: str
    author_id: int
    privacy: PrivacyLevel
    allowed_user_ids: List[int] = Field(default_factory=list)
    likes_count: int = 0
    comments_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FeedResponse(BaseModel):
    posts: List[PostResponse]
    next_cursor: Optional[str] = None
    has_more: bool = False


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)


class CommentResponse(BaseModel):
    id: int
    post_id: int
    author_id: int
    content: str
    created_at: datetime

    class Config:
        from_attributes = True
