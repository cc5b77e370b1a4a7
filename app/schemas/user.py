from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(None, max_length=100)
    bio: Optional[str] = Field(None, max_length=500)
    avatar_url: Optional[str] = None
    is_private: Optional[bool] = None


class ProfileResponse(BaseModel):
    id: int
    username: str
    display_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    is_private: bool = False
    followers_count: int = 0
    following_count: int = 0
    posts_count: int = 0
    created_at: datetime

    class Config:
        from_attributes = True


class ProfileView(BaseModel):
    """Profile as seen by a particular viewer."""

    id: int
    username: str
    display_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    is_private: bool = False
    followers_count: Optional[int] = 0
    following_count: Optional[int] = 0
    posts_count: Optional[int] = 0
    is_following: bool = False  # Whether current user follows this user
    is_restricted: bool = False  # Private profile seen by a non-follower
    created_at: datetime

    class Config:
        from_attributes = True


class ProfileSummary(BaseModel):
    id: int
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True
