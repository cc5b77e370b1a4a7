from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.core.dependencies import get_current_user, get_current_user_optional
from app.models import Profile
from app.schemas.post import FeedResponse
from app.services.feed import FeedService

router = APIRouter()


@router.get("/home", response_model=FeedResponse)
async def get_home_feed(
    cursor: Optional[str] = Query(None, description="Pagination cursor (post ID)"),
    limit: int = Query(20, le=100, ge=1),
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user)
):
    """Get home feed (own posts and posts from followed users).

    Uses cursor-based pagination. Pass the `next_cursor` from the response
    to get the next page of results.
    """
    service = FeedService(db)
    return await service.get_home_feed(
        user_id=current_user.id,
        limit=limit,
        cursor=cursor,
    )


@router.get("/user/{user_id}", response_model=FeedResponse)
async def get_user_feed(
    user_id: int,
    cursor: Optional[str] = Query(None, description="Pagination cursor (post ID)"),
    limit: int = Query(20, le=100, ge=1),
    db: AsyncSession = Depends(get_db),
    current_user: Optional[Profile] = Depends(get_current_user_optional)
):
    """Get a user's posts that the caller is allowed to see."""
    service = FeedService(db)
    current_user_id = current_user.id if current_user else None
    return await service.get_user_feed(
        target_user_id=user_id,
        viewer_id=current_user_id,
        limit=limit,
        cursor=cursor,
    )


@router.get("/explore", response_model=FeedResponse)
async def get_explore_feed(
    cursor: Optional[str] = Query(None, description="Pagination cursor (post ID)"),
    limit: int = Query(20, le=100, ge=1),
    db: AsyncSession = Depends(get_db),
    current_user: Optional[Profile] = Depends(get_current_user_optional)
):
    """Get public posts from public accounts."""
    service = FeedService(db)
    current_user_id = current_user.id if current_user else None
    return await service.get_explore_feed(current_user_id, limit, cursor)
