from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.core.dependencies import get_current_user, get_current_user_optional
from app.models import Profile
from app.schemas.user import ProfileResponse, ProfileUpdate, ProfileView, ProfileSummary
from app.services.graph import SocialGraphService
from app.services.visibility import VisibilityEngine

router = APIRouter()


@router.get("/{username}", response_model=ProfileView)
async def get_user_profile(
    username: str,
    db: AsyncSession = Depends(get_db),
    current_user: Optional[Profile] = Depends(get_current_user_optional)
):
    """Get a user's profile as the caller may see it.

    Private profiles show a restricted view to non-followers; blocked
    viewers get 404.
    """
    current_user_id = current_user.id if current_user else None
    return await VisibilityEngine(db).get_profile_view(current_user_id, username)


@router.put("/me", response_model=ProfileResponse)
async def update_profile(
    data: ProfileUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user)
):
    """Update current user's profile, including the private account flag."""
    service = SocialGraphService(db)
    return await service.update_profile(current_user.id, data)


@router.post("/{user_id}/follow")
async def follow_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user)
):
    """Follow a user."""
    await SocialGraphService(db).follow(current_user.id, user_id)
    return {"message": "Successfully followed user"}


@router.delete("/{user_id}/follow")
async def unfollow_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user)
):
    """Unfollow a user."""
    await SocialGraphService(db).unfollow(current_user.id, user_id)
    return {"message": "Successfully unfollowed user"}


@router.post("/{user_id}/block")
async def block_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user)
):
    await SocialGraphService(db).block(current_user.id, user_id)
    return {"message": "Successfully blocked user"}


@router.delete("/{user_id}/block")
async def unblock_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user)
):
    await SocialGraphService(db).unblock(current_user.id, user_id)
    return {"message": "Successfully unblocked user"}


@router.get("/{user_id}/followers", response_model=List[ProfileSummary])
async def get_followers(
    user_id: int,
    limit: int = Query(20, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: Optional[Profile] = Depends(get_current_user_optional)
):
    """Get a user's followers.

    Follows the profile rules: 404 for blocked viewers, 403 for
    non-followers of a private account.
    """
    current_user_id = current_user.id if current_user else None
    return await VisibilityEngine(db).get_followers(current_user_id, user_id, limit, offset)


@router.get("/{user_id}/following", response_model=List[ProfileSummary])
async def get_following(
    user_id: int,
    limit: int = Query(20, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: Optional[Profile] = Depends(get_current_user_optional)
):
    """Get users that a user is following."""
    current_user_id = current_user.id if current_user else None
    return await VisibilityEngine(db).get_following(current_user_id, user_id, limit, offset)
