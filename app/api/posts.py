from typing import Optional, List
from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.core.dependencies import get_current_user, get_current_user_optional
from app.models import Profile
from app.schemas.post import PostCreate, PostUpdate, PostResponse, CommentCreate, CommentResponse
from app.services.post import PostService

router = APIRouter()


@router.post("", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    data: PostCreate,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user)
):
    """Create a new post.

    Content is moderated first; rejected text returns 422 and nothing is
    stored.
    """
    return await PostService(db).create(current_user.id, data)


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(
    post_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: Optional[Profile] = Depends(get_current_user_optional)
):
    """Get a single post. Posts the caller cannot see return 404."""
    current_user_id = current_user.id if current_user else None
    return await PostService(db).get_visible(post_id, current_user_id)


@router.put("/{post_id}", response_model=PostResponse)
async def update_post(
    post_id: int,
    data: PostUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user)
):
    """Edit a post. The new text is moderated like a new post."""
    return await PostService(db).update(post_id, current_user.id, data)


@router.delete("/{post_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post(
    post_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user)
):
    """Delete a post."""
    await PostService(db).delete(post_id, current_user.id)


@router.post("/{post_id}/like", status_code=status.HTTP_201_CREATED)
async def like_post(
    post_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user)
):
    """Like a post."""
    await PostService(db).like(post_id, current_user.id)
    return {"message": "Post liked"}


@router.delete("/{post_id}/like")
async def unlike_post(
    post_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user)
):
    """Unlike a post."""
    await PostService(db).unlike(post_id, current_user.id)
    return {"message": "Post unliked"}


@router.post("/{post_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def add_comment(
    post_id: int,
    data: CommentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user)
):
    return await PostService(db).add_comment(post_id, current_user.id, data)


@router.get("/{post_id}/comments", response_model=List[CommentResponse])
async def get_comments(
    post_id: int,
    limit: int = Query(20, le=100, ge=1),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: Optional[Profile] = Depends(get_current_user_optional)
):
    current_user_id = current_user.id if current_user else None
    return await PostService(db).get_comments(post_id, current_user_id, limit, offset)


@router.delete("/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(
    comment_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: Profile = Depends(get_current_user)
):
    await PostService(db).delete_comment(comment_id, current_user.id)
