import logging
from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from app.models import Post, PostAllowedUser, Like, Comment, Profile
from app.schemas.post import PostCreate, PostUpdate, CommentCreate
from app.core.exceptions import Forbidden, NotFound, ContentBlocked, ValidationError
from app.core.resilience import storage_operation
from app.database import utcnow
from app.services.graph import SocialGraphService
from app.services.moderation import ModerationFilter, default_filter
from app.services.visibility import VisibilityEngine

logger = logging.getLogger(__name__)


class PostService:
    """Post and comment ingestion, with moderation and visibility checks."""

    def __init__(self, db: AsyncSession, moderation: Optional[ModerationFilter] = None):
        self.db = db
        self.moderation = moderation or default_filter
        self.graph = SocialGraphService(db)
        self.visibility = VisibilityEngine(db, self.graph)

    def _check_text(self, author_id: int, text: str) -> None:
        verdict = self.moderation.moderate(text)
        if not verdict.clean:
            logger.info("Content from user %s rejected by moderation", author_id)
            raise ContentBlocked(verdict.reason)

    async def _resolve_allowed(self, author_id: int, user_ids: List[int]) -> set[int]:
        """Distinct known profiles, never the author."""
        allowed_ids = set(user_ids) - {author_id}
        if allowed_ids:
            known = await self.graph.get_profiles(allowed_ids)
            allowed_ids &= set(known)
        return allowed_ids

    @storage_operation()
    async def create(self, author_id: int, data: PostCreate) -> Post:
        """Create a new post."""
        self._check_text(author_id, data.content)

        allowed_ids = await self._resolve_allowed(author_id, data.allowed_user_ids)

        post = Post(
            author_id=author_id,
            content=data.content,
            privacy=data.privacy,
            created_at=utcnow(),
            allowed_users=[PostAllowedUser(user_id=user_id) for user_id in sorted(allowed_ids)],
        )
        self.db.add(post)

        await self.db.execute(
            update(Profile).where(Profile.id == author_id)
            .values(posts_count=Profile.posts_count + 1)
        )
        await self.db.commit()

        logger.info("User %s created post %s (%s)", author_id, post.id, post.privacy.value)
        return post

    @storage_operation(idempotent=True)
    async def get_by_id(self, post_id: int) -> Optional[Post]:
        """Get post by ID, without any visibility check."""
        result = await self.db.execute(select(Post).where(Post.id == post_id))
        return result.scalar_one_or_none()

    @storage_operation(idempotent=True)
    async def get_visible(self, post_id: int, viewer_id: Optional[int]) -> Post:
        """Get a post the viewer may see. Hidden posts look like missing ones."""
        post = await self.get_by_id(post_id)
        if post is None or not await self.visibility.can_view(viewer_id, post):
            raise NotFound("Post not found")
        return post

    @storage_operation()
    async def delete(self, post_id: int, user_id: int) -> bool:
        """Delete a post."""
        post = await self.get_by_id(post_id)
        if not post:
            raise NotFound("Post not found")

        if post.author_id != user_id:
            raise Forbidden("Cannot delete another user's post")

        await self.db.execute(delete(Comment).where(Comment.post_id == post_id))
        await self.db.execute(delete(Like).where(Like.post_id == post_id))

        await self.db.execute(
            update(Profile).where(Profile.id == user_id)
            .values(posts_count=Profile.posts_count - 1)
        )

        await self.db.delete(post)
        await self.db.commit()

        return True

    @storage_operation()
    async def update(self, post_id: int, user_id: int, data: PostUpdate) -> Post:
        """Edit a post's text, privacy or allow-list. Only its author may do so.

        New text goes through moderation again; a rejected edit leaves the
        post as it was.
        """
        post = await self.get_by_id(post_id)
        if not post:
            raise NotFound("Post not found")

        if post.author_id != user_id:
            raise Forbidden("Cannot edit another user's post")

        if data.content is not None:
            self._check_text(user_id, data.content)
            post.content = data.content
        if data.privacy is not None:
            post.privacy = data.privacy
        if data.allowed_user_ids is not None:
            wanted = await self._resolve_allowed(user_id, data.allowed_user_ids)
            kept = [entry for entry in post.allowed_users if entry.user_id in wanted]
            added = wanted - {entry.user_id for entry in kept}
            post.allowed_users = kept + [PostAllowedUser(user_id=uid) for uid in sorted(added)]

        post.updated_at = utcnow()
        await self.db.commit()

        logger.info("User %s edited post %s (%s)", user_id, post.id, post.privacy.value)
        return post

    @storage_operation()
    async def like(self, post_id: int, user_id: int) -> bool:
        """Like a post the user can see."""
        post = await self.get_visible(post_id, user_id)

        existing = await self.db.execute(
            select(Like.id).where(Like.user_id == user_id, Like.post_id == post.id)
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationError("Already liked this post")

        self.db.add(Like(user_id=user_id, post_id=post.id, created_at=utcnow()))
        await self.db.execute(
            update(Post).where(Post.id == post.id)
            .values(likes_count=Post.likes_count + 1)
        )
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ValidationError("Already liked this post")

        return True

    @storage_operation()
    async def unlike(self, post_id: int, user_id: int) -> bool:
        """Remove the user's like. Works even if the post is no longer visible."""
        post = await self.get_by_id(post_id)
        if not post:
            raise NotFound("Post not found")

        result = await self.db.execute(
            delete(Like).where(Like.user_id == user_id, Like.post_id == post.id)
        )
        if result.rowcount == 0:
            raise ValidationError("Haven't liked this post")

        await self.db.execute(
            update(Post).where(Post.id == post.id)
            .values(likes_count=Post.likes_count - 1)
        )
        await self.db.commit()

        return True

    @storage_operation()
    async def add_comment(self, post_id: int, user_id: int, data: CommentCreate) -> Comment:
        """Comment on a post the user can see."""
        self._check_text(user_id, data.content)

        post = await self.get_visible(post_id, user_id)

        comment = Comment(
            post_id=post.id,
            author_id=user_id,
            content=data.content,
            created_at=utcnow(),
        )
        self.db.add(comment)

        await self.db.execute(
            update(Post).where(Post.id == post.id)
            .values(comments_count=Post.comments_count + 1)
        )
        await self.db.commit()

        return comment

    @storage_operation(idempotent=True)
    async def get_comments(
        self,
        post_id: int,
        viewer_id: Optional[int] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Comment]:
        """Comments on a visible post, oldest first, minus blocked authors."""
        post = await self.get_visible(post_id, viewer_id)

        result = await self.db.execute(
            select(Comment)
            .where(Comment.post_id == post.id)
            .order_by(Comment.id.asc())
            .limit(limit)
            .offset(offset)
        )
        comments = list(result.scalars().all())

        if viewer_id is None:
            return comments
        blocked_ids = await self.graph.get_blocked_ids(viewer_id)
        return [c for c in comments if c.author_id not in blocked_ids]

    @storage_operation()
    async def delete_comment(self, comment_id: int, user_id: int) -> bool:
        """Delete a comment. Its author and the post's author may do so."""
        result = await self.db.execute(select(Comment).where(Comment.id == comment_id))
        comment = result.scalar_one_or_none()
        if not comment:
            raise NotFound("Comment not found")

        post = await self.get_by_id(comment.post_id)
        if user_id != comment.author_id and (post is None or post.author_id != user_id):
            raise Forbidden("Cannot delete another user's comment")

        await self.db.delete(comment)
        if post is not None:
            await self.db.execute(
                update(Post).where(Post.id == post.id)
                .values(comments_count=Post.comments_count - 1)
            )
        await self.db.commit()

        return True
