from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.models import Post, Profile, PrivacyLevel
from app.schemas.post import FeedResponse, PostResponse
from app.config import settings
from app.core.resilience import storage_operation
from app.services.graph import SocialGraphService
from app.services.visibility import VisibilityEngine


class FeedService:
    """Home, user and explore feeds.

    Candidate posts are read newest first in batches and passed through
    ``VisibilityEngine.filter_visible``; batches continue until a page is
    full or the candidates run out.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.graph = SocialGraphService(db)
        self.visibility = VisibilityEngine(db, self.graph)

    @staticmethod
    def _parse_cursor(cursor: Optional[str]) -> Optional[int]:
        if not cursor:
            return None
        try:
            return int(cursor)
        except ValueError:
            return None

    async def _collect(self, query, viewer_id: Optional[int], limit: int, cursor: Optional[str]) -> FeedResponse:
        max_id = self._parse_cursor(cursor)
        batch_size = max(limit * 2, 10)

        visible: List[Post] = []
        while len(visible) <= limit:
            batch_query = query.order_by(Post.id.desc()).limit(batch_size)
            if max_id:
                batch_query = batch_query.where(Post.id < max_id)

            result = await self.db.execute(batch_query)
            batch = list(result.scalars().all())
            if not batch:
                break

            visible.extend(await self.visibility.filter_visible(viewer_id, batch))
            max_id = batch[-1].id
            if len(batch) < batch_size:
                break

        has_more = len(visible) > limit
        if has_more:
            visible = visible[:limit]

        next_cursor = None
        if has_more and visible:
            next_cursor = str(visible[-1].id)

        return FeedResponse(
            posts=[PostResponse.model_validate(post) for post in visible],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    @storage_operation(idempotent=True)
    async def get_home_feed(
        self,
        user_id: int,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> FeedResponse:
        """Posts by the user and everyone they follow."""
        limit = limit or settings.feed_page_size
        author_ids = await self.graph.get_following_ids(user_id)
        author_ids.add(user_id)

        query = select(Post).where(Post.author_id.in_(author_ids))
        return await self._collect(query, user_id, limit, cursor)

    @storage_operation(idempotent=True)
    async def get_user_feed(
        self,
        target_user_id: int,
        viewer_id: Optional[int] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> FeedResponse:
        """One author's posts, as the viewer may see them."""
        limit = limit or settings.feed_page_size
        query = select(Post).where(Post.author_id == target_user_id)
        return await self._collect(query, viewer_id, limit, cursor)

    @storage_operation(idempotent=True)
    async def get_explore_feed(
        self,
        viewer_id: Optional[int] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> FeedResponse:
        """Public posts from public profiles."""
        limit = limit or settings.feed_page_size
        query = (
            select(Post)
            .join(Profile, Profile.id == Post.author_id)
            .where(Profile.is_private.is_(False))
            .where(Post.privacy == PrivacyLevel.PUBLIC)
        )
        return await self._collect(query, viewer_id, limit, cursor)
