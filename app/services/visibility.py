"""Visibility decisions for posts and profiles.

Account-level privacy is a hard ceiling: once an author's profile is
private, a post's own privacy level is ignored and only followers and
explicitly allowed users can see it. A block in either direction hides
everything, whatever the follow state.
"""
import enum
import logging
from typing import Optional, Protocol, Sequence, TypeVar, Collection, List

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import Forbidden, NotFound
from app.core.resilience import storage_operation
from app.models import Profile, PrivacyLevel
from app.schemas.user import ProfileView
from app.services.graph import SocialGraphService

logger = logging.getLogger(__name__)


class Content(Protocol):
    author_id: int
    privacy: PrivacyLevel

    @property
    def allowed_user_ids(self) -> Collection[int]: ...


C = TypeVar("C", bound=Content)


class ProfileAccess(str, enum.Enum):
    FULL = "full"
    RESTRICTED = "restricted"
    HIDDEN = "hidden"


def resolve_visibility(
    viewer_id: Optional[int],
    content: Content,
    author_is_private: bool,
    follows_author: bool,
    blocked: bool,
) -> bool:
    """Decide visibility from facts already fetched from the graph."""
    if viewer_id is not None and viewer_id == content.author_id:
        return True

    if blocked:
        return False

    is_allowed = viewer_id is not None and viewer_id in content.allowed_user_ids

    if author_is_private:
        return follows_author or is_allowed

    if content.privacy == PrivacyLevel.PUBLIC:
        return True
    if content.privacy == PrivacyLevel.FOLLOWERS:
        return follows_author
    if content.privacy == PrivacyLevel.PRIVATE:
        return is_allowed

    return False


def resolve_profile_access(
    viewer_id: Optional[int],
    profile: Profile,
    follows_profile: bool,
    blocked: bool,
) -> ProfileAccess:
    if viewer_id is not None and viewer_id == profile.id:
        return ProfileAccess.FULL
    if blocked:
        return ProfileAccess.HIDDEN
    if not profile.is_private or follows_profile:
        return ProfileAccess.FULL
    return ProfileAccess.RESTRICTED


class VisibilityEngine:
    """Read-only visibility checks backed by the social graph."""

    def __init__(self, db: AsyncSession, graph: Optional[SocialGraphService] = None):
        self.db = db
        self.graph = graph or SocialGraphService(db)

    @storage_operation(idempotent=True)
    async def can_view(self, viewer_id: Optional[int], content: Content) -> bool:
        """Whether the viewer may see one piece of content."""
        if viewer_id is not None and viewer_id == content.author_id:
            return True

        author = await self.graph.get_profile(content.author_id)
        if author is None:
            logger.debug("Author %s of content not found, hiding it", content.author_id)
            return False

        blocked = False
        follows_author = False
        if viewer_id is not None:
            blocked = await self.graph.is_blocked(viewer_id, author.id)
            if not blocked:
                follows_author = await self.graph.is_following(viewer_id, author.id)

        return resolve_visibility(viewer_id, content, author.is_private, follows_author, blocked)

    @storage_operation(idempotent=True)
    async def filter_visible(self, viewer_id: Optional[int], contents: Sequence[C]) -> List[C]:
        """Keep only the visible items, preserving order.

        The viewer's follow and block sets and all authors are loaded once,
        so each item is decided with set lookups.
        """
        if not contents:
            return []

        following_ids: set[int] = set()
        blocked_ids: set[int] = set()
        if viewer_id is not None:
            following_ids = await self.graph.get_following_ids(viewer_id)
            blocked_ids = await self.graph.get_blocked_ids(viewer_id)

        authors = await self.graph.get_profiles({item.author_id for item in contents})

        visible = []
        for item in contents:
            author = authors.get(item.author_id)
            if author is None:
                continue
            if resolve_visibility(
                viewer_id,
                item,
                author.is_private,
                follows_author=author.id in following_ids,
                blocked=author.id in blocked_ids,
            ):
                visible.append(item)
        return visible

    @storage_operation(idempotent=True)
    async def profile_access(self, viewer_id: Optional[int], profile: Profile) -> ProfileAccess:
        if viewer_id is None or viewer_id == profile.id:
            return resolve_profile_access(viewer_id, profile, False, False)

        blocked = await self.graph.is_blocked(viewer_id, profile.id)
        follows = not blocked and await self.graph.is_following(viewer_id, profile.id)
        return resolve_profile_access(viewer_id, profile, follows, blocked)

    @storage_operation(idempotent=True)
    async def get_profile_view(self, viewer_id: Optional[int], username: str) -> ProfileView:
        """Profile as the viewer may see it. Blocked pairs see nothing."""
        profile = await self.graph.get_by_username(username)
        if profile is None:
            raise NotFound("User not found")

        access = await self.profile_access(viewer_id, profile)
        if access == ProfileAccess.HIDDEN:
            raise NotFound("User not found")

        is_following = False
        if viewer_id is not None and viewer_id != profile.id:
            is_following = await self.graph.is_following(viewer_id, profile.id)

        view = ProfileView.model_validate(profile)
        view.is_following = is_following
        if access == ProfileAccess.RESTRICTED:
            # Only the handle and avatar of a private account are public
            view.display_name = None
            view.bio = None
            view.followers_count = None
            view.following_count = None
            view.posts_count = None
            view.is_restricted = True
        return view

    async def _connections(
        self, viewer_id: Optional[int], user_id: int, following: bool, limit: int, offset: int
    ) -> List[Profile]:
        profile = await self.graph.get_profile(user_id)
        if profile is None:
            raise NotFound("User not found")

        access = await self.profile_access(viewer_id, profile)
        if access == ProfileAccess.HIDDEN:
            raise NotFound("User not found")
        if access == ProfileAccess.RESTRICTED:
            raise Forbidden("This account is private")

        if following:
            profiles = await self.graph.get_following(user_id, limit, offset)
        else:
            profiles = await self.graph.get_followers(user_id, limit, offset)
        if viewer_id is None:
            return profiles

        blocked_ids = await self.graph.get_blocked_ids(viewer_id)
        return [p for p in profiles if p.id not in blocked_ids]

    @storage_operation(idempotent=True)
    async def get_followers(
        self, viewer_id: Optional[int], user_id: int, limit: int = 20, offset: int = 0
    ) -> List[Profile]:
        """A profile's followers, under the same rules as the profile itself.

        Blocked viewers get 404 and non-followers of a private account get
        403. Accounts blocked with the viewer are left out of the page.
        """
        return await self._connections(viewer_id, user_id, False, limit, offset)

    @storage_operation(idempotent=True)
    async def get_following(
        self, viewer_id: Optional[int], user_id: int, limit: int = 20, offset: int = 0
    ) -> List[Profile]:
        return await self._connections(viewer_id, user_id, True, limit, offset)
