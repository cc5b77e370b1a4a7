from dataclasses import dataclass, field
from typing import List

import pytest

from app.core.exceptions import Forbidden, NotFound
from app.models import PrivacyLevel
from app.schemas.post import PostCreate
from app.services.graph import SocialGraphService
from app.services.post import PostService
from app.services.visibility import (
    ProfileAccess,
    VisibilityEngine,
    resolve_profile_access,
    resolve_visibility,
)


@dataclass
class FakeContent:
    author_id: int
    privacy: PrivacyLevel
    allowed_user_ids: List[int] = field(default_factory=list)


@dataclass
class FakeProfile:
    id: int
    is_private: bool


AUTHOR = 1
VIEWER = 2


class TestResolveVisibility:
    """Decision table tests for content visibility."""

    def test_author_always_sees_own_content(self):
        content = FakeContent(AUTHOR, PrivacyLevel.PRIVATE)
        assert resolve_visibility(AUTHOR, content, author_is_private=True, follows_author=False, blocked=True)

    def test_block_hides_everything(self):
        content = FakeContent(AUTHOR, PrivacyLevel.PUBLIC, [VIEWER])
        assert not resolve_visibility(VIEWER, content, author_is_private=False, follows_author=True, blocked=True)

    def test_public_post_on_public_profile(self):
        content = FakeContent(AUTHOR, PrivacyLevel.PUBLIC)
        assert resolve_visibility(VIEWER, content, False, False, False)
        assert resolve_visibility(None, content, False, False, False)

    def test_followers_post_needs_follow(self):
        content = FakeContent(AUTHOR, PrivacyLevel.FOLLOWERS)
        assert resolve_visibility(VIEWER, content, False, follows_author=True, blocked=False)
        assert not resolve_visibility(VIEWER, content, False, follows_author=False, blocked=False)
        assert not resolve_visibility(None, content, False, False, False)

    def test_private_post_needs_allow_list(self):
        content = FakeContent(AUTHOR, PrivacyLevel.PRIVATE, [VIEWER])
        assert resolve_visibility(VIEWER, content, False, False, False)
        assert not resolve_visibility(3, content, False, follows_author=True, blocked=False)

    def test_private_profile_overrides_public_post(self):
        """Test that a private account hides public posts from non-followers."""
        content = FakeContent(AUTHOR, PrivacyLevel.PUBLIC)
        assert not resolve_visibility(VIEWER, content, author_is_private=True, follows_author=False, blocked=False)
        assert not resolve_visibility(None, content, author_is_private=True, follows_author=False, blocked=False)

    def test_private_profile_followers_see_all_levels(self):
        for privacy in PrivacyLevel:
            content = FakeContent(AUTHOR, privacy)
            assert resolve_visibility(VIEWER, content, author_is_private=True, follows_author=True, blocked=False)

    def test_private_profile_allow_list_still_applies(self):
        content = FakeContent(AUTHOR, PrivacyLevel.PRIVATE, [VIEWER])
        assert resolve_visibility(VIEWER, content, author_is_private=True, follows_author=False, blocked=False)


class TestVisibilityEngine:
    """Visibility checks against the stored graph."""

    @pytest.mark.asyncio
    async def test_can_view_follows_graph(self, db_session, alice, bob):
        """Test that a followers-only post becomes visible after following."""
        post = await PostService(db_session).create(
            alice.id, PostCreate(content="Followers only", privacy=PrivacyLevel.FOLLOWERS)
        )
        engine = VisibilityEngine(db_session)

        assert not await engine.can_view(bob.id, post)

        await SocialGraphService(db_session).follow(bob.id, alice.id)

        assert await engine.can_view(bob.id, post)

    @pytest.mark.asyncio
    async def test_block_after_follow_hides_posts(self, db_session, alice, bob):
        graph = SocialGraphService(db_session)
        post = await PostService(db_session).create(alice.id, PostCreate(content="Public post"))
        await graph.follow(bob.id, alice.id)
        await graph.block(alice.id, bob.id)

        assert not await VisibilityEngine(db_session).can_view(bob.id, post)

    @pytest.mark.asyncio
    async def test_filter_visible_preserves_order(self, db_session, alice, bob, carol):
        """Test that filtering keeps only visible items in their original order."""
        posts = PostService(db_session)
        first = await posts.create(alice.id, PostCreate(content="one"))
        hidden = await posts.create(alice.id, PostCreate(content="two", privacy=PrivacyLevel.FOLLOWERS))
        third = await posts.create(carol.id, PostCreate(content="three"))
        allowed = await posts.create(
            carol.id,
            PostCreate(content="four", privacy=PrivacyLevel.PRIVATE, allowed_user_ids=[bob.id]),
        )

        visible = await VisibilityEngine(db_session).filter_visible(bob.id, [allowed, third, hidden, first])

        assert [p.id for p in visible] == [allowed.id, third.id, first.id]

    @pytest.mark.asyncio
    async def test_filter_visible_empty(self, db_session):
        assert await VisibilityEngine(db_session).filter_visible(1, []) == []

    @pytest.mark.asyncio
    async def test_missing_author_is_hidden(self, db_session, bob):
        content = FakeContent(999, PrivacyLevel.PUBLIC)
        engine = VisibilityEngine(db_session)

        assert not await engine.can_view(bob.id, content)
        assert await engine.filter_visible(bob.id, [content]) == []


class TestProfileAccess:
    """Profile view tests."""

    @pytest.mark.asyncio
    async def test_private_profile_is_restricted_for_strangers(self, db_session, make_profile, bob):
        await make_profile("dana", is_private=True, bio="secret bio")

        view = await VisibilityEngine(db_session).get_profile_view(bob.id, "dana")

        assert view.is_restricted
        assert view.bio is None
        assert view.username == "dana"
        assert view.display_name is None
        assert view.posts_count is None

    @pytest.mark.asyncio
    async def test_private_profile_is_full_for_followers(self, db_session, make_profile, bob):
        dana = await make_profile("dana", is_private=True, bio="secret bio")
        await SocialGraphService(db_session).follow(bob.id, dana.id)

        view = await VisibilityEngine(db_session).get_profile_view(bob.id, "dana")

        assert not view.is_restricted
        assert view.bio == "secret bio"
        assert view.is_following

    @pytest.mark.asyncio
    async def test_anonymous_viewer(self, db_session, alice, make_profile):
        await make_profile("dana", is_private=True)
        engine = VisibilityEngine(db_session)

        assert (await engine.get_profile_view(None, "alice")).bio == "Hello from Alice"
        assert (await engine.get_profile_view(None, "dana")).is_restricted

    @pytest.mark.asyncio
    async def test_blocked_profile_is_hidden(self, db_session, alice, bob):
        await SocialGraphService(db_session).block(alice.id, bob.id)
        engine = VisibilityEngine(db_session)

        assert await engine.profile_access(bob.id, alice) == ProfileAccess.HIDDEN
        with pytest.raises(NotFound):
            await engine.get_profile_view(bob.id, "alice")

    @pytest.mark.asyncio
    async def test_unknown_username(self, db_session, bob):
        with pytest.raises(NotFound):
            await VisibilityEngine(db_session).get_profile_view(bob.id, "nobody")

    @pytest.mark.asyncio
    async def test_private_connections_need_a_follow(self, db_session, make_profile, alice, bob, carol):
        dana = await make_profile("dana", is_private=True)
        graph = SocialGraphService(db_session)
        await graph.follow(bob.id, dana.id)
        await graph.follow(dana.id, alice.id)
        engine = VisibilityEngine(db_session)

        with pytest.raises(Forbidden):
            await engine.get_followers(None, dana.id)
        with pytest.raises(Forbidden):
            await engine.get_following(carol.id, dana.id)

        assert [p.username for p in await engine.get_followers(bob.id, dana.id)] == ["bob"]
        assert [p.username for p in await engine.get_following(bob.id, dana.id)] == ["alice"]

    @pytest.mark.asyncio
    async def test_connections_hidden_from_blocked_viewer(self, db_session, alice, bob):
        graph = SocialGraphService(db_session)
        await graph.follow(bob.id, alice.id)
        await graph.block(alice.id, bob.id)
        engine = VisibilityEngine(db_session)

        with pytest.raises(NotFound):
            await engine.get_followers(bob.id, alice.id)

    @pytest.mark.asyncio
    async def test_blocked_accounts_left_out_of_connections(self, db_session, alice, bob, carol):
        graph = SocialGraphService(db_session)
        await graph.follow(bob.id, alice.id)
        await graph.follow(carol.id, alice.id)
        await graph.block(carol.id, bob.id)

        followers = await VisibilityEngine(db_session).get_followers(bob.id, alice.id)

        assert [p.username for p in followers] == ["bob"]

    def test_own_profile_is_full(self):
        profile = FakeProfile(id=5, is_private=True)

        assert resolve_profile_access(5, profile, follows_profile=False, blocked=False) == ProfileAccess.FULL

    def test_private_profile_restricted_for_anonymous(self):
        profile = FakeProfile(id=5, is_private=True)

        assert resolve_profile_access(None, profile, False, False) == ProfileAccess.RESTRICTED
