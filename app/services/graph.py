import logging
from typing import Optional, List, Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, or_, and_
from sqlalchemy.exc import IntegrityError
from app.models import Profile, Follow, Block
from app.schemas.user import ProfileUpdate
from app.core.exceptions import ValidationError, NotFound, Forbidden
from app.core.resilience import storage_operation

logger = logging.getLogger(__name__)


class SocialGraphService:
    """Follow and block edges plus profile lookups."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @storage_operation(idempotent=True)
    async def get_profile(self, user_id: int) -> Optional[Profile]:
        """Get profile by ID."""
        result = await self.db.execute(select(Profile).where(Profile.id == user_id))
        return result.scalar_one_or_none()

    @storage_operation(idempotent=True)
    async def get_by_username(self, username: str) -> Optional[Profile]:
        """Get profile by username."""
        result = await self.db.execute(select(Profile).where(Profile.username == username))
        return result.scalar_one_or_none()

    @storage_operation(idempotent=True)
    async def get_profiles(self, user_ids: Iterable[int]) -> dict[int, Profile]:
        """Load several profiles in one query, keyed by ID."""
        ids = set(user_ids)
        if not ids:
            return {}
        result = await self.db.execute(select(Profile).where(Profile.id.in_(ids)))
        return {profile.id: profile for profile in result.scalars().all()}

    @storage_operation(idempotent=True)
    async def is_following(self, follower_id: int, following_id: int) -> bool:
        result = await self.db.execute(
            select(Follow.id).where(
                Follow.follower_id == follower_id,
                Follow.following_id == following_id
            )
        )
        return result.first() is not None

    @storage_operation(idempotent=True)
    async def is_blocked(self, user_a: int, user_b: int) -> bool:
        """True if either user has blocked the other."""
        result = await self.db.execute(
            select(Block.id).where(
                or_(
                    and_(Block.blocker_id == user_a, Block.blocked_id == user_b),
                    and_(Block.blocker_id == user_b, Block.blocked_id == user_a),
                )
            )
        )
        return result.first() is not None

    @storage_operation(idempotent=True)
    async def get_following_ids(self, user_id: int) -> set[int]:
        """IDs of every profile the user follows."""
        result = await self.db.execute(
            select(Follow.following_id).where(Follow.follower_id == user_id)
        )
        return {row[0] for row in result.fetchall()}

    @storage_operation(idempotent=True)
    async def get_blocked_ids(self, user_id: int) -> set[int]:
        """IDs on the other side of a block with the user, in either direction."""
        blocked = await self.db.execute(
            select(Block.blocked_id).where(Block.blocker_id == user_id)
        )
        blockers = await self.db.execute(
            select(Block.blocker_id).where(Block.blocked_id == user_id)
        )
        return {row[0] for row in blocked.fetchall()} | {row[0] for row in blockers.fetchall()}

    @storage_operation()
    async def update_profile(self, user_id: int, data: ProfileUpdate) -> Profile:
        """Update profile fields, including the account privacy flag."""
        profile = await self.get_profile(user_id)
        if not profile:
            raise NotFound("User not found")

        update_data = data.model_dump(exclude_unset=True)
        if update_data:
            await self.db.execute(
                update(Profile).where(Profile.id == user_id).values(**update_data)
            )
            await self.db.commit()
            await self.db.refresh(profile)

        return profile

    @storage_operation()
    async def follow(self, follower_id: int, following_id: int) -> bool:
        """Follow a user."""
        if follower_id == following_id:
            raise ValidationError("Cannot follow yourself")

        target = await self.get_profile(following_id)
        if not target:
            raise NotFound("User not found")

        if await self.is_blocked(follower_id, following_id):
            raise Forbidden("Cannot follow this user")

        if await self.is_following(follower_id, following_id):
            raise ValidationError("Already following this user")

        self.db.add(Follow(follower_id=follower_id, following_id=following_id))

        # Counters move in the same transaction as the edge
        await self.db.execute(
            update(Profile).where(Profile.id == follower_id)
            .values(following_count=Profile.following_count + 1)
        )
        await self.db.execute(
            update(Profile).where(Profile.id == following_id)
            .values(followers_count=Profile.followers_count + 1)
        )

        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent follow of the same pair committed first
            await self.db.rollback()
            raise ValidationError("Already following this user")

        logger.info("User %s followed %s", follower_id, following_id)
        return True

    @storage_operation()
    async def unfollow(self, follower_id: int, following_id: int) -> bool:
        """Unfollow a user."""
        result = await self.db.execute(
            delete(Follow).where(
                Follow.follower_id == follower_id,
                Follow.following_id == following_id
            )
        )
        if result.rowcount == 0:
            raise ValidationError("Not following this user")

        await self.db.execute(
            update(Profile).where(Profile.id == follower_id)
            .values(following_count=Profile.following_count - 1)
        )
        await self.db.execute(
            update(Profile).where(Profile.id == following_id)
            .values(followers_count=Profile.followers_count - 1)
        )
        await self.db.commit()

        logger.info("User %s unfollowed %s", follower_id, following_id)
        return True

    @storage_operation()
    async def block(self, blocker_id: int, blocked_id: int) -> bool:
        """Block a user. Existing follow edges are kept; the block overrides them."""
        if blocker_id == blocked_id:
            raise ValidationError("Cannot block yourself")

        target = await self.get_profile(blocked_id)
        if not target:
            raise NotFound("User not found")

        existing = await self.db.execute(
            select(Block.id).where(Block.blocker_id == blocker_id, Block.blocked_id == blocked_id)
        )
        if existing.first() is not None:
            raise ValidationError("User is already blocked")

        self.db.add(Block(blocker_id=blocker_id, blocked_id=blocked_id))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ValidationError("User is already blocked")

        logger.info("User %s blocked %s", blocker_id, blocked_id)
        return True

    @storage_operation()
    async def unblock(self, blocker_id: int, blocked_id: int) -> bool:
        result = await self.db.execute(
            delete(Block).where(Block.blocker_id == blocker_id, Block.blocked_id == blocked_id)
        )
        if result.rowcount == 0:
            raise ValidationError("User is not blocked")
        await self.db.commit()

        logger.info("User %s unblocked %s", blocker_id, blocked_id)
        return True

    @storage_operation(idempotent=True)
    async def get_followers(self, user_id: int, limit: int = 20, offset: int = 0) -> List[Profile]:
        """Get user's followers."""
        result = await self.db.execute(
            select(Profile)
            .join(Follow, Follow.follower_id == Profile.id)
            .where(Follow.following_id == user_id)
            .order_by(Follow.created_at.desc(), Follow.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    @storage_operation(idempotent=True)
    async def get_following(self, user_id: int, limit: int = 20, offset: int = 0) -> List[Profile]:
        """Get users that user is following."""
        result = await self.db.execute(
            select(Profile)
            .join(Follow, Follow.following_id == Profile.id)
            .where(Follow.follower_id == user_id)
            .order_by(Follow.created_at.desc(), Follow.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())
