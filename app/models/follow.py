from datetime import datetime
from sqlalchemy import Integer, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base, utcnow


class Follow(Base):
    __tablename__ = "follows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    follower_id: Mapped[int] = mapped_column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    following_id: Mapped[int] = mapped_column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("idx_follower", "follower_id"),
        Index("idx_following", "following_id"),
        Index("idx_follow_pair", "follower_id", "following_id", unique=True),
        CheckConstraint("follower_id <> following_id", name="ck_follow_not_self"),
    )

    def __repr__(self) -> str:
        return f"<Follow(follower={self.follower_id}, following={self.following_id})>"


class Block(Base):
    """A block hides each party from the other, whichever side created it."""

    __tablename__ = "blocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    blocker_id: Mapped[int] = mapped_column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    blocked_id: Mapped[int] = mapped_column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index("idx_blocker", "blocker_id"),
        Index("idx_blocked", "blocked_id"),
        Index("idx_block_pair", "blocker_id", "blocked_id", unique=True),
        CheckConstraint("blocker_id <> blocked_id", name="ck_block_not_self"),
    )

    def __repr__(self) -> str:
        return f"<Block(blocker={self.blocker_id}, blocked={self.blocked_id})>"
