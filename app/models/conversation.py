from datetime import datetime
from sqlalchemy import Integer, DateTime, ForeignKey, Index, CheckConstraint, Text
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base, utcnow


class Conversation(Base):
    """A one-to-one conversation.

    Participants are stored in sorted order (participant1_id < participant2_id)
    so the unique index on the pair covers both orderings.
    """

    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    participant1_id: Mapped[int] = mapped_column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    participant2_id: Mapped[int] = mapped_column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_message_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    __table_args__ = (
        Index("idx_conversation_pair", "participant1_id", "participant2_id", unique=True),
        Index("idx_conversation_participant2", "participant2_id"),
        CheckConstraint("participant1_id < participant2_id", name="ck_conversation_sorted_pair"),
    )

    @property
    def participant_ids(self) -> tuple[int, int]:
        return (self.participant1_id, self.participant2_id)

    def has_participant(self, user_id: int) -> bool:
        return user_id in self.participant_ids

    def other_participant(self, user_id: int) -> int:
        if user_id == self.participant1_id:
            return self.participant2_id
        return self.participant1_id

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id}, pair=({self.participant1_id}, {self.participant2_id}))>"


class Message(Base):
    __tablename__ = "messages"

    # The store-assigned id defines delivery order within a conversation
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[int] = mapped_column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    read_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_message_conversation", "conversation_id", "id"),
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, conversation_id={self.conversation_id})>"


class ConversationDeletionRequest(Base):
    __tablename__ = "conversation_deletion_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    conversation_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    requested_by: Mapped[int] = mapped_column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def __repr__(self) -> str:
        return (
            f"<ConversationDeletionRequest(conversation_id={self.conversation_id}, "
            f"requested_by={self.requested_by})>"
        )
