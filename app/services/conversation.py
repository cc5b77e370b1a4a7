"""Conversation lifecycle: creation, messages, read state and deletion.

Deletion needs both participants. The first ``request_conversation_deletion``
leaves a pending request that expires after ``deletion_request_ttl_days``;
the conversation is purged when the other participant approves it, or asks
for deletion themselves while it is still pending. Expired requests are
treated as absent by every read, no sweeper removes them.
"""
import logging
from datetime import timedelta
from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, or_, func
from sqlalchemy.exc import IntegrityError
from app.config import settings
from app.core.exceptions import (
    AlreadyRequestedBySelf,
    Conflict,
    ContentBlocked,
    Forbidden,
    NotFound,
    NotParticipant,
    RequestNotFound,
    ValidationError,
)
from app.core.redis import RedisClient
from app.core.resilience import storage_operation
from app.database import utcnow
from app.models import Conversation, Message, ConversationDeletionRequest
from app.schemas.conversation import (
    ConversationSummary,
    DeletionOutcome,
    DeletionRequestResponse,
    MessageHistory,
    MessageResponse,
)
from app.schemas.user import ProfileSummary
from app.services.events import DomainEvent, EventOutbox, EventPublisher, EventType
from app.services.graph import SocialGraphService
from app.services.moderation import ModerationFilter, default_filter

logger = logging.getLogger(__name__)


class ConversationService:
    """Conversation service for messaging and mutual-consent deletion."""

    def __init__(
        self,
        db: AsyncSession,
        redis: Optional[RedisClient] = None,
        events: Optional[EventPublisher] = None,
        moderation: Optional[ModerationFilter] = None,
    ):
        self.db = db
        self.events = events or EventPublisher(redis)
        self.outbox = EventOutbox(self.events)
        self.moderation = moderation or default_filter
        self.graph = SocialGraphService(db)

    async def _find_pair(self, first: int, second: int) -> Optional[Conversation]:
        result = await self.db.execute(
            select(Conversation).where(
                Conversation.participant1_id == first,
                Conversation.participant2_id == second,
            )
        )
        return result.scalar_one_or_none()

    async def _get_for_participant(self, conversation_id: int, user_id: int) -> Conversation:
        result = await self.db.execute(
            select(Conversation).where(Conversation.id == conversation_id)
        )
        conversation = result.scalar_one_or_none()
        if conversation is None:
            raise NotFound("Conversation not found")
        if not conversation.has_participant(user_id):
            raise NotParticipant()
        return conversation

    async def _get_request_row(self, conversation_id: int) -> Optional[ConversationDeletionRequest]:
        result = await self.db.execute(
            select(ConversationDeletionRequest)
            .where(ConversationDeletionRequest.conversation_id == conversation_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _load_active_request(self, conversation_id: int) -> Optional[ConversationDeletionRequest]:
        """The pending request, or None if there is none or it has expired."""
        request = await self._get_request_row(conversation_id)
        if request is not None and request.is_expired(utcnow()):
            return None
        return request

    @storage_operation(idempotent=True)
    async def get_conversation(self, conversation_id: int, user_id: int) -> Conversation:
        """Get a conversation the user takes part in."""
        return await self._get_for_participant(conversation_id, user_id)

    @storage_operation(idempotent=True)
    async def start_or_get_conversation(self, user_a: int, user_b: int) -> Conversation:
        """Return the pair's conversation, creating it on first use.

        Participants are stored sorted, so the unique pair index collapses
        concurrent creations into one row; the losing transaction re-reads.
        """
        if user_a == user_b:
            raise ValidationError("Cannot start a conversation with yourself")

        first, second = sorted((user_a, user_b))
        existing = await self._find_pair(first, second)
        if existing:
            return existing

        profiles = await self.graph.get_profiles((first, second))
        if len(profiles) != 2:
            raise NotFound("User not found")

        if await self.graph.is_blocked(first, second):
            raise Forbidden("You cannot message this user")

        now = utcnow()
        conversation = Conversation(
            participant1_id=first,
            participant2_id=second,
            created_at=now,
            last_message_at=now,
        )
        self.db.add(conversation)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info("Conversation (%s, %s) was created concurrently, re-reading", first, second)
            existing = await self._find_pair(first, second)
            if existing is None:
                raise Conflict()
            return existing

        logger.info("Started conversation %s between %s and %s", conversation.id, first, second)
        return conversation

    @storage_operation()
    async def send_message(self, conversation_id: int, sender_id: int, content: str) -> Message:
        """Append a message and bump the conversation's last activity."""
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message content cannot be empty")

        verdict = self.moderation.moderate(text)
        if not verdict.clean:
            logger.info("Message from user %s rejected by moderation", sender_id)
            raise ContentBlocked(verdict.reason)

        conversation = await self._get_for_participant(conversation_id, sender_id)
        recipient_id = conversation.other_participant(sender_id)
        if await self.graph.is_blocked(sender_id, recipient_id):
            raise Forbidden("You cannot message this user")

        now = utcnow()
        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            content=text,
            created_at=now,
        )
        self.db.add(message)
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation.id)
            .values(last_message_at=now)
        )
        await self.db.commit()

        self.outbox.add(DomainEvent(
            type=EventType.MESSAGE_SENT,
            conversation_id=conversation.id,
            actor_id=sender_id,
            participant_ids=list(conversation.participant_ids),
            payload={
                "message_id": message.id,
                "content": message.content,
                "created_at": message.created_at.isoformat(),
            },
        ))
        return message

    @storage_operation(idempotent=True)
    async def mark_read(self, conversation_id: int, reader_id: int) -> int:
        """Mark every unread message from the other participant as read.

        Returns how many messages changed state; a repeat call returns 0.
        """
        conversation = await self._get_for_participant(conversation_id, reader_id)

        result = await self.db.execute(
            update(Message)
            .where(
                Message.conversation_id == conversation.id,
                Message.sender_id != reader_id,
                Message.read_at.is_(None),
            )
            .values(read_at=utcnow())
            .execution_options(synchronize_session="evaluate")
        )
        marked = result.rowcount or 0
        await self.db.commit()

        if marked:
            self.outbox.add(DomainEvent(
                type=EventType.MESSAGES_READ,
                conversation_id=conversation.id,
                actor_id=reader_id,
                participant_ids=list(conversation.participant_ids),
                payload={"count": marked},
            ))
        return marked

    @storage_operation()
    async def delete_message(self, message_id: int, requester_id: int) -> None:
        """Hard-delete a message. Only its sender may do so."""
        result = await self.db.execute(select(Message).where(Message.id == message_id))
        message = result.scalar_one_or_none()
        if message is None:
            raise NotFound("Message not found")
        if message.sender_id != requester_id:
            raise Forbidden("You can only delete your own messages")

        conversation_id = message.conversation_id
        conversation = await self.db.get(Conversation, conversation_id)
        await self.db.delete(message)
        await self.db.commit()

        participant_ids = list(conversation.participant_ids) if conversation else [requester_id]
        self.outbox.add(DomainEvent(
            type=EventType.MESSAGE_DELETED,
            conversation_id=conversation_id,
            actor_id=requester_id,
            participant_ids=participant_ids,
            payload={"message_id": message_id},
        ))

    @storage_operation(idempotent=True)
    async def get_messages(
        self,
        conversation_id: int,
        viewer_id: int,
        limit: int = 50,
        before_id: Optional[int] = None,
    ) -> MessageHistory:
        """Message history in delivery order, paging backwards by id."""
        conversation = await self._get_for_participant(conversation_id, viewer_id)

        query = (
            select(Message)
            .where(Message.conversation_id == conversation.id)
            .order_by(Message.id.desc())
            .limit(limit + 1)
        )
        if before_id:
            query = query.where(Message.id < before_id)

        result = await self.db.execute(query)
        messages = list(result.scalars().all())

        has_more = len(messages) > limit
        if has_more:
            messages = messages[:limit]
        messages.reverse()

        next_cursor = None
        if has_more and messages:
            next_cursor = str(messages[0].id)

        return MessageHistory(
            messages=[MessageResponse.model_validate(m) for m in messages],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    @storage_operation(idempotent=True)
    async def list_conversations(self, user_id: int) -> List[ConversationSummary]:
        """The user's conversations, most recently active first."""
        result = await self.db.execute(
            select(Conversation)
            .where(or_(
                Conversation.participant1_id == user_id,
                Conversation.participant2_id == user_id,
            ))
            .order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
        )
        conversations = list(result.scalars().all())
        if not conversations:
            return []

        ids = [c.id for c in conversations]
        others = await self.graph.get_profiles([c.other_participant(user_id) for c in conversations])

        unread_rows = await self.db.execute(
            select(Message.conversation_id, func.count(Message.id))
            .where(
                Message.conversation_id.in_(ids),
                Message.sender_id != user_id,
                Message.read_at.is_(None),
            )
            .group_by(Message.conversation_id)
        )
        unread = {conversation_id: count for conversation_id, count in unread_rows.all()}

        latest_ids = (
            select(func.max(Message.id))
            .where(Message.conversation_id.in_(ids))
            .group_by(Message.conversation_id)
        )
        last_rows = await self.db.execute(select(Message).where(Message.id.in_(latest_ids)))
        last_messages = {m.conversation_id: m for m in last_rows.scalars().all()}

        request_rows = await self.db.execute(
            select(ConversationDeletionRequest).where(
                ConversationDeletionRequest.conversation_id.in_(ids),
                ConversationDeletionRequest.expires_at >= utcnow(),
            )
        )
        requests = {r.conversation_id: r for r in request_rows.scalars().all()}

        summaries = []
        for conversation in conversations:
            other = others.get(conversation.other_participant(user_id))
            last_message = last_messages.get(conversation.id)
            request = requests.get(conversation.id)
            summaries.append(ConversationSummary(
                id=conversation.id,
                other_user=ProfileSummary.model_validate(other) if other else None,
                last_message_at=conversation.last_message_at,
                last_message=MessageResponse.model_validate(last_message) if last_message else None,
                unread_count=unread.get(conversation.id, 0),
                deletion_request=DeletionRequestResponse.model_validate(request) if request else None,
            ))
        return summaries

    @storage_operation(idempotent=True)
    async def get_active_deletion_request(
        self, conversation_id: int, user_id: int
    ) -> Optional[ConversationDeletionRequest]:
        await self._get_for_participant(conversation_id, user_id)
        return await self._load_active_request(conversation_id)

    async def _purge(self, conversation: Conversation, actor_id: int, request_id: int) -> None:
        """Delete the conversation, its messages and its request in one transaction.

        The request row is claimed first; if a concurrent cancel already
        removed it, nothing is deleted.
        """
        conversation_id = conversation.id
        participant_ids = list(conversation.participant_ids)

        claimed = await self.db.execute(
            delete(ConversationDeletionRequest)
            .where(ConversationDeletionRequest.id == request_id)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            await self.db.rollback()
            raise RequestNotFound()

        await self.db.execute(
            delete(Message)
            .where(Message.conversation_id == conversation_id)
            .execution_options(synchronize_session=False)
        )
        removed = await self.db.execute(
            delete(Conversation)
            .where(Conversation.id == conversation_id)
            .execution_options(synchronize_session=False)
        )
        if removed.rowcount == 0:
            await self.db.rollback()
            raise NotFound("Conversation not found")
        await self.db.commit()
        self.db.expunge_all()

        logger.info("Conversation %s deleted by agreement of %s", conversation_id, participant_ids)
        self.outbox.add(DomainEvent(
            type=EventType.CONVERSATION_DELETED,
            conversation_id=conversation_id,
            actor_id=actor_id,
            participant_ids=participant_ids,
        ))

    @storage_operation()
    async def request_conversation_deletion(self, conversation_id: int, requester_id: int) -> DeletionOutcome:
        """Ask to delete a conversation.

        If the other participant already has a pending request this counts as
        their approval and the conversation is purged immediately. Asking
        again while your own request is pending changes nothing.
        """
        for _ in range(2):
            conversation = await self._get_for_participant(conversation_id, requester_id)
            now = utcnow()

            pending = await self._get_request_row(conversation.id)
            if pending is not None and pending.is_expired(now):
                # Free the slot held by the lapsed request
                await self.db.execute(
                    delete(ConversationDeletionRequest)
                    .where(ConversationDeletionRequest.id == pending.id)
                    .execution_options(synchronize_session=False)
                )
                self.db.expunge(pending)
                pending = None

            if pending is not None:
                if pending.requested_by == requester_id:
                    return DeletionOutcome(
                        deleted=False,
                        request=DeletionRequestResponse.model_validate(pending),
                    )
                await self._purge(conversation, requester_id, pending.id)
                return DeletionOutcome(deleted=True)

            request = ConversationDeletionRequest(
                conversation_id=conversation.id,
                requested_by=requester_id,
                requested_at=now,
                expires_at=now + timedelta(days=settings.deletion_request_ttl_days),
            )
            self.db.add(request)
            try:
                await self.db.commit()
            except IntegrityError:
                # The other participant asked at the same moment
                await self.db.rollback()
                logger.info("Concurrent deletion request on conversation %s, re-evaluating", conversation_id)
                continue

            logger.info("User %s requested deletion of conversation %s", requester_id, conversation.id)
            self.outbox.add(DomainEvent(
                type=EventType.DELETION_REQUESTED,
                conversation_id=conversation.id,
                actor_id=requester_id,
                participant_ids=list(conversation.participant_ids),
                payload={"expires_at": request.expires_at.isoformat()},
            ))
            return DeletionOutcome(
                deleted=False,
                request=DeletionRequestResponse.model_validate(request),
            )

        raise Conflict()

    @storage_operation()
    async def cancel_deletion_request(self, conversation_id: int, requester_id: int) -> None:
        """Withdraw your own pending deletion request."""
        conversation = await self._get_for_participant(conversation_id, requester_id)
        request = await self._load_active_request(conversation.id)
        if request is None:
            raise RequestNotFound()
        if request.requested_by != requester_id:
            raise Forbidden("Only the requester can cancel a deletion request")

        result = await self.db.execute(
            delete(ConversationDeletionRequest)
            .where(ConversationDeletionRequest.id == request.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise RequestNotFound()
        await self.db.commit()
        self.db.expunge(request)

        logger.info("User %s cancelled deletion of conversation %s", requester_id, conversation.id)
        self.outbox.add(DomainEvent(
            type=EventType.DELETION_CANCELLED,
            conversation_id=conversation.id,
            actor_id=requester_id,
            participant_ids=list(conversation.participant_ids),
        ))

    @storage_operation()
    async def approve_deletion_request(self, conversation_id: int, approver_id: int) -> DeletionOutcome:
        """Approve the other participant's request, purging the conversation."""
        conversation = await self._get_for_participant(conversation_id, approver_id)
        request = await self._load_active_request(conversation.id)
        if request is None:
            raise RequestNotFound()
        if request.requested_by == approver_id:
            raise AlreadyRequestedBySelf()

        await self._purge(conversation, approver_id, request.id)
        return DeletionOutcome(deleted=True)
