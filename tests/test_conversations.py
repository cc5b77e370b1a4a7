import asyncio

import pytest
from sqlalchemy import func, select

from app.core.exceptions import ContentBlocked, Forbidden, NotFound, NotParticipant, ValidationError
from app.models import Conversation
from app.services.conversation import ConversationService
from app.services.events import EventPublisher
from app.services.graph import SocialGraphService


class TestStartConversation:
    """Conversation creation tests."""

    @pytest.mark.asyncio
    async def test_start_is_idempotent_and_order_independent(self, db_session, alice, bob):
        """Test that both orderings of the pair resolve to one conversation."""
        service = ConversationService(db_session)

        first = await service.start_or_get_conversation(bob.id, alice.id)
        second = await service.start_or_get_conversation(alice.id, bob.id)

        assert first.id == second.id
        assert first.participant1_id == min(alice.id, bob.id)
        assert first.participant2_id == max(alice.id, bob.id)

    @pytest.mark.asyncio
    async def test_concurrent_starts_create_one_row(self, session_factory, alice, bob):
        """Test that racing creations from separate sessions converge on one conversation."""

        async def start(a, b):
            async with session_factory() as session:
                conversation = await ConversationService(session).start_or_get_conversation(a, b)
                return conversation.id

        ids = await asyncio.gather(*[
            start(alice.id, bob.id) if i % 2 else start(bob.id, alice.id)
            for i in range(4)
        ])

        assert len(set(ids)) == 1
        async with session_factory() as session:
            count = await session.scalar(select(func.count(Conversation.id)))
        assert count == 1

    @pytest.mark.asyncio
    async def test_start_with_self_fails(self, db_session, alice):
        with pytest.raises(ValidationError):
            await ConversationService(db_session).start_or_get_conversation(alice.id, alice.id)

    @pytest.mark.asyncio
    async def test_start_with_unknown_user(self, db_session, alice):
        with pytest.raises(NotFound):
            await ConversationService(db_session).start_or_get_conversation(alice.id, 999)

    @pytest.mark.asyncio
    async def test_start_with_blocked_user(self, db_session, alice, bob):
        await SocialGraphService(db_session).block(bob.id, alice.id)

        with pytest.raises(Forbidden):
            await ConversationService(db_session).start_or_get_conversation(alice.id, bob.id)


class TestMessages:
    """Message send, read and delete tests."""

    @pytest.mark.asyncio
    async def test_send_message(self, db_session, mock_redis, alice, bob):
        """Test sending a message updates activity and emits an event."""
        service = ConversationService(db_session, mock_redis)
        conversation = await service.start_or_get_conversation(alice.id, bob.id)
        started_at = conversation.last_message_at

        message = await service.send_message(conversation.id, alice.id, "  Hi Bob  ")

        assert message.content == "Hi Bob"
        assert message.read_at is None
        refreshed = await service.get_conversation(conversation.id, bob.id)
        assert refreshed.last_message_at >= started_at

        events = mock_redis.events("message_sent")
        assert len(events) == 1
        assert events[0]["payload"]["message_id"] == message.id
        assert sorted(events[0]["participant_ids"]) == sorted([alice.id, bob.id])

    @pytest.mark.asyncio
    async def test_empty_message_is_rejected(self, db_session, alice, bob):
        service = ConversationService(db_session)
        conversation = await service.start_or_get_conversation(alice.id, bob.id)

        with pytest.raises(ValidationError):
            await service.send_message(conversation.id, alice.id, "   ")

    @pytest.mark.asyncio
    async def test_moderated_message_is_not_stored(self, db_session, mock_redis, alice, bob):
        service = ConversationService(db_session, mock_redis)
        conversation = await service.start_or_get_conversation(alice.id, bob.id)

        with pytest.raises(ContentBlocked):
            await service.send_message(conversation.id, alice.id, "shut up, moron")

        history = await service.get_messages(conversation.id, alice.id)
        assert history.messages == []
        assert mock_redis.published == []

    @pytest.mark.asyncio
    async def test_non_participant_cannot_send(self, db_session, alice, bob, carol):
        service = ConversationService(db_session)
        conversation = await service.start_or_get_conversation(alice.id, bob.id)

        with pytest.raises(NotParticipant):
            await service.send_message(conversation.id, carol.id, "Hello")

    @pytest.mark.asyncio
    async def test_block_stops_messaging(self, db_session, alice, bob):
        service = ConversationService(db_session)
        conversation = await service.start_or_get_conversation(alice.id, bob.id)
        await SocialGraphService(db_session).block(bob.id, alice.id)

        with pytest.raises(Forbidden):
            await service.send_message(conversation.id, alice.id, "Hello?")

    @pytest.mark.asyncio
    async def test_mark_read(self, db_session, mock_redis, alice, bob):
        """Test that only the other participant's unread messages are marked."""
        service = ConversationService(db_session, mock_redis)
        conversation = await service.start_or_get_conversation(alice.id, bob.id)
        await service.send_message(conversation.id, alice.id, "One")
        await service.send_message(conversation.id, alice.id, "Two")
        await service.send_message(conversation.id, bob.id, "Three")

        assert await service.mark_read(conversation.id, bob.id) == 2
        assert await service.mark_read(conversation.id, bob.id) == 0

        history = await service.get_messages(conversation.id, bob.id)
        read_flags = {m.content: m.read_at is not None for m in history.messages}
        assert read_flags == {"One": True, "Two": True, "Three": False}
        assert len(mock_redis.events("messages_read")) == 1

    @pytest.mark.asyncio
    async def test_delete_own_message(self, db_session, mock_redis, alice, bob):
        service = ConversationService(db_session, mock_redis)
        conversation = await service.start_or_get_conversation(alice.id, bob.id)
        message = await service.send_message(conversation.id, alice.id, "Oops")

        with pytest.raises(Forbidden):
            await service.delete_message(message.id, bob.id)

        await service.delete_message(message.id, alice.id)

        history = await service.get_messages(conversation.id, alice.id)
        assert history.messages == []
        assert mock_redis.events("message_deleted")[0]["payload"] == {"message_id": message.id}
        with pytest.raises(NotFound):
            await service.delete_message(message.id, alice.id)

    @pytest.mark.asyncio
    async def test_message_history_pagination(self, db_session, alice, bob):
        """Test that history pages backwards and each page is in delivery order."""
        service = ConversationService(db_session)
        conversation = await service.start_or_get_conversation(alice.id, bob.id)
        for i in range(5):
            await service.send_message(conversation.id, alice.id, f"Message {i}")

        latest = await service.get_messages(conversation.id, bob.id, limit=3)
        older = await service.get_messages(
            conversation.id, bob.id, limit=3, before_id=int(latest.next_cursor)
        )

        assert [m.content for m in latest.messages] == ["Message 2", "Message 3", "Message 4"]
        assert latest.has_more
        assert [m.content for m in older.messages] == ["Message 0", "Message 1"]
        assert not older.has_more


class TestListConversations:
    """Conversation list tests."""

    @pytest.mark.asyncio
    async def test_list_with_unread_counts(self, db_session, alice, bob, carol):
        service = ConversationService(db_session)
        with_bob = await service.start_or_get_conversation(alice.id, bob.id)
        with_carol = await service.start_or_get_conversation(alice.id, carol.id)
        await service.send_message(with_bob.id, bob.id, "Hey Alice")
        await service.send_message(with_bob.id, bob.id, "Are you there?")
        await service.send_message(with_carol.id, alice.id, "Hi Carol")

        summaries = await service.list_conversations(alice.id)

        assert [s.id for s in summaries] == [with_carol.id, with_bob.id]
        by_id = {s.id: s for s in summaries}
        assert by_id[with_bob.id].unread_count == 2
        assert by_id[with_bob.id].other_user.username == "bob"
        assert by_id[with_bob.id].last_message.content == "Are you there?"
        assert by_id[with_carol.id].unread_count == 0
        assert by_id[with_carol.id].deletion_request is None

    @pytest.mark.asyncio
    async def test_list_empty(self, db_session, alice):
        assert await ConversationService(db_session).list_conversations(alice.id) == []


class TestEventPublisher:
    """In-process event handler tests."""

    @pytest.mark.asyncio
    async def test_handlers_receive_events_after_commit(self, db_session, alice, bob):
        received = []
        events = EventPublisher()

        async def handler(event):
            received.append(event)

        events.subscribe(handler)
        service = ConversationService(db_session, events=events)
        conversation = await service.start_or_get_conversation(alice.id, bob.id)
        await service.send_message(conversation.id, alice.id, "Hello")

        assert [e.type.value for e in received] == ["message_sent"]
        assert received[0].actor_id == alice.id

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_break_publish(self, db_session, alice, bob):
        received = []
        events = EventPublisher()

        def broken(event):
            raise RuntimeError("handler failure")

        events.subscribe(broken)
        events.subscribe(received.append)
        service = ConversationService(db_session, events=events)
        conversation = await service.start_or_get_conversation(alice.id, bob.id)

        message = await service.send_message(conversation.id, alice.id, "Still delivered")

        assert message.id is not None
        assert len(received) == 1

        events.unsubscribe(broken)
        await service.send_message(conversation.id, alice.id, "Again")
        assert len(received) == 2


class TestMarkReadIdempotence:
    """Read-state monotonicity tests."""

    @pytest.mark.asyncio
    async def test_second_mark_read_keeps_timestamps(self, db_session, alice, bob):
        service = ConversationService(db_session)
        conversation = await service.start_or_get_conversation(alice.id, bob.id)
        await service.send_message(conversation.id, alice.id, "Ping")

        await service.mark_read(conversation.id, bob.id)
        first = [m.read_at for m in (await service.get_messages(conversation.id, bob.id)).messages]
        await service.mark_read(conversation.id, bob.id)
        second = [m.read_at for m in (await service.get_messages(conversation.id, bob.id)).messages]

        assert first == second
        assert first[0] is not None
