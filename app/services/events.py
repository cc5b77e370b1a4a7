"""Domain events emitted by the conversation lifecycle after commit.

Events go to in-process handlers first, then to the Redis realtime channel
so that every server instance can forward them to connected participants.
Publishing is best effort: the write has already committed, so a failing
handler or relay is logged and skipped.
"""
import enum
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from app.config import settings
from app.core.redis import RedisClient
from app.database import utcnow

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    MESSAGE_SENT = "message_sent"
    MESSAGES_READ = "messages_read"
    MESSAGE_DELETED = "message_deleted"
    DELETION_REQUESTED = "deletion_requested"
    DELETION_CANCELLED = "deletion_cancelled"
    CONVERSATION_DELETED = "conversation_deleted"


@dataclass
class DomainEvent:
    type: EventType
    conversation_id: int
    actor_id: int
    participant_ids: List[int]
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "conversation_id": self.conversation_id,
            "actor_id": self.actor_id,
            "participant_ids": list(self.participant_ids),
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


Handler = Callable[[DomainEvent], Union[None, Awaitable[None]]]


class EventPublisher:
    def __init__(self, redis: Optional[RedisClient] = None, channel: Optional[str] = None):
        self.redis = redis
        self.channel = channel or settings.realtime_channel
        self._handlers: List[Handler] = []

    def subscribe(self, handler: Handler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: Handler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def publish(self, event: DomainEvent) -> None:
        logger.info(
            "Event %s on conversation %s by user %s",
            event.type.value, event.conversation_id, event.actor_id,
        )

        for handler in list(self._handlers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.error("Event handler %r failed", handler, exc_info=True)

        if self.redis is None:
            return
        try:
            await self.redis.publish_json(self.channel, event.to_dict())
        except Exception as exc:
            logger.warning("Could not relay %s event: %s", event.type.value, exc)


class EventOutbox:
    """Events held back until the operation that raised them has returned.

    Services add events right after committing; ``storage_operation``
    flushes them once the deadline-bound part of the call is over, or
    discards them when the call fails.
    """

    def __init__(self, publisher: EventPublisher):
        self.publisher = publisher
        self._events: List[DomainEvent] = []

    def __len__(self) -> int:
        return len(self._events)

    def add(self, event: DomainEvent) -> None:
        self._events.append(event)

    def discard(self) -> None:
        self._events.clear()

    async def flush(self) -> None:
        events, self._events = self._events, []
        for event in events:
            await self.publisher.publish(event)
