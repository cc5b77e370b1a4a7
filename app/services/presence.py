"""Ephemeral typing presence, scoped to a conversation.

Nothing here is persisted. Subscriptions live in this process only and are
lost on restart; clients recover because typing state clears itself.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set

from app.config import settings

logger = logging.getLogger(__name__)


class PresenceEventType(str, enum.Enum):
    TYPING = "typing"
    STOP_TYPING = "stop_typing"


@dataclass(frozen=True)
class PresenceEvent:
    type: PresenceEventType
    conversation_id: int
    user_id: int

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "conversation_id": self.conversation_id,
            "user_id": self.user_id,
        }


PresenceCallback = Callable[[PresenceEvent], Awaitable[None]]


class Subscription:
    def __init__(self, hub: "PresenceHub", conversation_id: int, user_id: int, callback: PresenceCallback):
        self.hub = hub
        self.conversation_id = conversation_id
        self.user_id = user_id
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        if not self.closed:
            self.hub._remove(self)
            self.closed = True


class PresenceHub:
    """Per-conversation broadcast topics for typing events.

    Events reach every subscriber of the conversation except the sender.
    Delivery is best effort; a failing subscriber is logged and skipped.
    """

    def __init__(self):
        self._topics: Dict[int, Set[Subscription]] = {}

    def subscribe(self, conversation_id: int, user_id: int, callback: PresenceCallback) -> Subscription:
        subscription = Subscription(self, conversation_id, user_id, callback)
        self._topics.setdefault(conversation_id, set()).add(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        topic = self._topics.get(subscription.conversation_id)
        if topic is None:
            return
        topic.discard(subscription)
        if not topic:
            del self._topics[subscription.conversation_id]

    def subscriber_count(self, conversation_id: int) -> int:
        return len(self._topics.get(conversation_id, ()))

    def close_conversation(self, conversation_id: int) -> int:
        """Drop every subscription to a conversation, e.g. once it is deleted."""
        topic = self._topics.pop(conversation_id, set())
        for subscription in topic:
            subscription.closed = True
        return len(topic)

    async def publish(self, event: PresenceEvent) -> int:
        """Deliver an event; returns the number of subscribers reached."""
        delivered = 0
        for subscription in list(self._topics.get(event.conversation_id, ())):
            if subscription.user_id == event.user_id:
                continue
            try:
                await subscription.callback(event)
                delivered += 1
            except Exception:
                logger.warning(
                    "Dropping %s event for user %s in conversation %s",
                    event.type.value, subscription.user_id, event.conversation_id,
                    exc_info=True,
                )
        return delivered

    async def send_typing(self, conversation_id: int, user_id: int) -> int:
        return await self.publish(PresenceEvent(PresenceEventType.TYPING, conversation_id, user_id))

    async def send_stop_typing(self, conversation_id: int, user_id: int) -> int:
        return await self.publish(PresenceEvent(PresenceEventType.STOP_TYPING, conversation_id, user_id))


class TypingState:
    """Who is typing, as seen by one subscriber.

    A ``typing`` event sets the flag for its sender and schedules it to clear
    after ``auto_clear_seconds`` unless another ``typing`` arrives first.
    ``stop_typing`` clears it at once. Usable directly as a hub callback.
    """

    def __init__(self, auto_clear_seconds: Optional[float] = None):
        if auto_clear_seconds is None:
            auto_clear_seconds = settings.typing_auto_clear_seconds
        self.auto_clear_seconds = auto_clear_seconds
        self._timers: Dict[int, asyncio.TimerHandle] = {}

    async def __call__(self, event: PresenceEvent) -> None:
        self.handle(event)

    def handle(self, event: PresenceEvent) -> None:
        if event.type == PresenceEventType.TYPING:
            self._cancel(event.user_id)
            loop = asyncio.get_running_loop()
            self._timers[event.user_id] = loop.call_later(
                self.auto_clear_seconds, self._expire, event.user_id
            )
        elif event.type == PresenceEventType.STOP_TYPING:
            self._cancel(event.user_id)

    def _cancel(self, user_id: int) -> None:
        timer = self._timers.pop(user_id, None)
        if timer is not None:
            timer.cancel()

    def _expire(self, user_id: int) -> None:
        self._timers.pop(user_id, None)

    def is_typing(self, user_id: int) -> bool:
        return user_id in self._timers

    @property
    def typing_users(self) -> Set[int]:
        return set(self._timers)

    def close(self) -> None:
        for user_id in list(self._timers):
            self._cancel(user_id)


class TypingDebouncer:
    """Sender side of typing presence.

    Every keystroke publishes ``typing`` right away and restarts a timer;
    ``stop_typing`` goes out once input has been idle for
    ``debounce_seconds``, or immediately on :meth:`flush`.
    """

    def __init__(
        self,
        hub: PresenceHub,
        conversation_id: int,
        user_id: int,
        debounce_seconds: Optional[float] = None,
    ):
        if debounce_seconds is None:
            debounce_seconds = settings.typing_debounce_seconds
        self.hub = hub
        self.conversation_id = conversation_id
        self.user_id = user_id
        self.debounce_seconds = debounce_seconds
        self._stop_task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._stop_task is not None and not self._stop_task.done()

    async def keystroke(self) -> None:
        await self.hub.send_typing(self.conversation_id, self.user_id)
        self._cancel_timer()
        self._stop_task = asyncio.create_task(self._stop_after_idle())

    async def flush(self) -> None:
        """Send ``stop_typing`` now if one is pending, e.g. after sending a message."""
        if not self.pending:
            return
        self._cancel_timer()
        await self.hub.send_stop_typing(self.conversation_id, self.user_id)

    def _cancel_timer(self) -> None:
        if self._stop_task is not None:
            self._stop_task.cancel()
            self._stop_task = None

    async def _stop_after_idle(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        self._stop_task = None
        await self.hub.send_stop_typing(self.conversation_id, self.user_id)


# Global presence hub for this server instance
hub = PresenceHub()
