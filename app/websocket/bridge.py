import logging
from typing import Dict, Optional
from fastapi import WebSocket
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from app.database import AsyncSessionLocal
from app.core.exceptions import ServiceError
from app.services.conversation import ConversationService
from app.services.presence import PresenceHub, PresenceEvent, Subscription, TypingDebouncer, hub as default_hub

logger = logging.getLogger(__name__)


class PresenceBridge:
    """Connects one WebSocket client to the presence hub.

    Clients send ``subscribe``/``unsubscribe`` for a conversation they take
    part in, then ``typing``/``stop_typing`` while subscribed. Typing from
    the client goes through a :class:`TypingDebouncer`, so a client that
    stops sending keystrokes still produces ``stop_typing``.
    """

    def __init__(
        self,
        websocket: WebSocket,
        user_id: int,
        hub: Optional[PresenceHub] = None,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    ):
        self.websocket = websocket
        self.user_id = user_id
        self.hub = hub or default_hub
        self.session_factory = session_factory
        self._subscriptions: Dict[int, Subscription] = {}
        self._debouncers: Dict[int, TypingDebouncer] = {}

    async def handle(self, data: dict) -> Optional[dict]:
        """Process one client message and return the reply, if any."""
        msg_type = data.get("type")

        if msg_type == "ping":
            return {"type": "pong"}

        conversation_id = data.get("conversation_id")
        if not isinstance(conversation_id, int):
            return self._error("conversation_id is required", "validation_error")

        if msg_type == "subscribe":
            return await self.subscribe(conversation_id)
        elif msg_type == "unsubscribe":
            await self.unsubscribe(conversation_id)
            return {"type": "unsubscribed", "conversation_id": conversation_id}
        elif msg_type in ("typing", "stop_typing"):
            if not self.is_subscribed(conversation_id):
                return self._error("Not subscribed to this conversation", "forbidden")
            debouncer = self._debouncers[conversation_id]
            if msg_type == "typing":
                await debouncer.keystroke()
            else:
                await debouncer.flush()
            return None

        return self._error(f"Unknown message type: {msg_type}", "validation_error")

    def is_subscribed(self, conversation_id: int) -> bool:
        subscription = self._subscriptions.get(conversation_id)
        return subscription is not None and not subscription.closed

    async def subscribe(self, conversation_id: int) -> dict:
        if self.is_subscribed(conversation_id):
            return {"type": "subscribed", "conversation_id": conversation_id}

        async with self.session_factory() as session:
            try:
                await ConversationService(session).get_conversation(conversation_id, self.user_id)
            except ServiceError as exc:
                return self._error(exc.reason, exc.kind)

        self._subscriptions[conversation_id] = self.hub.subscribe(
            conversation_id, self.user_id, self._forward
        )
        self._debouncers[conversation_id] = TypingDebouncer(self.hub, conversation_id, self.user_id)
        return {"type": "subscribed", "conversation_id": conversation_id}

    async def unsubscribe(self, conversation_id: int) -> None:
        debouncer = self._debouncers.pop(conversation_id, None)
        subscription = self._subscriptions.pop(conversation_id, None)
        if debouncer is not None and subscription is not None and not subscription.closed:
            await debouncer.flush()
        if subscription is not None:
            subscription.close()

    async def close(self) -> None:
        for conversation_id in list(self._subscriptions):
            await self.unsubscribe(conversation_id)

    async def _forward(self, event: PresenceEvent) -> None:
        await self.websocket.send_json(event.to_dict())

    @staticmethod
    def _error(detail: str, kind: str) -> dict:
        return {"type": "error", "detail": detail, "kind": kind}
