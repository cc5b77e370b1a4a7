import json
import asyncio
import logging
from typing import Dict, Set, Optional
from fastapi import WebSocket
from app.config import settings
from app.core.redis import redis_client
from app.services.events import EventType
from app.services.presence import hub

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections and relays conversation events to them."""

    def __init__(self):
        # Map of user_id -> set of WebSocket connections
        self.active_connections: Dict[int, Set[WebSocket]] = {}
        self._pubsub_task: Optional[asyncio.Task] = None

    async def connect(self, websocket: WebSocket, user_id: int):
        """Accept a new WebSocket connection."""
        await websocket.accept()

        if user_id not in self.active_connections:
            self.active_connections[user_id] = set()

        self.active_connections[user_id].add(websocket)

        # Start pub/sub listener if not running
        if redis_client.redis is not None and (self._pubsub_task is None or self._pubsub_task.done()):
            self._pubsub_task = asyncio.create_task(self._listen_to_redis())

    def disconnect(self, websocket: WebSocket, user_id: int):
        """Remove a WebSocket connection."""
        if user_id in self.active_connections:
            self.active_connections[user_id].discard(websocket)
            if not self.active_connections[user_id]:
                del self.active_connections[user_id]

    async def send_personal_message(self, message: dict, user_id: int):
        """Send a message to a specific user's connections."""
        if user_id in self.active_connections:
            disconnected = set()
            for websocket in self.active_connections[user_id]:
                try:
                    await websocket.send_json(message)
                except Exception:
                    disconnected.add(websocket)

            # Clean up disconnected sockets
            for ws in disconnected:
                self.active_connections[user_id].discard(ws)

    async def broadcast(self, message: dict, user_ids: list[int]):
        """Broadcast a message to multiple users."""
        for user_id in user_ids:
            await self.send_personal_message(message, user_id)

    async def _listen_to_redis(self):
        """Listen to the realtime channel for conversation events."""
        channel = settings.realtime_channel
        pubsub = redis_client.pubsub()
        await pubsub.subscribe(channel)

        try:
            async for message in pubsub.listen():
                if message["type"] == "message":
                    try:
                        data = json.loads(message["data"])
                    except json.JSONDecodeError:
                        continue
                    await self.handle_realtime_event(data)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Redis pub/sub error: %s", e)
        finally:
            await pubsub.unsubscribe(channel)

    async def handle_realtime_event(self, event: dict):
        """Forward a conversation event to its participants on this instance."""
        participant_ids = event.get("participant_ids", [])
        message = {key: value for key, value in event.items() if key != "participant_ids"}

        if event.get("type") == EventType.CONVERSATION_DELETED.value:
            hub.close_conversation(event.get("conversation_id"))

        await self.broadcast(message, participant_ids)

    async def stop(self):
        if self._pubsub_task is not None:
            self._pubsub_task.cancel()
            try:
                await self._pubsub_task
            except asyncio.CancelledError:
                pass
            self._pubsub_task = None

    @property
    def connection_count(self) -> int:
        """Get total number of active connections."""
        return sum(len(conns) for conns in self.active_connections.values())

    @property
    def user_count(self) -> int:
        """Get number of connected users."""
        return len(self.active_connections)


# Global connection manager instance
manager = ConnectionManager()
