from app.websocket.manager import manager, ConnectionManager
from app.websocket.bridge import PresenceBridge

__all__ = ["manager", "ConnectionManager", "PresenceBridge"]
