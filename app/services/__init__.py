from app.services.moderation import ModerationFilter, ModerationResult
from app.services.graph import SocialGraphService
from app.services.visibility import VisibilityEngine
from app.services.post import PostService
from app.services.feed import FeedService
from app.services.events import EventPublisher, EventOutbox, DomainEvent, EventType
from app.services.conversation import ConversationService
from app.services.presence import PresenceHub, TypingState, TypingDebouncer

__all__ = [
    "ModerationFilter", "ModerationResult", "SocialGraphService", "VisibilityEngine",
    "PostService", "FeedService", "EventPublisher", "EventOutbox", "DomainEvent", "EventType",
    "ConversationService", "PresenceHub", "TypingState", "TypingDebouncer",
]
