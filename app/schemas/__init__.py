from app.schemas.user import (
    ProfileUpdate, ProfileResponse, ProfileView, ProfileSummary
)
from app.schemas.post import (
    PostCreate, PostUpdate, PostResponse, FeedResponse, CommentCreate, CommentResponse
)
from app.schemas.conversation import (
    ConversationStart, ConversationResponse, ConversationSummary, MessageCreate,
    MessageResponse, MessageHistory, MarkReadResponse, DeletionRequestResponse,
    DeletionOutcome,
)

__all__ = [
    "ProfileUpdate", "ProfileResponse", "ProfileView", "ProfileSummary",
    "PostCreate", "PostUpdate", "PostResponse", "FeedResponse", "CommentCreate", "CommentResponse",
    "ConversationStart", "ConversationResponse", "ConversationSummary", "MessageCreate",
    "MessageResponse", "MessageHistory", "MarkReadResponse", "DeletionRequestResponse",
    "DeletionOutcome",
]
