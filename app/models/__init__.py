from app.models.user import Profile
from app.models.follow import Follow, Block
from app.models.post import Post, PostAllowedUser, Like, Comment, PrivacyLevel
from app.models.conversation import Conversation, Message, ConversationDeletionRequest

__all__ = [
    "Profile", "Follow", "Block",
    "Post", "PostAllowedUser", "Like", "Comment", "PrivacyLevel",
    "Conversation", "Message", "ConversationDeletionRequest",
]
