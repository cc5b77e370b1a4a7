from fastapi import APIRouter
from app.api import users, posts, feed, conversations

api_router = APIRouter()

api_router.include_router(users.router, prefix="/users", tags=["Users"])
api_router.include_router(posts.router, prefix="/posts", tags=["Posts"])
api_router.include_router(feed.router, prefix="/feed", tags=["Feed"])
api_router.include_router(conversations.router, prefix="/conversations", tags=["Conversations"])
