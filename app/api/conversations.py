from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.core.redis import get_redis, RedisClient
from app.core.dependencies import get_current_user
from app.models import Profile
from app.schemas.conversation import (
    ConversationStart, ConversationResponse, ConversationSummary, MessageCreate,
    MessageResponse, MessageHistory, MarkReadResponse, DeletionRequestResponse,
    DeletionOutcome,
)
from app.services.conversation import ConversationService

router = APIRouter()


@router.post("", response_model=ConversationResponse)
async def start_conversation(
    data: ConversationStart,
    db: AsyncSession = Depends(get_db),
    redis: RedisClient = Depends(get_redis),
    current_user: Profile = Depends(get_current_user)
):
    """Open the conversation with another user, creating it on first use."""
    service = ConversationService(db, redis)
    return await service.start_or_get_conversation(current_user.id, data.user_id)


@router.get("", response_model=List[ConversationSummary])
async def list_conversations(
    db: AsyncSession = Depends(get_db),
    redis: RedisClient = Depends(get_redis),
    current_user: Profile = Depends(get_current_user)
):
    """List the caller's conversations, most recently active first."""
    service = ConversationService(db, redis)
    return await service.list_conversations(current_user.id)


@router.get("/{conversation_id}/messages", response_model=MessageHistory)
async def get_messages(
    conversation_id: int,
    cursor: Optional[int] = Query(None, description="Return messages older than this message ID"),
    limit: int = Query(50, le=200, ge=1),
    db: AsyncSession = Depends(get_db),
    redis: RedisClient = Depends(get_redis),
    current_user: Profile = Depends(get_current_user)
):
    service = ConversationService(db, redis)
    return await service.get_messages(conversation_id, current_user.id, limit=limit, before_id=cursor)


@router.post("/{conversation_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    conversation_id: int,
    data: MessageCreate,
    db: AsyncSession = Depends(get_db),
    redis: RedisClient = Depends(get_redis),
    current_user: Profile = Depends(get_current_user)
):
    """Send a message. Moderated text is rejected with 422."""
    service = ConversationService(db, redis)
    return await service.send_message(conversation_id, current_user.id, data.content)


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_read(
    conversation_id: int,
    db: AsyncSession = Depends(get_db),
    redis: RedisClient = Depends(get_redis),
    current_user: Profile = Depends(get_current_user)
):
    service = ConversationService(db, redis)
    marked = await service.mark_read(conversation_id, current_user.id)
    return MarkReadResponse(marked=marked)


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: int,
    db: AsyncSession = Depends(get_db),
    redis: RedisClient = Depends(get_redis),
    current_user: Profile = Depends(get_current_user)
):
    """Delete one of the caller's own messages."""
    service = ConversationService(db, redis)
    await service.delete_message(message_id, current_user.id)


@router.get("/{conversation_id}/deletion-request", response_model=Optional[DeletionRequestResponse])
async def get_deletion_request(
    conversation_id: int,
    db: AsyncSession = Depends(get_db),
    redis: RedisClient = Depends(get_redis),
    current_user: Profile = Depends(get_current_user)
):
    """Pending deletion request, or null when there is none."""
    service = ConversationService(db, redis)
    return await service.get_active_deletion_request(conversation_id, current_user.id)


@router.post("/{conversation_id}/deletion-request", response_model=DeletionOutcome)
async def request_deletion(
    conversation_id: int,
    db: AsyncSession = Depends(get_db),
    redis: RedisClient = Depends(get_redis),
    current_user: Profile = Depends(get_current_user)
):
    """Ask to delete the conversation.

    If the other participant has a pending request already, this counts as
    agreement and the conversation is deleted at once.
    """
    service = ConversationService(db, redis)
    return await service.request_conversation_deletion(conversation_id, current_user.id)


@router.delete("/{conversation_id}/deletion-request", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_deletion(
    conversation_id: int,
    db: AsyncSession = Depends(get_db),
    redis: RedisClient = Depends(get_redis),
    current_user: Profile = Depends(get_current_user)
):
    service = ConversationService(db, redis)
    await service.cancel_deletion_request(conversation_id, current_user.id)


@router.post("/{conversation_id}/deletion-request/approve", response_model=DeletionOutcome)
async def approve_deletion(
    conversation_id: int,
    db: AsyncSession = Depends(get_db),
    redis: RedisClient = Depends(get_redis),
    current_user: Profile = Depends(get_current_user)
):
    """Approve the other participant's request; the conversation is deleted."""
    service = ConversationService(db, redis)
    return await service.approve_deletion_request(conversation_id, current_user.id)
