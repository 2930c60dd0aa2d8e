"""Chat management API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...database import User
from ...dependencies import get_chat_service, get_current_user
from ...schemas.chat import (
    ArchiveChatRequest,
    BlockChatRequest,
    ChatCounterpart,
    CursorMessageListResponse,
    InboxItem,
    InboxResponse,
    MarkAsReadRequest,
    MarkAsReadResponse,
    MessageListResponse,
    MessageResponse,
    PinChatsRequest,
    SendMessageRequest,
    SendMessageResponse,
    SuccessResponse,
)
from ...services import ChatService


router = APIRouter(prefix="/chats", tags=["Chats"])


@router.get("", response_model=InboxResponse)
async def list_chats(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """
    List the current user's chats.

    Pinned chats come first, then the most recently active. Chats you
    deleted are hidden until a new message arrives.
    """
    entries = await service.list_inbox(current_user.id, page=page, limit=limit)
    return InboxResponse(
        chats=[
            InboxItem(
                chat_id=entry.conversation.id,
                counterpart=(
                    ChatCounterpart.model_validate(entry.counterpart)
                    if entry.counterpart else None
                ),
                last_message=(
                    MessageResponse.model_validate(entry.last_message)
                    if entry.last_message else None
                ),
                last_message_time=entry.conversation.last_message_time,
                unread_count=entry.unread_count,
                is_pinned=entry.is_pinned,
                is_archived=entry.is_archived,
                status=entry.status,
            )
            for entry in entries
        ],
        page=page,
        limit=limit,
    )


@router.post("/messages", response_model=SendMessageResponse)
async def send_message(
    request: SendMessageRequest,
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """
    Send a message.

    Address an existing chat with ``chat_id`` or start one with
    ``receiver_id``. Messages to bots get the bot's reply in the same
    response when it arrives in time.
    """
    result = await service.send_message(
        current_user.id,
        request.body,
        chat_id=request.chat_id,
        receiver_id=request.receiver_id,
        reply_to_id=request.reply_to_id,
        attachments=request.attachments,
    )
    return SendMessageResponse(
        chat_id=result.conversation.id,
        message=MessageResponse.model_validate(result.message),
        bot_message=(
            MessageResponse.model_validate(result.bot_message)
            if result.bot_message else None
        ),
    )


@router.post("/pin", response_model=SuccessResponse)
async def pin_chats(
    request: PinChatsRequest,
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Pin or unpin several chats."""
    await service.set_pinned(current_user.id, request.chat_ids, pinned=request.is_pinned)
    return SuccessResponse()


@router.get("/{chat_id}/messages", response_model=MessageListResponse)
async def get_messages(
    chat_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Get messages in a chat, oldest first."""
    result = await service.list_messages(current_user.id, chat_id, page=page, limit=limit)
    return MessageListResponse(
        messages=[MessageResponse.model_validate(m) for m in result.messages],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.get("/{chat_id}/messages/cursor", response_model=CursorMessageListResponse)
async def get_messages_after(
    chat_id: int,
    cursor: Optional[int] = Query(None, ge=1, description="Last message id already seen"),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Get messages after a cursor, for incremental sync."""
    result = await service.list_messages_after(
        current_user.id, chat_id, cursor=cursor, limit=limit
    )
    return CursorMessageListResponse(
        messages=[MessageResponse.model_validate(m) for m in result.messages],
        next_cursor=result.next_cursor,
        has_more=result.has_more,
    )


@router.post("/{chat_id}/messages/{message_id}/delete", response_model=MessageResponse)
async def delete_message(
    chat_id: int,
    message_id: int,
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Delete one of your own messages."""
    message = await service.delete_message(current_user.id, chat_id, message_id)
    return MessageResponse.model_validate(message)


@router.post("/{chat_id}/mark-as-read", response_model=MarkAsReadResponse)
async def mark_as_read(
    chat_id: int,
    request: Optional[MarkAsReadRequest] = None,
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Mark messages as read, optionally only up to ``last_message_id``."""
    last_message_id = request.last_message_id if request else None
    remaining = await service.mark_as_read(current_user.id, chat_id, last_message_id)
    return MarkAsReadResponse(unread_count=remaining)


@router.post("/{chat_id}/block", response_model=SuccessResponse)
async def block_chat(
    chat_id: int,
    request: BlockChatRequest,
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Block or unblock a chat for yourself."""
    await service.set_blocked(current_user.id, chat_id, blocked=request.action == "block")
    return SuccessResponse()


@router.post("/{chat_id}/archive", response_model=SuccessResponse)
async def archive_chat(
    chat_id: int,
    request: ArchiveChatRequest,
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    await service.set_archived(current_user.id, chat_id, archived=request.is_archived)
    return SuccessResponse()


@router.post("/{chat_id}/delete", response_model=SuccessResponse)
async def delete_chat(
    chat_id: int,
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Delete a chat for yourself; the other participant keeps it."""
    await service.delete_conversation(current_user.id, chat_id)
    return SuccessResponse()
