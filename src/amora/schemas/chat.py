"""Chat and message Pydantic schemas for API v2."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Message Schemas
# ============================================================================

class SendMessageRequest(BaseModel):
    """Send to an existing chat (chat_id) or start one (receiver_id)."""
    chat_id: Optional[int] = Field(None, gt=0)
    receiver_id: Optional[int] = Field(None, gt=0)
    body: str = Field("", max_length=10000)
    reply_to_id: Optional[int] = Field(None, gt=0)
    attachments: Optional[List[str]] = Field(None, description="Media URLs from the upload service")


class MessageResponse(BaseModel):
    """Schema for message response."""
    id: int
    chat_id: int
    sender_id: int
    receiver_id: int
    body: str
    attachments: Optional[List[str]] = None
    message_type: str
    reply_to_id: Optional[int] = None
    sender_kind: str
    status: str
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class SendMessageResponse(BaseModel):
    """The stored message plus the bot's reply, when there is one."""
    chat_id: int
    message: MessageResponse
    bot_message: Optional[MessageResponse] = None


class MessageListResponse(BaseModel):
    """Schema for paginated message list."""
    messages: List[MessageResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class CursorMessageListResponse(BaseModel):
    """Schema for cursor paginated message list."""
    messages: List[MessageResponse]
    next_cursor: Optional[int] = None
    has_more: bool = False


class MarkAsReadRequest(BaseModel):
    last_message_id: Optional[int] = Field(None, gt=0)


class MarkAsReadResponse(BaseModel):
    success: bool = True
    unread_count: int


# ============================================================================
# Chat Schemas
# ============================================================================

class ChatCounterpart(BaseModel):
    """Public profile subset shown in the inbox."""
    id: int
    username: str
    avatar: Optional[str] = None
    type: str
    is_active: bool
    last_active: Optional[datetime] = None

    class Config:
        from_attributes = True


class InboxItem(BaseModel):
    """One chat as seen by the caller."""
    chat_id: int
    counterpart: Optional[ChatCounterpart] = None
    last_message: Optional[MessageResponse] = None
    last_message_time: Optional[datetime] = None
    unread_count: int
    is_pinned: bool
    is_archived: bool
    status: str


class InboxResponse(BaseModel):
    chats: List[InboxItem]
    page: int
    limit: int


class PinChatsRequest(BaseModel):
    chat_ids: List[int] = Field(..., min_length=1)
    is_pinned: bool = True


class BlockChatRequest(BaseModel):
    action: Literal["block", "unblock"] = "block"


class ArchiveChatRequest(BaseModel):
    is_archived: bool = True


class SuccessResponse(BaseModel):
    success: bool = True
