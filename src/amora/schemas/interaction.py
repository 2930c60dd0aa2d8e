"""Interaction schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class InteractionRequest(BaseModel):
    """Like, reject or bot-match request."""
    target_user_id: int = Field(..., gt=0)


class LikeResponse(BaseModel):
    """Result of a like or bot match."""
    target_user_id: int
    target_kind: str
    is_match: bool
    is_new_match: bool = False
    chat_id: Optional[int] = None

    class Config:
        from_attributes = True


class RejectResponse(BaseModel):
    """Result of a reject."""
    target_user_id: int
    target_kind: str

    class Config:
        from_attributes = True


class PublicProfile(BaseModel):
    """Counterpart fields safe to show to other users."""
    id: int
    username: str
    avatar: Optional[str] = None
    gender: Optional[str] = None
    bio: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    type: str
    is_active: bool
    last_active: Optional[datetime] = None

    class Config:
        from_attributes = True


class InteractionItem(BaseModel):
    """One of the caller's edges with the counterpart's profile."""
    action: str
    is_mutual: bool
    updated_at: datetime
    user: PublicProfile


class Pagination(BaseModel):
    page: int
    limit: int
    total_items: int
    total_pages: int


class InteractionListResponse(BaseModel):
    """Paginated matches or likes."""
    items: List[InteractionItem]
    pagination: Pagination
