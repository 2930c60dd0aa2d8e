"""Like / reject / match API endpoints."""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from ...database import User
from ...dependencies import get_current_user, get_interaction_service
from ...schemas.interaction import (
    InteractionItem,
    InteractionListResponse,
    InteractionRequest,
    LikeResponse,
    Pagination,
    PublicProfile,
    RejectResponse,
)
from ...services import InteractionService


router = APIRouter(prefix="/interactions", tags=["Interactions"])


@router.post("/like", response_model=LikeResponse)
async def like_user(
    request: InteractionRequest,
    current_user: User = Depends(get_current_user),
    service: InteractionService = Depends(get_interaction_service),
):
    """
    Like a user.

    Liking a bot, or a user who already liked you, forms a match and opens
    the pair's chat. Liking again is harmless.
    """
    outcome = await service.like(current_user.id, request.target_user_id)
    return LikeResponse.model_validate(outcome)


@router.post("/reject", response_model=RejectResponse)
async def reject_user(
    request: InteractionRequest,
    current_user: User = Depends(get_current_user),
    service: InteractionService = Depends(get_interaction_service),
):
    """Reject a user. An existing match is broken for both sides."""
    outcome = await service.reject(current_user.id, request.target_user_id)
    return RejectResponse.model_validate(outcome)


@router.post("/match", response_model=LikeResponse)
async def match_with_bot(
    request: InteractionRequest,
    current_user: User = Depends(get_current_user),
    service: InteractionService = Depends(get_interaction_service),
):
    """Match directly with a bot profile."""
    outcome = await service.match_with_bot(current_user.id, request.target_user_id)
    return LikeResponse.model_validate(outcome)


@router.get("", response_model=InteractionListResponse)
async def list_interactions(
    action: Literal["match", "like"] = Query("match"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    service: InteractionService = Depends(get_interaction_service),
):
    """List your matches (default) or the likes you have sent."""
    result = await service.list_interactions(
        current_user.id, action=action, page=page, limit=limit
    )
    return InteractionListResponse(
        items=[
            InteractionItem(
                action=edge.action,
                is_mutual=edge.is_mutual,
                updated_at=edge.updated_at,
                user=PublicProfile.model_validate(user),
            )
            for edge, user in result.items
        ],
        pagination=Pagination(
            page=result.page,
            limit=result.limit,
            total_items=result.total_items,
            total_pages=result.total_pages,
        ),
    )
