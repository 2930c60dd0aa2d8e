"""API v2 endpoints."""

from .interactions import router as interactions_router
from .chats import router as chats_router

__all__ = [
    "interactions_router",
    "chats_router",
]
