"""Service layer for business logic."""

from .chat_service import ChatService
from .interaction_service import InteractionService
from .reply_generator import ReplyGeneratorClient

__all__ = [
    "ChatService",
    "InteractionService",
    "ReplyGeneratorClient",
]
