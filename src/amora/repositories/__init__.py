"""Repository layer for data access."""

from .base import BaseRepository
from .user_repository import UserRepository
from .interaction_repository import InteractionRepository
from .chat_repository import ChatRepository, canonical_pair
from .message_repository import MessageRepository

__all__ = [
    "BaseRepository",
    "UserRepository",
    "InteractionRepository",
    "ChatRepository",
    "MessageRepository",
    "canonical_pair",
]
