"""Dependency injection for FastAPI endpoints."""

from typing import AsyncGenerator, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from .core.exceptions import AuthError
from .core.security import resolve_session_user_id
from .database import (
    Conversation,
    InteractionEdge,
    Message,
    User,
    async_session_maker,
)
from .repositories import (
    ChatRepository,
    InteractionRepository,
    MessageRepository,
    UserRepository,
)
from .services import ChatService, InteractionService, ReplyGeneratorClient
from .services.reply_generator import ReplyFunc


# Security scheme; missing credentials are reported through AuthError
security = HTTPBearer(auto_error=False)


# Database session dependency
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# Repository dependencies
async def get_user_repository(
    session: AsyncSession = Depends(get_session)
) -> UserRepository:
    """Get UserRepository instance."""
    return UserRepository(User, session)


async def get_interaction_repository(
    session: AsyncSession = Depends(get_session)
) -> InteractionRepository:
    """Get InteractionRepository instance."""
    return InteractionRepository(InteractionEdge, session)


async def get_chat_repository(
    session: AsyncSession = Depends(get_session)
) -> ChatRepository:
    """Get ChatRepository instance."""
    return ChatRepository(Conversation, session)


async def get_message_repository(
    session: AsyncSession = Depends(get_session)
) -> MessageRepository:
    """Get MessageRepository instance."""
    return MessageRepository(Message, session)


# External collaborators
def get_reply_generator() -> Optional[ReplyFunc]:
    """Reply generator used for bot recipients."""
    return ReplyGeneratorClient()


# Service dependencies
async def get_chat_service(
    session: AsyncSession = Depends(get_session),
    chat_repo: ChatRepository = Depends(get_chat_repository),
    message_repo: MessageRepository = Depends(get_message_repository),
    user_repo: UserRepository = Depends(get_user_repository),
    reply_generator: Optional[ReplyFunc] = Depends(get_reply_generator),
) -> ChatService:
    """Get ChatService instance."""
    return ChatService(session, chat_repo, message_repo, user_repo, reply_generator)


async def get_interaction_service(
    session: AsyncSession = Depends(get_session),
    user_repo: UserRepository = Depends(get_user_repository),
    interaction_repo: InteractionRepository = Depends(get_interaction_repository),
    chat_service: ChatService = Depends(get_chat_service),
) -> InteractionService:
    """Get InteractionService instance."""
    return InteractionService(session, user_repo, interaction_repo, chat_service)


# Authentication dependencies
async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    user_repo: UserRepository = Depends(get_user_repository),
) -> User:
    """
    Resolve the bearer token to an active user.

    Raises:
        AuthError: Missing or invalid token, or no active user behind it.
            The message is the same in every case.
    """
    if credentials is None:
        raise AuthError()

    user_id = resolve_session_user_id(credentials.credentials, expected_type="access")
    if user_id is None:
        raise AuthError()

    user = await user_repo.get_available(user_id)
    if not user:
        raise AuthError()

    return user
