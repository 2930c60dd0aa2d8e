"""Pytest configuration and shared fixtures."""

import asyncio
import itertools

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from amora.core.exceptions import ReplyGeneratorError
from amora.database import (
    Conversation,
    InteractionEdge,
    Message,
    User,
    UserType,
    build_engine,
    init_db,
)
from amora.repositories import (
    ChatRepository,
    InteractionRepository,
    MessageRepository,
    UserRepository,
)
from amora.services import ChatService, InteractionService


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite database file per test."""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'amora_test.db'}")
    await init_db(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as db_session:
        yield db_session


@pytest.fixture
def make_user(session):
    """Create and commit a user."""
    counter = itertools.count(1)

    async def _make(
        username=None,
        kind=UserType.REAL.value,
        is_active=True,
        status=1,
        **fields,
    ) -> User:
        user = User(
            username=username or f"user{next(counter)}",
            type=kind,
            is_active=is_active,
            status=status,
            **fields,
        )
        session.add(user)
        await session.commit()
        return user

    return _make


# ============================================================================
# Reply generator stubs
# ============================================================================

class StubReplyGenerator:
    """Records calls; replies, fails or stalls as configured."""

    def __init__(self, reply="Hey! Nice to hear from you.", error=None, delay=0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls = []

    async def __call__(self, chat_id, text):
        self.calls.append((chat_id, text))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def replying_generator():
    return StubReplyGenerator()


@pytest.fixture
def failing_generator():
    return StubReplyGenerator(error=ReplyGeneratorError("model unavailable"))


@pytest.fixture
def slow_generator():
    return StubReplyGenerator(delay=1.0)


@pytest.fixture
def broken_generator():
    return StubReplyGenerator(error=RuntimeError("unexpected bug"))


# ============================================================================
# Services
# ============================================================================

def _chat_service(db_session, reply_generator=None, reply_timeout=0.2) -> ChatService:
    return ChatService(
        db_session,
        ChatRepository(Conversation, db_session),
        MessageRepository(Message, db_session),
        UserRepository(User, db_session),
        reply_generator=reply_generator,
        reply_timeout=reply_timeout,
    )


def _interaction_service(db_session, chat_service) -> InteractionService:
    return InteractionService(
        db_session,
        UserRepository(User, db_session),
        InteractionRepository(InteractionEdge, db_session),
        chat_service,
    )


@pytest.fixture
def build_chat_service(session):
    def _build(reply_generator=None, reply_timeout=0.2) -> ChatService:
        return _chat_service(session, reply_generator, reply_timeout)
    return _build


@pytest.fixture
def chat_service(build_chat_service, replying_generator):
    return build_chat_service(replying_generator)


@pytest.fixture
def interaction_service(session, chat_service):
    return _interaction_service(session, chat_service)


@pytest.fixture
def in_own_session(session_factory, replying_generator):
    """
    Run ``work(chat_service, interaction_service)`` on a fresh session.

    Each call gets its own connection, so several calls gathered together
    race the way concurrent requests do.
    """
    async def _run(work):
        async with session_factory() as db_session:
            chat = _chat_service(db_session, replying_generator)
            return await work(chat, _interaction_service(db_session, chat))
    return _run
