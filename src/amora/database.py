"""Database models and connection for Amora."""

from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import AsyncGenerator, Optional

from loguru import logger
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .config import settings
from .core.exceptions import AmoraException, InternalError


DELETED_MESSAGE_PLACEHOLDER = "This message was deleted"

# How long a SQLite writer waits for the lock before giving up
SQLITE_BUSY_TIMEOUT_MS = 30000


class UserType(str, Enum):
    """Persona kind of a user record."""
    REAL = "real"
    BOT = "bot"


class InteractionAction(str, Enum):
    """Current opinion recorded on an interaction edge."""
    LIKE = "like"
    REJECT = "reject"
    MATCH = "match"


class ChatStatus(str, Enum):
    """Per-participant conversation status."""
    ACTIVE = "active"
    BLOCKED = "blocked"
    DELETED = "deleted"


class SenderKind(str, Enum):
    """Who produced a message body."""
    HUMAN = "human"
    BOT = "bot"


class MessageStatus(str, Enum):
    SENT = "sent"
    DELETED = "deleted"


class ParticipantSlot(str, Enum):
    """Canonical position in a conversation: FIRST holds the lower user id."""
    FIRST = "p1"
    SECOND = "p2"


def configure_sqlite(engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy own BEGIN on SQLite connections.

    The sqlite3 driver defers BEGIN on its own, which breaks SAVEPOINTs;
    conversation provisioning depends on them. SQLite ignores FOR UPDATE,
    so every transaction starts IMMEDIATE and holds the write lock from its
    first read. Concurrent writers queue on the busy timeout instead of
    failing when they upgrade a shared lock.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for ``url``."""
    if url.startswith("sqlite"):
        built = create_async_engine(
            url,
            echo=echo,
            connect_args={"timeout": SQLITE_BUSY_TIMEOUT_MS / 1000},
        )
        configure_sqlite(built)
        return built
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


# Create async engine
engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)

# Session factory
async_session_maker = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class User(Base):
    """User account model (profile fields are owned by the profile service)."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    avatar: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    type: Mapped[str] = mapped_column(
        String(10), default=UserType.REAL.value, nullable=False
    )  # 'real' or 'bot'
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    status: Mapped[int] = mapped_column(Integer, default=1, nullable=False)  # 1 = enabled

    # Counters maintained by the interaction engine
    total_likes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_matches: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_rejects: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_active: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint("total_likes >= 0", name="ck_users_total_likes"),
        CheckConstraint("total_matches >= 0", name="ck_users_total_matches"),
        CheckConstraint("total_rejects >= 0", name="ck_users_total_rejects"),
    )

    @property
    def is_bot(self) -> bool:
        return self.type == UserType.BOT.value

    @property
    def is_available(self) -> bool:
        """Active and enabled, i.e. visible to other users."""
        return bool(self.is_active) and self.status == 1


class InteractionEdge(Base):
    """One user's current opinion of another (like / reject / match)."""

    __tablename__ = "user_interactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    target_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(10), nullable=False)
    is_mutual: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint("actor_id", "target_id", name="uq_interactions_actor_target"),
        Index("ix_interactions_target", "target_id"),
        Index("ix_interactions_actor_action", "actor_id", "action"),
    )


class ParticipantState:
    """
    One participant's view of a conversation.

    Reads and writes go to the ``_p1`` or ``_p2`` columns depending on the
    slot, so callers never branch on which side they are.
    """

    __slots__ = ("conversation", "slot")

    def __init__(self, conversation: "Conversation", slot: ParticipantSlot):
        self.conversation = conversation
        self.slot = slot

    def _column(self, name: str) -> str:
        return f"{name}_{self.slot.value}"

    def _get(self, name: str):
        return getattr(self.conversation, self._column(name))

    def _set(self, name: str, value) -> None:
        setattr(self.conversation, self._column(name), value)

    @property
    def user_id(self) -> int:
        if self.slot == ParticipantSlot.FIRST:
            return self.conversation.participant_1_id
        return self.conversation.participant_2_id

    @property
    def unread_count(self) -> int:
        return self._get("unread_count")

    @unread_count.setter
    def unread_count(self, value: int) -> None:
        self._set("unread_count", max(0, value))

    @property
    def is_pinned(self) -> bool:
        return self._get("is_pinned")

    @is_pinned.setter
    def is_pinned(self, value: bool) -> None:
        self._set("is_pinned", value)

    @property
    def is_archived(self) -> bool:
        return self._get("is_archived")

    @is_archived.setter
    def is_archived(self, value: bool) -> None:
        self._set("is_archived", value)

    @property
    def status(self) -> str:
        return self._get("chat_status")

    @status.setter
    def status(self, value: str) -> None:
        self._set("chat_status", value)


class Conversation(Base):
    """Chat thread between exactly two users, one row per unordered pair."""

    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Lower user id always lives in participant_1_id
    participant_1_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    participant_2_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    last_message_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_message_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    unread_count_p1: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unread_count_p2: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_archived_p1: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_archived_p2: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_pinned_p1: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_pinned_p2: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    chat_status_p1: Mapped[str] = mapped_column(
        String(10), default=ChatStatus.ACTIVE.value, nullable=False
    )
    chat_status_p2: Mapped[str] = mapped_column(
        String(10), default=ChatStatus.ACTIVE.value, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "participant_1_id", "participant_2_id", name="uq_conversations_pair"
        ),
        CheckConstraint(
            "participant_1_id < participant_2_id", name="ck_conversations_canonical"
        ),
        Index("ix_conversations_p2", "participant_2_id"),
    )

    def has_participant(self, user_id: int) -> bool:
        return user_id in (self.participant_1_id, self.participant_2_id)

    def slot_of(self, user_id: int) -> ParticipantSlot:
        """Slot ``user_id`` occupies. Raises ValueError for outsiders."""
        if user_id == self.participant_1_id:
            return ParticipantSlot.FIRST
        if user_id == self.participant_2_id:
            return ParticipantSlot.SECOND
        raise ValueError(f"user {user_id} is not part of conversation {self.id}")

    def side(self, user_id: int) -> ParticipantState:
        return ParticipantState(self, self.slot_of(user_id))

    def other_side(self, user_id: int) -> ParticipantState:
        slot = self.slot_of(user_id)
        other = ParticipantSlot.SECOND if slot == ParticipantSlot.FIRST else ParticipantSlot.FIRST
        return ParticipantState(self, other)

    def counterpart_id(self, user_id: int) -> int:
        return self.other_side(user_id).user_id


class Message(Base):
    """Chat message; immutable apart from soft-delete and the read flag."""

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    receiver_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attachments: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    message_type: Mapped[str] = mapped_column(String(10), default="text", nullable=False)
    reply_to_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True
    )
    sender_kind: Mapped[str] = mapped_column(
        String(10), default=SenderKind.HUMAN.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(10), default=MessageStatus.SENT.value, nullable=False
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_messages_chat_created_id", "chat_id", "created_at", "id"),
        Index("ix_messages_receiver_unread", "chat_id", "receiver_id", "is_read"),
    )

    @property
    def is_deleted(self) -> bool:
        return self.status == MessageStatus.DELETED.value


async def init_db(bind: Optional[AsyncEngine] = None):
    """Initialize database tables."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Run a block as one transaction on ``session``.

    Commits on success. Any exception rolls the whole unit back; store
    failures surface as InternalError so callers never see driver details.
    """
    try:
        yield session
        await session.commit()
    except AmoraException:
        await session.rollback()
        raise
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("Database error, transaction rolled back")
        raise InternalError() from exc
    except Exception:
        await session.rollback()
        raise
