"""Chat thread manager: conversations, messages and per-participant state."""

import asyncio
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..core.exceptions import (
    AmoraException,
    DependencyError,
    PermissionDeniedError,
    ResourceNotFoundError,
    ValidationError,
)
from ..database import (
    DELETED_MESSAGE_PLACEHOLDER,
    ChatStatus,
    Conversation,
    Message,
    MessageStatus,
    SenderKind,
    User,
    atomic,
)
from ..repositories.chat_repository import ChatRepository
from ..repositories.message_repository import MessageRepository
from ..repositories.user_repository import UserRepository
from .reply_generator import ReplyFunc


@dataclass
class SendResult:
    conversation: Conversation
    message: Message
    sender: User
    receiver: User
    bot_message: Optional[Message] = None


@dataclass
class MessagePage:
    messages: List[Message]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class CursorPage:
    messages: List[Message]
    next_cursor: Optional[int]
    has_more: bool


@dataclass
class InboxEntry:
    """One row of a user's inbox, already seen from that user's side."""
    conversation: Conversation
    counterpart: Optional[User]
    last_message: Optional[Message]
    unread_count: int
    is_pinned: bool
    is_archived: bool
    status: str


class ChatService:
    """Business logic for two-party conversations."""

    def __init__(
        self,
        session: AsyncSession,
        chat_repo: ChatRepository,
        message_repo: MessageRepository,
        user_repo: UserRepository,
        reply_generator: Optional[ReplyFunc] = None,
        reply_timeout: Optional[float] = None,
    ):
        self.session = session
        self.chat_repo = chat_repo
        self.message_repo = message_repo
        self.user_repo = user_repo
        self.reply_generator = reply_generator
        self.reply_timeout = (
            reply_timeout if reply_timeout is not None else settings.REPLY_TIMEOUT_SECONDS
        )

    # ------------------------------------------------------------------
    # Conversation identity
    # ------------------------------------------------------------------

    async def ensure_conversation(self, user_a: int, user_b: int) -> Tuple[Conversation, bool]:
        """
        Get or create the pair's conversation in the caller's transaction.

        Used by the interaction engine while it still holds its locks.
        """
        if user_a == user_b:
            raise ValidationError("A conversation needs two different users")

        conversation, created = await self.chat_repo.get_or_create_by_pair(user_a, user_b)
        if created:
            logger.info(
                f"Conversation {conversation.id} created for users "
                f"{conversation.participant_1_id} and {conversation.participant_2_id}"
            )
        return conversation, created

    async def get_or_create_conversation(
        self, user_a: int, user_b: int
    ) -> Tuple[Conversation, bool]:
        """Get or create the pair's conversation as its own transaction."""
        if user_a == user_b:
            raise ValidationError("A conversation needs two different users")

        async with atomic(self.session):
            return await self.ensure_conversation(user_a, user_b)

    async def _get_for_participant(
        self, user_id: int, chat_id: int, for_update: bool = False
    ) -> Conversation:
        conversation = await self.chat_repo.get(chat_id, for_update=for_update)
        if not conversation:
            raise ResourceNotFoundError("Chat", chat_id)
        if not conversation.has_participant(user_id):
            raise PermissionDeniedError("You are not a participant of this chat")
        return conversation

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(
        self,
        sender_id: int,
        body: Optional[str],
        chat_id: Optional[int] = None,
        receiver_id: Optional[int] = None,
        reply_to_id: Optional[int] = None,
        attachments: Optional[List[str]] = None,
    ) -> SendResult:
        """
        Append a human message and, for bot recipients, the bot's reply.

        The human message is committed before the reply generator is called,
        so a slow or failing generator never delays or undoes it.
        """
        body = body or ""
        attachments = [url for url in (attachments or []) if url]

        if chat_id is None and receiver_id is None:
            raise ValidationError("Either chat_id or receiver_id is required")
        if chat_id is not None and receiver_id is not None:
            raise ValidationError("Provide chat_id or receiver_id, not both")
        if receiver_id is not None and receiver_id == sender_id:
            raise ValidationError("Cannot send a message to yourself")
        if not body.strip() and not attachments:
            raise ValidationError("Message body or attachments are required")

        async with atomic(self.session):
            sender = await self.user_repo.get_available(sender_id)
            if not sender:
                raise ResourceNotFoundError("User", sender_id)

            if chat_id is not None:
                conversation = await self._get_for_participant(
                    sender_id, chat_id, for_update=True
                )
                receiver_id = conversation.counterpart_id(sender_id)
                receiver = await self.user_repo.get_available(receiver_id)
                if not receiver:
                    raise ResourceNotFoundError("User", receiver_id)
            else:
                receiver = await self.user_repo.get_available(receiver_id)
                if not receiver:
                    raise ResourceNotFoundError("User", receiver_id)
                conversation, _ = await self.ensure_conversation(sender_id, receiver_id)
                conversation = await self.chat_repo.get(conversation.id, for_update=True)

            mine = conversation.side(sender_id)
            if mine.status == ChatStatus.BLOCKED.value:
                raise PermissionDeniedError("You have blocked this chat")

            if reply_to_id is not None:
                if not await self.message_repo.get_in_chat(conversation.id, reply_to_id):
                    raise ValidationError("reply_to must reference a message in this chat")

            message = await self.message_repo.create(
                chat_id=conversation.id,
                sender_id=sender_id,
                receiver_id=receiver_id,
                body=body,
                attachments=attachments or None,
                message_type="media" if attachments else "text",
                reply_to_id=reply_to_id,
                sender_kind=SenderKind.HUMAN.value,
            )
            self._record_delivery(conversation, message)

            # A new message brings the thread back for anyone who deleted it
            for side in (mine, conversation.other_side(sender_id)):
                if side.status == ChatStatus.DELETED.value:
                    side.status = ChatStatus.ACTIVE.value
            await self.session.flush()

        result = SendResult(
            conversation=conversation,
            message=message,
            sender=sender,
            receiver=receiver,
        )

        if receiver.is_bot and self.reply_generator is not None:
            result.bot_message = await self._append_bot_reply(result)

        return result

    @staticmethod
    def _record_delivery(conversation: Conversation, message: Message) -> None:
        conversation.last_message_id = message.id
        conversation.last_message_time = message.created_at
        recipient = conversation.side(message.receiver_id)
        recipient.unread_count = recipient.unread_count + 1

    async def _append_bot_reply(self, result: SendResult) -> Optional[Message]:
        """Ask the generator for a reply; any failure leaves the chat as it is."""
        chat_id = result.conversation.id
        message = result.message
        try:
            text = await asyncio.wait_for(
                self.reply_generator(chat_id, message.body),
                timeout=self.reply_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Reply generator timed out after {self.reply_timeout}s for chat {chat_id}"
            )
            return None
        except DependencyError as e:
            logger.warning(f"Reply generator failed for chat {chat_id}: {e.message}")
            return None
        except Exception:
            logger.exception(f"Reply generator raised unexpectedly for chat {chat_id}")
            return None

        if not text or not text.strip():
            logger.warning(f"Reply generator returned no text for chat {chat_id}")
            return None

        try:
            async with atomic(self.session):
                conversation = await self.chat_repo.get(chat_id, for_update=True)
                if not conversation:
                    raise ResourceNotFoundError("Chat", chat_id)
                bot_message = await self.message_repo.create(
                    chat_id=chat_id,
                    sender_id=message.receiver_id,
                    receiver_id=message.sender_id,
                    body=text.strip(),
                    message_type="text",
                    reply_to_id=message.id,
                    sender_kind=SenderKind.BOT.value,
                )
                self._record_delivery(conversation, bot_message)
                await self.session.flush()
        except AmoraException as e:
            logger.warning(f"Could not store bot reply for chat {chat_id}: {e.message}")
            # Rollback expired everything; reload what the caller gets back
            async with atomic(self.session):
                for instance in (message, result.conversation, result.sender, result.receiver):
                    await self.session.refresh(instance)
            return None

        return bot_message

    async def list_messages(
        self,
        user_id: int,
        chat_id: int,
        page: int = 1,
        limit: int = 50,
    ) -> MessagePage:
        """Non-deleted messages in chronological order, page by page."""
        page, limit = _page_args(page, limit)
        await self._get_for_participant(user_id, chat_id)

        total = await self.message_repo.count_visible(chat_id)
        messages = await self.message_repo.get_page(
            chat_id, offset=(page - 1) * limit, limit=limit
        )
        return MessagePage(messages=messages, total=total, page=page, limit=limit)

    async def list_messages_after(
        self,
        user_id: int,
        chat_id: int,
        cursor: Optional[int] = None,
        limit: int = 50,
    ) -> CursorPage:
        """
        Messages strictly after ``cursor`` (a message id of this chat).

        One extra row is fetched to tell whether more remain.
        """
        _, limit = _page_args(1, limit)
        await self._get_for_participant(user_id, chat_id)

        anchor = None
        if cursor is not None:
            anchor = await self.message_repo.get_in_chat(chat_id, cursor)
            if not anchor:
                raise ValidationError("cursor must be a message of this chat")

        rows = await self.message_repo.get_after(chat_id, cursor=anchor, limit=limit + 1)
        has_more = len(rows) > limit
        messages = rows[:limit]
        next_cursor = messages[-1].id if messages else cursor
        return CursorPage(messages=messages, next_cursor=next_cursor, has_more=has_more)

    async def delete_message(self, user_id: int, chat_id: int, message_id: int) -> Message:
        """Soft-delete a message. Only its sender may do this; repeats succeed."""
        async with atomic(self.session):
            conversation = await self._get_for_participant(user_id, chat_id, for_update=True)

            message = await self.message_repo.get_in_chat(chat_id, message_id)
            if not message:
                raise ResourceNotFoundError("Message", message_id)
            if message.sender_id != user_id:
                raise PermissionDeniedError("Only the sender can delete a message")

            if not message.is_deleted:
                message.status = MessageStatus.DELETED.value
                message.body = DELETED_MESSAGE_PLACEHOLDER
                message.attachments = None
                await self.session.flush()

                recipient = conversation.side(message.receiver_id)
                recipient.unread_count = await self.message_repo.count_unread(
                    chat_id, message.receiver_id
                )
                await self.session.flush()

        return message

    async def mark_as_read(
        self,
        user_id: int,
        chat_id: int,
        last_message_id: Optional[int] = None,
    ) -> int:
        """Mark messages addressed to the caller as read. Returns what is still unread."""
        async with atomic(self.session):
            conversation = await self._get_for_participant(user_id, chat_id, for_update=True)

            if last_message_id is not None:
                if not await self.message_repo.get_in_chat(chat_id, last_message_id):
                    raise ResourceNotFoundError("Message", last_message_id)

            marked = await self.message_repo.mark_read(chat_id, user_id, up_to_id=last_message_id)
            remaining = await self.message_repo.count_unread(chat_id, user_id)
            conversation.side(user_id).unread_count = remaining
            await self.session.flush()

        logger.debug(f"User {user_id} read {marked} messages in chat {chat_id}")
        return remaining

    # ------------------------------------------------------------------
    # Per-participant flags
    # ------------------------------------------------------------------

    async def set_pinned(self, user_id: int, chat_ids: List[int], pinned: bool = True) -> None:
        """Pin or unpin several chats at once; all or nothing."""
        wanted = sorted(set(chat_ids))
        if not wanted:
            raise ValidationError("chat_ids must not be empty")

        async with atomic(self.session):
            conversations = await self.chat_repo.get_many(wanted, for_update=True)
            found = {c.id for c in conversations}
            missing = [chat_id for chat_id in wanted if chat_id not in found]
            if missing:
                raise ResourceNotFoundError("Chat", missing[0])

            for conversation in conversations:
                if not conversation.has_participant(user_id):
                    raise PermissionDeniedError("You are not a participant of this chat")
                conversation.side(user_id).is_pinned = pinned
            await self.session.flush()

    async def set_blocked(self, user_id: int, chat_id: int, blocked: bool = True) -> Conversation:
        """Block or unblock the caller's side of a chat."""
        async with atomic(self.session):
            conversation = await self._get_for_participant(user_id, chat_id, for_update=True)
            side = conversation.side(user_id)
            if blocked:
                side.status = ChatStatus.BLOCKED.value
            elif side.status == ChatStatus.BLOCKED.value:
                side.status = ChatStatus.ACTIVE.value
            await self.session.flush()
        return conversation

    async def set_archived(self, user_id: int, chat_id: int, archived: bool = True) -> Conversation:
        async with atomic(self.session):
            conversation = await self._get_for_participant(user_id, chat_id, for_update=True)
            conversation.side(user_id).is_archived = archived
            await self.session.flush()
        return conversation

    async def delete_conversation(self, user_id: int, chat_id: int) -> Conversation:
        """Delete a chat for the caller only; the other side keeps it."""
        async with atomic(self.session):
            conversation = await self._get_for_participant(user_id, chat_id, for_update=True)
            side = conversation.side(user_id)
            side.status = ChatStatus.DELETED.value
            side.is_pinned = False
            side.unread_count = 0
            await self.session.flush()
        return conversation

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    async def list_inbox(self, user_id: int, page: int = 1, limit: int = 20) -> List[InboxEntry]:
        """Chats visible to the caller, pinned first, then most recent."""
        page, limit = _page_args(page, limit)
        conversations = await self.chat_repo.get_inbox(
            user_id, offset=(page - 1) * limit, limit=limit
        )

        counterparts = await self.user_repo.get_many(
            [c.counterpart_id(user_id) for c in conversations]
        )
        previews = await self.message_repo.get_last_visible_many(
            [c.id for c in conversations]
        )

        entries = []
        for conversation in conversations:
            side = conversation.side(user_id)
            entries.append(InboxEntry(
                conversation=conversation,
                counterpart=counterparts.get(conversation.counterpart_id(user_id)),
                last_message=previews.get(conversation.id),
                unread_count=side.unread_count,
                is_pinned=side.is_pinned,
                is_archived=side.is_archived,
                status=side.status,
            ))
        return entries


def _page_args(page: int, limit: int) -> Tuple[int, int]:
    """Clamp paging input to sane bounds."""
    if page < 1:
        raise ValidationError("page must be at least 1")
    if limit < 1:
        raise ValidationError("limit must be at least 1")
    return page, min(limit, settings.MAX_PAGE_SIZE)
