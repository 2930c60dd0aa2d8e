"""Message repository for chat messages."""

from typing import Dict, List, Optional

from sqlalchemy import and_, func, or_, select, update

from .base import BaseRepository
from ..database import Message, MessageStatus


class MessageRepository(BaseRepository[Message]):
    """Repository for Message operations."""

    @staticmethod
    def _visible(chat_id: int):
        return and_(
            Message.chat_id == chat_id,
            Message.status != MessageStatus.DELETED.value,
        )

    async def get_in_chat(self, chat_id: int, message_id: int) -> Optional[Message]:
        """Get a message only if it belongs to ``chat_id``."""
        result = await self.session.execute(
            select(Message).where(
                and_(Message.id == message_id, Message.chat_id == chat_id)
            )
        )
        return result.scalar_one_or_none()

    async def get_page(self, chat_id: int, offset: int = 0, limit: int = 50) -> List[Message]:
        """Non-deleted messages in chronological order, offset paginated."""
        result = await self.session.execute(
            select(Message)
            .where(self._visible(chat_id))
            .order_by(Message.created_at.asc(), Message.id.asc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_visible(self, chat_id: int) -> int:
        """Count non-deleted messages in a chat."""
        result = await self.session.execute(
            select(func.count(Message.id)).where(self._visible(chat_id))
        )
        return result.scalar_one()

    async def get_after(
        self,
        chat_id: int,
        cursor: Optional[Message] = None,
        limit: int = 50,
    ) -> List[Message]:
        """
        Non-deleted messages strictly after ``cursor`` in (created_at, id) order.

        Messages sent after the cursor was issued land behind it, so a
        forward scan never skips or repeats rows.
        """
        query = select(Message).where(self._visible(chat_id))
        if cursor is not None:
            query = query.where(
                or_(
                    Message.created_at > cursor.created_at,
                    and_(
                        Message.created_at == cursor.created_at,
                        Message.id > cursor.id,
                    ),
                )
            )
        query = query.order_by(Message.created_at.asc(), Message.id.asc()).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_last_visible_many(self, chat_ids: List[int]) -> Dict[int, Message]:
        """
        Most recent non-deleted message of each chat, keyed by chat id.

        One windowed query for the whole inbox page; chats with nothing
        visible are absent from the result.
        """
        if not chat_ids:
            return {}
        ranked = (
            select(
                Message.id,
                func.row_number()
                .over(
                    partition_by=Message.chat_id,
                    order_by=(Message.created_at.desc(), Message.id.desc()),
                )
                .label("position"),
            )
            .where(
                Message.chat_id.in_(chat_ids),
                Message.status != MessageStatus.DELETED.value,
            )
            .subquery()
        )
        result = await self.session.execute(
            select(Message)
            .join(ranked, ranked.c.id == Message.id)
            .where(ranked.c.position == 1)
        )
        return {message.chat_id: message for message in result.scalars().all()}

    async def mark_read(
        self,
        chat_id: int,
        receiver_id: int,
        up_to_id: Optional[int] = None,
    ) -> int:
        """Mark unread messages addressed to ``receiver_id`` as read. Returns rows updated."""
        conditions = [
            Message.chat_id == chat_id,
            Message.receiver_id == receiver_id,
            Message.is_read.is_(False),
            Message.status != MessageStatus.DELETED.value,
        ]
        if up_to_id is not None:
            conditions.append(Message.id <= up_to_id)

        result = await self.session.execute(
            update(Message)
            .where(and_(*conditions))
            .values(is_read=True)
        )
        return result.rowcount or 0

    async def count_unread(self, chat_id: int, receiver_id: int) -> int:
        """Count unread, non-deleted messages addressed to ``receiver_id``."""
        result = await self.session.execute(
            select(func.count(Message.id)).where(
                and_(
                    Message.chat_id == chat_id,
                    Message.receiver_id == receiver_id,
                    Message.is_read.is_(False),
                    Message.status != MessageStatus.DELETED.value,
                )
            )
        )
        return result.scalar_one()
