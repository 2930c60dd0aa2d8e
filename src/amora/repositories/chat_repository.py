"""Conversation repository for two-party chats."""

from typing import List, Optional, Tuple

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.exc import IntegrityError

from .base import BaseRepository
from ..database import ChatStatus, Conversation


def canonical_pair(user_a: int, user_b: int) -> Tuple[int, int]:
    """Order a pair so the lower id comes first."""
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


class ChatRepository(BaseRepository[Conversation]):
    """Repository for Conversation operations."""

    async def get_by_pair(
        self, user_a: int, user_b: int, for_update: bool = False
    ) -> Optional[Conversation]:
        """Get the conversation between two users, in either order."""
        p1, p2 = canonical_pair(user_a, user_b)
        query = select(Conversation).where(
            and_(
                Conversation.participant_1_id == p1,
                Conversation.participant_2_id == p2,
            )
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_or_create_by_pair(
        self, user_a: int, user_b: int
    ) -> Tuple[Conversation, bool]:
        """
        Get or create the pair's conversation. Returns (conversation, created).

        The insert runs inside a SAVEPOINT. If a concurrent request wins the
        unique constraint, only the savepoint is rolled back and the winner's
        row is read instead.
        """
        existing = await self.get_by_pair(user_a, user_b)
        if existing:
            return existing, False

        p1, p2 = canonical_pair(user_a, user_b)
        try:
            async with self.session.begin_nested():
                conversation = Conversation(
                    participant_1_id=p1,
                    participant_2_id=p2,
                    unread_count_p1=0,
                    unread_count_p2=0,
                    chat_status_p1=ChatStatus.ACTIVE.value,
                    chat_status_p2=ChatStatus.ACTIVE.value,
                )
                self.session.add(conversation)
                await self.session.flush()
        except IntegrityError:
            winner = await self.get_by_pair(p1, p2)
            if winner is None:
                raise
            return winner, False

        return conversation, True

    async def get_many(self, chat_ids: List[int], for_update: bool = False) -> List[Conversation]:
        """Get several conversations by id."""
        if not chat_ids:
            return []
        query = select(Conversation).where(Conversation.id.in_(chat_ids)).order_by(Conversation.id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_inbox(
        self,
        user_id: int,
        offset: int = 0,
        limit: int = 20,
    ) -> List[Conversation]:
        """
        Conversations visible to ``user_id``.

        Deleted-for-me threads are hidden. Pinned threads come first, then
        the most recently active.
        """
        is_first = Conversation.participant_1_id == user_id
        my_status = case((is_first, Conversation.chat_status_p1), else_=Conversation.chat_status_p2)
        my_pin = case((is_first, Conversation.is_pinned_p1), else_=Conversation.is_pinned_p2)
        activity = func.coalesce(Conversation.last_message_time, Conversation.created_at)

        query = (
            select(Conversation)
            .where(
                or_(
                    Conversation.participant_1_id == user_id,
                    Conversation.participant_2_id == user_id,
                ),
                my_status != ChatStatus.DELETED.value,
            )
            .order_by(my_pin.desc(), activity.desc(), Conversation.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
