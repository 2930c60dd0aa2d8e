"""User repository."""

from typing import Dict, List, Optional

from sqlalchemy import select

from .base import BaseRepository
from ..database import User


class UserRepository(BaseRepository[User]):
    """Repository for User operations."""

    async def get_available(self, user_id: int) -> Optional[User]:
        """Get a user that is active and enabled."""
        result = await self.session.execute(
            select(User).where(
                User.id == user_id,
                User.is_active.is_(True),
                User.status == 1,
            )
        )
        return result.scalar_one_or_none()

    async def lock_pair(self, first_id: int, second_id: int) -> Dict[int, User]:
        """
        Lock both user rows, always in ascending id order.

        A fixed order means two users acting on each other at the same time
        queue up instead of deadlocking.
        """
        result = await self.session.execute(
            select(User)
            .where(User.id.in_((first_id, second_id)))
            .order_by(User.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {user.id: user for user in result.scalars().all()}

    async def get_many(self, user_ids: List[int]) -> Dict[int, User]:
        """Load several users keyed by id."""
        if not user_ids:
            return {}
        result = await self.session.execute(
            select(User).where(User.id.in_(user_ids))
        )
        return {user.id: user for user in result.scalars().all()}
