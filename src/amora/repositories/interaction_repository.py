"""Interaction edge repository."""

from typing import List, Optional, Tuple

from sqlalchemy import and_, func, select

from .base import BaseRepository
from ..database import InteractionAction, InteractionEdge, User


class InteractionRepository(BaseRepository[InteractionEdge]):
    """Repository for directional like/reject/match edges."""

    async def lock_pair(
        self, actor_id: int, target_id: int
    ) -> Tuple[Optional[InteractionEdge], Optional[InteractionEdge]]:
        """
        Lock and return (forward, reverse) edges for a pair.

        Rows are locked in ascending (actor_id, target_id) order.
        """
        result = await self.session.execute(
            select(InteractionEdge)
            .where(
                (
                    (InteractionEdge.actor_id == actor_id)
                    & (InteractionEdge.target_id == target_id)
                )
                | (
                    (InteractionEdge.actor_id == target_id)
                    & (InteractionEdge.target_id == actor_id)
                )
            )
            .order_by(InteractionEdge.actor_id, InteractionEdge.target_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        forward = reverse = None
        for edge in result.scalars().all():
            if edge.actor_id == actor_id:
                forward = edge
            else:
                reverse = edge
        return forward, reverse

    async def save_edge(
        self,
        existing: Optional[InteractionEdge],
        actor_id: int,
        target_id: int,
        action: str,
        is_mutual: bool,
    ) -> InteractionEdge:
        """Overwrite an edge in place, or create it on first interaction."""
        if existing is None:
            return await self.create(
                actor_id=actor_id,
                target_id=target_id,
                action=action,
                is_mutual=is_mutual,
            )

        existing.action = action
        existing.is_mutual = is_mutual
        await self.session.flush()
        return existing

    async def list_for_actor(
        self,
        actor_id: int,
        action: str,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Tuple[InteractionEdge, User]], int]:
        """
        Page through an actor's edges with the counterpart profile joined in.

        ``match`` only returns mutual matches. Counterparts that are
        inactive or disabled are skipped. Returns (rows, total).
        """
        conditions = [
            InteractionEdge.actor_id == actor_id,
            InteractionEdge.action == action,
            User.is_active.is_(True),
            User.status == 1,
        ]
        if action == InteractionAction.MATCH.value:
            conditions.append(InteractionEdge.is_mutual.is_(True))

        base = (
            select(InteractionEdge, User)
            .join(User, User.id == InteractionEdge.target_id)
            .where(and_(*conditions))
        )

        total = await self.session.scalar(
            select(func.count()).select_from(base.subquery())
        )

        result = await self.session.execute(
            base.order_by(
                InteractionEdge.updated_at.desc(), InteractionEdge.id.desc()
            )
            .offset(offset)
            .limit(limit)
        )
        rows = [(edge, user) for edge, user in result.all()]
        return rows, total or 0
