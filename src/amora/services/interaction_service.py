"""Interaction engine: likes, rejects, matches and user counters."""

import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..core.exceptions import (
    InvalidOperationError,
    ResourceNotFoundError,
    ValidationError,
)
from ..database import InteractionAction, InteractionEdge, User, atomic
from ..repositories.interaction_repository import InteractionRepository
from ..repositories.user_repository import UserRepository
from .chat_service import ChatService
from .interaction_rules import PairState, TransitionPlan

# Extra rule a target must satisfy, returning an error message or None
EligibilityRule = Callable[[User], Optional[str]]


def bot_only(target: User) -> Optional[str]:
    if not target.is_bot:
        return "Only bot profiles can be matched directly"
    return None


@dataclass
class LikeOutcome:
    target_user_id: int
    target_kind: str
    is_match: bool
    is_new_match: bool = False
    chat_id: Optional[int] = None


@dataclass
class RejectOutcome:
    target_user_id: int
    target_kind: str


@dataclass
class InteractionPage:
    """A page of the caller's edges joined with each counterpart."""
    items: List[Tuple[InteractionEdge, User]]
    page: int
    limit: int
    total_items: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_items / self.limit) if self.limit else 0


class InteractionService:
    """Business logic for directional interactions between users."""

    def __init__(
        self,
        session: AsyncSession,
        user_repo: UserRepository,
        interaction_repo: InteractionRepository,
        chat_service: ChatService,
    ):
        self.session = session
        self.user_repo = user_repo
        self.interaction_repo = interaction_repo
        self.chat_service = chat_service

    async def like(self, actor_id: int, target_id: int) -> LikeOutcome:
        """Like a user; bots and users who already liked back match at once."""
        return await self._like(actor_id, target_id)

    async def match_with_bot(self, actor_id: int, target_id: int) -> LikeOutcome:
        """Like path restricted to bot targets."""
        return await self._like(actor_id, target_id, rule=bot_only)

    async def reject(self, actor_id: int, target_id: int) -> RejectOutcome:
        """Reject a user, breaking any existing match."""
        self._check_pair(actor_id, target_id)

        async with atomic(self.session):
            actor, target = await self._lock_users(actor_id, target_id)
            plan = await self._apply(actor, target, InteractionAction.REJECT)

        if plan.match_broken:
            logger.info(f"Match between users {actor_id} and {target_id} broken by {actor_id}")
        return RejectOutcome(target_user_id=target.id, target_kind=target.type)

    async def _like(
        self,
        actor_id: int,
        target_id: int,
        rule: Optional[EligibilityRule] = None,
    ) -> LikeOutcome:
        self._check_pair(actor_id, target_id)

        async with atomic(self.session):
            actor, target = await self._lock_users(actor_id, target_id)
            if rule is not None:
                problem = rule(target)
                if problem:
                    raise InvalidOperationError(problem)

            plan = await self._apply(actor, target, InteractionAction.LIKE)

            chat_id = None
            if plan.is_match:
                conversation, _ = await self.chat_service.ensure_conversation(actor.id, target.id)
                chat_id = conversation.id

        if plan.is_new_match:
            logger.info(f"Match formed between users {actor_id} and {target_id} (chat {chat_id})")

        return LikeOutcome(
            target_user_id=target.id,
            target_kind=target.type,
            is_match=plan.is_match,
            is_new_match=plan.is_new_match,
            chat_id=chat_id,
        )

    @staticmethod
    def _check_pair(actor_id: int, target_id: int) -> None:
        if actor_id == target_id:
            raise ValidationError("You cannot interact with yourself")

    async def _lock_users(self, actor_id: int, target_id: int) -> Tuple[User, User]:
        users = await self.user_repo.lock_pair(actor_id, target_id)

        actor = users.get(actor_id)
        if actor is None or not actor.is_available:
            raise ResourceNotFoundError("User", actor_id)
        target = users.get(target_id)
        if target is None or not target.is_available:
            raise ResourceNotFoundError("User", target_id)
        return actor, target

    async def _apply(
        self, actor: User, target: User, requested: InteractionAction
    ) -> TransitionPlan:
        """Decide and write one transition. Both users must already be locked."""
        forward, reverse = await self.interaction_repo.lock_pair(actor.id, target.id)
        state = PairState.from_edges(forward, reverse)
        plan = state.plan(requested, target_is_bot=target.is_bot)

        if plan.is_noop:
            return plan

        if plan.forward is not None:
            await self.interaction_repo.save_edge(
                forward, actor.id, target.id,
                plan.forward.action.value, plan.forward.is_mutual,
            )
        if plan.reverse is not None:
            await self.interaction_repo.save_edge(
                reverse, target.id, actor.id,
                plan.reverse.action.value, plan.reverse.is_mutual,
            )

        plan.actor_delta.apply(actor)
        plan.target_delta.apply(target)
        await self.session.flush()
        return plan

    async def list_interactions(
        self,
        user_id: int,
        action: str = InteractionAction.MATCH.value,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> InteractionPage:
        """The caller's matches or outstanding likes, newest first."""
        if action not in (InteractionAction.MATCH.value, InteractionAction.LIKE.value):
            raise ValidationError("action must be 'match' or 'like'")
        limit = limit or settings.DEFAULT_PAGE_SIZE
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        limit = min(limit, settings.MAX_PAGE_SIZE)

        rows, total = await self.interaction_repo.list_for_actor(
            user_id, action, offset=(page - 1) * limit, limit=limit
        )
        return InteractionPage(items=rows, page=page, limit=limit, total_items=total)
