"""
Like/reject state machine for one ordered pair of users.

Everything here is pure: given the current forward and reverse actions it
returns a plan of edge writes and counter deltas. The interaction service
applies the plan under row locks; all counter arithmetic lives in this
module.

States per (actor, target):

    none  --like-->   like    (match instead when the target reciprocates)
    like  --like-->   match   (once the target reciprocates; else no-op)
    *     --reject--> reject
    reject --like-->  like / match
"""

from dataclasses import dataclass
from typing import Optional, Union

from ..database import InteractionAction

ActionLike = Union[InteractionAction, str, None]

LIKE = InteractionAction.LIKE
REJECT = InteractionAction.REJECT
MATCH = InteractionAction.MATCH


@dataclass(frozen=True)
class CounterDelta:
    """Change to a user's (total_likes, total_matches, total_rejects)."""
    likes: int = 0
    matches: int = 0
    rejects: int = 0

    def __add__(self, other: "CounterDelta") -> "CounterDelta":
        return CounterDelta(
            self.likes + other.likes,
            self.matches + other.matches,
            self.rejects + other.rejects,
        )

    @property
    def is_zero(self) -> bool:
        return not (self.likes or self.matches or self.rejects)

    def apply(self, user) -> None:
        """Apply to a user row, never letting a counter drop below zero."""
        user.total_likes = max(0, (user.total_likes or 0) + self.likes)
        user.total_matches = max(0, (user.total_matches or 0) + self.matches)
        user.total_rejects = max(0, (user.total_rejects or 0) + self.rejects)


NO_CHANGE = CounterDelta()
MATCH_FORMED = CounterDelta(matches=1)
MATCH_BROKEN = CounterDelta(matches=-1)

# (previous forward action, requested action) -> acting user's like/reject delta
ACTOR_DELTAS = {
    (None, LIKE): CounterDelta(likes=1),
    (REJECT, LIKE): CounterDelta(likes=1, rejects=-1),
    (LIKE, LIKE): NO_CHANGE,
    (MATCH, LIKE): NO_CHANGE,
    (None, REJECT): CounterDelta(rejects=1),
    (LIKE, REJECT): CounterDelta(likes=-1, rejects=1),
    (MATCH, REJECT): CounterDelta(likes=-1, rejects=1),
    (REJECT, REJECT): NO_CHANGE,
}


@dataclass(frozen=True)
class EdgeWrite:
    """New state for one edge."""
    action: InteractionAction
    is_mutual: bool


@dataclass(frozen=True)
class TransitionPlan:
    """What applying one request to a pair must change."""
    forward: Optional[EdgeWrite]
    reverse: Optional[EdgeWrite]
    actor_delta: CounterDelta
    target_delta: CounterDelta
    is_match: bool
    is_new_match: bool = False
    match_broken: bool = False

    @property
    def is_noop(self) -> bool:
        return (
            self.forward is None
            and self.reverse is None
            and self.actor_delta.is_zero
            and self.target_delta.is_zero
        )


def _normalize(action: ActionLike) -> Optional[InteractionAction]:
    if action is None:
        return None
    return InteractionAction(action)


def counter_delta(
    previous: ActionLike,
    requested: ActionLike,
    is_new_match: bool = False,
    match_broken: bool = False,
) -> CounterDelta:
    """Acting user's delta for a transition; match changes count once each."""
    delta = ACTOR_DELTAS[(_normalize(previous), _normalize(requested))]
    if is_new_match:
        delta = delta + MATCH_FORMED
    if match_broken:
        delta = delta + MATCH_BROKEN
    return delta


def _noop(is_match: bool) -> TransitionPlan:
    return TransitionPlan(
        forward=None,
        reverse=None,
        actor_delta=NO_CHANGE,
        target_delta=NO_CHANGE,
        is_match=is_match,
    )


def plan_like(
    forward: ActionLike,
    reverse: ActionLike,
    target_is_bot: bool,
) -> TransitionPlan:
    """
    Plan a like from actor to target.

    Bots always reciprocate. A human reciprocates when their edge towards
    the actor says like (or a leftover one-sided match).
    """
    forward = _normalize(forward)
    reverse = _normalize(reverse)

    if forward == MATCH and reverse == MATCH:
        return _noop(is_match=True)

    reciprocated = target_is_bot or reverse in (LIKE, MATCH)

    if reciprocated:
        return TransitionPlan(
            forward=EdgeWrite(MATCH, True),
            reverse=EdgeWrite(MATCH, True),
            actor_delta=counter_delta(forward, LIKE, is_new_match=True),
            target_delta=MATCH_FORMED,
            is_match=True,
            is_new_match=True,
        )

    if forward == LIKE:
        return _noop(is_match=False)

    return TransitionPlan(
        forward=EdgeWrite(LIKE, False),
        reverse=None,
        actor_delta=counter_delta(forward, LIKE),
        target_delta=NO_CHANGE,
        is_match=False,
    )


def plan_reject(forward: ActionLike, reverse: ActionLike) -> TransitionPlan:
    """
    Plan a reject from actor to target.

    Breaking a match clears mutuality on both edges. The reverse edge is
    forced to reject only when it was a match; a plain like stays, since
    that opinion never depended on the actor.
    """
    forward = _normalize(forward)
    reverse = _normalize(reverse)

    if forward == REJECT:
        return _noop(is_match=False)

    was_match = forward == MATCH or reverse == MATCH

    reverse_write = None
    if was_match and reverse is not None:
        reverse_write = EdgeWrite(REJECT if reverse == MATCH else reverse, False)

    return TransitionPlan(
        forward=EdgeWrite(REJECT, False),
        reverse=reverse_write,
        actor_delta=counter_delta(forward, REJECT, match_broken=was_match),
        target_delta=MATCH_BROKEN if was_match else NO_CHANGE,
        is_match=False,
        match_broken=was_match,
    )


def plan_transition(
    requested: ActionLike,
    forward: ActionLike,
    reverse: ActionLike,
    target_is_bot: bool = False,
) -> TransitionPlan:
    """Plan ``requested`` (like or reject) for the pair's current edges."""
    requested = _normalize(requested)
    if requested == LIKE:
        return plan_like(forward, reverse, target_is_bot)
    if requested == REJECT:
        return plan_reject(forward, reverse)
    raise ValueError(f"{requested.value} is derived, not a direct action")


@dataclass(frozen=True)
class PairState:
    """Both directions of one relationship, as read under lock."""
    forward: Optional[InteractionAction]
    reverse: Optional[InteractionAction]

    @classmethod
    def from_edges(cls, forward_edge, reverse_edge) -> "PairState":
        return cls(
            forward=_normalize(forward_edge.action) if forward_edge is not None else None,
            reverse=_normalize(reverse_edge.action) if reverse_edge is not None else None,
        )

    @property
    def is_matched(self) -> bool:
        return self.forward == MATCH and self.reverse == MATCH

    def plan(self, requested: ActionLike, target_is_bot: bool = False) -> TransitionPlan:
        return plan_transition(requested, self.forward, self.reverse, target_is_bot)
