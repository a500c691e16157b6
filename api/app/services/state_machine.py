from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from ..errors import AlreadyBlocked, InvalidInput

PENDING = "pending"
LIKED = "liked"
SUPER_LIKED = "super_liked"
DISLIKED = "disliked"
BLOCKED = "blocked"

ACTIONS = (PENDING, LIKED, SUPER_LIKED, DISLIKED, BLOCKED)
POSITIVE = frozenset({LIKED, SUPER_LIKED})
RECORDABLE = frozenset({LIKED, SUPER_LIKED, DISLIKED, BLOCKED})


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    if user_a == user_b:
        raise InvalidInput("a user cannot act on their own profile")
    return tuple(sorted((user_a, user_b)))


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class MatchRecord:
    """One canonical row per unordered pair; actions are kept per direction.

    ``action_a`` is what ``user_a_id`` did to ``user_b_id`` and vice versa.
    """

    user_a_id: str
    user_b_id: str
    action_a: str = PENDING
    acted_at_a: datetime | None = None
    action_b: str = PENDING
    acted_at_b: datetime | None = None
    matched_at: datetime | None = None
    is_boosted: bool = False
    boost_expires_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def new(cls, user_x: str, user_y: str, now: datetime) -> "MatchRecord":
        a, b = canonical_pair(user_x, user_y)
        return cls(user_a_id=a, user_b_id=b, created_at=now)

    @property
    def pair_key(self) -> tuple[str, str]:
        return (self.user_a_id, self.user_b_id)

    def _side(self, user_id: str) -> str:
        if user_id == self.user_a_id:
            return "a"
        if user_id == self.user_b_id:
            return "b"
        raise InvalidInput(f"user {user_id} is not part of this pair")

    def other(self, user_id: str) -> str:
        return self.user_b_id if self._side(user_id) == "a" else self.user_a_id

    def action_of(self, user_id: str) -> str:
        return self.action_a if self._side(user_id) == "a" else self.action_b

    def acted_at_of(self, user_id: str) -> datetime | None:
        return self.acted_at_a if self._side(user_id) == "a" else self.acted_at_b

    def with_action(self, user_id: str, action: str, at: datetime) -> "MatchRecord":
        if self._side(user_id) == "a":
            return replace(self, action_a=action, acted_at_a=at)
        return replace(self, action_b=action, acted_at_b=at)

    @property
    def is_mutual(self) -> bool:
        return self.matched_at is not None

    @property
    def is_blocked(self) -> bool:
        return BLOCKED in (self.action_a, self.action_b)

    def boost_active(self, now: datetime) -> bool:
        if not self.is_boosted:
            return False
        expires = as_utc(self.boost_expires_at)
        return expires is None or expires > now

    def view_for(self, user_id: str) -> dict[str, Any]:
        other = self.other(user_id)
        return {
            "user_id": user_id,
            "other_user_id": other,
            "my_action": self.action_of(user_id),
            "my_acted_at": self.acted_at_of(user_id),
            "their_action": self.action_of(other),
            "their_acted_at": self.acted_at_of(other),
            "matched_at": self.matched_at,
            "is_mutual": self.is_mutual,
        }


@dataclass(frozen=True)
class Transition:
    record: MatchRecord
    transitioned: bool
    is_new_mutual_match: bool = False


def apply_action(record: MatchRecord, actor_id: str, action: str, now: datetime) -> Transition:
    if action not in RECORDABLE:
        raise InvalidInput(f"unsupported action: {action}")
    target_id = record.other(actor_id)
    current = record.action_of(actor_id)

    if action == current:
        return Transition(record, transitioned=False)

    if action == BLOCKED:
        updated = replace(record.with_action(actor_id, BLOCKED, now), matched_at=None)
        if record.action_of(target_id) in POSITIVE:
            updated = updated.with_action(target_id, PENDING, now)
        return Transition(updated, transitioned=True)

    if record.is_blocked:
        raise AlreadyBlocked("this pair is blocked")

    # matched_at only moves through unmatch or block.
    if record.matched_at is not None and action not in POSITIVE:
        raise InvalidInput("pair is already matched; unmatch instead")

    updated = record.with_action(actor_id, action, now)
    if (
        updated.matched_at is None
        and updated.action_a in POSITIVE
        and updated.action_b in POSITIVE
    ):
        return Transition(replace(updated, matched_at=now), transitioned=True, is_new_mutual_match=True)
    return Transition(updated, transitioned=True)


def apply_unblock(record: MatchRecord, actor_id: str, now: datetime) -> Transition:
    if record.action_of(actor_id) != BLOCKED:
        return Transition(record, transitioned=False)
    return Transition(record.with_action(actor_id, PENDING, now), transitioned=True)


def apply_unmatch(record: MatchRecord, actor_id: str, now: datetime) -> Transition:
    record.other(actor_id)
    if record.matched_at is None:
        return Transition(record, transitioned=False)
    updated = replace(record.with_action(actor_id, DISLIKED, now), matched_at=None)
    return Transition(updated, transitioned=True)
