"""Entry points the HTTP layer calls.

Engine conditions (quota, blocked pair, bad input, busy pair) are turned
into an ``ActionResult`` here. Notifications and conversation bootstrap are
fire-and-forget: a failing collaborator is logged and never undoes the
recorded action.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from ..config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MatchingConfig
from ..errors import AlreadyBlocked, ConcurrentConflict, InvalidInput, MatchEngineError, QuotaExceeded
from .daily_batch import DailyBatch, DailyBatchGenerator
from .events import LIKE_RECEIVED, MATCH_FOUND, SUPER_LIKE_RECEIVED, InMemoryConversationBootstrap, InMemoryEventSink
from .match_store import InMemoryMatchStateStore
from .profiles import ProfileAttributes
from .quota import LIKE, SUPER_LIKE, QuotaEnforcer
from .ranking import CandidateRanker, RankPage, target_genders
from .scoring import CompatibilityScorer, match_quality, mutual_compatibility
from .state_machine import BLOCKED, DISLIKED, LIKED, SUPER_LIKED, MatchRecord, Transition, canonical_pair

logger = logging.getLogger(__name__)


class ActionStatus(str, Enum):
    OK = "ok"
    QUOTA_EXCEEDED = "quota_exceeded"
    BLOCKED = "blocked"
    INVALID = "invalid"
    CONFLICT = "conflict"


_STATUS_BY_ERROR = {
    QuotaExceeded: ActionStatus.QUOTA_EXCEEDED,
    AlreadyBlocked: ActionStatus.BLOCKED,
    InvalidInput: ActionStatus.INVALID,
    ConcurrentConflict: ActionStatus.CONFLICT,
}


@dataclass(frozen=True)
class ActionResult:
    status: ActionStatus
    action: str
    record: MatchRecord | None = None
    transitioned: bool = False
    is_new_mutual_match: bool = False
    remaining: int | None = None
    limit: int | None = None
    resets_at: datetime | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == ActionStatus.OK


@dataclass(frozen=True)
class MatchListing:
    user_id: str
    record: MatchRecord
    profile: ProfileAttributes | None
    compatibility: float | None


def _was_already_matched(transition: Transition) -> bool:
    return transition.record.matched_at is not None and not transition.is_new_mutual_match


def _failure(action: str, exc: MatchEngineError, record: MatchRecord | None = None) -> ActionResult:
    status = _STATUS_BY_ERROR.get(type(exc), ActionStatus.INVALID)
    if isinstance(exc, QuotaExceeded):
        return ActionResult(
            status=status,
            action=action,
            record=record,
            remaining=0,
            limit=exc.limit,
            resets_at=exc.resets_at,
            message=str(exc),
        )
    return ActionResult(status=status, action=action, record=record, message=str(exc))


class MatchFacade:
    def __init__(
        self,
        profiles,
        match_store=None,
        quota: QuotaEnforcer | None = None,
        batch_generator: DailyBatchGenerator | None = None,
        events=None,
        conversations=None,
        config: MatchingConfig | None = None,
        scorer: CompatibilityScorer | None = None,
    ) -> None:
        self.config = config or MatchingConfig()
        self.profiles = profiles
        self.match_store = match_store if match_store is not None else InMemoryMatchStateStore()
        self.quota = quota or QuotaEnforcer(config=self.config)
        self.scorer = scorer or CompatibilityScorer(self.config)
        self.ranker = CandidateRanker(self.scorer)
        self.batch_generator = batch_generator or DailyBatchGenerator(
            profiles, self.match_store, ranker=self.ranker, config=self.config
        )
        self.events = events if events is not None else InMemoryEventSink()
        self.conversations = conversations if conversations is not None else InMemoryConversationBootstrap()

    def _now(self, now: datetime | None) -> datetime:
        return now or datetime.now(timezone.utc)

    def _require_profile(self, user_id: str) -> ProfileAttributes:
        profile = self.profiles.get_profile(user_id)
        if profile is None:
            raise InvalidInput(f"unknown user {user_id}")
        return profile

    # -- reads ---------------------------------------------------------

    def find_candidates(
        self,
        actor_id: str,
        page: int = 1,
        page_size: int | None = None,
        include_acted: bool = False,
        now: datetime | None = None,
    ) -> RankPage:
        now = self._now(now)
        actor = self._require_profile(actor_id)
        prefs = self.profiles.get_preferences(actor_id)
        genders = target_genders(actor, prefs)
        if genders is None:
            raise InvalidInput("profile gender is required to find candidates")
        page_size = min(MAX_PAGE_SIZE, max(1, int(page_size or DEFAULT_PAGE_SIZE)))
        return self.ranker.rank(
            actor,
            self.profiles.get_eligible_pool(actor_id, genders),
            prefs,
            page=page,
            page_size=page_size,
            blocked_ids=self.match_store.blocked_ids(actor_id),
            acted_ids=self.match_store.acted_ids(actor_id),
            boosted_ids=self.match_store.boosted_ids(actor_id, now),
            include_acted=include_acted,
        )

    def list_mutual_matches(self, user_id: str, limit: int = 50, offset: int = 0) -> list[MatchListing]:
        viewer = self._require_profile(user_id)
        out: list[MatchListing] = []
        for record in self.match_store.list_mutual_matches(user_id, limit=limit, offset=offset):
            other_id = record.other(user_id)
            other = self.profiles.get_profile(other_id)
            compatibility = None
            if other is not None:
                compatibility = mutual_compatibility(
                    self.scorer.score(viewer, other, self.profiles.get_preferences(user_id)),
                    self.scorer.score(other, viewer, self.profiles.get_preferences(other_id)),
                )
            out.append(MatchListing(other_id, record, other, compatibility))
        return out

    def list_who_liked_me(self, user_id: str, limit: int = 50, offset: int = 0) -> list[MatchListing]:
        """Pending likes waiting on ``user_id``. Tier gating is the caller's job."""
        viewer = self._require_profile(user_id)
        prefs = self.profiles.get_preferences(user_id)
        out: list[MatchListing] = []
        for record in self.match_store.list_likers(user_id, limit=limit, offset=offset):
            other_id = record.other(user_id)
            other = self.profiles.get_profile(other_id)
            compatibility = self.scorer.score(viewer, other, prefs).overall if other is not None else None
            out.append(MatchListing(other_id, record, other, compatibility))
        return out

    def get_daily_batch(self, user_id: str, day: date | None = None, now: datetime | None = None) -> DailyBatch:
        return self.batch_generator.generate_for(user_id, day=day, now=now)

    def statistics(self, user_id: str) -> dict[str, Any]:
        return self.match_store.statistics(user_id)

    # -- actions -------------------------------------------------------

    def process_like(self, actor_id: str, target_id: str, is_super: bool = False, now: datetime | None = None) -> ActionResult:
        action = SUPER_LIKED if is_super else LIKED
        quota_type = SUPER_LIKE if is_super else LIKE
        now = self._now(now)
        try:
            canonical_pair(actor_id, target_id)
            actor = self._require_profile(actor_id)
            self._require_profile(target_id)

            existing = self.match_store.get(actor_id, target_id)
            if existing is not None and existing.is_blocked:
                raise AlreadyBlocked("this pair is blocked")
            if existing is not None and (existing.action_of(actor_id) == action or existing.is_mutual):
                # Repeats and like/super-like swaps on a match are free and silent.
                transition = self.match_store.record_action(actor_id, target_id, action, now)
                peek = self.quota.peek(actor_id, quota_type, actor.tier, now=now)
                return ActionResult(
                    status=ActionStatus.OK,
                    action=action,
                    record=transition.record,
                    transitioned=transition.transitioned,
                    remaining=peek.remaining,
                    limit=peek.limit,
                    resets_at=peek.resets_at,
                )

            decision = self.quota.try_consume(actor_id, quota_type, actor.tier, now=now)
            if not decision.allowed:
                raise QuotaExceeded(quota_type, decision.limit, decision.resets_at)

            try:
                transition = self.match_store.record_action(actor_id, target_id, action, now)
            except Exception:
                self.quota.release(actor_id, quota_type, decision.quota_date)
                raise
            remaining = decision.remaining
            if not transition.transitioned or _was_already_matched(transition):
                self.quota.release(actor_id, quota_type, decision.quota_date)
                remaining += 1
        except MatchEngineError as exc:
            logger.warning("[MATCH] %s rejected actor=%s target=%s: %s", action, actor_id, target_id, exc)
            return _failure(action, exc)

        self._after_positive_action(actor, target_id, action, transition, now)
        return ActionResult(
            status=ActionStatus.OK,
            action=action,
            record=transition.record,
            transitioned=transition.transitioned,
            is_new_mutual_match=transition.is_new_mutual_match,
            remaining=remaining,
            limit=decision.limit,
            resets_at=decision.resets_at,
        )

    def _record(self, action: str, actor_id: str, target_id: str, fn, now: datetime | None) -> ActionResult:
        now = self._now(now)
        try:
            transition: Transition = fn(actor_id, target_id, now)
        except MatchEngineError as exc:
            logger.warning("[MATCH] %s rejected actor=%s target=%s: %s", action, actor_id, target_id, exc)
            return _failure(action, exc)
        if transition.transitioned:
            logger.info("[MATCH] %s actor=%s target=%s", action, actor_id, target_id)
        return ActionResult(
            status=ActionStatus.OK,
            action=action,
            record=transition.record,
            transitioned=transition.transitioned,
        )

    def dislike(self, actor_id: str, target_id: str, now: datetime | None = None) -> ActionResult:
        return self._record(
            DISLIKED, actor_id, target_id, lambda a, t, n: self.match_store.record_action(a, t, DISLIKED, n), now
        )

    def block(self, actor_id: str, target_id: str, now: datetime | None = None) -> ActionResult:
        return self._record(
            BLOCKED, actor_id, target_id, lambda a, t, n: self.match_store.record_action(a, t, BLOCKED, n), now
        )

    def unblock(self, actor_id: str, target_id: str, now: datetime | None = None) -> ActionResult:
        return self._record("unblock", actor_id, target_id, self.match_store.unblock, now)

    def unmatch(self, actor_id: str, target_id: str, now: datetime | None = None) -> ActionResult:
        return self._record("unmatch", actor_id, target_id, self.match_store.unmatch, now)

    def boost(self, actor_id: str, target_id: str, expires_at: datetime | None, now: datetime | None = None) -> MatchRecord:
        return self.match_store.set_boost(actor_id, target_id, expires_at, self._now(now))

    # -- collaborators -------------------------------------------------

    def _emit(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            self.events.emit(event_type, payload)
        except Exception:
            logger.exception("[EVENTS] emit failed event=%s user_id=%s", event_type, payload.get("user_id"))

    def _after_positive_action(
        self,
        actor: ProfileAttributes,
        target_id: str,
        action: str,
        transition: Transition,
        now: datetime,
    ) -> None:
        if transition.is_new_mutual_match:
            self._announce_match(actor, target_id, transition.record)
            return
        if not transition.transitioned or _was_already_matched(transition):
            return
        event_type = SUPER_LIKE_RECEIVED if action == SUPER_LIKED else LIKE_RECEIVED
        self._emit(
            event_type,
            {"user_id": target_id, "from_user_id": actor.user_id, "at": now.isoformat()},
        )

    def _announce_match(self, actor: ProfileAttributes, target_id: str, record: MatchRecord) -> None:
        logger.info("[MATCH] new mutual match a=%s b=%s", record.user_a_id, record.user_b_id)
        conversation_id = None
        try:
            conversation_id = self.conversations.create_conversation_if_absent(record.user_a_id, record.user_b_id)
        except Exception:
            logger.exception("[EVENTS] conversation bootstrap failed a=%s b=%s", record.user_a_id, record.user_b_id)

        compatibility = None
        try:
            target = self.profiles.get_profile(target_id)
            if target is not None:
                compatibility = mutual_compatibility(
                    self.scorer.score(actor, target, self.profiles.get_preferences(actor.user_id)),
                    self.scorer.score(target, actor, self.profiles.get_preferences(target_id)),
                )
        except Exception:
            logger.exception("[EVENTS] compatibility lookup failed a=%s b=%s", actor.user_id, target_id)

        matched_at = record.matched_at.isoformat() if record.matched_at else None
        for user_id, other_id in ((actor.user_id, target_id), (target_id, actor.user_id)):
            self._emit(
                MATCH_FOUND,
                {
                    "user_id": user_id,
                    "matched_user_id": other_id,
                    "matched_at": matched_at,
                    "conversation_id": conversation_id,
                    "mutual_compatibility": compatibility,
                    "match_quality": match_quality(compatibility) if compatibility is not None else None,
                },
            )
