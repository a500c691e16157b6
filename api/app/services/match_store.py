"""Durable like/dislike/block state per user pair.

Every mutation of a pair runs under a per-pair mutual exclusion (a
``threading.Lock`` in memory, ``SELECT ... FOR UPDATE`` on the canonical
row in SQL) so the two directional writes and the mutual check are one
atomic unit.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import or_, select, text
from sqlalchemy.exc import OperationalError

from ..config import PAIR_LOCK_TIMEOUT_SECONDS
from ..database import SessionLocal, insert_ignoring_conflicts
from ..errors import ConcurrentConflict
from ..models import MatchPair
from .state_machine import (
    BLOCKED,
    PENDING,
    POSITIVE,
    SUPER_LIKED,
    MatchRecord,
    Transition,
    apply_action,
    apply_unblock,
    apply_unmatch,
    as_utc,
    canonical_pair,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class _PairQueries:
    """Read-side queries shared by the store implementations."""

    def records_for(self, user_id: str) -> list[MatchRecord]:
        raise NotImplementedError

    def list_mutual_matches(self, user_id: str, limit: int = 50, offset: int = 0) -> list[MatchRecord]:
        rows = [r for r in self.records_for(user_id) if r.matched_at is not None]
        rows.sort(key=lambda r: (-as_utc(r.matched_at).timestamp(), r.other(user_id)))
        return rows[offset : offset + limit]

    def list_likers(self, user_id: str, limit: int = 50, offset: int = 0) -> list[MatchRecord]:
        rows = [
            r
            for r in self.records_for(user_id)
            if r.matched_at is None
            and not r.is_blocked
            and r.action_of(user_id) == PENDING
            and r.action_of(r.other(user_id)) in POSITIVE
        ]
        rows.sort(
            key=lambda r: (
                r.action_of(r.other(user_id)) != SUPER_LIKED,
                -(as_utc(r.acted_at_of(r.other(user_id))) or _EPOCH).timestamp(),
                r.other(user_id),
            )
        )
        return rows[offset : offset + limit]

    def blocked_ids(self, user_id: str) -> set[str]:
        return {r.other(user_id) for r in self.records_for(user_id) if r.is_blocked}

    def acted_ids(self, user_id: str) -> set[str]:
        return {r.other(user_id) for r in self.records_for(user_id) if r.action_of(user_id) != PENDING}

    def boosted_ids(self, user_id: str, now: datetime | None = None) -> set[str]:
        now = now or _now_utc()
        return {r.other(user_id) for r in self.records_for(user_id) if r.boost_active(now)}

    def statistics(self, user_id: str) -> dict[str, Any]:
        records = self.records_for(user_id)
        sent = [r for r in records if r.action_of(user_id) in POSITIVE]
        answered = [r for r in sent if r.action_of(r.other(user_id)) in POSITIVE]
        stats = {
            "likes_sent": len(sent),
            "super_likes_sent": sum(1 for r in sent if r.action_of(user_id) == SUPER_LIKED),
            "likes_received": sum(1 for r in records if r.action_of(r.other(user_id)) in POSITIVE),
            "mutual_matches": sum(1 for r in records if r.matched_at is not None),
            "blocked": sum(1 for r in records if r.action_of(user_id) == BLOCKED),
            "response_rate": 0.0,
        }
        if sent:
            stats["response_rate"] = round(len(answered) / len(sent) * 100, 1)
        return stats


class _PairLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class InMemoryMatchStateStore(_PairQueries):
    def __init__(self, lock_timeout_seconds: float = PAIR_LOCK_TIMEOUT_SECONDS) -> None:
        self._records: dict[tuple[str, str], MatchRecord] = {}
        # Only pairs with a mutation in flight hold an entry.
        self._pair_locks: dict[tuple[str, str], _PairLock] = {}
        self._lock = threading.Lock()
        self._lock_timeout = lock_timeout_seconds

    def _checkout_pair(self, key: tuple[str, str]) -> _PairLock:
        with self._lock:
            entry = self._pair_locks.get(key)
            if entry is None:
                entry = _PairLock()
                self._pair_locks[key] = entry
            entry.users += 1
            return entry

    def _checkin_pair(self, key: tuple[str, str], entry: _PairLock) -> None:
        with self._lock:
            entry.users -= 1
            if entry.users == 0:
                del self._pair_locks[key]

    def _mutate(
        self,
        actor_id: str,
        target_id: str,
        fn: Callable[[MatchRecord], Transition],
        now: datetime,
    ) -> Transition:
        key = canonical_pair(actor_id, target_id)
        entry = self._checkout_pair(key)
        try:
            if not entry.lock.acquire(timeout=self._lock_timeout):
                raise ConcurrentConflict(f"pair {key[0]}:{key[1]} is busy, retry")
            try:
                with self._lock:
                    record = self._records.get(key)
                if record is None:
                    record = MatchRecord.new(actor_id, target_id, now)
                result = fn(record)
                if result.transitioned:
                    with self._lock:
                        self._records[key] = result.record
                return result
            finally:
                entry.lock.release()
        finally:
            self._checkin_pair(key, entry)

    def get(self, user_x: str, user_y: str) -> MatchRecord | None:
        key = canonical_pair(user_x, user_y)
        with self._lock:
            return self._records.get(key)

    def records_for(self, user_id: str) -> list[MatchRecord]:
        with self._lock:
            return [r for k, r in self._records.items() if user_id in k]

    def record_action(self, actor_id: str, target_id: str, action: str, now: datetime | None = None) -> Transition:
        now = now or _now_utc()
        return self._mutate(actor_id, target_id, lambda r: apply_action(r, actor_id, action, now), now)

    def unblock(self, actor_id: str, target_id: str, now: datetime | None = None) -> Transition:
        now = now or _now_utc()
        return self._mutate(actor_id, target_id, lambda r: apply_unblock(r, actor_id, now), now)

    def unmatch(self, actor_id: str, target_id: str, now: datetime | None = None) -> Transition:
        now = now or _now_utc()
        return self._mutate(actor_id, target_id, lambda r: apply_unmatch(r, actor_id, now), now)

    def set_boost(self, actor_id: str, target_id: str, expires_at: datetime | None, now: datetime | None = None) -> MatchRecord:
        now = now or _now_utc()

        def _boost(record: MatchRecord) -> Transition:
            return Transition(replace(record, is_boosted=True, boost_expires_at=expires_at), transitioned=True)

        return self._mutate(actor_id, target_id, _boost, now).record


def _record_from_row(row: MatchPair) -> MatchRecord:
    return MatchRecord(
        user_a_id=row.user_a_id,
        user_b_id=row.user_b_id,
        action_a=row.action_a,
        acted_at_a=as_utc(row.acted_at_a),
        action_b=row.action_b,
        acted_at_b=as_utc(row.acted_at_b),
        matched_at=as_utc(row.matched_at),
        is_boosted=bool(row.is_boosted),
        boost_expires_at=as_utc(row.boost_expires_at),
        created_at=as_utc(row.created_at),
    )


def _copy_to_row(row: MatchPair, record: MatchRecord, now: datetime) -> None:
    row.action_a = record.action_a
    row.acted_at_a = record.acted_at_a
    row.action_b = record.action_b
    row.acted_at_b = record.acted_at_b
    row.matched_at = record.matched_at
    row.is_boosted = record.is_boosted
    row.boost_expires_at = record.boost_expires_at
    row.updated_at = now


class SqlMatchStateStore(_PairQueries):
    def __init__(self, session_factory=SessionLocal, lock_timeout_seconds: float = PAIR_LOCK_TIMEOUT_SECONDS) -> None:
        self._session_factory = session_factory
        self._lock_timeout = lock_timeout_seconds

    def _locked_row(self, db, a: str, b: str, now: datetime, create: bool) -> MatchPair | None:
        if db.get_bind().dialect.name == "postgresql":
            db.execute(text(f"SET LOCAL lock_timeout = '{int(self._lock_timeout * 1000)}ms'"))
        if create:
            db.execute(
                insert_ignoring_conflicts(db, MatchPair, ["user_a_id", "user_b_id"]).values(
                    user_a_id=a,
                    user_b_id=b,
                    action_a=PENDING,
                    action_b=PENDING,
                    is_boosted=False,
                    created_at=now,
                )
            )
        return db.execute(
            select(MatchPair).where(MatchPair.user_a_id == a, MatchPair.user_b_id == b).with_for_update()
        ).scalar_one_or_none()

    def _mutate(
        self,
        actor_id: str,
        target_id: str,
        fn: Callable[[MatchRecord], Transition],
        now: datetime,
        create: bool = True,
    ) -> Transition:
        a, b = canonical_pair(actor_id, target_id)
        try:
            with self._session_factory() as db:
                row = self._locked_row(db, a, b, now, create)
                if row is None:
                    result = fn(MatchRecord.new(actor_id, target_id, now))
                    db.rollback()
                    return result
                result = fn(_record_from_row(row))
                if result.transitioned:
                    _copy_to_row(row, result.record, now)
                db.commit()
                return result
        except OperationalError as exc:
            logger.warning("[MATCH] pair lock failed a=%s b=%s: %s", a, b, exc)
            raise ConcurrentConflict(f"pair {a}:{b} is busy, retry") from exc

    def get(self, user_x: str, user_y: str) -> MatchRecord | None:
        a, b = canonical_pair(user_x, user_y)
        with self._session_factory() as db:
            row = db.execute(
                select(MatchPair).where(MatchPair.user_a_id == a, MatchPair.user_b_id == b)
            ).scalar_one_or_none()
            return _record_from_row(row) if row else None

    def records_for(self, user_id: str) -> list[MatchRecord]:
        with self._session_factory() as db:
            rows = db.execute(
                select(MatchPair).where(or_(MatchPair.user_a_id == user_id, MatchPair.user_b_id == user_id))
            ).scalars().all()
            return [_record_from_row(r) for r in rows]

    def record_action(self, actor_id: str, target_id: str, action: str, now: datetime | None = None) -> Transition:
        now = now or _now_utc()
        return self._mutate(actor_id, target_id, lambda r: apply_action(r, actor_id, action, now), now)

    def unblock(self, actor_id: str, target_id: str, now: datetime | None = None) -> Transition:
        now = now or _now_utc()
        return self._mutate(actor_id, target_id, lambda r: apply_unblock(r, actor_id, now), now, create=False)

    def unmatch(self, actor_id: str, target_id: str, now: datetime | None = None) -> Transition:
        now = now or _now_utc()
        return self._mutate(actor_id, target_id, lambda r: apply_unmatch(r, actor_id, now), now, create=False)

    def set_boost(self, actor_id: str, target_id: str, expires_at: datetime | None, now: datetime | None = None) -> MatchRecord:
        now = now or _now_utc()
        return self._mutate(
            actor_id,
            target_id,
            lambda r: Transition(replace(r, is_boosted=True, boost_expires_at=expires_at), transitioned=True),
            now,
        ).record
