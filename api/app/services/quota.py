from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select, update

from ..config import MatchingConfig
from ..database import SessionLocal, insert_ignoring_conflicts
from ..errors import InvalidInput
from ..models import QuotaCounter

logger = logging.getLogger(__name__)

LIKE = "like"
SUPER_LIKE = "super_like"
ACTION_TYPES = (LIKE, SUPER_LIKE)

QuotaKey = tuple[str, str, date]


def quota_date(now: datetime, tz: str) -> date:
    return now.astimezone(ZoneInfo(tz)).date()


def next_reset_at(day: date, tz: str) -> datetime:
    local_midnight = datetime.combine(day + timedelta(days=1), time.min, tzinfo=ZoneInfo(tz))
    return local_midnight.astimezone(timezone.utc)


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    remaining: int
    limit: int
    quota_date: date
    resets_at: datetime


class InMemoryQuotaCounter:
    def __init__(self) -> None:
        self._counts: dict[QuotaKey, int] = defaultdict(int)
        self._lock = threading.Lock()

    def try_increment(self, key: QuotaKey, limit: int) -> tuple[bool, int]:
        with self._lock:
            used = self._counts[key]
            if used >= limit:
                return False, used
            self._counts[key] = used + 1
            return True, used + 1

    def release(self, key: QuotaKey) -> None:
        with self._lock:
            if self._counts[key] > 0:
                self._counts[key] -= 1

    def used(self, key: QuotaKey) -> int:
        with self._lock:
            return self._counts.get(key, 0)

    def set_used(self, key: QuotaKey, used: int) -> None:
        with self._lock:
            self._counts[key] = max(0, int(used))


def _key_filter(key: QuotaKey):
    user_id, action_type, day = key
    return (
        QuotaCounter.user_id == user_id,
        QuotaCounter.action_type == action_type,
        QuotaCounter.quota_date == day,
    )


class SqlQuotaCounter:
    """Counter rows keyed by (user, action, date); a new date is a new row."""

    def __init__(self, session_factory=SessionLocal) -> None:
        self._session_factory = session_factory

    def try_increment(self, key: QuotaKey, limit: int) -> tuple[bool, int]:
        user_id, action_type, day = key
        with self._session_factory() as db:
            db.execute(
                insert_ignoring_conflicts(db, QuotaCounter, ["user_id", "action_type", "quota_date"]).values(
                    user_id=user_id, action_type=action_type, quota_date=day, used=0
                )
            )
            result = db.execute(
                update(QuotaCounter)
                .where(*_key_filter(key), QuotaCounter.used < limit)
                .values(used=QuotaCounter.used + 1)
                .execution_options(synchronize_session=False)
            )
            allowed = result.rowcount == 1
            used = db.execute(select(QuotaCounter.used).where(*_key_filter(key))).scalar_one()
            db.commit()
        return allowed, int(used)

    def release(self, key: QuotaKey) -> None:
        with self._session_factory() as db:
            db.execute(
                update(QuotaCounter)
                .where(*_key_filter(key), QuotaCounter.used > 0)
                .values(used=QuotaCounter.used - 1)
                .execution_options(synchronize_session=False)
            )
            db.commit()

    def used(self, key: QuotaKey) -> int:
        with self._session_factory() as db:
            value = db.execute(select(QuotaCounter.used).where(*_key_filter(key))).scalar_one_or_none()
        return int(value or 0)


class QuotaEnforcer:
    """Caps likes and super-likes per user per calendar day.

    The day boundary is evaluated in the configured zone for every user.
    Counters are keyed by date, so nothing has to be reset.
    """

    def __init__(self, counter=None, config: MatchingConfig | None = None) -> None:
        self.counter = counter if counter is not None else InMemoryQuotaCounter()
        self.config = config or MatchingConfig()

    def _resolve_day(self, day: date | None, now: datetime | None) -> date:
        if day is not None:
            return day
        return quota_date(now or datetime.now(timezone.utc), self.config.timezone)

    def _check_action(self, action_type: str) -> None:
        if action_type not in ACTION_TYPES:
            raise InvalidInput(f"no quota is kept for action {action_type}")

    def try_consume(
        self,
        user_id: str,
        action_type: str,
        tier: str,
        day: date | None = None,
        now: datetime | None = None,
    ) -> QuotaDecision:
        self._check_action(action_type)
        day = self._resolve_day(day, now)
        limit = self.config.limit_for(action_type, tier)
        allowed, used = self.counter.try_increment((user_id, action_type, day), limit)
        decision = QuotaDecision(
            allowed=allowed,
            remaining=max(0, limit - used),
            limit=limit,
            quota_date=day,
            resets_at=next_reset_at(day, self.config.timezone),
        )
        if not allowed:
            logger.warning("[QUOTA] exhausted user_id=%s action=%s tier=%s limit=%s", user_id, action_type, tier, limit)
        return decision

    def release(self, user_id: str, action_type: str, day: date) -> None:
        self._check_action(action_type)
        self.counter.release((user_id, action_type, day))
        logger.info("[QUOTA] released permit user_id=%s action=%s date=%s", user_id, action_type, day)

    def peek(
        self,
        user_id: str,
        action_type: str,
        tier: str,
        day: date | None = None,
        now: datetime | None = None,
    ) -> QuotaDecision:
        self._check_action(action_type)
        day = self._resolve_day(day, now)
        limit = self.config.limit_for(action_type, tier)
        used = self.counter.used((user_id, action_type, day))
        return QuotaDecision(
            allowed=used < limit,
            remaining=max(0, limit - used),
            limit=limit,
            quota_date=day,
            resets_at=next_reset_at(day, self.config.timezone),
        )
