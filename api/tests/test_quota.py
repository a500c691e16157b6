import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone

import pytest

from app.config import MatchingConfig
from app.errors import InvalidInput
from app.services.quota import (
    LIKE,
    SUPER_LIKE,
    InMemoryQuotaCounter,
    QuotaEnforcer,
    SqlQuotaCounter,
    next_reset_at,
    quota_date,
)

DAY = date(2026, 3, 2)


def _config(**overrides):
    raw = {
        "dailyLikeLimit": {"free": 20, "premium": 100},
        "dailySuperLikeLimit": {"free": 1, "premium": 10},
        "timezone": "Asia/Kolkata",
    }
    raw.update(overrides)
    return MatchingConfig.from_mapping(raw)


def test_free_user_with_18_likes_used_gets_the_last_two():
    counter = InMemoryQuotaCounter()
    counter.set_used(("alice", LIKE, DAY), 18)
    quota = QuotaEnforcer(counter, _config())

    first = quota.try_consume("alice", LIKE, "free", day=DAY)
    second = quota.try_consume("alice", LIKE, "free", day=DAY)
    third = quota.try_consume("alice", LIKE, "free", day=DAY)

    assert (first.allowed, first.remaining) == (True, 1)
    assert (second.allowed, second.remaining) == (True, 0)
    assert (third.allowed, third.remaining) == (False, 0)
    assert counter.used(("alice", LIKE, DAY)) == 20


def test_like_and_super_like_budgets_are_independent():
    quota = QuotaEnforcer(config=_config())
    assert quota.try_consume("alice", SUPER_LIKE, "free", day=DAY).allowed
    assert not quota.try_consume("alice", SUPER_LIKE, "free", day=DAY).allowed
    decision = quota.try_consume("alice", LIKE, "free", day=DAY)
    assert decision.allowed and decision.remaining == 19


def test_limits_follow_the_tier():
    quota = QuotaEnforcer(config=_config())
    assert quota.try_consume("p", LIKE, "premium", day=DAY).remaining == 99
    assert quota.try_consume("p", SUPER_LIKE, "premium", day=DAY).remaining == 9


def test_concurrent_consumption_never_overshoots():
    quota = QuotaEnforcer(config=_config(dailyLikeLimit={"free": 7}))
    barrier = threading.Barrier(20)

    def _consume(_):
        barrier.wait()
        return quota.try_consume("alice", LIKE, "free", day=DAY).allowed

    with ThreadPoolExecutor(max_workers=20) as pool:
        outcomes = list(pool.map(_consume, range(20)))

    assert outcomes.count(True) == 7
    assert outcomes.count(False) == 13


def test_day_boundary_uses_the_configured_zone():
    # 19:00 UTC is already 00:30 the next day in Asia/Kolkata.
    late = datetime(2026, 3, 1, 19, 0, tzinfo=timezone.utc)
    assert quota_date(late, "Asia/Kolkata") == date(2026, 3, 2)
    assert quota_date(late, "UTC") == date(2026, 3, 1)
    assert next_reset_at(date(2026, 3, 2), "Asia/Kolkata") == datetime(2026, 3, 2, 18, 30, tzinfo=timezone.utc)


def test_new_day_starts_a_fresh_budget():
    quota = QuotaEnforcer(config=_config(dailySuperLikeLimit={"free": 1}))
    assert quota.try_consume("alice", SUPER_LIKE, "free", day=DAY).allowed
    assert not quota.try_consume("alice", SUPER_LIKE, "free", day=DAY).allowed
    assert quota.try_consume("alice", SUPER_LIKE, "free", day=date(2026, 3, 3)).allowed


def test_rejection_reports_reset_time():
    quota = QuotaEnforcer(config=_config(dailySuperLikeLimit={"free": 0}))
    decision = quota.try_consume("alice", SUPER_LIKE, "free", now=datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc))
    assert decision.allowed is False
    assert decision.remaining == 0
    assert decision.quota_date == DAY
    assert decision.resets_at == datetime(2026, 3, 2, 18, 30, tzinfo=timezone.utc)


def test_release_returns_a_permit_but_never_goes_negative():
    counter = InMemoryQuotaCounter()
    quota = QuotaEnforcer(counter, _config())
    quota.release("alice", LIKE, DAY)
    assert counter.used(("alice", LIKE, DAY)) == 0

    quota.try_consume("alice", LIKE, "free", day=DAY)
    quota.release("alice", LIKE, DAY)
    assert quota.peek("alice", LIKE, "free", day=DAY).remaining == 20


def test_only_likes_and_super_likes_have_quota():
    quota = QuotaEnforcer(config=_config())
    with pytest.raises(InvalidInput):
        quota.try_consume("alice", "dislike", "free", day=DAY)


def test_sql_counter_is_conditional_on_the_limit(sqlite_sessions):
    quota = QuotaEnforcer(SqlQuotaCounter(sqlite_sessions), _config(dailySuperLikeLimit={"free": 2}))

    assert quota.try_consume("alice", SUPER_LIKE, "free", day=DAY).remaining == 1
    assert quota.try_consume("alice", SUPER_LIKE, "free", day=DAY).remaining == 0
    rejected = quota.try_consume("alice", SUPER_LIKE, "free", day=DAY)
    assert rejected.allowed is False

    quota.release("alice", SUPER_LIKE, DAY)
    assert quota.peek("alice", SUPER_LIKE, "free", day=DAY).remaining == 1
    assert quota.try_consume("alice", SUPER_LIKE, "free", day=DAY).allowed
    assert quota.try_consume("alice", SUPER_LIKE, "free", day=date(2026, 3, 3)).remaining == 1
