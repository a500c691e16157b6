import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from app.errors import AlreadyBlocked, ConcurrentConflict, InvalidInput
from app.services.match_store import InMemoryMatchStateStore, SqlMatchStateStore
from app.services.state_machine import BLOCKED, DISLIKED, LIKED, PENDING, SUPER_LIKED, canonical_pair

T0 = datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc)


def _like_each_other_concurrently(store, a: str, b: str):
    barrier = threading.Barrier(2)

    def _like(actor, target):
        barrier.wait()
        return store.record_action(actor, target, LIKED)

    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(_like, a, b), pool.submit(_like, b, a)]
        return [f.result() for f in futures]


def test_concurrent_mutual_likes_yield_exactly_one_new_match():
    store = InMemoryMatchStateStore()
    for i in range(50):
        a, b = f"user-{i}-a", f"user-{i}-b"
        results = _like_each_other_concurrently(store, a, b)
        assert sorted(r.is_new_mutual_match for r in results) == [False, True]
        record = store.get(a, b)
        assert record.matched_at is not None
        winner = next(r for r in results if r.is_new_mutual_match)
        assert record.matched_at == winner.record.matched_at


def test_recording_twice_matches_recording_once():
    store = InMemoryMatchStateStore()
    store.record_action("a", "b", LIKED, T0)
    once = store.get("a", "b")
    result = store.record_action("a", "b", LIKED, T0 + timedelta(minutes=1))
    assert result.transitioned is False
    assert store.get("a", "b") == once


def test_blocked_pair_rejects_like_without_changing_state():
    store = InMemoryMatchStateStore()
    store.record_action("b", "a", BLOCKED, T0)
    before = store.get("a", "b")
    with pytest.raises(AlreadyBlocked):
        store.record_action("a", "b", SUPER_LIKED, T0)
    assert store.get("a", "b") == before


def test_busy_pair_surfaces_concurrent_conflict():
    store = InMemoryMatchStateStore(lock_timeout_seconds=0.01)
    key = canonical_pair("a", "b")
    held = store._checkout_pair(key)
    held.lock.acquire()
    try:
        with pytest.raises(ConcurrentConflict):
            store.record_action("a", "b", LIKED)
    finally:
        held.lock.release()
        store._checkin_pair(key, held)
    assert store.record_action("a", "b", LIKED).transitioned is True


def test_pair_locks_are_dropped_once_no_mutation_is_in_flight():
    store = InMemoryMatchStateStore()
    barrier = threading.Barrier(8)

    def _act(i):
        barrier.wait()
        store.record_action(f"u{i % 4}", f"v{i % 2}", LIKED, T0)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(_act, range(8)))

    assert len(store.records_for("v0")) + len(store.records_for("v1")) == 4
    assert store._pair_locks == {}
    with pytest.raises(InvalidInput):
        store.record_action("a", "a", LIKED)
    assert store._pair_locks == {}


def test_unblock_and_unmatch_on_unknown_pair_are_no_ops():
    store = InMemoryMatchStateStore()
    assert store.unblock("a", "b").transitioned is False
    assert store.unmatch("a", "b").transitioned is False
    assert store.get("a", "b") is None


def test_read_side_queries():
    store = InMemoryMatchStateStore()
    store.record_action("me", "m1", LIKED, T0)
    store.record_action("m1", "me", LIKED, T0 + timedelta(minutes=1))
    store.record_action("l1", "me", LIKED, T0 + timedelta(minutes=2))
    store.record_action("l2", "me", SUPER_LIKED, T0)
    store.record_action("me", "x1", DISLIKED, T0)
    store.record_action("x2", "me", BLOCKED, T0)

    assert [r.other("me") for r in store.list_mutual_matches("me")] == ["m1"]
    assert [r.other("me") for r in store.list_likers("me")] == ["l2", "l1"]
    assert store.blocked_ids("me") == {"x2"}
    assert store.acted_ids("me") == {"m1", "x1"}

    stats = store.statistics("me")
    assert stats["likes_sent"] == 1
    assert stats["likes_received"] == 3
    assert stats["mutual_matches"] == 1
    assert stats["blocked"] == 0
    assert stats["response_rate"] == 100.0


def test_boost_is_reported_until_it_expires():
    store = InMemoryMatchStateStore()
    store.set_boost("me", "c1", T0 + timedelta(hours=1), T0)
    assert store.boosted_ids("me", T0) == {"c1"}
    assert store.boosted_ids("me", T0 + timedelta(hours=2)) == set()


def test_sql_store_detects_mutual_match_and_round_trips_timestamps(sqlite_sessions):
    store = SqlMatchStateStore(sqlite_sessions)
    first = store.record_action("alice", "bob", LIKED, T0)
    second = store.record_action("bob", "alice", SUPER_LIKED, T0 + timedelta(minutes=1))

    assert first.is_new_mutual_match is False
    assert second.is_new_mutual_match is True
    record = store.get("bob", "alice")
    assert record.matched_at == T0 + timedelta(minutes=1)
    assert record.action_of("alice") == LIKED
    assert record.action_of("bob") == SUPER_LIKED

    again = store.record_action("bob", "alice", SUPER_LIKED, T0 + timedelta(minutes=5))
    assert again.transitioned is False
    assert store.get("alice", "bob").acted_at_of("bob") == T0 + timedelta(minutes=1)


def test_sql_store_block_unblock_and_queries(sqlite_sessions):
    store = SqlMatchStateStore(sqlite_sessions)
    store.record_action("alice", "bob", LIKED, T0)
    store.record_action("carol", "bob", BLOCKED, T0)

    with pytest.raises(AlreadyBlocked):
        store.record_action("bob", "carol", LIKED, T0)
    assert store.blocked_ids("bob") == {"carol"}
    assert [r.other("bob") for r in store.list_likers("bob")] == ["alice"]

    assert store.unblock("carol", "bob", T0).transitioned is True
    assert store.get("bob", "carol").action_of("carol") == PENDING
    assert store.unmatch("dave", "erin", T0).transitioned is False
    assert store.get("dave", "erin") is None

    store.set_boost("bob", "alice", None, T0)
    assert store.boosted_ids("bob", T0) == {"alice"}


def test_sql_lock_failure_becomes_concurrent_conflict():
    class _Bind:
        class dialect:
            name = "postgresql"

    class _LockedSession:
        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def get_bind(self):
            return _Bind()

        def execute(self, *args, **kwargs):
            raise OperationalError("SELECT ... FOR UPDATE", {}, Exception("canceling statement due to lock timeout"))

    store = SqlMatchStateStore(lambda: _LockedSession())
    with pytest.raises(ConcurrentConflict):
        store.record_action("alice", "bob", LIKED, T0)
