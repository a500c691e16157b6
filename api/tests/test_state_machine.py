from datetime import datetime, timedelta, timezone

import pytest

from app.errors import AlreadyBlocked, InvalidInput
from app.services.state_machine import (
    BLOCKED,
    DISLIKED,
    LIKED,
    PENDING,
    SUPER_LIKED,
    MatchRecord,
    apply_action,
    apply_unblock,
    apply_unmatch,
    canonical_pair,
)

T0 = datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(minutes=5)
T2 = T0 + timedelta(minutes=10)


def _pair():
    return MatchRecord.new("bob", "alice", T0)


def test_canonical_pair_orders_ids_and_rejects_self():
    assert canonical_pair("bob", "alice") == ("alice", "bob")
    record = _pair()
    assert (record.user_a_id, record.user_b_id) == ("alice", "bob")
    with pytest.raises(InvalidInput):
        canonical_pair("alice", "alice")


def test_repeating_an_action_is_a_no_op():
    first = apply_action(_pair(), "alice", LIKED, T0)
    again = apply_action(first.record, "alice", LIKED, T1)
    assert first.transitioned is True
    assert again.transitioned is False
    assert again.record == first.record
    assert again.record.acted_at_of("alice") == T0


def test_second_positive_action_sets_matched_at_once():
    one_sided = apply_action(_pair(), "alice", LIKED, T0)
    assert one_sided.is_new_mutual_match is False
    assert one_sided.record.matched_at is None

    mutual = apply_action(one_sided.record, "bob", SUPER_LIKED, T1)
    assert mutual.is_new_mutual_match is True
    assert mutual.record.matched_at == T1

    upgraded = apply_action(mutual.record, "alice", SUPER_LIKED, T2)
    assert upgraded.transitioned is True
    assert upgraded.is_new_mutual_match is False
    assert upgraded.record.matched_at == T1


def test_dislike_can_turn_into_like_before_a_match():
    disliked = apply_action(_pair(), "alice", DISLIKED, T0).record
    liked = apply_action(disliked, "alice", LIKED, T1).record
    assert liked.action_of("alice") == LIKED
    assert liked.acted_at_of("alice") == T1


def test_negative_action_on_a_match_requires_unmatch():
    record = apply_action(apply_action(_pair(), "alice", LIKED, T0).record, "bob", LIKED, T0).record
    with pytest.raises(InvalidInput):
        apply_action(record, "alice", DISLIKED, T1)


def test_block_clears_match_and_the_other_side_positive_action():
    record = apply_action(apply_action(_pair(), "alice", LIKED, T0).record, "bob", LIKED, T0).record
    blocked = apply_action(record, "alice", BLOCKED, T1)
    assert blocked.transitioned is True
    assert blocked.record.matched_at is None
    assert blocked.record.action_of("alice") == BLOCKED
    assert blocked.record.action_of("bob") == PENDING
    assert blocked.record.is_blocked


def test_blocked_pair_rejects_likes_from_either_side_until_unblocked():
    blocked = apply_action(_pair(), "alice", BLOCKED, T0).record
    for actor in ("alice", "bob"):
        for action in (LIKED, SUPER_LIKED):
            with pytest.raises(AlreadyBlocked):
                apply_action(blocked, actor, action, T1)

    assert apply_unblock(blocked, "bob", T1).transitioned is False
    unblocked = apply_unblock(blocked, "alice", T1)
    assert unblocked.transitioned is True
    assert unblocked.record.action_of("alice") == PENDING
    assert apply_action(unblocked.record, "bob", LIKED, T2).transitioned is True


def test_unmatch_marks_initiator_disliked_and_keeps_other_side():
    record = apply_action(apply_action(_pair(), "alice", LIKED, T0).record, "bob", SUPER_LIKED, T0).record
    result = apply_unmatch(record, "bob", T1)
    assert result.transitioned is True
    assert result.record.matched_at is None
    assert result.record.action_of("bob") == DISLIKED
    assert result.record.action_of("alice") == LIKED

    assert apply_unmatch(result.record, "bob", T2).transitioned is False


def test_outsider_cannot_act_on_a_pair():
    with pytest.raises(InvalidInput):
        apply_action(_pair(), "carol", LIKED, T0)


def test_view_for_is_relative_to_the_viewer():
    record = apply_action(_pair(), "bob", LIKED, T0).record
    view = record.view_for("alice")
    assert view["other_user_id"] == "bob"
    assert view["my_action"] == PENDING
    assert view["their_action"] == LIKED
    assert view["is_mutual"] is False
