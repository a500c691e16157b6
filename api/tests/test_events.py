import json

from sqlalchemy import select

from app.models import ChatThread, MatchEvent
from app.services.events import (
    InMemoryConversationBootstrap,
    SqlConversationBootstrap,
    SqlEventSink,
    log_match_event,
)


class FakeDB:
    def __init__(self):
        self.calls = []

    def execute(self, stmt, params):
        self.calls.append((str(stmt), params))


def test_log_match_event_inserts_expected_payload_shape():
    db = FakeDB()
    event_id = log_match_event(
        db=db,
        event_type="match_found",
        payload={"user_id": "00000000-0000-0000-0000-000000000123", "matched_user_id": "x"},
    )
    assert len(db.calls) == 1
    sql, params = db.calls[0]
    assert "INSERT INTO match_event" in sql
    assert params["id"] == event_id
    assert params["event_type"] == "match_found"
    assert params["user_id"] == "00000000-0000-0000-0000-000000000123"
    assert json.loads(params["payload_json"])["matched_user_id"] == "x"


def test_sql_event_sink_writes_outbox_rows(sqlite_sessions):
    sink = SqlEventSink(sqlite_sessions)
    sink.emit("like_received", {"user_id": "b", "from_user_id": "a"})

    with sqlite_sessions() as db:
        rows = db.execute(select(MatchEvent)).scalars().all()
    assert len(rows) == 1
    assert rows[0].event_type == "like_received"
    assert rows[0].user_id == "b"
    assert json.loads(rows[0].payload_json) == {"from_user_id": "a", "user_id": "b"}


def test_sql_conversation_bootstrap_is_idempotent(sqlite_sessions):
    bootstrap = SqlConversationBootstrap(sqlite_sessions)
    first = bootstrap.create_conversation_if_absent("bob", "alice")
    second = bootstrap.create_conversation_if_absent("alice", "bob")
    assert first == second

    with sqlite_sessions() as db:
        threads = db.execute(select(ChatThread)).scalars().all()
    assert [(t.participant_a_id, t.participant_b_id) for t in threads] == [("alice", "bob")]


def test_in_memory_bootstrap_counts_calls_but_keeps_one_thread():
    bootstrap = InMemoryConversationBootstrap()
    assert bootstrap.create_conversation_if_absent("a", "b") == bootstrap.create_conversation_if_absent("b", "a")
    assert bootstrap.calls == 2
    assert len(bootstrap.threads) == 1
