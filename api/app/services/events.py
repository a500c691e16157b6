import json
import logging
import threading
import uuid
from typing import Any

from sqlalchemy import text

from ..database import SessionLocal

logger = logging.getLogger(__name__)

MATCH_FOUND = "match_found"
LIKE_RECEIVED = "like_received"
SUPER_LIKE_RECEIVED = "super_like_received"


def log_match_event(db, event_type: str, payload: dict[str, Any] | None = None) -> str:
    payload = payload or {}
    event_id = str(uuid.uuid4())
    db.execute(
        text(
            """
            INSERT INTO match_event (id, event_type, user_id, payload_json)
            VALUES (:id, :event_type, :user_id, :payload_json)
            """
        ),
        {
            "id": event_id,
            "event_type": event_type,
            "user_id": payload.get("user_id"),
            "payload_json": json.dumps(payload, sort_keys=True, default=str),
        },
    )
    return event_id


class SqlEventSink:
    """Outbox table read by the notification workers."""

    def __init__(self, session_factory=SessionLocal) -> None:
        self._session_factory = session_factory

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        with self._session_factory() as db:
            log_match_event(db, event_type, payload)
            db.commit()
        logger.info("[EVENTS] emitted %s user_id=%s", event_type, payload.get("user_id"))


class InMemoryEventSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.events.append((event_type, dict(payload)))

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        with self._lock:
            return [p for t, p in self.events if t == event_type]


class SqlConversationBootstrap:
    def __init__(self, session_factory=SessionLocal) -> None:
        self._session_factory = session_factory

    def create_conversation_if_absent(self, user_a_id: str, user_b_id: str) -> str:
        a, b = sorted([user_a_id, user_b_id])
        with self._session_factory() as db:
            db.execute(
                text(
                    """
                    INSERT INTO chat_thread (id, participant_a_id, participant_b_id)
                    VALUES (:id, :a, :b)
                    ON CONFLICT (participant_a_id, participant_b_id) DO NOTHING
                    """
                ),
                {"id": str(uuid.uuid4()), "a": a, "b": b},
            )
            thread_id = db.execute(
                text("SELECT id FROM chat_thread WHERE participant_a_id=:a AND participant_b_id=:b"),
                {"a": a, "b": b},
            ).scalar_one()
            db.commit()
        return str(thread_id)


class InMemoryConversationBootstrap:
    def __init__(self) -> None:
        self.threads: dict[tuple[str, str], str] = {}
        self.calls = 0
        self._lock = threading.Lock()

    def create_conversation_if_absent(self, user_a_id: str, user_b_id: str) -> str:
        key = tuple(sorted([user_a_id, user_b_id]))
        with self._lock:
            self.calls += 1
            return self.threads.setdefault(key, str(uuid.uuid4()))
