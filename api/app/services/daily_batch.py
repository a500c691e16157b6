"""Curated candidate lists, frozen once per user per calendar day."""
from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable

from sqlalchemy import select

from ..config import BATCH_MAX_WORKERS, MatchingConfig
from ..database import SessionLocal, insert_ignoring_conflicts
from ..errors import InvalidInput
from ..models import DailyMatchBatch
from .quota import quota_date
from .ranking import CandidateRanker, target_genders
from .state_machine import as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchEntry:
    candidate_id: str
    score: float


@dataclass(frozen=True)
class DailyBatch:
    user_id: str
    batch_date: date
    entries: tuple[BatchEntry, ...]
    generated_at: datetime

    def entries_payload(self) -> list[dict[str, Any]]:
        return [{"candidate_id": e.candidate_id, "score": e.score} for e in self.entries]

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "batch_date": self.batch_date.isoformat(),
            "generated_at": self.generated_at.astimezone(timezone.utc).isoformat(),
            "entries": self.entries_payload(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))


def _entries_from_json(raw: str) -> tuple[BatchEntry, ...]:
    return tuple(BatchEntry(candidate_id=str(e["candidate_id"]), score=float(e["score"])) for e in json.loads(raw or "[]"))


class InMemoryDailyBatchStore:
    def __init__(self) -> None:
        self._batches: dict[tuple[str, date], DailyBatch] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str, batch_date: date) -> DailyBatch | None:
        with self._lock:
            return self._batches.get((user_id, batch_date))

    def insert_if_absent(self, batch: DailyBatch) -> DailyBatch:
        with self._lock:
            return self._batches.setdefault((batch.user_id, batch.batch_date), batch)


class SqlDailyBatchStore:
    def __init__(self, session_factory=SessionLocal) -> None:
        self._session_factory = session_factory

    def _select(self, db, user_id: str, batch_date: date) -> DailyBatch | None:
        row = db.execute(
            select(DailyMatchBatch).where(DailyMatchBatch.user_id == user_id, DailyMatchBatch.batch_date == batch_date)
        ).scalar_one_or_none()
        if row is None:
            return None
        return DailyBatch(
            user_id=row.user_id,
            batch_date=row.batch_date,
            entries=_entries_from_json(row.entries_json),
            generated_at=as_utc(row.generated_at),
        )

    def get(self, user_id: str, batch_date: date) -> DailyBatch | None:
        with self._session_factory() as db:
            return self._select(db, user_id, batch_date)

    def insert_if_absent(self, batch: DailyBatch) -> DailyBatch:
        with self._session_factory() as db:
            db.execute(
                insert_ignoring_conflicts(db, DailyMatchBatch, ["user_id", "batch_date"]).values(
                    user_id=batch.user_id,
                    batch_date=batch.batch_date,
                    entries_json=json.dumps(batch.entries_payload()),
                    generated_at=batch.generated_at,
                )
            )
            db.commit()
            return self._select(db, batch.user_id, batch.batch_date)


@dataclass
class BatchRunSummary:
    batch_date: date
    generated: int = 0
    failed: int = 0
    failed_user_ids: list[str] = field(default_factory=list)


class DailyBatchGenerator:
    def __init__(
        self,
        profiles,
        match_store,
        batch_store=None,
        ranker: CandidateRanker | None = None,
        config: MatchingConfig | None = None,
    ) -> None:
        self.profiles = profiles
        self.match_store = match_store
        self.batch_store = batch_store if batch_store is not None else InMemoryDailyBatchStore()
        self.config = config or MatchingConfig()
        self.ranker = ranker or CandidateRanker()

    def today(self, now: datetime | None = None) -> date:
        return quota_date(now or datetime.now(timezone.utc), self.config.timezone)

    def generate_for(self, user_id: str, day: date | None = None, now: datetime | None = None) -> DailyBatch:
        """Return the batch for ``(user_id, day)``, building it on first request.

        A stored batch is returned unchanged even if the pool has moved on
        since it was built.
        """
        now = now or datetime.now(timezone.utc)
        day = day or self.today(now)
        existing = self.batch_store.get(user_id, day)
        if existing is not None:
            return existing

        actor = self.profiles.get_profile(user_id)
        if actor is None:
            raise InvalidInput(f"unknown user {user_id}")
        prefs = self.profiles.get_preferences(user_id)
        genders = target_genders(actor, prefs)
        if genders is None:
            raise InvalidInput(f"user {user_id} has no gender and no gender preference")

        page = self.ranker.rank(
            actor,
            self.profiles.get_eligible_pool(user_id, genders),
            prefs,
            page=1,
            page_size=self.config.default_batch_size,
            blocked_ids=self.match_store.blocked_ids(user_id),
            acted_ids=self.match_store.acted_ids(user_id),
            boosted_ids=self.match_store.boosted_ids(user_id, now),
        )
        batch = DailyBatch(
            user_id=user_id,
            batch_date=day,
            entries=tuple(BatchEntry(rc.user_id, rc.score.overall) for rc in page.results),
            generated_at=now,
        )
        stored = self.batch_store.insert_if_absent(batch)
        logger.info("[BATCH] generated user_id=%s date=%s entries=%s", user_id, day, len(stored.entries))
        return stored

    def generate_for_all(
        self,
        user_ids: Iterable[str] | None = None,
        day: date | None = None,
        max_workers: int = BATCH_MAX_WORKERS,
    ) -> BatchRunSummary:
        now = datetime.now(timezone.utc)
        day = day or self.today(now)
        ids = list(user_ids) if user_ids is not None else self.profiles.list_user_ids()
        summary = BatchRunSummary(batch_date=day)

        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
            futures = {pool.submit(self.generate_for, uid, day, now): uid for uid in ids}
            for fut in as_completed(futures):
                uid = futures[fut]
                try:
                    fut.result()
                    summary.generated += 1
                except Exception:
                    logger.exception("[BATCH] generation failed user_id=%s date=%s", uid, day)
                    summary.failed += 1
                    summary.failed_user_ids.append(uid)

        summary.failed_user_ids.sort()
        logger.info("[BATCH] run complete date=%s generated=%s failed=%s", day, summary.generated, summary.failed)
        return summary
