"""Read-only profile data consumed by the matching engine.

The profile service owns these records; the engine only reads flat value
objects through a profile source (``get_profile``, ``get_preferences``,
``get_eligible_pool``, ``list_user_ids``).
"""
from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import select

from ..database import SessionLocal
from ..models import MatchPreferences, MatchProfile

NO_BAR_KEYS = frozenset(
    {
        "age",
        "height",
        "income",
        "location",
        "religion",
        "caste",
        "mother_tongue",
        "education",
        "marital_status",
        "lifestyle",
        "horoscope",
    }
)


@dataclass(frozen=True)
class HoroscopeSummary:
    zodiac_sign: str | None = None
    moon_sign: str | None = None
    nakshatra: str | None = None
    manglik: bool | None = None


@dataclass(frozen=True)
class ProfileAttributes:
    user_id: str
    age: int | None = None
    gender: str | None = None
    height_cm: int | None = None
    country: str | None = None
    state: str | None = None
    city: str | None = None
    religion: str | None = None
    caste: str | None = None
    mother_tongue: str | None = None
    education_level: str | None = None
    occupation: str | None = None
    annual_income: float | None = None
    diet: str | None = None
    smoking: str | None = None
    drinking: str | None = None
    marital_status: str | None = None
    horoscope: HoroscopeSummary | None = None
    tier: str = "free"
    last_active_at: datetime | None = None
    profile_completeness: int = 0
    is_active: bool = True
    is_approved: bool = True

    @property
    def is_premium(self) -> bool:
        return self.tier == "premium"


@dataclass(frozen=True)
class PartnerPreferences:
    min_age: int | None = None
    max_age: int | None = None
    min_height_cm: int | None = None
    max_height_cm: int | None = None
    min_income: float | None = None
    max_income: float | None = None
    genders: frozenset[str] = field(default_factory=frozenset)
    religions: frozenset[str] = field(default_factory=frozenset)
    castes: frozenset[str] = field(default_factory=frozenset)
    mother_tongues: frozenset[str] = field(default_factory=frozenset)
    countries: frozenset[str] = field(default_factory=frozenset)
    education_levels: frozenset[str] = field(default_factory=frozenset)
    marital_statuses: frozenset[str] = field(default_factory=frozenset)
    diets: frozenset[str] = field(default_factory=frozenset)
    no_bar: frozenset[str] = field(default_factory=frozenset)
    min_compatibility: float = 0.0

    def is_no_bar(self, key: str) -> bool:
        return key in self.no_bar


def _norm(value: Any) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower()
    return v or None


def _norm_set(values: Iterable[Any] | None) -> frozenset[str]:
    out: set[str] = set()
    for item in values or ():
        v = _norm(item)
        if v:
            out.add(v)
    return frozenset(out)


def _json_set(raw: str | None) -> frozenset[str]:
    if not raw:
        return frozenset()
    try:
        values = json.loads(raw)
    except json.JSONDecodeError:
        return frozenset()
    if not isinstance(values, list):
        return frozenset()
    return _norm_set(values)


def profile_from_row(row: Any) -> ProfileAttributes:
    horoscope = None
    if any(getattr(row, k, None) is not None for k in ("zodiac_sign", "moon_sign", "nakshatra", "manglik")):
        horoscope = HoroscopeSummary(
            zodiac_sign=_norm(row.zodiac_sign),
            moon_sign=_norm(row.moon_sign),
            nakshatra=_norm(row.nakshatra),
            manglik=row.manglik,
        )
    return ProfileAttributes(
        user_id=str(row.user_id),
        age=row.age,
        gender=_norm(row.gender),
        height_cm=row.height_cm,
        country=_norm(row.country),
        state=_norm(row.state),
        city=_norm(row.city),
        religion=_norm(row.religion),
        caste=_norm(row.caste),
        mother_tongue=_norm(row.mother_tongue),
        education_level=_norm(row.education_level),
        occupation=_norm(row.occupation),
        annual_income=row.annual_income,
        diet=_norm(row.diet),
        smoking=_norm(row.smoking),
        drinking=_norm(row.drinking),
        marital_status=_norm(row.marital_status),
        horoscope=horoscope,
        tier=_norm(row.tier) or "free",
        last_active_at=row.last_active_at,
        profile_completeness=int(row.profile_completeness or 0),
        is_active=bool(row.is_active),
        is_approved=bool(row.is_approved),
    )


def preferences_from_row(row: Any) -> PartnerPreferences:
    no_bar = _json_set(row.no_bar_json) & NO_BAR_KEYS
    return PartnerPreferences(
        min_age=row.min_age,
        max_age=row.max_age,
        min_height_cm=row.min_height_cm,
        max_height_cm=row.max_height_cm,
        min_income=row.min_income,
        max_income=row.max_income,
        genders=_json_set(row.genders_json),
        religions=_json_set(row.religions_json),
        castes=_json_set(row.castes_json),
        mother_tongues=_json_set(row.mother_tongues_json),
        countries=_json_set(row.countries_json),
        education_levels=_json_set(row.education_levels_json),
        marital_statuses=_json_set(row.marital_statuses_json),
        diets=_json_set(row.diets_json),
        no_bar=no_bar,
        min_compatibility=float(row.min_compatibility or 0.0),
    )


class InMemoryProfileSource:
    def __init__(
        self,
        profiles: Iterable[ProfileAttributes] = (),
        preferences: dict[str, PartnerPreferences] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._profiles: dict[str, ProfileAttributes] = {p.user_id: p for p in profiles}
        self._preferences: dict[str, PartnerPreferences] = dict(preferences or {})

    def upsert_profile(self, profile: ProfileAttributes) -> None:
        with self._lock:
            self._profiles[profile.user_id] = profile

    def set_preferences(self, user_id: str, prefs: PartnerPreferences | None) -> None:
        with self._lock:
            if prefs is None:
                self._preferences.pop(user_id, None)
            else:
                self._preferences[user_id] = prefs

    def remove_profile(self, user_id: str) -> None:
        with self._lock:
            self._profiles.pop(user_id, None)

    def get_profile(self, user_id: str) -> ProfileAttributes | None:
        with self._lock:
            return self._profiles.get(user_id)

    def get_preferences(self, user_id: str) -> PartnerPreferences | None:
        with self._lock:
            return self._preferences.get(user_id)

    def get_eligible_pool(self, actor_id: str, genders: frozenset[str] | None = None) -> list[ProfileAttributes]:
        with self._lock:
            profiles = list(self._profiles.values())
        return [
            p
            for p in profiles
            if p.user_id != actor_id and p.is_active and p.is_approved and (not genders or p.gender in genders)
        ]

    def list_user_ids(self) -> list[str]:
        with self._lock:
            return sorted(uid for uid, p in self._profiles.items() if p.is_active and p.is_approved)


class SqlProfileSource:
    def __init__(self, session_factory=SessionLocal) -> None:
        self._session_factory = session_factory

    def get_profile(self, user_id: str) -> ProfileAttributes | None:
        with self._session_factory() as db:
            row = db.get(MatchProfile, user_id)
            return profile_from_row(row) if row else None

    def get_preferences(self, user_id: str) -> PartnerPreferences | None:
        with self._session_factory() as db:
            row = db.get(MatchPreferences, user_id)
            return preferences_from_row(row) if row else None

    def get_eligible_pool(self, actor_id: str, genders: frozenset[str] | None = None) -> list[ProfileAttributes]:
        stmt = select(MatchProfile).where(
            MatchProfile.user_id != actor_id,
            MatchProfile.is_active.is_(True),
            MatchProfile.is_approved.is_(True),
        )
        if genders:
            stmt = stmt.where(MatchProfile.gender.in_(sorted(genders)))
        with self._session_factory() as db:
            return [profile_from_row(r) for r in db.execute(stmt).scalars().all()]

    def list_user_ids(self) -> list[str]:
        stmt = (
            select(MatchProfile.user_id)
            .where(MatchProfile.is_active.is_(True), MatchProfile.is_approved.is_(True))
            .order_by(MatchProfile.user_id)
        )
        with self._session_factory() as db:
            return [str(uid) for uid in db.execute(stmt).scalars().all()]
