from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from .profiles import PartnerPreferences, ProfileAttributes
from .scoring import CompatibilityScore, CompatibilityScorer
from .state_machine import as_utc

logger = logging.getLogger(__name__)

_OPPOSITE_GENDER = {"male": "female", "female": "male", "man": "woman", "woman": "man"}
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# (no-bar key, preference attribute, profile attribute)
_SET_FILTERS = (
    ("location", "countries", "country"),
    ("religion", "religions", "religion"),
    ("caste", "castes", "caste"),
    ("mother_tongue", "mother_tongues", "mother_tongue"),
    ("marital_status", "marital_statuses", "marital_status"),
    ("education", "education_levels", "education_level"),
    ("lifestyle", "diets", "diet"),
)

# (no-bar key, min attribute, max attribute, profile attribute)
_RANGE_FILTERS = (
    ("age", "min_age", "max_age", "age"),
    ("height", "min_height_cm", "max_height_cm", "height_cm"),
    ("income", "min_income", "max_income", "annual_income"),
)


@dataclass(frozen=True)
class RankedCandidate:
    profile: ProfileAttributes
    score: CompatibilityScore
    is_boosted: bool = False

    @property
    def user_id(self) -> str:
        return self.profile.user_id


@dataclass(frozen=True)
class RankPage:
    results: list[RankedCandidate]
    total_count: int
    page: int
    page_size: int


def target_genders(actor: ProfileAttributes, prefs: PartnerPreferences | None) -> frozenset[str] | None:
    """Genders the actor is shown: explicit preference, else the opposite one.

    ``None`` means the rule cannot be resolved from the data at hand.
    """
    if prefs and prefs.genders:
        return prefs.genders
    opposite = _OPPOSITE_GENDER.get(actor.gender or "")
    if opposite is None:
        return None
    return frozenset({opposite})


def _in_range(value, lo, hi) -> bool:
    if lo is None and hi is None:
        return True
    if value is None:
        return False
    if lo is not None and value < lo:
        return False
    if hi is not None and value > hi:
        return False
    return True


def passes_preference_filters(candidate: ProfileAttributes, prefs: PartnerPreferences | None) -> bool:
    """Strict inclusion on every filter the viewer did not mark no-bar.

    A candidate with no value for an active filter is dropped, the same
    way a SQL range or IN clause drops NULLs. Preferences without bounds
    or values filter nothing.
    """
    if prefs is None:
        return True
    for key, lo_attr, hi_attr, attr in _RANGE_FILTERS:
        if prefs.is_no_bar(key):
            continue
        if not _in_range(getattr(candidate, attr), getattr(prefs, lo_attr), getattr(prefs, hi_attr)):
            return False
    for key, pref_attr, attr in _SET_FILTERS:
        allowed = getattr(prefs, pref_attr)
        if not allowed or prefs.is_no_bar(key):
            continue
        if getattr(candidate, attr) not in allowed:
            return False
    return True


class CandidateRanker:
    def __init__(self, scorer: CompatibilityScorer | None = None) -> None:
        self.scorer = scorer or CompatibilityScorer()

    def filter_pool(
        self,
        actor: ProfileAttributes,
        pool: Iterable[ProfileAttributes],
        prefs: PartnerPreferences | None,
        *,
        blocked_ids: set[str] | frozenset[str] = frozenset(),
        acted_ids: set[str] | frozenset[str] = frozenset(),
        include_acted: bool = False,
    ) -> list[ProfileAttributes]:
        genders = target_genders(actor, prefs)
        out: list[ProfileAttributes] = []
        for candidate in pool:
            if candidate.user_id == actor.user_id:
                continue
            if not (candidate.is_active and candidate.is_approved):
                continue
            if genders is not None and candidate.gender not in genders:
                continue
            if candidate.user_id in blocked_ids:
                continue
            if not include_acted and candidate.user_id in acted_ids:
                continue
            if not passes_preference_filters(candidate, prefs):
                continue
            out.append(candidate)
        return out

    def rank(
        self,
        actor: ProfileAttributes,
        pool: Iterable[ProfileAttributes],
        prefs: PartnerPreferences | None = None,
        page: int = 1,
        page_size: int = 20,
        *,
        blocked_ids: set[str] | frozenset[str] = frozenset(),
        acted_ids: set[str] | frozenset[str] = frozenset(),
        boosted_ids: set[str] | frozenset[str] = frozenset(),
        include_acted: bool = False,
    ) -> RankPage:
        page = max(1, int(page))
        page_size = max(1, int(page_size))
        eligible = self.filter_pool(
            actor,
            pool,
            prefs,
            blocked_ids=blocked_ids,
            acted_ids=acted_ids,
            include_acted=include_acted,
        )

        min_score = prefs.min_compatibility if prefs else 0.0
        scored: list[RankedCandidate] = []
        for candidate in eligible:
            score = self.scorer.score(actor, candidate, prefs)
            if score.overall < min_score:
                continue
            scored.append(RankedCandidate(candidate, score, is_boosted=candidate.user_id in boosted_ids))

        scored.sort(
            key=lambda rc: (
                -rc.score.overall,
                not (rc.profile.is_premium or rc.is_boosted),
                -(as_utc(rc.profile.last_active_at) or _EPOCH).timestamp(),
                rc.profile.user_id,
            )
        )

        start = (page - 1) * page_size
        logger.debug(
            "[MATCH] ranked actor=%s eligible=%s scored=%s page=%s",
            actor.user_id,
            len(eligible),
            len(scored),
            page,
        )
        return RankPage(
            results=scored[start : start + page_size],
            total_count=len(scored),
            page=page,
            page_size=page_size,
        )
