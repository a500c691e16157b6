from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from ..config import FACTORS, MatchingConfig
from .profiles import PartnerPreferences, ProfileAttributes

NEUTRAL_SCORE = 50.0

# Weight of the data-coverage multiplier: a profile with no usable data for
# any weighted factor keeps 90% of its neutral score.
_COVERAGE_FLOOR = 0.9

_EDUCATION_LEVELS = {
    "high_school": 1,
    "diploma": 2,
    "bachelors": 3,
    "masters": 4,
    "phd": 5,
}

_COMPATIBLE_RELIGIONS = {
    "christian": {"catholic", "orthodox"},
    "catholic": {"christian", "orthodox"},
    "orthodox": {"christian", "catholic"},
    "sunni": {"shia"},
    "shia": {"sunni"},
    "buddhist": {"hindu"},
    "hindu": {"buddhist", "jain", "sikh"},
    "jain": {"hindu"},
    "sikh": {"hindu"},
}
_NON_RELIGIOUS = {"agnostic", "atheist", "non_religious"}

_COMPATIBLE_MOON_SIGNS = {
    "aries": {"gemini", "leo", "sagittarius", "aquarius"},
    "taurus": {"cancer", "virgo", "capricorn", "pisces"},
    "gemini": {"aries", "leo", "libra", "aquarius"},
    "cancer": {"taurus", "virgo", "scorpio", "pisces"},
    "leo": {"aries", "gemini", "libra", "sagittarius"},
    "virgo": {"taurus", "cancer", "scorpio", "capricorn"},
    "libra": {"gemini", "leo", "sagittarius", "aquarius"},
    "scorpio": {"cancer", "virgo", "capricorn", "pisces"},
    "sagittarius": {"aries", "leo", "libra", "aquarius"},
    "capricorn": {"taurus", "virgo", "scorpio", "pisces"},
    "aquarius": {"aries", "gemini", "libra", "sagittarius"},
    "pisces": {"taurus", "cancer", "scorpio", "capricorn"},
}

_PLANT_BASED = {"vegetarian", "vegan", "jain", "eggetarian"}
_FLEXIBLE_DIETS = {"non_vegetarian", "omnivore"}

HoroscopeScorer = Callable[[ProfileAttributes, ProfileAttributes], float | None]


@dataclass(frozen=True)
class FactorScore:
    score: float
    weight: float


@dataclass(frozen=True)
class CompatibilityScore:
    overall: float
    breakdown: dict[str, FactorScore] = field(default_factory=dict)
    excluded: tuple[str, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall,
            "breakdown": {k: {"score": v.score, "weight": v.weight} for k, v in self.breakdown.items()},
            "excluded": list(self.excluded),
        }


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def _age_score(viewer: ProfileAttributes, candidate: ProfileAttributes, prefs: PartnerPreferences | None) -> float | None:
    if candidate.age is None:
        return None
    if prefs and (prefs.min_age is not None or prefs.max_age is not None):
        lo = prefs.min_age if prefs.min_age is not None else candidate.age
        hi = prefs.max_age if prefs.max_age is not None else candidate.age
        if candidate.age < lo or candidate.age > hi:
            return 0.0
        half_range = (hi - lo) / 2.0
        if half_range <= 0:
            return 100.0
        ideal = (lo + hi) / 2.0
        return 100.0 - abs(candidate.age - ideal) / half_range * 40.0
    if viewer.age is None:
        return None
    diff = abs(viewer.age - candidate.age)
    return 100.0 - max(0, diff - 2) * 10.0


def _location_score(viewer: ProfileAttributes, candidate: ProfileAttributes, prefs: PartnerPreferences | None) -> float | None:
    if candidate.country is None:
        return None
    preferred = bool(prefs and prefs.countries and candidate.country in prefs.countries)
    if viewer.country is None:
        if prefs and prefs.countries:
            return 100.0 if preferred else 20.0
        return None
    if viewer.country == candidate.country:
        if viewer.state and viewer.state == candidate.state:
            base = 100.0 if viewer.city and viewer.city == candidate.city else 80.0
        else:
            base = 50.0
    else:
        base = 20.0
    return max(base, 70.0) if preferred else base


def _religion_score(viewer: ProfileAttributes, candidate: ProfileAttributes, prefs: PartnerPreferences | None) -> float | None:
    if candidate.religion is None:
        return None
    if prefs and prefs.religions:
        score = 100.0 if candidate.religion in prefs.religions else 20.0
    elif viewer.religion is None:
        return None
    elif viewer.religion == candidate.religion:
        score = 100.0
    elif candidate.religion in _COMPATIBLE_RELIGIONS.get(viewer.religion, set()):
        score = 70.0
    elif viewer.religion in _NON_RELIGIOUS and candidate.religion in _NON_RELIGIOUS:
        score = 80.0
    else:
        score = 20.0

    if score < 100.0 or (prefs and prefs.is_no_bar("caste")) or candidate.caste is None:
        return score
    if prefs and prefs.castes:
        return score if candidate.caste in prefs.castes else 75.0
    if viewer.caste and viewer.caste != candidate.caste:
        return 85.0
    return score


def _habit_score(a: str | None, b: str | None, mild: tuple[str, str]) -> float | None:
    if a is None or b is None:
        return None
    if a == b:
        return 100.0
    if {a, b} == set(mild):
        return 70.0
    return 30.0


def _diet_score(a: str | None, b: str | None, prefs: PartnerPreferences | None) -> float | None:
    if b is None:
        return None
    if prefs and prefs.diets:
        return 100.0 if b in prefs.diets else 30.0
    if a is None:
        return None
    if a == b:
        return 100.0
    if a in _PLANT_BASED and b in _PLANT_BASED:
        return 80.0
    if a in _FLEXIBLE_DIETS or b in _FLEXIBLE_DIETS:
        return 60.0
    return 40.0


def _lifestyle_score(viewer: ProfileAttributes, candidate: ProfileAttributes, prefs: PartnerPreferences | None) -> float | None:
    parts = [
        _habit_score(viewer.smoking, candidate.smoking, ("never", "occasionally")),
        _habit_score(viewer.drinking, candidate.drinking, ("never", "socially")),
        _diet_score(viewer.diet, candidate.diet, prefs),
    ]
    known = [p for p in parts if p is not None]
    if not known:
        return None
    return sum(known) / len(known)


def _education_score(viewer: ProfileAttributes, candidate: ProfileAttributes, prefs: PartnerPreferences | None) -> float | None:
    edu: float | None = None
    if candidate.education_level is not None:
        if prefs and prefs.education_levels:
            edu = 100.0 if candidate.education_level in prefs.education_levels else 40.0
        elif viewer.education_level is not None:
            l1 = _EDUCATION_LEVELS.get(viewer.education_level)
            l2 = _EDUCATION_LEVELS.get(candidate.education_level)
            if l1 is not None and l2 is not None:
                edu = {0: 100.0, 1: 80.0, 2: 60.0, 3: 40.0}.get(abs(l1 - l2), 20.0)
            else:
                edu = 100.0 if viewer.education_level == candidate.education_level else 50.0

    occ: float | None = None
    if viewer.occupation and candidate.occupation:
        occ = 100.0 if viewer.occupation == candidate.occupation else 60.0

    if edu is None and occ is None:
        return None
    if edu is None:
        return occ
    if occ is None:
        return edu
    return 0.7 * edu + 0.3 * occ


def _income_score(viewer: ProfileAttributes, candidate: ProfileAttributes, prefs: PartnerPreferences | None) -> float | None:
    if candidate.annual_income is None:
        return None
    if prefs and (prefs.min_income is not None or prefs.max_income is not None):
        lo = prefs.min_income if prefs.min_income is not None else float("-inf")
        hi = prefs.max_income if prefs.max_income is not None else float("inf")
        return 100.0 if lo <= candidate.annual_income <= hi else 0.0
    if not viewer.annual_income or viewer.annual_income <= 0 or candidate.annual_income <= 0:
        return None
    ratio = min(viewer.annual_income, candidate.annual_income) / max(viewer.annual_income, candidate.annual_income)
    return 40.0 + 60.0 * ratio


def default_horoscope_score(a: ProfileAttributes, b: ProfileAttributes) -> float | None:
    h1, h2 = a.horoscope, b.horoscope
    if h1 is None or h2 is None:
        return None
    score = NEUTRAL_SCORE
    if h1.zodiac_sign and h1.zodiac_sign == h2.zodiac_sign:
        score += 15
    if h1.moon_sign and h2.moon_sign in _COMPATIBLE_MOON_SIGNS.get(h1.moon_sign, set()):
        score += 20
    if h1.manglik is not None and h2.manglik is not None:
        if h1.manglik == h2.manglik:
            score += 15
        else:
            score -= 20
    if h1.nakshatra and h1.nakshatra == h2.nakshatra:
        score += 10
    return score


_FACTOR_FUNCS = {
    "age": _age_score,
    "location": _location_score,
    "religion": _religion_score,
    "lifestyle": _lifestyle_score,
    "education": _education_score,
    "income": _income_score,
}


def compute_compatibility(
    viewer: ProfileAttributes,
    candidate: ProfileAttributes,
    prefs: PartnerPreferences | None = None,
    weights: Mapping[str, float] | None = None,
    horoscope_scorer: HoroscopeScorer | None = None,
) -> CompatibilityScore:
    """Score ``candidate`` from ``viewer``'s point of view.

    Pure: never raises on partial profiles. A factor without data on either
    side scores ``NEUTRAL_SCORE``; factors the viewer marked no-bar are left
    out of the weighted sum entirely.
    """
    weights = weights or MatchingConfig().weights
    horoscope_scorer = horoscope_scorer or default_horoscope_score

    breakdown: dict[str, FactorScore] = {}
    excluded: list[str] = []
    weighted_sum = 0.0
    total_weight = 0.0
    covered_weight = 0.0

    for factor in FACTORS:
        if prefs and prefs.is_no_bar(factor):
            excluded.append(factor)
            continue
        weight = float(weights.get(factor, 0.0))
        if factor == "horoscope":
            raw = horoscope_scorer(viewer, candidate)
        else:
            raw = _FACTOR_FUNCS[factor](viewer, candidate, prefs)
        score = _clamp(NEUTRAL_SCORE if raw is None else raw)
        breakdown[factor] = FactorScore(score=round(score, 2), weight=weight)
        if weight <= 0:
            continue
        weighted_sum += score * weight
        total_weight += weight
        if raw is not None:
            covered_weight += weight

    if total_weight <= 0:
        return CompatibilityScore(overall=NEUTRAL_SCORE, breakdown=breakdown, excluded=tuple(excluded))

    coverage = covered_weight / total_weight
    multiplier = _COVERAGE_FLOOR + (1.0 - _COVERAGE_FLOOR) * coverage
    overall = _clamp(weighted_sum / total_weight * multiplier)
    return CompatibilityScore(overall=round(overall, 2), breakdown=breakdown, excluded=tuple(excluded))


class CompatibilityScorer:
    def __init__(self, config: MatchingConfig | None = None, horoscope_scorer: HoroscopeScorer | None = None) -> None:
        self.config = config or MatchingConfig()
        self.horoscope_scorer = horoscope_scorer or default_horoscope_score

    def score(
        self,
        viewer: ProfileAttributes,
        candidate: ProfileAttributes,
        prefs: PartnerPreferences | None = None,
    ) -> CompatibilityScore:
        return compute_compatibility(
            viewer,
            candidate,
            prefs,
            weights=self.config.weights,
            horoscope_scorer=self.horoscope_scorer,
        )


def mutual_compatibility(a_to_b: CompatibilityScore, b_to_a: CompatibilityScore) -> float:
    return round((a_to_b.overall + b_to_a.overall) / 2.0, 2)


def match_quality(score: float) -> str:
    if score >= 90:
        return "excellent"
    if score >= 75:
        return "very_good"
    if score >= 60:
        return "good"
    if score >= 40:
        return "fair"
    return "poor"


def common_factors(a: ProfileAttributes, b: ProfileAttributes) -> list[str]:
    factors: list[str] = []
    if a.country and a.country == b.country:
        factors.append("same_country")
        if a.city and a.city == b.city:
            factors.append("same_city")
    if a.religion and a.religion == b.religion:
        factors.append("same_religion")
        if a.caste and a.caste == b.caste:
            factors.append("same_caste")
    if a.education_level and a.education_level == b.education_level:
        factors.append("similar_education")
    if a.mother_tongue and a.mother_tongue == b.mother_tongue:
        factors.append("same_mother_tongue")
    if a.diet and a.diet == b.diet:
        factors.append("same_diet")
    if a.smoking and a.smoking == b.smoking:
        factors.append("same_smoking_habits")
    return factors
